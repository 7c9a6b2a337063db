from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import numpy as np

from lexer import EngError, MAX_TOKEN_LENGTH, MAX_TOKENS
from values import ZERO, Value, as_text


class EngRuntimeError(EngError):
    """Raised when a fixed resource ceiling is exceeded."""

    def __init__(
        self,
        message: str,
        *,
        location: Optional[Any] = None,
        rule: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.location = location
        self.rule = rule
        self.step_index: Optional[int] = None


@dataclass(frozen=True)
class Limits:
    max_variables: int = 512
    max_arrays: int = 64
    max_array_size: int = 1024
    stack_size: int = 512
    memory_size: int = 1024
    max_params: int = 8
    max_tokens: int = MAX_TOKENS
    max_token_length: int = MAX_TOKEN_LENGTH
    max_call_depth: int = 128


@dataclass
class Variables:
    capacity: int
    values: Dict[str, Value] = field(default_factory=dict)

    def get_optional(self, name: str) -> Optional[Value]:
        return self.values.get(name)

    def get(self, name: str) -> Value:
        return self.values.get(name, ZERO)

    def has(self, name: str) -> bool:
        return name in self.values

    def set(self, name: str, value: Value) -> None:
        if name not in self.values and len(self.values) >= self.capacity:
            raise EngRuntimeError("too many variables", rule="VARIABLES")
        self.values[name] = value

    def ensure(self, name: str) -> Value:
        if name not in self.values:
            self.set(name, ZERO)
        return self.values[name]

    def snapshot(self) -> Dict[str, str]:
        def _render(val: Value) -> str:
            rendered = as_text(val)
            if len(rendered) > 80:
                rendered = rendered[:77] + "..."
            return f"{val.type}:{rendered}"

        return {k: _render(v) for k, v in self.values.items()}


@dataclass
class Array:
    name: str
    capacity: int
    elements: List[Value] = field(default_factory=list)

    @property
    def size(self) -> int:
        return len(self.elements)

    def append(self, value: Value) -> None:
        if len(self.elements) < self.capacity:
            self.elements.append(value)

    def get(self, index: int) -> Value:
        if 0 <= index < len(self.elements):
            return self.elements[index]
        return ZERO

    def set(self, index: int, value: Value) -> None:
        if index < 0 or index >= self.capacity:
            return
        if index >= len(self.elements):
            self.elements.extend([ZERO] * (index + 1 - len(self.elements)))
        self.elements[index] = value


@dataclass
class Arrays:
    capacity: int
    element_capacity: int
    arrays: Dict[str, Array] = field(default_factory=dict)

    def find(self, name: str) -> Optional[Array]:
        return self.arrays.get(name)

    def get_or_create(self, name: str) -> Array:
        existing = self.arrays.get(name)
        if existing is not None:
            return existing
        if len(self.arrays) >= self.capacity:
            raise EngRuntimeError("too many arrays", rule="ARRAYS")
        created = Array(name=name, capacity=self.element_capacity)
        self.arrays[name] = created
        return created


class DataStack:
    def __init__(self, capacity: int) -> None:
        self.data = np.zeros(capacity, dtype=np.float64)
        self.top = 0

    def __len__(self) -> int:
        return self.top

    def push(self, x: float) -> bool:
        if self.top >= self.data.shape[0]:
            return False
        self.data[self.top] = x
        self.top += 1
        return True

    def pop(self) -> float:
        if self.top == 0:
            return 0.0
        self.top -= 1
        return float(self.data[self.top])


class Memory:
    def __init__(self, size: int) -> None:
        self.cells = np.zeros(size, dtype=np.float64)

    def __len__(self) -> int:
        return int(self.cells.shape[0])

    def store(self, address: int, x: float) -> None:
        if 0 <= address < self.cells.shape[0]:
            self.cells[address] = x

    def load(self, address: int) -> float:
        if 0 <= address < self.cells.shape[0]:
            return float(self.cells[address])
        return 0.0
