from __future__ import annotations
import math
import re
from dataclasses import dataclass
from typing import Optional, Protocol, Union

from lexer import Token


TYPE_NUM = "NUM"
TYPE_TEXT = "TEXT"

_DECIMAL = r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?"
_HEX = r"[+-]?0[xX](?:[0-9a-fA-F]+\.?[0-9a-fA-F]*|\.[0-9a-fA-F]+)(?:[pP][+-]?\d+)?"
_SPECIAL = r"[+-]?(?:inf(?:inity)?|nan)"

NUMBER_RE = re.compile(rf"(?:{_HEX}|{_DECIMAL}|{_SPECIAL})", re.IGNORECASE)


@dataclass(frozen=True)
class Value:
    type: str
    value: Union[float, str]

    @property
    def is_number(self) -> bool:
        return self.type == TYPE_NUM

    @property
    def is_text(self) -> bool:
        return self.type == TYPE_TEXT


def number(x: float) -> Value:
    return Value(TYPE_NUM, float(x))


def text(s: str) -> Value:
    return Value(TYPE_TEXT, str(s))


ZERO = number(0.0)


class VariableLookup(Protocol):
    def get_optional(self, name: str) -> Optional[Value]:
        ...


def _convert(literal: str) -> float:
    if literal.lstrip("+-")[:2].lower() == "0x":
        return float.fromhex(literal)
    return float(literal)


def parse_number(literal: str) -> Optional[float]:
    """Parse a whole token as a number, or return None."""
    if NUMBER_RE.fullmatch(literal) is None:
        return None
    return _convert(literal)


def leading_number(literal: str) -> float:
    """Parse the longest numeric prefix of ``literal``; 0 when there is none."""
    match = NUMBER_RE.match(literal.lstrip())
    if match is None:
        return 0.0
    return _convert(match.group(0))


def format_number(x: float) -> str:
    if math.isnan(x):
        return "nan"
    if math.isinf(x):
        return "inf" if x > 0 else "-inf"
    if x == 0:
        return "-0" if math.copysign(1.0, x) < 0 else "0"
    if x.is_integer() and abs(x) < 1e16:
        return str(int(x))
    rendered = repr(x)
    if rendered.endswith(".0"):
        rendered = rendered[:-2]
    return rendered


def as_number(value: Value) -> float:
    if value.type == TYPE_NUM:
        return float(value.value)
    return 0.0


def as_text(value: Value) -> str:
    if value.type == TYPE_NUM:
        return format_number(float(value.value))
    return str(value.value)


def resolve_word(word: str, variables: VariableLookup) -> Value:
    parsed = parse_number(word)
    if parsed is not None:
        return number(parsed)
    existing = variables.get_optional(word)
    if existing is not None:
        return existing
    return text(word)


def resolve(token: Token, variables: VariableLookup) -> Value:
    if token.is_string:
        return text(token.value)
    return resolve_word(token.value, variables)


def resolve_number(token: Token, variables: VariableLookup) -> float:
    return as_number(resolve(token, variables))


def resolve_text(token: Token, variables: VariableLookup) -> str:
    return as_text(resolve(token, variables))


def truncate(x: float) -> int:
    """Truncate toward zero; non-finite values become 0."""
    if math.isnan(x) or math.isinf(x):
        return 0
    return int(x)
