import textwrap
from dataclasses import dataclass
from typing import Any, List, Optional

import pytest

from extensions import RuntimeServices
from interpreter import ExitSignal, Interpreter
from storage import Limits


@dataclass
class ScriptRun:
    interpreter: Interpreter
    output: str
    errors: List[str]
    exit_code: Optional[int]

    def var(self, name: str) -> Any:
        return self.interpreter.variables.get(name).value

    def has(self, name: str) -> bool:
        return self.interpreter.variables.has(name)


def make_interpreter(
    source: str,
    *,
    inputs=(),
    limits: Optional[Limits] = None,
    services: Optional[RuntimeServices] = None,
    output: Optional[List[str]] = None,
    errors: Optional[List[str]] = None,
) -> Interpreter:
    pending = list(inputs)

    def provide() -> Optional[str]:
        return pending.pop(0) if pending else None

    return Interpreter(
        source=textwrap.dedent(source).lstrip("\n"),
        filename="<string>",
        limits=limits,
        services=services,
        input_provider=provide,
        output_sink=(output if output is not None else []).append,
        error_sink=(errors if errors is not None else []).append,
    )


@pytest.fixture
def run_source():
    def _run(source: str, **kwargs) -> ScriptRun:
        output: List[str] = []
        errors: List[str] = []
        interpreter = make_interpreter(source, output=output, errors=errors, **kwargs)
        exit_code = None
        try:
            interpreter.run()
        except ExitSignal as sig:
            exit_code = sig.code
        return ScriptRun(interpreter, "".join(output), errors, exit_code)

    return _run
