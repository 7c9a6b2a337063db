from __future__ import annotations
import json
import os
import sys
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List, Optional, Sequence, Tuple

import numpy as np

from conditions import evaluate_condition
from extensions import RuntimeServices, StepContext
from lexer import Token
from program import FunctionDef, FunctionTable, Program, SourceLocation, find_end, find_otherwise, is_inline_if, parse_define
from storage import Arrays, DataStack, EngRuntimeError, Limits, Memory, Variables
from values import (
    TYPE_NUM,
    TYPE_TEXT,
    ZERO,
    Value,
    as_number,
    format_number,
    leading_number,
    number,
    parse_number,
    resolve,
    resolve_number,
    resolve_text,
    text,
    truncate,
)


# Functions hand results back through this global variable.
RETURN_SLOT = "return"

TOP_LEVEL = "<top-level>"

# Recent step entries kept for tracebacks.
STATE_HISTORY = 256

# Python frames per nested script call, plus per enclosing block in its body.
FRAMES_PER_CALL = 8
FRAMES_PER_BLOCK = 3
RECURSION_MARGIN = 1000


class ExitSignal(Exception):
    def __init__(self, code: int = 0) -> None:
        super().__init__(code)
        self.code = code


@dataclass
class Frame:
    name: str
    frame_id: str
    call_location: Optional[SourceLocation]


@dataclass
class StateEntry:
    step_index: int
    state_id: str
    frame_id: Optional[str]
    source_location: Optional[SourceLocation]
    statement: Optional[str]
    env_snapshot: Optional[Dict[str, str]]
    rewrite_record: Optional[Dict[str, Any]]


class StateLogger:
    def __init__(self, verbose: bool, history: int = STATE_HISTORY) -> None:
        self.verbose = verbose
        self.entries: Deque[StateEntry] = deque(maxlen=history)
        self.next_state_index = 0
        self.last_state_id = "seed"
        self.frame_last_entry: Dict[str, StateEntry] = {}

    def record(
        self,
        *,
        frame: Optional[Frame],
        location: Optional[SourceLocation],
        statement: Optional[str],
        rewrite_record: Optional[Dict[str, Any]] = None,
        env_snapshot: Optional[Dict[str, str]] = None,
    ) -> StateEntry:
        rewrite = {} if rewrite_record is None else rewrite_record
        if "from_state_id" not in rewrite:
            rewrite["from_state_id"] = self.last_state_id
        step_index = self.next_state_index
        state_id = f"s_{step_index:06d}"
        rewrite["to_state_id"] = state_id
        entry = StateEntry(
            step_index=step_index,
            state_id=state_id,
            frame_id=frame.frame_id if frame else None,
            source_location=location,
            statement=statement,
            env_snapshot=env_snapshot,
            rewrite_record=rewrite,
        )
        self.entries.append(entry)
        if frame:
            self.frame_last_entry[frame.frame_id] = entry
        self.last_state_id = state_id
        self.next_state_index += 1
        return entry

    def last_entry_for_frame(self, frame_id: str) -> Optional[StateEntry]:
        return self.frame_last_entry.get(frame_id)

    def forget_frame(self, frame_id: str) -> None:
        self.frame_last_entry.pop(frame_id, None)

    def last_entry_index(self) -> Optional[int]:
        if self.entries:
            return self.entries[-1].step_index
        return None


Handler = Callable[["Interpreter", List[Token], int], Optional[int]]


@dataclass(frozen=True)
class StatementForm:
    """A statement shape: keywords at fixed positions, ``_`` for any token.

    The pattern length is also the minimum token count for the form.
    """

    pattern: str
    handler: Handler
    rule: str
    words: Tuple[str, ...] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "words", tuple(self.pattern.split()))

    @property
    def keyword(self) -> str:
        return self.words[0]

    def matches(self, tokens: Sequence[Token]) -> bool:
        if len(tokens) < len(self.words):
            return False
        for word, token in zip(self.words, tokens):
            if word != "_" and not token.is_word(word):
                return False
        return True


def _default_input() -> Optional[str]:
    try:
        return input()
    except EOFError:
        return None


def _power(a: float, b: float) -> float:
    with np.errstate(all="ignore"):
        return float(np.power(np.float64(a), np.float64(b)))


def _sqrt(a: float) -> float:
    with np.errstate(all="ignore"):
        return float(np.sqrt(np.float64(a)))


def _remainder(a: int, b: int) -> int:
    # Truncating remainder: the result takes the sign of the dividend.
    r = abs(a) % abs(b)
    return -r if a < 0 else r


def _find_word(tokens: Sequence[Token], word: str, start: int = 1) -> int:
    for i in range(start, len(tokens)):
        if tokens[i].is_word(word):
            return i
    return -1


class Interpreter:
    def __init__(
        self,
        *,
        source: str,
        filename: str,
        verbose: bool = False,
        limits: Optional[Limits] = None,
        services: Optional[RuntimeServices] = None,
        input_provider: Optional[Callable[[], Optional[str]]] = None,
        output_sink: Optional[Callable[[str], None]] = None,
        error_sink: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.source = source
        normalized_filename = filename if filename == "<string>" else os.path.abspath(filename)
        self.filename = normalized_filename
        self.verbose = verbose
        self.limits = limits or Limits()
        self.services = services or RuntimeServices()
        self.hook_registry = self.services.hook_registry
        self.input_provider = input_provider or _default_input
        self.output_sink = output_sink or (lambda text: print(text, end=""))
        self.error_sink = error_sink or (lambda text: print(text, file=sys.stderr))

        self.program = Program.from_source(
            source,
            normalized_filename,
            max_tokens=self.limits.max_tokens,
            max_token_length=self.limits.max_token_length,
        )
        self.variables = Variables(capacity=self.limits.max_variables)
        self.arrays = Arrays(capacity=self.limits.max_arrays, element_capacity=self.limits.max_array_size)
        self.stack = DataStack(self.limits.stack_size)
        self.memory = Memory(self.limits.memory_size)
        self.functions = FunctionTable()

        # Extension forms are tried only after every built-in form.
        forms: List[StatementForm] = list(BUILTIN_FORMS)
        for statement in self.services.statements:
            forms.append(StatementForm(statement.pattern, statement.handler, rule=statement.pattern.split()[0].upper()))
        self.forms_by_keyword: Dict[str, List[StatementForm]] = {}
        for form in forms:
            self.forms_by_keyword.setdefault(form.keyword, []).append(form)

        self.logger = StateLogger(verbose=verbose)
        self.logger.record(frame=None, location=None, statement="<seed>", rewrite_record={"rule": "SEED"})
        self.call_stack: List[Frame] = []
        self.frame_counter = 0

    def host_frames_needed(self) -> int:
        """Python stack depth that lets scripts reach ``max_call_depth`` nested calls."""
        per_call = FRAMES_PER_CALL + FRAMES_PER_BLOCK * self.program.max_block_depth()
        return self.limits.max_call_depth * per_call + RECURSION_MARGIN

    def run(self) -> None:
        previous_limit = sys.getrecursionlimit()
        sys.setrecursionlimit(max(previous_limit, self.host_frames_needed()))
        try:
            self._run_program()
        finally:
            sys.setrecursionlimit(previous_limit)

    def _run_program(self) -> None:
        self.functions = FunctionTable.collect(self.program, self.limits.max_params)
        global_frame = self._new_frame(TOP_LEVEL, None)
        self.call_stack.append(global_frame)
        self._emit_event("program_start", self, self.program)
        try:
            self.execute(0, len(self.program))
        except ExitSignal as sig:
            self._emit_event("program_end", self, sig.code)
            raise
        except EngRuntimeError as error:
            self._emit_event("on_error", self, error)
            error.step_index = self.logger.last_entry_index()
            raise
        except RecursionError:
            wrapped = EngRuntimeError(
                "Host recursion limit exceeded",
                location=self._last_location(),
                rule="CALL",
            )
            wrapped.step_index = self.logger.last_entry_index()
            self._emit_event("on_error", self, wrapped)
            raise wrapped
        except Exception as exc:
            self._emit_event("on_error", self, exc)
            # Convert unexpected Python-level exceptions into EngRuntimeError
            # so the CLI can format them as tracebacks.
            wrapped = EngRuntimeError(f"Internal interpreter error: {exc}", location=self._last_location(), rule="internal")
            wrapped.step_index = self.logger.last_entry_index()
            raise wrapped
        else:
            self._emit_event("program_end", self, 0)
            self.call_stack.pop()

    def execute(self, start: int, end: int) -> int:
        """Run lines ``[start, end)``; returns the index execution stopped at."""
        i = start
        limit = min(end, len(self.program))
        step = self._step
        while i < limit:
            i = step(i)
        return i

    def _step(self, index: int) -> int:
        program = self.program
        if program.is_blank_or_comment(index):
            return index + 1
        tokens = program.tokens(index)
        if not tokens:
            return index + 1

        form = self._classify(tokens)
        location = program.location(index)
        rule = form.rule if form is not None else "UNKNOWN"
        self._log_step(rule=rule, location=location)
        self._emit_event("before_statement", self, location)
        try:
            if form is None:
                self._unrecognized(tokens, index)
                next_index = index + 1
            else:
                result = form.handler(self, tokens, index)
                next_index = index + 1 if result is None else result
        except EngRuntimeError as err:
            if err.location is None:
                err.location = location
            if err.rule is None:
                err.rule = rule
            raise
        self._emit_event("after_statement", self, location)
        return next_index

    def _classify(self, tokens: Sequence[Token]) -> Optional[StatementForm]:
        first = tokens[0]
        if first.is_string:
            return None
        for form in self.forms_by_keyword.get(first.value, ()):
            if form.matches(tokens):
                return form
        return None

    def _unrecognized(self, tokens: Sequence[Token], index: int) -> None:
        first = tokens[0]
        # Stray block closers are consumed by their opener; skip them silently.
        if not first.is_string and first.value.startswith("end"):
            return
        self.warn(f"Warning: unknown instruction on line {index + 1}: '{self.program.text(index)}'")

    def dispatch(self, tokens: List[Token], index: int) -> int:
        """Run one already-tokenized statement as if it were on line ``index``."""
        form = self._classify(tokens)
        if form is None:
            self._unrecognized(tokens, index)
            return index + 1
        result = form.handler(self, tokens, index)
        return index + 1 if result is None else result

    def warn(self, message: str) -> None:
        self.error_sink(message)

    def write(self, text: str) -> None:
        self.output_sink(text)

    # ---- value helpers ----

    def resolve(self, token: Token) -> Value:
        return resolve(token, self.variables)

    def number_of(self, token: Token) -> float:
        return resolve_number(token, self.variables)

    def text_of(self, token: Token) -> str:
        return resolve_text(token, self.variables)

    def assign(self, name: str, value: Value) -> None:
        self.variables.set(name, value)

    # ---- assignment and arithmetic ----

    def _exec_set(self, tokens: List[Token], index: int) -> None:
        # The target exists (as 0) before its operands are read.
        self.variables.ensure(tokens[1].value)
        value = self.resolve(tokens[3])
        count = len(tokens)
        if count > 4:
            op = tokens[4]
            left = tokens[3]
            if op.is_word("plus") and count >= 6:
                value = number(self.number_of(left) + self.number_of(tokens[5]))
            elif op.is_word("minus") and count >= 6:
                value = number(self.number_of(left) - self.number_of(tokens[5]))
            elif op.is_word("times") and count >= 6:
                value = number(self.number_of(left) * self.number_of(tokens[5]))
            elif op.is_word("divided") and count >= 7 and tokens[5].is_word("by"):
                divisor = self.number_of(tokens[6])
                value = number(self.number_of(left) / divisor if divisor != 0 else 0.0)
            elif op.is_word("modulo") and count >= 6:
                a = truncate(self.number_of(left))
                b = truncate(self.number_of(tokens[5]))
                value = number(_remainder(a, b) if b != 0 else 0)
            elif op.is_word("power") and count >= 6:
                value = number(_power(self.number_of(left), self.number_of(tokens[5])))
            elif op.is_word("concatenated") and count >= 7 and tokens[5].is_word("with"):
                value = text(self.text_of(left) + self.text_of(tokens[6]))
        self.assign(tokens[1].value, value)

    def _exec_add(self, tokens: List[Token], index: int) -> None:
        self.variables.ensure(tokens[5].value)
        self.assign(tokens[5].value, number(self.number_of(tokens[1]) + self.number_of(tokens[3])))

    def _exec_subtract(self, tokens: List[Token], index: int) -> None:
        # subtract a from b: b - a
        self.variables.ensure(tokens[5].value)
        self.assign(tokens[5].value, number(self.number_of(tokens[3]) - self.number_of(tokens[1])))

    def _exec_multiply(self, tokens: List[Token], index: int) -> None:
        self.variables.ensure(tokens[5].value)
        self.assign(tokens[5].value, number(self.number_of(tokens[1]) * self.number_of(tokens[3])))

    def _exec_divide(self, tokens: List[Token], index: int) -> None:
        self.variables.ensure(tokens[5].value)
        divisor = self.number_of(tokens[3])
        quotient = self.number_of(tokens[1]) / divisor if divisor != 0 else 0.0
        self.assign(tokens[5].value, number(quotient))

    def _step_amount(self, tokens: List[Token]) -> float:
        if len(tokens) >= 4 and tokens[2].is_word("by"):
            return self.number_of(tokens[3])
        return 1.0

    def _exec_increment(self, tokens: List[Token], index: int) -> None:
        name = tokens[1].value
        current = as_number(self.variables.ensure(name))
        self.assign(name, number(current + self._step_amount(tokens)))

    def _exec_decrement(self, tokens: List[Token], index: int) -> None:
        name = tokens[1].value
        current = as_number(self.variables.ensure(name))
        self.assign(name, number(current - self._step_amount(tokens)))

    # ---- I/O ----

    def _exec_print(self, tokens: List[Token], index: int) -> None:
        parts = [self.text_of(token) for token in tokens[1:] if not token.is_word("and")]
        self.write(" ".join(parts) + "\n")

    def _exec_ask(self, tokens: List[Token], index: int) -> None:
        into_idx = _find_word(tokens, "into")
        if into_idx < 0 or into_idx + 1 >= len(tokens):
            return
        self.write(self.text_of(tokens[1]) + " ")
        reply = self.input_provider()
        if reply is None:
            return
        reply = reply.rstrip("\n")
        parsed = parse_number(reply.lstrip())
        self.assign(tokens[into_idx + 1].value, number(parsed) if parsed is not None else text(reply))

    # ---- control flow ----

    def _condition_words(self, tokens: List[Token]) -> Optional[Tuple[List[Token], int]]:
        then_idx = _find_word(tokens, "then")
        if then_idx < 0:
            return None
        return tokens[1:then_idx], then_idx

    def _exec_if(self, tokens: List[Token], index: int) -> Optional[int]:
        found = self._condition_words(tokens)
        if found is None:
            return None
        condition, then_idx = found
        if is_inline_if(tokens):
            return self._exec_inline_if(tokens, condition, then_idx, index)

        end_if = find_end(self.program, index, "end if")
        otherwise = find_otherwise(self.program, index, end_if)
        if evaluate_condition(condition, self.variables):
            self.execute(index + 1, otherwise if otherwise is not None else end_if)
        elif otherwise is not None:
            self.execute(otherwise + 1, end_if)
        return end_if + 1

    def _exec_inline_if(self, tokens: List[Token], condition: List[Token], then_idx: int, index: int) -> int:
        # if <condition> then <statement> [otherwise <statement>] [end if] on one line
        rest = tokens[then_idx + 1 :]
        if len(rest) >= 2 and rest[-2].is_word("end") and rest[-1].is_word("if"):
            rest = rest[:-2]
        split = next((i for i, token in enumerate(rest) if token.is_word("otherwise")), -1)
        then_part = rest if split < 0 else rest[:split]
        else_part: List[Token] = [] if split < 0 else rest[split + 1 :]
        chosen = then_part if evaluate_condition(condition, self.variables) else else_part
        if chosen:
            self.dispatch(chosen, index)
        return index + 1

    def _exec_while(self, tokens: List[Token], index: int) -> Optional[int]:
        found = self._condition_words(tokens)
        if found is None:
            return None
        condition, _ = found
        end_while = find_end(self.program, index, "end while")
        while evaluate_condition(condition, self.variables):
            self.execute(index + 1, end_while)
        return end_while + 1

    def _exec_repeat(self, tokens: List[Token], index: int) -> int:
        count = truncate(self.number_of(tokens[1]))
        end_repeat = find_end(self.program, index, "end repeat")
        for _ in range(count):
            self.execute(index + 1, end_repeat)
        return end_repeat + 1

    def _exec_for(self, tokens: List[Token], index: int) -> int:
        name = tokens[1].value
        current = self.number_of(tokens[3])
        bound = self.number_of(tokens[5])
        step = 1.0
        if len(tokens) >= 8 and tokens[6].is_word("step"):
            step = self.number_of(tokens[7])
        end_for = find_end(self.program, index, "end for")

        if self.variables.ensure(name).type != TYPE_NUM:
            self.assign(name, ZERO)
        # The counter lives outside the variable; body writes to it do not steer the loop.
        if step > 0:
            while current <= bound:
                self.assign(name, number(current))
                self.execute(index + 1, end_for)
                current += step
        elif step < 0:
            while current >= bound:
                self.assign(name, number(current))
                self.execute(index + 1, end_for)
                current += step
        return end_for + 1

    # ---- procedures ----

    def _exec_define(self, tokens: List[Token], index: int) -> int:
        function = self.functions.at_line(index)
        if function is None:
            end_define = find_end(self.program, index, "end define")
            function = self.functions.register(parse_define(tokens, index, end_define, self.limits.max_params))
        return function.end + 1

    def _exec_call(self, tokens: List[Token], index: int) -> None:
        name = tokens[1].value
        function = self.functions.lookup(name)
        if function is None:
            self.warn(f"Error: undefined function '{name}'")
            return
        arg_start = 3 if len(tokens) > 2 and tokens[2].is_word("with") else 2
        # Parameters are ordinary globals, bound left to right.
        for param, token in zip(function.params, tokens[arg_start:]):
            self.variables.ensure(param)
            self.assign(param, self.resolve(token))
        self.call_function(function, self.program.location(index))

    def call_function(self, function: FunctionDef, call_location: Optional[SourceLocation]) -> None:
        depth = len(self.call_stack) - 1
        if depth >= self.limits.max_call_depth:
            raise EngRuntimeError(
                f"Maximum call depth {self.limits.max_call_depth} exceeded calling '{function.name}'",
                location=call_location,
                rule="CALL",
            )
        frame = self._new_frame(function.name, call_location)
        self.call_stack.append(frame)
        self.execute(function.start, function.end)
        self.call_stack.pop()
        self.logger.forget_frame(frame.frame_id)
        self._emit_event("after_call", self, function.name, call_location)

    def _exec_return(self, tokens: List[Token], index: int) -> None:
        self.assign(RETURN_SLOT, self.resolve(tokens[1]))

    # ---- stack and memory ----

    def _exec_push(self, tokens: List[Token], index: int) -> None:
        self.stack.push(self.number_of(tokens[1]))

    def _exec_pop(self, tokens: List[Token], index: int) -> None:
        self.assign(tokens[4].value, number(self.stack.pop()))

    def _exec_store(self, tokens: List[Token], index: int) -> None:
        address = truncate(self.number_of(tokens[4]))
        self.memory.store(address, self.number_of(tokens[1]))

    def _exec_load(self, tokens: List[Token], index: int) -> None:
        address = truncate(self.number_of(tokens[3]))
        self.assign(tokens[5].value, number(self.memory.load(address)))

    # ---- arrays ----

    def _exec_create_array(self, tokens: List[Token], index: int) -> None:
        self.arrays.get_or_create(tokens[2].value)

    def _exec_append(self, tokens: List[Token], index: int) -> None:
        self.arrays.get_or_create(tokens[4].value).append(self.resolve(tokens[1]))

    def _exec_get_element(self, tokens: List[Token], index: int) -> None:
        position = truncate(self.number_of(tokens[2]))
        array = self.arrays.find(tokens[5].value)
        self.assign(tokens[7].value, array.get(position) if array is not None else ZERO)

    def _exec_set_element(self, tokens: List[Token], index: int) -> None:
        position = truncate(self.number_of(tokens[2]))
        array = self.arrays.get_or_create(tokens[5].value)
        array.set(position, self.resolve(tokens[7]))

    def _exec_size(self, tokens: List[Token], index: int) -> None:
        array = self.arrays.find(tokens[3].value)
        self.assign(tokens[5].value, number(array.size if array is not None else 0))

    # ---- math and text utilities ----

    def _exec_sqrt(self, tokens: List[Token], index: int) -> None:
        self.variables.ensure(tokens[5].value)
        self.assign(tokens[5].value, number(_sqrt(self.number_of(tokens[3]))))

    def _exec_abs(self, tokens: List[Token], index: int) -> None:
        self.variables.ensure(tokens[5].value)
        self.assign(tokens[5].value, number(abs(self.number_of(tokens[3]))))

    def _exec_length(self, tokens: List[Token], index: int) -> None:
        self.assign(tokens[4].value, number(len(self.text_of(tokens[2]))))

    def _exec_to_number(self, tokens: List[Token], index: int) -> None:
        name = tokens[1].value
        current = self.variables.ensure(name)
        if current.type == TYPE_TEXT:
            self.assign(name, number(leading_number(str(current.value))))

    def _exec_to_string(self, tokens: List[Token], index: int) -> None:
        name = tokens[1].value
        current = self.variables.ensure(name)
        if current.type == TYPE_NUM:
            self.assign(name, text(format_number(float(current.value))))

    # ---- termination ----

    def _exec_stop(self, tokens: List[Token], index: int) -> None:
        raise ExitSignal(0)

    def _exec_skip(self, tokens: List[Token], index: int) -> None:
        return None

    # ---- bookkeeping ----

    def _new_frame(self, name: str, call_location: Optional[SourceLocation]) -> Frame:
        frame_id = f"f_{self.frame_counter:04d}"
        self.frame_counter += 1
        return Frame(name=name, frame_id=frame_id, call_location=call_location)

    def _last_location(self) -> Optional[SourceLocation]:
        if self.logger.entries:
            return self.logger.entries[-1].source_location
        return None

    def _emit_event(self, event: str, *args: Any) -> None:
        for hook in self.hook_registry.hooks_for(event):
            try:
                hook.handler(*args)
            except (EngRuntimeError, ExitSignal):
                raise
            except Exception as exc:
                raise EngRuntimeError(
                    f"Extension hook '{event}' from '{hook.owner}' failed: {exc}",
                    location=self._last_location(),
                    rule="EXT",
                )

    def _log_step(self, *, rule: str, location: Optional[SourceLocation]) -> None:
        frame = self.call_stack[-1] if self.call_stack else None
        env_snapshot = self.variables.snapshot() if self.verbose else None
        statement = location.statement if location else None
        entry = self.logger.record(
            frame=frame,
            location=location,
            statement=statement,
            env_snapshot=env_snapshot,
            rewrite_record={"rule": rule},
        )

        # Step rules run after the entry is recorded.
        for step_rule in self.hook_registry.due_rules(entry.step_index):
            try:
                step_rule.handler(self, StepContext(step_index=entry.step_index, rule=rule, location=location))
            except (EngRuntimeError, ExitSignal):
                raise
            except Exception as exc:
                raise EngRuntimeError(
                    f"Extension step rule '{step_rule.name}' from '{step_rule.owner}' failed: {exc}",
                    location=location,
                    rule="EXT",
                )


# More specific shapes come before shapes sharing their leading keyword.
BUILTIN_FORMS: List[StatementForm] = [
    StatementForm("set element _ of array _ to _", Interpreter._exec_set_element, "SET_ELEMENT"),
    StatementForm("set _ to _", Interpreter._exec_set, "SET"),
    StatementForm("add _ and _ into _", Interpreter._exec_add, "ADD"),
    StatementForm("subtract _ from _ into _", Interpreter._exec_subtract, "SUBTRACT"),
    StatementForm("multiply _ by _ into _", Interpreter._exec_multiply, "MULTIPLY"),
    StatementForm("divide _ by _ into _", Interpreter._exec_divide, "DIVIDE"),
    StatementForm("increment _", Interpreter._exec_increment, "INCREMENT"),
    StatementForm("decrement _", Interpreter._exec_decrement, "DECREMENT"),
    StatementForm("print", Interpreter._exec_print, "PRINT"),
    StatementForm("say", Interpreter._exec_print, "SAY"),
    StatementForm("ask _ _ _", Interpreter._exec_ask, "ASK"),
    StatementForm("if", Interpreter._exec_if, "IF"),
    StatementForm("while", Interpreter._exec_while, "WHILE"),
    StatementForm("repeat _ times", Interpreter._exec_repeat, "REPEAT"),
    StatementForm("for _ from _ to _", Interpreter._exec_for, "FOR"),
    StatementForm("define _ _", Interpreter._exec_define, "DEFINE"),
    StatementForm("call _", Interpreter._exec_call, "CALL"),
    StatementForm("return _", Interpreter._exec_return, "RETURN"),
    StatementForm("push _ onto stack", Interpreter._exec_push, "PUSH"),
    StatementForm("pop from stack into _", Interpreter._exec_pop, "POP"),
    StatementForm("store _ at address _", Interpreter._exec_store, "STORE"),
    StatementForm("load from address _ into _", Interpreter._exec_load, "LOAD"),
    StatementForm("create array _", Interpreter._exec_create_array, "CREATE_ARRAY"),
    StatementForm("append _ to array _", Interpreter._exec_append, "APPEND"),
    StatementForm("get element _ of array _ into _", Interpreter._exec_get_element, "GET_ELEMENT"),
    StatementForm("size of array _ into _", Interpreter._exec_size, "SIZE"),
    StatementForm("square root of _ into _", Interpreter._exec_sqrt, "SQRT"),
    StatementForm("absolute value of _ into _", Interpreter._exec_abs, "ABS"),
    StatementForm("length of _ into _", Interpreter._exec_length, "LENGTH"),
    StatementForm("convert _ to number", Interpreter._exec_to_number, "CONVERT"),
    StatementForm("convert _ to string", Interpreter._exec_to_string, "CONVERT"),
    StatementForm("stop", Interpreter._exec_stop, "STOP"),
    StatementForm("exit", Interpreter._exec_stop, "EXIT"),
    StatementForm("otherwise", Interpreter._exec_skip, "OTHERWISE"),
]


@dataclass
class TracebackFrame:
    name: str
    location: Optional[SourceLocation]
    statement: Optional[str]
    state_entry: Optional[StateEntry]


class TracebackFormatter:
    def __init__(self, interpreter: Interpreter) -> None:
        self.interpreter = interpreter

    def build_frames(self) -> List[TracebackFrame]:
        frames: List[TracebackFrame] = []
        for frame in self.interpreter.call_stack:
            entry = self.interpreter.logger.last_entry_for_frame(frame.frame_id)
            location = entry.source_location if entry else frame.call_location
            frames.append(
                TracebackFrame(
                    name=frame.name,
                    location=location,
                    statement=entry.statement if entry else None,
                    state_entry=entry,
                )
            )
        return frames

    def format_text(self, error: EngRuntimeError, verbose: bool) -> str:
        lines = ["Traceback (most recent call last):"]
        for frame in self.build_frames():
            if frame.location:
                lines.append(f"  File \"{frame.location.file}\", line {frame.location.line}, in {frame.name}")
                if frame.statement:
                    lines.append(f"    {frame.statement}")
            else:
                lines.append(f"  <unknown location> in {frame.name}")
            if frame.state_entry:
                lines.append(
                    f"    State log index: {frame.state_entry.step_index}  State id: {frame.state_entry.state_id}"
                )
                if verbose and frame.state_entry.env_snapshot is not None:
                    snapshot = ", ".join(f"{k}={v}" for k, v in frame.state_entry.env_snapshot.items())
                    lines.append(f"    Env snapshot: {snapshot}")
        rule = error.rule or "runtime"
        lines.append(f"{error.__class__.__name__}: {error.message} (rule: {rule})")
        return "\n".join(lines)

    def to_json(self, error: EngRuntimeError) -> str:
        frames_json: List[Dict[str, Any]] = []
        for index, frame in enumerate(self.build_frames()):
            entry: Dict[str, Any] = {"frame_index": index, "name": frame.name}
            if frame.location:
                entry["source_location"] = {
                    "file": frame.location.file,
                    "line": frame.location.line,
                    "statement": frame.location.statement,
                }
            if frame.state_entry:
                entry["state_id"] = frame.state_entry.state_id
                entry["step_index"] = frame.state_entry.step_index
                if frame.state_entry.env_snapshot is not None:
                    entry["env_snapshot"] = frame.state_entry.env_snapshot
                if frame.state_entry.rewrite_record is not None:
                    entry["rewrite_record"] = frame.state_entry.rewrite_record
            frames_json.append(entry)
        data = {
            "error": {
                "type": error.__class__.__name__,
                "message": error.message,
                "rule": error.rule,
                "failing_step_index": error.step_index,
            },
            "traceback": frames_json,
        }
        return json.dumps(data, indent=2)
