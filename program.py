from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from lexer import MAX_TOKEN_LENGTH, MAX_TOKENS, Token, tokenize


BLOCK_OPENERS: Tuple[str, ...] = ("if ", "while ", "repeat ", "define ", "for ")
BLOCK_CLOSER = "end "
COMMENT_PREFIXES: Tuple[str, ...] = ("#", "//")


@dataclass
class SourceLocation:
    file: str
    line: int
    statement: str


class Program:
    """Immutable, 0-indexed sequence of source lines with per-line token caching."""

    def __init__(
        self,
        lines: Sequence[str],
        filename: str = "<string>",
        *,
        max_tokens: int = MAX_TOKENS,
        max_token_length: int = MAX_TOKEN_LENGTH,
    ) -> None:
        self.filename = filename
        self._lines: Tuple[str, ...] = tuple(line.rstrip("\r\n") for line in lines)
        self._stripped: Tuple[str, ...] = tuple(line.strip() for line in self._lines)
        self._tokens: Dict[int, List[Token]] = {}
        self._locations: Dict[int, SourceLocation] = {}
        self._max_depth: Optional[int] = None
        self.max_tokens = max_tokens
        self.max_token_length = max_token_length

    @classmethod
    def from_source(cls, source: str, filename: str = "<string>", **kwargs: int) -> "Program":
        return cls(source.splitlines(), filename, **kwargs)

    def __len__(self) -> int:
        return len(self._lines)

    def text(self, index: int) -> str:
        return self._stripped[index]

    def is_blank_or_comment(self, index: int) -> bool:
        stripped = self._stripped[index]
        return stripped == "" or stripped.startswith(COMMENT_PREFIXES)

    def tokens(self, index: int) -> List[Token]:
        cached = self._tokens.get(index)
        if cached is None:
            cached = tokenize(
                self._stripped[index],
                max_tokens=self.max_tokens,
                max_token_length=self.max_token_length,
            )
            self._tokens[index] = cached
        return cached

    def location(self, index: int) -> SourceLocation:
        cached = self._locations.get(index)
        if cached is None:
            cached = SourceLocation(file=self.filename, line=index + 1, statement=self._stripped[index])
            self._locations[index] = cached
        return cached

    def opens_block(self, index: int) -> bool:
        if not self._stripped[index].startswith(BLOCK_OPENERS):
            return False
        return not is_inline_if(self.tokens(index))

    def max_block_depth(self) -> int:
        if self._max_depth is None:
            depth = deepest = 0
            for i in range(len(self._lines)):
                if self.opens_block(i):
                    depth += 1
                    deepest = max(deepest, depth)
                elif self._stripped[i].startswith(BLOCK_CLOSER):
                    depth = max(depth - 1, 0)
            self._max_depth = deepest
        return self._max_depth


def is_inline_if(tokens: Sequence[Token]) -> bool:
    """True for ``if <condition> then <statement> ...`` written on one line."""
    if not tokens or not tokens[0].is_word("if"):
        return False
    for i in range(1, len(tokens)):
        if tokens[i].is_word("then"):
            return i + 1 < len(tokens)
    return False


def find_end(program: Program, open_index: int, close_keyword: str) -> int:
    """Index of the line closing the block opened at ``open_index``.

    Returns ``len(program)`` when the block is never closed, so the rest of
    the program becomes the block body.
    """
    depth = 1
    for i in range(open_index + 1, len(program)):
        line = program.text(i)
        if program.opens_block(i):
            depth += 1
        if line.startswith(close_keyword) or line.startswith(BLOCK_CLOSER):
            depth -= 1
        if depth == 0:
            return i
    return len(program)


def find_otherwise(program: Program, open_index: int, end_index: int) -> Optional[int]:
    depth = 1
    for i in range(open_index + 1, end_index):
        line = program.text(i)
        if program.opens_block(i):
            depth += 1
        if line.startswith(BLOCK_CLOSER):
            depth -= 1
        if depth == 1 and line.startswith("otherwise"):
            return i
    return None


@dataclass(frozen=True)
class FunctionDef:
    name: str
    define_line: int
    start: int
    end: int
    params: Tuple[str, ...]


def parse_define(tokens: Sequence[Token], index: int, end: int, max_params: int) -> FunctionDef:
    as_idx = next((i for i in range(2, len(tokens)) if tokens[i].is_word("as")), -1)
    params: List[str] = []
    if as_idx > 0:
        param_start = 3 if tokens[2].is_word("with") else 2
        for token in tokens[param_start:as_idx]:
            if len(params) >= max_params:
                break
            params.append(token.value)
    return FunctionDef(
        name=tokens[1].value,
        define_line=index,
        start=index + 1,
        end=end,
        params=tuple(params),
    )


def is_define(tokens: Sequence[Token]) -> bool:
    return len(tokens) >= 3 and tokens[0].is_word("define")


@dataclass
class FunctionTable:
    entries: List[FunctionDef] = field(default_factory=list)
    _by_line: Dict[int, FunctionDef] = field(default_factory=dict)
    _by_name: Dict[str, FunctionDef] = field(default_factory=dict)

    @classmethod
    def collect(cls, program: Program, max_params: int = 8) -> "FunctionTable":
        """Pre-pass: register every ``define`` in program order."""
        table = cls()
        for i in range(len(program)):
            if program.is_blank_or_comment(i):
                continue
            tokens = program.tokens(i)
            if is_define(tokens):
                end = find_end(program, i, "end define")
                table.register(parse_define(tokens, i, end, max_params))
        return table

    def register(self, function: FunctionDef) -> FunctionDef:
        existing = self._by_line.get(function.define_line)
        if existing is not None:
            return existing
        self.entries.append(function)
        self._by_line[function.define_line] = function
        # First definition in declaration order wins; later duplicates are shadowed.
        self._by_name.setdefault(function.name, function)
        return function

    def lookup(self, name: str) -> Optional[FunctionDef]:
        return self._by_name.get(name)

    def at_line(self, index: int) -> Optional[FunctionDef]:
        return self._by_line.get(index)

    def __len__(self) -> int:
        return len(self.entries)

    def __contains__(self, name: str) -> bool:
        return self.lookup(name) is not None
