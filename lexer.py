from __future__ import annotations
from dataclasses import dataclass
from typing import List


class EngError(Exception):
    """Base class for interpreter errors."""


@dataclass(frozen=True)
class Token:
    value: str
    is_string: bool
    column: int

    def is_word(self, word: str) -> bool:
        # Keywords only ever match bare words, never quoted text.
        return not self.is_string and self.value == word


MAX_TOKENS = 32
MAX_TOKEN_LENGTH = 63

WHITESPACE = " \t\r\n\f\v"


class Lexer:
    def __init__(
        self,
        text: str,
        *,
        max_tokens: int = MAX_TOKENS,
        max_token_length: int = MAX_TOKEN_LENGTH,
    ) -> None:
        self.text = text
        self.max_tokens = max_tokens
        self.max_token_length = max_token_length
        self.index = 0

    def tokenize(self) -> List[Token]:
        tokens: List[Token] = []
        tokens_append = tokens.append
        _advance = self._advance
        text = self.text
        n = len(text)

        while self.index < n and len(tokens) < self.max_tokens:
            ch: str = text[self.index]
            if ch in WHITESPACE:
                _advance()
                continue
            if ch == '"':
                tokens_append(self._consume_string())
                continue
            tokens_append(self._consume_word())
        return tokens

    def _consume_string(self) -> Token:
        col = self.index + 1
        self._advance()  # consume opening quote
        chars: List[str] = []
        text = self.text
        n = len(text)
        while self.index < n:
            ch = text[self.index]
            self._advance()
            if ch == '"':
                break
            chars.append(ch)
        # An unterminated literal runs to end of line.
        return Token("".join(chars)[: self.max_token_length], True, col)

    def _consume_word(self) -> Token:
        col = self.index + 1
        chars: List[str] = []
        text = self.text
        n = len(text)
        _advance = self._advance
        while self.index < n:
            ch = text[self.index]
            if ch in WHITESPACE:
                break
            chars.append(ch)
            _advance()
        return Token("".join(chars)[: self.max_token_length], False, col)

    def _advance(self) -> None:
        self.index += 1


def tokenize(line: str, *, max_tokens: int = MAX_TOKENS, max_token_length: int = MAX_TOKEN_LENGTH) -> List[Token]:
    return Lexer(line, max_tokens=max_tokens, max_token_length=max_token_length).tokenize()
