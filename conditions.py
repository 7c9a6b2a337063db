from __future__ import annotations
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from lexer import Token
from values import TYPE_TEXT, ZERO, Value, VariableLookup, as_number, as_text, resolve, resolve_word


# (words, operator, needs an operand word after the operator)
# Longest phrases first so "greater than or equal to" never reads as "greater than".
OPERATORS: List[Tuple[Tuple[str, ...], str, bool]] = [
    (("greater", "than", "or", "equal", "to"), ">=", False),
    (("less", "than", "or", "equal", "to"), "<=", False),
    (("greater", "than"), ">", True),
    (("less", "than"), "<", True),
    (("equal", "to"), "==", True),
    (("empty",), "empty", False),
    (("zero",), "zero", False),
]

_RELATIONAL: Dict[str, Callable[[float, float], bool]] = {
    ">": lambda a, b: a > b,
    "<": lambda a, b: a < b,
    ">=": lambda a, b: a >= b,
    "<=": lambda a, b: a <= b,
}


def _operand(tokens: Sequence[Token], variables: VariableLookup) -> Value:
    if not tokens:
        return ZERO
    if len(tokens) == 1:
        return resolve(tokens[0], variables)
    return resolve_word(" ".join(token.value for token in tokens), variables)


def _match_operator(words: Sequence[Token], start: int) -> Tuple[Optional[str], int]:
    count = len(words)
    for phrase, op, needs_operand in OPERATORS:
        end = start + len(phrase)
        if end > count:
            continue
        if needs_operand and end >= count:
            continue
        if all(words[start + i].is_word(word) for i, word in enumerate(phrase)):
            return op, end
    return None, start


def evaluate_condition(words: Sequence[Token], variables: VariableLookup) -> bool:
    """Evaluate ``<lhs> is [not] <operator> [<rhs>]``.

    A condition without a bare ``is`` word, or with fewer than three words,
    is false. An unrecognised operator yields false before negation.
    """
    if len(words) < 3:
        return False
    is_idx = next((i for i, word in enumerate(words) if word.is_word("is")), -1)
    if is_idx < 0:
        return False

    op_start = is_idx + 1
    negate = False
    if op_start < len(words) and words[op_start].is_word("not"):
        negate = True
        op_start += 1

    op, rhs_start = _match_operator(words, op_start)
    lhs_words = words[:is_idx]
    rhs_words = words[rhs_start:]

    result = False
    if op == "empty":
        lhs = _operand(lhs_words, variables)
        result = lhs.type == TYPE_TEXT and lhs.value == ""
    elif op == "zero":
        result = as_number(_operand(lhs_words, variables)) == 0
    elif op in _RELATIONAL:
        lhs = as_number(_operand(lhs_words, variables))
        rhs = as_number(_operand(rhs_words, variables))
        result = _RELATIONAL[op](lhs, rhs)
    elif op == "==":
        lhs_val = _operand(lhs_words, variables)
        rhs_val = _operand(rhs_words, variables)
        if lhs_val.type == TYPE_TEXT or rhs_val.type == TYPE_TEXT:
            result = as_text(lhs_val) == as_text(rhs_val)
        else:
            result = as_number(lhs_val) == as_number(rhs_val)

    return not result if negate else result
