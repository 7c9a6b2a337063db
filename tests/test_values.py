import math

import pytest

from lexer import tokenize
from storage import Variables
from values import (
    TYPE_NUM,
    TYPE_TEXT,
    as_number,
    as_text,
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


@pytest.mark.parametrize(
    "literal,expected",
    [("3.5", 3.5), ("-2", -2.0), ("+4", 4.0), ("1e3", 1000.0), (".5", 0.5), ("5.", 5.0), ("0x10", 16.0)],
)
def test_parse_number_accepts_whole_numeric_tokens(literal, expected):
    assert parse_number(literal) == expected


@pytest.mark.parametrize("literal", ["abc", "12abc", "", "-", "1e", "0x"])
def test_parse_number_rejects_partial_numbers(literal):
    assert parse_number(literal) is None


def test_leading_number():
    assert leading_number("12abc") == 12.0
    assert leading_number("  7.5 apples") == 7.5
    assert leading_number("abc") == 0.0
    assert leading_number("") == 0.0


@pytest.mark.parametrize(
    "x,rendered",
    [(3.0, "3"), (3.5, "3.5"), (100000.0, "100000"), (0.1, "0.1"), (-2.0, "-2"), (1e20, "1e+20"), (0.0, "0"), (-0.0, "-0")],
)
def test_format_number_is_minimal(x, rendered):
    assert format_number(x) == rendered


def test_format_number_non_finite():
    assert format_number(math.inf) == "inf"
    assert format_number(-math.inf) == "-inf"
    assert format_number(math.nan) == "nan"


@pytest.mark.parametrize("x", [0.1, 1 / 3, 123456.789, -1e-7, 2.0 ** 60, 1e300])
def test_formatted_numbers_parse_back_exactly(x):
    assert parse_number(format_number(x)) == x


def test_projections():
    assert as_number(text("12")) == 0.0
    assert as_number(number(4)) == 4.0
    assert as_text(number(4)) == "4"
    assert as_text(text("hi")) == "hi"


def test_resolution_order():
    variables = Variables(capacity=8)
    variables.set("x", number(7))
    variables.set("5", text("never"))
    literal, numeric, var, word = tokenize('"x" 5 x unknown')

    assert resolve(literal, variables) == text("x")
    assert resolve(numeric, variables) == number(5)
    assert resolve(var, variables) == number(7)
    assert resolve(word, variables) == text("unknown")


def test_resolve_projections():
    variables = Variables(capacity=8)
    variables.set("name", text("bob"))
    name, value = tokenize("name 2.50")
    assert resolve_number(name, variables) == 0.0
    assert resolve_text(value, variables) == "2.5"
    assert resolve(name, variables).type == TYPE_TEXT
    assert resolve(value, variables).type == TYPE_NUM


def test_resolved_values_are_copies():
    variables = Variables(capacity=8)
    variables.set("a", number(1))
    token = tokenize("a")[0]
    before = resolve(token, variables)
    variables.set("a", number(2))
    assert before == number(1)


def test_truncate():
    assert truncate(3.9) == 3
    assert truncate(-3.9) == -3
    assert truncate(math.inf) == 0
    assert truncate(math.nan) == 0
