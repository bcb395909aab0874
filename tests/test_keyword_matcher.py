"""Tests for boolean keyword expressions."""

import pytest

from dialogue_memory.keyword_matcher import evaluate


@pytest.mark.parametrize(
    "expression, context, expected",
    [
        ("fire", "A FIRE broke out", (True, 1)),
        ("flood", "A fire broke out", (False, 0)),
        ("fire|flood", "a flood and a fire", (True, 2)),
        ("fire&night", "a fire at night", (True, 2)),
        ("fire&night", "a fire at noon", (False, 0)),
        ("(fire|flood)&night", "flood at night", (True, 2)),
        ("(fire|flood)&night", "flood at noon", (False, 0)),
        ("fire|flood&night", "fire at noon", (True, 1)),
        ("(战斗|受伤) & 紧急", "他在战斗中紧急撤退", (True, 2)),
    ],
)
def test_evaluate(expression, context, expected):
    assert evaluate(expression, context) == expected


def test_and_binds_tighter_than_or():
    assert evaluate("a&b|c", "only c here")[0]
    assert not evaluate("a&(b|c)", "only c here")[0]


def test_blank_inputs():
    assert evaluate("", "text") == (False, 0)
    assert evaluate("fire", "   ") == (False, 0)


def test_nested_parentheses():
    assert evaluate("((raid))", "the raid began")[0]
    assert evaluate("(a|(b&c))", "b and c")[0]
