"""Boolean keyword expressions.

Syntax: ``|`` (or), ``&`` (and) and parentheses, with precedence
``()`` > ``&`` > ``|``. Leaves are case-insensitive substring tests.
An expression without operators is a single leaf, so plain keywords keep
working::

    >>> evaluate("(战斗|受伤) & 紧急", "他在战斗中紧急撤退")
    (True, 2)
"""

from __future__ import annotations


def evaluate(expression: str, context: str) -> tuple[bool, int]:
    """Match an expression against a context string.

    Args:
        expression: Keyword expression
        context: Text to search

    Returns:
        ``(matched, matched_leaf_count)``; ``(False, 0)`` for blank input
    """
    if not expression or not expression.strip() or not context or not context.strip():
        return False, 0

    expression = expression.strip()
    haystack = context.casefold()
    if not any(op in expression for op in "|&("):
        return _leaf(expression, haystack)
    return _parse_or(expression, haystack)


def _leaf(keyword: str, haystack: str) -> tuple[bool, int]:
    keyword = keyword.strip()
    if not keyword:
        return False, 0
    found = keyword.casefold() in haystack
    return found, 1 if found else 0


def _split(expression: str, operator: str) -> list[str]:
    """Split on ``operator`` at parenthesis depth zero."""
    parts: list[str] = []
    depth = 0
    start = 0
    for i, char in enumerate(expression):
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
        elif char == operator and depth == 0:
            parts.append(expression[start:i])
            start = i + 1
    parts.append(expression[start:])
    return parts


def _parse_or(expression: str, haystack: str) -> tuple[bool, int]:
    parts = _split(expression, "|")
    if len(parts) == 1:
        return _parse_and(expression, haystack)

    any_matched = False
    total = 0
    for part in parts:
        matched, count = _parse_and(part.strip(), haystack)
        if matched:
            any_matched = True
            total += count
    return any_matched, total


def _parse_and(expression: str, haystack: str) -> tuple[bool, int]:
    parts = _split(expression, "&")
    if len(parts) == 1:
        return _parse_primary(expression, haystack)

    total = 0
    for part in parts:
        matched, count = _parse_primary(part.strip(), haystack)
        if not matched:
            return False, 0
        total += count
    return True, total


def _is_wrapped(expression: str) -> bool:
    """True when the first ``(`` closes at the very last character."""
    if not (expression.startswith("(") and expression.endswith(")")):
        return False
    depth = 0
    for char in expression[:-1]:
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
        if depth == 0:
            return False
    return True


def _parse_primary(expression: str, haystack: str) -> tuple[bool, int]:
    expression = expression.strip()
    if _is_wrapped(expression):
        return _parse_or(expression[1:-1], haystack)
    return _leaf(expression, haystack)
