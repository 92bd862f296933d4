"""Restricted arithmetic evaluation of KPI formulas.

Formulas reference entity variable codes as free identifiers, e.g.
``(engagements / impressions) * 100``. Evaluation substitutes every identifier
with its value (absent codes become 0), then parses what remains with a
recursive-descent parser that only understands numeric literals, the four
basic operators, unary plus/minus and parentheses. Nothing is ever handed to
``eval``.

Grammar (standard precedence, left associative):

    expr    := term (("+" | "-") term)*
    term    := unary (("*" | "/") unary)*
    unary   := ("+" | "-") unary | primary
    primary := NUMBER | "(" expr ")"
"""

from __future__ import annotations

import math
import re
from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal
from enum import StrEnum
from typing import Final

IDENTIFIER_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"\b[A-Za-z_][A-Za-z0-9_]*\b", re.ASCII
)

_TOKEN_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"\s*(?:(?P<number>\d+(?:\.\d*)?|\.\d+)|(?P<op>[-+*/()]))"
)

MAX_NESTING_DEPTH: Final[int] = 100


class EvaluationErrorKind(StrEnum):
    """Why a formula could not be evaluated."""

    SYNTAX_ERROR = "SYNTAX_ERROR"
    DIVIDE_BY_ZERO = "DIVIDE_BY_ZERO"
    NON_FINITE_RESULT = "NON_FINITE_RESULT"


class EvaluationError(Exception):
    """Raised when a formula is malformed or cannot produce a finite number."""

    def __init__(
        self,
        kind: EvaluationErrorKind,
        message: str,
        formula: str,
        position: int | None = None,
    ) -> None:
        self.kind = kind
        self.formula = formula
        self.position = position
        location = f" at position {position}" if position is not None else ""
        super().__init__(f"{kind.value}: {message}{location} in '{formula}'")


@dataclass(frozen=True)
class _Token:
    kind: str  # "number", "op" or "end"
    text: str
    position: int


def normalize_formula(formula: str) -> str:
    """Strip surrounding whitespace and trailing ';' statement terminators."""
    return formula.strip().rstrip(";").strip()


def _render_literal(value: float) -> str:
    # Positional notation only; the tokenizer has no exponent syntax.
    return format(Decimal(repr(float(value))), "f")


def substitute(formula: str, values_by_code: Mapping[str, float]) -> str:
    """Replace every identifier in the formula with its value.

    Codes missing from values_by_code are replaced with ``0``.
    """

    def replace(match: re.Match[str]) -> str:
        code = match.group(0)
        if code in values_by_code:
            return _render_literal(values_by_code[code])
        return "0"

    return IDENTIFIER_PATTERN.sub(replace, formula)


def referenced_codes(formula: str) -> list[str]:
    """Identifiers referenced by a formula, in first-occurrence order."""
    seen: dict[str, None] = {}
    for match in IDENTIFIER_PATTERN.finditer(formula):
        seen.setdefault(match.group(0), None)
    return list(seen)


def _tokenize(expression: str, formula: str) -> list[_Token]:
    tokens: list[_Token] = []
    pos = 0
    length = len(expression)
    while pos < length:
        if expression[pos:].strip() == "":
            break
        match = _TOKEN_PATTERN.match(expression, pos)
        if match is None:
            offset = pos + (len(expression[pos:]) - len(expression[pos:].lstrip()))
            raise EvaluationError(
                EvaluationErrorKind.SYNTAX_ERROR,
                f"unsupported character '{expression[offset]}'",
                formula,
                offset,
            )
        kind = "number" if match.group("number") is not None else "op"
        tokens.append(_Token(kind, match.group(kind), match.start(kind)))
        pos = match.end()
    tokens.append(_Token("end", "", length))
    return tokens


class _Parser:
    """Recursive-descent parser that evaluates as it parses."""

    def __init__(self, tokens: list[_Token], formula: str) -> None:
        self._tokens = tokens
        self._index = 0
        self._depth = 0
        self._formula = formula

    def parse(self) -> float:
        value = self._expr()
        token = self._peek()
        if token.kind != "end":
            raise self._syntax_error(f"unexpected '{token.text}'", token)
        return value

    def _peek(self) -> _Token:
        return self._tokens[self._index]

    def _advance(self) -> _Token:
        token = self._tokens[self._index]
        self._index += 1
        return token

    def _syntax_error(self, message: str, token: _Token) -> EvaluationError:
        return EvaluationError(
            EvaluationErrorKind.SYNTAX_ERROR, message, self._formula, token.position
        )

    def _expr(self) -> float:
        value = self._term()
        while self._peek().text in ("+", "-"):
            op = self._advance().text
            right = self._term()
            value = value + right if op == "+" else value - right
        return value

    def _term(self) -> float:
        value = self._unary()
        while self._peek().text in ("*", "/"):
            op = self._advance()
            right = self._unary()
            if op.text == "*":
                value = value * right
            else:
                if right == 0:
                    raise EvaluationError(
                        EvaluationErrorKind.DIVIDE_BY_ZERO,
                        "division by zero",
                        self._formula,
                        op.position,
                    )
                value = value / right
        return value

    def _unary(self) -> float:
        token = self._peek()
        if token.text in ("+", "-"):
            self._advance()
            self._enter(token)
            try:
                operand = self._unary()
            finally:
                self._depth -= 1
            return -operand if token.text == "-" else operand
        return self._primary()

    def _primary(self) -> float:
        token = self._advance()
        if token.kind == "number":
            return float(token.text)
        if token.text == "(":
            self._enter(token)
            try:
                value = self._expr()
            finally:
                self._depth -= 1
            closing = self._advance()
            if closing.text != ")":
                raise self._syntax_error("unbalanced parentheses", closing)
            return value
        if token.kind == "end":
            raise self._syntax_error("unexpected end of expression", token)
        raise self._syntax_error(f"unexpected '{token.text}'", token)

    def _enter(self, token: _Token) -> None:
        self._depth += 1
        if self._depth > MAX_NESTING_DEPTH:
            raise self._syntax_error("expression nested too deeply", token)


def evaluate_arithmetic(expression: str, formula: str | None = None) -> float:
    """Evaluate an identifier-free arithmetic expression.

    Args:
        expression: Numeric literals, + - * / and parentheses only.
        formula: Original formula text used in error messages.

    Raises:
        EvaluationError: On syntax errors, division by zero or a non-finite result.
    """
    source = formula if formula is not None else expression
    if not expression.strip():
        raise EvaluationError(EvaluationErrorKind.SYNTAX_ERROR, "empty formula", source)

    result = _Parser(_tokenize(expression, source), source).parse()
    if not math.isfinite(result):
        raise EvaluationError(
            EvaluationErrorKind.NON_FINITE_RESULT,
            f"formula evaluated to {result}",
            source,
        )
    return result


def evaluate(formula: str, values_by_code: Mapping[str, float]) -> float:
    """Evaluate a formula over named variable values.

    Args:
        formula: Arithmetic formula referencing variable codes.
        values_by_code: Variable code -> numeric value. Absent codes evaluate to 0.

    Returns:
        The resulting float.

    Raises:
        EvaluationError: SYNTAX_ERROR for malformed formulas, DIVIDE_BY_ZERO when a
            divisor is zero, NON_FINITE_RESULT when the result overflows.
    """
    normalized = normalize_formula(formula)
    return evaluate_arithmetic(substitute(normalized, values_by_code), formula)
