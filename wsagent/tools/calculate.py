"""Arithmetic calculation tool.

Expressions are parsed by a small recursive-descent parser that only knows
numbers, ``+ - * /``, unary signs and parentheses. Nothing is evaluated as
code.
"""

import math
import re
from typing import Any

from pydantic import BaseModel, Field

from wsagent.tools.base import ToolDefinition

MAX_EXPRESSION_LENGTH = 1000
MAX_NESTING_DEPTH = 100

_TOKEN_PATTERN = re.compile(r"\s*(?:(\d+(?:\.\d*)?|\.\d+)|(\S))")

Number = int | float


class CalculationError(ValueError):
    """The expression is malformed or cannot be evaluated."""


class CalculateInput(BaseModel):
    """Input schema for the calculate tool."""

    expression: str = Field(
        ...,
        min_length=1,
        max_length=MAX_EXPRESSION_LENGTH,
        description='Arithmetic expression using numbers, + - * / and parentheses (e.g., "2 + 2", "(3 + 4) * 2")',
        examples=["2 + 2", "(3 + 4) * 2", "10 / 4"],
    )


def _tokenize(expression: str) -> list[str]:
    tokens: list[str] = []
    position = 0
    expression = expression.rstrip()

    while position < len(expression):
        match = _TOKEN_PATTERN.match(expression, position)
        if match is None:
            break
        number, symbol = match.groups()
        if symbol is not None and symbol not in "+-*/()":
            raise CalculationError(f"Unexpected character '{symbol}'")
        tokens.append(number if number is not None else symbol)
        position = match.end()

    if not tokens:
        raise CalculationError("Empty expression")
    return tokens


class _Parser:
    def __init__(self, tokens: list[str]):
        self.tokens = tokens
        self.position = 0
        self.depth = 0

    def peek(self) -> str | None:
        return self.tokens[self.position] if self.position < len(self.tokens) else None

    def take(self) -> str:
        token = self.peek()
        if token is None:
            raise CalculationError("Unexpected end of expression")
        self.position += 1
        return token

    def parse(self) -> Number:
        value = self.expression()
        if self.peek() is not None:
            raise CalculationError(f"Unexpected token '{self.peek()}'")
        return value

    def expression(self) -> Number:
        value = self.term()
        while self.peek() in ("+", "-"):
            if self.take() == "+":
                value = value + self.term()
            else:
                value = value - self.term()
        return value

    def term(self) -> Number:
        value = self.factor()
        while self.peek() in ("*", "/"):
            operator = self.take()
            operand = self.factor()
            if operator == "*":
                value = value * operand
            elif operand == 0:
                raise CalculationError("Division by zero")
            else:
                value = value / operand
        return value

    def factor(self) -> Number:
        token = self.peek()
        if token in ("+", "-"):
            self.take()
            self._enter()
            value = self.factor()
            self.depth -= 1
            return value if token == "+" else -value
        return self.primary()

    def primary(self) -> Number:
        token = self.take()
        if token == "(":
            self._enter()
            value = self.expression()
            if self.take() != ")":
                raise CalculationError("Expected ')'")
            self.depth -= 1
            return value
        if token in "+-*/)":
            raise CalculationError(f"Unexpected token '{token}'")
        return float(token) if "." in token else int(token)

    def _enter(self) -> None:
        self.depth += 1
        if self.depth > MAX_NESTING_DEPTH:
            raise CalculationError("Expression is nested too deeply")


def evaluate(expression: str) -> Number:
    """Evaluate an arithmetic expression.

    Raises:
        CalculationError: If the expression is invalid
    """
    if len(expression) > MAX_EXPRESSION_LENGTH:
        raise CalculationError("Expression is too long")

    try:
        result = _Parser(_tokenize(expression)).parse()
    except OverflowError as e:
        raise CalculationError("Result is too large") from e

    if isinstance(result, float) and not math.isfinite(result):
        raise CalculationError("Result is not a finite number")

    if isinstance(result, float) and result.is_integer():
        return int(result)
    return result


def create_calculate_tool() -> ToolDefinition:
    async def calculate_handler(params: CalculateInput) -> dict[str, Any]:  # noqa: RUF029
        return {"expression": params.expression, "result": evaluate(params.expression)}

    return ToolDefinition(
        name="calculate",
        description="Perform mathematical calculations",
        input_schema_class=CalculateInput,
        handler=calculate_handler,
    )
