"""Calculator tool - safe arithmetic evaluation."""

from __future__ import annotations

import ast
import math
import operator
import re
from typing import Any, Dict, Union

from .base import BaseTool, ToolResult

SAFE_EXPRESSION = r"^[0-9+\-*/().\s^]+$"
_SAFE_RE = re.compile(SAFE_EXPRESSION)
_MAX_EXPONENT = 1000

Number = Union[int, float]

_BINARY_OPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.Pow: operator.pow,
}
_UNARY_OPS = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}


def _evaluate(node: ast.AST) -> Number:
    if isinstance(node, ast.Expression):
        return _evaluate(node.body)
    if isinstance(node, ast.Constant) and isinstance(node.value, (int, float)) and not isinstance(node.value, bool):
        return node.value
    if isinstance(node, ast.BinOp) and type(node.op) in _BINARY_OPS:
        left = _evaluate(node.left)
        right = _evaluate(node.right)
        if isinstance(node.op, ast.Pow) and abs(right) > _MAX_EXPONENT:
            raise ValueError("Exponent too large")
        return _BINARY_OPS[type(node.op)](left, right)
    if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPS:
        return _UNARY_OPS[type(node.op)](_evaluate(node.operand))
    raise ValueError(f"Unsupported expression element: {type(node).__name__}")


def evaluate_expression(expression: str) -> Number:
    """Evaluate an arithmetic expression; ``^`` is exponentiation."""
    if not _SAFE_RE.match(expression):
        raise ValueError("Expression contains invalid characters")
    tree = ast.parse(expression.replace("^", "**"), mode="eval")
    result = _evaluate(tree)
    # A negative base with a fractional exponent yields a complex number
    if not isinstance(result, (int, float)):
        raise ValueError("Result is not a finite number")
    if isinstance(result, float):
        if not math.isfinite(result):
            raise ValueError("Result is not a finite number")
        if result.is_integer():
            return int(result)
    return result


class CalculatorTool(BaseTool):
    """Performs arithmetic with +, -, *, /, ^ and parentheses."""

    name = "calculator"
    description = (
        "Perform mathematical calculations. Supports +, -, *, /, ^ (power) and parentheses. "
        "Example: (2 + 3) * 4"
    )
    parameters: Dict[str, Any] = {
        "type": "object",
        "properties": {
            "expression": {
                "type": "string",
                "description": "Mathematical expression to evaluate",
                "pattern": SAFE_EXPRESSION,
            },
        },
        "required": ["expression"],
    }

    async def execute_tool(self, arguments: Dict[str, Any]) -> ToolResult:
        expression = str(arguments.get("expression", "")).strip()
        if not expression:
            return ToolResult.fail("Expression is required")
        try:
            result = evaluate_expression(expression)
        except ZeroDivisionError:
            return ToolResult.fail("Calculation error: division by zero")
        except (SyntaxError, ValueError, OverflowError) as e:
            return ToolResult.fail(f"Calculation error: {e}")
        return ToolResult.ok({"result": result, "expression": expression})
