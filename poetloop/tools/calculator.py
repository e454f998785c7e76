"""
Calculator tool: arithmetic the model should not do in its head.

Parses the expression with ast and walks it, allowing only numeric
constants and the operators in _OPERATORS. Errors come back as text so
the model can read them.
"""

import ast
import logging
import operator

logger = logging.getLogger(__name__)

_OPERATORS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
    ast.USub: operator.neg,
    ast.UAdd: operator.pos,
}

# Keeps 9**9**9 from pinning a core.
_MAX_EXPONENT = 1000


def _evaluate(node):
    if isinstance(node, ast.Expression):
        return _evaluate(node.body)
    if isinstance(node, ast.Constant) and isinstance(node.value, (int, float)) \
            and not isinstance(node.value, bool):
        return node.value
    if isinstance(node, ast.BinOp) and type(node.op) in _OPERATORS:
        left, right = _evaluate(node.left), _evaluate(node.right)
        if isinstance(node.op, ast.Pow) and abs(right) > _MAX_EXPONENT:
            raise ValueError(f"Exponent {right} too large")
        return _OPERATORS[type(node.op)](left, right)
    if isinstance(node, ast.UnaryOp) and type(node.op) in _OPERATORS:
        return _OPERATORS[type(node.op)](_evaluate(node.operand))
    raise ValueError(f"Unsupported expression: {type(node).__name__}")


class CalculatorTool:
    """Safe math expression evaluator."""

    name = "calculator"
    description = "Evaluate an arithmetic expression, e.g. '(3 + 4) * 2' or '2^10'."
    parameters = {
        "type": "object",
        "properties": {
            "expression": {"type": "string", "description": "Arithmetic expression"},
        },
        "required": ["expression"],
    }
    input_param = "expression"

    def run(self, expression: str) -> str:
        cleaned = (
            expression.strip()
            .replace("^", "**")
            .replace("×", "*")
            .replace("÷", "/")
        )
        try:
            result = _evaluate(ast.parse(cleaned, mode="eval"))
            if isinstance(result, float) and result.is_integer():
                result = int(result)
            # str() of a huge int raises ValueError past the digit limit
            return f"{cleaned} = {result}"
        except (ValueError, SyntaxError, TypeError, ZeroDivisionError, OverflowError) as e:
            logger.debug("Calculator failed for '%s': %s", expression, e)
            return f"Could not evaluate '{expression}': {e}"
