"""Built-in tools."""

from .ask_human import AskHumanTool
from .base import BaseTool, ToolResult
from .calculator import CalculatorTool

__all__ = [
    "AskHumanTool",
    "BaseTool",
    "CalculatorTool",
    "ToolResult",
]
