"""AI tool discovery, enablement and execution."""

from .builtin import SKIP_ITEM, SkipItemTool, register_builtin_tools
from .executor import ToolExecutor
from .manager import ToolManager
from .parameters import ToolContext, build_parameters
from .registry import ToolRegistry
from .result_finder import HANDLER_COMPLETE, TOOL_RESULT, ToolResultFinder

__all__ = [
    "HANDLER_COMPLETE",
    "SKIP_ITEM",
    "TOOL_RESULT",
    "SkipItemTool",
    "ToolContext",
    "ToolExecutor",
    "ToolManager",
    "ToolRegistry",
    "ToolResultFinder",
    "build_parameters",
    "register_builtin_tools",
]
