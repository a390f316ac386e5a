"""Tool contract: declarations offered to the model and their dispatch."""

from chatledger.tools.dispatcher import ToolContext, ToolDispatcher
from chatledger.tools.schemas import TOOL_DECLARATIONS, tool_declarations

__all__ = [
    "TOOL_DECLARATIONS",
    "ToolContext",
    "ToolDispatcher",
    "tool_declarations",
]
