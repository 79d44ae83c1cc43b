"""Tool execution backends."""

from .base import ToolResult, ToolRunner
from .inprocess import InProcessToolRunner
from .local import LocalToolRunner

__all__ = ["InProcessToolRunner", "LocalToolRunner", "ToolResult", "ToolRunner"]
