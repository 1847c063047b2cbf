"""Tool system for Mediabot."""

from .base import BaseToolset, ExecutionContext, HistoryPolicy, ParameterSpec, ToolDeclaration
from .registry import ToolRegistry

__all__ = [
    "BaseToolset",
    "ExecutionContext",
    "HistoryPolicy",
    "ParameterSpec",
    "ToolDeclaration",
    "ToolRegistry",
]
