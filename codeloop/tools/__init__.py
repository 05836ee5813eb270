"""
codeloop Tools Package

Available tools:
- internal:files: read, list and search files inside the workspace
"""

from .files import register_file_tools
from .registry import ToolDefinition, ToolRegistry
from .workspace import WorkspaceSecurity

__all__ = [
    "ToolDefinition",
    "ToolRegistry",
    "WorkspaceSecurity",
    "register_file_tools",
]
