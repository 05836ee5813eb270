"""
Data models for codeloop.
"""

from .config import (
    LLMBackend,
    LLMConfig,
    WorkspaceSecurityConfig,
    CommandSecurityConfig,
    SecurityConfig,
    EngineConfig,
    ContextSizeConfig,
    LoggingConfig,
    LangfuseConfig,
    AppConfig,
)
from .results import (
    ResultType,
    ToolResult,
    FileContent,
    FileEntry,
    FileListing,
    SearchMatch,
    SearchResults,
    ErrorPayload,
    AnalysisPayload,
    StructuredToolResult,
)

__all__ = [
    # Config models
    "LLMBackend",
    "LLMConfig",
    "WorkspaceSecurityConfig",
    "CommandSecurityConfig",
    "SecurityConfig",
    "EngineConfig",
    "ContextSizeConfig",
    "LoggingConfig",
    "LangfuseConfig",
    "AppConfig",
    # Result models
    "ResultType",
    "ToolResult",
    "FileContent",
    "FileEntry",
    "FileListing",
    "SearchMatch",
    "SearchResults",
    "ErrorPayload",
    "AnalysisPayload",
    "StructuredToolResult",
]
