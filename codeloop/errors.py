"""
Structured errors for codeloop.

Every error raised by the engine or one of its collaborators carries a
machine-readable code so callers can match on it instead of parsing
messages.
"""

from typing import Any, Optional

# Query validation
INVALID_QUERY = "INVALID_QUERY"
EMPTY_QUERY = "EMPTY_QUERY"
QUERY_TOO_LONG = "QUERY_TOO_LONG"

# Workflow state machine
STEP_NOT_FOUND = "STEP_NOT_FOUND"
STEP_NOT_RUNNING = "STEP_NOT_RUNNING"
MAX_DEPTH_EXCEEDED = "MAX_DEPTH_EXCEEDED"
WORKFLOW_INTERRUPTED = "WORKFLOW_INTERRUPTED"
INVALID_CHILD_CONTEXT = "INVALID_CHILD_CONTEXT"
CHECKPOINT_MISMATCH = "CHECKPOINT_MISMATCH"

# Engine / LLM
ORCHESTRATION_ERROR = "ORCHESTRATION_ERROR"
LLM_REQUEST_FAILED = "LLM_REQUEST_FAILED"

# Tool registry
TOOL_NOT_FOUND = "TOOL_NOT_FOUND"
AMBIGUOUS_TOOL_NAME = "AMBIGUOUS_TOOL_NAME"
TOOL_ALREADY_EXISTS = "TOOL_ALREADY_EXISTS"
TOOL_VALIDATION_ERROR = "TOOL_VALIDATION_ERROR"
TOOL_EXECUTION_ERROR = "TOOL_EXECUTION_ERROR"

# Workspace security
PATH_OUTSIDE_WORKSPACE = "PATH_OUTSIDE_WORKSPACE"
FORBIDDEN_PATH = "FORBIDDEN_PATH"


class AgentError(Exception):
    """Base error with a code, optional context, and a retry hint."""

    def __init__(
        self,
        message: str,
        code: str,
        context: Optional[dict[str, Any]] = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.context = context or {}
        self.retryable = retryable

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON output."""
        return {
            "name": type(self).__name__,
            "message": self.message,
            "code": self.code,
            "context": self.context,
            "retryable": self.retryable,
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


class WorkflowError(AgentError):
    """Raised when a workflow state method is called in violation of its contract."""


class ToolError(AgentError):
    """Raised by tool handlers; the registry turns it into a failed ToolResult."""


class SecurityError(ToolError):
    """Raised when a path escapes the workspace or hits a forbidden pattern."""
