"""
Orchestration: the engine loop, workflow state and context management.
"""

from .context_manager import ContextManager, ConversationMemory
from .engine import Engine, EngineOptions, EngineResponse, EngineStatus
from .extraction import classify, get_strategy
from .tool_defs import build_final_answer_prompt, build_system_prompt, build_tool_definitions
from .workflow_state import (
    RollbackEntry,
    Step,
    StepStatus,
    WorkflowCheckpoint,
    WorkflowContext,
    WorkflowState,
    WorkflowStatus,
    WorkflowSummary,
)

__all__ = [
    "ContextManager",
    "ConversationMemory",
    "Engine",
    "EngineOptions",
    "EngineResponse",
    "EngineStatus",
    "classify",
    "get_strategy",
    "build_final_answer_prompt",
    "build_system_prompt",
    "build_tool_definitions",
    "RollbackEntry",
    "Step",
    "StepStatus",
    "WorkflowCheckpoint",
    "WorkflowContext",
    "WorkflowState",
    "WorkflowStatus",
    "WorkflowSummary",
]
