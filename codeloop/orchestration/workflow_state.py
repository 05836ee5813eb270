"""
Per-query workflow state machine.

A WorkflowState records every tool invocation of a query as a Step and
tracks the aggregate status:

    initialized -> running -> completed | failed | interrupted

It also supports in-memory checkpoints, rollback to a checkpoint, and
nested child workflows bounded by a maximum depth.
"""

import copy
import itertools
import json
import logging
import time
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

from ..errors import (
    CHECKPOINT_MISMATCH,
    INVALID_CHILD_CONTEXT,
    MAX_DEPTH_EXCEEDED,
    STEP_NOT_FOUND,
    STEP_NOT_RUNNING,
    WorkflowError,
)
from ..models import SecurityConfig, ToolResult

if TYPE_CHECKING:
    from ..tools.registry import ToolRegistry


class StepStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    INTERRUPTED = "interrupted"


class WorkflowStatus(str, Enum):
    INITIALIZED = "initialized"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    INTERRUPTED = "interrupted"


def _now_ms() -> float:
    return time.time() * 1000


@dataclass(frozen=True)
class WorkflowContext:
    """Immutable environment for one query.

    Children receive their own shallow copy via ``child()``; the security
    policy and registry inside are treated as read-only.
    """

    working_directory: str
    security: SecurityConfig
    registry: Optional["ToolRegistry"]
    query: str
    request_id: str
    workflow_id: str
    depth: int = 0
    max_depth: int = 5
    parent_workflow_id: Optional[str] = None

    def child(self, workflow_id: str, query: Optional[str] = None) -> "WorkflowContext":
        """Context for a sub-workflow one level deeper than this one."""
        return replace(
            self,
            workflow_id=workflow_id,
            query=query if query is not None else self.query,
            depth=self.depth + 1,
            parent_workflow_id=self.workflow_id,
        )


@dataclass
class Step:
    """One recorded tool invocation."""

    id: str
    name: str
    tool_name: str
    arguments: dict[str, Any]
    status: StepStatus = StepStatus.RUNNING
    start_time: float = field(default_factory=_now_ms)
    end_time: Optional[float] = None
    duration: Optional[float] = None
    result: Optional[ToolResult] = None
    error: Optional[str] = None

    def _finish(self, status: StepStatus, at: Optional[float] = None) -> None:
        self.status = status
        self.end_time = at if at is not None else _now_ms()
        self.duration = max(0.0, self.end_time - self.start_time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "tool_name": self.tool_name,
            "arguments": self.arguments,
            "status": self.status.value,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "duration": self.duration,
            "result": self.result.to_dict() if self.result else None,
            "error": self.error,
        }


@dataclass(frozen=True)
class WorkflowCheckpoint:
    """Immutable snapshot of a workflow's completed state."""

    workflow_id: str
    status: WorkflowStatus
    completed_steps: tuple[Step, ...]
    results: dict[str, ToolResult]
    context: WorkflowContext
    created_at: float
    checkpoint_time: float

    @property
    def checkpoint_id(self) -> str:
        return f"{self.workflow_id}-{int(self.checkpoint_time)}"


@dataclass(frozen=True)
class RollbackEntry:
    timestamp: float
    reason: str
    steps_rolled_back: int
    checkpoint_id: str


@dataclass
class WorkflowSummary:
    id: str
    status: WorkflowStatus
    total_steps: int
    completed_steps: int
    failed_steps: int
    duration: float
    errors: list[str]
    created_at: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status.value,
            "total_steps": self.total_steps,
            "completed_steps": self.completed_steps,
            "failed_steps": self.failed_steps,
            "duration": self.duration,
            "errors": list(self.errors),
            "created_at": self.created_at,
        }


@dataclass
class MemoryUsage:
    steps_count: int
    results_size: int
    estimated_bytes: int


class WorkflowState:
    """Step tracking, checkpoint/rollback and child workflows for one query.

    A WorkflowState is owned by the engine invocation that created it and
    must not be shared across queries.
    """

    def __init__(
        self,
        workflow_id: str,
        context: WorkflowContext,
        parent: Optional["WorkflowState"] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.id = workflow_id
        self._context = context
        self._parent = parent
        self._children: list[WorkflowState] = []
        self._steps: list[Step] = []
        self._results: dict[str, ToolResult] = {}
        self._errors: list[str] = []
        self._rollback_history: list[RollbackEntry] = []
        self._interrupt_reason: Optional[str] = None
        self._step_counter = itertools.count(1)
        self.status = WorkflowStatus.INITIALIZED
        self.created_at = _now_ms()
        self.logger = logger or logging.getLogger(__name__)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def context(self) -> WorkflowContext:
        return self._context

    @property
    def depth(self) -> int:
        return self._context.depth

    @property
    def parent(self) -> Optional["WorkflowState"]:
        return self._parent

    @property
    def children(self) -> list["WorkflowState"]:
        return list(self._children)

    @property
    def steps(self) -> list[Step]:
        return list(self._steps)

    @property
    def results(self) -> dict[str, ToolResult]:
        return dict(self._results)

    @property
    def errors(self) -> list[str]:
        return list(self._errors)

    @property
    def rollback_history(self) -> list[RollbackEntry]:
        return list(self._rollback_history)

    @property
    def interrupt_reason(self) -> Optional[str]:
        return self._interrupt_reason

    @property
    def is_interrupted(self) -> bool:
        return self.status == WorkflowStatus.INTERRUPTED

    def get_step(self, step_id: str) -> Optional[Step]:
        for step in self._steps:
            if step.id == step_id:
                return step
        return None

    def get_step_result(self, step_id: str) -> Optional[ToolResult]:
        return self._results.get(step_id)

    def _require_step(self, step_id: str) -> Step:
        step = self.get_step(step_id)
        if step is None:
            raise WorkflowError(
                f"Step not found: {step_id}",
                STEP_NOT_FOUND,
                {"workflow_id": self.id, "step_id": step_id},
            )
        return step

    def _finishable_step(self, step_id: str) -> Optional[Step]:
        """Look up a step about to be finished.

        Returns None for a step already stamped by ``interrupt()``; the
        late completion or failure is dropped so the interrupt stands.
        """
        step = self._require_step(step_id)
        if step.status == StepStatus.INTERRUPTED:
            self.logger.debug(f"[{self.id}] Ignoring late finish of interrupted {step_id}")
            return None
        if step.status != StepStatus.RUNNING:
            raise WorkflowError(
                f"Step {step_id} is already {step.status.value}",
                STEP_NOT_RUNNING,
                {"workflow_id": self.id, "step_id": step_id, "status": step.status.value},
            )
        return step

    # ------------------------------------------------------------------
    # Step lifecycle
    # ------------------------------------------------------------------

    def start_step(self, name: str, tool_name: str, arguments: Optional[dict] = None) -> str:
        """Append a running step and return its id.

        Tool name and arguments are not validated here; the registry does
        that at execution time.
        """
        step_id = f"step-{next(self._step_counter)}-{uuid.uuid4().hex[:8]}"
        self._steps.append(
            Step(id=step_id, name=name, tool_name=tool_name, arguments=dict(arguments or {}))
        )
        if self.status != WorkflowStatus.INTERRUPTED:
            self.status = WorkflowStatus.RUNNING
        self.logger.debug(f"[{self.id}] Started {step_id}: {name} ({tool_name})")
        return step_id

    def complete_step(self, step_id: str, result: ToolResult) -> None:
        """Mark a step completed and store its result.

        An interrupted workflow keeps its status.

        Raises:
            WorkflowError: STEP_NOT_FOUND if the id is unknown,
                STEP_NOT_RUNNING if the step already completed or failed
        """
        step = self._finishable_step(step_id)
        if step is None:
            return
        step._finish(StepStatus.COMPLETED)
        step.result = result
        self._results[step_id] = result

        if self.status != WorkflowStatus.INTERRUPTED and all(
            s.status == StepStatus.COMPLETED for s in self._steps
        ):
            self.status = WorkflowStatus.COMPLETED
        self.logger.debug(f"[{self.id}] Completed {step_id} in {step.duration:.0f}ms")

    def fail_step(self, step_id: str, error: str | BaseException) -> None:
        """Mark a step failed, record the error, and fail the workflow.

        An interrupted workflow keeps its status.

        Raises:
            WorkflowError: STEP_NOT_FOUND if the id is unknown,
                STEP_NOT_RUNNING if the step already completed or failed
        """
        step = self._finishable_step(step_id)
        if step is None:
            return
        message = str(error)
        step._finish(StepStatus.FAILED)
        step.error = message
        self._errors.append(message)
        if self.status != WorkflowStatus.INTERRUPTED:
            self.status = WorkflowStatus.FAILED
        self.logger.debug(f"[{self.id}] Failed {step_id}: {message}")

    def interrupt(self, reason: str) -> None:
        """Interrupt the workflow, stamping every running step as interrupted."""
        at = _now_ms()
        for step in self._steps:
            if step.status == StepStatus.RUNNING:
                step._finish(StepStatus.INTERRUPTED, at)
        self.status = WorkflowStatus.INTERRUPTED
        self._interrupt_reason = reason
        self.logger.info(f"[{self.id}] Interrupted: {reason}")

    def cleanup(self) -> None:
        """Settle a workflow left in ``running`` at the end of a query."""
        if self.status == WorkflowStatus.RUNNING:
            self.status = self._derived_status()

    # ------------------------------------------------------------------
    # Summary
    # ------------------------------------------------------------------

    def _derived_status(self) -> WorkflowStatus:
        if self.status != WorkflowStatus.RUNNING:
            return self.status
        if any(s.status == StepStatus.FAILED for s in self._steps):
            return WorkflowStatus.FAILED
        if self._steps and all(s.status == StepStatus.COMPLETED for s in self._steps):
            return WorkflowStatus.COMPLETED
        return WorkflowStatus.RUNNING

    def get_summary(self) -> WorkflowSummary:
        return WorkflowSummary(
            id=self.id,
            status=self._derived_status(),
            total_steps=len(self._steps),
            completed_steps=sum(1 for s in self._steps if s.status == StepStatus.COMPLETED),
            failed_steps=sum(1 for s in self._steps if s.status == StepStatus.FAILED),
            duration=max(0.0, _now_ms() - self.created_at),
            errors=list(self._errors),
            created_at=self.created_at,
        )

    # ------------------------------------------------------------------
    # Checkpoints
    # ------------------------------------------------------------------

    def create_checkpoint(self) -> WorkflowCheckpoint:
        """Snapshot the completed steps, their results and the context."""
        completed = tuple(
            copy.deepcopy(s) for s in self._steps if s.status == StepStatus.COMPLETED
        )
        results = {s.id: s.result for s in completed if s.result is not None}
        checkpoint = WorkflowCheckpoint(
            workflow_id=self.id,
            status=self.status,
            completed_steps=completed,
            results=results,
            context=replace(self._context),
            created_at=self.created_at,
            checkpoint_time=_now_ms(),
        )
        self.logger.debug(
            f"[{self.id}] Checkpoint {checkpoint.checkpoint_id} "
            f"({len(completed)} completed steps)"
        )
        return checkpoint

    @classmethod
    def from_checkpoint(
        cls,
        checkpoint: WorkflowCheckpoint,
        context: Optional[WorkflowContext] = None,
        logger: Optional[logging.Logger] = None,
    ) -> "WorkflowState":
        """Rebuild a workflow from a checkpoint.

        The restored steps share result references with the checkpoint.
        """
        workflow = cls(checkpoint.workflow_id, context or checkpoint.context, logger=logger)
        workflow._restore(checkpoint)
        workflow.created_at = checkpoint.created_at
        return workflow

    def _restore(self, checkpoint: WorkflowCheckpoint) -> None:
        self._steps = [
            replace(s, arguments=dict(s.arguments)) for s in checkpoint.completed_steps
        ]
        self._results = dict(checkpoint.results)
        self._errors = []
        self.status = checkpoint.status
        if self.status != WorkflowStatus.INTERRUPTED:
            self._interrupt_reason = None

    def rollback_to_checkpoint(
        self, checkpoint: WorkflowCheckpoint, reason: str = "Rollback to checkpoint"
    ) -> RollbackEntry:
        """Discard everything recorded since the checkpoint.

        Raises:
            WorkflowError: CHECKPOINT_MISMATCH if the checkpoint belongs to
                another workflow
        """
        if checkpoint.workflow_id != self.id:
            raise WorkflowError(
                f"Checkpoint {checkpoint.checkpoint_id} does not belong to workflow {self.id}",
                CHECKPOINT_MISMATCH,
                {"workflow_id": self.id, "checkpoint_workflow_id": checkpoint.workflow_id},
            )

        discarded = max(0, len(self._steps) - len(checkpoint.completed_steps))
        self._restore(checkpoint)
        entry = RollbackEntry(
            timestamp=_now_ms(),
            reason=reason,
            steps_rolled_back=discarded,
            checkpoint_id=checkpoint.checkpoint_id,
        )
        self._rollback_history.append(entry)
        self.logger.info(
            f"[{self.id}] Rolled back {discarded} steps to {checkpoint.checkpoint_id}: {reason}"
        )
        return entry

    # ------------------------------------------------------------------
    # Children
    # ------------------------------------------------------------------

    def create_child_workflow(
        self, child_id: str, child_context: WorkflowContext
    ) -> "WorkflowState":
        """Create and link a sub-workflow.

        Raises:
            WorkflowError: MAX_DEPTH_EXCEEDED if the child context is at or
                past its max depth, INVALID_CHILD_CONTEXT if its depth is not
                exactly one deeper than this workflow
        """
        if child_context.depth >= child_context.max_depth:
            raise WorkflowError(
                f"Maximum workflow depth ({child_context.max_depth}) exceeded",
                MAX_DEPTH_EXCEEDED,
                {
                    "workflow_id": self.id,
                    "depth": child_context.depth,
                    "max_depth": child_context.max_depth,
                },
            )
        if child_context.depth != self.depth + 1:
            raise WorkflowError(
                f"Child depth {child_context.depth} must be parent depth {self.depth} + 1",
                INVALID_CHILD_CONTEXT,
                {"workflow_id": self.id, "depth": child_context.depth},
            )

        child = WorkflowState(child_id, child_context, parent=self, logger=self.logger)
        self._children.append(child)
        self.logger.debug(f"[{self.id}] Created child workflow {child_id} at depth {child.depth}")
        return child

    # ------------------------------------------------------------------
    # Memory
    # ------------------------------------------------------------------

    def get_memory_usage(self) -> MemoryUsage:
        results_bytes = sum(
            len(json.dumps(r.to_dict(), default=str)) for r in self._results.values()
        )
        steps_bytes = sum(
            len(json.dumps(s.to_dict(), default=str)) for s in self._steps
        )
        return MemoryUsage(
            steps_count=len(self._steps),
            results_size=len(self._results),
            estimated_bytes=results_bytes + steps_bytes,
        )

    def cleanup_old_results(self, keep_count: int) -> int:
        """Keep results only for the last ``keep_count`` steps by position.

        Returns:
            Number of results removed
        """
        keep_ids = {s.id for s in self._steps[-keep_count:]} if keep_count > 0 else set()
        stale = [step_id for step_id in self._results if step_id not in keep_ids]
        for step_id in stale:
            del self._results[step_id]
        if stale:
            self.logger.debug(f"[{self.id}] Pruned {len(stale)} old results")
        return len(stale)
