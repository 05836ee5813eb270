"""Tests for the workflow state machine."""

import pytest

from codeloop.errors import (
    CHECKPOINT_MISMATCH,
    INVALID_CHILD_CONTEXT,
    MAX_DEPTH_EXCEEDED,
    STEP_NOT_FOUND,
    STEP_NOT_RUNNING,
    WorkflowError,
)
from codeloop.models import ToolResult
from codeloop.orchestration.workflow_state import (
    StepStatus,
    WorkflowState,
    WorkflowStatus,
)


def _ok(data=None):
    return ToolResult.ok("files", "internal", data or {"path": "a.txt", "content": "x"}, 1.0)


@pytest.fixture
def workflow(make_context):
    return WorkflowState("wf-test", make_context())


class TestStepLifecycle:
    """Tests for starting, completing and failing steps."""

    def test_new_workflow_is_initialized(self, workflow):
        """A fresh workflow has no steps and is initialized."""
        assert workflow.status == WorkflowStatus.INITIALIZED
        assert workflow.steps == []
        assert workflow.get_summary().total_steps == 0

    def test_start_step_sets_running(self, workflow):
        """Starting a step records it as running and moves the workflow to running."""
        step_id = workflow.start_step("Read file", "internal:files", {"operation": "read"})

        step = workflow.get_step(step_id)
        assert step.status == StepStatus.RUNNING
        assert step.tool_name == "internal:files"
        assert step.arguments == {"operation": "read"}
        assert workflow.status == WorkflowStatus.RUNNING

    def test_step_ids_are_unique(self, workflow):
        """Every started step gets a distinct id."""
        ids = {workflow.start_step(f"s{i}", "internal:files") for i in range(20)}
        assert len(ids) == 20

    def test_complete_all_steps_completes_workflow(self, workflow):
        """Completing every step completes the workflow and stores results."""
        first = workflow.start_step("one", "internal:files")
        second = workflow.start_step("two", "internal:files")
        workflow.complete_step(first, _ok())
        assert workflow.status == WorkflowStatus.RUNNING

        workflow.complete_step(second, _ok())

        assert workflow.status == WorkflowStatus.COMPLETED
        assert workflow.get_step_result(first).success is True
        step = workflow.get_step(second)
        assert step.end_time is not None
        assert step.duration >= 0

    def test_fail_step_fails_workflow(self, workflow):
        """A failed step records its error and fails the workflow."""
        step_id = workflow.start_step("read", "internal:files")
        workflow.fail_step(step_id, "File not found: x.txt")

        assert workflow.get_step(step_id).status == StepStatus.FAILED
        assert workflow.get_step(step_id).error == "File not found: x.txt"
        assert workflow.errors == ["File not found: x.txt"]
        assert workflow.status == WorkflowStatus.FAILED

    def test_fail_step_accepts_exception(self, workflow):
        """Exceptions are stored by their message."""
        step_id = workflow.start_step("read", "internal:files")
        workflow.fail_step(step_id, ValueError("bad input"))
        assert workflow.errors == ["bad input"]

    def test_failed_then_successful_step_settles_failed(self, workflow):
        """A later success does not erase an earlier failure."""
        bad = workflow.start_step("read", "internal:files")
        workflow.fail_step(bad, "File not found")
        good = workflow.start_step("list", "internal:files")
        assert workflow.status == WorkflowStatus.RUNNING

        workflow.complete_step(good, _ok())
        workflow.cleanup()

        assert workflow.status == WorkflowStatus.FAILED
        summary = workflow.get_summary()
        assert summary.completed_steps == 1
        assert summary.failed_steps == 1
        assert len(workflow.errors) == 1

    def test_unknown_step_raises(self, workflow):
        """Completing or failing an unknown step id raises and changes nothing."""
        done = workflow.start_step("one", "internal:files")
        workflow.complete_step(done, _ok())
        workflow.start_step("two", "internal:files")
        before = (workflow.steps, workflow.results, workflow.errors, workflow.status)
        statuses = [s.status for s in workflow.steps]

        with pytest.raises(WorkflowError) as exc_info:
            workflow.complete_step("step-404", _ok())
        assert exc_info.value.code == STEP_NOT_FOUND

        with pytest.raises(WorkflowError) as exc_info:
            workflow.fail_step("step-404", "boom")
        assert exc_info.value.code == STEP_NOT_FOUND

        assert (workflow.steps, workflow.results, workflow.errors, workflow.status) == before
        assert [s.status for s in workflow.steps] == statuses

    def test_completed_step_cannot_fail(self, workflow):
        """A finished step is never finished again."""
        step_id = workflow.start_step("read", "internal:files")
        workflow.complete_step(step_id, _ok())

        with pytest.raises(WorkflowError) as exc_info:
            workflow.fail_step(step_id, "late failure")

        assert exc_info.value.code == STEP_NOT_RUNNING
        assert exc_info.value.context["status"] == "completed"
        assert workflow.get_step(step_id).status == StepStatus.COMPLETED
        assert set(workflow.results) == {step_id}
        assert workflow.errors == []
        assert workflow.status == WorkflowStatus.COMPLETED

    def test_failed_step_cannot_complete(self, workflow):
        step_id = workflow.start_step("read", "internal:files")
        workflow.fail_step(step_id, "File not found")

        with pytest.raises(WorkflowError) as exc_info:
            workflow.complete_step(step_id, _ok())

        assert exc_info.value.code == STEP_NOT_RUNNING
        assert workflow.get_step(step_id).status == StepStatus.FAILED
        assert workflow.results == {}
        assert workflow.errors == ["File not found"]


class TestInterrupt:
    """Tests for interrupting a workflow."""

    def test_interrupt_stamps_running_steps(self, workflow):
        """Running steps become interrupted; finished steps are untouched."""
        done = workflow.start_step("one", "internal:files")
        workflow.complete_step(done, _ok())
        running = workflow.start_step("two", "internal:files")

        workflow.interrupt("user cancelled")

        assert workflow.is_interrupted
        assert workflow.interrupt_reason == "user cancelled"
        assert workflow.get_step(running).status == StepStatus.INTERRUPTED
        assert workflow.get_step(running).end_time is not None
        assert workflow.get_step(done).status == StepStatus.COMPLETED

    def test_interrupt_is_sticky(self, workflow):
        """Starting a step after an interrupt does not resume the workflow."""
        workflow.interrupt("stop")
        workflow.start_step("late", "internal:files")
        assert workflow.status == WorkflowStatus.INTERRUPTED

    def test_late_completion_of_interrupted_step_ignored(self, workflow):
        """A tool finishing after the interrupt leaves the step interrupted."""
        step_id = workflow.start_step("slow", "internal:files")
        workflow.interrupt("user pressed ctrl-c")
        end_time = workflow.get_step(step_id).end_time

        workflow.complete_step(step_id, _ok())

        step = workflow.get_step(step_id)
        assert step.status == StepStatus.INTERRUPTED
        assert step.end_time == end_time
        assert step.result is None
        assert workflow.results == {}
        assert workflow.status == WorkflowStatus.INTERRUPTED

    def test_late_failure_of_interrupted_step_ignored(self, workflow):
        step_id = workflow.start_step("slow", "internal:files")
        workflow.interrupt("stop")

        workflow.fail_step(step_id, "connection reset")

        assert workflow.get_step(step_id).status == StepStatus.INTERRUPTED
        assert workflow.errors == []
        assert workflow.status == WorkflowStatus.INTERRUPTED

    def test_step_started_after_interrupt_keeps_workflow_interrupted(self, workflow):
        workflow.interrupt("stop")
        late = workflow.start_step("late", "internal:files")

        workflow.complete_step(late, _ok())

        assert workflow.get_step(late).status == StepStatus.COMPLETED
        assert workflow.status == WorkflowStatus.INTERRUPTED


class TestCheckpoints:
    """Tests for checkpoint and rollback."""

    def test_checkpoint_holds_completed_steps_only(self, workflow):
        """Running and failed steps are not part of a checkpoint."""
        done = workflow.start_step("one", "internal:files")
        workflow.complete_step(done, _ok())
        workflow.start_step("two", "internal:files")

        checkpoint = workflow.create_checkpoint()

        assert [s.id for s in checkpoint.completed_steps] == [done]
        assert set(checkpoint.results) == {done}
        assert checkpoint.checkpoint_id.startswith("wf-test-")

    def test_checkpoint_is_isolated_from_later_changes(self, workflow):
        """Mutating live steps after a checkpoint leaves the snapshot intact."""
        done = workflow.start_step("one", "internal:files", {"path": "a"})
        workflow.complete_step(done, _ok())
        checkpoint = workflow.create_checkpoint()

        workflow.get_step(done).arguments["path"] = "changed"

        assert checkpoint.completed_steps[0].arguments == {"path": "a"}

    def test_rollback_discards_later_steps(self, workflow):
        """Rollback restores the checkpointed steps and logs the rollback."""
        first = workflow.start_step("one", "internal:files")
        workflow.complete_step(first, _ok())
        checkpoint = workflow.create_checkpoint()

        for name in ("two", "three"):
            step_id = workflow.start_step(name, "internal:files")
            workflow.fail_step(step_id, f"{name} failed")

        entry = workflow.rollback_to_checkpoint(checkpoint)

        assert [s.id for s in workflow.steps] == [first]
        assert set(workflow.results) == {first}
        assert workflow.errors == []
        assert entry.steps_rolled_back == 2
        assert entry.reason == "Rollback to checkpoint"
        assert entry.checkpoint_id == checkpoint.checkpoint_id
        assert workflow.rollback_history == [entry]

    def test_rollback_records_custom_reason(self, workflow):
        """Callers can say why they rolled back."""
        checkpoint = workflow.create_checkpoint()
        workflow.start_step("one", "internal:files")
        entry = workflow.rollback_to_checkpoint(checkpoint, reason="retry with new plan")
        assert entry.reason == "retry with new plan"

    def test_rollback_rejects_foreign_checkpoint(self, workflow, make_context):
        """A checkpoint from another workflow cannot be applied."""
        other = WorkflowState("wf-other", make_context(workflow_id="wf-other"))
        with pytest.raises(WorkflowError) as exc_info:
            workflow.rollback_to_checkpoint(other.create_checkpoint())
        assert exc_info.value.code == CHECKPOINT_MISMATCH

    def test_from_checkpoint_restores_workflow(self, workflow):
        """A workflow rebuilt from a checkpoint has the same completed steps."""
        done = workflow.start_step("one", "internal:files")
        workflow.complete_step(done, _ok())
        checkpoint = workflow.create_checkpoint()

        restored = WorkflowState.from_checkpoint(checkpoint)

        assert restored.id == workflow.id
        assert [s.id for s in restored.steps] == [done]
        assert restored.status == WorkflowStatus.COMPLETED
        assert restored.get_step_result(done) is checkpoint.results[done]


class TestChildWorkflows:
    """Tests for nested workflows."""

    def test_child_is_one_level_deeper(self, workflow):
        """A child created from the parent context sits at depth + 1."""
        child_context = workflow.context.child("wf-child", query="sub task")
        child = workflow.create_child_workflow("wf-child", child_context)

        assert child.depth == 1
        assert child.parent is workflow
        assert workflow.children == [child]
        assert child.context.parent_workflow_id == "wf-test"
        assert child.context.query == "sub task"

    def test_depth_limit_enforced(self, make_context):
        """Creating a child at max depth raises MAX_DEPTH_EXCEEDED."""
        root = WorkflowState("wf-0", make_context(workflow_id="wf-0", max_depth=2))
        child = root.create_child_workflow("wf-1", root.context.child("wf-1"))

        with pytest.raises(WorkflowError) as exc_info:
            child.create_child_workflow("wf-2", child.context.child("wf-2"))
        assert exc_info.value.code == MAX_DEPTH_EXCEEDED
        assert child.children == []

    def test_child_depth_must_follow_parent(self, workflow):
        """A child context that skips a level is rejected."""
        skipped = workflow.context.child("wf-a").child("wf-b")
        with pytest.raises(WorkflowError) as exc_info:
            workflow.create_child_workflow("wf-b", skipped)
        assert exc_info.value.code == INVALID_CHILD_CONTEXT


class TestMemory:
    """Tests for memory accounting and pruning."""

    def test_memory_usage_counts_steps_and_results(self, workflow):
        done = workflow.start_step("one", "internal:files")
        workflow.complete_step(done, _ok())
        workflow.start_step("two", "internal:files")

        usage = workflow.get_memory_usage()

        assert usage.steps_count == 2
        assert usage.results_size == 1
        assert usage.estimated_bytes > 0

    def test_cleanup_old_results_keeps_latest(self, workflow):
        """Only results of the last N steps survive."""
        ids = []
        for i in range(5):
            step_id = workflow.start_step(f"s{i}", "internal:files")
            workflow.complete_step(step_id, _ok())
            ids.append(step_id)

        removed = workflow.cleanup_old_results(2)

        assert removed == 3
        assert set(workflow.results) == set(ids[-2:])
        assert len(workflow.steps) == 5

    def test_summary_to_dict(self, workflow):
        step_id = workflow.start_step("one", "internal:files")
        workflow.complete_step(step_id, _ok())
        data = workflow.get_summary().to_dict()
        assert data["status"] == "completed"
        assert data["total_steps"] == 1
        assert data["duration"] >= 0
