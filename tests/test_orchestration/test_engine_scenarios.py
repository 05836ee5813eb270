"""
End-to-end engine scenarios against a real workspace.

The LLM is scripted; the registry, file tools, workflow state and context
manager are the real implementations.
"""

from codeloop.llm_call import LLMResponse, ToolCall
from codeloop.orchestration.engine import Engine, EngineOptions
from codeloop.orchestration.workflow_state import StepStatus, WorkflowStatus


def _tool_call(name, **arguments):
    return LLMResponse(text="", tool_calls=[ToolCall(name=name, arguments=arguments)])


class TestShowPackageJson:
    """'show me package.json' reads the file once and answers."""

    def test_scenario(self, make_llm, registry, security, workspace):
        llm = make_llm(
            _tool_call("internal:files", operation="read", path="package.json"),
            LLMResponse(text="This is demo-app version 1.2.3."),
        )
        engine = Engine(llm, registry, security, EngineOptions(str(workspace)))

        response = engine.process_query("show me package.json")

        assert response.complete is True
        assert response.response_text == "This is demo-app version 1.2.3."
        assert response.tools_executed == ["internal:files"]
        assert len(llm.calls) == 2

        steps = response.workflow.steps
        assert len(steps) == 1
        assert steps[0].status == StepStatus.COMPLETED
        assert steps[0].arguments == {"operation": "read", "path": "package.json"}
        assert response.workflow.status == WorkflowStatus.COMPLETED

        tool_message = llm.calls[1]["messages"][-1]
        assert tool_message["role"] == "user"
        assert "**package.json**" in tool_message["content"]
        assert '"name": "demo-app"' in tool_message["content"]


class TestFailingReadThenList:
    """A failed read followed by a successful list still yields an answer."""

    def test_scenario(self, make_llm, registry, security, workspace):
        llm = make_llm(
            _tool_call("internal:files", operation="read", path="non-existent-file.txt"),
            _tool_call("internal:files", operation="list", path="."),
            LLMResponse(text="That file does not exist; here is what does."),
        )
        statuses = []
        engine = Engine(
            llm,
            registry,
            security,
            EngineOptions(
                str(workspace),
                on_tool_execution=lambda name, args, result: statuses.append(
                    current[0].status
                ),
                on_workflow_start=lambda workflow: current.append(workflow),
            ),
        )
        current = []

        response = engine.process_query("read non-existent-file.txt then list files")

        assert response.complete is True
        assert [r.success for r in response.tool_results] == [False, True]
        assert "File not found: non-existent-file.txt" in response.tool_results[0].error

        workflow = response.workflow
        assert statuses[0] == WorkflowStatus.FAILED
        assert [s.status for s in workflow.steps] == [StepStatus.FAILED, StepStatus.COMPLETED]
        assert len(workflow.errors) == 1
        assert workflow.get_summary().status == WorkflowStatus.FAILED

        error_message = llm.calls[1]["messages"][-1]["content"]
        assert "Error in internal:files: File not found" in error_message
        listing_message = llm.calls[2]["messages"][-1]["content"]
        assert "**Files in .**" in listing_message
        assert "2 .json files" in listing_message


class TestWorkspaceBoundaries:
    """Security failures surface as tool errors the model can react to."""

    def test_path_outside_workspace(self, make_llm, registry, security, workspace):
        llm = make_llm(
            _tool_call("internal:files", operation="read", path="../../etc/passwd"),
            LLMResponse(text="I can't read that."),
        )
        engine = Engine(llm, registry, security, EngineOptions(str(workspace)))

        response = engine.process_query("read /etc/passwd")

        assert response.complete is True
        assert response.tool_results[0].success is False
        assert "outside the workspace" in response.tool_results[0].error

    def test_forbidden_env_file(self, make_llm, registry, security, workspace):
        llm = make_llm(
            _tool_call("internal:files", operation="read", path=".env"),
            LLMResponse(text="That file is off limits."),
        )
        engine = Engine(llm, registry, security, EngineOptions(str(workspace)))

        response = engine.process_query("show me .env")

        assert response.tool_results[0].success is False
        assert "forbidden" in response.tool_results[0].error
