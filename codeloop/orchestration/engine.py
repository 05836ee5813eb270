"""
Orchestration engine: the query / tool-call / response loop.

Each ``process_query`` call:
    1. Validates the query
    2. Seeds [system, user] messages and a ConversationMemory
    3. Loops: ask the LLM; if it requests tools, run them in order as
       workflow steps, fold each result into memory and append its
       rendered text to the conversation
    4. Forces a tool-less final answer once the tool budget is spent

The engine never raises from ``process_query``: failures come back as a
response with ``complete=False`` and a single structured error.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from ..errors import (
    EMPTY_QUERY,
    INVALID_QUERY,
    ORCHESTRATION_ERROR,
    QUERY_TOO_LONG,
    WORKFLOW_INTERRUPTED,
    AgentError,
)
from ..llm_call import LLMClient, LLMResponse, ToolCall
from ..models import SecurityConfig, ToolResult
from ..tools.registry import ToolRegistry
from ..tracing import TracingClient, TracingContext
from .context_manager import ContextManager, ConversationMemory
from .tool_defs import build_final_answer_prompt, build_system_prompt, build_tool_definitions
from .workflow_state import WorkflowContext, WorkflowState, WorkflowSummary

MAX_QUERY_LENGTH = 10_000

# Longest argument / result preview written to debug logs
_PREVIEW_CHARS = 200


@dataclass
class EngineOptions:
    """Construction-time knobs for the engine."""

    working_directory: str
    enable_workflow_state: bool = True
    max_workflow_depth: int = 5
    max_tool_executions: int = 5
    enable_streaming: bool = False
    debug: bool = False
    results_keep_count: int = 20
    on_tool_execution: Optional[Callable[[str, dict, ToolResult], None]] = None
    on_workflow_start: Optional[Callable[[WorkflowState], None]] = None


@dataclass
class EngineResponse:
    """Result of one ``process_query`` call."""

    response_text: str
    tools_executed: list[str]
    tool_results: list[ToolResult]
    processing_time: float  # ms
    complete: bool
    errors: list[AgentError] = field(default_factory=list)
    workflow: Optional[WorkflowState] = None
    request_id: Optional[str] = None

    @property
    def workflow_summary(self) -> Optional[WorkflowSummary]:
        return self.workflow.get_summary() if self.workflow else None

    def to_dict(self) -> dict[str, Any]:
        summary = self.workflow_summary
        return {
            "request_id": self.request_id,
            "response_text": self.response_text,
            "tools_executed": list(self.tools_executed),
            "tool_results": [r.to_dict() for r in self.tool_results],
            "processing_time": round(self.processing_time, 2),
            "complete": self.complete,
            "errors": [e.to_dict() for e in self.errors],
            "workflow": summary.to_dict() if summary else None,
        }


@dataclass
class EngineStatus:
    """Health snapshot of the engine and its collaborators."""

    healthy: bool
    backend_connected: bool
    tools_registered: int
    model: str
    errors: list[str] = field(default_factory=list)
    tool_stats: dict[str, dict[str, Any]] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "healthy": self.healthy,
            "backend_connected": self.backend_connected,
            "tools_registered": self.tools_registered,
            "model": self.model,
            "errors": list(self.errors),
            "tool_stats": dict(self.tool_stats),
        }


@dataclass
class _QueryRun:
    """Mutable state of one in-flight query, owned by a single call."""

    request_id: str
    query: str
    context: Optional[WorkflowContext] = None
    workflow: Optional[WorkflowState] = None
    memory: Optional[ConversationMemory] = None
    messages: list[dict] = field(default_factory=list)
    tools_executed: list[str] = field(default_factory=list)
    tool_results: list[ToolResult] = field(default_factory=list)
    llm_calls: int = 0
    tracing: Optional[TracingContext] = None

    @property
    def id_prefix(self) -> str:
        return f"[{self.request_id}] "


class Engine:
    """
    Drives the LLM / tool loop for one query at a time per call.

    The engine holds configuration and collaborators only; every piece of
    per-query state lives in a ``_QueryRun``, so independent queries may
    run concurrently on one instance.
    """

    def __init__(
        self,
        llm_client: LLMClient,
        registry: ToolRegistry,
        security: SecurityConfig,
        options: EngineOptions,
        context_manager: Optional[ContextManager] = None,
        tracing_client: Optional[TracingClient] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.llm = llm_client
        self.registry = registry
        self.security = security
        self.options = options
        self.logger = logger or logging.getLogger(__name__)
        self.context_manager = context_manager or ContextManager(logger=self.logger)
        self.tracing_client = tracing_client

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    @staticmethod
    def validate_query(query: Any) -> Optional[AgentError]:
        """Return a validation error for an unusable query, else None."""
        if not isinstance(query, str):
            return AgentError(
                "Query must be a string",
                INVALID_QUERY,
                {"type": type(query).__name__},
            )
        if not query.strip():
            return AgentError("Query cannot be empty", EMPTY_QUERY)
        if len(query) > MAX_QUERY_LENGTH:
            return AgentError(
                f"Query is too long ({len(query)} characters, limit {MAX_QUERY_LENGTH})",
                QUERY_TOO_LONG,
                {"length": len(query), "max_length": MAX_QUERY_LENGTH},
            )
        return None

    def process_query(
        self,
        query: str,
        parent_workflow: Optional[WorkflowState] = None,
        request_id: Optional[str] = None,
    ) -> EngineResponse:
        """
        Answer a query, calling tools as the model requests them.

        Args:
            query: The user's question or task
            parent_workflow: Run as a child workflow of this one
            request_id: Correlation id for logs and traces

        Returns:
            EngineResponse; never raises
        """
        start = time.perf_counter()
        run = _QueryRun(request_id=request_id or uuid.uuid4().hex[:8], query=query)

        validation_error = self.validate_query(query)
        if validation_error is not None:
            self.logger.warning(f"{run.id_prefix}Rejected query: {validation_error.message}")
            return self._response(run, start, "", complete=False, errors=[validation_error])

        self.logger.info(f"{run.id_prefix}Processing query: {query[:_PREVIEW_CHARS]}")

        if self.tracing_client is not None and self.tracing_client.enabled:
            run.tracing = TracingContext(client=self.tracing_client, execution_id=run.request_id)
            run.tracing.start_trace(
                name="process_query",
                query=query,
                metadata={"max_tool_executions": self.options.max_tool_executions},
            )

        errors: list[AgentError] = []
        try:
            text = self._run(run, parent_workflow)
            complete = True
        except AgentError as e:
            self.logger.error(f"{run.id_prefix}Query failed [{e.code}]: {e.message}")
            text, complete, errors = "", False, [e]
        except Exception as e:
            self.logger.exception(f"{run.id_prefix}Unexpected orchestration failure")
            wrapped = AgentError(
                f"Orchestration failed: {e}",
                ORCHESTRATION_ERROR,
                {"original_error": type(e).__name__},
            )
            text, complete, errors = "", False, [wrapped]
        finally:
            if run.workflow is not None:
                run.workflow.cleanup()

        if run.tracing is not None:
            run.tracing.end_trace(
                output=text[:2000],
                status="success" if complete else "error",
                metadata={"tools_executed": run.tools_executed},
            )
        self._log_trace_summary(run, complete)
        return self._response(run, start, text, complete=complete, errors=errors)

    def _response(
        self,
        run: _QueryRun,
        start: float,
        text: str,
        complete: bool,
        errors: list[AgentError],
    ) -> EngineResponse:
        return EngineResponse(
            response_text=text,
            tools_executed=list(run.tools_executed),
            tool_results=list(run.tool_results),
            processing_time=max(0.0, (time.perf_counter() - start) * 1000),
            complete=complete,
            errors=errors,
            workflow=run.workflow,
            request_id=run.request_id,
        )

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    def _seed(self, run: _QueryRun, parent_workflow: Optional[WorkflowState]) -> list[dict]:
        """Build the workflow, memory and opening messages; return tool defs."""
        workflow_id = f"wf-{run.request_id}"
        if parent_workflow is not None:
            run.context = parent_workflow.context.child(workflow_id, query=run.query)
        else:
            run.context = WorkflowContext(
                working_directory=self.options.working_directory,
                security=self.security,
                registry=self.registry,
                query=run.query,
                request_id=run.request_id,
                workflow_id=workflow_id,
                depth=0,
                max_depth=self.options.max_workflow_depth,
            )

        if self.options.enable_workflow_state:
            if parent_workflow is not None:
                run.workflow = parent_workflow.create_child_workflow(workflow_id, run.context)
            else:
                run.workflow = WorkflowState(workflow_id, run.context, logger=self.logger)
            if self.options.on_workflow_start is not None:
                self.options.on_workflow_start(run.workflow)

        tools = self.registry.list_tools()
        run.memory = self.context_manager.new_memory(
            run.query, max_steps=self.options.max_tool_executions
        )
        run.messages = [
            {
                "role": "system",
                "content": build_system_prompt(tools, self.options.working_directory),
            },
            {"role": "user", "content": run.query},
        ]
        return build_tool_definitions(tools)

    def _run(self, run: _QueryRun, parent_workflow: Optional[WorkflowState]) -> str:
        tool_defs = self._seed(run, parent_workflow)

        while True:
            self._check_interrupted(run)
            response = self._call_llm(run, tool_defs)

            if not response.has_tool_calls:
                self.logger.debug(f"{run.id_prefix}Final answer after {run.llm_calls} LLM calls")
                return response.text

            run.messages.append(
                {
                    "role": "assistant",
                    "content": response.text or self._describe_calls(response.tool_calls),
                }
            )

            for call in response.tool_calls:
                self._check_interrupted(run)
                if len(run.tools_executed) >= self.options.max_tool_executions:
                    self.logger.warning(
                        f"{run.id_prefix}Max tool executions "
                        f"({self.options.max_tool_executions}) reached, forcing answer"
                    )
                    return self._force_final_answer(run)
                self._execute_tool_call(run, call)

    def _check_interrupted(self, run: _QueryRun) -> None:
        if run.workflow is not None and run.workflow.is_interrupted:
            reason = run.workflow.interrupt_reason or "interrupted"
            raise AgentError(
                f"Workflow interrupted: {reason}",
                WORKFLOW_INTERRUPTED,
                {"workflow_id": run.workflow.id, "reason": reason},
            )

    @staticmethod
    def _describe_calls(calls: list[ToolCall]) -> str:
        return "Calling tools: " + ", ".join(call.name for call in calls)

    def _force_final_answer(self, run: _QueryRun) -> str:
        digest = self.context_manager.render_memory_digest(run.memory) if run.memory else ""
        run.messages.append(
            {"role": "user", "content": build_final_answer_prompt(run.query, digest)}
        )
        response = self._call_llm(run, [])
        if response.has_tool_calls:
            self.logger.warning(
                f"{run.id_prefix}Ignoring {len(response.tool_calls)} tool calls in forced answer"
            )
        return response.text

    # ------------------------------------------------------------------
    # LLM
    # ------------------------------------------------------------------

    def _call_llm(self, run: _QueryRun, tool_defs: list[dict]) -> LLMResponse:
        run.llm_calls += 1
        options = {"stream": self.options.enable_streaming}
        self.logger.debug(
            f"{run.id_prefix}LLM call {run.llm_calls} "
            f"({len(run.messages)} messages, {len(tool_defs)} tools)"
        )

        if run.tracing is None:
            return self.llm.complete_with_tools(run.messages, tool_defs, options)

        with run.tracing.generation(
            name=f"llm_call_{run.llm_calls}",
            model=self.llm.config.model,
            input=run.messages,
            model_parameters={"temperature": self.llm.config.temperature},
        ) as gen:
            try:
                response = self.llm.complete_with_tools(run.messages, tool_defs, options)
            except Exception:
                gen.set_status("error")
                raise
            gen.set_output(response.text[:2000])
            if response.usage:
                gen.set_usage(**response.usage)
            return response

    # ------------------------------------------------------------------
    # Tools
    # ------------------------------------------------------------------

    def _execute_tool_call(self, run: _QueryRun, call: ToolCall) -> None:
        """Run one tool call as a workflow step and feed its result back."""
        workflow = run.workflow
        step_id = None
        if workflow is not None:
            step_id = workflow.start_step(f"Execute {call.name}", call.name, call.arguments)

        if self.options.debug:
            self.logger.debug(
                f"{run.id_prefix}Executing {call.name} with {str(call.arguments)[:_PREVIEW_CHARS]}"
            )
        result = self._execute_with_tracing(run, call)

        run.tools_executed.append(result.full_name)
        run.tool_results.append(result)

        if workflow is not None and step_id is not None:
            if result.success:
                workflow.complete_step(step_id, result)
            else:
                workflow.fail_step(step_id, result.error or "Unknown error")
            if len(workflow.results) > self.options.results_keep_count:
                workflow.cleanup_old_results(self.options.results_keep_count)

        structured = self.context_manager.summarize(result.full_name, result)
        run.memory = self.context_manager.record(run.memory, structured)
        rendered = self.context_manager.render(structured, run.memory)
        run.messages.append(
            {"role": "user", "content": f"Tool result ({result.full_name}):\n{rendered}"}
        )

        if result.success:
            self.logger.debug(f"{run.id_prefix}{result.full_name} ok in {result.duration:.0f}ms")
        else:
            self.logger.warning(f"{run.id_prefix}{result.full_name} failed: {result.error}")

        if self.options.on_tool_execution is not None:
            try:
                self.options.on_tool_execution(call.name, call.arguments, result)
            except Exception as e:
                self.logger.warning(f"{run.id_prefix}on_tool_execution callback failed: {e}")

    def _execute_with_tracing(self, run: _QueryRun, call: ToolCall) -> ToolResult:
        if run.tracing is None:
            return self.registry.execute(call.name, call.arguments, run.context)

        with run.tracing.span(name=f"tool:{call.name}", input=call.arguments) as span:
            result = self.registry.execute(call.name, call.arguments, run.context)
            if result.success:
                span.set_output({"duration_ms": round(result.duration, 2)})
            else:
                span.set_status("error")
                span.set_output({"error": (result.error or "")[:500]})
            return result

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def get_status(self) -> EngineStatus:
        """Check the LLM backend and summarize registered tools."""
        errors: list[str] = []
        try:
            connected = self.llm.check_connection()
        except Exception as e:
            connected = False
            errors.append(f"Backend check failed: {e}")
        else:
            if not connected:
                errors.append(f"Cannot connect to LLM backend at {self.llm.config.base_url}")

        stats = self.registry.get_stats()
        return EngineStatus(
            healthy=not errors,
            backend_connected=connected,
            tools_registered=len(self.registry.list_tools()),
            model=self.llm.config.model,
            errors=errors,
            tool_stats=stats,
        )

    def get_available_tools(self) -> list[dict[str, str]]:
        """Registered tools formatted for display."""
        return [
            {
                "namespace": tool.namespace,
                "name": tool.name,
                "full_name": tool.full_name,
                "description": tool.description or "No description available",
            }
            for tool in self.registry.list_tools()
        ]

    # ------------------------------------------------------------------
    # Logging
    # ------------------------------------------------------------------

    def _log_trace_summary(self, run: _QueryRun, complete: bool) -> None:
        """Log a compact trace summary."""
        prefix = run.id_prefix
        self.logger.info(f"{prefix}{'─' * 50}")
        self.logger.info(
            f"{prefix}TRACE SUMMARY: {len(run.tools_executed)} tools, "
            f"{run.llm_calls} LLM calls, complete={complete}"
        )
        self.logger.info(f"{prefix}{'─' * 50}")
        for number, result in enumerate(run.tool_results, start=1):
            status = "ok" if result.success else f"FAILED: {result.error}"
            self.logger.info(f"{prefix}Step {number}: {result.full_name} -> {status}")
