"""
Query-scoped tracing context using Langfuse SDK v3.

A TracingContext owns the root observation of one ``process_query`` call.
LLM calls become generations and tool executions become spans, each linked
to the root through an explicit TraceContext so nesting does not depend on
ambient OpenTelemetry state. Every method is a no-op when the client is
missing or disabled, and SDK failures are logged, never raised.
"""

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Generator, Optional

from langfuse.types import TraceContext

from .client import TracingClient

logger = logging.getLogger(__name__)


@dataclass
class _Observation:
    """Shared lifecycle of one Langfuse span or generation."""

    client: Optional[TracingClient]
    name: str
    input: Optional[Any] = None
    metadata: Optional[dict] = None
    trace_context: Optional[TraceContext] = None
    _manager: Any = field(default=None, repr=False)
    _observation: Any = field(default=None, repr=False)
    _start_time: float = field(default=0.0, repr=False)
    _output: Optional[Any] = field(default=None, repr=False)
    _status: str = field(default="success", repr=False)
    _end_metadata: dict = field(default_factory=dict, repr=False)

    as_type = "span"

    @property
    def active(self) -> bool:
        return self._observation is not None

    def _start_kwargs(self) -> dict[str, Any]:
        return {}

    def _end_kwargs(self) -> dict[str, Any]:
        return {}

    def start(self) -> None:
        if self.client is None or not self.client.enabled or self.client.client is None:
            return
        self._start_time = time.time()
        try:
            self._manager = self.client.client.start_as_current_observation(
                trace_context=self.trace_context,
                as_type=self.as_type,
                name=self.name,
                input=self.input,
                metadata=self.metadata,
                **self._start_kwargs(),
            )
            self._observation = self._manager.__enter__()
        except Exception as e:
            logger.warning(f"Failed to start {self.as_type} '{self.name}': {e}")
            self._observation = None

    def end(self) -> None:
        if not self.active:
            return
        try:
            update: dict[str, Any] = {
                "metadata": {
                    **self._end_metadata,
                    "status": self._status,
                    "duration_ms": round((time.time() - self._start_time) * 1000, 2),
                },
                **self._end_kwargs(),
            }
            if self._output is not None:
                update["output"] = self._output
            self._observation.update(**update)
            self._manager.__exit__(None, None, None)
        except Exception as e:
            logger.warning(f"Failed to end {self.as_type} '{self.name}': {e}")

    def set_output(self, output: Any) -> None:
        self._output = output

    def set_status(self, status: str) -> None:
        self._status = status

    def add_metadata(self, metadata: dict) -> None:
        """Attach extra metadata recorded when the observation ends."""
        self._end_metadata.update(metadata)


@dataclass
class SpanContext(_Observation):
    """A tool execution or other unit of work."""


@dataclass
class GenerationContext(_Observation):
    """One LLM call, with model and token usage."""

    model: str = ""
    model_parameters: Optional[dict] = None
    _usage: Optional[dict] = field(default=None, repr=False)

    as_type = "generation"

    def _start_kwargs(self) -> dict[str, Any]:
        return {"model": self.model, "model_parameters": self.model_parameters}

    def _end_kwargs(self) -> dict[str, Any]:
        return {"usage": self._usage} if self._usage else {}

    def set_usage(
        self,
        prompt_tokens: Optional[int] = None,
        completion_tokens: Optional[int] = None,
        total_tokens: Optional[int] = None,
    ) -> None:
        """Record token usage in Langfuse's field names."""
        usage = {
            "promptTokens": prompt_tokens,
            "completionTokens": completion_tokens,
            "totalTokens": total_tokens,
        }
        self._usage = {k: v for k, v in usage.items() if v is not None}

    @property
    def usage(self) -> Optional[dict]:
        return self._usage


@dataclass
class TracingContext:
    """Root trace of one query plus factories for its child observations."""

    client: Optional[TracingClient]
    execution_id: str
    session_id: Optional[str] = None
    _root: Optional[SpanContext] = field(default=None, repr=False)
    _trace_context: Optional[TraceContext] = field(default=None, repr=False)

    @property
    def enabled(self) -> bool:
        return self.client is not None and self.client.enabled

    def start_trace(
        self,
        name: str = "process_query",
        query: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> None:
        """Open the root span for this query."""
        if not self.enabled:
            logger.debug(f"[{self.execution_id}] start_trace skipped: tracing disabled")
            return

        self._root = SpanContext(
            client=self.client,
            name=name,
            input={"query": query} if query else None,
            metadata={"execution_id": self.execution_id, **(metadata or {})},
        )
        self._root.start()
        if not self._root.active:
            return

        root = self._root._observation
        trace_id = getattr(root, "trace_id", None)
        span_id = getattr(root, "id", None)
        if trace_id and span_id:
            self._trace_context = TraceContext(trace_id=trace_id, parent_span_id=span_id)
        try:
            root.update_trace(session_id=self.session_id)
        except Exception as e:
            logger.warning(f"[{self.execution_id}] Failed to set trace attributes: {e}")

    def end_trace(
        self,
        output: Optional[str] = None,
        status: str = "success",
        metadata: Optional[dict] = None,
    ) -> None:
        """Close the root span, recording the final answer and status."""
        if self._root is None:
            return
        self._root.set_output(output)
        self._root.set_status(status)
        if metadata:
            self._root.add_metadata(metadata)
        self._root.end()
        self._root = None

    @contextmanager
    def span(
        self,
        name: str,
        metadata: Optional[dict] = None,
        input: Optional[Any] = None,
    ) -> Generator[SpanContext, None, None]:
        span_ctx = SpanContext(
            client=self.client,
            name=name,
            input=input,
            metadata=metadata,
            trace_context=self._trace_context,
        )
        span_ctx.start()
        try:
            yield span_ctx
        finally:
            span_ctx.end()

    @contextmanager
    def generation(
        self,
        name: str,
        model: str,
        input: Optional[Any] = None,
        metadata: Optional[dict] = None,
        model_parameters: Optional[dict] = None,
    ) -> Generator[GenerationContext, None, None]:
        gen_ctx = GenerationContext(
            client=self.client,
            name=name,
            input=input,
            metadata=metadata,
            trace_context=self._trace_context,
            model=model,
            model_parameters=model_parameters,
        )
        gen_ctx.start()
        try:
            yield gen_ctx
        finally:
            gen_ctx.end()
