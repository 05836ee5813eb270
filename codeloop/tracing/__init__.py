"""
Langfuse tracing integration for codeloop.

Provides observability for LLM calls, tool executions, and the query lifecycle.
"""

from .client import TracingClient
from .context import (
    GenerationContext,
    SpanContext,
    TracingContext,
)

__all__ = [
    "TracingClient",
    "TracingContext",
    "SpanContext",
    "GenerationContext",
]
