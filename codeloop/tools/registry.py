"""
Tool Registry - Single source of truth for tool definitions.

Tools are registered under a namespace and addressed by their full name
(``namespace:name``). A bare name is accepted when it is unambiguous.
``execute`` never raises: every failure comes back as a ToolResult with
``success=False``.
"""

import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Optional

from ..errors import (
    AMBIGUOUS_TOOL_NAME,
    TOOL_ALREADY_EXISTS,
    TOOL_NOT_FOUND,
    TOOL_VALIDATION_ERROR,
    AgentError,
)
from ..models import ToolResult

if TYPE_CHECKING:
    from ..orchestration.workflow_state import WorkflowContext

DEFAULT_NAMESPACE = "internal"

ToolHandler = Callable[[dict, "WorkflowContext"], Any]

# JSON schema type -> accepted Python types
_SCHEMA_TYPES: dict[str, tuple[type, ...]] = {
    "string": (str,),
    "integer": (int,),
    "number": (int, float),
    "boolean": (bool,),
    "array": (list, tuple),
    "object": (dict,),
}


@dataclass
class ToolDefinition:
    """Metadata for a tool - defined once, used everywhere."""

    name: str
    description: str
    parameters: dict[str, Any]  # JSON schema for the arguments object
    handler: ToolHandler
    namespace: str = DEFAULT_NAMESPACE

    @property
    def full_name(self) -> str:
        return f"{self.namespace}:{self.name}"

    @property
    def required(self) -> list[str]:
        return list(self.parameters.get("required", []))


@dataclass
class ToolStats:
    executions: int = 0
    failures: int = 0
    total_duration: float = 0.0


def validate_arguments(tool: ToolDefinition, args: dict) -> list[str]:
    """Check args against the tool's schema (required keys and primitive types).

    Returns:
        List of validation error messages (empty if valid)
    """
    errors = []
    for name in tool.required:
        if name not in args or args[name] is None:
            errors.append(f"missing required argument '{name}'")

    properties = tool.parameters.get("properties", {})
    for name, value in args.items():
        spec = properties.get(name)
        if not spec or value is None:
            continue
        expected = _SCHEMA_TYPES.get(spec.get("type", ""))
        if expected is None:
            continue
        # bool is an int subclass; don't let True pass as an integer
        if isinstance(value, bool) and bool not in expected:
            errors.append(f"argument '{name}' must be of type {spec['type']}")
        elif not isinstance(value, expected):
            errors.append(f"argument '{name}' must be of type {spec['type']}")
        elif "enum" in spec and value not in spec["enum"]:
            errors.append(f"argument '{name}' must be one of {spec['enum']}")
    return errors


class ToolRegistry:
    """Namespaced registry of executable tools."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self._tools: dict[str, ToolDefinition] = {}
        self._stats: dict[str, ToolStats] = {}
        self.logger = logger or logging.getLogger(__name__)

    def register(
        self,
        name: str,
        description: str,
        parameters: dict[str, Any],
        handler: ToolHandler,
        namespace: str = DEFAULT_NAMESPACE,
    ) -> ToolDefinition:
        """Register a tool with its metadata.

        Raises:
            AgentError: TOOL_ALREADY_EXISTS if the full name is taken
        """
        tool = ToolDefinition(
            name=name,
            description=description,
            parameters=parameters,
            handler=handler,
            namespace=namespace,
        )
        if tool.full_name in self._tools:
            raise AgentError(
                f"Tool already registered: {tool.full_name}",
                TOOL_ALREADY_EXISTS,
                {"tool": tool.full_name},
            )
        self._tools[tool.full_name] = tool
        self._stats[tool.full_name] = ToolStats()
        self.logger.debug(f"Registered tool {tool.full_name}")
        return tool

    def unregister(self, full_name: str) -> bool:
        self._stats.pop(full_name, None)
        return self._tools.pop(full_name, None) is not None

    def get_tool(self, identifier: str) -> Optional[ToolDefinition]:
        """Look a tool up by full name, or by bare name when unambiguous.

        Raises:
            AgentError: AMBIGUOUS_TOOL_NAME if a bare name matches several
                namespaces
        """
        if identifier in self._tools:
            return self._tools[identifier]
        if ":" in identifier:
            return None

        matches = [t for t in self._tools.values() if t.name == identifier]
        if len(matches) > 1:
            raise AgentError(
                f"Ambiguous tool name '{identifier}': "
                f"{', '.join(t.full_name for t in matches)}",
                AMBIGUOUS_TOOL_NAME,
                {"tool": identifier, "candidates": [t.full_name for t in matches]},
            )
        return matches[0] if matches else None

    def list_tools(self, namespace: Optional[str] = None) -> list[ToolDefinition]:
        """All registered tools, optionally filtered by namespace."""
        return [
            t for t in self._tools.values() if namespace is None or t.namespace == namespace
        ]

    def get_stats(self) -> dict[str, dict[str, Any]]:
        return {
            name: {
                "executions": s.executions,
                "failures": s.failures,
                "average_duration": s.total_duration / s.executions if s.executions else 0.0,
            }
            for name, s in self._stats.items()
        }

    def execute(
        self, identifier: str, args: Optional[dict], context: "WorkflowContext"
    ) -> ToolResult:
        """
        Execute a tool. Never raises.

        Args:
            identifier: Full or bare tool name
            args: Tool arguments
            context: Workflow context of the calling query

        Returns:
            ToolResult; ``success=False`` with an error message on any failure
        """
        namespace, _, short = identifier.rpartition(":")
        namespace = namespace or DEFAULT_NAMESPACE
        start = time.perf_counter()

        def elapsed() -> float:
            return (time.perf_counter() - start) * 1000

        try:
            tool = self.get_tool(identifier)
        except AgentError as e:
            return ToolResult.failure(short, namespace, f"{e.code}: {e.message}", elapsed())
        if tool is None:
            self.logger.warning(f"Unknown tool requested: {identifier}")
            return ToolResult.failure(
                short, namespace, f"{TOOL_NOT_FOUND}: Tool not found: {identifier}", elapsed()
            )

        args = args if args is not None else {}
        stats = self._stats.setdefault(tool.full_name, ToolStats())
        stats.executions += 1

        if isinstance(args, dict):
            problems = validate_arguments(tool, args)
        else:
            problems = ["arguments must be an object"]
        if problems:
            stats.failures += 1
            return ToolResult.failure(
                tool.name,
                tool.namespace,
                f"{TOOL_VALIDATION_ERROR}: Invalid arguments for {tool.full_name}: "
                + "; ".join(problems),
                elapsed(),
            )

        try:
            data = tool.handler(args, context)
        except Exception as e:
            duration = elapsed()
            stats.failures += 1
            stats.total_duration += duration
            message = e.message if isinstance(e, AgentError) else str(e)
            self.logger.debug(f"Tool {tool.full_name} failed: {message}")
            return ToolResult.failure(tool.name, tool.namespace, message or type(e).__name__, duration)

        duration = elapsed()
        stats.total_duration += duration
        return ToolResult.ok(tool.name, tool.namespace, data, duration)

    def clear(self) -> None:
        """Clear all registered tools (mainly for testing)."""
        self._tools.clear()
        self._stats.clear()
