"""
Context management for the orchestration loop.

Turns raw tool results into StructuredToolResults, renders them for the
conversation, and keeps a ConversationMemory under a byte budget.

Memory updates are pure: ``record`` and ``compress`` return a new
ConversationMemory and never modify the one passed in.
"""

import json
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Optional

from ..models import ContextSizeConfig, FileContent, ResultType, StructuredToolResult, ToolResult
from .extraction import classify, get_strategy, serialize

MAX_FILE_PATHS = 20


@dataclass(frozen=True)
class ConversationMemory:
    """Running context for one query.

    ``total_context_size`` always equals the sum of ``size`` over
    ``previous_results``.
    """

    original_query: str
    max_steps: int
    max_context_size: int
    step_number: int = 0
    previous_results: tuple[StructuredToolResult, ...] = ()
    extracted_patterns: dict[str, int] = field(default_factory=dict)
    working_memory: dict[str, Any] = field(default_factory=dict)
    total_context_size: int = 0


def _archive_key(tool_name: str) -> str:
    return f"archived_{tool_name}_findings"


def _extract_file_paths(data: Any) -> list[str]:
    if not isinstance(data, dict):
        return []
    paths: list[str] = []
    if isinstance(data.get("path"), str) and data["path"]:
        paths.append(data["path"])
    for entry in data.get("files") if isinstance(data.get("files"), list) else []:
        if isinstance(entry, dict):
            rel = entry.get("relative_path") or entry.get("relativePath")
            if rel:
                paths.append(str(rel))
    for match in data.get("matches") if isinstance(data.get("matches"), list) else []:
        if isinstance(match, dict) and match.get("file"):
            paths.append(str(match["file"]))
    return list(dict.fromkeys(paths))[:MAX_FILE_PATHS]


class ContextManager:
    """
    Classifies, summarizes and renders tool results, and manages the
    conversation memory budget.

    One instance is safe to share across queries: it holds configuration
    only, all per-query state lives in ConversationMemory values.
    """

    def __init__(
        self,
        config: Optional[ContextSizeConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or ContextSizeConfig()
        self.logger = logger or logging.getLogger(__name__)

    # ------------------------------------------------------------------
    # Structuring
    # ------------------------------------------------------------------

    def classify(self, tool_name: str, result: ToolResult) -> ResultType:
        return classify(tool_name, result)

    def summarize(
        self,
        tool_name: str,
        result: ToolResult,
        result_type: Optional[ResultType] = None,
    ) -> StructuredToolResult:
        """
        Convert a raw ToolResult into a StructuredToolResult.

        Args:
            tool_name: Full tool name (e.g. "internal:files")
            result: Raw result from the registry
            result_type: Override the classification

        Returns:
            The structured result
        """
        if result_type is None:
            result_type = self.classify(tool_name, result)
        strategy = get_strategy(result_type)
        summary, findings, next_context = strategy.extract(result)

        data = result.data if result.success else None
        original_size = len(serialize(data)) if data is not None else 0

        return StructuredToolResult(
            tool_name=tool_name,
            success=result.success,
            duration=result.duration,
            type=strategy.result_type,
            summary=summary,
            key_findings=tuple(findings),
            full_data=data,
            truncated=original_size > self.config.max_result_size,
            context_for_next_step=next_context,
            file_paths=tuple(_extract_file_paths(data)),
            patterns=tuple(strategy.matched_patterns(data)),
            errors=() if result.success else (result.error or "Unknown error",),
            original_size=original_size if original_size > 0 else None,
        )

    create_structured_result = summarize

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def render(
        self,
        structured: StructuredToolResult,
        memory: Optional[ConversationMemory] = None,
    ) -> str:
        """Text block inserted into the conversation for one result."""
        if not structured.success:
            error = structured.errors[0] if structured.errors else "Unknown error"
            return f"Error in {structured.tool_name}: {error}"

        if structured.type == ResultType.FILE_CONTENT:
            return self._render_file_content(structured, memory)

        data = structured.full_data if isinstance(structured.full_data, dict) else {}
        if structured.type == ResultType.FILE_LIST:
            header = (
                f"**Files in {data.get('path') or 'directory'}** "
                f"({data.get('count', len(data.get('files') or []))} items)"
            )
        elif structured.type == ResultType.SEARCH_RESULTS:
            header = f"**Search results for \"{data.get('query') or 'unknown'}\"**"
        else:
            header = f"**{structured.tool_name}** completed"
        return self._summary_block(header, structured)

    format_result_for_conversation = render

    def _render_file_content(
        self, structured: StructuredToolResult, memory: Optional[ConversationMemory]
    ) -> str:
        payload = FileContent.from_data(structured.full_data)
        header = f"**{payload.path or 'unknown file'}**"
        if payload.lines:
            header += f" ({payload.lines} lines)"
        if payload.size:
            header += f" ({payload.size} bytes)"
        if structured.truncated:
            header += " [truncated for context]"

        if (
            memory is not None
            and structured.original_size is not None
            and structured.original_size > self.config.summary_render_threshold
        ):
            return self._summary_block(header, structured)

        return f"{header}\n```\n{payload.content or '[No content]'}\n```"

    @staticmethod
    def _summary_block(header: str, structured: StructuredToolResult) -> str:
        return (
            f"{header}\n"
            f"**Summary:** {structured.summary}\n"
            f"**Key findings:** {', '.join(structured.key_findings)}"
        )

    # ------------------------------------------------------------------
    # Memory
    # ------------------------------------------------------------------

    def new_memory(self, query: str, max_steps: int = 10) -> ConversationMemory:
        return ConversationMemory(
            original_query=query,
            max_steps=max_steps,
            max_context_size=self.config.max_total_size,
        )

    def record(
        self, memory: ConversationMemory, structured: StructuredToolResult
    ) -> ConversationMemory:
        """Fold one result into memory, compressing past the threshold."""
        patterns = dict(memory.extracted_patterns)
        for pattern in structured.patterns:
            patterns[pattern] = patterns.get(pattern, 0) + 1

        updated = replace(
            memory,
            step_number=memory.step_number + 1,
            previous_results=memory.previous_results + (structured,),
            extracted_patterns=patterns,
            working_memory={**memory.working_memory, **structured.context_for_next_step},
            total_context_size=memory.total_context_size + structured.size,
        )

        if updated.total_context_size > self.config.compression_threshold:
            updated = self.compress(updated)
        return updated

    def compress(self, memory: ConversationMemory) -> ConversationMemory:
        """
        Keep only the most recent ``always_preserve_steps`` results.

        Key findings of evicted results are archived in working memory so
        they survive the eviction. Calling this with nothing to evict
        returns the memory unchanged.
        """
        keep = max(0, self.config.always_preserve_steps)
        evict_count = len(memory.previous_results) - keep
        if evict_count <= 0:
            return memory

        evicted = memory.previous_results[:evict_count]
        survivors = memory.previous_results[evict_count:]

        working = dict(memory.working_memory)
        for result in evicted:
            key = _archive_key(result.tool_name)
            archived = list(working.get(key, []))
            archived.extend(f for f in result.key_findings if f not in archived)
            working[key] = archived

        total = sum(r.size for r in survivors)
        self.logger.debug(
            f"Compressed conversation memory: evicted {len(evicted)} results, "
            f"{memory.total_context_size} -> {total} bytes"
        )
        return replace(
            memory,
            previous_results=survivors,
            working_memory=working,
            total_context_size=total,
        )

    def render_memory_digest(self, memory: ConversationMemory) -> str:
        """Compact digest of working memory and recurring patterns."""
        sections: list[str] = []

        if memory.working_memory:
            lines = [
                f"- {key}: {json.dumps(value, default=str)}"
                for key, value in memory.working_memory.items()
                if value not in (None, [], {})
            ]
            if lines:
                sections.append("## Working Memory\n" + "\n".join(lines))

        if memory.extracted_patterns:
            ranked = sorted(memory.extracted_patterns.items(), key=lambda kv: (-kv[1], kv[0]))
            sections.append(
                "## Patterns Seen\n"
                + ", ".join(f"{name} ({count})" for name, count in ranked)
            )

        return "\n\n".join(sections)
