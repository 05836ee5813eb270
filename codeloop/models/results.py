"""
Tool result models.

ToolResult is what the registry hands back for every execution. The
payload classes below give each result type one concrete shape, decoded
explicitly from ``ToolResult.data`` once the result has been classified.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class ResultType(str, Enum):
    """Classification tag for a tool result."""

    FILE_CONTENT = "file_content"
    FILE_LIST = "file_list"
    SEARCH_RESULTS = "search_results"
    ERROR = "error"
    ANALYSIS = "analysis"


@dataclass(frozen=True)
class ToolResult:
    """Raw output of one tool execution.

    ``data`` is set only on success, ``error`` only on failure.
    ``duration`` is in milliseconds.
    """

    success: bool
    tool: str
    namespace: str
    data: Any = None
    error: Optional[str] = None
    duration: float = 0.0

    @property
    def full_name(self) -> str:
        return f"{self.namespace}:{self.tool}"

    @classmethod
    def ok(cls, tool: str, namespace: str, data: Any, duration: float = 0.0) -> "ToolResult":
        return cls(success=True, tool=tool, namespace=namespace, data=data, duration=duration)

    @classmethod
    def failure(
        cls, tool: str, namespace: str, error: str, duration: float = 0.0
    ) -> "ToolResult":
        return cls(success=False, tool=tool, namespace=namespace, error=error, duration=duration)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "success": self.success,
            "tool": self.tool,
            "namespace": self.namespace,
            "duration": self.duration,
        }
        if self.success:
            result["data"] = self.data
        else:
            result["error"] = self.error
        return result


def _pick(data: dict, *keys: str, default: Any = None) -> Any:
    """Return the first key present in data (tools report snake or camel case)."""
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def _as_dict(data: Any) -> dict:
    return data if isinstance(data, dict) else {}


def _to_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


@dataclass(frozen=True)
class FileContent:
    path: str = ""
    content: str = ""
    lines: int = 0
    size: int = 0

    @classmethod
    def from_data(cls, data: Any) -> "FileContent":
        data = _as_dict(data)
        content = data.get("content")
        return cls(
            path=str(data.get("path") or ""),
            content=content if isinstance(content, str) else "",
            lines=_to_int(data.get("lines")),
            size=_to_int(data.get("size")),
        )


@dataclass(frozen=True)
class FileEntry:
    relative_path: str = ""
    is_directory: bool = False
    size: Optional[int] = None

    @classmethod
    def from_data(cls, data: Any) -> "FileEntry":
        data = _as_dict(data)
        return cls(
            relative_path=str(_pick(data, "relative_path", "relativePath", default="")),
            is_directory=bool(_pick(data, "is_directory", "isDirectory", default=False)),
            size=data.get("size"),
        )


@dataclass(frozen=True)
class FileListing:
    path: str = ""
    count: int = 0
    files: tuple[FileEntry, ...] = ()

    @classmethod
    def from_data(cls, data: Any) -> "FileListing":
        data = _as_dict(data)
        raw_files = data.get("files")
        files = tuple(
            FileEntry.from_data(entry)
            for entry in (raw_files if isinstance(raw_files, list) else [])
        )
        return cls(
            path=str(data.get("path") or ""),
            count=_to_int(data.get("count"), len(files)),
            files=files,
        )


@dataclass(frozen=True)
class SearchMatch:
    file: str = ""
    line: int = 0
    match: str = ""

    @classmethod
    def from_data(cls, data: Any) -> "SearchMatch":
        data = _as_dict(data)
        return cls(
            file=str(data.get("file") or ""),
            line=_to_int(data.get("line")),
            match=str(_pick(data, "match", "content", default="")),
        )


@dataclass(frozen=True)
class SearchResults:
    query: str = ""
    total_matches: int = 0
    files_searched: int = 0
    matches: tuple[SearchMatch, ...] = ()

    @classmethod
    def from_data(cls, data: Any) -> "SearchResults":
        data = _as_dict(data)
        raw_matches = data.get("matches")
        matches = tuple(
            SearchMatch.from_data(m)
            for m in (raw_matches if isinstance(raw_matches, list) else [])
        )
        return cls(
            query=str(data.get("query") or ""),
            total_matches=_to_int(
                _pick(data, "total_matches", "totalMatches"), len(matches)
            ),
            files_searched=_to_int(_pick(data, "files_searched", "filesSearched")),
            matches=matches,
        )


@dataclass(frozen=True)
class ErrorPayload:
    error: str = ""


@dataclass(frozen=True)
class AnalysisPayload:
    data: Any = None


@dataclass(frozen=True)
class StructuredToolResult:
    """A classified, size-bounded distillation of a ToolResult."""

    tool_name: str
    success: bool
    duration: float
    type: ResultType
    summary: str
    key_findings: tuple[str, ...] = ()
    full_data: Any = None
    truncated: bool = False
    context_for_next_step: dict[str, Any] = field(default_factory=dict)
    file_paths: tuple[str, ...] = ()
    patterns: tuple[str, ...] = ()
    errors: tuple[str, ...] = ()
    original_size: Optional[int] = None

    @property
    def size(self) -> int:
        """Bytes this result contributes to the conversation memory budget."""
        return len(self.summary) + len("".join(self.key_findings))
