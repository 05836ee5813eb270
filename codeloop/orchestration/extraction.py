"""
Result classification and per-type extraction strategies.

Each ResultType has one strategy that decodes the raw payload into its
typed shape and derives a summary, key findings and a small context map
for the next step. Strategies are pure and never raise on malformed
payloads: absent fields fall back to neutral defaults.
"""

import json
import re
from pathlib import PurePosixPath
from typing import Any

from ..models import (
    AnalysisPayload,
    ErrorPayload,
    FileContent,
    FileListing,
    ResultType,
    SearchResults,
    ToolResult,
)

PREVIEW_CHARS = 100

# Declarations picked out of file content, reported in document order
_DECLARATION_PATTERNS = (
    re.compile(r"export\s+(?:class|function|const|let)\s+(\w+)"),
    re.compile(r"class\s+(\w+)"),
    re.compile(r"function\s+(\w+)"),
    re.compile(r"def\s+(\w+)"),
)

_IMPORTANT_FILE = re.compile(r"(index|main|app|server|config)\..*$")
_MAIN_FILE = re.compile(r"(index|main|app|server)\..*$")

_SEARCH_VOCABULARY = ("TODO", "FIXME", "function")

_ANALYSIS_MARKERS = (
    ("recommendation", "Has recommendations"),
    ("issue", "Issues found"),
    ("pattern", "Patterns detected"),
)


def serialize(data: Any) -> str:
    """Compact JSON rendering used for sizing and keyword scans."""
    return json.dumps(data if data is not None else {}, separators=(",", ":"), default=str)


def _extension(path: str) -> str:
    return PurePosixPath(path).suffix.lstrip(".")


def classify(tool_name: str, result: ToolResult) -> ResultType:
    """Map a tool result to exactly one ResultType.

    Failures are always ``error``. Successful results from file-oriented
    tools are classified by payload shape. Anything else falls back to
    ``analysis``, which is where strategies for other tool families plug in.
    """
    if not result.success:
        return ResultType.ERROR

    data = result.data
    if "files" in tool_name and isinstance(data, dict):
        if data.get("content") is not None:
            return ResultType.FILE_CONTENT
        if isinstance(data.get("files"), list):
            return ResultType.FILE_LIST
        if isinstance(data.get("matches"), list):
            return ResultType.SEARCH_RESULTS

    return ResultType.ANALYSIS


class ExtractionStrategy:
    """Base strategy: decode, then summarize, find and build next-step context."""

    result_type: ResultType = ResultType.ANALYSIS
    max_summary_length: int = 250
    max_key_findings: int = 10
    patterns: tuple[str, ...] = ()

    def decode(self, result: ToolResult) -> Any:
        return AnalysisPayload(data=result.data)

    def summary(self, payload: Any) -> str:
        raise NotImplementedError

    def key_findings(self, payload: Any) -> list[str]:
        return []

    def next_step_context(self, payload: Any) -> dict[str, Any]:
        return {}

    def extract(self, result: ToolResult) -> tuple[str, list[str], dict[str, Any]]:
        """Run the strategy over a raw result.

        Returns:
            (summary truncated to max_summary_length, capped key findings,
            next-step context)
        """
        payload = self.decode(result)
        summary = self.summary(payload)[: self.max_summary_length]
        findings = self.key_findings(payload)[: self.max_key_findings]
        return summary, findings, self.next_step_context(payload)

    def matched_patterns(self, data: Any) -> list[str]:
        text = serialize(data).lower()
        return [p for p in self.patterns if p.lower() in text]


class FileContentStrategy(ExtractionStrategy):
    result_type = ResultType.FILE_CONTENT
    max_summary_length = 200
    max_key_findings = 10
    patterns = ("class", "function", "export", "import", "interface", "type")

    def decode(self, result: ToolResult) -> FileContent:
        return FileContent.from_data(result.data)

    def summary(self, payload: FileContent) -> str:
        summary = f"File: {payload.path or 'unknown'} ({payload.lines} lines)"
        if payload.content:
            preview = payload.content[:PREVIEW_CHARS].replace("\n", " ")
            ellipsis = "..." if len(payload.content) > PREVIEW_CHARS else ""
            summary += f" - {preview}{ellipsis}"
        return summary

    def key_findings(self, payload: FileContent) -> list[str]:
        found: list[tuple[int, int, str]] = []
        for order, pattern in enumerate(_DECLARATION_PATTERNS):
            for match in pattern.finditer(payload.content):
                found.append((match.start(), order, match.group(0)))
        found.sort()
        return [text for _, _, text in found]

    def next_step_context(self, payload: FileContent) -> dict[str, Any]:
        return {
            "file_path": payload.path or None,
            "file_type": _extension(payload.path) or None,
            "has_classes": "class" in payload.content,
            "has_functions": "function" in payload.content or "def " in payload.content,
            "line_count": payload.lines,
        }


class FileListStrategy(ExtractionStrategy):
    result_type = ResultType.FILE_LIST
    max_summary_length = 150
    max_key_findings = 8
    patterns = (".ts", ".js", ".json", ".md", ".py", ".java")

    def decode(self, result: ToolResult) -> FileListing:
        return FileListing.from_data(result.data)

    def summary(self, payload: FileListing) -> str:
        summary = f"Found {payload.count} items in {payload.path or 'directory'}"
        extensions = list(
            dict.fromkeys(
                ext for ext in (_extension(f.relative_path) for f in payload.files) if ext
            )
        )
        if extensions:
            summary += f". Types: {', '.join(extensions[:3])}"
        return summary

    def key_findings(self, payload: FileListing) -> list[str]:
        counts: dict[str, int] = {}
        important: list[str] = []
        for entry in payload.files:
            ext = _extension(entry.relative_path) or "unknown"
            counts[ext] = counts.get(ext, 0) + 1
            if _IMPORTANT_FILE.search(entry.relative_path):
                important.append(entry.relative_path)

        findings = [f"{count} .{ext} files" for ext, count in counts.items()]
        findings.extend(important)
        return findings

    def next_step_context(self, payload: FileListing) -> dict[str, Any]:
        names = [f.relative_path for f in payload.files]
        return {
            "total_files": payload.count,
            "directory": payload.path or None,
            "has_package_json": "package.json" in names,
            "has_ts_config": "tsconfig.json" in names,
            "has_pyproject": "pyproject.toml" in names,
            "main_files": [n for n in names if _MAIN_FILE.search(n)],
        }


class SearchResultsStrategy(ExtractionStrategy):
    result_type = ResultType.SEARCH_RESULTS
    max_summary_length = 180
    max_key_findings = 6
    patterns = ("TODO", "FIXME", "function", "class", "import")

    def decode(self, result: ToolResult) -> SearchResults:
        return SearchResults.from_data(result.data)

    def summary(self, payload: SearchResults) -> str:
        return (
            f'Search "{payload.query or "unknown"}" found {payload.total_matches} '
            f"matches in {payload.files_searched} files"
        )

    def key_findings(self, payload: SearchResults) -> list[str]:
        files = {m.file for m in payload.matches}
        findings = [f"Found in {len(files)} files"]
        for word in _SEARCH_VOCABULARY:
            count = sum(1 for m in payload.matches if word in m.match)
            if count:
                findings.append(f"{count} {word} matches")
        return findings

    def next_step_context(self, payload: SearchResults) -> dict[str, Any]:
        matching = list(dict.fromkeys(m.file for m in payload.matches if m.file))
        return {
            "search_query": payload.query or None,
            "total_matches": payload.total_matches,
            "files_searched": payload.files_searched,
            "matching_files": matching[:10],
        }


class ErrorStrategy(ExtractionStrategy):
    result_type = ResultType.ERROR
    max_summary_length = 100
    max_key_findings = 1
    patterns = ("Error", "Failed", "Exception")

    def decode(self, result: ToolResult) -> ErrorPayload:
        return ErrorPayload(error=result.error or "Unknown error occurred")

    def summary(self, payload: ErrorPayload) -> str:
        return f"Error: {payload.error}"

    def key_findings(self, payload: ErrorPayload) -> list[str]:
        return [payload.error]

    def next_step_context(self, payload: ErrorPayload) -> dict[str, Any]:
        return {
            "error_type": payload.error.split(":", 1)[0].strip() or "Unknown",
            "has_error": True,
        }


class AnalysisStrategy(ExtractionStrategy):
    result_type = ResultType.ANALYSIS
    max_summary_length = 250
    max_key_findings = 5
    patterns = ("recommendation", "issue", "pattern", "structure")

    def summary(self, payload: AnalysisPayload) -> str:
        return f"Operation completed: {serialize(payload.data)[:PREVIEW_CHARS]}"

    def key_findings(self, payload: AnalysisPayload) -> list[str]:
        text = serialize(payload.data)
        return [finding for marker, finding in _ANALYSIS_MARKERS if marker in text]

    def next_step_context(self, payload: AnalysisPayload) -> dict[str, Any]:
        return {
            "analysis_type": "general",
            "has_recommendations": "recommendation" in serialize(payload.data),
        }


STRATEGIES: dict[ResultType, ExtractionStrategy] = {
    strategy.result_type: strategy
    for strategy in (
        FileContentStrategy(),
        FileListStrategy(),
        SearchResultsStrategy(),
        ErrorStrategy(),
        AnalysisStrategy(),
    )
}


def get_strategy(result_type: ResultType) -> ExtractionStrategy:
    """Strategy for a type, falling back to the analysis strategy."""
    return STRATEGIES.get(result_type, STRATEGIES[ResultType.ANALYSIS])
