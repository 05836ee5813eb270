"""
File Tool

Read, list and search files inside the query's workspace. Registered as
``internal:files`` with an ``operation`` argument selecting the action.
"""

import logging
import re
from pathlib import Path
from typing import TYPE_CHECKING, Any

from ..errors import TOOL_EXECUTION_ERROR, ToolError
from .registry import ToolRegistry
from .workspace import WorkspaceSecurity

if TYPE_CHECKING:
    from ..orchestration.workflow_state import WorkflowContext

logger = logging.getLogger(__name__)

MAX_FILE_SIZE = 1024 * 1024  # 1 MB
MAX_LIST_ENTRIES = 500
MAX_SEARCH_RESULTS = 100
MAX_MATCH_CHARS = 200

FILES_TOOL_DESCRIPTION = (
    "Read, list and search files in the workspace. "
    "Operations: read (path), list (path, pattern, recursive), "
    "search (query, path, pattern)."
)

FILES_TOOL_PARAMETERS: dict[str, Any] = {
    "type": "object",
    "properties": {
        "operation": {
            "type": "string",
            "enum": ["read", "list", "search"],
            "description": "Which file operation to perform",
        },
        "path": {
            "type": "string",
            "description": "File or directory path relative to the workspace",
        },
        "start_line": {"type": "integer", "description": "First line to read (1-based)"},
        "end_line": {"type": "integer", "description": "Last line to read (inclusive)"},
        "pattern": {"type": "string", "description": "Glob filter for file names, e.g. *.py"},
        "recursive": {"type": "boolean", "description": "List subdirectories recursively"},
        "include_hidden": {"type": "boolean", "description": "Include dotfiles"},
        "query": {"type": "string", "description": "Text or regex to search for"},
        "regex": {"type": "boolean", "description": "Treat query as a regular expression"},
        "case_sensitive": {"type": "boolean", "description": "Case-sensitive search"},
    },
    "required": ["operation"],
}


def _is_hidden(path: Path, root: Path) -> bool:
    try:
        parts = path.relative_to(root).parts
    except ValueError:
        parts = path.parts
    return any(part.startswith(".") for part in parts)


def _inside(entry: Path, root: Path) -> bool:
    """True if the entry, with ".." and symlinks resolved, stays under root."""
    try:
        entry.resolve().relative_to(root)
    except (OSError, ValueError):
        return False
    return True


def read_file(args: dict, context: "WorkflowContext", security: WorkspaceSecurity) -> dict:
    """Read a text file, optionally a line range of it."""
    path = args.get("path")
    if not path:
        raise ToolError("read requires a 'path' argument", TOOL_EXECUTION_ERROR)

    resolved = security.validate_path(path, context.working_directory)
    if not resolved.exists():
        raise ToolError(f"File not found: {path}", TOOL_EXECUTION_ERROR, {"path": path})
    if not resolved.is_file():
        raise ToolError(f"Not a file: {path}", TOOL_EXECUTION_ERROR, {"path": path})

    size = resolved.stat().st_size
    if size > MAX_FILE_SIZE:
        raise ToolError(
            f"File too large: {path} ({size} bytes, limit {MAX_FILE_SIZE})",
            TOOL_EXECUTION_ERROR,
            {"path": path, "size": size},
        )

    content = resolved.read_text(encoding="utf-8", errors="replace")
    start_line = args.get("start_line")
    end_line = args.get("end_line")
    if start_line is not None or end_line is not None:
        lines = content.splitlines()
        start = max(1, start_line or 1)
        end = min(len(lines), end_line or len(lines))
        content = "\n".join(lines[start - 1 : end])

    return {
        "path": path,
        "content": content,
        "lines": len(content.splitlines()),
        "size": size,
        "encoding": "utf-8",
    }


def list_files(args: dict, context: "WorkflowContext", security: WorkspaceSecurity) -> dict:
    """List directory entries matching a glob pattern."""
    path = args.get("path") or "."
    pattern = args.get("pattern") or "*"
    recursive = bool(args.get("recursive", False))
    include_hidden = bool(args.get("include_hidden", False))

    base = Path(context.working_directory).resolve()
    root = security.validate_path(path, context.working_directory)
    if not root.is_dir():
        raise ToolError(f"Directory not found: {path}", TOOL_EXECUTION_ERROR, {"path": path})

    candidates = root.rglob(pattern) if recursive else root.glob(pattern)
    files: list[dict] = []
    truncated = False
    for entry in sorted(candidates):
        if not _inside(entry, root):
            continue
        if not include_hidden and _is_hidden(entry, root):
            continue
        if security.is_forbidden(entry, base):
            continue
        if len(files) >= MAX_LIST_ENTRIES:
            truncated = True
            break
        is_dir = entry.is_dir()
        files.append(
            {
                "relative_path": entry.relative_to(root).as_posix(),
                "path": entry.relative_to(base).as_posix() if base in entry.parents else str(entry),
                "is_directory": is_dir,
                "size": None if is_dir else entry.stat().st_size,
            }
        )

    return {"path": path, "files": files, "count": len(files), "truncated": truncated}


def search_files(args: dict, context: "WorkflowContext", security: WorkspaceSecurity) -> dict:
    """Search file contents line by line."""
    query = args.get("query")
    if not query:
        raise ToolError("search requires a 'query' argument", TOOL_EXECUTION_ERROR)
    path = args.get("path") or "."
    pattern = args.get("pattern") or "*"
    flags = 0 if args.get("case_sensitive", False) else re.IGNORECASE

    try:
        matcher = re.compile(query if args.get("regex") else re.escape(query), flags)
    except re.error as e:
        raise ToolError(f"Invalid search pattern: {e}", TOOL_EXECUTION_ERROR, {"query": query})

    base = Path(context.working_directory).resolve()
    root = security.validate_path(path, context.working_directory)
    if root.is_file():
        targets = [root]
    else:
        targets = sorted(p for p in root.rglob(pattern) if _inside(p, root) and p.is_file())

    matches: list[dict] = []
    total_matches = 0
    files_searched = 0
    for target in targets:
        if _is_hidden(target, base) or security.is_forbidden(target, base):
            continue
        try:
            if target.stat().st_size > MAX_FILE_SIZE:
                continue
            text = target.read_text(encoding="utf-8")
        except (UnicodeDecodeError, OSError):
            continue
        files_searched += 1

        rel = target.relative_to(base).as_posix() if base in target.parents else str(target)
        for line_number, line in enumerate(text.splitlines(), start=1):
            if matcher.search(line):
                total_matches += 1
                if len(matches) < MAX_SEARCH_RESULTS:
                    matches.append(
                        {"file": rel, "line": line_number, "match": line.strip()[:MAX_MATCH_CHARS]}
                    )

    logger.debug(f"Search '{query}' matched {total_matches} lines in {files_searched} files")
    return {
        "query": query,
        "matches": matches,
        "total_matches": total_matches,
        "files_searched": files_searched,
    }


_OPERATIONS = {
    "read": read_file,
    "list": list_files,
    "search": search_files,
}


def files_tool(args: dict, context: "WorkflowContext") -> dict:
    """Dispatch an ``internal:files`` call to its operation."""
    operation = args.get("operation")
    handler = _OPERATIONS.get(operation)
    if handler is None:
        raise ToolError(
            f"Unknown files operation: {operation}",
            TOOL_EXECUTION_ERROR,
            {"operation": operation},
        )
    security = WorkspaceSecurity(context.security.workspace)
    return handler(args, context, security)


def register_file_tools(registry: ToolRegistry) -> None:
    registry.register(
        name="files",
        description=FILES_TOOL_DESCRIPTION,
        parameters=FILES_TOOL_PARAMETERS,
        handler=files_tool,
        namespace="internal",
    )
