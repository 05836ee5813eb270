"""
Tests for the workspace file tool and path security.
"""

import pytest

from codeloop.errors import FORBIDDEN_PATH, PATH_OUTSIDE_WORKSPACE, SecurityError, ToolError
from codeloop.models import WorkspaceSecurityConfig
from codeloop.tools import WorkspaceSecurity
from codeloop.tools.files import MAX_FILE_SIZE, files_tool


@pytest.fixture
def ctx(make_context, workspace, registry):
    return make_context(working_directory=workspace, registry=registry)


class TestWorkspaceSecurity:
    """Tests for path validation."""

    def test_relative_path_resolves_inside(self, workspace):
        security = WorkspaceSecurity(WorkspaceSecurityConfig())
        resolved = security.validate_path("src/index.ts", str(workspace))
        assert resolved == (workspace / "src" / "index.ts").resolve()

    def test_traversal_rejected(self, workspace):
        security = WorkspaceSecurity(WorkspaceSecurityConfig())
        with pytest.raises(SecurityError) as exc_info:
            security.validate_path("../outside.txt", str(workspace))
        assert exc_info.value.code == PATH_OUTSIDE_WORKSPACE

    def test_absolute_path_outside_rejected(self, workspace):
        security = WorkspaceSecurity(WorkspaceSecurityConfig())
        with pytest.raises(SecurityError):
            security.validate_path("/etc/hosts", str(workspace))

    def test_outside_allowed_when_configured(self, workspace):
        security = WorkspaceSecurity(WorkspaceSecurityConfig(allow_outside_workspace=True))
        resolved = security.validate_path("../", str(workspace))
        assert resolved == workspace.parent.resolve()

    @pytest.mark.parametrize("path", [".env", ".git/config", "src/.env.local"])
    def test_forbidden_patterns(self, workspace, path):
        security = WorkspaceSecurity(WorkspaceSecurityConfig())
        with pytest.raises(SecurityError) as exc_info:
            security.validate_path(path, str(workspace))
        assert exc_info.value.code == FORBIDDEN_PATH

    def test_allowed_paths_restrict_roots(self, workspace):
        security = WorkspaceSecurity(WorkspaceSecurityConfig(allowed_paths=["src"]))
        assert security.validate_path("src/util.py", str(workspace)).name == "util.py"
        with pytest.raises(SecurityError):
            security.validate_path("package.json", str(workspace))


class TestRead:
    """Tests for the read operation."""

    def test_read_file(self, ctx):
        data = files_tool({"operation": "read", "path": "package.json"}, ctx)
        assert data["path"] == "package.json"
        assert '"name": "demo-app"' in data["content"]
        assert data["lines"] == 4
        assert data["encoding"] == "utf-8"
        assert data["size"] > 0

    def test_line_range(self, ctx):
        data = files_tool(
            {"operation": "read", "path": "src/index.ts", "start_line": 2, "end_line": 3}, ctx
        )
        assert data["content"] == "export class Server {}\nfunction start() {"
        assert data["lines"] == 2

    def test_missing_file(self, ctx):
        with pytest.raises(ToolError, match="File not found: missing.txt"):
            files_tool({"operation": "read", "path": "missing.txt"}, ctx)

    def test_directory_is_not_a_file(self, ctx):
        with pytest.raises(ToolError, match="Not a file"):
            files_tool({"operation": "read", "path": "src"}, ctx)

    def test_too_large(self, ctx, workspace):
        (workspace / "big.bin").write_bytes(b"0" * (MAX_FILE_SIZE + 1))
        with pytest.raises(ToolError, match="File too large"):
            files_tool({"operation": "read", "path": "big.bin"}, ctx)

    def test_path_required(self, ctx):
        with pytest.raises(ToolError, match="requires a 'path'"):
            files_tool({"operation": "read"}, ctx)

    def test_unknown_operation(self, ctx):
        with pytest.raises(ToolError, match="Unknown files operation"):
            files_tool({"operation": "delete", "path": "x"}, ctx)


class TestList:
    """Tests for the list operation."""

    def test_top_level(self, ctx):
        data = files_tool({"operation": "list", "path": "."}, ctx)
        names = [f["relative_path"] for f in data["files"]]

        assert names == ["package.json", "src", "tsconfig.json"]
        assert data["count"] == 3
        assert data["truncated"] is False
        src = next(f for f in data["files"] if f["relative_path"] == "src")
        assert src["is_directory"] is True
        assert src["size"] is None

    def test_recursive_with_pattern(self, ctx):
        data = files_tool({"operation": "list", "path": ".", "pattern": "*.ts", "recursive": True}, ctx)
        assert [f["relative_path"] for f in data["files"]] == ["src/index.ts"]

    def test_hidden_and_forbidden_skipped(self, ctx):
        data = files_tool(
            {"operation": "list", "path": ".", "include_hidden": True, "recursive": True}, ctx
        )
        names = [f["relative_path"] for f in data["files"]]
        assert ".env" not in names
        assert ".git/config" not in names

    def test_missing_directory(self, ctx):
        with pytest.raises(ToolError, match="Directory not found"):
            files_tool({"operation": "list", "path": "nope"}, ctx)

    def test_pattern_cannot_escape_workspace(self, ctx, workspace):
        """Entries a '..' pattern reaches outside the listed root are dropped."""
        (workspace.parent / f"{workspace.name}-outside.txt").write_text("sibling secret")

        data = files_tool(
            {"operation": "list", "path": ".", "pattern": "../*", "include_hidden": True}, ctx
        )
        assert data["files"] == []
        assert data["count"] == 0

        data = files_tool(
            {"operation": "list", "path": "src", "pattern": "../*", "include_hidden": True}, ctx
        )
        assert data["files"] == []


class TestSearch:
    """Tests for the search operation."""

    def test_plain_search(self, ctx):
        data = files_tool({"operation": "search", "query": "todo"}, ctx)

        assert data["query"] == "todo"
        assert data["total_matches"] == 1
        assert data["matches"][0] == {
            "file": "src/index.ts",
            "line": 4,
            "match": "// TODO: read port from env",
        }
        assert data["files_searched"] >= 3

    def test_case_sensitive(self, ctx):
        data = files_tool({"operation": "search", "query": "todo", "case_sensitive": True}, ctx)
        assert data["total_matches"] == 0

    def test_regex(self, ctx):
        data = files_tool({"operation": "search", "query": r"^(def|function)\s", "regex": True}, ctx)
        assert sorted(m["file"] for m in data["matches"]) == ["src/index.ts", "src/util.py"]

    def test_invalid_regex(self, ctx):
        with pytest.raises(ToolError, match="Invalid search pattern"):
            files_tool({"operation": "search", "query": "(", "regex": True}, ctx)

    def test_forbidden_files_not_searched(self, ctx):
        data = files_tool({"operation": "search", "query": "SECRET"}, ctx)
        assert data["total_matches"] == 0

    def test_symlink_outside_workspace_not_searched(self, ctx, workspace):
        outside = workspace.parent / f"{workspace.name}-outside.txt"
        outside.write_text("sibling secret\n")
        (workspace / "src" / "linked.txt").symlink_to(outside)

        data = files_tool({"operation": "search", "query": "sibling secret"}, ctx)
        assert data["total_matches"] == 0

        listing = files_tool({"operation": "list", "path": "src"}, ctx)
        assert "linked.txt" not in [f["relative_path"] for f in listing["files"]]

    def test_pattern_cannot_escape_search_root(self, ctx):
        data = files_tool(
            {"operation": "search", "query": "demo-app", "path": "src", "pattern": "../*"}, ctx
        )
        assert data["total_matches"] == 0
        assert data["files_searched"] == 0


class TestRegisteredTool:
    """The files tool through the registry."""

    def test_registered_under_internal(self, registry):
        tool = registry.get_tool("internal:files")
        assert tool is not None
        assert tool.required == ["operation"]

    def test_error_becomes_failed_result(self, registry, ctx):
        result = registry.execute("internal:files", {"operation": "read", "path": "gone.txt"}, ctx)
        assert result.success is False
        assert result.error == "File not found: gone.txt"

    def test_bad_operation_rejected_by_schema(self, registry, ctx):
        result = registry.execute("internal:files", {"operation": "delete"}, ctx)
        assert result.success is False
        assert result.error.startswith("TOOL_VALIDATION_ERROR")
