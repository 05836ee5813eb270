"""
Workspace path validation for file tools.

Resolves tool-supplied paths against the query's working directory and
rejects anything that escapes the allowed roots or hits a forbidden
pattern.
"""

import fnmatch
import logging
from pathlib import Path

from ..errors import FORBIDDEN_PATH, PATH_OUTSIDE_WORKSPACE, SecurityError
from ..models import WorkspaceSecurityConfig

logger = logging.getLogger(__name__)


class WorkspaceSecurity:
    """Path policy for one workspace configuration."""

    def __init__(self, config: WorkspaceSecurityConfig):
        self.config = config

    def _allowed_roots(self, base: Path) -> list[Path]:
        roots = [(base / p).resolve() for p in self.config.allowed_paths]
        return roots or [base]

    def is_forbidden(self, path: Path, base: Path) -> bool:
        """True if the path matches one of the forbidden glob patterns."""
        try:
            rel = path.relative_to(base).as_posix()
        except ValueError:
            rel = path.as_posix().lstrip("/")
        candidates = (f"/{rel}", f"/{rel}/")
        return any(
            fnmatch.fnmatch(candidate, pattern)
            for pattern in self.config.forbidden_paths
            for candidate in candidates
        )

    def validate_path(self, path: str, working_directory: str) -> Path:
        """
        Resolve a path inside the workspace.

        Args:
            path: Path as supplied by the model (relative or absolute)
            working_directory: The query's working directory

        Returns:
            The resolved absolute path

        Raises:
            SecurityError: PATH_OUTSIDE_WORKSPACE or FORBIDDEN_PATH
        """
        base = Path(working_directory).resolve()
        candidate = Path(path).expanduser()
        resolved = (candidate if candidate.is_absolute() else base / candidate).resolve()

        if not self.config.allow_outside_workspace:
            roots = self._allowed_roots(base)
            if not any(resolved == root or root in resolved.parents for root in roots):
                logger.warning(f"Rejected path outside workspace: {path}")
                raise SecurityError(
                    f"Path is outside the workspace: {path}",
                    PATH_OUTSIDE_WORKSPACE,
                    {"path": path, "working_directory": str(base)},
                )

        if self.is_forbidden(resolved, base):
            logger.warning(f"Rejected forbidden path: {path}")
            raise SecurityError(
                f"Access to path is forbidden: {path}",
                FORBIDDEN_PATH,
                {"path": path},
            )

        return resolved
