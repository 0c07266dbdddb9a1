"""Git service: repository detection and path-scoped commits via git CLI."""

from __future__ import annotations

import logging
import subprocess
from typing import TYPE_CHECKING

from desktop.tree import sanitize_relative_path

if TYPE_CHECKING:
    from collections.abc import Iterable
    from pathlib import Path

logger = logging.getLogger(__name__)

_GIT_TIMEOUT_SECONDS = 30


def sanitize_commit_paths(paths: Iterable[str]) -> list[str]:
    """Normalize repo-relative paths for staging, dropping anything unsafe.

    Paths are cleaned with :func:`sanitize_relative_path`; rejected ones are
    skipped. Order is kept, duplicates are dropped.
    """
    sanitized: list[str] = []
    for raw in paths:
        normalized = sanitize_relative_path(raw)
        if normalized is not None and normalized not in sanitized:
            sanitized.append(normalized)
    return sanitized


class GitService:
    """Wraps git CLI operations on one working tree."""

    def __init__(self, work_dir: Path) -> None:
        self.work_dir = work_dir

    def _run(
        self,
        *args: str,
        check: bool = True,
        capture_output: bool = True,
    ) -> subprocess.CompletedProcess[str]:
        """Run a git command in the working directory."""
        return subprocess.run(
            ["git", *args],
            cwd=self.work_dir,
            check=check,
            capture_output=capture_output,
            text=True,
            timeout=_GIT_TIMEOUT_SECONDS,
        )

    def repo_root(self) -> str | None:
        """Return the top level of the enclosing repository, or None outside one."""
        result = self._run("rev-parse", "--show-toplevel", check=False)
        if result.returncode == 0:
            return result.stdout.strip() or None
        if "not a git repository" in result.stderr.lower():
            return None
        raise subprocess.CalledProcessError(
            result.returncode,
            "git rev-parse --show-toplevel",
            output=result.stdout,
            stderr=result.stderr,
        )

    def commit_paths(self, paths: Iterable[str], message: str) -> str | None:
        """Stage and commit exactly ``paths``. Returns the commit hash, or None if nothing changed.

        Only the listed paths are staged and committed; other staged or dirty
        files in the working tree are left alone.
        """
        targets = sanitize_commit_paths(paths)
        if not targets:
            return None
        self._run("add", "--", *targets)
        result = self._run("diff", "--cached", "--quiet", "--", *targets, check=False)
        if result.returncode == 0:
            logger.info("Nothing to commit in %s for %d paths", self.work_dir, len(targets))
            return None
        self._run("commit", "-m", message, "--", *targets)
        head = self.head_commit()
        logger.info("Committed %d paths in %s (%s)", len(targets), self.work_dir, head)
        return head

    def head_commit(self) -> str | None:
        """Return the current HEAD commit hash, or None if the repo has no commits."""
        result = self._run("rev-parse", "HEAD", check=False)
        if result.returncode != 0:
            return None
        return result.stdout.strip()
