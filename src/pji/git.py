"""Git executor capability and its subprocess implementation."""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from .errors import GitExecutorError

logger = logging.getLogger(__name__)


@dataclass
class GitWorktree:
    """One entry of ``git worktree list --porcelain``."""

    path: Path
    branch: str | None = None
    commit: str = ""
    is_main: bool = False
    locked: bool = False
    prunable: bool = False


class GitExecutor(Protocol):
    """Capability used by the core to talk to git.

    Every method raises ``GitExecutorError`` when git fails.
    """

    def get_remote_url(self, path: Path) -> str | None: ...

    def clone(self, url: str, dest_path: Path) -> None: ...

    def list_worktrees(self, repo_path: Path) -> list[GitWorktree]: ...

    def add_worktree(
        self,
        repo_path: Path,
        branch: str,
        dest_path: Path,
        *,
        create_branch: bool = False,
        start_point: str | None = None,
    ) -> None: ...

    def remove_worktree(self, repo_path: Path, dest_path: Path, *, force: bool = False) -> None: ...

    def prune_worktrees(self, repo_path: Path) -> None: ...


def parse_worktree_porcelain(output: str) -> list[GitWorktree]:
    """Parse the output of ``git worktree list --porcelain``.

    Entries are separated by blank lines; the first non-bare entry is the
    main worktree. Bare entries are skipped.

    Example:
        worktree /path/to/main
        HEAD abc123
        branch refs/heads/main

        worktree /path/to/main.worktrees/feature
        HEAD def456
        branch refs/heads/feature
        locked
    """
    worktrees: list[GitWorktree] = []
    current: GitWorktree | None = None
    is_bare = False

    def flush() -> None:
        if current is not None and not is_bare:
            current.is_main = not worktrees
            worktrees.append(current)

    for line in output.splitlines():
        if line.startswith("worktree "):
            flush()
            current = GitWorktree(path=Path(line[len("worktree ") :]))
            is_bare = False
        elif current is None:
            continue
        elif line.startswith("HEAD "):
            current.commit = line[len("HEAD ") :]
        elif line.startswith("branch "):
            ref = line[len("branch ") :]
            current.branch = ref.removeprefix("refs/heads/")
        elif line == "detached":
            current.branch = None
        elif line == "bare":
            is_bare = True
        elif line == "locked" or line.startswith("locked "):
            current.locked = True
        elif line == "prunable" or line.startswith("prunable "):
            current.prunable = True
    flush()
    return worktrees


class GitOperations:
    """Runs git as a subprocess."""

    def __init__(self, git: str = "git", remote: str = "origin"):
        self.git = git
        self.remote = remote

    def _run(
        self, *args: str, cwd: Path | None = None, check: bool = True
    ) -> subprocess.CompletedProcess:
        """Run a git command, raising ``GitExecutorError`` on failure."""
        cmd = [self.git, *args]
        logger.debug("running %s (cwd=%s)", " ".join(cmd), cwd)
        try:
            result = subprocess.run(
                cmd,
                cwd=cwd,
                capture_output=True,
                text=True,
                check=False,
            )
        except OSError as e:
            raise GitExecutorError(cmd, -1, str(e)) from e
        if check and result.returncode != 0:
            raise GitExecutorError(cmd, result.returncode, result.stderr or result.stdout)
        return result

    def get_remote_url(self, path: Path) -> str | None:
        """Get the configured fetch URL of the default remote, if any."""
        result = self._run("remote", "get-url", self.remote, cwd=path, check=False)
        if result.returncode != 0:
            # No such remote: a local-only repository
            return None
        url = result.stdout.strip()
        return url or None

    def clone(self, url: str, dest_path: Path) -> None:
        """Clone ``url`` into exactly ``dest_path``."""
        try:
            dest_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise GitExecutorError(["git", "clone", url, str(dest_path)], -1, str(e)) from e
        self._run("clone", url, str(dest_path))

    def list_worktrees(self, repo_path: Path) -> list[GitWorktree]:
        result = self._run("-C", str(repo_path), "worktree", "list", "--porcelain")
        return parse_worktree_porcelain(result.stdout)

    def add_worktree(
        self,
        repo_path: Path,
        branch: str,
        dest_path: Path,
        *,
        create_branch: bool = False,
        start_point: str | None = None,
    ) -> None:
        args = ["-C", str(repo_path), "worktree", "add"]
        if create_branch:
            args += ["-b", branch, str(dest_path)]
            if start_point:
                args.append(start_point)
        else:
            args += [str(dest_path), branch]
        dest_path.parent.mkdir(parents=True, exist_ok=True)
        self._run(*args)

    def remove_worktree(self, repo_path: Path, dest_path: Path, *, force: bool = False) -> None:
        args = ["-C", str(repo_path), "worktree", "remove"]
        if force:
            args.append("--force")
        args.append(str(dest_path))
        self._run(*args)

    def prune_worktrees(self, repo_path: Path) -> None:
        result = self._run("-C", str(repo_path), "worktree", "prune", "-v")
        for line in (result.stdout + result.stderr).splitlines():
            if line.strip():
                logger.info("%s", line.strip())
