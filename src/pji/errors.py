"""Exception hierarchy for pji."""

from __future__ import annotations


class PjiError(Exception):
    """Base error for all pji exceptions."""


class ParseError(PjiError):
    """Raised when a remote URL or a local path is malformed."""

    def __init__(self, value: str, reason: str):
        super().__init__(f"Malformed repository '{value}': {reason}")
        self.value = value
        self.reason = reason


class PersistenceError(PjiError):
    """Raised when the registry or config file cannot be read or written."""

    def __init__(self, path: object, reason: str):
        super().__init__(f"Cannot access {path}: {reason}")
        self.path = path
        self.reason = reason


class ResolveError(PjiError):
    """Raised when a browser URL cannot be produced."""


class UnknownHostError(ResolveError):
    """Raised when no URL template is registered for a host."""

    def __init__(self, host: str):
        super().__init__(
            f"No URL template for host '{host}'. "
            f"Add one with: pji config set-host {host} --home ... --pr ... --issue ..."
        )
        self.host = host


class GitExecutorError(PjiError):
    """Raised when a git invocation fails."""

    def __init__(self, command: list[str], returncode: int, stderr: str | None = None):
        message = "Git command failed"
        if command:
            message = f"Git command failed: {' '.join(command)}"
        if stderr:
            message = f"{message}: {stderr.strip()}"
        super().__init__(message)
        self.command = command
        self.returncode = returncode
        self.stderr = stderr or ""


class NotFoundError(PjiError):
    """Raised when a repository or worktree does not exist."""


class WorktreeError(PjiError):
    """Base error for worktree lifecycle failures."""


class BranchAlreadyCheckedOutError(WorktreeError):
    """Raised when a branch is already attached to a worktree."""

    def __init__(self, branch: str, path: object):
        super().__init__(f"Branch '{branch}' is already checked out at {path}")
        self.branch = branch
        self.path = path


class PathCollisionError(WorktreeError):
    """Raised when a worktree target path is already taken."""

    def __init__(self, path: object, branch: str | None = None):
        if branch:
            message = f"Worktree path {path} is already used by the worktree of '{branch}'"
        else:
            message = f"Worktree path already exists and is not a registered worktree: {path}"
        super().__init__(message)
        self.path = path
        self.branch = branch
