"""Worktree lifecycle for registered repositories.

Worktrees of ``<parent>/<name>`` live in ``<parent>/<name>.worktrees/<branch>``
with ``/`` in branch names replaced by ``-``. Git stays the source of truth
for which worktrees exist; the convention directory only reveals leftovers
git no longer knows about.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from .errors import (
    BranchAlreadyCheckedOutError,
    NotFoundError,
    PathCollisionError,
    WorktreeError,
)
from .git import GitExecutor, GitWorktree
from .identity import RepoIdentity
from .registry import Registry, RepoRecord

logger = logging.getLogger(__name__)

WORKTREES_SUFFIX = ".worktrees"


@dataclass
class WorktreeRecord:
    """A worktree attached to a registered repository."""

    parent_identity: RepoIdentity
    branch_name: str | None
    path: Path
    is_registered_with_git: bool = True
    commit: str = ""
    is_main: bool = False
    locked: bool = False
    prunable: bool = False
    matches_convention: bool = False

    @property
    def is_stale(self) -> bool:
        return not self.is_registered_with_git or self.prunable

    @property
    def display_name(self) -> str:
        if self.is_main:
            return f"{self.branch_name or 'detached'} (main)"
        return self.branch_name or self.commit[:8] or self.path.name

    def to_dict(self) -> dict:
        return {
            "repository": str(self.parent_identity),
            "branch": self.branch_name,
            "path": str(self.path),
            "is_registered_with_git": self.is_registered_with_git,
            "commit": self.commit,
            "is_main": self.is_main,
            "locked": self.locked,
            "prunable": self.prunable,
            "is_stale": self.is_stale,
            "matches_convention": self.matches_convention,
        }


def slugify_branch(branch: str) -> str:
    """Filesystem-safe directory name for a branch."""
    return branch.strip().replace("/", "-")


def worktrees_dir(repo_path: Path) -> Path:
    return repo_path.parent / f"{repo_path.name}{WORKTREES_SUFFIX}"


def worktree_path(repo_path: Path, branch: str) -> Path:
    """Conventional location of the worktree for ``branch``."""
    return worktrees_dir(repo_path) / slugify_branch(branch)


def _same_path(a: Path, b: Path) -> bool:
    return a.resolve() == b.resolve()


class WorktreeManager:
    """Lists and mutates the worktrees of registered repositories."""

    def __init__(self, registry: Registry, git: GitExecutor):
        self.registry = registry
        self.git = git

    def _repository(self, identity: RepoIdentity) -> RepoRecord:
        record = self.registry.get(identity.key)
        if record is None:
            for candidate in self.registry.records():
                if candidate.identity.key == identity.key:
                    record = candidate
                    break
        if record is None:
            raise NotFoundError(f"Repository {identity} is not registered")
        if not record.exists:
            raise NotFoundError(f"Repository {identity} is not checked out at {record.local_path}")
        return record

    def _to_record(self, identity: RepoIdentity, repo_path: Path, raw: GitWorktree) -> WorktreeRecord:
        expected = raw.branch is not None and _same_path(raw.path, worktree_path(repo_path, raw.branch))
        return WorktreeRecord(
            parent_identity=identity,
            branch_name=raw.branch,
            path=raw.path,
            is_registered_with_git=True,
            commit=raw.commit,
            is_main=raw.is_main,
            locked=raw.locked,
            prunable=raw.prunable,
            matches_convention=raw.is_main or expected,
        )

    def list(self, identity: RepoIdentity) -> list[WorktreeRecord]:
        """Live worktrees of a repository, plus unknown convention directories.

        A directory under ``<name>.worktrees/`` that git does not list is
        reported with ``is_registered_with_git=False`` and the directory name
        (the slugged branch) as its branch.
        """
        repo = self._repository(identity)
        live = self.git.list_worktrees(repo.local_path)
        records = [self._to_record(identity, repo.local_path, raw) for raw in live]

        container = worktrees_dir(repo.local_path)
        if container.is_dir():
            known = {raw.path.resolve() for raw in live}
            for child in sorted(container.iterdir()):
                if child.is_dir() and child.resolve() not in known:
                    records.append(
                        WorktreeRecord(
                            parent_identity=identity,
                            branch_name=child.name,
                            path=child,
                            is_registered_with_git=False,
                            matches_convention=True,
                        )
                    )
        return records

    def add(
        self,
        identity: RepoIdentity,
        branch: str,
        *,
        create_branch: bool = False,
        start_point: str | None = None,
    ) -> WorktreeRecord:
        """Attach ``branch`` in a new worktree at the conventional path.

        Raises:
            BranchAlreadyCheckedOutError: the branch is attached to a worktree.
            PathCollisionError: the target path is already taken.
        """
        branch = branch.strip()
        if not branch:
            raise WorktreeError("Branch name cannot be empty")
        repo = self._repository(identity)
        live = self.git.list_worktrees(repo.local_path)
        for raw in live:
            if raw.branch == branch:
                raise BranchAlreadyCheckedOutError(branch, raw.path)

        target = worktree_path(repo.local_path, branch)
        for raw in live:
            if raw.path.resolve() == target.resolve():
                raise PathCollisionError(target, raw.branch or raw.commit[:8] or "detached HEAD")
        if target.exists():
            raise PathCollisionError(target)

        self.git.add_worktree(
            repo.local_path,
            branch,
            target,
            create_branch=create_branch,
            start_point=start_point,
        )
        logger.info("added worktree %s for %s", target, branch)
        return WorktreeRecord(
            parent_identity=identity,
            branch_name=branch,
            path=target,
            matches_convention=True,
        )

    def remove(self, identity: RepoIdentity, branch: str, *, force: bool = False) -> WorktreeRecord:
        """Detach and delete the worktree of ``branch``.

        Raises:
            NotFoundError: no worktree has ``branch`` checked out.
        """
        repo = self._repository(identity)
        for raw in self.git.list_worktrees(repo.local_path):
            if raw.branch != branch:
                continue
            if raw.is_main:
                raise WorktreeError(f"Branch '{branch}' is checked out in the main worktree")
            self.git.remove_worktree(repo.local_path, raw.path, force=force)
            return self._to_record(identity, repo.local_path, raw)
        raise NotFoundError(f"No worktree for branch '{branch}' in {identity}")

    def prune(self, identity: RepoIdentity) -> int:
        """Let git drop bookkeeping of worktrees whose path is gone.

        Returns the number of worktrees git forgot.
        """
        repo = self._repository(identity)
        before = len(self.git.list_worktrees(repo.local_path))
        self.git.prune_worktrees(repo.local_path)
        after = len(self.git.list_worktrees(repo.local_path))
        return max(before - after, 0)
