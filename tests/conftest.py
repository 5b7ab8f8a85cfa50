"""Shared fixtures: an in-memory git and repository tree builders."""

from __future__ import annotations

import shutil
from dataclasses import replace
from pathlib import Path

import pytest

from pji.config import Config
from pji.errors import GitExecutorError
from pji.git import GitWorktree
from pji.registry import Registry


class FakeGit:
    """GitExecutor double: canned remotes, clones that mkdir, in-memory worktrees."""

    def __init__(self):
        self.remotes: dict[Path, str | None] = {}
        self.clone_failures: set[str] = set()
        self.cloned: list[tuple[str, Path]] = []
        self.main_branch = "main"
        self.worktrees: dict[Path, list[GitWorktree]] = {}
        self.pruned: list[Path] = []

    def get_remote_url(self, path: Path) -> str | None:
        return self.remotes.get(Path(path))

    def clone(self, url: str, dest_path: Path) -> None:
        if url in self.clone_failures:
            raise GitExecutorError(["git", "clone", url, str(dest_path)], 128, "fatal: repository not found")
        (dest_path / ".git").mkdir(parents=True)
        self.remotes[dest_path] = url
        self.cloned.append((url, dest_path))

    def list_worktrees(self, repo_path: Path) -> list[GitWorktree]:
        main = GitWorktree(path=repo_path, branch=self.main_branch, commit="a" * 40, is_main=True)
        return [main] + [replace(w) for w in self.worktrees.get(repo_path, [])]

    def add_worktree(self, repo_path, branch, dest_path, *, create_branch=False, start_point=None):
        dest_path.mkdir(parents=True)
        (dest_path / ".git").write_text(f"gitdir: {repo_path}/.git/worktrees/{dest_path.name}\n")
        self.worktrees.setdefault(repo_path, []).append(
            GitWorktree(path=dest_path, branch=branch, commit="b" * 40)
        )

    def remove_worktree(self, repo_path, dest_path, *, force=False):
        self.worktrees[repo_path] = [w for w in self.worktrees.get(repo_path, []) if w.path != dest_path]
        shutil.rmtree(dest_path, ignore_errors=True)

    def prune_worktrees(self, repo_path):
        self.pruned.append(repo_path)
        self.worktrees[repo_path] = [w for w in self.worktrees.get(repo_path, []) if w.path.exists()]


@pytest.fixture
def fake_git() -> FakeGit:
    return FakeGit()


@pytest.fixture
def root(tmp_path) -> Path:
    path = tmp_path / "r"
    path.mkdir()
    return path


@pytest.fixture
def config(root) -> Config:
    return Config(roots=[root])


@pytest.fixture
def registry() -> Registry:
    return Registry()


@pytest.fixture
def make_repo(root, fake_git):
    """Create ``<root>/<relative>/.git`` and optionally give it a remote."""

    def _make(relative: str, remote: str | None = None, base: Path | None = None) -> Path:
        path = (base or root) / relative
        (path / ".git").mkdir(parents=True)
        if remote is not None:
            fake_git.remotes[path] = remote
        return path

    return _make
