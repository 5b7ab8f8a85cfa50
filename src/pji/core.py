"""
pji: a tree structure for your git projects.

Reconciliation engine: scans root directories into the registry, clones
registered repositories that are missing on disk, and adds, removes and
cleans registry entries.
"""

from __future__ import annotations

import logging
import shutil
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from .config import Config
from .errors import GitExecutorError, NotFoundError, ParseError, PjiError
from .git import GitExecutor
from .identity import parse_path, parse_remote, to_path, to_remote_key
from .registry import Registry, RepoRecord, UpsertResult, utcnow
from .worktrees import WORKTREES_SUFFIX

logger = logging.getLogger(__name__)

# Repositories live at <root>/<host>/<owner>/<name>; deeper owners are
# nested groups (e.g. GitLab subgroups).
MIN_REPO_DEPTH = 3
MAX_REPO_DEPTH = 5

# =============================================================================
# Domain Models
# =============================================================================


@dataclass
class OperationResult:
    """Result of an operation on one repository."""

    path: Path
    name: str
    success: bool
    operation: str
    key: str = ""
    message: str = ""
    error: str = ""

    def to_dict(self) -> dict:
        return {
            "path": str(self.path),
            "name": self.name,
            "key": self.key,
            "success": self.success,
            "operation": self.operation,
            "message": self.message,
            "error": self.error,
        }


@dataclass
class ScanReport:
    """Outcome of reconciling the roots into the registry."""

    added: list[RepoRecord] = field(default_factory=list)
    updated: list[RepoRecord] = field(default_factory=list)
    unchanged: list[RepoRecord] = field(default_factory=list)
    orphaned: list[RepoRecord] = field(default_factory=list)
    mismatched: list[RepoRecord] = field(default_factory=list)
    failed: list[OperationResult] = field(default_factory=list)
    deduplicated: int = 0

    @property
    def scanned(self) -> int:
        return len(self.added) + len(self.updated) + len(self.unchanged) + len(self.failed)

    @property
    def all_failed(self) -> bool:
        return bool(self.failed) and len(self.failed) == self.scanned

    def to_dict(self) -> dict:
        return {
            "added": [r.to_dict() for r in self.added],
            "updated": [r.to_dict() for r in self.updated],
            "unchanged": [r.to_dict() for r in self.unchanged],
            "orphaned": [r.to_dict() for r in self.orphaned],
            "mismatched": [r.to_dict() for r in self.mismatched],
            "failed": [r.to_dict() for r in self.failed],
            "summary": {
                "scanned": self.scanned,
                "added": len(self.added),
                "updated": len(self.updated),
                "unchanged": len(self.unchanged),
                "orphaned": len(self.orphaned),
                "mismatched": len(self.mismatched),
                "failed": len(self.failed),
                "deduplicated": self.deduplicated,
            },
        }


@dataclass
class PullReport:
    """Outcome of cloning the registered repositories missing on disk."""

    cloned: list[OperationResult] = field(default_factory=list)
    failed: list[OperationResult] = field(default_factory=list)
    skipped: list[RepoRecord] = field(default_factory=list)

    @property
    def all_failed(self) -> bool:
        return bool(self.failed) and not self.cloned

    def to_dict(self) -> dict:
        return {
            "cloned": [r.to_dict() for r in self.cloned],
            "failed": [r.to_dict() for r in self.failed],
            "skipped": [r.to_dict() for r in self.skipped],
            "summary": {
                "cloned": len(self.cloned),
                "failed": len(self.failed),
                "skipped": len(self.skipped),
            },
        }


@dataclass
class CleanReport:
    """Outcome of collapsing duplicates and dropping orphaned entries."""

    deduplicated: int = 0
    removed: list[RepoRecord] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "deduplicated": self.deduplicated,
            "removed": [r.to_dict() for r in self.removed],
        }


# =============================================================================
# Parallel execution
# =============================================================================


def execute_parallel(
    operation: Callable[[Any], Any],
    items: list,
    max_workers: int = 8,
    sequential: bool = False,
) -> list:
    """Run ``operation`` over items on a bounded thread pool.

    Completion order is irrelevant; results come back in item order.
    """
    if sequential or len(items) <= 1:
        return [operation(item) for item in items]

    results: list = [None] * len(items)
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = {executor.submit(operation, item): i for i, item in enumerate(items)}
        for future in as_completed(futures):
            results[futures[future]] = future.result()
    return results


def _creation_time(path: Path) -> datetime:
    """Directory creation time, or now if the platform does not know it."""
    try:
        stat = path.stat()
    except OSError:
        return utcnow()
    timestamp = getattr(stat, "st_birthtime", None) or stat.st_ctime
    return datetime.fromtimestamp(timestamp, UTC).replace(microsecond=0)


# =============================================================================
# Scanner
# =============================================================================


@dataclass
class _Inspection:
    root: Path
    path: Path
    record: RepoRecord | None = None
    outcome: UpsertResult | None = None
    error: str = ""
    mismatched: bool = False


class Scanner:
    """Reconciles the repositories found under the roots into the registry."""

    def __init__(self, git: GitExecutor, max_workers: int = 8, sequential: bool = False):
        self.git = git
        self.max_workers = max_workers
        self.sequential = sequential

    def discover(self, root: Path) -> list[Path]:
        """Find working trees at ``<root>/<host>/<owner>/<name>``.

        A directory holding a ``.git`` directory is a repository. Hidden
        directories and worktree containers are never entered, and a
        ``.git`` file (a linked worktree) is not a repository.
        """
        found: list[Path] = []

        def walk(directory: Path, depth: int) -> None:
            try:
                children = sorted(directory.iterdir())
            except OSError as e:
                logger.warning("cannot read %s: %s", directory, e)
                return
            for child in children:
                if child.name.startswith(".") or child.name.endswith(WORKTREES_SUFFIX):
                    continue
                if not child.is_dir():
                    continue
                if depth >= MIN_REPO_DEPTH and (child / ".git").is_dir():
                    found.append(child)
                elif depth < MAX_REPO_DEPTH:
                    walk(child, depth + 1)

        if not root.is_dir():
            logger.warning("root %s does not exist", root)
            return found
        walk(root, 1)
        return found

    def _inspect(self, item: tuple[Path, Path], registry: Registry) -> _Inspection:
        root, path = item
        result = _Inspection(root=root, path=path)
        try:
            identity = parse_path(root, path)
            remote_url = self.git.get_remote_url(path)
            if remote_url:
                remote_identity = parse_remote(remote_url)
                result.mismatched = remote_identity.key != identity.key
        except (ParseError, GitExecutorError) as e:
            result.error = str(e)
            return result

        result.record = RepoRecord(
            identity=identity,
            local_path=path,
            remote_url=remote_url,
            created_at=_creation_time(path),
        )
        # Registry.upsert is serialized, so workers merge directly
        result.outcome = registry.upsert(result.record)
        return result

    def scan(self, config: Config, registry: Registry) -> ScanReport:
        """Walk every root and merge what is found into ``registry``.

        Existing duplicates are collapsed first. Entries not seen during the
        walk whose checkout is gone are reported as orphaned, never deleted.
        """
        report = ScanReport()
        report.deduplicated = registry.dedupe()

        candidates = [(root, path) for root in config.roots for path in self.discover(root)]
        logger.debug("found %d candidate repositories", len(candidates))

        inspections = execute_parallel(
            lambda item: self._inspect(item, registry),
            candidates,
            max_workers=self.max_workers,
            sequential=self.sequential,
        )

        touched: set[str] = set()
        for inspection in inspections:
            if inspection.record is None:
                logger.warning("skipping %s: %s", inspection.path, inspection.error)
                report.failed.append(
                    OperationResult(
                        path=inspection.path,
                        name=inspection.path.name,
                        success=False,
                        operation="scan",
                        error=inspection.error,
                    )
                )
                continue
            record = inspection.record
            touched.add(record.key)
            if inspection.mismatched:
                logger.warning(
                    "%s has remote %s which does not match its directory layout",
                    record.local_path,
                    record.remote_url,
                )
                report.mismatched.append(record)
            if inspection.outcome == UpsertResult.INSERTED:
                report.added.append(record)
            elif inspection.outcome == UpsertResult.MERGED:
                report.updated.append(registry.get(record.key) or record)
            else:
                report.unchanged.append(record)

        for record in registry.records():
            if record.key not in touched and not record.exists:
                report.orphaned.append(record)
        return report


# =============================================================================
# Puller
# =============================================================================


class Puller:
    """Clones registered repositories that are missing on disk."""

    def __init__(self, git: GitExecutor, max_workers: int = 8, sequential: bool = False):
        self.git = git
        self.max_workers = max_workers
        self.sequential = sequential

    def _clone(self, record: RepoRecord) -> OperationResult:
        result = OperationResult(
            path=record.local_path,
            name=record.name,
            success=False,
            operation="clone",
            key=record.key,
        )
        try:
            self.git.clone(record.remote_url, record.local_path)
        except GitExecutorError as e:
            result.error = e.stderr.strip() or str(e)
            return result
        except OSError as e:
            result.error = str(e)
            return result
        result.success = True
        result.message = f"Cloned {record.remote_url}"
        return result

    def pull(self, registry: Registry, dry_run: bool = False) -> PullReport:
        """Clone every record with a remote whose checkout does not exist.

        One failing clone never stops the others.
        """
        report = PullReport()
        to_clone: list[RepoRecord] = []
        for record in registry.records():
            if record.exists:
                continue
            if not record.remote_url:
                report.skipped.append(record)
            else:
                to_clone.append(record)

        if dry_run:
            report.cloned = [
                OperationResult(
                    path=r.local_path,
                    name=r.name,
                    success=True,
                    operation="clone",
                    key=r.key,
                    message="Would clone (dry-run)",
                )
                for r in to_clone
            ]
            return report

        results = execute_parallel(
            self._clone,
            to_clone,
            max_workers=self.max_workers,
            sequential=self.sequential,
        )
        for result in results:
            if result.success:
                report.cloned.append(result)
            else:
                logger.warning("clone of %s failed: %s", result.key, result.error)
                report.failed.append(result)
        return report


# =============================================================================
# Single-repository operations
# =============================================================================


def add_repository(
    registry: Registry,
    config: Config,
    git: GitExecutor,
    url: str,
    root: Path | None = None,
) -> tuple[RepoRecord, bool]:
    """Register ``url`` and clone it to ``<root>/<host>/<owner>/<name>``.

    An existing checkout is registered without cloning.

    Returns:
        (record, cloned)
    """
    identity = parse_remote(url)
    root = root or config.default_root
    dest = to_path(root, identity)
    now = utcnow()

    cloned = False
    if not (dest / ".git").is_dir():
        if dest.is_file():
            raise PjiError(f"Cannot clone into {dest}: a file is in the way")
        try:
            occupied = dest.exists() and any(dest.iterdir())
        except OSError as e:
            raise PjiError(f"Cannot clone into {dest}: {e}") from e
        if occupied:
            raise PjiError(f"Cannot clone into {dest}: directory exists and is not empty")
        git.clone(url.strip(), dest)
        cloned = True

    record = RepoRecord(
        identity=identity,
        local_path=dest,
        remote_url=url.strip(),
        created_at=now,
        last_opened_at=now,
    )
    registry.upsert(record)
    return registry.get(record.key) or record, cloned


def remove_repository(registry: Registry, url: str, delete_files: bool = True) -> RepoRecord:
    """Drop a repository from the registry and, optionally, its checkout."""
    key = to_remote_key(url.strip())
    record = registry.get(key)
    if record is None:
        raise NotFoundError(f"Repository {key} is not registered")
    if delete_files and record.exists:
        try:
            shutil.rmtree(record.local_path)
        except OSError as e:
            raise PjiError(f"Cannot delete {record.local_path}: {e}") from e
        logger.info("deleted %s", record.local_path)
    registry.remove(key)
    return record


def clean_registry(registry: Registry, dry_run: bool = False) -> CleanReport:
    """Collapse duplicates and drop entries whose checkout is gone.

    Only registry rows are dropped; no directory is deleted.
    """
    target = Registry(registry.records()) if dry_run else registry
    report = CleanReport(deduplicated=target.dedupe())
    report.removed = [r for r in target.records() if not r.exists]
    if not dry_run:
        for record in report.removed:
            registry.remove(record.key)
    return report
