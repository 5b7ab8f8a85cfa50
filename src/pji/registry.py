"""Persisted registry of known repositories.

Every record is addressed by its normalized key (``host/owner/name`` of the
remote URL, or of the checkout path for repositories without a remote). Two
records with the same key are duplicates and are merged, never both kept.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from collections.abc import Iterator
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path

from .errors import ParseError, PersistenceError
from .identity import RepoIdentity, parse_remote

logger = logging.getLogger(__name__)

REGISTRY_VERSION = 1


class UpsertResult(StrEnum):
    """Outcome of merging a record into the registry."""

    INSERTED = "inserted"
    MERGED = "merged"
    UNCHANGED = "unchanged"


def utcnow() -> datetime:
    return datetime.now(UTC).replace(microsecond=0)


@dataclass(frozen=True)
class RepoRecord:
    """A repository known to the registry."""

    identity: RepoIdentity
    local_path: Path
    remote_url: str | None = None
    created_at: datetime | None = None
    last_opened_at: datetime | None = None

    @property
    def key(self) -> str:
        if self.remote_url:
            return parse_remote(self.remote_url).key
        return self.identity.key

    @property
    def name(self) -> str:
        return self.identity.name

    @property
    def exists(self) -> bool:
        return self.local_path.is_dir()

    @property
    def matches_layout(self) -> bool:
        """Whether the checkout directory ends in ``host/owner/name`` of the key."""
        tail = self.key.split("/")
        parts = list(self.local_path.parts[-len(tail) :])
        if len(parts) != len(tail):
            return False
        return parts[0].lower() == tail[0] and parts[1:] == tail[1:]

    def to_dict(self) -> dict:
        return {
            "remote_url": self.remote_url,
            "local_path": str(self.local_path),
            "host": self.identity.host,
            "owner": self.identity.owner,
            "name": self.identity.name,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "last_opened_at": self.last_opened_at.isoformat() if self.last_opened_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> RepoRecord:
        owner = data.get("owner") or ""
        identity = RepoIdentity(
            host=data["host"],
            owner_path=tuple(s for s in owner.split("/") if s),
            name=data["name"],
        )
        if not identity.owner_path or not identity.name:
            raise ValueError("owner and name are required")
        remote_url = data.get("remote_url") or None
        if remote_url:
            parse_remote(remote_url)
        return cls(
            identity=identity,
            local_path=Path(data["local_path"]),
            remote_url=remote_url,
            created_at=_parse_time(data.get("created_at")),
            last_opened_at=_parse_time(data.get("last_opened_at")),
        )


def _parse_time(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _path_rank(record: RepoRecord) -> tuple:
    # Lower sorts first: on disk, canonical layout, then by path
    return (not record.exists, not record.matches_layout, str(record.local_path))


def merge_records(current: RepoRecord, incoming: RepoRecord) -> RepoRecord:
    """Merge two records sharing a key into the most complete one.

    The chosen checkout does not depend on argument order.
    """
    # On a tie the incoming record wins: it is the freshest read of git
    primary, secondary = sorted((incoming, current), key=_path_rank)
    created = [t for t in (current.created_at, incoming.created_at) if t is not None]
    opened = [t for t in (current.last_opened_at, incoming.last_opened_at) if t is not None]
    return RepoRecord(
        identity=primary.identity,
        local_path=primary.local_path,
        remote_url=primary.remote_url or secondary.remote_url,
        created_at=min(created) if created else None,
        last_opened_at=max(opened) if opened else None,
    )


class Registry:
    """Ordered set of repository records, unique by key.

    Mutations are serialized on a lock so parallel scanners can upsert
    concurrently.
    """

    def __init__(self, records: list[RepoRecord] | None = None):
        # Rows may hold duplicate keys until ``dedupe`` runs
        self._records: list[RepoRecord] = list(records or [])
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[RepoRecord]:
        return iter(self.records())

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def records(self) -> list[RepoRecord]:
        with self._lock:
            return list(self._records)

    def _index(self, key: str) -> int | None:
        for i, record in enumerate(self._records):
            if record.key == key:
                return i
        return None

    def get(self, key: str) -> RepoRecord | None:
        with self._lock:
            index = self._index(key)
            return None if index is None else self._records[index]

    def find_by_path(self, path: Path) -> RepoRecord | None:
        """Return the record whose checkout contains ``path``."""
        path = path.absolute()
        best: RepoRecord | None = None
        for record in self.records():
            local = record.local_path
            if path == local or local in path.parents:
                if best is None or len(local.parts) > len(best.local_path.parts):
                    best = record
        return best

    def upsert(self, record: RepoRecord) -> UpsertResult:
        """Insert a record, or merge it into the record sharing its key."""
        with self._lock:
            index = self._index(record.key)
            if index is None:
                self._records.append(record)
                return UpsertResult.INSERTED
            current = self._records[index]
            merged = merge_records(current, record)
            if merged == current:
                return UpsertResult.UNCHANGED
            self._records[index] = merged
            return UpsertResult.MERGED

    def remove(self, key: str) -> bool:
        """Drop every record with ``key``. Never touches the filesystem."""
        with self._lock:
            before = len(self._records)
            self._records = [r for r in self._records if r.key != key]
            return len(self._records) != before

    def touch(self, key: str, when: datetime | None = None) -> RepoRecord | None:
        """Mark a record as just opened."""
        with self._lock:
            index = self._index(key)
            if index is None:
                return None
            record = replace(self._records[index], last_opened_at=when or utcnow())
            self._records[index] = record
            return record

    def dedupe(self) -> int:
        """Collapse records sharing a key; return how many were removed.

        Only registry rows are dropped: duplicate checkouts stay on disk.
        """
        with self._lock:
            merged: dict[str, RepoRecord] = {}
            for record in self._records:
                key = record.key
                if key not in merged:
                    merged[key] = record
                    continue
                kept = merge_records(merged[key], record)
                for dropped in (merged[key], record):
                    if dropped.local_path != kept.local_path:
                        logger.warning(
                            "dropping duplicate registry entry %s for %s (kept %s)",
                            dropped.local_path,
                            key,
                            kept.local_path,
                        )
                merged[key] = kept
            removed = len(self._records) - len(merged)
            self._records = list(merged.values())
            return removed


class RegistryStore:
    """Loads and saves the registry file.

    Format: ``{"version": 1, "repos": [record, ...]}``.
    """

    def __init__(self, path: Path):
        self.path = path

    def load(self) -> Registry:
        """Load the registry; a missing file gives an empty registry.

        Rows that fail to parse are skipped with a warning.

        Raises:
            PersistenceError: the file cannot be read or is not valid JSON.
        """
        if not self.path.exists():
            return Registry()
        try:
            with open(self.path) as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise PersistenceError(self.path, str(e)) from e

        rows = data.get("repos") if isinstance(data, dict) else data
        if not isinstance(rows, list):
            raise PersistenceError(self.path, "expected a list of repos")

        records = []
        for row in rows:
            try:
                records.append(RepoRecord.from_dict(row))
            except (KeyError, TypeError, ValueError, AttributeError, ParseError) as e:
                logger.warning("skipping invalid registry entry %r: %s", row, e)
        return Registry(records)

    def save(self, registry: Registry) -> None:
        """Write the registry atomically.

        Raises:
            PersistenceError: the file cannot be written.
        """
        payload = {
            "version": REGISTRY_VERSION,
            "repos": [r.to_dict() for r in registry.records()],
        }
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w") as f:
                    json.dump(payload, f, indent=2)
                    f.write("\n")
                os.replace(tmp_name, self.path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise PersistenceError(self.path, str(e)) from e
