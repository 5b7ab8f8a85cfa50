"""Tests for registry.py: records, merging, dedupe and the JSON store."""

import json
from datetime import UTC, datetime

import pytest

from pji.errors import ParseError, PersistenceError
from pji.identity import parse_remote
from pji.registry import (
    Registry,
    RegistryStore,
    RepoRecord,
    UpsertResult,
    merge_records,
)

T1 = datetime(2024, 1, 1, tzinfo=UTC)
T2 = datetime(2024, 6, 1, tzinfo=UTC)
T3 = datetime(2025, 1, 1, tzinfo=UTC)


def record(path, remote="git@github.com:alice/proj.git", **kwargs) -> RepoRecord:
    return RepoRecord(identity=parse_remote(remote), local_path=path, remote_url=remote, **kwargs)


# ---------------------------------------------------------------------------
# RepoRecord
# ---------------------------------------------------------------------------


class TestRepoRecord:
    def test_key_comes_from_remote(self, tmp_path):
        r = RepoRecord(
            identity=parse_remote("github.com/alice/local-name"),
            local_path=tmp_path,
            remote_url="https://github.com/alice/proj.git",
        )
        assert r.key == "github.com/alice/proj"

    def test_key_without_remote_comes_from_identity(self, tmp_path):
        r = RepoRecord(identity=parse_remote("gitlab.com/bob/tool"), local_path=tmp_path)
        assert r.key == "gitlab.com/bob/tool"

    def test_matches_layout(self, tmp_path):
        assert record(tmp_path / "github.com" / "alice" / "proj").matches_layout
        assert not record(tmp_path / "elsewhere" / "proj").matches_layout

    def test_dict_round_trip(self, tmp_path):
        original = record(tmp_path / "github.com" / "alice" / "proj", created_at=T1, last_opened_at=T2)
        assert RepoRecord.from_dict(original.to_dict()) == original

    def test_from_dict_rejects_malformed_remote(self, tmp_path):
        data = record(tmp_path).to_dict()
        data["remote_url"] = "/not/a/remote"
        with pytest.raises(ParseError):
            RepoRecord.from_dict(data)


# ---------------------------------------------------------------------------
# merge_records
# ---------------------------------------------------------------------------


class TestMerge:
    def test_existing_checkout_wins_in_either_order(self, tmp_path):
        present = tmp_path / "a"
        present.mkdir()
        a = record(present)
        b = record(tmp_path / "gone")
        assert merge_records(a, b).local_path == present
        assert merge_records(b, a).local_path == present

    def test_canonical_layout_wins_when_both_exist(self, tmp_path):
        canonical = tmp_path / "github.com" / "alice" / "proj"
        other = tmp_path / "misc" / "proj"
        canonical.mkdir(parents=True)
        other.mkdir(parents=True)
        assert merge_records(record(other), record(canonical)).local_path == canonical
        assert merge_records(record(canonical), record(other)).local_path == canonical

    def test_timestamps(self, tmp_path):
        a = record(tmp_path, created_at=T2, last_opened_at=T2)
        b = record(tmp_path, created_at=T1, last_opened_at=T3)
        merged = merge_records(a, b)
        assert merged.created_at == T1
        assert merged.last_opened_at == T3

    def test_missing_timestamps_are_filled(self, tmp_path):
        merged = merge_records(record(tmp_path), record(tmp_path, created_at=T1))
        assert merged.created_at == T1
        assert merged.last_opened_at is None

    def test_remote_is_kept(self, tmp_path):
        without = RepoRecord(identity=parse_remote("github.com/alice/proj"), local_path=tmp_path)
        with_remote = record(tmp_path)
        assert without.key == with_remote.key
        assert merge_records(with_remote, without).remote_url == with_remote.remote_url


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class TestRegistry:
    def test_upsert_outcomes(self, tmp_path):
        reg = Registry()
        assert reg.upsert(record(tmp_path, created_at=T2)) == UpsertResult.INSERTED
        assert reg.upsert(record(tmp_path, created_at=T2)) == UpsertResult.UNCHANGED
        assert reg.upsert(record(tmp_path, created_at=T1)) == UpsertResult.MERGED
        assert len(reg) == 1
        assert reg.get("github.com/alice/proj").created_at == T1

    def test_equivalent_remotes_are_one_entry(self, tmp_path):
        reg = Registry()
        reg.upsert(record(tmp_path, remote="git@github.com:alice/proj.git"))
        reg.upsert(record(tmp_path, remote="https://github.com/alice/proj"))
        assert len(reg) == 1
        assert "github.com/alice/proj" in reg

    def test_remove_keeps_files(self, tmp_path):
        checkout = tmp_path / "proj"
        checkout.mkdir()
        reg = Registry([record(checkout)])
        assert reg.remove("github.com/alice/proj")
        assert not reg.remove("github.com/alice/proj")
        assert checkout.exists()
        assert len(reg) == 0

    def test_touch(self, tmp_path):
        reg = Registry([record(tmp_path)])
        touched = reg.touch("github.com/alice/proj", when=T3)
        assert touched.last_opened_at == T3
        assert reg.get("github.com/alice/proj").last_opened_at == T3
        assert reg.touch("github.com/nobody/none") is None

    def test_find_by_path_prefers_deepest(self, tmp_path):
        outer = record(tmp_path / "outer", remote="git@github.com:a/outer.git")
        inner = record(tmp_path / "outer" / "vendor" / "inner", remote="git@github.com:a/inner.git")
        reg = Registry([outer, inner])
        assert reg.find_by_path(tmp_path / "outer" / "vendor" / "inner" / "src") == inner
        assert reg.find_by_path(tmp_path / "outer" / "docs") == outer
        assert reg.find_by_path(tmp_path / "unrelated") is None

    def test_dedupe(self, tmp_path):
        kept = tmp_path / "github.com" / "alice" / "proj"
        kept.mkdir(parents=True)
        reg = Registry(
            [
                record(tmp_path / "old" / "proj", created_at=T1),
                record(kept, created_at=T2),
                record(tmp_path / "gitlab.com" / "bob" / "tool", remote="git@gitlab.com:bob/tool.git"),
            ]
        )
        assert reg.dedupe() == 1
        assert len(reg) == 2
        merged = reg.get("github.com/alice/proj")
        assert merged.local_path == kept
        assert merged.created_at == T1
        assert reg.dedupe() == 0


# ---------------------------------------------------------------------------
# RegistryStore
# ---------------------------------------------------------------------------


class TestRegistryStore:
    def test_missing_file_is_empty(self, tmp_path):
        assert len(RegistryStore(tmp_path / "repos.json").load()) == 0

    def test_save_and_load(self, tmp_path):
        store = RegistryStore(tmp_path / "state" / "repos.json")
        reg = Registry([record(tmp_path / "proj", created_at=T1, last_opened_at=T2)])
        store.save(reg)

        data = json.loads(store.path.read_text())
        assert data["version"] == 1
        assert data["repos"][0]["remote_url"] == "git@github.com:alice/proj.git"
        assert store.load().records() == reg.records()
        assert [p.name for p in store.path.parent.iterdir()] == ["repos.json"]

    def test_invalid_rows_are_skipped(self, tmp_path):
        path = tmp_path / "repos.json"
        good = record(tmp_path / "proj").to_dict()
        path.write_text(json.dumps({"version": 1, "repos": [good, {"host": "x"}, "junk"]}))
        loaded = RegistryStore(path).load()
        assert [r.key for r in loaded] == ["github.com/alice/proj"]

    def test_corrupt_file(self, tmp_path):
        path = tmp_path / "repos.json"
        path.write_text("{not json")
        with pytest.raises(PersistenceError):
            RegistryStore(path).load()

    def test_duplicates_survive_load_until_dedupe(self, tmp_path):
        path = tmp_path / "repos.json"
        rows = [record(tmp_path / "a").to_dict(), record(tmp_path / "b").to_dict()]
        path.write_text(json.dumps({"version": 1, "repos": rows}))
        reg = RegistryStore(path).load()
        assert len(reg) == 2
        assert reg.dedupe() == 1
