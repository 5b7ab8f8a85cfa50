"""Tests for Scanner: discovery, reconciliation and idempotence."""

import shutil

from pji.config import Config
from pji.core import Scanner
from pji.identity import parse_remote
from pji.registry import Registry, RepoRecord


def test_scan_registers_remote_and_local_only_repos(root, config, registry, fake_git, make_repo):
    proj = make_repo("github.com/alice/proj", remote="git@github.com:alice/proj.git")
    tool = make_repo("gitlab.com/bob/tool")

    report = Scanner(fake_git).scan(config, registry)

    assert sorted(r.key for r in report.added) == ["github.com/alice/proj", "gitlab.com/bob/tool"]
    assert report.failed == []
    assert registry.get("github.com/alice/proj").local_path == proj
    assert registry.get("github.com/alice/proj").remote_url == "git@github.com:alice/proj.git"
    local_only = registry.get("gitlab.com/bob/tool")
    assert local_only.local_path == tool
    assert local_only.remote_url is None
    assert local_only.created_at is not None


def test_second_scan_changes_nothing(config, registry, fake_git, make_repo):
    make_repo("github.com/alice/proj", remote="git@github.com:alice/proj.git")
    make_repo("gitlab.com/bob/tool")
    scanner = Scanner(fake_git)
    scanner.scan(config, registry)
    before = registry.records()

    report = scanner.scan(config, registry)

    assert report.added == []
    assert report.updated == []
    assert len(report.unchanged) == 2
    assert registry.records() == before


def test_sequential_and_parallel_agree(config, fake_git, make_repo):
    for i in range(6):
        make_repo(f"github.com/org/repo{i}", remote=f"git@github.com:org/repo{i}.git")
    parallel = Registry()
    sequential = Registry()
    Scanner(fake_git, max_workers=4).scan(config, parallel)
    Scanner(fake_git, sequential=True).scan(config, sequential)
    assert sorted(r.key for r in parallel) == sorted(r.key for r in sequential)
    assert len(parallel) == 6


def test_missing_checkout_is_orphaned_not_deleted(root, config, fake_git, make_repo):
    make_repo("github.com/alice/proj", remote="git@github.com:alice/proj.git")
    gone = RepoRecord(
        identity=parse_remote("git@github.com:alice/gone.git"),
        local_path=root / "github.com" / "alice" / "gone",
        remote_url="git@github.com:alice/gone.git",
    )
    registry = Registry([gone])

    report = Scanner(fake_git).scan(config, registry)

    assert [r.key for r in report.orphaned] == ["github.com/alice/gone"]
    assert "github.com/alice/gone" in registry


def test_deleted_checkout_is_orphaned_on_the_next_scan(config, registry, fake_git, make_repo):
    path = make_repo("github.com/alice/proj", remote="git@github.com:alice/proj.git")
    scanner = Scanner(fake_git)
    assert [r.key for r in scanner.scan(config, registry).added] == ["github.com/alice/proj"]

    shutil.rmtree(path)
    report = scanner.scan(config, registry)

    assert [r.key for r in report.orphaned] == ["github.com/alice/proj"]
    assert report.added == []
    assert registry.get("github.com/alice/proj").local_path == path


def test_malformed_remote_is_reported_and_skipped(config, registry, fake_git, make_repo):
    make_repo("github.com/alice/proj", remote="not-a-remote")
    make_repo("github.com/alice/good", remote="git@github.com:alice/good.git")

    report = Scanner(fake_git).scan(config, registry)

    assert len(report.failed) == 1
    assert report.failed[0].path.name == "proj"
    assert "not-a-remote" in report.failed[0].error
    assert [r.key for r in registry] == ["github.com/alice/good"]
    assert not report.all_failed


def test_all_failed(config, registry, fake_git, make_repo):
    make_repo("github.com/alice/proj", remote="/local/mirror")
    report = Scanner(fake_git).scan(config, registry)
    assert report.all_failed


def test_remote_not_matching_layout_is_flagged(config, registry, fake_git, make_repo):
    path = make_repo("github.com/alice/proj", remote="git@github.com:carol/other.git")

    report = Scanner(fake_git).scan(config, registry)

    assert [r.key for r in report.mismatched] == ["github.com/carol/other"]
    assert registry.get("github.com/carol/other").local_path == path


def test_discovery_rules(root, fake_git, make_repo):
    nested = make_repo("gitlab.com/group/sub/proj")
    make_repo("github.com/shallow")
    make_repo(".cache/github.com/alice/hidden")
    make_repo("github.com/alice/proj.worktrees/feature")
    linked = root / "github.com" / "alice" / "linked"
    linked.mkdir(parents=True)
    (linked / ".git").write_text("gitdir: /elsewhere/.git/worktrees/linked\n")
    inner = make_repo("github.com/alice/outer/vendor/inner")
    outer = root / "github.com" / "alice" / "outer"

    found = Scanner(fake_git).discover(root)

    assert nested in found
    assert outer not in found
    assert inner in found
    assert all(".cache" not in p.parts for p in found)
    assert all(not p.parent.name.endswith(".worktrees") for p in found)
    assert linked not in found


def test_nested_owner_identity(config, registry, fake_git, make_repo):
    make_repo("gitlab.com/group/sub/proj")
    Scanner(fake_git).scan(config, registry)
    assert registry.get("gitlab.com/group/sub/proj").identity.owner_path == ("group", "sub")


def test_duplicates_are_merged_before_scanning(root, config, fake_git, make_repo):
    path = make_repo("github.com/alice/proj", remote="git@github.com:alice/proj.git")
    stale = RepoRecord(
        identity=parse_remote("git@github.com:alice/proj.git"),
        local_path=root / "old" / "proj",
        remote_url="git@github.com:alice/proj.git",
    )
    current = RepoRecord(
        identity=parse_remote("git@github.com:alice/proj.git"),
        local_path=path,
        remote_url="https://github.com/alice/proj.git",
    )
    registry = Registry([stale, current])

    report = Scanner(fake_git).scan(config, registry)

    assert report.deduplicated == 1
    assert len(registry) == 1
    assert registry.get("github.com/alice/proj").local_path == path


def test_missing_root_is_skipped(tmp_path, registry, fake_git):
    report = Scanner(fake_git).scan(Config(roots=[tmp_path / "nope"]), registry)
    assert report.scanned == 0
