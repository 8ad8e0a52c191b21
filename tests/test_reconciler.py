"""
Tests for full reconciliation cycles.
"""

import logging
import os

import pytest

import replica_sync
from replica_sync import IgnoreMatcher, run_once, temp_path_for


def files_of(root):
    found = {}
    for dirpath, _dirnames, filenames in os.walk(root):
        for name in filenames:
            full = os.path.join(dirpath, name)
            rel = os.path.relpath(full, root).replace(os.sep, "/")
            with open(full, encoding="utf-8") as f:
                found[rel] = f.read()
    return found


def dirs_of(root):
    return sorted(
        os.path.relpath(os.path.join(dirpath, d), root).replace(os.sep, "/")
        for dirpath, dirnames, _ in os.walk(root)
        for d in dirnames
    )


def test_example_scenario(trees, make_file, ctx):
    source, replica = trees
    make_file(source / "a.txt", "X", mtime=1_600_000_000)
    make_file(source / "sub" / "b.txt", "B")

    report = run_once(source, replica, ctx=ctx)

    assert files_of(replica) == {"a.txt": "X", "sub/b.txt": "B"}
    assert (replica / "a.txt").stat().st_mtime == 1_600_000_000
    assert sorted(report.created) == ["a.txt", "sub/b.txt"]
    assert report.ok

    b_mtime = (replica / "sub" / "b.txt").stat().st_mtime
    (source / "a.txt").unlink()
    report = run_once(source, replica, ctx=ctx)

    assert files_of(replica) == {"sub/b.txt": "B"}
    assert report.deleted_files == ["a.txt"]
    assert report.created == [] and report.updated == []
    assert (replica / "sub" / "b.txt").stat().st_mtime == b_mtime


def test_convergence_from_arbitrary_replica(trees, make_file, ctx):
    source, replica = trees
    make_file(source / "same.txt", "same", mtime=1_000_000)
    make_file(source / "changed.txt", "fresh", mtime=2_000_000)
    make_file(source / "docs" / "new.md", "doc")
    (source / "empty_in_source").mkdir()

    make_file(replica / "same.txt", "same", mtime=1_000_001)
    make_file(replica / "changed.txt", "stale", mtime=1_000_000)
    make_file(replica / "extra.txt", "orphan")
    make_file(replica / "old" / "deep" / "gone.txt", "orphan")
    make_file(temp_path_for(replica / "changed.txt"), "leftover")
    make_file(temp_path_for(replica / "same.txt"), "leftover")

    report = run_once(source, replica, ctx=ctx)

    assert files_of(replica) == files_of(source)
    assert dirs_of(replica) == dirs_of(source)
    assert report.created == ["docs/new.md"]
    assert report.updated == ["changed.txt"]
    assert sorted(report.deleted_files) == ["extra.txt", "old/deep/gone.txt", "same.txt.tmp_copy"]
    assert report.ok
    assert report.deleted_dirs == ["old/deep", "old"]
    assert "empty_in_source" in report.created_dirs
    assert (replica / "changed.txt").stat().st_mtime == 2_000_000


def test_second_run_without_changes_is_idle(trees, make_file, ctx):
    source, replica = trees
    make_file(source / "a.txt", "a")
    make_file(source / "x" / "y" / "z.txt", "z")
    (source / "empty").mkdir()

    run_once(source, replica, ctx=ctx)
    report = run_once(source, replica, use_hash=True, ctx=ctx)

    assert report.changes == 0
    assert report.ok


def test_orphan_directories_removed_deepest_first(trees, ctx, caplog):
    source, replica = trees
    (replica / "a" / "b" / "c").mkdir(parents=True)

    with caplog.at_level(logging.INFO):
        report = run_once(source, replica, ctx=ctx)

    assert report.deleted_dirs == ["a/b/c", "a/b", "a"]
    assert dirs_of(replica) == []
    deletions = [r.getMessage() for r in caplog.records if "[del folder]" in r.getMessage()]
    assert deletions == ["[del folder] a/b/c", "[del folder] a/b", "[del folder] a"]


def test_empty_source_empties_replica(trees, make_file, ctx):
    source, replica = trees
    make_file(replica / "one.txt")
    make_file(replica / "d" / "two.txt")

    run_once(source, replica, ctx=ctx)

    assert files_of(replica) == {}
    assert dirs_of(replica) == []


def test_rename_is_new_plus_delete(trees, make_file, ctx):
    source, replica = trees
    make_file(source / "before.txt", "content")
    run_once(source, replica, ctx=ctx)

    os.rename(source / "before.txt", source / "after.txt")
    report = run_once(source, replica, ctx=ctx)

    assert report.created == ["after.txt"]
    assert report.deleted_files == ["before.txt"]


def test_hash_compare_catches_same_mtime_edit(trees, make_file, ctx):
    source, replica = trees
    make_file(source / "a.txt", "v1", mtime=1_000_000)
    run_once(source, replica, ctx=ctx)

    make_file(source / "a.txt", "v2", mtime=1_000_000)

    assert run_once(source, replica, use_hash=False, ctx=ctx).changes == 0
    assert (replica / "a.txt").read_text(encoding="utf-8") == "v1"

    report = run_once(source, replica, use_hash=True, ctx=ctx)
    assert report.updated == ["a.txt"]
    assert (replica / "a.txt").read_text(encoding="utf-8") == "v2"


def test_copy_failure_does_not_stop_the_cycle(trees, make_file, ctx, monkeypatch, caplog):
    source, replica = trees
    make_file(source / "bad.txt", "bad")
    make_file(source / "good1.txt", "g1")
    make_file(source / "good2.txt", "g2")
    make_file(replica / "orphan.txt")
    real_copy = replica_sync.atomic_copy

    def flaky_copy(src, target, cancel=None):
        if src.name == "bad.txt":
            raise PermissionError("file is locked")
        return real_copy(src, target, cancel=cancel)

    monkeypatch.setattr(replica_sync, "atomic_copy", flaky_copy)

    with caplog.at_level(logging.INFO):
        report = run_once(source, replica, ctx=ctx)

    assert sorted(report.created) == ["good1.txt", "good2.txt"]
    assert report.deleted_files == ["orphan.txt"]
    assert [(f.action, f.rel_path) for f in report.failures] == [("new", "bad.txt")]
    assert not report.ok
    errors = [r for r in caplog.records if r.levelno == logging.ERROR]
    assert [r.getMessage() for r in errors] == ["[new] bad.txt | file is locked"]


def test_delete_failure_is_logged_and_skipped(trees, make_file, ctx, monkeypatch):
    source, replica = trees
    make_file(replica / "stuck.txt")
    make_file(replica / "loose.txt")
    real_unlink = replica_sync.Path.unlink

    def unlink(self, *args, **kwargs):
        if self.name == "stuck.txt":
            raise PermissionError("in use")
        return real_unlink(self, *args, **kwargs)

    monkeypatch.setattr(replica_sync.Path, "unlink", unlink)

    report = run_once(source, replica, ctx=ctx)

    assert report.deleted_files == ["loose.txt"]
    assert [f.rel_path for f in report.failures] == ["stuck.txt"]
    assert (replica / "stuck.txt").exists()


def test_non_empty_orphan_directory_is_kept(trees, make_file, ctx, monkeypatch):
    source, replica = trees
    make_file(replica / "keep" / "locked.bin")
    monkeypatch.setattr(replica_sync, "delete_file", lambda meta: replica_sync.ItemResult(
        "del file", meta.rel_path, error=PermissionError("in use")))

    report = run_once(source, replica, ctx=ctx)

    assert (replica / "keep").is_dir()
    assert report.deleted_dirs == []


def test_missing_source_root_propagates(tmp_path, ctx):
    with pytest.raises(OSError):
        run_once(tmp_path / "nope", tmp_path / "replica", ctx=ctx)


def test_excluded_paths_are_treated_as_absent(trees, make_file, ctx):
    source, replica = trees
    make_file(source / "keep.txt", "k")
    make_file(source / "debug.log", "noise")
    make_file(source / "build" / "out.o", "obj")
    make_file(replica / "old.log", "old")
    make_file(replica / "build" / "stale.o", "obj")

    report = run_once(source, replica, ctx=ctx, ignore=IgnoreMatcher(["*.log", "build/"]))

    assert files_of(replica) == {"keep.txt": "k"}
    assert dirs_of(replica) == []
    assert "build" in report.deleted_dirs


def test_cancelled_cycle_stops_before_touching_files(trees, make_file, ctx):
    source, replica = trees
    make_file(source / "a.txt")
    ctx.cancel()

    report = run_once(source, replica, ctx=ctx)

    assert report.cancelled
    assert files_of(replica) == {}


def test_copies_happen_before_deletes(trees, make_file, ctx, caplog):
    source, replica = trees
    make_file(source / "z_new.txt")
    make_file(replica / "a_old.txt")

    with caplog.at_level(logging.INFO):
        run_once(source, replica, ctx=ctx)

    actions = [r.action for r in caplog.records if hasattr(r, "action")]
    assert actions == ["new", "del file"]


def test_source_file_named_like_a_temp_file_survives_update(trees, make_file, ctx):
    source, replica = trees
    make_file(source / "a", "base v1", mtime=1_000_000)
    make_file(source / "a.tmp_copy", "real data", mtime=1_000_000)
    run_once(source, replica, ctx=ctx)

    make_file(source / "a", "base v2", mtime=2_000_000)
    report = run_once(source, replica, ctx=ctx)

    assert report.ok
    assert report.updated == ["a"]
    assert report.created == ["a.tmp_copy"]
    assert files_of(replica) == {"a": "base v2", "a.tmp_copy": "real data"}
    assert run_once(source, replica, ctx=ctx).changes == 0
