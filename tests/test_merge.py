"""Tests for the merge engine and function-level diff."""

import pytest

from codemap.extractors import extract_all
from codemap.merge import diff_snapshots, match_functions, merge
from codemap.models import DiffStatus
from codemap.scanner import scan

A_PY = "def helper(x):\n    return x + 1\n"
B_PY = "def existing():\n    return 2\n"


def run(root, previous=None, version=1, **kwargs):
    batch = extract_all(scan(str(root)))
    return merge(previous, batch, version=version, created_at="2024-01-01T00:00:00+00:00", **kwargs)


@pytest.fixture
def two_files(make_project):
    return make_project({"a.py": A_PY, "b.py": B_PY})


class TestMatchFunctions:
    """Tests for key and hash matching."""

    def test_statuses(self):
        previous = {"a::f": "1", "a::g": "2", "a::h": "3"}
        current = {"a::f": "1", "a::g": "9", "b::h2": "3", "a::new": "7"}
        statuses, moved_from, removed = match_functions(previous, current)
        assert statuses == {
            "a::f": DiffStatus.UNCHANGED,
            "a::g": DiffStatus.MODIFIED,
            "a::new": DiffStatus.ADDED,
            "b::h2": DiffStatus.MOVED,
        }
        assert moved_from == {"b::h2": "a::h"}
        assert removed == []

    def test_moves_paired_one_to_one(self):
        """Each added key pairs with at most one removed key."""
        previous = {"a::x": "h", "a::y": "h"}
        current = {"b::x": "h"}
        statuses, moved_from, removed = match_functions(previous, current)
        assert moved_from == {"b::x": "a::x"}
        assert removed == ["a::y"]


class TestMerge:
    """Tests for snapshot merging."""

    def test_first_run_all_added(self, two_files):
        result = run(two_files)
        assert result.diff.keys_with(DiffStatus.ADDED) == ["a.py::helper", "b.py::existing"]
        assert result.diff.file_status("a.py") == DiffStatus.ADDED
        assert result.snapshot.tombstones == {}

    def test_idempotent(self, two_files):
        """Merging an unchanged tree reproduces the same content."""
        first = run(two_files).snapshot
        second = run(two_files, first, version=2)
        assert second.snapshot.content_hash == first.content_hash
        assert set(second.diff.keys_with(DiffStatus.UNCHANGED)) == set(first.functions)
        assert second.diff.reuse_ratio() == 1.0
        assert second.diff.insight_eligible_paths() == ()

    def test_deterministic(self, two_files):
        first = run(two_files).snapshot
        again = run(two_files).snapshot
        assert first == again

    def test_unchanged_records_reused(self, two_files):
        first = run(two_files).snapshot
        second = run(two_files, first, version=2).snapshot
        third = run(two_files, second, version=3).snapshot
        assert third.functions["a.py::helper"] is second.functions["a.py::helper"]

    def test_every_function_accounted_for(self, sample_project):
        result = run(sample_project)
        for path, record in result.snapshot.files.items():
            for key in record.function_ids:
                assert key in result.snapshot.functions
                assert result.snapshot.functions[key].path == path
        assert "src/services/billing.py::Billing.total" in result.snapshot.functions

    def test_new_function_in_one_file(self, two_files):
        first = run(two_files).snapshot
        (two_files / "b.py").write_text(B_PY + "\n\ndef new_fn():\n    return 3\n")
        result = run(two_files, first, version=2)

        assert result.diff.keys_with(DiffStatus.ADDED) == ["b.py::new_fn"]
        assert result.diff.keys_with(DiffStatus.MODIFIED) == []
        assert result.diff.file_status("b.py") == DiffStatus.MODIFIED
        assert result.diff.file_status("a.py") == DiffStatus.UNCHANGED
        assert result.snapshot.functions["b.py::existing"].status == DiffStatus.UNCHANGED
        assert result.diff.insight_eligible_paths() == ("b.py",)

    def test_body_edit_is_modified(self, two_files):
        first = run(two_files).snapshot
        (two_files / "a.py").write_text("def helper(x):\n    return x + 2\n")
        result = run(two_files, first, version=2)
        assert result.diff.keys_with(DiffStatus.MODIFIED) == ["a.py::helper"]
        assert result.snapshot.functions["a.py::helper"].metrics is None
        assert result.diff.reuse_ratio() == pytest.approx(0.5)

    def test_comment_edit_keeps_function_unchanged(self, two_files):
        first = run(two_files).snapshot
        (two_files / "a.py").write_text("def helper(x):\n    # add one\n    return x + 1\n")
        result = run(two_files, first, version=2)
        assert result.diff.keys_with(DiffStatus.UNCHANGED) == ["a.py::helper", "b.py::existing"]

    def test_rename_is_moved(self, two_files):
        first = run(two_files).snapshot
        (two_files / "a.py").write_text("def increment(x):\n    return x + 1\n")
        result = run(two_files, first, version=2)

        assert result.diff.moved == [("a.py::helper", "a.py::increment")]
        assert result.snapshot.functions["a.py::increment"].moved_from == "a.py::helper"
        assert "a.py::helper" not in result.snapshot.tombstones

    def test_move_to_other_file(self, two_files):
        first = run(two_files).snapshot
        (two_files / "a.py").write_text("X = 1\n")
        (two_files / "b.py").write_text(B_PY + "\n\n" + A_PY)
        result = run(two_files, first, version=2)
        assert result.diff.moved == [("a.py::helper", "b.py::helper")]
        assert result.diff.file_status("a.py") == DiffStatus.MODIFIED

    def test_removed_function_tombstoned_then_purged(self, two_files):
        snapshot = run(two_files).snapshot
        (two_files / "a.py").write_text("X = 1\n")
        result = run(two_files, snapshot, version=2, tombstone_runs=1)
        assert result.diff.keys_with(DiffStatus.REMOVED) == ["a.py::helper"]
        tombstone = result.snapshot.tombstones["a.py::helper"]
        assert tombstone.status == DiffStatus.REMOVED
        assert tombstone.removed_in == 2

        third = run(two_files, result.snapshot, version=3, tombstone_runs=1).snapshot
        assert "a.py::helper" in third.tombstones
        fourth = run(two_files, third, version=4, tombstone_runs=1).snapshot
        assert "a.py::helper" not in fourth.tombstones

    def test_restored_function_leaves_tombstones(self, two_files):
        snapshot = run(two_files).snapshot
        (two_files / "a.py").write_text("X = 1\n")
        removed = run(two_files, snapshot, version=2).snapshot
        (two_files / "a.py").write_text(A_PY)
        restored = run(two_files, removed, version=3)
        assert restored.diff.keys_with(DiffStatus.ADDED) == ["a.py::helper"]
        assert restored.snapshot.tombstones == {}

    def test_removed_file(self, two_files):
        snapshot = run(two_files).snapshot
        (two_files / "b.py").unlink()
        result = run(two_files, snapshot, version=2)
        assert result.diff.file_status("b.py") == DiffStatus.REMOVED
        assert list(result.snapshot.removed_files) == ["b.py"]
        assert "b.py::existing" in result.snapshot.tombstones

    def test_file_without_functions_uses_file_hash(self, make_project):
        root = make_project({"config.yaml": "a: 1\n"})
        first = run(root).snapshot
        (root / "config.yaml").write_text("a: 2\n")
        assert run(root, first, version=2).diff.file_status("config.yaml") == DiffStatus.MODIFIED

    def test_parse_failure_demotes_file(self, two_files):
        snapshot = run(two_files).snapshot
        (two_files / "a.py").write_text("def helper(x:\n    return x + 1\n")
        result = run(two_files, snapshot, version=2)

        assert [(w.kind, w.scope) for w in result.warnings] == [("parse", "a.py")]
        assert result.snapshot.files["a.py"].parseable is False
        assert result.diff.keys_with(DiffStatus.REMOVED) == ["a.py::helper"]


class TestDiffSnapshots:
    """Tests for recomputing a diff from stored snapshots."""

    def test_matches_merge_diff(self, two_files):
        first = run(two_files).snapshot
        (two_files / "a.py").write_text("def increment(x):\n    return x + 1\n")
        (two_files / "b.py").write_text("def existing():\n    return 20\n")
        result = run(two_files, first, version=2)
        assert diff_snapshots(first, result.snapshot) == result.diff

    def test_no_previous(self, two_files):
        snapshot = run(two_files).snapshot
        diff = diff_snapshots(None, snapshot)
        assert diff.summary()["added"] == 2
        assert diff.summary()["files"]["added"] == 2

    def test_to_dict(self, two_files):
        first = run(two_files).snapshot
        (two_files / "a.py").write_text("def increment(x):\n    return x + 1\n")
        data = run(two_files, first, version=2).diff.to_dict()
        assert data["moved"] == [{"from": "a.py::helper", "to": "a.py::increment"}]
        assert data["functions"] == {"moved": ["a.py::increment"]}
        assert data["files"] == {"a.py": "modified", "b.py": "unchanged"}
