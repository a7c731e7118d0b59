"""Tests for the snapshot store."""

import json
import os

import pytest

from codemap.config import DEFAULT_CONFIG_TEXT, CodemapConfig
from codemap.errors import SnapshotVersionError, StoreError
from codemap.models import SCHEMA_VERSION, FileRecord, FunctionRecord, LanguageKind, Snapshot
from codemap.store import CodemapStore, atomic_write_json


def make_snapshot(version, extractor_version="x/1", rules_version="r/1"):
    function = FunctionRecord(
        qualified_name="main", path="main.py", line_start=1, line_end=2, body_hash="abc"
    )
    return Snapshot(
        version=version,
        created_at="2024-01-01T00:00:00+00:00",
        schema_version=SCHEMA_VERSION,
        extractor_version=extractor_version,
        rules_version=rules_version,
        files={
            "main.py": FileRecord(
                "main.py", LanguageKind.PYTHON, 20, "f" * 64, function_ids=(function.key,)
            )
        },
        functions={function.key: function},
    )


@pytest.fixture
def store(tmp_path):
    return CodemapStore(tmp_path)


class TestInitProject:
    """Tests for project initialization."""

    def test_writes_template_config(self, store):
        project = store.init_project()
        assert store.config_path.read_text() == DEFAULT_CONFIG_TEXT
        assert store.exists()
        assert project.name == store.root.resolve().name

    def test_idempotent(self, store):
        first = store.init_project()
        store.config_path.write_text("top_k = 3\n")
        second = store.init_project()
        assert second == first
        assert store.config_path.read_text() == "top_k = 3\n"

    def test_config_written_when_given(self, store):
        store.init_project(CodemapConfig(project_name="demo"))
        assert 'project_name = "demo"' in store.config_path.read_text()
        assert store.load_project().name == "demo"


class TestSnapshots:
    """Tests for saving, loading and publishing snapshots."""

    def test_save_and_load(self, store):
        snapshot = make_snapshot(1)
        store.save_snapshot(snapshot)
        loaded = store.load_latest()
        assert loaded == snapshot
        assert loaded.content_hash == snapshot.content_hash

    def test_index_tracks_latest_and_previous(self, store):
        for version in (1, 2, 3):
            store.save_snapshot(make_snapshot(version))
        assert store.read_index() == {"latest": 3, "previous": 2, "versions": [1, 2, 3]}
        assert store.next_version() == 4
        assert store.load_previous().version == 2

    def test_empty_store(self, store):
        assert store.load_latest() is None
        assert store.load_previous() is None
        assert store.next_version() == 1

    def test_extractor_mismatch(self, store):
        store.save_snapshot(make_snapshot(1, extractor_version="x/1"))
        with pytest.raises(SnapshotVersionError) as exc_info:
            store.load_latest(extractor_version="x/2")
        assert exc_info.value.found == "x/1"
        assert exc_info.value.expected == "x/2"

    def test_rules_mismatch(self, store):
        store.save_snapshot(make_snapshot(1, rules_version="r/1"))
        with pytest.raises(SnapshotVersionError):
            store.load_latest(rules_version="r/2")

    def test_unknown_schema(self, store):
        path = store.save_snapshot(make_snapshot(1))
        data = json.loads(path.read_text())
        data["schema_version"] = SCHEMA_VERSION + 1
        path.write_text(json.dumps(data))
        with pytest.raises(SnapshotVersionError):
            store.load_latest()

    def test_corrupt_snapshot(self, store):
        path = store.save_snapshot(make_snapshot(1))
        path.write_text("{truncated")
        with pytest.raises(StoreError):
            store.load_latest()

    def test_missing_snapshot(self, store):
        with pytest.raises(StoreError):
            store.load_snapshot(7)

    def test_no_temp_files_left(self, store):
        store.save_snapshot(make_snapshot(1))
        leftovers = [p for p in store.path.rglob("*") if p.name.endswith(".tmp")]
        assert leftovers == []

    def test_failed_snapshot_write_keeps_previous(self, store, monkeypatch):
        """A write that fails part way leaves the published state untouched."""
        store.save_snapshot(make_snapshot(1))
        index_before = store.read_index()

        def failing_dump(*args, **kwargs):
            raise OSError("No space left on device")

        monkeypatch.setattr("codemap.store.json.dump", failing_dump)
        with pytest.raises(OSError):
            store.save_snapshot(make_snapshot(2))
        monkeypatch.undo()

        assert store.load_latest().version == 1
        assert store.read_index() == index_before
        assert not store.snapshot_path(2).exists()
        assert [p for p in store.path.rglob("*") if p.name.endswith(".tmp")] == []

    def test_failed_index_publish_keeps_previous(self, store, monkeypatch):
        """A snapshot written but never indexed is not served as latest."""
        store.save_snapshot(make_snapshot(1))
        index_before = store.read_index()
        real_replace = os.replace
        calls = []

        def replace_then_fail(src, dst):
            calls.append(dst)
            if len(calls) == 2:
                raise OSError("rename failed")
            real_replace(src, dst)

        monkeypatch.setattr("codemap.store.os.replace", replace_then_fail)
        with pytest.raises(OSError):
            store.save_snapshot(make_snapshot(2))
        monkeypatch.undo()

        assert store.load_latest().version == 1
        assert store.read_index() == index_before
        assert [p for p in store.path.rglob("*") if p.name.endswith(".tmp")] == []

    def test_prune_keeps_latest_and_previous(self, store):
        for version in range(1, 6):
            store.save_snapshot(make_snapshot(version))
        deleted = store.prune(keep=1)
        assert deleted == [1, 2, 3]
        assert store.read_index()["versions"] == [4, 5]
        assert not store.snapshot_path(1).exists()
        assert store.load_previous().version == 4

    def test_prune_noop(self, store):
        store.save_snapshot(make_snapshot(1))
        assert store.prune(keep=10) == []


class TestReportsAndMetrics:
    """Tests for the report and run history files."""

    def test_report_round_trip(self, store):
        assert store.load_report() is None
        store.save_report({"run": {"version": 1}})
        assert store.load_report() == {"run": {"version": 1}}

    def test_run_metrics_append(self, store):
        store.append_run_metrics({"version": 1})
        store.append_run_metrics({"version": 2})
        assert store.load_run_metrics() == [{"version": 1}, {"version": 2}]

    def test_run_metrics_corrupt(self, store):
        store.path.mkdir()
        (store.path / "metrics.json").write_text('{"version": 1}')
        with pytest.raises(StoreError):
            store.load_run_metrics()

    def test_atomic_write_compact(self, tmp_path):
        path = tmp_path / "nested" / "data.json"
        atomic_write_json(path, {"b": 1, "a": 2}, compact=True)
        assert path.read_text() == '{"a":2,"b":1}'
