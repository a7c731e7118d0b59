"""Tests for the metrics phase."""

import pytest

import codemap.metrics as metrics_module
from codemap.config import MaintainabilityWeights, Thresholds
from codemap.extractors import extract_all
from codemap.merge import merge
from codemap.metrics import compute_function_metrics, compute_metrics
from codemap.models import FileRecord, FunctionMetrics, FunctionRecord, LanguageKind, Snapshot
from codemap.scanner import scan


def make_snapshot(functions, comment_lines=10, code_lines=40):
    records = {}
    for name, (cyclomatic, cognitive, length) in functions.items():
        record = FunctionRecord(
            qualified_name=name,
            path="src/app.py",
            line_start=1,
            line_end=length,
            body_hash=name,
            metrics=FunctionMetrics(cyclomatic, cognitive, length),
        )
        records[record.key] = record
    files = {
        "src/app.py": FileRecord(
            path="src/app.py",
            language=LanguageKind.PYTHON,
            size=100,
            file_hash="h",
            function_ids=tuple(sorted(records)),
            comment_lines=comment_lines,
            code_lines=code_lines,
        ),
        "README.md": FileRecord(
            path="README.md",
            language=LanguageKind.MARKDOWN,
            size=10,
            file_hash="r",
            comment_lines=0,
            code_lines=500,
        ),
    }
    return Snapshot(
        version=1,
        created_at="",
        schema_version=1,
        extractor_version="",
        rules_version="",
        files=files,
        functions=records,
    )


class TestComputeMetrics:
    """Tests for project-level aggregation."""

    def test_aggregates(self):
        snapshot = make_snapshot({"small": (1, 1, 5), "big": (21, 30, 80)})
        summary = compute_metrics(snapshot, Thresholds(), MaintainabilityWeights())

        assert summary.function_count == 2
        assert summary.avg_cyclomatic == 11.0
        assert summary.avg_cognitive == 15.5
        assert summary.max_cyclomatic == 21
        assert summary.debt_percent == 50.0
        assert summary.comment_ratio == pytest.approx(0.2)
        assert summary.components["complexity"] == pytest.approx(50.0)
        assert summary.components["comments"] == pytest.approx(100.0)
        assert summary.components["length"] == pytest.approx(50.0)
        assert summary.maintainability == pytest.approx(60.0)
        assert summary.hotspots == ("src/app.py::big", "src/app.py::small")

    def test_non_code_files_excluded_from_comment_ratio(self):
        """README lines do not dilute the comment density."""
        snapshot = make_snapshot({"f": (1, 1, 3)}, comment_lines=5, code_lines=5)
        summary = compute_metrics(snapshot, Thresholds(), MaintainabilityWeights())
        assert summary.comment_ratio == pytest.approx(0.5)

    def test_empty_snapshot(self):
        snapshot = make_snapshot({}, comment_lines=0, code_lines=0)
        summary = compute_metrics(snapshot, Thresholds(), MaintainabilityWeights())
        assert summary.function_count == 0
        assert summary.avg_cyclomatic == 0.0
        assert summary.debt_percent == 0.0
        assert 0.0 <= summary.maintainability <= 100.0

    def test_to_dict_layout(self):
        snapshot = make_snapshot({"f": (2, 3, 4)})
        data = compute_metrics(snapshot, Thresholds(), MaintainabilityWeights()).to_dict()
        assert set(data) == {"complexity", "maintainability", "debt_percent", "comment_ratio", "hotspots"}
        assert data["complexity"]["average_cyclomatic"] == 2.0
        assert set(data["maintainability"]["components"]) == {"complexity", "comments", "length"}


class TestComputeFunctionMetrics:
    """Tests for incremental per-function measurement."""

    def test_measures_every_new_function(self, sample_project):
        batch = extract_all(scan(str(sample_project)))
        snapshot = compute_function_metrics(merge(None, batch, version=1).snapshot, batch)
        assert snapshot.functions
        assert all(record.metrics is not None for record in snapshot.functions.values())

    def test_unchanged_functions_reuse_metrics(self, sample_project, monkeypatch):
        """Only added or modified functions are measured again."""
        batch = extract_all(scan(str(sample_project)))
        first = compute_function_metrics(merge(None, batch, version=1).snapshot, batch)

        (sample_project / "src" / "main.py").write_text(
            "from api.routes import handle\n\n\ndef main():\n    return handle({'x': 1})\n"
        )
        calls = []
        original = metrics_module.function_metrics

        def counting(source, language):
            calls.append(source)
            return original(source, language)

        monkeypatch.setattr(metrics_module, "function_metrics", counting)
        batch = extract_all(scan(str(sample_project)))
        second = compute_function_metrics(merge(first, batch, version=2).snapshot, batch)

        assert len(calls) == 1
        assert "handle({'x': 1})" in calls[0]
        key = "src/services/billing.py::charge"
        assert second.functions[key].metrics is first.functions[key].metrics
