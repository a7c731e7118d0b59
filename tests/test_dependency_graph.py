#!/usr/bin/env python3
"""Tests for the DependencyGraph module."""

import pytest

from codemap.architecture import layer_of
from codemap.dependency_graph import DependencyGraph
from codemap.models import FileRecord, LanguageKind


def record(path, language, imports=()):
    return FileRecord(path=path, language=language, size=1, file_hash=path, imports=tuple(imports))


@pytest.fixture
def python_files():
    """A mini Python project where config.py is the hub."""
    return {
        "src/core/__init__.py": record("src/core/__init__.py", LanguageKind.PYTHON),
        "src/core/config.py": record("src/core/config.py", LanguageKind.PYTHON),
        "src/core/utils.py": record("src/core/utils.py", LanguageKind.PYTHON, [".config"]),
        "src/api/routes.py": record(
            "src/api/routes.py", LanguageKind.PYTHON, ["..core.config", "..core.utils"]
        ),
        "src/api/middleware.py": record("src/api/middleware.py", LanguageKind.PYTHON, ["..core.config"]),
        "src/main.py": record(
            "src/main.py", LanguageKind.PYTHON, ["core.config", "api.routes", "os"]
        ),
        "README.md": record("README.md", LanguageKind.MARKDOWN),
    }


class TestBuild:
    """Tests for graph construction."""

    def test_relative_python_imports(self, tmp_path, python_files):
        graph = DependencyGraph(tmp_path, python_files).build()
        assert graph.nodes["src/core/utils.py"].resolved_imports == ["src/core/config.py"]
        assert graph.nodes["src/api/routes.py"].resolved_imports == [
            "src/core/config.py",
            "src/core/utils.py",
        ]

    def test_absolute_imports_by_suffix(self, tmp_path, python_files):
        graph = DependencyGraph(tmp_path, python_files).build()
        assert graph.nodes["src/main.py"].resolved_imports == [
            "src/api/routes.py",
            "src/core/config.py",
        ]

    def test_non_code_files_excluded(self, tmp_path, python_files):
        graph = DependencyGraph(tmp_path, python_files).build()
        assert "README.md" not in graph.nodes

    def test_in_degree(self, tmp_path, python_files):
        graph = DependencyGraph(tmp_path, python_files).build()
        assert graph.in_degree("src/core/config.py") == 4
        assert graph.in_degree("src/main.py") == 0
        assert graph.in_degree("missing.py") == 0
        assert graph.max_in_degree() == 4

    def test_hub_files(self, tmp_path, python_files):
        graph = DependencyGraph(tmp_path, python_files).build()
        assert graph.get_hub_files(threshold=3) == ["src/core/config.py"]

    def test_pagerank_ranks_hub_first(self, tmp_path, python_files):
        graph = DependencyGraph(tmp_path, python_files).build()
        top_path, top_score = graph.get_critical_paths(top_n=1)[0]
        assert top_path == "src/core/config.py"
        assert 0.0 < top_score < 1.0

    def test_javascript_relative_imports(self, tmp_path):
        files = {
            "web/index.js": record("web/index.js", LanguageKind.JAVASCRIPT, ["./lib/api", "react"]),
            "web/lib/api.js": record("web/lib/api.js", LanguageKind.JAVASCRIPT, ["../util"]),
            "web/util/index.js": record("web/util/index.js", LanguageKind.JAVASCRIPT),
        }
        graph = DependencyGraph(tmp_path, files).build()
        assert graph.nodes["web/index.js"].resolved_imports == ["web/lib/api.js"]
        assert graph.nodes["web/lib/api.js"].resolved_imports == ["web/util/index.js"]

    def test_go_module_prefix(self, tmp_path):
        (tmp_path / "go.mod").write_text("module example.com/app\n\ngo 1.21\n")
        files = {
            "go.mod": record("go.mod", LanguageKind.UNKNOWN),
            "main.go": record("main.go", LanguageKind.GO, ["example.com/app/server", "fmt"]),
            "server/server.go": record("server/server.go", LanguageKind.GO),
        }
        graph = DependencyGraph(tmp_path, files).build()
        assert graph.module_name == "example.com/app"
        assert graph.nodes["main.go"].resolved_imports == ["server/server.go"]

    def test_ambiguous_suffix_not_resolved(self, tmp_path):
        """An import matching several files adds no edge."""
        files = {
            "a/utils.py": record("a/utils.py", LanguageKind.PYTHON),
            "b/utils.py": record("b/utils.py", LanguageKind.PYTHON),
            "main.py": record("main.py", LanguageKind.PYTHON, ["utils"]),
        }
        graph = DependencyGraph(tmp_path, files).build()
        assert graph.nodes["main.py"].resolved_imports == []

    def test_not_built_raises(self, tmp_path, python_files):
        graph = DependencyGraph(tmp_path, python_files)
        with pytest.raises(RuntimeError):
            graph.in_degree("src/main.py")


class TestStats:
    """Tests for layer edges and statistics."""

    def test_layer_edges(self, tmp_path):
        files = {
            "app/controllers/user.py": record(
                "app/controllers/user.py", LanguageKind.PYTHON, ["app.services.user"]
            ),
            "app/services/user.py": record(
                "app/services/user.py", LanguageKind.PYTHON, ["app.repositories.user"]
            ),
            "app/repositories/user.py": record("app/repositories/user.py", LanguageKind.PYTHON),
        }
        graph = DependencyGraph(tmp_path, files).build()
        assert graph.layer_edges(layer_of) == {
            ("presentation", "service"): 1,
            ("service", "data"): 1,
        }

    def test_get_stats(self, tmp_path, python_files):
        stats = DependencyGraph(tmp_path, python_files).build().get_stats()
        assert stats["total_files"] == 6
        assert stats["total_edges"] == 6
        assert stats["hub_files"] == 1
        assert len(stats["critical_paths"]) == 5
