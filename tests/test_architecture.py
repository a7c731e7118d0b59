"""Tests for architecture pattern detection."""

from codemap.architecture import UNCLASSIFIED, detect_architecture, layer_of
from codemap.dependency_graph import DependencyGraph
from codemap.models import FileRecord, LanguageKind


def record(path, language=LanguageKind.PYTHON, imports=()):
    return FileRecord(path=path, language=language, size=1, file_hash=path, imports=tuple(imports))


def files_of(*records):
    return {r.path: r for r in records}


def detect(root, files, min_confidence=0.5):
    graph = DependencyGraph(root, files).build()
    return detect_architecture(files, graph, min_confidence=min_confidence)


class TestLayerOf:
    """Tests for directory to layer mapping."""

    def test_known_layers(self):
        assert layer_of("app/controllers/user.py") == "presentation"
        assert layer_of("src/services/billing.py") == "service"
        assert layer_of("src/repositories/store.py") == "data"
        assert layer_of("pkg/domain/order.go") == "domain"

    def test_file_name_is_not_a_layer(self):
        assert layer_of("api.py") is None
        assert layer_of("src/main.py") is None


class TestDetectArchitecture:
    """Tests for classification and confidence."""

    def test_layered_with_dependency_direction(self, tmp_path):
        files = files_of(
            record("app/api/routes.py", imports=["app.services.orders"]),
            record("app/services/orders.py", imports=["app.repositories.orders"]),
            record("app/repositories/orders.py"),
        )
        result = detect(tmp_path, files)
        assert result.primary.label == "Layered"
        assert result.primary.confidence == 1.0
        assert "presentation imports services but not vice versa" in result.primary.evidence
        assert [alt.label for alt in result.alternates] == ["Microservices"]

    def test_reverse_imports_lower_confidence(self, tmp_path):
        """A data layer importing services breaks the layering signal."""
        files = files_of(
            record("app/api/routes.py", imports=["app.services.orders"]),
            record("app/services/orders.py", imports=["app.repositories.orders"]),
            record("app/repositories/orders.py", imports=["app.services.orders"]),
        )
        result = detect(tmp_path, files)
        assert result.primary.label == "Layered"
        assert result.primary.confidence == 0.8

    def test_empty_tree_is_unclassified(self):
        result = detect_architecture({}, None)
        assert result.primary.label == UNCLASSIFIED
        assert result.primary.confidence == 0.0
        assert result.alternates == ()

    def test_weak_evidence_is_unclassified(self, tmp_path):
        files = files_of(record("plugins/foo.py"))
        result = detect(tmp_path, files)
        assert result.primary.label == UNCLASSIFIED
        assert 0.0 < result.primary.confidence < 0.5
        assert result.primary.evidence == ("plugins directory",)
        assert result.alternates[0].label == "Plugin"

    def test_min_confidence_is_configurable(self, tmp_path):
        files = files_of(record("plugins/foo.py"))
        result = detect(tmp_path, files, min_confidence=0.3)
        assert result.primary.label == "Plugin"

    def test_cli_application(self, tmp_path):
        files = files_of(
            record("tool/cli.py", imports=["argparse"]),
            record("tool/commands/run.py"),
        )
        result = detect(tmp_path, files)
        assert result.primary.label == "CLI application"
        assert result.primary.confidence == 1.0

    def test_monorepo(self, tmp_path):
        files = files_of(
            record("pnpm-workspace.yaml", LanguageKind.YAML),
            record("packages/web/package.json", LanguageKind.JSON),
            record("packages/api/package.json", LanguageKind.JSON),
        )
        result = detect(tmp_path, files)
        assert result.primary.label == "Monorepo"

    def test_confidences_in_unit_range(self, tmp_path):
        files = files_of(
            record("services/a/Dockerfile", LanguageKind.DOCKERFILE),
            record("services/b/Dockerfile", LanguageKind.DOCKERFILE),
            record("docker-compose.yml", LanguageKind.YAML),
            record("events/bus.py", imports=["kafka"]),
        )
        result = detect(tmp_path, files)
        for pattern in (result.primary, *result.alternates):
            assert 0.0 <= pattern.confidence <= 1.0

    def test_to_dict(self, tmp_path):
        files = files_of(record("tool/cli.py", imports=["click"]))
        data = detect(tmp_path, files).to_dict()
        assert set(data) == {"pattern", "confidence", "evidence", "alternates"}
