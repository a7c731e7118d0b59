"""Tests for tech stack detection."""

import pytest

from codemap.models import FileRecord, LanguageKind
from codemap.tech_stack import detect_tech_stack, is_manifest, read_manifest_dependencies


def record(path, language=LanguageKind.UNKNOWN, imports=()):
    return FileRecord(path=path, language=language, size=1, file_hash=path, imports=tuple(imports))


def by_name(entries):
    return {entry.name: entry for entry in entries}


class TestReadManifestDependencies:
    """Tests for manifest parsing."""

    def test_package_json(self, tmp_path):
        path = tmp_path / "package.json"
        path.write_text('{"dependencies": {"react": "^18"}, "devDependencies": {"jest": "^29"}}')
        assert read_manifest_dependencies(path) == ["react", "jest"]

    def test_requirements_txt(self, tmp_path):
        path = tmp_path / "requirements.txt"
        path.write_text("flask>=2.0\n# comment\n-r base.txt\nSQLAlchemy==2.0  # orm\n")
        assert read_manifest_dependencies(path) == ["flask", "SQLAlchemy"]

    def test_pyproject(self, tmp_path):
        path = tmp_path / "pyproject.toml"
        path.write_text(
            '[project]\nname = "x"\ndependencies = ["fastapi>=0.100", "redis"]\n'
            '[project.optional-dependencies]\ntest = ["pytest"]\n'
        )
        assert read_manifest_dependencies(path) == ["fastapi", "redis", "pytest"]

    def test_cargo_toml(self, tmp_path):
        path = tmp_path / "Cargo.toml"
        path.write_text('[package]\nname = "x"\n[dependencies]\ntokio = "1"\nserde = "1"\n')
        assert read_manifest_dependencies(path) == ["tokio", "serde"]

    def test_go_mod(self, tmp_path):
        path = tmp_path / "go.mod"
        path.write_text(
            "module example.com/app\n\ngo 1.21\n\nrequire (\n"
            "\tgithub.com/gin-gonic/gin v1.9.0\n\tgorm.io/gorm v1.25.0\n)\n"
        )
        assert read_manifest_dependencies(path) == ["github.com/gin-gonic/gin", "gorm.io/gorm"]

    def test_invalid_json_raises(self, tmp_path):
        path = tmp_path / "package.json"
        path.write_text("{not json")
        with pytest.raises(ValueError):
            read_manifest_dependencies(path)

    def test_is_manifest(self):
        assert is_manifest("services/api/package.json")
        assert is_manifest("requirements-dev.txt")
        assert not is_manifest("src/main.py")


class TestDetectTechStack:
    """Tests for the inventory."""

    def test_languages_imports_and_files(self, tmp_path):
        files = {
            "app.py": record("app.py", LanguageKind.PYTHON, ["flask", "sqlalchemy.orm"]),
            "web/index.ts": record("web/index.ts", LanguageKind.TYPESCRIPT, ["react"]),
            "Dockerfile": record("Dockerfile", LanguageKind.DOCKERFILE),
        }
        entries, warnings = detect_tech_stack(tmp_path, files)
        found = by_name(entries)

        assert warnings == ()
        assert found["Python"].category == "language"
        assert found["TypeScript"].category == "language"
        assert found["Flask"].category == "framework"
        assert found["React"].category == "framework"
        assert found["SQLAlchemy"].category == "database"
        assert found["Docker"].category == "deployment"
        assert found["Flask"].evidence == ("app.py imports flask",)

    def test_entries_ordered_by_category(self, tmp_path):
        files = {
            "Dockerfile": record("Dockerfile", LanguageKind.DOCKERFILE),
            "main.go": record("main.go", LanguageKind.GO, ["database/sql"]),
        }
        entries, _ = detect_tech_stack(tmp_path, files)
        categories = [entry.category for entry in entries]
        assert categories == ["language", "database", "deployment"]

    def test_manifest_dependencies(self, tmp_path):
        (tmp_path / "package.json").write_text('{"dependencies": {"express": "^4", "pg": "^8"}}')
        files = {"package.json": record("package.json", LanguageKind.JSON)}
        found = by_name(detect_tech_stack(tmp_path, files)[0])
        assert found["Express"].evidence == ("package.json declares express",)
        assert found["PostgreSQL"].category == "database"
        assert found["npm"].category == "tool"

    def test_invalid_manifest_is_a_warning(self, tmp_path):
        """A broken manifest is reported, not fatal."""
        (tmp_path / "package.json").write_text("{oops")
        files = {"package.json": record("package.json", LanguageKind.JSON)}
        entries, warnings = detect_tech_stack(tmp_path, files)
        assert [(w.kind, w.scope) for w in warnings] == [("io", "package.json")]
        assert "invalid manifest" in warnings[0].message
        assert "npm" in by_name(entries)

    def test_deduplicated_by_name(self, tmp_path):
        files = {
            "a.py": record("a.py", LanguageKind.PYTHON, ["redis"]),
            "b.py": record("b.py", LanguageKind.PYTHON, ["redis.asyncio"]),
        }
        found = by_name(detect_tech_stack(tmp_path, files)[0])
        assert found["Redis"].evidence == ("a.py imports redis", "b.py imports redis.asyncio")
