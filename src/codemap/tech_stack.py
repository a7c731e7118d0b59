"""Tech stack inventory from file names, imports and manifests.

Three registries feed the inventory:

* ``FILE_RULES``: glob patterns on relative paths (lockfiles, CI and
  deployment configs).
* ``IMPORT_RULES``: import prefixes per language.
* ``DEPENDENCY_RULES``: dependency names declared in ``package.json``,
  ``requirements*.txt``, ``pyproject.toml``, ``Cargo.toml`` or ``go.mod``.

Every match adds evidence; entries are deduplicated by name and sorted by
category then name. A manifest that cannot be read or parsed is reported
as an ``io`` warning and otherwise ignored.

Example:
    >>> entries, warnings = detect_tech_stack(root, snapshot.files)
    >>> [(e.category, e.name) for e in entries][:3]
    [('language', 'Python'), ('framework', 'FastAPI'), ('database', 'PostgreSQL')]
"""

import fnmatch
import json
import logging
import re
import tomllib
from pathlib import Path, PurePosixPath
from typing import Dict, Iterable, List, Mapping, Set, Tuple

from .models import FileRecord, LanguageKind, RunWarning, TechStackEntry

logger = logging.getLogger(__name__)

CATEGORY_ORDER = ("language", "framework", "database", "tool", "deployment")

LANGUAGE_NAMES = {
    LanguageKind.PYTHON: "Python",
    LanguageKind.JAVASCRIPT: "JavaScript",
    LanguageKind.TYPESCRIPT: "TypeScript",
    LanguageKind.RUST: "Rust",
    LanguageKind.GO: "Go",
    LanguageKind.JAVA: "Java",
    LanguageKind.C: "C",
    LanguageKind.CPP: "C++",
    LanguageKind.CSHARP: "C#",
    LanguageKind.PHP: "PHP",
    LanguageKind.KOTLIN: "Kotlin",
    LanguageKind.SWIFT: "Swift",
    LanguageKind.RUBY: "Ruby",
    LanguageKind.SHELL: "Shell",
}

FILE_RULES: List[Tuple[str, str, str]] = [
    ("Dockerfile", "deployment", "Docker"),
    ("*.dockerfile", "deployment", "Docker"),
    ("docker-compose*.yml", "deployment", "Docker Compose"),
    ("docker-compose*.yaml", "deployment", "Docker Compose"),
    ("compose.yaml", "deployment", "Docker Compose"),
    ("k8s/*", "deployment", "Kubernetes"),
    ("*/k8s/*", "deployment", "Kubernetes"),
    ("helm/*", "deployment", "Helm"),
    ("Chart.yaml", "deployment", "Helm"),
    ("*.tf", "deployment", "Terraform"),
    ("serverless.yml", "deployment", "Serverless Framework"),
    ("vercel.json", "deployment", "Vercel"),
    ("netlify.toml", "deployment", "Netlify"),
    ("Procfile", "deployment", "Heroku"),
    (".github/workflows/*", "tool", "GitHub Actions"),
    (".gitlab-ci.yml", "tool", "GitLab CI"),
    ("Jenkinsfile", "tool", "Jenkins"),
    ("Makefile", "tool", "Make"),
    ("CMakeLists.txt", "tool", "CMake"),
    ("package.json", "tool", "npm"),
    ("yarn.lock", "tool", "Yarn"),
    ("pnpm-lock.yaml", "tool", "pnpm"),
    ("poetry.lock", "tool", "Poetry"),
    ("uv.lock", "tool", "uv"),
    ("Pipfile", "tool", "Pipenv"),
    ("Cargo.toml", "tool", "Cargo"),
    ("go.mod", "tool", "Go modules"),
    ("pom.xml", "tool", "Maven"),
    ("build.gradle", "tool", "Gradle"),
    ("build.gradle.kts", "tool", "Gradle"),
    ("composer.json", "tool", "Composer"),
    ("Gemfile", "tool", "Bundler"),
    ("tsconfig.json", "tool", "TypeScript compiler"),
    ("vite.config.*", "tool", "Vite"),
    ("webpack.config.*", "tool", "webpack"),
    ("tox.ini", "tool", "tox"),
    ("pytest.ini", "tool", "pytest"),
    ("conftest.py", "tool", "pytest"),
    ("jest.config.*", "tool", "Jest"),
    ("next.config.*", "framework", "Next.js"),
    ("nuxt.config.*", "framework", "Nuxt"),
    ("angular.json", "framework", "Angular"),
    ("manage.py", "framework", "Django"),
    ("alembic.ini", "database", "Alembic"),
    ("*.sql", "database", "SQL"),
    ("prisma/schema.prisma", "database", "Prisma"),
]

IMPORT_RULES: Dict[LanguageKind, List[Tuple[str, str, str]]] = {
    LanguageKind.PYTHON: [
        ("django", "framework", "Django"),
        ("flask", "framework", "Flask"),
        ("fastapi", "framework", "FastAPI"),
        ("starlette", "framework", "Starlette"),
        ("aiohttp", "framework", "aiohttp"),
        ("tornado", "framework", "Tornado"),
        ("click", "framework", "Click"),
        ("typer", "framework", "Typer"),
        ("pydantic", "framework", "Pydantic"),
        ("celery", "tool", "Celery"),
        ("sqlalchemy", "database", "SQLAlchemy"),
        ("psycopg2", "database", "PostgreSQL"),
        ("psycopg", "database", "PostgreSQL"),
        ("asyncpg", "database", "PostgreSQL"),
        ("pymongo", "database", "MongoDB"),
        ("motor", "database", "MongoDB"),
        ("redis", "database", "Redis"),
        ("sqlite3", "database", "SQLite"),
        ("numpy", "framework", "NumPy"),
        ("pandas", "framework", "pandas"),
        ("torch", "framework", "PyTorch"),
        ("tensorflow", "framework", "TensorFlow"),
        ("pytest", "tool", "pytest"),
    ],
    LanguageKind.JAVASCRIPT: [
        ("react", "framework", "React"),
        ("vue", "framework", "Vue"),
        ("svelte", "framework", "Svelte"),
        ("next", "framework", "Next.js"),
        ("express", "framework", "Express"),
        ("koa", "framework", "Koa"),
        ("fastify", "framework", "Fastify"),
        ("@nestjs", "framework", "NestJS"),
        ("@angular", "framework", "Angular"),
        ("mongoose", "database", "MongoDB"),
        ("mongodb", "database", "MongoDB"),
        ("pg", "database", "PostgreSQL"),
        ("mysql2", "database", "MySQL"),
        ("redis", "database", "Redis"),
        ("ioredis", "database", "Redis"),
        ("sequelize", "database", "Sequelize"),
        ("typeorm", "database", "TypeORM"),
        ("@prisma/client", "database", "Prisma"),
    ],
    LanguageKind.RUST: [
        ("tokio", "framework", "Tokio"),
        ("actix_web", "framework", "Actix Web"),
        ("axum", "framework", "Axum"),
        ("rocket", "framework", "Rocket"),
        ("serde", "framework", "Serde"),
        ("clap", "framework", "clap"),
        ("diesel", "database", "Diesel"),
        ("sqlx", "database", "SQLx"),
        ("rusqlite", "database", "SQLite"),
    ],
    LanguageKind.GO: [
        ("github.com/gin-gonic/gin", "framework", "Gin"),
        ("github.com/labstack/echo", "framework", "Echo"),
        ("github.com/gofiber/fiber", "framework", "Fiber"),
        ("github.com/spf13/cobra", "framework", "Cobra"),
        ("gorm.io/gorm", "database", "GORM"),
        ("database/sql", "database", "SQL"),
        ("github.com/lib/pq", "database", "PostgreSQL"),
        ("github.com/jackc/pgx", "database", "PostgreSQL"),
        ("github.com/redis/go-redis", "database", "Redis"),
    ],
    LanguageKind.JAVA: [
        ("org.springframework", "framework", "Spring"),
        ("jakarta.persistence", "database", "JPA"),
        ("javax.persistence", "database", "JPA"),
        ("org.hibernate", "database", "Hibernate"),
        ("org.junit", "tool", "JUnit"),
    ],
    LanguageKind.KOTLIN: [
        ("org.springframework", "framework", "Spring"),
        ("io.ktor", "framework", "Ktor"),
        ("androidx", "framework", "Android Jetpack"),
    ],
    LanguageKind.CSHARP: [
        ("Microsoft.AspNetCore", "framework", "ASP.NET Core"),
        ("Microsoft.EntityFrameworkCore", "database", "Entity Framework Core"),
    ],
    LanguageKind.PHP: [
        ("Illuminate", "framework", "Laravel"),
        ("Symfony", "framework", "Symfony"),
    ],
    LanguageKind.SWIFT: [
        ("SwiftUI", "framework", "SwiftUI"),
        ("UIKit", "framework", "UIKit"),
        ("Vapor", "framework", "Vapor"),
    ],
}
# TypeScript shares the JavaScript import ecosystem
IMPORT_RULES[LanguageKind.TYPESCRIPT] = IMPORT_RULES[LanguageKind.JAVASCRIPT]

DEPENDENCY_RULES: Dict[str, Tuple[str, str]] = {}
for _rules in IMPORT_RULES.values():
    for _prefix, _category, _name in _rules:
        DEPENDENCY_RULES.setdefault(_prefix.lower().replace("_", "-"), (_category, _name))
DEPENDENCY_RULES.update(
    {
        "psycopg2-binary": ("database", "PostgreSQL"),
        "uvicorn": ("tool", "Uvicorn"),
        "gunicorn": ("tool", "Gunicorn"),
        "jest": ("tool", "Jest"),
        "vitest": ("tool", "Vitest"),
        "eslint": ("tool", "ESLint"),
        "prettier": ("tool", "Prettier"),
        "typescript": ("tool", "TypeScript compiler"),
        "tailwindcss": ("framework", "Tailwind CSS"),
        "prisma": ("database", "Prisma"),
    }
)

_IMPORT_SEPARATORS = (".", "/", "::", "\\")
_REQUIREMENT_NAME = re.compile(r"^\s*([A-Za-z0-9][A-Za-z0-9._-]*)")


def _matches_prefix(module: str, prefix: str) -> bool:
    if module == prefix:
        return True
    return any(module.startswith(prefix + sep) for sep in _IMPORT_SEPARATORS)


def _path_matches(path: str, pattern: str) -> bool:
    if "/" in pattern:
        return fnmatch.fnmatch(path, pattern)
    return fnmatch.fnmatch(PurePosixPath(path).name, pattern)


def _requirement_names(lines: Iterable[str]) -> List[str]:
    names = []
    for line in lines:
        line = line.split("#", 1)[0].strip()
        if not line or line.startswith("-"):
            continue
        match = _REQUIREMENT_NAME.match(line)
        if match:
            names.append(match.group(1))
    return names


def read_manifest_dependencies(path: Path) -> List[str]:
    """Return the dependency names declared in a manifest file.

    Args:
        path: Path to a supported manifest.

    Returns:
        Dependency names (possibly empty).

    Raises:
        OSError: If the file cannot be read.
        ValueError: If the file is not valid JSON/TOML.
    """
    name = path.name
    text = path.read_text(encoding="utf-8")
    if name == "package.json":
        data = json.loads(text)
        deps: List[str] = []
        for key in ("dependencies", "devDependencies", "peerDependencies"):
            deps.extend((data.get(key) or {}).keys())
        return deps
    if name.startswith("requirements") and name.endswith(".txt"):
        return _requirement_names(text.splitlines())
    if name == "pyproject.toml":
        data = tomllib.loads(text)
        deps = _requirement_names(data.get("project", {}).get("dependencies", []))
        for extra in data.get("project", {}).get("optional-dependencies", {}).values():
            deps.extend(_requirement_names(extra))
        poetry = data.get("tool", {}).get("poetry", {}).get("dependencies", {})
        deps.extend(k for k in poetry if k != "python")
        return deps
    if name == "Cargo.toml":
        data = tomllib.loads(text)
        deps = list(data.get("dependencies", {}).keys())
        deps.extend(data.get("dev-dependencies", {}).keys())
        return deps
    if name == "go.mod":
        deps = re.findall(r"^\s*require\s+([^\s(]+)", text, re.MULTILINE)
        for block in re.findall(r"^require\s*\((.*?)\)", text, re.MULTILINE | re.DOTALL):
            deps.extend(re.findall(r"^\s*([^\s/]+/[^\s]+)\s", block, re.MULTILINE))
        return deps
    return []


def is_manifest(path: str) -> bool:
    name = PurePosixPath(path).name
    return name in ("package.json", "pyproject.toml", "Cargo.toml", "go.mod") or (
        name.startswith("requirements") and name.endswith(".txt")
    )


class _Inventory:
    """Accumulates entries deduplicated by name."""

    def __init__(self):
        self._entries: Dict[str, Tuple[str, Set[str]]] = {}

    def add(self, category: str, name: str, evidence: str) -> None:
        if name in self._entries:
            self._entries[name][1].add(evidence)
        else:
            self._entries[name] = (category, {evidence})

    def entries(self) -> Tuple[TechStackEntry, ...]:
        items = [
            TechStackEntry(category=category, name=name, evidence=tuple(sorted(evidence)))
            for name, (category, evidence) in self._entries.items()
        ]
        items.sort(key=lambda e: (CATEGORY_ORDER.index(e.category), e.name.lower()))
        return tuple(items)


def detect_tech_stack(
    root: Path, files: Mapping[str, FileRecord]
) -> Tuple[Tuple[TechStackEntry, ...], Tuple[RunWarning, ...]]:
    """Build the tech stack inventory for a snapshot.

    Args:
        root: Project root, used to read manifests.
        files: Snapshot files by relative path.

    Returns:
        ``(entries, warnings)``.
    """
    inventory = _Inventory()
    warnings: List[RunWarning] = []

    language_counts: Dict[LanguageKind, int] = {}
    for record in files.values():
        if record.language in LANGUAGE_NAMES:
            language_counts[record.language] = language_counts.get(record.language, 0) + 1
    for language, count in language_counts.items():
        inventory.add("language", LANGUAGE_NAMES[language], f"{count} {language.value} file(s)")

    for path in sorted(files):
        record = files[path]
        for pattern, category, name in FILE_RULES:
            if _path_matches(path, pattern):
                inventory.add(category, name, path)

        for module in record.imports:
            for prefix, category, name in IMPORT_RULES.get(record.language, []):
                if _matches_prefix(module, prefix):
                    inventory.add(category, name, f"{path} imports {module}")

        if is_manifest(path):
            try:
                dependencies = read_manifest_dependencies(Path(root) / path)
            except (OSError, ValueError) as e:
                logger.warning("Cannot read manifest %s: %s", path, e)
                warnings.append(RunWarning(kind="io", scope=path, message=f"invalid manifest: {e}"))
                continue
            for dependency in dependencies:
                rule = DEPENDENCY_RULES.get(dependency.lower().replace("_", "-"))
                if rule is None and "/" in dependency:
                    rule = next(
                        (
                            DEPENDENCY_RULES[key]
                            for key in DEPENDENCY_RULES
                            if _matches_prefix(dependency.lower(), key)
                        ),
                        None,
                    )
                if rule is not None:
                    inventory.add(rule[0], rule[1], f"{path} declares {dependency}")

    return inventory.entries(), tuple(warnings)
