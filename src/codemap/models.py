"""Core data model shared by every analysis phase.

All records are frozen dataclasses and every collection is a tuple or a
read-only mapping, so a phase can only produce new records, never edit the
ones it was handed. Records serialize to plain JSON-compatible dicts with
``to_dict`` and come back with ``from_dict``.

Example:
    >>> record = FunctionRecord(
    ...     qualified_name='Billing.charge',
    ...     path='src/billing.py',
    ...     line_start=12,
    ...     line_end=30,
    ...     body_hash='9f2c...',
    ... )
    >>> record.key
    'src/billing.py::Billing.charge'
"""

import hashlib
import json
from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

KEY_SEPARATOR = "::"

# Bumped when the stored snapshot layout changes
SCHEMA_VERSION = 1


class LanguageKind(str, Enum):
    """Closed set of languages the scanner can tag a file with."""

    PYTHON = "python"
    JAVASCRIPT = "javascript"
    TYPESCRIPT = "typescript"
    RUST = "rust"
    GO = "go"
    JAVA = "java"
    C = "c"
    CPP = "cpp"
    CSHARP = "csharp"
    PHP = "php"
    KOTLIN = "kotlin"
    SWIFT = "swift"
    RUBY = "ruby"
    SHELL = "shell"
    MARKDOWN = "markdown"
    JSON = "json"
    YAML = "yaml"
    TOML = "toml"
    DOCKERFILE = "dockerfile"
    MAKEFILE = "makefile"
    UNKNOWN = "unknown"

    @property
    def is_code(self) -> bool:
        """True for programming languages (not docs, data, or build files)."""
        return self not in _NON_CODE


_NON_CODE = frozenset(
    {
        LanguageKind.MARKDOWN,
        LanguageKind.JSON,
        LanguageKind.YAML,
        LanguageKind.TOML,
        LanguageKind.DOCKERFILE,
        LanguageKind.MAKEFILE,
        LanguageKind.UNKNOWN,
    }
)


class DiffStatus(str, Enum):
    """Status of a function or file relative to the previous snapshot."""

    ADDED = "added"
    MODIFIED = "modified"
    UNCHANGED = "unchanged"
    REMOVED = "removed"
    MOVED = "moved"


def make_key(path: str, qualified_name: str) -> str:
    """Build the stable function id ``<path>::<qualified_name>``."""
    return f"{path}{KEY_SEPARATOR}{qualified_name}"


def split_key(key: str) -> Tuple[str, str]:
    """Split a function id back into ``(path, qualified_name)``."""
    path, _, name = key.partition(KEY_SEPARATOR)
    return path, name


@dataclass(frozen=True)
class FunctionMetrics:
    """Per-function complexity figures. Every value is at least 1."""

    cyclomatic: int
    cognitive: int
    length: int

    def to_dict(self) -> Dict[str, int]:
        return {"cyclomatic": self.cyclomatic, "cognitive": self.cognitive, "length": self.length}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FunctionMetrics":
        return cls(
            cyclomatic=int(data["cyclomatic"]),
            cognitive=int(data["cognitive"]),
            length=int(data["length"]),
        )


@dataclass(frozen=True)
class FunctionRecord:
    """A function or method as stored in a snapshot.

    Attributes:
        qualified_name: Dotted name inside its file (``Class.method``).
        path: Relative path of the owning file.
        line_start: First line (1-indexed).
        line_end: Last line (1-indexed, inclusive).
        body_hash: SHA-256 of the normalized body.
        kind: ``function`` or ``method``.
        metrics: Complexity figures, None until the metrics phase runs.
        status: Diff status against the previous snapshot.
        moved_from: Origin key when ``status`` is ``moved``.
        removed_in: Snapshot version that soft-deleted this record.
    """

    qualified_name: str
    path: str
    line_start: int
    line_end: int
    body_hash: str
    kind: str = "function"
    metrics: Optional[FunctionMetrics] = None
    status: DiffStatus = DiffStatus.ADDED
    moved_from: Optional[str] = None
    removed_in: Optional[int] = None

    @property
    def key(self) -> str:
        return make_key(self.path, self.qualified_name)

    @property
    def length(self) -> int:
        return max(1, self.line_end - self.line_start + 1)

    def content_dict(self) -> Dict[str, Any]:
        """Fields that define the function's content (no run bookkeeping)."""
        return {
            "key": self.key,
            "lines": [self.line_start, self.line_end],
            "hash": self.body_hash,
            "kind": self.kind,
            "metrics": self.metrics.to_dict() if self.metrics else None,
        }

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "name": self.qualified_name,
            "path": self.path,
            "lines": [self.line_start, self.line_end],
            "hash": self.body_hash,
            "kind": self.kind,
            "metrics": self.metrics.to_dict() if self.metrics else None,
            "status": self.status.value,
        }
        if self.moved_from:
            data["moved_from"] = self.moved_from
        if self.removed_in is not None:
            data["removed_in"] = self.removed_in
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FunctionRecord":
        metrics = data.get("metrics")
        return cls(
            qualified_name=data["name"],
            path=data["path"],
            line_start=int(data["lines"][0]),
            line_end=int(data["lines"][1]),
            body_hash=data["hash"],
            kind=data.get("kind", "function"),
            metrics=FunctionMetrics.from_dict(metrics) if metrics else None,
            status=DiffStatus(data.get("status", DiffStatus.ADDED.value)),
            moved_from=data.get("moved_from"),
            removed_in=data.get("removed_in"),
        )


@dataclass(frozen=True)
class FileRecord:
    """A scanned file as stored in a snapshot."""

    path: str
    language: LanguageKind
    size: int
    file_hash: str
    function_ids: Tuple[str, ...] = ()
    parseable: bool = True
    exported_symbols: int = 0
    comment_lines: int = 0
    code_lines: int = 0
    imports: Tuple[str, ...] = ()
    last_seen: str = ""
    modified_at: float = 0.0

    def content_dict(self) -> Dict[str, Any]:
        """Fields that define the file's content (timestamps excluded)."""
        return {
            "path": self.path,
            "language": self.language.value,
            "size": self.size,
            "hash": self.file_hash,
            "functions": list(self.function_ids),
            "parseable": self.parseable,
            "exports": self.exported_symbols,
            "comment_lines": self.comment_lines,
            "code_lines": self.code_lines,
            "imports": list(self.imports),
        }

    def to_dict(self) -> Dict[str, Any]:
        data = self.content_dict()
        data["last_seen"] = self.last_seen
        data["modified_at"] = self.modified_at
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FileRecord":
        return cls(
            path=data["path"],
            language=LanguageKind(data.get("language", LanguageKind.UNKNOWN.value)),
            size=int(data.get("size", 0)),
            file_hash=data["hash"],
            function_ids=tuple(data.get("functions") or ()),
            parseable=bool(data.get("parseable", True)),
            exported_symbols=int(data.get("exports", 0)),
            comment_lines=int(data.get("comment_lines", 0)),
            code_lines=int(data.get("code_lines", 0)),
            imports=tuple(data.get("imports") or ()),
            last_seen=data.get("last_seen", ""),
            modified_at=float(data.get("modified_at", 0.0)),
        )


def _frozen_mapping(items: Mapping[str, Any]) -> Mapping[str, Any]:
    return MappingProxyType(dict(sorted(items.items())))


@dataclass(frozen=True)
class Snapshot:
    """Immutable state of all files and functions at one analysis run.

    Mappings are sorted by key and wrapped read-only on construction, so
    two snapshots built from the same records in any order are identical.
    """

    version: int
    created_at: str
    schema_version: int
    extractor_version: str
    rules_version: str
    files: Mapping[str, FileRecord] = field(default_factory=dict)
    functions: Mapping[str, FunctionRecord] = field(default_factory=dict)
    tombstones: Mapping[str, FunctionRecord] = field(default_factory=dict)
    removed_files: Mapping[str, FileRecord] = field(default_factory=dict)

    def __post_init__(self):
        for name in ("files", "functions", "tombstones", "removed_files"):
            object.__setattr__(self, name, _frozen_mapping(getattr(self, name)))

    @property
    def content_hash(self) -> str:
        """SHA-256 over files and functions, excluding timestamps and statuses."""
        payload = {
            "files": [record.content_dict() for record in self.files.values()],
            "functions": [record.content_dict() for record in self.functions.values()],
        }
        canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()

    def functions_in(self, path: str) -> List[FunctionRecord]:
        """Return the live functions owned by ``path`` in key order."""
        record = self.files.get(path)
        if record is None:
            return []
        return [self.functions[key] for key in record.function_ids if key in self.functions]

    def with_functions(self, updates: Mapping[str, FunctionRecord]) -> "Snapshot":
        """Return a new snapshot with some function records replaced."""
        merged = dict(self.functions)
        merged.update(updates)
        return replace(self, functions=merged)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "schema_version": self.schema_version,
            "extractor_version": self.extractor_version,
            "rules_version": self.rules_version,
            "version": self.version,
            "created_at": self.created_at,
            "content_hash": self.content_hash,
            "files": {path: record.to_dict() for path, record in self.files.items()},
            "functions": {key: record.to_dict() for key, record in self.functions.items()},
            "tombstones": {key: record.to_dict() for key, record in self.tombstones.items()},
            "removed_files": {
                path: record.to_dict() for path, record in self.removed_files.items()
            },
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Snapshot":
        return cls(
            version=int(data["version"]),
            created_at=data.get("created_at", ""),
            schema_version=int(data["schema_version"]),
            extractor_version=data.get("extractor_version", ""),
            rules_version=data.get("rules_version", ""),
            files={p: FileRecord.from_dict(r) for p, r in data.get("files", {}).items()},
            functions={
                k: FunctionRecord.from_dict(r) for k, r in data.get("functions", {}).items()
            },
            tombstones={
                k: FunctionRecord.from_dict(r) for k, r in data.get("tombstones", {}).items()
            },
            removed_files={
                p: FileRecord.from_dict(r) for p, r in data.get("removed_files", {}).items()
            },
        )


@dataclass(frozen=True)
class Project:
    """Identity of an analyzed project, created once by ``init``."""

    root: str
    name: str
    created_at: str
    config_digest: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "root": self.root,
            "name": self.name,
            "created_at": self.created_at,
            "config_digest": self.config_digest,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Project":
        return cls(
            root=data["root"],
            name=data["name"],
            created_at=data.get("created_at", ""),
            config_digest=data.get("config_digest", ""),
        )


@dataclass(frozen=True)
class ArchitecturePattern:
    """A detected architecture label with its confidence in [0, 1]."""

    label: str
    confidence: float
    evidence: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pattern": self.label,
            "confidence": round(self.confidence, 4),
            "evidence": list(self.evidence),
        }


@dataclass(frozen=True)
class ArchitectureResult:
    """Primary architecture classification plus ranked alternates."""

    primary: ArchitecturePattern
    alternates: Tuple[ArchitecturePattern, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        data = self.primary.to_dict()
        data["alternates"] = [alt.to_dict() for alt in self.alternates]
        return data


@dataclass(frozen=True)
class TechStackEntry:
    """One technology found in the project, deduplicated by name."""

    category: str
    name: str
    evidence: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {"category": self.category, "name": self.name, "evidence": list(self.evidence)}


@dataclass(frozen=True)
class EntryPointCandidate:
    """A ranked onboarding starting point."""

    target: str
    score: float
    rank: int
    breakdown: Tuple[Tuple[str, float], ...] = ()
    rationale: str = ""
    source: str = "heuristic"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rank": self.rank,
            "target": self.target,
            "score": round(self.score, 4),
            "rationale": self.rationale,
            "breakdown": {name: round(value, 4) for name, value in self.breakdown},
            "source": self.source,
        }


@dataclass(frozen=True)
class RunWarning:
    """A non-fatal condition recorded during a run."""

    kind: str
    scope: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {"kind": self.kind, "scope": self.scope, "message": self.message}


@dataclass(frozen=True)
class Report:
    """Everything one analysis run produced, ready to persist."""

    project: Dict[str, Any]
    architecture: ArchitectureResult
    tech_stack: Tuple[TechStackEntry, ...]
    entry_points: Tuple[EntryPointCandidate, ...]
    metrics: Dict[str, Any]
    diff_summary: Dict[str, Any]
    warnings: Tuple[RunWarning, ...] = ()
    degraded: bool = False
    project_brief: Optional[str] = None
    run: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "project": dict(self.project),
            "architecture": self.architecture.to_dict(),
            "tech_stack": [entry.to_dict() for entry in self.tech_stack],
            "entry_points": [entry.to_dict() for entry in self.entry_points],
            "metrics": dict(self.metrics),
            "diff_summary": dict(self.diff_summary),
            "warnings": [warning.to_dict() for warning in self.warnings],
            "degraded": self.degraded,
            "project_brief": self.project_brief,
            "run": dict(self.run),
        }
