"""Architecture pattern detection with confidence scoring.

Each pattern in ``ARCHITECTURE_RULES`` is a list of signals: directory
names, file names, imports, and import direction between layers taken
from the dependency graph ("presentation imports services but not vice
versa"). A pattern's confidence is the share of its signals that match,
so it always lies in [0, 1].

The best pattern becomes the primary classification. When its confidence
is below the configured minimum the primary label is ``Unclassified``;
a tree with no signals at all is ``Unclassified`` with confidence 0.0.

Example:
    >>> result = detect_architecture(snapshot.files, graph, min_confidence=0.5)
    >>> result.primary.label, result.primary.confidence
    ('Layered', 0.8)
"""

import logging
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Callable, Dict, FrozenSet, List, Mapping, Optional, Set, Tuple

from .dependency_graph import DependencyGraph
from .models import ArchitecturePattern, ArchitectureResult, FileRecord

logger = logging.getLogger(__name__)

ARCHITECTURE_RULES_VERSION = "architecture/1"

UNCLASSIFIED = "Unclassified"

LAYER_ALIASES: Dict[str, FrozenSet[str]] = {
    "presentation": frozenset(
        {"presentation", "controllers", "controller", "api", "routes", "handlers", "views", "ui", "web"}
    ),
    "service": frozenset(
        {"services", "service", "business", "usecases", "use_cases", "usecase", "application"}
    ),
    "data": frozenset({"repositories", "repository", "dal", "data", "persistence", "db", "dao"}),
    "domain": frozenset({"domain", "entities", "entity", "core", "models", "model"}),
    "adapters": frozenset({"adapters", "adapter", "infrastructure", "infra"}),
}

WORKSPACE_FILES = frozenset(
    {"pnpm-workspace.yaml", "lerna.json", "nx.json", "turbo.json", "go.work", "rush.json"}
)
MANIFEST_FILES = frozenset(
    {"package.json", "pyproject.toml", "setup.py", "cargo.toml", "go.mod", "pom.xml", "build.gradle"}
)
CLI_IMPORTS = ("argparse", "click", "typer", "clap", "github.com/spf13/cobra", "commander", "yargs")
EVENT_IMPORTS = ("kafka", "pika", "aio_pika", "celery", "nats", "amqplib", "kafkajs", "rdkafka")


def layer_of(path: str) -> Optional[str]:
    """Map a file to the first layer named by one of its directories."""
    for part in PurePosixPath(path).parts[:-1]:
        lowered = part.lower()
        for layer, aliases in LAYER_ALIASES.items():
            if lowered in aliases:
                return layer
    return None


@dataclass(frozen=True)
class ArchitectureFacts:
    """Everything the signals look at, gathered once per run.

    Attributes:
        directories: Lowercased names of every directory in the tree.
        file_names: Lowercased base names of every file.
        imports: Lowercased import strings of every file.
        manifest_dirs: Directories (other than the root) holding a manifest.
        dockerfiles: Number of Dockerfiles.
        layer_edges: Cross-layer import edge counts.
    """

    directories: FrozenSet[str] = frozenset()
    file_names: FrozenSet[str] = frozenset()
    imports: FrozenSet[str] = frozenset()
    manifest_dirs: FrozenSet[str] = frozenset()
    dockerfiles: int = 0
    layer_edges: Mapping[Tuple[str, str], int] = field(default_factory=dict)

    def has_dir(self, *names: str) -> bool:
        return any(name in self.directories for name in names)

    def has_file(self, *fragments: str) -> bool:
        return any(
            fragment in PurePosixPath(name).stem for name in self.file_names for fragment in fragments
        )

    def imports_any(self, prefixes: Tuple[str, ...]) -> bool:
        return any(
            module == prefix or module.startswith(prefix + ".") or module.startswith(prefix + "/")
            for module in self.imports
            for prefix in prefixes
        )

    def flows(self, source: str, target: str) -> bool:
        """True when ``source`` imports ``target`` and never the reverse."""
        return self.layer_edges.get((source, target), 0) > 0 and not self.layer_edges.get(
            (target, source), 0
        )


def gather_facts(files: Mapping[str, FileRecord], graph: Optional[DependencyGraph]) -> ArchitectureFacts:
    """Collect architecture facts from snapshot files and the import graph."""
    directories: Set[str] = set()
    file_names: Set[str] = set()
    imports: Set[str] = set()
    manifest_dirs: Set[str] = set()
    dockerfiles = 0
    for path, record in files.items():
        pure = PurePosixPath(path)
        directories.update(part.lower() for part in pure.parts[:-1])
        name = pure.name.lower()
        file_names.add(name)
        imports.update(module.lower() for module in record.imports)
        if name in MANIFEST_FILES and len(pure.parts) > 1:
            manifest_dirs.add(str(pure.parent))
        if name == "dockerfile" or name.endswith(".dockerfile"):
            dockerfiles += 1

    edges = graph.layer_edges(layer_of) if graph is not None else {}
    return ArchitectureFacts(
        directories=frozenset(directories),
        file_names=frozenset(file_names),
        imports=frozenset(imports),
        manifest_dirs=frozenset(manifest_dirs),
        dockerfiles=dockerfiles,
        layer_edges=edges,
    )


Signal = Tuple[str, Callable[[ArchitectureFacts], bool]]

ARCHITECTURE_RULES: Dict[str, List[Signal]] = {
    "Layered": [
        ("presentation layer directory", lambda f: f.has_dir(*LAYER_ALIASES["presentation"])),
        ("service layer directory", lambda f: f.has_dir(*LAYER_ALIASES["service"])),
        ("data layer directory", lambda f: f.has_dir(*LAYER_ALIASES["data"])),
        ("presentation imports services but not vice versa", lambda f: f.flows("presentation", "service")),
        ("services import data access but not vice versa", lambda f: f.flows("service", "data")),
    ],
    "MVC": [
        ("models directory", lambda f: f.has_dir("models", "model")),
        ("views directory", lambda f: f.has_dir("views", "view", "templates")),
        ("controllers directory", lambda f: f.has_dir("controllers", "controller")),
        ("controllers import models but not vice versa", lambda f: f.flows("presentation", "domain")),
    ],
    "Hexagonal": [
        ("adapters directory", lambda f: f.has_dir("adapters", "adapter")),
        ("ports directory", lambda f: f.has_dir("ports", "port")),
        ("domain core directory", lambda f: f.has_dir("domain", "core")),
        ("adapters depend on the domain but not vice versa", lambda f: f.flows("adapters", "domain")),
    ],
    "Clean Architecture": [
        ("entities directory", lambda f: f.has_dir("entities", "entity")),
        ("use cases directory", lambda f: f.has_dir("usecases", "use_cases", "usecase")),
        ("interface adapters directory", lambda f: f.has_dir("interfaces", "interface_adapters", "adapters")),
        ("infrastructure directory", lambda f: f.has_dir("infrastructure", "frameworks", "infra")),
        ("use cases depend on entities but not vice versa", lambda f: f.flows("service", "domain")),
    ],
    "Microservices": [
        ("services directory", lambda f: f.has_dir("services", "microservices")),
        ("several deployable units with their own manifest", lambda f: len(f.manifest_dirs) >= 2),
        ("several Dockerfiles", lambda f: f.dockerfiles >= 2),
        ("container orchestration config", lambda f: any(n.startswith("docker-compose") for n in f.file_names) or f.has_dir("k8s", "helm")),
    ],
    "Monorepo": [
        ("packages/apps/libs directory", lambda f: f.has_dir("packages", "apps", "libs")),
        ("several package manifests", lambda f: len(f.manifest_dirs) >= 2),
        ("workspace config file", lambda f: bool(WORKSPACE_FILES & f.file_names)),
    ],
    "Plugin": [
        ("plugins directory", lambda f: f.has_dir("plugins", "plugin", "extensions", "addons")),
        ("plugin files", lambda f: f.has_file("plugin", "extension")),
        ("registry or loader", lambda f: f.has_file("registry", "loader", "hooks")),
    ],
    "Event-driven": [
        ("events directory", lambda f: f.has_dir("events", "listeners", "subscribers", "consumers")),
        ("event bus or queue files", lambda f: f.has_file("event", "bus", "queue", "broker", "pubsub")),
        ("messaging library imports", lambda f: f.imports_any(EVENT_IMPORTS)),
    ],
    "Pipeline": [
        ("pipeline directory", lambda f: f.has_dir("pipeline", "pipelines", "stages", "steps", "etl")),
        ("stage files", lambda f: f.has_file("pipeline", "stage", "step", "transform")),
        ("extract/transform/load files", lambda f: f.has_file("extract") and f.has_file("load")),
    ],
    "CLI application": [
        ("cli entry file", lambda f: f.has_file("cli", "__main__")),
        ("commands directory", lambda f: f.has_dir("commands", "cmd", "bin")),
        ("argument parsing library imports", lambda f: f.imports_any(CLI_IMPORTS)),
    ],
}


def score_patterns(facts: ArchitectureFacts) -> List[ArchitecturePattern]:
    """Score every pattern; sorted by confidence descending, then label."""
    patterns = []
    for label, signals in ARCHITECTURE_RULES.items():
        evidence = tuple(description for description, check in signals if check(facts))
        confidence = len(evidence) / len(signals) if signals else 0.0
        patterns.append(ArchitecturePattern(label=label, confidence=confidence, evidence=evidence))
    patterns.sort(key=lambda p: (-p.confidence, p.label))
    return patterns


def classify(facts: ArchitectureFacts, min_confidence: float) -> ArchitectureResult:
    """Pick the primary pattern and the alternates.

    Args:
        facts: Gathered architecture facts.
        min_confidence: Below this the primary label is ``Unclassified``.

    Returns:
        ArchitectureResult; never raises for lack of evidence.
    """
    scored = score_patterns(facts)
    best = scored[0]
    if best.confidence > 0 and best.confidence >= min_confidence:
        primary = best
        alternates = tuple(p for p in scored[1:] if p.confidence > 0)
    else:
        primary = ArchitecturePattern(
            label=UNCLASSIFIED, confidence=best.confidence, evidence=best.evidence
        )
        alternates = tuple(p for p in scored if p.confidence > 0)
    logger.debug("Architecture: %s (%.2f)", primary.label, primary.confidence)
    return ArchitectureResult(primary=primary, alternates=alternates)


def detect_architecture(
    files: Mapping[str, FileRecord],
    graph: Optional[DependencyGraph],
    min_confidence: float = 0.5,
) -> ArchitectureResult:
    """Classify the architecture of a snapshot."""
    return classify(gather_facts(files, graph), min_confidence)
