"""Entry-point ranking: where should a newcomer start reading?

Every code file (plus README files) is scored from five components, each
normalized to [0, 1]:

* centrality: in-degree in the import graph / max in-degree
* naming: entry-point style names (``main``, ``index``, ``app``, ``cli``...)
* complexity: 1 / average cyclomatic complexity of the file's functions
* recency: min-max normalized modification time
* exports: exported symbols / max exported symbols

The score is the weighted sum of the components. Candidates are ordered by
score descending, then path, so the ranking is total and deterministic.
"""

import logging
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Dict, List, Optional, Tuple

from .config import RankingWeights
from .dependency_graph import DependencyGraph
from .models import EntryPointCandidate, FileRecord, Snapshot

logger = logging.getLogger(__name__)

COMPONENTS = ("centrality", "naming", "complexity", "recency", "exports")

PRIMARY_STEMS = frozenset({"main", "__main__", "index", "app", "server", "lib", "program", "application"})
SECONDARY_STEMS = frozenset({"cli", "router", "routes", "handler", "handlers", "controller", "command", "commands"})


def is_readme(path: str) -> bool:
    return PurePosixPath(path).stem.lower() == "readme"


def naming_score(path: str) -> float:
    """Score how much a path looks like an entry point."""
    pure = PurePosixPath(path.lower())
    stem = pure.stem
    if stem in PRIMARY_STEMS:
        return 1.0
    if is_readme(path) or path.lower().startswith("src/bin/"):
        return 0.8
    if stem in SECONDARY_STEMS or any(part in ("cmd", "bin", "commands") for part in pure.parts[:-1]):
        return 0.6
    if any(fragment in stem for fragment in ("route", "handler", "controller", "server", "cli", "command")):
        return 0.4
    return 0.0


def heuristic_reason(path: str, in_degree: int = 0) -> str:
    """Human-readable reason for recommending ``path``."""
    lowered = path.lower()
    stem = PurePosixPath(lowered).stem
    if stem in ("main", "__main__", "program"):
        return "Binary entrypoint"
    if lowered.endswith("src/lib.rs") or stem == "lib" or (stem in ("index", "__init__") and in_degree):
        return "Library root"
    if lowered.startswith("src/bin/") or "cli" in stem or "command" in stem:
        return "CLI subcommand entrypoint"
    if "router" in lowered or "route" in lowered:
        return "Routing hub"
    if "handler" in lowered or "controller" in lowered:
        return "Request handler"
    if "server" in lowered or stem in ("app", "application"):
        return "Server bootstrap"
    if is_readme(path):
        return "Project docs"
    if in_degree:
        return f"Likely important module (imported by {in_degree} file{'s' if in_degree != 1 else ''})"
    return "Likely important module"


@dataclass(frozen=True)
class _Facts:
    path: str
    in_degree: int
    avg_cyclomatic: float
    modified_at: float
    exports: int


def _facts(snapshot: Snapshot, record: FileRecord, graph: Optional[DependencyGraph]) -> _Facts:
    functions = [f for f in snapshot.functions_in(record.path) if f.metrics is not None]
    total = sum(f.metrics.cyclomatic for f in functions)
    return _Facts(
        path=record.path,
        in_degree=graph.in_degree(record.path) if graph is not None else 0,
        avg_cyclomatic=total / len(functions) if functions else 1.0,
        modified_at=record.modified_at,
        exports=record.exported_symbols,
    )


def score_candidates(
    snapshot: Snapshot, graph: Optional[DependencyGraph], weights: RankingWeights
) -> List[EntryPointCandidate]:
    """Score every candidate file; ordered by score desc, then path.

    Ranks are assigned over the full list.
    """
    candidates = [
        _facts(snapshot, record, graph)
        for path, record in sorted(snapshot.files.items())
        if record.language.is_code or is_readme(path)
    ]
    if not candidates:
        return []

    max_in = max(c.in_degree for c in candidates)
    max_exports = max(c.exports for c in candidates)
    oldest = min(c.modified_at for c in candidates)
    newest = max(c.modified_at for c in candidates)
    weight_of = {name: getattr(weights, name) for name in COMPONENTS}

    scored: List[Tuple[float, str, Tuple[Tuple[str, float], ...], int]] = []
    for c in candidates:
        components: Dict[str, float] = {
            "centrality": c.in_degree / max_in if max_in else 0.0,
            "naming": naming_score(c.path),
            "complexity": 1.0 / max(1.0, c.avg_cyclomatic),
            "recency": (c.modified_at - oldest) / (newest - oldest) if newest > oldest else 0.0,
            "exports": c.exports / max_exports if max_exports else 0.0,
        }
        breakdown = tuple((name, weight_of[name] * components[name]) for name in COMPONENTS)
        score = sum(value for _, value in breakdown)
        scored.append((score, c.path, breakdown, c.in_degree))

    scored.sort(key=lambda item: (-item[0], item[1]))
    return [
        EntryPointCandidate(
            target=path,
            score=score,
            rank=rank,
            breakdown=breakdown,
            rationale=heuristic_reason(path, in_degree),
        )
        for rank, (score, path, breakdown, in_degree) in enumerate(scored, start=1)
    ]


def rank_entry_points(
    snapshot: Snapshot,
    graph: Optional[DependencyGraph],
    weights: RankingWeights,
    top_k: int,
) -> Tuple[EntryPointCandidate, ...]:
    """Return the top-K entry points with ranks 1..K.

    Args:
        snapshot: Snapshot with measured functions.
        graph: Built dependency graph (None means no centrality signal).
        weights: Component weights.
        top_k: Number of entry points to return.

    Returns:
        Tuple of at most ``top_k`` candidates.
    """
    ranked = score_candidates(snapshot, graph, weights)[:top_k]
    logger.debug("Top entry points: %s", [c.target for c in ranked])
    return tuple(ranked)
