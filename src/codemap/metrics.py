"""Metrics phase: per-function complexity and project-level quality figures.

Only functions without metrics (added or modified in this run) are
measured; unchanged records carry their metrics over from the previous
snapshot. Aggregation works on integer sums in sorted key order, so the
summary does not depend on worker scheduling.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Tuple

from .complexity import function_metrics
from .config import MaintainabilityWeights, Thresholds
from .extractors import ExtractionBatch
from .models import FunctionRecord, Snapshot, make_key

logger = logging.getLogger(__name__)

TARGET_COMMENT_RATIO = 0.2
HOTSPOT_COUNT = 5


@dataclass(frozen=True)
class MetricsSummary:
    """Project-level quality figures for one snapshot.

    Attributes:
        function_count: Functions with metrics.
        avg_cyclomatic: Mean cyclomatic complexity (0.0 without functions).
        avg_cognitive: Mean cognitive complexity.
        max_cyclomatic: Highest cyclomatic complexity.
        comment_ratio: Comment lines / (comment + code lines) over code files.
        maintainability: Weighted index in [0, 100].
        components: Unweighted maintainability components, each in [0, 100].
        debt_percent: Share of functions over a threshold, in percent.
        hotspots: Keys of the most complex functions.
    """

    function_count: int = 0
    avg_cyclomatic: float = 0.0
    avg_cognitive: float = 0.0
    max_cyclomatic: int = 0
    comment_ratio: float = 0.0
    maintainability: float = 100.0
    components: Dict[str, float] = field(default_factory=dict)
    debt_percent: float = 0.0
    hotspots: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "complexity": {
                "functions": self.function_count,
                "average_cyclomatic": round(self.avg_cyclomatic, 4),
                "average_cognitive": round(self.avg_cognitive, 4),
                "max_cyclomatic": self.max_cyclomatic,
            },
            "maintainability": {
                "index": round(self.maintainability, 2),
                "components": {k: round(v, 2) for k, v in sorted(self.components.items())},
            },
            "debt_percent": round(self.debt_percent, 2),
            "comment_ratio": round(self.comment_ratio, 4),
            "hotspots": list(self.hotspots),
        }


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def compute_function_metrics(
    snapshot: Snapshot, batch: ExtractionBatch, workers: int = 4
) -> Snapshot:
    """Fill in metrics for every function that has none.

    Args:
        snapshot: Merged snapshot; unchanged functions already have metrics.
        batch: Extraction results holding the function sources.
        workers: Thread pool size.

    Returns:
        A new snapshot with all live functions measured.
    """
    sources: Dict[str, Tuple[str, Any]] = {}
    for result in batch.extracted:
        for function in result.extraction.functions:
            sources[make_key(result.path, function.qualified_name)] = (
                function.source,
                result.scanned.language,
            )

    pending = sorted(
        key for key, record in snapshot.functions.items() if record.metrics is None and key in sources
    )
    if not pending:
        return snapshot
    logger.debug("Measuring %d functions", len(pending))

    def measure(key: str) -> Tuple[str, FunctionRecord]:
        source, language = sources[key]
        return key, replace(snapshot.functions[key], metrics=function_metrics(source, language))

    with ThreadPoolExecutor(max_workers=max(1, workers)) as executor:
        updates = dict(executor.map(measure, pending))
    return snapshot.with_functions(updates)


def compute_metrics(
    snapshot: Snapshot, thresholds: Thresholds, weights: MaintainabilityWeights
) -> MetricsSummary:
    """Aggregate quality figures over a snapshot.

    Args:
        snapshot: Snapshot with measured functions.
        thresholds: Complexity and length limits for debt.
        weights: Maintainability component weights.

    Returns:
        MetricsSummary for the snapshot.
    """
    measured: List[Tuple[str, FunctionRecord]] = [
        (key, record) for key, record in sorted(snapshot.functions.items()) if record.metrics
    ]

    comment_total = 0
    code_total = 0
    for path in sorted(snapshot.files):
        record = snapshot.files[path]
        if record.language.is_code:
            comment_total += record.comment_lines
            code_total += record.code_lines
    comment_ratio = comment_total / (comment_total + code_total) if comment_total + code_total else 0.0

    count = len(measured)
    cyclomatic_total = sum(record.metrics.cyclomatic for _, record in measured)
    cognitive_total = sum(record.metrics.cognitive for _, record in measured)
    max_cyclomatic = max((record.metrics.cyclomatic for _, record in measured), default=0)
    long_functions = sum(
        1 for _, record in measured if record.metrics.length > thresholds.function_length
    )
    debt = sum(
        1
        for _, record in measured
        if record.metrics.cyclomatic > thresholds.complexity
        or record.metrics.length > thresholds.function_length
    )

    avg_cyclomatic = cyclomatic_total / count if count else 0.0
    avg_cognitive = cognitive_total / count if count else 0.0

    if count:
        complexity_component = 100.0 * _clamp(
            1.0 - (avg_cyclomatic - 1.0) / (2.0 * thresholds.complexity)
        )
        length_component = 100.0 * (1.0 - long_functions / count)
    else:
        complexity_component = 100.0
        length_component = 100.0
    comment_component = 100.0 * _clamp(comment_ratio / TARGET_COMMENT_RATIO)

    components = {
        "complexity": complexity_component,
        "comments": comment_component,
        "length": length_component,
    }
    weight_total = weights.complexity + weights.comments + weights.length
    index = (
        weights.complexity * complexity_component
        + weights.comments * comment_component
        + weights.length * length_component
    ) / weight_total

    hotspots = tuple(
        key
        for key, _ in sorted(
            measured, key=lambda item: (-item[1].metrics.cyclomatic, -item[1].metrics.cognitive, item[0])
        )[:HOTSPOT_COUNT]
    )

    return MetricsSummary(
        function_count=count,
        avg_cyclomatic=avg_cyclomatic,
        avg_cognitive=avg_cognitive,
        max_cyclomatic=max_cyclomatic,
        comment_ratio=comment_ratio,
        maintainability=_clamp(index, 0.0, 100.0),
        components=components,
        debt_percent=100.0 * debt / count if count else 0.0,
        hotspots=hotspots,
    )
