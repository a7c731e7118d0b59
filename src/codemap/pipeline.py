"""Analysis run: scan, extract, merge, measure, rank, persist.

A run moves through a fixed sequence of states::

    Idle -> Scanning -> Extracting -> Merging -> ComputingMetrics
         -> Ranking -> [AwaitingInsight] -> Persisted

and ends in ``Failed`` when a fatal error (unreadable root, invalid
config, broken store) escapes. Every phase takes the previous phase's
output as an argument and returns a new immutable value; nothing is kept
in module-level state.

Example:
    >>> analyzer = Analyzer(Path('/my/project'), load_config(config_path(root)))
    >>> result = analyzer.run()
    >>> result.report.entry_points[0].target
    'src/main.py'
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .architecture import ARCHITECTURE_RULES_VERSION, detect_architecture
from .complexity import COMPLEXITY_RULES_VERSION
from .config import CodemapConfig
from .dependency_graph import DependencyGraph
from .errors import CodemapError, InsightUnavailable, SnapshotVersionError, StoreError
from .extractors import EXTRACTOR_VERSION, extract_all
from .insight import (
    InsightProvider,
    apply_ranking_adjustment,
    build_request,
    create_provider,
    request_insight,
)
from .merge import Diff, merge
from .metrics import compute_function_metrics, compute_metrics
from .models import EntryPointCandidate, Report, RunWarning, Snapshot
from .ranking import rank_entry_points
from .scanner import scan
from .store import CodemapStore
from .tech_stack import detect_tech_stack

logger = logging.getLogger(__name__)

RULES_VERSION = f"{COMPLEXITY_RULES_VERSION}+{ARCHITECTURE_RULES_VERSION}"

FALLBACK_BRIEF = (
    "No LLM brief available. Showing heuristic entry points to start reading the codebase."
)


class RunState(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    EXTRACTING = "extracting"
    MERGING = "merging"
    COMPUTING_METRICS = "computing_metrics"
    RANKING = "ranking"
    AWAITING_INSIGHT = "awaiting_insight"
    PERSISTED = "persisted"
    FAILED = "failed"


@dataclass(frozen=True)
class RunResult:
    """Outcome of one run.

    Attributes:
        report: The persisted report.
        snapshot: The new snapshot.
        diff: Diff against the previous snapshot.
        states: States the run went through, in order.
    """

    report: Report
    snapshot: Snapshot
    diff: Diff
    states: Tuple[RunState, ...]


class Analyzer:
    """Runs one analysis of a project and publishes the result.

    Attributes:
        root: Project root.
        config: Validated configuration.
        store: Store the snapshots and reports go to.
        insight_provider: Provider for AI insight; built from the config
            on demand when None.
        use_ai: Lets the caller switch AI off for one run (``--no-ai``).
        states: States entered so far.
    """

    def __init__(
        self,
        root: Path,
        config: Optional[CodemapConfig] = None,
        store: Optional[CodemapStore] = None,
        insight_provider: Optional[InsightProvider] = None,
        use_ai: bool = True,
    ):
        self.root = Path(root).resolve()
        self.config = config or CodemapConfig()
        self.store = store or CodemapStore(self.root)
        self.insight_provider = insight_provider
        self.use_ai = use_ai
        self.states: List[RunState] = [RunState.IDLE]

    def _enter(self, state: RunState) -> None:
        logger.debug("%s -> %s", self.states[-1].value, state.value)
        self.states.append(state)

    def run(self) -> RunResult:
        """Run every phase and persist the snapshot and report.

        Returns:
            RunResult of the run.

        Raises:
            CodemapError: On a fatal error; the run ends in ``Failed``.
        """
        try:
            return self._run()
        except CodemapError:
            self._enter(RunState.FAILED)
            raise

    def _run(self) -> RunResult:
        started = time.perf_counter()
        config = self.config

        self._enter(RunState.SCANNING)
        scan_result = scan(
            str(self.root),
            ignore_patterns=list(config.ignore),
            max_file_size=config.max_file_size,
            use_gitignore=config.use_gitignore,
        )

        self._enter(RunState.EXTRACTING)
        batch = extract_all(scan_result, workers=config.workers)
        warnings: List[RunWarning] = list(batch.warnings)

        self._enter(RunState.MERGING)
        previous, load_warning = self._load_previous()
        if load_warning is not None:
            warnings.append(load_warning)
        merged = merge(
            previous,
            batch,
            version=self.store.next_version(),
            tombstone_runs=config.retention.tombstone_runs,
            rules_version=RULES_VERSION,
        )
        warnings.extend(merged.warnings)

        self._enter(RunState.COMPUTING_METRICS)
        snapshot = compute_function_metrics(merged.snapshot, batch, workers=config.workers)
        summary = compute_metrics(snapshot, config.thresholds, config.maintainability_weights)
        tech_stack, stack_warnings = detect_tech_stack(self.root, snapshot.files)
        warnings.extend(stack_warnings)
        graph = DependencyGraph(self.root, snapshot.files).build()
        architecture = detect_architecture(
            snapshot.files, graph, config.thresholds.architecture_min_confidence
        )

        self._enter(RunState.RANKING)
        entry_points = rank_entry_points(
            snapshot, graph, config.ranking_weights, config.default_analysis_files
        )

        brief: Optional[str] = None
        degraded = False
        if config.enable_ai_insights and self.use_ai:
            self._enter(RunState.AWAITING_INSIGHT)
            entry_points, brief, insight_warning = self._insight(snapshot, merged.diff, entry_points)
            if insight_warning is not None:
                warnings.append(insight_warning)
                degraded = True

        project = self.store.load_project() or self.store.init_project(config)
        self.store.save_snapshot(snapshot)
        self.store.prune(config.retention.snapshots)

        diff = merged.diff
        counts = diff.summary()
        run_info: Dict[str, Any] = {
            "version": snapshot.version,
            "timestamp": datetime.now(timezone.utc).isoformat(timespec="seconds"),
            "files": len(snapshot.files),
            "functions": len(snapshot.functions),
            "added": counts["added"],
            "modified": counts["modified"],
            "unchanged": counts["unchanged"],
            "moved": counts["moved"],
            "removed": counts["removed"],
            "reuse_ratio": round(diff.reuse_ratio(), 4),
            "duration_ms": int((time.perf_counter() - started) * 1000),
            "degraded": degraded,
            "states": [state.value for state in self.states] + [RunState.PERSISTED.value],
        }
        metrics = summary.to_dict()
        metrics["dependency_graph"] = graph.get_stats()
        report = Report(
            project={**project.to_dict(), "snapshot_version": snapshot.version},
            architecture=architecture,
            tech_stack=tech_stack,
            entry_points=entry_points,
            metrics=metrics,
            diff_summary=counts,
            warnings=tuple(warnings),
            degraded=degraded,
            project_brief=brief or FALLBACK_BRIEF,
            run=run_info,
        )
        self.store.save_report(report.to_dict())
        self.store.append_run_metrics(run_info)
        self._enter(RunState.PERSISTED)

        logger.info(
            "v%d: %d files, %d functions, reuse %.0f%%, %d ms",
            snapshot.version,
            run_info["files"],
            run_info["functions"],
            run_info["reuse_ratio"] * 100,
            run_info["duration_ms"],
        )
        return RunResult(report=report, snapshot=snapshot, diff=diff, states=tuple(self.states))

    def _load_previous(self) -> Tuple[Optional[Snapshot], Optional[RunWarning]]:
        """Load the latest snapshot if its hashes are comparable with this run.

        A snapshot from another schema, extractor or rules version is
        dropped: the run becomes a full rescan and the diff history breaks.
        """
        try:
            return self.store.load_latest(EXTRACTOR_VERSION, RULES_VERSION), None
        except SnapshotVersionError as e:
            message = f"previous snapshot not comparable ({e}); full rescan"
        except StoreError as e:
            message = f"previous snapshot unreadable ({e}); full rescan"
        logger.warning("%s", message)
        return None, RunWarning(kind="schema", scope="snapshot", message=message)

    def _insight(
        self,
        snapshot: Snapshot,
        diff: Diff,
        entry_points: Tuple[EntryPointCandidate, ...],
    ) -> Tuple[Tuple[EntryPointCandidate, ...], Optional[str], Optional[RunWarning]]:
        """Ask the collaborator to adjust the top-K; fall back to the heuristic."""
        ai = self.config.ai
        try:
            provider = self.insight_provider or create_provider(ai)
            request = build_request(
                self.root,
                entry_points,
                snapshot.files,
                dict(diff.files),
                diff.insight_eligible_paths(),
                ai,
            )
            response = request_insight(provider, request, timeout=ai.timeout)
        except InsightUnavailable as e:
            logger.warning("AI insight unavailable: %s", e)
            return entry_points, None, RunWarning(kind="insight", scope=ai.provider, message=str(e))
        return apply_ranking_adjustment(entry_points, response), response.text or None, None
