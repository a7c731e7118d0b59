"""Merge engine: incremental diff of extraction results against a snapshot.

Functions are matched on their key ``<path>::<qualified_name>``:

* key in both runs, same body hash: ``unchanged``
* key in both runs, different hash: ``modified``
* key only in the current run: ``added``
* key only in the previous run: ``removed``

Then a hash index pairs removed and added keys that share a body hash,
one-to-one in sorted key order; each pair is a ``moved`` function (a
rename or a move to another file or class). Removed functions are kept as
tombstones for a few runs so a history of deletions stays available.

The merge never touches the previous snapshot: it returns a new one in
which unchanged records are the previous objects themselves whenever
nothing about them changed, so their metrics are reused as-is.

Example:
    >>> result = merge(previous, batch, version=previous.version + 1)
    >>> result.diff.summary()['added']
    1
    >>> result.snapshot.functions['src/b.py::new_fn'].status
    <DiffStatus.ADDED: 'added'>
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .extractors import EXTRACTOR_VERSION, ExtractionBatch
from .models import (
    SCHEMA_VERSION,
    DiffStatus,
    FileRecord,
    FunctionRecord,
    RunWarning,
    Snapshot,
    make_key,
    split_key,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FunctionChange:
    """Diff status of one function key."""

    key: str
    status: DiffStatus
    moved_from: Optional[str] = None

    @property
    def path(self) -> str:
        return split_key(self.key)[0]


@dataclass(frozen=True)
class Diff:
    """Function- and file-level differences between two runs.

    Attributes:
        functions: One change per live function key plus one per removed
            key, sorted by key. Moved functions are listed under their new
            key with ``moved_from`` set; their origin key is not repeated.
        files: ``(path, status)`` pairs sorted by path, removed files included.
    """

    functions: Tuple[FunctionChange, ...] = ()
    files: Tuple[Tuple[str, DiffStatus], ...] = ()

    def keys_with(self, status: DiffStatus) -> List[str]:
        return [change.key for change in self.functions if change.status == status]

    @property
    def moved(self) -> List[Tuple[str, str]]:
        """``(from_key, to_key)`` pairs."""
        return [
            (change.moved_from, change.key)
            for change in self.functions
            if change.status == DiffStatus.MOVED
        ]

    def file_status(self, path: str) -> Optional[DiffStatus]:
        return dict(self.files).get(path)

    def summary(self) -> Dict[str, Any]:
        """Counts per status for functions and files."""
        counts = {status.value: 0 for status in DiffStatus}
        for change in self.functions:
            counts[change.status.value] += 1
        file_counts = {status.value: 0 for status in DiffStatus if status != DiffStatus.MOVED}
        for _, status in self.files:
            file_counts[status.value] += 1
        counts["files"] = file_counts
        return counts

    def reuse_ratio(self) -> float:
        """unchanged / (unchanged + modified), 1.0 when nothing compares."""
        unchanged = len(self.keys_with(DiffStatus.UNCHANGED))
        modified = len(self.keys_with(DiffStatus.MODIFIED))
        return unchanged / (unchanged + modified) if unchanged + modified else 1.0

    def insight_eligible_paths(self) -> Tuple[str, ...]:
        """Files whose content changed this run (``added`` or ``modified``).

        Unchanged files are never eligible, so their content is not sent
        to the insight collaborator again.
        """
        return tuple(
            path
            for path, status in self.files
            if status in (DiffStatus.ADDED, DiffStatus.MODIFIED)
        )

    def to_dict(self) -> Dict[str, Any]:
        by_status: Dict[str, List[str]] = {}
        for change in self.functions:
            if change.status != DiffStatus.UNCHANGED:
                by_status.setdefault(change.status.value, []).append(change.key)
        return {
            "summary": self.summary(),
            "functions": by_status,
            "moved": [{"from": old, "to": new} for old, new in self.moved],
            "files": {path: status.value for path, status in self.files},
        }


@dataclass(frozen=True)
class MergeResult:
    snapshot: Snapshot
    diff: Diff
    warnings: Tuple[RunWarning, ...] = field(default_factory=tuple)


def match_functions(
    previous: Mapping[str, str], current: Mapping[str, str]
) -> Tuple[Dict[str, DiffStatus], Dict[str, str], List[str]]:
    """Classify function keys from two ``key -> body_hash`` mappings.

    Args:
        previous: Hashes of the previous run.
        current: Hashes of the current run.

    Returns:
        ``(statuses, moved_from, removed)``: the status of every current
        key, the origin of every moved key, and the removed keys, sorted.
    """
    statuses: Dict[str, DiffStatus] = {}
    added: List[str] = []
    for key in sorted(current):
        if key in previous:
            if previous[key] == current[key]:
                statuses[key] = DiffStatus.UNCHANGED
            else:
                statuses[key] = DiffStatus.MODIFIED
        else:
            statuses[key] = DiffStatus.ADDED
            added.append(key)
    removed = sorted(key for key in previous if key not in current)

    removed_by_hash: Dict[str, List[str]] = {}
    for key in removed:
        removed_by_hash.setdefault(previous[key], []).append(key)
    added_by_hash: Dict[str, List[str]] = {}
    for key in added:
        added_by_hash.setdefault(current[key], []).append(key)

    moved_from: Dict[str, str] = {}
    for body_hash in sorted(set(removed_by_hash) & set(added_by_hash)):
        for old_key, new_key in zip(removed_by_hash[body_hash], added_by_hash[body_hash]):
            statuses[new_key] = DiffStatus.MOVED
            moved_from[new_key] = old_key

    consumed = set(moved_from.values())
    return statuses, moved_from, [key for key in removed if key not in consumed]


def file_statuses(
    previous: Mapping[str, Tuple[str, Tuple[str, ...]]],
    current: Mapping[str, Tuple[str, Tuple[str, ...]]],
    statuses: Mapping[str, DiffStatus],
    moved_from: Mapping[str, str],
    removed: List[str],
) -> Tuple[Tuple[str, DiffStatus], ...]:
    """Aggregate function statuses into file statuses.

    Args:
        previous: ``path -> (file_hash, function_ids)`` of the previous run.
        current: Same for the current run.
        statuses: Current function statuses from ``match_functions``.
        moved_from: Origins of moved functions.
        removed: Removed function keys.

    Returns:
        ``(path, status)`` pairs sorted by path.
    """
    touched = set()
    for key, status in statuses.items():
        if status != DiffStatus.UNCHANGED:
            touched.add(split_key(key)[0])
    for key in list(removed) + list(moved_from.values()):
        touched.add(split_key(key)[0])

    result: Dict[str, DiffStatus] = {}
    for path, (file_hash, function_ids) in current.items():
        if path not in previous:
            result[path] = DiffStatus.ADDED
        elif path in touched:
            result[path] = DiffStatus.MODIFIED
        elif not function_ids and not previous[path][1]:
            result[path] = (
                DiffStatus.UNCHANGED if previous[path][0] == file_hash else DiffStatus.MODIFIED
            )
        else:
            result[path] = DiffStatus.UNCHANGED
    for path in previous:
        if path not in current:
            result[path] = DiffStatus.REMOVED
    return tuple(sorted(result.items()))


def _carry(record: FunctionRecord, line_start: int, line_end: int, kind: str, status: DiffStatus) -> FunctionRecord:
    """Reuse ``record`` when nothing observable changed, else copy it."""
    if (
        record.status == status
        and record.line_start == line_start
        and record.line_end == line_end
        and record.kind == kind
        and record.moved_from is None
        and record.removed_in is None
    ):
        return record
    metrics = record.metrics
    length = max(1, line_end - line_start + 1)
    if metrics is not None and metrics.length != length:
        metrics = replace(metrics, length=length)
    return replace(
        record,
        line_start=line_start,
        line_end=line_end,
        kind=kind,
        metrics=metrics,
        status=status,
        moved_from=None,
        removed_in=None,
    )


def merge(
    previous: Optional[Snapshot],
    batch: ExtractionBatch,
    version: int,
    tombstone_runs: int = 5,
    rules_version: str = "",
    created_at: Optional[str] = None,
) -> MergeResult:
    """Merge a fresh extraction into the previous snapshot.

    Args:
        previous: Last snapshot, or None for a first (or full) run.
        batch: Extraction results of this run.
        version: Version number of the new snapshot.
        tombstone_runs: Runs a removed function is kept as a tombstone.
        rules_version: Metric rules version stamped on the snapshot.
        created_at: ISO timestamp; defaults to now (UTC).

    Returns:
        MergeResult with the new snapshot, the diff and merge warnings.
    """
    created_at = created_at or datetime.now(timezone.utc).isoformat(timespec="seconds")
    prev_functions: Mapping[str, FunctionRecord] = previous.functions if previous else {}
    prev_files: Mapping[str, FileRecord] = previous.files if previous else {}
    warnings: List[RunWarning] = []

    extracted: Dict[str, Tuple[Any, Any]] = {}
    current_hashes: Dict[str, str] = {}
    for result in batch.extracted:
        for function in result.extraction.functions:
            key = make_key(result.path, function.qualified_name)
            extracted[key] = (result, function)
            current_hashes[key] = function.body_hash

        if not result.parseable and prev_files.get(result.path) and prev_files[result.path].function_ids:
            lost = len(prev_files[result.path].function_ids)
            warnings.append(
                RunWarning(
                    kind="parse",
                    scope=result.path,
                    message=f"{lost} function(s) marked removed after the file stopped parsing",
                )
            )

    statuses, moved_from, removed = match_functions(
        {key: record.body_hash for key, record in prev_functions.items()}, current_hashes
    )

    functions: Dict[str, FunctionRecord] = {}
    for key in sorted(extracted):
        result, function = extracted[key]
        status = statuses[key]
        if status == DiffStatus.UNCHANGED:
            functions[key] = _carry(
                prev_functions[key], function.line_start, function.line_end, function.kind, status
            )
            continue
        metrics = None
        if status == DiffStatus.MOVED:
            origin = prev_functions[moved_from[key]].metrics
            if origin is not None:
                metrics = replace(origin, length=max(1, function.line_end - function.line_start + 1))
        functions[key] = FunctionRecord(
            qualified_name=function.qualified_name,
            path=result.path,
            line_start=function.line_start,
            line_end=function.line_end,
            body_hash=function.body_hash,
            kind=function.kind,
            metrics=metrics,
            status=status,
            moved_from=moved_from.get(key),
        )

    tombstones: Dict[str, FunctionRecord] = {}
    if previous is not None:
        for key, record in previous.tombstones.items():
            if key in functions:
                continue
            if record.removed_in is not None and version - record.removed_in > tombstone_runs:
                logger.debug("Purging tombstone %s (removed in %s)", key, record.removed_in)
                continue
            tombstones[key] = record
    for key in removed:
        tombstones[key] = replace(
            prev_functions[key], status=DiffStatus.REMOVED, moved_from=None, removed_in=version
        )

    files: Dict[str, FileRecord] = {}
    for result in batch.extracted:
        scanned = result.scanned
        extraction = result.extraction
        files[result.path] = FileRecord(
            path=result.path,
            language=scanned.language,
            size=scanned.size,
            file_hash=extraction.file_hash,
            function_ids=tuple(
                sorted(make_key(result.path, f.qualified_name) for f in extraction.functions)
            ),
            parseable=result.parseable,
            exported_symbols=extraction.exported_symbols,
            comment_lines=extraction.comment_lines,
            code_lines=extraction.code_lines,
            imports=extraction.imports,
            last_seen=created_at,
            modified_at=scanned.modified_at,
        )
    removed_files = {path: record for path, record in prev_files.items() if path not in files}

    file_status = file_statuses(
        {path: (r.file_hash, r.function_ids) for path, r in prev_files.items()},
        {path: (r.file_hash, r.function_ids) for path, r in files.items()},
        statuses,
        moved_from,
        removed,
    )

    changes = [
        FunctionChange(key=key, status=statuses[key], moved_from=moved_from.get(key))
        for key in sorted(functions)
    ]
    changes.extend(FunctionChange(key=key, status=DiffStatus.REMOVED) for key in removed)
    changes.sort(key=lambda change: change.key)
    diff = Diff(functions=tuple(changes), files=file_status)

    snapshot = Snapshot(
        version=version,
        created_at=created_at,
        schema_version=SCHEMA_VERSION,
        extractor_version=EXTRACTOR_VERSION,
        rules_version=rules_version,
        files=files,
        functions=functions,
        tombstones=tombstones,
        removed_files=removed_files,
    )
    logger.debug("Merged snapshot v%d: %s", version, diff.summary())
    return MergeResult(snapshot=snapshot, diff=diff, warnings=tuple(warnings))


def diff_snapshots(previous: Optional[Snapshot], current: Snapshot) -> Diff:
    """Recompute the diff between two stored snapshots.

    Args:
        previous: Older snapshot, or None to treat everything as added.
        current: Newer snapshot.

    Returns:
        Diff between the two.
    """
    prev_functions = previous.functions if previous else {}
    prev_files = previous.files if previous else {}
    statuses, moved_from, removed = match_functions(
        {key: record.body_hash for key, record in prev_functions.items()},
        {key: record.body_hash for key, record in current.functions.items()},
    )
    changes = [
        FunctionChange(key=key, status=status, moved_from=moved_from.get(key))
        for key, status in statuses.items()
    ]
    changes.extend(FunctionChange(key=key, status=DiffStatus.REMOVED) for key in removed)
    changes.sort(key=lambda change: change.key)
    files = file_statuses(
        {path: (r.file_hash, r.function_ids) for path, r in prev_files.items()},
        {path: (r.file_hash, r.function_ids) for path, r in current.files.items()},
        statuses,
        moved_from,
        removed,
    )
    return Diff(functions=tuple(changes), files=files)
