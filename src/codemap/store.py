"""Code map store: versioned snapshots under ``<root>/.codemap/``.

Layout::

    .codemap/
        config.toml          project configuration
        project.json         Project record written by ``init``
        index.json           {"latest": 3, "previous": 2, "versions": [1, 2, 3]}
        snapshots/000003.json
        report.json          report of the latest run
        metrics.json         run history (one entry per update)

Publishing is write-new-then-publish: the snapshot file is written to a
temp file and renamed into place, and only then is ``index.json``
replaced the same way. A crash at any point leaves the previous index,
and therefore the previous snapshot, in effect.

Example:
    >>> store = CodemapStore(Path('/my/project'))
    >>> store.save_snapshot(snapshot)
    >>> store.load_latest().version
    1
"""

import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .config import CONFIG_DIR, CONFIG_FILE, DEFAULT_CONFIG_TEXT, CodemapConfig, save_config
from .errors import SnapshotVersionError, StoreError
from .models import SCHEMA_VERSION, Project, Snapshot

logger = logging.getLogger(__name__)

SNAPSHOT_DIR = "snapshots"
INDEX_FILE = "index.json"
PROJECT_FILE = "project.json"
REPORT_FILE = "report.json"
METRICS_FILE = "metrics.json"

# schema_version -> function upgrading a raw snapshot dict by one version
MIGRATIONS: Dict[int, Callable[[Dict[str, Any]], Dict[str, Any]]] = {}


def atomic_write_json(path: Path, data: Any, compact: bool = False) -> None:
    """Write JSON to ``path`` atomically (temp file, then rename).

    Args:
        path: Destination file.
        data: JSON-serializable data.
        compact: Write without indentation.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_fd = None
    tmp_path = None
    try:
        tmp_fd, tmp_path = tempfile.mkstemp(suffix=".json.tmp", dir=path.parent, prefix=".codemap_")
        with os.fdopen(tmp_fd, "w", encoding="utf-8") as f:
            tmp_fd = None  # os.fdopen takes ownership
            if compact:
                json.dump(data, f, separators=(",", ":"), sort_keys=True)
            else:
                json.dump(data, f, indent=2, sort_keys=True)
            f.flush()
            os.fsync(f.fileno())

        os.replace(tmp_path, path)
        tmp_path = None
    finally:
        # Clean up temp file if write or rename failed
        if tmp_fd is not None:
            os.close(tmp_fd)
        if tmp_path is not None and os.path.exists(tmp_path):
            try:
                os.unlink(tmp_path)
            except OSError as e:
                logger.debug("Cannot remove temp file %s: %s", tmp_path, e)


def _read_json(path: Path) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise StoreError(f"{path} is corrupt: {e}") from e
    except OSError as e:
        raise StoreError(f"Cannot read {path}: {e}") from e


def migrate_snapshot(data: Dict[str, Any]) -> Dict[str, Any]:
    """Bring a raw snapshot dict to the current schema.

    Raises:
        SnapshotVersionError: If no migration path exists.
    """
    found = data.get("schema_version")
    if not isinstance(found, int):
        raise SnapshotVersionError("Snapshot has no schema_version", found, SCHEMA_VERSION)
    while found < SCHEMA_VERSION and found in MIGRATIONS:
        data = MIGRATIONS[found](data)
        found = data["schema_version"]
    if found != SCHEMA_VERSION:
        raise SnapshotVersionError(
            f"Unsupported snapshot schema {found} (expected {SCHEMA_VERSION})",
            found,
            SCHEMA_VERSION,
        )
    return data


class CodemapStore:
    """Reads and writes the ``.codemap`` directory of one project.

    Attributes:
        root: Project root.
        path: The ``.codemap`` directory.
    """

    def __init__(self, root: Path, compact: bool = False):
        self.root = Path(root)
        self.path = self.root / CONFIG_DIR
        self.compact = compact

    @property
    def config_path(self) -> Path:
        return self.path / CONFIG_FILE

    @property
    def snapshot_dir(self) -> Path:
        return self.path / SNAPSHOT_DIR

    def exists(self) -> bool:
        return (self.path / PROJECT_FILE).exists()

    # -- project ---------------------------------------------------------

    def init_project(self, config: Optional[CodemapConfig] = None, name: Optional[str] = None) -> Project:
        """Create the store layout and the Project record.

        An existing ``config.toml`` is kept. A fresh one is written from
        the commented template, or from ``config`` when given.

        Args:
            config: Configuration to write when none exists yet.
            name: Project name; defaults to the config's or the root's name.

        Returns:
            The Project record (the existing one when already initialized).
        """
        self.snapshot_dir.mkdir(parents=True, exist_ok=True)
        if not self.config_path.exists():
            if config is None:
                self.config_path.write_text(DEFAULT_CONFIG_TEXT, encoding="utf-8")
            else:
                save_config(self.config_path, config)

        existing = self.load_project()
        if existing is not None:
            return existing

        config = config or CodemapConfig()

        project = Project(
            root=str(self.root.resolve()),
            name=name or config.project_name or self.root.resolve().name,
            created_at=datetime.now(timezone.utc).isoformat(timespec="seconds"),
            config_digest=config.digest(),
        )
        atomic_write_json(self.path / PROJECT_FILE, project.to_dict())
        logger.info("Initialized %s", self.path)
        return project

    def load_project(self) -> Optional[Project]:
        path = self.path / PROJECT_FILE
        if not path.exists():
            return None
        data = _read_json(path)
        try:
            return Project.from_dict(data)
        except (KeyError, TypeError) as e:
            raise StoreError(f"{path} is corrupt: {e}") from e

    # -- snapshots -------------------------------------------------------

    def read_index(self) -> Dict[str, Any]:
        path = self.path / INDEX_FILE
        if not path.exists():
            return {"latest": None, "previous": None, "versions": []}
        data = _read_json(path)
        if not isinstance(data, dict) or not isinstance(data.get("versions", []), list):
            raise StoreError(f"{path} is corrupt")
        return {
            "latest": data.get("latest"),
            "previous": data.get("previous"),
            "versions": list(data.get("versions", [])),
        }

    def next_version(self) -> int:
        versions = self.read_index()["versions"]
        return max(versions) + 1 if versions else 1

    def snapshot_path(self, version: int) -> Path:
        return self.snapshot_dir / f"{version:06d}.json"

    def save_snapshot(self, snapshot: Snapshot) -> Path:
        """Write a snapshot and publish it as the latest version.

        Args:
            snapshot: Snapshot to persist.

        Returns:
            Path of the snapshot file.
        """
        path = self.snapshot_path(snapshot.version)
        atomic_write_json(path, snapshot.to_dict(), compact=self.compact)

        index = self.read_index()
        versions = sorted(set(index["versions"]) | {snapshot.version})
        index = {
            "latest": snapshot.version,
            "previous": index["latest"] if index["latest"] != snapshot.version else index["previous"],
            "versions": versions,
        }
        atomic_write_json(self.path / INDEX_FILE, index)
        logger.debug("Published snapshot v%d", snapshot.version)
        return path

    def load_snapshot(
        self,
        version: int,
        extractor_version: Optional[str] = None,
        rules_version: Optional[str] = None,
    ) -> Snapshot:
        """Load one snapshot, checking it is comparable with the running code.

        Args:
            version: Snapshot version.
            extractor_version: Required extractor version (None skips the check).
            rules_version: Required metric rules version (None skips the check).

        Raises:
            StoreError: If the file is missing or corrupt.
            SnapshotVersionError: If the schema, extractor or rules differ.
        """
        path = self.snapshot_path(version)
        if not path.exists():
            raise StoreError(f"Snapshot {version} not found at {path}")
        data = migrate_snapshot(_read_json(path))

        found_extractor = data.get("extractor_version")
        if extractor_version is not None and found_extractor != extractor_version:
            raise SnapshotVersionError(
                f"Snapshot {version} was built by extractor {found_extractor}",
                found_extractor,
                extractor_version,
            )
        found_rules = data.get("rules_version")
        if rules_version is not None and found_rules != rules_version:
            raise SnapshotVersionError(
                f"Snapshot {version} was measured with rules {found_rules}",
                found_rules,
                rules_version,
            )
        try:
            return Snapshot.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            raise StoreError(f"{path} is corrupt: {e}") from e

    def load_latest(self, extractor_version: Optional[str] = None, rules_version: Optional[str] = None) -> Optional[Snapshot]:
        latest = self.read_index()["latest"]
        if latest is None:
            return None
        return self.load_snapshot(latest, extractor_version, rules_version)

    def load_previous(self, extractor_version: Optional[str] = None, rules_version: Optional[str] = None) -> Optional[Snapshot]:
        previous = self.read_index()["previous"]
        if previous is None or not self.snapshot_path(previous).exists():
            return None
        return self.load_snapshot(previous, extractor_version, rules_version)

    def prune(self, keep: int) -> List[int]:
        """Delete all but the newest ``keep`` snapshots.

        The latest and previous versions are always kept.

        Returns:
            Versions that were deleted.
        """
        index = self.read_index()
        versions = sorted(index["versions"])
        protected = {index["latest"], index["previous"]}
        survivors = set(versions[-keep:]) | {v for v in protected if v is not None}
        deleted = [v for v in versions if v not in survivors]
        if not deleted:
            return []

        index["versions"] = sorted(survivors & set(versions))
        atomic_write_json(self.path / INDEX_FILE, index)
        for version in deleted:
            try:
                self.snapshot_path(version).unlink()
            except FileNotFoundError:
                pass
        logger.debug("Pruned snapshots %s", deleted)
        return deleted

    # -- report and run history -----------------------------------------

    def save_report(self, report: Dict[str, Any]) -> Path:
        path = self.path / REPORT_FILE
        atomic_write_json(path, report, compact=self.compact)
        return path

    def load_report(self) -> Optional[Dict[str, Any]]:
        path = self.path / REPORT_FILE
        if not path.exists():
            return None
        return _read_json(path)

    def load_run_metrics(self) -> List[Dict[str, Any]]:
        path = self.path / METRICS_FILE
        if not path.exists():
            return []
        data = _read_json(path)
        if not isinstance(data, list):
            raise StoreError(f"{path} is corrupt")
        return data

    def append_run_metrics(self, entry: Dict[str, Any]) -> None:
        """Append one run's statistics to the history in ``metrics.json``."""
        history = self.load_run_metrics()
        history.append(entry)
        atomic_write_json(self.path / METRICS_FILE, history)
