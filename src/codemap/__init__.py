"""codemap - structural index and incremental function-level diff of a codebase.

The pipeline scans a project, extracts functions per language, merges the
result into the previous snapshot so unchanged functions keep their
metrics, and ranks the files a newcomer should read first.

Quick Start:
    >>> from codemap import Analyzer, load_config, config_path
    >>> root = Path('/my/project')
    >>> result = Analyzer(root, load_config(config_path(root))).run()
    >>> result.diff.summary()['added']
    3
    >>> [e.target for e in result.report.entry_points]
    ['src/main.py', 'src/app.py', 'README.md']
"""

__version__ = "0.1.0"

from .config import CodemapConfig, config_path, load_config
from .errors import (
    CodemapError,
    ConfigError,
    ExtractionError,
    InsightUnavailable,
    ScanError,
    SnapshotVersionError,
    StoreError,
)
from .merge import Diff, diff_snapshots, merge
from .models import DiffStatus, FileRecord, FunctionRecord, LanguageKind, Report, Snapshot
from .pipeline import Analyzer, RunResult, RunState
from .store import CodemapStore

__all__ = [
    "__version__",
    "Analyzer",
    "CodemapConfig",
    "CodemapError",
    "CodemapStore",
    "ConfigError",
    "Diff",
    "DiffStatus",
    "ExtractionError",
    "FileRecord",
    "FunctionRecord",
    "InsightUnavailable",
    "LanguageKind",
    "Report",
    "RunResult",
    "RunState",
    "ScanError",
    "Snapshot",
    "SnapshotVersionError",
    "StoreError",
    "config_path",
    "diff_snapshots",
    "load_config",
    "merge",
]
