"""Exception hierarchy for codemap.

Fatal conditions (unreadable root, invalid configuration) propagate to the
caller. Per-file and collaborator failures are caught by the pipeline and
recorded as report warnings instead.
"""

from typing import Optional


class CodemapError(Exception):
    """Base class for all codemap errors."""


class ScanError(CodemapError):
    """The project root cannot be walked. Fatal for the run."""


class ExtractionError(CodemapError):
    """A single file could not be parsed by its language extractor.

    Attributes:
        path: Relative path of the file, when known.
    """

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


class ConfigError(CodemapError):
    """An injected configuration value is missing or out of range."""


class StoreError(CodemapError):
    """The snapshot store is missing or corrupt."""


class SnapshotVersionError(StoreError):
    """A stored snapshot cannot be compared with the running extractor.

    Attributes:
        found: Version string found in the stored snapshot.
        expected: Version string the running code produces.
    """

    def __init__(self, message: str, found: object = None, expected: object = None):
        super().__init__(message)
        self.found = found
        self.expected = expected


class InsightUnavailable(CodemapError):
    """The optional AI collaborator failed, timed out, or is disabled."""
