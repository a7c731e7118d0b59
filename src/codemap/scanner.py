#!/usr/bin/env python3
"""Scanner - walks a project tree and tags every file with its language.

The walk is deterministic: directory entries are visited in sorted order and
the result is sorted by POSIX relative path, so two scans of the same tree
always list the same files in the same order. Files that cannot be used
(too large, binary, unreadable, symlinks) are reported as skipped with a
reason instead of aborting the scan.

Example:
    >>> result = scan('/path/to/project')
    >>> [(f.path, f.language.value) for f in result.files][:2]
    [('README.md', 'markdown'), ('src/app.py', 'python')]
    >>> result.skipped
    (('assets/logo.png', 'binary'),)

Attributes:
    LANGUAGE_EXTENSIONS: Mapping of LanguageKind to file extensions.
    DEFAULT_IGNORE_PATTERNS: Patterns ignored in every scan.
"""

import fnmatch
import logging
import os
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Iterable, List, Optional, Sequence, Set, Tuple

from .errors import ScanError
from .models import LanguageKind

logger = logging.getLogger(__name__)

LANGUAGE_EXTENSIONS = {
    LanguageKind.PYTHON: [".py", ".pyw", ".pyi"],
    LanguageKind.JAVASCRIPT: [".js", ".jsx", ".mjs", ".cjs"],
    LanguageKind.TYPESCRIPT: [".ts", ".tsx", ".mts", ".cts"],
    LanguageKind.RUST: [".rs"],
    LanguageKind.GO: [".go"],
    LanguageKind.JAVA: [".java"],
    LanguageKind.C: [".c"],
    LanguageKind.CPP: [".cpp", ".hpp", ".cc", ".hh", ".cxx", ".hxx", ".c++"],
    LanguageKind.CSHARP: [".cs"],
    LanguageKind.PHP: [".php"],
    LanguageKind.KOTLIN: [".kt", ".kts"],
    LanguageKind.SWIFT: [".swift"],
    LanguageKind.RUBY: [".rb"],
    LanguageKind.SHELL: [".sh", ".bash", ".zsh"],
    LanguageKind.MARKDOWN: [".md", ".markdown", ".rst"],
    LanguageKind.JSON: [".json"],
    LanguageKind.YAML: [".yml", ".yaml"],
    LanguageKind.TOML: [".toml"],
}

# Extensions shared by several languages; resolved by sniffing content
AMBIGUOUS_EXTENSIONS = {".h"}

SPECIAL_FILENAMES = {
    "dockerfile": LanguageKind.DOCKERFILE,
    "containerfile": LanguageKind.DOCKERFILE,
    "makefile": LanguageKind.MAKEFILE,
    "gnumakefile": LanguageKind.MAKEFILE,
    "readme": LanguageKind.MARKDOWN,
    "rakefile": LanguageKind.RUBY,
    "gemfile": LanguageKind.RUBY,
}

SHEBANG_INTERPRETERS = [
    (re.compile(r"python[0-9.]*$"), LanguageKind.PYTHON),
    (re.compile(r"(node|nodejs|deno|bun)$"), LanguageKind.JAVASCRIPT),
    (re.compile(r"(ts-node|tsx)$"), LanguageKind.TYPESCRIPT),
    (re.compile(r"(ba|z|k|da)?sh$"), LanguageKind.SHELL),
    (re.compile(r"ruby$"), LanguageKind.RUBY),
    (re.compile(r"php$"), LanguageKind.PHP),
]

CPP_HEADER_MARKERS = re.compile(
    r"^\s*(class\s+\w+|namespace\s+\w+|template\s*<|#include\s*<(iostream|string|vector|memory)>)",
    re.MULTILINE,
)

DEFAULT_IGNORE_PATTERNS = [
    "node_modules",
    "__pycache__",
    ".git",
    ".svn",
    ".hg",
    ".codemap",
    "venv",
    ".venv",
    "env",
    "dist",
    "build",
    ".next",
    "coverage",
    ".nyc_output",
    "*.min.js",
    "*.bundle.js",
    ".tox",
    "eggs",
    "*.egg-info",
    ".pytest_cache",
    ".mypy_cache",
    ".ruff_cache",
    "vendor",
    "target",
    "obj",
    ".idea",
    ".vscode",
    ".DS_Store",
    "*.pyc",
]

SNIFF_BYTES = 8192


@dataclass(frozen=True)
class ScannedFile:
    """A file accepted by the scanner.

    Attributes:
        path: POSIX path relative to the scan root (the file's stable id).
        abs_path: Absolute filesystem path.
        language: Detected language.
        size: Size in bytes.
        modified_at: Modification time (epoch seconds).
    """

    path: str
    abs_path: Path
    language: LanguageKind
    size: int
    modified_at: float


@dataclass(frozen=True)
class ScanResult:
    """Files accepted by a scan plus the ``(path, reason)`` pairs skipped."""

    root: Path
    files: Tuple[ScannedFile, ...]
    skipped: Tuple[Tuple[str, str], ...] = ()


class GitIntegration:
    """Git helpers for the scanner.

    Attributes:
        root_path: Path to the repository root.
        available: Whether git is installed and root is inside a repository.

    Example:
        >>> git = GitIntegration(Path('/path/to/repo'))
        >>> if git.available:
        ...     patterns = git.get_gitignore_patterns()
    """

    def __init__(self, root_path: Path):
        self.root_path = root_path
        self.available = self._check_git_available()

    def _check_git_available(self) -> bool:
        """Check if git is available and this is a git repository."""
        try:
            result = subprocess.run(
                ["git", "rev-parse", "--git-dir"],
                cwd=self.root_path,
                capture_output=True,
                text=True,
                timeout=5,
            )
            return result.returncode == 0
        except (subprocess.TimeoutExpired, FileNotFoundError, OSError):
            return False

    def get_gitignore_patterns(self) -> List[str]:
        """Parse the root .gitignore into scanner patterns.

        Negations (``!pattern``) are dropped; leading and trailing slashes
        are stripped because patterns are matched per path component.

        Returns:
            List of patterns.
        """
        patterns = []
        gitignore_path = self.root_path / ".gitignore"
        if not gitignore_path.exists():
            return patterns

        try:
            content = gitignore_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Cannot read %s: %s", gitignore_path, e)
            return patterns

        for line in content.splitlines():
            line = line.strip()
            if not line or line.startswith("#") or line.startswith("!"):
                continue
            line = line.strip("/")
            if line:
                patterns.append(line)
        return patterns


def should_ignore(rel_path: str, patterns: Sequence[str]) -> bool:
    """Check whether a relative path matches any ignore pattern.

    A pattern matches when it matches any single path component, or, for
    patterns containing a slash, the whole relative path.

    Args:
        rel_path: POSIX path relative to the scan root.
        patterns: fnmatch-style patterns.

    Returns:
        True if the path should be skipped.
    """
    parts = PurePosixPath(rel_path).parts
    for pattern in patterns:
        if "/" in pattern:
            if fnmatch.fnmatch(rel_path, pattern) or fnmatch.fnmatch(rel_path, pattern + "/*"):
                return True
            continue
        if any(fnmatch.fnmatch(part, pattern) for part in parts):
            return True
    return False


def language_from_name(file_name: str) -> Optional[LanguageKind]:
    """Classify a file by extension or well-known filename.

    Args:
        file_name: Base name of the file.

    Returns:
        The language, or None when the name alone is not conclusive.
    """
    lowered = file_name.lower()
    stem = lowered.split(".", 1)[0]
    if lowered in SPECIAL_FILENAMES:
        return SPECIAL_FILENAMES[lowered]
    if stem in ("dockerfile", "containerfile"):
        return LanguageKind.DOCKERFILE

    ext = PurePosixPath(lowered).suffix
    if not ext or ext in AMBIGUOUS_EXTENSIONS:
        return None
    for language, extensions in LANGUAGE_EXTENSIONS.items():
        if ext in extensions:
            return language
    if stem == "readme":
        return LanguageKind.MARKDOWN
    return LanguageKind.UNKNOWN


def sniff_language(file_name: str, head: bytes) -> LanguageKind:
    """Classify a file from its first bytes.

    Used for extensionless files (shebang scripts) and ambiguous extensions
    such as ``.h``.

    Args:
        file_name: Base name of the file.
        head: Leading bytes of the file.

    Returns:
        The detected language, ``UNKNOWN`` if nothing matched.
    """
    text = head.decode("utf-8", errors="replace")
    first_line = text.split("\n", 1)[0].strip()
    if first_line.startswith("#!"):
        words = first_line[2:].split()
        if words:
            interpreter = os.path.basename(words[0])
            if interpreter == "env":
                args = [w for w in words[1:] if not w.startswith("-")]
                interpreter = args[0] if args else ""
            for pattern, language in SHEBANG_INTERPRETERS:
                if pattern.match(interpreter):
                    return language

    if file_name.lower().endswith(".h"):
        return LanguageKind.CPP if CPP_HEADER_MARKERS.search(text) else LanguageKind.C
    return LanguageKind.UNKNOWN


def _read_head(path: Path) -> bytes:
    with open(path, "rb") as f:
        return f.read(SNIFF_BYTES)


def _walk(
    root: Path, patterns: Sequence[str], skipped: List[Tuple[str, str]]
) -> Iterable[Tuple[str, Path]]:
    """Yield ``(rel_path, abs_path)`` for every non-ignored entry, sorted.

    Directories that cannot be listed are appended to ``skipped``.
    """

    def on_error(error: OSError) -> None:
        logger.warning("Cannot list %s: %s", error.filename, error)
        try:
            rel_path = Path(error.filename).relative_to(root).as_posix()
        except (TypeError, ValueError):
            rel_path = str(error.filename)
        skipped.append((rel_path, f"unreadable: {error.strerror or error}"))

    for dirpath, dirnames, filenames in os.walk(root, onerror=on_error):
        current = Path(dirpath)
        rel_dir = current.relative_to(root).as_posix()
        prefix = "" if rel_dir == "." else rel_dir + "/"
        dirnames[:] = sorted(
            d
            for d in dirnames
            if not should_ignore(prefix + d, patterns) and not (current / d).is_symlink()
        )
        for name in sorted(filenames):
            rel_path = prefix + name
            if should_ignore(rel_path, patterns):
                continue
            yield rel_path, current / name


def scan(
    root: str,
    ignore_patterns: Optional[Sequence[str]] = None,
    max_file_size: int = 1_048_576,
    use_gitignore: bool = False,
) -> ScanResult:
    """Walk ``root`` and classify every accepted file.

    Args:
        root: Project root directory.
        ignore_patterns: Extra patterns, merged with ``DEFAULT_IGNORE_PATTERNS``.
        max_file_size: Files larger than this many bytes are skipped.
        use_gitignore: Also ignore patterns from the root .gitignore.

    Returns:
        ScanResult with files sorted by path.

    Raises:
        ScanError: If the root does not exist, is not a directory, or
            cannot be listed.
    """
    root_path = Path(root).resolve()
    if not root_path.is_dir():
        raise ScanError(f"Project root is not a directory: {root_path}")
    try:
        os.listdir(root_path)
    except OSError as e:
        raise ScanError(f"Project root is unreadable: {root_path}: {e}") from e

    patterns: List[str] = list(DEFAULT_IGNORE_PATTERNS)
    patterns.extend(ignore_patterns or [])
    if use_gitignore:
        git = GitIntegration(root_path)
        if git.available:
            patterns.extend(git.get_gitignore_patterns())

    files: List[ScannedFile] = []
    skipped: List[Tuple[str, str]] = []
    seen: Set[str] = set()

    for rel_path, abs_path in _walk(root_path, patterns, skipped):
        if rel_path in seen:
            continue
        seen.add(rel_path)
        try:
            if abs_path.is_symlink():
                skipped.append((rel_path, "symlink"))
                continue
            stat = abs_path.stat()
            if stat.st_size > max_file_size:
                skipped.append((rel_path, "oversized"))
                continue
            head = _read_head(abs_path)
        except OSError as e:
            skipped.append((rel_path, f"unreadable: {e.strerror or e}"))
            continue

        if b"\x00" in head:
            skipped.append((rel_path, "binary"))
            continue

        language = language_from_name(abs_path.name)
        if language is None:
            language = sniff_language(abs_path.name, head)

        files.append(
            ScannedFile(
                path=rel_path,
                abs_path=abs_path,
                language=language,
                size=stat.st_size,
                modified_at=stat.st_mtime,
            )
        )

    files.sort(key=lambda f: f.path)
    skipped.sort()
    logger.debug("Scanned %s: %d files, %d skipped", root_path, len(files), len(skipped))
    return ScanResult(root=root_path, files=tuple(files), skipped=tuple(skipped))
