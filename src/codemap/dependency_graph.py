#!/usr/bin/env python3
"""DependencyGraph - file-level import graph built from extraction results.

Nodes are the files of a snapshot and an edge ``A -> B`` means ``A``
imports ``B``. Imports come from the extraction phase, so building the
graph never re-reads the tree. Resolution tries, in order, relative
imports, the project's own module prefix, exact paths and unique path
suffixes; package files (``__init__.py``, ``index.*``, ``mod.rs``) stand in
for directories.

In-degree feeds the centrality component of entry-point ranking and
``layer_edges`` feeds the dependency-direction signals of architecture
detection. PageRank is kept as a secondary importance score for reports.

Example:
    >>> graph = DependencyGraph(root, snapshot.files).build()
    >>> graph.in_degree('src/core/config.py')
    4
    >>> graph.get_critical_paths(top_n=3)
    [('src/core/config.py', 0.0842), ...]
"""

import json
import logging
import tomllib
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

import networkx as nx

from .models import FileRecord, LanguageKind

logger = logging.getLogger(__name__)


@dataclass
class FileNode:
    """Represents a file in the dependency graph.

    Attributes:
        path: Relative path from project root.
        language: Language of the file.
        imports: Import strings recorded by the extractor.
        resolved_imports: Files this file imports.
        importers: Files that import this file.
        pagerank: Computed PageRank score.
        in_degree: Number of files importing this file.
        out_degree: Number of files this file imports.
    """

    path: str
    language: LanguageKind = LanguageKind.UNKNOWN
    imports: List[str] = field(default_factory=list)
    resolved_imports: List[str] = field(default_factory=list)
    importers: List[str] = field(default_factory=list)
    pagerank: float = 0.0
    in_degree: int = 0
    out_degree: int = 0


class DependencyGraph:
    """Import graph over the files of one snapshot.

    Attributes:
        root: Project root (used to read module names from manifests).
        graph: NetworkX DiGraph of importer -> imported edges.
        nodes: Dict mapping file paths to FileNode objects.
        file_index: Multi-key index for import resolution.
        module_name: Project module name (go.mod, pyproject.toml, package.json).
    """

    # PageRank parameters
    DEFAULT_DAMPING = 0.85
    DEFAULT_MAX_ITER = 100
    DEFAULT_TOL = 1e-06

    RESOLVE_EXTENSIONS = [
        "",
        ".py",
        ".js",
        ".ts",
        ".tsx",
        ".jsx",
        ".mjs",
        ".go",
        ".rs",
        "/index.js",
        "/index.ts",
        "/index.tsx",
        "/__init__.py",
        "/mod.rs",
    ]

    def __init__(self, root: Path, files: Mapping[str, FileRecord], damping: Optional[float] = None):
        """Initialize the graph.

        Args:
            root: Project root directory.
            files: Snapshot files by relative path.
            damping: PageRank damping factor (default: 0.85).
        """
        self.root = Path(root)
        self.files = files
        self.damping = damping or self.DEFAULT_DAMPING
        self.graph: nx.DiGraph = nx.DiGraph()
        self.nodes: Dict[str, FileNode] = {}
        self.file_index: Dict[str, Dict[str, List[str]]] = {}
        self.module_name: str = ""
        self._built = False

    def build(self) -> "DependencyGraph":
        """Resolve imports and build the graph.

        Returns:
            self, for method chaining.
        """
        self.module_name = self._detect_module_name()

        code_files = sorted(path for path, record in self.files.items() if record.language.is_code)
        self._build_file_index(code_files)
        for path in code_files:
            record = self.files[path]
            self.nodes[path] = FileNode(path=path, language=record.language, imports=list(record.imports))

        self._resolve_all_imports()
        self._build_networkx_graph()
        self._compute_pagerank()

        self._built = True
        logger.debug(
            "Dependency graph: %d files, %d edges", len(self.nodes), self.graph.number_of_edges()
        )
        return self

    def _detect_module_name(self) -> str:
        """Detect the module/package name from manifests at the root."""
        if "go.mod" in self.files:
            try:
                for line in (self.root / "go.mod").read_text(encoding="utf-8").splitlines():
                    if line.startswith("module "):
                        return line.split()[1]
            except (OSError, IndexError, UnicodeDecodeError) as e:
                logger.debug("Cannot read go.mod: %s", e)

        if "pyproject.toml" in self.files:
            try:
                data = tomllib.loads((self.root / "pyproject.toml").read_text(encoding="utf-8"))
                name = data.get("project", {}).get("name") or data.get("tool", {}).get(
                    "poetry", {}
                ).get("name")
                if name:
                    return name.replace("-", "_")
            except (OSError, ValueError) as e:
                logger.debug("Cannot read pyproject.toml: %s", e)

        if "package.json" in self.files:
            try:
                data = json.loads((self.root / "package.json").read_text(encoding="utf-8"))
                if isinstance(data, dict) and data.get("name"):
                    return data["name"]
            except (OSError, ValueError) as e:
                logger.debug("Cannot read package.json: %s", e)

        return self.root.name

    def _build_file_index(self, files: List[str]) -> None:
        """Build multi-key index for fast import resolution.

        Creates indexes by exact path, path without extension and all path
        suffixes (for nested packages).
        """
        self.file_index = {"exact": {}, "no_ext": {}, "suffix": {}, "dir": {}}

        for path in files:
            pure = PurePosixPath(path)
            self._add_to_index("exact", path, path)
            self._add_to_index("no_ext", str(pure.with_suffix("")), path)
            self._add_to_index("dir", str(pure.parent), path)

            # "src/core/config.py" is indexed as "core/config.py" and "config.py"
            parts = pure.parts
            for i in range(1, len(parts)):
                suffix = PurePosixPath(*parts[i:])
                self._add_to_index("suffix", str(suffix), path)
                self._add_to_index("suffix", str(suffix.with_suffix("")), path)

    def _add_to_index(self, index_type: str, key: str, path: str) -> None:
        bucket = self.file_index[index_type].setdefault(key, [])
        if path not in bucket:
            bucket.append(path)

    def _resolve_all_imports(self) -> None:
        """Resolve import strings to file paths and record importers."""
        for path, node in self.nodes.items():
            resolved = set()
            for imp in node.imports:
                files = self._resolve_import(imp, path, node.language)
                # Only count single-file resolutions (not ambiguous ones)
                if len(files) == 1 and files[0] != path:
                    resolved.add(files[0])
            node.resolved_imports = sorted(resolved)

        for path, node in self.nodes.items():
            for imported_file in node.resolved_imports:
                self.nodes[imported_file].importers.append(path)

    def _resolve_import(self, imp: str, from_file: str, language: LanguageKind) -> List[str]:
        """Resolve an import string to file path(s).

        Strategies, in order: relative import, module-prefixed path, exact
        match, suffix match.
        """
        from_dir = str(PurePosixPath(from_file).parent)

        if imp.startswith("."):
            if language == LanguageKind.PYTHON:
                return self._resolve_python_relative(imp, from_dir)
            return self._resolve_relative_import(imp, from_dir)

        normalized = self._normalize_import(imp, language)

        if self.module_name and imp.startswith(self.module_name):
            rest = imp[len(self.module_name) :].lstrip("/.")
            candidates = self._try_exact_match(self._normalize_import(rest, language))
            if not candidates and language == LanguageKind.GO:
                # Go imports name a package directory
                candidates = self.file_index["dir"].get(rest, [])
            if candidates:
                return candidates

        candidates = self._try_exact_match(normalized)
        if candidates:
            return candidates

        return self._try_suffix_match(normalized)

    def _normalize_import(self, imp: str, language: LanguageKind) -> str:
        """Convert import syntax to a path-like format."""
        imp = imp.strip("\"'`")

        # app.core.config -> app/core/config
        if language in (LanguageKind.PYTHON, LanguageKind.JAVA, LanguageKind.KOTLIN):
            if "." in imp and "/" not in imp:
                imp = imp.replace(".", "/")
        elif language == LanguageKind.CSHARP or language == LanguageKind.PHP:
            imp = imp.replace(".", "/").replace("\\", "/")
        elif language == LanguageKind.RUST:
            for prefix in ("crate::", "self::", "super::"):
                if imp.startswith(prefix):
                    imp = imp[len(prefix) :]
            imp = imp.replace("::", "/")

        return imp

    def _resolve_relative_import(self, imp: str, from_dir: str) -> List[str]:
        """Resolve ./foo or ../bar style imports."""
        target = PurePosixPath(from_dir)
        rest = imp
        while rest.startswith("../") or rest == "..":
            target = target.parent
            rest = rest[3:]
        while rest.startswith("./"):
            rest = rest[2:]

        candidate = rest if str(target) == "." else str(target / rest) if rest else str(target)
        return self._try_exact_match(candidate)

    def _resolve_python_relative(self, imp: str, from_dir: str) -> List[str]:
        """Resolve ``from ..pkg import x`` style imports (n dots = n-1 levels up)."""
        dots = len(imp) - len(imp.lstrip("."))
        target = PurePosixPath(from_dir)
        for _ in range(dots - 1):
            target = target.parent
        rest = imp[dots:].replace(".", "/")
        if not rest:
            candidate = str(target)
        elif str(target) == ".":
            candidate = rest
        else:
            candidate = str(target / rest)
        return self._try_exact_match(candidate)

    def _try_exact_match(self, path: str) -> List[str]:
        """Try to match path exactly (with common extensions)."""
        for ext in self.RESOLVE_EXTENSIONS:
            candidate = path + ext
            if candidate in self.file_index["exact"]:
                return self.file_index["exact"][candidate]
            if candidate in self.file_index["no_ext"]:
                return self.file_index["no_ext"][candidate]
        return []

    def _try_suffix_match(self, normalized: str) -> List[str]:
        """Find the unique file whose path ends with the normalized import."""
        for ext in self.RESOLVE_EXTENSIONS:
            candidate = normalized + ext
            files = self.file_index["suffix"].get(candidate)
            if files and len(files) == 1:
                return files
        return []

    def _build_networkx_graph(self) -> None:
        """Build the NetworkX DiGraph from resolved imports."""
        self.graph.clear()
        for path in self.nodes:
            self.graph.add_node(path)
        for path, node in self.nodes.items():
            for imported_file in node.resolved_imports:
                self.graph.add_edge(path, imported_file)
        for path, node in self.nodes.items():
            node.in_degree = self.graph.in_degree(path)
            node.out_degree = self.graph.out_degree(path)

    def _compute_pagerank(self) -> None:
        """Compute PageRank scores for all nodes."""
        if len(self.graph) == 0:
            return

        try:
            scores = nx.pagerank(
                self.graph,
                alpha=self.damping,
                max_iter=self.DEFAULT_MAX_ITER,
                tol=self.DEFAULT_TOL,
            )
            for path, score in scores.items():
                self.nodes[path].pagerank = score
        except nx.NetworkXException as e:
            logger.debug("PageRank failed, using uniform scores: %s", e)
            uniform = 1.0 / max(len(self.nodes), 1)
            for node in self.nodes.values():
                node.pagerank = uniform

    def _require_built(self) -> None:
        if not self._built:
            raise RuntimeError("Graph not built. Call build() first.")

    def in_degree(self, path: str) -> int:
        """Number of files importing ``path`` (0 for unknown paths)."""
        self._require_built()
        node = self.nodes.get(path)
        return node.in_degree if node else 0

    def max_in_degree(self) -> int:
        self._require_built()
        return max((node.in_degree for node in self.nodes.values()), default=0)

    def get_critical_paths(self, top_n: int = 10) -> List[Tuple[str, float]]:
        """Get the top N files by PageRank.

        Args:
            top_n: Number of files to return.

        Returns:
            List of ``(path, score)`` sorted by score descending, then path.
        """
        self._require_built()
        ranked = sorted(
            ((path, node.pagerank) for path, node in self.nodes.items()),
            key=lambda x: (-x[1], x[0]),
        )
        return ranked[:top_n]

    def get_hub_files(self, threshold: int = 3) -> List[str]:
        """Get all files that are imported by >= threshold other files."""
        self._require_built()
        return sorted(path for path, node in self.nodes.items() if node.in_degree >= threshold)

    def layer_edges(self, layer_of: Callable[[str], Optional[str]]) -> Dict[Tuple[str, str], int]:
        """Count import edges between layers.

        Args:
            layer_of: Maps a file path to its layer name, or None when the
                file belongs to no layer.

        Returns:
            ``{(importer_layer, imported_layer): edge_count}`` for edges
            that cross two different layers.
        """
        self._require_built()
        counts: Dict[Tuple[str, str], int] = {}
        for source, target in sorted(self.graph.edges()):
            source_layer = layer_of(source)
            target_layer = layer_of(target)
            if source_layer and target_layer and source_layer != target_layer:
                key = (source_layer, target_layer)
                counts[key] = counts.get(key, 0) + 1
        return counts

    def get_stats(self) -> Dict[str, Any]:
        """Get statistics about the dependency graph."""
        self._require_built()
        node_count = max(len(self.nodes), 1)
        return {
            "total_files": len(self.nodes),
            "total_edges": self.graph.number_of_edges(),
            "hub_files": len(self.get_hub_files()),
            "avg_imports_per_file": round(
                sum(n.out_degree for n in self.nodes.values()) / node_count, 4
            ),
            "isolated_files": len(
                [n for n in self.nodes.values() if n.in_degree == 0 and n.out_degree == 0]
            ),
            "critical_paths": [
                {"path": path, "pagerank": round(score, 6)}
                for path, score in self.get_critical_paths(top_n=5)
            ],
        }
