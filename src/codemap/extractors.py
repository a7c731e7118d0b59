#!/usr/bin/env python3
"""Structural extractors - per-language function extraction and hashing.

Every extractor honours one contract: ``extract(data: bytes) -> Extraction``.
The extraction lists the file's functions with their line ranges and a hash
of the normalized body, plus the whole-file hash and the imports/exports
the ranking and tech-stack phases need.

Dispatch is a closed mapping from ``LanguageKind`` to extractor instances.
Languages without a structural strategy get ``FileLevelExtractor``, which
hashes the whole file and reports no functions.

Normalization makes body hashes insensitive to comments, blank lines,
indentation depth and the function's own name, so a verbatim rename or a
move into another class keeps the hash while any code edit changes it.

Example:
    >>> extractor = get_extractor(LanguageKind.PYTHON)
    >>> result = extractor.extract(b"def greet(name):\\n    return 'hi ' + name\\n")
    >>> result.functions[0].qualified_name
    'greet'
    >>> len(result.functions[0].body_hash)
    64

Attributes:
    EXTRACTOR_VERSION: Bumped whenever normalization or naming changes,
        since stored hashes stop being comparable.
"""

import ast
import hashlib
import io
import logging
import re
import textwrap
import tokenize
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace
from functools import lru_cache
from typing import Dict, List, Optional, Sequence, Set, Tuple, Union

from .errors import ExtractionError
from .models import LanguageKind, RunWarning
from .scanner import ScannedFile, ScanResult

logger = logging.getLogger(__name__)

EXTRACTOR_VERSION = "codemap-extract/1"

NAME_PLACEHOLDER = "<name>"


def compute_content_hash(content: Union[str, bytes]) -> str:
    """Compute the canonical content digest.

    This is the hash used for whole files and normalized bodies alike.

    Args:
        content: Text (encoded as UTF-8) or raw bytes.

    Returns:
        A 64-character SHA-256 hex digest.

    Example:
        >>> len(compute_content_hash("def foo(): pass"))
        64
    """
    if isinstance(content, str):
        content = content.encode("utf-8")
    return hashlib.sha256(content).hexdigest()


@dataclass(frozen=True)
class ExtractedFunction:
    """A function found by an extractor.

    Attributes:
        qualified_name: Dotted name inside the file.
        line_start: Line of the ``def``/``fn``/signature (1-indexed).
        line_end: Last line of the body (1-indexed, inclusive).
        body_hash: Hash of the normalized body.
        source: Raw source of the function, used by the metrics phase.
        kind: ``function`` or ``method``.
    """

    qualified_name: str
    line_start: int
    line_end: int
    body_hash: str
    source: str
    kind: str = "function"


@dataclass(frozen=True)
class Extraction:
    """Result of extracting one file."""

    functions: Tuple[ExtractedFunction, ...]
    file_hash: str
    imports: Tuple[str, ...] = ()
    exported_symbols: int = 0
    comment_lines: int = 0
    code_lines: int = 0
    function_level: bool = True


def decode_source(data: bytes) -> str:
    """Decode file bytes deterministically (invalid UTF-8 is replaced)."""
    text = data.decode("utf-8", errors="replace")
    if text.startswith("﻿"):
        text = text[1:]
    return text.replace("\r\n", "\n").replace("\r", "\n")


def collapse_whitespace(text: str) -> str:
    return " ".join(text.split())


def line_stats(original: str, code_only: str) -> Tuple[int, int]:
    """Count comment and code lines.

    A comment line is non-blank in ``original`` but blank once comments
    are removed; a code line is non-blank in ``code_only``.

    Args:
        original: Source text.
        code_only: Same text with comments blanked (newlines preserved).

    Returns:
        ``(comment_lines, code_lines)``.
    """
    comment_lines = 0
    code_lines = 0
    for raw, code in zip(original.split("\n"), code_only.split("\n")):
        if code.strip():
            code_lines += 1
        elif raw.strip():
            comment_lines += 1
    return comment_lines, code_lines


def dedupe_names(functions: List[ExtractedFunction]) -> Tuple[ExtractedFunction, ...]:
    """Give repeated qualified names a stable ``#2``, ``#3`` suffix.

    Suffixes follow source order, so redefinitions keep their keys as long
    as their relative order does not change.
    """
    ordered = sorted(functions, key=lambda f: (f.line_start, f.line_end, f.qualified_name))
    seen: Dict[str, int] = {}
    result = []
    for function in ordered:
        count = seen.get(function.qualified_name, 0) + 1
        seen[function.qualified_name] = count
        if count > 1:
            function = replace(function, qualified_name=f"{function.qualified_name}#{count}")
        result.append(function)
    return tuple(result)


class Extractor(ABC):
    """Contract shared by all language extractors."""

    language: LanguageKind = LanguageKind.UNKNOWN

    @abstractmethod
    def extract(self, data: bytes) -> Extraction:
        """Extract functions and file facts from raw file bytes.

        Args:
            data: File content.

        Returns:
            Extraction for the file.

        Raises:
            ExtractionError: If the file cannot be parsed.
        """


# ---------------------------------------------------------------------------
# Comment and string masking for regex-driven languages
# ---------------------------------------------------------------------------

_BLOCK_COMMENT = r"/\*.*?\*/"
_DOUBLE_STRING = r'"(?:\\.|[^"\\\n])*"'
_SINGLE_STRING = r"'(?:\\.|[^'\\\n])*'"
_CHAR_LITERAL = r"'(?:\\.|[^'\\\n])'"
_TRIPLE_STRING = r'"""[\s\S]*?"""'
_BACKTICK_STRING = r"`[^`]*`"


def _lexer(comments: Sequence[str], strings: Sequence[str]) -> "re.Pattern[str]":
    return re.compile(
        "(?P<comment>{})|(?P<string>{})".format("|".join(comments), "|".join(strings)),
        re.DOTALL,
    )


_C_LEXER = _lexer([r"//[^\n]*", _BLOCK_COMMENT], [_DOUBLE_STRING, _CHAR_LITERAL])
_JAVA_LEXER = _lexer([r"//[^\n]*", _BLOCK_COMMENT], [_TRIPLE_STRING, _DOUBLE_STRING, _CHAR_LITERAL])
_RUST_LEXER = _lexer([r"//[^\n]*", _BLOCK_COMMENT], [_DOUBLE_STRING, _CHAR_LITERAL])
_GO_LEXER = _lexer([r"//[^\n]*", _BLOCK_COMMENT], [_DOUBLE_STRING, _CHAR_LITERAL, _BACKTICK_STRING])
_PHP_LEXER = _lexer(
    [r"//[^\n]*", r"#(?!\[)[^\n]*", _BLOCK_COMMENT], [_DOUBLE_STRING, _SINGLE_STRING]
)
_HASH_LEXER = _lexer([r"#[^\n]*"], [_DOUBLE_STRING, _SINGLE_STRING])
_JS_LEXER = _lexer(
    [r"//[^\n]*", _BLOCK_COMMENT], [_DOUBLE_STRING, _SINGLE_STRING, _BACKTICK_STRING]
)

LEXERS = {
    LanguageKind.C: _C_LEXER,
    LanguageKind.CPP: _C_LEXER,
    LanguageKind.CSHARP: _JAVA_LEXER,
    LanguageKind.JAVA: _JAVA_LEXER,
    LanguageKind.KOTLIN: _JAVA_LEXER,
    LanguageKind.SWIFT: _JAVA_LEXER,
    LanguageKind.RUST: _RUST_LEXER,
    LanguageKind.GO: _GO_LEXER,
    LanguageKind.PHP: _PHP_LEXER,
    LanguageKind.JAVASCRIPT: _JS_LEXER,
    LanguageKind.TYPESCRIPT: _JS_LEXER,
    LanguageKind.PYTHON: _HASH_LEXER,
    LanguageKind.RUBY: _HASH_LEXER,
    LanguageKind.SHELL: _HASH_LEXER,
    LanguageKind.YAML: _HASH_LEXER,
    LanguageKind.TOML: _HASH_LEXER,
    LanguageKind.DOCKERFILE: _HASH_LEXER,
    LanguageKind.MAKEFILE: _HASH_LEXER,
}


def _blank(text: str) -> str:
    return "".join("\n" if ch == "\n" else " " for ch in text)


def mask_source(text: str, language: LanguageKind) -> Tuple[str, str]:
    """Blank out comments (and string contents) while keeping positions.

    Args:
        text: Source text.
        language: Language whose comment/string syntax applies.

    Returns:
        ``(code_only, masked)``: ``code_only`` has comments blanked,
        ``masked`` additionally blanks string contents (quotes kept) so
        braces and keywords inside literals are invisible to the scanners.
        Both have the same length and line structure as ``text``.
    """
    lexer = LEXERS.get(language)
    if lexer is None:
        return text, text

    code_parts: List[str] = []
    mask_parts: List[str] = []
    last = 0
    for match in lexer.finditer(text):
        code_parts.append(text[last : match.start()])
        mask_parts.append(text[last : match.start()])
        token = match.group(0)
        if match.lastgroup == "comment":
            code_parts.append(_blank(token))
            mask_parts.append(_blank(token))
        else:
            code_parts.append(token)
            mask_parts.append(token[0] + _blank(token[1:-1]) + token[-1])
        last = match.end()
    code_parts.append(text[last:])
    mask_parts.append(text[last:])
    return "".join(code_parts), "".join(mask_parts)


# ---------------------------------------------------------------------------
# Import and export tables
# ---------------------------------------------------------------------------

IMPORT_PATTERNS = {
    LanguageKind.RUST: [r"^\s*(?:pub\s+)?use\s+([\w:]+)", r"^\s*(?:pub\s+)?mod\s+(\w+)\s*;"],
    LanguageKind.GO: [r'^\s*import\s+(?:\w+\s+)?"([^"]+)"', r'^\s+(?:\w+\s+)?"([^"]+)"\s*$'],
    LanguageKind.JAVA: [r"^\s*import\s+(?:static\s+)?([\w.]+)"],
    LanguageKind.KOTLIN: [r"^\s*import\s+([\w.]+)"],
    LanguageKind.SWIFT: [r"^\s*import\s+(\w+)"],
    LanguageKind.CSHARP: [r"^\s*using\s+(?:static\s+)?([\w.]+)\s*;"],
    LanguageKind.C: [r'^\s*#\s*include\s*[<"]([^>"]+)[>"]'],
    LanguageKind.CPP: [r'^\s*#\s*include\s*[<"]([^>"]+)[>"]'],
    LanguageKind.PHP: [
        r"^\s*use\s+([\w\\]+)",
        r"(?:require|include)(?:_once)?\s*\(?\s*['\"]([^'\"]+)['\"]",
    ],
    LanguageKind.RUBY: [r"^\s*require(?:_relative)?\s*\(?\s*['\"]([^'\"]+)['\"]"],
    LanguageKind.SHELL: [r"^\s*(?:source|\.)\s+['\"]?([\w./-]+)"],
}

EXPORT_PATTERNS = {
    LanguageKind.RUST: r"^\s*pub(?:\([^)]*\))?\s+(?:async\s+)?(?:fn|struct|enum|trait|mod|const|type|static)\s+\w+",
    LanguageKind.GO: r"^(?:func\s+(?:\([^)]*\)\s*)?|type\s+)[A-Z]\w*",
    LanguageKind.JAVA: r"^\s*public\s+",
    LanguageKind.CSHARP: r"^\s*public\s+",
    LanguageKind.SWIFT: r"^\s*(?:public|open)\s+",
    LanguageKind.KOTLIN: r"^(?:(?:public|internal|open|data|sealed|abstract|suspend|inline)\s+)*(?:fun|class|object|interface)\s+\w+",
    LanguageKind.PHP: r"^\s*(?:(?:final|abstract)\s+)?(?:class|interface|trait)\s+\w+|^\s*public\s+(?:static\s+)?function\s+\w+",
}


def find_imports(text: str, language: LanguageKind) -> Tuple[str, ...]:
    """Collect import targets from comment-free text with the per-language regex table."""
    found: List[str] = []
    patterns = IMPORT_PATTERNS.get(language, [])
    for pattern in patterns:
        found.extend(re.findall(pattern, text, re.MULTILINE))
    if language == LanguageKind.GO:
        # Bare quoted lines only count inside an import ( ... ) block
        block_imports: List[str] = []
        for block in re.findall(r"^import\s*\((.*?)\)", text, re.MULTILINE | re.DOTALL):
            block_imports.extend(re.findall(r'"([^"]+)"', block))
        single = re.findall(patterns[0], text, re.MULTILINE)
        found = single + block_imports
    return tuple(sorted(set(found)))


# ---------------------------------------------------------------------------
# File-level fallback
# ---------------------------------------------------------------------------


class FileLevelExtractor(Extractor):
    """Whole-file granularity for languages without a structural strategy.

    Reports the file hash, imports and comment density but no functions.
    """

    def __init__(self, language: LanguageKind = LanguageKind.UNKNOWN):
        self.language = language

    def extract(self, data: bytes) -> Extraction:
        text = decode_source(data)
        code_only, _ = mask_source(text, self.language)
        comment_lines, code_lines = line_stats(text, code_only)
        return Extraction(
            functions=(),
            file_hash=compute_content_hash(data),
            imports=find_imports(code_only, self.language),
            comment_lines=comment_lines,
            code_lines=code_lines,
            function_level=False,
        )


# ---------------------------------------------------------------------------
# Python
# ---------------------------------------------------------------------------


def _python_functions(tree: ast.Module) -> List[Tuple[str, str, ast.AST]]:
    """Return ``(qualified_name, kind, node)`` for every def, in source order.

    Walks with an explicit stack; long expressions nest deeper than the
    recursion limit allows for ``ast.NodeVisitor``.
    """
    found: List[Tuple[str, str, ast.AST]] = []
    stack: List[Tuple[ast.AST, Tuple[Tuple[str, str], ...]]] = [(tree, ())]
    while stack:
        node, scope = stack.pop()
        if isinstance(node, ast.ClassDef):
            scope = scope + (("class", node.name),)
        elif isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
            qualified = ".".join([name for _, name in scope] + [node.name])
            kind = "method" if scope and scope[-1][0] == "class" else "function"
            found.append((qualified, kind, node))
            scope = scope + (("function", node.name),)
        stack.extend((child, scope) for child in reversed(list(ast.iter_child_nodes(node))))
    return found


def _docstring_lines(tree: ast.Module) -> Set[int]:
    lines: Set[int] = set()
    for node in ast.walk(tree):
        if isinstance(node, (ast.Module, ast.ClassDef, ast.FunctionDef, ast.AsyncFunctionDef)):
            body = node.body
            if (
                body
                and isinstance(body[0], ast.Expr)
                and isinstance(body[0].value, ast.Constant)
                and isinstance(body[0].value.value, str)
            ):
                lines.update(range(body[0].lineno, (body[0].end_lineno or body[0].lineno) + 1))
    return lines


def _python_imports(tree: ast.Module) -> Tuple[str, ...]:
    imports: Set[str] = set()
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            for alias in node.names:
                imports.add(alias.name)
        elif isinstance(node, ast.ImportFrom):
            module = node.module or ""
            if node.level > 0:
                imports.add("." * node.level + module)
            else:
                imports.add(module)
    imports.discard("")
    return tuple(sorted(imports))


def _python_exports(tree: ast.Module) -> int:
    for node in tree.body:
        if isinstance(node, ast.Assign):
            targets = [t.id for t in node.targets if isinstance(t, ast.Name)]
            if "__all__" in targets and isinstance(node.value, (ast.List, ast.Tuple)):
                return len(node.value.elts)
    return sum(
        1
        for node in tree.body
        if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef))
        and not node.name.startswith("_")
    )


class PythonExtractor(Extractor):
    """AST-based extractor for Python.

    Qualified names follow nesting (``Class.method``, ``outer.inner``).
    Bodies are hashed from the ``def`` line to the end of the function, with
    comments removed via ``tokenize``, the block dedented, blank lines
    dropped and the function's own name replaced by a placeholder.
    """

    language = LanguageKind.PYTHON

    def extract(self, data: bytes) -> Extraction:
        text = decode_source(data)
        try:
            tree = ast.parse(text)
        except (SyntaxError, ValueError) as e:
            raise ExtractionError(f"Python syntax error: {e}") from e
        except (RecursionError, MemoryError) as e:
            raise ExtractionError(f"Python source nests too deeply: {e}") from e

        code_lines_list = self._strip_comments(text).split("\n")
        doc_lines = _docstring_lines(tree)

        found = _python_functions(tree)

        functions = []
        for qualified, kind, node in found:
            start = node.lineno
            end = node.end_lineno or node.lineno
            body_lines = code_lines_list[start - 1 : end]
            functions.append(
                ExtractedFunction(
                    qualified_name=qualified,
                    line_start=start,
                    line_end=end,
                    body_hash=compute_content_hash(self._normalize(body_lines, node.name)),
                    source="\n".join(text.split("\n")[start - 1 : end]),
                    kind=kind,
                )
            )

        code_only_lines = [
            "" if index + 1 in doc_lines else line for index, line in enumerate(code_lines_list)
        ]
        comment_lines, code_lines = line_stats(text, "\n".join(code_only_lines))
        return Extraction(
            functions=dedupe_names(functions),
            file_hash=compute_content_hash(data),
            imports=_python_imports(tree),
            exported_symbols=_python_exports(tree),
            comment_lines=comment_lines,
            code_lines=code_lines,
        )

    @staticmethod
    def _strip_comments(text: str) -> str:
        """Blank out COMMENT tokens, keeping every other character in place."""
        lines = text.split("\n")
        try:
            tokens = list(tokenize.generate_tokens(io.StringIO(text).readline))
        except (tokenize.TokenError, SyntaxError) as e:
            raise ExtractionError(f"Python tokenize error: {e}") from e
        for token in tokens:
            if token.type != tokenize.COMMENT:
                continue
            row, col = token.start
            line = lines[row - 1]
            lines[row - 1] = line[:col] + " " * (len(line) - col)
        return "\n".join(lines)

    @staticmethod
    def _normalize(body_lines: List[str], name: str) -> str:
        kept = [line.rstrip() for line in body_lines if line.strip()]
        body = textwrap.dedent("\n".join(kept))
        return re.sub(r"(\bdef\s+)" + re.escape(name) + r"\b", r"\g<1>" + NAME_PLACEHOLDER, body, 1)


# ---------------------------------------------------------------------------
# Brace-delimited languages (regex signatures + brace matching)
# ---------------------------------------------------------------------------

CONTROL_KEYWORDS = frozenset(
    {
        "if", "else", "for", "foreach", "while", "do", "switch", "case", "catch",
        "try", "return", "new", "delete", "sizeof", "throw", "using", "lock",
        "synchronized", "when", "match", "loop", "fixed", "checked", "unchecked",
        "defer", "go", "select", "await", "yield", "typeof", "nameof",
    }
)

_JAVA_MODIFIERS = (
    r"(?:(?:public|protected|private|internal|static|final|abstract|synchronized|native|"
    r"default|strictfp|virtual|override|async|sealed|extern|unsafe|partial|new|readonly)\s+)*"
)

FUNCTION_PATTERNS = {
    LanguageKind.RUST: [
        r"^[ \t]*(?:pub(?:\([^)]*\))?\s+)?(?:default\s+)?(?:const\s+)?(?:async\s+)?"
        r"(?:unsafe\s+)?(?:extern\s+\"[^\"]*\"\s+)?fn\s+(?P<name>\w+)"
    ],
    LanguageKind.GO: [
        r"^func\s+(?:\(\s*(?:\w+\s+)?\*?\s*(?P<owner>\w+)(?:\[[^\]]*\])?\s*\)\s*)?(?P<name>\w+)"
    ],
    LanguageKind.JAVA: [
        r"^[ \t]*" + _JAVA_MODIFIERS + r"(?:<[^>]+>\s+)?(?:[\w.$]+(?:<[^;{()]*?>)?(?:\[\])*\s+)?"
        r"(?P<name>[A-Za-z_$][\w$]*)\s*\([^;{}]*?\)\s*(?:throws\s+[\w.,\s]+)?\s*\{"
    ],
    LanguageKind.CSHARP: [
        r"^[ \t]*(?:\[[^\]]*\]\s*)*" + _JAVA_MODIFIERS + r"(?:[\w.]+(?:<[^;{()]*?>)?(?:\[\])?\??\s+)?"
        r"(?P<name>[A-Za-z_]\w*)\s*(?:<[^>]+>)?\s*\([^;{}]*?\)\s*(?:where\s+[^{]+)?(?:\{|=>)"
    ],
    LanguageKind.KOTLIN: [
        r"^[ \t]*(?:(?:public|private|protected|internal|override|open|suspend|inline|"
        r"operator|infix|tailrec|abstract|final|external)\s+)*fun\s+(?:<[^>]+>\s*)?"
        r"(?:[\w.]+\.)?(?P<name>\w+)\s*\("
    ],
    LanguageKind.SWIFT: [
        r"^[ \t]*(?:@\w+\s+)*(?:(?:public|private|internal|fileprivate|open|static|class|"
        r"override|mutating|final|convenience|required)\s+)*(?:func\s+(?P<name>\w+)|(?P<init>init)\??\s*\()"
    ],
    LanguageKind.PHP: [
        r"^[ \t]*(?:(?:public|private|protected|static|final|abstract)\s+)*function\s+&?(?P<name>\w+)\s*\("
    ],
    LanguageKind.C: [
        r"^(?P<sig>[A-Za-z_][\w\*&\s]*?[\s\*&])(?P<name>[A-Za-z_]\w*)\s*\([^;{}()]*(?:\([^)]*\)[^;{}()]*)*\)\s*\{"
    ],
    LanguageKind.CPP: [
        r"^[ \t]*(?P<sig>(?:template\s*<[^>]*>\s*)?[\w\*&:<>,~\s]*?[\s\*&])?"
        r"(?P<name>(?:\w+::)*~?\w+)\s*\([^;{}]*?\)\s*(?:const\s*)?(?:noexcept\s*)?"
        r"(?:override\s*)?(?:final\s*)?(?:->\s*[\w:<>\s\*&]+?)?\s*(?::[^{;]*)?\{"
    ],
}

CONTAINER_PATTERNS = {
    LanguageKind.RUST: [
        r"^[ \t]*(?:unsafe\s+)?impl\b(?:\s*<[^{]*?>)?\s+(?:[^{;]*?\s+for\s+)?(?P<name>[A-Za-z_]\w*)",
        r"^[ \t]*(?:pub(?:\([^)]*\))?\s+)?(?:unsafe\s+)?(?:trait|mod)\s+(?P<name>\w+)\s*[{<]",
    ],
    LanguageKind.JAVA: [
        r"^[ \t]*" + _JAVA_MODIFIERS + r"(?:class|interface|enum|record|@interface)\s+(?P<name>\w+)"
    ],
    LanguageKind.CSHARP: [
        r"^[ \t]*(?:\[[^\]]*\]\s*)*" + _JAVA_MODIFIERS
        + r"(?:class|interface|enum|struct|record|namespace)\s+(?P<name>[\w.]+)"
    ],
    LanguageKind.KOTLIN: [
        r"^[ \t]*(?:(?:public|private|protected|internal|open|data|sealed|abstract|"
        r"enum|inner|annotation)\s+)*(?:class|interface|object)\s+(?P<name>\w+)"
    ],
    LanguageKind.SWIFT: [
        r"^[ \t]*(?:(?:public|private|internal|fileprivate|open|final)\s+)*"
        r"(?:class|struct|enum|protocol|extension|actor)\s+(?P<name>\w+)"
    ],
    LanguageKind.PHP: [
        r"^[ \t]*(?:(?:final|abstract)\s+)?(?:class|interface|trait|enum)\s+(?P<name>\w+)"
    ],
    LanguageKind.CPP: [
        r"^[ \t]*(?:template\s*<[^>]*>\s*)?(?:class|struct|namespace)\s+(?P<name>\w+)[^;]*?\{"
    ],
}

METHOD_CONTAINER_LANGUAGES = frozenset(CONTAINER_PATTERNS)


def _line_of(text: str, index: int) -> int:
    return text.count("\n", 0, index) + 1


def _find_body_open(masked: str, start: int) -> Tuple[Optional[int], bool]:
    """Find the opening brace of a body that starts at or after ``start``.

    Returns:
        ``(index, expression_bodied)``. ``index`` is None for declarations
        without a body (a ``;`` comes first). Expression-bodied functions
        (``= expr`` or ``=> expr`` at paren depth 0) return the index of
        the ``=`` with ``expression_bodied`` True.
    """
    depth = 0
    i = start
    length = len(masked)
    while i < length:
        ch = masked[i]
        if ch in "([":
            depth += 1
        elif ch in ")]":
            depth = max(0, depth - 1)
        elif depth == 0:
            if ch == "{":
                return i, False
            if ch == ";":
                return None, False
            if ch == "=" and masked[i + 1 : i + 2] not in ("=",) and masked[i - 1 : i] not in "!<>=":
                return i, True
        i += 1
    return None, False


def _match_brace(masked: str, open_index: int) -> int:
    """Return the index of the brace closing the one at ``open_index``."""
    depth = 0
    for i in range(open_index, len(masked)):
        ch = masked[i]
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i
    return len(masked) - 1


def _statement_end(masked: str, start: int) -> int:
    """End of an expression body: the first ``;`` or newline at depth 0."""
    depth = 0
    for i in range(start, len(masked)):
        ch = masked[i]
        if ch in "([{":
            depth += 1
        elif ch in ")]}":
            if depth == 0:
                return i
            depth -= 1
        elif depth == 0 and ch in ";\n":
            return i
    return len(masked) - 1


class BraceExtractor(Extractor):
    """Regex-signature extractor for brace-delimited languages.

    Signatures are matched on masked text (comments and string contents
    blanked) and bodies are delimited by brace matching on the same text,
    so braces inside literals do not confuse the scan. Containers such as
    ``impl``, ``class`` or ``namespace`` blocks qualify the functions
    inside them (``Parser.parse``); Go methods are qualified by receiver.
    """

    def __init__(self, language: LanguageKind):
        self.language = language
        self._function_patterns = [
            re.compile(p, re.MULTILINE) for p in FUNCTION_PATTERNS.get(language, [])
        ]
        self._container_patterns = [
            re.compile(p, re.MULTILINE) for p in CONTAINER_PATTERNS.get(language, [])
        ]
        export_pattern = EXPORT_PATTERNS.get(language)
        self._export_pattern = re.compile(export_pattern, re.MULTILINE) if export_pattern else None

    def extract(self, data: bytes) -> Extraction:
        text = decode_source(data)
        code_only, masked = mask_source(text, self.language)
        containers = self._find_containers(masked)

        functions: List[ExtractedFunction] = []
        exported = 0
        taken: Set[int] = set()
        for pattern in self._function_patterns:
            for match in pattern.finditer(masked):
                name = match.groupdict().get("name") or match.groupdict().get("init")
                if not name or name.split("::")[-1].lstrip("~") in CONTROL_KEYWORDS:
                    continue
                name_index = match.start("name") if match.group("name") else match.start("init")
                if name_index in taken:
                    continue
                span = self._body_span(masked, match.end("name") if match.group("name") else match.end("init"))
                if span is None:
                    continue
                taken.add(name_index)
                start_line = _line_of(masked, name_index)
                end_line = _line_of(masked, span)

                owner = match.groupdict().get("owner")
                parts = [owner] if owner else self._enclosing(containers, name_index)
                parts.extend(name.split("::"))
                qualified = ".".join(parts)
                kind = "method" if len(parts) > 1 else "function"

                lines = text.split("\n")[start_line - 1 : end_line]
                code_lines = code_only.split("\n")[start_line - 1 : end_line]
                normalized = self._normalize("\n".join(code_lines), name.split("::")[-1])
                functions.append(
                    ExtractedFunction(
                        qualified_name=qualified,
                        line_start=start_line,
                        line_end=end_line,
                        body_hash=compute_content_hash(normalized),
                        source="\n".join(lines),
                        kind=kind,
                    )
                )
                if self.language in (LanguageKind.C, LanguageKind.CPP):
                    sig = match.groupdict().get("sig") or ""
                    if "static" not in sig.split():
                        exported += 1

        if self._export_pattern is not None:
            exported = len(self._export_pattern.findall(masked))

        comment_lines, code_line_count = line_stats(text, code_only)
        return Extraction(
            functions=dedupe_names(functions),
            file_hash=compute_content_hash(data),
            imports=find_imports(code_only, self.language),
            exported_symbols=exported,
            comment_lines=comment_lines,
            code_lines=code_line_count,
        )

    def _body_span(self, masked: str, after_name: int) -> Optional[int]:
        """Return the index where the body ends, or None for bodiless declarations."""
        open_index, expression = _find_body_open(masked, after_name)
        if open_index is None:
            return None
        if expression:
            return _statement_end(masked, open_index + 1)
        return _match_brace(masked, open_index)

    def _find_containers(self, masked: str) -> List[Tuple[int, int, str]]:
        containers = []
        for pattern in self._container_patterns:
            for match in pattern.finditer(masked):
                brace = masked.find("{", match.end("name"))
                semicolon = masked.find(";", match.end("name"))
                if brace == -1 or (semicolon != -1 and semicolon < brace):
                    continue
                containers.append((brace, _match_brace(masked, brace), match.group("name")))
        containers.sort()
        return containers

    @staticmethod
    def _enclosing(containers: List[Tuple[int, int, str]], index: int) -> List[str]:
        return [name for start, end, name in containers if start < index <= end]

    @staticmethod
    def _normalize(body: str, name: str) -> str:
        body = re.sub(r"\b" + re.escape(name) + r"\b", NAME_PLACEHOLDER, body, count=1)
        return collapse_whitespace(body)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

BRACE_LANGUAGES = (
    LanguageKind.RUST,
    LanguageKind.GO,
    LanguageKind.JAVA,
    LanguageKind.CSHARP,
    LanguageKind.KOTLIN,
    LanguageKind.SWIFT,
    LanguageKind.PHP,
    LanguageKind.C,
    LanguageKind.CPP,
)


@lru_cache(maxsize=1)
def _registry() -> Dict[LanguageKind, Extractor]:
    from .js_ts_extractor import JavaScriptExtractor, TypeScriptExtractor

    registry: Dict[LanguageKind, Extractor] = {
        LanguageKind.PYTHON: PythonExtractor(),
        LanguageKind.JAVASCRIPT: JavaScriptExtractor(),
        LanguageKind.TYPESCRIPT: TypeScriptExtractor(),
    }
    for language in BRACE_LANGUAGES:
        registry[language] = BraceExtractor(language)
    return registry


def get_extractor(language: LanguageKind) -> Extractor:
    """Return the extractor for ``language``.

    Unknown or unsupported languages get a ``FileLevelExtractor``.
    """
    return _registry().get(language) or FileLevelExtractor(language)


# ---------------------------------------------------------------------------
# Extraction phase
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FileExtraction:
    """Extraction outcome for one scanned file.

    Attributes:
        scanned: The scanner's record.
        extraction: Result, None when the file could not be read.
        parseable: False when the language extractor failed and the file
            was demoted to whole-file hashing.
        error: Parse or IO error message, if any.
    """

    scanned: ScannedFile
    extraction: Optional[Extraction]
    parseable: bool = True
    error: Optional[str] = None

    @property
    def path(self) -> str:
        return self.scanned.path


@dataclass(frozen=True)
class ExtractionBatch:
    """All extraction results of a run, sorted by path."""

    root: str
    files: Tuple[FileExtraction, ...]
    skipped: Tuple[Tuple[str, str], ...] = ()
    warnings: Tuple[RunWarning, ...] = ()

    @property
    def extracted(self) -> Tuple[FileExtraction, ...]:
        """Files that produced an extraction (readable ones)."""
        return tuple(f for f in self.files if f.extraction is not None)


def extract_file(scanned: ScannedFile) -> FileExtraction:
    """Read and extract one file, demoting it on parse failure.

    Args:
        scanned: File accepted by the scanner.

    Returns:
        FileExtraction. IO errors yield ``extraction=None``; parse errors,
        including input nested past the recursion limit, yield a whole-file
        extraction with ``parseable=False``.
    """
    try:
        data = scanned.abs_path.read_bytes()
    except OSError as e:
        logger.warning("Cannot read %s: %s", scanned.path, e)
        return FileExtraction(scanned=scanned, extraction=None, parseable=False, error=str(e))

    extractor = get_extractor(scanned.language)
    try:
        return FileExtraction(scanned=scanned, extraction=extractor.extract(data))
    except (ExtractionError, RecursionError, MemoryError) as e:
        logger.warning("Demoting %s to whole-file hashing: %s", scanned.path, e)
        fallback = FileLevelExtractor(scanned.language).extract(data)
        return FileExtraction(scanned=scanned, extraction=fallback, parseable=False, error=str(e))


def extract_all(scan_result: ScanResult, workers: int = 4) -> ExtractionBatch:
    """Extract every scanned file in a thread pool.

    Files share no state, so they are extracted independently; results
    are sorted by path before anything downstream sees them.

    Args:
        scan_result: Output of the scanner.
        workers: Thread pool size.

    Returns:
        ExtractionBatch with per-file results and the accumulated warnings.
    """
    with ThreadPoolExecutor(max_workers=max(1, workers)) as executor:
        results = list(executor.map(extract_file, scan_result.files))
    results.sort(key=lambda r: r.path)

    warnings: List[RunWarning] = [
        RunWarning(kind="io", scope=path, message=f"skipped: {reason}")
        for path, reason in scan_result.skipped
    ]
    for result in results:
        if result.extraction is None:
            warnings.append(RunWarning(kind="io", scope=result.path, message=f"unreadable: {result.error}"))
        elif not result.parseable:
            warnings.append(
                RunWarning(
                    kind="parse",
                    scope=result.path,
                    message=f"demoted to whole-file hashing: {result.error}",
                )
            )

    return ExtractionBatch(
        root=str(scan_result.root),
        files=tuple(results),
        skipped=scan_result.skipped,
        warnings=tuple(warnings),
    )
