"""Per-function complexity: cyclomatic and cognitive scores.

Python functions are measured on their AST. Every other language goes
through a token table applied to comment- and string-masked text, with
nesting taken from brace depth. Both rule sets are versioned together by
``COMPLEXITY_RULES_VERSION``; it is stored in each snapshot because stored
metrics are only reused while the rules that produced them are unchanged.

Example:
    >>> source = "def f(x):\\n    if x and x > 1:\\n        return 1\\n    return 0\\n"
    >>> function_metrics(source, LanguageKind.PYTHON)
    FunctionMetrics(cyclomatic=3, cognitive=3, length=4)
"""

import ast
import re
import textwrap
from dataclasses import dataclass
from typing import Dict, FrozenSet, Optional, Tuple

from .extractors import mask_source
from .models import FunctionMetrics, LanguageKind

COMPLEXITY_RULES_VERSION = "complexity/1"


class _PythonComplexity(ast.NodeVisitor):
    """Counts decision points and cognitive increments for one function.

    Nested ``def`` and ``class`` bodies are skipped: they are separate
    records with their own metrics.
    """

    def __init__(self):
        self.decisions = 0
        self.cognitive = 0
        self._nesting = 0

    def _nested(self, nodes) -> None:
        self._nesting += 1
        for node in nodes:
            self.visit(node)
        self._nesting -= 1

    def _structure(self) -> None:
        self.decisions += 1
        self.cognitive += 1 + self._nesting

    def visit_FunctionDef(self, node):
        return

    visit_AsyncFunctionDef = visit_FunctionDef
    visit_ClassDef = visit_FunctionDef

    def visit_If(self, node, is_elif=False):
        self.decisions += 1
        self.cognitive += 1 if is_elif else 1 + self._nesting
        self.visit(node.test)
        self._nested(node.body)
        orelse = node.orelse
        if len(orelse) == 1 and isinstance(orelse[0], ast.If):
            self.visit_If(orelse[0], is_elif=True)
        elif orelse:
            self.cognitive += 1
            self._nested(orelse)

    def _visit_loop(self, node):
        self._structure()
        for child in (getattr(node, "target", None), getattr(node, "iter", None), getattr(node, "test", None)):
            if child is not None:
                self.visit(child)
        self._nested(node.body)
        if node.orelse:
            self.cognitive += 1
            self._nested(node.orelse)

    visit_For = _visit_loop
    visit_AsyncFor = _visit_loop
    visit_While = _visit_loop

    def visit_ExceptHandler(self, node):
        self._structure()
        if node.type is not None:
            self.visit(node.type)
        self._nested(node.body)

    def visit_IfExp(self, node):
        self._structure()
        self._nested([node.test, node.body, node.orelse])

    def visit_BoolOp(self, node):
        self.decisions += len(node.values) - 1
        self.cognitive += 1
        self.generic_visit(node)

    def visit_comprehension(self, node):
        self.decisions += 1 + len(node.ifs)
        self.cognitive += 1 + self._nesting
        self.generic_visit(node)

    def visit_Match(self, node):
        self.cognitive += 1 + self._nesting
        self.visit(node.subject)
        for case in node.cases:
            self.decisions += 1
            if case.guard is not None:
                self.visit(case.guard)
            self._nested(case.body)

    def visit_Assert(self, node):
        self.decisions += 1
        self.generic_visit(node)


def _python_metrics(source: str) -> Optional[Tuple[int, int]]:
    """Return ``(decisions, cognitive)`` or None when the source will not parse."""
    try:
        tree = ast.parse(textwrap.dedent(source))
    except (SyntaxError, ValueError, RecursionError, MemoryError):
        return None
    function = next(
        (n for n in tree.body if isinstance(n, (ast.FunctionDef, ast.AsyncFunctionDef))),
        None,
    )
    if function is None:
        return None
    visitor = _PythonComplexity()
    try:
        for statement in function.body:
            visitor.visit(statement)
    except RecursionError:
        # too deep for the visitor; the token table still measures it
        return None
    return visitor.decisions, visitor.cognitive


@dataclass(frozen=True)
class TokenRules:
    """Token table for one language.

    Attributes:
        decisions: Keywords that add a cyclomatic decision point.
        structures: Keywords that add ``1 + nesting`` cognitive points.
        flat: Keywords that add one cognitive point without nesting
            (``else``, ``elseif``).
        bool_ops: Boolean operators; each adds a decision point and each
            run of the same operator adds one cognitive point.
        ternary: Whether a bare ``?`` is a conditional operator.
        arm: Token counted as a decision per match arm (Rust ``=>``).
    """

    decisions: FrozenSet[str]
    structures: FrozenSet[str]
    flat: FrozenSet[str] = frozenset({"else"})
    bool_ops: FrozenSet[str] = frozenset({"&&", "||"})
    ternary: bool = False
    arm: Optional[str] = None


_C_DECISIONS = frozenset({"if", "for", "while", "case", "catch"})
_C_STRUCTURES = frozenset({"if", "for", "while", "switch", "catch", "do"})

TOKEN_RULES: Dict[LanguageKind, TokenRules] = {
    LanguageKind.C: TokenRules(_C_DECISIONS, _C_STRUCTURES, ternary=True),
    LanguageKind.CPP: TokenRules(_C_DECISIONS, _C_STRUCTURES, ternary=True),
    LanguageKind.JAVA: TokenRules(_C_DECISIONS, _C_STRUCTURES, ternary=True),
    LanguageKind.CSHARP: TokenRules(
        _C_DECISIONS | {"foreach"},
        _C_STRUCTURES | {"foreach"},
        bool_ops=frozenset({"&&", "||", "??"}),
    ),
    LanguageKind.JAVASCRIPT: TokenRules(
        _C_DECISIONS, _C_STRUCTURES, bool_ops=frozenset({"&&", "||", "??"}), ternary=True
    ),
    LanguageKind.TYPESCRIPT: TokenRules(
        _C_DECISIONS, _C_STRUCTURES, bool_ops=frozenset({"&&", "||", "??"}), ternary=True
    ),
    LanguageKind.PHP: TokenRules(
        _C_DECISIONS | {"foreach", "elseif"},
        _C_STRUCTURES | {"foreach"},
        flat=frozenset({"else", "elseif"}),
        bool_ops=frozenset({"&&", "||", "??", "and", "or"}),
        ternary=True,
    ),
    LanguageKind.GO: TokenRules(
        frozenset({"if", "for", "case"}), frozenset({"if", "for", "switch", "select"})
    ),
    LanguageKind.RUST: TokenRules(
        frozenset({"if", "for", "while", "loop"}),
        frozenset({"if", "for", "while", "loop", "match"}),
        arm="=>",
    ),
    LanguageKind.KOTLIN: TokenRules(
        frozenset({"if", "for", "while", "when", "catch"}),
        frozenset({"if", "for", "while", "when", "catch", "do"}),
        bool_ops=frozenset({"&&", "||", "?:"}),
    ),
    LanguageKind.SWIFT: TokenRules(
        frozenset({"if", "for", "while", "case", "catch", "guard"}),
        frozenset({"if", "for", "while", "switch", "catch", "guard", "repeat"}),
        bool_ops=frozenset({"&&", "||", "??"}),
        ternary=True,
    ),
    LanguageKind.PYTHON: TokenRules(
        frozenset({"if", "elif", "for", "while", "except", "case", "assert"}),
        frozenset({"if", "for", "while", "except", "match"}),
        flat=frozenset({"else", "elif"}),
        bool_ops=frozenset({"and", "or"}),
    ),
}

DEFAULT_RULES = TokenRules(_C_DECISIONS, _C_STRUCTURES)

_TOKEN = re.compile(r"[A-Za-z_]\w*|&&|\|\||\?\?|\?:|\?\.|=>|\?|[{};]")


def _token_metrics(source: str, language: LanguageKind) -> Tuple[int, int]:
    """Return ``(decisions, cognitive)`` from the language's token table."""
    rules = TOKEN_RULES.get(language, DEFAULT_RULES)
    _, masked = mask_source(source, language)

    decisions = 0
    cognitive = 0
    depth = 0
    previous_word = ""
    last_bool: Optional[str] = None
    for match in _TOKEN.finditer(masked):
        token = match.group(0)
        if token == "{":
            depth += 1
            last_bool = None
        elif token == "}":
            depth = max(0, depth - 1)
            last_bool = None
        elif token == ";":
            last_bool = None
        elif token in rules.bool_ops:
            decisions += 1
            if token != last_bool:
                cognitive += 1
            last_bool = token
        elif token == "?" and rules.ternary:
            decisions += 1
            cognitive += 1 + max(0, depth - 1)
        elif rules.arm is not None and token == rules.arm:
            decisions += 1
        else:
            if token in rules.decisions:
                decisions += 1
            if token in rules.flat:
                cognitive += 1
            elif token in rules.structures:
                # "else if" was already counted by its else
                if not (token == "if" and previous_word == "else"):
                    cognitive += 1 + max(0, depth - 1)
            if token[0].isalpha() or token[0] == "_":
                previous_word = token
    return decisions, cognitive


def function_metrics(source: str, language: LanguageKind) -> FunctionMetrics:
    """Compute the metrics of one function.

    Args:
        source: Raw source of the function, signature line to last line.
        language: Language of the owning file.

    Returns:
        FunctionMetrics where every value is at least 1.
    """
    counts = None
    if language == LanguageKind.PYTHON:
        counts = _python_metrics(source)
    if counts is None:
        counts = _token_metrics(source, language)
    decisions, cognitive = counts
    length = max(1, len(source.rstrip("\n").split("\n")))
    return FunctionMetrics(cyclomatic=1 + decisions, cognitive=max(1, 1 + cognitive), length=length)
