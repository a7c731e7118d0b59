"""Tests for per-function complexity rules."""

from codemap.complexity import function_metrics
from codemap.models import FunctionMetrics, LanguageKind


class TestPythonComplexity:
    """Tests for AST-based Python metrics."""

    def test_straight_line_function(self):
        """A function without branches scores 1/1."""
        assert function_metrics("def f():\n    return 1\n", LanguageKind.PYTHON) == FunctionMetrics(
            cyclomatic=1, cognitive=1, length=2
        )

    def test_boolean_operator(self):
        source = "def f(x):\n    if x and x > 1:\n        return 1\n    return 0\n"
        assert function_metrics(source, LanguageKind.PYTHON) == FunctionMetrics(3, 3, 4)

    def test_nesting_increases_cognitive(self):
        """An if inside a loop costs more than a top-level if."""
        source = (
            "def f(items):\n"
            "    for i in items:\n"
            "        if i:\n"
            "            continue\n"
            "    return 0\n"
        )
        assert function_metrics(source, LanguageKind.PYTHON) == FunctionMetrics(3, 4, 5)

    def test_elif_and_else(self):
        source = (
            "def f(x):\n"
            "    if x == 1:\n"
            "        return 1\n"
            "    elif x == 2:\n"
            "        return 2\n"
            "    else:\n"
            "        return 3\n"
        )
        assert function_metrics(source, LanguageKind.PYTHON) == FunctionMetrics(3, 4, 7)

    def test_nested_def_measured_separately(self):
        """Branches of an inner function do not count for the outer one."""
        source = (
            "def outer():\n"
            "    def inner(x):\n"
            "        if x:\n"
            "            return 1\n"
            "    return inner\n"
        )
        assert function_metrics(source, LanguageKind.PYTHON) == FunctionMetrics(1, 1, 5)

    def test_indented_method_source(self):
        """Method sources keep their class indentation."""
        source = "    def m(self, x):\n        return x if x else 0\n"
        metrics = function_metrics(source, LanguageKind.PYTHON)
        assert metrics.cyclomatic == 2

    def test_too_deep_for_ast_uses_token_rules(self):
        """A body nested past the recursion limit is still measured."""
        source = "def gen(a):\n    return a or " + "+".join(["1"] * 20000) + "\n"
        metrics = function_metrics(source, LanguageKind.PYTHON)
        assert metrics.length == 2
        assert metrics.cyclomatic >= 1


class TestTokenComplexity:
    """Tests for token-table metrics of brace languages."""

    def test_javascript(self):
        source = (
            "function f(a, b) {\n"
            "  if (a && b) {\n"
            "    return 1;\n"
            "  }\n"
            "  return a ? 2 : 3;\n"
            "}\n"
        )
        assert function_metrics(source, LanguageKind.JAVASCRIPT) == FunctionMetrics(4, 4, 6)

    def test_rust_match_arms(self):
        source = (
            "fn f(x: u8) -> u8 {\n"
            "    match x {\n"
            "        1 => 10,\n"
            "        _ => 0,\n"
            "    }\n"
            "}\n"
        )
        assert function_metrics(source, LanguageKind.RUST) == FunctionMetrics(3, 2, 6)

    def test_keywords_in_strings_and_comments_ignored(self):
        source = 'int f() {\n    // if while for\n    puts("if (x) { }");\n    return 0;\n}\n'
        assert function_metrics(source, LanguageKind.C) == FunctionMetrics(1, 1, 5)

    def test_values_never_below_one(self):
        metrics = function_metrics("x", LanguageKind.UNKNOWN)
        assert metrics.cyclomatic >= 1
        assert metrics.cognitive >= 1
        assert metrics.length >= 1
