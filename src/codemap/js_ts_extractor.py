"""JavaScript and TypeScript extractors using tree-sitter.

Functions are taken from the syntax tree rather than from regexes, so
arrow functions, class methods and class fields holding functions all get
exact line ranges. Qualified names follow nesting (``Router.handle``,
``createApp.listen``).

Body hashes are computed on the function's source with comment nodes
blanked, the function's own name replaced by a placeholder and whitespace
collapsed, which matches the normalization of the other extractors.

Example:
    >>> extractor = JavaScriptExtractor()
    >>> result = extractor.extract(b"const add = (a, b) => a + b;\\n")
    >>> result.functions[0].qualified_name
    'add'
"""

from typing import TYPE_CHECKING, List, Optional, Set, Tuple

import tree_sitter_javascript as ts_javascript
import tree_sitter_typescript as ts_typescript
from tree_sitter import Language, Parser

from .errors import ExtractionError
from .extractors import (
    NAME_PLACEHOLDER,
    ExtractedFunction,
    Extraction,
    Extractor,
    collapse_whitespace,
    compute_content_hash,
    decode_source,
    dedupe_names,
    line_stats,
)
from .models import LanguageKind

if TYPE_CHECKING:
    from tree_sitter import Node, Tree

FUNCTION_DECLARATIONS = ("function_declaration", "generator_function_declaration")
FUNCTION_VALUES = (
    "arrow_function",
    "function_expression",
    "function",
    "generator_function",
)
CLASS_NODES = ("class_declaration", "abstract_class_declaration", "class")
FIELD_NODES = ("public_field_definition", "field_definition")

# enclosing ("class" | "function", name) pairs, outermost first
Scope = Tuple[Tuple[str, str], ...]


class _TreeWalker:
    """Collects functions, imports, exports and comments from one tree.

    The walk keeps its own stack, so nesting depth is bounded by memory
    rather than by the interpreter's recursion limit.

    Attributes:
        source: UTF-8 bytes the tree was parsed from.
        functions: ``(qualified_name, kind, span_node, name_node)`` tuples.
        imports: Module specifiers found in import/require/export-from.
        exports: Number of exported symbols.
        comments: ``(start_byte, end_byte)`` of every comment node.
    """

    def __init__(self, source: bytes):
        self.source = source
        self.functions: List[Tuple[str, str, "Node", "Node"]] = []
        self.imports: Set[str] = set()
        self.exports = 0
        self.comments: List[Tuple[int, int]] = []

    def _text(self, node: "Node") -> str:
        return self.source[node.start_byte : node.end_byte].decode("utf-8", errors="replace")

    def walk(self, root: "Node") -> None:
        """Visit ``root`` and its descendants in source order."""
        stack: List[Tuple["Node", Scope]] = [(root, ())]
        while stack:
            node, scope = stack.pop()
            stack.extend(reversed(self._visit(node, scope)))

    def _visit(self, node: "Node", scope: Scope) -> List[Tuple["Node", Scope]]:
        """Handle one node and return the children to descend into."""
        node_type = node.type

        if node_type == "comment":
            self.comments.append((node.start_byte, node.end_byte))
            return []
        if node_type in FUNCTION_DECLARATIONS:
            name = node.child_by_field_name("name")
            if name is not None:
                return self._record(scope, self._text(name), node, name, node)
        elif node_type in CLASS_NODES:
            name = node.child_by_field_name("name")
            if name is not None:
                inner = scope + (("class", self._text(name)),)
                return [(child, inner) for child in node.children]
        elif node_type == "method_definition":
            name = node.child_by_field_name("name")
            if name is not None:
                return self._record(scope, self._text(name), node, name, node)
        elif node_type == "variable_declarator":
            name = node.child_by_field_name("name")
            value = node.child_by_field_name("value")
            if name is not None and name.type == "identifier" and value is not None and value.type in FUNCTION_VALUES:
                return self._record(scope, self._text(name), node, name, value)
        elif node_type in FIELD_NODES:
            name = node.child_by_field_name("name") or node.child_by_field_name("property")
            value = node.child_by_field_name("value")
            if name is not None and value is not None and value.type in FUNCTION_VALUES:
                return self._record(scope, self._text(name), node, name, value)
        elif node_type == "import_statement":
            self._add_source(node.child_by_field_name("source"))
        elif node_type == "export_statement":
            self._count_export(node)
            self._add_source(node.child_by_field_name("source"))
        elif node_type == "call_expression":
            self._check_require(node)

        return [(child, scope) for child in node.children]

    def _record(
        self, scope: Scope, name: str, span: "Node", name_node: "Node", body: "Node"
    ) -> List[Tuple["Node", Scope]]:
        qualified = ".".join([part for _, part in scope] + [name])
        kind = "method" if scope and scope[-1][0] == "class" else "function"
        self.functions.append((qualified, kind, span, name_node))
        inner = scope + (("function", name),)
        return [(child, inner) for child in body.children]

    def _add_source(self, node: Optional["Node"]) -> None:
        if node is None or node.type != "string":
            return
        specifier = self._text(node)[1:-1]
        if specifier:
            self.imports.add(specifier)

    def _check_require(self, node: "Node") -> None:
        function = node.child_by_field_name("function")
        arguments = node.child_by_field_name("arguments")
        if function is None or arguments is None:
            return
        if function.type == "import" or (function.type == "identifier" and self._text(function) == "require"):
            strings = [child for child in arguments.children if child.type == "string"]
            if strings:
                self._add_source(strings[0])

    def _count_export(self, node: "Node") -> None:
        clause = next((c for c in node.children if c.type == "export_clause"), None)
        if clause is not None:
            self.exports += sum(1 for c in clause.children if c.type == "export_specifier")
            return
        declaration = node.child_by_field_name("declaration")
        if declaration is not None and declaration.type in ("lexical_declaration", "variable_declaration"):
            self.exports += sum(1 for c in declaration.children if c.type == "variable_declarator")
            return
        self.exports += 1


class JavaScriptExtractor(Extractor):
    """Tree-sitter extractor for JavaScript and JSX.

    Files whose tree contains syntax errors raise ``ExtractionError`` so the
    extraction phase can demote them to whole-file hashing.
    """

    language = LanguageKind.JAVASCRIPT

    def _languages(self) -> List[Language]:
        return [Language(ts_javascript.language())]

    def _parse(self, source: bytes) -> "Tree":
        for language in self._languages():
            tree = Parser(language).parse(source)
            if not tree.root_node.has_error:
                return tree
        raise ExtractionError(f"{self.language.value} syntax error")

    def extract(self, data: bytes) -> Extraction:
        text = decode_source(data)
        source = text.encode("utf-8")
        tree = self._parse(source)

        walker = _TreeWalker(source)
        walker.walk(tree.root_node)

        code_only = bytearray(source)
        for start, end in walker.comments:
            for i in range(start, end):
                if code_only[i] != ord("\n"):
                    code_only[i] = ord(" ")
        code_only_bytes = bytes(code_only)

        lines = text.split("\n")
        functions = []
        for qualified, kind, span, name_node in walker.functions:
            line_start = span.start_point[0] + 1
            line_end = span.end_point[0] + 1
            body = (
                code_only_bytes[span.start_byte : name_node.start_byte]
                + NAME_PLACEHOLDER.encode("utf-8")
                + code_only_bytes[name_node.end_byte : span.end_byte]
            )
            normalized = collapse_whitespace(body.decode("utf-8", errors="replace"))
            functions.append(
                ExtractedFunction(
                    qualified_name=qualified,
                    line_start=line_start,
                    line_end=line_end,
                    body_hash=compute_content_hash(normalized),
                    source="\n".join(lines[line_start - 1 : line_end]),
                    kind=kind,
                )
            )

        comment_lines, code_lines = line_stats(
            text, code_only_bytes.decode("utf-8", errors="replace")
        )
        return Extraction(
            functions=dedupe_names(functions),
            file_hash=compute_content_hash(data),
            imports=tuple(sorted(walker.imports)),
            exported_symbols=walker.exports,
            comment_lines=comment_lines,
            code_lines=code_lines,
        )


class TypeScriptExtractor(JavaScriptExtractor):
    """Tree-sitter extractor for TypeScript.

    The plain TypeScript grammar is tried first and the TSX grammar second,
    since ``.ts`` and ``.tsx`` files share one language tag.
    """

    language = LanguageKind.TYPESCRIPT

    def _languages(self) -> List[Language]:
        return [
            Language(ts_typescript.language_typescript()),
            Language(ts_typescript.language_tsx()),
        ]
