"""Tests for the tree-sitter JavaScript/TypeScript extractors."""

import pytest

from codemap.errors import ExtractionError
from codemap.extractors import get_extractor
from codemap.js_ts_extractor import JavaScriptExtractor, TypeScriptExtractor
from codemap.models import LanguageKind


def names(extraction):
    return [f.qualified_name for f in extraction.functions]


class TestJavaScriptExtractor:
    """Tests for JavaScript extraction."""

    def test_declarations_and_arrows(self):
        source = b"""import express from 'express';
const { join } = require('path');

function createApp() {
  return express();
}

const add = (a, b) => a + b;

export default createApp;
"""
        extraction = JavaScriptExtractor().extract(source)
        assert names(extraction) == ["createApp", "add"]
        assert extraction.imports == ("express", "path")
        assert extraction.exported_symbols == 1

    def test_class_methods(self):
        source = b"""class Router {
  handle(req) {
    if (req.ok) {
      return 1;
    }
    return 0;
  }

  static create() {
    return new Router();
  }
}
"""
        extraction = JavaScriptExtractor().extract(source)
        assert names(extraction) == ["Router.handle", "Router.create"]
        handle = extraction.functions[0]
        assert handle.kind == "method"
        assert (handle.line_start, handle.line_end) == (2, 7)

    def test_nested_function_qualified(self):
        source = b"function outer() {\n  function inner() {\n    return 1;\n  }\n  return inner();\n}\n"
        assert names(JavaScriptExtractor().extract(source)) == ["outer", "outer.inner"]

    def test_comments_do_not_change_hash(self):
        before = JavaScriptExtractor().extract(b"function f(x) {\n  return x + 1;\n}\n")
        after = JavaScriptExtractor().extract(
            b"function f(x) {\n  // increment\n  return x + 1; /* done */\n}\n"
        )
        assert before.functions[0].body_hash == after.functions[0].body_hash
        assert after.comment_lines == 1

    def test_rename_keeps_hash(self):
        before = JavaScriptExtractor().extract(b"function alpha(x) {\n  return x * 2;\n}\n")
        after = JavaScriptExtractor().extract(b"function beta(x) {\n  return x * 2;\n}\n")
        assert before.functions[0].body_hash == after.functions[0].body_hash

    def test_code_edit_changes_hash(self):
        before = JavaScriptExtractor().extract(b"const f = () => 1;\n")
        after = JavaScriptExtractor().extract(b"const f = () => 2;\n")
        assert before.functions[0].body_hash != after.functions[0].body_hash

    def test_named_exports_counted(self):
        source = b"const a = 1, b = 2;\nexport { a, b };\nexport const c = 3;\n"
        assert JavaScriptExtractor().extract(source).exported_symbols == 3

    def test_syntax_error_raises(self):
        """Broken files raise so the extraction phase can demote them."""
        with pytest.raises(ExtractionError):
            JavaScriptExtractor().extract(b"function broken( {\n")

    def test_deep_nesting(self):
        """Nesting deeper than the recursion limit is walked without recursion."""
        source = b"const x = " + b"[" * 3000 + b"]" * 3000 + b";\nfunction after() { return 1; }\n"
        extraction = JavaScriptExtractor().extract(source)
        assert names(extraction) == ["after"]

    def test_nested_function_scopes(self):
        source = b"class A {\n  m() {\n    const inner = () => 1;\n    return inner;\n  }\n}\nfunction top() {}\n"
        assert names(JavaScriptExtractor().extract(source)) == ["A.m", "A.m.inner", "top"]


class TestTypeScriptExtractor:
    """Tests for TypeScript and TSX extraction."""

    def test_typed_functions(self):
        source = b"""import { Injectable } from '@nestjs/common';

export class UserService {
  private cache: Map<string, number> = new Map();

  find(id: string): number | undefined {
    return this.cache.get(id);
  }

  load = async (id: string): Promise<void> => {
    await fetch(id);
  };
}
"""
        extraction = TypeScriptExtractor().extract(source)
        assert names(extraction) == ["UserService.find", "UserService.load"]
        assert extraction.imports == ("@nestjs/common",)

    def test_tsx_falls_back_to_tsx_grammar(self):
        source = b"export function App(): JSX.Element {\n  return <div>hello</div>;\n}\n"
        extraction = TypeScriptExtractor().extract(source)
        assert names(extraction) == ["App"]

    def test_registry_dispatch(self):
        assert isinstance(get_extractor(LanguageKind.JAVASCRIPT), JavaScriptExtractor)
        assert isinstance(get_extractor(LanguageKind.TYPESCRIPT), TypeScriptExtractor)
