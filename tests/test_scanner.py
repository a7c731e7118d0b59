"""Tests for the scanner and language classifier."""

import os

import pytest

from codemap.errors import ScanError
from codemap.extractors import extract_all
from codemap.models import LanguageKind, RunWarning
from codemap.scanner import (
    DEFAULT_IGNORE_PATTERNS,
    language_from_name,
    scan,
    should_ignore,
    sniff_language,
)


class TestLanguageClassification:
    """Tests for extension, filename and content classification."""

    @pytest.mark.parametrize(
        "name,expected",
        [
            ("app.py", LanguageKind.PYTHON),
            ("index.tsx", LanguageKind.TYPESCRIPT),
            ("server.mjs", LanguageKind.JAVASCRIPT),
            ("lib.rs", LanguageKind.RUST),
            ("Main.java", LanguageKind.JAVA),
            ("Dockerfile", LanguageKind.DOCKERFILE),
            ("Makefile", LanguageKind.MAKEFILE),
            ("README", LanguageKind.MARKDOWN),
            ("notes.xyz", LanguageKind.UNKNOWN),
        ],
    )
    def test_language_from_name(self, name, expected):
        """Known extensions and filenames map to their language."""
        assert language_from_name(name) == expected

    def test_extensionless_is_inconclusive(self):
        """A bare name needs content sniffing."""
        assert language_from_name("deploy") is None
        assert language_from_name("types.h") is None

    def test_shebang_python(self):
        """An env shebang resolves to the interpreter's language."""
        assert sniff_language("tool", b"#!/usr/bin/env python3\nprint(1)\n") == LanguageKind.PYTHON

    def test_shebang_shell(self):
        assert sniff_language("run", b"#!/bin/bash\necho hi\n") == LanguageKind.SHELL

    def test_header_sniffing(self):
        """C++ markers make a .h file C++; otherwise it is C."""
        assert sniff_language("a.h", b"namespace foo {\n}\n") == LanguageKind.CPP
        assert sniff_language("b.h", b"int add(int a, int b);\n") == LanguageKind.C


class TestShouldIgnore:
    """Tests for ignore pattern matching."""

    def test_component_match(self):
        assert should_ignore("node_modules/react/index.js", DEFAULT_IGNORE_PATTERNS)
        assert should_ignore("pkg/__pycache__/mod.pyc", DEFAULT_IGNORE_PATTERNS)

    def test_store_directory_ignored(self):
        """The tool's own store is never scanned."""
        assert should_ignore(".codemap/snapshots/000001.json", DEFAULT_IGNORE_PATTERNS)

    def test_path_pattern(self):
        assert should_ignore("docs/generated/api.md", ["docs/generated"])
        assert not should_ignore("docs/guide.md", ["docs/generated"])

    def test_no_match(self):
        assert not should_ignore("src/main.py", DEFAULT_IGNORE_PATTERNS)


class TestScan:
    """Tests for the full scan."""

    def test_scan_sorted_and_classified(self, make_project):
        """Files come back sorted by path with a language tag."""
        root = make_project(
            {
                "src/b.py": "x = 1\n",
                "src/a.js": "const a = 1;\n",
                "README.md": "# hi\n",
            }
        )
        result = scan(str(root))
        assert [f.path for f in result.files] == ["README.md", "src/a.js", "src/b.py"]
        assert [f.language for f in result.files] == [
            LanguageKind.MARKDOWN,
            LanguageKind.JAVASCRIPT,
            LanguageKind.PYTHON,
        ]

    def test_ignored_directories_skipped(self, make_project):
        root = make_project({"node_modules/x/index.js": "1;\n", "main.py": "pass\n"})
        result = scan(str(root))
        assert [f.path for f in result.files] == ["main.py"]

    def test_extra_ignore_patterns(self, make_project):
        root = make_project({"gen/out.py": "pass\n", "main.py": "pass\n"})
        result = scan(str(root), ignore_patterns=["gen"])
        assert [f.path for f in result.files] == ["main.py"]

    def test_oversized_file_skipped(self, make_project):
        """Files over the size limit are reported, not scanned."""
        root = make_project({"big.py": "x = 1\n" * 100, "small.py": "x = 1\n"})
        result = scan(str(root), max_file_size=50)
        assert [f.path for f in result.files] == ["small.py"]
        assert ("big.py", "oversized") in result.skipped

    def test_binary_file_skipped(self, make_project):
        root = make_project({"main.py": "pass\n"})
        (root / "image.bin").write_bytes(b"\x89PNG\x00\x00\x01")
        result = scan(str(root))
        assert [f.path for f in result.files] == ["main.py"]
        assert ("image.bin", "binary") in result.skipped

    def test_shebang_script_classified(self, make_project):
        root = make_project({"bin/deploy": "#!/usr/bin/env node\nconsole.log(1);\n"})
        result = scan(str(root))
        assert result.files[0].language == LanguageKind.JAVASCRIPT

    def test_missing_root_raises(self, tmp_path):
        """An unreadable root is fatal."""
        with pytest.raises(ScanError):
            scan(str(tmp_path / "missing"))

    def test_file_root_raises(self, tmp_path):
        path = tmp_path / "file.py"
        path.write_text("pass\n")
        with pytest.raises(ScanError):
            scan(str(path))

    def test_unlistable_directory_reported(self, make_project, monkeypatch):
        """A directory os.walk cannot list becomes a skipped entry."""
        root = make_project({"main.py": "pass\n", "secret/key.py": "pass\n"})
        real_walk = os.walk

        def walk_with_denied_dir(top, onerror=None, **kwargs):
            for dirpath, dirnames, filenames in real_walk(top, onerror=onerror, **kwargs):
                if "secret" in dirnames:
                    dirnames.remove("secret")
                    onerror(PermissionError(13, "Permission denied", os.path.join(dirpath, "secret")))
                yield dirpath, dirnames, filenames

        monkeypatch.setattr("codemap.scanner.os.walk", walk_with_denied_dir)
        result = scan(str(root))
        assert [f.path for f in result.files] == ["main.py"]
        assert result.skipped == (("secret", "unreadable: Permission denied"),)

        batch = extract_all(result)
        assert RunWarning(
            kind="io", scope="secret", message="skipped: unreadable: Permission denied"
        ) in batch.warnings
