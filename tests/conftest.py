"""Shared fixtures for codemap tests."""

from pathlib import Path
from typing import Dict

import pytest


def write_tree(root: Path, files: Dict[str, str]) -> Path:
    """Write ``{relative_path: content}`` under ``root``."""
    for rel_path, content in files.items():
        path = root / rel_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    return root


@pytest.fixture
def make_project(tmp_path):
    """Factory that writes a project tree into ``tmp_path / 'project'``."""

    def _make(files: Dict[str, str]) -> Path:
        root = tmp_path / "project"
        root.mkdir(exist_ok=True)
        return write_tree(root, files)

    return _make


@pytest.fixture
def sample_project(make_project):
    """A small Python web service with layered directories."""
    return make_project(
        {
            "README.md": "# Sample\n\nA sample service.\n",
            "requirements.txt": "flask>=2.0\nsqlalchemy\n# comment\n",
            "src/main.py": (
                "from api.routes import handle\n"
                "\n"
                "\n"
                "def main():\n"
                "    return handle({})\n"
            ),
            "src/api/__init__.py": "",
            "src/api/routes.py": (
                "from flask import Flask\n"
                "from services.billing import charge\n"
                "\n"
                "\n"
                "def handle(request):\n"
                "    # dispatch\n"
                "    if request:\n"
                "        return charge(request)\n"
                "    return None\n"
            ),
            "src/services/__init__.py": "",
            "src/services/billing.py": (
                "from repositories.store import save\n"
                "\n"
                "\n"
                "class Billing:\n"
                "    def total(self, items):\n"
                "        return sum(i for i in items if i > 0)\n"
                "\n"
                "\n"
                "def charge(request):\n"
                "    return save(request)\n"
            ),
            "src/repositories/__init__.py": "",
            "src/repositories/store.py": (
                "import sqlalchemy\n"
                "\n"
                "\n"
                "def save(record):\n"
                "    return record\n"
            ),
        }
    )
