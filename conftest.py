"""Root conftest.py for the shardrun monorepo.

Puts every package's src directory on the import path, registers markers, and
marks tests that patch SDK clients with ``uses_mock`` so coverage from mocked
boto3 calls can be told apart from coverage through the in-process fakes.
"""

from __future__ import annotations

import ast
import inspect
import sys
import textwrap
from pathlib import Path
from typing import TYPE_CHECKING

import pytest

if TYPE_CHECKING:
    from _pytest.config import Config
    from _pytest.nodes import Item


# Add all package src directories to path for imports
PROJECT_ROOT = Path(__file__).parent
for pkg_dir in sorted(PROJECT_ROOT.glob("shardrun-*/src")):
    if str(pkg_dir) not in sys.path:
        sys.path.insert(0, str(pkg_dir))


def pytest_configure(config: Config) -> None:
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "uses_mock: Test patches an SDK client (auto-detected or manually marked)",
    )
    config.addinivalue_line(
        "markers",
        "aws: Test needs real AWS credentials",
    )
    config.addinivalue_line(
        "markers",
        "slow: Slow-running test",
    )


MOCK_NAMES = frozenset({"MagicMock", "Mock", "AsyncMock", "patch", "create_autospec"})


def _uses_mock(item: Item) -> bool:
    obj = getattr(item, "obj", None)
    if obj is None:
        return False
    try:
        tree = ast.parse(textwrap.dedent(inspect.getsource(obj)))
    except (OSError, TypeError, SyntaxError):
        return False
    for node in ast.walk(tree):
        if isinstance(node, ast.Name) and node.id in MOCK_NAMES:
            return True
        if isinstance(node, ast.Attribute) and node.attr in MOCK_NAMES:
            return True
        if isinstance(node, ast.arg) and "mock" in node.arg.lower():
            return True
    return False


def pytest_collection_modifyitems(config: Config, items: list[Item]) -> None:
    """Mark tests that use unittest.mock."""
    for item in items:
        if item.get_closest_marker("uses_mock") is None and _uses_mock(item):
            item.add_marker(pytest.mark.uses_mock)


def pytest_report_header(config: Config) -> list[str]:
    """Add the suite name and coverage mode to the pytest header."""
    lines = ["shardrun monorepo test suite"]
    if getattr(config.option, "cov_source", None):
        lines.append("Coverage: enabled")
    return lines
