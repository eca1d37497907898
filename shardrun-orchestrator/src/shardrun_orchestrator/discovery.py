"""Test file discovery and duration estimation.

Finds the test files of a framework under a directory and, optionally,
estimates each file's duration from its source:

    estimate = test count x per-test base time x slow-indicator multipliers

The heuristic only needs to rank files well enough for duration-balanced
sharding; it is not a prediction of wall time.
"""

from __future__ import annotations

import fnmatch
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from shardrun_core.errors import ConfigurationError, EmptyInputError
from shardrun_core.types.common import TestFramework
from shardrun_core.types.shard import TestFile

logger = logging.getLogger(__name__)

FRAMEWORK_PATTERNS: dict[TestFramework, tuple[str, ...]] = {
    TestFramework.PLAYWRIGHT: (
        "**/*.spec.ts",
        "**/*.spec.js",
        "**/*.test.ts",
        "**/*.test.js",
    ),
    TestFramework.CYPRESS: (
        "**/*.cy.ts",
        "**/*.cy.js",
        "**/cypress/integration/**/*.spec.ts",
        "**/cypress/integration/**/*.spec.js",
    ),
    TestFramework.SELENIUM: (
        "**/*.test.ts",
        "**/*.test.js",
        "**/*.spec.ts",
        "**/*.spec.js",
    ),
}

EXCLUDED_DIRS = frozenset({"node_modules", "dist", "build", ".git", "coverage"})
EXCLUDED_SUFFIXES = (".d.ts",)

# Per-test base estimate in milliseconds
BASE_ESTIMATE_MS: dict[TestFramework, float] = {
    TestFramework.PLAYWRIGHT: 5000.0,
    TestFramework.CYPRESS: 8000.0,
    TestFramework.SELENIUM: 10000.0,
}

_TEST_CALL = re.compile(r"\b(test|it)\s*\(")
_IT_CALL = re.compile(r"\bit\s*\(")

# (substrings, multiplier): any substring present applies the multiplier once
SLOW_INDICATORS: tuple[tuple[tuple[str, ...], float], ...] = (
    (("waitForTimeout", "cy.wait("), 1.5),
    (("page.screenshot", "cy.screenshot"), 1.2),
    (("video:", "recordVideo"), 1.3),
    (("fetch(", "axios.", "request("), 1.2),
)


@dataclass(frozen=True)
class DiscoveryResult:
    """Files found by discover().

    Attributes:
        files: Discovered files, sorted by relative path.
        total_size: Sum of file sizes in bytes.
        estimated_duration: Sum of estimates in ms, or None without estimates.
    """

    files: tuple[TestFile, ...]
    total_size: int
    estimated_duration: float | None = None

    @property
    def total_files(self) -> int:
        """Return the number of files."""
        return len(self.files)


def count_tests(content: str, framework: TestFramework) -> int:
    """Count test cases in a source file; at least 1."""
    pattern = _IT_CALL if framework is TestFramework.SELENIUM else _TEST_CALL
    return len(pattern.findall(content)) or 1


def slow_multiplier(content: str) -> float:
    """Return the product of the slow-indicator multipliers found in content."""
    multiplier = 1.0
    for needles, factor in SLOW_INDICATORS:
        if any(n in content for n in needles):
            multiplier *= factor
    return multiplier


def estimate_duration(content: str, framework: TestFramework) -> float:
    """Estimate a file's duration in milliseconds from its source."""
    return count_tests(content, framework) * BASE_ESTIMATE_MS[framework] * slow_multiplier(content)


def suite_name(relative_path: str) -> str:
    """Return the suite of a file: its parent directory name, or ``default``."""
    parent = Path(relative_path).parent.name
    return parent or "default"


def _is_excluded(relative: Path, extra: Sequence[str]) -> bool:
    if EXCLUDED_DIRS.intersection(relative.parts[:-1]):
        return True
    if relative.name.endswith(EXCLUDED_SUFFIXES):
        return True
    posix = relative.as_posix()
    return any(fnmatch.fnmatch(posix, pattern) for pattern in extra)


def discover(
    directory: str | Path,
    framework: TestFramework,
    pattern: str = "",
    exclude: Sequence[str] = (),
    include_estimates: bool = True,
) -> DiscoveryResult:
    """Discover test files under a directory.

    Args:
        directory: Directory to search.
        framework: Framework whose default patterns are used.
        pattern: Glob replacing the framework defaults; empty for defaults.
        exclude: Extra glob patterns (relative paths) to exclude.
        include_estimates: Whether to estimate each file's duration.

    Returns:
        The discovered files, sorted by relative path.

    Raises:
        ConfigurationError: If directory does not exist.
        EmptyInputError: If no test file matches.
    """
    root = Path(directory).expanduser().resolve()
    if not root.is_dir():
        raise ConfigurationError(f"Test directory not found: {directory}")

    patterns = (pattern,) if pattern else FRAMEWORK_PATTERNS[framework]
    found: dict[str, Path] = {}
    for glob in patterns:
        for path in root.glob(glob):
            if not path.is_file():
                continue
            relative = path.relative_to(root)
            if _is_excluded(relative, exclude):
                continue
            found[relative.as_posix()] = path

    if not found:
        raise EmptyInputError(
            f"No test files found in {directory} matching: {', '.join(patterns)}"
        )

    files = []
    for relative, path in sorted(found.items()):
        estimate = None
        if include_estimates:
            try:
                estimate = estimate_duration(path.read_text(encoding="utf-8"), framework)
            except (OSError, UnicodeDecodeError):
                logger.debug("Cannot read %s, using the base estimate", path)
                estimate = BASE_ESTIMATE_MS[framework]
        files.append(
            TestFile(
                path=str(path),
                size=path.stat().st_size,
                estimated_duration=estimate,
                suite=suite_name(relative),
                relative_path=relative,
                framework=framework.value,
            )
        )

    total_size = sum(f.size for f in files)
    estimated = sum(f.estimated_duration or 0.0 for f in files) if include_estimates else None
    logger.info("Discovered %d test file(s) in %s", len(files), root)
    return DiscoveryResult(files=tuple(files), total_size=total_size, estimated_duration=estimated)
