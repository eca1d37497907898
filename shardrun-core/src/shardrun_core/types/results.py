"""Worker result types.

Each worker uploads exactly one ShardResult for its shard to
``runs/<runId>/results/shard-<id>.json``. The core never writes these; it
only reads and validates them.

Classes:
    TestCaseStatus: Outcome of one test case.
    TestCaseResult: One test case reported by a worker.
    ShardResult: One worker's outcome for its shard.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable

from shardrun_core.errors import SchemaError
from shardrun_core.types.common import (
    optional_str,
    require_int,
    require_mapping,
    require_number,
    require_str,
)


class TestCaseStatus(str, Enum):
    """Outcome of a single test case."""

    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class TestCaseResult:
    """One test case reported by a worker.

    Attributes:
        name: Test title.
        status: Test outcome.
        duration: Execution time in milliseconds.
        file: Test file the case belongs to, if reported.
        error: Failure message, if any.
    """

    name: str
    status: TestCaseStatus
    duration: float = 0.0
    file: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the worker wire form."""
        data: dict[str, Any] = {
            "name": self.name,
            "status": self.status.value,
            "duration": self.duration,
        }
        if self.file is not None:
            data["file"] = self.file
        if self.error is not None:
            data["error"] = self.error
        return data

    @classmethod
    def from_dict(cls, data: Any) -> TestCaseResult:
        """Deserialize from the worker wire form.

        Raises:
            SchemaError: If the payload is malformed or the status is unknown.
        """
        data = require_mapping(data, "test case")
        raw_status = require_str(data, "status", "test case")
        try:
            status = TestCaseStatus(raw_status)
        except ValueError as e:
            raise SchemaError(f"test case has unknown status {raw_status!r}") from e
        return cls(
            name=require_str(data, "name", "test case"),
            status=status,
            duration=require_number(data, "duration", "test case", default=0.0),
            file=optional_str(data, "file", "test case"),
            error=optional_str(data, "error", "test case"),
        )


@dataclass(frozen=True)
class ShardResult:
    """One worker's outcome for its shard.

    Attributes:
        shard_id: The shard this result belongs to.
        passed: Number of passed tests.
        failed: Number of failed tests.
        skipped: Number of skipped tests.
        duration: Worker-reported execution time in milliseconds.
        tests: Individual test case results.
    """

    shard_id: int
    passed: int = 0
    failed: int = 0
    skipped: int = 0
    duration: float = 0.0
    tests: tuple[TestCaseResult, ...] = ()

    @property
    def total(self) -> int:
        """Return the number of tests reported."""
        return self.passed + self.failed + self.skipped

    @property
    def has_failures(self) -> bool:
        """Return True if any test failed."""
        return self.failed > 0

    def failed_tests(self) -> list[TestCaseResult]:
        """Return the failed test cases."""
        return [t for t in self.tests if t.status == TestCaseStatus.FAILED]

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the worker wire form."""
        return {
            "shard": self.shard_id,
            "passed": self.passed,
            "failed": self.failed,
            "skipped": self.skipped,
            "duration": self.duration,
            "tests": [t.to_dict() for t in self.tests],
        }

    @classmethod
    def from_dict(cls, data: Any) -> ShardResult:
        """Deserialize and validate a worker result payload.

        Raises:
            SchemaError: If the payload is malformed.
        """
        data = require_mapping(data, "shard result")
        raw_tests = data.get("tests", [])
        if not isinstance(raw_tests, list):
            raise SchemaError("shard result field 'tests' must be a list")
        return cls(
            shard_id=require_int(data, "shard", "shard result"),
            passed=require_int(data, "passed", "shard result"),
            failed=require_int(data, "failed", "shard result"),
            skipped=require_int(data, "skipped", "shard result"),
            duration=require_number(data, "duration", "shard result", default=0.0),
            tests=tuple(TestCaseResult.from_dict(t) for t in raw_tests),
        )


@dataclass(frozen=True)
class ResultTotals:
    """Additive totals over a set of shard results."""

    passed: int = 0
    failed: int = 0
    skipped: int = 0
    duration: float = 0.0

    @property
    def total(self) -> int:
        """Return the total number of tests."""
        return self.passed + self.failed + self.skipped

    @classmethod
    def of(cls, results: Iterable[ShardResult]) -> ResultTotals:
        """Sum the counts of the given results."""
        passed = failed = skipped = 0
        duration = 0.0
        for r in results:
            passed += r.passed
            failed += r.failed
            skipped += r.skipped
            duration += r.duration
        return cls(passed=passed, failed=failed, skipped=skipped, duration=duration)
