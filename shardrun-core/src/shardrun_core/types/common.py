"""Common types used across shardrun modules.

Type Aliases:
    RunId: Identifies one orchestrated run (``run-<ms>-<suffix>``).
    TaskId: Backend-specific identifier of one launched task (e.g. an ECS task ARN).

Classes:
    TestFramework: Test frameworks a worker knows how to drive.

Functions:
    require_mapping, require_int, require_number, require_str: Field readers
    used by the ``from_dict`` / ``from_payload`` constructors. They raise
    SchemaError instead of KeyError/TypeError so that a malformed payload read
    from the store is reported as such.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Mapping, NewType

from shardrun_core.errors import SchemaError

RunId = NewType("RunId", str)
"""Type alias for run identifiers."""

TaskId = NewType("TaskId", str)
"""Type alias for backend task identifiers."""


class TestFramework(str, Enum):
    """Test frameworks supported by the worker image.

    Attributes:
        PLAYWRIGHT: Playwright test runner.
        CYPRESS: Cypress test runner.
        SELENIUM: Selenium WebDriver tests.
    """

    PLAYWRIGHT = "playwright"
    CYPRESS = "cypress"
    SELENIUM = "selenium"


def require_mapping(data: Any, what: str) -> Mapping[str, Any]:
    """Return data if it is a mapping, otherwise raise SchemaError."""
    if not isinstance(data, Mapping):
        raise SchemaError(f"{what} must be a JSON object, got {type(data).__name__}")
    return data


def require_int(data: Mapping[str, Any], key: str, what: str, *, minimum: int | None = 0) -> int:
    """Read an integer field.

    Args:
        data: The mapping to read from.
        key: Field name.
        what: Description of the record, used in error messages.
        minimum: Smallest accepted value, or None for no bound.

    Returns:
        The integer value.

    Raises:
        SchemaError: If the field is missing, not an integer, or below minimum.
    """
    if key not in data:
        raise SchemaError(f"{what} is missing required field '{key}'")
    value = data[key]
    # bool is an int subclass; a JSON true/false is never a valid count
    if isinstance(value, bool) or not isinstance(value, int):
        if isinstance(value, float) and value.is_integer():
            value = int(value)
        else:
            raise SchemaError(f"{what} field '{key}' must be an integer, got {value!r}")
    if minimum is not None and value < minimum:
        raise SchemaError(f"{what} field '{key}' must be >= {minimum}, got {value}")
    return value


def require_number(
    data: Mapping[str, Any], key: str, what: str, *, default: float | None = None
) -> float:
    """Read a non-negative numeric field, falling back to default when absent."""
    if key not in data or data[key] is None:
        if default is None:
            raise SchemaError(f"{what} is missing required field '{key}'")
        return default
    value = data[key]
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise SchemaError(f"{what} field '{key}' must be a number, got {value!r}")
    if value < 0:
        raise SchemaError(f"{what} field '{key}' must be >= 0, got {value}")
    return float(value)


def require_str(data: Mapping[str, Any], key: str, what: str) -> str:
    """Read a required string field."""
    value = data.get(key)
    if not isinstance(value, str):
        raise SchemaError(f"{what} field '{key}' must be a string, got {value!r}")
    return value


def optional_str(data: Mapping[str, Any], key: str, what: str) -> str | None:
    """Read an optional string field."""
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise SchemaError(f"{what} field '{key}' must be a string, got {value!r}")
    return value
