"""treeindex error types with typed error codes.

Error code ranges:
- 2xxx: Config
- 3xxx: Hierarchy maintenance
- 9xxx: Internal

Store-level I/O errors (sqlalchemy OperationalError and friends) are not
wrapped; they propagate unchanged to the caller.
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any


class ErrorCode(IntEnum):
    """Typed error codes for programmatic handling."""

    # Config (2xxx)
    CONFIG_PARSE_ERROR = 2001
    CONFIG_INVALID_VALUE = 2002
    CONFIG_FILE_NOT_FOUND = 2004

    # Hierarchy (3xxx)
    HIERARCHY_CYCLE = 3001
    HIERARCHY_CONSTRAINT_VIOLATION = 3002
    HIERARCHY_INVALID_NODE_TABLE = 3003

    # Internal (9xxx)
    INTERNAL_ERROR = 9001


@dataclass(eq=False)
class TreeIndexError(Exception):
    """Base error with structured context.

    Not frozen: raising through a context manager assigns __traceback__.
    """

    code: ErrorCode
    message: str
    retryable: bool = False
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def error_name(self) -> str:
        """String identifier for logging (e.g., 'HIERARCHY_CYCLE')."""
        return self.code.name

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON output."""
        return {
            "code": self.code.value,
            "error": self.error_name,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details,
        }

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.error_name}: {self.message}"


class ConfigError(TreeIndexError):
    """Configuration-related errors."""

    @classmethod
    def parse_error(cls, path: str, reason: str) -> "ConfigError":
        return cls(
            code=ErrorCode.CONFIG_PARSE_ERROR,
            message=f"Failed to parse config at {path}: {reason}",
            details={"path": path, "reason": reason},
        )

    @classmethod
    def invalid_value(cls, field: str, value: Any, reason: str) -> "ConfigError":
        return cls(
            code=ErrorCode.CONFIG_INVALID_VALUE,
            message=f"Invalid value for '{field}': {reason}",
            details={"field": field, "value": str(value), "reason": reason},
        )

    @classmethod
    def file_not_found(cls, path: str) -> "ConfigError":
        return cls(
            code=ErrorCode.CONFIG_FILE_NOT_FOUND,
            message=f"Config file not found: {path}",
            details={"path": path},
        )


class CycleError(TreeIndexError):
    """A parent change would make a node its own ancestor.

    Raised during validation, before anything touches the hierarchy table.
    The caller can pick a different parent and retry.
    """

    @property
    def field(self) -> str | None:
        """Name of the attribute the error is attributable to."""
        return self.details.get("field")

    @classmethod
    def ancestor_as_descendant(cls, node_id: Any, parent_id: Any, field: str) -> "CycleError":
        return cls(
            code=ErrorCode.HIERARCHY_CYCLE,
            message="You cannot add an ancestor as a descendant",
            retryable=True,
            details={"field": field, "node_id": node_id, "parent_id": parent_id},
        )


class ConstraintViolation(TreeIndexError):
    """The hierarchy table rejected a write.

    Only happens when two maintenance sequences interleave without the
    advisory lock, so it is treated as a bug rather than a retryable condition.
    """

    @classmethod
    def duplicate_row(cls, table: str, node_id: Any, reason: str) -> "ConstraintViolation":
        return cls(
            code=ErrorCode.HIERARCHY_CONSTRAINT_VIOLATION,
            message=f"Constraint violated while writing {table} for node {node_id}: {reason}",
            details={"table": table, "node_id": node_id, "reason": reason},
        )


class InternalError(TreeIndexError):
    """Internal/unexpected errors."""

    @classmethod
    def invalid_node_table(cls, table: str, reason: str) -> "InternalError":
        return cls(
            code=ErrorCode.HIERARCHY_INVALID_NODE_TABLE,
            message=f"Table '{table}' cannot back a tree: {reason}",
            details={"table": table, "reason": reason},
        )

    @classmethod
    def unexpected(cls, reason: str, **details: Any) -> "InternalError":
        return cls(
            code=ErrorCode.INTERNAL_ERROR,
            message=f"Internal error: {reason}",
            details=details,
        )
