"""Core module exports."""

from treeindex.core.errors import (
    ConfigError,
    ConstraintViolation,
    CycleError,
    ErrorCode,
    InternalError,
    TreeIndexError,
)
from treeindex.core.logging import (
    clear_operation_id,
    configure_logging,
    get_operation_id,
    set_operation_id,
)

__all__ = [
    # Errors
    "TreeIndexError",
    "ConfigError",
    "ConstraintViolation",
    "CycleError",
    "ErrorCode",
    "InternalError",
    # Logging
    "clear_operation_id",
    "configure_logging",
    "get_operation_id",
    "set_operation_id",
]
