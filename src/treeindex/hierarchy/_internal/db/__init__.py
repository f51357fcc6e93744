"""Database layer for closure table maintenance."""

from treeindex.hierarchy._internal.db.database import Database, database_url
from treeindex.hierarchy._internal.db.indexes import (
    additional_indexes,
    create_additional_indexes,
    drop_additional_indexes,
)
from treeindex.hierarchy._internal.db.integrity import (
    HierarchyIntegrityChecker,
    HierarchyRecovery,
    IntegrityIssue,
    IntegrityReport,
    expected_closure,
)

__all__ = [
    "Database",
    "database_url",
    "additional_indexes",
    "create_additional_indexes",
    "drop_additional_indexes",
    "HierarchyIntegrityChecker",
    "HierarchyRecovery",
    "IntegrityIssue",
    "IntegrityReport",
    "expected_closure",
]
