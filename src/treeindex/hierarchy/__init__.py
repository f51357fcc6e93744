"""Hierarchy module - closure table maintenance for parent-pointer trees.

This module provides:
- A closure table ("hierarchy table") derived from a node table's parent column
- Incremental maintenance on create, move and destroy
- Full-forest rebuild that repairs any corruption
- Sibling sort-order maintenance
- A named advisory lock serializing maintenance across threads and processes

Public API is TreeMaintainer plus the option/context value types.
Internal implementations are in `treeindex.hierarchy._internal/`.
"""

from treeindex.hierarchy._internal.db import (
    Database,
    HierarchyIntegrityChecker,
    HierarchyRecovery,
    IntegrityIssue,
    IntegrityReport,
    create_additional_indexes,
)
from treeindex.hierarchy._internal.lock import AdvisoryLock
from treeindex.hierarchy.maintainer import TreeMaintainer
from treeindex.hierarchy.models import (
    HierarchyRow,
    MaintenanceContext,
    MaintenanceOptions,
    OrphanPolicy,
    TreeOptions,
    build_hierarchy_table,
)

__all__ = [
    # Maintenance
    "TreeMaintainer",
    "TreeOptions",
    "MaintenanceOptions",
    "MaintenanceContext",
    "OrphanPolicy",
    "AdvisoryLock",
    # Schema
    "HierarchyRow",
    "build_hierarchy_table",
    # Database
    "Database",
    "create_additional_indexes",
    "HierarchyIntegrityChecker",
    "HierarchyRecovery",
    "IntegrityIssue",
    "IntegrityReport",
]
