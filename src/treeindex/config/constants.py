"""Configuration constants.

This module contains truly constant values that should NOT be user-configurable.
For configurable values, see models.py.
"""

HIERARCHY_TABLE_SUFFIX = "_hierarchies"
"""Appended to the node table name to name its closure table."""

ADVISORY_LOCK_SUFFIX = "_advisory_lock"
"""Appended to the closure table name to name its advisory lock."""

NUMERIC_ORDER_STEP = 1
"""Gap between consecutive sibling order values."""

DEFAULT_CONFIG_FILENAME = "treeindex.yaml"
"""Config file looked up in the working directory when no path is given."""
