"""Config module exports."""

from treeindex.config.loader import TreeIndexSettings, load_config
from treeindex.config.models import (
    DatabaseConfig,
    HierarchyConfig,
    LoggingConfig,
    LogOutputConfig,
    TreeIndexConfig,
)

__all__ = [
    "load_config",
    "TreeIndexConfig",
    "TreeIndexSettings",
    "DatabaseConfig",
    "HierarchyConfig",
    "LoggingConfig",
    "LogOutputConfig",
]
