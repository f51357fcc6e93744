"""Pydantic configuration models with env var support.

Configuration Hierarchy (highest to lowest precedence):
1. Direct kwargs to load_config()
2. Environment variables (TREEINDEX__SECTION__KEY)
3. YAML config file (treeindex.yaml or an explicit path)
4. Built-in defaults (this file)

Environment Variable Format:
    TREEINDEX__<SECTION>__<KEY>=<VALUE>

Examples:
    TREEINDEX__LOGGING__LEVEL=DEBUG
    TREEINDEX__DATABASE__URL=postgresql+psycopg://localhost/app
    TREEINDEX__HIERARCHY__ORPHAN_POLICY=external
"""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
OrphanPolicyName = Literal["nullify", "external"]


class LogOutputConfig(BaseModel):
    """Single logging output configuration.

    Env vars: Not directly configurable via env (use YAML for multi-output).
    """

    format: Literal["json", "console"] = "console"
    destination: str = "stderr"  # stderr, stdout, or absolute file path
    level: LogLevel | None = None  # Inherits from parent if None

    @field_validator("destination")
    @classmethod
    def validate_destination(cls, v: str) -> str:
        if v in ("stderr", "stdout"):
            return v
        path = Path(v).expanduser()
        if not path.is_absolute():
            raise ValueError(f"File destination must be absolute path: {v}")
        return str(path)


class LoggingConfig(BaseModel):
    """Logging configuration.

    Env vars:
        TREEINDEX__LOGGING__LEVEL: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """

    level: LogLevel = Field(
        default="INFO",
        description="Root log level. DEBUG logs every lock acquisition.",
    )
    outputs: list[LogOutputConfig] = Field(default_factory=lambda: [LogOutputConfig()])


class DatabaseConfig(BaseModel):
    """Database connection configuration.

    Env vars:
        TREEINDEX__DATABASE__URL: SQLAlchemy URL of the entity store
        TREEINDEX__DATABASE__BUSY_TIMEOUT_MS: SQLite busy timeout
        TREEINDEX__DATABASE__MAX_RETRIES: Max retry attempts for locked DB
    """

    url: str | None = Field(
        default=None,
        description="SQLAlchemy database URL. CLI commands accept it as an argument too.",
    )
    busy_timeout_ms: int = Field(
        default=30000,
        description="SQLite busy timeout (ms). How long to wait for locks. "
        "RISK: Too low causes failures under contention; too high delays errors.",
    )
    max_retries: int = Field(
        default=3,
        description="Max retry attempts for locked database errors.",
    )
    retry_base_delay_sec: float = Field(
        default=0.1,
        description="Base delay between retries (exponential backoff).",
    )

    @field_validator("busy_timeout_ms", "max_retries")
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"Must be >= 0, got {v}")
        return v


class HierarchyConfig(BaseModel):
    """Closure-table maintenance defaults.

    Env vars:
        TREEINDEX__HIERARCHY__PARENT_COLUMN: Parent pointer column name
        TREEINDEX__HIERARCHY__ORDER_COLUMN: Numeric sibling order column (unset disables)
        TREEINDEX__HIERARCHY__ORPHAN_POLICY: nullify | external
        TREEINDEX__HIERARCHY__WITH_ADVISORY_LOCK: Take the store-level lock
    """

    parent_column: str = Field(
        default="parent_id",
        description="Nullable column holding the parent node id.",
    )
    order_column: str | None = Field(
        default=None,
        description="Numeric column kept contiguous within each sibling group. "
        "Leave unset to disable sort-order maintenance.",
    )
    numeric_order_base: int = Field(
        default=0,
        description="Order value of the first sibling in a group.",
    )
    orphan_policy: OrphanPolicyName = Field(
        default="nullify",
        description="What happens to children of a destroyed node. "
        "'nullify' detaches them into roots; 'external' leaves it to the entity store.",
    )
    hierarchy_table_name: str | None = Field(
        default=None,
        description="Closure table name. Default: <node_table>_hierarchies.",
    )
    advisory_lock_name: str | None = Field(
        default=None,
        description="Advisory lock name. Default: <hierarchy_table>_advisory_lock.",
    )
    with_advisory_lock: bool = Field(
        default=True,
        description="Serialize maintenance across processes through the store. "
        "RISK: Disabling is only safe with a single writer process.",
    )


class TreeIndexConfig(BaseModel):
    """Root configuration for treeindex.

    All settings can be configured via:
    1. Environment variables: TREEINDEX__SECTION__KEY
    2. YAML config file
    3. Direct kwargs to load_config()
    """

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    hierarchy: HierarchyConfig = Field(default_factory=HierarchyConfig)
