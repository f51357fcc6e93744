"""Closure table definition and the value types passed through maintenance.

The closure table holds one row per (ancestor, descendant) pair implied by
the parent column of a node table, including a generations=0 self row for
every node::

    ancestor_id | descendant_id | generations
    ------------+---------------+------------
              1 |             1 |           0
              1 |             4 |           2

It is a derived index owned by TreeMaintainer. Nothing else writes to it.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import TYPE_CHECKING, Any, NamedTuple

from sqlalchemy import Column, Index, Integer, MetaData, Table

from treeindex.config.constants import ADVISORY_LOCK_SUFFIX, HIERARCHY_TABLE_SUFFIX
from treeindex.core.errors import InternalError

if TYPE_CHECKING:
    from treeindex.config.models import HierarchyConfig


class OrphanPolicy(str, Enum):
    """What happens to the children of a destroyed node."""

    NULLIFY = "nullify"  # children are detached and become roots
    EXTERNAL = "external"  # the entity store decides (e.g. cascading destroy)


class HierarchyRow(NamedTuple):
    """One closure table row."""

    ancestor_id: Any
    descendant_id: Any
    generations: int


@dataclass(frozen=True)
class TreeOptions:
    """Per-tree maintenance settings."""

    parent_column: str = "parent_id"
    order_column: str | None = None
    numeric_order_base: int = 0
    orphan_policy: OrphanPolicy = OrphanPolicy.NULLIFY
    hierarchy_table_name: str | None = None
    advisory_lock_name: str | None = None
    with_advisory_lock: bool = True

    @property
    def sort_order_enabled(self) -> bool:
        return self.order_column is not None

    @classmethod
    def from_config(cls, config: HierarchyConfig, **overrides: Any) -> TreeOptions:
        """Build options from the hierarchy config section, then apply overrides."""
        values: dict[str, Any] = {
            "parent_column": config.parent_column,
            "order_column": config.order_column,
            "numeric_order_base": config.numeric_order_base,
            "orphan_policy": OrphanPolicy(config.orphan_policy),
            "hierarchy_table_name": config.hierarchy_table_name,
            "advisory_lock_name": config.advisory_lock_name,
            "with_advisory_lock": config.with_advisory_lock,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        if isinstance(values["orphan_policy"], str):
            values["orphan_policy"] = OrphanPolicy(values["orphan_policy"])
        return cls(**values)


@dataclass(frozen=True)
class MaintenanceOptions:
    """Caller-supplied flags for a single save.

    Attributes:
        skip_cycle_detection: Trust the new parent (bulk imports).
        skip_sort_maintenance: Leave sibling order values alone for this save only.
        fast_insert: The node belongs to a freshly created subtree.
        fast_insert_root: With fast_insert, whether this node is the top of
            that subtree. Only the root's after_save writes index rows.
    """

    skip_cycle_detection: bool = False
    skip_sort_maintenance: bool = False
    fast_insert: bool = False
    fast_insert_root: bool = True

    @classmethod
    def fast_insert_member(cls) -> MaintenanceOptions:
        """Options for a non-root node of a fast-insert batch."""
        return cls(fast_insert=True, fast_insert_root=False)


@dataclass(frozen=True)
class MaintenanceContext:
    """State captured by before_save and consumed by after_save.

    Scoped to one mutation. after_save hands back a copy with the one-shot
    flags cleared, so a context can't leak into the next save.
    """

    was_new_record: bool = False
    parent_changed: bool = False
    previous_parent_id: Any = None
    options: MaintenanceOptions = field(default_factory=MaintenanceOptions)

    @property
    def skip_sort_maintenance(self) -> bool:
        return self.options.skip_sort_maintenance

    def consumed(self) -> MaintenanceContext:
        return replace(
            self,
            was_new_record=False,
            parent_changed=False,
            previous_parent_id=None,
            options=replace(self.options, skip_sort_maintenance=False),
        )


def hierarchy_table_name(node_table: Table, name: str | None = None) -> str:
    return name or f"{node_table.name}{HIERARCHY_TABLE_SUFFIX}"


def advisory_lock_name(hierarchy_table: Table, name: str | None = None) -> str:
    return name or f"{hierarchy_table.name}{ADVISORY_LOCK_SUFFIX}"


def build_hierarchy_table(
    node_table: Table,
    name: str | None = None,
    metadata: MetaData | None = None,
) -> Table:
    """Define (or return the already defined) closure table for a node table.

    The id columns copy the type of the node table's primary key. The table
    lands on the node table's metadata unless another one is given, so
    ``SQLModel.metadata.create_all()`` picks it up.
    """
    pk = list(node_table.primary_key.columns)
    if len(pk) != 1:
        raise InternalError.invalid_node_table(node_table.name, "expected a single-column primary key")
    id_type = pk[0].type

    metadata = metadata if metadata is not None else node_table.metadata
    table_name = hierarchy_table_name(node_table, name)
    if table_name in metadata.tables:
        return metadata.tables[table_name]

    return Table(
        table_name,
        metadata,
        Column("ancestor_id", id_type, nullable=False),
        Column("descendant_id", id_type, nullable=False),
        Column("generations", Integer, nullable=False),
        Index(f"{table_name}_anc_desc_idx", "ancestor_id", "descendant_id", "generations", unique=True),
        Index(f"{table_name}_desc_idx", "descendant_id"),
    )
