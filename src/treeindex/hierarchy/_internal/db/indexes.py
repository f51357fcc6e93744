"""Additional index creation for maintenance query performance.

The closure table declares its own indexes. Maintenance also filters the
node table by parent (children lookups, sibling groups), which the node
table may not index. Call create_additional_indexes() after create_all(),
or on a reflected table before a forest rebuild.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import inspect, text

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from treeindex.hierarchy.maintainer import TreeMaintainer


def additional_indexes(tree: TreeMaintainer) -> dict[str, list[str]]:
    """Index name -> node table columns."""
    table = tree.node_table.name
    parent = tree.parent_column.name
    indexes = {f"idx_{table}_{parent}": [parent]}
    if tree.order_column is not None:
        order = tree.order_column.name
        indexes[f"idx_{table}_{parent}_{order}"] = [parent, order]
    return indexes


def create_additional_indexes(engine: Engine, tree: TreeMaintainer) -> list[str]:
    """
    Create parent (and parent + order) indexes on the node table.

    Skips any index whose columns are already covered by an existing index
    with the same leading columns. Returns the names of indexes created.
    """
    quote = engine.dialect.identifier_preparer.quote
    table = tree.node_table.name
    existing = inspect(engine).get_indexes(table)
    created = []
    with engine.connect() as conn:
        for name, columns in additional_indexes(tree).items():
            if any(ix["column_names"][: len(columns)] == columns for ix in existing):
                continue
            cols = ", ".join(quote(c) for c in columns)
            conn.execute(text(f"CREATE INDEX {quote(name)} ON {quote(table)} ({cols})"))
            created.append(name)
        conn.commit()
    return created


def drop_additional_indexes(engine: Engine, tree: TreeMaintainer) -> None:
    """Drop additional indexes (for testing/reset)."""
    names = {ix["name"] for ix in inspect(engine).get_indexes(tree.node_table.name)}
    quote = engine.dialect.identifier_preparer.quote
    with engine.connect() as conn:
        for name in additional_indexes(tree):
            if name not in names:
                continue
            if engine.dialect.name in ("mysql", "mariadb"):
                conn.execute(text(f"DROP INDEX {quote(name)} ON {quote(tree.node_table.name)}"))
            else:
                conn.execute(text(f"DROP INDEX {quote(name)}"))
        conn.commit()
