"""CLI utilities."""

from __future__ import annotations

from typing import TYPE_CHECKING

import click
from sqlalchemy.exc import NoSuchTableError

from treeindex.core.errors import InternalError
from treeindex.hierarchy import Database, TreeMaintainer, TreeOptions

if TYPE_CHECKING:
    from treeindex.config.models import TreeIndexConfig


def open_tree(
    config: TreeIndexConfig,
    database: str | None,
    table: str,
    parent_column: str | None,
    order_column: str | None,
) -> tuple[Database, TreeMaintainer]:
    """Connect, reflect the node table and bind a maintainer to it.

    Creates the closure table when it doesn't exist yet.

    Raises:
        click.ClickException: On a missing database URL, a missing table or
            a table that can't back a tree.
    """
    try:
        db = Database.from_config(config.database, url=database)
    except ValueError as e:
        raise click.ClickException(
            "No database given. Pass DATABASE or set TREEINDEX__DATABASE__URL."
        ) from e

    try:
        node_table = db.reflect_table(table)
    except NoSuchTableError as e:
        raise click.ClickException(f"Table not found: {table}") from e

    options = TreeOptions.from_config(
        config.hierarchy,
        parent_column=parent_column,
        order_column=order_column,
    )
    try:
        tree = TreeMaintainer(node_table, options)
    except InternalError as e:
        raise click.ClickException(e.message) from e

    tree.hierarchy_table.create(db.engine, checkfirst=True)
    return db, tree
