"""treeindex rebuild command - rebuild a closure table from the parent column."""

import click

from treeindex.cli.utils import open_tree
from treeindex.hierarchy import create_additional_indexes


@click.command()
@click.argument("database", required=False)
@click.option("--table", "-t", required=True, help="Node table name")
@click.option("--parent-column", default=None, help="Parent pointer column (default: parent_id)")
@click.option("--order-column", default=None, help="Numeric sibling order column to renumber")
@click.option("--with-indexes/--no-indexes", default=True, help="Create parent column indexes first")
@click.pass_context
def rebuild_command(
    ctx: click.Context,
    database: str | None,
    table: str,
    parent_column: str | None,
    order_column: str | None,
    with_indexes: bool,
) -> None:
    """Truncate and rebuild the closure table of TABLE.

    DATABASE is a SQLAlchemy URL or a SQLite file path.
    """
    db, tree = open_tree(ctx.obj["config"], database, table, parent_column, order_column)

    if with_indexes:
        for name in create_additional_indexes(db.engine, tree):
            click.echo(f"Created index {name}")

    with db.immediate_transaction() as session:
        rows = tree.rebuild_forest(session)

    click.echo(f"Rebuilt {tree.hierarchy_table.name}: {rows} rows")
