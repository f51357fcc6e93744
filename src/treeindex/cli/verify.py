"""treeindex verify command - check a closure table against the parent column."""

import json

import click
from rich.console import Console
from rich.table import Table

from treeindex.cli.utils import open_tree
from treeindex.hierarchy import HierarchyIntegrityChecker, IntegrityReport


def _report_dict(report: IntegrityReport) -> dict[str, object]:
    return {
        "passed": report.passed,
        "nodes_checked": report.nodes_checked,
        "rows_checked": report.rows_checked,
        "rows_expected": report.rows_expected,
        "issues": [
            {
                "category": issue.category,
                "table": issue.table,
                "message": issue.message,
                "count": issue.count,
                "examples": [list(e) if isinstance(e, tuple) else e for e in issue.examples],
            }
            for issue in report.issues
        ],
    }


@click.command()
@click.argument("database", required=False)
@click.option("--table", "-t", required=True, help="Node table name")
@click.option("--parent-column", default=None, help="Parent pointer column (default: parent_id)")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def verify_command(
    ctx: click.Context,
    database: str | None,
    table: str,
    parent_column: str | None,
    as_json: bool,
) -> None:
    """Verify the closure table of TABLE. Exits 1 when issues are found.

    DATABASE is a SQLAlchemy URL or a SQLite file path.
    """
    db, tree = open_tree(ctx.obj["config"], database, table, parent_column, None)

    with db.session() as session:
        report = HierarchyIntegrityChecker(tree).verify(session)

    if as_json:
        click.echo(json.dumps(_report_dict(report), default=str))
    else:
        console = Console()
        status = "[green]OK[/green]" if report.passed else "[red]FAILED[/red]"
        console.print(
            f"{tree.hierarchy_table.name}: {status} "
            f"({report.nodes_checked} nodes, {report.rows_checked} rows, "
            f"{report.rows_expected} expected)"
        )
        if report.issues:
            issues = Table("category", "table", "count", "message")
            for issue in report.issues:
                issues.add_row(issue.category, issue.table or "", str(issue.count), issue.message)
            console.print(issues)

    if not report.passed:
        ctx.exit(1)
