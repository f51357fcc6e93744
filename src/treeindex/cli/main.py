"""treeindex CLI - closure table maintenance commands."""

from pathlib import Path

import click

from treeindex.cli.rebuild import rebuild_command
from treeindex.cli.verify import verify_command
from treeindex.config.loader import load_config
from treeindex.core.errors import ConfigError
from treeindex.core.logging import configure_logging, set_operation_id


@click.group()
@click.version_option(version="0.1.0", prog_name="treeindex")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="YAML config file (default: ./treeindex.yaml if present)",
)
@click.pass_context
def cli(ctx: click.Context, verbose: bool, config_path: Path | None) -> None:
    """treeindex - keep closure tables in step with parent-pointer trees."""
    ctx.ensure_object(dict)
    try:
        config = load_config(config_path)
    except ConfigError as e:
        raise click.ClickException(str(e)) from e
    if verbose:
        config.logging.level = "DEBUG"
    configure_logging(config=config.logging)
    set_operation_id()
    ctx.obj["verbose"] = verbose
    ctx.obj["config"] = config


cli.add_command(rebuild_command, name="rebuild")
cli.add_command(verify_command, name="verify")


if __name__ == "__main__":
    cli()
