"""Main entry point for the gqlforge CLI.

Commands:
    gqlforge compile: Compile the annotated schema of the API resource
    gqlforge directives: Print the directive grammar

Example:
    $ gqlforge --help
    $ gqlforge --log-level DEBUG compile --dry-run
"""

from __future__ import annotations

import sys
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as get_version

import click

from gqlforge.cli.compile import compile_command
from gqlforge.cli.directives import directives_command
from gqlforge.telemetry.logging import configure_logging


def _get_version() -> str:
    """Installed gqlforge version, or 'unknown' if not installed."""
    try:
        return get_version("gqlforge")
    except PackageNotFoundError:
        return "unknown"


@click.group(
    name="gqlforge",
    help="gqlforge - Compile annotated GraphQL schemas into infrastructure artifacts.",
    epilog="Use 'gqlforge <command> --help' for command-specific help.",
    context_settings={
        "help_option_names": ["-h", "--help"],
    },
)
@click.version_option(
    version=_get_version(),
    prog_name="gqlforge",
    message="%(prog)s %(version)s",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Minimum level of log events written to stderr.",
)
@click.option("--json-logs", is_flag=True, default=False, help="Write log events as JSON.")
@click.pass_context
def cli(ctx: click.Context, log_level: str, json_logs: bool) -> None:
    """Root command group for the gqlforge CLI."""
    ctx.ensure_object(dict)
    configure_logging(log_level=log_level.upper(), json_output=json_logs)


cli.add_command(compile_command)
cli.add_command(directives_command)


def main(argv: list[str] | None = None) -> None:
    """Run the CLI.

    Args:
        argv: Command-line arguments (uses sys.argv if None).
    """
    try:
        cli(args=argv, standalone_mode=False)
    except click.ClickException as e:
        e.show()
        sys.exit(e.exit_code)
    except click.Abort:
        click.echo("Aborted!", err=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
