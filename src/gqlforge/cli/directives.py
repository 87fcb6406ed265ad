"""``gqlforge directives`` command.

Prints the directive grammar available to a schema, including custom
transformers, so editors can validate schemas against it.

Example:
    $ gqlforge directives --resource-dir backend/api/blog > directives.graphql
"""

from __future__ import annotations

from pathlib import Path

import click

from gqlforge.cli.utils import error_exit, exit_code_for
from gqlforge.compiler import get_directive_definitions
from gqlforge.errors import ForgeError
from gqlforge.project import LocalProject


@click.command(name="directives", help="Print the directive definitions available to the schema.")
@click.option(
    "--project-dir",
    "-p",
    type=click.Path(exists=True, file_okay=False, resolve_path=True, path_type=Path),
    default=".",
    show_default=True,
    help="Project root directory.",
    metavar="PATH",
)
@click.option(
    "--resource-dir",
    type=click.Path(exists=True, file_okay=False, resolve_path=True, path_type=Path),
    required=True,
    help="API resource directory.",
    metavar="PATH",
)
def directives_command(project_dir: Path, resource_dir: Path) -> None:
    """Print directive definitions as SDL."""
    try:
        definitions = get_directive_definitions(LocalProject(project_dir), resource_dir)
    except ForgeError as e:
        error_exit(str(e), exit_code=exit_code_for(e))
    click.echo(definitions)


__all__ = ["directives_command"]
