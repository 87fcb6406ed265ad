"""``gqlforge compile`` command.

Compiles the annotated schema of the project's API resource into
``<resource>/build``.

Example:
    $ gqlforge compile --project-dir .
    $ gqlforge compile --dry-run
    $ gqlforge compile --migrate --yes
"""

from __future__ import annotations

from pathlib import Path

import click
import structlog

from gqlforge.cli.utils import ExitCode, error_exit, exit_code_for, info, success
from gqlforge.compiler import SchemaCompiler
from gqlforge.errors import ForgeError
from gqlforge.models import CompiledArtifacts, CompileOptions
from gqlforge.project import LocalProject

logger = structlog.get_logger(__name__)


@click.command(
    name="compile",
    help="Compile the annotated GraphQL schema into build artifacts.",
    epilog="""
Examples:
    $ gqlforge compile --project-dir .
    $ gqlforge compile --dry-run
    $ gqlforge compile --migrate --yes
    $ gqlforge compile --allow-destructive-graphql-schema-updates
""",
)
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
    help="API resource directory. Derived from the project when omitted.",
    metavar="PATH",
)
@click.option(
    "--env",
    "env_name",
    default="dev",
    show_default=True,
    help="Environment name used for storage bucket names.",
)
@click.option("--force-compile", is_flag=True, default=False, help="Compile every API resource.")
@click.option(
    "--dry-run",
    is_flag=True,
    default=False,
    help="Compile without writing any file.",
)
@click.option("--migrate", is_flag=True, default=False, help="Migrate a legacy API project.")
@click.option("--yes", "-y", "assume_yes", is_flag=True, default=False, help="Answer yes to every prompt.")
@click.option(
    "--allow-destructive-graphql-schema-updates",
    "allow_destructive_updates",
    is_flag=True,
    default=False,
    help="Allow schema changes that replace tables or lose data.",
)
@click.option("--no-gql-override", is_flag=True, default=False, help="Skip schema compilation.")
@click.option("--minify", is_flag=True, default=False, help="Write compact JSON output.")
def compile_command(
    project_dir: Path,
    resource_dir: Path | None,
    env_name: str,
    force_compile: bool,
    dry_run: bool,
    migrate: bool,
    assume_yes: bool,
    allow_destructive_updates: bool,
    no_gql_override: bool,
    minify: bool,
) -> None:
    """Compile the project's annotated GraphQL schema."""
    project = LocalProject(project_dir, confirm=click.confirm, env_name=env_name)
    options = CompileOptions(
        resource_dir=resource_dir,
        force_compile=force_compile,
        dry_run=dry_run,
        migrate=migrate,
        assume_yes=assume_yes,
        allow_destructive_updates=allow_destructive_updates,
        no_gql_override=no_gql_override,
        minify=minify,
    )
    if dry_run:
        info("Dry run: no file will be written")

    try:
        result = SchemaCompiler(project).compile(options)
    except ForgeError as e:
        logger.error("compile.failed", error_type=type(e).__name__, error=e.message)
        error_exit(str(e), exit_code=exit_code_for(e))
    except OSError as e:
        error_exit(f"File system error: {e}", exit_code=ExitCode.GENERAL_ERROR)

    if result is None:
        info("Nothing to compile.")
        return
    if isinstance(result, CompiledArtifacts):
        success(f"GraphQL schema compiled successfully (deployment key: {result.deployment_root_key})")
        if result.build_dir is not None:
            success(f"Build output written to: {result.build_dir}")
        return
    success(f"Migration completed: {result}")


__all__ = ["compile_command"]
