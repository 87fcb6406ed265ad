"""Exit codes and terminal output for gqlforge commands.

Results go to stdout; errors and progress notes go to stderr, so
``gqlforge directives > directives.graphql`` captures only the grammar.
"""

from __future__ import annotations

import sys
from enum import IntEnum
from typing import NoReturn

import click

from gqlforge.errors import (
    CompileCancelled,
    ConfigurationError,
    ForgeError,
    MigrationError,
    ParseError,
    PluginError,
    SanityCheckViolation,
)


class ExitCode(IntEnum):
    """Process exit status of a gqlforge command."""

    SUCCESS = 0
    GENERAL_ERROR = 1
    USAGE_ERROR = 2
    """Reported by click for unknown or missing options."""
    FILE_NOT_FOUND = 3
    VALIDATION_ERROR = 5
    """Schema syntax or project configuration rejected."""
    COMPILATION_ERROR = 7
    """A transformer failed or a sanity check blocked the build."""
    MIGRATION_ERROR = 9
    """Legacy migration failed; local files were rolled back."""
    CANCELLED = 10


def error_exit(message: str, exit_code: ExitCode = ExitCode.GENERAL_ERROR) -> NoReturn:
    """Print ``Error: <message>`` to stderr and exit with ``exit_code``."""
    click.echo(f"Error: {message}", err=True)
    sys.exit(exit_code)


def info(message: str) -> None:
    click.echo(message, err=True)


def success(message: str) -> None:
    click.echo(message)


# Checked in order; the first matching error type wins.
_EXIT_CODES: tuple[tuple[type[ForgeError] | tuple[type[ForgeError], ...], ExitCode], ...] = (
    (CompileCancelled, ExitCode.CANCELLED),
    (MigrationError, ExitCode.MIGRATION_ERROR),
    ((ParseError, ConfigurationError), ExitCode.VALIDATION_ERROR),
    ((PluginError, SanityCheckViolation), ExitCode.COMPILATION_ERROR),
)


def exit_code_for(exc: ForgeError) -> ExitCode:
    """Exit code reported for a gqlforge error."""
    for error_types, code in _EXIT_CODES:
        if isinstance(exc, error_types):
            return code
    return ExitCode.GENERAL_ERROR


__all__ = [
    "ExitCode",
    "error_exit",
    "exit_code_for",
    "info",
    "success",
]
