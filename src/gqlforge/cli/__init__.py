"""Command-line interface for gqlforge."""

from __future__ import annotations

from gqlforge.cli.main import cli, main

__all__ = ["cli", "main"]
