"""Integration tests for the gqlforge CLI."""

from __future__ import annotations

import json
from collections.abc import Callable, Generator
from pathlib import Path

import pytest
import structlog
from click.testing import CliRunner

from gqlforge.cli.main import cli
from gqlforge.cli.utils import ExitCode

pytestmark = pytest.mark.integration


@pytest.fixture
def runner() -> Generator[CliRunner, None, None]:
    yield CliRunner()
    structlog.reset_defaults()


class TestCompileCommand:
    """Tests for ``gqlforge compile``."""

    def test_compiles_project(self, runner: CliRunner, make_project: Callable[..., Path]) -> None:
        root = make_project()

        result = runner.invoke(cli, ["compile", "--project-dir", str(root)])

        assert result.exit_code == ExitCode.SUCCESS, result.output
        assert "GraphQL schema compiled successfully" in result.output
        assert "Build output written to:" in result.output
        assert (root / "backend" / "api" / "blog" / "build" / "cloudformation-template.json").exists()

    def test_dry_run(self, runner: CliRunner, make_project: Callable[..., Path]) -> None:
        root = make_project()

        result = runner.invoke(cli, ["compile", "-p", str(root), "--dry-run"])

        assert result.exit_code == ExitCode.SUCCESS, result.output
        assert "Dry run" in result.output
        assert "Build output written to:" not in result.output
        assert not (root / "backend" / "api" / "blog" / "build").exists()

    def test_nothing_to_compile(self, runner: CliRunner, make_project: Callable[..., Path]) -> None:
        root = make_project()

        result = runner.invoke(cli, ["compile", "-p", str(root), "--no-gql-override"])

        assert result.exit_code == ExitCode.SUCCESS
        assert "Nothing to compile." in result.output

    def test_schema_syntax_error(self, runner: CliRunner, make_project: Callable[..., Path]) -> None:
        root = make_project("type Post @model {\n  id: ID!\n")

        result = runner.invoke(cli, ["compile", "-p", str(root)])

        assert result.exit_code == ExitCode.VALIDATION_ERROR
        assert "Error:" in result.output

    def test_invalid_transformer_version(self, runner: CliRunner, make_project: Callable[..., Path]) -> None:
        root = make_project(cli_json={"features": {"graphqltransformer": {"transformerversion": 3}}})

        result = runner.invoke(cli, ["compile", "-p", str(root)])

        assert result.exit_code == ExitCode.VALIDATION_ERROR
        assert "transformerVersion" in result.output

    def test_declined_migration(self, runner: CliRunner, make_project: Callable[..., Path]) -> None:
        root = make_project(legacy=True)

        result = runner.invoke(cli, ["compile", "-p", str(root)], input="n\n")

        assert result.exit_code == ExitCode.CANCELLED
        assert not (root / "backend" / "api" / "blog" / "transform.conf.json").exists()

    def test_confirmed_migration(self, runner: CliRunner, make_project: Callable[..., Path]) -> None:
        root = make_project(legacy=True)

        result = runner.invoke(cli, ["compile", "-p", str(root)], input="y\n")

        assert result.exit_code == ExitCode.SUCCESS, result.output
        assert "Migration completed: Skipping update" in result.output

    def test_dry_run_refuses_migration(self, runner: CliRunner, make_project: Callable[..., Path]) -> None:
        root = make_project(legacy=True)

        result = runner.invoke(cli, ["compile", "-p", str(root), "--dry-run", "--yes"])

        assert result.exit_code == ExitCode.CANCELLED
        assert "without --dry-run" in result.output
        assert not (root / "backend" / "api" / "blog" / "transform.conf.json").exists()

    def test_destructive_change_exit_code(self, runner: CliRunner, make_project: Callable[..., Path]) -> None:
        root = make_project(deployed=True)
        cloud = root / "current-cloud-backend" / "api" / "blog"
        (cloud / "transform.conf.json").write_text(json.dumps({"Version": 1}))
        build = cloud / "build"
        build.mkdir()
        (build / "cloudformation-template.json").write_text(
            json.dumps({"Resources": {"TagTable": {"Type": "AWS::DynamoDB::Table", "Properties": {}}}})
        )

        result = runner.invoke(cli, ["compile", "-p", str(root), "--force-compile"])

        assert result.exit_code == ExitCode.COMPILATION_ERROR
        assert "--allow-destructive-graphql-schema-updates" in result.output

        result = runner.invoke(
            cli,
            ["compile", "-p", str(root), "--force-compile", "--allow-destructive-graphql-schema-updates"],
        )
        assert result.exit_code == ExitCode.SUCCESS, result.output


class TestDirectivesCommand:
    """Tests for ``gqlforge directives``."""

    def test_prints_definitions(self, runner: CliRunner, make_project: Callable[..., Path]) -> None:
        root = make_project()

        result = runner.invoke(
            cli,
            ["directives", "-p", str(root), "--resource-dir", str(root / "backend" / "api" / "blog")],
        )

        assert result.exit_code == ExitCode.SUCCESS, result.output
        assert "directive @model(" in result.output
        assert "directive @aws_subscribe" in result.output

    def test_resource_dir_is_required(self, runner: CliRunner, make_project: Callable[..., Path]) -> None:
        result = runner.invoke(cli, ["directives", "-p", str(make_project())])

        assert result.exit_code == ExitCode.USAGE_ERROR


class TestMainGroup:
    """Tests for the root command group."""

    def test_version(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["--version"])

        assert result.exit_code == 0
        assert result.output.startswith("gqlforge ")

    def test_help_lists_commands(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["--help"])

        assert result.exit_code == 0
        assert "compile" in result.output
        assert "directives" in result.output
