"""Unit tests for SchemaCompiler orchestration."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from gqlforge.compiler import (
    DRY_RUN_BUCKET,
    SchemaCompiler,
    get_directive_definitions,
    resolve_auth_config,
    select_resources,
)
from gqlforge.errors import CompileCancelled, ConfigurationError, MigrationCancelled, SanityCheckViolation
from gqlforge.models import (
    ApiResource,
    CompiledArtifacts,
    CompileOptions,
    FeatureFlags,
    ResourceStatus,
)

BLOG = ApiResource(resource_name="blog", output={"securityType": "API_KEY"})


@pytest.fixture
def context(tmp_path: Path, resource_dir: Path) -> MagicMock:
    """A project context whose single API resource is being created."""
    context = MagicMock()
    context.project_root = tmp_path
    context.feature_flags.return_value = FeatureFlags()
    context.resource_status.return_value = ResourceStatus(
        resources_to_be_created=[BLOG],
        all_resources=[BLOG],
    )
    context.resource_dir.return_value = resource_dir
    context.cloud_resource_dir.return_value = tmp_path / "cloud" / "api" / "blog"
    context.deployment_bucket.return_value = "blog-deployment"
    context.is_admin_app.return_value = False
    context.storage_config.return_value = None
    context.confirm.return_value = False
    return context


class TestSelectResources:
    """Tests for select_resources."""

    def test_includes_resources_without_build_output(self, tmp_path: Path) -> None:
        built = ApiResource(resource_name="built")
        unbuilt = ApiResource(resource_name="unbuilt")
        (tmp_path / "built" / "build").mkdir(parents=True)
        status = ResourceStatus(all_resources=[built, unbuilt])

        selected = select_resources(status, lambda r: tmp_path / r.resource_name)

        assert selected == [unbuilt]

    def test_force_compile_and_service_filter(self, tmp_path: Path) -> None:
        api = ApiResource(resource_name="blog")
        other = ApiResource(resource_name="rest", service="API Gateway")
        (tmp_path / "blog" / "build").mkdir(parents=True)
        status = ResourceStatus(all_resources=[api, other])

        assert select_resources(status, lambda r: tmp_path / r.resource_name) == []
        assert select_resources(status, lambda r: tmp_path / r.resource_name, force_compile=True) == [api]


class TestResolveAuthConfig:
    """Tests for resolve_auth_config."""

    def test_security_type_is_converted(self) -> None:
        config = resolve_auth_config(BLOG)

        assert config is not None
        assert config.provider_types == ["API_KEY"]

    def test_multi_auth_output(self) -> None:
        resource = ApiResource(
            resource_name="blog",
            output={
                "authConfig": {
                    "defaultAuthentication": {"authenticationType": "AMAZON_COGNITO_USER_POOLS"},
                    "additionalAuthenticationProviders": [{"authenticationType": "AWS_IAM"}],
                }
            },
        )

        config = resolve_auth_config(resource)

        assert config is not None
        assert config.provider_types == ["AMAZON_COGNITO_USER_POOLS", "AWS_IAM"]

    def test_nothing_recorded(self) -> None:
        assert resolve_auth_config(ApiResource(resource_name="blog")) is None
        assert resolve_auth_config(None) is None


class TestSchemaCompiler:
    """Tests for SchemaCompiler.compile."""

    def test_compiles_new_api(self, context: MagicMock, resource_dir: Path) -> None:
        artifacts = SchemaCompiler(context).compile()

        assert isinstance(artifacts, CompiledArtifacts)
        assert artifacts.resource_name == "blog"
        assert artifacts.deployment_bucket == "blog-deployment"
        assert artifacts.deployment_root_key.startswith("gqlforge-api-files/")
        assert "PostTable" in artifacts.template["Resources"]
        assert (resource_dir / "build" / "cloudformation-template.json").exists()
        assert (resource_dir / "build" / "resolvers" / "Query.getPost.req.vtl").exists()
        params = json.loads((resource_dir / "build" / "parameters.json").read_text())
        assert params["deploymentRootKey"] == artifacts.deployment_root_key

    def test_version_two_delegates(self, context: MagicMock) -> None:
        context.feature_flags.return_value = FeatureFlags(transformer_version=2)
        alternate = MagicMock()
        alternate.compile.return_value = "v2 result"
        options = CompileOptions(dry_run=True)

        assert SchemaCompiler(context, alternate).compile(options) == "v2 result"
        alternate.compile.assert_called_once_with(options)
        context.resource_status.assert_not_called()

    def test_version_two_without_alternate_compiler(self, context: MagicMock) -> None:
        context.feature_flags.return_value = FeatureFlags(transformer_version=2)

        with pytest.raises(ConfigurationError, match="version 2"):
            SchemaCompiler(context).compile()

    def test_pipelined_flag_persists_version(self, context: MagicMock) -> None:
        context.feature_flags.return_value = FeatureFlags(use_pipelined_transformer=True)
        alternate = MagicMock()

        SchemaCompiler(context, alternate).compile()

        context.set_transformer_version.assert_called_once_with(2)

    def test_no_gql_override_skips(self, context: MagicMock, resource_dir: Path) -> None:
        assert SchemaCompiler(context).compile(CompileOptions(no_gql_override=True)) is None
        assert not (resource_dir / "build").exists()

    def test_nothing_to_compile(self, context: MagicMock) -> None:
        context.resource_status.return_value = ResourceStatus()

        assert SchemaCompiler(context).compile() is None

    def test_dry_run_writes_nothing(self, context: MagicMock, resource_dir: Path) -> None:
        before = sorted(p.name for p in resource_dir.iterdir())

        artifacts = SchemaCompiler(context).compile(CompileOptions(dry_run=True))

        assert artifacts.deployment_bucket == DRY_RUN_BUCKET
        assert artifacts.build_dir is None
        assert sorted(p.name for p in resource_dir.iterdir()) == before
        context.deployment_bucket.assert_not_called()

    def test_admin_lookup_failure_is_not_fatal(self, context: MagicMock) -> None:
        context.is_admin_app.side_effect = ConfigurationError("No app id recorded in project metadata")

        artifacts = SchemaCompiler(context).compile(CompileOptions(dry_run=True))

        assert "GraphQLAPI" in artifacts.template["Resources"]

    def test_custom_resolvers_override_generated(self, context: MagicMock, resource_dir: Path) -> None:
        (resource_dir / "resolvers").mkdir()
        (resource_dir / "resolvers" / "Query.getPost.req.vtl").write_text("## custom")

        artifacts = SchemaCompiler(context).compile()

        assert artifacts.resolvers["Query.getPost.req.vtl"] == "## custom"
        written = resource_dir / "build" / "resolvers" / "Query.getPost.req.vtl"
        assert written.read_text() == "## custom"

    def test_custom_transformer_from_config(self, context: MagicMock, resource_dir: Path, tmp_path: Path) -> None:
        plugin = tmp_path / "tagger.py"
        plugin.write_text(
            "class Tagger:\n"
            "    name = 'tagger'\n"
            "    def transform(self, schema, fragments):\n"
            "        fragments.outputs['Tagged'] = {'Value': 'yes'}\n"
            "        return fragments\n"
            "transformer = Tagger\n"
        )
        (resource_dir / "transform.conf.json").write_text(
            json.dumps({"Version": 1, "transformers": [str(plugin)]})
        )

        artifacts = SchemaCompiler(context).compile()

        assert artifacts.template["Outputs"]["Tagged"] == {"Value": "yes"}
        assert artifacts.transformers == [str(plugin)]

    def test_destructive_change_is_rejected(self, context: MagicMock, resource_dir: Path, tmp_path: Path) -> None:
        """Test removing a deployed table fails unless explicitly allowed."""
        previous = tmp_path / "cloud" / "api" / "blog"
        (previous / "build").mkdir(parents=True)
        (previous / "transform.conf.json").write_text(json.dumps({"Version": 1}))
        (previous / "build" / "cloudformation-template.json").write_text(
            json.dumps(
                {
                    "Resources": {
                        "TagTable": {
                            "Type": "AWS::DynamoDB::Table",
                            "Properties": {"KeySchema": [{"AttributeName": "id", "KeyType": "HASH"}]},
                        }
                    }
                }
            )
        )
        context.resource_status.return_value = ResourceStatus(
            resources_to_be_updated=[BLOG],
            all_resources=[BLOG],
        )

        with pytest.raises(SanityCheckViolation, match="TagTable"):
            SchemaCompiler(context).compile()
        assert not (resource_dir / "build").exists()

        artifacts = SchemaCompiler(context).compile(CompileOptions(allow_destructive_updates=True))
        assert "TagTable" not in artifacts.template["Resources"]

    def test_legacy_migration_declined(self, context: MagicMock, tmp_path: Path) -> None:
        previous = tmp_path / "cloud" / "api" / "blog"
        previous.mkdir(parents=True)
        (previous / "cloudformation-template.json").write_text(json.dumps({"Resources": {}}))
        context.resource_status.return_value = ResourceStatus(all_resources=[BLOG])

        with pytest.raises(MigrationCancelled):
            SchemaCompiler(context).compile()

        context.confirm.assert_called_once()
        context.apply.assert_not_called()

    def test_legacy_project_dry_run_is_cancelled(self, context: MagicMock, tmp_path: Path) -> None:
        previous = tmp_path / "cloud" / "api" / "blog"
        previous.mkdir(parents=True)
        (previous / "cloudformation-template.json").write_text(json.dumps({"Resources": {}}))
        context.resource_status.return_value = ResourceStatus(all_resources=[BLOG])

        with pytest.raises(CompileCancelled, match="without --dry-run"):
            SchemaCompiler(context).compile(CompileOptions(dry_run=True, assume_yes=True))

        context.confirm.assert_not_called()
        context.apply.assert_not_called()
        assert sorted(p.name for p in previous.iterdir()) == ["cloudformation-template.json"]

    def test_explicit_resource_dir_with_foreign_provider(self, context: MagicMock, resource_dir: Path) -> None:
        """Test the deployed directory is never derived from another provider's resource."""
        foreign = ApiResource(resource_name="blog", providerPlugin="custom")
        context.resource_status.return_value = ResourceStatus(
            resources_to_be_created=[foreign],
            all_resources=[foreign],
        )

        assert SchemaCompiler(context).compile(CompileOptions(resource_dir=resource_dir)) is None
        context.cloud_resource_dir.assert_not_called()
        assert not (resource_dir / "build").exists()


class TestGetDirectiveDefinitions:
    """Tests for get_directive_definitions."""

    def test_includes_service_and_transformer_grammar(self, context: MagicMock, resource_dir: Path) -> None:
        definitions = get_directive_definitions(context, resource_dir)

        assert "directive @aws_subscribe" in definitions
        assert "directive @model(" in definitions
        assert "directive @searchable(" in definitions
        assert "directive @auth(" in definitions

    def test_version_two_uses_alternate_compiler(self, context: MagicMock, resource_dir: Path) -> None:
        context.feature_flags.return_value = FeatureFlags(transformer_version=2)
        alternate = MagicMock()
        alternate.directive_definitions.return_value = "directive @v2 on OBJECT"

        assert get_directive_definitions(context, resource_dir, alternate) == "directive @v2 on OBJECT"
