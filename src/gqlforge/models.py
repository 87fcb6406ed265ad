"""Pydantic models and constants for gqlforge.

This module defines the configuration and result models shared by the
compilation pipeline. Persisted models keep the on-disk key names through
field aliases so files written by older releases round-trip unchanged.

Persisted Models:
    TransformerConfig: Per-project transformer configuration (transform.conf.json)
    FeatureFlags: Immutable feature-flag snapshot (cli.json)

Project Models:
    ApiResource, ResourceStatus: Resources known to the project
    AuthConfig, AuthProviderConfig: API authorization configuration
    StorageConfig: Storage binding for the predictions transformer

Pipeline Models:
    DirectiveUsageMap: Directives applied per type
    InfrastructureFragments: Accumulated infrastructure produced by plugins
    CompileOptions: Per-invocation compile options
    ApplyRequest: Request passed to the remote apply collaborator
    CompiledArtifacts: Output of a successful compile

Example:
    >>> from gqlforge.models import TransformerConfig
    >>> config = TransformerConfig.model_validate({"Version": 1, "transformers": []})
    >>> config.version
    1
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# =============================================================================
# Module Constants
# =============================================================================

API_CATEGORY = "api"
STORAGE_CATEGORY = "storage"
API_SERVICE_NAME = "AppSync"
STORAGE_SERVICE_NAME = "S3"
PROVIDER_NAME = "awscloudformation"

TRANSFORM_CONFIG_FILE_NAME = "transform.conf.json"
TEMPLATE_FILE_NAME = "cloudformation-template.json"
PARAMETERS_FILE_NAME = "parameters.json"
SCHEMA_FILE_NAME = "schema.graphql"
SCHEMA_DIR_NAME = "schema"
BUILD_DIR_NAME = "build"

TRANSFORM_BASE_VERSION = 1
"""Version recorded for projects whose transformer config predates versioning."""

SUPPORTED_COMPILER_VERSIONS = (1, 2)

DESTRUCTIVE_UPDATES_FLAG = "--allow-destructive-graphql-schema-updates"


# =============================================================================
# Persisted Configuration
# =============================================================================


class TransformerConfig(BaseModel):
    """Per-project transformer configuration persisted as transform.conf.json.

    Unknown keys are preserved so that rewriting the file never drops
    settings owned by other tools. One-shot flags only ever move from
    absent/False to a concrete value.

    Attributes:
        version: Transformer layout version the project was built with.
        transformers: Custom transformer references in declared order.
        elasticsearch_warning: Whether the searchable behaviour warning was shown.
    """

    model_config = ConfigDict(frozen=True, extra="allow", populate_by_name=True)

    version: int | None = Field(
        default=None,
        alias="Version",
        description="Transformer layout version",
    )
    transformers: list[str] = Field(
        default_factory=list,
        description="Custom transformer references in declared order",
    )
    elasticsearch_warning: bool = Field(
        default=False,
        alias="ElasticsearchWarning",
        description="Searchable behaviour warning already shown",
    )

    def to_file_dict(self) -> dict[str, Any]:
        """Serialize with on-disk key names, omitting unset values."""
        return self.model_dump(by_alias=True, exclude_none=True)


class FeatureFlags(BaseModel):
    """Immutable feature-flag snapshot resolved once per compile.

    Read from the project's cli.json under ``features.graphqltransformer``.

    Attributes:
        transformer_version: Requested compiler version.
        use_pipelined_transformer: Deprecated flag that implies version 2.
        iterative_gsi_updates: Whether index updates are applied iteratively.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    transformer_version: int = Field(default=1, description="Requested compiler version")
    use_pipelined_transformer: bool = Field(
        default=False,
        description="Deprecated flag implying transformer version 2",
    )
    iterative_gsi_updates: bool = Field(
        default=True,
        description="Apply global secondary index changes one at a time",
    )

    @classmethod
    def from_cli_json(cls, data: dict[str, Any]) -> FeatureFlags:
        """Build a snapshot from the parsed content of cli.json."""
        section = (data.get("features") or {}).get("graphqltransformer") or {}
        values: dict[str, Any] = {}
        if "transformerversion" in section:
            values["transformer_version"] = section["transformerversion"]
        if "useexperimentalpipelinedtransformer" in section:
            values["use_pipelined_transformer"] = section["useexperimentalpipelinedtransformer"]
        if "enableiterativegsiupdates" in section:
            values["iterative_gsi_updates"] = section["enableiterativegsiupdates"]
        return cls.model_validate(values)


# =============================================================================
# Project Resources
# =============================================================================


class ApiResource(BaseModel):
    """A resource registered in the project backend configuration."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    category: str = API_CATEGORY
    resource_name: str = Field(alias="resourceName")
    service: str = API_SERVICE_NAME
    provider_plugin: str = Field(default=PROVIDER_NAME, alias="providerPlugin")
    output: dict[str, Any] = Field(default_factory=dict)


class ResourceStatus(BaseModel):
    """Resources of a category grouped by pending operation."""

    model_config = ConfigDict(frozen=True)

    resources_to_be_created: list[ApiResource] = Field(default_factory=list)
    resources_to_be_updated: list[ApiResource] = Field(default_factory=list)
    all_resources: list[ApiResource] = Field(default_factory=list)


class AuthProviderConfig(BaseModel):
    """A single authorization provider (API key, user pools, IAM, OIDC, function)."""

    model_config = ConfigDict(frozen=True, extra="allow", populate_by_name=True)

    authentication_type: str = Field(alias="authenticationType")


class AuthConfig(BaseModel):
    """Multi-provider authorization configuration passed to the auth plugin."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    default_authentication: AuthProviderConfig = Field(alias="defaultAuthentication")
    additional_authentication_providers: list[AuthProviderConfig] = Field(
        default_factory=list,
        alias="additionalAuthenticationProviders",
    )

    @classmethod
    def from_security_type(cls, security_type: str) -> AuthConfig:
        """Convert a legacy single ``securityType`` into multi-auth form."""
        return cls(
            default_authentication=AuthProviderConfig(authentication_type=security_type),
            additional_authentication_providers=[],
        )

    @property
    def provider_types(self) -> list[str]:
        """All configured authentication types, default first."""
        return [self.default_authentication.authentication_type] + [
            p.authentication_type for p in self.additional_authentication_providers
        ]


class StorageConfig(BaseModel):
    """Storage binding used by the predictions transformer."""

    model_config = ConfigDict(frozen=True)

    bucket_name: str


# =============================================================================
# Pipeline Models
# =============================================================================


class DirectiveUsageMap(BaseModel):
    """Directives applied to each type, plus the project-wide union.

    Directive names are lowercase. Types without directives map to an
    empty set.
    """

    model_config = ConfigDict(frozen=True)

    types: dict[str, frozenset[str]] = Field(default_factory=dict)
    directives: frozenset[str] = Field(default_factory=frozenset)

    def types_with(self, *directives: str) -> list[str]:
        """Type names carrying every given directive, in declaration order."""
        wanted = {d.lower() for d in directives}
        return [name for name, used in self.types.items() if wanted <= used]

    def uses(self, directive: str) -> bool:
        """Whether any type in the project uses ``directive``."""
        return directive.lower() in self.directives


class InfrastructureFragments(BaseModel):
    """Infrastructure accumulated by the transformer pipeline.

    Each plugin receives the fragments produced by every plugin before it
    and returns them updated.
    """

    model_config = ConfigDict(extra="forbid")

    parameters: dict[str, dict[str, Any]] = Field(default_factory=dict)
    resources: dict[str, dict[str, Any]] = Field(default_factory=dict)
    outputs: dict[str, dict[str, Any]] = Field(default_factory=dict)
    resolvers: dict[str, str] = Field(default_factory=dict)
    schema_extensions: list[str] = Field(default_factory=list)

    def to_template(self) -> dict[str, Any]:
        """Render the fragments as a root infrastructure template."""
        return {
            "AWSTemplateFormatVersion": "2010-09-09",
            "Description": "GraphQL API compiled by gqlforge",
            "Parameters": dict(self.parameters),
            "Resources": dict(self.resources),
            "Outputs": dict(self.outputs),
        }


class ApplyRequest(BaseModel):
    """Request handed to the remote apply collaborator during migration."""

    model_config = ConfigDict(frozen=True)

    is_cli_migration: bool = False
    is_reverting: bool = False


class CompileOptions(BaseModel):
    """Per-invocation options for SchemaCompiler.compile().

    Attributes:
        resource_dir: API resource directory; derived from resource status if unset.
        cloud_backend_directory: Previously deployed copy of the resource directory.
        parameters: Caller-supplied build parameters.
        auth_config: Authorization configuration; read from the resource if unset.
        force_compile: Recompile every API resource.
        dry_run: Compile without creating or mutating any file.
        migrate: The caller explicitly requested a legacy migration.
        assume_yes: Answer yes to every confirmation prompt.
        allow_destructive_updates: Bypass destructive sanity-check rules.
        no_gql_override: Skip compilation entirely.
        minify: Write compact JSON build output.
    """

    model_config = ConfigDict(frozen=True)

    resource_dir: Path | None = None
    cloud_backend_directory: Path | None = None
    parameters: dict[str, Any] | None = None
    auth_config: AuthConfig | None = None
    force_compile: bool = False
    dry_run: bool = False
    migrate: bool = False
    assume_yes: bool = False
    allow_destructive_updates: bool = False
    no_gql_override: bool = False
    minify: bool = False


class CompiledArtifacts(BaseModel):
    """Result of a successful compile."""

    model_config = ConfigDict(frozen=True)

    resource_name: str
    schema_sdl: str
    template: dict[str, Any]
    resolvers: dict[str, str] = Field(default_factory=dict)
    build_parameters: dict[str, Any] = Field(default_factory=dict)
    deployment_bucket: str
    deployment_root_key: str
    transformers: list[str] = Field(default_factory=list)
    directive_map: DirectiveUsageMap = Field(default_factory=DirectiveUsageMap)
    build_dir: Path | None = None


class Severity(str, Enum):
    """Sanity-check rule severity."""

    ERROR = "error"
    WARNING = "warning"


__all__ = [
    "API_CATEGORY",
    "API_SERVICE_NAME",
    "BUILD_DIR_NAME",
    "DESTRUCTIVE_UPDATES_FLAG",
    "PARAMETERS_FILE_NAME",
    "PROVIDER_NAME",
    "SCHEMA_DIR_NAME",
    "SCHEMA_FILE_NAME",
    "STORAGE_CATEGORY",
    "STORAGE_SERVICE_NAME",
    "SUPPORTED_COMPILER_VERSIONS",
    "TEMPLATE_FILE_NAME",
    "TRANSFORM_BASE_VERSION",
    "TRANSFORM_CONFIG_FILE_NAME",
    "ApiResource",
    "ApplyRequest",
    "AuthConfig",
    "AuthProviderConfig",
    "CompileOptions",
    "CompiledArtifacts",
    "DirectiveUsageMap",
    "FeatureFlags",
    "InfrastructureFragments",
    "ResourceStatus",
    "Severity",
    "StorageConfig",
    "TransformerConfig",
]
