"""Schema compilation orchestration.

SchemaCompiler compiles the annotated schema of a project's API resource
into a root template, resolver templates and build parameters:

1. Resolve the compiler version (version 2 goes to the alternate compiler).
2. Select the API resources that need compiling.
3. Migrate legacy projects (with confirmation) and return. A dry run
   refuses to migrate.
4. Work out authorization, storage binding and the deployment key.
5. Load the schema, analyze directives, emit advisories and check the
   transformer configuration.
6. Run the transformer pipeline and the sanity checks.
7. Write the build output, unless this is a dry run.

Example:
    >>> from gqlforge.compiler import SchemaCompiler
    >>> from gqlforge.project import LocalProject
    >>> compiler = SchemaCompiler(LocalProject(Path(".")))
    >>> artifacts = compiler.compile(CompileOptions(dry_run=True))
    >>> artifacts.deployment_root_key
    'gqlforge-api-files/3f2a...'
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

import structlog

from gqlforge.advisories import searchable_push_checks, warn_on_unauthenticated_models
from gqlforge.build_cache import build_parameters, compute_deployment_key, write_build_parameters
from gqlforge.config import (
    read_json,
    read_transformer_config,
    transformer_config_path,
    write_json_atomic,
    write_text_atomic,
)
from gqlforge.errors import CompileCancelled, ConfigurationError, MigrationCancelled
from gqlforge.migration import MIGRATION_PROMPT, MigrationCoordinator, is_legacy_project
from gqlforge.models import (
    API_CATEGORY,
    API_SERVICE_NAME,
    BUILD_DIR_NAME,
    PARAMETERS_FILE_NAME,
    PROVIDER_NAME,
    SCHEMA_DIR_NAME,
    SCHEMA_FILE_NAME,
    TEMPLATE_FILE_NAME,
    AuthConfig,
    CompiledArtifacts,
    CompileOptions,
    InfrastructureFragments,
)
from gqlforge.plugins.builtin import APPSYNC_EXTRA_DIRECTIVES
from gqlforge.plugins.pipeline import PipelineBuilder
from gqlforge.plugins.resolver import PluginResolver
from gqlforge.sanity import diff_templates, get_sanity_check_rules, run_sanity_checks
from gqlforge.schema.directives import collect_directives_by_type_names
from gqlforge.schema.loader import load_project_schema
from gqlforge.telemetry.tracing import create_span
from gqlforge.versioning import check_transformer_config, resolve_transformer_version

if TYPE_CHECKING:
    from pathlib import Path

    from gqlforge.models import (
        ApiResource,
        ApplyRequest,
        FeatureFlags,
        ResourceStatus,
        StorageConfig,
    )

logger = structlog.get_logger(__name__)

DRY_RUN_BUCKET = "fake-bucket"
RESOLVERS_DIR_NAME = "resolvers"


class ProjectContext(Protocol):
    """Collaborators SchemaCompiler needs from the surrounding tool."""

    project_root: Path

    def resource_dir(self, category: str, resource_name: str) -> Path: ...

    def cloud_resource_dir(self, category: str, resource_name: str) -> Path: ...

    def resource_status(self, category: str) -> ResourceStatus: ...

    def feature_flags(self) -> FeatureFlags: ...

    def set_transformer_version(self, version: int) -> None: ...

    def deployment_bucket(self) -> str: ...

    def is_admin_app(self) -> bool: ...

    def storage_config(self) -> StorageConfig | None: ...

    def confirm(self, prompt: str) -> bool: ...

    def apply(self, request: ApplyRequest) -> Any: ...


class AlternateCompiler(Protocol):
    """Compiler handling projects on transformer version 2."""

    def compile(self, options: CompileOptions) -> Any: ...

    def directive_definitions(self, resource_dir: Path) -> str: ...


def select_resources(
    status: ResourceStatus,
    backend_resource_dir: Any,
    force_compile: bool = False,
) -> list[ApiResource]:
    """API resources that need compiling.

    Created and updated resources, resources without build output (the
    deployment fails without it even when nothing changed), and every
    resource when ``force_compile`` is set. Only API service resources are
    kept.

    Args:
        status: Resource status of the API category.
        backend_resource_dir: Maps a resource to its directory.
        force_compile: Compile every resource.
    """
    resources = [*status.resources_to_be_created, *status.resources_to_be_updated]
    resources += [
        r
        for r in status.all_resources
        if r not in resources and not (backend_resource_dir(r) / BUILD_DIR_NAME).exists()
    ]
    if force_compile:
        resources += status.all_resources
    return [r for r in resources if r.service == API_SERVICE_NAME]


def resolve_auth_config(resource: ApiResource | None) -> AuthConfig | None:
    """Authorization configuration recorded on an API resource.

    A legacy single ``securityType`` is converted to the multi-provider form.
    """
    if resource is None:
        return None
    output = resource.output
    if output.get("securityType"):
        return AuthConfig.from_security_type(output["securityType"])
    if output.get("authConfig"):
        return AuthConfig.model_validate(output["authConfig"])
    return None


class SchemaCompiler:
    """Compiles the API resource of a project.

    Args:
        context: Project collaborators (see ProjectContext).
        alternate_compiler: Compiler for transformer version 2 projects.
    """

    def __init__(
        self,
        context: ProjectContext,
        alternate_compiler: AlternateCompiler | None = None,
    ) -> None:
        self.context = context
        self.alternate_compiler = alternate_compiler
        self.pipeline_builder = PipelineBuilder()

    def _resolve_version(self, flags: FeatureFlags) -> int:
        version = resolve_transformer_version(flags, self.context.set_transformer_version)
        if version == 2 and self.alternate_compiler is None:
            raise ConfigurationError(
                "Transformer version 2 is configured but no compiler for it is available",
                remediation="Set features.graphqltransformer.transformerversion in cli.json to 1",
            )
        return version

    def _admin_mode(self) -> bool:
        try:
            return bool(self.context.is_admin_app())
        except Exception as e:
            logger.debug("admin_mode.unavailable", error=str(e))
            return False

    def _custom_plugins(self, resource_dir: Path, references: list[str]) -> list[Any]:
        resolver = PluginResolver(
            self.context.project_root,
            transformer_config_path(resource_dir),
        )
        return resolver.resolve_all(references)

    def compile(self, options: CompileOptions | None = None) -> CompiledArtifacts | Any | None:
        """Compile the project's API resource.

        Returns:
            The compiled artifacts, the final apply result when a migration
            ran, the alternate compiler's result for version 2 projects, or
            None when there is nothing to compile.

        Raises:
            ForgeError: Any subclass; nothing is swallowed.
        """
        options = options or CompileOptions()
        with create_span("gqlforge.compile", attributes={"gqlforge.dry_run": options.dry_run}) as span:
            flags = self.context.feature_flags()
            if self._resolve_version(flags) == 2:
                logger.info("compile.delegated", transformer_version=2)
                return self.alternate_compiler.compile(options)  # type: ignore[union-attr]

            if options.no_gql_override:
                logger.info("compile.skipped", reason="no_gql_override")
                return None

            status = self.context.resource_status(API_CATEGORY)
            resources = select_resources(
                status,
                lambda r: self.context.resource_dir(r.category, r.resource_name),
                options.force_compile,
            )
            is_new_api = any(r.service == API_SERVICE_NAME for r in status.resources_to_be_created)
            resource = resources[0] if resources else None

            resource_dir = options.resource_dir
            previous_dir = options.cloud_backend_directory
            if resource_dir is None:
                if resource is None or resource.provider_plugin != PROVIDER_NAME:
                    logger.info("compile.skipped", reason="no_api_resource")
                    return None
                resource_dir = self.context.resource_dir(resource.category, resource.resource_name)
            if previous_dir is None and resource is not None:
                if resource.provider_plugin != PROVIDER_NAME:
                    logger.info(
                        "compile.skipped",
                        reason="foreign_provider",
                        provider=resource.provider_plugin,
                    )
                    return None
                previous_dir = self.context.cloud_resource_dir(resource.category, resource.resource_name)
            span.set_attribute("gqlforge.resource_dir", str(resource_dir))

            parameters_path = resource_dir / PARAMETERS_FILE_NAME
            parameters = options.parameters
            if parameters is None and parameters_path.exists():
                try:
                    parameters = read_json(parameters_path)
                except (OSError, ValueError) as e:
                    logger.debug("compile.parameters_unreadable", path=str(parameters_path), error=str(e))
                    parameters = {}
            parameters = dict(parameters or {})

            if previous_dir is not None and is_legacy_project(previous_dir, status.resources_to_be_created):
                if options.dry_run:
                    logger.warning("compile.dry_run_legacy_project", previous_dir=str(previous_dir))
                    raise CompileCancelled(
                        "Legacy API project must be migrated before it can be compiled as a dry run.",
                        remediation="Rerun the compile without --dry-run to migrate the project first",
                    )
                if not options.migrate and not options.assume_yes:
                    if not self.context.confirm(MIGRATION_PROMPT):
                        raise MigrationCancelled()
                return self._migrate(options, resource_dir, previous_dir)

            return self._build(
                options,
                flags=flags,
                resource=resource,
                resource_dir=resource_dir,
                previous_dir=previous_dir,
                parameters=parameters,
                status=status,
                is_new_api=is_new_api,
            )

    def _migrate(self, options: CompileOptions, resource_dir: Path, previous_dir: Path) -> Any:
        def rebuild(deployed_dir: Path) -> Any:
            return self.compile(
                options.model_copy(
                    update={
                        "resource_dir": resource_dir,
                        "cloud_backend_directory": deployed_dir,
                        "migrate": False,
                    }
                )
            )

        logger.info("migration.requested", resource_dir=str(resource_dir), explicit=options.migrate)
        coordinator = MigrationCoordinator(
            resource_dir,
            previous_dir,
            rebuild=rebuild,
            apply=self.context.apply,
            is_cli_migration=options.migrate,
        )
        return coordinator.run()

    def _build(
        self,
        options: CompileOptions,
        *,
        flags: FeatureFlags,
        resource: ApiResource | None,
        resource_dir: Path,
        previous_dir: Path | None,
        parameters: dict[str, Any],
        status: ResourceStatus,
        is_new_api: bool,
    ) -> CompiledArtifacts:
        auth_config = options.auth_config or resolve_auth_config(resource)
        storage_config = self.context.storage_config()

        deployment_root_key = compute_deployment_key(resource_dir, previous_dir)
        deployment_bucket = DRY_RUN_BUCKET if options.dry_run else self.context.deployment_bucket()
        build_params = build_parameters(parameters, deployment_bucket, deployment_root_key)

        schema = load_project_schema(resource_dir)
        usage = collect_directives_by_type_names(schema)
        warn_on_unauthenticated_models(usage)
        searchable_push_checks(usage, parameters)

        transformer_config = check_transformer_config(
            resource_dir,
            previous_dir,
            status.resources_to_be_updated,
            usage.directives,
            confirm=self.context.confirm,
            assume_yes=options.assume_yes,
            persist=not options.dry_run,
        )

        pipeline = self.pipeline_builder.build(
            include_search_capability=usage.uses("searchable"),
            storage_config=storage_config,
            custom_plugins=self._custom_plugins(resource_dir, transformer_config.transformers),
            auth_config=auth_config,
            admin_mode=self._admin_mode(),
        )
        fragments = pipeline.run(schema, InfrastructureFragments())
        resolvers = {**fragments.resolvers, **self._custom_resolvers(resource_dir)}
        template = fragments.to_template()
        schema_sdl = "\n\n".join([schema.sdl.strip(), *fragments.schema_extensions]) + "\n"

        previous_build = previous_dir / BUILD_DIR_NAME if previous_dir else None
        previous_template = None
        previous_schema = None
        if previous_build is not None and (previous_build / TEMPLATE_FILE_NAME).exists():
            template_path = previous_build / TEMPLATE_FILE_NAME
            try:
                previous_template = read_json(template_path)
            except (OSError, ValueError) as e:
                raise ConfigurationError(
                    f"Unable to read the deployed template {template_path}: {e}",
                    remediation=f"Fix or remove {template_path}",
                ) from e
            schema_file = previous_build / SCHEMA_FILE_NAME
            previous_schema = schema_file.read_text(encoding="utf-8") if schema_file.exists() else None
        rules = get_sanity_check_rules(
            is_new_api,
            options.allow_destructive_updates,
            flags.iterative_gsi_updates,
        )
        run_sanity_checks(rules, diff_templates(previous_template, template, previous_schema, schema_sdl))

        build_dir = resource_dir / BUILD_DIR_NAME
        if not options.dry_run:
            self._write_build(build_dir, template, schema_sdl, resolvers, build_params, options.minify)
            write_json_atomic(resource_dir / PARAMETERS_FILE_NAME, parameters)

        logger.info(
            "compile.completed",
            message=(
                "GraphQL schema compiled successfully. "
                f"Edit your schema at {resource_dir / SCHEMA_FILE_NAME} or place .graphql "
                f"files in a directory at {resource_dir / SCHEMA_DIR_NAME}"
            ),
            resource_dir=str(resource_dir),
            dry_run=options.dry_run,
            deployment_root_key=deployment_root_key,
        )
        return CompiledArtifacts(
            resource_name=resource.resource_name if resource else resource_dir.name,
            schema_sdl=schema_sdl,
            template=template,
            resolvers=resolvers,
            build_parameters=build_params,
            deployment_bucket=deployment_bucket,
            deployment_root_key=deployment_root_key,
            transformers=list(transformer_config.transformers),
            directive_map=usage,
            build_dir=None if options.dry_run else build_dir,
        )

    @staticmethod
    def _custom_resolvers(resource_dir: Path) -> dict[str, str]:
        """User-written resolver templates, which replace generated ones."""
        directory = resource_dir / RESOLVERS_DIR_NAME
        if not directory.is_dir():
            return {}
        return {
            path.name: path.read_text(encoding="utf-8")
            for path in sorted(directory.glob("*.vtl"))
            if path.is_file()
        }

    @staticmethod
    def _write_build(
        build_dir: Path,
        template: dict[str, Any],
        schema_sdl: str,
        resolvers: dict[str, str],
        parameters: dict[str, Any],
        minify: bool,
    ) -> None:
        write_json_atomic(build_dir / TEMPLATE_FILE_NAME, template, minify=minify)
        write_text_atomic(build_dir / SCHEMA_FILE_NAME, schema_sdl)
        resolvers_dir = build_dir / RESOLVERS_DIR_NAME
        for name, text in resolvers.items():
            write_text_atomic(resolvers_dir / name, text)
        if resolvers_dir.is_dir():
            for stale in resolvers_dir.iterdir():
                if stale.is_file() and stale.name not in resolvers:
                    stale.unlink()
        write_build_parameters(build_dir / PARAMETERS_FILE_NAME, parameters, minify=minify)

    def directive_definitions(self, resource_dir: Path) -> str:
        """Every directive a schema author may use, as SDL.

        Includes the service directives and the grammar of every transformer,
        with search capability and custom transformers.
        """
        flags = self.context.feature_flags()
        if self._resolve_version(flags) == 2:
            return self.alternate_compiler.directive_definitions(resource_dir)  # type: ignore[union-attr]

        config = read_transformer_config(resource_dir)
        pipeline = self.pipeline_builder.build(
            include_search_capability=True,
            storage_config=None,
            custom_plugins=self._custom_plugins(resource_dir, config.transformers if config else []),
        )
        return "\n".join([APPSYNC_EXTRA_DIRECTIVES, pipeline.directive_definitions()])


def get_directive_definitions(
    context: ProjectContext,
    resource_dir: Path,
    alternate_compiler: AlternateCompiler | None = None,
) -> str:
    """Directive grammar available to the schema of ``resource_dir``."""
    return SchemaCompiler(context, alternate_compiler).directive_definitions(resource_dir)


__all__ = [
    "DRY_RUN_BUCKET",
    "AlternateCompiler",
    "ProjectContext",
    "SchemaCompiler",
    "get_directive_definitions",
    "resolve_auth_config",
    "select_resources",
]
