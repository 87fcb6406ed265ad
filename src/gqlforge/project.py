"""File-system project context.

LocalProject implements the collaborators SchemaCompiler needs from the
surrounding tool (resource status, feature flags, deployment bucket,
storage binding, prompting and remote apply) on top of a project laid out
on disk:

    <root>/
        cli.json                          feature flags
        backend/
            backend-config.json           resources per category
            project-meta.json             provider metadata (bucket, stack, app id)
            api/<name>/                   API resource directory
            storage/<name>/parameters.json
        current-cloud-backend/            copy of backend/ as last deployed
            backend-config.json
            api/<name>/

A resource is "to be created" when it is missing from the deployed
backend-config.json, and "to be updated" when its directory content (build
output excluded) differs from the deployed copy.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from gqlforge.build_cache import hash_directory
from gqlforge.config import CLI_JSON_FILE_NAME, FeatureFlagStore, read_json
from gqlforge.errors import ConfigurationError
from gqlforge.migration import skip_apply
from gqlforge.models import (
    PARAMETERS_FILE_NAME,
    PROVIDER_NAME,
    STORAGE_CATEGORY,
    STORAGE_SERVICE_NAME,
    ApiResource,
    ResourceStatus,
    StorageConfig,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from gqlforge.models import ApplyRequest, FeatureFlags

logger = structlog.get_logger(__name__)

BACKEND_DIR_NAME = "backend"
CLOUD_BACKEND_DIR_NAME = "current-cloud-backend"
BACKEND_CONFIG_FILE_NAME = "backend-config.json"
PROJECT_META_FILE_NAME = "project-meta.json"
STACK_NAME_PREFIX = "gqlforge-"


class LocalProject:
    """Project context backed by a directory tree.

    Args:
        root: Project root directory.
        confirm: Asks the user a yes/no question. Defaults to declining.
        apply: Applies local state remotely. Defaults to skipping the update.
        env_name: Environment substituted into storage bucket names.

    Example:
        >>> project = LocalProject(Path("."), confirm=click.confirm)
        >>> project.resource_status("api").all_resources
        [ApiResource(resource_name='blog', ...)]
    """

    def __init__(
        self,
        root: Path,
        confirm: Callable[[str], bool] | None = None,
        apply: Callable[[ApplyRequest], Any] | None = None,
        env_name: str = "dev",
    ) -> None:
        self.project_root = root
        self._confirm = confirm
        self._apply = apply or skip_apply
        self.env_name = env_name
        self.flag_store = FeatureFlagStore(root / CLI_JSON_FILE_NAME)

    @property
    def backend_dir(self) -> Path:
        return self.project_root / BACKEND_DIR_NAME

    @property
    def cloud_backend_dir(self) -> Path:
        return self.project_root / CLOUD_BACKEND_DIR_NAME

    def resource_dir(self, category: str, resource_name: str) -> Path:
        return self.backend_dir / category / resource_name

    def cloud_resource_dir(self, category: str, resource_name: str) -> Path:
        return self.cloud_backend_dir / category / resource_name

    # -------------------------------------------------------------------------
    # Feature flags
    # -------------------------------------------------------------------------

    def feature_flags(self) -> FeatureFlags:
        return self.flag_store.load()

    def set_transformer_version(self, version: int) -> None:
        self.flag_store.set_transformer_version(version)

    # -------------------------------------------------------------------------
    # Resources
    # -------------------------------------------------------------------------

    @staticmethod
    def _read_config(path: Path) -> dict[str, Any]:
        if not path.exists():
            return {}
        try:
            data = read_json(path)
        except ValueError as e:
            raise ConfigurationError(
                f"Invalid JSON in {path}: {e}",
                remediation=f"Fix the syntax of {path}",
            ) from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"Expected a JSON object in {path}")
        return data

    def _resources(self, config: dict[str, Any], category: str) -> list[ApiResource]:
        return [
            ApiResource(
                category=category,
                resource_name=name,
                service=entry.get("service", ""),
                provider_plugin=entry.get("providerPlugin", PROVIDER_NAME),
                output=entry.get("output") or {},
            )
            for name, entry in (config.get(category) or {}).items()
        ]

    def resource_status(self, category: str) -> ResourceStatus:
        """Group the resources of a category by pending operation."""
        local = self._resources(self._read_config(self.backend_dir / BACKEND_CONFIG_FILE_NAME), category)
        deployed_config = self._read_config(self.cloud_backend_dir / BACKEND_CONFIG_FILE_NAME)
        deployed = {r.resource_name for r in self._resources(deployed_config, category)}

        created: list[ApiResource] = []
        updated: list[ApiResource] = []
        for resource in local:
            if resource.resource_name not in deployed:
                created.append(resource)
                continue
            local_dir = self.resource_dir(category, resource.resource_name)
            cloud_dir = self.cloud_resource_dir(category, resource.resource_name)
            if hash_directory(local_dir) != hash_directory(cloud_dir):
                updated.append(resource)

        logger.debug(
            "resource_status.completed",
            category=category,
            created=[r.resource_name for r in created],
            updated=[r.resource_name for r in updated],
        )
        return ResourceStatus(
            resources_to_be_created=created,
            resources_to_be_updated=updated,
            all_resources=local,
        )

    # -------------------------------------------------------------------------
    # Provider metadata
    # -------------------------------------------------------------------------

    def _provider_meta(self) -> dict[str, Any]:
        meta = self._read_config(self.backend_dir / PROJECT_META_FILE_NAME)
        return (meta.get("providers") or {}).get(PROVIDER_NAME) or {}

    def deployment_bucket(self) -> str:
        return str(self._provider_meta().get("DeploymentBucketName", ""))

    def is_admin_app(self) -> bool:
        """Whether administrative access is enabled for the app.

        Raises:
            ConfigurationError: If the app id is not recorded.
        """
        meta = self._provider_meta()
        if not meta.get("AppId"):
            raise ConfigurationError("No app id recorded in project metadata")
        return bool(meta.get("AdminUIEnabled", False))

    def storage_config(self) -> StorageConfig | None:
        """Bucket binding of the first S3 storage resource, if any.

        The environment is substituted here; ``${hash}`` is left for the
        deployment to resolve.
        """
        config = self._read_config(self.backend_dir / BACKEND_CONFIG_FILE_NAME)
        resource_name = next(
            (
                name
                for name, entry in (config.get(STORAGE_CATEGORY) or {}).items()
                if entry.get("service") == STORAGE_SERVICE_NAME
            ),
            None,
        )
        if resource_name is None:
            return None

        parameters = self._read_config(self.resource_dir(STORAGE_CATEGORY, resource_name) / PARAMETERS_FILE_NAME)
        bucket = parameters.get("bucketName", resource_name)
        stack_name = str(self._provider_meta().get("StackName", ""))
        if stack_name.startswith(STACK_NAME_PREFIX):
            return StorageConfig(bucket_name=f"{bucket}${{hash}}-{self.env_name}")
        return StorageConfig(bucket_name=f"{bucket}{resource_name}-{self.env_name}")

    # -------------------------------------------------------------------------
    # Interaction
    # -------------------------------------------------------------------------

    def confirm(self, prompt: str) -> bool:
        if self._confirm is None:
            logger.info("confirm.declined", reason="non_interactive")
            return False
        return self._confirm(prompt)

    def apply(self, request: ApplyRequest) -> Any:
        return self._apply(request)


__all__ = [
    "BACKEND_CONFIG_FILE_NAME",
    "BACKEND_DIR_NAME",
    "CLOUD_BACKEND_DIR_NAME",
    "PROJECT_META_FILE_NAME",
    "LocalProject",
]
