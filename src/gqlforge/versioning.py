"""Compiler version gate and transformer configuration checks.

The active compiler version is resolved once per compile from the
feature-flag snapshot. The deprecated pipelined-transformer flag implies
version 2; when it is set while the requested version is still 1, the
version is moved forward and persisted immediately. It is never moved back.

The transformer configuration check shows behaviour-change warnings once
per project and records that they were shown in transform.conf.json.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from gqlforge.config import read_transformer_config, write_transformer_config
from gqlforge.errors import CompileCancelled, ConfigurationError
from gqlforge.models import (
    API_SERVICE_NAME,
    SUPPORTED_COMPILER_VERSIONS,
    TRANSFORM_BASE_VERSION,
    TransformerConfig,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable
    from pathlib import Path

    from gqlforge.models import ApiResource, FeatureFlags

logger = structlog.get_logger(__name__)

TRANSFORMER_VERSION_KEY = "features.graphqltransformer.transformerversion"
PIPELINED_TRANSFORMER_KEY = "features.graphqltransformer.useexperimentalpipelinedtransformer"

AUTH_CHANGE_MESSAGE = (
    "The default behavior for @auth has changed in the latest version.\n"
    "Read here for details: "
    "https://docs.amplify.aws/cli/graphql-transformer/auth#authorizing-subscriptions"
)
SEARCHABLE_CHANGE_MESSAGE = (
    "The behavior for @searchable has changed after version 4.14.1.\n"
    "Read here for details: https://docs.amplify.aws/cli/graphql-transformer/searchable"
)
CONTINUE_PROMPT = "Do you wish to continue?"


def resolve_transformer_version(
    flags: FeatureFlags,
    writer: Callable[[int], None],
) -> int:
    """Resolve the compiler version for this compile.

    Args:
        flags: Feature-flag snapshot of the project.
        writer: Persists a new transformer version (e.g.
            FeatureFlagStore.set_transformer_version).

    Returns:
        1 or 2.

    Raises:
        ConfigurationError: If the resolved version is not supported.
    """
    version = flags.transformer_version
    if flags.use_pipelined_transformer and version == 1:
        version = 2
        writer(version)
        logger.warning(
            "transformer_version_migrated",
            message=(
                f"The project is configured with 'transformerVersion': 1, but "
                f"'useExperimentalPipelinedTransformer': true. Setting the "
                f"'transformerVersion': {version}. "
                "'useExperimentalPipelinedTransformer' is deprecated."
            ),
            previous=1,
            current=version,
        )

    if version not in SUPPORTED_COMPILER_VERSIONS:
        raise ConfigurationError(
            f"Invalid value specified for transformerVersion: '{version}'",
            {"supported": ", ".join(str(v) for v in SUPPORTED_COMPILER_VERSIONS)},
            remediation=f"Set {TRANSFORMER_VERSION_KEY} in cli.json to 1 or 2",
        )
    return version


def _show_warning(
    message: str,
    confirm: Callable[[str], bool] | None,
    assume_yes: bool,
) -> None:
    logger.warning("transformer_behavior_changed", message=message)
    if assume_yes or confirm is None:
        return
    if not confirm(CONTINUE_PROMPT):
        raise CompileCancelled(
            "Compile cancelled.",
            remediation="Review the behavior change and run the compile again to continue",
        )


def check_transformer_config(
    resource_dir: Path,
    previous_dir: Path | None,
    updated_resources: Iterable[ApiResource],
    used_directives: Iterable[str],
    confirm: Callable[[str], bool] | None = None,
    assume_yes: bool = False,
    persist: bool = True,
) -> TransformerConfig:
    """Show one-time behaviour warnings and record that they were shown.

    A warning is shown only while updating an existing API, and only if no
    version (for @auth) or warning flag (for @searchable) is recorded in
    either the local or the previously deployed configuration. Declining
    the confirmation cancels the compile before anything is written.

    ``Version`` and ``ElasticsearchWarning`` are written only when missing;
    existing values and unknown keys are kept. Nothing is written when
    ``persist`` is false (dry runs).

    Returns:
        The local configuration with the flags applied.

    Raises:
        CompileCancelled: If the user declines to continue.
    """
    cloud_config = read_transformer_config(previous_dir)
    local_config = read_transformer_config(resource_dir)

    def version_recorded(config: TransformerConfig | None) -> bool:
        return bool(config and config.version)

    def warning_recorded(config: TransformerConfig | None) -> bool:
        return bool(config and config.elasticsearch_warning)

    show_prompt = not (version_recorded(cloud_config) or version_recorded(local_config))
    show_warning = not (warning_recorded(cloud_config) or warning_recorded(local_config))
    directives = {d.lower() for d in used_directives}

    if any(r.service == API_SERVICE_NAME for r in updated_resources):
        if show_prompt and "auth" in directives:
            _show_warning(AUTH_CHANGE_MESSAGE, confirm, assume_yes)
        if show_warning and "searchable" in directives:
            _show_warning(SEARCHABLE_CHANGE_MESSAGE, confirm, assume_yes)

    config = local_config or TransformerConfig()
    updates: dict[str, object] = {}
    if not config.version:
        updates["version"] = TRANSFORM_BASE_VERSION
    if not config.elasticsearch_warning:
        updates["elasticsearch_warning"] = True
    if updates:
        config = config.model_copy(update=updates)
        if persist:
            write_transformer_config(resource_dir, config)
    return config


__all__ = [
    "AUTH_CHANGE_MESSAGE",
    "PIPELINED_TRANSFORMER_KEY",
    "SEARCHABLE_CHANGE_MESSAGE",
    "TRANSFORMER_VERSION_KEY",
    "check_transformer_config",
    "resolve_transformer_version",
]
