"""Persisted configuration for gqlforge projects.

This module reads and writes the JSON files a project keeps on disk:
- ``transform.conf.json`` → TransformerConfig (per API resource)
- ``cli.json`` → FeatureFlags (per project)

Writes are all-or-nothing: content goes to a temporary file in the target
directory and is moved into place with ``os.replace``. A reader never
observes a half-written file.

Example:
    >>> from gqlforge.config import read_transformer_config
    >>> config = read_transformer_config(Path("backend/api/blog"))
    >>> config.transformers if config else []
    []
"""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any

import structlog
from pydantic import ValidationError

from gqlforge.errors import ConfigurationError
from gqlforge.models import TRANSFORM_CONFIG_FILE_NAME, FeatureFlags, TransformerConfig

logger = structlog.get_logger(__name__)

CLI_JSON_FILE_NAME = "cli.json"


def read_json(path: Path) -> Any:
    """Read and parse a JSON file.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the content is not valid JSON.
    """
    return json.loads(path.read_text(encoding="utf-8"))


def write_json_atomic(path: Path, data: Any, *, minify: bool = False) -> None:
    """Write ``data`` as JSON to ``path`` in a single atomic replace.

    Args:
        path: Destination file. Parent directories are created.
        data: JSON-serializable content.
        minify: Write compact JSON instead of indented JSON.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    text = json.dumps(data, separators=(",", ":")) if minify else json.dumps(data, indent=4)
    write_text_atomic(path, text + ("" if minify else "\n"))


def write_text_atomic(path: Path, text: str) -> None:
    """Replace ``path`` with ``text`` atomically."""
    write_bytes_atomic(path, text.encode("utf-8"))


def write_bytes_atomic(path: Path, content: bytes) -> None:
    """Replace ``path`` with ``content`` atomically."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(content)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


# =============================================================================
# Transformer Configuration
# =============================================================================


def transformer_config_path(resource_dir: Path) -> Path:
    """Location of transform.conf.json inside a resource directory."""
    return resource_dir / TRANSFORM_CONFIG_FILE_NAME


def read_transformer_config(resource_dir: Path | None) -> TransformerConfig | None:
    """Read the transformer configuration of a resource directory.

    Args:
        resource_dir: API resource directory, or None.

    Returns:
        The parsed configuration, or None when the directory or file is absent.

    Raises:
        ConfigurationError: If the file exists but is not a valid configuration.
    """
    if resource_dir is None:
        return None
    path = transformer_config_path(resource_dir)
    if not path.exists():
        return None
    try:
        data = read_json(path)
        return TransformerConfig.model_validate(data)
    except (ValueError, ValidationError) as e:
        raise ConfigurationError(
            f"Invalid transformer configuration in {path}: {e}",
            {"path": str(path)},
            remediation=f"Fix or remove {path}",
        ) from e


def write_transformer_config(resource_dir: Path, config: TransformerConfig) -> None:
    """Persist the transformer configuration of a resource directory."""
    path = transformer_config_path(resource_dir)
    write_json_atomic(path, config.to_file_dict())
    logger.debug("transformer_config_written", path=str(path), version=config.version)


# =============================================================================
# Feature Flags
# =============================================================================


class FeatureFlagStore:
    """Reads and updates the feature flags stored in a project's cli.json.

    Attributes:
        path: Location of cli.json.

    Example:
        >>> store = FeatureFlagStore(project_root / "cli.json")
        >>> flags = store.load()
        >>> flags.transformer_version
        1
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    def _read_raw(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = read_json(self.path)
        except ValueError as e:
            raise ConfigurationError(
                f"Invalid JSON in {self.path}: {e}",
                remediation=f"Fix the syntax of {self.path}",
            ) from e
        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Expected a JSON object in {self.path}",
                remediation=f"Fix the content of {self.path}",
            )
        return data

    def load(self) -> FeatureFlags:
        """Return an immutable snapshot of the current flags.

        Raises:
            ConfigurationError: If cli.json is unreadable or holds invalid flag values.
        """
        try:
            return FeatureFlags.from_cli_json(self._read_raw())
        except ValidationError as e:
            raise ConfigurationError(
                f"Invalid graphqltransformer feature flags in {self.path}: {e}",
                remediation=f"Edit features.graphqltransformer in {self.path}",
            ) from e

    def set_transformer_version(self, version: int) -> None:
        """Persist ``features.graphqltransformer.transformerversion``.

        Other keys of cli.json are preserved.
        """
        data = self._read_raw()
        features = data.setdefault("features", {})
        section = features.setdefault("graphqltransformer", {})
        section["transformerversion"] = version
        write_json_atomic(self.path, data)
        logger.info("transformer_version_persisted", path=str(self.path), version=version)


__all__ = [
    "CLI_JSON_FILE_NAME",
    "FeatureFlagStore",
    "read_json",
    "read_transformer_config",
    "transformer_config_path",
    "write_bytes_atomic",
    "write_json_atomic",
    "write_text_atomic",
    "write_transformer_config",
]
