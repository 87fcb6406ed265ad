"""Content-addressed deployment key.

Build artifacts are staged remotely under a deployment key. The first build
of a project mints the key from a hash of the resource directory; later
builds read it back from the previous build's parameters and reuse it
verbatim, so artifacts keep landing at the same location.

Example:
    >>> from gqlforge.build_cache import compute_deployment_key
    >>> compute_deployment_key(resource_dir, previous_dir)
    'gqlforge-api-files/3f2a...'
"""

from __future__ import annotations

import hashlib
from typing import TYPE_CHECKING, Any

import structlog

from gqlforge.config import read_json, write_json_atomic
from gqlforge.models import BUILD_DIR_NAME, PARAMETERS_FILE_NAME
from gqlforge.telemetry.tracing import traced

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

logger = structlog.get_logger(__name__)

ROOT_DEPLOYMENT_KEY_PREFIX = "gqlforge-api-files"

DEPLOYMENT_BUCKET_KEY = "deploymentBucket"
DEPLOYMENT_ROOT_KEY = "deploymentRootKey"
LEGACY_DEPLOYMENT_ROOT_KEY = "S3DeploymentRootKey"
"""Key name written by older releases; read only."""

_HASH_CHUNK_SIZE = 64 * 1024


def previous_deployment_root_key(previous_dir: Path | None) -> str | None:
    """Deployment key recorded by the previous build, if readable.

    Any failure to read or parse the previous parameters yields None; a new
    key is minted in that case.
    """
    if previous_dir is None:
        return None
    path = previous_dir / BUILD_DIR_NAME / PARAMETERS_FILE_NAME
    try:
        parameters = read_json(path)
    except (OSError, ValueError) as e:
        logger.debug("previous_deployment_root_key.unreadable", path=str(path), error=str(e))
        return None
    if not isinstance(parameters, dict):
        logger.debug("previous_deployment_root_key.unexpected_content", path=str(path))
        return None
    key = parameters.get(DEPLOYMENT_ROOT_KEY) or parameters.get(LEGACY_DEPLOYMENT_ROOT_KEY)
    return key if isinstance(key, str) and key else None


@traced(operation_name="gqlforge.hash_directory")
def hash_directory(path: Path) -> str:
    """SHA-256 over the sorted relative paths and contents of a directory.

    The ``build/`` output directory is excluded, so compiling does not change
    the hash of the directory it compiles.
    """
    digest = hashlib.sha256()
    files = sorted(
        (p for p in path.rglob("*") if p.is_file()),
        key=lambda p: p.relative_to(path).as_posix(),
    )
    for file in files:
        rel = file.relative_to(path)
        if rel.parts[0] == BUILD_DIR_NAME:
            continue
        digest.update(rel.as_posix().encode("utf-8"))
        digest.update(b"\0")
        with file.open("rb") as handle:
            for chunk in iter(lambda: handle.read(_HASH_CHUNK_SIZE), b""):
                digest.update(chunk)
        digest.update(b"\0")
    return digest.hexdigest()


def compute_deployment_key(
    resource_dir: Path,
    previous_dir: Path | None,
    hasher: Callable[[Path], str] = hash_directory,
) -> str:
    """Deployment key for this build.

    Args:
        resource_dir: API resource directory being built.
        previous_dir: Previously deployed copy of the resource directory.
        hasher: Directory digest function.

    Returns:
        The previous key, or ``<prefix>/<digest of resource_dir>``.
    """
    key = previous_deployment_root_key(previous_dir)
    if key is not None:
        logger.debug("compute_deployment_key.reused", key=key)
        return key
    key = f"{ROOT_DEPLOYMENT_KEY_PREFIX}/{hasher(resource_dir)}"
    logger.info("compute_deployment_key.minted", key=key)
    return key


def build_parameters(
    parameters: dict[str, Any] | None,
    deployment_bucket: str,
    deployment_root_key: str,
) -> dict[str, Any]:
    """Caller parameters merged with the deployment location."""
    return {
        **(parameters or {}),
        DEPLOYMENT_BUCKET_KEY: deployment_bucket,
        DEPLOYMENT_ROOT_KEY: deployment_root_key,
    }


def write_build_parameters(path: Path, parameters: dict[str, Any], *, minify: bool = False) -> None:
    """Persist build parameters atomically."""
    write_json_atomic(path, parameters, minify=minify)
    logger.debug("write_build_parameters.completed", path=str(path))


__all__ = [
    "DEPLOYMENT_BUCKET_KEY",
    "DEPLOYMENT_ROOT_KEY",
    "ROOT_DEPLOYMENT_KEY_PREFIX",
    "build_parameters",
    "compute_deployment_key",
    "hash_directory",
    "previous_deployment_root_key",
    "write_build_parameters",
]
