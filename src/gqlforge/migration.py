"""Legacy project migration.

Projects compiled before transform.conf.json existed keep every resolver in
the root template. Migrating them takes two remote updates:

1. Shrink: drop the resolvers that will be regenerated, record the
   transformer version, and apply the smaller template.
2. Rebuild: compile the project again with the current pipeline and apply
   the result.

The coordinator is an explicit state machine:

    IDLE -> MIGRATING_SHRINK -> MIGRATING_REBUILD -> DONE
                  |                     |
                  +---> ROLLING_BACK <--+
                             |
                             v
                           FAILED

Snapshots of the resource directory and of the previously deployed
directory are captured before any mutation. A shrink failure restores the
resource directory. A rebuild failure first reverts the intermediate remote
update (best effort; a failure there is logged, not raised) and then
restores the resource directory. Every failure is re-raised as a
MigrationError wrapping the original exception.
"""

from __future__ import annotations

import shutil
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, NoReturn

import structlog

from gqlforge.config import read_json, write_bytes_atomic, write_json_atomic, write_transformer_config
from gqlforge.errors import MigrationError
from gqlforge.models import (
    API_SERVICE_NAME,
    TEMPLATE_FILE_NAME,
    TRANSFORM_BASE_VERSION,
    TRANSFORM_CONFIG_FILE_NAME,
    ApplyRequest,
    TransformerConfig,
)
from gqlforge.plugins.builtin import RESOLVER_RESOURCE_TYPE
from gqlforge.telemetry.tracing import create_span

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable
    from pathlib import Path

    from gqlforge.models import ApiResource

logger = structlog.get_logger(__name__)

MIGRATION_PROMPT = (
    "The following actions will be taken during the migration step:\n"
    "\n1. The GraphQL API stack will be updated to support larger annotated schemas and "
    "custom resolvers. Resolvers are deleted and created again; the API is unavailable "
    "until the migration finishes.\n"
    "\n2. The local template files of the GraphQL API are updated.\n"
    "\n3. If the migration fails, remote and local changes are rolled back.\n"
    "\n4. No data is deleted from any data store.\n"
    "\nMake sure to keep a network connection, do not interrupt the migration, and back up "
    "the project before continuing.\n"
    "\nDo you want to continue?"
)

SKIPPED_APPLY_RESULT = "Skipping update"


def skip_apply(request: ApplyRequest) -> str:
    """Apply step used when no remote deployer is wired in."""
    logger.info("apply.skipped", is_reverting=request.is_reverting)
    return SKIPPED_APPLY_RESULT


def is_legacy_project(
    previous_dir: Path | None,
    resources_to_be_created: Iterable[ApiResource],
) -> bool:
    """Whether the deployed API predates transform.conf.json.

    True when the previously deployed directory holds a root template but
    no transformer configuration, and no API resource is being created.
    """
    if previous_dir is None:
        return False
    if any(r.service == API_SERVICE_NAME for r in resources_to_be_created):
        return False
    return (previous_dir / TEMPLATE_FILE_NAME).exists() and not (
        previous_dir / TRANSFORM_CONFIG_FILE_NAME
    ).exists()


# =============================================================================
# Snapshots
# =============================================================================


@dataclass(frozen=True)
class DirectorySnapshot:
    """Byte-exact copy of every file under a directory.

    Attributes:
        root: The directory captured.
        existed: Whether the directory existed at capture time.
        files: Relative path (POSIX form) to file content.
        dirs: Relative paths of the directories present at capture time.
    """

    root: Path
    existed: bool
    files: dict[str, bytes] = field(default_factory=dict)
    dirs: frozenset[str] = frozenset()

    @classmethod
    def capture(cls, root: Path) -> DirectorySnapshot:
        if not root.is_dir():
            return cls(root=root, existed=False)
        paths = sorted(root.rglob("*"))
        files = {p.relative_to(root).as_posix(): p.read_bytes() for p in paths if p.is_file()}
        dirs = frozenset(p.relative_to(root).as_posix() for p in paths if p.is_dir())
        return cls(root=root, existed=True, files=files, dirs=dirs)

    def restore(self, target: Path | None = None, *, prune: bool = True) -> None:
        """Write the captured files back, each one atomically.

        Args:
            target: Directory to restore into. Defaults to the captured root.
            prune: Remove files that were not present at capture time.
        """
        target = target or self.root
        if prune and not self.existed:
            if target.exists():
                shutil.rmtree(target)
            return

        for rel, content in self.files.items():
            path = target / rel
            if not path.is_file() or path.read_bytes() != content:
                write_bytes_atomic(path, content)

        if prune and target.is_dir():
            for path in sorted(target.rglob("*"), reverse=True):
                rel = path.relative_to(target).as_posix()
                if path.is_file() and rel not in self.files:
                    path.unlink()
                elif path.is_dir() and rel not in self.dirs and not any(path.iterdir()):
                    path.rmdir()


@dataclass(frozen=True)
class MigrationRecord:
    """Snapshots held for the duration of one migration attempt.

    Attributes:
        project: The resource directory before migration.
        cloud_backend: The previously deployed directory before migration.
    """

    project: DirectorySnapshot
    cloud_backend: DirectorySnapshot

    @classmethod
    def capture(cls, resource_dir: Path, previous_dir: Path) -> MigrationRecord:
        return cls(
            project=DirectorySnapshot.capture(resource_dir),
            cloud_backend=DirectorySnapshot.capture(previous_dir),
        )


# =============================================================================
# Default shrink step
# =============================================================================


def shrink_project(resource_dir: Path, previous_dir: Path) -> None:
    """Prepare a legacy project for the intermediate update.

    Records the base transformer version in transform.conf.json and removes
    resolver resources from the root template. Resolvers are generated
    again by the rebuild.
    """
    source = resource_dir / TEMPLATE_FILE_NAME
    if not source.exists():
        source = previous_dir / TEMPLATE_FILE_NAME
    template = read_json(source)
    resources = template.get("Resources") or {}
    kept = {
        name: resource
        for name, resource in resources.items()
        if resource.get("Type") != RESOLVER_RESOURCE_TYPE
    }
    template["Resources"] = kept
    write_transformer_config(resource_dir, TransformerConfig(version=TRANSFORM_BASE_VERSION))
    write_json_atomic(resource_dir / TEMPLATE_FILE_NAME, template)
    logger.info(
        "shrink_project.completed",
        resource_dir=str(resource_dir),
        removed=len(resources) - len(kept),
        kept=len(kept),
    )


# =============================================================================
# Coordinator
# =============================================================================


class MigrationState(Enum):
    """States of a migration attempt."""

    IDLE = "idle"
    MIGRATING_SHRINK = "migrating_shrink"
    MIGRATING_REBUILD = "migrating_rebuild"
    ROLLING_BACK = "rolling_back"
    DONE = "done"
    FAILED = "failed"


_TRANSITIONS: dict[MigrationState, frozenset[MigrationState]] = {
    MigrationState.IDLE: frozenset({MigrationState.MIGRATING_SHRINK}),
    MigrationState.MIGRATING_SHRINK: frozenset(
        {MigrationState.MIGRATING_REBUILD, MigrationState.ROLLING_BACK}
    ),
    MigrationState.MIGRATING_REBUILD: frozenset(
        {MigrationState.DONE, MigrationState.ROLLING_BACK}
    ),
    MigrationState.ROLLING_BACK: frozenset({MigrationState.FAILED}),
    MigrationState.DONE: frozenset(),
    MigrationState.FAILED: frozenset(),
}


class MigrationCoordinator:
    """Drives one legacy-project migration with rollback.

    Args:
        resource_dir: The API resource directory being migrated.
        previous_dir: The previously deployed copy of the resource directory.
        rebuild: Recompiles the project; receives the directory to treat as
            previously deployed (the resource directory itself, since the
            deployed copy still has the legacy layout).
        apply: Applies the current local state remotely.
        shrink: Prepares the intermediate state. Defaults to shrink_project.
        is_cli_migration: The user asked for the migration explicitly.

    Example:
        >>> coordinator = MigrationCoordinator(resource_dir, previous_dir, rebuild=recompile)
        >>> coordinator.run()
        'Skipping update'
        >>> coordinator.state
        <MigrationState.DONE: 'done'>
    """

    def __init__(
        self,
        resource_dir: Path,
        previous_dir: Path,
        rebuild: Callable[[Path], Any],
        apply: Callable[[ApplyRequest], Any] = skip_apply,
        shrink: Callable[[Path, Path], None] = shrink_project,
        is_cli_migration: bool = False,
    ) -> None:
        self.resource_dir = resource_dir
        self.previous_dir = previous_dir
        self._rebuild = rebuild
        self._apply = apply
        self._shrink = shrink
        self.is_cli_migration = is_cli_migration
        self._state = MigrationState.IDLE
        self._record: MigrationRecord | None = None

    @property
    def state(self) -> MigrationState:
        return self._state

    @property
    def record(self) -> MigrationRecord | None:
        """Snapshots of the attempt in progress; None once it has ended."""
        return self._record

    def _transition(self, target: MigrationState) -> None:
        if target not in _TRANSITIONS[self._state]:
            raise RuntimeError(
                f"Invalid migration transition: {self._state.value} -> {target.value}"
            )
        logger.debug("migration.transition", source=self._state.value, target=target.value)
        self._state = target

    def run(self) -> Any:
        """Run the migration.

        Returns:
            The result of the final apply.

        Raises:
            MigrationError: If either phase fails (after rolling back).
            RuntimeError: If the coordinator has already run.
        """
        self._transition(MigrationState.MIGRATING_SHRINK)
        try:
            record = MigrationRecord.capture(self.resource_dir, self.previous_dir)
        except OSError as e:
            # Nothing has been modified yet.
            logger.error("migration.snapshot_failed", resource_dir=str(self.resource_dir), error=str(e))
            self._transition(MigrationState.ROLLING_BACK)
            self._transition(MigrationState.FAILED)
            raise MigrationError("shrink", e) from e
        self._record = record
        logger.info("migration.started", resource_dir=str(self.resource_dir))

        with create_span("gqlforge.migration", attributes={"gqlforge.migration.phase": "shrink"}) as span:
            try:
                self._shrink(self.resource_dir, self.previous_dir)
                self._apply(ApplyRequest(is_cli_migration=self.is_cli_migration))
            except Exception as e:
                self._fail("shrink", e, record, revert_intermediate=False)

            self._transition(MigrationState.MIGRATING_REBUILD)
            span.set_attribute("gqlforge.migration.phase", "rebuild")
            try:
                self._rebuild(self.resource_dir)
                result = self._apply(ApplyRequest(is_cli_migration=self.is_cli_migration))
            except Exception as e:
                self._fail("rebuild", e, record, revert_intermediate=True)

        self._transition(MigrationState.DONE)
        self._record = None
        logger.info("migration.completed", resource_dir=str(self.resource_dir))
        return result

    def revert_intermediate(self, record: MigrationRecord) -> BaseException | None:
        """Put the deployed layout back locally and re-apply it (best effort).

        Returns:
            The exception raised while restoring local files, if any. A
            failed remote revert is logged and not returned.
        """
        restore_error: BaseException | None = None
        try:
            record.cloud_backend.restore(self.resource_dir, prune=False)
        except Exception as e:
            logger.error("migration.restore_deployed_failed", error=str(e))
            restore_error = e
        try:
            self._apply(ApplyRequest(is_reverting=True, is_cli_migration=self.is_cli_migration))
        except Exception as e:
            logger.error(
                "migration.revert_intermediate_failed",
                message="Error reverting intermediate migration stack",
                error=str(e),
            )
        return restore_error

    def revert_original(self, record: MigrationRecord) -> BaseException | None:
        """Restore the resource directory to its pre-migration content.

        Returns:
            The exception raised while restoring, if any.
        """
        try:
            record.project.restore()
        except Exception as e:
            logger.error("migration.restore_project_failed", error=str(e))
            return e
        return None

    def _fail(
        self,
        phase: str,
        cause: Exception,
        record: MigrationRecord,
        *,
        revert_intermediate: bool,
    ) -> NoReturn:
        self._transition(MigrationState.ROLLING_BACK)
        logger.error("migration.reverting", phase=phase, error=str(cause))

        rollback_errors: list[BaseException] = []
        if revert_intermediate:
            intermediate_error = self.revert_intermediate(record)
            if intermediate_error is not None:
                rollback_errors.append(intermediate_error)
        original_error = self.revert_original(record)
        if original_error is not None:
            rollback_errors.append(original_error)

        self._transition(MigrationState.FAILED)
        self._record = None
        if not rollback_errors:
            logger.info("migration.reverted", phase=phase)
        raise MigrationError(phase, cause, rollback_errors) from cause


__all__ = [
    "MIGRATION_PROMPT",
    "SKIPPED_APPLY_RESULT",
    "DirectorySnapshot",
    "MigrationCoordinator",
    "MigrationRecord",
    "MigrationState",
    "is_legacy_project",
    "shrink_project",
    "skip_apply",
]
