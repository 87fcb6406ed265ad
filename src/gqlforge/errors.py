"""Exception types for gqlforge.

This module defines the exception hierarchy for schema compilation. All
exceptions inherit from ForgeError to enable catch-all error handling.

Exception Hierarchy:
    ForgeError (base)
    ├── ParseError - Malformed schema document
    ├── PluginError - Transformer plugin failures
    │   ├── PluginLoadError - Reference could not be resolved or imported
    │   └── PluginContractError - Module does not expose a transformer
    ├── ConfigurationError - Invalid persisted or flag-derived configuration
    ├── MigrationError - Legacy project migration failed (rollback attempted)
    ├── SanityCheckViolation - Destructive change without explicit override
    └── CompileCancelled - User declined a confirmation prompt
        └── MigrationCancelled - User declined the legacy migration

Every fatal error carries a ``remediation`` naming the action (flag to set,
file to edit) that resolves it, when one exists.

Example:
    >>> from gqlforge.errors import ForgeError, PluginLoadError
    >>> try:
    ...     compiler.compile(options)
    ... except PluginLoadError as e:
    ...     print(f"Cannot load {e.reference}: {e.remediation}")
    ... except ForgeError as e:
    ...     print(f"Compilation failed: {e}")
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path


class ForgeError(Exception):
    """Base exception for all gqlforge errors.

    Attributes:
        message: Human-readable error description.
        details: Optional dictionary with additional error context.
        remediation: Optional action that resolves the error.

    Example:
        >>> try:
        ...     compiler.compile(options)
        ... except ForgeError as e:
        ...     logger.error("compile_failed", error=str(e), details=e.details)
    """

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        remediation: str | None = None,
    ) -> None:
        """Initialize ForgeError.

        Args:
            message: Human-readable error description.
            details: Optional dictionary with additional error context.
            remediation: Optional action that resolves the error.
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.remediation = remediation

    def __str__(self) -> str:
        """Return string representation of the error."""
        text = self.message
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            text = f"{text} ({details_str})"
        if self.remediation:
            text = f"{text}\n{self.remediation}"
        return text


class ParseError(ForgeError):
    """The schema document is malformed.

    Attributes:
        source: Name of the schema source that failed (file path or "<string>").
        line: 1-based line of the first syntax error, if known.
        column: 1-based column of the first syntax error, if known.
    """

    def __init__(
        self,
        message: str,
        source: str = "<string>",
        line: int | None = None,
        column: int | None = None,
    ) -> None:
        details: dict[str, Any] = {"source": source}
        if line is not None:
            details["line"] = line
        if column is not None:
            details["column"] = column
        super().__init__(
            message,
            details,
            remediation=f"Fix the GraphQL syntax in {source}",
        )
        self.source = source
        self.line = line
        self.column = column


# =============================================================================
# Plugin Errors
# =============================================================================


class PluginError(ForgeError):
    """Base class for transformer plugin errors."""


class PluginLoadError(PluginError):
    """A plugin reference could not be resolved or imported.

    Attributes:
        reference: The reference exactly as declared in configuration.
        config_path: The configuration file that declared the reference.
        cause: The underlying import failure, if any.

    Example:
        >>> raise PluginLoadError("my_transformer", Path("api/transform.conf.json"))
        Traceback (most recent call last):
            ...
        PluginLoadError: Unable to import custom transformer module (my_transformer) ...
    """

    def __init__(
        self,
        reference: str,
        config_path: Path | None = None,
        cause: BaseException | None = None,
        message: str | None = None,
    ) -> None:
        """Initialize PluginLoadError.

        Args:
            reference: The reference exactly as declared in configuration.
            config_path: The configuration file that declared the reference.
            cause: The underlying import failure, if any.
            message: Override for the default message.
        """
        text = message or f"Unable to import custom transformer module ({reference})"
        if cause is not None:
            text = f"{text}: {cause}"
        remediation = None
        if config_path is not None:
            remediation = f"You may fix this error by editing transformers at {config_path}"
        super().__init__(text, {"reference": reference}, remediation)
        self.reference = reference
        self.config_path = config_path
        self.cause = cause


class PluginContractError(PluginError):
    """A loaded module does not satisfy the transformer capability.

    Raised when the module's ``transformer`` attribute is missing, is a class
    that cannot be constructed without arguments, or is an object without a
    callable ``transform``.
    """

    def __init__(self, reference: str, reason: str) -> None:
        super().__init__(
            f"Custom transformer '{reference}' does not expose a usable transformer: {reason}",
            {"reference": reference},
            remediation=(
                "Expose a module-level 'transformer' that is either a class "
                "constructible without arguments or a transformer instance"
            ),
        )
        self.reference = reference
        self.reason = reason


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigurationError(ForgeError):
    """Persisted or flag-derived configuration is invalid."""


# =============================================================================
# Migration Errors
# =============================================================================


class MigrationError(ForgeError):
    """A legacy project migration failed.

    The coordinator rolls back before raising. Every failure hit while
    rolling back is kept in ``rollback_errors``, in the order it happened;
    the original failure is always available as ``cause``.

    Attributes:
        phase: The phase that failed ("shrink" or "rebuild").
        cause: The exception raised by the failing phase.
        rollback_errors: Exceptions raised while restoring, if any.
    """

    def __init__(
        self,
        phase: str,
        cause: BaseException,
        rollback_errors: Sequence[BaseException] = (),
    ) -> None:
        """Initialize MigrationError.

        Args:
            phase: The phase that failed ("shrink" or "rebuild").
            cause: The exception raised by the failing phase.
            rollback_errors: Exceptions raised while restoring, if any.
        """
        message = f"API migration failed during {phase} phase: {cause}"
        if not rollback_errors:
            message = f"{message}. API successfully reverted."
        else:
            failures = "; ".join(str(e) for e in rollback_errors)
            message = f"{message}. Rollback also failed (non-fatal): {failures}"
        super().__init__(
            message,
            {"phase": phase},
            remediation=(
                "Migrate the project manually or rerun the compile with --migrate "
                "once the underlying failure is resolved"
            ),
        )
        self.phase = phase
        self.cause = cause
        self.rollback_errors = tuple(rollback_errors)

    @property
    def rolled_back(self) -> bool:
        """Whether the project configuration was fully restored."""
        return not self.rollback_errors


# =============================================================================
# Sanity Check Errors
# =============================================================================


class SanityCheckViolation(ForgeError):
    """A destructive change was detected without an explicit override.

    Attributes:
        violations: Human-readable description of every failed rule.
        override_flag: The CLI flag that bypasses the failed rules, or None
            when a failed rule can never be bypassed.
    """

    def __init__(self, violations: list[str], override_flag: str | None) -> None:
        joined = "\n".join(f"  - {v}" for v in violations)
        remediation = None
        if override_flag is not None:
            remediation = (
                f"If you intend to apply this change, rerun with {override_flag}. "
                "This may delete data."
            )
        super().__init__(
            f"Sanity check failed for the proposed schema change:\n{joined}",
            remediation=remediation,
        )
        self.violations = violations
        self.override_flag = override_flag


class CompileCancelled(ForgeError):
    """The user declined a confirmation prompt."""


class MigrationCancelled(CompileCancelled):
    """The user declined the legacy project migration."""

    def __init__(self) -> None:
        super().__init__(
            "Migration cancelled.",
            remediation=(
                "Please downgrade to an older version of gqlforge or migrate your API project."
            ),
        )


__all__ = [
    "CompileCancelled",
    "ConfigurationError",
    "ForgeError",
    "MigrationCancelled",
    "MigrationError",
    "ParseError",
    "PluginContractError",
    "PluginError",
    "PluginLoadError",
    "SanityCheckViolation",
]
