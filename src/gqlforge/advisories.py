"""Non-fatal advisories emitted before a compile.

Advisories never stop a compile. Each check logs a warning and returns the
messages it produced so callers can surface them elsewhere.
"""

from __future__ import annotations

from typing import Any

import structlog

from gqlforge.models import DirectiveUsageMap

logger = structlog.get_logger(__name__)

SEARCH_INSTANCE_TYPE_PARAMETER = "ElasticsearchInstanceType"
DEFAULT_SEARCH_INSTANCE_TYPE = "t2.small.elasticsearch"
UNDERSIZED_SEARCH_INSTANCE_TYPES = frozenset({"t2.small.elasticsearch", "t3.small.elasticsearch"})

AUTH_DOCS_URL = "https://docs.amplify.aws/cli/graphql-transformer/auth"
SEARCHABLE_DOCS_URL = "https://docs.amplify.aws/cli/graphql-transformer/searchable/"


def warn_on_unauthenticated_models(usage: DirectiveUsageMap) -> list[str]:
    """Warn about @model types that carry no @auth rule."""
    unprotected = [
        name for name, used in usage.types.items() if "model" in used and "auth" not in used
    ]
    if not unprotected:
        return []
    message = (
        "The following types do not have '@auth' enabled. Consider using @auth with @model:\n"
        + "\n".join(f"\t - {name}" for name in unprotected)
        + f"\nLearn more about @auth here: {AUTH_DOCS_URL}"
    )
    logger.warning("unauthenticated_model_types", types=unprotected)
    return [message]


def searchable_push_checks(
    usage: DirectiveUsageMap,
    parameters: dict[str, Any] | None,
) -> list[str]:
    """Warn when searchable models run on an undersized search instance.

    The instance type comes from the resource parameters and defaults to
    the smallest size, which is also undersized.
    """
    if not usage.types_with("searchable", "model"):
        return []
    instance_type = (parameters or {}).get(
        SEARCH_INSTANCE_TYPE_PARAMETER,
        DEFAULT_SEARCH_INSTANCE_TYPE,
    )
    if instance_type not in UNDERSIZED_SEARCH_INSTANCE_TYPES:
        return []
    logger.warning("search_instance_undersized", instance_type=instance_type)
    return [
        f"Your instance type for OpenSearch is {instance_type}, you may experience "
        "performance issues or data loss. Consider reconfiguring with the instructions "
        f"here {SEARCHABLE_DOCS_URL}"
    ]


__all__ = [
    "DEFAULT_SEARCH_INSTANCE_TYPE",
    "SEARCH_INSTANCE_TYPE_PARAMETER",
    "searchable_push_checks",
    "warn_on_unauthenticated_models",
]
