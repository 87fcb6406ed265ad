"""Sanity checks gating potentially destructive schema changes.

A ChangeSet describes what the newly compiled template and schema change
compared to the previously deployed build. Rules are predicates over the
ChangeSet; rules marked destructive guard changes that lose data or that
the deployment engine cannot apply in place. They can be bypassed with
``--allow-destructive-graphql-schema-updates``. Project rules can not.

Rule selection:

    =============  ==========================  ===========================
    API            allow destructive updates   Active rules
    =============  ==========================  ===========================
    new            any                         project rules
    existing       no                          destructive + project rules
    existing       yes                         project rules
    =============  ==========================  ===========================
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import structlog

from gqlforge.errors import ConfigurationError, ParseError, SanityCheckViolation
from gqlforge.models import DESTRUCTIVE_UPDATES_FLAG, TEMPLATE_FILE_NAME, Severity
from gqlforge.plugins.base import find_directive, object_types
from gqlforge.plugins.builtin import TABLE_RESOURCE_TYPE
from gqlforge.schema.loader import parse_schema

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

logger = structlog.get_logger(__name__)

MAX_RESOURCES = 500


@dataclass(frozen=True)
class ChangeSet:
    """Differences between the previous and the proposed build.

    Attributes:
        removed_tables: Tables present before and missing now.
        key_schema_changes: Tables whose primary key changed.
        gsi_key_changes: ``Table.Index`` global indexes whose key changed.
        gsi_mutations: Table to number of global indexes added, removed or changed.
        lsi_changes: ``Table.Index`` local indexes added, removed or changed
            on an existing table.
        removed_fields: ``Type.field`` fields removed from an existing model.
        resource_count: Number of resources in the proposed template.
    """

    removed_tables: list[str] = field(default_factory=list)
    key_schema_changes: list[str] = field(default_factory=list)
    gsi_key_changes: list[str] = field(default_factory=list)
    gsi_mutations: dict[str, int] = field(default_factory=dict)
    lsi_changes: list[str] = field(default_factory=list)
    removed_fields: list[str] = field(default_factory=list)
    resource_count: int = 0


def _tables(template: dict[str, Any] | None) -> dict[str, dict[str, Any]]:
    resources = (template or {}).get("Resources") or {}
    return {
        name: resource.get("Properties") or {}
        for name, resource in resources.items()
        if isinstance(resource, dict) and resource.get("Type") == TABLE_RESOURCE_TYPE
    }


def _indexes(table: str, props: dict[str, Any], kind: str) -> dict[str, Any]:
    indexes: dict[str, Any] = {}
    for index in props.get(kind) or []:
        if not isinstance(index, dict) or not isinstance(index.get("IndexName"), str):
            raise ConfigurationError(
                f"Table {table} declares a {kind} entry without an IndexName: {index!r}",
                remediation=f"Fix or remove the deployed {TEMPLATE_FILE_NAME} declaring {table}",
            )
        indexes[index["IndexName"]] = index.get("KeySchema")
    return indexes


def _model_fields(sdl: str, source: str) -> dict[str, set[str]]:
    schema = parse_schema(sdl, source)
    return {
        node.name.value: {f.name.value for f in node.fields or ()}
        for node in object_types(schema)
        if find_directive(node, "model") is not None
    }


def diff_templates(
    previous: dict[str, Any] | None,
    current: dict[str, Any],
    previous_schema: str | None = None,
    current_schema: str | None = None,
) -> ChangeSet:
    """Compute the ChangeSet between two builds.

    Args:
        previous: Previously deployed template, or None for a new API.
        current: Proposed template.
        previous_schema: Previously deployed schema SDL, if known.
        current_schema: Proposed schema SDL, if known.

    Raises:
        ParseError: If ``current_schema`` does not parse.
        ConfigurationError: If a table declares an index without an IndexName.
    """
    before, after = _tables(previous), _tables(current)
    removed_tables = [name for name in before if name not in after]
    key_changes: list[str] = []
    gsi_key_changes: list[str] = []
    gsi_mutations: dict[str, int] = {}
    lsi_changes: list[str] = []

    for name, old in before.items():
        new = after.get(name)
        if new is None:
            continue
        if old.get("KeySchema") != new.get("KeySchema"):
            key_changes.append(name)

        old_gsis = _indexes(name, old, "GlobalSecondaryIndexes")
        new_gsis = _indexes(name, new, "GlobalSecondaryIndexes")
        mutated = set(old_gsis) ^ set(new_gsis)
        for index, key_schema in old_gsis.items():
            if index in new_gsis and new_gsis[index] != key_schema:
                gsi_key_changes.append(f"{name}.{index}")
                mutated.add(index)
        if mutated:
            gsi_mutations[name] = len(mutated)

        old_lsis = _indexes(name, old, "LocalSecondaryIndexes")
        new_lsis = _indexes(name, new, "LocalSecondaryIndexes")
        for index in sorted(set(old_lsis) | set(new_lsis)):
            if old_lsis.get(index) != new_lsis.get(index):
                lsi_changes.append(f"{name}.{index}")

    removed_fields: list[str] = []
    if previous_schema and current_schema:
        try:
            old_models = _model_fields(previous_schema, "previous schema")
        except ParseError as e:
            logger.warning("sanity_check.previous_schema_unreadable", error=str(e))
            old_models = {}
        new_models = _model_fields(current_schema, "schema")
        for type_name, fields in old_models.items():
            if type_name in new_models:
                removed_fields.extend(
                    f"{type_name}.{f}" for f in sorted(fields - new_models[type_name])
                )

    return ChangeSet(
        removed_tables=removed_tables,
        key_schema_changes=key_changes,
        gsi_key_changes=gsi_key_changes,
        gsi_mutations=gsi_mutations,
        lsi_changes=lsi_changes,
        removed_fields=removed_fields,
        resource_count=len((current.get("Resources") or {})),
    )


# =============================================================================
# Rules
# =============================================================================


@dataclass(frozen=True)
class SanityCheckRule:
    """A named predicate over a ChangeSet.

    Attributes:
        name: Rule identifier.
        description: What the rule guards against.
        severity: ERROR blocks the compile, WARNING is logged.
        destructive: Bypassed by the destructive-updates override.
        check: Returns one message per violation, empty when satisfied.
    """

    name: str
    description: str
    severity: Severity
    destructive: bool
    check: Callable[[ChangeSet], list[str]]


CANT_REMOVE_TABLES = SanityCheckRule(
    name="cant_remove_tables",
    description="Tables can not be removed once created",
    severity=Severity.ERROR,
    destructive=True,
    check=lambda c: [f"Table {t} would be removed, deleting all its data" for t in c.removed_tables],
)

CANT_EDIT_KEY_SCHEMA = SanityCheckRule(
    name="cant_edit_key_schema",
    description="The primary key of a table can not change",
    severity=Severity.ERROR,
    destructive=True,
    check=lambda c: [
        f"Primary key of table {t} would change, replacing the table" for t in c.key_schema_changes
    ],
)

CANT_EDIT_GSI_KEY_SCHEMA = SanityCheckRule(
    name="cant_edit_gsi_key_schema",
    description="The key of a global secondary index can not change in place",
    severity=Severity.ERROR,
    destructive=True,
    check=lambda c: [f"Key of global secondary index {i} would change" for i in c.gsi_key_changes],
)

CANT_CHANGE_LSI = SanityCheckRule(
    name="cant_change_lsi",
    description="Local secondary indexes can only be defined when a table is created",
    severity=Severity.ERROR,
    destructive=True,
    check=lambda c: [
        f"Local secondary index {i} can not be added, removed or changed on an existing table"
        for i in c.lsi_changes
    ],
)

CANT_REMOVE_MODEL_FIELDS = SanityCheckRule(
    name="cant_remove_model_fields",
    description="Fields of an existing model can not be removed",
    severity=Severity.ERROR,
    destructive=True,
    check=lambda c: [f"Field {f} would be removed from an existing model" for f in c.removed_fields],
)

CANT_HAVE_MORE_THAN_500_RESOURCES = SanityCheckRule(
    name="cant_have_more_than_500_resources",
    description=f"A template can not hold more than {MAX_RESOURCES} resources",
    severity=Severity.ERROR,
    destructive=False,
    check=lambda c: (
        [f"The template has {c.resource_count} resources, more than {MAX_RESOURCES}"]
        if c.resource_count > MAX_RESOURCES
        else []
    ),
)

CANT_MUTATE_MULTIPLE_GSIS = SanityCheckRule(
    name="cant_mutate_multiple_gsis",
    description="Only one global secondary index per table can change per update",
    severity=Severity.ERROR,
    destructive=False,
    check=lambda c: [
        f"Table {t} would change {n} global secondary indexes at once; "
        "enable iterative index updates or change one index per update"
        for t, n in c.gsi_mutations.items()
        if n > 1
    ],
)

DESTRUCTIVE_RULES: tuple[SanityCheckRule, ...] = (
    CANT_REMOVE_TABLES,
    CANT_EDIT_KEY_SCHEMA,
    CANT_EDIT_GSI_KEY_SCHEMA,
    CANT_CHANGE_LSI,
    CANT_REMOVE_MODEL_FIELDS,
)


def get_sanity_check_rules(
    is_new_api: bool,
    allow_destructive_updates: bool = False,
    iterative_gsi_updates: bool = True,
) -> list[SanityCheckRule]:
    """Select the active rules for a compile.

    Without iterative index updates, changing several global indexes of one
    table in a single update is rejected as well.
    """
    project_rules = [CANT_HAVE_MORE_THAN_500_RESOURCES]
    if is_new_api:
        return project_rules
    if not iterative_gsi_updates:
        project_rules.append(CANT_MUTATE_MULTIPLE_GSIS)
    if allow_destructive_updates:
        return project_rules
    return [*DESTRUCTIVE_RULES, *project_rules]


def run_sanity_checks(
    rules: Sequence[SanityCheckRule],
    change_set: ChangeSet,
) -> list[str]:
    """Evaluate rules against a ChangeSet.

    Returns:
        Messages of violated WARNING rules (already logged).

    Raises:
        SanityCheckViolation: If any ERROR rule is violated. The override
            flag is named when every violated rule can be bypassed.
    """
    errors: list[str] = []
    warnings: list[str] = []
    bypassable = True
    for rule in rules:
        messages = rule.check(change_set)
        if not messages:
            continue
        if rule.severity is Severity.WARNING:
            for message in messages:
                logger.warning("sanity_check.warning", rule=rule.name, message=message)
            warnings.extend(messages)
            continue
        logger.error("sanity_check.failed", rule=rule.name, violations=len(messages))
        bypassable = bypassable and rule.destructive
        errors.extend(messages)

    if errors:
        raise SanityCheckViolation(errors, DESTRUCTIVE_UPDATES_FLAG if bypassable else None)
    return warnings


__all__ = [
    "CANT_CHANGE_LSI",
    "CANT_EDIT_GSI_KEY_SCHEMA",
    "CANT_EDIT_KEY_SCHEMA",
    "CANT_HAVE_MORE_THAN_500_RESOURCES",
    "CANT_MUTATE_MULTIPLE_GSIS",
    "CANT_REMOVE_MODEL_FIELDS",
    "CANT_REMOVE_TABLES",
    "DESTRUCTIVE_RULES",
    "MAX_RESOURCES",
    "ChangeSet",
    "SanityCheckRule",
    "diff_templates",
    "get_sanity_check_rules",
    "run_sanity_checks",
]
