"""Unit tests for sanity checks."""

from __future__ import annotations

import copy
from typing import Any

import pytest

from gqlforge.errors import ConfigurationError, SanityCheckViolation
from gqlforge.models import Severity
from gqlforge.sanity import (
    CANT_HAVE_MORE_THAN_500_RESOURCES,
    CANT_MUTATE_MULTIPLE_GSIS,
    DESTRUCTIVE_RULES,
    ChangeSet,
    SanityCheckRule,
    diff_templates,
    get_sanity_check_rules,
    run_sanity_checks,
)


def table(*gsis: str, lsis: tuple[str, ...] = (), hash_key: str = "id") -> dict[str, Any]:
    props: dict[str, Any] = {"KeySchema": [{"AttributeName": hash_key, "KeyType": "HASH"}]}
    if gsis:
        props["GlobalSecondaryIndexes"] = [
            {"IndexName": name, "KeySchema": [{"AttributeName": name, "KeyType": "HASH"}]} for name in gsis
        ]
    if lsis:
        props["LocalSecondaryIndexes"] = [
            {"IndexName": name, "KeySchema": [{"AttributeName": hash_key, "KeyType": "HASH"}]}
            for name in lsis
        ]
    return {"Type": "AWS::DynamoDB::Table", "Properties": props}


def template(**tables: dict[str, Any]) -> dict[str, Any]:
    return {"Resources": dict(tables)}


class TestDiffTemplates:
    """Tests for diff_templates."""

    def test_new_api_has_no_changes(self) -> None:
        change_set = diff_templates(None, template(PostTable=table()))

        assert change_set == ChangeSet(resource_count=1)

    def test_removed_table(self) -> None:
        change_set = diff_templates(template(PostTable=table(), TagTable=table()), template(PostTable=table()))

        assert change_set.removed_tables == ["TagTable"]

    def test_key_schema_change(self) -> None:
        change_set = diff_templates(template(PostTable=table()), template(PostTable=table(hash_key="slug")))

        assert change_set.key_schema_changes == ["PostTable"]

    def test_gsi_changes(self) -> None:
        """Test added, removed and re-keyed global indexes are counted per table."""
        previous = template(PostTable=table("byAuthor", "byTag"))
        current = copy.deepcopy(template(PostTable=table("byAuthor", "byDate")))
        current["Resources"]["PostTable"]["Properties"]["GlobalSecondaryIndexes"][0]["KeySchema"] = [
            {"AttributeName": "authorId", "KeyType": "HASH"}
        ]

        change_set = diff_templates(previous, current)

        assert change_set.gsi_key_changes == ["PostTable.byAuthor"]
        assert change_set.gsi_mutations == {"PostTable": 3}

    def test_lsi_added_to_existing_table(self) -> None:
        change_set = diff_templates(template(PostTable=table()), template(PostTable=table(lsis=("byDate",))))

        assert change_set.lsi_changes == ["PostTable.byDate"]

    def test_removed_model_field(self) -> None:
        change_set = diff_templates(
            template(PostTable=table()),
            template(PostTable=table()),
            previous_schema="type Post @model { id: ID! title: String body: String }",
            current_schema="type Post @model { id: ID! title: String }",
        )

        assert change_set.removed_fields == ["Post.body"]

    def test_unreadable_previous_schema_is_skipped(self) -> None:
        change_set = diff_templates(
            template(),
            template(),
            previous_schema="type Post {",
            current_schema="type Post @model { id: ID! }",
        )

        assert change_set.removed_fields == []

    def test_index_without_name_is_rejected(self) -> None:
        previous = template(PostTable=table("byAuthor"))
        del previous["Resources"]["PostTable"]["Properties"]["GlobalSecondaryIndexes"][0]["IndexName"]

        with pytest.raises(ConfigurationError, match="PostTable declares a GlobalSecondaryIndexes entry"):
            diff_templates(previous, template(PostTable=table("byAuthor")))


class TestGetSanityCheckRules:
    """Tests for get_sanity_check_rules."""

    def test_new_api_gets_project_rules_only(self) -> None:
        assert get_sanity_check_rules(is_new_api=True) == [CANT_HAVE_MORE_THAN_500_RESOURCES]

    def test_existing_api_gets_destructive_rules(self) -> None:
        rules = get_sanity_check_rules(is_new_api=False)

        assert rules == [*DESTRUCTIVE_RULES, CANT_HAVE_MORE_THAN_500_RESOURCES]

    def test_override_drops_destructive_rules(self) -> None:
        rules = get_sanity_check_rules(is_new_api=False, allow_destructive_updates=True)

        assert not any(rule.destructive for rule in rules)
        assert CANT_HAVE_MORE_THAN_500_RESOURCES in rules

    def test_non_iterative_gsi_updates_add_rule(self) -> None:
        rules = get_sanity_check_rules(is_new_api=False, iterative_gsi_updates=False)

        assert CANT_MUTATE_MULTIPLE_GSIS in rules


class TestRunSanityChecks:
    """Tests for run_sanity_checks."""

    def test_destructive_violation_names_override_flag(self) -> None:
        rules = get_sanity_check_rules(is_new_api=False)

        with pytest.raises(SanityCheckViolation) as exc_info:
            run_sanity_checks(rules, ChangeSet(removed_tables=["PostTable"]))

        error = exc_info.value
        assert error.override_flag == "--allow-destructive-graphql-schema-updates"
        assert "PostTable" in error.violations[0]
        assert "--allow-destructive-graphql-schema-updates" in str(error)

    def test_project_rule_violation_cannot_be_overridden(self) -> None:
        rules = get_sanity_check_rules(is_new_api=False, allow_destructive_updates=True)

        with pytest.raises(SanityCheckViolation) as exc_info:
            run_sanity_checks(rules, ChangeSet(resource_count=501))

        assert exc_info.value.override_flag is None

    def test_resource_limit_is_inclusive(self) -> None:
        assert run_sanity_checks([CANT_HAVE_MORE_THAN_500_RESOURCES], ChangeSet(resource_count=500)) == []

    def test_warning_rules_do_not_raise(self) -> None:
        rule = SanityCheckRule(
            name="warn_on_tables",
            description="Always warns",
            severity=Severity.WARNING,
            destructive=False,
            check=lambda c: ["heads up"],
        )

        assert run_sanity_checks([rule], ChangeSet()) == ["heads up"]
