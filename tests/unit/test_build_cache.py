"""Unit tests for deployment key derivation."""

from __future__ import annotations

import json
import re
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from gqlforge.build_cache import (
    build_parameters,
    compute_deployment_key,
    hash_directory,
    previous_deployment_root_key,
    write_build_parameters,
)

KEY_PATTERN = re.compile(r"^gqlforge-api-files/[0-9a-f]{64}$")


@pytest.fixture
def previous_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "previous"
    (directory / "build").mkdir(parents=True)
    return directory


class TestComputeDeploymentKey:
    """Tests for compute_deployment_key."""

    def test_reuses_previous_key_verbatim(self, resource_dir: Path, previous_dir: Path) -> None:
        """Test a recorded key is returned without hashing."""
        (previous_dir / "build" / "parameters.json").write_text(
            json.dumps({"deploymentRootKey": "gqlforge-api-files/previous"})
        )
        hasher = MagicMock()

        key = compute_deployment_key(resource_dir, previous_dir, hasher=hasher)

        assert key == "gqlforge-api-files/previous"
        hasher.assert_not_called()

    def test_reads_legacy_key_name(self, resource_dir: Path, previous_dir: Path) -> None:
        (previous_dir / "build" / "parameters.json").write_text(
            json.dumps({"S3DeploymentRootKey": "legacy-key"})
        )

        assert compute_deployment_key(resource_dir, previous_dir) == "legacy-key"

    def test_mints_key_for_first_build(self, resource_dir: Path) -> None:
        key = compute_deployment_key(resource_dir, None)

        assert KEY_PATTERN.match(key)

    def test_unreadable_previous_parameters_mint_new_key(
        self,
        resource_dir: Path,
        previous_dir: Path,
    ) -> None:
        (previous_dir / "build" / "parameters.json").write_text("{not json")

        assert KEY_PATTERN.match(compute_deployment_key(resource_dir, previous_dir))

    def test_minted_key_is_stable(self, resource_dir: Path) -> None:
        assert compute_deployment_key(resource_dir, None) == compute_deployment_key(resource_dir, None)

    def test_minted_key_changes_with_content(self, resource_dir: Path) -> None:
        before = compute_deployment_key(resource_dir, None)
        (resource_dir / "schema.graphql").write_text("type Changed @model { id: ID! }")

        assert compute_deployment_key(resource_dir, None) != before


class TestHashDirectory:
    """Tests for hash_directory."""

    def test_build_output_is_ignored(self, resource_dir: Path) -> None:
        before = hash_directory(resource_dir)
        (resource_dir / "build").mkdir()
        (resource_dir / "build" / "cloudformation-template.json").write_text("{}")

        assert hash_directory(resource_dir) == before

    def test_file_names_are_part_of_the_digest(self, tmp_path: Path) -> None:
        first, second = tmp_path / "first", tmp_path / "second"
        first.mkdir()
        second.mkdir()
        (first / "a.graphql").write_text("type A { id: ID }")
        (second / "b.graphql").write_text("type A { id: ID }")

        assert hash_directory(first) != hash_directory(second)


class TestBuildParameters:
    """Tests for build_parameters and write_build_parameters."""

    def test_deployment_location_overrides_caller_values(self) -> None:
        parameters = build_parameters(
            {"AppSyncApiName": "blog", "deploymentBucket": "stale"},
            "bucket",
            "gqlforge-api-files/abc",
        )

        assert parameters == {
            "AppSyncApiName": "blog",
            "deploymentBucket": "bucket",
            "deploymentRootKey": "gqlforge-api-files/abc",
        }

    def test_written_key_is_reused(self, resource_dir: Path, previous_dir: Path) -> None:
        """Test a key written by one build is read back by the next."""
        key = compute_deployment_key(resource_dir, None)
        write_build_parameters(
            previous_dir / "build" / "parameters.json",
            build_parameters({}, "bucket", key),
            minify=True,
        )

        assert previous_deployment_root_key(previous_dir) == key
        assert "\n" not in (previous_dir / "build" / "parameters.json").read_text().strip()
