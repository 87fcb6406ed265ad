"""Shared pytest fixtures for gqlforge tests.

NOTE: Do NOT add __init__.py to test directories - pytest uses importlib mode
which can cause namespace collisions with __init__.py files.
"""

from __future__ import annotations

import json
import shutil
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING, Any

import pytest

if TYPE_CHECKING:
    from collections.abc import Generator

    from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter


BLOG_SCHEMA = """\
type Post @model @auth(rules: [{allow: public}]) {
  id: ID!
  title: String!
  content: String
}
"""

API_KEY_AUTH = {
    "defaultAuthentication": {"authenticationType": "API_KEY"},
    "additionalAuthenticationProviders": [],
}


def write_json(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2), encoding="utf-8")


@pytest.fixture(autouse=True)
def reset_tracer_cache() -> Generator[None, None, None]:
    """Isolate the cached tracers between tests."""
    from gqlforge.telemetry.tracing import reset_tracer

    reset_tracer()
    yield
    reset_tracer()


@pytest.fixture
def span_exporter(monkeypatch: pytest.MonkeyPatch) -> InMemorySpanExporter:
    """Route gqlforge spans into an in-memory exporter."""
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import SimpleSpanProcessor
    from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

    from gqlforge.telemetry import tracing

    exporter = InMemorySpanExporter()
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    monkeypatch.setitem(tracing._tracers, tracing.TRACER_NAME, provider.get_tracer(tracing.TRACER_NAME))
    return exporter


@pytest.fixture
def resource_dir(tmp_path: Path) -> Path:
    """An API resource directory holding the blog schema."""
    directory = tmp_path / "api" / "blog"
    directory.mkdir(parents=True)
    (directory / "schema.graphql").write_text(BLOG_SCHEMA, encoding="utf-8")
    return directory


@pytest.fixture
def make_project(tmp_path: Path) -> Callable[..., Path]:
    """Factory for projects laid out on disk.

    Args:
        schema: Schema of the ``blog`` API resource.
        deployed: Copy the backend to the deployed backend directory.
        legacy: Make the deployed copy look like a project compiled before
            transform.conf.json existed (root template with resolvers).
        cli_json: Content of cli.json.
        storage: Add an S3 storage resource.
        output: Output recorded for the API resource.

    Returns:
        The project root.
    """

    def _make(
        schema: str = BLOG_SCHEMA,
        *,
        deployed: bool = False,
        legacy: bool = False,
        cli_json: dict[str, Any] | None = None,
        storage: bool = False,
        output: dict[str, Any] | None = None,
    ) -> Path:
        root = tmp_path / "project"
        backend = root / "backend"
        api = {
            "blog": {
                "service": "AppSync",
                "providerPlugin": "awscloudformation",
                "output": output if output is not None else {"authConfig": API_KEY_AUTH},
            }
        }
        backend_config: dict[str, Any] = {"api": api}
        if storage:
            backend_config["storage"] = {"photos": {"service": "S3", "providerPlugin": "awscloudformation"}}
            write_json(backend / "storage" / "photos" / "parameters.json", {"bucketName": "photos"})
        write_json(backend / "backend-config.json", backend_config)
        write_json(
            backend / "project-meta.json",
            {
                "providers": {
                    "awscloudformation": {
                        "DeploymentBucketName": "blog-deployment",
                        "StackName": "gqlforge-blog-dev",
                        "AppId": "d1234",
                        "AdminUIEnabled": False,
                    }
                }
            },
        )
        resource = backend / "api" / "blog"
        resource.mkdir(parents=True)
        (resource / "schema.graphql").write_text(schema, encoding="utf-8")
        write_json(resource / "parameters.json", {"AppSyncApiName": "blog"})
        if cli_json is not None:
            write_json(root / "cli.json", cli_json)

        if deployed or legacy:
            cloud = root / "current-cloud-backend"
            shutil.copytree(backend, cloud)
            if legacy:
                write_json(
                    cloud / "api" / "blog" / "cloudformation-template.json",
                    LEGACY_TEMPLATE,
                )
                shutil.copy(
                    cloud / "api" / "blog" / "cloudformation-template.json",
                    resource / "cloudformation-template.json",
                )
        return root

    return _make


LEGACY_TEMPLATE = {
    "AWSTemplateFormatVersion": "2010-09-09",
    "Resources": {
        "GraphQLAPI": {"Type": "AWS::AppSync::GraphQLApi", "Properties": {"Name": "blog"}},
        "PostTable": {
            "Type": "AWS::DynamoDB::Table",
            "Properties": {"KeySchema": [{"AttributeName": "id", "KeyType": "HASH"}]},
        },
        "GetPostResolver": {
            "Type": "AWS::AppSync::Resolver",
            "Properties": {"TypeName": "Query", "FieldName": "getPost"},
        },
        "ListPostsResolver": {
            "Type": "AWS::AppSync::Resolver",
            "Properties": {"TypeName": "Query", "FieldName": "listPosts"},
        },
    },
}


@pytest.fixture
def legacy_template() -> dict[str, Any]:
    """Root template of a legacy project, resolvers included."""
    return json.loads(json.dumps(LEGACY_TEMPLATE))
