"""Unit tests for the transformer pipeline."""

from __future__ import annotations

from typing import TYPE_CHECKING
from unittest.mock import MagicMock

import pytest

from gqlforge.models import InfrastructureFragments
from gqlforge.plugins.builtin import ModelAuthTransformer, SearchableModelTransformer
from gqlforge.plugins.pipeline import (
    PipelineBuilder,
    PipelineEntry,
    PipelineStage,
    TransformerPipeline,
)
from gqlforge.schema.loader import parse_schema

if TYPE_CHECKING:
    from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter


class RecordingTransformer:
    """Custom transformer that records the resources it saw."""

    name = "recording"
    directive = "directive @recorded on OBJECT"

    def __init__(self) -> None:
        self.seen: list[str] = []

    def transform(self, schema: object, fragments: InfrastructureFragments) -> None:
        self.seen = sorted(fragments.resources)


class TestPipelineBuilder:
    """Tests for PipelineBuilder.build."""

    def test_auth_runs_last(self) -> None:
        """Test the auth transformer is last, after custom transformers."""
        custom = RecordingTransformer()

        pipeline = PipelineBuilder().build(custom_plugins=[custom])

        assert isinstance(pipeline.plugins[-1], ModelAuthTransformer)
        assert pipeline.plugins[-2] is custom
        assert pipeline.stage_of(custom) is PipelineStage.CUSTOM

    def test_search_capability_is_optional(self) -> None:
        """Test the searchable transformer is included only when requested."""
        without = PipelineBuilder().build(include_search_capability=False)
        with_search = PipelineBuilder().build(include_search_capability=True)

        assert not any(isinstance(p, SearchableModelTransformer) for p in without.plugins)
        searchable = [p for p in with_search.plugins if isinstance(p, SearchableModelTransformer)]
        assert len(searchable) == 1
        assert len(with_search.plugins) == len(without.plugins) + 1

    def test_custom_plugins_keep_declared_order(self) -> None:
        """Test custom transformers run in the order they were declared."""
        first, second = RecordingTransformer(), RecordingTransformer()

        pipeline = PipelineBuilder().build(custom_plugins=[first, second])

        custom = [e.plugin for e in pipeline.entries if e.stage is PipelineStage.CUSTOM]
        assert custom == [first, second]

    def test_fresh_builtin_instances_per_build(self) -> None:
        """Test built-in transformers are not shared between pipelines."""
        builder = PipelineBuilder()

        first = builder.build().plugins
        second = builder.build().plugins

        assert all(a is not b for a, b in zip(first, second))

    def test_directive_definitions_include_custom_grammar(self) -> None:
        """Test the grammar lists built-in and custom directives."""
        pipeline = PipelineBuilder().build(
            include_search_capability=True,
            custom_plugins=[RecordingTransformer()],
        )

        grammar = pipeline.directive_definitions()

        assert "directive @model(" in grammar
        assert "directive @searchable(" in grammar
        assert "directive @recorded on OBJECT" in grammar
        assert "directive @auth(" in grammar


class TestTransformerPipeline:
    """Tests for TransformerPipeline."""

    def test_requires_single_auth_entry(self) -> None:
        """Test a pipeline without an auth transformer is rejected."""
        with pytest.raises(ValueError, match="exactly one auth"):
            TransformerPipeline([PipelineEntry(PipelineStage.BUILTIN, 0, RecordingTransformer())])

    def test_custom_transformer_sees_builtin_output(self) -> None:
        """Test fragments flow from built-ins into custom transformers."""
        custom = RecordingTransformer()
        pipeline = PipelineBuilder().build(custom_plugins=[custom])

        fragments = pipeline.run(parse_schema("type Post @model { id: ID! }"), InfrastructureFragments())

        assert "PostTable" in custom.seen
        assert "GraphQLAPI" not in custom.seen
        assert "GraphQLAPI" in fragments.resources

    def test_transformer_failure_propagates(self) -> None:
        """Test a failing transformer stops the pipeline with its own error."""
        failing = MagicMock()
        failing.name = "failing"
        failing.transform.side_effect = RuntimeError("boom")
        pipeline = PipelineBuilder().build(custom_plugins=[failing])

        with pytest.raises(RuntimeError, match="boom"):
            pipeline.run(parse_schema("type Post { id: ID }"), InfrastructureFragments())

    def test_one_span_per_transformer(self, span_exporter: InMemorySpanExporter) -> None:
        """Test each transformer runs inside its own span."""
        pipeline = PipelineBuilder().build()

        pipeline.run(parse_schema("type Post @model { id: ID! }"), InfrastructureFragments())

        names = [s.name for s in span_exporter.get_finished_spans()]
        assert names[0] == "gqlforge.transform.model"
        assert names[-1] == "gqlforge.transform.auth"
        assert len(names) == len(pipeline.plugins)
