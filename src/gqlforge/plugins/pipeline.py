"""Ordered transformer pipeline.

The order of transformers is a contract, encoded in the PipelineStage table
rather than in the order of calls that build the list:

    ==========  =====================================================
    Stage       Members
    ==========  =====================================================
    BUILTIN     model, versioned, function, http, key, connection,
                predictions (fixed relative order, always present)
    CAPABILITY  searchable (only when search capability is requested)
    CUSTOM      resolved custom transformers, in declared order
    AUTH        auth (always present, always last)
    ==========  =====================================================

Entries are sorted by stage, then by insertion order within a stage, so
auth is last whatever order entries are added in.

Example:
    >>> pipeline = PipelineBuilder().build(
    ...     include_search_capability=True,
    ...     custom_plugins=[my_transformer],
    ...     auth_config=auth_config,
    ... )
    >>> [plugin_name(p) for p in pipeline.plugins][-1]
    'auth'
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import TYPE_CHECKING, Any

import structlog

from gqlforge.plugins.base import plugin_grammar, plugin_name
from gqlforge.plugins.builtin import (
    FunctionTransformer,
    HttpTransformer,
    KeyTransformer,
    ModelAuthTransformer,
    ModelConnectionTransformer,
    ModelTransformer,
    PredictionsTransformer,
    SearchableModelTransformer,
    VersionedModelTransformer,
)
from gqlforge.telemetry.tracing import create_span

if TYPE_CHECKING:
    from collections.abc import Sequence

    from gqlforge.models import AuthConfig, InfrastructureFragments, StorageConfig
    from gqlforge.schema.loader import ParsedSchema

logger = structlog.get_logger(__name__)


class PipelineStage(IntEnum):
    """Pipeline stages; lower values run first."""

    BUILTIN = 10
    CAPABILITY = 20
    CUSTOM = 30
    AUTH = 40


@dataclass(frozen=True)
class PipelineEntry:
    """A transformer placed in a stage."""

    stage: PipelineStage
    position: int
    plugin: Any


class TransformerPipeline:
    """Transformers of one compile, sorted by stage.

    Raises:
        ValueError: If the entries do not contain exactly one AUTH transformer.
    """

    def __init__(self, entries: Sequence[PipelineEntry]) -> None:
        auth = [e for e in entries if e.stage is PipelineStage.AUTH]
        if len(auth) != 1:
            raise ValueError(f"A pipeline needs exactly one auth transformer, got {len(auth)}")
        self._entries = sorted(entries, key=lambda e: (e.stage, e.position))

    @property
    def entries(self) -> list[PipelineEntry]:
        return list(self._entries)

    @property
    def plugins(self) -> list[Any]:
        """Transformers in execution order."""
        return [e.plugin for e in self._entries]

    def stage_of(self, plugin: Any) -> PipelineStage:
        for entry in self._entries:
            if entry.plugin is plugin:
                return entry.stage
        raise KeyError(plugin_name(plugin))

    def run(self, schema: ParsedSchema, fragments: InfrastructureFragments) -> InfrastructureFragments:
        """Run every transformer in order, threading the fragments through.

        Transformer failures propagate unchanged.
        """
        for entry in self._entries:
            name = plugin_name(entry.plugin)
            with create_span(
                f"gqlforge.transform.{name}",
                attributes={"gqlforge.plugin.stage": entry.stage.name},
            ):
                logger.debug("transform.started", plugin=name, stage=entry.stage.name)
                result = entry.plugin.transform(schema, fragments)
                if result is not None:
                    fragments = result
        logger.info(
            "transform.completed",
            plugins=len(self._entries),
            resources=len(fragments.resources),
            resolvers=len(fragments.resolvers),
        )
        return fragments

    def directive_definitions(self) -> str:
        """Directive and type grammar of every transformer, in pipeline order."""
        return "\n".join(g for g in (plugin_grammar(p) for p in self.plugins) if g)


class PipelineBuilder:
    """Assembles the TransformerPipeline for one compile."""

    @staticmethod
    def builtin_plugins(storage_config: StorageConfig | None = None) -> list[Any]:
        """Fresh instances of the structural transformers, in their fixed order."""
        return [
            ModelTransformer(),
            VersionedModelTransformer(),
            FunctionTransformer(),
            HttpTransformer(),
            KeyTransformer(),
            ModelConnectionTransformer(),
            PredictionsTransformer(storage_config),
        ]

    def build(
        self,
        include_search_capability: bool = False,
        storage_config: StorageConfig | None = None,
        custom_plugins: Sequence[Any] = (),
        auth_config: AuthConfig | None = None,
        admin_mode: bool = False,
    ) -> TransformerPipeline:
        """Build the ordered pipeline.

        Args:
            include_search_capability: Add the searchable transformer.
            storage_config: Storage binding for the predictions transformer.
            custom_plugins: Resolved custom transformers in declared order.
            auth_config: Authorization configuration for the auth transformer.
            admin_mode: Whether administrative (IAM) access is enabled.

        Returns:
            The pipeline, auth last.
        """
        entries: list[PipelineEntry] = []

        def add(stage: PipelineStage, plugin: Any) -> None:
            entries.append(PipelineEntry(stage=stage, position=len(entries), plugin=plugin))

        for plugin in self.builtin_plugins(storage_config):
            add(PipelineStage.BUILTIN, plugin)
        if include_search_capability:
            add(PipelineStage.CAPABILITY, SearchableModelTransformer())
        for plugin in custom_plugins:
            add(PipelineStage.CUSTOM, plugin)
        add(PipelineStage.AUTH, ModelAuthTransformer(auth_config, admin_mode=admin_mode))

        pipeline = TransformerPipeline(entries)
        logger.debug(
            "build_pipeline.completed",
            plugins=[plugin_name(p) for p in pipeline.plugins],
            search=include_search_capability,
            admin_mode=admin_mode,
        )
        return pipeline


__all__ = [
    "PipelineBuilder",
    "PipelineEntry",
    "PipelineStage",
    "TransformerPipeline",
]
