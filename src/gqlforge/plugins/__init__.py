"""Transformer plugins: capability, built-ins, resolution and ordering."""

from __future__ import annotations

from gqlforge.plugins.base import TransformerPlugin, conforms, plugin_grammar, plugin_name
from gqlforge.plugins.pipeline import PipelineBuilder, PipelineStage, TransformerPipeline
from gqlforge.plugins.resolver import LoaderStrategy, PluginResolver

__all__ = [
    "LoaderStrategy",
    "PipelineBuilder",
    "PipelineStage",
    "PluginResolver",
    "TransformerPipeline",
    "TransformerPlugin",
    "conforms",
    "plugin_grammar",
    "plugin_name",
]
