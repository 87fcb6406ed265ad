"""gqlforge: compile annotated GraphQL schemas into infrastructure artifacts.

A schema annotated with directives such as @model, @key or @auth is run
through an ordered pipeline of transformer plugins. Each plugin reads the
schema and adds infrastructure (tables, data sources, resolvers) to the
build. Custom transformers are loaded from paths or packages named in the
project's transform.conf.json.

Example:
    >>> from pathlib import Path
    >>> from gqlforge import CompileOptions, LocalProject, SchemaCompiler
    >>>
    >>> compiler = SchemaCompiler(LocalProject(Path(".")))
    >>> artifacts = compiler.compile(CompileOptions())
    >>> sorted(artifacts.template["Resources"])[:2]
    ['GraphQLAPI', 'GraphQLAPIKey']

Modules:
    compiler: SchemaCompiler orchestration
    project: File-system project context
    plugins: Transformer plugin contract, builtin transformers, pipeline, resolver
    schema: Schema loading and directive analysis
    migration: Legacy project migration with rollback
    build_cache: Deployment key derivation
    sanity: Checks gating destructive schema changes
    versioning: Compiler version gate and one-time warnings
"""

from __future__ import annotations

__version__ = "0.1.0"
__all__ = [
    "CompileOptions",
    "CompiledArtifacts",
    "ForgeError",
    "LocalProject",
    "SchemaCompiler",
    "get_directive_definitions",
]


def __getattr__(name: str) -> object:
    """Lazy import of package components."""
    if name == "SchemaCompiler":
        from gqlforge.compiler import SchemaCompiler

        return SchemaCompiler
    if name == "get_directive_definitions":
        from gqlforge.compiler import get_directive_definitions

        return get_directive_definitions
    if name == "LocalProject":
        from gqlforge.project import LocalProject

        return LocalProject
    if name == "CompileOptions":
        from gqlforge.models import CompileOptions

        return CompileOptions
    if name == "CompiledArtifacts":
        from gqlforge.models import CompiledArtifacts

        return CompiledArtifacts
    if name == "ForgeError":
        from gqlforge.errors import ForgeError

        return ForgeError
    msg = f"module {__name__!r} has no attribute {name!r}"
    raise AttributeError(msg)
