"""Transformer plugin capability.

A transformer turns the directive-annotated parts of a schema into
infrastructure fragments. Built-in transformers subclass TransformerPlugin;
custom transformers only need to satisfy the same capability:

- ``transform(schema, fragments) -> fragments`` (required)
- ``directive``: SDL of the directive the transformer handles (optional)
- ``type_definitions``: SDL of supporting input/enum types (optional)

Example:
    >>> from gqlforge.plugins.base import TransformerPlugin
    >>> class TimestampTransformer(TransformerPlugin):
    ...     name = "timestamp"
    ...     directive = "directive @timestamp on OBJECT"
    ...
    ...     def transform(self, schema, fragments):
    ...         return fragments
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from graphql import (
    DirectiveNode,
    FieldDefinitionNode,
    ObjectTypeDefinitionNode,
    value_from_ast_untyped,
)

if TYPE_CHECKING:
    from collections.abc import Iterator

    from gqlforge.models import InfrastructureFragments
    from gqlforge.schema.loader import ParsedSchema


class TransformerPlugin(ABC):
    """Abstract base class for built-in transformers.

    Instances hold no state between compiles; configuration is passed to
    the constructor and the pipeline creates fresh instances per compile.

    Attributes:
        name: Short identifier used in logs and spans.
        directive: Directive grammar (SDL) handled by this transformer.
        type_definitions: Supporting type grammar (SDL).
    """

    name: str = "transformer"
    directive: str | None = None
    type_definitions: tuple[str, ...] = ()

    @abstractmethod
    def transform(
        self,
        schema: ParsedSchema,
        fragments: InfrastructureFragments,
    ) -> InfrastructureFragments:
        """Add this transformer's infrastructure to ``fragments``.

        Args:
            schema: The parsed project schema.
            fragments: Infrastructure produced by earlier transformers.

        Returns:
            The updated fragments (may be the same object).
        """
        ...

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


def conforms(candidate: Any) -> bool:
    """Whether ``candidate`` satisfies the transformer capability."""
    return callable(getattr(candidate, "transform", None))


def plugin_name(plugin: Any) -> str:
    """Name of a transformer, falling back to its class name."""
    name = getattr(plugin, "name", None)
    return name if isinstance(name, str) and name else type(plugin).__name__


def plugin_grammar(plugin: Any) -> str:
    """Directive and type grammar declared by a transformer, as SDL."""
    parts: list[str] = []
    directive = getattr(plugin, "directive", None)
    if directive:
        parts.append(str(directive).strip())
    parts.extend(str(t).strip() for t in getattr(plugin, "type_definitions", None) or ())
    return "\n".join(parts)


# =============================================================================
# Schema helpers shared by transformers
# =============================================================================


def object_types(schema: ParsedSchema) -> Iterator[ObjectTypeDefinitionNode]:
    """Object type definitions in declaration order (extensions excluded)."""
    for definition in schema.document.definitions:
        if isinstance(definition, ObjectTypeDefinitionNode):
            yield definition


def find_directive(
    node: ObjectTypeDefinitionNode | FieldDefinitionNode,
    name: str,
) -> DirectiveNode | None:
    """First directive called ``name`` on a node, case-insensitively."""
    for directive in node.directives or ():
        if directive.name.value.lower() == name:
            return directive
    return None


def find_directives(
    node: ObjectTypeDefinitionNode | FieldDefinitionNode,
    name: str,
) -> list[DirectiveNode]:
    """Every directive called ``name`` on a node (repeatable directives)."""
    return [d for d in node.directives or () if d.name.value.lower() == name]


def directive_arguments(directive: DirectiveNode) -> dict[str, Any]:
    """Literal arguments of a directive as plain Python values."""
    return {arg.name.value: value_from_ast_untyped(arg.value) for arg in directive.arguments or ()}


def types_with_directive(
    schema: ParsedSchema,
    name: str,
) -> Iterator[tuple[ObjectTypeDefinitionNode, DirectiveNode]]:
    """Object types annotated with ``name``, with the directive node."""
    for definition in object_types(schema):
        directive = find_directive(definition, name)
        if directive is not None:
            yield definition, directive


def fields_with_directive(
    schema: ParsedSchema,
    name: str,
) -> Iterator[tuple[ObjectTypeDefinitionNode, FieldDefinitionNode, DirectiveNode]]:
    """Fields annotated with ``name``, with their parent type and directive node."""
    for definition in object_types(schema):
        for field in definition.fields or ():
            directive = find_directive(field, name)
            if directive is not None:
                yield definition, field, directive


__all__ = [
    "TransformerPlugin",
    "conforms",
    "directive_arguments",
    "fields_with_directive",
    "find_directive",
    "find_directives",
    "object_types",
    "plugin_grammar",
    "plugin_name",
    "types_with_directive",
]
