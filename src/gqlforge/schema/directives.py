"""Directive usage analysis.

Builds the DirectiveUsageMap used to decide which optional plugins run and
which advisories apply.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from graphql import DocumentNode, TypeDefinitionNode, TypeExtensionNode

from gqlforge.models import DirectiveUsageMap
from gqlforge.schema.loader import ParsedSchema, parse_schema

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

    from graphql import DirectiveNode, Node


def _node_directives(node: Node) -> Iterator[DirectiveNode]:
    yield from getattr(node, "directives", None) or ()


def _collect(node: Node) -> Iterator[str]:
    """Directive names on a type and on its fields, arguments and enum values."""
    for directive in _node_directives(node):
        yield directive.name.value
    members: Iterable[Node] = (
        getattr(node, "fields", None) or getattr(node, "values", None) or ()
    )
    for member in members:
        for directive in _node_directives(member):
            yield directive.name.value
        for argument in getattr(member, "arguments", None) or ():
            for directive in _node_directives(argument):
                yield directive.name.value


def collect_directives_by_type_names(
    schema: ParsedSchema | DocumentNode | str,
) -> DirectiveUsageMap:
    """Map every type of the schema to the directives applied to it.

    Extensions contribute to the type they extend. Names are lowercased, so
    ``@Model`` and ``@model`` count once.

    Args:
        schema: Parsed schema, raw document, or SDL text.

    Returns:
        Usage per type (types without directives map to an empty set) and
        the union over all types.

    Raises:
        ParseError: If ``schema`` is SDL text that does not parse.
    """
    if isinstance(schema, str):
        schema = parse_schema(schema)
    document = schema.document if isinstance(schema, ParsedSchema) else schema

    types: dict[str, set[str]] = {}
    for definition in document.definitions:
        if not isinstance(definition, (TypeDefinitionNode, TypeExtensionNode)):
            continue
        used = types.setdefault(definition.name.value, set())
        used.update(name.lower() for name in _collect(definition))

    frozen = {name: frozenset(used) for name, used in types.items()}
    union: frozenset[str] = frozenset().union(*frozen.values()) if frozen else frozenset()
    return DirectiveUsageMap(types=frozen, directives=union)


__all__ = ["collect_directives_by_type_names"]
