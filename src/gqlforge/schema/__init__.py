"""Schema loading and directive analysis."""

from __future__ import annotations

from gqlforge.schema.directives import collect_directives_by_type_names
from gqlforge.schema.loader import ParsedSchema, load_project_schema, parse_schema

__all__ = [
    "ParsedSchema",
    "collect_directives_by_type_names",
    "load_project_schema",
    "parse_schema",
]
