"""Load and parse the annotated GraphQL schema of an API resource.

A resource keeps its schema either in a single ``schema.graphql`` file or
as any number of ``.graphql`` files under a ``schema/`` directory. The
single file wins when both exist.

Example:
    >>> from gqlforge.schema.loader import load_project_schema
    >>> schema = load_project_schema(Path("backend/api/blog"))
    >>> len(schema.document.definitions)
    3
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import structlog
from graphql import DocumentNode, GraphQLSyntaxError, Source, parse, print_ast

from gqlforge.errors import ConfigurationError, ParseError
from gqlforge.models import SCHEMA_DIR_NAME, SCHEMA_FILE_NAME
from gqlforge.telemetry.tracing import traced

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ParsedSchema:
    """An annotated schema parsed for one compile.

    Attributes:
        document: The graphql-core document with every definition of the project.
        sources: Names of the files (or "<string>") the definitions came from.
    """

    document: DocumentNode
    sources: tuple[str, ...] = ("<string>",)

    @property
    def sdl(self) -> str:
        """The schema printed back as SDL."""
        return print_ast(self.document)


def parse_schema(text: str, source: str = "<string>") -> ParsedSchema:
    """Parse SDL text.

    Directive names are not validated here; plugins declare their grammar
    separately.

    Raises:
        ParseError: If the text is not valid GraphQL SDL.
    """
    try:
        document = parse(Source(text, source), no_location=False)
    except GraphQLSyntaxError as e:
        line = column = None
        if e.locations:
            line, column = e.locations[0].line, e.locations[0].column
        raise ParseError(e.message, source=source, line=line, column=column) from e
    return ParsedSchema(document=document, sources=(source,))


def schema_files(resource_dir: Path) -> list[Path]:
    """The schema files of a resource directory, in load order."""
    schema_file = resource_dir / SCHEMA_FILE_NAME
    if schema_file.is_file():
        return [schema_file]
    schema_dir = resource_dir / SCHEMA_DIR_NAME
    if schema_dir.is_dir():
        return sorted(p for p in schema_dir.rglob("*.graphql") if p.is_file())
    return []


@traced(operation_name="gqlforge.load_schema")
def load_project_schema(resource_dir: Path) -> ParsedSchema:
    """Read and parse every schema file of a resource directory.

    Each file is parsed on its own so syntax errors point at the right file
    and line. The definitions are then merged into one document.

    Raises:
        ConfigurationError: If the resource has no schema file.
        ParseError: If any schema file is malformed.
    """
    files = schema_files(resource_dir)
    if not files:
        raise ConfigurationError(
            f"Could not find a schema in {resource_dir}",
            {"resource_dir": str(resource_dir)},
            remediation=(
                f"Edit your schema at {resource_dir / SCHEMA_FILE_NAME} or place "
                f".graphql files in a directory at {resource_dir / SCHEMA_DIR_NAME}"
            ),
        )

    parsed = [parse_schema(path.read_text(encoding="utf-8"), str(path)) for path in files]
    definitions = tuple(d for schema in parsed for d in schema.document.definitions)
    logger.debug(
        "load_project_schema.completed",
        resource_dir=str(resource_dir),
        files=len(files),
        definitions=len(definitions),
    )
    return ParsedSchema(
        document=DocumentNode(definitions=definitions),
        sources=tuple(str(p) for p in files),
    )


__all__ = [
    "ParsedSchema",
    "load_project_schema",
    "parse_schema",
    "schema_files",
]
