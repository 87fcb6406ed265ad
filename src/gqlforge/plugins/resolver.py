"""Custom transformer resolution.

This module maps the transformer references declared in transform.conf.json
to loaded transformer instances. A reference is resolved by exactly one of
a closed set of loader strategies, tried in this order (the first that loads wins):

1. PATH: the reference is an absolute path to a ``.py`` file or a package
   directory. Failure is final; no other strategy is tried.
2. LOCAL_PACKAGE: a dotted module name found under the project-local
   plugin root (``<project>/.gqlforge/plugins`` by default).
3. GLOBAL_PACKAGE: a dotted module name found under the global roots
   (the interpreter's ``sys.path`` by default). A module found locally that
   fails to import is logged and the global roots are tried next; the last
   import failure is chained onto the final PluginLoadError.

A reference may carry a ``file://`` prefix, which is stripped. Hyphens in
package names are read as underscores, so ``my-transformer`` and
``my_transformer`` name the same module.

The loaded module must expose a module-level ``transformer``: either a class
constructible with no arguments, or a ready-made transformer instance.

Modules are executed from source on every load, never served from
``sys.modules``, so edits to a plugin are picked up by the next compile.
A resolver caches loaded transformers per reference for its own lifetime;
create one resolver per compile.

Example:
    >>> from gqlforge.plugins.resolver import PluginResolver
    >>> resolver = PluginResolver(project_root, resource_dir / "transform.conf.json")
    >>> plugins = resolver.resolve_all(["my_transformer", "/opt/x/transformer.py"])
"""

from __future__ import annotations

import hashlib
import importlib.util
import re
import sys
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from gqlforge.errors import PluginContractError, PluginLoadError
from gqlforge.plugins.base import conforms, plugin_name
from gqlforge.telemetry.tracing import create_span

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence
    from types import ModuleType

logger = structlog.get_logger(__name__)

LOCAL_PLUGIN_DIR = Path(".gqlforge") / "plugins"
"""Project-relative directory searched for custom transformers."""

TRANSFORMER_ATTRIBUTE = "transformer"
"""Module attribute exposing the transformer class or instance."""

_FILE_URL = re.compile(r"^file://(.*)\s*$", re.MULTILINE)
_MODULE_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)*$")


class LoaderStrategy(Enum):
    """How a transformer reference was resolved."""

    PATH = "path"
    LOCAL_PACKAGE = "local_package"
    GLOBAL_PACKAGE = "global_package"


def strip_file_url(reference: str) -> str:
    """Remove a ``file://`` prefix and surrounding whitespace."""
    match = _FILE_URL.match(reference)
    return (match.group(1) if match else reference).strip()


def _isolated_module_name(module_path: str, location: Path) -> str:
    digest = hashlib.sha256(str(location).encode("utf-8")).hexdigest()[:12]
    return f"gqlforge_transformer_{re.sub(r'[^0-9A-Za-z_]', '_', module_path)}_{digest}"


def _purge_modules(name: str) -> None:
    """Drop a module and its submodules from ``sys.modules``."""
    for key in [k for k in sys.modules if k == name or k.startswith(f"{name}.")]:
        del sys.modules[key]


def _exec_module(module_path: str, location: Path) -> ModuleType:
    """Execute a module file or package directory under an isolated name.

    Raises:
        FileNotFoundError: If ``location`` is neither a file nor a package.
        Exception: Whatever the module raises while executing.
    """
    if location.is_dir():
        init = location / "__init__.py"
        if not init.is_file():
            raise FileNotFoundError(f"{location} is not a Python package (missing __init__.py)")
        search_locations: list[str] | None = [str(location)]
        file_location = init
    elif location.is_file():
        search_locations = None
        file_location = location
    else:
        raise FileNotFoundError(f"No such transformer module: {location}")

    name = _isolated_module_name(module_path, file_location.resolve())
    spec = importlib.util.spec_from_file_location(
        name,
        file_location,
        submodule_search_locations=search_locations,
    )
    if spec is None or spec.loader is None:
        raise ImportError(f"Cannot create a module spec for {file_location}")

    _purge_modules(name)
    module = importlib.util.module_from_spec(spec)
    sys.modules[name] = module
    try:
        spec.loader.exec_module(module)
    except BaseException:
        _purge_modules(name)
        raise
    return module


def locate_module(module_path: str, root: Path) -> Path | None:
    """Find a dotted module under ``root`` as a package directory or ``.py`` file."""
    parts = module_path.replace("-", "_").split(".")
    candidate = root.joinpath(*parts)
    if (candidate / "__init__.py").is_file():
        return candidate
    module_file = candidate.with_suffix(".py")
    if module_file.is_file():
        return module_file
    return None


class PluginResolver:
    """Resolves custom transformer references to transformer instances.

    Attributes:
        project_root: Root directory of the project.
        config_path: The configuration file declaring the references, named
            in every load error.
        local_plugin_root: Project-local plugin directory.
        global_plugin_roots: Directories searched after the local root.
    """

    def __init__(
        self,
        project_root: Path,
        config_path: Path | None = None,
        local_plugin_root: Path | None = None,
        global_plugin_roots: Sequence[Path] | None = None,
    ) -> None:
        self.project_root = project_root
        self.config_path = config_path
        self.local_plugin_root = local_plugin_root or project_root / LOCAL_PLUGIN_DIR
        if global_plugin_roots is None:
            global_plugin_roots = [Path(p) for p in sys.path if p and Path(p).is_dir()]
        self.global_plugin_roots = list(global_plugin_roots)

        # Key: reference as declared, Value: (transformer, strategy)
        self._loaded: dict[str, tuple[Any, LoaderStrategy]] = {}

    def resolve(self, reference: str) -> Any:
        """Load the transformer named by ``reference``.

        Args:
            reference: Path or dotted module name, optionally ``file://``-prefixed.

        Returns:
            A transformer instance.

        Raises:
            PluginLoadError: If the reference is empty or cannot be loaded.
            PluginContractError: If the module does not expose a usable transformer.
        """
        if reference in self._loaded:
            return self._loaded[reference][0]

        module_path = strip_file_url(reference)
        if not module_path:
            raise PluginLoadError(
                reference,
                self.config_path,
                message=f"Invalid value specified for transformer: '{reference}'",
            )

        with create_span(
            "gqlforge.resolve_plugin",
            attributes={"gqlforge.plugin.reference": module_path},
        ) as span:
            logger.debug("resolve_plugin.started", reference=module_path)
            module, strategy = self._load(reference, module_path)
            plugin = self._instantiate(module_path, module)
            span.set_attribute("gqlforge.plugin.strategy", strategy.value)

        self._loaded[reference] = (plugin, strategy)
        logger.debug(
            "resolve_plugin.success",
            reference=module_path,
            strategy=strategy.value,
            plugin=plugin_name(plugin),
        )
        return plugin

    def resolve_all(self, references: Iterable[str]) -> list[Any]:
        """Resolve references in declared order."""
        return [self.resolve(reference) for reference in references]

    def strategy_for(self, reference: str) -> LoaderStrategy | None:
        """Strategy that resolved ``reference``, if it has been resolved."""
        entry = self._loaded.get(reference)
        return entry[1] if entry else None

    def _load(self, reference: str, module_path: str) -> tuple[ModuleType, LoaderStrategy]:
        path = Path(module_path)
        if path.is_absolute():
            if not path.exists() and path.with_suffix(".py").is_file():
                path = path.with_suffix(".py")
            return self._load_path(reference, module_path, path), LoaderStrategy.PATH

        if not _MODULE_NAME.match(module_path.replace("-", "_")):
            raise PluginLoadError(
                reference,
                self.config_path,
                message=f"Invalid value specified for transformer: '{reference}'",
            )

        last_error: Exception | None = None
        for strategy, roots in (
            (LoaderStrategy.LOCAL_PACKAGE, [self.local_plugin_root]),
            (LoaderStrategy.GLOBAL_PACKAGE, self.global_plugin_roots),
        ):
            for root in roots:
                location = locate_module(module_path, root)
                if location is None:
                    continue
                try:
                    return _exec_module(module_path, location), strategy
                except Exception as e:
                    logger.warning(
                        "resolve_plugin.import_failed",
                        reference=module_path,
                        strategy=strategy.value,
                        location=str(location),
                        error=str(e),
                    )
                    last_error = e

        logger.error(
            "resolve_plugin.not_found",
            reference=module_path,
            config_path=str(self.config_path) if self.config_path else None,
        )
        if last_error is not None:
            raise PluginLoadError(reference, self.config_path, cause=last_error) from last_error
        raise PluginLoadError(reference, self.config_path)

    def _load_path(self, reference: str, module_path: str, location: Path) -> ModuleType:
        try:
            return _exec_module(module_path, location)
        except Exception as e:
            logger.error(
                "resolve_plugin.import_failed",
                reference=module_path,
                location=str(location),
                error=str(e),
            )
            raise PluginLoadError(reference, self.config_path, cause=e) from e

    @staticmethod
    def _instantiate(module_path: str, module: ModuleType) -> Any:
        if not hasattr(module, TRANSFORMER_ATTRIBUTE):
            raise PluginContractError(
                module_path,
                f"module has no '{TRANSFORMER_ATTRIBUTE}' attribute",
            )
        exported = getattr(module, TRANSFORMER_ATTRIBUTE)

        if isinstance(exported, type):
            try:
                plugin = exported()
            except TypeError as e:
                raise PluginContractError(
                    module_path,
                    f"class {exported.__name__} cannot be constructed without arguments ({e})",
                ) from e
        else:
            plugin = exported

        if not conforms(plugin):
            raise PluginContractError(
                module_path,
                f"{type(plugin).__name__} does not define a callable 'transform'",
            )
        return plugin


__all__ = [
    "LOCAL_PLUGIN_DIR",
    "TRANSFORMER_ATTRIBUTE",
    "LoaderStrategy",
    "PluginResolver",
    "locate_module",
    "strip_file_url",
]
