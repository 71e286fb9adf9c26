"""Host loader - imports host objects named on the command line or in config."""

from __future__ import annotations

import importlib
import importlib.util
import inspect
import sys
from pathlib import Path
from types import ModuleType
from typing import Any


class HostLoadError(Exception):
    """Raised when a host object fails to load."""

    pass


def _import_module(target: str) -> ModuleType:
    if target.endswith(".py"):
        path = Path(target)
        if not path.exists():
            raise HostLoadError(f"Host file not found: {path}")

        spec = importlib.util.spec_from_file_location(f"mcp_hosts.{path.stem}", path)
        if spec is None or spec.loader is None:
            raise HostLoadError(f"Cannot load host module from {path}")

        module = importlib.util.module_from_spec(spec)
        sys.modules[spec.name] = module
        spec.loader.exec_module(module)
        return module

    try:
        return importlib.import_module(target)
    except ImportError as e:
        raise HostLoadError(f"Cannot import host module '{target}': {e}") from e


def load_host(reference: str) -> Any:
    """Load a host object from a ``module:attribute`` reference.

    The module part may be a dotted import path or a ``.py`` file. Classes
    are instantiated without arguments; a bare module reference returns the
    module itself, so module-level functions can be marked as tools.

    Args:
        reference: ``package.module:Name``, ``path/to/file.py:Name`` or
            ``package.module``.

    Returns:
        The host object to register.

    Raises:
        HostLoadError: If the module or attribute cannot be loaded.
    """
    target, _, attribute = reference.partition(":")
    if not target:
        raise HostLoadError(f"Invalid host reference: '{reference}'")

    module = _import_module(target)
    if not attribute:
        return module

    try:
        host = getattr(module, attribute)
    except AttributeError:
        raise HostLoadError(f"No attribute '{attribute}' in {target}") from None

    if inspect.isclass(host):
        try:
            return host()
        except TypeError as e:
            raise HostLoadError(f"Cannot instantiate {reference}: {e}") from e
    return host
