"""Lazy imports for optional dependencies."""

from __future__ import annotations

import importlib
from functools import lru_cache
from types import ModuleType


def _import_optional(module: str, purpose: str, extra: str) -> ModuleType:
    try:
        return importlib.import_module(module)
    except ImportError as e:
        msg = (
            f"{purpose} requires the '{module}' package. "
            f"Install with: python -m pip install 'pybinfit[{extra}]' or python -m pip install {module}"
        )
        raise ImportError(msg) from e


@lru_cache(maxsize=1)
def get_hist() -> ModuleType:
    """
    Lazily import and return the hist module.

    Raises:
        ImportError: If hist is not installed
    """
    return _import_optional("hist", "Histogram export", "visualization")
