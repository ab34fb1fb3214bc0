"""TanyaAyomi anime and manga aggregation backend."""

from __future__ import annotations

from importlib import import_module
from typing import Any

__version__ = "1.0.0"

# Resolved on first access so importing a submodule does not build the app.
_LAZY_EXPORTS = {
    "app": "app.main",
    "create_app": "app.main",
    "settings": "app.config",
}

__all__ = ["__version__", *_LAZY_EXPORTS]


def __getattr__(name: str) -> Any:
    module_name = _LAZY_EXPORTS.get(name)
    if module_name is None:
        raise AttributeError(f"module 'app' has no attribute {name}")
    return getattr(import_module(module_name), name)
