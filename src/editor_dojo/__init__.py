"""editor-dojo progress ledger package."""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version

__all__ = ["__version__"]

try:
    __version__ = version("editor-dojo")
except PackageNotFoundError:
    __version__ = "0.1.0"
