"""pullstrap package bootstrap.

This module exposes lightweight metadata that other modules (and packaging
machinery) rely upon.
"""
from __future__ import annotations

__all__ = ["__version__"]

# NOTE: The version is duplicated in ``pyproject.toml`` and managed by Hatch.
__version__ = "0.1.0"
