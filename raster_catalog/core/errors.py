#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Error types raised by the raster layer catalog.

Catalog and zoom lookups fail fast with these errors rather than returning
a default value, so callers can tell a missing layer apart from a type
problem or an unreachable store.
"""


class CatalogError(Exception):
    """Base class for all catalog errors."""


class LayerNotFoundError(CatalogError, LookupError):
    """A named layer, or a zoom level of it, is absent from the catalog."""

    def __init__(self, name: str, zoom=None):
        self.name = name
        self.zoom = zoom
        if zoom is None:
            message = f"Layer not found: {name}"
        else:
            message = f"Layer not found: {name} at zoom {zoom}"
        super().__init__(message)


class TypeMismatchError(CatalogError, TypeError):
    """A key/value type combination the catalog cannot index or decode."""

    def __init__(self, key_class, value_class, detail: str = ""):
        self.key_class = key_class
        self.value_class = value_class
        message = f"Unsupported key/value types: key={key_class!r}, value={value_class!r}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class StoreUnavailableError(CatalogError, OSError):
    """The backing store location cannot be reached."""


class EngineConfigurationError(CatalogError, ValueError):
    """The execution engine was configured with invalid settings."""
