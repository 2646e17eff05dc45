#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Zoom level resolution across layers.
"""
from typing import Iterable, Union

from raster_catalog.catalog.catalog import LayerCatalog
from raster_catalog.core.errors import LayerNotFoundError
from raster_catalog.core.logging_config import get_module_logger

# Initialize logger
logger = get_module_logger(__name__)


def finest_zoom(catalog: LayerCatalog, names: Union[str, Iterable[str]]) -> int:
    """
    Highest zoom level across the given layers.

    Parameters
    ----------
    catalog : LayerCatalog
        Catalog to query.
    names : str or iterable of str
        One layer name, or several.

    Returns
    -------
    int
        The maximum over all names of each name's highest zoom. A name is
        not required to have data at the returned zoom.

    Raises
    ------
    LayerNotFoundError
        If ``names`` is empty or any name has no zoom level.
    """
    if isinstance(names, str):
        names = [names]
    names = list(names)
    if not names:
        raise LayerNotFoundError("<no layers given>")

    finest = None
    for name in names:
        zooms = catalog.list_zooms(name)
        if not zooms:
            raise LayerNotFoundError(name)
        zoom = max(zooms)
        finest = zoom if finest is None else max(finest, zoom)

    logger.debug(f"Finest zoom of {names}: {finest}")
    return finest
