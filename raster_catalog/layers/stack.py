#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Band stacking of layers into one multiband layer.

Two layers are stacked by joining their tiles on key and concatenating the
bands of the left tile with the bands of the right tile. Every band is
conformed to a fixed tile size and to float64 cells with NaN as no-data, so
layers with different cell types can be combined.
"""
import functools
from typing import Optional, Sequence, Tuple

import numpy as np

from raster_catalog.catalog.catalog import LayerCatalog
from raster_catalog.catalog.index import resolve_types
from raster_catalog.catalog.zoom import finest_zoom
from raster_catalog.core.config import DEFAULT_TILE_SIZE
from raster_catalog.core.engine import LocalEngine
from raster_catalog.core.errors import LayerNotFoundError, TypeMismatchError
from raster_catalog.core.logging_config import get_module_logger
from raster_catalog.core.types import (
    KeyClass, LayerCollection, LayerId, TileLayerMetadata, ValueClass, as_multiband,
)
from raster_catalog.utils.utils import timer

# Initialize logger
logger = get_module_logger(__name__)

DEFAULT_STACK_TILE_SIZE: Tuple[int, int] = (DEFAULT_TILE_SIZE, DEFAULT_TILE_SIZE)


def conform_band(band: np.ndarray, tile_size: Tuple[int, int],
                 metadata: Optional[TileLayerMetadata] = None) -> np.ndarray:
    """
    Crop or pad one band to ``tile_size`` as float64.

    Parameters
    ----------
    band : np.ndarray
        2-D band of shape ``(rows, cols)``.
    tile_size : tuple of int
        Target ``(cols, rows)``. Larger bands keep their top-left corner;
        smaller bands are padded with NaN on the right and bottom.
    metadata : TileLayerMetadata, optional
        Metadata declaring the band's no-data value; those cells become NaN.

    Returns
    -------
    np.ndarray
        New float64 array of shape ``(rows, cols)``.
    """
    cols, rows = tile_size
    out = np.full((rows, cols), np.nan, dtype=np.float64)
    cropped = band[:rows, :cols]
    values = cropped.astype(np.float64)
    if metadata is not None:
        values[metadata.nodata_mask(cropped)] = np.nan
    out[:values.shape[0], :values.shape[1]] = values
    return out


def _stack_tiles(pair, metadata_a: TileLayerMetadata, metadata_b: TileLayerMetadata,
                 tile_size: Tuple[int, int]) -> np.ndarray:
    tile_a, tile_b = pair
    bands = [conform_band(band, tile_size, metadata_a) for band in as_multiband(tile_a)]
    bands += [conform_band(band, tile_size, metadata_b) for band in as_multiband(tile_b)]
    return np.stack(bands)


@timer
def stack(a: LayerCollection, b: LayerCollection,
          tile_size: Tuple[int, int] = DEFAULT_STACK_TILE_SIZE,
          engine: Optional[LocalEngine] = None) -> LayerCollection:
    """
    Stack the bands of ``b`` after the bands of ``a``.

    Parameters
    ----------
    a, b : LayerCollection
        Layers to stack; single-band layers count as one band.
    tile_size : tuple of int, optional
        Output tile ``(cols, rows)``, by default (256, 256).
    engine : LocalEngine, optional
        Engine for the per-tile work, by default a LocalEngine from ENGINE_CONFIG.

    Returns
    -------
    LayerCollection
        Multiband float64 layer holding only keys present in both inputs.
        Its metadata is ``a``'s with the new cell type and tile size.

    Raises
    ------
    TypeMismatchError
        If the inputs have different or unsupported key classes.
    """
    key_a, _ = resolve_types(a.key_class, a.value_class)
    key_b, _ = resolve_types(b.key_class, b.value_class)
    if key_a is not key_b:
        raise TypeMismatchError(key_b.value, b.value_class,
                                f"cannot stack {key_b.value} keys onto {key_a.value} keys")

    if engine is None:
        engine = LocalEngine()

    joined = engine.join(a.tiles, b.tiles)
    logger.debug(f"Stacking {a.band_count} + {b.band_count} bands over {len(joined)} tiles")
    tiles = engine.map_values(
        joined,
        functools.partial(_stack_tiles, metadata_a=a.metadata, metadata_b=b.metadata, tile_size=tile_size),
    )

    metadata = a.metadata.with_cell_type("float64", nodata=None).with_tile_size(*tile_size)
    return LayerCollection(tiles=tiles, metadata=metadata, key_class=key_a, value_class=ValueClass.MULTIBAND)


@timer
def build_stack(catalog: LayerCatalog, names: Sequence[str],
                tile_size: Tuple[int, int] = DEFAULT_STACK_TILE_SIZE) -> LayerCollection:
    """
    Stack several catalog layers at their common finest zoom.

    Parameters
    ----------
    catalog : LayerCatalog
        Catalog holding the input layers.
    names : sequence of str
        Input layer names, stacked in this order.
    tile_size : tuple of int, optional
        Output tile ``(cols, rows)``, by default (256, 256).

    Returns
    -------
    LayerCollection
        The stacked layer. A single name yields that layer read as multiband.

    Raises
    ------
    LayerNotFoundError
        If no names are given, or a name is missing at the resolved zoom.
        No further layer is read once this happens.
    """
    names = list(names)
    zoom = finest_zoom(catalog, names)
    logger.info(f"Stacking layers {names} at zoom {zoom}")

    accumulator = None
    for name in names:
        layer_id = LayerId(name, zoom)
        if not catalog.exists(layer_id):
            logger.error(f"Layer {layer_id} not found, aborting stack")
            raise LayerNotFoundError(name, zoom)
        layer = catalog.read(layer_id, KeyClass.SPATIAL, ValueClass.MULTIBAND)
        if accumulator is None:
            accumulator = layer
        else:
            accumulator = stack(accumulator, layer, tile_size=tile_size, engine=catalog.engine)
        logger.debug(f"Added {name}: {accumulator.band_count} bands, {len(accumulator)} tiles")

    return accumulator


def stack_layers(catalog: LayerCatalog, names: Sequence[str], output_name: str,
                 tile_size: Tuple[int, int] = DEFAULT_STACK_TILE_SIZE) -> LayerId:
    """Build the stack of ``names`` and write it as ``output_name`` at the same zoom."""
    names = list(names)
    zoom = finest_zoom(catalog, names)
    output_id = LayerId(output_name, zoom)
    collection = build_stack(catalog, names, tile_size)
    catalog.write(output_id, collection)
    logger.info(f"Wrote {collection.band_count}-band stack of {len(collection)} tiles to {output_id}")
    return output_id
