#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Scatter tiles into per-pixel samples and gather samples back into tiles.

:func:`to_samples` turns every pixel of a layer into a labelled feature
vector for machine learning consumers. :func:`from_samples` rebuilds
single-band tiles from ``(key, x, y, value)`` records, such as the labels
of the samples or the predictions of a model.
"""
import functools
from typing import Any, Dict, Iterable, Iterator, List, NamedTuple, Optional, Tuple

import numpy as np

from raster_catalog.core.engine import LocalEngine
from raster_catalog.core.logging_config import get_module_logger
from raster_catalog.core.types import (
    Key, LayerCollection, TileLayerMetadata, ValueClass, as_multiband,
)

# Initialize logger
logger = get_module_logger(__name__)


class Sample(NamedTuple):
    """One pixel of a layer: its label band value and the remaining bands."""
    key: Key
    x: int
    y: int
    label: float
    features: Tuple[float, ...]


def _tile_pixels(tile: np.ndarray, label_band: int) -> Iterator[Tuple[int, int, Any, Tuple[Any, ...]]]:
    bands = as_multiband(tile)
    labels = bands[label_band].tolist()
    features = np.moveaxis(np.delete(bands, label_band, axis=0), 0, -1).tolist()
    rows, cols = bands.shape[1:]
    for y in range(rows):
        for x in range(cols):
            yield x, y, labels[y][x], tuple(features[y][x])


def to_samples(layer: LayerCollection, label_band: int = 0,
               engine: Optional[LocalEngine] = None) -> Iterator[Sample]:
    """
    Lazily scatter a layer into per-pixel samples.

    Pixels of a tile are produced in row-major order.

    Parameters
    ----------
    layer : LayerCollection
        Single-band or multiband layer.
    label_band : int, optional
        Band holding the label, by default 0. The other bands become the
        features, in band order.
    engine : LocalEngine, optional
        Engine providing the flat map, by default a LocalEngine from ENGINE_CONFIG.

    Returns
    -------
    Iterator[Sample]
        One sample per pixel of every tile.

    Raises
    ------
    ValueError
        If ``label_band`` is not a band of the layer.
    """
    band_count = layer.band_count
    if band_count and not 0 <= label_band < band_count:
        raise ValueError(f"Label band {label_band} out of range for a {band_count}-band layer")

    if engine is None:
        engine = LocalEngine()

    pixels = engine.flat_map_values(layer.tiles, functools.partial(_tile_pixels, label_band=label_band))
    return (Sample(key, x, y, label, features) for key, (x, y, label, features) in pixels)


def sample_labels(samples: Iterable[Sample]) -> Iterator[Tuple[Key, int, int, Any]]:
    """Project samples to ``(key, x, y, label)`` records."""
    for sample in samples:
        yield sample.key, sample.x, sample.y, sample.label


def _assemble_tile(pixels: List[Tuple[int, int, Any]], tile_size: Tuple[int, int]) -> np.ndarray:
    cols, rows = tile_size
    tile = np.full((rows, cols), np.nan, dtype=np.float64)
    for x, y, value in pixels:
        if not (0 <= x < cols and 0 <= y < rows):
            raise ValueError(f"Pixel ({x}, {y}) outside a {cols}x{rows} tile")
        tile[y, x] = value
    return tile


def from_samples(samples: Iterable[Tuple[Key, int, int, Any]], metadata: TileLayerMetadata,
                 tile_size: Optional[Tuple[int, int]] = None,
                 engine: Optional[LocalEngine] = None) -> LayerCollection:
    """
    Gather ``(key, x, y, value)`` records into single-band float64 tiles.

    Parameters
    ----------
    samples : iterable
        Records to place; later records overwrite earlier ones at the same pixel.
    metadata : TileLayerMetadata
        Metadata of the layer the records came from.
    tile_size : tuple of int, optional
        Tile ``(cols, rows)``, by default the metadata layout tile size.
    engine : LocalEngine, optional
        Engine for grouping and assembly, by default a LocalEngine from ENGINE_CONFIG.

    Returns
    -------
    LayerCollection
        One tile per key seen. Pixels without a record are NaN.

    Raises
    ------
    ValueError
        If a record lies outside the tile.
    """
    if tile_size is None:
        tile_size = (metadata.layout.tile_cols, metadata.layout.tile_rows)
    if engine is None:
        engine = LocalEngine()

    groups: Dict[Key, List[Tuple[int, int, Any]]] = engine.group_by_key(
        (key, (int(x), int(y), value)) for key, x, y, value in samples
    )
    logger.debug(f"Assembling {len(groups)} tiles of {tile_size[0]}x{tile_size[1]} pixels")
    tiles = engine.map_values(groups, functools.partial(_assemble_tile, tile_size=tile_size))

    out_metadata = metadata.with_cell_type("float64", nodata=None).with_tile_size(*tile_size)
    return LayerCollection(tiles=tiles, metadata=out_metadata, value_class=ValueClass.SINGLEBAND)
