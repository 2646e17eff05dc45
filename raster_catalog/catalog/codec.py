#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Layer codec: type-directed (de)serialization of tile collections.

The index strategy is chosen from the declared key and value classes only
(see :func:`raster_catalog.catalog.index.select_index_method`). Tiles are
sorted along the chosen curve and saved as one ``.npz`` blob per layer; the
``metadata`` attribute holding the header, tile layer metadata and key index
is written last and marks the layer as present.
"""
from typing import Any, Dict, Optional

import numpy as np

from raster_catalog.catalog.attribute_store import METADATA_ATTRIBUTE, FileAttributeStore
from raster_catalog.catalog.index import key_index_from_dict, resolve_types, select_index_method
from raster_catalog.core.config import CATALOG_CONFIG, HISTOGRAM_CONFIG, INDEX_CONFIG
from raster_catalog.core.errors import TypeMismatchError
from raster_catalog.core.logging_config import get_module_logger
from raster_catalog.core.types import (
    KeyClass, LayerCollection, LayerHeader, LayerId, SpaceTimeKey, SpatialKey,
    TileLayerMetadata, ValueClass,
)
from raster_catalog.utils.utils import timer

# Initialize logger
logger = get_module_logger(__name__)

HISTOGRAM_ATTRIBUTE = "histogram"

_KEY_TYPES = {
    KeyClass.SPATIAL: SpatialKey,
    KeyClass.SPACE_TIME: SpaceTimeKey,
}

_CURVE_NAMES = {
    "zorder": "Z-order curve",
    "hilbert": "Hilbert curve",
}


def compute_histogram(collection: LayerCollection, buckets: Optional[int] = None) -> Dict[str, Any]:
    """
    Histogram of all valid cells of a collection.

    Parameters
    ----------
    collection : LayerCollection
        Tiles to summarise; no-data cells are excluded.
    buckets : int, optional
        Number of equal-width buckets, by default HISTOGRAM_CONFIG["buckets"].

    Returns
    -------
    dict
        JSON-compatible histogram with ``counts``, ``edges``, ``min``,
        ``max`` and ``count``. Infinite cells are not counted. ``min``
        and ``max`` are None when the collection holds no finite valid cell.
    """
    if buckets is None:
        buckets = HISTOGRAM_CONFIG.get("buckets", 80)

    values = [
        tile[~collection.metadata.nodata_mask(tile)].astype(np.float64).ravel()
        for tile in collection.tiles.values()
    ]
    values = np.concatenate(values) if values else np.empty(0, dtype=np.float64)
    # Infinite cells have no bucket
    values = values[np.isfinite(values)]

    if values.size == 0:
        return {"counts": [], "edges": [], "min": None, "max": None, "count": 0}

    counts, edges = np.histogram(values, bins=buckets)
    return {
        "counts": counts.tolist(),
        "edges": edges.tolist(),
        "min": float(values.min()),
        "max": float(values.max()),
        "count": int(values.size),
    }


class LayerCodec:
    """
    Reads and writes layer collections through an attribute store.

    Parameters
    ----------
    attribute_store : FileAttributeStore
        Store holding the layer attributes and tile blobs.
    temporal_resolution : int, optional
        Time bits for space-time layers, by default INDEX_CONFIG value.
    """

    def __init__(self, attribute_store: FileAttributeStore, temporal_resolution: Optional[int] = None):
        self.attribute_store = attribute_store
        self.temporal_resolution = (
            INDEX_CONFIG.get("temporal_resolution", 1) if temporal_resolution is None else temporal_resolution
        )

    def _check_tiles(self, collection: LayerCollection, key_class: KeyClass, value_class: ValueClass) -> None:
        key_type = _KEY_TYPES[key_class]
        ndim = 2 if value_class is ValueClass.SINGLEBAND else 3
        shape = None
        for key, tile in collection.tiles.items():
            if type(key) is not key_type:
                raise TypeMismatchError(key_class.value, value_class.value,
                                        f"key {key!r} is not a {key_type.__name__}")
            if not isinstance(tile, np.ndarray) or tile.ndim != ndim:
                raise TypeMismatchError(key_class.value, value_class.value,
                                        f"tile at {key} is not a {ndim}-D array")
            if tile.shape[-2:] != tuple(collection.metadata.tile_shape):
                raise ValueError(f"Tile at {key} has shape {tile.shape}, metadata tile shape is "
                                 f"{collection.metadata.tile_shape}")
            if shape is None:
                shape = tile.shape
            elif tile.shape != shape:
                raise ValueError(f"Tile at {key} has shape {tile.shape}, expected {shape}")

    def validate(self, collection: LayerCollection):
        """
        Check that a collection can be written; returns its key and value classes.

        Raises
        ------
        TypeMismatchError
            If the declared classes are unsupported or the tiles disagree with them.
        ValueError
            If the tiles do not all share one shape, or disagree with the
            metadata tile shape.
        """
        select_index_method(collection.key_class, collection.value_class)
        key_class, value_class = resolve_types(collection.key_class, collection.value_class)
        self._check_tiles(collection, key_class, value_class)
        return key_class, value_class

    @timer
    def write(self, layer_id: LayerId, collection: LayerCollection) -> None:
        """
        Write a collection as ``layer_id``.

        The type pair is validated before anything touches the store.

        Raises
        ------
        TypeMismatchError
            If the declared key/value classes are not supported, or the tiles
            do not match them.
        ValueError
            If the tiles do not all share one shape, or disagree with the
            metadata tile shape.
        """
        key_class, value_class = self.validate(collection)
        index_method = select_index_method(key_class, value_class)

        histogram = None
        if key_class is KeyClass.SPATIAL and value_class is ValueClass.SINGLEBAND:
            histogram = compute_histogram(collection)
            histogram["zoom"] = layer_id.zoom

        keys = list(collection.tiles)
        key_index = index_method.for_keys(keys, temporal_resolution=self.temporal_resolution)
        logger.debug(
            f"Writing {layer_id} using {key_class.value} keys + "
            f"{_CURVE_NAMES[key_index.kind]} + {value_class.value} tiles ..."
        )

        indexes, order = key_index.sort_order(keys)
        key_width = 3 if key_class is KeyClass.SPACE_TIME else 2
        key_array = np.array([keys[i] for i in order], dtype=np.int64).reshape(len(keys), key_width)
        if keys:
            cells = np.stack([collection.tiles[keys[i]] for i in order])
        else:
            tile_shape = collection.metadata.tile_shape
            cells = np.empty((0,) + tile_shape, dtype=collection.metadata.cell_type)

        store = self.attribute_store
        store.check_root()
        layer_path = store.layer_path(layer_id)
        layer_path.mkdir(parents=True, exist_ok=True)
        tiles_file = layer_path / CATALOG_CONFIG["tiles_file"]
        with tiles_file.open("wb") as f:
            np.savez(f, keys=key_array, index=indexes[order], cells=cells)

        header = LayerHeader(
            key_class=key_class.value,
            value_class=value_class.value,
            path=str(tiles_file.relative_to(store.root)),
        )
        store.write(layer_id, METADATA_ATTRIBUTE, {
            "header": header.to_dict(),
            "metadata": collection.metadata.to_dict(),
            "key_index": key_index.to_dict(),
        })

        if histogram is not None:
            histogram_id = self._histogram_id(layer_id.name)
            logger.debug(f"Writing histogram of layer '{layer_id.name}' to attribute store for zoom level {histogram_id.zoom}")
            store.write(histogram_id, HISTOGRAM_ATTRIBUTE, histogram)

        logger.debug(f"Wrote {len(keys)} tiles to {layer_id}")

    @timer
    def read(self, layer_id: LayerId) -> LayerCollection:
        """
        Read ``layer_id`` with the types declared in its header.

        Raises
        ------
        LayerNotFoundError
            If the layer does not exist.
        TypeMismatchError
            If the stored types are not supported or disagree with the
            stored key index.
        """
        store = self.attribute_store
        attributes = store.read(layer_id, METADATA_ATTRIBUTE)
        header = LayerHeader.from_dict(attributes["header"])

        index_method = select_index_method(header.key_class, header.value_class)
        key_class, value_class = resolve_types(header.key_class, header.value_class)
        try:
            key_index = key_index_from_dict(attributes["key_index"])
        except KeyError:
            raise TypeMismatchError(header.key_class, header.value_class,
                                    f"unknown key index {attributes.get('key_index')!r}") from None
        if not isinstance(key_index, index_method):
            raise TypeMismatchError(header.key_class, header.value_class,
                                    f"stored key index is '{key_index.kind}'")

        metadata = TileLayerMetadata.from_dict(attributes["metadata"])
        key_type = _KEY_TYPES[key_class]

        with np.load(store.root / header.path, allow_pickle=False) as blob:
            key_array = blob["keys"]
            cells = blob["cells"]

        tiles = {key_type(*row): cells[i] for i, row in enumerate(key_array.tolist())}
        logger.debug(f"Read {len(tiles)} tiles from {layer_id}")
        return LayerCollection(tiles=tiles, metadata=metadata, key_class=key_class, value_class=value_class)

    @staticmethod
    def _histogram_id(name: str) -> LayerId:
        return LayerId(name, HISTOGRAM_CONFIG.get("zoom", 0))

    def read_histogram(self, name: str) -> Dict[str, Any]:
        """Histogram written with the last Spatial + SingleBand write of ``name``."""
        return self.attribute_store.read(self._histogram_id(name), HISTOGRAM_ATTRIBUTE)

    def discard_histogram(self, layer_id: LayerId) -> None:
        """
        Remove the histogram of ``layer_id.name`` if it was computed from ``layer_id``.

        Called before a zoom level is deleted or replaced, so the histogram
        never outlives the tiles it summarises.
        """
        histogram_id = self._histogram_id(layer_id.name)
        path = self.attribute_store.attribute_path(histogram_id, HISTOGRAM_ATTRIBUTE)
        if not path.is_file():
            return
        if self.attribute_store.read(histogram_id, HISTOGRAM_ATTRIBUTE).get("zoom") == layer_id.zoom:
            path.unlink(missing_ok=True)
            logger.debug(f"Removed histogram of layer '{layer_id.name}' computed from {layer_id}")
