#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Data model for the raster layer catalog.

Tiles are plain numpy arrays: a single-band tile is a 2-D array of shape
``(rows, cols)`` and a multiband tile is a 3-D array of shape
``(bands, rows, cols)``. A layer collection maps spatial keys to tiles and
carries one shared :class:`TileLayerMetadata`.
"""
from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterator, NamedTuple, Optional, Tuple, Union

import numpy as np
from rasterio.coords import BoundingBox
from rasterio.crs import CRS
from rasterio.transform import Affine, from_bounds

from raster_catalog.core.config import CATALOG_CONFIG, DEFAULT_CELL_TYPE, DEFAULT_TILE_SIZE


class KeyClass(str, Enum):
    """Declared key type of a layer."""
    SPATIAL = "spatial"
    SPACE_TIME = "spacetime"


class ValueClass(str, Enum):
    """Declared value (tile) type of a layer."""
    SINGLEBAND = "singleband"
    MULTIBAND = "multiband"


class SpatialKey(NamedTuple):
    """Position of one tile in the regular grid of a zoom level."""
    col: int
    row: int


class SpaceTimeKey(NamedTuple):
    """Tile position plus an instant in epoch milliseconds."""
    col: int
    row: int
    instant: int

    @property
    def spatial_key(self) -> SpatialKey:
        return SpatialKey(self.col, self.row)


Key = Union[SpatialKey, SpaceTimeKey]


@dataclass(frozen=True, order=True)
class LayerId:
    """
    Identifies one zoom level of one named layer.

    Attributes:
        name: layer name; must be usable as a directory name.
        zoom: non-negative zoom level, higher is finer.
    """
    name: str
    zoom: int

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name:
            raise ValueError("Layer name must be a non-empty string")
        if "/" in self.name or "\\" in self.name or self.name in (".", ".."):
            raise ValueError(f"Layer name must not be a path: {self.name!r}")
        if CATALOG_CONFIG["attribute_separator"] in self.name:
            raise ValueError(
                f"Layer name must not contain '{CATALOG_CONFIG['attribute_separator']}': {self.name!r}"
            )
        if isinstance(self.zoom, bool) or not isinstance(self.zoom, (int, np.integer)):
            raise ValueError(f"Zoom level must be an integer, got {self.zoom!r}")
        if self.zoom < 0:
            raise ValueError(f"Zoom level must be non-negative, got {self.zoom}")
        object.__setattr__(self, "zoom", int(self.zoom))

    def __str__(self) -> str:
        return f"LayerId({self.name}, {self.zoom})"


@dataclass(frozen=True)
class LayerHeader:
    """Declared types and storage location of a stored layer."""
    key_class: str
    value_class: str
    path: str
    format: str = "npz"

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "LayerHeader":
        return cls(
            key_class=d["key_class"],
            value_class=d["value_class"],
            path=d["path"],
            format=d.get("format", "npz"),
        )


@dataclass(frozen=True)
class LayoutDefinition:
    """
    Tile grid of one zoom level.

    Attributes:
        layout_cols, layout_rows: number of tile columns and rows.
        tile_cols, tile_rows: pixel dimensions of every tile.
    """
    layout_cols: int
    layout_rows: int
    tile_cols: int = DEFAULT_TILE_SIZE
    tile_rows: int = DEFAULT_TILE_SIZE

    def __post_init__(self) -> None:
        for name in ("layout_cols", "layout_rows", "tile_cols", "tile_rows"):
            if int(getattr(self, name)) <= 0:
                raise ValueError(f"{name} must be positive")

    @property
    def tile_shape(self) -> Tuple[int, int]:
        """Array shape ``(rows, cols)`` of one band."""
        return (self.tile_rows, self.tile_cols)


@dataclass(frozen=True)
class TileLayerMetadata:
    """
    Metadata shared by every tile of one (name, zoom) pair.

    Attributes:
        extent: map extent of the whole layout.
        layout: tile grid definition.
        crs: coordinate reference system of ``extent``.
        cell_type: numpy dtype name of the tile cells.
        nodata: declared no-data sentinel. Floating point cell types always
            treat NaN as no-data in addition to this value.
    """
    extent: BoundingBox
    layout: LayoutDefinition
    crs: Optional[CRS] = None
    cell_type: str = DEFAULT_CELL_TYPE
    nodata: Optional[float] = None

    def __post_init__(self) -> None:
        if not isinstance(self.extent, BoundingBox):
            object.__setattr__(self, "extent", BoundingBox(*[float(v) for v in self.extent]))
        if self.crs is not None and not isinstance(self.crs, CRS):
            object.__setattr__(self, "crs", CRS.from_user_input(self.crs))
        object.__setattr__(self, "cell_type", np.dtype(self.cell_type).name)

    @property
    def tile_shape(self) -> Tuple[int, int]:
        return self.layout.tile_shape

    def key_extent(self, key: Key) -> BoundingBox:
        """Map extent covered by the tile at ``key``."""
        width = (self.extent.right - self.extent.left) / self.layout.layout_cols
        height = (self.extent.top - self.extent.bottom) / self.layout.layout_rows
        left = self.extent.left + key.col * width
        top = self.extent.top - key.row * height
        return BoundingBox(left, top - height, left + width, top)

    def key_transform(self, key: Key) -> Affine:
        """Affine transform from pixel (x, y) of the tile at ``key`` to map coordinates."""
        bounds = self.key_extent(key)
        return from_bounds(*bounds, width=self.layout.tile_cols, height=self.layout.tile_rows)

    def nodata_mask(self, cells: np.ndarray) -> np.ndarray:
        """Boolean mask, True where ``cells`` hold no-data."""
        if np.issubdtype(cells.dtype, np.floating):
            mask = np.isnan(cells)
            if self.nodata is not None and not np.isnan(self.nodata):
                mask |= cells == self.nodata
            return mask
        if self.nodata is None:
            return np.zeros(cells.shape, dtype=bool)
        return cells == self.nodata

    def with_cell_type(self, cell_type: str, nodata: Optional[float] = None) -> "TileLayerMetadata":
        return dataclasses.replace(self, cell_type=cell_type, nodata=nodata)

    def with_tile_size(self, tile_cols: int, tile_rows: int) -> "TileLayerMetadata":
        if (tile_cols, tile_rows) == (self.layout.tile_cols, self.layout.tile_rows):
            return self
        layout = dataclasses.replace(self.layout, tile_cols=tile_cols, tile_rows=tile_rows)
        return dataclasses.replace(self, layout=layout)

    def to_dict(self) -> Dict[str, Any]:
        nodata = None
        if self.nodata is not None and not np.isnan(self.nodata):
            nodata = float(self.nodata)
        return {
            "extent": list(self.extent),
            "layout": dataclasses.asdict(self.layout),
            "crs": self.crs.to_string() if self.crs is not None else None,
            "cell_type": self.cell_type,
            "nodata": nodata,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "TileLayerMetadata":
        return cls(
            extent=BoundingBox(*d["extent"]),
            layout=LayoutDefinition(**d["layout"]),
            crs=d.get("crs"),
            cell_type=d.get("cell_type", DEFAULT_CELL_TYPE),
            nodata=d.get("nodata"),
        )


def key_class_of(key: Key) -> KeyClass:
    """Key class of a single key instance."""
    if isinstance(key, SpaceTimeKey):
        return KeyClass.SPACE_TIME
    if isinstance(key, SpatialKey):
        return KeyClass.SPATIAL
    raise TypeError(f"Not a layer key: {key!r}")


def value_class_of(tile: np.ndarray) -> ValueClass:
    """Value class of a single tile array."""
    if tile.ndim == 2:
        return ValueClass.SINGLEBAND
    if tile.ndim == 3:
        return ValueClass.MULTIBAND
    raise TypeError(f"Tiles must be 2-D or 3-D arrays, got {tile.ndim}-D")


def as_multiband(tile: np.ndarray) -> np.ndarray:
    """View a single-band tile as a one-band multiband tile."""
    if tile.ndim == 2:
        return tile[np.newaxis, :, :]
    return tile


@dataclass
class LayerCollection:
    """
    Tiles of one layer keyed by spatial key, plus their shared metadata.

    The key and value classes are declared types. When left as None they are
    inferred from the first key and tile.
    """
    tiles: Dict[Key, np.ndarray]
    metadata: TileLayerMetadata
    key_class: Optional[Union[KeyClass, str]] = None
    value_class: Optional[Union[ValueClass, str]] = None

    def __post_init__(self) -> None:
        self.tiles = dict(self.tiles)
        if self.tiles:
            key, tile = next(iter(self.tiles.items()))
            if self.key_class is None:
                self.key_class = key_class_of(key)
            if self.value_class is None:
                self.value_class = value_class_of(tile)
        else:
            if self.key_class is None:
                self.key_class = KeyClass.SPATIAL
            if self.value_class is None:
                self.value_class = ValueClass.SINGLEBAND

    def __len__(self) -> int:
        return len(self.tiles)

    def __iter__(self) -> Iterator[Key]:
        return iter(self.tiles)

    def __contains__(self, key: object) -> bool:
        return key in self.tiles

    def __getitem__(self, key: Key) -> np.ndarray:
        return self.tiles[key]

    def keys(self):
        return self.tiles.keys()

    def items(self):
        return self.tiles.items()

    @property
    def band_count(self) -> int:
        """Number of bands per tile; 0 for an empty collection."""
        if not self.tiles:
            return 0
        tile = next(iter(self.tiles.values()))
        return 1 if tile.ndim == 2 else tile.shape[0]

    def key_bounds(self) -> Optional[Tuple[Key, Key]]:
        """Component-wise minimum and maximum key, or None when empty."""
        if not self.tiles:
            return None
        keys = np.array(list(self.tiles), dtype=np.int64)
        key_type = type(next(iter(self.tiles)))
        return key_type(*keys.min(axis=0).tolist()), key_type(*keys.max(axis=0).tolist())

    def with_tiles(self, tiles: Dict[Key, np.ndarray], **changes) -> "LayerCollection":
        """New collection over ``tiles`` that keeps this collection's metadata and types."""
        return dataclasses.replace(self, tiles=tiles, **changes)
