#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Space-filling curve key indexes.

A key index maps every key of a layer to one sortable integer. Tiles are
stored in index order so that keys close in space stay close in storage.
Spatial keys use a 2-D Z-order (Morton) curve; space-time keys use a 3-D
Hilbert curve whose third axis is the key's instant binned into
``2 ** temporal_resolution`` buckets.

The choice of index is a closed table over the declared key and value
classes, see :func:`select_index_method`.
"""
from typing import Any, Dict, Iterable, Optional, Sequence, Tuple, Type

import numpy as np

from raster_catalog.core.config import INDEX_CONFIG
from raster_catalog.core.errors import TypeMismatchError
from raster_catalog.core.types import Key, KeyClass, SpaceTimeKey, SpatialKey, ValueClass


def z2_index(x: int, y: int) -> int:
    """
    Morton code of a non-negative 2-D point.

    Bits of ``x`` go to the even positions and bits of ``y`` to the odd
    positions of the result.
    """
    if x < 0 or y < 0:
        raise ValueError(f"Z-order coordinates must be non-negative, got ({x}, {y})")
    z = 0
    bit = 0
    while x or y:
        z |= (x & 1) << (2 * bit)
        z |= (y & 1) << (2 * bit + 1)
        x >>= 1
        y >>= 1
        bit += 1
    return z


def hilbert_index(point: Sequence[int], bits: int) -> int:
    """
    Distance along an n-dimensional Hilbert curve.

    Uses Skilling's transpose algorithm ("Programming the Hilbert curve",
    AIP Conf. Proc. 707, 2004).

    Parameters
    ----------
    point : sequence of int
        Coordinates, each in ``[0, 2 ** bits)``.
    bits : int
        Bits per coordinate (curve order).

    Returns
    -------
    int
        Position of ``point`` on the curve, in ``[0, 2 ** (bits * len(point)))``.
    """
    if bits < 1:
        raise ValueError("Hilbert curve order must be at least 1")
    x = [int(v) for v in point]
    n = len(x)
    limit = 1 << bits
    for v in x:
        if v < 0 or v >= limit:
            raise ValueError(f"Coordinate {v} outside Hilbert curve of order {bits}")

    m = 1 << (bits - 1)

    # Inverse undo
    q = m
    while q > 1:
        p = q - 1
        for i in range(n):
            if x[i] & q:
                x[0] ^= p
            else:
                t = (x[0] ^ x[i]) & p
                x[0] ^= t
                x[i] ^= t
        q >>= 1

    # Gray encode
    for i in range(1, n):
        x[i] ^= x[i - 1]
    t = 0
    q = m
    while q > 1:
        if x[n - 1] & q:
            t ^= q - 1
        q >>= 1
    for i in range(n):
        x[i] ^= t

    # Interleave the transposed bits, most significant first
    h = 0
    for b in range(bits - 1, -1, -1):
        for i in range(n):
            h = (h << 1) | ((x[i] >> b) & 1)
    return h


class KeyIndex:
    """Base class of the key indexes stored alongside a layer."""

    kind: str = ""

    def to_index(self, key: Key) -> int:
        raise NotImplementedError

    def to_dict(self) -> Dict[str, Any]:
        raise NotImplementedError

    def sort_order(self, keys: Sequence[Key]) -> Tuple[np.ndarray, np.ndarray]:
        """Indices and the permutation that sorts ``keys`` along the curve."""
        indexes = np.array([self.to_index(k) for k in keys], dtype=np.int64)
        return indexes, np.argsort(indexes, kind="stable")


class ZCurveKeyIndex(KeyIndex):
    """
    Z-order curve over spatial keys, relative to the key bounds minimum.

    Parameters
    ----------
    min_key, max_key : SpatialKey, optional
        Component-wise key bounds; None for an empty layer.
    """

    kind = "zorder"

    def __init__(self, min_key: Optional[SpatialKey], max_key: Optional[SpatialKey]):
        self.min_key = SpatialKey(*min_key[:2]) if min_key is not None else None
        self.max_key = SpatialKey(*max_key[:2]) if max_key is not None else None

    @classmethod
    def for_keys(cls, keys: Iterable[Key], **options) -> "ZCurveKeyIndex":
        keys = list(keys)
        if not keys:
            return cls(None, None)
        arr = np.array([(k.col, k.row) for k in keys], dtype=np.int64)
        return cls(SpatialKey(*arr.min(axis=0).tolist()), SpatialKey(*arr.max(axis=0).tolist()))

    def to_index(self, key: Key) -> int:
        if self.min_key is None:
            raise ValueError("Key index of an empty layer cannot index keys")
        if not (self.min_key.col <= key.col <= self.max_key.col
                and self.min_key.row <= key.row <= self.max_key.row):
            raise ValueError(f"Key {key} outside key bounds {self.min_key}..{self.max_key}")
        return z2_index(key.col - self.min_key.col, key.row - self.min_key.row)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "min_key": list(self.min_key) if self.min_key is not None else None,
            "max_key": list(self.max_key) if self.max_key is not None else None,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ZCurveKeyIndex":
        min_key = d.get("min_key")
        max_key = d.get("max_key")
        return cls(
            SpatialKey(*min_key) if min_key is not None else None,
            SpatialKey(*max_key) if max_key is not None else None,
        )


class HilbertSpaceTimeKeyIndex(KeyIndex):
    """
    Hilbert curve over (col, row, time bucket) of space-time keys.

    Parameters
    ----------
    min_key, max_key : SpaceTimeKey, optional
        Component-wise key bounds; None for an empty layer.
    temporal_resolution : int, optional
        Bits used for the time axis. Instants between the bounds are binned
        into ``2 ** temporal_resolution`` equal buckets.
    """

    kind = "hilbert"

    def __init__(self, min_key: Optional[SpaceTimeKey], max_key: Optional[SpaceTimeKey],
                 temporal_resolution: Optional[int] = None):
        if temporal_resolution is None:
            temporal_resolution = INDEX_CONFIG.get("temporal_resolution", 1)
        if temporal_resolution < 1:
            raise ValueError("temporal_resolution must be at least 1")
        self.min_key = SpaceTimeKey(*min_key) if min_key is not None else None
        self.max_key = SpaceTimeKey(*max_key) if max_key is not None else None
        self.temporal_resolution = int(temporal_resolution)

        if self.min_key is not None:
            self.x_resolution = (self.max_key.col - self.min_key.col).bit_length()
            self.y_resolution = (self.max_key.row - self.min_key.row).bit_length()
        else:
            self.x_resolution = self.y_resolution = 0
        self.order = max(self.x_resolution, self.y_resolution, self.temporal_resolution, 1)

    @classmethod
    def for_keys(cls, keys: Iterable[Key], temporal_resolution: Optional[int] = None,
                 **options) -> "HilbertSpaceTimeKeyIndex":
        keys = list(keys)
        if not keys:
            return cls(None, None, temporal_resolution)
        arr = np.array([(k.col, k.row, k.instant) for k in keys], dtype=np.int64)
        return cls(
            SpaceTimeKey(*arr.min(axis=0).tolist()),
            SpaceTimeKey(*arr.max(axis=0).tolist()),
            temporal_resolution,
        )

    def time_bucket(self, instant: int) -> int:
        buckets = 1 << self.temporal_resolution
        span = self.max_key.instant - self.min_key.instant
        if span == 0:
            return 0
        bucket = (instant - self.min_key.instant) * buckets // span
        return min(int(bucket), buckets - 1)

    def to_index(self, key: Key) -> int:
        if self.min_key is None:
            raise ValueError("Key index of an empty layer cannot index keys")
        if not isinstance(key, SpaceTimeKey):
            raise ValueError(f"Hilbert space-time index needs SpaceTimeKey, got {key!r}")
        lo, hi = self.min_key, self.max_key
        if not (lo.col <= key.col <= hi.col and lo.row <= key.row <= hi.row
                and lo.instant <= key.instant <= hi.instant):
            raise ValueError(f"Key {key} outside key bounds {lo}..{hi}")
        point = (key.col - lo.col, key.row - lo.row, self.time_bucket(key.instant))
        return hilbert_index(point, self.order)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "min_key": list(self.min_key) if self.min_key is not None else None,
            "max_key": list(self.max_key) if self.max_key is not None else None,
            "temporal_resolution": self.temporal_resolution,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "HilbertSpaceTimeKeyIndex":
        min_key = d.get("min_key")
        max_key = d.get("max_key")
        return cls(
            SpaceTimeKey(*min_key) if min_key is not None else None,
            SpaceTimeKey(*max_key) if max_key is not None else None,
            d.get("temporal_resolution"),
        )


# Exhaustive dispatch: any pair not listed here is a type mismatch
_INDEX_METHODS: Dict[tuple, Type[KeyIndex]] = {
    (KeyClass.SPATIAL, ValueClass.SINGLEBAND): ZCurveKeyIndex,
    (KeyClass.SPATIAL, ValueClass.MULTIBAND): ZCurveKeyIndex,
    (KeyClass.SPACE_TIME, ValueClass.SINGLEBAND): HilbertSpaceTimeKeyIndex,
    (KeyClass.SPACE_TIME, ValueClass.MULTIBAND): HilbertSpaceTimeKeyIndex,
}

_INDEX_KINDS: Dict[str, Type[KeyIndex]] = {
    ZCurveKeyIndex.kind: ZCurveKeyIndex,
    HilbertSpaceTimeKeyIndex.kind: HilbertSpaceTimeKeyIndex,
}


def resolve_types(key_class: Any, value_class: Any):
    """
    Convert declared key and value classes to their enums.

    Raises
    ------
    TypeMismatchError
        If either class is not a supported type.
    """
    try:
        return KeyClass(key_class), ValueClass(value_class)
    except (ValueError, TypeError):
        raise TypeMismatchError(key_class, value_class) from None


def select_index_method(key_class: Any, value_class: Any) -> Type[KeyIndex]:
    """
    Choose the key index for a declared key/value type pair.

    Parameters
    ----------
    key_class : KeyClass or str
        Declared key type.
    value_class : ValueClass or str
        Declared value type.

    Returns
    -------
    type
        :class:`ZCurveKeyIndex` for spatial keys and
        :class:`HilbertSpaceTimeKeyIndex` for space-time keys.

    Raises
    ------
    TypeMismatchError
        If the pair is not in the dispatch table.
    """
    pair = resolve_types(key_class, value_class)
    return _INDEX_METHODS[pair]


def key_index_from_dict(d: Dict[str, Any]) -> KeyIndex:
    """Rebuild a stored key index; raises KeyError for an unknown kind."""
    return _INDEX_KINDS[d["kind"]].from_dict(d)
