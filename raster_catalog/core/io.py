#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Input/output handling for pixel samples and layer summaries.

This module exports per-pixel samples for machine learning tools (CSV or
LibSVM), reads model predictions back as placeable records, and saves JSON
summaries of layers.
"""
import os
import json
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple, Union
import numpy as np
import pandas as pd
from datetime import datetime
from sklearn.datasets import dump_svmlight_file

from raster_catalog.core.config import EXPORT_CONFIG
from raster_catalog.core.logging_config import get_module_logger
from raster_catalog.core.types import (
    Key, LayerCollection, SpaceTimeKey, SpatialKey, TileLayerMetadata, as_multiband,
)

# Initialize logger
logger = get_module_logger(__name__)

EXPORT_FORMATS = ("csv", "libsvm")


def samples_to_frame(samples: Iterable[Any], metadata: Optional[TileLayerMetadata] = None) -> pd.DataFrame:
    """
    Collect samples into a DataFrame.

    Parameters
    ----------
    samples : iterable of Sample
        Samples as produced by :func:`raster_catalog.layers.pixels.to_samples`.
    metadata : TileLayerMetadata, optional
        When given, pixel-centre map coordinates are added as ``map_x`` and
        ``map_y``.

    Returns
    -------
    pd.DataFrame
        Columns ``col``, ``row``, ``instant`` (space-time keys only), ``x``,
        ``y``, ``label`` and ``feature_0`` .. ``feature_{n-1}``.
    """
    samples = list(samples)
    space_time = bool(samples) and isinstance(samples[0].key, SpaceTimeKey)
    n_features = len(samples[0].features) if samples else 0

    columns: Dict[str, List[Any]] = {"col": [], "row": []}
    if space_time:
        columns["instant"] = []
    columns.update({"x": [], "y": [], "label": []})
    if metadata is not None:
        columns.update({"map_x": [], "map_y": []})

    features = np.empty((len(samples), n_features), dtype=np.float64)
    transforms = {}
    for i, sample in enumerate(samples):
        columns["col"].append(sample.key.col)
        columns["row"].append(sample.key.row)
        if space_time:
            columns["instant"].append(sample.key.instant)
        columns["x"].append(sample.x)
        columns["y"].append(sample.y)
        columns["label"].append(sample.label)
        features[i] = sample.features

        if metadata is not None:
            if sample.key not in transforms:
                transforms[sample.key] = metadata.key_transform(sample.key)
            map_x, map_y = transforms[sample.key] * (sample.x + 0.5, sample.y + 0.5)
            columns["map_x"].append(map_x)
            columns["map_y"].append(map_y)

    df = pd.DataFrame(columns)
    for i in range(n_features):
        df[f"feature_{i}"] = features[:, i]
    return df


def _export_csv(df: pd.DataFrame, output_path: str) -> None:
    float_format = EXPORT_CONFIG.get("float_format")

    # Check if we should export in chunks
    if EXPORT_CONFIG.get("chunk_export", True) and len(df) > EXPORT_CONFIG.get("chunk_size", 100000):
        chunk_size = EXPORT_CONFIG.get("chunk_size", 100000)
        n_chunks = (len(df) + chunk_size - 1) // chunk_size

        logger.info(f"Exporting {len(df)} rows in {n_chunks} chunks of size {chunk_size}")

        # Export first chunk with header
        df.iloc[:chunk_size].to_csv(output_path, index=False, float_format=float_format)

        # Export remaining chunks without header
        for i in range(1, n_chunks):
            start_idx = i * chunk_size
            end_idx = min((i + 1) * chunk_size, len(df))
            df.iloc[start_idx:end_idx].to_csv(
                output_path,
                mode="a",
                header=False,
                index=False,
                float_format=float_format,
            )
    else:
        logger.info(f"Exporting {len(df)} rows to {output_path}")
        df.to_csv(output_path, index=False, float_format=float_format)


def _export_libsvm(df: pd.DataFrame, output_path: str) -> int:
    feature_columns = [c for c in df.columns if c.startswith("feature_")]
    if not feature_columns:
        raise ValueError("LibSVM export needs at least one feature band besides the label")

    # LibSVM has no missing-value marker
    valid = df[["label"] + feature_columns].notna().all(axis=1)
    dropped = int((~valid).sum())
    if dropped:
        logger.warning(f"Dropping {dropped} samples with no-data values from LibSVM export")
    df = df[valid]

    logger.info(f"Exporting {len(df)} samples with {len(feature_columns)} features to {output_path}")
    dump_svmlight_file(
        df[feature_columns].to_numpy(dtype=np.float64),
        df["label"].to_numpy(dtype=np.float64),
        output_path,
        zero_based=True,
    )
    return len(df)


def export_samples(samples: Iterable[Any], output_path: Union[str, Path], fmt: str = "csv",
                   metadata: Optional[TileLayerMetadata] = None) -> int:
    """
    Export samples to a file.

    Parameters
    ----------
    samples : iterable of Sample
        Samples to export.
    output_path : str or Path
        Output file; parent directories are created.
    fmt : str, optional
        ``"csv"`` (default) or ``"libsvm"``.
    metadata : TileLayerMetadata, optional
        Adds map coordinates to CSV output.

    Returns
    -------
    int
        Number of rows written.

    Raises
    ------
    ValueError
        If ``fmt`` is unknown, or a LibSVM export has no feature band.
    """
    if fmt not in EXPORT_FORMATS:
        raise ValueError(f"Unknown export format '{fmt}', expected one of {EXPORT_FORMATS}")

    output_path = str(output_path)
    # Create directory if it doesn't exist
    output_dir = os.path.dirname(output_path)
    if output_dir:
        os.makedirs(output_dir, exist_ok=True)

    df = samples_to_frame(samples, metadata if fmt == "csv" else None)
    if fmt == "libsvm":
        return _export_libsvm(df, output_path)

    _export_csv(df, output_path)
    return len(df)


def read_predictions(path: Union[str, Path], value_column: str = "prediction") -> Iterator[Tuple[Key, int, int, float]]:
    """
    Read per-pixel values from a CSV file.

    Parameters
    ----------
    path : str or Path
        CSV with columns ``col``, ``row``, ``x``, ``y``, the value column and
        optionally ``instant``.
    value_column : str, optional
        Column holding the values, by default ``"prediction"``.

    Returns
    -------
    Iterator
        ``(key, x, y, value)`` records ready for
        :func:`raster_catalog.layers.pixels.from_samples`.

    Raises
    ------
    ValueError
        If a required column is missing.
    """
    logger.info(f"Reading predictions from {path}")
    df = pd.read_csv(path)

    required = ["col", "row", "x", "y", value_column]
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise ValueError(f"Predictions file {path} is missing columns: {missing}")

    logger.info(f"Read {len(df)} predictions")
    return _prediction_records(df, value_column)


def _prediction_records(df: pd.DataFrame, value_column: str) -> Iterator[Tuple[Key, int, int, float]]:
    cols = df["col"].astype(int).tolist()
    rows = df["row"].astype(int).tolist()
    xs = df["x"].astype(int).tolist()
    ys = df["y"].astype(int).tolist()
    values = df[value_column].astype(float).tolist()
    if "instant" in df.columns:
        keys = [SpaceTimeKey(c, r, t) for c, r, t in zip(cols, rows, df["instant"].astype("int64").tolist())]
    else:
        keys = [SpatialKey(c, r) for c, r in zip(cols, rows)]
    yield from zip(keys, xs, ys, values)


def describe_layer(collection: LayerCollection) -> Dict[str, Any]:
    """
    Summarise a layer: tile and band counts, key bounds and per-band statistics.

    No-data cells are excluded from the statistics.
    """
    metadata = collection.metadata
    bounds = collection.key_bounds()

    band_stats = []
    for band in range(collection.band_count):
        values = [
            cells[~metadata.nodata_mask(cells)].astype(np.float64)
            for cells in (as_multiband(tile)[band] for tile in collection.tiles.values())
        ]
        values = np.concatenate(values)
        total = sum(tile.shape[-1] * tile.shape[-2] for tile in collection.tiles.values())
        if values.size:
            stats = {
                "min": float(np.min(values)),
                "max": float(np.max(values)),
                "mean": float(np.mean(values)),
                "std": float(np.std(values)),
                "count": int(values.size),
            }
        else:
            stats = {"min": None, "max": None, "mean": None, "std": None, "count": 0}
        stats["valid_percentage"] = float(values.size / total * 100) if total else 0.0
        band_stats.append(stats)

    return {
        "timestamp": datetime.now().isoformat(),
        "key_class": getattr(collection.key_class, "value", collection.key_class),
        "value_class": getattr(collection.value_class, "value", collection.value_class),
        "tile_count": len(collection),
        "band_count": collection.band_count,
        "key_bounds": [list(bounds[0]), list(bounds[1])] if bounds is not None else None,
        "metadata": metadata.to_dict(),
        "bands": band_stats,
    }


def save_layer_summary(summary: Dict[str, Any], output_path: Union[str, Path]) -> None:
    """
    Save a layer summary to a JSON file.

    Parameters
    ----------
    summary : dict
        Summary from :func:`describe_layer`.
    output_path : str or Path
        Path to output JSON file.
    """
    output_dir = os.path.dirname(str(output_path))
    if output_dir:
        os.makedirs(output_dir, exist_ok=True)

    with open(output_path, "w") as f:
        json.dump(summary, f, indent=2)

    logger.info(f"Saved layer summary to {output_path}")
