#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Configuration settings for the raster layer catalog.

This module centralizes all configuration parameters used across the catalog,
stacking and sampling modules, making it easier to modify settings in one place.
Settings can be overridden from a YAML file with :func:`load_config`.
"""
from typing import Dict, Any, Optional, Union
from pathlib import Path
import yaml

# General configuration
DEFAULT_TILE_SIZE: int = 256      # Tiles are square, DEFAULT_TILE_SIZE x DEFAULT_TILE_SIZE
DEFAULT_CELL_TYPE: str = "float64"
DEFAULT_NODATA_VALUE: float = -9999.0  # Sentinel for integer cell types without one

# Path configuration
DEFAULT_OUTPUT_DIR: Path = Path.cwd() / "output"

# Catalog layout
CATALOG_CONFIG: Dict[str, Any] = {
    "attributes_dir": "_attributes",
    "attribute_separator": "__",
    "tiles_file": "tiles.npz",
}

# Spatial index configuration
INDEX_CONFIG: Dict[str, Any] = {
    "temporal_resolution": 1,  # Bits of the Hilbert curve spent on the time axis
}

# Histogram written alongside Spatial + SingleBand layers
HISTOGRAM_CONFIG: Dict[str, Any] = {
    "buckets": 80,
    "zoom": 0,  # Histograms always live in the zoom-0 attribute slot
}

# Execution engine configuration
ENGINE_CONFIG: Dict[str, Any] = {
    "n_jobs": 1,            # 1 = sequential, -1 = all cores
    "backend": "threading",  # joblib backend
    "progress": False,
}

# Sample export configuration
EXPORT_CONFIG: Dict[str, Any] = {
    "label_band": 0,
    "chunk_export": True,   # Export in chunks for large sample sets
    "chunk_size": 100000,   # Rows per chunk when exporting
    "float_format": None,   # Passed to DataFrame.to_csv
}

# Logging configuration
LOGGING_CONFIG: Dict[str, Any] = {
    "level": "INFO",  # DEBUG, INFO, WARNING, ERROR, CRITICAL
    "log_to_file": False,
    "log_file": DEFAULT_OUTPUT_DIR / "catalog.log",
    "log_format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
}

# Sections accepted in a YAML configuration file. CATALOG_CONFIG is absent:
# the on-disk layout must not change under an existing catalog.
CONFIG_SECTIONS: Dict[str, Dict[str, Any]] = {
    "index": INDEX_CONFIG,
    "histogram": HISTOGRAM_CONFIG,
    "engine": ENGINE_CONFIG,
    "export": EXPORT_CONFIG,
    "logging": LOGGING_CONFIG,
}


def load_config(path: Union[str, Path]) -> Dict[str, Dict[str, Any]]:
    """
    Load a YAML configuration file and apply it to the module settings.

    Parameters
    ----------
    path : str or Path
        Path to a YAML file whose top-level keys are section names
        (``index``, ``histogram``, ``engine``, ``export``,
        ``logging``) mapping to dictionaries of overrides.

    Returns
    -------
    dict
        The overrides that were applied, by section.

    Raises
    ------
    ValueError
        If the file does not contain a mapping or names an unknown section.
    """
    with open(path, "r") as f:
        overrides: Optional[Dict[str, Any]] = yaml.safe_load(f)

    if overrides is None:
        return {}
    if not isinstance(overrides, dict):
        raise ValueError(f"Configuration file {path} must contain a mapping")

    unknown = set(overrides) - set(CONFIG_SECTIONS)
    if unknown:
        raise ValueError(f"Unknown configuration sections: {sorted(unknown)}")

    for section, values in overrides.items():
        if not isinstance(values, dict):
            raise ValueError(f"Configuration section '{section}' must be a mapping")
        CONFIG_SECTIONS[section].update(values)

    return overrides
