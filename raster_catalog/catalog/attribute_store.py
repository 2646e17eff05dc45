#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
File-backed attribute store.

Layout of a catalog rooted at ``root``::

    root/
      ├─ _attributes/
      │    └─ {name}__{zoom}__{attribute}.json
      └─ {name}/
           └─ {zoom}/
                └─ tiles.npz

A layer exists when its ``metadata`` attribute exists. Nothing is cached:
every query rescans the attributes directory.
"""
import json
import shutil
from pathlib import Path
from typing import Any, Dict, List, Set, Union

from raster_catalog.core.config import CATALOG_CONFIG
from raster_catalog.core.errors import LayerNotFoundError, StoreUnavailableError
from raster_catalog.core.logging_config import get_module_logger
from raster_catalog.core.types import LayerHeader, LayerId

# Initialize logger
logger = get_module_logger(__name__)

METADATA_ATTRIBUTE = "metadata"


class FileAttributeStore:
    """
    Attribute store over a local directory tree.

    Parameters
    ----------
    root : str or Path
        Catalog root directory. It must exist when the store is queried.
    """

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)
        self.separator = CATALOG_CONFIG["attribute_separator"]

    def __repr__(self) -> str:
        return f"FileAttributeStore({str(self.root)!r})"

    # -------- paths --------

    @property
    def attributes_dir(self) -> Path:
        return self.root / CATALOG_CONFIG["attributes_dir"]

    def attribute_path(self, layer_id: LayerId, attribute: str) -> Path:
        sep = self.separator
        return self.attributes_dir / f"{layer_id.name}{sep}{layer_id.zoom}{sep}{attribute}.json"

    def layer_path(self, layer_id: LayerId) -> Path:
        """Directory holding the tiles of one zoom level."""
        return self.root / layer_id.name / str(layer_id.zoom)

    def check_root(self) -> None:
        if not self.root.is_dir():
            raise StoreUnavailableError(f"Catalog root is not a directory: {self.root}")

    def _attribute_files(self, prefix: str) -> List[Path]:
        # Layer names are matched literally, never as glob patterns
        return [p for p in self.attributes_dir.iterdir()
                if p.name.startswith(prefix) and p.name.endswith(".json")]

    # -------- queries --------

    def layer_ids(self) -> List[LayerId]:
        """All layers with a metadata attribute, sorted by name and zoom."""
        self.check_root()
        if not self.attributes_dir.is_dir():
            return []

        suffix = f"{self.separator}{METADATA_ATTRIBUTE}.json"
        ids = []
        for path in self.attributes_dir.glob(f"*{suffix}"):
            stem = path.name[:-len(suffix)]
            name, _, zoom = stem.rpartition(self.separator)
            try:
                ids.append(LayerId(name, int(zoom)))
            except ValueError:
                logger.warning(f"Ignoring unrecognised attribute file {path.name}")
        return sorted(ids)

    def layer_exists(self, layer_id: LayerId) -> bool:
        self.check_root()
        return self.attribute_path(layer_id, METADATA_ATTRIBUTE).is_file()

    def exists(self, name: str, zoom: int) -> bool:
        return self.layer_exists(LayerId(name, zoom))

    def list_zooms(self, name: str) -> Set[int]:
        return {layer_id.zoom for layer_id in self.layer_ids() if layer_id.name == name}

    def available_attributes(self, layer_id: LayerId) -> List[str]:
        self.check_root()
        if not self.attributes_dir.is_dir():
            return []
        prefix = f"{layer_id.name}{self.separator}{layer_id.zoom}{self.separator}"
        return sorted(p.name[len(prefix):-len(".json")] for p in self._attribute_files(prefix))

    def read(self, layer_id: LayerId, attribute: str) -> Dict[str, Any]:
        """
        Read one JSON attribute.

        Raises
        ------
        LayerNotFoundError
            If the attribute does not exist for ``layer_id``.
        """
        self.check_root()
        path = self.attribute_path(layer_id, attribute)
        if not path.is_file():
            raise LayerNotFoundError(layer_id.name, layer_id.zoom)
        with path.open("r") as f:
            return json.load(f)

    def write(self, layer_id: LayerId, attribute: str, value: Dict[str, Any]) -> None:
        self.check_root()
        self.attributes_dir.mkdir(exist_ok=True)
        path = self.attribute_path(layer_id, attribute)
        tmp_path = path.with_suffix(".json.tmp")
        with tmp_path.open("w") as f:
            json.dump(value, f, indent=2)
        tmp_path.replace(path)

    def read_header(self, layer_id: LayerId) -> LayerHeader:
        """
        Read the header of a stored layer.

        Raises
        ------
        LayerNotFoundError
            If the layer does not exist.
        """
        metadata = self.read(layer_id, METADATA_ATTRIBUTE)
        return LayerHeader.from_dict(metadata["header"])

    # -------- deletes --------

    def delete(self, layer_id: LayerId) -> None:
        """
        Delete one zoom level: its attributes and its tiles.

        Deleting an absent layer is a no-op.
        """
        self.check_root()
        # The header goes first so a partial delete leaves the layer absent
        header_path = self.attribute_path(layer_id, METADATA_ATTRIBUTE)
        existed = header_path.is_file()
        header_path.unlink(missing_ok=True)

        for attribute in self.available_attributes(layer_id):
            self.attribute_path(layer_id, attribute).unlink(missing_ok=True)

        layer_path = self.layer_path(layer_id)
        if layer_path.exists():
            shutil.rmtree(layer_path)

        if existed:
            logger.debug(f"Deleted {layer_id}")

    def delete_all(self, name: str) -> None:
        """
        Delete every zoom level of a layer and its residual directory.

        Deleting an absent layer is a no-op.
        """
        for layer_id in self.layer_ids():
            if layer_id.name == name:
                self.delete(layer_id)

        # Attributes of zoom levels without tiles (e.g. the zoom-0 histogram)
        if self.attributes_dir.is_dir():
            prefix = f"{name}{self.separator}"
            for path in self._attribute_files(prefix):
                zoom = path.name[len(prefix):].split(self.separator, 1)[0]
                if zoom.isdigit():
                    path.unlink(missing_ok=True)

        # Deleting every zoom leaves an empty layer directory behind
        layer_dir = self.root / LayerId(name, 0).name
        if layer_dir.exists():
            shutil.rmtree(layer_dir)
            logger.debug(f"Removed residual directory {layer_dir}")
