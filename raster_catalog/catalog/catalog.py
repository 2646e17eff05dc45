#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Layer catalog over a local directory.

A :class:`CatalogHandle` bundles the catalog location with the execution
engine and is passed explicitly to every operation that needs either.
:class:`LayerCatalog` is the read/write/delete facade used by the layer
operations and the command line tools.
"""
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Union

from raster_catalog.catalog.attribute_store import METADATA_ATTRIBUTE, FileAttributeStore
from raster_catalog.catalog.codec import LayerCodec
from raster_catalog.catalog.index import resolve_types
from raster_catalog.core.engine import LocalEngine
from raster_catalog.core.errors import StoreUnavailableError, TypeMismatchError
from raster_catalog.core.logging_config import get_module_logger
from raster_catalog.core.types import (
    KeyClass, LayerCollection, LayerHeader, LayerId, TileLayerMetadata, ValueClass, as_multiband,
)

# Initialize logger
logger = get_module_logger(__name__)


@dataclass
class CatalogHandle:
    """
    Catalog location plus the engine used for per-tile work.

    Attributes:
        root: catalog root directory.
        engine: execution engine shared by the operations run on this catalog.
    """
    root: Path
    engine: LocalEngine = field(default_factory=LocalEngine)

    def __post_init__(self) -> None:
        self.root = Path(self.root)

    @classmethod
    def open(cls, path: Union[str, Path], create: bool = True,
             engine: Optional[LocalEngine] = None) -> "CatalogHandle":
        """
        Open a catalog rooted at ``path``.

        Parameters
        ----------
        path : str or Path
            Catalog root directory.
        create : bool, optional
            Create the directory when missing, by default True.
        engine : LocalEngine, optional
            Engine to use, by default a LocalEngine built from ENGINE_CONFIG.

        Raises
        ------
        StoreUnavailableError
            If the root does not exist and ``create`` is False, or the path
            exists but is not a directory.
        """
        root = Path(path)
        if create and not root.exists():
            logger.info(f"Creating catalog at {root}")
            root.mkdir(parents=True)
        if not root.is_dir():
            raise StoreUnavailableError(f"Catalog root is not a directory: {root}")
        return cls(root=root, engine=engine if engine is not None else LocalEngine())


class LayerCatalog:
    """
    Read, write and delete layers of one catalog.

    Parameters
    ----------
    handle : CatalogHandle
        Catalog location and engine.
    """

    def __init__(self, handle: CatalogHandle):
        self.handle = handle
        self.attribute_store = FileAttributeStore(handle.root)
        self.codec = LayerCodec(self.attribute_store)

    def __repr__(self) -> str:
        return f"LayerCatalog({str(self.handle.root)!r})"

    @property
    def engine(self) -> LocalEngine:
        return self.handle.engine

    def read(self, layer_id: LayerId, key_class: Optional[Union[KeyClass, str]] = None,
             value_class: Optional[Union[ValueClass, str]] = None) -> LayerCollection:
        """
        Read a layer, optionally as a requested key and value class.

        Parameters
        ----------
        layer_id : LayerId
            Layer to read.
        key_class : KeyClass, optional
            Expected key class; must match the stored one.
        value_class : ValueClass, optional
            Requested value class. Asking for MULTIBAND on a single-band
            layer promotes every tile to one band.

        Returns
        -------
        LayerCollection
            The layer's tiles and metadata.

        Raises
        ------
        LayerNotFoundError
            If the layer does not exist.
        TypeMismatchError
            If the requested classes cannot be served from the stored layer.
        """
        collection = self.codec.read(layer_id)
        stored_key, stored_value = resolve_types(collection.key_class, collection.value_class)

        if key_class is not None:
            requested_key, _ = resolve_types(key_class, stored_value)
            if requested_key is not stored_key:
                raise TypeMismatchError(requested_key.value, stored_value.value,
                                        f"{layer_id} is stored with {stored_key.value} keys")

        if value_class is None:
            return collection
        _, requested_value = resolve_types(stored_key, value_class)
        if requested_value is stored_value:
            return collection
        if requested_value is ValueClass.MULTIBAND:
            logger.debug(f"Promoting single-band tiles of {layer_id} to multiband")
            tiles = {key: as_multiband(tile) for key, tile in collection.items()}
            return collection.with_tiles(tiles, value_class=ValueClass.MULTIBAND)
        raise TypeMismatchError(stored_key.value, requested_value.value,
                                f"{layer_id} is stored as {stored_value.value}")

    def write(self, layer_id: LayerId, collection: LayerCollection) -> None:
        """
        Write ``collection`` as ``layer_id``, replacing any existing layer.

        The delete and the write are two steps; a failure in between leaves
        the layer absent.
        """
        # Validated before the old layer is removed
        self.codec.validate(collection)
        if self.attribute_store.layer_exists(layer_id):
            logger.info(f"Layer {layer_id} already exists, overwriting")
            self.codec.discard_histogram(layer_id)
            self.attribute_store.delete(layer_id)
        logger.info(f"Writing {len(collection)} tiles to {layer_id}")
        self.codec.write(layer_id, collection)

    def delete(self, layer_id: LayerId) -> None:
        logger.info(f"Deleting {layer_id}")
        self.codec.discard_histogram(layer_id)
        self.attribute_store.delete(layer_id)

    def delete_all(self, name: str) -> None:
        logger.info(f"Deleting all zoom levels of layer '{name}'")
        self.attribute_store.delete_all(name)

    def exists(self, layer_id: LayerId) -> bool:
        return self.attribute_store.layer_exists(layer_id)

    def list_zooms(self, name: str) -> Set[int]:
        return self.attribute_store.list_zooms(name)

    def layer_ids(self) -> List[LayerId]:
        return self.attribute_store.layer_ids()

    def read_header(self, layer_id: LayerId) -> LayerHeader:
        return self.attribute_store.read_header(layer_id)

    def read_metadata(self, layer_id: LayerId) -> TileLayerMetadata:
        """Tile layer metadata of a stored layer, without reading its tiles."""
        attributes = self.attribute_store.read(layer_id, METADATA_ATTRIBUTE)
        return TileLayerMetadata.from_dict(attributes["metadata"])

    def read_histogram(self, name: str) -> Dict[str, Any]:
        return self.codec.read_histogram(name)
