#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Test suite for the layer catalog and codec.
"""

import json
import tempfile
import unittest
from pathlib import Path
from unittest import mock

import numpy as np

from raster_catalog.catalog.attribute_store import METADATA_ATTRIBUTE
from raster_catalog.catalog.catalog import CatalogHandle, LayerCatalog
from raster_catalog.catalog.codec import compute_histogram
from raster_catalog.catalog.index import HilbertSpaceTimeKeyIndex, ZCurveKeyIndex, z2_index
from raster_catalog.core.engine import LocalEngine
from raster_catalog.core.errors import LayerNotFoundError, StoreUnavailableError, TypeMismatchError
from raster_catalog.core.types import (
    KeyClass, LayerCollection, LayerId, SpaceTimeKey, SpatialKey, ValueClass,
)
from tests.synthetic import create_layer, create_metadata, create_tile


class TestCatalogHandle(unittest.TestCase):
    """Test opening catalogs."""

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.root = Path(self.tmpdir.name)

    def tearDown(self):
        self.tmpdir.cleanup()

    def test_open_creates_root(self):
        handle = CatalogHandle.open(self.root / "catalog")
        self.assertTrue(handle.root.is_dir())
        self.assertIsInstance(handle.engine, LocalEngine)

    def test_open_existing_only(self):
        with self.assertRaises(StoreUnavailableError):
            CatalogHandle.open(self.root / "catalog", create=False)

    def test_open_keeps_engine(self):
        engine = LocalEngine(n_jobs=2)
        handle = CatalogHandle.open(self.root, engine=engine)
        self.assertIs(LayerCatalog(handle).engine, engine)


class TestLayerCatalog(unittest.TestCase):
    """Test layer reads, writes and deletes."""

    def setUp(self):
        """Set up an empty catalog."""
        self.tmpdir = tempfile.TemporaryDirectory()
        self.root = Path(self.tmpdir.name)
        self.catalog = LayerCatalog(CatalogHandle.open(self.root))

    def tearDown(self):
        self.tmpdir.cleanup()

    def assertLayersEqual(self, expected, actual):
        self.assertEqual(set(expected.keys()), set(actual.keys()))
        for key in expected:
            np.testing.assert_array_equal(expected[key], actual[key])

    def test_write_and_read_singleband(self):
        layer = create_layer()
        self.catalog.write(LayerId("dem", 3), layer)

        result = self.catalog.read(LayerId("dem", 3))
        self.assertLayersEqual(layer, result)
        self.assertEqual(result.metadata, layer.metadata)
        self.assertIs(result.key_class, KeyClass.SPATIAL)
        self.assertIs(result.value_class, ValueClass.SINGLEBAND)

    def test_write_and_read_space_time(self):
        keys = [SpaceTimeKey(0, 0, 1000), SpaceTimeKey(1, 0, 1000), SpaceTimeKey(0, 0, 2000)]
        layer = create_layer(keys, bands=3)
        self.catalog.write(LayerId("ndvi", 2), layer)

        result = self.catalog.read(LayerId("ndvi", 2))
        self.assertLayersEqual(layer, result)
        self.assertIs(result.key_class, KeyClass.SPACE_TIME)
        self.assertIs(result.value_class, ValueClass.MULTIBAND)

    def test_tiles_are_stored_along_zorder(self):
        keys = [SpatialKey(c, r) for c in range(3) for r in range(3)]
        self.catalog.write(LayerId("dem", 1), create_layer(keys))
        with np.load(self.root / "dem" / "1" / "tiles.npz") as blob:
            stored = [tuple(k) for k in blob["keys"].tolist()]
            index = blob["index"]
        self.assertEqual(stored, sorted(stored, key=lambda k: z2_index(*k)))
        self.assertTrue(np.all(np.diff(index) > 0))

    def test_empty_layer(self):
        layer = LayerCollection(tiles={}, metadata=create_metadata())
        self.catalog.write(LayerId("empty", 0), layer)
        result = self.catalog.read(LayerId("empty", 0))
        self.assertEqual(len(result), 0)
        self.assertEqual(result.metadata, layer.metadata)

    def test_read_missing_layer(self):
        with self.assertRaises(LayerNotFoundError):
            self.catalog.read(LayerId("dem", 3))
        with self.assertRaises(LayerNotFoundError):
            self.catalog.read_header(LayerId("dem", 3))

    def test_read_promotes_singleband(self):
        layer = create_layer()
        self.catalog.write(LayerId("dem", 3), layer)

        result = self.catalog.read(LayerId("dem", 3), KeyClass.SPATIAL, ValueClass.MULTIBAND)
        self.assertIs(result.value_class, ValueClass.MULTIBAND)
        for key, tile in result.items():
            self.assertEqual(tile.shape, (1, 8, 8))
            np.testing.assert_array_equal(tile[0], layer[key])

    def test_read_multiband_as_singleband(self):
        self.catalog.write(LayerId("sat", 3), create_layer(bands=4))
        with self.assertRaises(TypeMismatchError):
            self.catalog.read(LayerId("sat", 3), value_class=ValueClass.SINGLEBAND)

    def test_read_with_other_key_class(self):
        self.catalog.write(LayerId("dem", 3), create_layer())
        with self.assertRaises(TypeMismatchError):
            self.catalog.read(LayerId("dem", 3), key_class=KeyClass.SPACE_TIME)

    def test_overwrite_replaces_layer(self):
        layer_id = LayerId("dem", 3)
        self.catalog.write(layer_id, create_layer([SpatialKey(0, 0), SpatialKey(5, 5)]))
        replacement = create_layer([SpatialKey(1, 1)], offset=7.0)
        self.catalog.write(layer_id, replacement)

        self.assertLayersEqual(replacement, self.catalog.read(layer_id))

    def test_invalid_write_keeps_existing_layer(self):
        layer_id = LayerId("dem", 3)
        original = create_layer()
        self.catalog.write(layer_id, original)

        bad = create_layer()
        bad.key_class = "raster"
        with self.assertRaises(TypeMismatchError):
            self.catalog.write(layer_id, bad)
        self.assertLayersEqual(original, self.catalog.read(layer_id))

    def test_invalid_type_pair_fails_before_store_mutation(self):
        bad = create_layer()
        bad.value_class = "cube"
        with self.assertRaises(TypeMismatchError):
            self.catalog.write(LayerId("dem", 3), bad)
        self.assertEqual(list(self.root.iterdir()), [])

    def test_tiles_disagreeing_with_declared_class(self):
        layer = create_layer(bands=2)
        layer.value_class = ValueClass.SINGLEBAND
        with self.assertRaises(TypeMismatchError):
            self.catalog.write(LayerId("sat", 3), layer)

    def test_mixed_tile_shapes(self):
        layer = create_layer()
        layer.tiles[SpatialKey(3, 3)] = np.zeros((4, 4))
        with self.assertRaises(ValueError):
            self.catalog.write(LayerId("dem", 3), layer)

    def test_tiles_disagreeing_with_metadata_tile_shape(self):
        layer_id = LayerId("dem", 3)
        original = create_layer()
        self.catalog.write(layer_id, original)

        small = LayerCollection(tiles=create_layer(tile_size=4).tiles, metadata=create_metadata(tile_size=8))
        with self.assertRaises(ValueError):
            self.catalog.write(layer_id, small)
        with self.assertRaises(ValueError):
            self.catalog.write(LayerId("dem", 4), small)
        self.assertFalse(self.catalog.exists(LayerId("dem", 4)))
        self.assertLayersEqual(original, self.catalog.read(layer_id))

        bands = create_layer(bands=2, tile_size=4)
        bands.metadata = create_metadata(tile_size=8)
        with self.assertRaises(ValueError):
            self.catalog.write(LayerId("sat", 3), bands)

    def test_space_time_multiband_uses_hilbert(self):
        keys = [SpaceTimeKey(0, 0, 0), SpaceTimeKey(1, 1, 60000)]
        layer = create_layer(keys, bands=2)
        with mock.patch.object(ZCurveKeyIndex, "for_keys") as zcurve:
            self.catalog.write(LayerId("series", 4), layer)
        zcurve.assert_not_called()

        attributes = self.catalog.attribute_store.read(LayerId("series", 4), METADATA_ATTRIBUTE)
        self.assertEqual(attributes["key_index"]["kind"], HilbertSpaceTimeKeyIndex.kind)
        self.assertEqual(attributes["header"]["key_class"], "spacetime")
        self.assertEqual(attributes["header"]["value_class"], "multiband")

    def test_unsupported_stored_key_class(self):
        layer_id = LayerId("dem", 3)
        self.catalog.write(layer_id, create_layer())
        path = self.catalog.attribute_store.attribute_path(layer_id, METADATA_ATTRIBUTE)
        attributes = json.loads(path.read_text())
        attributes["header"]["key_class"] = "raster"
        path.write_text(json.dumps(attributes))

        with self.assertRaises(TypeMismatchError):
            self.catalog.read(layer_id)

    def test_stored_index_disagreeing_with_header(self):
        layer_id = LayerId("dem", 3)
        self.catalog.write(layer_id, create_layer())
        path = self.catalog.attribute_store.attribute_path(layer_id, METADATA_ATTRIBUTE)
        attributes = json.loads(path.read_text())
        attributes["key_index"] = {"kind": "hilbert", "min_key": None, "max_key": None,
                                   "temporal_resolution": 1}
        path.write_text(json.dumps(attributes))

        with self.assertRaises(TypeMismatchError):
            self.catalog.read(layer_id)

    def test_histogram_for_spatial_singleband(self):
        layer = create_layer(tile_size=4)
        self.catalog.write(LayerId("dem", 3), layer)

        histogram = self.catalog.read_histogram("dem")
        self.assertEqual(histogram["count"], 3 * 16)
        self.assertEqual(sum(histogram["counts"]), 3 * 16)
        self.assertEqual(histogram["min"], 0.0)
        self.assertEqual(histogram["zoom"], 3)
        self.assertTrue(self.catalog.attribute_store.available_attributes(LayerId("dem", 0)))
        self.assertFalse(self.catalog.exists(LayerId("dem", 0)))

    def test_no_histogram_for_multiband(self):
        self.catalog.write(LayerId("sat", 3), create_layer(bands=2))
        with self.assertRaises(LayerNotFoundError):
            self.catalog.read_histogram("sat")

    def test_histogram_skips_nodata(self):
        layer = create_layer([SpatialKey(0, 0)], tile_size=4, dtype="int32", nodata=5)
        histogram = compute_histogram(layer, buckets=4)
        self.assertEqual(histogram["count"], 15)
        self.assertEqual(len(histogram["edges"]), 5)

    def test_histogram_skips_infinite_cells(self):
        layer = create_layer([SpatialKey(0, 0)], tile_size=4)
        layer[SpatialKey(0, 0)][0, :2] = [np.inf, -np.inf]
        histogram = compute_histogram(layer, buckets=4)
        self.assertEqual(histogram["count"], 14)
        self.assertEqual(sum(histogram["counts"]), 14)
        self.assertEqual(histogram["min"], 2.0)
        self.assertEqual(histogram["max"], 15.0)

        layer[SpatialKey(0, 0)][:] = np.inf
        self.assertEqual(compute_histogram(layer)["count"], 0)

    def test_write_with_infinite_cells(self):
        layer_id = LayerId("dem", 3)
        layer = create_layer(tile_size=4)
        layer[SpatialKey(0, 0)][0, 0] = np.inf
        self.catalog.write(layer_id, layer)

        self.assertLayersEqual(layer, self.catalog.read(layer_id))
        histogram = self.catalog.read_histogram("dem")
        self.assertEqual(histogram["count"], 3 * 16 - 1)
        self.assertTrue(np.isfinite(histogram["max"]))

    def test_histogram_follows_overwrite(self):
        layer_id = LayerId("dem", 3)
        self.catalog.write(layer_id, create_layer())
        self.catalog.write(layer_id, create_layer(offset=7.0))
        self.assertEqual(self.catalog.read_histogram("dem")["min"], 7.0)

        self.catalog.write(layer_id, create_layer(bands=2))
        with self.assertRaises(LayerNotFoundError):
            self.catalog.read_histogram("dem")

    def test_delete_removes_histogram_of_deleted_zoom(self):
        self.catalog.write(LayerId("dem", 2), create_layer())
        self.catalog.write(LayerId("dem", 3), create_layer(bands=2))

        self.catalog.delete(LayerId("dem", 3))
        self.assertEqual(self.catalog.read_histogram("dem")["zoom"], 2)

        self.catalog.delete(LayerId("dem", 2))
        with self.assertRaises(LayerNotFoundError):
            self.catalog.read_histogram("dem")

    def test_delete_twice(self):
        layer_id = LayerId("dem", 3)
        self.catalog.write(layer_id, create_layer())
        self.catalog.delete(layer_id)
        self.catalog.delete(layer_id)
        self.assertFalse(self.catalog.exists(layer_id))
        with self.assertRaises(LayerNotFoundError):
            self.catalog.read(layer_id)

    def test_delete_all(self):
        self.catalog.write(LayerId("dem", 2), create_layer())
        self.catalog.write(LayerId("dem", 3), create_layer())
        self.catalog.delete_all("dem")
        self.assertEqual(self.catalog.list_zooms("dem"), set())
        self.assertEqual(self.catalog.layer_ids(), [])
        with self.assertRaises(LayerNotFoundError):
            self.catalog.read_histogram("dem")

    def test_read_metadata(self):
        layer = create_layer(dtype="int16", nodata=-1)
        self.catalog.write(LayerId("dem", 3), layer)
        metadata = self.catalog.read_metadata(LayerId("dem", 3))
        self.assertEqual(metadata, layer.metadata)
        self.assertEqual(metadata.cell_type, "int16")
        self.assertEqual(metadata.crs.to_epsg(), 3857)

    def test_int_tiles_keep_dtype(self):
        layer = create_layer([SpatialKey(0, 0)], dtype="uint8")
        self.catalog.write(LayerId("classes", 1), layer)
        result = self.catalog.read(LayerId("classes", 1))
        tile = result[SpatialKey(0, 0)]
        self.assertEqual(tile.dtype, np.uint8)
        np.testing.assert_array_equal(tile, create_tile(SpatialKey(0, 0), dtype="uint8"))


if __name__ == '__main__':
    unittest.main()
