#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Test suite for sample export and layer summaries.
"""

import json
import tempfile
import unittest
from pathlib import Path
from unittest import mock

import numpy as np
import pandas as pd
from sklearn.datasets import load_svmlight_file

from raster_catalog.core import io
from raster_catalog.core.types import SpaceTimeKey, SpatialKey
from raster_catalog.layers.pixels import Sample, from_samples, to_samples
from tests.synthetic import CELL_SIZE, create_layer

KEYS = (SpatialKey(0, 0), SpatialKey(1, 2))


class TestSampleExport(unittest.TestCase):
    """Test sample frames and exports."""

    def setUp(self):
        """Set up a 3-band layer and an output directory."""
        self.tmpdir = tempfile.TemporaryDirectory()
        self.out = Path(self.tmpdir.name)
        self.layer = create_layer(KEYS, bands=3, tile_size=4)

    def tearDown(self):
        self.tmpdir.cleanup()

    def test_samples_to_frame(self):
        df = io.samples_to_frame(to_samples(self.layer), self.layer.metadata)
        self.assertEqual(len(df), 32)
        self.assertEqual(
            list(df.columns),
            ["col", "row", "x", "y", "label", "map_x", "map_y", "feature_0", "feature_1"],
        )
        first = df.iloc[0]
        self.assertEqual(first["label"], self.layer[KEYS[0]][0, 0, 0])
        self.assertEqual(first["feature_1"], self.layer[KEYS[0]][2, 0, 0])
        # Pixel centre of the top-left pixel of tile (0, 0)
        self.assertAlmostEqual(first["map_x"], 0.5 * CELL_SIZE)
        top = self.layer.metadata.extent.top
        self.assertAlmostEqual(first["map_y"], top - 0.5 * CELL_SIZE)

    def test_space_time_frame_has_instant(self):
        samples = [Sample(SpaceTimeKey(1, 2, 3000), 0, 1, 5.0, (1.0,))]
        df = io.samples_to_frame(samples)
        self.assertEqual(list(df.columns), ["col", "row", "instant", "x", "y", "label", "feature_0"])
        self.assertEqual(df.iloc[0]["instant"], 3000)

    def test_empty_frame(self):
        df = io.samples_to_frame([])
        self.assertEqual(len(df), 0)
        self.assertIn("label", df.columns)

    def test_export_csv(self):
        path = self.out / "nested" / "samples.csv"
        count = io.export_samples(to_samples(self.layer), path)
        self.assertEqual(count, 32)
        df = pd.read_csv(path)
        self.assertEqual(len(df), 32)
        self.assertIn("feature_0", df.columns)

    def test_export_csv_in_chunks(self):
        path = self.out / "samples.csv"
        with mock.patch.dict(io.EXPORT_CONFIG, {"chunk_export": True, "chunk_size": 5}):
            count = io.export_samples(to_samples(self.layer), path)
        self.assertEqual(count, 32)
        df = pd.read_csv(path)
        expected = io.samples_to_frame(to_samples(self.layer))
        self.assertEqual(len(df), 32)
        np.testing.assert_allclose(df["feature_0"].to_numpy(), expected["feature_0"].to_numpy())

    def test_export_libsvm(self):
        path = self.out / "samples.libsvm"
        count = io.export_samples(to_samples(self.layer, label_band=2), path, fmt="libsvm")
        self.assertEqual(count, 32)
        X, y = load_svmlight_file(str(path), zero_based=True, n_features=2)
        self.assertEqual(X.shape, (32, 2))
        self.assertEqual(y[0], self.layer[KEYS[0]][2, 0, 0])
        self.assertEqual(X[0, 1], self.layer[KEYS[0]][1, 0, 0])

    def test_export_libsvm_drops_nodata(self):
        samples = [
            Sample(SpatialKey(0, 0), 0, 0, 1.0, (2.0,)),
            Sample(SpatialKey(0, 0), 1, 0, np.nan, (3.0,)),
            Sample(SpatialKey(0, 0), 2, 0, 1.0, (np.nan,)),
        ]
        count = io.export_samples(samples, self.out / "samples.libsvm", fmt="libsvm")
        self.assertEqual(count, 1)

    def test_export_libsvm_needs_features(self):
        with self.assertRaises(ValueError):
            io.export_samples(to_samples(create_layer(KEYS, tile_size=4)), self.out / "s.libsvm", fmt="libsvm")

    def test_unknown_format(self):
        with self.assertRaises(ValueError):
            io.export_samples([], self.out / "samples.parquet", fmt="parquet")
        self.assertFalse((self.out / "samples.parquet").exists())


class TestPredictions(unittest.TestCase):
    """Test reading predictions back into tiles."""

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.out = Path(self.tmpdir.name)

    def tearDown(self):
        self.tmpdir.cleanup()

    def test_exported_labels_come_back(self):
        layer = create_layer(KEYS, bands=2, tile_size=4)
        path = self.out / "samples.csv"
        io.export_samples(to_samples(layer), path)

        records = list(io.read_predictions(path, value_column="label"))
        self.assertEqual(len(records), 32)
        key, x, y, value = records[0]
        self.assertIsInstance(key, SpatialKey)

        result = from_samples(records, layer.metadata)
        for key in KEYS:
            np.testing.assert_array_equal(result[key], layer[key][0])

    def test_space_time_predictions(self):
        path = self.out / "predictions.csv"
        pd.DataFrame({"col": [1], "row": [2], "instant": [5000], "x": [3], "y": [0],
                      "prediction": [0.75]}).to_csv(path, index=False)
        records = list(io.read_predictions(path))
        self.assertEqual(records, [(SpaceTimeKey(1, 2, 5000), 3, 0, 0.75)])

    def test_missing_columns(self):
        path = self.out / "predictions.csv"
        pd.DataFrame({"col": [0], "row": [0], "x": [0], "y": [0]}).to_csv(path, index=False)
        with self.assertRaises(ValueError):
            io.read_predictions(path)


class TestLayerSummary(unittest.TestCase):
    """Test layer summaries."""

    def test_describe_and_save(self):
        layer = create_layer(KEYS, bands=2, tile_size=4, dtype="int32", nodata=0)
        summary = io.describe_layer(layer)
        self.assertEqual(summary["tile_count"], 2)
        self.assertEqual(summary["band_count"], 2)
        self.assertEqual(summary["key_bounds"], [[0, 0], [1, 2]])
        self.assertEqual(summary["key_class"], "spatial")
        # Cell 0 of tile (0, 0), band 0, is no-data
        self.assertEqual(summary["bands"][0]["count"], 31)
        self.assertEqual(summary["bands"][1]["count"], 32)
        self.assertEqual(summary["bands"][0]["min"], 1.0)

        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "summary" / "dem.json"
            io.save_layer_summary(summary, path)
            with open(path) as f:
                saved = json.load(f)
        self.assertEqual(saved["tile_count"], 2)
        self.assertIn("timestamp", saved)


if __name__ == '__main__':
    unittest.main()
