#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Raster Layer Catalog Package.

Stores zoom-leveled raster layers in a file-backed catalog, stacks layers into
multiband layers, and scatters/gathers per-pixel samples for machine learning
consumers.
"""

__version__ = "0.1.0"
__author__ = "Land Use Project Team"
__email__ = "user@example.com"
