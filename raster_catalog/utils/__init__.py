#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Utility modules for the raster layer catalog.

This package contains general-purpose helpers for timing and parallel
processing.
"""
