#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Core functionality for the raster layer catalog.

This module contains the data model, error types, configuration management,
logging setup, the local execution engine and sample I/O.
"""
