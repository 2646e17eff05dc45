#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Utility functions for the raster layer catalog.

This module provides common utility functions used across the catalog and
layer modules, including timing and parallel processing.
"""
import time
import functools
from typing import Callable, Any, List, Optional, Sequence
from tqdm import tqdm
from joblib import Parallel, delayed

from raster_catalog.core.config import ENGINE_CONFIG
from raster_catalog.core.logging_config import get_module_logger

# Initialize logger
logger = get_module_logger(__name__)


def timer(func: Callable) -> Callable:
    """
    Decorator to time function execution.

    Parameters
    ----------
    func : Callable
        Function to time.

    Returns
    -------
    Callable
        Wrapped function with timing.
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        start_time = time.time()
        result = func(*args, **kwargs)
        elapsed = time.time() - start_time
        logger.debug(f"Function {func.__name__} took {elapsed:.2f} seconds to run")
        return result
    return wrapper


def parallel_apply(
    func: Callable,
    iterable: Sequence[Any],
    n_jobs: Optional[int] = None,
    backend: Optional[str] = None,
    progress: bool = False,
    **kwargs
) -> List[Any]:
    """
    Apply a function to a sequence in parallel.

    Parameters
    ----------
    func : Callable
        Function to apply.
    iterable : Sequence[Any]
        Items to process.
    n_jobs : int, optional
        Number of jobs. If None, uses ENGINE_CONFIG["n_jobs"].
    backend : str, optional
        joblib backend. If None, uses ENGINE_CONFIG["backend"].
    progress : bool, optional
        Whether to show a progress bar, by default False.
    **kwargs
        Additional arguments to pass to the function.

    Returns
    -------
    List[Any]
        Results of applying the function to each item, in input order.
    """
    if n_jobs is None:
        n_jobs = ENGINE_CONFIG.get("n_jobs", 1)
    if backend is None:
        backend = ENGINE_CONFIG.get("backend", "threading")

    name = getattr(func, "__name__", "task")

    if n_jobs == 1 or backend == "sequential" or len(iterable) <= 1:
        logger.debug(f"Running {len(iterable)} tasks sequentially")
        if progress:
            iterable = tqdm(iterable, desc=f"Running {name}")
        return [func(item, **kwargs) for item in iterable]

    # Use joblib for easier parallelism
    logger.debug(f"Running {len(iterable)} tasks in parallel with {n_jobs} jobs ({backend})")
    results = Parallel(n_jobs=n_jobs, backend=backend, verbose=10 if progress else 0)(
        delayed(func)(item, **kwargs) for item in iterable
    )

    return list(results)
