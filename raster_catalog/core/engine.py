#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Local data-parallel execution engine.

The catalog operations only need four primitives from an execution engine:
a per-element map, a per-element flat-map, a join by key and a group by key.
:class:`LocalEngine` provides them over in-memory mappings, running the
per-element map through joblib.
"""
from typing import Any, Callable, Dict, Hashable, Iterable, Iterator, List, Mapping, Optional, Tuple

from joblib.parallel import BACKENDS

from raster_catalog.core.config import ENGINE_CONFIG
from raster_catalog.core.errors import EngineConfigurationError
from raster_catalog.core.logging_config import get_module_logger
from raster_catalog.utils.utils import parallel_apply

# Initialize logger
logger = get_module_logger(__name__)


class LocalEngine:
    """
    In-process engine running per-tile work sequentially or through joblib.

    Parameters
    ----------
    n_jobs : int, optional
        Number of parallel jobs, 1 for sequential and -1 for all cores.
        Defaults to ENGINE_CONFIG["n_jobs"].
    backend : str, optional
        joblib backend name. Defaults to ENGINE_CONFIG["backend"].
    progress : bool, optional
        Show progress while mapping. Defaults to ENGINE_CONFIG["progress"].

    Raises
    ------
    EngineConfigurationError
        If ``n_jobs`` is not a non-zero integer or ``backend`` is unknown.
    """

    def __init__(self, n_jobs: Optional[int] = None, backend: Optional[str] = None,
                 progress: Optional[bool] = None):
        self.n_jobs = ENGINE_CONFIG.get("n_jobs", 1) if n_jobs is None else n_jobs
        self.backend = ENGINE_CONFIG.get("backend", "threading") if backend is None else backend
        self.progress = bool(ENGINE_CONFIG.get("progress", False) if progress is None else progress)

        if isinstance(self.n_jobs, bool) or not isinstance(self.n_jobs, int) or self.n_jobs == 0:
            raise EngineConfigurationError(f"n_jobs must be a non-zero integer, got {self.n_jobs!r}")
        if self.backend not in BACKENDS:
            raise EngineConfigurationError(
                f"Unknown engine backend '{self.backend}', expected one of {sorted(BACKENDS)}"
            )

    def __repr__(self) -> str:
        return f"LocalEngine(n_jobs={self.n_jobs}, backend={self.backend!r})"

    def map_values(self, mapping: Mapping[Hashable, Any], func: Callable[[Any], Any]) -> Dict[Hashable, Any]:
        """Apply ``func`` to every value, keeping keys."""
        keys = list(mapping.keys())
        values = parallel_apply(
            func, [mapping[k] for k in keys],
            n_jobs=self.n_jobs, backend=self.backend, progress=self.progress,
        )
        return dict(zip(keys, values))

    def flat_map_values(self, mapping: Mapping[Hashable, Any],
                        func: Callable[[Any], Iterable[Any]]) -> Iterator[Tuple[Hashable, Any]]:
        """Lazily yield ``(key, item)`` for every item ``func`` produces from a value."""
        for key, value in mapping.items():
            for item in func(value):
                yield key, item

    def join(self, left: Mapping[Hashable, Any], right: Mapping[Hashable, Any]) -> Dict[Hashable, Tuple[Any, Any]]:
        """Inner join by key; keys present on one side only are dropped."""
        joined = {key: (value, right[key]) for key, value in left.items() if key in right}
        dropped = len(left) + len(right) - 2 * len(joined)
        if dropped:
            logger.debug(f"Join dropped {dropped} unmatched entries")
        return joined

    def group_by_key(self, pairs: Iterable[Tuple[Hashable, Any]]) -> Dict[Hashable, List[Any]]:
        """Group ``(key, value)`` pairs into lists of values per key."""
        groups: Dict[Hashable, List[Any]] = {}
        for key, value in pairs:
            groups.setdefault(key, []).append(value)
        return groups
