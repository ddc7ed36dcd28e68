"""Performance monitoring utilities for the cutlist parsing pipeline."""
import time
import logging
import threading
import functools
from typing import Any, Callable, Dict, List

logger = logging.getLogger("cutlist-api.perf")


def timed(func: Callable) -> Callable:
    """
    Decorator that measures and logs execution time for synchronous functions.

    Usage::

        @timed
        def parse_deterministic(text):
            ...
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        start = time.perf_counter()
        try:
            return func(*args, **kwargs)
        finally:
            duration_ms = round((time.perf_counter() - start) * 1000, 2)
            logger.debug(
                "function timed",
                extra={
                    "function_name": func.__qualname__,
                    "function_module": func.__module__,
                    "duration_ms": duration_ms,
                },
            )
    return wrapper


def timed_async(func: Callable) -> Callable:
    """
    Decorator that measures and logs execution time for async functions.

    Usage::

        @timed_async
        async def parse_three_layers(text):
            ...
    """
    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        start = time.perf_counter()
        try:
            return await func(*args, **kwargs)
        finally:
            duration_ms = round((time.perf_counter() - start) * 1000, 2)
            logger.debug(
                "async function timed",
                extra={
                    "function_name": func.__qualname__,
                    "function_module": func.__module__,
                    "duration_ms": duration_ms,
                },
            )
    return wrapper


class ParseTracker:
    """
    Thread-safe in-memory tracker for parse metrics.

    Tracks:
    - Total parses and cumulative parse duration
    - Parts produced per layer
    - Parses per detected format
    - Layer errors (exceptions downgraded to warnings)
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._parses: int = 0
        self._total_duration_ms: float = 0.0
        self._durations: List[float] = []
        self._parts_by_layer: Dict[str, int] = {}
        self._format_counts: Dict[str, int] = {}
        self._layer_errors: Dict[str, int] = {}

    # ------------------------------------------------------------------
    # Public write API
    # ------------------------------------------------------------------

    def record_parse(self, detected_format: str, parts_by_layer: Dict[str, int], duration_ms: float) -> None:
        """Call once per completed three-layer parse."""
        with self._lock:
            self._parses += 1
            self._total_duration_ms += duration_ms
            self._durations.append(duration_ms)
            self._format_counts[detected_format] = self._format_counts.get(detected_format, 0) + 1
            for layer, count in parts_by_layer.items():
                self._parts_by_layer[layer] = self._parts_by_layer.get(layer, 0) + count

    def record_layer_error(self, layer: str) -> None:
        with self._lock:
            self._layer_errors[layer] = self._layer_errors.get(layer, 0) + 1

    # ------------------------------------------------------------------
    # Public read API
    # ------------------------------------------------------------------

    def get_metrics(self) -> Dict[str, Any]:
        """
        Return a snapshot of all collected metrics.

        Returns
        -------
        dict with keys:
            parses_processed      : int
            avg_parse_duration_ms : float  (0 if none processed)
            max_parse_duration_ms : float
            parts_by_layer        : dict  {layer: parts}
            parses_by_format      : dict  {format: count}
            error_count           : int   (total across all layers)
            error_count_by_layer  : dict  {layer: count}
        """
        with self._lock:
            avg = round(self._total_duration_ms / self._parses, 2) if self._parses > 0 else 0.0
            return {
                "parses_processed": self._parses,
                "avg_parse_duration_ms": avg,
                "max_parse_duration_ms": round(max(self._durations, default=0.0), 2),
                "parts_by_layer": dict(self._parts_by_layer),
                "parses_by_format": dict(self._format_counts),
                "error_count": sum(self._layer_errors.values()),
                "error_count_by_layer": dict(self._layer_errors),
            }

    def reset(self) -> None:
        """Reset all counters (useful in tests)."""
        with self._lock:
            self._parses = 0
            self._total_duration_ms = 0.0
            self._durations.clear()
            self._parts_by_layer.clear()
            self._format_counts.clear()
            self._layer_errors.clear()


# Module-level singleton - import this instance everywhere else.
tracker = ParseTracker()
