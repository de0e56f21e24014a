"""Lightweight wall-clock profiling for render passes.

Provides:
    - timer(): Context manager for wall-clock timing with optional sink

Used to measure:
    - Channel separation
    - Field evaluation per channel / per band
    - Grid sampling and shape drawing
    - SVG emission

Default sink is a DEBUG log line, so timings cost nothing visible unless
the CLI runs with ``--log-level DEBUG``.
"""

import logging
import time
from contextlib import contextmanager
from typing import Callable, Optional

logger = logging.getLogger(__name__)


def _log_sink(name: str, elapsed: float) -> None:
    logger.debug(f"{name}: {elapsed * 1000.0:.1f} ms")


@contextmanager
def timer(name: str, sink: Optional[Callable[[str, float], None]] = None):
    """Context manager for wall-clock timing.

    Parameters
    ----------
    name : str
        Timer name (for logging/display)
    sink : Optional[Callable[[str, float], None]]
        Optional callback(name, elapsed_seconds); defaults to a DEBUG log

    Examples
    --------
    >>> with timer("separate"):
    ...     planes = separate(rgba, settings)
    """
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed = time.perf_counter() - start
        (sink or _log_sink)(name, elapsed)

