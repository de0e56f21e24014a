"""Cross-cutting utilities (lowest dependency layer).

This package provides shared primitives for:
    - Config validation (validators)
    - Shader-style numerics, device selection & row banding (compute)
    - Color parsing and luminance (color)
    - Shape geometry (geometry)
    - Atomic I/O (fs)
    - Metrics (metrics)
    - Profiling (profiler)
    - Unified logging (logging_config)

No module in utils/ may import from upper layers (halftone_engine, scripts).

Convenience imports:
    from src.utils import fs, compute, color, validators
    from src.utils.logging_config import setup_logging, push_context
"""

from . import color
from . import compute
from . import fs
from . import geometry
from . import logging_config
from . import metrics
from . import profiler
from . import validators

from .logging_config import push_context, setup_logging

__all__ = [
    # Modules
    'color',
    'compute',
    'fs',
    'geometry',
    'logging_config',
    'metrics',
    'profiler',
    'validators',
    # Direct exports
    'setup_logging',
    'push_context',
]
