"""Halftone rendering engine.

Modules:
    - separation: source pixels → per-channel ink planes
    - pattern_field: closed-form dot coverage per pixel (torch)
    - composite: multiply compositing shared by both drivers
    - rasterizer: dense field driver (CPU threads or CUDA)
    - grid_sampler: discrete-center driver (OpenCV shape fill)
    - vector_export: SVG documents from the grid-sampled centers
    - engine: session object with backend fallback and cancel-and-replace

Convenience imports:
    from src.halftone_engine import HalftoneEngine
"""

from .engine import HalftoneEngine
from .errors import BackendUnavailable, ExportCancelled, HalftoneError, RenderCancelled
from .grid_sampler import GridSampler
from .pattern_field import PATTERN_COUNT, PATTERNS
from .rasterizer import FieldRasterizer
from .vector_export import VectorExporter

__all__ = [
    'HalftoneEngine',
    'FieldRasterizer',
    'GridSampler',
    'VectorExporter',
    'PATTERNS',
    'PATTERN_COUNT',
    'HalftoneError',
    'BackendUnavailable',
    'RenderCancelled',
    'ExportCancelled',
]
