"""Halftone Press: analog print-screen simulation for raster photographs.

This package converts a photograph into a halftone reproduction: per-ink
rotated dot screens (CMYK, mono, duotone, tritone), sixteen analytic dot
shapes, and raster (PNG) or vector (SVG) output.

Architecture layers (strict one-way dependency):
    scripts/ → src/halftone_engine/ → src/utils/

Key invariants:
    - Ink planes are computed once per pass and shared by both render drivers
    - Channels composite in canonical order (C, M, Y, K or custom index)
    - The engine core does no file I/O; scripts own decode/encode
    - YAML-only configs
    - Colors are sRGB [0,1] floats internally
"""

__version__ = "1.0.0"
