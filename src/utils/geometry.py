"""Geometric helpers for explicit dot shapes.

Provides:
    - Cubic Bézier adaptive flattening (heart outline)
    - Regular/star polygon vertex generation
    - Point rotation about a pivot

Used by:
    - grid_sampler.shape_polygons(): closed outlines filled with OpenCV

All coordinates are source-image pixels (float), +Y down. Outlines are
returned as (N, 2) float64 numpy arrays, ready for scaling to fixed-point
and passing to cv2.fillPoly.
"""

import math
from typing import Sequence, Tuple

import numpy as np

Point = Tuple[float, float]


def bezier_cubic_polyline(
    p1: Sequence[float],
    p2: Sequence[float],
    p3: Sequence[float],
    p4: Sequence[float],
    max_err_px: float = 0.1,
    max_depth: int = 10
) -> np.ndarray:
    """Flatten cubic Bézier to polyline via adaptive subdivision.

    Parameters
    ----------
    p1, p2, p3, p4 : sequence of float
        Control points (x, y) in pixels
    max_err_px : float
        Maximum control-point distance from the chord, default 0.1 px
    max_depth : int
        Maximum recursion depth, default 10

    Returns
    -------
    np.ndarray
        Polyline vertices, shape (N, 2), N ≥ 2, starting at p1 and ending at p4
    """
    def subdivide(q1, q2, q3, q4, depth):
        if depth >= max_depth:
            return [q1, q4]

        chord = q4 - q1
        chord_len = float(np.hypot(chord[0], chord[1])) + 1e-12
        v2 = q2 - q1
        v3 = q3 - q1
        d2 = abs(v2[0] * chord[1] - v2[1] * chord[0]) / chord_len
        d3 = abs(v3[0] * chord[1] - v3[1] * chord[0]) / chord_len
        if max(d2, d3) <= max_err_px:
            return [q1, q4]

        # De Casteljau split at t=0.5
        q12 = (q1 + q2) / 2.0
        q23 = (q2 + q3) / 2.0
        q34 = (q3 + q4) / 2.0
        q123 = (q12 + q23) / 2.0
        q234 = (q23 + q34) / 2.0
        q1234 = (q123 + q234) / 2.0

        left = subdivide(q1, q12, q123, q1234, depth + 1)
        right = subdivide(q1234, q234, q34, q4, depth + 1)
        return left[:-1] + right

    ctrl = [np.asarray(p, dtype=np.float64) for p in (p1, p2, p3, p4)]
    return np.stack(subdivide(*ctrl, depth=0), axis=0)


def regular_polygon(x: float, y: float, r: float, sides: int, phase: float = 0.0) -> np.ndarray:
    """Vertices of a regular polygon at angles phase + i·2π/sides."""
    a = phase + np.arange(sides) * (2.0 * math.pi / sides)
    return np.stack([x + r * np.cos(a), y + r * np.sin(a)], axis=1)


def star_polygon(
    x: float,
    y: float,
    outer: float,
    inner: float,
    spikes: int = 5,
    phase: float = 1.5 * math.pi
) -> np.ndarray:
    """Alternating outer/inner vertices of a star, starting at ``phase``.

    The default phase points the first spike straight up (+Y down).
    """
    a = phase + np.arange(2 * spikes) * (math.pi / spikes)
    radii = np.where(np.arange(2 * spikes) % 2 == 0, outer, inner)
    return np.stack([x + radii * np.cos(a), y + radii * np.sin(a)], axis=1)


def rotate_points(points: np.ndarray, pivot: Point, angle_rad: float) -> np.ndarray:
    """Rotate (N, 2) points by ``angle_rad`` about ``pivot`` (clockwise on screen)."""
    c, s = math.cos(angle_rad), math.sin(angle_rad)
    px, py = pivot
    dx = points[:, 0] - px
    dy = points[:, 1] - py
    return np.stack([px + dx * c - dy * s, py + dx * s + dy * c], axis=1)
