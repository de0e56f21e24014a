"""Discrete-center halftone driver (CPU fallback).

Instead of evaluating a field at every pixel, this driver walks the rotated
screen grid once per channel, reads the ink under each grid point, and
fills one explicit shape per dot with OpenCV antialiased primitives.

    1. cellSize = max(2, round(W / frequency))
    2. Grid offsets g ∈ [−diag/2, diag/2) step cellSize, rows outer
    3. Source position rx = gx·cosθ − gy·sinθ + cx, ry = gx·sinθ + gy·cosθ + cy
    4. Skip points outside the image; nearest-sample the ink plane
    5. Skip ink < 0.02; radius = cellSize·0.5·sqrt(ink)·size/100
    6. Fill the pattern's outline into the channel mask

enumerate_dots() is also the center/radius source for the SVG exporter,
so the two can never disagree about where dots are.

Drawing uses 8 bits of subpixel precision (cv2 ``shift``) so small dots
keep their sizes on low-resolution images.
"""

import logging
import math
import threading
from typing import List, NamedTuple, Optional

import cv2
import numpy as np
import torch

from src.halftone_engine.composite import InkCanvas
from src.halftone_engine.errors import RenderCancelled
from src.halftone_engine.pattern_field import pattern_index, PATTERNS
from src.halftone_engine.separation import InkPlane, ink_planes
from src.utils import geometry
from src.utils.color import to_float_rgb
from src.utils.validators import EngineConfigV1, Settings

logger = logging.getLogger(__name__)

MIN_INK = 0.02
MIN_CELL_SIZE = 2

SHIFT = 8
_FIXED = float(1 << SHIFT)

CANCEL_CHECK_EVERY = 4096


# ============================================================================
# CENTER ENUMERATION
# ============================================================================

class DotGrid(NamedTuple):
    """Visible dots of one channel in enumeration order.

    Attributes
    ----------
    xs, ys : np.ndarray
        Dot centers in source pixels, shape (N,)
    radii : np.ndarray
        Dot radii in pixels, shape (N,)
    cell_size : int
        Grid pitch in pixels
    """
    xs: np.ndarray
    ys: np.ndarray
    radii: np.ndarray
    cell_size: int

    def __len__(self) -> int:
        return int(self.xs.shape[0])


def grid_cell_size(width: int, frequency: float) -> int:
    """Grid pitch: round-half-up of width/frequency, at least 2 px."""
    return max(MIN_CELL_SIZE, int(math.floor(width / frequency + 0.5)))


def enumerate_dots(
    plane: InkPlane,
    width: int,
    height: int,
    frequency: float,
    angle: float,
    size: float
) -> DotGrid:
    """Visible dot centers and radii for one channel.

    Parameters
    ----------
    plane : InkPlane
        Channel intensities, shape (height, width)
    width, height : int
        Image size in pixels
    frequency : float
        Cells across the image width
    angle : float
        Screen angle in degrees
    size : float
        Dot size percent

    Returns
    -------
    DotGrid
        Dots in deterministic order (grid rows outer, columns inner)
    """
    cs = grid_cell_size(width, frequency)
    diag = math.sqrt(width * width + height * height)
    half = diag / 2.0

    n = int(math.ceil(diag / cs)) + 1
    offsets = -half + np.arange(n, dtype=np.float64) * cs
    offsets = offsets[offsets < half]

    gy, gx = np.meshgrid(offsets, offsets, indexing='ij')
    gx = gx.ravel()
    gy = gy.ravel()

    rad = math.radians(angle)
    c, s = math.cos(rad), math.sin(rad)
    rx = gx * c - gy * s + width / 2.0
    ry = gx * s + gy * c + height / 2.0

    inside = (rx >= 0) & (rx < width) & (ry >= 0) & (ry < height)
    rx = rx[inside]
    ry = ry[inside]

    ink = plane.sample(rx, ry).astype(np.float64)
    visible = ink >= MIN_INK
    rx = rx[visible]
    ry = ry[visible]
    radii = cs * 0.5 * np.sqrt(ink[visible]) * (size / 100.0)
    return DotGrid(rx, ry, radii, cs)


# ============================================================================
# SHAPE GEOMETRY
# ============================================================================

class ShapeOutline(NamedTuple):
    """Explicit geometry for one dot.

    Attributes
    ----------
    fills : list of list of np.ndarray
        Each entry is one fill call; contours inside one entry combine
        even-odd (a ring is outer + inner contour)
    strokes : list of np.ndarray
        Open polylines drawn 1 px wide
    """
    fills: List[List[np.ndarray]]
    strokes: List[np.ndarray]


def _circle_points(x: float, y: float, r: float) -> np.ndarray:
    segments = max(12, min(256, int(math.ceil(2.0 * math.pi * r))))
    return geometry.regular_polygon(x, y, r, segments)


def _rect(x0: float, y0: float, w: float, h: float) -> np.ndarray:
    return np.array([[x0, y0], [x0 + w, y0], [x0 + w, y0 + h], [x0, y0 + h]], dtype=np.float64)


def _ellipse_points(x: float, y: float, rx: float, ry: float, angle_rad: float) -> np.ndarray:
    segments = max(12, min(256, int(math.ceil(2.0 * math.pi * max(rx, ry)))))
    a = np.arange(segments) * (2.0 * math.pi / segments)
    pts = np.stack([x + rx * np.cos(a), y + ry * np.sin(a)], axis=1)
    return geometry.rotate_points(pts, (x, y), angle_rad)


def _round_rect(x: float, y: float, r: float, corner: float) -> np.ndarray:
    corner = min(corner, r)
    steps = max(2, int(math.ceil(corner)))
    pts = []
    # Corner centers clockwise from top-left (screen coordinates)
    for (ccx, ccy, start) in (
        (x - r + corner, y - r + corner, math.pi),
        (x + r - corner, y - r + corner, 1.5 * math.pi),
        (x + r - corner, y + r - corner, 0.0),
        (x - r + corner, y + r - corner, 0.5 * math.pi),
    ):
        a = start + np.linspace(0.0, 0.5 * math.pi, steps + 1)
        pts.append(np.stack([ccx + corner * np.cos(a), ccy + corner * np.sin(a)], axis=1))
    return np.concatenate(pts, axis=0)


def _heart(x: float, y: float, r: float) -> np.ndarray:
    right = geometry.bezier_cubic_polyline(
        (x, y + r * 0.5), (x + r, y - r * 0.5), (x + r, y - r * 1.5), (x, y - r * 0.5)
    )
    left = geometry.bezier_cubic_polyline(
        (x, y - r * 0.5), (x - r, y - r * 1.5), (x - r, y - r * 0.5), (x, y + r * 0.5)
    )
    return np.concatenate([right, left[1:-1]], axis=0)


def shape_polygons(
    x: float,
    y: float,
    r: float,
    cell_size: float,
    angle: float,
    pattern: str
) -> ShapeOutline:
    """Outline of one dot.

    Parameters
    ----------
    x, y : float
        Dot center in pixels
    r : float
        Dot radius in pixels
    cell_size : float
        Grid pitch in pixels (line and zigzag span the cell)
    angle : float
        Channel screen angle in degrees (ellipse and wave follow it)
    pattern : str
        Pattern name; gooey and unknown names draw a circle

    Returns
    -------
    ShapeOutline
        Fill contours and open strokes
    """
    rad = math.radians(angle)

    if pattern == 'square':
        return ShapeOutline([[_rect(x - r, y - r, 2 * r, 2 * r)]], [])
    if pattern == 'diamond':
        square = _rect(x - r, y - r, 2 * r, 2 * r)
        return ShapeOutline([[geometry.rotate_points(square, (x, y), math.pi / 4)]], [])
    if pattern == 'ellipse':
        return ShapeOutline([[_ellipse_points(x, y, r, r * 0.6, rad)]], [])
    if pattern == 'line':
        return ShapeOutline([[_rect(x - cell_size * 0.4, y - r * 0.3, cell_size * 0.8, r * 0.6)]], [])
    if pattern == 'cross':
        return ShapeOutline([
            [_rect(x - r * 0.2, y - r, r * 0.4, r * 2)],
            [_rect(x - r, y - r * 0.2, r * 2, r * 0.4)],
        ], [])
    if pattern == 'star':
        return ShapeOutline([[geometry.star_polygon(x, y, r, r * 0.5)]], [])
    if pattern == 'triangle':
        tri = np.array([[x, y - r], [x + r * 0.866, y + r * 0.5], [x - r * 0.866, y + r * 0.5]])
        return ShapeOutline([[tri]], [])
    if pattern == 'hex':
        return ShapeOutline([[geometry.regular_polygon(x, y, r, 6)]], [])
    if pattern == 'ring':
        return ShapeOutline([[_circle_points(x, y, r), _circle_points(x, y, r * 0.5)[::-1]]], [])
    if pattern == 'wave':
        return ShapeOutline([[_ellipse_points(x, y, r, r * 0.3, rad)]], [])
    if pattern == 'dot-grid':
        s = r * 0.4
        return ShapeOutline([[_circle_points(x + dx, y + dy, s)] for dy in (-s, s) for dx in (-s, s)], [])
    if pattern == 'zigzag':
        zig = np.array([
            [x - cell_size / 2, y],
            [x - cell_size / 4, y - r],
            [x + cell_size / 4, y + r],
            [x + cell_size / 2, y],
        ])
        return ShapeOutline([], [zig])
    if pattern == 'heart':
        return ShapeOutline([[_heart(x, y, r)]], [])
    if pattern == 'rounded-box':
        return ShapeOutline([[_round_rect(x, y, r, r * 0.5)]], [])
    return ShapeOutline([[_circle_points(x, y, r)]], [])


def _to_fixed(points: np.ndarray) -> np.ndarray:
    # cv2 samples pixel centers at integer coordinates
    return np.round((points - 0.5) * _FIXED).astype(np.int32)


def draw_shape(mask: np.ndarray, outline: ShapeOutline) -> None:
    """Rasterize one outline into a uint8 mask (255 = full ink)."""
    for contours in outline.fills:
        cv2.fillPoly(mask, [_to_fixed(c) for c in contours], 255, lineType=cv2.LINE_AA, shift=SHIFT)
    for line in outline.strokes:
        cv2.polylines(mask, [_to_fixed(line)], False, 255, thickness=1, lineType=cv2.LINE_AA, shift=SHIFT)


# ============================================================================
# DRIVER
# ============================================================================

class GridSampler:
    """Grid-walking raster driver.

    Parameters
    ----------
    config : EngineConfigV1, optional
        Engine config (background color); defaults apply if None

    Examples
    --------
    >>> sampler = GridSampler()
    >>> rgba = sampler.render(image_rgba, Settings())
    """

    name = "grid"

    def __init__(self, config: Optional[EngineConfigV1] = None):
        self.config = config or EngineConfigV1()

    def channel_mask(
        self,
        plane: InkPlane,
        width: int,
        height: int,
        frequency: float,
        angle: float,
        size: float,
        pattern: str,
        cancel: Optional[threading.Event] = None
    ) -> np.ndarray:
        """Coverage mask for one channel.

        Returns
        -------
        np.ndarray
            Mask, shape (height, width), uint8 (0 = paper, 255 = full ink)
        """
        dots = enumerate_dots(plane, width, height, frequency, angle, size)
        name = PATTERNS[pattern_index(pattern)]
        if name == 'gooey':
            logger.debug("Metaball pattern has no explicit outline, drawing circles")

        mask = np.zeros((height, width), dtype=np.uint8)
        for i in range(len(dots)):
            if cancel is not None and i % CANCEL_CHECK_EVERY == 0 and cancel.is_set():
                raise RenderCancelled("Grid render cancelled")
            outline = shape_polygons(dots.xs[i], dots.ys[i], dots.radii[i], dots.cell_size, angle, name)
            draw_shape(mask, outline)
        return mask

    def render_planes(
        self,
        planes: list,
        width: int,
        height: int,
        settings: Settings,
        cancel: Optional[threading.Event] = None
    ) -> np.ndarray:
        """Composite pre-separated channels.

        Parameters
        ----------
        planes : list of (ScreenSpec, InkPlane)
            Channels in composite order (see separation.ink_planes())
        width, height : int
            Image size in pixels
        settings : Settings
            Render settings (pattern, transparency)
        cancel : threading.Event, optional
            Set to abandon the pass; raises RenderCancelled

        Returns
        -------
        np.ndarray
            RGBA image, shape (height, width, 4), uint8
        """
        canvas = InkCanvas(height, width, self.config.background, settings.transparent_bg)
        for screen, plane in planes:
            if cancel is not None and cancel.is_set():
                raise RenderCancelled("Grid render cancelled")
            mask = self.channel_mask(
                plane, width, height, screen.frequency, screen.angle, screen.size,
                settings.pattern, cancel
            )
            canvas.apply(torch.from_numpy(mask).float() / 255.0, screen.color)
            logger.debug(f"Grid channel {screen.name}: {int((mask > 127).sum())} inked px")
        return canvas.to_rgba8()

    def render(
        self,
        image: np.ndarray,
        settings: Settings,
        cancel: Optional[threading.Event] = None
    ) -> np.ndarray:
        """Render an RGB(A) uint8 image to an RGBA halftone.

        Parameters
        ----------
        image : np.ndarray
            Source pixels, shape (H, W, 3|4), uint8
        settings : Settings
            Render settings
        cancel : threading.Event, optional
            Set to abandon the pass

        Returns
        -------
        np.ndarray
            RGBA image, shape (H, W, 4), uint8
        """
        rgb = to_float_rgb(image)
        height, width = rgb.shape[:2]
        return self.render_planes(ink_planes(rgb, settings), width, height, settings, cancel)
