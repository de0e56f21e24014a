"""Procedural halftone field: per-pixel dot coverage from closed-form shapes.

Every pixel is mapped into a rotated screen grid, its position within the
grid cell is compared against an analytic pattern distance, and the edge is
antialiased with a smoothstep. Nothing here holds state; all functions are
pure in their tensor arguments, so bands of rows can be evaluated in
parallel on CPU or CUDA.

Pipeline (per pixel p, per channel):
    1. cellSize = width / frequency
    2. Rotate p by −θ about the image center → grid space
    3. cell = floor(p/cellSize); uv = (p − cellCenter)/cellSize ∈ [−0.5, 0.5)²
    4. radius from ink value v and size s:
         area patterns  r = sqrt(v)·0.5·s/100
         width patterns r = v·k·s/100 (line 0.45, ring 0.2, wave/zigzag 0.35,
                                        heart 0.8)
    5. d = pattern distance of uv (16 closed forms, see _DISTANCES)
    6. coverage = 1 − smoothstep(r − ε, r + ε, d), forced to 0 where r ≤ 0

The metaball pattern ("gooey") replaces steps 4-6 with a 7×7 neighborhood
sum of windowed inverse-distance influences thresholded at 1.

Coordinates:
    Pixel centers are at (x + 0.5, y + 0.5), +Y down.

Antialiasing:
    - Dense evaluation (coverage_grid): ε = fwidth(d) from forward
      differences over the pixel grid; the band is evaluated one row and
      one column larger so every output pixel has both neighbors.
    - Pointwise evaluation (coverage): fixed ε (default 0.03 cell units).
"""

import logging
import math
from typing import Callable, NamedTuple, Optional, Tuple, Union

import torch

from src.utils.compute import fract, fwidth, smoothstep

logger = logging.getLogger(__name__)

Number = Union[float, torch.Tensor]

PATTERNS: Tuple[str, ...] = (
    'circle', 'square', 'diamond', 'ellipse', 'line', 'cross', 'star', 'triangle',
    'hex', 'ring', 'wave', 'dot-grid', 'gooey', 'zigzag', 'heart', 'rounded-box',
)
PATTERN_COUNT = len(PATTERNS)

GOOEY = PATTERNS.index('gooey')

DEFAULT_AA_WIDTH = 0.03

# Metaball neighborhood and falloff (in cell units)
METABALL_REACH = 3
METABALL_WINDOW_OUTER = 2.9
METABALL_WINDOW_INNER = 1.45
METABALL_GAIN = 1.5
METABALL_MIN_DIST = 0.001

# Width-type patterns: linear radius = v·k·s/100
_LINEAR_RADIUS = {
    PATTERNS.index('line'): 0.45,
    PATTERNS.index('ring'): 0.2,
    PATTERNS.index('wave'): 0.35,
    PATTERNS.index('zigzag'): 0.35,
    PATTERNS.index('heart'): 0.8,
}

_unknown_patterns = set()


def pattern_index(name: str) -> int:
    """Canonical index of a pattern name; unknown names map to circle.

    Parameters
    ----------
    name : str
        Pattern name (case-insensitive)

    Returns
    -------
    int
        Index into PATTERNS
    """
    key = str(name).strip().lower()
    try:
        return PATTERNS.index(key)
    except ValueError:
        if key not in _unknown_patterns:
            _unknown_patterns.add(key)
            logger.debug(f"Unknown pattern '{name}', evaluating as circle")
        return 0


# ============================================================================
# GRID TRANSFORM
# ============================================================================

class GridPoint(NamedTuple):
    """Pixel position expressed in screen-grid space."""
    pos_x: torch.Tensor
    pos_y: torch.Tensor
    cell_x: torch.Tensor
    cell_y: torch.Tensor
    uv_x: torch.Tensor
    uv_y: torch.Tensor
    cell_size: float


def grid_transform(
    x: torch.Tensor,
    y: torch.Tensor,
    width: int,
    height: int,
    frequency: float,
    angle: float
) -> GridPoint:
    """Map source positions into the rotated screen grid.

    Parameters
    ----------
    x, y : torch.Tensor
        Source positions in pixels (pixel centers at +0.5)
    width, height : int
        Image size in pixels
    frequency : float
        Cells across the image width
    angle : float
        Screen angle in degrees

    Returns
    -------
    GridPoint
        Grid-space position, integer cell coordinates (as floats), local
        UV in [−0.5, 0.5) cell units, and the cell size in pixels
    """
    cell_size = float(width) / float(frequency)
    cx = width * 0.5
    cy = height * 0.5
    rad = math.radians(angle)
    c, s = math.cos(rad), math.sin(rad)

    dx = x - cx
    dy = y - cy
    pos_x = c * dx + s * dy + cx
    pos_y = -s * dx + c * dy + cy

    cell_x = torch.floor(pos_x / cell_size)
    cell_y = torch.floor(pos_y / cell_size)
    uv_x = (pos_x - (cell_x + 0.5) * cell_size) / cell_size
    uv_y = (pos_y - (cell_y + 0.5) * cell_size) / cell_size
    return GridPoint(pos_x, pos_y, cell_x, cell_y, uv_x, uv_y, cell_size)


# ============================================================================
# PATTERN DISTANCES
# ============================================================================

def _length(x: torch.Tensor, y: torch.Tensor) -> torch.Tensor:
    return torch.sqrt(x * x + y * y)


def _circle(u, v):
    return _length(u, v)


def _square(u, v):
    return torch.maximum(u.abs(), v.abs())


def _diamond(u, v):
    return (u.abs() + v.abs()) * 0.707


def _ellipse(u, v):
    return _length(u, v * 1.6)


def _line(u, v):
    return v.abs()


def _cross(u, v):
    return torch.minimum(u.abs(), v.abs())


def _star(u, v):
    a = torch.atan2(v, u)
    return _length(u, v) * (1.0 + 0.3 * torch.cos(a * 5.0))


def _triangle(u, v):
    # Equilateral triangle SDF, blended with radial distance so isolines stay concentric
    k = math.sqrt(3.0)
    px = u.abs() - 0.5
    py = v + 0.5 / k
    fold = (px + k * py) > 0.0
    px, py = (
        torch.where(fold, (px - k * py) * 0.5, px),
        torch.where(fold, (-k * px - py) * 0.5, py),
    )
    px = px - torch.clamp(px, -1.0, 0.0)
    sd = -_length(px, py) * torch.sign(py)
    return _length(u, v) + sd * 0.3


def _hex(u, v):
    pu, pv = u.abs(), v.abs()
    return torch.maximum(pu * 0.866 + pv * 0.5, pv)


def _ring(u, v):
    return (_length(u, v) - 0.3).abs()


def _wave(u, v):
    return (v - torch.sin(u * 6.28) * 0.15).abs()


def _dot_grid(u, v):
    su = fract(u * 2.0 + 0.5) - 0.5
    sv = fract(v * 2.0 + 0.5) - 0.5
    return _length(su, sv) * 2.0


def _zigzag(u, v):
    amp = 0.25
    wave = (fract(u + 0.25) - 0.5).abs() - 0.25
    return (v - wave * 2.0 * amp * 2.0).abs()


def _heart(u, v):
    # Heart SDF with +Y up, tip at the bottom; offset so the deepest point is near 0
    px = (u * 1.8).abs()
    py = -(v + 0.1) * 1.8
    lobe = _length(px - 0.25, py - 0.75) - 0.35355
    m = 0.5 * torch.clamp(px + py, min=0.0)
    tip = torch.sqrt(torch.minimum(
        px * px + (py - 1.0) * (py - 1.0),
        (px - m) * (px - m) + (py - m) * (py - m),
    )) * torch.sign(px - py)
    return torch.where(py + px > 1.0, lobe, tip) + 0.5


def _rounded_box(u, v):
    return (u.abs() ** 4 + v.abs() ** 4) ** 0.25


_DISTANCES = {
    0: _circle,
    1: _square,
    2: _diamond,
    3: _ellipse,
    4: _line,
    5: _cross,
    6: _star,
    7: _triangle,
    8: _hex,
    9: _ring,
    10: _wave,
    11: _dot_grid,
    12: _circle,
    13: _zigzag,
    14: _heart,
    15: _rounded_box,
}


def pattern_radius(value: Number, size: float, pattern_id: int) -> Number:
    """Threshold radius in cell units for ink ``value`` and size percent."""
    scale = size / 100.0
    k = _LINEAR_RADIUS.get(pattern_id)
    if k is not None:
        return value * k * scale
    if isinstance(value, torch.Tensor):
        return torch.sqrt(torch.clamp(value, min=0.0)) * 0.5 * scale
    return math.sqrt(max(float(value), 0.0)) * 0.5 * scale


def pattern_distance(
    uv_x: torch.Tensor,
    uv_y: torch.Tensor,
    value: Number,
    size: float,
    pattern_id: int
) -> Tuple[torch.Tensor, Number]:
    """Pattern distance and threshold radius for local cell coordinates.

    Parameters
    ----------
    uv_x, uv_y : torch.Tensor
        Local cell coordinates, cell units, centered on the cell
    value : float or torch.Tensor
        Ink intensity in [0, 1] (broadcastable to uv)
    size : float
        Dot size percent
    pattern_id : int
        Index into PATTERNS; out-of-range ids evaluate as circle

    Returns
    -------
    (d, radius)
        Distance field and radius; ink where d < radius

    Notes
    -----
    The metaball id has no closed-form distance and evaluates as circle
    here; use metaball_sum() for it.
    """
    fn = _DISTANCES.get(int(pattern_id), _circle)
    radius_id = int(pattern_id) if int(pattern_id) in _DISTANCES else 0
    return fn(uv_x, uv_y), pattern_radius(value, size, radius_id)


def aastep_coverage(d: torch.Tensor, radius: Number, eps: Number) -> torch.Tensor:
    """Antialiased inside test: 1 − smoothstep(r − ε, r + ε, d).

    Coverage is exactly 0 wherever radius ≤ 0, so zero ink never marks
    the paper even at d = 0.
    """
    radius_t = torch.as_tensor(radius, dtype=d.dtype, device=d.device)
    eps_t = torch.as_tensor(eps, dtype=d.dtype, device=d.device)
    cov = 1.0 - smoothstep(radius_t - eps_t, radius_t + eps_t, d)
    return torch.where(radius_t > 0.0, cov, torch.zeros_like(cov))


# ============================================================================
# METABALLS
# ============================================================================

InkSampler = Callable[[torch.Tensor, torch.Tensor], torch.Tensor]


def bilinear_sampler(plane: torch.Tensor) -> InkSampler:
    """Bilinear ink lookup at source pixel positions, clamped to the image.

    Parameters
    ----------
    plane : torch.Tensor
        Ink plane, shape (H, W)

    Returns
    -------
    Callable
        sampler(x, y) → ink values shaped like x; texel centers sit at
        integer + 0.5 positions
    """
    h, w = plane.shape
    flat = plane.reshape(-1)

    def sample(x: torch.Tensor, y: torch.Tensor) -> torch.Tensor:
        fx = torch.clamp(torch.clamp(x, 0.0, float(w)) - 0.5, 0.0, float(w - 1))
        fy = torch.clamp(torch.clamp(y, 0.0, float(h)) - 0.5, 0.0, float(h - 1))
        x0 = torch.floor(fx)
        y0 = torch.floor(fy)
        tx = fx - x0
        ty = fy - y0
        x0i = x0.long()
        y0i = y0.long()
        x1i = torch.clamp(x0i + 1, max=w - 1)
        y1i = torch.clamp(y0i + 1, max=h - 1)
        v00 = flat[y0i * w + x0i]
        v01 = flat[y0i * w + x1i]
        v10 = flat[y1i * w + x0i]
        v11 = flat[y1i * w + x1i]
        top = v00 + (v01 - v00) * tx
        bottom = v10 + (v11 - v10) * tx
        return top + (bottom - top) * ty

    return sample


def uniform_sampler(value: float) -> InkSampler:
    """Sampler returning the same ink everywhere (pointwise evaluation)."""
    def sample(x: torch.Tensor, y: torch.Tensor) -> torch.Tensor:
        return torch.full_like(x, float(value))
    return sample


def metaball_sum(
    grid: GridPoint,
    width: int,
    height: int,
    angle: float,
    size: float,
    sampler: InkSampler
) -> torch.Tensor:
    """Metaball field: Σ (1.5·R/dist · window)² over the 7×7 neighborhood.

    Parameters
    ----------
    grid : GridPoint
        Output of grid_transform() for the evaluated positions
    width, height : int
        Image size in pixels
    angle : float
        Screen angle in degrees
    size : float
        Dot size percent
    sampler : Callable
        Ink lookup at source positions (see bilinear_sampler())

    Returns
    -------
    torch.Tensor
        Field value; the ink boundary is the level set sum = 1

    Notes
    -----
    Each neighbor center is mapped back to source space (rotation +θ) to
    read its ink. The window reaches 0 at 2.9 cells, inside the 3-cell
    neighborhood reach, so distant cells never interact.
    """
    cs = grid.cell_size
    cx = width * 0.5
    cy = height * 0.5
    rad = math.radians(angle)
    c, s = math.cos(rad), math.sin(rad)
    scale = 0.5 * cs * (size / 100.0)
    outer = METABALL_WINDOW_OUTER * cs
    inner = METABALL_WINDOW_INNER * cs

    total = torch.zeros_like(grid.pos_x)
    for oy in range(-METABALL_REACH, METABALL_REACH + 1):
        for ox in range(-METABALL_REACH, METABALL_REACH + 1):
            ncx = (grid.cell_x + (ox + 0.5)) * cs
            ncy = (grid.cell_y + (oy + 0.5)) * cs

            dx = ncx - cx
            dy = ncy - cy
            src_x = c * dx - s * dy + cx
            src_y = s * dx + c * dy + cy
            val = torch.clamp(sampler(src_x, src_y), min=0.0)

            r = torch.sqrt(val) * scale
            dist = torch.clamp(_length(grid.pos_x - ncx, grid.pos_y - ncy), min=METABALL_MIN_DIST)
            window = smoothstep(outer, inner, dist)
            influence = METABALL_GAIN * r / dist * window
            total = total + influence * influence
    return total


def metaball_coverage(total: torch.Tensor, eps: Number) -> torch.Tensor:
    """Threshold the metaball field at 1 with half-width ``eps``."""
    eps_t = torch.as_tensor(eps, dtype=total.dtype, device=total.device)
    return smoothstep(1.0 - eps_t, 1.0 + eps_t, total)


# ============================================================================
# EVALUATION
# ============================================================================

def coverage(
    x: Number,
    y: Number,
    width: int,
    height: int,
    frequency: float,
    angle: float,
    value: Number,
    size: float,
    pattern: Union[int, str],
    eps: float = DEFAULT_AA_WIDTH,
    sampler: Optional[InkSampler] = None
) -> torch.Tensor:
    """Pointwise ink coverage with a fixed antialiasing width.

    Parameters
    ----------
    x, y : float or torch.Tensor
        Source positions in pixels
    width, height : int
        Image size in pixels
    frequency : float
        Cells across the image width
    angle : float
        Screen angle in degrees
    value : float or torch.Tensor
        Ink intensity at (x, y), [0, 1]
    size : float
        Dot size percent
    pattern : int or str
        Pattern index or name
    eps : float
        Edge half-width in distance units, default 0.03
    sampler : Callable, optional
        Neighbor ink lookup for the metaball pattern; defaults to a uniform
        field of ``value``

    Returns
    -------
    torch.Tensor
        Coverage in [0, 1], shaped like the broadcast of x and y
    """
    pid = pattern_index(pattern) if isinstance(pattern, str) else int(pattern)
    x = torch.as_tensor(x, dtype=torch.float32)
    y = torch.as_tensor(y, dtype=torch.float32, device=x.device)
    x, y = torch.broadcast_tensors(x, y)
    grid = grid_transform(x, y, width, height, frequency, angle)

    if pid == GOOEY:
        if sampler is None:
            if isinstance(value, torch.Tensor) and value.numel() > 1:
                raise ValueError("Metaball coverage with per-point ink needs a sampler")
            sampler = uniform_sampler(float(value))
        total = metaball_sum(grid, width, height, angle, size, sampler)
        return metaball_coverage(total, eps)

    if isinstance(value, torch.Tensor):
        value = value.to(dtype=torch.float32, device=x.device)
    d, radius = pattern_distance(grid.uv_x, grid.uv_y, value, size, pid)
    return aastep_coverage(d, radius, eps)


def coverage_grid(
    plane: torch.Tensor,
    rows: slice,
    width: int,
    height: int,
    frequency: float,
    angle: float,
    size: float,
    pattern: Union[int, str],
    antialias: str = "derivative",
    aa_fixed_width: float = DEFAULT_AA_WIDTH
) -> torch.Tensor:
    """Dense coverage for a band of pixel rows.

    Parameters
    ----------
    plane : torch.Tensor
        Full ink plane, shape (H, W), on the evaluation device
    rows : slice
        Row band [start, stop) to evaluate
    width, height : int
        Image size in pixels (must match plane)
    frequency : float
        Cells across the image width
    angle : float
        Screen angle in degrees
    size : float
        Dot size percent
    pattern : int or str
        Pattern index or name
    antialias : str
        "derivative" (ε from forward differences) or "fixed"
    aa_fixed_width : float
        ε for "fixed" mode

    Returns
    -------
    torch.Tensor
        Coverage, shape (stop − start, W), float32 [0, 1]
    """
    if plane.ndim != 2 or tuple(plane.shape) != (height, width):
        raise ValueError(f"Plane shape {tuple(plane.shape)} != image ({height}, {width})")
    if antialias not in ("derivative", "fixed"):
        raise ValueError(f"Unknown antialias mode: {antialias}. Use 'derivative' or 'fixed'.")

    pid = pattern_index(pattern) if isinstance(pattern, str) else int(pattern)
    y0, y1 = rows.start or 0, rows.stop
    band_h = y1 - y0
    if band_h <= 0:
        return torch.zeros((0, width), dtype=torch.float32, device=plane.device)

    # One extra row and column feed the forward differences
    pad = 1 if antialias == "derivative" else 0
    ys = torch.arange(y0, y1 + pad, dtype=torch.float32, device=plane.device) + 0.5
    xs = torch.arange(0, width + pad, dtype=torch.float32, device=plane.device) + 0.5
    gy, gx = torch.meshgrid(ys, xs, indexing='ij')
    grid = grid_transform(gx, gy, width, height, frequency, angle)

    if pid == GOOEY:
        total = metaball_sum(grid, width, height, angle, size, bilinear_sampler(plane))
        if pad:
            eps = fwidth(total) * 0.5
            total = total[:-1, :-1]
        else:
            eps = aa_fixed_width
        return metaball_coverage(total, eps)

    d, radius = pattern_distance(grid.uv_x, grid.uv_y, plane[y0:y1, :], size, pid)
    if pad:
        eps = fwidth(d)
        d = d[:-1, :-1]
    else:
        eps = aa_fixed_width
    return aastep_coverage(d, radius, eps)
