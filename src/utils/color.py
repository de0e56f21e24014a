"""Color parsing and tone conversions for ink separation.

Provides:
    - parse_color(): hex strings / RGB triples → RGB floats [0,1]
    - to_hex(): RGB floats → "#rrggbb" (SVG fill attributes)
    - luminance_rec601(): Rec. 601 luma used by duotone/tritone separation
    - to_float_rgb(): uint8 image → float RGB [0,1]

Used by:
    - validators: Channel/Settings color fields
    - separation: Luminance tone curves
    - vector_export: Group fill colors

Invariants:
    - Colors are sRGB-encoded [0,1] floats internally (no linearization;
      halftone separation works on display values)
    - Unparseable color input resolves to black, never raises
"""

import logging
import re
from typing import Any, Sequence, Tuple

import numpy as np

logger = logging.getLogger(__name__)

RGB = Tuple[float, float, float]

BLACK: RGB = (0.0, 0.0, 0.0)

_HEX_RE = re.compile(r"^#?([a-f\d]{2})([a-f\d]{2})([a-f\d]{2})$", re.IGNORECASE)


def parse_color(value: Any) -> RGB:
    """Parse a color specification into RGB floats.

    Parameters
    ----------
    value : str or sequence of 3 numbers
        "#rrggbb" / "rrggbb" hex string, float triple in [0,1],
        or int triple in [0,255]

    Returns
    -------
    tuple of float
        (r, g, b) in [0, 1]

    Notes
    -----
    Anything that cannot be parsed resolves to black with a warning.
    """
    if isinstance(value, str):
        match = _HEX_RE.match(value.strip())
        if match is None:
            logger.warning(f"Unparseable color {value!r}, using black")
            return BLACK
        return tuple(int(match.group(i), 16) / 255.0 for i in (1, 2, 3))

    if isinstance(value, Sequence) and len(value) == 3:
        try:
            comps = [float(c) for c in value]
        except (TypeError, ValueError):
            logger.warning(f"Unparseable color {value!r}, using black")
            return BLACK
        if not all(np.isfinite(comps)):
            logger.warning(f"Non-finite color {value!r}, using black")
            return BLACK
        # Integer triples are 0-255
        if all(isinstance(c, (int, np.integer)) for c in value):
            comps = [c / 255.0 for c in comps]
        return tuple(float(np.clip(c, 0.0, 1.0)) for c in comps)

    logger.warning(f"Unparseable color {value!r}, using black")
    return BLACK


def to_hex(rgb: Sequence[float]) -> str:
    """Format RGB floats as a lowercase "#rrggbb" string.

    Parameters
    ----------
    rgb : sequence of float
        (r, g, b) in [0, 1]

    Returns
    -------
    str
        Hex color string
    """
    r, g, b = (int(round(min(1.0, max(0.0, float(c))) * 255)) for c in rgb)
    return f"#{r:02x}{g:02x}{b:02x}"


def luminance_rec601(rgb: np.ndarray) -> np.ndarray:
    """Rec. 601 luma from RGB.

    Parameters
    ----------
    rgb : np.ndarray
        RGB values, shape (..., 3), range [0, 1]

    Returns
    -------
    np.ndarray
        Luma, shape (...), range [0, 1]

    Notes
    -----
    Y' = 0.299*R + 0.587*G + 0.114*B (tone-curve input, not a physical
    separation).
    """
    return 0.299 * rgb[..., 0] + 0.587 * rgb[..., 1] + 0.114 * rgb[..., 2]


def to_float_rgb(img: np.ndarray) -> np.ndarray:
    """Convert an 8-bit RGB(A) image to float RGB [0,1].

    Parameters
    ----------
    img : np.ndarray
        Image, shape (H, W, 3) or (H, W, 4), uint8

    Returns
    -------
    np.ndarray
        RGB image, shape (H, W, 3), float32 [0, 1]; alpha is dropped
    """
    if img.ndim != 3 or img.shape[2] not in (3, 4):
        raise ValueError(f"Expected (H, W, 3|4) image, got {img.shape}")
    return img[..., :3].astype(np.float32) / 255.0
