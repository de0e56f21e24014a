"""SVG export of the halftone screen.

Reuses grid_sampler.enumerate_dots() for dot centers and radii, so the
vector output lines up with the grid-sampled raster dot for dot. One
``<g>`` group per enabled channel, in composite order.

Channel sets:
    cmyk → cyan, magenta, yellow, key
    mono → key
    duotone / tritone → none (the document has only the background)

Shapes:
    circle, square, diamond (square rotated 45°), ellipse (rx = r,
    ry = 0.6r, rotated by the channel angle), hex (polygon) and dot-grid
    (four sub-circles of radius 0.4r); every other pattern is a circle of
    the dot radius.

Numbers are written with one decimal place, rounding half away from zero
on the exact binary value.
"""

import logging
import math
import threading
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional

import numpy as np

from src.halftone_engine.errors import ExportCancelled
from src.halftone_engine.grid_sampler import enumerate_dots
from src.halftone_engine.separation import PROCESS_INKS, InkPlane, cmyk_planes
from src.utils.color import to_float_rgb, to_hex
from src.utils.validators import CMYK_CHANNELS, Settings

logger = logging.getLogger(__name__)

BACKGROUND_HEX = "#f4f1ea"
GROUP_OPACITY = "0.85"
CANCEL_CHECK_EVERY = 4096

_TENTH = Decimal("0.1")


def fmt1(value: float) -> str:
    """One-decimal fixed notation (half-up on the exact binary value)."""
    return str(Decimal(float(value)).quantize(_TENTH, rounding=ROUND_HALF_UP))


def fmt_number(value: float) -> str:
    """Shortest plain notation: integers without a trailing ".0"."""
    value = float(value)
    if value.is_integer():
        return str(int(value))
    return repr(value)


def svg_shape(x: float, y: float, r: float, angle: float, pattern: str) -> str:
    """One dot as SVG element text (4-space indent, trailing newline).

    Parameters
    ----------
    x, y : float
        Dot center in pixels
    r : float
        Dot radius in pixels
    angle : float
        Channel angle in degrees (ellipse rotation)
    pattern : str
        Pattern name

    Returns
    -------
    str
        Element markup
    """
    xf, yf, rf = fmt1(x), fmt1(y), fmt1(r)

    if pattern == 'square':
        return (f'    <rect x="{fmt1(x - r)}" y="{fmt1(y - r)}" '
                f'width="{fmt1(r * 2)}" height="{fmt1(r * 2)}"/>\n')
    if pattern == 'diamond':
        return (f'    <rect x="{fmt1(x - r)}" y="{fmt1(y - r)}" '
                f'width="{fmt1(r * 2)}" height="{fmt1(r * 2)}" transform="rotate(45 {xf} {yf})"/>\n')
    if pattern == 'ellipse':
        return (f'    <ellipse cx="{xf}" cy="{yf}" rx="{rf}" ry="{fmt1(r * 0.6)}" '
                f'transform="rotate({fmt_number(angle)} {xf} {yf})"/>\n')
    if pattern == 'hex':
        pts = ' '.join(
            f"{fmt1(x + r * math.cos(i * math.pi / 3))},{fmt1(y + r * math.sin(i * math.pi / 3))}"
            for i in range(6)
        )
        return f'    <polygon points="{pts}"/>\n'
    if pattern == 'dot-grid':
        s = r * 0.4
        sf = fmt1(s)
        return ''.join(
            f'    <circle cx="{fmt1(x + dx)}" cy="{fmt1(y + dy)}" r="{sf}"/>\n'
            for dy in (-s, s) for dx in (-s, s)
        )
    return f'    <circle cx="{xf}" cy="{yf}" r="{rf}"/>\n'


class VectorExporter:
    """Build SVG documents from a source image and Settings.

    Examples
    --------
    >>> svg = VectorExporter().export(image_rgba, Settings(pattern="hex"))
    >>> fs.atomic_write_text("out/halftone.svg", svg)
    """

    def export_channels(self, settings: Settings) -> List[str]:
        """Channel names that produce groups, in composite order."""
        if settings.color_mode == 'cmyk':
            names = CMYK_CHANNELS
        elif settings.color_mode == 'mono':
            names = ('key',)
        else:
            return []
        return [name for name in names if settings.channels[name].enabled]

    def export(
        self,
        image: np.ndarray,
        settings: Settings,
        cancel: Optional[threading.Event] = None
    ) -> str:
        """Render the SVG document.

        Parameters
        ----------
        image : np.ndarray
            Source pixels, shape (H, W, 3|4), uint8
        settings : Settings
            Render settings
        cancel : threading.Event, optional
            Checked per channel and every 4096 shapes

        Returns
        -------
        str
            Complete SVG document

        Raises
        ------
        ExportCancelled
            If ``cancel`` is set before the document is complete
        """
        rgb = to_float_rgb(image)
        height, width = rgb.shape[:2]

        parts = [
            '<?xml version="1.0" encoding="UTF-8"?>\n'
            f'<svg xmlns="http://www.w3.org/2000/svg" width="{width}" height="{height}" '
            f'viewBox="0 0 {width} {height}">\n'
        ]
        if not settings.transparent_bg:
            parts.append(f'  <rect width="{width}" height="{height}" fill="{BACKGROUND_HEX}"/>\n')

        channels = self.export_channels(settings)
        if not channels and settings.color_mode not in ('cmyk', 'mono'):
            logger.info(f"SVG export has no channel groups for color_mode '{settings.color_mode}'")

        planes = cmyk_planes(rgb) if channels else None
        shapes = 0
        for name in channels:
            if cancel is not None and cancel.is_set():
                raise ExportCancelled(f"SVG export cancelled before channel {name}")
            ch = settings.channels[name]
            plane = InkPlane(planes[..., CMYK_CHANNELS.index(name)])
            dots = enumerate_dots(plane, width, height, ch.frequency, ch.angle, ch.size)

            parts.append(f'  <g fill="{to_hex(PROCESS_INKS[name])}" opacity="{GROUP_OPACITY}">\n')
            for i in range(len(dots)):
                if cancel is not None and i % CANCEL_CHECK_EVERY == 0 and cancel.is_set():
                    raise ExportCancelled(f"SVG export cancelled in channel {name}")
                parts.append(svg_shape(dots.xs[i], dots.ys[i], dots.radii[i], ch.angle, settings.pattern))
            parts.append('  </g>\n')
            shapes += len(dots)

        parts.append('</svg>')
        logger.debug(f"SVG export: {len(channels)} groups, {shapes} dots")
        return ''.join(parts)
