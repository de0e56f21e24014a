"""Channel separation: source pixels → per-ink intensity planes.

Provides:
    - separate_pixel(): scalar reference for one pixel and one channel
    - separate(): the same formulas vectorized over a whole image (numpy)
    - cmyk_planes(): all four CMYK planes in one pass
    - InkPlane: immutable per-channel intensity map shared by both drivers
    - ScreenSpec / resolve_screens(): which channels a Settings snapshot
      renders, in composite order, with their screen parameters

Color modes:
    - cmyk: K = 1 − max(r,g,b); C,M,Y = (1 − r|g|b − K)/(1 − K), clamped.
      Near-black (K ≥ 0.9999) separates to pure K.
    - mono: the CMYK K plane.
    - duotone: from Rec. 601 luma L, ch0 = (1−L)^1.2·0.8, ch1 = L·0.6
    - tritone: ch0 = max(0,(0.4−L)·2.5), ch1 = max(0, 1−|L−0.5|·2.5),
      ch2 = max(0,(L−0.6)·2.5)

These are tone curves for a stylized effect, not a colorimetric separation.
"""

import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np
import torch

from src.utils.color import BLACK, RGB, luminance_rec601, parse_color
from src.utils.validators import CMYK_CHANNELS, DEFAULT_INKS, Settings

logger = logging.getLogger(__name__)

BLACK_THRESHOLD = 0.9999

CUSTOM_ANGLES = (15.0, 75.0, 45.0)

MODE_CHANNEL_COUNT = {'cmyk': 4, 'mono': 1, 'duotone': 2, 'tritone': 3}

# Fixed process inks (cmyk and mono ignore per-channel colors)
PROCESS_INKS = {name: parse_color(DEFAULT_INKS[name]) for name in CMYK_CHANNELS}


# ============================================================================
# SCALAR REFERENCE
# ============================================================================

def separate_pixel(
    rgb: Sequence[float],
    color_mode: str,
    channel_index: int,
    total_channels: int
) -> float:
    """Ink intensity of one channel for one pixel.

    Parameters
    ----------
    rgb : sequence of float
        (r, g, b) in [0, 1]
    color_mode : str
        "cmyk", "mono", "duotone" or "tritone"
    channel_index : int
        Channel position (C=0, M=1, Y=2, K=3 for cmyk; custom index otherwise)
    total_channels : int
        Channels in the current mode (2 selects the duotone curves, 3 tritone)

    Returns
    -------
    float
        Intensity in [0, 1]
    """
    r, g, b = (float(c) for c in rgb)

    if color_mode in ('cmyk', 'mono'):
        k = 1.0 - max(r, g, b)
        if k >= BLACK_THRESHOLD:
            return 1.0 if (color_mode == 'mono' or channel_index == 3) else 0.0
        if color_mode == 'mono' or channel_index == 3:
            return k
        comp = (r, g, b)[channel_index]
        return min(1.0, max(0.0, (1.0 - comp - k) / (1.0 - k)))

    lum = 0.299 * r + 0.587 * g + 0.114 * b
    if total_channels == 2:
        if channel_index == 0:
            return math.pow(1.0 - lum, 1.2) * 0.8
        return lum * 0.6
    if channel_index == 0:
        return max(0.0, (0.4 - lum) * 2.5)
    if channel_index == 1:
        return max(0.0, 1.0 - abs(lum - 0.5) * 2.5)
    return max(0.0, (lum - 0.6) * 2.5)


# ============================================================================
# VECTORIZED
# ============================================================================

def cmyk_planes(image_rgb: np.ndarray) -> np.ndarray:
    """All four CMYK planes.

    Parameters
    ----------
    image_rgb : np.ndarray
        RGB image, shape (H, W, 3), float [0, 1]

    Returns
    -------
    np.ndarray
        Planes (C, M, Y, K) stacked last, shape (H, W, 4), float32 [0, 1]
    """
    rgb = np.asarray(image_rgb, dtype=np.float32)
    k = 1.0 - rgb.max(axis=-1)
    black = k >= BLACK_THRESHOLD
    denom = np.where(black, 1.0, 1.0 - k)[..., None]
    cmy = np.clip((1.0 - rgb - k[..., None]) / denom, 0.0, 1.0)
    cmy[black] = 0.0
    k = np.where(black, 1.0, k)
    return np.concatenate([cmy, k[..., None]], axis=-1).astype(np.float32)


def separate(
    image_rgb: np.ndarray,
    color_mode: str,
    channel_index: int,
    total_channels: int
) -> np.ndarray:
    """Vectorized separate_pixel() over an image.

    Parameters
    ----------
    image_rgb : np.ndarray
        RGB image, shape (H, W, 3), float [0, 1]
    color_mode : str
        "cmyk", "mono", "duotone" or "tritone"
    channel_index : int
        Channel position within the mode
    total_channels : int
        Channels in the current mode

    Returns
    -------
    np.ndarray
        Intensity plane, shape (H, W), float32 [0, 1]
    """
    rgb = np.asarray(image_rgb, dtype=np.float32)
    if rgb.ndim != 3 or rgb.shape[2] != 3:
        raise ValueError(f"Expected (H, W, 3) RGB image, got {rgb.shape}")

    if color_mode in ('cmyk', 'mono'):
        if color_mode == 'mono':
            channel_index = 3
        if not 0 <= channel_index <= 3:
            raise ValueError(f"CMYK channel index must be 0..3, got {channel_index}")
        return cmyk_planes(rgb)[..., channel_index]

    if color_mode not in ('duotone', 'tritone'):
        raise ValueError(f"Unknown color mode: {color_mode}")

    lum = luminance_rec601(rgb)
    if total_channels == 2:
        if channel_index == 0:
            plane = np.power(np.clip(1.0 - lum, 0.0, 1.0), 1.2) * 0.8
        else:
            plane = lum * 0.6
    elif channel_index == 0:
        plane = np.maximum(0.0, (0.4 - lum) * 2.5)
    elif channel_index == 1:
        plane = np.maximum(0.0, 1.0 - np.abs(lum - 0.5) * 2.5)
    else:
        plane = np.maximum(0.0, (lum - 0.6) * 2.5)
    return np.clip(plane, 0.0, 1.0).astype(np.float32)


# ============================================================================
# INK PLANE
# ============================================================================

class InkPlane:
    """Read-only per-channel intensity map, shape (H, W), float32 [0, 1].

    The dense field reads it as a tensor, the grid sampler and SVG export
    with sample().
    """

    __slots__ = ('_values',)

    def __init__(self, values: np.ndarray):
        values = np.ascontiguousarray(values, dtype=np.float32)
        if values.ndim != 2:
            raise ValueError(f"InkPlane expects (H, W), got {values.shape}")
        values.setflags(write=False)
        self._values = values

    @classmethod
    def from_image(cls, image_rgb: np.ndarray, color_mode: str, channel_index: int) -> 'InkPlane':
        total = MODE_CHANNEL_COUNT.get(color_mode, 4)
        return cls(separate(image_rgb, color_mode, channel_index, total))

    @property
    def values(self) -> np.ndarray:
        return self._values

    @property
    def shape(self):
        return self._values.shape

    def sample(self, xs: np.ndarray, ys: np.ndarray) -> np.ndarray:
        """Nearest lookup at source coordinates (floor), clamped to the image."""
        h, w = self._values.shape
        px = np.clip(np.floor(xs).astype(np.int64), 0, w - 1)
        py = np.clip(np.floor(ys).astype(np.int64), 0, h - 1)
        return self._values[py, px]

    def as_tensor(self, device: Optional[torch.device] = None) -> torch.Tensor:
        """Plane as a float32 tensor on ``device`` (copy; the plane stays read-only)."""
        return torch.tensor(self._values, dtype=torch.float32, device=device)

    def __repr__(self) -> str:
        return f"InkPlane(shape={self._values.shape}, mean={float(self._values.mean()) if self._values.size else 0.0:.3f})"


# ============================================================================
# CHANNEL RESOLUTION
# ============================================================================

@dataclass(frozen=True)
class ScreenSpec:
    """One channel as it will be rendered.

    Attributes
    ----------
    name : str
        Channel name ("cyan", ..., or "custom0".."custom2")
    index : int
        Separation channel index passed to separate()
    angle : float
        Screen angle (degrees)
    size : float
        Dot size (percent)
    frequency : float
        Cells across the image width
    color : RGB
        Ink color [0, 1]
    """
    name: str
    index: int
    angle: float
    size: float
    frequency: float
    color: RGB


def resolve_screens(settings: Settings) -> List[ScreenSpec]:
    """Enabled channels of ``settings`` in composite order.

    cmyk renders cyan, magenta, yellow, key with the fixed process inks;
    mono renders the key channel only. duotone/tritone render
    ``custom_colors[i]`` at the fixed angles 15/75/45, taking size,
    frequency and the enabled flag from the i-th channel record.
    """
    screens: List[ScreenSpec] = []

    if settings.color_mode in ('cmyk', 'mono'):
        names = CMYK_CHANNELS if settings.color_mode == 'cmyk' else ('key',)
        for name in names:
            ch = settings.channels[name]
            if not ch.enabled:
                continue
            screens.append(ScreenSpec(
                name=name,
                index=CMYK_CHANNELS.index(name),
                angle=ch.angle,
                size=ch.size,
                frequency=ch.frequency,
                color=PROCESS_INKS[name],
            ))
        return screens

    count = MODE_CHANNEL_COUNT[settings.color_mode]
    records = list(settings.channels.values())
    if len(records) < count:
        raise ValueError(
            f"color_mode '{settings.color_mode}' needs {count} channel records, got {len(records)}"
        )
    for i in range(count):
        ch = records[i]
        if not ch.enabled:
            continue
        if i < len(settings.custom_colors):
            color = settings.custom_colors[i]
        else:
            logger.warning(f"No custom color #{i} for {settings.color_mode}, using black")
            color = BLACK
        screens.append(ScreenSpec(
            name=f"custom{i}",
            index=i,
            angle=CUSTOM_ANGLES[i],
            size=ch.size,
            frequency=ch.frequency,
            color=color,
        ))
    return screens


def ink_planes(image_rgb: np.ndarray, settings: Settings) -> List[tuple]:
    """Separate every enabled channel once.

    Returns
    -------
    list of (ScreenSpec, InkPlane)
        In composite order
    """
    screens = resolve_screens(settings)
    planes = []
    cmyk = None
    for screen in screens:
        if settings.color_mode in ('cmyk', 'mono'):
            if cmyk is None:
                cmyk = cmyk_planes(image_rgb)
            plane = InkPlane(cmyk[..., screen.index])
        else:
            plane = InkPlane.from_image(image_rgb, settings.color_mode, screen.index)
        planes.append((screen, plane))
    return planes
