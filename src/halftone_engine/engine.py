"""Halftone session: one source image, one active backend, one pass at a time.

HalftoneEngine owns a read-only copy of the source pixels and decides which
driver renders them:

    backend: field → FieldRasterizer on config.device
    backend: grid  → GridSampler
    backend: auto  → FieldRasterizer, or GridSampler if it is unavailable

A field backend that fails (at construction or mid-pass) is replaced by the
grid sampler for the rest of the session; the failure is logged, never
raised.

Concurrency:
    Each render/export call takes a cancellation token and then waits for
    the pass lock. Issuing a new call sets the previous call's token, so an
    in-flight pass stops at its next check (per channel, per band, or every
    4096 shapes) and its caller receives RenderCancelled / ExportCancelled.
    Raster and vector passes have independent tokens and locks.

Usage:
    engine = HalftoneEngine(rgba, validators.load_engine_config("configs/engine.v1.yaml"))
    raster = engine.render(settings)
    print_raster = engine.upscale_for_print(raster)   # or render_print(settings)
    svg = engine.export_svg(settings)
"""

import logging
import threading
from typing import Optional

import cv2
import numpy as np

from src.halftone_engine.errors import BackendUnavailable, ExportCancelled, RenderCancelled
from src.halftone_engine.grid_sampler import GridSampler
from src.halftone_engine.rasterizer import FieldRasterizer
from src.halftone_engine.separation import ink_planes
from src.halftone_engine.vector_export import VectorExporter
from src.utils.color import to_float_rgb
from src.utils.logging_config import log_context
from src.utils.profiler import timer
from src.utils.validators import EngineConfigV1, Settings

logger = logging.getLogger(__name__)


def validate_image(image: np.ndarray) -> np.ndarray:
    """Check a source buffer and promote RGB to opaque RGBA.

    Parameters
    ----------
    image : np.ndarray
        Source pixels, shape (H, W, 3) or (H, W, 4), uint8

    Returns
    -------
    np.ndarray
        Read-only RGBA copy, shape (H, W, 4), uint8

    Raises
    ------
    ValueError
        If the buffer is not a non-empty uint8 RGB/RGBA image
    """
    if not isinstance(image, np.ndarray):
        raise ValueError(f"Expected numpy image, got {type(image).__name__}")
    if image.ndim != 3 or image.shape[2] not in (3, 4):
        raise ValueError(f"Expected (H, W, 3|4) image, got {image.shape}")
    if image.dtype != np.uint8:
        raise ValueError(f"Expected uint8 image, got {image.dtype}")
    if image.shape[0] == 0 or image.shape[1] == 0:
        raise ValueError(f"Image is empty: {image.shape}")

    if image.shape[2] == 3:
        alpha = np.full(image.shape[:2] + (1,), 255, dtype=np.uint8)
        rgba = np.concatenate([image, alpha], axis=2)
    else:
        rgba = image.copy()
    rgba.setflags(write=False)
    return rgba


def upscale_rgba(raster: np.ndarray, scale: int) -> np.ndarray:
    """Bilinear upscale of an RGBA raster in premultiplied space.

    Parameters
    ----------
    raster : np.ndarray
        RGBA image, shape (H, W, 4), uint8
    scale : int
        Integer upscale factor, >= 1

    Returns
    -------
    np.ndarray
        RGBA image, shape (H·scale, W·scale, 4), uint8; fully transparent
        pixels have zero color

    Notes
    -----
    Interpolation runs on alpha-weighted color; fully transparent
    neighbors contribute no color to an edge pixel.
    """
    h, w = raster.shape[:2]
    rgba = raster.astype(np.float32) / 255.0
    alpha = rgba[..., 3:4]
    premul = np.concatenate([rgba[..., :3] * alpha, alpha], axis=2)
    big = cv2.resize(premul, (w * scale, h * scale), interpolation=cv2.INTER_LINEAR)
    big_alpha = big[..., 3:4]
    color = np.where(big_alpha > 0.0, big[..., :3] / np.maximum(big_alpha, 1e-8), 0.0)
    out = np.concatenate([np.clip(color, 0.0, 1.0), np.clip(big_alpha, 0.0, 1.0)], axis=2)
    return np.floor(out * 255.0 + 0.5).astype(np.uint8)


class HalftoneEngine:
    """Render and export halftones of one source image.

    Parameters
    ----------
    image : np.ndarray
        Source pixels, shape (H, W, 3|4), uint8
    config : EngineConfigV1, optional
        Engine configuration; defaults apply if None

    Raises
    ------
    ValueError
        If the image buffer is malformed
    """

    def __init__(self, image: np.ndarray, config: Optional[EngineConfigV1] = None):
        self.config = config or EngineConfigV1()
        self._image = validate_image(image)
        self._rgb = to_float_rgb(self._image)
        self.height, self.width = self._image.shape[:2]

        self._grid = GridSampler(self.config)
        self._backend = self._build_backend()
        self._exporter = VectorExporter()

        self._state_lock = threading.Lock()
        self._render_lock = threading.Lock()
        self._export_lock = threading.Lock()
        self._render_token: Optional[threading.Event] = None
        self._export_token: Optional[threading.Event] = None
        self._pass_count = 0

        logger.info(f"Engine ready: {self.width}x{self.height}, backend={self._backend.name}")

    def _build_backend(self):
        if self.config.backend == 'grid':
            return self._grid
        try:
            return FieldRasterizer(self.config)
        except BackendUnavailable as e:
            logger.warning(f"{e}; falling back to grid sampler")
            return self._grid

    @property
    def image(self) -> np.ndarray:
        """Read-only RGBA source, shape (H, W, 4), uint8."""
        return self._image

    @property
    def backend_name(self) -> str:
        return self._backend.name

    def _claim(self, kind: str):
        """Cancel the in-flight pass of ``kind`` and hand out a new token."""
        token = threading.Event()
        with self._state_lock:
            attr = '_render_token' if kind == 'render' else '_export_token'
            previous = getattr(self, attr)
            if previous is not None:
                previous.set()
            setattr(self, attr, token)
            self._pass_count += 1
            return token, self._pass_count

    def _release(self, kind: str, token: threading.Event) -> None:
        with self._state_lock:
            attr = '_render_token' if kind == 'render' else '_export_token'
            if getattr(self, attr) is token:
                setattr(self, attr, None)

    def render(self, settings: Settings) -> np.ndarray:
        """Render the halftone at source resolution.

        Parameters
        ----------
        settings : Settings
            Render settings snapshot

        Returns
        -------
        np.ndarray
            RGBA image, shape (H, W, 4), uint8

        Raises
        ------
        RenderCancelled
            If a newer render() call superseded this one
        """
        token, pass_id = self._claim('render')
        try:
            with self._render_lock:
                if token.is_set():
                    raise RenderCancelled(f"Render pass {pass_id} superseded before start")
                with log_context(render_pass=pass_id), timer(f"render[{self._backend.name}]"):
                    with timer("separate"):
                        planes = ink_planes(self._rgb, settings)
                    try:
                        return self._backend.render_planes(planes, self.width, self.height, settings, token)
                    except BackendUnavailable as e:
                        logger.warning(f"{e}; switching to grid sampler")
                        self._backend = self._grid
                        return self._grid.render_planes(planes, self.width, self.height, settings, token)
        except RenderCancelled:
            logger.debug(f"Render pass {pass_id} cancelled")
            raise
        finally:
            self._release('render', token)

    def render_print(self, settings: Settings, scale: Optional[int] = None) -> np.ndarray:
        """Render, then upscale the finished raster for print.

        Parameters
        ----------
        settings : Settings
            Render settings snapshot
        scale : int, optional
            Integer upscale factor; defaults to config.print_scale (2)

        Returns
        -------
        np.ndarray
            RGBA image, shape (H·scale, W·scale, 4), uint8
        """
        scale = self._print_scale(scale)
        return self.upscale_for_print(self.render(settings), scale)

    def upscale_for_print(self, raster: np.ndarray, scale: Optional[int] = None) -> np.ndarray:
        """Upscale a raster already produced by render().

        The dots are not re-sampled at the higher resolution; this is a
        bilinear resize of the source-resolution raster.
        """
        scale = self._print_scale(scale)
        if raster.shape != (self.height, self.width, 4):
            raise ValueError(
                f"Expected raster of shape {(self.height, self.width, 4)}, got {raster.shape}"
            )
        if scale == 1:
            return raster
        with timer("print_upscale"):
            return upscale_rgba(raster, scale)

    def _print_scale(self, scale: Optional[int]) -> int:
        scale = int(scale if scale is not None else self.config.print_scale)
        if scale < 1:
            raise ValueError(f"Print scale must be >= 1, got {scale}")
        return scale

    def export_svg(self, settings: Settings) -> str:
        """Build the SVG document for ``settings``.

        Raises
        ------
        ExportCancelled
            If a newer export_svg() call superseded this one
        """
        token, pass_id = self._claim('export')
        try:
            with self._export_lock:
                if token.is_set():
                    raise ExportCancelled(f"Export {pass_id} superseded before start")
                with log_context(export_pass=pass_id), timer("export_svg"):
                    return self._exporter.export(self._image, settings, token)
        finally:
            self._release('export', token)

    def cancel(self) -> None:
        """Cancel any in-flight render or export."""
        with self._state_lock:
            for token in (self._render_token, self._export_token):
                if token is not None:
                    token.set()
