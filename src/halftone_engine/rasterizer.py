"""Dense field raster driver (torch, CPU or CUDA).

Evaluates pattern_field.coverage_grid() for every pixel of every enabled
channel and multiplies the channels onto one canvas in composite order.

Parallelism:
    - CPU: rows are split into bands (compute.row_bands) and evaluated on a
      ThreadPoolExecutor; torch kernels release the GIL, and each band
      writes a disjoint slice of the channel coverage buffer.
    - CUDA: bands are launched in order on the default stream.
    - Compositing is sequential per channel, after all bands of that
      channel have finished.

Failure handling:
    - Construction runs a warm-up evaluation on the target device; any
      failure raises BackendUnavailable so the caller can fall back to the
      grid sampler.
    - Torch runtime errors during a pass (e.g. CUDA OOM) are re-raised as
      BackendUnavailable for the same reason.
"""

import contextvars
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional

import numpy as np
import torch

from src.halftone_engine.composite import InkCanvas
from src.halftone_engine.errors import BackendUnavailable, RenderCancelled
from src.halftone_engine.pattern_field import PATTERN_COUNT, coverage_grid, pattern_index
from src.halftone_engine.separation import InkPlane, ink_planes
from src.utils.color import to_float_rgb
from src.utils.compute import assert_finite, default_workers, resolve_device, row_bands
from src.utils.logging_config import log_context
from src.utils.metrics import ink_coverage
from src.utils.profiler import timer
from src.utils.validators import EngineConfigV1, Settings

logger = logging.getLogger(__name__)


class FieldRasterizer:
    """Per-pixel halftone renderer.

    Parameters
    ----------
    config : EngineConfigV1, optional
        Device, banding, worker count and antialiasing mode
    warmup : bool
        Evaluate every pattern once on a tiny plane at construction, default True

    Raises
    ------
    BackendUnavailable
        If the device cannot be used or the warm-up evaluation fails

    Examples
    --------
    >>> raster = FieldRasterizer(EngineConfigV1(device="cpu"))
    >>> rgba = raster.render(image_rgba, Settings(pattern="hex"))
    """

    name = "field"

    def __init__(self, config: Optional[EngineConfigV1] = None, warmup: bool = True):
        self.config = config or EngineConfigV1()
        try:
            self.device = resolve_device(self.config.device)
        except (RuntimeError, ValueError) as e:
            raise BackendUnavailable(f"Field backend device unavailable: {e}") from e

        self.workers = 1 if self.device.type == "cuda" else default_workers(self.config.max_workers)
        if warmup:
            self._warmup()
        logger.info(f"Field rasterizer ready on {self.device} ({self.workers} band workers)")

    def _warmup(self) -> None:
        try:
            plane = torch.linspace(0.0, 1.0, 16, device=self.device).view(4, 4)
            for pid in range(PATTERN_COUNT):
                cov = coverage_grid(plane, slice(0, 4), 4, 4, 2.0, 30.0, 100.0, pid,
                                    self.config.antialias, self.config.aa_fixed_width)
                assert_finite(cov, f"warm-up coverage (pattern {pid})")
            if self.device.type == "cuda":
                torch.cuda.synchronize(self.device)
        except (RuntimeError, ValueError) as e:
            raise BackendUnavailable(f"Field backend warm-up failed on {self.device}: {e}") from e

    def channel_coverage(
        self,
        plane: InkPlane,
        width: int,
        height: int,
        frequency: float,
        angle: float,
        size: float,
        pattern: str,
        cancel: Optional[threading.Event] = None
    ) -> torch.Tensor:
        """Dense coverage for one channel.

        Returns
        -------
        torch.Tensor
            Coverage, shape (height, width), float32 [0, 1], on self.device
        """
        pid = pattern_index(pattern)
        plane_t = plane.as_tensor(self.device)
        out = torch.empty((height, width), dtype=torch.float32, device=self.device)
        bands = row_bands(height, self.config.band_rows)

        def run_band(rows: slice) -> None:
            if cancel is not None and cancel.is_set():
                raise RenderCancelled("Field render cancelled")
            with torch.no_grad():
                out[rows] = coverage_grid(
                    plane_t, rows, width, height, frequency, angle, size, pid,
                    self.config.antialias, self.config.aa_fixed_width
                )

        try:
            if self.workers <= 1 or len(bands) <= 1:
                for rows in bands:
                    run_band(rows)
            else:
                with ThreadPoolExecutor(max_workers=min(self.workers, len(bands))) as pool:
                    futures = [
                        pool.submit(contextvars.copy_context().run, run_band, rows)
                        for rows in bands
                    ]
                    for future in futures:
                        future.result()
        except RuntimeError as e:
            raise BackendUnavailable(f"Field evaluation failed on {self.device}: {e}") from e
        return out

    def render_planes(
        self,
        planes: List[tuple],
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
        canvas = InkCanvas(height, width, self.config.background, settings.transparent_bg, self.device)
        for screen, plane in planes:
            if cancel is not None and cancel.is_set():
                raise RenderCancelled("Field render cancelled")
            with log_context(channel=screen.name), timer(f"field.{screen.name}"):
                cov = self.channel_coverage(
                    plane, width, height, screen.frequency, screen.angle, screen.size,
                    settings.pattern, cancel
                )
                canvas.apply(cov, screen.color)
                if logger.isEnabledFor(logging.DEBUG):
                    logger.debug(f"Ink coverage {screen.name}: {ink_coverage(cov.cpu()):.3f}")
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
