"""Numerics, device selection, and row-band tiling for field evaluation.

Core utilities:
    - Shader-style scalar math on tensors: smoothstep(), fract()
    - Forward-difference derivative width: fwidth()
    - Row banding: row_bands() splits an image into disjoint horizontal slices
    - Worker sizing: default_workers()
    - Device selection: resolve_device() ("auto" → CUDA if available, else CPU)
    - Guards: assert_finite()

Invariants:
    - Field math runs in float32; coverage tensors are clamped to [0, 1]
    - Bands returned by row_bands() are disjoint and cover [0, H) exactly
    - smoothstep() tolerates equal and reversed edges
"""

import logging
import os
from typing import List, Union

import torch

logger = logging.getLogger(__name__)


def smoothstep(
    edge0: Union[torch.Tensor, float],
    edge1: Union[torch.Tensor, float],
    x: torch.Tensor
) -> torch.Tensor:
    """Hermite interpolation between two edges (GLSL semantics).

    Parameters
    ----------
    edge0, edge1 : torch.Tensor or float
        Edges, broadcastable to x; edge1 < edge0 gives a falling ramp
    x : torch.Tensor
        Input values

    Returns
    -------
    torch.Tensor
        t²(3 − 2t) with t = clamp((x − edge0)/(edge1 − edge0), 0, 1)

    Notes
    -----
    Where the edges coincide the result degrades to a hard step at edge0
    (1 where x ≥ edge0) instead of dividing by zero.
    """
    edge0 = torch.as_tensor(edge0, dtype=x.dtype, device=x.device)
    edge1 = torch.as_tensor(edge1, dtype=x.dtype, device=x.device)
    span = edge1 - edge0
    degenerate = span.abs() < 1e-12
    safe_span = torch.where(degenerate, torch.ones_like(span), span)
    t = torch.clamp((x - edge0) / safe_span, 0.0, 1.0)
    smooth = t * t * (3.0 - 2.0 * t)
    if bool(degenerate.any()):
        step = (x >= edge0).to(x.dtype)
        smooth = torch.where(degenerate, step, smooth)
    return smooth


def fract(x: torch.Tensor) -> torch.Tensor:
    """Fractional part, x − floor(x) (always in [0, 1))."""
    return x - torch.floor(x)


def fwidth(f: torch.Tensor) -> torch.Tensor:
    """Screen-space derivative width |∂f/∂x| + |∂f/∂y|.

    Parameters
    ----------
    f : torch.Tensor
        Field sampled on a pixel grid, shape (H, W), H ≥ 2 and W ≥ 2

    Returns
    -------
    torch.Tensor
        Derivative width, shape (H − 1, W − 1)

    Notes
    -----
    Forward differences: pixel (i, j) uses f[i, j+1] − f[i, j] and
    f[i+1, j] − f[i, j]. Callers evaluate one extra row and column so the
    result covers the band they need.
    """
    if f.ndim != 2 or f.shape[0] < 2 or f.shape[1] < 2:
        raise ValueError(f"fwidth needs a (H>=2, W>=2) field, got {tuple(f.shape)}")
    dx = f[:-1, 1:] - f[:-1, :-1]
    dy = f[1:, :-1] - f[:-1, :-1]
    return dx.abs() + dy.abs()


def row_bands(H: int, band_rows: int) -> List[slice]:
    """Split image rows into disjoint bands for parallel evaluation.

    Parameters
    ----------
    H : int
        Image height
    band_rows : int
        Rows per band (last band may be shorter)

    Returns
    -------
    list[slice]
        Row slices covering [0, H) without overlap, top to bottom
    """
    if band_rows < 1:
        raise ValueError(f"band_rows must be >= 1, got {band_rows}")
    return [slice(y0, min(y0 + band_rows, H)) for y0 in range(0, H, band_rows)]


def default_workers(max_workers: int = 0) -> int:
    """Number of band workers; 0 means one per CPU."""
    if max_workers > 0:
        return max_workers
    return max(1, os.cpu_count() or 1)


def resolve_device(device: str = "auto") -> torch.device:
    """Pick the torch device for field evaluation.

    Parameters
    ----------
    device : str
        "auto", "cpu" or "cuda"

    Returns
    -------
    torch.device
        Resolved device

    Raises
    ------
    RuntimeError
        If "cuda" is requested but unavailable
    """
    if device == "auto":
        return torch.device("cuda" if torch.cuda.is_available() else "cpu")
    if device == "cuda" and not torch.cuda.is_available():
        raise RuntimeError("CUDA requested but torch.cuda.is_available() is False")
    if device not in ("cpu", "cuda"):
        raise ValueError(f"Unknown device: {device}. Use 'auto', 'cpu' or 'cuda'.")
    return torch.device(device)


def assert_finite(x: torch.Tensor, name: str = "tensor") -> None:
    """Assert tensor contains no NaN or Inf values.

    Raises
    ------
    ValueError
        If tensor contains NaN or Inf
    """
    if not torch.isfinite(x).all():
        nan_count = torch.isnan(x).sum().item()
        inf_count = torch.isinf(x).sum().item()
        raise ValueError(
            f"{name} contains non-finite values: {nan_count} NaNs, {inf_count} Infs. "
            f"Shape: {tuple(x.shape)}, dtype: {x.dtype}, device: {x.device}"
        )
