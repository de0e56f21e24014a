"""Image quality metrics for render diagnostics and parity tests.

Provides:
    - PSNR: Peak Signal-to-Noise Ratio between two rasters
    - Ink coverage: fraction of pixels carrying ink in a coverage mask

Used by:
    - Parity tests: dense field raster vs grid-sampled raster
    - Engine: per-channel ink coverage at DEBUG level

Metrics accept numpy arrays or torch tensors; uint8 inputs are scaled to
[0, 1] first.
"""

from typing import Union

import numpy as np
import torch
import torch.nn.functional as F

ArrayLike = Union[np.ndarray, torch.Tensor]


def _as_float_tensor(x: ArrayLike) -> torch.Tensor:
    if isinstance(x, np.ndarray):
        if x.dtype == np.uint8:
            return torch.from_numpy(x.astype(np.float32) / 255.0)
        return torch.from_numpy(np.asarray(x, dtype=np.float32))
    if x.dtype == torch.uint8:
        return x.float() / 255.0
    return x.float()


def psnr(
    img1: ArrayLike,
    img2: ArrayLike,
    max_val: float = 1.0,
    eps: float = 1e-8
) -> float:
    """Compute Peak Signal-to-Noise Ratio (PSNR).

    Parameters
    ----------
    img1 : ArrayLike
        First image, any shape, range [0, max_val] (uint8 is rescaled)
    img2 : ArrayLike
        Second image, same shape as img1
    max_val : float
        Maximum possible pixel value, default 1.0
    eps : float
        Small epsilon to avoid log(0), default 1e-8

    Returns
    -------
    float
        PSNR in dB

    Notes
    -----
    PSNR = 10 * log10(max_val^2 / MSE). Halftone rasters from different
    drivers differ in dot phase, so expect values in the 10-20 dB range even
    when both are correct; compare blurred rasters for tone parity.
    """
    a = _as_float_tensor(img1)
    b = _as_float_tensor(img2)
    if a.shape != b.shape:
        raise ValueError(f"Shape mismatch: {tuple(a.shape)} vs {tuple(b.shape)}")
    mse = F.mse_loss(a, b, reduction='mean')
    return float(10.0 * torch.log10((max_val ** 2) / (mse + eps)))


def ink_coverage(mask: ArrayLike, threshold: float = 0.5) -> float:
    """Fraction of pixels whose coverage exceeds ``threshold``.

    Parameters
    ----------
    mask : ArrayLike
        Coverage mask, shape (H, W), range [0, 1] (uint8 is rescaled)
    threshold : float
        Coverage above which a pixel counts as inked, default 0.5

    Returns
    -------
    float
        Inked fraction in [0, 1]; 0.0 for an empty mask
    """
    m = _as_float_tensor(mask)
    if m.numel() == 0:
        return 0.0
    return float((m > threshold).float().mean())


def mean_coverage(mask: ArrayLike) -> float:
    """Average coverage (ink mass per pixel), range [0, 1]."""
    m = _as_float_tensor(mask)
    if m.numel() == 0:
        return 0.0
    return float(m.mean())

