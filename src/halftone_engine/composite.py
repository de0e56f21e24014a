"""Subtractive ink compositing shared by both render drivers.

Each channel's coverage mask is colorized with its ink and laid over the
accumulator with the W3C ``multiply`` blend under source-over alpha:

    co = c·ink·(1 − Ab + Pb) + (1 − c)·Pb      (premultiplied color)
    Ao = c + Ab·(1 − c)

where Pb/Ab are the accumulator's premultiplied color and alpha and c is
the channel coverage. On an opaque background (Ab = 1) this reduces to
dst·(1 − c + c·ink); on a transparent one the first ink lands as-is.

Channels must be applied in composite order; the blend is not
commutative once alpha is below 1.
"""

from typing import Optional, Sequence

import numpy as np
import torch


class InkCanvas:
    """Premultiplied RGBA accumulator, shape (H, W).

    Parameters
    ----------
    height, width : int
        Canvas size in pixels
    background : sequence of float
        Paper color RGB [0, 1]
    transparent : bool
        Start fully transparent instead of on opaque paper
    device : torch.device, optional
        Where the accumulator lives (coverage must be on the same device)
    """

    def __init__(
        self,
        height: int,
        width: int,
        background: Sequence[float],
        transparent: bool = False,
        device: Optional[torch.device] = None
    ):
        self.height = int(height)
        self.width = int(width)
        self.device = device or torch.device("cpu")
        if transparent:
            self.premul = torch.zeros((self.height, self.width, 3), dtype=torch.float32, device=self.device)
            self.alpha = torch.zeros((self.height, self.width, 1), dtype=torch.float32, device=self.device)
        else:
            bg = torch.tensor(list(background), dtype=torch.float32, device=self.device)
            self.premul = bg.view(1, 1, 3).expand(self.height, self.width, 3).clone()
            self.alpha = torch.ones((self.height, self.width, 1), dtype=torch.float32, device=self.device)

    def apply(self, coverage: torch.Tensor, ink: Sequence[float]) -> None:
        """Multiply one channel onto the canvas.

        Parameters
        ----------
        coverage : torch.Tensor
            Channel coverage, shape (H, W), [0, 1]
        ink : sequence of float
            Ink color RGB [0, 1]
        """
        if tuple(coverage.shape) != (self.height, self.width):
            raise ValueError(
                f"Coverage shape {tuple(coverage.shape)} != canvas ({self.height}, {self.width})"
            )
        c = torch.clamp(coverage.to(device=self.device, dtype=torch.float32), 0.0, 1.0).unsqueeze(-1)
        ink_t = torch.tensor(list(ink), dtype=torch.float32, device=self.device).view(1, 1, 3)

        self.premul = c * ink_t * (1.0 - self.alpha + self.premul) + (1.0 - c) * self.premul
        self.alpha = c + self.alpha * (1.0 - c)

    def to_rgba8(self) -> np.ndarray:
        """Un-premultiply and quantize.

        Returns
        -------
        np.ndarray
            RGBA image, shape (H, W, 4), uint8; fully transparent pixels
            have zero color
        """
        alpha = torch.clamp(self.alpha, 0.0, 1.0)
        safe = torch.where(alpha > 0.0, alpha, torch.ones_like(alpha))
        color = torch.where(alpha > 0.0, self.premul / safe, torch.zeros_like(self.premul))
        rgba = torch.cat([torch.clamp(color, 0.0, 1.0), alpha], dim=-1)
        return torch.floor(rgba * 255.0 + 0.5).to(torch.uint8).cpu().numpy()

