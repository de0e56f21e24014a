"""Test image comparison and coverage metrics.

Tests for src.utils.metrics:
    - PSNR on identical, known-MSE and uint8 inputs
    - Ink coverage fraction and mean coverage

Run:
    pytest tests/test_metrics.py -v
"""

import numpy as np
import pytest
import torch

from src.utils.metrics import ink_coverage, mean_coverage, psnr


def test_psnr_known_mse():
    a = np.zeros((4, 4), dtype=np.float32)
    b = np.full((4, 4), 0.1, dtype=np.float32)
    assert psnr(a, b) == pytest.approx(20.0, abs=1e-3)


def test_psnr_identical_is_large():
    a = torch.rand(8, 8)
    assert psnr(a, a) > 70.0


def test_psnr_uint8_rescaled():
    a = np.zeros((2, 2, 3), dtype=np.uint8)
    b = np.full((2, 2, 3), 255, dtype=np.uint8)
    assert psnr(a, b) == pytest.approx(0.0, abs=1e-3)


def test_psnr_shape_mismatch():
    with pytest.raises(ValueError, match="Shape mismatch"):
        psnr(np.zeros((2, 2)), np.zeros((2, 3)))


def test_ink_coverage():
    mask = np.array([[0.0, 0.6], [1.0, 0.5]], dtype=np.float32)
    assert ink_coverage(mask) == pytest.approx(0.5)
    assert ink_coverage(mask, threshold=0.0) == pytest.approx(0.75)
    assert ink_coverage(np.zeros((0, 0), dtype=np.float32)) == 0.0


def test_ink_coverage_uint8():
    mask = np.array([[0, 255, 255, 100]], dtype=np.uint8)
    assert ink_coverage(mask) == pytest.approx(0.5)


def test_mean_coverage():
    mask = torch.tensor([[0.0, 1.0], [0.5, 0.5]])
    assert mean_coverage(mask) == pytest.approx(0.5)
