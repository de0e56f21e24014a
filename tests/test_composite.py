"""Tests for multiply compositing (InkCanvas).

Test suites:
1. Opaque canvas vs dst·(1 − c + c·ink)
2. Transparent canvas
3. Quantization and shape checks
"""

import numpy as np
import pytest
import torch

from src.halftone_engine.composite import InkCanvas

PAPER = (0xf4 / 255.0, 0xf1 / 255.0, 0xea / 255.0)
CYAN = (0.0, 0xae / 255.0, 0xef / 255.0)
MAGENTA = (0xec / 255.0, 0.0, 0x8c / 255.0)


@pytest.fixture
def coverages():
    rng = np.random.default_rng(11)
    return [rng.random((6, 5)).astype(np.float32) for _ in range(2)]


# ============================================================================
# TEST SUITE 1: Opaque Canvas
# ============================================================================

def test_opaque_matches_closed_form(coverages):
    canvas = InkCanvas(6, 5, PAPER)
    expected = np.broadcast_to(np.asarray(PAPER, dtype=np.float32), (6, 5, 3)).copy()
    for cov, ink in zip(coverages, (CYAN, MAGENTA)):
        canvas.apply(torch.from_numpy(cov), ink)
        expected = expected * (1.0 - cov[..., None] + cov[..., None] * np.asarray(ink, dtype=np.float32))

    np.testing.assert_allclose(canvas.premul.numpy(), expected, atol=1e-6)
    np.testing.assert_allclose(canvas.alpha.numpy(), 1.0)

    rgba = canvas.to_rgba8()
    quantized = np.floor(expected * 255.0 + 0.5)
    assert np.abs(rgba[..., :3].astype(np.float64) - quantized).max() <= 1.0
    assert (rgba[..., 3] == 255).all()


def test_zero_coverage_leaves_canvas():
    canvas = InkCanvas(3, 3, PAPER)
    before = canvas.premul.clone()
    canvas.apply(torch.zeros(3, 3), CYAN)
    assert torch.equal(canvas.premul, before)


def test_full_coverage_multiplies_ink():
    canvas = InkCanvas(2, 2, (1.0, 1.0, 1.0))
    canvas.apply(torch.ones(2, 2), CYAN)
    np.testing.assert_allclose(canvas.premul[0, 0].numpy(), CYAN, atol=1e-7)


# ============================================================================
# TEST SUITE 2: Transparent Canvas
# ============================================================================

def test_transparent_first_ink_lands_as_is():
    canvas = InkCanvas(2, 2, PAPER, transparent=True)
    canvas.apply(torch.full((2, 2), 0.5), CYAN)
    rgba = canvas.to_rgba8()
    # Un-premultiplied color is the ink itself
    np.testing.assert_array_equal(rgba[0, 0, :3], [0, 0xae, 0xef])
    assert rgba[0, 0, 3] == 128


def test_transparent_untouched_pixels_are_clear():
    canvas = InkCanvas(2, 3, PAPER, transparent=True)
    cov = torch.zeros(2, 3)
    cov[0, 0] = 1.0
    canvas.apply(cov, MAGENTA)
    rgba = canvas.to_rgba8()
    assert tuple(rgba[0, 0]) == (0xec, 0, 0x8c, 255)
    assert (rgba[1] == 0).all()


def test_transparent_overlap_multiplies():
    canvas = InkCanvas(1, 1, PAPER, transparent=True)
    canvas.apply(torch.ones(1, 1), CYAN)
    canvas.apply(torch.ones(1, 1), MAGENTA)
    expected = np.asarray(CYAN) * np.asarray(MAGENTA)
    np.testing.assert_allclose(canvas.premul[0, 0].numpy(), expected, atol=1e-6)
    assert canvas.alpha.item() == pytest.approx(1.0)


# ============================================================================
# TEST SUITE 3: Checks
# ============================================================================

def test_shape_mismatch_raises():
    canvas = InkCanvas(4, 4, PAPER)
    with pytest.raises(ValueError, match="Coverage shape"):
        canvas.apply(torch.zeros(4, 5), CYAN)


def test_coverage_is_clamped():
    canvas = InkCanvas(1, 2, (1.0, 1.0, 1.0))
    canvas.apply(torch.tensor([[-0.5, 1.5]]), (0.0, 0.0, 0.0))
    np.testing.assert_allclose(canvas.premul[0].numpy(), [[1.0, 1.0, 1.0], [0.0, 0.0, 0.0]])


def test_paper_quantizes_to_cream():
    rgba = InkCanvas(1, 1, PAPER).to_rgba8()
    assert tuple(rgba[0, 0]) == (244, 241, 234, 255)
