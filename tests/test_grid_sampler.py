"""Tests for the discrete-center grid sampler.

Test suites:
1. Cell size and dot enumeration
2. Shape outlines per pattern
3. Mask drawing
4. Full renders (background, transparency, cancellation)
"""

import math
import threading

import numpy as np
import pytest

from src.halftone_engine.errors import RenderCancelled
from src.halftone_engine.grid_sampler import (
    GridSampler,
    ShapeOutline,
    draw_shape,
    enumerate_dots,
    grid_cell_size,
    shape_polygons,
)
from src.halftone_engine.pattern_field import PATTERNS
from src.halftone_engine.separation import InkPlane, cmyk_planes
from src.utils.validators import EngineConfigV1, Settings

CREAM = (244, 241, 234, 255)


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def sampler():
    return GridSampler(EngineConfigV1(backend='grid'))


@pytest.fixture
def gradient_image():
    """48×40 RGB uint8 image with a horizontal color ramp."""
    x = np.linspace(0, 255, 48, dtype=np.float32)
    img = np.zeros((40, 48, 3), dtype=np.uint8)
    img[..., 0] = x.astype(np.uint8)
    img[..., 1] = (255 - x).astype(np.uint8)
    img[..., 2] = 128
    return img


def uniform_plane(value, h=64, w=64):
    return InkPlane(np.full((h, w), value, dtype=np.float32))


def disabled_settings(**kwargs):
    data = Settings(**kwargs).model_dump()
    for ch in data['channels'].values():
        ch['enabled'] = False
    return Settings.model_validate(data)


# ============================================================================
# TEST SUITE 1: Enumeration
# ============================================================================

@pytest.mark.parametrize("width,freq,expected", [(64, 8, 8), (10, 45, 2), (25, 10, 3), (100, 45, 2)])
def test_grid_cell_size(width, freq, expected):
    assert grid_cell_size(width, freq) == expected


def test_full_ink_grid_at_zero_angle():
    phase = (32.0 - np.sqrt(64.0 ** 2 * 2) / 2.0) % 8.0
    dots = enumerate_dots(uniform_plane(1.0), 64, 64, 8.0, 0.0, 100.0)
    assert len(dots) == 64
    assert dots.cell_size == 8
    np.testing.assert_allclose(dots.radii, 4.0)
    np.testing.assert_allclose(np.mod(dots.xs, 8.0), phase)
    np.testing.assert_allclose(np.mod(dots.ys, 8.0), phase)


def test_enumeration_is_rows_outer():
    dots = enumerate_dots(uniform_plane(1.0), 64, 64, 8.0, 0.0, 100.0)
    assert np.all(np.diff(dots.ys) >= 0)
    np.testing.assert_allclose(np.diff(dots.xs[:8]), 8.0)
    assert dots.xs[0] < 8.0


def test_faint_ink_is_skipped():
    assert len(enumerate_dots(uniform_plane(0.01), 64, 64, 8.0, 0.0, 100.0)) == 0


def test_radius_follows_sqrt_ink_and_size():
    dots = enumerate_dots(uniform_plane(0.25), 64, 64, 8.0, 0.0, 100.0)
    np.testing.assert_allclose(dots.radii, 2.0)
    dots = enumerate_dots(uniform_plane(0.25), 64, 64, 8.0, 0.0, 50.0)
    np.testing.assert_allclose(dots.radii, 1.0)


def test_rotated_centers_stay_inside():
    dots = enumerate_dots(uniform_plane(1.0, 40, 48), 48, 40, 6.0, 33.0, 100.0)
    assert len(dots) > 0
    assert dots.xs.min() >= 0 and dots.xs.max() < 48
    assert dots.ys.min() >= 0 and dots.ys.max() < 40


def test_enumeration_is_deterministic():
    rng = np.random.default_rng(0)
    plane = InkPlane(rng.random((50, 70)).astype(np.float32))
    a = enumerate_dots(plane, 70, 50, 12.0, 75.0, 120.0)
    b = enumerate_dots(plane, 70, 50, 12.0, 75.0, 120.0)
    np.testing.assert_array_equal(a.xs, b.xs)
    np.testing.assert_array_equal(a.radii, b.radii)


def test_tiny_cyan_image_has_four_dots():
    rgb = np.zeros((4, 4, 3), dtype=np.float32)
    rgb[..., 1:] = 1.0
    plane = InkPlane(cmyk_planes(rgb)[..., 0])
    dots = enumerate_dots(plane, 4, 4, 2.0, 0.0, 100.0)
    assert len(dots) == 4
    assert dots.cell_size == 2


def test_tiny_cyan_image_on_default_cyan_screen():
    rgb = np.zeros((4, 4, 3), dtype=np.float32)
    rgb[..., 1:] = 1.0
    plane = InkPlane(cmyk_planes(rgb)[..., 0])
    dots = enumerate_dots(plane, 4, 4, 2.0, 15.0, 100.0)

    assert len(dots) == 4
    np.testing.assert_allclose(dots.radii, dots.cell_size * 0.5)
    np.testing.assert_allclose(
        np.stack([dots.xs, dots.ys], axis=1),
        [(1.41, 0.99), (3.35, 1.5), (0.9, 2.92), (2.83, 3.43)],
        atol=0.01,
    )

    # Centers sit on the 15° lattice anchored at -diag/2
    c, s = math.cos(math.radians(15.0)), math.sin(math.radians(15.0))
    half = math.sqrt(32.0) / 2.0
    dx, dy = dots.xs - 2.0, dots.ys - 2.0
    for g in ((c * dx + s * dy + half) / dots.cell_size, (-s * dx + c * dy + half) / dots.cell_size):
        np.testing.assert_allclose(g, np.round(g), atol=1e-9)


# ============================================================================
# TEST SUITE 2: Shape Outlines
# ============================================================================

def test_square_outline_bounds():
    outline = shape_polygons(10.0, 12.0, 3.0, 8.0, 0.0, 'square')
    pts = outline.fills[0][0]
    assert pts.shape == (4, 2)
    np.testing.assert_allclose(pts.min(axis=0), [7.0, 9.0])
    np.testing.assert_allclose(pts.max(axis=0), [13.0, 15.0])


def test_diamond_is_rotated_square():
    pts = shape_polygons(0.0, 0.0, 1.0, 4.0, 0.0, 'diamond').fills[0][0]
    np.testing.assert_allclose(np.hypot(pts[:, 0], pts[:, 1]), np.sqrt(2.0))
    np.testing.assert_allclose(np.abs(pts).max(), np.sqrt(2.0), atol=1e-9)


def test_cross_is_two_fills():
    assert len(shape_polygons(5.0, 5.0, 2.0, 8.0, 0.0, 'cross').fills) == 2


def test_ring_has_hole_contour():
    outline = shape_polygons(5.0, 5.0, 4.0, 8.0, 0.0, 'ring')
    assert len(outline.fills) == 1
    outer, inner = outline.fills[0]
    np.testing.assert_allclose(np.hypot(outer[:, 0] - 5.0, outer[:, 1] - 5.0), 4.0)
    np.testing.assert_allclose(np.hypot(inner[:, 0] - 5.0, inner[:, 1] - 5.0), 2.0)


def test_zigzag_is_stroke_only():
    outline = shape_polygons(5.0, 5.0, 2.0, 8.0, 0.0, 'zigzag')
    assert outline.fills == []
    assert len(outline.strokes) == 1
    assert outline.strokes[0].shape == (4, 2)


def test_hex_and_star_vertex_counts():
    assert shape_polygons(0.0, 0.0, 2.0, 8.0, 0.0, 'hex').fills[0][0].shape == (6, 2)
    assert shape_polygons(0.0, 0.0, 2.0, 8.0, 0.0, 'star').fills[0][0].shape == (10, 2)


def test_dot_grid_is_four_circles():
    outline = shape_polygons(0.0, 0.0, 5.0, 8.0, 0.0, 'dot-grid')
    assert len(outline.fills) == 4


def test_gooey_and_unknown_draw_circles():
    circle = shape_polygons(3.0, 3.0, 2.0, 8.0, 0.0, 'circle')
    for name in ('gooey', 'spiral'):
        outline = shape_polygons(3.0, 3.0, 2.0, 8.0, 0.0, name)
        np.testing.assert_allclose(outline.fills[0][0], circle.fills[0][0])


def test_heart_stays_near_dot():
    pts = shape_polygons(10.0, 10.0, 4.0, 8.0, 0.0, 'heart').fills[0][0]
    assert pts.shape[0] > 8
    assert np.abs(pts[:, 0] - 10.0).max() <= 4.0
    # Tip at the bottom (+Y down)
    assert pts[:, 1].max() == pytest.approx(12.0)


@pytest.mark.parametrize("pattern", PATTERNS)
def test_every_pattern_has_geometry(pattern):
    outline = shape_polygons(16.0, 16.0, 5.0, 10.0, 30.0, pattern)
    assert isinstance(outline, ShapeOutline)
    assert outline.fills or outline.strokes


# ============================================================================
# TEST SUITE 3: Mask Drawing
# ============================================================================

def test_draw_square_fills_interior():
    mask = np.zeros((32, 32), dtype=np.uint8)
    draw_shape(mask, shape_polygons(16.5, 16.5, 6.0, 16.0, 0.0, 'square'))
    assert mask[16, 16] == 255
    assert mask[12, 20] == 255
    assert mask[0, 0] == 0
    assert mask[16, 26] == 0


def test_draw_ring_leaves_hole():
    mask = np.zeros((32, 32), dtype=np.uint8)
    draw_shape(mask, shape_polygons(16.5, 16.5, 8.0, 16.0, 0.0, 'ring'))
    assert mask[16, 16] == 0
    assert mask[16, 22] == 255


def test_draw_zigzag_marks_pixels():
    mask = np.zeros((16, 16), dtype=np.uint8)
    draw_shape(mask, shape_polygons(8.0, 8.0, 3.0, 12.0, 0.0, 'zigzag'))
    assert mask.max() > 0


# ============================================================================
# TEST SUITE 4: Renders
# ============================================================================

def test_white_image_renders_paper(sampler):
    img = np.full((24, 32, 3), 255, dtype=np.uint8)
    out = sampler.render(img, Settings())
    assert out.shape == (24, 32, 4)
    assert out.dtype == np.uint8
    assert tuple(out[0, 0]) == CREAM
    assert (out == out[0, 0]).all()


def test_transparent_with_no_channels_is_clear(sampler, gradient_image):
    out = sampler.render(gradient_image, disabled_settings(transparent_bg=True))
    assert out[..., 3].max() == 0


def test_render_is_deterministic(sampler, gradient_image):
    settings = Settings(pattern='hex').with_global(frequency=12)
    a = sampler.render(gradient_image, settings)
    b = sampler.render(gradient_image, settings)
    np.testing.assert_array_equal(a, b)


def test_black_image_is_darkened(sampler):
    img = np.zeros((32, 32, 3), dtype=np.uint8)
    out = sampler.render(img, Settings().with_global(frequency=8))
    assert out[..., :3].mean() < 150


@pytest.mark.parametrize("pattern", PATTERNS)
def test_every_pattern_renders(sampler, gradient_image, pattern):
    out = sampler.render(gradient_image, Settings(pattern=pattern).with_global(frequency=10))
    assert out.shape == (40, 48, 4)
    assert (out[..., 3] == 255).all()


def test_preset_cancel_raises(sampler, gradient_image):
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(RenderCancelled):
        sampler.render(gradient_image, Settings(), cancel)
