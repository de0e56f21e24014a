"""Tests for the dense field rasterizer (CPU).

Test suites:
1. Construction and device handling
2. Render output (background, transparency, banding)
3. Channel independence
"""

import threading

import numpy as np
import pytest
import torch

from src.halftone_engine import rasterizer
from src.halftone_engine.errors import BackendUnavailable, RenderCancelled
from src.halftone_engine.rasterizer import FieldRasterizer
from src.utils.validators import EngineConfigV1, Settings

CREAM = (244, 241, 234, 255)


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def cpu_config():
    return EngineConfigV1(device='cpu', max_workers=2, band_rows=8)


@pytest.fixture
def raster(cpu_config):
    return FieldRasterizer(cpu_config)


@pytest.fixture
def photo():
    """40×36 RGB uint8 test image with smooth color variation."""
    yy, xx = np.mgrid[0:36, 0:40].astype(np.float32)
    img = np.stack([
        128 + 100 * np.sin(xx / 7.0),
        128 + 100 * np.cos(yy / 5.0),
        (xx + yy) * 3.0,
    ], axis=-1)
    return np.clip(img, 0, 255).astype(np.uint8)


def with_channels(settings: Settings, enabled) -> Settings:
    data = settings.model_dump()
    for name, ch in data['channels'].items():
        ch['enabled'] = name in enabled
    return Settings.model_validate(data)


# ============================================================================
# TEST SUITE 1: Construction
# ============================================================================

def test_cpu_construction(raster):
    assert raster.name == "field"
    assert raster.device.type == "cpu"
    assert raster.workers == 2


def test_warmup_failure_is_backend_unavailable(monkeypatch, cpu_config):
    def broken(*args, **kwargs):
        raise RuntimeError("kernel launch failed")

    monkeypatch.setattr(rasterizer, "coverage_grid", broken)
    with pytest.raises(BackendUnavailable):
        FieldRasterizer(cpu_config)


@pytest.mark.skipif(torch.cuda.is_available(), reason="CUDA present")
def test_missing_cuda_is_backend_unavailable():
    with pytest.raises(BackendUnavailable, match="device"):
        FieldRasterizer(EngineConfigV1(device='cuda'))


def test_pass_failure_is_backend_unavailable(monkeypatch, raster, photo):
    def broken(*args, **kwargs):
        raise RuntimeError("CUDA out of memory")

    monkeypatch.setattr(rasterizer, "coverage_grid", broken)
    with pytest.raises(BackendUnavailable):
        raster.render(photo, Settings())


# ============================================================================
# TEST SUITE 2: Render Output
# ============================================================================

def test_white_image_is_paper(raster):
    img = np.full((20, 24, 3), 255, dtype=np.uint8)
    out = raster.render(img, Settings())
    assert out.shape == (20, 24, 4)
    assert out.dtype == np.uint8
    assert (out == np.array(CREAM, dtype=np.uint8)).all()


def test_transparent_without_channels_is_clear(raster, photo):
    settings = with_channels(Settings(transparent_bg=True), enabled=())
    out = raster.render(photo, settings)
    assert out[..., 3].max() == 0


def test_transparent_alpha_tracks_ink(raster):
    img = np.full((24, 32, 3), 255, dtype=np.uint8)
    img[:, 16:] = 40
    out = raster.render(img, Settings(transparent_bg=True).with_global(frequency=6))
    assert out[:, :8, 3].max() == 0
    assert out[..., 3].max() > 0
    assert out[..., 3].min() < 255


def test_banding_does_not_change_result(photo):
    settings = Settings(pattern='star').with_global(frequency=9)
    single = FieldRasterizer(EngineConfigV1(device='cpu', max_workers=1, band_rows=4096)).render(photo, settings)
    banded = FieldRasterizer(EngineConfigV1(device='cpu', max_workers=3, band_rows=5)).render(photo, settings)
    diff = np.abs(single.astype(np.int16) - banded.astype(np.int16))
    assert diff.max() <= 1


@pytest.mark.parametrize("pattern", ['circle', 'gooey', 'heart', 'zigzag'])
def test_patterns_render_opaque(raster, photo, pattern):
    out = raster.render(photo, Settings(pattern=pattern).with_global(frequency=8))
    assert (out[..., 3] == 255).all()
    assert out[..., :3].min() < 200


def test_fixed_antialias_mode(photo):
    cfg = EngineConfigV1(device='cpu', max_workers=1, antialias='fixed', aa_fixed_width=0.05)
    out = FieldRasterizer(cfg).render(photo, Settings())
    assert out.shape == (36, 40, 4)


def test_preset_cancel_raises(raster, photo):
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(RenderCancelled):
        raster.render(photo, Settings(), cancel)


# ============================================================================
# TEST SUITE 3: Channel Independence
# ============================================================================

def test_cyan_only_image_ignores_other_channels(raster):
    """A pure cyan source has no M/Y/K ink, so disabling them changes nothing."""
    img = np.zeros((24, 24, 3), dtype=np.uint8)
    img[..., 1:] = 255
    all_channels = raster.render(img, Settings())
    cyan_only = raster.render(img, with_channels(Settings(), enabled=('cyan',)))
    np.testing.assert_array_equal(all_channels, cyan_only)


def test_mono_matches_key_only_cmyk(raster, photo):
    mono = raster.render(photo, Settings(color_mode='mono'))
    key_only = raster.render(photo, with_channels(Settings(), enabled=('key',)))
    np.testing.assert_array_equal(mono, key_only)
