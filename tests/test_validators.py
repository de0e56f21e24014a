"""Test configuration schemas and loaders.

Tests for src.utils.validators:
    - Shipped configs load and validate
    - Channel settings normalization and bounds
    - Settings immutability and with_global()
    - camelCase aliases from the interactive front end
    - Schema tag checks on engine configs

Run:
    pytest tests/test_validators.py -v
"""

from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from src.utils.validators import (
    CMYK_CHANNELS,
    ChannelSettings,
    EngineConfigV1,
    Settings,
    load_engine_config,
    load_settings,
)

REPO_ROOT = Path(__file__).resolve().parent.parent


# ============================================================================
# TEST SUITE 1: Shipped Configs
# ============================================================================

def test_load_engine_config():
    cfg = load_engine_config(REPO_ROOT / "configs" / "engine.v1.yaml")
    assert cfg.schema_version == "halftone_engine.v1"
    assert cfg.backend == "auto"
    assert cfg.band_rows == 256
    assert cfg.print_scale == 2
    assert cfg.background == pytest.approx((0xf4 / 255, 0xf1 / 255, 0xea / 255))


def test_load_default_settings():
    settings = load_settings(REPO_ROOT / "configs" / "settings.default.yaml")
    assert settings.color_mode == "cmyk"
    assert list(settings.channels) == list(CMYK_CHANNELS)
    assert [settings.channels[n].angle for n in CMYK_CHANNELS] == [15.0, 75.0, 0.0, 45.0]
    assert len(settings.custom_colors) == 3
    assert settings == Settings()


def test_missing_files_raise():
    with pytest.raises(FileNotFoundError):
        load_engine_config(REPO_ROOT / "configs" / "nope.yaml")
    with pytest.raises(FileNotFoundError):
        load_settings(REPO_ROOT / "configs" / "nope.yaml")


def test_engine_schema_mismatch(tmp_path):
    path = tmp_path / "engine.yaml"
    path.write_text(yaml.safe_dump({'schema': 'halftone_engine.v0', 'backend': 'grid'}))
    with pytest.raises(ValueError, match="halftone_engine.v1"):
        load_engine_config(path)


def test_engine_bad_value(tmp_path):
    path = tmp_path / "engine.yaml"
    path.write_text(yaml.safe_dump({'schema': 'halftone_engine.v1', 'band_rows': 0}))
    with pytest.raises(ValueError, match="band_rows"):
        load_engine_config(path)


def test_settings_bad_mode(tmp_path):
    path = tmp_path / "settings.yaml"
    path.write_text(yaml.safe_dump({'colorMode': 'hexachrome'}))
    with pytest.raises(ValueError, match="Settings validation failed"):
        load_settings(path)


# ============================================================================
# TEST SUITE 2: Channel Settings
# ============================================================================

@pytest.mark.parametrize("angle,expected", [(-15, 345.0), (375, 15.0), (360, 0.0), (45, 45.0)])
def test_angle_normalized(angle, expected):
    assert ChannelSettings(angle=angle).angle == pytest.approx(expected)


@pytest.mark.parametrize("field", ['size', 'frequency'])
@pytest.mark.parametrize("value", [0.0, -5.0])
def test_nonpositive_magnitudes_rejected(field, value):
    with pytest.raises(ValidationError):
        ChannelSettings(**{field: value})


def test_color_parsed_from_hex():
    assert ChannelSettings(color="#ff0000").color == (1.0, 0.0, 0.0)


def test_unparseable_color_is_black():
    assert ChannelSettings(color="not-a-color").color == (0.0, 0.0, 0.0)


# ============================================================================
# TEST SUITE 3: Settings
# ============================================================================

def test_settings_are_frozen():
    settings = Settings()
    with pytest.raises(ValidationError):
        settings.pattern = "hex"


def test_with_global_returns_new_snapshot():
    original = Settings()
    updated = original.with_global(frequency=20, size=80)
    assert all(ch.frequency == 20 and ch.size == 80 for ch in updated.channels.values())
    assert updated.global_frequency == 20
    assert all(ch.frequency == 45 for ch in original.channels.values())
    assert original.global_size == 100


def test_with_global_keeps_angles():
    updated = Settings().with_global(size=50)
    assert updated.channels['magenta'].angle == 75.0
    assert updated.channels['magenta'].frequency == 45.0


def test_with_global_rejects_invalid():
    with pytest.raises(ValidationError):
        Settings().with_global(frequency=0)


def test_camel_case_aliases():
    settings = Settings.model_validate({
        'colorMode': 'duotone',
        'globalFrequency': 30,
        'customColors': ['#000000', '#ffffff'],
        'transparentBg': True,
    })
    assert settings.color_mode == 'duotone'
    assert settings.global_frequency == 30
    assert settings.custom_colors[1] == (1.0, 1.0, 1.0)
    assert settings.transparent_bg is True


def test_pattern_name_normalized():
    assert Settings(pattern=" Hex ").pattern == "hex"
    assert Settings(pattern="spiral").pattern == "spiral"


def test_cmyk_requires_all_channels():
    data = Settings().model_dump()
    del data['channels']['yellow']
    with pytest.raises(ValidationError, match="yellow"):
        Settings.model_validate(data)


def test_mono_requires_key():
    data = Settings().model_dump()
    data['color_mode'] = 'mono'
    data['channels'] = {'cyan': data['channels']['cyan']}
    with pytest.raises(ValidationError, match="key"):
        Settings.model_validate(data)


def test_engine_defaults():
    cfg = EngineConfigV1()
    assert cfg.backend == 'auto'
    assert cfg.antialias == 'derivative'
    assert cfg.aa_fixed_width == pytest.approx(0.03)
