"""YAML schema validation and config loading.

Provides centralized validation for all configuration using pydantic:
    - Render settings (settings.v1): pattern, color mode, per-channel screens
    - Engine config (engine.v1.yaml): backend selection, banding, antialiasing

All modules must use these validators to load configs for fail-fast error
detection with actionable messages (offending keys, expected ranges).

Units:
    - Angles: degrees, normalized to [0, 360)
    - Size: percent of the nominal dot (100 = dot just fills its cell at full ink)
    - Frequency: cells across the image width
    - Color: RGB [0.0, 1.0]

Usage:
    from src.utils import validators

    settings = validators.load_settings("configs/settings.default.yaml")
    engine_cfg = validators.load_engine_config("configs/engine.v1.yaml")
    coarse = settings.with_global(frequency=20)
"""

import math
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .color import RGB, parse_color


# ============================================================================
# RENDER SETTINGS
# ============================================================================

CMYK_CHANNELS: Tuple[str, ...] = ("cyan", "magenta", "yellow", "key")

DEFAULT_ANGLES: Dict[str, float] = {"cyan": 15.0, "magenta": 75.0, "yellow": 0.0, "key": 45.0}

DEFAULT_INKS: Dict[str, str] = {
    "cyan": "#00aeef",
    "magenta": "#ec008c",
    "yellow": "#fff200",
    "key": "#231f20",
}

DEFAULT_CUSTOM_COLORS: Tuple[str, ...] = ("#c85a54", "#3d3632", "#00aeef")

DEFAULT_FREQUENCY = 45.0
DEFAULT_SIZE = 100.0


class ChannelSettings(BaseModel):
    """Screen parameters for a single ink channel."""
    model_config = ConfigDict(frozen=True)

    enabled: bool = Field(True, description="Channel contributes to the output")
    angle: float = Field(0.0, description="Screen angle (degrees)")
    size: float = Field(DEFAULT_SIZE, gt=0.0, description="Dot size (percent)")
    frequency: float = Field(DEFAULT_FREQUENCY, gt=0.0, description="Cells across image width")
    color: RGB = Field((0.0, 0.0, 0.0), description="Ink color RGB [0,1]")

    @field_validator('angle')
    @classmethod
    def normalize_angle(cls, v: float) -> float:
        if not math.isfinite(v):
            raise ValueError(f"Channel angle must be finite, got {v}")
        return float(v) % 360.0

    @field_validator('color', mode='before')
    @classmethod
    def coerce_color(cls, v: Any) -> RGB:
        return parse_color(v)


def default_channels() -> Dict[str, ChannelSettings]:
    """Default CMYK screen table (angles 15/75/0/45, 45 cells, 100%)."""
    return {
        name: ChannelSettings(angle=DEFAULT_ANGLES[name], color=DEFAULT_INKS[name])
        for name in CMYK_CHANNELS
    }


class Settings(BaseModel):
    """Immutable snapshot of everything a render pass depends on.

    Accepts both snake_case keys and the camelCase keys used by the
    interactive front end (``colorMode``, ``customColors``, ...).
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    pattern: str = Field("circle", description="Dot pattern name")
    color_mode: Literal['cmyk', 'mono', 'duotone', 'tritone'] = Field('cmyk', alias='colorMode')
    global_frequency: float = Field(DEFAULT_FREQUENCY, gt=0.0, alias='globalFrequency')
    global_size: float = Field(DEFAULT_SIZE, gt=0.0, alias='globalSize')
    channels: Dict[str, ChannelSettings] = Field(default_factory=default_channels)
    custom_colors: List[RGB] = Field(
        default_factory=lambda: [parse_color(c) for c in DEFAULT_CUSTOM_COLORS],
        alias='customColors'
    )
    transparent_bg: bool = Field(False, alias='transparentBg')

    @field_validator('pattern', mode='before')
    @classmethod
    def normalize_pattern(cls, v: Any) -> str:
        # Unknown names are kept; evaluators fall back to circle
        return str(v).strip().lower()

    @field_validator('custom_colors', mode='before')
    @classmethod
    def coerce_custom_colors(cls, v: Any) -> List[RGB]:
        if v is None:
            return []
        return [parse_color(c) for c in v]

    @model_validator(mode='after')
    def validate_channel_table(self) -> 'Settings':
        """CMYK/mono modes need their named channels present."""
        if self.color_mode == 'cmyk':
            missing = [name for name in CMYK_CHANNELS if name not in self.channels]
        elif self.color_mode == 'mono':
            missing = [] if 'key' in self.channels else ['key']
        else:
            missing = []
        if missing:
            raise ValueError(f"color_mode '{self.color_mode}' requires channels {missing}")
        return self

    def with_global(
        self,
        frequency: Optional[float] = None,
        size: Optional[float] = None
    ) -> 'Settings':
        """Apply the global controls to every channel at once.

        Parameters
        ----------
        frequency : float, optional
            New frequency for all channels (and ``global_frequency``)
        size : float, optional
            New size for all channels (and ``global_size``)

        Returns
        -------
        Settings
            New validated snapshot; ``self`` is untouched

        Notes
        -----
        The whole channel table is rebuilt and validated before the new
        snapshot exists, so no caller can observe channels with mixed
        magnitudes.
        """
        data = self.model_dump()
        for ch in data['channels'].values():
            if frequency is not None:
                ch['frequency'] = frequency
            if size is not None:
                ch['size'] = size
        if frequency is not None:
            data['global_frequency'] = frequency
        if size is not None:
            data['global_size'] = size
        return Settings.model_validate(data)


# ============================================================================
# ENGINE CONFIG (engine.v1.yaml)
# ============================================================================

class EngineConfigV1(BaseModel):
    """Engine configuration (engine.v1.yaml schema).

    Controls which driver renders rasters and how the dense field
    evaluation is split into parallel work.
    """
    model_config = ConfigDict(populate_by_name=True)

    schema_version: str = Field("halftone_engine.v1", alias="schema")
    backend: Literal['auto', 'field', 'grid'] = Field('auto', description="Raster driver")
    device: Literal['auto', 'cpu', 'cuda'] = Field('auto', description="Torch device for field path")
    band_rows: int = Field(256, ge=1, le=4096, description="Rows per parallel work band")
    max_workers: int = Field(0, ge=0, le=256, description="Band workers (0 = CPU count)")
    antialias: Literal['derivative', 'fixed'] = Field('derivative')
    aa_fixed_width: float = Field(0.03, gt=0.0, le=0.5, description="Fixed edge width (cell units)")
    background: RGB = Field((0xf4 / 255.0, 0xf1 / 255.0, 0xea / 255.0), description="Paper color")
    print_scale: int = Field(2, ge=1, le=8, description="Integer upscale for print output")

    @field_validator('schema_version')
    @classmethod
    def validate_schema(cls, v: str) -> str:
        if v != "halftone_engine.v1":
            raise ValueError(f"Expected schema 'halftone_engine.v1', got '{v}'")
        return v

    @field_validator('background', mode='before')
    @classmethod
    def coerce_background(cls, v: Any) -> RGB:
        return parse_color(v)


# ============================================================================
# PUBLIC API
# ============================================================================

def load_engine_config(path: Union[str, Path]) -> EngineConfigV1:
    """Load and validate engine config from YAML.

    Parameters
    ----------
    path : Union[str, Path]
        Path to engine.v1.yaml file

    Returns
    -------
    EngineConfigV1
        Validated engine configuration

    Raises
    ------
    FileNotFoundError
        If path doesn't exist
    ValueError
        If validation fails (with actionable error message)
    """
    from . import fs

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Engine config not found: {path}")

    data = fs.load_yaml(path) or {}
    try:
        return EngineConfigV1(**data)
    except Exception as e:
        raise ValueError(f"Engine config validation failed at {path}: {e}") from e


def load_settings(path: Union[str, Path]) -> Settings:
    """Load and validate render settings from YAML.

    Parameters
    ----------
    path : Union[str, Path]
        Path to a settings YAML file

    Returns
    -------
    Settings
        Validated, immutable settings snapshot

    Raises
    ------
    FileNotFoundError
        If path doesn't exist
    ValueError
        If validation fails (with actionable error message)
    """
    from . import fs

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Settings file not found: {path}")

    data = fs.load_yaml(path) or {}
    data.pop('schema', None)
    try:
        return Settings.model_validate(data)
    except Exception as e:
        raise ValueError(f"Settings validation failed at {path}: {e}") from e
