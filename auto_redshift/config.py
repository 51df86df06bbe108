#!/usr/bin/env python3
"""Configuration for auto-redshift.

Holds the bedtime value, the tunable schedule (day/night settings and the
transition windows around bedtime) and the app-level options read from the
YAML config file. Everything here is built once at startup and never mutated.
"""

from __future__ import annotations

import logging
import math
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

import voluptuous as vol
import yaml

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

MINUTES_PER_DAY = 24 * 60

DEFAULT_CONFIG_PATH = "~/.config/auto_redshift.yaml"

# Supported color temperature range (Kelvin)
DEFAULT_MIN_COLOR_TEMP = 1000
DEFAULT_MAX_COLOR_TEMP = 10000

# Day/night endpoints of the curve
DEFAULT_DAY_TEMPERATURE = 6500
DEFAULT_DAY_BRIGHTNESS = 1.0
DEFAULT_NIGHT_TEMPERATURE = 2500
DEFAULT_NIGHT_BRIGHTNESS = 0.5

# Transition windows (hours)
DEFAULT_EVENING_TRANSITION_HOURS = 4.0
DEFAULT_MORNING_TRANSITION_HOURS = 8.0
DEFAULT_NIGHT_HOLD_HOURS = 0.0


class ConfigurationError(ValueError):
    """Raised at startup for a bedtime or config file the daemon cannot use."""


class Backend(Enum):
    """Which mechanism drives the display."""
    WLR_GAMMA = "wlr_gamma"             # Software gamma via wlr_gamma_service (gdbus)
    BRIGHTNESSCTL = "brightnessctl"     # Hardware backlight via brightnessctl


@dataclass(frozen=True)
class BedTime:
    """Local wall-clock time of day the schedule is anchored to."""
    hour: int
    minute: int

    def __post_init__(self) -> None:
        if not 0 <= self.hour <= 23:
            raise ConfigurationError(f"bedtime hour must be 0-23, got {self.hour}")
        if not 0 <= self.minute <= 59:
            raise ConfigurationError(f"bedtime minute must be 0-59, got {self.minute}")

    @classmethod
    def parse(cls, value: str) -> "BedTime":
        """Parse a 24-hour ``HH:MM`` string."""
        parts = str(value).strip().split(":")
        if len(parts) != 2 or not all(p.isascii() and p.isdigit() for p in parts):
            raise ConfigurationError(
                f"bedtime should be supplied in the format \"HH:MM\", got {value!r}"
            )
        return cls(hour=int(parts[0]), minute=int(parts[1]))

    def to_minutes(self) -> int:
        return self.hour * 60 + self.minute

    def __str__(self) -> str:
        return f"{self.hour:02d}:{self.minute:02d}"


@dataclass(frozen=True)
class DisplaySetting:
    """One endpoint of the curve: color temperature in Kelvin and brightness 0-1."""
    temperature: int
    brightness: float


@dataclass(frozen=True)
class ScheduleConfig:
    """Tunable curve parameters.

    The evening window ends at bedtime; the night hold starts at bedtime and
    the morning window starts where the hold ends.
    """
    day: DisplaySetting = field(default_factory=lambda: DisplaySetting(DEFAULT_DAY_TEMPERATURE, DEFAULT_DAY_BRIGHTNESS))
    night: DisplaySetting = field(default_factory=lambda: DisplaySetting(DEFAULT_NIGHT_TEMPERATURE, DEFAULT_NIGHT_BRIGHTNESS))
    evening_transition_hours: float = DEFAULT_EVENING_TRANSITION_HOURS
    morning_transition_hours: float = DEFAULT_MORNING_TRANSITION_HOURS
    night_hold_hours: float = DEFAULT_NIGHT_HOLD_HOURS
    min_color_temp: int = DEFAULT_MIN_COLOR_TEMP
    max_color_temp: int = DEFAULT_MAX_COLOR_TEMP

    @property
    def evening_window_minutes(self) -> float:
        return self.evening_transition_hours * 60

    @property
    def morning_window_minutes(self) -> float:
        return self.morning_transition_hours * 60

    @property
    def night_hold_minutes(self) -> float:
        return self.night_hold_hours * 60

    def validate(self) -> "ScheduleConfig":
        """Raise ConfigurationError if the schedule cannot describe a single day."""
        for name in ("evening_transition_hours", "morning_transition_hours", "night_hold_hours"):
            value = getattr(self, name)
            if not math.isfinite(value):
                raise ConfigurationError(f"{name} must be a finite number, got {value}")
            if value < 0:
                raise ConfigurationError(f"{name} must not be negative")

        total = self.evening_transition_hours + self.night_hold_hours + self.morning_transition_hours
        if total > 24:
            raise ConfigurationError(
                f"transition windows overlap: evening + night hold + morning = {total:g}h (> 24h)"
            )

        if self.min_color_temp > self.max_color_temp:
            raise ConfigurationError(
                f"min_color_temp {self.min_color_temp}K is above max_color_temp {self.max_color_temp}K"
            )

        for label, setting in (("day", self.day), ("night", self.night)):
            if not 0.0 <= setting.brightness <= 1.0:
                raise ConfigurationError(f"{label} brightness must be within 0-1, got {setting.brightness}")

        return self

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ScheduleConfig":
        """Build from the ``schedule`` block of the config file.

        Accepts ``temperature_range``/``brightness_range`` as ``[night, day]``
        pairs, or explicit ``day``/``night`` mappings which take precedence.
        """
        data = data or {}
        kwargs: Dict[str, Any] = {}

        day_temp, day_bri = DEFAULT_DAY_TEMPERATURE, DEFAULT_DAY_BRIGHTNESS
        night_temp, night_bri = DEFAULT_NIGHT_TEMPERATURE, DEFAULT_NIGHT_BRIGHTNESS

        if "temperature_range" in data:
            night_temp, day_temp = data["temperature_range"]
        if "brightness_range" in data:
            night_bri, day_bri = data["brightness_range"]

        day = data.get("day") or {}
        night = data.get("night") or {}
        kwargs["day"] = DisplaySetting(
            int(day.get("temperature", day_temp)),
            float(day.get("brightness", day_bri)),
        )
        kwargs["night"] = DisplaySetting(
            int(night.get("temperature", night_temp)),
            float(night.get("brightness", night_bri)),
        )

        for key in ("evening_transition_hours", "morning_transition_hours", "night_hold_hours"):
            if key in data:
                kwargs[key] = float(data[key])
        for key in ("min_color_temp", "max_color_temp"):
            if key in data:
                kwargs[key] = int(data[key])

        return cls(**kwargs)


@dataclass(frozen=True)
class Wallpapers:
    """Per-phase wallpaper file names, relative to ``root``."""
    root: Path
    morning: str
    day: str
    evening: str
    night: str


@dataclass(frozen=True)
class AppConfig:
    """Everything read from the config file."""
    schedule: ScheduleConfig = field(default_factory=ScheduleConfig)
    brightness_backend: Backend = Backend.WLR_GAMMA
    wallpapers: Optional[Wallpapers] = None


# ---------------------------------------------------------------------------
# File loading
# ---------------------------------------------------------------------------

_PAIR = vol.All([vol.Coerce(float)], vol.Length(min=2, max=2))

_SETTING_SCHEMA = vol.Schema({
    vol.Optional("temperature"): vol.All(vol.Coerce(int), vol.Range(min=1)),
    vol.Optional("brightness"): vol.All(vol.Coerce(float), vol.Range(min=0.0, max=1.0)),
})

SCHEDULE_SCHEMA = vol.Schema({
    vol.Optional("temperature_range"): _PAIR,
    vol.Optional("brightness_range"): _PAIR,
    vol.Optional("day"): _SETTING_SCHEMA,
    vol.Optional("night"): _SETTING_SCHEMA,
    vol.Optional("evening_transition_hours"): vol.All(vol.Coerce(float), vol.Range(min=0.0, max=24.0)),
    vol.Optional("morning_transition_hours"): vol.All(vol.Coerce(float), vol.Range(min=0.0, max=24.0)),
    vol.Optional("night_hold_hours"): vol.All(vol.Coerce(float), vol.Range(min=0.0, max=24.0)),
    vol.Optional("min_color_temp"): vol.All(vol.Coerce(int), vol.Range(min=1)),
    vol.Optional("max_color_temp"): vol.All(vol.Coerce(int), vol.Range(min=1)),
})

WALLPAPERS_SCHEMA = vol.Schema({
    vol.Required("root"): str,
    vol.Required("morning"): str,
    vol.Required("day"): str,
    vol.Required("evening"): str,
    vol.Required("night"): str,
})

CONFIG_SCHEMA = vol.Schema({
    vol.Optional("brightness_backend", default=Backend.WLR_GAMMA.value): vol.In([b.value for b in Backend]),
    vol.Optional("schedule", default={}): SCHEDULE_SCHEMA,
    vol.Optional("wallpapers"): WALLPAPERS_SCHEMA,
})


def parse_config(data: Optional[Dict[str, Any]]) -> AppConfig:
    """Validate a raw config mapping and build an AppConfig."""
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"config root must be a mapping, got {type(data).__name__}")

    try:
        data = CONFIG_SCHEMA(data)
    except vol.Invalid as err:
        raise ConfigurationError(f"invalid config: {err}") from err

    schedule = ScheduleConfig.from_dict(data["schedule"]).validate()

    wallpapers = None
    if "wallpapers" in data:
        wp = data["wallpapers"]
        wallpapers = Wallpapers(
            root=Path(wp["root"]).expanduser(),
            morning=wp["morning"],
            day=wp["day"],
            evening=wp["evening"],
            night=wp["night"],
        )

    return AppConfig(
        schedule=schedule,
        brightness_backend=Backend(data["brightness_backend"]),
        wallpapers=wallpapers,
    )


def load_config(path: Optional[str] = None) -> AppConfig:
    """Read and validate the YAML config file.

    With no explicit path a missing file means defaults; an explicitly named
    file must exist.
    """
    explicit = path is not None
    config_path = Path(path if explicit else os.getenv("AUTO_REDSHIFT_CONFIG", DEFAULT_CONFIG_PATH)).expanduser()

    if not config_path.exists():
        if explicit:
            raise ConfigurationError(f"config file not found: {config_path}")
        logger.info(f"No config file at {config_path}, using defaults")
        return parse_config({})

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as err:
        raise ConfigurationError(f"could not read config {config_path}: {err}") from err

    config = parse_config(data)
    logger.info(f"Loaded config from {config_path} (backend={config.brightness_backend.value})")
    return config
