#!/usr/bin/env python3
"""Brain module for auto-redshift – the circadian curve.

Phase model (relative to bedtime)
---------------------------------
* Evening transition: the ``evening_transition_hours`` leading up to bedtime,
  ramping linearly from the day setting to the night setting.
* Night: bedtime itself, plus the optional ``night_hold_hours`` after it.
* Morning transition: the ``morning_transition_hours`` after the hold,
  ramping back from night to day.
* Day: everything else.

All of it is a pure function of wall-clock time; nothing is remembered
between calls.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from enum import Enum
from typing import List, Optional, Tuple

from .config import (
    MINUTES_PER_DAY,
    BedTime,
    DisplaySetting,
    ScheduleConfig,
)

logger = logging.getLogger(__name__)


class CircadianPhase(Enum):
    """Where in the day an instant falls, relative to bedtime."""
    DAY = "day"
    EVENING_TRANSITION = "evening_transition"
    NIGHT = "night"
    MORNING_TRANSITION = "morning_transition"


def minutes_of_day(now: datetime) -> float:
    """Minutes since local midnight, seconds included as a fraction."""
    return now.hour * 60 + now.minute + now.second / 60


def _lerp(start: float, end: float, t: float) -> float:
    # Exact at both endpoints.
    return start * (1.0 - t) + end * t


# ---------------------------------------------------------------------------
# Curve math
# ---------------------------------------------------------------------------

class CircadianCurve:
    """Map (instant, bedtime, schedule) to the display setting for that instant."""

    @staticmethod
    def classify(now: datetime, bedtime: BedTime, config: ScheduleConfig) -> Tuple[CircadianPhase, float]:
        """Return the phase and the night-ward blend factor for ``now``.

        The factor is 0.0 for the full day setting and 1.0 for the full night
        setting, clamped to that range.
        """
        now_minutes = minutes_of_day(now)
        bed_minutes = bedtime.to_minutes()

        until_bed = (bed_minutes - now_minutes) % MINUTES_PER_DAY
        since_bed = (now_minutes - bed_minutes) % MINUTES_PER_DAY

        if until_bed == 0:
            return CircadianPhase.NIGHT, 1.0

        evening_window = config.evening_window_minutes
        if until_bed <= evening_window:
            t = 1.0 - until_bed / evening_window
            return CircadianPhase.EVENING_TRANSITION, max(0.0, min(1.0, t))

        if since_bed <= config.night_hold_minutes:
            return CircadianPhase.NIGHT, 1.0

        morning_since = since_bed - config.night_hold_minutes
        morning_window = config.morning_window_minutes
        if morning_since <= morning_window:
            # A zero-length window is an instantaneous step back to day.
            t = morning_since / morning_window if morning_window > 0 else 1.0
            return CircadianPhase.MORNING_TRANSITION, 1.0 - max(0.0, min(1.0, t))

        return CircadianPhase.DAY, 0.0

    @staticmethod
    def blend(night_factor: float, config: ScheduleConfig) -> DisplaySetting:
        """Interpolate between the day and night settings, clamped to bounds."""
        t = max(0.0, min(1.0, night_factor))
        day, night = config.day, config.night

        kelvin = round(_lerp(day.temperature, night.temperature, t))
        kelvin = int(max(config.min_color_temp, min(config.max_color_temp, kelvin)))

        brightness = _lerp(day.brightness, night.brightness, t)
        brightness = max(0.0, min(1.0, brightness))

        return DisplaySetting(temperature=kelvin, brightness=brightness)

    @classmethod
    def compute(cls, now: datetime, bedtime: BedTime, config: ScheduleConfig) -> DisplaySetting:
        """Display setting for ``now``. Never raises for a valid BedTime."""
        _, night_factor = cls.classify(now, bedtime, config)
        return cls.blend(night_factor, config)

    @classmethod
    def describe(cls, now: datetime, bedtime: BedTime, config: ScheduleConfig) -> str:
        """One-line summary, e.g. ``22:00 evening_transition 4600K 65%``."""
        phase, night_factor = cls.classify(now, bedtime, config)
        setting = cls.blend(night_factor, config)
        return (
            f"{now.hour:02d}:{now.minute:02d} {phase.value} "
            f"{setting.temperature}K {setting.brightness * 100:.0f}%"
        )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def classify_phase(now: datetime, bedtime: BedTime, config: ScheduleConfig) -> Tuple[CircadianPhase, float]:
    return CircadianCurve.classify(now, bedtime, config)


def compute_display_setting(now: datetime, bedtime: BedTime, config: ScheduleConfig) -> DisplaySetting:
    return CircadianCurve.compute(now, bedtime, config)


def preview_curve(
    bedtime: BedTime,
    config: ScheduleConfig,
    step_minutes: int = 30,
    start: Optional[datetime] = None,
) -> List[Tuple[datetime, CircadianPhase, DisplaySetting]]:
    """Sample the curve across 24 hours starting at ``start`` (default: today's midnight).

    Args:
        bedtime: Configured bedtime
        config: Schedule parameters
        step_minutes: Spacing between samples
        start: First sampled instant

    Returns:
        List of (instant, phase, setting) rows
    """
    if step_minutes <= 0:
        raise ValueError("step_minutes must be positive")

    if start is None:
        start = datetime.now().replace(hour=0, minute=0, second=0, microsecond=0)

    rows = []
    for offset in range(0, MINUTES_PER_DAY, step_minutes):
        instant = start + timedelta(minutes=offset)
        phase, night_factor = CircadianCurve.classify(instant, bedtime, config)
        rows.append((instant, phase, CircadianCurve.blend(night_factor, config)))

    logger.debug(f"Previewed {len(rows)} samples for bedtime {bedtime}")
    return rows
