from .brain import (
    CircadianCurve,
    CircadianPhase,
    classify_phase,
    compute_display_setting,
)
from .config import (
    BedTime,
    ConfigurationError,
    DisplaySetting,
    ScheduleConfig,
)

__all__ = [
    "CircadianCurve",
    "CircadianPhase",
    "classify_phase",
    "compute_display_setting",
    "BedTime",
    "ConfigurationError",
    "DisplaySetting",
    "ScheduleConfig",
]
