#!/usr/bin/env python3
"""auto-redshift daemon - periodically applies the circadian display setting."""

import argparse
import asyncio
import dataclasses
import logging
import math
import os
import signal
import sys
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional

from .brain import CircadianCurve, CircadianPhase, preview_curve
from .config import (
    AppConfig,
    BedTime,
    ConfigurationError,
    DisplaySetting,
    ScheduleConfig,
    Wallpapers,
    load_config,
)
from .display_controller import (
    DisplayController,
    DisplayControllerFactory,
    UnrecoverableDisplayError,
    WallpaperController,
)

# Configure logging
logging.basicConfig(
    level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

DEFAULT_TICK_INTERVAL = 30 * 60  # seconds
DEGRADED_AFTER_FAILURES = 3


class LoopState(Enum):
    """Lifecycle of the apply loop."""
    IDLE = "idle"
    TICKING = "ticking"
    APPLYING = "applying"
    CANCELLED = "cancelled"


class ApplyLoop:
    """Wakes on a fixed cadence and pushes the current curve value to the display.

    Tick N is due at ``start + N * tick_interval`` on the event loop's
    monotonic clock, so a slow apply never shifts later ticks. Ticks missed
    while an apply was running are skipped, not queued.
    """

    def __init__(
        self,
        bedtime: BedTime,
        config: ScheduleConfig,
        controller: DisplayController,
        tick_interval: float = DEFAULT_TICK_INTERVAL,
        apply_immediately: bool = True,
        wallpaper_controller: Optional[WallpaperController] = None,
        wallpapers: Optional[Wallpapers] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """Initialize the loop.

        Args:
            bedtime: Configured bedtime
            config: Schedule parameters
            controller: Display controller to apply settings through
            tick_interval: Seconds between ticks
            apply_immediately: Apply at startup (tick 0) instead of after one interval
            wallpaper_controller: Optional wallpaper setter, used together with wallpapers
            wallpapers: Per-phase wallpaper files
            clock: Source of local wall-clock time
        """
        if not math.isfinite(tick_interval) or tick_interval <= 0:
            raise ConfigurationError(f"tick interval must be positive, got {tick_interval}")

        self.bedtime = bedtime
        self.config = config
        self.controller = controller
        self.tick_interval = tick_interval
        self.apply_immediately = apply_immediately
        self.wallpaper_controller = wallpaper_controller
        self.wallpapers = wallpapers
        self.clock = clock

        self.state = LoopState.IDLE
        self.ticks = 0
        self.failures = 0
        self.consecutive_failures = 0
        self.skipped_ticks = 0
        self.last_setting: Optional[DisplaySetting] = None
        self.last_wallpaper_phase: Optional[CircadianPhase] = None

        self._cancel_requested = False
        self._cancel_event: Optional[asyncio.Event] = None  # Created lazily in the running event loop

    @property
    def degraded(self) -> bool:
        return self.consecutive_failures >= DEGRADED_AFTER_FAILURES

    def cancel(self) -> None:
        """Request shutdown. Interrupts a pending wait; an in-flight apply finishes first."""
        if not self._cancel_requested:
            logger.info("Shutdown requested - stopping apply loop")
        self._cancel_requested = True
        if self._cancel_event is not None:
            self._cancel_event.set()

    @staticmethod
    def next_tick_index(start: float, now: float, interval: float, last_index: int) -> int:
        """Index of the next tick to run after ``last_index`` completed at ``now``.

        Deadlines already in the past are skipped; one falling exactly on
        ``now`` still runs.
        """
        due = math.ceil((now - start) / interval)
        return max(last_index + 1, due)

    async def run(self) -> None:
        """Run until cancelled or the controller raises UnrecoverableDisplayError."""
        if self._cancel_event is None:
            self._cancel_event = asyncio.Event()
        if self._cancel_requested:
            self._cancel_event.set()

        loop = asyncio.get_running_loop()
        start = loop.time()
        index = 0 if self.apply_immediately else 1

        logger.info(
            f"Starting apply loop: bedtime {self.bedtime}, every {self.tick_interval / 60:g} min, "
            f"evening {self.config.evening_transition_hours:g}h, morning {self.config.morning_transition_hours:g}h"
        )

        try:
            while not self._cancel_event.is_set():
                self.state = LoopState.IDLE
                remaining = start + index * self.tick_interval - loop.time()
                if remaining > 0:
                    logger.debug(f"Next tick #{index} in {remaining:.1f}s")
                    try:
                        await asyncio.wait_for(self._cancel_event.wait(), timeout=remaining)
                        break
                    except asyncio.TimeoutError:
                        pass  # Tick is due

                await self.tick()

                next_index = self.next_tick_index(start, loop.time(), self.tick_interval, index)
                skipped = next_index - index - 1
                if skipped > 0:
                    self.skipped_ticks += skipped
                    logger.warning(f"Apply overran the tick interval - skipped {skipped} tick(s)")
                index = next_index

        except asyncio.CancelledError:
            logger.info("Apply loop cancelled")
        finally:
            self.state = LoopState.CANCELLED
            logger.info(
                f"Apply loop stopped after {self.ticks} tick(s), {self.failures} failure(s), "
                f"{self.skipped_ticks} skipped"
            )

    async def tick(self) -> bool:
        """Compute the current setting and apply it once. Returns True on success."""
        self.state = LoopState.TICKING
        now = self.clock()
        phase, night_factor = CircadianCurve.classify(now, self.bedtime, self.config)
        setting = CircadianCurve.blend(night_factor, self.config)
        self.ticks += 1

        self.state = LoopState.APPLYING
        try:
            applied = await self.controller.apply(setting)
        except UnrecoverableDisplayError as e:
            logger.error(f"Display controller failed permanently: {e}")
            raise
        except Exception as e:
            logger.error(f"Failed to apply display setting {setting.temperature}K/{setting.brightness:.2f}: {e}")
            applied = False
        else:
            if not applied:
                logger.error(
                    f"Failed to apply display setting {setting.temperature}K/{setting.brightness:.2f}: "
                    f"controller reported failure"
                )

        if applied:
            if self.degraded:
                logger.info(f"Display controller recovered after {self.consecutive_failures} failed tick(s)")
            self.consecutive_failures = 0
            self.last_setting = setting
            logger.info(
                f"Applied {phase.value} setting at {now:%H:%M}: "
                f"{setting.temperature}K, {setting.brightness * 100:.0f}%"
            )
        else:
            self.failures += 1
            self.consecutive_failures += 1
            if self.consecutive_failures == DEGRADED_AFTER_FAILURES:
                logger.warning(
                    f"{DEGRADED_AFTER_FAILURES} consecutive apply failures - display is stale, "
                    f"will keep retrying every tick"
                )

        await self._update_wallpaper(phase)

        self.state = LoopState.IDLE
        return applied

    def wallpaper_for(self, phase: CircadianPhase) -> Optional[str]:
        if self.wallpapers is None:
            return None
        names = {
            CircadianPhase.MORNING_TRANSITION: self.wallpapers.morning,
            CircadianPhase.DAY: self.wallpapers.day,
            CircadianPhase.EVENING_TRANSITION: self.wallpapers.evening,
            CircadianPhase.NIGHT: self.wallpapers.night,
        }
        return str(self.wallpapers.root / names[phase])

    async def _update_wallpaper(self, phase: CircadianPhase) -> None:
        if self.wallpaper_controller is None or self.wallpapers is None:
            return
        if phase == self.last_wallpaper_phase:
            return

        path = self.wallpaper_for(phase)
        try:
            ok = await self.wallpaper_controller.set_wallpaper(path)
        except Exception as e:
            logger.error(f"Failed to set wallpaper {path}: {e}")
            ok = False

        if ok:
            self.last_wallpaper_phase = phase


# ---------------------------------------------------------------------------
# Command line
# ---------------------------------------------------------------------------

def _build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="auto-redshift",
        description="Shift the display toward warm, dim light as bedtime approaches",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to the YAML config file (default: $AUTO_REDSHIFT_CONFIG or ~/.config/auto_redshift.yaml)",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )
    # Also accepted after the subcommand; SUPPRESS keeps an earlier --config intact.
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", default=argparse.SUPPRESS, help="Path to the YAML config file")

    subparsers = parser.add_subparsers(dest="command", required=True)

    start = subparsers.add_parser("start", parents=[common], help="Run the daemon")
    start.add_argument("bedtime", help="Bedtime as HH:MM (24-hour clock)")
    start.add_argument(
        "--wallpapers",
        action="store_true",
        help="Cycle through wallpapers as day phases change",
    )
    start.add_argument(
        "--n-hours",
        type=float,
        default=None,
        help="Length of the evening transition in hours (overrides the config file)",
    )
    start.add_argument(
        "--tick-minutes",
        type=float,
        default=DEFAULT_TICK_INTERVAL / 60,
        help="Minutes between display updates",
    )
    start.add_argument(
        "--no-immediate",
        action="store_true",
        help="Wait one full interval before the first update",
    )

    preview = subparsers.add_parser("preview", parents=[common], help="Print the curve for a bedtime without touching the display")
    preview.add_argument("bedtime", help="Bedtime as HH:MM (24-hour clock)")
    preview.add_argument(
        "--n-hours",
        type=float,
        default=None,
        help="Length of the evening transition in hours (overrides the config file)",
    )
    preview.add_argument(
        "--step-minutes",
        type=int,
        default=30,
        help="Spacing between printed samples",
    )
    return parser


def _resolve_schedule(app_config: AppConfig, n_hours: Optional[float]) -> ScheduleConfig:
    schedule = app_config.schedule
    if n_hours is not None:
        schedule = dataclasses.replace(schedule, evening_transition_hours=n_hours).validate()
    return schedule


def format_preview(bedtime: BedTime, schedule: ScheduleConfig, step_minutes: int) -> List[str]:
    lines = [
        f"Curve for bedtime {bedtime}, evening {schedule.evening_transition_hours:g}h, "
        f"night hold {schedule.night_hold_hours:g}h, morning {schedule.morning_transition_hours:g}h",
        f"Day: {schedule.day.temperature}K/{schedule.day.brightness:.2f}  "
        f"Night: {schedule.night.temperature}K/{schedule.night.brightness:.2f}",
        "=" * 64,
    ]
    for instant, phase, setting in preview_curve(bedtime, schedule, step_minutes):
        lines.append(
            f"{instant:%H:%M} -> phase={phase.value:18} temp={setting.temperature:6d}K, "
            f"brightness={setting.brightness:.2f}"
        )
    return lines


async def _run_daemon(apply_loop: ApplyLoop) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, apply_loop.cancel)
        except NotImplementedError:
            logger.debug(f"Signal handlers not supported, {sig.name} will not stop the loop cleanly")
    await apply_loop.run()


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = _build_arg_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        bedtime = BedTime.parse(args.bedtime)
        app_config = load_config(args.config)
        schedule = _resolve_schedule(app_config, args.n_hours)
        if args.command == "start" and args.wallpapers and app_config.wallpapers is None:
            raise ConfigurationError("--wallpapers requires a 'wallpapers' section in the config file")
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 2

    if args.command == "preview":
        if args.step_minutes <= 0:
            logger.error("--step-minutes must be positive")
            return 2
        for line in format_preview(bedtime, schedule, args.step_minutes):
            print(line)
        return 0

    controller = DisplayControllerFactory.create_controller(app_config.brightness_backend)
    try:
        apply_loop = ApplyLoop(
            bedtime,
            schedule,
            controller,
            tick_interval=args.tick_minutes * 60,
            apply_immediately=not args.no_immediate,
            wallpaper_controller=WallpaperController() if args.wallpapers else None,
            wallpapers=app_config.wallpapers if args.wallpapers else None,
        )
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 2

    try:
        asyncio.run(_run_daemon(apply_loop))
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    except UnrecoverableDisplayError:
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
