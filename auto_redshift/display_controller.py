"""
Display controller module for driving the screen's color temperature and brightness.
Provides an abstraction layer over wlr_gamma_service, brightnessctl and swaymsg.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Sequence, Tuple

from .config import Backend, DisplaySetting

logger = logging.getLogger(__name__)

WLR_GAMMA_SERVICE = "net.zoidplex.wlr_gamma_service"
WLR_GAMMA_OBJECT = "/net/zoidplex/wlr_gamma_service"


class UnrecoverableDisplayError(Exception):
    """Raised by a controller when retrying on the next tick can never succeed."""


async def run_command(*argv: str) -> Tuple[int, str]:
    """Run an external command, returning (exit status, stderr text).

    A missing executable or other OSError is reported as status 127.
    """
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        return 127, str(e)

    try:
        _, stderr = await proc.communicate()
    except asyncio.CancelledError:
        # Don't leave the child running or unreaped.
        if proc.returncode is None:
            proc.kill()
        await proc.wait()
        raise

    return proc.returncode, stderr.decode(errors="replace").strip()


class DisplayController(ABC):
    """Abstract base class for display controllers."""

    def __init__(self):
        self.backend = None

    @abstractmethod
    async def apply(self, setting: DisplaySetting) -> bool:
        """Push a display setting to the screen. Returns True on success."""
        pass

    async def _call(self, argv: Sequence[str]) -> bool:
        returncode, stderr = await run_command(*argv)
        if returncode != 0:
            logger.error(f"{argv[0]} exited with status {returncode}: {stderr or 'no output'}")
            return False
        return True


class WlrGammaController(DisplayController):
    """Controller for software gamma via wlr_gamma_service over D-Bus."""

    def __init__(self):
        super().__init__()
        self.backend = Backend.WLR_GAMMA

    @staticmethod
    def gdbus_argv(method: str, value) -> list:
        return [
            "gdbus", "call", "-e",
            "-d", WLR_GAMMA_SERVICE,
            "-o", WLR_GAMMA_OBJECT,
            "-m", f"{WLR_GAMMA_SERVICE}.{method}",
            str(value),
        ]

    async def set_temperature(self, kelvin: int) -> bool:
        return await self._call(self.gdbus_argv("temperature.set", kelvin))

    async def set_brightness(self, brightness: float) -> bool:
        return await self._call(self.gdbus_argv("brightness.set", f"{brightness:.3f}"))

    async def apply(self, setting: DisplaySetting) -> bool:
        """Set temperature then brightness through wlr_gamma_service."""
        if not await self.set_temperature(setting.temperature):
            return False
        if not await self.set_brightness(setting.brightness):
            return False

        logger.debug(f"wlr_gamma set to {setting.temperature}K, {setting.brightness:.2f}")
        return True


class BrightnessctlController(WlrGammaController):
    """Temperature through wlr_gamma_service, brightness on the hardware backlight."""

    def __init__(self):
        super().__init__()
        self.backend = Backend.BRIGHTNESSCTL

    @staticmethod
    def brightnessctl_argv(brightness: float) -> list:
        percent = int(round(max(0.0, min(1.0, brightness)) * 100))
        return ["brightnessctl", "--quiet", "set", f"{percent}%"]

    async def set_brightness(self, brightness: float) -> bool:
        return await self._call(self.brightnessctl_argv(brightness))


class WallpaperController:
    """Sets the sway background for every output."""

    async def set_wallpaper(self, path: Path) -> bool:
        returncode, stderr = await run_command("swaymsg", "output", "*", "bg", str(path), "fill")
        if returncode != 0:
            logger.error(f"swaymsg failed to set wallpaper {path} (status {returncode}): {stderr or 'no output'}")
            return False

        logger.info(f"Wallpaper set to {path}")
        return True


class DisplayControllerFactory:
    """Factory for creating the controller matching the configured backend."""

    @staticmethod
    def create_controller(backend: Backend) -> DisplayController:
        if backend == Backend.WLR_GAMMA:
            return WlrGammaController()
        elif backend == Backend.BRIGHTNESSCTL:
            return BrightnessctlController()
        else:
            raise NotImplementedError(f"Backend {backend} not yet implemented")
