#!/usr/bin/env python3
"""Test suite for the auto-redshift command line entry point."""

from unittest.mock import AsyncMock, patch

import pytest

from auto_redshift.config import Backend, BedTime, ScheduleConfig
from auto_redshift.display_controller import (
    BrightnessctlController,
    UnrecoverableDisplayError,
    WallpaperController,
    WlrGammaController,
)
from auto_redshift.main import ApplyLoop, LoopState, _run_daemon, main


@pytest.fixture(autouse=True)
def no_user_config(tmp_path, monkeypatch):
    """Point the default config path at a file that does not exist."""
    monkeypatch.setenv("AUTO_REDSHIFT_CONFIG", str(tmp_path / "absent.yaml"))


WALLPAPER_CONFIG = """
brightness_backend: brightnessctl
wallpapers:
  root: /walls
  morning: morning.png
  day: day.png
  evening: evening.png
  night: night.png
"""


class TestPreview:
    """Test cases for the preview command."""

    def test_prints_whole_day(self, capsys):
        assert main(["preview", "23:00", "--step-minutes", "60"]) == 0

        lines = capsys.readouterr().out.splitlines()
        assert lines[0].startswith("Curve for bedtime 23:00, evening 4h")
        assert len(lines) == 3 + 24
        assert any(line.startswith("23:00 -> phase=night") for line in lines)
        assert any(line.startswith("12:00 -> phase=day") for line in lines)

    def test_n_hours_override(self, capsys):
        assert main(["preview", "23:00", "--n-hours", "2"]) == 0
        assert "evening 2h" in capsys.readouterr().out

    def test_invalid_step(self):
        assert main(["preview", "23:00", "--step-minutes", "0"]) == 2


class TestConfigurationErrors:
    """Startup errors exit with status 2 before the loop starts."""

    @pytest.mark.parametrize("bedtime", ["25:00", "11pm", "23-00", "²3:00"])
    def test_invalid_bedtime(self, bedtime):
        with patch("auto_redshift.main._run_daemon", new=AsyncMock()) as run_mock:
            assert main(["start", bedtime]) == 2
        run_mock.assert_not_called()

    def test_missing_explicit_config(self, tmp_path):
        assert main(["--config", str(tmp_path / "nope.yaml"), "start", "23:00"]) == 2

    def test_overlapping_windows_from_cli(self):
        assert main(["start", "23:00", "--n-hours", "20"]) == 2

    def test_wallpapers_without_section(self):
        assert main(["start", "23:00", "--wallpapers"]) == 2

    def test_non_positive_tick(self):
        with patch("auto_redshift.main._run_daemon", new=AsyncMock()) as run_mock:
            assert main(["start", "23:00", "--tick-minutes", "0"]) == 2
        run_mock.assert_not_called()

    @pytest.mark.parametrize("value", ["nan", "inf"])
    def test_non_finite_tick(self, value):
        with patch("auto_redshift.main._run_daemon", new=AsyncMock()) as run_mock:
            assert main(["start", "23:00", "--tick-minutes", value]) == 2
        run_mock.assert_not_called()

    @pytest.mark.parametrize("command", ["start", "preview"])
    @pytest.mark.parametrize("value", ["nan", "inf"])
    def test_non_finite_n_hours(self, command, value):
        with patch("auto_redshift.main._run_daemon", new=AsyncMock()) as run_mock:
            assert main([command, "23:00", "--n-hours", value]) == 2
        run_mock.assert_not_called()

    def test_unicode_digit_bedtime_in_preview(self, capsys):
        assert main(["preview", "²3:00"]) == 2
        assert capsys.readouterr().out == ""

    def test_missing_subcommand(self):
        with pytest.raises(SystemExit):
            main([])


class TestStart:
    """Test cases for the start command wiring."""

    def test_builds_apply_loop(self):
        with patch("auto_redshift.main._run_daemon", new=AsyncMock()) as run_mock:
            assert main(["start", "22:30", "--tick-minutes", "15", "--no-immediate"]) == 0

        apply_loop = run_mock.call_args[0][0]
        assert isinstance(apply_loop, ApplyLoop)
        assert str(apply_loop.bedtime) == "22:30"
        assert apply_loop.tick_interval == 900
        assert apply_loop.apply_immediately is False
        assert type(apply_loop.controller) is WlrGammaController
        assert apply_loop.wallpaper_controller is None

    def test_backend_and_wallpapers_from_config(self, tmp_path):
        path = tmp_path / "auto_redshift.yaml"
        path.write_text(WALLPAPER_CONFIG)

        with patch("auto_redshift.main._run_daemon", new=AsyncMock()) as run_mock:
            assert main(["--config", str(path), "start", "23:00", "--wallpapers", "--n-hours", "3"]) == 0

        apply_loop = run_mock.call_args[0][0]
        assert type(apply_loop.controller) is BrightnessctlController
        assert apply_loop.controller.backend == Backend.BRIGHTNESSCTL
        assert isinstance(apply_loop.wallpaper_controller, WallpaperController)
        assert apply_loop.wallpapers.night == "night.png"
        assert apply_loop.config.evening_transition_hours == 3.0

    def test_config_after_subcommand(self, tmp_path):
        path = tmp_path / "auto_redshift.yaml"
        path.write_text(WALLPAPER_CONFIG)

        with patch("auto_redshift.main._run_daemon", new=AsyncMock()) as run_mock:
            assert main(["start", "23:00", "--config", str(path), "--wallpapers"]) == 0

        apply_loop = run_mock.call_args[0][0]
        assert type(apply_loop.controller) is BrightnessctlController

    def test_missing_config_after_subcommand(self, tmp_path):
        assert main(["preview", "23:00", "--config", str(tmp_path / "nope.yaml")]) == 2

    def test_unrecoverable_error_exit_status(self):
        run_mock = AsyncMock(side_effect=UnrecoverableDisplayError("display gone"))
        with patch("auto_redshift.main._run_daemon", new=run_mock):
            assert main(["start", "23:00"]) == 1


class TestRunDaemon:
    """Test cases for the signal-handling wrapper."""

    @pytest.mark.asyncio
    async def test_returns_when_cancelled(self):
        controller = WlrGammaController()
        controller.apply = AsyncMock(return_value=True)
        apply_loop = ApplyLoop(
            BedTime(23, 0),
            ScheduleConfig(),
            controller,
            tick_interval=60,
        )
        apply_loop.cancel()

        await _run_daemon(apply_loop)

        assert apply_loop.state == LoopState.CANCELLED
        controller.apply.assert_not_called()
