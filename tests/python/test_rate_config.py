"""Unit tests for uac2_rate_follower.config."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from uac2_rate_follower import config
from uac2_rate_follower.errors import ConfigurationError
from uac2_rate_follower.messages import Direction


def test_defaults_match_gadget_setup() -> None:
    cfg = config.parse_args([], environ={})
    assert cfg.timeout_ms == 100
    assert cfg.gadget_name == "UAC2Gadget"
    assert cfg.ctl_name(Direction.CAPTURE) == "Capture Rate"
    assert cfg.ctl_name(Direction.PLAYBACK) == "Playback Rate"
    assert cfg.verbose == 0
    assert cfg.show_timing is False

    capture = cfg.command(Direction.CAPTURE)
    assert capture.program == "alsaloop"
    assert "{R}" in capture.args
    assert "captshift" in capture.args
    assert "playshift" in cfg.command(Direction.PLAYBACK).args


def test_cli_options() -> None:
    cfg = config.parse_args(
        ["-d", "0", "-vv", "-t", "-g", "MyGadget", "-c", "Cap", "-p", "Play",
         "-y", "cap-loop -r {R}", "-x", "play-loop -r {R}", "--kill-grace", "0.5"],
        environ={},
    )
    assert cfg.timeout_ms == 0
    assert cfg.verbose == 2
    assert cfg.show_timing is True
    assert cfg.gadget_name == "MyGadget"
    assert cfg.capture_ctl == "Cap"
    assert cfg.playback_ctl == "Play"
    assert cfg.command(Direction.CAPTURE).render(44100) == ["cap-loop", "-r", "44100"]
    assert cfg.command(Direction.PLAYBACK).render(48000) == ["play-loop", "-r", "48000"]
    assert cfg.kill_grace_sec == 0.5


def test_env_defaults_and_cli_precedence() -> None:
    env = {"UAC2_RATE_TIMEOUT_MS": "250", "UAC2_RATE_SHOW_TIMING": "yes"}
    assert config.parse_args([], environ=env).timeout_ms == 250
    assert config.parse_args([], environ=env).show_timing is True
    assert config.parse_args(["-d", "10"], environ=env).timeout_ms == 10


def test_invalid_env_int_falls_back_to_default() -> None:
    assert config.parse_args([], environ={"UAC2_RATE_TIMEOUT_MS": "abc"}).timeout_ms == 100


def test_env_file_is_lowest_priority(tmp_path: Path) -> None:
    env_file = tmp_path / "rate.env"
    env_file.write_text(
        "# comment\n"
        "UAC2_RATE_GADGET_NAME=FileGadget\n"
        "UAC2_RATE_TIMEOUT_MS=300\n"
        'UAC2_RATE_CAPTURE_CMD="cap-loop -r {R}"\n'
    )
    cfg = config.parse_args(
        ["--config", str(env_file)], environ={"UAC2_RATE_TIMEOUT_MS": "50"}
    )
    assert cfg.gadget_name == "FileGadget"
    assert cfg.timeout_ms == 50
    assert cfg.command(Direction.CAPTURE).program == "cap-loop"


def test_env_file_from_environment(tmp_path: Path) -> None:
    env_file = tmp_path / "rate.env"
    env_file.write_text("UAC2_RATE_PLAYBACK_CTL=PCM Rate\n")
    cfg = config.parse_args([], environ={config.CONFIG_PATH_ENV: str(env_file)})
    assert cfg.playback_ctl == "PCM Rate"


def test_parse_env_file_missing_returns_empty(tmp_path: Path) -> None:
    assert config.parse_env_file(tmp_path / "missing.env") == {}


def test_negative_timeout_is_rejected() -> None:
    with pytest.raises(ValidationError):
        config.parse_args(["-d", "-1"], environ={})


def test_blank_command_is_rejected() -> None:
    with pytest.raises(ValidationError):
        config.RateFollowerConfig(capture_cmd="   ")


def test_unparsable_command_raises_configuration_error() -> None:
    cfg = config.RateFollowerConfig(playback_cmd="alsaloop 'unterminated")
    with pytest.raises(ConfigurationError):
        cfg.command(Direction.PLAYBACK)
