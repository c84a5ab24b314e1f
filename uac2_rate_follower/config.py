"""CLI / 環境変数 / env ファイルから設定を組み立てる.

優先順位: CLI 引数 > 環境変数 > ``--config`` の env ファイル > 既定値。
"""

from __future__ import annotations

import argparse
import os
from pathlib import Path
from typing import Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .command import CommandTemplate
from .messages import Direction

DEFAULT_TIMEOUT_MS = 100
DEFAULT_GADGET_NAME = "UAC2Gadget"
DEFAULT_PLAYBACK_CTL = "Playback Rate"
DEFAULT_CAPTURE_CTL = "Capture Rate"
DEFAULT_PLAYBACK_CMD = (
    "alsaloop -vv -r {R} --latency=1000 -f S32_LE -S playshift "
    "-C hw:Loopback,1 -P hw:UAC2Gadget"
)
DEFAULT_CAPTURE_CMD = (
    "alsaloop -vv -r {R} --latency=1000 -f S32_LE -S captshift "
    "-C hw:UAC2Gadget -P hw:Loopback,1"
)
DEFAULT_KILL_GRACE_SEC = 2.0

CONFIG_PATH_ENV = "UAC2_RATE_CONFIG_PATH"

_ENV_KEYS = {
    "timeout_ms": "UAC2_RATE_TIMEOUT_MS",
    "show_timing": "UAC2_RATE_SHOW_TIMING",
    "gadget_name": "UAC2_RATE_GADGET_NAME",
    "playback_ctl": "UAC2_RATE_PLAYBACK_CTL",
    "capture_ctl": "UAC2_RATE_CAPTURE_CTL",
    "playback_cmd": "UAC2_RATE_PLAYBACK_CMD",
    "capture_cmd": "UAC2_RATE_CAPTURE_CMD",
    "kill_grace_sec": "UAC2_RATE_KILL_GRACE_SEC",
}


class RateFollowerConfig(BaseModel):
    """Validated runtime configuration."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    timeout_ms: int = Field(default=DEFAULT_TIMEOUT_MS, ge=0)
    verbose: int = Field(default=0, ge=0)
    show_timing: bool = False
    gadget_name: str = Field(default=DEFAULT_GADGET_NAME, min_length=1)
    playback_ctl: str = Field(default=DEFAULT_PLAYBACK_CTL, min_length=1)
    capture_ctl: str = Field(default=DEFAULT_CAPTURE_CTL, min_length=1)
    playback_cmd: str = DEFAULT_PLAYBACK_CMD
    capture_cmd: str = DEFAULT_CAPTURE_CMD
    kill_grace_sec: float = Field(default=DEFAULT_KILL_GRACE_SEC, gt=0)

    @field_validator("playback_cmd", "capture_cmd")
    @classmethod
    def _command_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("command must not be empty")
        return value

    def ctl_name(self, direction: Direction) -> str:
        if direction is Direction.CAPTURE:
            return self.capture_ctl
        return self.playback_ctl

    def command(self, direction: Direction) -> CommandTemplate:
        raw = self.capture_cmd if direction is Direction.CAPTURE else self.playback_cmd
        return CommandTemplate.parse(raw, f"{direction.value.lower()} command")


def parse_env_file(path: Path) -> dict[str, str]:
    """``KEY=VALUE`` 形式のファイルを読む (空行と # コメントは無視)."""
    if not path.exists():
        return {}
    try:
        text = path.read_text()
    except OSError:
        return {}
    env: dict[str, str] = {}
    for line in text.splitlines():
        raw = line.strip()
        if not raw or raw.startswith("#"):
            continue
        if "=" not in raw:
            continue
        key, value = raw.split("=", 1)
        env[key.strip()] = value.strip().strip('"').strip("'")
    return env


def _env_str(env: Mapping[str, str], name: str, default: str) -> str:
    raw = env.get(name)
    return default if raw is None or raw == "" else raw


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _build_parser(env: Mapping[str, str]) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="uac2-rate-follower",
        description="Restart a loopback process whenever the UAC2 gadget rate changes",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help=f"KEY=VALUE env file with defaults (env: {CONFIG_PATH_ENV})",
    )
    parser.add_argument(
        "-d",
        "--timeout",
        dest="timeout_ms",
        type=int,
        default=_env_int(env, _ENV_KEYS["timeout_ms"], DEFAULT_TIMEOUT_MS),
        help="Debouncing timeout in ms, 0 = no debouncing",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Verbose (-v = debug, -vv = also raw ctl events)",
    )
    parser.add_argument(
        "-t",
        "--show-timing",
        action="store_true",
        default=_env_bool(env, _ENV_KEYS["show_timing"], False),
        help="Show start/stop timing",
    )
    parser.add_argument(
        "-g",
        "--gadget-name",
        default=_env_str(env, _ENV_KEYS["gadget_name"], DEFAULT_GADGET_NAME),
        help="Gadget card name",
    )
    parser.add_argument(
        "-p",
        "--pctl",
        dest="playback_ctl",
        default=_env_str(env, _ENV_KEYS["playback_ctl"], DEFAULT_PLAYBACK_CTL),
        help="Playback Rate ctl name",
    )
    parser.add_argument(
        "-c",
        "--cctl",
        dest="capture_ctl",
        default=_env_str(env, _ENV_KEYS["capture_ctl"], DEFAULT_CAPTURE_CTL),
        help="Capture Rate ctl name",
    )
    parser.add_argument(
        "-x",
        "--pcmd",
        dest="playback_cmd",
        default=_env_str(env, _ENV_KEYS["playback_cmd"], DEFAULT_PLAYBACK_CMD),
        help="Playback command ({R} replaced with real rate)",
    )
    parser.add_argument(
        "-y",
        "--ccmd",
        dest="capture_cmd",
        default=_env_str(env, _ENV_KEYS["capture_cmd"], DEFAULT_CAPTURE_CMD),
        help="Capture command ({R} replaced with real rate)",
    )
    parser.add_argument(
        "--kill-grace",
        dest="kill_grace_sec",
        type=float,
        default=_env_float(env, _ENV_KEYS["kill_grace_sec"], DEFAULT_KILL_GRACE_SEC),
        help="Seconds to wait after SIGTERM before SIGKILL",
    )
    return parser


def parse_args(
    argv: list[str] | None = None,
    environ: Optional[Mapping[str, str]] = None,
) -> RateFollowerConfig:
    """Parse CLI into a validated config. Raises pydantic.ValidationError."""
    environ = os.environ if environ is None else environ

    # --config は他の既定値に影響するので先に拾う
    pre = argparse.ArgumentParser(add_help=False)
    pre.add_argument("--config", type=Path, default=None)
    known, _ = pre.parse_known_args(argv)
    config_path = known.config
    if config_path is None and environ.get(CONFIG_PATH_ENV):
        config_path = Path(environ[CONFIG_PATH_ENV])
    file_env = parse_env_file(config_path) if config_path else {}

    # 環境変数が env ファイルより優先
    merged = {**file_env, **environ}
    args = _build_parser(merged).parse_args(argv)
    return RateFollowerConfig(
        timeout_ms=args.timeout_ms,
        verbose=args.verbose,
        show_timing=bool(args.show_timing),
        gadget_name=args.gadget_name,
        playback_ctl=args.playback_ctl,
        capture_ctl=args.capture_ctl,
        playback_cmd=args.playback_cmd,
        capture_cmd=args.capture_cmd,
        kill_grace_sec=args.kill_grace_sec,
    )
