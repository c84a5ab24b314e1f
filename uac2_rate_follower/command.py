"""外部コマンド (alsaloop など) のテンプレートと起動/停止."""

from __future__ import annotations

import logging
import shlex
import subprocess
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Tuple

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

RATE_PLACEHOLDER = "{R}"

_DEFAULT_KILL_GRACE_SEC = 2.0

PopenFactory = Callable[[List[str]], subprocess.Popen]


@dataclass(frozen=True)
class CommandTemplate:
    """Program + args; ``{R}`` in any arg is replaced by the rate at spawn time."""

    program: str
    args: Tuple[str, ...] = ()

    @classmethod
    def parse(cls, cmd: str, label: str = "command") -> "CommandTemplate":
        try:
            tokens = shlex.split(cmd)
        except ValueError as exc:
            raise ConfigurationError(f"Invalid {label}: {exc}") from exc
        if not tokens:
            raise ConfigurationError(f"Missing {label} executable")
        template = cls(program=tokens[0], args=tuple(tokens[1:]))
        logger.debug("%s exec: %s", label, template.program)
        logger.debug("%s args: %s", label, list(template.args))
        return template

    def render(self, rate: int) -> List[str]:
        rate_str = str(int(rate))
        args = [
            arg.replace(RATE_PLACEHOLDER, rate_str) if RATE_PLACEHOLDER in arg else arg
            for arg in self.args
        ]
        return [self.program, *args]


def command_to_string(args: Iterable[str]) -> str:
    """ログ用にコマンド配列を1行へ整形."""
    return " ".join(shlex.quote(arg) for arg in args)


def spawn_child(
    template: CommandTemplate,
    rate: int,
    *,
    popen: PopenFactory = subprocess.Popen,
) -> Optional[subprocess.Popen]:
    """起動失敗は致命的ではない: warning を出して None を返す."""
    cmd = template.render(rate)
    try:
        proc = popen(cmd)
    except OSError as exc:
        logger.warning("Cmd failed, error: %s (cmd=%s)", exc, command_to_string(cmd))
        return None
    logger.debug("Started: pid=%s cmd=%s", getattr(proc, "pid", None), command_to_string(cmd))
    return proc


def kill_child(proc: subprocess.Popen, grace_sec: float = _DEFAULT_KILL_GRACE_SEC) -> None:
    """SIGTERM -> wait -> (間に合わなければ) SIGKILL -> reap.

    既に終了しているプロセスは正常扱い。それ以外の OSError はそのまま送出する。
    """
    if proc.poll() is not None:
        logger.debug("exec has already finished (rc=%s)", proc.returncode)
        return
    try:
        proc.terminate()
    except ProcessLookupError:
        logger.debug("exec has already finished")
        proc.wait()
        return
    try:
        proc.wait(timeout=grace_sec)
    except subprocess.TimeoutExpired:
        logger.warning(
            "exec pid=%s did not exit within %.1fs; killing", proc.pid, grace_sec
        )
        try:
            proc.kill()
        except ProcessLookupError:
            logger.debug("exec has already finished")
        proc.wait()
