"""ALSA control events of the gadget card, via alsa-utils.

- ``amixer -c <card> controls``  : element 一覧 (numid の解決)
- ``amixer -c <card> cget numid=N``: 現在値の読み出し
- ``alsactl monitor <card>``      : イベント購読 (1イベント1行, ``#<numid>`` を含む)

numid -> Direction の対応付けはこのモジュールに閉じ、コア側は RateEvent だけを受け取る。
"""

from __future__ import annotations

import logging
import re
import subprocess
import threading
from typing import Callable, Dict, Iterator, Mapping, Optional

from .errors import ConfigurationError, EventSourceError
from .messages import Direction, RateEvent

logger = logging.getLogger(__name__)

Runner = Callable[..., subprocess.CompletedProcess]
PopenFactory = Callable[..., subprocess.Popen]

_CONTROL_LINE_RE = re.compile(
    r"^numid=(?P<numid>\d+),iface=(?P<iface>\w+),name='(?P<name>[^']*)'"
)
_VALUES_RE = re.compile(r"^\s*:\s*values=(?P<values>[-\d,]+)")
_EVENT_NUMID_RE = re.compile(r"#(?P<numid>\d+)\b")


def parse_controls(stdout: str) -> Dict[str, int]:
    """``amixer controls`` の出力から PCM interface の name -> numid."""
    controls: Dict[str, int] = {}
    for line in stdout.splitlines():
        match = _CONTROL_LINE_RE.match(line.strip())
        if not match or match.group("iface") != "PCM":
            continue
        controls.setdefault(match.group("name"), int(match.group("numid")))
    return controls


def parse_cget_value(stdout: str) -> Optional[int]:
    for line in stdout.splitlines():
        match = _VALUES_RE.match(line)
        if match:
            first = match.group("values").split(",")[0]
            try:
                return int(first)
            except ValueError:
                return None
    return None


def parse_event_numid(line: str) -> Optional[int]:
    match = _EVENT_NUMID_RE.search(line)
    if not match:
        return None
    return int(match.group("numid"))


def _run(runner: Runner, cmd: list[str]) -> Optional[str]:
    try:
        result = runner(cmd, check=False, capture_output=True, text=True)
    except FileNotFoundError:
        logger.error("%s not found (alsa-utils installed?)", cmd[0])
        return None
    if result.returncode != 0:
        logger.debug("%s failed rc=%s: %s", " ".join(cmd), result.returncode, result.stderr)
        return None
    return result.stdout


def read_control_value(
    card: str, numid: int, *, runner: Runner = subprocess.run
) -> Optional[int]:
    stdout = _run(runner, ["amixer", "-c", card, "cget", f"numid={numid}"])
    if stdout is None:
        return None
    return parse_cget_value(stdout)


def resolve_rate_controls(
    card: str,
    names: Mapping[Direction, str],
    *,
    runner: Runner = subprocess.run,
) -> Dict[int, Direction]:
    """Direction ごとの rate ctl を numid に解決する.

    片方が無いのは warning (その方向は監視しない)。どちらも無ければ ConfigurationError。
    """
    stdout = _run(runner, ["amixer", "-c", card, "controls"])
    if stdout is None:
        raise ConfigurationError(f"Cannot list controls of card '{card}'")
    controls = parse_controls(stdout)

    resolved: Dict[int, Direction] = {}
    for direction, name in names.items():
        numid = controls.get(name)
        if numid is None:
            logger.warning("%s rate ctl '%s' not found", direction.value, name)
            continue
        logger.debug("%s id %d", name, numid)
        resolved[numid] = direction
    if not resolved:
        raise ConfigurationError(
            f"No rate ctl found on card '{card}' ({', '.join(names.values())})"
        )
    return resolved


class CtlEventMonitor:
    """Blocking iterator of RateEvents backed by ``alsactl monitor``."""

    def __init__(
        self,
        card: str,
        elements: Mapping[int, Direction],
        *,
        runner: Runner = subprocess.run,
        popen: PopenFactory = subprocess.Popen,
    ) -> None:
        self.card = card
        self.elements = dict(elements)
        self._runner = runner
        self._popen = popen
        self._proc: Optional[subprocess.Popen] = None
        self._closing = threading.Event()

    def events(self) -> Iterator[RateEvent]:
        if self._closing.is_set():
            return
        cmd = ["alsactl", "monitor", self.card]
        try:
            self._proc = self._popen(
                cmd, stdout=subprocess.PIPE, stderr=subprocess.DEVNULL, text=True
            )
        except OSError as exc:
            raise EventSourceError(f"Cannot start {' '.join(cmd)}: {exc}") from exc

        proc = self._proc
        assert proc.stdout is not None
        for line in proc.stdout:
            if self._closing.is_set():
                break
            numid = parse_event_numid(line)
            logger.debug("Received event: %s", line.rstrip())
            if numid is None:
                continue
            direction = self.elements.get(numid)
            if direction is None:
                continue
            rate = read_control_value(self.card, numid, runner=self._runner)
            if rate is None:
                logger.warning("%s: failed to read rate ctl numid=%d", direction.value, numid)
                continue
            yield RateEvent(direction=direction, rate=max(0, rate))

        if self._closing.is_set() and proc.poll() is None:
            self._terminate(proc)
        rc = proc.wait()
        if not self._closing.is_set():
            raise EventSourceError(f"alsactl monitor exited unexpectedly (rc={rc})")

    def close(self) -> None:
        """Stop the monitor; ``events()`` then ends without error."""
        self._closing.set()
        proc = self._proc
        if proc is None or proc.poll() is not None:
            return
        self._terminate(proc)

    @staticmethod
    def _terminate(proc: subprocess.Popen) -> None:
        try:
            proc.terminate()
        except ProcessLookupError:
            pass
