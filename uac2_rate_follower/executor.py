"""方向ごとのワーカースレッド: kill/start 判定、デバウンス待ち、子プロセス管理.

状態は ``ExecutorState`` の (current_rate, child) のみ。current_rate は最後に
*処理した* 命令のレートで、デバウンス中に起動がキャンセルされた場合でも更新する。
そのため同じレートの Start が続いても再起動はしない (何も動いていなくても)。
"""

from __future__ import annotations

import logging
import subprocess
import threading
from collections import deque
from dataclasses import dataclass
from typing import Optional, Tuple

from .command import CommandTemplate, PopenFactory, kill_child, spawn_child
from .debounce import DebounceTimer, SleepResult
from .messages import (
    Direction,
    Instruction,
    InstructionChannel,
    Quit,
    coalesce_pending,
    instruction_rate,
)

logger = logging.getLogger(__name__)


def decide(current_rate: int, new_rate: int) -> Tuple[bool, bool]:
    """(do_kill, do_start) for a rate transition; rate 0 = stopped."""
    # any change in rate, unless it was stopped
    do_kill = current_rate > 0 and current_rate != new_rate
    # new start, or restart at a different rate
    do_start = new_rate > 0 and (current_rate == 0 or do_kill)
    return do_kill, do_start


@dataclass
class ExecutorState:
    current_rate: int = 0
    child: Optional[subprocess.Popen] = None


class Executor:
    """Consumes one direction's channel on its own thread."""

    def __init__(
        self,
        direction: Direction,
        command: CommandTemplate,
        channel: InstructionChannel,
        *,
        timeout_ms: int = 0,
        timer: Optional[DebounceTimer] = None,
        kill_grace_sec: float = 2.0,
        popen: PopenFactory = subprocess.Popen,
    ) -> None:
        if timeout_ms < 0:
            raise ValueError("timeout_ms must be >= 0")
        self.direction = direction
        self.command = command
        self.channel = channel
        self.timeout_ms = int(timeout_ms)
        self.timer = timer or DebounceTimer()
        self.debouncing = self.timer.active
        self.kill_grace_sec = kill_grace_sec
        self.state = ExecutorState()
        self.error: Optional[BaseException] = None
        self._popen = popen
        self._backlog: deque[Instruction] = deque()
        self._thread: Optional[threading.Thread] = None

    @property
    def name(self) -> str:
        return self.direction.value

    # --- thread lifecycle ---
    def start(self) -> threading.Thread:
        if self._thread and self._thread.is_alive():
            return self._thread
        self._thread = threading.Thread(
            target=self._run_guarded, name=f"{self.name} Thread", daemon=True
        )
        self._thread.start()
        return self._thread

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread:
            self._thread.join(timeout=timeout)

    def is_alive(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    def _run_guarded(self) -> None:
        try:
            self.run()
        except Exception as exc:  # noqa: BLE001
            # 別方向には波及させず、終了コードに反映させるため保持する
            self.error = exc
            logger.error("%s: executor stopped: %s", self.name, exc)

    # --- main loop ---
    def run(self) -> None:
        try:
            while True:
                instruction = self._next_instruction()
                if isinstance(instruction, Quit):
                    logger.debug("%s: Ordered to quit", self.name)
                    self._kill_running_child()
                    break
                self.handle_rate(instruction_rate(instruction))
        finally:
            self.channel.close()
            self.timer.close()

    def _next_instruction(self) -> Instruction:
        if not self._backlog:
            self._backlog.extend(self.channel.receive())
        self._backlog.extend(self.channel.receive_nowait())
        collapsed = coalesce_pending(self._backlog)
        dropped = len(self._backlog) - len(collapsed)
        if dropped:
            logger.debug("%s: Drained %d stale messages", self.name, dropped)
        self._backlog = deque(collapsed)
        return self._backlog.popleft()

    def handle_rate(self, rate: int) -> None:
        logger.debug("%s: Received new rate: %d", self.name, rate)
        do_kill, do_start = decide(self.state.current_rate, rate)
        if do_kill:
            self._kill_running_child()
        if do_start:
            if self.timeout_ms > 0:
                self._debounced_start(rate)
            else:
                logger.debug("%s: Starting exec without debouncing", self.name)
                self._start_child(rate)
        # 起動がキャンセルされても「最後に処理したレート」として保持する
        self.state.current_rate = rate

    def _debounced_start(self, rate: int) -> None:
        logger.debug(
            "%s: Debouncing - delaying start for %dms", self.name, self.timeout_ms
        )
        # フラグは arm() で立つ。sleep に入る前の cancel も保持される
        self.timer.arm()
        result = self.timer.sleep(self.timeout_ms / 1000.0)
        if result is SleepResult.ELAPSED:
            logger.debug("%s: Debouncing elapsed, starting exec", self.name)
            self._start_child(rate)
        else:
            logger.debug("%s: Debouncing cancelled, not starting exec", self.name)

    def _start_child(self, rate: int) -> None:
        logger.info("%s: starting exec at rate %d", self.name, rate)
        self.state.child = spawn_child(self.command, rate, popen=self._popen)

    def _kill_running_child(self) -> None:
        child = self.state.child
        if child is None:
            return
        logger.info("%s: killing exec pid=%s", self.name, child.pid)
        try:
            kill_child(child, self.kill_grace_sec)
        except OSError as exc:
            logger.warning("%s: killing exec failed, error: %s", self.name, exc)
            raise
        self.state.child = None
