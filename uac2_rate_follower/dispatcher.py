"""Rate reading -> Instruction (runs on the event-consuming thread)."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

from .debounce import DebounceTimer
from .messages import Direction, Instruction, InstructionChannel, Quit, Start, Stop

logger = logging.getLogger(__name__)


class Dispatcher:
    """One per direction. Only the owning executor ever reads ``channel``."""

    def __init__(
        self,
        direction: Direction,
        channel: InstructionChannel,
        timer: DebounceTimer,
        debouncing: threading.Event,
        *,
        show_timing: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.direction = direction
        self.channel = channel
        self.timer = timer
        self.debouncing = debouncing
        self.show_timing = show_timing
        self._clock = clock
        self.last_start: Optional[float] = None

    @property
    def name(self) -> str:
        return self.direction.value

    def handle_event(self, rate: int) -> Instruction:
        """Translate one reading. Raises ChannelClosedError / DebounceCancelError."""
        rate = int(rate)
        if rate < 0:
            raise ValueError(f"{self.name}: negative rate {rate}")
        logger.debug("%s: New rate value: %d", self.name, rate)
        if self.show_timing:
            self._log_timing(rate)

        instruction: Instruction
        if rate == 0:
            # 未消化の Start は Executor 側が Stop 受信時にまとめて破棄する
            if self.debouncing.is_set():
                logger.debug("%s: Cancelling debounce wait", self.name)
                self.timer.cancel()
            instruction = Stop()
        else:
            instruction = Start(rate)
        self.channel.send(instruction)
        return instruction

    def quit(self) -> None:
        self.channel.send(Quit())

    def _log_timing(self, rate: int) -> None:
        now = self._clock()
        if rate == 0 and self.last_start is not None:
            elapsed_ms = int((now - self.last_start) * 1000)
            logger.info("%s: STOP received after %d ms", self.name, elapsed_ms)
        if rate > 0:
            self.last_start = now
