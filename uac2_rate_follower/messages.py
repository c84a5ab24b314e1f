"""Dispatcher -> Executor の命令と、それを運ぶチャネル.

チャネルの受信側は Executor だけ (single consumer)。Stop 受信時に古い Start を
捨てる処理はディスパッチャ側でキューを横取りするのではなく、Executor が
``coalesce_pending`` で行う。
"""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import List, Sequence, Union

from .errors import ChannelClosedError


class Direction(str, Enum):
    """Audio direction of one independent pipeline."""

    CAPTURE = "Capture"
    PLAYBACK = "Playback"


@dataclass(frozen=True)
class RateEvent:
    """A rate reading from the gadget; ``rate == 0`` means stop."""

    direction: Direction
    rate: int

    def __post_init__(self) -> None:
        if self.rate < 0:
            raise ValueError(f"rate must be >= 0: {self.rate}")


@dataclass(frozen=True)
class Start:
    rate: int

    def __post_init__(self) -> None:
        if self.rate <= 0:
            raise ValueError(f"Start rate must be > 0: {self.rate}")


@dataclass(frozen=True)
class Stop:
    pass


@dataclass(frozen=True)
class Quit:
    pass


Instruction = Union[Start, Stop, Quit]


def instruction_rate(instruction: Instruction) -> int:
    """Start(rate) -> rate, Stop -> 0."""
    if isinstance(instruction, Start):
        return instruction.rate
    if isinstance(instruction, Stop):
        return 0
    raise ValueError(f"{instruction!r} carries no rate")


def coalesce_pending(pending: Sequence[Instruction]) -> List[Instruction]:
    """Drop instructions made stale by a later Stop.

    - Quit 以降は処理されないので切り捨てる
    - 最後の Stop より前の命令は捨てる (Stop 時点で未消化だった分)
    - 残りは FIFO 順のまま
    """
    items = list(pending)
    for index, instruction in enumerate(items):
        if isinstance(instruction, Quit):
            items = items[: index + 1]
            break

    last_stop = None
    for index, instruction in enumerate(items):
        if isinstance(instruction, Stop):
            last_stop = index
    if last_stop is None:
        return items
    return items[last_stop:]


class InstructionChannel:
    """Unbounded FIFO with a single consumer.

    The consumer (Executor) closes the channel when its loop ends, after which
    ``send`` raises ``ChannelClosedError``.
    """

    def __init__(self, direction: Direction) -> None:
        self._direction = direction
        self._items: deque[Instruction] = deque()
        self._cond = threading.Condition()
        self._closed = False

    @property
    def closed(self) -> bool:
        with self._cond:
            return self._closed

    def send(self, instruction: Instruction) -> None:
        with self._cond:
            if self._closed:
                raise ChannelClosedError(self._direction.value)
            self._items.append(instruction)
            self._cond.notify()

    def receive(self) -> List[Instruction]:
        """Block until something is queued, then take everything queued."""
        with self._cond:
            while not self._items:
                if self._closed:
                    raise ChannelClosedError(self._direction.value)
                self._cond.wait()
            return self._take_all_locked()

    def receive_nowait(self) -> List[Instruction]:
        with self._cond:
            return self._take_all_locked()

    def close(self) -> None:
        with self._cond:
            self._closed = True
            self._cond.notify_all()

    def _take_all_locked(self) -> List[Instruction]:
        items = list(self._items)
        self._items.clear()
        return items


__all__ = [
    "Direction",
    "Instruction",
    "InstructionChannel",
    "Quit",
    "RateEvent",
    "Start",
    "Stop",
    "coalesce_pending",
    "instruction_rate",
]
