"""別スレッドからキャンセル可能なデバウンス用スリープ.

``active`` (threading.Event) はタイマー自身が持ち、``arm()`` から ``sleep()`` が
戻るまでの間だけ立つ。フラグが立っている間の ``cancel()`` は必ず効く。
"""

from __future__ import annotations

import threading
import time
from enum import Enum
from typing import Optional

from .errors import DebounceCancelError


class SleepResult(str, Enum):
    ELAPSED = "elapsed"
    CANCELLED = "cancelled"


class DebounceTimer:
    """One sleeper at a time; ``cancel()`` may be called from any thread.

    ``cancel()`` while nobody is sleeping is a no-op and does not leak into the
    next ``sleep()``.
    """

    def __init__(self, active: Optional[threading.Event] = None) -> None:
        self._cond = threading.Condition()
        self._armed = False
        self._sleeping = False
        self._cancelled = False
        self._closed = False
        self.active = active or threading.Event()

    @property
    def sleeping(self) -> bool:
        """True from ``arm()`` until the wait returns."""
        with self._cond:
            return self._armed

    def arm(self) -> None:
        """Open a wait; a ``cancel()`` from here on is kept for ``sleep()``."""
        with self._cond:
            if self._armed:
                raise RuntimeError("DebounceTimer is already armed")
            self._armed = True
            self._cancelled = False
            self.active.set()

    def sleep(self, seconds: float) -> SleepResult:
        deadline = time.monotonic() + max(0.0, float(seconds))
        with self._cond:
            if self._sleeping:
                raise RuntimeError("DebounceTimer.sleep is not reentrant")
            if not self._armed:
                self.arm()
            self._sleeping = True
            try:
                if self._closed:
                    return SleepResult.CANCELLED
                while not self._cancelled:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        return SleepResult.ELAPSED
                    self._cond.wait(remaining)
                return SleepResult.CANCELLED
            finally:
                self._armed = False
                self._sleeping = False
                self._cancelled = False
                self.active.clear()

    def cancel(self) -> bool:
        """Cancel the armed wait. Returns False if there was none."""
        with self._cond:
            if self._closed:
                raise DebounceCancelError("debounce timer is closed")
            if not self._armed:
                return False
            self._cancelled = True
            self._cond.notify_all()
            return True

    def close(self) -> None:
        with self._cond:
            self._closed = True
            if self._armed:
                self._cancelled = True
                self._cond.notify_all()
