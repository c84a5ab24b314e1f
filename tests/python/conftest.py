"""pytest configuration and fixtures for Python tests."""

from __future__ import annotations

import subprocess
import sys
import threading
import time
from pathlib import Path
from typing import Callable, List, Optional

import pytest

# Add project root directory to path for imports
PROJECT_ROOT = Path(__file__).parent.parent.parent
sys.path.insert(0, str(PROJECT_ROOT))


class FakeProcess:
    """Stand-in for subprocess.Popen used by the executor."""

    _next_pid = 1000

    def __init__(self, cmd: List[str], registry: "FakePopen") -> None:
        FakeProcess._next_pid += 1
        self.pid = FakeProcess._next_pid
        self.cmd = list(cmd)
        self.returncode: Optional[int] = None
        self.terminate_calls = 0
        self.kill_calls = 0
        self.terminate_error: Optional[BaseException] = None
        self.ignore_terminate = False
        self._registry = registry

    def poll(self) -> Optional[int]:
        return self.returncode

    def terminate(self) -> None:
        self.terminate_calls += 1
        if self.terminate_error is not None:
            raise self.terminate_error
        if not self.ignore_terminate:
            self._exit(-15)

    def kill(self) -> None:
        self.kill_calls += 1
        self._exit(-9)

    def wait(self, timeout: Optional[float] = None) -> int:
        if self.returncode is None:
            raise subprocess.TimeoutExpired(self.cmd, timeout or 0)
        return self.returncode

    def _exit(self, code: int) -> None:
        if self.returncode is None:
            self.returncode = code
            self._registry.on_exit(self)


class FakePopen:
    """Callable replacing subprocess.Popen; records every spawn."""

    def __init__(self) -> None:
        self.processes: List[FakeProcess] = []
        self.live = 0
        self.max_live = 0
        self.spawn_error: Optional[BaseException] = None
        self.on_spawn: Optional[Callable[[FakeProcess], None]] = None
        self._lock = threading.Lock()

    def __call__(self, cmd: List[str], *args, **kwargs) -> FakeProcess:
        if self.spawn_error is not None:
            raise self.spawn_error
        proc = FakeProcess(cmd, self)
        if self.on_spawn is not None:
            self.on_spawn(proc)
        with self._lock:
            self.processes.append(proc)
            self.live += 1
            self.max_live = max(self.max_live, self.live)
        return proc

    def on_exit(self, proc: FakeProcess) -> None:
        with self._lock:
            self.live -= 1

    @property
    def spawned_rates(self) -> List[str]:
        return [proc.cmd[proc.cmd.index("-r") + 1] for proc in self.processes]

    @property
    def kills(self) -> int:
        return sum(proc.terminate_calls for proc in self.processes)


@pytest.fixture
def fake_popen() -> FakePopen:
    return FakePopen()


def wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> bool:
    """Poll until predicate() is true or timeout expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


@pytest.fixture
def wait_until() -> Callable[..., bool]:
    return wait_for
