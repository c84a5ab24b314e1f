"""Entry point: wire one pipeline per direction and run the ctl event loop.

スレッド構成:
- メインスレッド: ``alsactl monitor`` のイベントを読み、Dispatcher を呼ぶ
- 方向ごとに1本: Executor (子プロセスの kill/start、デバウンス待ち)

片方の方向が致命的エラーで止まっても、もう片方は動き続ける。
"""

from __future__ import annotations

import logging
import signal
import subprocess
import sys
from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional, Protocol

from pydantic import ValidationError

from .command import PopenFactory
from .config import RateFollowerConfig, parse_args
from .ctl_events import CtlEventMonitor, resolve_rate_controls
from .debounce import DebounceTimer
from .dispatcher import Dispatcher
from .errors import (
    ChannelClosedError,
    ConfigurationError,
    DebounceCancelError,
    EventSourceError,
)
from .executor import Executor
from .messages import Direction, InstructionChannel, RateEvent

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_RUNTIME_ERROR = 1
EXIT_CONFIG_ERROR = 2


class EventSource(Protocol):
    def events(self) -> Iterable[RateEvent]: ...

    def close(self) -> None: ...


@dataclass
class Pipeline:
    """Dispatcher + channel + Executor for one direction."""

    direction: Direction
    dispatcher: Dispatcher
    executor: Executor
    failed: bool = False
    errors: list[BaseException] = field(default_factory=list)

    @classmethod
    def build(
        cls,
        direction: Direction,
        cfg: RateFollowerConfig,
        *,
        popen: PopenFactory = subprocess.Popen,
    ) -> "Pipeline":
        channel = InstructionChannel(direction)
        timer = DebounceTimer()
        executor = Executor(
            direction,
            cfg.command(direction),
            channel,
            timeout_ms=cfg.timeout_ms,
            timer=timer,
            kill_grace_sec=cfg.kill_grace_sec,
            popen=popen,
        )
        dispatcher = Dispatcher(
            direction, channel, timer, timer.active, show_timing=cfg.show_timing
        )
        return cls(direction=direction, dispatcher=dispatcher, executor=executor)

    @property
    def alive(self) -> bool:
        return not self.failed and self.executor.is_alive()

    def dispatch(self, rate: int) -> None:
        try:
            self.dispatcher.handle_event(rate)
        except (ChannelClosedError, DebounceCancelError) as exc:
            logger.error("%s: pipeline stopped: %s", self.direction.value, exc)
            self.failed = True
            self.errors.append(exc)
            self.shutdown(0.0)

    def shutdown(self, join_timeout: Optional[float]) -> None:
        # デバウンス中なら待たずに抜けさせる
        if self.executor.debouncing.is_set():
            try:
                self.executor.timer.cancel()
            except DebounceCancelError:
                pass
        try:
            self.dispatcher.quit()
        except ChannelClosedError:
            pass
        if join_timeout is None or join_timeout > 0:
            self.executor.join(timeout=join_timeout)

    @property
    def ok(self) -> bool:
        return not self.failed and self.executor.error is None


def _setup_logging(verbose: int) -> None:
    level = logging.DEBUG if verbose > 0 else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )
    # 生の ctl イベントは -vv の時だけ
    events_level = logging.DEBUG if verbose > 1 else logging.INFO
    logging.getLogger("uac2_rate_follower.ctl_events").setLevel(events_level)


def run_service(
    cfg: RateFollowerConfig,
    source: EventSource,
    directions: Iterable[Direction],
    *,
    popen: PopenFactory = subprocess.Popen,
) -> int:
    """Run until the event source ends; returns the process exit code."""
    pipelines: Dict[Direction, Pipeline] = {}
    for direction in directions:
        pipelines[direction] = Pipeline.build(direction, cfg, popen=popen)
    for pipeline in pipelines.values():
        pipeline.executor.start()

    source_failed = False
    try:
        for event in source.events():
            pipeline = pipelines.get(event.direction)
            if pipeline is None or pipeline.failed:
                continue
            pipeline.dispatch(event.rate)
            if not any(p.alive for p in pipelines.values()):
                logger.error("All pipelines stopped; exiting")
                break
    except EventSourceError as exc:
        logger.error("Event source failed: %s", exc)
        source_failed = True
    finally:
        source.close()
        join_timeout = cfg.kill_grace_sec + cfg.timeout_ms / 1000.0 + 1.0
        for pipeline in pipelines.values():
            pipeline.shutdown(join_timeout)

    if source_failed or not all(p.ok for p in pipelines.values()):
        return EXIT_RUNTIME_ERROR
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    try:
        cfg = parse_args(argv)
    except ValidationError as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        return EXIT_CONFIG_ERROR
    _setup_logging(cfg.verbose)
    logger.debug("%r", cfg)

    try:
        # コマンドの妥当性を監視開始前に確認する
        for direction in Direction:
            cfg.command(direction)
        controls = resolve_rate_controls(
            cfg.gadget_name,
            {d: cfg.ctl_name(d) for d in Direction},
        )
    except ConfigurationError as exc:
        logger.error("%s", exc)
        return EXIT_CONFIG_ERROR

    monitor = CtlEventMonitor(cfg.gadget_name, controls)

    def _handle_signal(signum, frame):  # noqa: ANN001
        _ = frame
        logger.info("Signal %d received; stopping", signum)
        monitor.close()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    logger.info(
        "UAC2 rate follower start card=%s directions=%s timeout=%dms",
        cfg.gadget_name,
        ",".join(d.value for d in controls.values()),
        cfg.timeout_ms,
    )
    return run_service(cfg, monitor, controls.values())


if __name__ == "__main__":  # pragma: no cover - CLI entry
    sys.exit(main())
