"""UAC2 gadget rate follower.

USB Audio Class 2 gadget の ``Capture Rate`` / ``Playback Rate`` コントロールを監視し、
方向ごと (capture / playback) に外部のループバックプロセス (既定: alsaloop) を
要求レートで起動し直すスーパーバイザ。ホスト側のレート切替が短時間にばたつく場合は
デバウンス待ちで再起動を抑制する。
"""

from .errors import (
    ChannelClosedError,
    ConfigurationError,
    DebounceCancelError,
    EventSourceError,
    RateFollowerError,
)
from .messages import Direction, RateEvent

__all__ = [
    "ChannelClosedError",
    "ConfigurationError",
    "DebounceCancelError",
    "Direction",
    "EventSourceError",
    "RateEvent",
    "RateFollowerError",
]
