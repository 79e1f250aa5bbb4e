"""Call-queue orchestration: queue store, dialer state, advance guard and engine."""
from dialer.errors import DialerError, TargetSourceError
from dialer.queue_store import (
    QueueStore, TargetSource, JsonFileTargetSource, StaticTargetSource, parse_targets,
)
from dialer.state import DialerState, AdvanceGuard
from dialer.publisher import StatePublisher, build_snapshot
from dialer.engine import DialerEngine

__all__ = [
    "DialerError", "TargetSourceError",
    "QueueStore", "TargetSource", "JsonFileTargetSource", "StaticTargetSource", "parse_targets",
    "DialerState", "AdvanceGuard",
    "StatePublisher", "build_snapshot",
    "DialerEngine",
]
