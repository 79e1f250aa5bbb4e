"""
Dialer State and Advance Guard.

The guard is the critical section around every sequence that moves the
queue index or places a call. It is a plain flag: the engine runs on a
single event loop, and check-and-set happens without an await in between.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional


@dataclass
class DialerState:
    calling: bool = False
    auto_next: bool = True
    active_calls: set[str] = field(default_factory=set)
    # Bumped by start / start-from / stop / reset. An advance that started
    # under an older epoch must not touch the queue or keep calls alive.
    epoch: int = 0

    def new_session(self) -> int:
        self.epoch += 1
        return self.epoch


class AdvanceGuard:
    """At-most-one-in-flight lock with provenance of the holder."""

    def __init__(self):
        self.advancing = False
        self.manual_origin = False
        self._owner: Optional[int] = None

    def try_acquire(self, epoch: int, manual: bool = False) -> bool:
        if self.advancing:
            return False
        self.advancing = True
        self.manual_origin = manual
        self._owner = epoch
        return True

    def release(self, epoch: int) -> None:
        # A holder from a superseded session must not free a newer holder.
        if self.advancing and self._owner == epoch:
            self.clear()

    def clear(self) -> None:
        self.advancing = False
        self.manual_origin = False
        self._owner = None

    def __repr__(self):
        if self.advancing:
            origin = "manual" if self.manual_origin else "auto"
            return f"<AdvanceGuard held {origin} epoch={self._owner}>"
        return "<AdvanceGuard free>"
