"""
State Publisher — projects engine state and fans it out to observers.

Observers are WebSocket connections (anything with an async ``send_json``).
A newly connected observer gets one snapshot immediately; after that every
state mutation pushes a fresh one. A broken observer is dropped silently.
"""
from __future__ import annotations

from typing import Any

import structlog

from dialer.queue_store import QueueStore
from dialer.state import DialerState
from models.schemas import DialerSnapshot

logger = structlog.get_logger()

STATE_EVENT = "dialer-state"


def build_snapshot(queue: QueueStore, state: DialerState) -> DialerSnapshot:
    current = queue.current()
    return DialerSnapshot(
        current_target=current.phone if current else None,
        index=queue.index,
        calling=state.calling,
        auto_next=state.auto_next,
        remaining=queue.remaining(),
    )


class StatePublisher:
    """Broadcasts snapshots to every connected observer."""

    def __init__(self):
        self._observers: set[Any] = set()

    @property
    def observer_count(self) -> int:
        return len(self._observers)

    async def connect(self, ws: Any, snapshot: DialerSnapshot) -> None:
        self._observers.add(ws)
        logger.info("observer_connected", observers=len(self._observers))
        await self._send(ws, snapshot)

    def disconnect(self, ws: Any) -> None:
        if ws in self._observers:
            self._observers.discard(ws)
            logger.info("observer_disconnected", observers=len(self._observers))

    async def publish(self, snapshot: DialerSnapshot) -> None:
        for ws in list(self._observers):
            await self._send(ws, snapshot)

    async def _send(self, ws: Any, snapshot: DialerSnapshot) -> None:
        try:
            await ws.send_json({"type": STATE_EVENT, "data": snapshot.to_wire()})
        except Exception as e:
            logger.warning("observer_send_failed", error=str(e))
            self._observers.discard(ws)
