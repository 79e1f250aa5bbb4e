"""Tests for StatePublisher fan-out and snapshot projection."""
import pytest
from unittest.mock import AsyncMock, MagicMock

from dialer.publisher import STATE_EVENT, StatePublisher, build_snapshot
from dialer.queue_store import QueueStore, parse_targets
from dialer.state import DialerState


def _observer(fail: bool = False):
    ws = MagicMock()
    ws.send_json = AsyncMock(side_effect=RuntimeError("socket closed") if fail else None)
    return ws


class TestBuildSnapshot:

    def test_projection(self):
        queue = QueueStore(parse_targets([{"phone": "+1"}, {"phone": "+2"}]))
        queue.advance()
        state = DialerState(calling=True, auto_next=False)

        snap = build_snapshot(queue, state)

        assert snap.to_wire() == {
            "currentNumber": "+2",
            "index": 1,
            "calling": True,
            "autoNext": False,
            "remaining": 1,
        }

    def test_exhausted_queue_has_no_current(self):
        queue = QueueStore(parse_targets([{"phone": "+1"}]))
        queue.advance()
        snap = build_snapshot(queue, DialerState())
        assert snap.current_target is None
        assert snap.remaining == 0


class TestStatePublisher:

    @pytest.mark.asyncio
    async def test_connect_sends_immediate_snapshot(self):
        publisher = StatePublisher()
        ws = _observer()
        snap = build_snapshot(QueueStore(), DialerState())

        await publisher.connect(ws, snap)

        ws.send_json.assert_awaited_once_with({"type": STATE_EVENT, "data": snap.to_wire()})
        assert publisher.observer_count == 1

    @pytest.mark.asyncio
    async def test_publish_reaches_every_observer(self):
        publisher = StatePublisher()
        first, second = _observer(), _observer()
        snap = build_snapshot(QueueStore(), DialerState())
        await publisher.connect(first, snap)
        await publisher.connect(second, snap)

        await publisher.publish(snap)

        assert first.send_json.await_count == 2
        assert second.send_json.await_count == 2

    @pytest.mark.asyncio
    async def test_broken_observer_is_dropped(self):
        publisher = StatePublisher()
        healthy, broken = _observer(), _observer(fail=True)
        snap = build_snapshot(QueueStore(), DialerState())
        await publisher.connect(healthy, snap)
        await publisher.connect(broken, snap)

        await publisher.publish(snap)

        assert publisher.observer_count == 1

    def test_disconnect_unknown_observer_is_noop(self):
        publisher = StatePublisher()
        publisher.disconnect(_observer())
        assert publisher.observer_count == 0
