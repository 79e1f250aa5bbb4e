"""Shared test fixtures for AutoDialer."""
import asyncio
import pytest
from typing import Any, Iterable, Optional

from channels.base import TelephonyError
from channels.telephony.twilio_client import TwilioClient
from dialer.engine import DialerEngine
from dialer.publisher import StatePublisher
from dialer.queue_store import StaticTargetSource
from models.schemas import DialerSnapshot, StatusNotification


class FakeTelephony:
    """
    Stand-in for the provider client.

    Successful placements get sequential ids CA1, CA2, ... Setting ``gate``
    to an unset asyncio.Event holds every placement until it is set.
    """

    def __init__(self):
        self.attempts: list[str] = []
        self.placed: list[str] = []
        self.cancelled: list[str] = []
        self.fail_numbers: set[str] = set()
        self.gate: Optional[asyncio.Event] = None
        self.waiting = False
        self._counter = 0

    async def initiate_call(
        self,
        to: str,
        status_callback_url: str,
        answer_url: str,
        status_events: Iterable[str] = (),
    ) -> dict[str, Any]:
        self.attempts.append(to)
        if self.gate is not None:
            self.waiting = True
            await self.gate.wait()
            self.waiting = False
        if to in self.fail_numbers:
            raise TelephonyError(f"rejected {to}", provider="fake", status_code=400)
        self._counter += 1
        self.placed.append(to)
        return {"sid": f"CA{self._counter}", "status": "queued", "to": to, "provider": "fake"}

    async def end_call(self, call_id: str) -> dict[str, Any]:
        self.cancelled.append(call_id)
        return {"sid": call_id, "status": "completed"}

    parse_status_webhook = staticmethod(TwilioClient.parse_status_webhook)

    async def close(self) -> None:
        pass


class RecordingPublisher(StatePublisher):
    """Publisher that keeps every snapshot it was asked to broadcast."""

    def __init__(self):
        super().__init__()
        self.snapshots: list[DialerSnapshot] = []

    async def publish(self, snapshot: DialerSnapshot) -> None:
        self.snapshots.append(snapshot)
        await super().publish(snapshot)


def status(call_id: str, value: str, direction: str = "outbound", conference_id: str = None) -> StatusNotification:
    return StatusNotification(
        call_id=call_id, status=value, direction=direction, conference_id=conference_id,
    )


async def wait_until(predicate, attempts: int = 200) -> None:
    """Yield to the event loop until ``predicate()`` holds."""
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")


THREE_TARGETS = [
    {"phone": "+15550001", "name": "Alpha"},
    {"phone": "+15550002", "name": "Bravo"},
    {"phone": "+15550003", "name": "Charlie"},
]


@pytest.fixture
def telephony() -> FakeTelephony:
    return FakeTelephony()


@pytest.fixture
def recorder() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def make_engine(telephony, recorder):
    def _make(entries=None, auto_next: bool = True) -> DialerEngine:
        return DialerEngine(
            telephony=telephony,
            source=StaticTargetSource(THREE_TARGETS if entries is None else entries),
            publisher=recorder,
            status_callback_url="https://dialer.example.com/webhooks/status",
            answer_url="https://dialer.example.com/twiml/outbound?type=autodialer",
            auto_next=auto_next,
        )
    return _make
