"""
Core data models for the AutoDialer system.
These are the universal types shared across the engine, the telephony
client and the HTTP surface.
"""
from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


# ──────────────────────────────────────────────────────────────
#  Call lifecycle vocabulary
# ──────────────────────────────────────────────────────────────

# Statuses after which a call will not progress any further.
TERMINAL_STATUSES = frozenset({"busy", "failed", "no-answer", "canceled", "completed"})

# Events the provider is asked to post back for every placed call.
STATUS_CALLBACK_EVENTS = (
    "initiated", "ringing", "answered", "completed",
    "busy", "no-answer", "failed", "canceled",
)


# ──────────────────────────────────────────────────────────────
#  CallTarget — one entry in the dial queue
# ──────────────────────────────────────────────────────────────

class CallTarget(BaseModel):
    """A queue entry. Validity is decided at dial time, not at load time."""
    model_config = ConfigDict(frozen=True)

    phone: Optional[str] = None
    extra: dict[str, Any] = {}                # any other keys from the source entry

    @property
    def is_dialable(self) -> bool:
        return bool(self.phone and self.phone.strip())

    @classmethod
    def from_entry(cls, raw: Any) -> "CallTarget":
        """
        Build a target from a raw source entry.

        Never raises: entries that are not objects, or whose phone is
        missing, become targets with ``phone=None`` so they keep their
        position in the queue and get skipped when reached.
        """
        if not isinstance(raw, dict):
            return cls()
        phone = raw.get("phone")
        if phone is not None and not isinstance(phone, str):
            phone = str(phone)
        extra = {k: v for k, v in raw.items() if k != "phone"}
        return cls(phone=phone, extra=extra)


# ──────────────────────────────────────────────────────────────
#  Provider notification
# ──────────────────────────────────────────────────────────────

class StatusNotification(BaseModel):
    """Normalized call-status webhook from the telephony provider."""
    call_id: str
    status: str
    direction: str = "outbound"
    conference_id: Optional[str] = None
    raw: dict[str, Any] = {}

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_foreign(self) -> bool:
        """Conference legs and inbound calls are not dialer lifecycle events."""
        return bool(self.conference_id) or "inbound" in self.direction


# ──────────────────────────────────────────────────────────────
#  Published state & command results
# ──────────────────────────────────────────────────────────────

class DialerSnapshot(BaseModel):
    """Read-only projection of the engine state, as sent to observers."""
    model_config = ConfigDict(populate_by_name=True)

    current_target: Optional[str] = Field(default=None, alias="currentNumber")
    index: int = 0
    calling: bool = False
    auto_next: bool = True
    remaining: int = 0

    def to_wire(self) -> dict[str, Any]:
        return {
            "currentNumber": self.current_target,
            "index": self.index,
            "calling": self.calling,
            "autoNext": self.auto_next,
            "remaining": self.remaining,
        }


class CommandResult(BaseModel):
    """Outcome of an operator command."""
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    status: str
    current_target: Optional[str] = Field(default=None, alias="currentNumber")

    def to_wire(self) -> dict[str, Any]:
        body: dict[str, Any] = {"success": self.success, "status": self.status}
        if self.current_target is not None:
            body["currentNumber"] = self.current_target
        return body
