"""
Dialer Engine — the queue-advancement state machine.

Two producers move the queue forward:
  - the operator, through commands (start, start-from, next, toggle auto-next)
  - the telephony provider, through call-status notifications

Both feed one serialized advance sequence:

    cancel outstanding calls → increment index → publish → dial or stop

guarded by the AdvanceGuard so that at most one sequence runs at a time.
A manual ``next`` that finds the guard held is rejected; a notification that
finds it held is deferred and re-examined as soon as the guard is released.

Engine states:
    Idle           calling=False
    Dialing        calling=True, call outstanding or being placed
    WaitingManual  calling=True, auto_next=False, no call outstanding
    Exhausted      index == len(targets), collapses to Idle immediately

Usage:
    engine = DialerEngine(
        telephony=client,
        source=JsonFileTargetSource("numbers.json"),
        status_callback_url="https://example.com/webhooks/status",
        answer_url="https://example.com/twiml/outbound?type=autodialer",
    )
    await engine.start()
    await engine.handle_status(TwilioClient.parse_status_webhook(form))
"""
from __future__ import annotations

from typing import Optional

import structlog

from channels.telephony.factory import TelephonyClient
from dialer.errors import TargetSourceError
from dialer.publisher import StatePublisher, build_snapshot
from dialer.queue_store import QueueStore, TargetSource
from dialer.state import AdvanceGuard, DialerState
from models.schemas import (
    CallTarget, CommandResult, DialerSnapshot, StatusNotification,
    STATUS_CALLBACK_EVENTS,
)

logger = structlog.get_logger()


class DialerEngine:
    """Owns the queue, the dialer flags, the active call set and the guard."""

    def __init__(
        self,
        telephony: TelephonyClient,
        source: TargetSource,
        publisher: Optional[StatePublisher] = None,
        status_callback_url: str = "",
        answer_url: str = "",
        auto_next: bool = True,
    ):
        self.telephony = telephony
        self.source = source
        self.publisher = publisher or StatePublisher()
        self.status_callback_url = status_callback_url
        self.answer_url = answer_url

        self.queue = QueueStore()
        self.state = DialerState(auto_next=auto_next)
        self.guard = AdvanceGuard()

        # call_id -> whether it was the live call when its terminal status
        # arrived while the guard was held
        self._deferred: dict[str, bool] = {}

    # ── Reads ─────────────────────────────────────────────────

    def snapshot(self) -> DialerSnapshot:
        return build_snapshot(self.queue, self.state)

    async def publish(self) -> None:
        await self.publisher.publish(self.snapshot())

    # ── Commands ──────────────────────────────────────────────

    async def start(self) -> CommandResult:
        if self.state.calling:
            return CommandResult(success=False, status="Already running")
        try:
            targets = self.source.load()
        except TargetSourceError as e:
            logger.warning("start_rejected", reason=str(e))
            return CommandResult(success=False, status=f"Could not load targets: {e}")
        return await self._begin(targets, 0, "Started")

    async def start_from(self, index: int) -> CommandResult:
        try:
            targets = self.source.load()
        except TargetSourceError as e:
            logger.warning("start_from_rejected", reason=str(e))
            return CommandResult(success=False, status=f"Could not load targets: {e}")
        if index < 0 or index >= len(targets):
            logger.info("start_from_rejected", index=index, targets=len(targets))
            return CommandResult(success=False, status="Invalid index")
        return await self._begin(targets, index, f"Started from {index}")

    async def stop(self) -> CommandResult:
        self.state.new_session()
        self.state.calling = False
        await self._cancel_calls()
        logger.info("dialer_stopped", index=self.queue.index)
        await self.publish()
        return CommandResult(success=True, status="Stopped")

    async def reset(self) -> CommandResult:
        self.state.new_session()
        self.state.calling = False
        self.guard.clear()
        self._deferred.clear()
        await self._cancel_calls()

        result = CommandResult(success=True, status="State reset")
        try:
            targets = self.source.load()
        except TargetSourceError as e:
            logger.warning("reset_load_failed", reason=str(e))
            targets = []
            result = CommandResult(success=False, status=f"State reset, could not load targets: {e}")

        self.queue.replace(targets, 0)
        self.state.auto_next = True
        logger.info("dialer_reset", targets=len(targets))
        await self.publish()
        return result

    async def toggle_auto_next(self, enabled: bool) -> CommandResult:
        self.state.auto_next = enabled
        logger.info("auto_next_toggled", enabled=enabled)

        # Resume a queue that stalled waiting for a manual next.
        if enabled and self.state.calling and not self.state.active_calls:
            epoch = self.state.epoch
            if self.guard.try_acquire(epoch):
                try:
                    await self._advance_locked(epoch)
                finally:
                    self.guard.release(epoch)
                await self._drain_deferred()

        await self.publish()
        return CommandResult(success=True, status=f"AutoNext {'ON' if enabled else 'OFF'}")

    async def next(self) -> CommandResult:
        if not self.state.calling:
            return CommandResult(success=False, status="Not running")

        epoch = self.state.epoch
        if not self.guard.try_acquire(epoch, manual=True):
            logger.info("manual_next_rejected", reason="advance_in_progress")
            return CommandResult(success=False, status="Busy: advance in progress, please wait")

        try:
            await self._advance_locked(epoch)
        finally:
            self.guard.release(epoch)
        await self._drain_deferred()

        if epoch != self.state.epoch:
            return CommandResult(success=False, status="Stopped")
        target = self.queue.current()
        if self.state.calling and target is not None:
            return CommandResult(success=True, status="Next dialing", current_target=target.phone)
        return CommandResult(success=False, status="No more numbers")

    # ── Notifications ─────────────────────────────────────────

    async def handle_status(self, notification: StatusNotification) -> bool:
        """
        Reduce one provider status notification.

        Returns True if it advanced the queue. Never raises for irrelevant,
        duplicate or stale notifications; they are no-ops.
        """
        if notification.is_foreign:
            logger.debug("status_ignored", call_id=notification.call_id,
                         direction=notification.direction,
                         conference_id=notification.conference_id)
            return False

        call_id = notification.call_id
        if not notification.is_terminal:
            # ringing / answered: the call is still live and must stay cancellable
            logger.debug("status_informational", call_id=call_id, status=notification.status)
            return False

        was_live = call_id in self.state.active_calls
        self.state.active_calls.discard(call_id)

        logger.info("call_terminal_status", call_id=call_id,
                    status=notification.status, live=was_live)

        if self.guard.advancing:
            self._deferred[call_id] = self._deferred.get(call_id, False) or was_live
            logger.info("status_deferred", call_id=call_id, guard=repr(self.guard))
            return False

        return await self._retire(was_live)

    async def _retire(self, was_live: bool) -> bool:
        """A call concluded; advance if the policy allows it."""
        if not was_live or not self.state.calling:
            return False
        if not self.state.auto_next:
            logger.info("waiting_for_manual_next", index=self.queue.index)
            return False

        epoch = self.state.epoch
        if not self.guard.try_acquire(epoch):
            return False
        try:
            await self._advance_locked(epoch)
        finally:
            self.guard.release(epoch)
        await self._drain_deferred()
        return True

    async def _drain_deferred(self) -> None:
        while self._deferred and not self.guard.advancing:
            call_id, was_live = self._deferred.popitem()
            # The placement may have returned after the notification arrived.
            live = was_live or call_id in self.state.active_calls
            self.state.active_calls.discard(call_id)
            await self._retire(live)

    # ── Advance sequence (guard must be held) ─────────────────

    def _is_live(self, epoch: int) -> bool:
        return epoch == self.state.epoch and self.state.calling

    async def _begin(self, targets: list[CallTarget], index: int, status: str) -> CommandResult:
        epoch = self.state.new_session()
        self.guard.clear()
        self.guard.try_acquire(epoch)
        self._deferred.clear()

        self.queue.replace(targets)
        self.queue.seek(index)
        self.state.calling = True
        logger.info("dialer_started", index=index, targets=len(targets))
        try:
            await self._cancel_calls()
            await self.publish()
            await self._dial_current(epoch)
        finally:
            self.guard.release(epoch)
        await self._drain_deferred()
        return CommandResult(success=True, status=status)

    async def _advance_locked(self, epoch: int) -> None:
        await self._cancel_calls()
        if not self._is_live(epoch):
            return
        self.queue.advance()
        await self.publish()
        if not self._is_live(epoch):
            return
        if self.queue.exhausted:
            await self._finish()
        else:
            await self._dial_current(epoch)

    async def _dial_current(self, epoch: int) -> None:
        """
        Place a call to the current target, skipping invalid targets and
        failed placements. Each pass either returns or moves the index
        forward, so the loop ends within len(queue) + 1 passes.
        """
        for _ in range(len(self.queue) + 1):
            if not self._is_live(epoch):
                return

            target = self.queue.current()
            if target is None:
                await self._finish()
                return

            if not target.is_dialable:
                logger.info("target_skipped", index=self.queue.index, reason="invalid_phone")
                self.queue.advance()
                continue

            await self._cancel_calls()
            if not self._is_live(epoch):
                return

            call_id = await self._place_call(target)
            if call_id is None:
                self.queue.advance()
                await self.publish()
                continue

            if not self._is_live(epoch):
                # Stopped or restarted while the provider was answering.
                await self._hangup(call_id)
                return

            self.state.active_calls.add(call_id)
            logger.info("call_placed", call_id=call_id, index=self.queue.index,
                        to=target.phone, manual=self.guard.manual_origin)
            await self.publish()
            return

    async def _place_call(self, target: CallTarget) -> Optional[str]:
        try:
            result = await self.telephony.initiate_call(
                to=target.phone,
                status_callback_url=self.status_callback_url,
                answer_url=self.answer_url,
                status_events=STATUS_CALLBACK_EVENTS,
            )
        except Exception as e:
            logger.warning("call_placement_failed", index=self.queue.index,
                           to=target.phone, error=str(e))
            return None

        call_id = (result or {}).get("sid")
        if not call_id:
            logger.warning("call_placement_failed", index=self.queue.index,
                           to=target.phone, error="provider returned no call id")
            return None
        return call_id

    async def _finish(self) -> None:
        self.state.calling = False
        await self._cancel_calls()
        logger.info("queue_exhausted", targets=len(self.queue))
        await self.publish()

    # ── Cancellation ──────────────────────────────────────────

    async def _cancel_calls(self) -> None:
        """
        Best-effort hangup of every outstanding call. Local bookkeeping is
        cleared before the provider is contacted, so a notification that
        races the hangup is seen as stale.
        """
        if not self.state.active_calls:
            return
        call_ids = list(self.state.active_calls)
        self.state.active_calls.clear()
        for call_id in call_ids:
            await self._hangup(call_id)

    async def _hangup(self, call_id: str) -> None:
        try:
            await self.telephony.end_call(call_id)
            logger.info("call_cancelled", call_id=call_id)
        except Exception as e:
            logger.warning("call_cancel_failed", call_id=call_id, error=str(e))
