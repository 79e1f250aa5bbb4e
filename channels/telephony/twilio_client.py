"""
Twilio Telephony Client — outbound dialing for the call queue.

Call flow:
1. initiate_call() → Twilio dials the target via PSTN
2. On answer, Twilio fetches TwiML from answer_url
3. Status webhooks arrive at status_callback_url for every subscribed event
4. end_call() terminates a ringing or connected call

API Docs: https://www.twilio.com/docs/voice/api
"""
from __future__ import annotations

import structlog
from typing import Any, Iterable, Optional

import httpx
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from channels.base import TelephonyError
from models.schemas import STATUS_CALLBACK_EVENTS, StatusNotification

logger = structlog.get_logger()


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, TelephonyError):
        return exc.retryable
    return isinstance(exc, httpx.TransportError)


class TwilioClient:
    """Twilio REST API client for voice call management."""

    BASE_URL = "https://api.twilio.com/2010-04-01/Accounts"

    def __init__(self, account_sid: str, auth_token: str, from_number: str, ring_timeout: int = 30):
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self.ring_timeout = ring_timeout
        self.base_url = f"{self.BASE_URL}/{account_sid}"
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                auth=(self.account_sid, self.auth_token),
                timeout=httpx.Timeout(30.0, connect=10.0),
            )
        return self._client

    async def _request(self, method: str, path: str, **kwargs) -> dict[str, Any]:
        client = await self._get_client()
        url = f"{self.base_url}{path}.json"
        resp = await client.request(method, url, **kwargs)
        if resp.status_code >= 400:
            logger.error(
                "twilio_api_error",
                status=resp.status_code,
                body=resp.text[:500],
                path=path,
            )
            raise TelephonyError(
                f"Twilio API error ({resp.status_code}): {resp.text[:200]}",
                provider="twilio",
                status_code=resp.status_code,
            )
        return resp.json()

    # ── Call Management ─────────────────────────────────────

    async def initiate_call(
        self,
        to: str,
        status_callback_url: str,
        answer_url: str,
        status_events: Iterable[str] = STATUS_CALLBACK_EVENTS,
    ) -> dict[str, Any]:
        """
        Place an outbound call via Twilio.

        Not retried: a failed placement is the caller's signal to move on.

        Args:
            to: Destination phone number (E.164)
            status_callback_url: Webhook URL for call status events
            answer_url: URL returning the TwiML played when the callee answers
            status_events: Lifecycle events Twilio should post back
        """
        # Twilio uses form-encoded POST, not JSON. A list value is sent as
        # repeated StatusCallbackEvent keys.
        payload = {
            "From": self.from_number,
            "To": to,
            "Url": answer_url,
            "StatusCallback": status_callback_url,
            "StatusCallbackMethod": "POST",
            "StatusCallbackEvent": list(status_events),
            "Timeout": str(self.ring_timeout),
        }

        logger.info("twilio_initiate_call", to=to)
        result = await self._request("POST", "/Calls", data=payload)

        return {
            "sid": result.get("sid", ""),
            "status": result.get("status", "queued"),
            "to": to,
            "from": self.from_number,
            "provider": "twilio",
        }

    @retry(
        stop=stop_after_attempt(2),
        wait=wait_exponential(min=1, max=5),
        retry=retry_if_exception(_is_retryable),
        reraise=True,
    )
    async def end_call(self, call_sid: str) -> dict[str, Any]:
        """Terminate a call. Twilio accepts Status=completed for live and ringing calls."""
        logger.info("twilio_end_call", call_sid=call_sid)
        await self._request(
            "POST",
            f"/Calls/{call_sid}",
            data={"Status": "completed"},
        )
        return {"sid": call_sid, "status": "completed"}

    # ── Webhook Parsing ─────────────────────────────────────

    @staticmethod
    def parse_status_webhook(payload: dict[str, Any]) -> StatusNotification:
        """
        Normalize a Twilio status callback.

        Twilio sends:
          - CallSid, CallStatus, Direction, ConferenceSid (conference legs only),
            From, To, CallDuration, etc.

        Statuses keep Twilio's vocabulary (``no-answer``, ``canceled``);
        ``in-progress`` is reported as ``answered``.
        """
        status = str(payload.get("CallStatus", payload.get("Status", ""))).lower()
        if status == "in-progress":
            status = "answered"

        # Twilio direction format: "outbound-api", "inbound", "outbound-dial"
        direction = str(payload.get("Direction", "outbound-api")).lower()
        if "-" in direction:
            direction = direction.split("-")[0]

        return StatusNotification(
            call_id=str(payload.get("CallSid", "")),
            status=status,
            direction=direction,
            conference_id=payload.get("ConferenceSid") or None,
            raw=dict(payload),
        )

    # ── Helpers ─────────────────────────────────────────────

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
