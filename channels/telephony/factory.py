"""
Telephony Provider Factory — instantiates the right client from config.

The dialer engine only talks to the TelephonyClient protocol:
  - initiate_call(to, status_callback_url, answer_url, status_events) → {sid, status, provider}
  - end_call(call_id) → {sid, status}
  - parse_status_webhook(payload) → StatusNotification
  - close() → clean up HTTP clients
"""
from __future__ import annotations

import structlog
from typing import Any, Iterable, Protocol, runtime_checkable

from config.settings import TelephonyConfig, TelephonyProvider
from models.schemas import StatusNotification

logger = structlog.get_logger()


# ══════════════════════════════════════════════════════════════
#  PROTOCOL — Common interface all providers implement
# ══════════════════════════════════════════════════════════════

@runtime_checkable
class TelephonyClient(Protocol):
    """
    Common interface for telephony providers.

    Provider clients return normalized dicts so the engine does not need
    to know which provider is active.
    """

    async def initiate_call(
        self,
        to: str,
        status_callback_url: str,
        answer_url: str,
        status_events: Iterable[str] = (),
    ) -> dict[str, Any]:
        """
        Place one outbound call.

        Returns:
            {"sid": "...", "status": "queued", "to": "...", "from": "...", "provider": "..."}
        """
        ...

    async def end_call(self, call_id: str) -> dict[str, Any]:
        """
        Terminate a call, whether ringing or connected.

        Returns:
            {"sid": "...", "status": "completed"}
        """
        ...

    @staticmethod
    def parse_status_webhook(payload: dict[str, Any]) -> StatusNotification:
        """Normalize a provider status callback."""
        ...

    async def close(self) -> None:
        """Clean up HTTP clients and connections."""
        ...


# ══════════════════════════════════════════════════════════════
#  FACTORY
# ══════════════════════════════════════════════════════════════

class TelephonyFactory:
    """
    Creates telephony client from TelephonyConfig.

    Usage:
        config = TelephonyConfig(provider=TelephonyProvider.TWILIO, ...)
        client = TelephonyFactory.create(config)
    """

    @staticmethod
    def create(config: TelephonyConfig) -> TelephonyClient:
        """
        Raises:
            ValueError: If provider is not supported.
        """
        if config.provider == TelephonyProvider.TWILIO:
            from channels.telephony.twilio_client import TwilioClient
            client = TwilioClient(
                account_sid=config.account_sid,
                auth_token=config.auth_token,
                from_number=config.phone_number,
                ring_timeout=config.ring_timeout_s,
            )
            logger.info("telephony_client_created", provider="twilio",
                        configured=bool(config.account_sid and config.auth_token))
            return client

        raise ValueError(
            f"Unsupported telephony provider: {config.provider}. "
            f"Supported: {', '.join(p.value for p in TelephonyProvider)}"
        )

    @staticmethod
    def get_webhook_parser(provider: TelephonyProvider):
        """
        Returns the static webhook parser for a provider.

        Usage:
            parser = TelephonyFactory.get_webhook_parser(TelephonyProvider.TWILIO)
            notification = parser(raw_webhook_payload)
        """
        if provider == TelephonyProvider.TWILIO:
            from channels.telephony.twilio_client import TwilioClient
            return TwilioClient.parse_status_webhook

        raise ValueError(f"No webhook parser for: {provider}")
