"""
Channel errors — structured error hierarchy shared by provider clients.
"""
from __future__ import annotations


class ChannelError(Exception):
    """Base exception for all channel operations."""

    def __init__(self, message: str, channel: str = "", retryable: bool = False):
        self.channel = channel
        self.retryable = retryable
        super().__init__(message)


class TelephonyError(ChannelError):
    """The telephony provider rejected a request."""

    def __init__(self, message: str, provider: str = "", status_code: int = 0):
        self.status_code = status_code
        # 5xx and 429 are worth another attempt, 4xx are not
        retryable = status_code >= 500 or status_code == 429
        super().__init__(message, channel=provider, retryable=retryable)
