"""Exceptions raised by the dialer core."""
from __future__ import annotations


class DialerError(Exception):
    """Base exception for dialer operations."""


class TargetSourceError(DialerError):
    """The call target list could not be loaded."""

    def __init__(self, message: str, source: str = ""):
        self.source = source
        super().__init__(message)
