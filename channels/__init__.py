"""Provider channels used by the dialer."""
from channels.base import ChannelError, TelephonyError

__all__ = ["ChannelError", "TelephonyError"]
