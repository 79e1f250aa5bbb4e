"""
Telephony provider clients for PSTN call management.

Supports: Twilio.
Each client provides: initiate_call, end_call, parse_status_webhook, close.

Usage:
    from channels.telephony import TelephonyFactory
    client = TelephonyFactory.create(config)
    result = await client.initiate_call(to="+15550001", ...)
"""
from channels.telephony.twilio_client import TwilioClient
from channels.telephony.factory import TelephonyFactory, TelephonyClient

__all__ = ["TwilioClient", "TelephonyFactory", "TelephonyClient"]
