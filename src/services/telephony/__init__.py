"""Telephony services (Plivo).

- PlivoCallControl: place and end outbound practice calls
- PhoneCallTracker: status reported by Plivo webhooks
- PlivoStreamPlayer: persona audio over the bidirectional media stream
"""

from src.services.telephony.exceptions import TelephonyError, TelephonyNotConfigured
from src.services.telephony.plivo import (
    STREAM_CONTENT_TYPE,
    CallStatus,
    PhoneCall,
    PhoneCallTracker,
    PlivoCallControl,
    generate_hangup_xml,
    generate_stream_xml,
    normalize_call_status,
)
from src.services.telephony.stream import PlivoStreamPlayer, StreamStart, decode_media_payload

__all__ = [
    # Call control
    "PlivoCallControl",
    "PhoneCall",
    "PhoneCallTracker",
    "CallStatus",
    "normalize_call_status",
    # XML
    "generate_stream_xml",
    "generate_hangup_xml",
    "STREAM_CONTENT_TYPE",
    # Media stream
    "PlivoStreamPlayer",
    "StreamStart",
    "decode_media_payload",
    # Exceptions
    "TelephonyError",
    "TelephonyNotConfigured",
]
