"""WebSocket handlers for live practice calls.

- browser_call_endpoint: calls from the web client (/ws/call)
- plivo_stream_endpoint: phone calls via the Plivo media stream (/ws/plivo/{call_id})
- CallRegistry: live calls and the concurrency limit
"""

from src.api.websocket.browser_call import browser_call_endpoint, forward_events
from src.api.websocket.plivo_stream import plivo_stream_endpoint
from src.api.websocket.registry import CallCapacityError, CallEntry, CallRegistry

__all__ = [
    "browser_call_endpoint",
    "plivo_stream_endpoint",
    "forward_events",
    "CallRegistry",
    "CallEntry",
    "CallCapacityError",
]
