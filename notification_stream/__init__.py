"""
Real-time notification delivery pipeline.

This package keeps a signed-in user's notification list live:
- FrameParser turns raw stream bytes into canonical, typed events
- EventDispatcher fans those events out to subscribers
- StreamConnection owns the push connection and reconnects with backoff
- NotificationStore applies REST responses and events to the held state
"""

from notification_stream.connection import StreamConnection
from notification_stream.dispatcher import EventDispatcher
from notification_stream.events import EventType, StreamEvent, canonicalize, decode_frame
from notification_stream.frame_parser import FrameParser
from notification_stream.store import NotificationStore

__all__ = [
    "EventDispatcher",
    "EventType",
    "FrameParser",
    "NotificationStore",
    "StreamConnection",
    "StreamEvent",
    "canonicalize",
    "decode_frame",
]
