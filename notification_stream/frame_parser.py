"""
Incremental parser for the line-delimited event stream.

Network reads never line up with line or frame boundaries, so the parser
keeps everything it hasn't finished: the partial trailing line, the current
frame's label, and the data lines accumulated so far. Feeding the same bytes
in one chunk or in a hundred produces the same events.

Protocol:
    event: notification
    data: {"id": 5, "title": "Order Update", ...}
    <blank line>

- `event:` sets the current frame's label
- `data:` appends a line to the current frame's data (joined with "\\n")
- a blank line closes the frame; frames with no data are dropped
- lines starting with ":" are comments; other fields are ignored
"""

import codecs
import logging
from typing import Optional

from notification_stream.events import Frame, StreamEvent, decode_frame

logger = logging.getLogger("frame_parser")


class FrameParser:
    """
    Stateful decoder from raw byte chunks to stream events.

    Example:
        parser = FrameParser()
        events = parser.feed(b"event: heartbeat\\ndata: ping\\n")  # []
        events = parser.feed(b"\\n")  # [StreamEvent(heartbeat, ...)]
    """

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._event: Optional[str] = None
        self._data: list[str] = []

    def feed(self, chunk: bytes) -> list[StreamEvent]:
        """
        Consume one chunk and return every event it completed.

        A trailing incomplete line is kept for the next call.
        """
        return [decode_frame(frame) for frame in self.feed_frames(chunk)]

    def feed_frames(self, chunk: bytes) -> list[Frame]:
        """Like feed(), but returns raw frames without decoding them."""
        self._buffer += self._decoder.decode(chunk)
        *lines, self._buffer = self._buffer.split("\n")

        frames = []
        for line in lines:
            frame = self._process_line(line.removesuffix("\r"))
            if frame is not None:
                frames.append(frame)
        return frames

    def reset(self) -> None:
        """Drop any partially received line or frame."""
        self._decoder.reset()
        self._buffer = ""
        self._event = None
        self._data = []

    @property
    def has_pending(self) -> bool:
        """True if a partial line or frame is buffered."""
        return bool(self._buffer or self._event is not None or self._data)

    def _process_line(self, line: str) -> Optional[Frame]:
        if line == "":
            return self._close_frame()

        if line.startswith(":"):
            return None

        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]

        if field == "event":
            self._event = value.strip()
        elif field == "data":
            self._data.append(value)
        else:
            logger.debug(f"Ignoring stream field '{field}'")
        return None

    def _close_frame(self) -> Optional[Frame]:
        event, data = self._event, "\n".join(self._data)
        self._event = None
        self._data = []

        if not data.strip():
            if event is not None:
                logger.debug(f"Dropping empty '{event}' frame")
            return None
        return Frame(event=event, data=data.strip())
