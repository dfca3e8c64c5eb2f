"""
Tests for the incremental frame parser.

These tests verify that frames are decoded correctly no matter how the
network splits the byte stream.
"""

import json

import pytest

from notification_stream.events import (
    EventType,
    NotificationPushed,
    UnreadCountPayload,
)
from notification_stream.frame_parser import FrameParser


NOTIFICATION_FRAME = (
    'event: notification\n'
    'data: {"id":1,"title":"x","message":"hello","type":"ORDER_UPDATE",'
    '"isRead":false,"createdAt":"2024-01-01T00:00:00Z"}\n'
    '\n'
)


def feed_all(parser: FrameParser, chunks: list) -> list:
    events = []
    for chunk in chunks:
        events.extend(parser.feed(chunk.encode() if isinstance(chunk, str) else chunk))
    return events


@pytest.fixture
def parser() -> FrameParser:
    return FrameParser()


class TestSingleChunk:
    """Tests for frames delivered in one piece."""

    def test_parses_named_event(self, parser: FrameParser):
        """Test that a complete frame produces one typed event."""
        events = parser.feed(NOTIFICATION_FRAME.encode())

        assert len(events) == 1
        assert events[0].type == EventType.NOTIFICATION
        assert isinstance(events[0].payload, NotificationPushed)
        assert events[0].payload.id == 1

    def test_multiple_frames_in_one_chunk(self, parser: FrameParser):
        """Test that every frame in a chunk is emitted in order."""
        text = (
            'event: unread_count\ndata: {"unreadCount": 3}\n\n'
            'event: heartbeat\ndata: ping\n\n'
        )
        events = parser.feed(text.encode())

        assert [e.type for e in events] == [EventType.UNREAD_COUNT, EventType.HEARTBEAT]
        assert events[0].payload == UnreadCountPayload(unread_count=3)
        assert events[1].payload == "ping"

    def test_frame_without_data_is_dropped(self, parser: FrameParser):
        """Test that a frame with an empty payload is dropped silently."""
        events = parser.feed(b"event: heartbeat\n\n")

        assert events == []

    def test_blank_lines_alone_emit_nothing(self, parser: FrameParser):
        """Test that runs of blank lines don't produce frames."""
        assert parser.feed(b"\n\n\n") == []

    def test_unterminated_frame_is_not_emitted(self, parser: FrameParser):
        """Test that a frame is held until its blank line arrives."""
        events = parser.feed(b'event: unread_count\ndata: {"unreadCount": 1}\n')

        assert events == []
        assert parser.has_pending

    def test_crlf_line_endings(self, parser: FrameParser):
        """Test that CRLF-delimited streams parse like LF ones."""
        events = parser.feed(b'event: unread_count\r\ndata: {"unreadCount": 7}\r\n\r\n')

        assert len(events) == 1
        assert events[0].payload.unread_count == 7

    def test_comment_lines_are_ignored(self, parser: FrameParser):
        """Test that ':' comment lines don't affect the frame."""
        events = parser.feed(b': keep-alive\nevent: heartbeat\ndata: ping\n\n')

        assert len(events) == 1
        assert events[0].type == EventType.HEARTBEAT

    def test_unknown_fields_are_ignored(self, parser: FrameParser):
        """Test that id:/retry: lines don't end up in the payload."""
        events = parser.feed(b'id: 42\nretry: 1000\nevent: heartbeat\ndata: ping\n\n')

        assert len(events) == 1
        assert events[0].payload == "ping"


class TestDataLines:
    """Tests for data accumulation."""

    def test_multiple_data_lines_are_joined(self, parser: FrameParser):
        """Test that several data lines form one payload, in arrival order."""
        text = 'event: unread_count\ndata: {"unreadCount":\ndata:  4}\n\n'
        events = parser.feed(text.encode())

        assert len(events) == 1
        assert events[0].payload == UnreadCountPayload(unread_count=4)

    def test_data_without_space_after_colon(self, parser: FrameParser):
        """Test that 'data:value' is accepted as well as 'data: value'."""
        events = parser.feed(b'event: heartbeat\ndata:ping\n\n')

        assert events[0].payload == "ping"

    def test_label_and_data_reset_between_frames(self, parser: FrameParser):
        """Test that a frame doesn't inherit the previous frame's label."""
        events = parser.feed(b'event: heartbeat\ndata: ping\n\ndata: hello\n\n')

        assert events[0].type == EventType.HEARTBEAT
        assert events[1].type == EventType.CONNECTED
        assert events[1].label is None


class TestMalformedFrames:
    """Tests that bad frames never stop the parser."""

    def test_malformed_json_falls_back_to_string(self, parser: FrameParser):
        """Test that broken JSON is kept as raw text instead of raising."""
        events = parser.feed(b'event: notification\ndata: {"id": 1, \n\n')

        assert len(events) == 1
        assert events[0].type == EventType.NOTIFICATION
        assert events[0].payload == '{"id": 1,'

    def test_parser_continues_after_malformed_frame(self, parser: FrameParser):
        """Test that the frame after a malformed one still decodes."""
        text = 'event: unread_count\ndata: {oops\n\nevent: unread_count\ndata: {"unreadCount": 2}\n\n'
        events = parser.feed(text.encode())

        assert len(events) == 2
        assert events[0].payload == "{oops"
        assert events[1].payload.unread_count == 2

    def test_invalid_utf8_does_not_raise(self, parser: FrameParser):
        """Test that undecodable bytes are replaced rather than raising."""
        events = parser.feed(b'event: heartbeat\ndata: \xff\xfe\n\n')

        assert len(events) == 1
        assert events[0].type == EventType.HEARTBEAT


class TestChunkBoundaries:
    """Tests that splitting the byte stream never changes the result."""

    def test_split_mid_field_name(self, parser: FrameParser):
        """Test the split from the protocol description: mid 'data:' prefix."""
        whole = FrameParser().feed(NOTIFICATION_FRAME.encode())

        split_at = NOTIFICATION_FRAME.index("data:") + 2
        events = feed_all(parser, [NOTIFICATION_FRAME[:split_at], NOTIFICATION_FRAME[split_at:]])

        assert events == whole

    def test_every_split_point_decodes_identically(self):
        """Test all two-way splits of a frame against the single-chunk result."""
        raw = NOTIFICATION_FRAME.encode()
        whole = FrameParser().feed(raw)

        for i in range(1, len(raw)):
            events = feed_all(FrameParser(), [raw[:i], raw[i:]])
            assert events == whole, f"split at byte {i}"

    def test_byte_at_a_time(self, parser: FrameParser):
        """Test feeding one byte per chunk."""
        raw = NOTIFICATION_FRAME.encode()
        whole = FrameParser().feed(raw)

        events = feed_all(parser, [raw[i:i + 1] for i in range(len(raw))])

        assert events == whole

    def test_split_inside_multibyte_character(self, parser: FrameParser):
        """Test that a UTF-8 character split across chunks decodes correctly."""
        payload = {"id": 9, "title": "Café ☕", "createdAt": "2024-01-01T00:00:00Z"}
        raw = f"event: notification\ndata: {json.dumps(payload, ensure_ascii=False)}\n\n".encode()
        cut = raw.index("☕".encode()) + 1

        events = feed_all(parser, [raw[:cut], raw[cut:]])

        assert events[0].payload.title == "Café ☕"

    def test_split_between_line_and_blank_line(self, parser: FrameParser):
        """Test that the closing blank line may arrive in a later chunk."""
        first = parser.feed(b'event: heartbeat\ndata: ping\n')
        second = parser.feed(b'\n')

        assert first == []
        assert len(second) == 1
        assert second[0].type == EventType.HEARTBEAT


class TestReset:
    """Tests for discarding buffered state."""

    def test_reset_drops_partial_frame(self, parser: FrameParser):
        """Test that reset() forgets a half-received frame."""
        parser.feed(b'event: notification\ndata: {"id": 1')
        parser.reset()

        assert not parser.has_pending
        events = parser.feed(b'event: heartbeat\ndata: ping\n\n')
        assert [e.type for e in events] == [EventType.HEARTBEAT]
