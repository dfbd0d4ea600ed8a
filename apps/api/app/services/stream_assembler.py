"""Reassembles Ollama's newline-delimited JSON stream into text fragments.

The assembler is pure bookkeeping: it turns raw bytes into ``Fragment`` and
``Completed`` events and tracks ``StreamingState``. Sending to clients,
preview scheduling and persistence live in the chat service.
"""

from __future__ import annotations

import codecs
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import structlog

from app.core.exceptions import BackendResponseError, StreamProtocolError
from app.core.metrics import stream_parse_errors_total

logger = structlog.get_logger(__name__)


class StreamStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


@dataclass
class StreamingState:
    message_id: str
    accumulated_text: str = ""
    parse_buffer: str = ""
    chunk_count: int = 0
    hashtags_extracted_early: bool = False
    status: StreamStatus = StreamStatus.OPEN


@dataclass(frozen=True)
class Fragment:
    text: str


@dataclass(frozen=True)
class Completed:
    text: str
    stats: dict[str, Any] = field(default_factory=dict)


StreamEvent = Fragment | Completed


class StreamAssembler:
    def __init__(
        self,
        message_id: str,
        *,
        max_line_chars: int = 1024 * 1024,
        preview_min_chars: int = 200,
        preview_every_n_chunks: int = 10,
    ):
        self.state = StreamingState(message_id=message_id)
        self._max_line_chars = max_line_chars
        self._preview_min_chars = preview_min_chars
        self._preview_every = preview_every_n_chunks
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    @property
    def closed(self) -> bool:
        return self.state.status is StreamStatus.CLOSED

    def feed(self, data: bytes | str) -> list[StreamEvent]:
        """Consume one raw arrival and return the events it completes.

        Raises ``StreamProtocolError`` for an oversized line and
        ``BackendResponseError`` when the backend reports an error record.
        Both close the stream.
        """
        if self.closed:
            return []
        text = self._decoder.decode(data) if isinstance(data, bytes) else data
        self.state.parse_buffer += text
        events = self._drain()
        if not self.closed and len(self.state.parse_buffer) > self._max_line_chars:
            self.close()
            raise StreamProtocolError("The model response contained an oversized line")
        return events

    def finish(self) -> list[StreamEvent]:
        """Flush after the upstream body ends.

        A final segment without a trailing newline is still parsed. If no
        terminal record was ever seen the stream is truncated.
        """
        if self.closed:
            return []
        self.state.parse_buffer += self._decoder.decode(b"", final=True)
        events = self._drain()
        if not self.closed and self.state.parse_buffer.strip():
            tail, self.state.parse_buffer = self.state.parse_buffer, ""
            events.extend(self._parse_segment(tail))
        if not self.closed:
            self.close()
            raise StreamProtocolError("The model stream ended before the response completed")
        return events

    def close(self) -> None:
        self.state.status = StreamStatus.CLOSED
        self.state.parse_buffer = ""

    def should_preview(self) -> bool:
        state = self.state
        return (
            not self.closed
            and not state.hashtags_extracted_early
            and state.chunk_count > 0
            and len(state.accumulated_text) > self._preview_min_chars
            and state.chunk_count % self._preview_every == 0
        )

    def _drain(self) -> list[StreamEvent]:
        events: list[StreamEvent] = []
        while not self.closed:
            segment, sep, rest = self.state.parse_buffer.partition("\n")
            if not sep:
                break
            self.state.parse_buffer = rest
            events.extend(self._parse_segment(segment))
        return events

    def _parse_segment(self, segment: str) -> list[StreamEvent]:
        segment = segment.strip()
        if not segment:
            return []
        try:
            record = json.loads(segment)
        except json.JSONDecodeError:
            stream_parse_errors_total.inc()
            logger.warning(
                "stream.segment_discarded",
                message_id=self.state.message_id,
                segment_preview=segment[:80],
            )
            return []
        if not isinstance(record, dict):
            stream_parse_errors_total.inc()
            logger.warning("stream.segment_not_object", message_id=self.state.message_id)
            return []

        if record.get("error"):
            self.close()
            raise BackendResponseError(f"Model error: {record['error']}")

        events: list[StreamEvent] = []
        fragment = record.get("response")
        if isinstance(fragment, str) and fragment:
            self.state.accumulated_text += fragment
            self.state.chunk_count += 1
            events.append(Fragment(fragment))

        if record.get("done") is True:
            self.close()
            stats = {k: v for k, v in record.items() if k not in {"response", "done", "context"}}
            events.append(Completed(text=self.state.accumulated_text, stats=stats))
        return events
