"""Incremental decoder for newline-delimited JSON streams.

Ollama's streamed ``/api/generate`` response is a sequence of JSON objects,
one per line, delivered in arbitrary network frames. The decoder buffers
bytes, hands out every complete line, and keeps the trailing partial line
for the next frame.
"""
import codecs
import json
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List

import structlog

from ragtutor.errors import StreamDecodeError

logger = structlog.get_logger()


@dataclass(frozen=True)
class GenerationFragment:
    """One piece of streamed model output."""

    text: str


class NDJSONStreamDecoder:
    """Stateful NDJSON decoder fed with raw transport bytes.

    Malformed lines are recorded in ``errors`` and logged, never raised.
    Whatever remains buffered when ``close()`` is called is discarded:
    the upstream service terminates every frame with a newline.
    """

    def __init__(self):
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._closed = False
        self.errors: List[StreamDecodeError] = []
        self.lines_parsed = 0

    @property
    def pending(self) -> str:
        """Carry-over text not yet terminated by a newline."""
        return self._buffer

    def feed(self, data: bytes) -> List[Dict[str, Any]]:
        """Add bytes and return every JSON object completed by them."""
        if self._closed:
            raise RuntimeError("Decoder already closed")

        self._buffer += self._decoder.decode(data)

        if "\n" not in self._buffer:
            return []

        *lines, self._buffer = self._buffer.split("\n")

        objects = []
        for line in lines:
            obj = self._parse_line(line)
            if obj is not None:
                objects.append(obj)
        return objects

    def close(self) -> None:
        """Mark the end of the stream, dropping any unterminated remainder."""
        if self._closed:
            return

        self._buffer += self._decoder.decode(b"", final=True)
        if self._buffer.strip():
            logger.debug(
                "stream_partial_line_discarded",
                pending_chars=len(self._buffer),
            )
        self._buffer = ""
        self._closed = True

    def _parse_line(self, line: str):
        if not line.strip():
            return None

        try:
            obj = json.loads(line)
        except json.JSONDecodeError as e:
            self._record_error(f"Invalid JSON in stream: {e}", line)
            return None

        if not isinstance(obj, dict):
            self._record_error(
                f"Expected a JSON object, got {type(obj).__name__}", line
            )
            return None

        self.lines_parsed += 1
        return obj

    def _record_error(self, message: str, line: str) -> None:
        error = StreamDecodeError(message, line)
        self.errors.append(error)
        logger.warning("stream_parse_error", error=message, line_preview=line[:100])


def fragments_from(obj: Dict[str, Any]) -> Iterator[GenerationFragment]:
    """Yield the fragment carried by one decoded stream object, if any."""
    if "error" in obj:
        logger.warning("generation_stream_error_frame", error=str(obj["error"]))
        return

    text = obj.get("response")
    if isinstance(text, str) and text:
        yield GenerationFragment(text=text)
