from __future__ import annotations

import codecs
import json
import logging
from typing import Any, List, Optional

logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"


def delta_content(event: Any) -> str:
    """Text of ``choices[0].delta.content`` or an empty string."""
    if not isinstance(event, dict):
        return ""
    choices = event.get("choices")
    if not isinstance(choices, list) or not choices:
        return ""
    first = choices[0]
    if not isinstance(first, dict):
        return ""
    delta = first.get("delta")
    if not isinstance(delta, dict):
        return ""
    content = delta.get("content")
    return content if isinstance(content, str) else ""


def parse_line(line: str) -> Optional[str]:
    """Decode one event-stream line into a text delta.

    Returns None for lines that carry no text: blanks, comments, the
    terminator and frames whose JSON does not parse.
    """
    line = line.rstrip("\r")
    if not line.startswith(DATA_PREFIX):
        return None
    payload = line[len(DATA_PREFIX):]
    if payload.strip() == DONE_SENTINEL:
        return None
    try:
        event = json.loads(payload)
    except ValueError as e:
        logger.error("error parsing SSE data: %s (line=%r)", e, line)
        return None
    return delta_content(event) or None


class SSEDecoder:
    """Incremental decoder for a chat-completion event stream.

    Bytes may arrive split anywhere, including inside a UTF-8 sequence or
    in the middle of a line; incomplete input is held until the next feed.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def feed(self, data: bytes) -> List[str]:
        self._buffer += self._decoder.decode(data)
        *lines, self._buffer = self._buffer.split("\n")
        return self._collect(lines)

    def flush(self) -> List[str]:
        tail = self._buffer + self._decoder.decode(b"", final=True)
        self._buffer = ""
        return self._collect([tail]) if tail else []

    @staticmethod
    def _collect(lines: List[str]) -> List[str]:
        deltas = []
        for line in lines:
            text = parse_line(line)
            if text:
                deltas.append(text)
        return deltas
