"""
Incremental stream decoding for LLM responses.

WHAT: Turn a raw byte stream into a lazy sequence of text fragments
WHY: Every backend streams differently (SSE with or without a done sentinel,
     NDJSON), but callers only want the text, pulled at their own pace
HOW: Incremental UTF-8 decode -> line buffer that keeps partial lines ->
     per-backend envelope that strips prefixes, spots the end, extracts text
"""

import codecs
import json
from dataclasses import dataclass
from typing import Any, AsyncIterable, AsyncIterator, Callable

from .errors import StreamPayloadError
from ..utils.logger import get_logger

logger = get_logger(__name__)


class LineBuffer:
    """Accumulates text and hands back only complete lines."""

    def __init__(self):
        self._pending = ""

    def feed(self, text: str) -> list[str]:
        """
        Add text and return every line it completes.

        The trailing partial line is retained for the next feed. Lines end
        with LF; a CR before the LF is dropped.
        """
        if not text:
            return []
        self._pending += text
        *complete, self._pending = self._pending.split("\n")
        return [line[:-1] if line.endswith("\r") else line for line in complete]

    def flush(self) -> str | None:
        """Return the unterminated tail (if any) and clear it."""
        tail, self._pending = self._pending, ""
        if tail.endswith("\r"):
            tail = tail[:-1]
        return tail or None


async def iter_lines(chunks: AsyncIterable[bytes | str]) -> AsyncIterator[str]:
    """
    Yield complete lines from arbitrarily split chunks.

    Multi-byte UTF-8 characters split across chunk boundaries are reassembled.
    """
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    buffer = LineBuffer()

    async for chunk in chunks:
        text = decoder.decode(chunk) if isinstance(chunk, (bytes, bytearray)) else chunk
        for line in buffer.feed(text):
            yield line

    for line in buffer.feed(decoder.decode(b"", final=True)):
        yield line
    tail = buffer.flush()
    if tail is not None:
        yield tail


def _dig(value: Any, *path: Any) -> Any:
    """Safe nested lookup through dicts and lists; None when any hop is missing."""
    for key in path:
        if isinstance(key, int):
            if not isinstance(value, list) or len(value) <= key:
                return None
        elif not isinstance(value, dict):
            return None
        value = value[key] if isinstance(key, int) else value.get(key)
    return value


def _error_text(value: Any) -> str | None:
    """Normalize an in-band error ("msg" or {"message": "msg"}) to text."""
    if not value:
        return None
    if isinstance(value, dict):
        return str(value.get("message") or value.get("type") or value)
    return str(value)


@dataclass(frozen=True)
class StreamEnvelope:
    """
    One backend's streaming grammar.

    data_prefix: SSE field prefix to strip ("data:"); None for NDJSON
    done_sentinel: literal payload that ends the stream ("[DONE]"), if any
    extract_text: payload -> text fragment (or None)
    is_done: payload -> True when the payload closes the stream
    extract_error: payload -> error text when the payload is an error
    """
    name: str
    data_prefix: str | None
    done_sentinel: str | None
    extract_text: Callable[[Any], str | None]
    is_done: Callable[[Any], bool] | None = None
    extract_error: Callable[[Any], str | None] | None = None


async def decode_stream(
    chunks: AsyncIterable[bytes | str],
    envelope: StreamEnvelope,
) -> AsyncIterator[str]:
    """
    Decode a backend stream into text fragments.

    Args:
        chunks: Raw response body chunks, split anywhere
        envelope: Grammar of the backend producing the stream

    Yields:
        Non-empty text fragments, in order

    Raises:
        StreamPayloadError: The backend sent an error object mid-stream
    """
    count = 0
    async for raw_line in iter_lines(chunks):
        line = raw_line.strip()
        if not line:
            continue

        if envelope.data_prefix is not None:
            # SSE: skip comments and non-data fields (event:, id:, retry:)
            if not line.startswith(envelope.data_prefix):
                continue
            line = line[len(envelope.data_prefix):].strip()

        if envelope.done_sentinel is not None and line == envelope.done_sentinel:
            break

        try:
            payload = json.loads(line)
        except json.JSONDecodeError:
            logger.debug(f"Skipping malformed {envelope.name} line: {line[:100]}")
            continue

        if envelope.extract_error is not None:
            error = envelope.extract_error(payload)
            if error:
                raise StreamPayloadError(error, payload=payload)

        fragment = envelope.extract_text(payload)
        if fragment:
            count += 1
            yield fragment

        if envelope.is_done is not None and envelope.is_done(payload):
            break

    logger.debug(f"{envelope.name} stream finished ({count} fragments)")


# ========== Backend grammars ==========

OPENAI_SSE = StreamEnvelope(
    name="openai-sse",
    data_prefix="data:",
    done_sentinel="[DONE]",
    extract_text=lambda p: _dig(p, "choices", 0, "delta", "content"),
    extract_error=lambda p: _error_text(_dig(p, "error")),
)

ANTHROPIC_SSE = StreamEnvelope(
    name="anthropic-sse",
    data_prefix="data:",
    done_sentinel=None,
    extract_text=lambda p: (
        _dig(p, "delta", "text") if _dig(p, "type") == "content_block_delta" else None
    ),
    is_done=lambda p: _dig(p, "type") == "message_stop",
    extract_error=lambda p: (
        _error_text(_dig(p, "error")) if _dig(p, "type") == "error" else None
    ),
)


def _gemini_text(payload: Any) -> str | None:
    parts = _dig(payload, "candidates", 0, "content", "parts") or []
    text = "".join(part.get("text", "") for part in parts if isinstance(part, dict))
    return text or None


def _gemini_error(payload: Any) -> str | None:
    block_reason = _dig(payload, "promptFeedback", "blockReason")
    if block_reason:
        return f"Content blocked: {block_reason}"
    return _error_text(_dig(payload, "error"))


GEMINI_SSE = StreamEnvelope(
    name="gemini-sse",
    data_prefix="data:",
    done_sentinel=None,
    extract_text=_gemini_text,
    extract_error=_gemini_error,
)

OLLAMA_NDJSON = StreamEnvelope(
    name="ollama-ndjson",
    data_prefix=None,
    done_sentinel=None,
    extract_text=lambda p: _dig(p, "response"),
    is_done=lambda p: _dig(p, "done") is True,
    extract_error=lambda p: _error_text(_dig(p, "error")),
)
