"""Incremental decoder for server-sent chat-completion streams.

The decoder owns the open ``httpx.Response`` it is given and closes it when
the sequence ends, whether by completion, cancellation or error.  Frames may
be split across network reads; only complete lines are parsed and the
trailing fragment waits for the next read.
"""

import codecs
import json
import logging
from collections.abc import AsyncIterator
from enum import Enum

import httpx

from secure_chat.models.chat import StreamChunk
from secure_chat.providers.base import CancelPredicate, DecodeError, TransientError

logger = logging.getLogger("scp.stream")

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"


class StreamState(Enum):
    OPEN = "open"
    CANCELLED = "cancelled"
    DONE = "done"
    ERROR = "error"


def _never_cancel() -> bool:
    return False


def parse_event_line(line: str) -> tuple[str, bool] | None:
    """Return ``(delta, finished)`` for a data line, ``None`` for anything else.

    Raises ``DecodeError`` when the payload is not a JSON object.
    """
    stripped = line.strip()
    if not stripped.startswith(DATA_PREFIX):
        return None
    data = stripped.removeprefix(DATA_PREFIX).strip()
    if data == DONE_SENTINEL:
        return None
    try:
        parsed = json.loads(data)
    except json.JSONDecodeError as exc:
        raise DecodeError(f"Invalid stream frame: {exc}", line=stripped) from exc
    if not isinstance(parsed, dict):
        raise DecodeError("Stream frame is not an object", line=stripped)

    choices = parsed.get("choices")
    first = choices[0] if isinstance(choices, list) and choices else {}
    if not isinstance(first, dict):
        raise DecodeError("Stream choice is not an object", line=stripped)
    delta = first.get("delta")
    content = delta.get("content") if isinstance(delta, dict) else None
    return (
        content if isinstance(content, str) else "",
        bool(first.get("finish_reason")),
    )


class StreamDecoder:
    """Turns one SSE response into a lazy sequence of ``StreamChunk``.

    ``warnings`` are attached to the first emitted chunk only.  The
    cancellation predicate is polled before every read and before every
    chunk after the first; once it reports true the response is closed and
    the sequence ends without a ``done`` chunk.
    """

    def __init__(
        self,
        response: httpx.Response,
        should_cancel: CancelPredicate | None = None,
        warnings: list[str] | None = None,
    ) -> None:
        self._response = response
        self._should_cancel = should_cancel or _never_cancel
        self._warnings = list(warnings) if warnings else None
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._state = StreamState.OPEN
        self._emitted = 0
        self._started = False

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def emitted(self) -> int:
        return self._emitted

    def __aiter__(self) -> AsyncIterator[StreamChunk]:
        if self._started:
            raise RuntimeError("Stream already consumed; issue a new request")
        self._started = True
        return self._chunks()

    async def _chunks(self) -> AsyncIterator[StreamChunk]:
        reader = self._response.aiter_bytes()
        try:
            while not self._cancel_requested():
                try:
                    raw = await anext(reader)
                except StopAsyncIteration:
                    lines = [self._buffer + self._decoder.decode(b"", final=True)]
                    self._buffer = ""
                    at_eof = True
                else:
                    self._buffer += self._decoder.decode(raw)
                    *lines, self._buffer = self._buffer.split("\n")
                    at_eof = False

                finished = False
                for line in lines:
                    try:
                        frame = parse_event_line(line)
                    except DecodeError as exc:
                        logger.warning("stream_frame_invalid", extra={"error_code": exc.code})
                        continue
                    if frame is None:
                        continue
                    delta, finished = frame
                    if delta:
                        if self._emitted and self._cancel_requested():
                            return
                        yield self._emit(delta, done=False)
                    if finished:
                        break

                if finished or at_eof:
                    if self._emitted and self._cancel_requested():
                        return
                    self._state = StreamState.DONE
                    yield self._emit("", done=True)
                    return
        except httpx.HTTPError as exc:
            self._state = StreamState.ERROR
            raise TransientError(
                status_code=502,
                code="stream_interrupted",
                message=f"Stream from provider was interrupted: {exc}",
            ) from exc
        except Exception:
            if self._state is StreamState.OPEN:
                self._state = StreamState.ERROR
            raise
        finally:
            await self._response.aclose()
            logger.debug(
                "stream_closed",
                extra={"chunk_count": self._emitted, "state": self._state.value},
            )

    def _cancel_requested(self) -> bool:
        if self._state is StreamState.CANCELLED:
            return True
        if self._should_cancel():
            self._state = StreamState.CANCELLED
            logger.info("stream_cancelled", extra={"chunk_count": self._emitted})
            return True
        return False

    def _emit(self, content: str, done: bool) -> StreamChunk:
        warnings = self._warnings if self._emitted == 0 else None
        self._emitted += 1
        return StreamChunk(content=content, done=done, warnings=warnings)
