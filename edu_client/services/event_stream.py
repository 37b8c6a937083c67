"""
Streaming Progress Decoder.

Decodes the lesson-generation event stream::

    event: progress
    data: {"step": "quiz", "message": "Writing questions", "percentage": 40}

    event: complete
    data: {"title": "Photosynthesis", ...}

Frames are separated by blank lines; each frame pairs one ``event:``
line with one ``data:`` line holding a JSON object.  The connection
close terminates the stream.

``EventStreamDecoder`` is a small push parser: bytes go in through
:meth:`~EventStreamDecoder.feed`, typed events come out.  It keeps two
pieces of state between calls:

- a carry-over buffer holding the unterminated tail of the last chunk
  (a line split across reads is completed by the next chunk), consumed
  with a forward-only line cursor so a long stream is scanned once;
- the pending event name, set by ``event:`` and cleared after the next
  ``data:`` line whether or not that line decoded.

``read_generation_stream`` drives the decoder over an async byte
iterator and turns the events into callbacks and one terminal outcome.
"""

from __future__ import annotations

import codecs
import inspect
import json
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, Union

import httpx
from pydantic import ValidationError

from edu_client.errors import GenerationFailed, NetworkError, NoResult
from edu_client.logger import StructuredLogger
from edu_client.models.enums import StreamEventKind
from edu_client.models.generation import (
    CompleteEvent,
    ErrorEvent,
    GenerationProgress,
    ProgressEvent,
    StreamEvent,
)

ProgressCallback = Callable[[GenerationProgress], Union[None, Awaitable[None]]]

_EVENT_FIELD: str = "event:"
_DATA_FIELD: str = "data:"
_GENERIC_FAILURE: str = "Generation failed"


class EventStreamDecoder:
    """Incremental decoder for the generation event stream."""

    def __init__(self, logger: Optional[StructuredLogger] = None) -> None:
        self._logger: Optional[StructuredLogger] = logger
        self._text = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer: str = ""
        self._event: Optional[str] = None

    def feed(self, chunk: bytes) -> list[StreamEvent]:
        """Consume *chunk* and return the events it completed."""
        self._buffer += self._text.decode(chunk)
        events: list[StreamEvent] = []

        cursor = 0
        while True:
            newline = self._buffer.find("\n", cursor)
            if newline == -1:
                break
            event = self._consume_line(self._buffer[cursor:newline])
            if event is not None:
                events.append(event)
            cursor = newline + 1

        self._buffer = self._buffer[cursor:]
        return events

    def finish(self) -> list[StreamEvent]:
        """Flush the decoder at end of stream.

        A final line that arrived without its newline is still
        interpreted.
        """
        self._buffer += self._text.decode(b"", final=True)
        tail, self._buffer = self._buffer, ""
        if not tail:
            return []
        event = self._consume_line(tail)
        return [event] if event is not None else []

    # ------------------------------------------------------------------
    # Line state machine
    # ------------------------------------------------------------------

    def _consume_line(self, line: str) -> Optional[StreamEvent]:
        line = line.rstrip("\r")

        if line.startswith(_EVENT_FIELD):
            self._event = line[len(_EVENT_FIELD):].strip() or None
            return None

        if not line.startswith(_DATA_FIELD):
            # Blank frame separators, comments and unknown fields.
            return None

        payload = line[len(_DATA_FIELD):].strip()
        event_name, self._event = self._event, None
        if event_name is None or not payload:
            return None
        return self._dispatch(event_name, payload)

    def _dispatch(self, event_name: str, payload: str) -> Optional[StreamEvent]:
        try:
            data: Any = json.loads(payload)
        except json.JSONDecodeError:
            if event_name == StreamEventKind.ERROR:
                return ErrorEvent(error=_GENERIC_FAILURE)
            self._debug("Skipping malformed %s frame.", event_name)
            return None

        if event_name == StreamEventKind.PROGRESS:
            try:
                return ProgressEvent(progress=GenerationProgress.model_validate(data))
            except ValidationError:
                self._debug("Skipping progress frame with unexpected shape.")
                return None

        if event_name == StreamEventKind.COMPLETE:
            if data is None:
                self._debug("Skipping empty complete frame.")
                return None
            return CompleteEvent(result=data)

        if event_name == StreamEventKind.ERROR:
            message = data.get("error") if isinstance(data, dict) else None
            return ErrorEvent(error=str(message) if message else _GENERIC_FAILURE)

        self._debug("Ignoring unknown event '%s'.", event_name)
        return None

    def _debug(self, msg: str, *args: object) -> None:
        if self._logger is not None:
            self._logger.debug(msg, *args)


async def read_generation_stream(
    chunks: AsyncIterator[bytes],
    on_progress: Optional[ProgressCallback] = None,
    logger: Optional[StructuredLogger] = None,
) -> Any:
    """Run the decoder over *chunks* until a terminal outcome.

    Parameters
    ----------
    chunks:
        Async iterator of raw body bytes, e.g. ``response.aiter_bytes()``.
    on_progress:
        Called (and awaited, when it returns an awaitable) for every
        progress frame, in stream order.
    logger:
        Optional structured logger for skipped-frame diagnostics.

    Returns
    -------
    Any
        Payload of the first ``complete`` frame.  Reading stops there.

    Raises
    ------
    GenerationFailed
        An ``error`` frame arrived (or one that did not decode).
    NoResult
        The stream ended without a ``complete`` frame.
    NetworkError
        The connection failed while reading.
    """
    decoder = EventStreamDecoder(logger=logger)

    async def _handle(events: list[StreamEvent]) -> Optional[CompleteEvent]:
        for event in events:
            if isinstance(event, ProgressEvent):
                if on_progress is not None:
                    outcome = on_progress(event.progress)
                    if inspect.isawaitable(outcome):
                        await outcome
            elif isinstance(event, ErrorEvent):
                raise GenerationFailed(event.error)
            elif isinstance(event, CompleteEvent):
                return event
        return None

    try:
        async for chunk in chunks:
            done = await _handle(decoder.feed(chunk))
            if done is not None:
                return done.result
    except httpx.TransportError as exc:
        raise NetworkError("Connection lost while reading the generation stream.") from exc

    done = await _handle(decoder.finish())
    if done is not None:
        return done.result
    raise NoResult()
