"""Tests for the generation event-stream decoder."""

import httpx
import pytest

from edu_client.errors import GenerationFailed, NetworkError, NoResult
from edu_client.models.generation import (
    CompleteEvent,
    ErrorEvent,
    GenerationProgress,
    ProgressEvent,
)
from edu_client.services.event_stream import EventStreamDecoder, read_generation_stream

THREE_EVENTS = (
    'event: progress\ndata: {"step": "outline", "message": "Résumé ✓", "percentage": 10}\n\n'
    'event: progress\ndata: {"step": "quiz", "message": "Writing questions"}\n\n'
    'event: complete\ndata: {"title": "Photosynthèse"}\n\n'
).encode("utf-8")


async def chunks_of(*parts: bytes):
    for part in parts:
        yield part


def decode_all(*parts: bytes):
    decoder = EventStreamDecoder()
    events = []
    for part in parts:
        events.extend(decoder.feed(part))
    events.extend(decoder.finish())
    return events


class TestEventStreamDecoder:
    def test_decodes_three_events(self):
        events = decode_all(THREE_EVENTS)

        assert events == [
            ProgressEvent(progress=GenerationProgress(
                step="outline", message="Résumé ✓", percentage=10,
            )),
            ProgressEvent(progress=GenerationProgress(
                step="quiz", message="Writing questions",
            )),
            CompleteEvent(result={"title": "Photosynthèse"}),
        ]

    def test_any_two_chunk_split_decodes_identically(self):
        expected = decode_all(THREE_EVENTS)

        for offset in range(len(THREE_EVENTS) + 1):
            split = decode_all(THREE_EVENTS[:offset], THREE_EVENTS[offset:])
            assert split == expected, f"split at byte {offset}"

    def test_byte_by_byte_delivery(self):
        parts = [THREE_EVENTS[i:i + 1] for i in range(len(THREE_EVENTS))]

        assert decode_all(*parts) == decode_all(THREE_EVENTS)

    def test_crlf_line_endings(self):
        raw = THREE_EVENTS.replace(b"\n", b"\r\n")

        assert decode_all(raw) == decode_all(THREE_EVENTS)

    def test_data_without_event_is_ignored(self):
        assert decode_all(b'data: {"step": "x"}\n\n') == []

    def test_event_is_reset_after_data_line(self):
        raw = b'event: progress\ndata: {"step": "a"}\ndata: {"step": "b"}\n'

        events = decode_all(raw)

        assert [e.progress.step for e in events] == ["a"]

    def test_malformed_progress_is_skipped(self):
        raw = (
            b"event: progress\ndata: {not json\n\n"
            b'event: progress\ndata: {"step": "ok"}\n\n'
        )

        events = decode_all(raw)

        assert len(events) == 1
        assert events[0].progress.step == "ok"

    def test_progress_with_wrong_shape_is_skipped(self):
        assert decode_all(b'event: progress\ndata: ["a", "b"]\n\n') == []

    def test_malformed_error_frame_is_generic_failure(self):
        assert decode_all(b"event: error\ndata: oops\n\n") == [
            ErrorEvent(error="Generation failed"),
        ]

    def test_unknown_events_and_comments_are_ignored(self):
        raw = b': keep-alive\n\nevent: heartbeat\ndata: {"t": 1}\n\n'

        assert decode_all(raw) == []

    def test_unterminated_last_line_is_flushed(self):
        raw = b'event: complete\ndata: {"title": "L"}'

        assert decode_all(raw) == [CompleteEvent(result={"title": "L"})]

    def test_null_complete_is_skipped(self):
        assert decode_all(b"event: complete\ndata: null\n\n") == []


class TestReadGenerationStream:
    @pytest.mark.asyncio
    async def test_progress_then_complete(self):
        seen: list[GenerationProgress] = []
        stream = chunks_of(
            b'event: progress\ndata: {"step":"a","message":"x"}\n\n',
            b'event: complete\ndata: {"title":"L"}\n\n',
        )

        result = await read_generation_stream(stream, on_progress=seen.append)

        assert result == {"title": "L"}
        assert seen == [GenerationProgress(step="a", message="x")]

    @pytest.mark.asyncio
    async def test_async_progress_callback_is_awaited(self):
        seen: list[str] = []

        async def on_progress(progress: GenerationProgress) -> None:
            seen.append(progress.step)

        result = await read_generation_stream(chunks_of(THREE_EVENTS), on_progress=on_progress)

        assert result == {"title": "Photosynthèse"}
        assert seen == ["outline", "quiz"]

    @pytest.mark.asyncio
    async def test_progress_only_stream_has_no_result(self):
        stream = chunks_of(b'event: progress\ndata: {"step":"a"}\n\n')

        with pytest.raises(NoResult, match="No result received from generation"):
            await read_generation_stream(stream)

    @pytest.mark.asyncio
    async def test_empty_stream_has_no_result(self):
        with pytest.raises(NoResult):
            await read_generation_stream(chunks_of())

    @pytest.mark.asyncio
    async def test_error_frame_raises_its_message(self):
        stream = chunks_of(
            b'event: progress\ndata: {"step":"a"}\n\n'
            b'event: error\ndata: {"error": "Quota exceeded"}\n\n'
        )

        with pytest.raises(GenerationFailed, match="Quota exceeded"):
            await read_generation_stream(stream)

    @pytest.mark.asyncio
    async def test_error_frame_without_message(self):
        with pytest.raises(GenerationFailed, match="Generation failed"):
            await read_generation_stream(chunks_of(b"event: error\ndata: {}\n\n"))

    @pytest.mark.asyncio
    async def test_first_complete_stops_reading(self):
        pulled: list[int] = []

        async def stream():
            pulled.append(1)
            yield b'event: complete\ndata: {"title": "first"}\n\n'
            pulled.append(2)
            yield b'event: complete\ndata: {"title": "second"}\n\n'

        assert await read_generation_stream(stream()) == {"title": "first"}
        assert pulled == [1]

    @pytest.mark.asyncio
    async def test_connection_drop_is_network_error(self):
        async def stream():
            yield b'event: progress\ndata: {"step":"a"}\n\n'
            raise httpx.ReadError("connection reset")

        with pytest.raises(NetworkError):
            await read_generation_stream(stream())
