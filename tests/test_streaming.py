"""Tests for the generation relay and SSE framing."""
import pytest

from ragserve.errors import GenerationError
from ragserve.rag.streaming import DONE, ERROR, TOKEN, StreamEvent, format_sse, relay_generation


async def aiter(items):
    for item in items:
        yield item


async def collect(increments):
    return [event async for event in relay_generation(aiter(increments))]


@pytest.mark.asyncio
async def test_tokens_are_forwarded_in_order_until_done():
    events = await collect([
        {"response": "Go", "done": False},
        {"response": " was", "done": False},
        {"response": " created", "done": False},
        {"response": "", "done": True},
    ])

    assert events[-1] == StreamEvent(DONE, "done")
    tokens = [e.data for e in events if e.kind == TOKEN]
    assert "".join(tokens) == "Go was created"


@pytest.mark.asyncio
async def test_empty_increments_are_not_forwarded():
    events = await collect([
        {"response": "", "done": False},
        {"response": "a", "done": False},
        {"response": "", "done": True},
    ])

    assert events == [StreamEvent(TOKEN, "a"), StreamEvent(DONE, "done")]


@pytest.mark.asyncio
async def test_final_increment_text_is_forwarded_before_done():
    events = await collect([{"response": "all at once", "done": True}])

    assert events == [StreamEvent(TOKEN, "all at once"), StreamEvent(DONE, "done")]


@pytest.mark.asyncio
async def test_increments_after_done_are_ignored():
    events = await collect([
        {"response": "a", "done": True},
        {"response": "late", "done": False},
    ])

    assert [e.data for e in events] == ["a", "done"]


@pytest.mark.asyncio
async def test_end_of_stream_without_done_flag_completes():
    events = await collect([{"response": "a", "done": False}])

    assert events == [StreamEvent(TOKEN, "a"), StreamEvent(DONE, "done")]


@pytest.mark.asyncio
@pytest.mark.parametrize("increment", [["not", "an", "object"], {"response": 42, "done": False}])
async def test_malformed_increment_raises(increment):
    with pytest.raises(GenerationError):
        await collect([increment])


def test_format_token_escapes_newlines():
    assert format_sse(StreamEvent(TOKEN, "line one\nline two")) == "data: line one\\nline two\n\n"


def test_format_done():
    assert format_sse(StreamEvent(DONE, "done")) == "event: done\ndata: done\n\n"


def test_format_error_flattens_newlines():
    assert format_sse(StreamEvent(ERROR, "bad\nthing")) == "event: error\ndata: bad thing\n\n"
