"""Tests for indexing and answering through the orchestrator."""
import asyncio

import pytest
from structlog.testing import capture_logs

from ragserve.errors import EmbeddingError, StoreError, ValidationError
from ragserve.rag.service import RAGService
from ragserve.rag.store import Fragment
from ragserve.rag.streaming import DONE, ERROR, TOKEN

SAMPLE = "the sky is blue the grass is green"


async def collect(stream):
    return [event async for event in stream]


@pytest.mark.asyncio
async def test_index_then_query_ranks_matching_fragment_first(service, store):
    result = await service.index_document(SAMPLE, "doc1")

    assert result.source == "doc1"
    assert result.fragments_indexed == 3
    assert await store.count() == 3

    fragments = await service.search("why is the sky blue", top_k=3)

    assert fragments[0].content == "the sky is blue"
    assert fragments[0].source == "doc1"
    assert [f.content for f in fragments[1:]] == ["is blue the grass", "the grass is green"]


@pytest.mark.asyncio
@pytest.mark.parametrize("content", ["", "   \n\t "])
async def test_empty_content_is_rejected_without_side_effects(service, store, fake_ollama, content):
    with pytest.raises(ValidationError):
        await service.index_document(content, "doc1")

    assert await store.count() == 0
    assert fake_ollama.embedding_prompts == []


@pytest.mark.asyncio
async def test_blank_source_defaults_to_inline_marker(service):
    result = await service.index_document("some inline text", "  ")

    assert result.source == "user_text"


@pytest.mark.asyncio
async def test_embedding_failure_keeps_earlier_fragments(service, store, fake_ollama):
    fake_ollama.fail_embedding_at = 1

    with pytest.raises(EmbeddingError) as excinfo:
        await service.index_document(SAMPLE, "doc1")

    assert excinfo.value.fragment_index == 1
    assert excinfo.value.stage == "embedding"
    assert excinfo.value.status_code == 500
    assert "fragment 1" in str(excinfo.value)

    assert await store.count() == 1
    remaining = await store.search([1.0] * 8, 10)
    assert [f.content for f in remaining] == ["the sky is blue"]


@pytest.mark.asyncio
async def test_store_failure_names_fragment(service, store):
    calls = []
    original_insert = store.insert

    async def failing_insert(content, source, vector):
        calls.append(content)
        if len(calls) == 3:
            raise StoreError("connection lost")
        return await original_insert(content, source, vector)

    store.insert = failing_insert

    with pytest.raises(StoreError) as excinfo:
        await service.index_document(SAMPLE, "doc1")

    assert excinfo.value.fragment_index == 2
    assert excinfo.value.stage == "storing"
    assert await store.count() == 2


@pytest.mark.asyncio
async def test_answer_streams_tokens_then_done(service, fake_ollama):
    await service.index_document(SAMPLE, "doc1")

    stream = await service.answer("who created the sky")
    assert stream.state == "started"

    events = await collect(stream)

    assert "".join(e.data for e in events if e.kind == TOKEN) == "Go was created"
    assert events[-1].kind == DONE
    assert stream.state == "done"

    payload = fake_ollama.generate_payloads[0]
    assert payload["model"] == "llama3.2"
    assert payload["stream"] is True
    assert "[1] the sky is blue" in payload["prompt"]
    assert "Question: who created the sky" in payload["prompt"]


@pytest.mark.asyncio
async def test_answer_with_empty_store_still_generates(service, fake_ollama):
    stream = await service.answer("anything at all")

    assert stream.fragments == []
    events = await collect(stream)
    assert events[-1].kind == DONE
    assert "[1]" not in fake_ollama.generate_payloads[0]["prompt"]


@pytest.mark.asyncio
async def test_answer_honours_top_k(service, fake_ollama):
    await service.index_document(SAMPLE, "doc1")

    stream = await service.answer("sky", top_k="1")

    assert len(stream.fragments) == 1
    await collect(stream)
    assert "[2]" not in fake_ollama.generate_payloads[0]["prompt"]


@pytest.mark.asyncio
@pytest.mark.parametrize("question", ["", "   "])
async def test_empty_question_is_rejected(service, fake_ollama, question):
    with pytest.raises(ValidationError):
        await service.answer(question)

    assert fake_ollama.embedding_prompts == []


@pytest.mark.asyncio
async def test_question_embedding_failure_raises_before_streaming(service, fake_ollama):
    fake_ollama.fail_embedding_at = 0

    with pytest.raises(EmbeddingError):
        await service.answer("sky")

    assert fake_ollama.generate_payloads == []


@pytest.mark.asyncio
async def test_generation_error_becomes_error_event(service, fake_ollama):
    fake_ollama.generate_lines = ['{"response": "Go", "done": false}', "not json"]

    stream = await service.answer("sky")
    events = await collect(stream)

    assert [e.kind for e in events] == [TOKEN, ERROR]
    assert "malformed" in events[-1].data
    assert stream.state == "error"


@pytest.mark.asyncio
async def test_stream_cannot_be_consumed_twice(service):
    stream = await service.answer("sky")
    await collect(stream)

    with pytest.raises(RuntimeError):
        await collect(stream)


@pytest.mark.asyncio
async def test_cancellation_stops_the_stream(service, fake_ollama):
    fake_ollama.generate_lines = [
        '{"response": "tok%d", "done": false}' % i for i in range(100)
    ]
    stream = await service.answer("sky")
    received = []

    async def consume():
        async for event in stream:
            received.append(event)
            if len(received) == 2:
                raise asyncio.CancelledError()

    with pytest.raises(asyncio.CancelledError):
        await consume()

    assert len(received) == 2
    assert stream.state == "streaming"


def test_resolve_top_k(service):
    assert service.resolve_top_k(None) == 5
    assert service.resolve_top_k("") == 5
    assert service.resolve_top_k("3") == 3
    assert service.resolve_top_k(7) == 7
    assert service.resolve_top_k(500) == 10

    for bad in ("zero", "0", -1, "1.5", True):
        with pytest.raises(ValidationError):
            service.resolve_top_k(bad)


def test_build_prompt_lists_fragments_in_rank_order():
    fragments = [
        Fragment(id=7, content="first", source="a", vector=[1.0]),
        Fragment(id=3, content="second", source="b", vector=[1.0]),
    ]

    prompt = RAGService.build_prompt(fragments, "what?")

    assert prompt.index("[1] first") < prompt.index("[2] second") < prompt.index("Question: what?")
    assert "ONLY on the context" in prompt
    assert prompt.endswith("Answer:")


@pytest.mark.asyncio
async def test_interrupted_generation_body_ends_with_error_event(service, fake_ollama):
    fake_ollama.interrupt_generation = True

    stream = await service.answer("sky")
    events = await collect(stream)

    assert [e.kind for e in events] == [TOKEN, ERROR]
    assert stream.state == "error"


@pytest.mark.asyncio
async def test_index_logs_chunk_statistics(service):
    with capture_logs() as logs:
        await service.index_document(SAMPLE, "doc1")

    started = next(entry for entry in logs if entry["event"] == "indexing_document")
    assert started["chunk_count"] == 3
    assert started["total_words"] == 12
    assert started["max_chunk_words"] == 4
