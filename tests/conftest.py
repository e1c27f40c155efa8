"""Shared fixtures: a fake Ollama backend, a temporary store and the service."""
import json
from typing import List, Optional

import httpx
import pytest

from ragserve.llm_client import OllamaClient
from ragserve.rag.chunker import TextChunker
from ragserve.rag.embedder import Embedder
from ragserve.rag.service import RAGService
from ragserve.rag.store_faiss import FAISSVectorStore

KEYWORDS = ["sky", "blue", "grass", "green", "go", "created", "sea"]
DIMENSION = len(KEYWORDS) + 1

BASE_URL = "http://ollama.test"


def keyword_vector(text: str) -> List[float]:
    """Deterministic embedding: keyword counts plus a constant component."""
    words = text.lower().replace("?", " ").replace(".", " ").split()
    return [float(words.count(k)) for k in KEYWORDS] + [1.0]


def unit_vector(position: int, dimension: int = DIMENSION) -> List[float]:
    vector = [0.0] * dimension
    vector[position] = 1.0
    return vector


class InterruptedStream(httpx.AsyncByteStream):
    """Response body that fails after its first line."""

    def __init__(self, first_line: str):
        self.first_line = first_line

    async def __aiter__(self):
        yield (self.first_line + "\n").encode("utf-8")
        raise httpx.StreamClosed()


class FakeOllama:
    """In-process stand-in for the Ollama HTTP API."""

    def __init__(self):
        self.embedding_prompts: List[str] = []
        self.generate_payloads: List[dict] = []
        self.fail_embedding_at: Optional[int] = None
        self.embedding_override: Optional[dict] = None
        self.generate_status = 200
        self.interrupt_generation = False
        self.generate_lines = [
            '{"response": "Go", "done": false}',
            '{"response": " was", "done": false}',
            '{"response": " created", "done": false}',
            '{"response": "", "done": true}',
        ]
        self.models = ["llama3.2:latest", "nomic-embed-text:latest"]

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == "/api/tags":
            return httpx.Response(200, json={"models": [{"name": m} for m in self.models]})

        payload = json.loads(request.content)

        if request.url.path == "/api/embeddings":
            call_number = len(self.embedding_prompts)
            self.embedding_prompts.append(payload["prompt"])
            if call_number == self.fail_embedding_at:
                return httpx.Response(500, json={"error": "model runner crashed"})
            if self.embedding_override is not None:
                return httpx.Response(200, json=self.embedding_override)
            return httpx.Response(200, json={"embedding": keyword_vector(payload["prompt"])})

        if request.url.path == "/api/generate":
            self.generate_payloads.append(payload)
            if self.interrupt_generation:
                return httpx.Response(200, stream=InterruptedStream(self.generate_lines[0]))
            body = "".join(line + "\n" for line in self.generate_lines)
            return httpx.Response(self.generate_status, content=body.encode("utf-8"))

        return httpx.Response(404, json={"error": "not found"})


@pytest.fixture
def fake_ollama():
    return FakeOllama()


@pytest.fixture
async def http_client(fake_ollama):
    async with httpx.AsyncClient(transport=httpx.MockTransport(fake_ollama.handler)) as client:
        yield client


@pytest.fixture
def llm(http_client):
    return OllamaClient(http_client, base_url=BASE_URL)


@pytest.fixture
def embedder(llm):
    return Embedder(llm, model="nomic-embed-text", dimension=DIMENSION)


@pytest.fixture
async def store(tmp_path):
    vector_store = FAISSVectorStore(
        db_path=tmp_path / "fragments.sqlite",
        index_path=tmp_path / "fragments.index",
        dimension=DIMENSION,
    )
    await vector_store.init()
    yield vector_store
    await vector_store.close()


@pytest.fixture
def service(store, embedder, llm):
    return RAGService(
        store,
        embedder,
        llm,
        chat_model="llama3.2",
        chunker=TextChunker(chunk_size=4, chunk_overlap=2),
        default_top_k=5,
        max_top_k=10,
    )
