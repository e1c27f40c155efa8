"""Retrieval orchestration: indexing documents and answering questions.

Indexing runs chunk -> embed -> insert one fragment at a time. Answering
runs embed -> search -> prompt -> streamed generation. Each call is
strictly sequential; concurrency only exists between calls.
"""
from dataclasses import dataclass
from typing import AsyncIterator, List, Optional, Union

import structlog

from ragserve import config
from ragserve.errors import EmbeddingError, GenerationError, StoreError, ValidationError
from ragserve.llm_client import OllamaClient
from ragserve.rag.chunker import TextChunker
from ragserve.rag.embedder import Embedder
from ragserve.rag.store import Fragment, VectorStore
from ragserve.rag.streaming import DONE, ERROR, StreamEvent, relay_generation

logger = structlog.get_logger()

PROMPT_INSTRUCTIONS = (
    "Answer the question based ONLY on the context provided. "
    "If the information is not in the context, say that you do not have "
    "enough information."
)


@dataclass
class IndexResult:
    """Outcome of indexing one document."""

    source: str
    fragments_indexed: int


class AnswerStream:
    """Streamed answer for one question.

    Retrieval has already happened when this object exists; iterating it
    starts generation. The stream moves from ``started`` to ``streaming``
    and ends in ``done`` or ``error``. It cannot be iterated twice.
    """

    def __init__(
        self,
        llm: OllamaClient,
        model: str,
        prompt: str,
        fragments: List[Fragment],
    ):
        self.llm = llm
        self.model = model
        self.prompt = prompt
        self.fragments = fragments
        self.state = "started"

    def __aiter__(self) -> AsyncIterator[StreamEvent]:
        if self.state != "started":
            raise RuntimeError("answer stream already consumed; issue a new query")
        self.state = "streaming"
        return self._events()

    async def _events(self) -> AsyncIterator[StreamEvent]:
        increments = self.llm.generate_stream(self.prompt, model=self.model)
        token_count = 0
        try:
            async for event in relay_generation(increments):
                if event.kind == DONE:
                    self.state = "done"
                else:
                    token_count += 1
                yield event
        except GenerationError as e:
            logger.error(
                "answer_stream_failed",
                error=str(e),
                tokens_sent=token_count,
            )
            self.state = "error"
            yield StreamEvent(ERROR, str(e))
        finally:
            await increments.aclose()

        logger.info("answer_stream_finished", state=self.state, tokens_sent=token_count)


class RAGService:
    """Orchestrates chunking, embeddings, vector storage and generation.

    Every collaborator is injected so the HTTP layer, scripts and tests
    decide which clients and stores are shared.
    """

    def __init__(
        self,
        store: VectorStore,
        embedder: Embedder,
        llm: OllamaClient,
        chat_model: str = None,
        chunker: Optional[TextChunker] = None,
        default_top_k: int = None,
        max_top_k: int = None,
    ):
        self.store = store
        self.embedder = embedder
        self.llm = llm
        self.chat_model = chat_model or config.CHAT_MODEL
        self.chunker = chunker or TextChunker()
        self.default_top_k = default_top_k or config.RETRIEVAL_TOP_K
        self.max_top_k = max_top_k or config.RETRIEVAL_MAX_TOP_K

    async def index_document(self, content: str, source: str = None) -> IndexResult:
        """Chunk the content, embed each chunk and store it.

        Fragments are processed in order and nothing is rolled back: if
        fragment i fails, fragments 0..i-1 stay stored and the error names
        index i.

        Args:
            content: Document text
            source: Originating filename (defaults to the inline-text marker)

        Returns:
            IndexResult with the number of fragments stored

        Raises:
            ValidationError: If content is empty
            EmbeddingError: If a fragment cannot be embedded
            StoreError: If a fragment cannot be stored
        """
        if not content or not content.strip():
            raise ValidationError("no text or file provided")

        source = (source or "").strip() or config.INLINE_TEXT_SOURCE
        chunks = self.chunker.chunk_text(content)

        logger.info(
            "indexing_document",
            source=source,
            content_length=len(content),
            **self.chunker.get_chunk_stats(chunks),
        )

        for i, chunk in enumerate(chunks):
            try:
                vector = await self.embedder.embed(chunk)
            except EmbeddingError as e:
                logger.error(
                    "fragment_embedding_failed",
                    source=source,
                    fragment_index=i,
                    error=str(e),
                )
                raise EmbeddingError(
                    e.message,
                    stage="embedding",
                    fragment_index=i,
                    status_code=e.status_code,
                    body=e.body,
                ) from e

            try:
                await self.store.insert(chunk, source, vector)
            except StoreError as e:
                logger.error(
                    "fragment_storing_failed",
                    source=source,
                    fragment_index=i,
                    error=str(e),
                )
                raise StoreError(e.message, stage="storing", fragment_index=i) from e

        logger.info("document_indexed", source=source, fragments_indexed=len(chunks))
        return IndexResult(source=source, fragments_indexed=len(chunks))

    def resolve_top_k(self, value: Union[int, str, None]) -> int:
        """Turn an optional caller override into a usable top-K.

        Raises:
            ValidationError: If the value is not a positive integer
        """
        if value is None or (isinstance(value, str) and not value.strip()):
            return self.default_top_k

        if isinstance(value, bool):
            raise ValidationError(f"invalid top-k value: {value!r}")

        try:
            top_k = int(value)
        except (TypeError, ValueError):
            raise ValidationError(f"invalid top-k value: {value!r}")

        if top_k < 1:
            raise ValidationError(f"top-k must be at least 1, got {top_k}")

        if top_k > self.max_top_k:
            logger.info("top_k_clamped", requested=top_k, max_top_k=self.max_top_k)
            return self.max_top_k

        return top_k

    async def search(self, question: str, top_k: int = None) -> List[Fragment]:
        """Embed a question and return the nearest stored fragments.

        An empty store is not an error; the result is simply empty.

        Raises:
            ValidationError: If the question is empty
            EmbeddingError: If the question cannot be embedded
            StoreError: If the search fails
        """
        if not question or not question.strip():
            raise ValidationError("missing question")

        top_k = self.default_top_k if top_k is None else top_k

        vector = await self.embedder.embed(question)
        fragments = await self.store.search(vector, top_k)

        logger.info(
            "context_retrieved",
            question_length=len(question),
            top_k=top_k,
            fragments_found=len(fragments),
        )
        return fragments

    @staticmethod
    def build_prompt(fragments: List[Fragment], question: str) -> str:
        """Assemble the grounded prompt.

        Fragments are listed in rank order, numbered from 1, followed by the
        question and the instruction to answer only from that context.
        """
        parts = ["Relevant context:\n\n"]
        for rank, fragment in enumerate(fragments, 1):
            parts.append(f"[{rank}] {fragment.content}\n\n")

        parts.append(f"\nQuestion: {question}\n")
        parts.append(f"Instructions: {PROMPT_INSTRUCTIONS}\n")
        parts.append("Answer:")
        return "".join(parts)

    async def answer(self, question: str, top_k: Union[int, str, None] = None) -> AnswerStream:
        """Retrieve context for a question and prepare the streamed answer.

        Validation, embedding and retrieval errors are raised here, before
        any event is produced. Generation errors are reported inside the
        stream as an error event.

        Args:
            question: User question
            top_k: Optional override for the number of fragments retrieved

        Returns:
            AnswerStream yielding StreamEvent objects
        """
        question = (question or "").strip()
        if not question:
            raise ValidationError("missing question")

        resolved_top_k = self.resolve_top_k(top_k)
        fragments = await self.search(question, resolved_top_k)
        prompt = self.build_prompt(fragments, question)

        return AnswerStream(self.llm, self.chat_model, prompt, fragments)
