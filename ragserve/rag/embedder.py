"""Embedding generation for fragments and questions."""
from numbers import Real
from typing import List, Optional

import structlog

from ragserve import config
from ragserve.errors import EmbeddingError
from ragserve.llm_client import OllamaClient

logger = structlog.get_logger()


class Embedder:
    """Turns one piece of text into a fixed-length float vector.

    Holds no state beyond the shared client, so a single instance serves
    concurrent requests. There is no retry: a failed call is reported to
    the caller, who decides whether to re-issue the whole operation.
    """

    def __init__(
        self,
        client: OllamaClient,
        model: str = None,
        dimension: Optional[int] = None,
    ):
        self.client = client
        self.model = model or config.EMBEDDING_MODEL
        self.dimension = dimension

    async def embed(self, text: str) -> List[float]:
        """Embed a text fragment or question.

        Args:
            text: Text to embed

        Returns:
            Embedding vector

        Raises:
            EmbeddingError: If the backend fails or the vector is missing,
                malformed, empty or of the wrong dimension
        """
        data = await self.client.embeddings(prompt=text, model=self.model)

        embedding = data.get("embedding") if isinstance(data, dict) else None
        if not isinstance(embedding, list):
            logger.error("embedding_response_malformed", model=self.model)
            raise EmbeddingError("embeddings response has no 'embedding' list")

        if not embedding:
            logger.error("embedding_response_empty", model=self.model)
            raise EmbeddingError("ollama embeddings returned empty vector")

        if not all(
            isinstance(v, Real) and not isinstance(v, bool) for v in embedding
        ):
            raise EmbeddingError("embeddings response contains non-numeric values")

        if self.dimension is not None and len(embedding) != self.dimension:
            logger.error(
                "embedding_dimension_mismatch",
                model=self.model,
                expected=self.dimension,
                actual=len(embedding),
            )
            raise EmbeddingError(
                f"embedding dimension mismatch: expected {self.dimension}, "
                f"got {len(embedding)}"
            )

        logger.debug(
            "text_embedded",
            model=self.model,
            dimension=len(embedding),
            text_length=len(text),
        )

        return [float(v) for v in embedding]
