"""Ollama API client wrapper with error handling."""
import json
from typing import Any, AsyncIterator, Dict, List

import httpx
import structlog

from ragserve import config
from ragserve.errors import EmbeddingError, GenerationError

logger = structlog.get_logger()


class OllamaClient:
    """Async client for the Ollama embeddings and generate endpoints.

    The underlying ``httpx.AsyncClient`` is owned by the caller and shared
    by every request the application serves.
    """

    def __init__(self, http_client: httpx.AsyncClient, base_url: str = None):
        """Initialize Ollama client.

        Args:
            http_client: Shared async HTTP client
            base_url: Ollama API base URL (defaults to config.OLLAMA_BASE_URL)
        """
        self.http_client = http_client
        self.base_url = (base_url or config.OLLAMA_BASE_URL).rstrip("/")

    async def embeddings(self, prompt: str, model: str = None) -> Dict[str, Any]:
        """Generate embeddings for a text prompt.

        Args:
            prompt: Text to embed
            model: Model to use (defaults to config.EMBEDDING_MODEL)

        Returns:
            Decoded response body, expected to hold an 'embedding' list

        Raises:
            EmbeddingError: If Ollama is unreachable, answers with a
                non-success status, or returns a body that is not JSON
        """
        model = model or config.EMBEDDING_MODEL

        payload = {
            "model": model,
            "prompt": prompt,
        }

        logger.debug(
            "ollama_embedding_request",
            model=model,
            prompt_length=len(prompt),
        )

        try:
            response = await self.http_client.post(
                f"{self.base_url}/api/embeddings",
                json=payload,
            )
        except httpx.HTTPError as e:
            logger.error(
                "ollama_embedding_connection_error",
                error=str(e),
                error_type=type(e).__name__,
                base_url=self.base_url,
            )
            raise EmbeddingError(f"error calling ollama embeddings: {e}") from e

        if not response.is_success:
            body = response.text
            logger.error(
                "ollama_embedding_http_error",
                status_code=response.status_code,
                body=body[:500],
            )
            raise EmbeddingError(
                f"ollama embeddings status {response.status_code}: {body}",
                status_code=response.status_code,
                body=body,
            )

        try:
            data = response.json()
        except ValueError as e:
            logger.error("ollama_embedding_invalid_json", error=str(e))
            raise EmbeddingError(f"error parsing embeddings JSON: {e}") from e

        return data

    async def generate_stream(
        self, prompt: str, model: str = None
    ) -> AsyncIterator[Any]:
        """Stream a completion from /api/generate.

        Ollama answers with newline-delimited JSON objects, each carrying a
        'response' fragment and a 'done' flag. Increments are decoded and
        yielded one at a time; the HTTP response is closed as soon as the
        caller stops iterating.

        Args:
            prompt: Fully assembled prompt
            model: Model to use (defaults to config.CHAT_MODEL)

        Yields:
            Decoded JSON increments

        Raises:
            GenerationError: On connection failure, non-success status or
                a line that is not valid JSON
        """
        model = model or config.CHAT_MODEL

        payload = {
            "model": model,
            "prompt": prompt,
            "stream": True,
        }

        logger.info(
            "ollama_generate_request",
            model=model,
            prompt_length=len(prompt),
        )

        try:
            async with self.http_client.stream(
                "POST", f"{self.base_url}/api/generate", json=payload
            ) as response:
                if not response.is_success:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    logger.error(
                        "ollama_generate_http_error",
                        status_code=response.status_code,
                        body=body[:500],
                    )
                    raise GenerationError(
                        f"ollama generate status {response.status_code}: {body}"
                    )

                async for line in response.aiter_lines():
                    if not line.strip():
                        continue
                    try:
                        increment = json.loads(line)
                    except json.JSONDecodeError as e:
                        logger.error(
                            "ollama_generate_invalid_json",
                            error=str(e),
                            line_preview=line[:100],
                        )
                        raise GenerationError(
                            f"malformed generation increment: {e}"
                        ) from e
                    yield increment

        except (httpx.HTTPError, httpx.StreamError) as e:
            logger.error(
                "ollama_generate_connection_error",
                error=str(e),
                error_type=type(e).__name__,
                base_url=self.base_url,
            )
            raise GenerationError(f"error calling ollama: {e}") from e

    async def list_models(self) -> List[str]:
        """List all available Ollama models.

        Returns:
            List of model names

        Raises:
            httpx.HTTPError: On API errors
        """
        try:
            response = await self.http_client.get(f"{self.base_url}/api/tags")
            response.raise_for_status()
            data = response.json()
            return [m["name"] for m in data.get("models", [])]
        except httpx.HTTPError as e:
            logger.error("ollama_list_models_error", error=str(e))
            raise
