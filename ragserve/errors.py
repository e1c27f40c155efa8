"""Error taxonomy for the retrieval pipeline.

Every error is scoped to one request. ``stage`` names the pipeline step that
failed and ``fragment_index`` (zero-based) points at the failing fragment
when a document was being indexed.
"""
from typing import Optional


class RAGError(Exception):
    """Base class for pipeline failures."""

    stage = "rag"

    def __init__(
        self,
        message: str,
        stage: Optional[str] = None,
        fragment_index: Optional[int] = None,
    ):
        self.message = message
        if stage is not None:
            self.stage = stage
        self.fragment_index = fragment_index
        super().__init__(str(self))

    def __str__(self) -> str:
        if self.fragment_index is not None:
            return f"{self.stage} fragment {self.fragment_index}: {self.message}"
        return self.message

    def to_dict(self) -> dict:
        return {
            "error": str(self),
            "stage": self.stage,
            "fragment_index": self.fragment_index,
        }


class ValidationError(RAGError):
    """Caller input is empty or malformed."""

    stage = "validation"


class EmbeddingError(RAGError):
    """The embedding backend was unreachable or returned an unusable response."""

    stage = "embedding"

    def __init__(
        self,
        message: str,
        stage: Optional[str] = None,
        fragment_index: Optional[int] = None,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
    ):
        self.status_code = status_code
        self.body = body
        super().__init__(message, stage=stage, fragment_index=fragment_index)


class StoreError(RAGError):
    """Persistence or retrieval failure in the vector store."""

    stage = "store"


class GenerationError(RAGError):
    """The generation backend was unreachable or sent malformed framing."""

    stage = "generation"
