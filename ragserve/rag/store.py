"""Vector store contract shared by all backends."""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class Fragment:
    """One stored chunk of source text with its embedding."""

    id: int
    content: str
    source: str
    vector: List[float] = field(repr=False)
    distance: Optional[float] = None


class VectorStore(ABC):
    """Durable fragment storage with nearest-neighbor search.

    Implementations keep their distance operator and index type private;
    callers only rely on ``search`` returning fragments nearest first.
    """

    @abstractmethod
    async def init(self) -> None:
        """Ensure schema and similarity index exist. Safe to call repeatedly."""

    @abstractmethod
    async def insert(self, content: str, source: str, vector: List[float]) -> int:
        """Persist one fragment and return its ID."""

    @abstractmethod
    async def search(self, query_vector: List[float], top_k: int) -> List[Fragment]:
        """Return at most top_k fragments ordered by ascending cosine distance."""

    @abstractmethod
    async def count(self) -> int:
        """Number of stored fragments."""

    async def close(self) -> None:
        """Release backend resources."""

    def get_stats(self) -> Dict[str, Any]:
        """Backend statistics for readiness reporting."""
        return {}
