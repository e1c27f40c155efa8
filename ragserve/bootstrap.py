"""Construction of the shared service graph."""
import httpx

from ragserve import config
from ragserve.llm_client import OllamaClient
from ragserve.rag.embedder import Embedder
from ragserve.rag.service import RAGService
from ragserve.rag.store_faiss import FAISSVectorStore


async def build_service(http_client: httpx.AsyncClient) -> RAGService:
    """Create and initialise the store, embedder and service from config.

    The caller owns ``http_client`` and must close it, and must close the
    service's store when done.
    """
    store = FAISSVectorStore()
    await store.init()

    llm = OllamaClient(http_client, base_url=config.OLLAMA_BASE_URL)
    embedder = Embedder(
        llm,
        model=config.EMBEDDING_MODEL,
        dimension=config.EMBEDDING_DIMENSION,
    )

    return RAGService(
        store,
        embedder,
        llm,
        chat_model=config.CHAT_MODEL,
        default_top_k=config.RETRIEVAL_TOP_K,
        max_top_k=config.RETRIEVAL_MAX_TOP_K,
    )
