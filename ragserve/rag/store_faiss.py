"""FAISS vector store for semantic search.

Handles:
- Durable fragment rows in SQLite
- HNSW approximate index over cosine similarity
- Index persistence and rebuild from SQLite
- Dimension validation for inserts and queries
"""
import asyncio
import sqlite3
import threading
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import faiss
import numpy as np
import structlog

from ragserve import config, db
from ragserve.errors import StoreError
from ragserve.rag.store import Fragment, VectorStore

logger = structlog.get_logger()

INDEX_TYPE = "IDMap2,HNSWFlat,IP"


class FAISSVectorStore(VectorStore):
    """SQLite-backed fragment store with a FAISS HNSW similarity index.

    Vectors are L2-normalised before they enter the index, so the
    inner-product metric ranks by cosine similarity and the reported
    distance is ``1 - similarity``. Small stores are scanned exhaustively
    with the same ordering: ascending distance, then insertion order.
    """

    def __init__(
        self,
        db_path: Path = None,
        index_path: Path = None,
        dimension: int = None,
        hnsw_m: int = None,
        ef_search: int = None,
        exact_search_threshold: int = None,
    ):
        """Initialize the FAISS vector store.

        Args:
            db_path: SQLite database file (default from config)
            index_path: FAISS index file (default from config)
            dimension: Store-wide vector dimension (default from config)
            hnsw_m: HNSW graph degree (default from config)
            ef_search: HNSW search breadth (default from config)
            exact_search_threshold: Stores this small use a flat scan
        """
        self.db_path = db_path or config.DB_PATH
        self.index_path = index_path or config.VECTOR_INDEX_PATH
        self.dimension = dimension or config.EMBEDDING_DIMENSION
        self.hnsw_m = hnsw_m or config.HNSW_M
        self.ef_search = ef_search or config.HNSW_EF_SEARCH
        self.exact_search_threshold = (
            config.EXACT_SEARCH_THRESHOLD
            if exact_search_threshold is None
            else exact_search_threshold
        )

        self.index: Optional[faiss.Index] = None
        self._conn: Optional[sqlite3.Connection] = None
        self._thread_lock = threading.Lock()

        logger.info(
            "faiss_store_created",
            db_path=str(self.db_path),
            index_path=str(self.index_path),
            dimension=self.dimension,
        )

    def _locked(self, func: Callable, *args) -> Any:
        # Held for the whole worker run, even if the awaiting caller is cancelled
        with self._thread_lock:
            return func(*args)

    async def _run(self, operation: str, func: Callable, *args) -> Any:
        """Run blocking backend work in a thread, one operation at a time."""
        try:
            return await asyncio.to_thread(self._locked, func, *args)
        except StoreError:
            raise
        except (sqlite3.Error, RuntimeError, ValueError) as e:
            logger.error(
                "vector_store_operation_failed",
                operation=operation,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise StoreError(f"error {operation}: {e}") from e

    def _require_ready(self) -> None:
        if self.index is None or self._conn is None:
            raise StoreError("vector store not initialized, call init() first")

    def _new_index(self) -> faiss.Index:
        hnsw = faiss.IndexHNSWFlat(self.dimension, self.hnsw_m, faiss.METRIC_INNER_PRODUCT)
        hnsw.hnsw.efSearch = self.ef_search
        return faiss.IndexIDMap2(hnsw)

    def _set_ef_search(self, ef_search: int) -> None:
        hnsw = faiss.downcast_index(self.index.index)
        hnsw.hnsw.efSearch = ef_search

    def _prepare_vector(self, vector: List[float]) -> np.ndarray:
        """Validate a vector and return it normalised as a (1, d) float32 array."""
        array = np.asarray(vector, dtype=np.float32)

        if array.ndim != 1 or array.shape[0] != self.dimension:
            raise StoreError(
                f"vector dimension mismatch: expected {self.dimension}, "
                f"got {array.shape[0] if array.ndim == 1 else array.shape}"
            )

        if not np.all(np.isfinite(array)):
            raise StoreError("vector contains non-finite values")

        norm = float(np.linalg.norm(array))
        if norm == 0.0:
            raise StoreError("zero vector has no cosine distance")

        return (array / norm).reshape(1, -1)

    def _build_index(self) -> faiss.Index:
        """Rebuild the similarity index from the SQLite rows."""
        index = self._new_index()

        ids = []
        vectors = []
        for fragment_id, blob in db.iter_embeddings(self._conn):
            ids.append(fragment_id)
            vectors.append(np.frombuffer(blob, dtype=np.float32))

        if vectors:
            matrix = np.vstack(vectors).astype(np.float32)
            faiss.normalize_L2(matrix)
            index.add_with_ids(matrix, np.asarray(ids, dtype=np.int64))

        logger.info("faiss_index_rebuilt", vector_count=index.ntotal)
        return index

    def _init_sync(self) -> None:
        if self.index is not None:
            return

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = db.get_connection(self.db_path)

        try:
            db.init_database(conn)

            stored_dim = db.get_metadata(conn, "embedding_dimension")
            if stored_dim is None:
                db.set_metadata(conn, "embedding_dimension", str(self.dimension))
                db.set_metadata(conn, "index_type", INDEX_TYPE)
                conn.commit()
            elif int(stored_dim) != self.dimension:
                raise StoreError(
                    f"dimension mismatch: store was created with dim={stored_dim}, "
                    f"configured dim={self.dimension}. Please rebuild the store."
                )
        except Exception:
            conn.close()
            raise

        self._conn = conn
        row_count = db.get_fragment_count(conn)

        index = None
        if self.index_path.exists():
            try:
                index = faiss.read_index(str(self.index_path))
            except RuntimeError as e:
                logger.warning("faiss_index_unreadable", error=str(e))

            if index is not None and (
                not isinstance(index, faiss.IndexIDMap2)
                or index.d != self.dimension
                or index.ntotal != row_count
            ):
                logger.warning(
                    "faiss_index_stale",
                    index_dimension=index.d,
                    index_vectors=index.ntotal,
                    stored_fragments=row_count,
                )
                index = None

        self.index = index if index is not None else self._build_index()
        self._set_ef_search(self.ef_search)

        logger.info(
            "faiss_store_initialized",
            dimension=self.dimension,
            vector_count=self.index.ntotal,
            index_type=INDEX_TYPE,
        )

    async def init(self) -> None:
        """Create schema and load or rebuild the index. Idempotent."""
        await self._run("initializing store", self._init_sync)

    def _insert_sync(self, content: str, source: str, vector: List[float]) -> int:
        self._require_ready()

        raw = np.asarray(vector, dtype=np.float32)
        normalised = self._prepare_vector(vector)

        # The row is only committed once the index has accepted the vector
        added = False
        try:
            with self._conn:
                fragment_id = db.insert_fragment(self._conn, content, source, raw.tobytes())
                self.index.add_with_ids(
                    normalised, np.asarray([fragment_id], dtype=np.int64)
                )
                added = True
        except (sqlite3.Error, RuntimeError):
            if added:
                # Commit failed after the vector went in
                self.index = self._build_index()
                self._set_ef_search(self.ef_search)
            raise

        return fragment_id

    async def insert(self, content: str, source: str, vector: List[float]) -> int:
        """Persist one fragment.

        Raises:
            StoreError: On dimension mismatch, constraint violation or
                any backend failure
        """
        fragment_id = await self._run("inserting chunk", self._insert_sync, content, source, vector)

        logger.debug("fragment_inserted", fragment_id=fragment_id, source=source)
        return fragment_id

    def _rows_to_fragments(
        self, rows: Dict[int, Dict[str, Any]], distances: Dict[int, float]
    ) -> List[Fragment]:
        fragments = []
        for fragment_id, distance in distances.items():
            row = rows.get(fragment_id)
            if row is None:
                raise StoreError(f"fragment {fragment_id} present in index but not in database")
            fragments.append(
                Fragment(
                    id=fragment_id,
                    content=row["content"],
                    source=row["source"],
                    vector=np.frombuffer(row["embedding"], dtype=np.float32).tolist(),
                    distance=distance,
                )
            )
        fragments.sort(key=lambda f: (f.distance, f.id))
        return fragments

    def _exact_distances(self, query: np.ndarray) -> Dict[int, float]:
        ids = []
        vectors = []
        for fragment_id, blob in db.iter_embeddings(self._conn):
            ids.append(fragment_id)
            vectors.append(np.frombuffer(blob, dtype=np.float32))

        matrix = np.vstack(vectors).astype(np.float32)
        faiss.normalize_L2(matrix)
        similarities = matrix @ query[0]
        return {fid: 1.0 - float(sim) for fid, sim in zip(ids, similarities)}

    def _ann_distances(self, query: np.ndarray, k: int) -> Dict[int, float]:
        self._set_ef_search(max(self.ef_search, k))
        similarities, indices = self.index.search(query, k)
        return {
            int(fid): 1.0 - float(sim)
            for fid, sim in zip(indices[0], similarities[0])
            if fid != -1
        }

    def _search_sync(self, query_vector: List[float], top_k: int) -> List[Fragment]:
        self._require_ready()
        query = self._prepare_vector(query_vector)

        total = self.index.ntotal
        if top_k <= 0 or total == 0:
            return []

        if total <= self.exact_search_threshold:
            distances = self._exact_distances(query)
        else:
            distances = self._ann_distances(query, min(top_k, total))

        rows = db.get_fragments_by_ids(self._conn, list(distances))
        return self._rows_to_fragments(rows, distances)[:top_k]

    async def search(self, query_vector: List[float], top_k: int) -> List[Fragment]:
        """Search for the fragments nearest to a query vector.

        Args:
            query_vector: Query embedding
            top_k: Maximum number of results

        Returns:
            Fragments ordered by ascending cosine distance, ties by ID

        Raises:
            StoreError: On dimension mismatch or backend failure
        """
        fragments = await self._run("performing vector search", self._search_sync, query_vector, top_k)

        logger.info(
            "vector_search_completed",
            top_k=top_k,
            results_found=len(fragments),
            top_distance=fragments[0].distance if fragments else None,
        )

        return fragments

    def _count_sync(self) -> int:
        self._require_ready()
        return db.get_fragment_count(self._conn)

    async def count(self) -> int:
        return await self._run("counting fragments", self._count_sync)

    def _save_sync(self) -> None:
        if self.index is None:
            return
        self.index_path.parent.mkdir(parents=True, exist_ok=True)
        faiss.write_index(self.index, str(self.index_path))
        logger.info(
            "faiss_index_saved",
            index_path=str(self.index_path),
            vector_count=self.index.ntotal,
        )

    def _close_sync(self) -> None:
        self._save_sync()
        if self._conn is not None:
            self._conn.close()
        self._conn = None
        self.index = None

    async def close(self) -> None:
        """Persist the index and close the database connection."""
        await self._run("closing store", self._close_sync)

    def get_stats(self) -> Dict[str, Any]:
        """Get statistics about the vector store.

        Returns:
            Dictionary with store statistics
        """
        if self.index is None:
            return {
                "initialized": False,
                "vector_count": 0,
                "dimension": self.dimension,
            }

        return {
            "initialized": True,
            "vector_count": self.index.ntotal,
            "dimension": self.dimension,
            "index_type": INDEX_TYPE,
            "index_exists_on_disk": self.index_path.exists(),
        }
