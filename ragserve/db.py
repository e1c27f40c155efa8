"""SQLite helpers for the fragment record store.

SQLite holds the durable copy of every fragment:
- Fragment text, provenance and embedding bytes
- Store-wide metadata such as the vector dimension

The FAISS index is derived from these rows and can always be rebuilt.
"""
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

import structlog

logger = structlog.get_logger()


def get_connection(db_path: Path) -> sqlite3.Connection:
    """Get a connection to the SQLite database.

    Returns:
        sqlite3.Connection with row_factory set to sqlite3.Row
    """
    conn = sqlite3.connect(db_path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    return conn


def init_database(conn: sqlite3.Connection) -> None:
    """Initialize the database schema.

    Creates tables if they don't exist:
    - fragments: chunk text, source and embedding bytes
    - store_metadata: key/value settings of the store
    """
    cursor = conn.cursor()

    try:
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS fragments (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                content TEXT NOT NULL CHECK (content <> ''),
                source TEXT NOT NULL,
                embedding BLOB NOT NULL,
                created_at TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS store_metadata (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_fragments_source
            ON fragments(source)
        """)

        conn.commit()

    except sqlite3.Error as e:
        conn.rollback()
        logger.error("database_init_failed", error=str(e))
        raise


def get_metadata(conn: sqlite3.Connection, key: str) -> Optional[str]:
    row = conn.execute(
        "SELECT value FROM store_metadata WHERE key = ?", (key,)
    ).fetchone()
    return row["value"] if row else None


def set_metadata(conn: sqlite3.Connection, key: str, value: str) -> None:
    conn.execute(
        "INSERT OR REPLACE INTO store_metadata (key, value) VALUES (?, ?)",
        (key, value),
    )


def insert_fragment(
    conn: sqlite3.Connection,
    content: str,
    source: str,
    embedding: bytes,
) -> int:
    """Insert a fragment row without committing.

    The caller owns the transaction so the row can be rolled back if the
    vector index rejects the embedding.

    Args:
        conn: Open connection
        content: Fragment text
        source: Originating document identifier
        embedding: float32 vector bytes

    Returns:
        ID of the inserted fragment row
    """
    cursor = conn.execute(
        """
        INSERT INTO fragments (content, source, embedding, created_at)
        VALUES (?, ?, ?, ?)
        """,
        (content, source, embedding, datetime.now(timezone.utc).isoformat()),
    )
    return cursor.lastrowid


def get_fragments_by_ids(
    conn: sqlite3.Connection, fragment_ids: List[int]
) -> Dict[int, Dict[str, Any]]:
    """Retrieve fragments by ID.

    Args:
        conn: Open connection
        fragment_ids: IDs to fetch

    Returns:
        Mapping of fragment ID to row dictionary
    """
    if not fragment_ids:
        return {}

    placeholders = ",".join("?" * len(fragment_ids))
    rows = conn.execute(
        f"""
        SELECT id, content, source, embedding, created_at
        FROM fragments
        WHERE id IN ({placeholders})
        """,
        fragment_ids,
    ).fetchall()

    return {row["id"]: dict(row) for row in rows}


def iter_embeddings(conn: sqlite3.Connection) -> Iterator[Tuple[int, bytes]]:
    """Yield (id, embedding bytes) for every fragment in insertion order."""
    cursor = conn.execute("SELECT id, embedding FROM fragments ORDER BY id")
    for row in cursor:
        yield row["id"], row["embedding"]


def get_fragment_count(conn: sqlite3.Connection) -> int:
    """Get the total number of stored fragments."""
    return conn.execute("SELECT COUNT(*) FROM fragments").fetchone()[0]
