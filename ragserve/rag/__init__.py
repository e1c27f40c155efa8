"""RAG (Retrieval-Augmented Generation) pipeline components.

This package contains modules for:
- Word-window chunking with overlap
- Embedding generation
- SQLite + FAISS vector storage
- Prompt assembly and streamed answer generation
"""
