"""Retrieval-augmented question answering over indexed plain-text documents."""

__version__ = "0.1.0"
