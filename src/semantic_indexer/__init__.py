"""Semantic indexer: batch embedding into Qdrant and semantic search."""

__version__ = "0.1.0"
