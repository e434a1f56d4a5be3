"""
Postgres Adapter - pgvector-backed search repository and embedding store.
"""

from .store import PgEmbeddingStore

__all__ = ["PgEmbeddingStore"]
