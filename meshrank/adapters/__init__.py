"""
Adapters - External service integrations.

All database and network calls are wrapped here to isolate the search
domain from third-party changes.
"""

from .http import EmbeddingServiceClient, RerankServiceClient
from .postgres import PgEmbeddingStore

__all__ = [
    "PgEmbeddingStore",
    "EmbeddingServiceClient",
    "RerankServiceClient",
]
