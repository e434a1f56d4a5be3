"""
HTTP Adapters - Remote embedding and rerank services.
"""

from .embedding import EmbeddingServiceClient
from .reranker import RerankServiceClient

__all__ = ["EmbeddingServiceClient", "RerankServiceClient"]
