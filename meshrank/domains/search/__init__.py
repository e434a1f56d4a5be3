"""
Search Domain - Multi-tenant semantic search and ranking.

This domain handles:
- Vector and "more like this" search (tenant-scoped)
- Query expansion with concurrent multi-query fan-out
- Cross-model score normalization
- Hybrid semantic + keyword blending
- Optional reranking with graceful degradation
"""

from .context import RequestContext
from .contracts import (
    EmbeddingService,
    EmbeddingStore,
    QueryExpander,
    Reranker,
    SearchRepository,
)
from .coordinator import SearchCoordinator
from .hybrid import HybridMerger
from .metrics import SearchMetrics
from .models import (
    CrossModelSearchRequest,
    CrossModelSearchResult,
    EmbeddingVector,
    HybridSearchRequest,
    HybridSearchResult,
    SearchFilter,
    SearchOptions,
    SearchResult,
    SearchResults,
    TaskType,
)
from .normalizer import CrossModelNormalizer

__all__ = [
    # Engine
    "SearchCoordinator",
    "RequestContext",
    "SearchMetrics",
    "CrossModelNormalizer",
    "HybridMerger",
    # Contracts
    "EmbeddingService",
    "SearchRepository",
    "EmbeddingStore",
    "QueryExpander",
    "Reranker",
    # Models
    "SearchOptions",
    "SearchFilter",
    "SearchResult",
    "SearchResults",
    "EmbeddingVector",
    "CrossModelSearchRequest",
    "CrossModelSearchResult",
    "HybridSearchRequest",
    "HybridSearchResult",
    "TaskType",
]
