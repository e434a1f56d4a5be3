"""
Search Contracts - Interfaces for collaborators of the search domain.

Collaborators are injected at construction time. Cancellation and deadlines
travel with the awaiting task, so none of these methods take a context.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable
from uuid import UUID

from .models import (
    CrossModelSearchRequest,
    CrossModelSearchResult,
    EmbeddingVector,
    ExpandedQuery,
    ExpansionOptions,
    KeywordHit,
    RepositoryResults,
    RepositorySearchOptions,
    RerankCandidate,
    RerankOptions,
)


@runtime_checkable
class EmbeddingService(Protocol):
    """Contract for embedding generation."""

    async def generate_embedding(
        self,
        text: str,
        content_type: str,
        model_hint: str = "",
    ) -> EmbeddingVector:
        """Embed text, optionally with a specific model."""
        ...


@runtime_checkable
class SearchRepository(Protocol):
    """Contract for tenant-scoped k-NN retrieval."""

    async def search_by_vector(
        self,
        vector: list[float],
        options: RepositorySearchOptions,
    ) -> RepositoryResults | None:
        """Nearest neighbours of a vector."""
        ...

    async def search_by_content_id(
        self,
        content_id: str,
        options: RepositorySearchOptions,
    ) -> RepositoryResults | None:
        """Nearest neighbours of a stored item ("more like this")."""
        ...


@runtime_checkable
class EmbeddingStore(Protocol):
    """Contract for the raw cross-model and full-text queries."""

    async def cross_model_search(
        self,
        request: CrossModelSearchRequest,
        target_dimension: int,
    ) -> list[CrossModelSearchResult]:
        """
        Dimension-normalized similarity search across all models.

        Returns results with only ``raw_similarity`` scored.
        """
        ...

    async def keyword_search(
        self,
        tsquery: str,
        tenant_id: UUID,
        limit: int,
        metadata_filter: dict[str, Any] | None = None,
    ) -> list[KeywordHit]:
        """Full-text search ranked by ts_rank_cd."""
        ...

    async def get_model_dimensions(self, model_name: str) -> int | None:
        """Dimension of a registered model, None when unknown."""
        ...


@runtime_checkable
class QueryExpander(Protocol):
    """Contract for query expansion strategies."""

    async def expand(
        self,
        query: str,
        options: ExpansionOptions,
    ) -> ExpandedQuery:
        """Produce query variants."""
        ...


@runtime_checkable
class Reranker(Protocol):
    """Contract for result reranking implementations."""

    async def rerank(
        self,
        query: str,
        candidates: list[RerankCandidate],
        options: RerankOptions,
    ) -> list[RerankCandidate]:
        """Rerank candidates, returning at most ``options.top_k``."""
        ...
