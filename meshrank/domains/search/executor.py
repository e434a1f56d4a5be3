"""
Vector Search Executor - Adapter between engine and SearchRepository.

Translates SearchOptions into tenant-scoped repository options and
repository hits back into SearchResult objects.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from meshrank.config.errors import RetrievalError

from .models import (
    DEFAULT_LIMIT,
    DEFAULT_MIN_SIMILARITY,
    EmbeddingVector,
    RepositoryResult,
    RepositoryResults,
    RepositorySearchOptions,
    SearchOptions,
    SearchResult,
    SearchResults,
)
from .ranking import clamp_score, rank

if TYPE_CHECKING:
    from uuid import UUID

    from .context import RequestContext
    from .contracts import SearchRepository

logger = logging.getLogger(__name__)

__all__ = ["VectorSearchExecutor"]

METADATA_FIELD_PREFIX = "metadata."


class VectorSearchExecutor:
    """
    Thin, logic-free adapter over a SearchRepository.

    Example:
        >>> executor = VectorSearchExecutor(repository)
        >>> results = await executor.search_by_vector(ctx, vector, SearchOptions(limit=5))
    """

    def __init__(self, repository: SearchRepository) -> None:
        self._repository = repository

    @staticmethod
    def to_repository_options(
        tenant_id: UUID,
        options: SearchOptions | None,
    ) -> RepositorySearchOptions:
        """Map engine options onto repository options for one tenant."""
        if options is None:
            return RepositorySearchOptions(
                tenant_id=tenant_id,
                limit=DEFAULT_LIMIT,
                min_similarity=DEFAULT_MIN_SIMILARITY,
                similarity_threshold=DEFAULT_MIN_SIMILARITY,
                max_results=DEFAULT_LIMIT,
            )

        metadata_filters: dict[str, Any] = dict(options.metadata_filters)
        content_types = list(options.content_types)
        if options.content_type and options.content_type not in content_types:
            content_types.append(options.content_type)
        if content_types:
            metadata_filters["content_types"] = content_types

        for search_filter in options.filters:
            if search_filter.field.startswith(METADATA_FIELD_PREFIX):
                field = search_filter.field[len(METADATA_FIELD_PREFIX):]
                metadata_filters[field] = search_filter.value

        return RepositorySearchOptions(
            tenant_id=tenant_id,
            limit=options.limit,
            offset=options.offset,
            min_similarity=options.min_similarity,
            similarity_threshold=options.min_similarity,
            metadata_filters=metadata_filters,
            content_types=content_types,
            ranking_algorithm="cosine",
            max_results=options.limit,
        )

    async def search_by_vector(
        self,
        ctx: RequestContext,
        vector: list[float],
        options: SearchOptions | None,
    ) -> SearchResults:
        """k-NN search for a query vector within the caller's tenant."""
        repo_options = self.to_repository_options(ctx.tenant_id, options)
        try:
            raw = await self._repository.search_by_vector(vector, repo_options)
        except RetrievalError:
            raise
        except Exception as e:
            raise RetrievalError(f"vector search failed: {e}") from e
        return self.to_search_results(ctx, raw, repo_options.limit)

    async def search_by_content_id(
        self,
        ctx: RequestContext,
        content_id: str,
        options: SearchOptions | None,
    ) -> SearchResults:
        """Items similar to a stored one ("more like this"), same tenant only."""
        repo_options = self.to_repository_options(ctx.tenant_id, options)
        try:
            raw = await self._repository.search_by_content_id(content_id, repo_options)
        except RetrievalError:
            raise
        except Exception as e:
            raise RetrievalError(
                f"content search failed: {e}", {"content_id": content_id}
            ) from e
        return self.to_search_results(ctx, raw, repo_options.limit)

    def to_search_results(
        self,
        ctx: RequestContext,
        raw: RepositoryResults | None,
        limit: int,
    ) -> SearchResults:
        """Convert repository hits, skipping missing entries and foreign tenants."""
        if raw is None or raw.results is None:
            return SearchResults.of([])

        results: list[SearchResult] = []
        for item in raw.results:
            if item is None:
                continue
            if item.tenant_id is not None and item.tenant_id != ctx.tenant_id:
                logger.warning(
                    "Dropping cross-tenant result %s tenant=%s correlation_id=%s",
                    item.id,
                    *ctx.log_tags(),
                )
                continue
            results.append(self._convert(item))

        ranked = rank(results, score=lambda r: r.score, identity=lambda r: r.content_id)
        return SearchResults.of(ranked[:limit], has_more=raw.has_more or len(ranked) > limit)

    @staticmethod
    def _convert(item: RepositoryResult) -> SearchResult:
        similarity = clamp_score(item.score) if item.score > 0 else 0.0
        metadata = dict(item.metadata or {})
        metadata["similarity"] = similarity
        if item.content and "content" not in metadata:
            metadata["content"] = item.content

        return SearchResult(
            content=EmbeddingVector(
                content_id=item.id,
                content_type=item.type,
                metadata=metadata,
            ),
            score=similarity,
            matches={"similarity": similarity},
        )
