"""
Search Coordinator - Sequences every stage of a search call.

Validate -> [Expand] -> [Fanout] -> EmbedIfNeeded -> Retrieve -> [Rerank] -> Return

Exposes five operations: search, search_by_vector, search_by_content_id,
cross_model_search and hybrid_search. Every stage is timed, counted and
logged with the caller's tenant and correlation id.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Iterator
from contextlib import asynccontextmanager, contextmanager
from typing import TYPE_CHECKING, Any

from meshrank.config import Settings, get_settings
from meshrank.config.errors import (
    EmbeddingError,
    ErrorCode,
    MeshRankError,
    RetrievalError,
    ValidationError,
)

from .executor import VectorSearchExecutor
from .fanout import MultiQueryFanout
from .hybrid import HybridMerger, build_tsquery, keyword_score_from_rank
from .metrics import SearchMetrics
from .models import (
    DEFAULT_LIMIT,
    DEFAULT_MIN_SIMILARITY,
    MAX_LIMIT,
    CrossModelSearchRequest,
    CrossModelSearchResult,
    EmbeddingVector,
    ExpansionOptions,
    ExpansionType,
    HybridSearchRequest,
    HybridSearchResult,
    SearchOptions,
    SearchResults,
)
from .normalizer import CrossModelNormalizer
from .ranking import rank
from .rerank import RerankAdapter

if TYPE_CHECKING:
    from uuid import UUID

    from .context import RequestContext
    from .contracts import (
        EmbeddingService,
        EmbeddingStore,
        QueryExpander,
        Reranker,
        SearchRepository,
    )

logger = logging.getLogger(__name__)

__all__ = ["SearchCoordinator"]

QUERY_CONTENT_TYPE = "search_query"
DEFAULT_EXPANSION_TYPES = [ExpansionType.SYNONYM, ExpansionType.DECOMPOSE]


def _clamp_limit(limit: int) -> int:
    if limit <= 0:
        return DEFAULT_LIMIT
    return min(limit, MAX_LIMIT)


class SearchCoordinator:
    """
    Top-level search engine.

    Example:
        >>> coordinator = SearchCoordinator(embedder, repository, store=pg_store)
        >>> ctx = RequestContext.create(tenant_id)
        >>> results = await coordinator.search(ctx, "idempotent webhook retries")
    """

    def __init__(
        self,
        embedding_service: EmbeddingService,
        repository: SearchRepository,
        store: EmbeddingStore | None = None,
        expander: QueryExpander | None = None,
        reranker: Reranker | None = None,
        normalizer: CrossModelNormalizer | None = None,
        metrics: SearchMetrics | None = None,
        settings: Settings | None = None,
    ) -> None:
        """
        Initialize coordinator.

        Args:
            embedding_service: Generates query embeddings
            repository: Tenant-scoped k-NN repository
            store: Relational store for cross-model and keyword queries
            expander: Optional query expander
            reranker: Optional reranker
            normalizer: Cross-model normalizer (default tables when omitted)
            metrics: Metrics sink (private registry when omitted)
            settings: Engine settings
        """
        self._settings = settings or get_settings()
        self._embedder = embedding_service
        self._store = store
        self._expander = expander
        self._normalizer = normalizer or CrossModelNormalizer()
        self._metrics = metrics or SearchMetrics()
        self._executor = VectorSearchExecutor(repository)
        self._merger = HybridMerger()
        self._fanout = MultiQueryFanout(
            self._search_single,
            max_concurrency=self._settings.fanout_max_concurrency,
            metrics=self._metrics,
        )
        self._reranker = RerankAdapter(reranker, self._metrics) if reranker else None

    @property
    def metrics(self) -> SearchMetrics:
        return self._metrics

    # --- Public operations ---

    async def search(
        self,
        ctx: RequestContext,
        text: str,
        options: SearchOptions | None = None,
    ) -> SearchResults:
        """Semantic search for free text, with optional expansion and reranking."""
        options = options or SearchOptions()
        async with self._operation("text", ctx, query_length=len(text or "")) as deadline:
            if not text or not text.strip():
                raise ValidationError("search text cannot be empty")

            queries = [text]
            if options.use_query_expansion and self._expander is not None:
                queries = await self._expand(ctx, text, options)

            if len(queries) > 1:
                # Variants enforce the deadline themselves so finished ones still merge
                deadline.reschedule(None)
                with self._stage("text", "fanout", ctx):
                    results = await self._fanout.fanout(ctx, queries, options)
                self._rearm(deadline, ctx)
            else:
                results = await self._search_single(ctx, text, options)

            if options.use_reranking:
                if ctx.expired:
                    self._metrics.record_degradation("rerank")
                    logger.warning(
                        "Deadline reached before reranking, returning merged results "
                        "tenant=%s correlation_id=%s",
                        *ctx.log_tags(),
                    )
                else:
                    results = await self._apply_rerank(ctx, "text", text, results, options)

            logger.debug(
                "Text search completed: variants=%d results=%d tenant=%s correlation_id=%s",
                len(queries),
                len(results.results),
                *ctx.log_tags(),
            )
            return results

    async def search_by_vector(
        self,
        ctx: RequestContext,
        vector: list[float],
        options: SearchOptions | None = None,
    ) -> SearchResults:
        """Search with a pre-computed query vector."""
        options = options or SearchOptions()
        async with self._operation("vector", ctx, vector_dimensions=len(vector or [])):
            if not vector:
                raise ValidationError("search vector cannot be empty")

            with self._stage("vector", "retrieve", ctx):
                results = await self._executor.search_by_vector(ctx, list(vector), options)

            if options.use_reranking and options.rerank_query:
                results = await self._apply_rerank(
                    ctx, "vector", options.rerank_query, results, options
                )
            return results

    async def search_by_content_id(
        self,
        ctx: RequestContext,
        content_id: str,
        options: SearchOptions | None = None,
    ) -> SearchResults:
        """Find items similar to a stored content item, within the caller's tenant."""
        options = options or SearchOptions()
        async with self._operation("content_id", ctx, content_id=content_id):
            if not content_id or not content_id.strip():
                raise ValidationError("content ID cannot be empty")

            with self._stage("content_id", "retrieve", ctx):
                results = await self._executor.search_by_content_id(ctx, content_id, options)

            if options.use_reranking and options.rerank_query:
                results = await self._apply_rerank(
                    ctx, "content_id", options.rerank_query, results, options
                )
            return results

    async def cross_model_search(
        self,
        ctx: RequestContext,
        request: CrossModelSearchRequest,
    ) -> list[CrossModelSearchResult]:
        """Search across embeddings from different models with calibrated scores."""
        async with self._operation("cross_model", ctx, search_model=request.search_model):
            request = self._prepare_cross_model(ctx, request)
            return await self._cross_model(ctx, request, "cross_model")

    async def hybrid_search(
        self,
        ctx: RequestContext,
        request: HybridSearchRequest,
    ) -> list[HybridSearchResult]:
        """Blend calibrated semantic results with full-text keyword results."""
        async with self._operation("hybrid", ctx, keywords=len(request.keywords)):
            has_semantic = bool(request.query.strip() or request.query_embedding)
            if not has_semantic and not request.keywords:
                raise ValidationError(
                    "hybrid search requires a query, query_embedding or keywords"
                )
            self._check_tenant(ctx, request.tenant_id)
            limit = _clamp_limit(request.limit)

            semantic: list[HybridSearchResult] = []
            if has_semantic:
                semantic = await self._semantic_leg(ctx, request, limit)

            keyword: list[HybridSearchResult] = []
            if request.keywords:
                keyword = await self._keyword_leg(
                    ctx, request.keywords, request.metadata_filter, limit
                )

            with self._stage("hybrid", "merge", ctx):
                merged = self._merger.merge(semantic, keyword, request.hybrid_weight, limit=limit)

            logger.debug(
                "Hybrid search completed: semantic=%d keyword=%d results=%d "
                "tenant=%s correlation_id=%s",
                len(semantic),
                len(keyword),
                len(merged),
                *ctx.log_tags(),
            )
            return merged

    # --- Single-query path ---

    async def _search_single(
        self,
        ctx: RequestContext,
        text: str,
        options: SearchOptions,
    ) -> SearchResults:
        """Embed one query and run the vector search; also the fan-out variant path."""
        with self._stage("text", "embed", ctx):
            embedding = await self._embed(text, self._settings.default_model)
        with self._stage("text", "retrieve", ctx):
            return await self._executor.search_by_vector(ctx, embedding.vector, options)

    async def _embed(self, text: str, model_hint: str) -> EmbeddingVector:
        try:
            embedding = await self._embedder.generate_embedding(
                text, QUERY_CONTENT_TYPE, model_hint
            )
        except Exception as e:
            raise EmbeddingError(f"failed to generate embedding: {e}") from e
        if not embedding.vector:
            raise EmbeddingError("failed to generate embedding: empty vector returned")
        return embedding

    async def _expand(
        self,
        ctx: RequestContext,
        text: str,
        options: SearchOptions,
    ) -> list[str]:
        """Expand the query; on failure continue with the original text alone."""
        expansion_options = ExpansionOptions(
            max_expansions=options.max_expansions,
            include_original=True,
            expansion_types=options.query_expansion_types or DEFAULT_EXPANSION_TYPES,
        )
        try:
            with self._stage("text", "expand", ctx):
                expanded = await self._expander.expand(text, expansion_options)
        except Exception as e:
            self._metrics.record_degradation("expand")
            logger.warning(
                "Query expansion failed, using original query: %s tenant=%s correlation_id=%s",
                e,
                *ctx.log_tags(),
            )
            return [text]

        # Original first so it always carries weight 1.0
        queries = [text]
        for expansion in expanded.expansions:
            variant = expansion.text.strip()
            if variant and variant not in queries:
                queries.append(variant)
        return queries[: 1 + options.max_expansions]

    async def _apply_rerank(
        self,
        ctx: RequestContext,
        operation: str,
        query: str,
        results: SearchResults,
        options: SearchOptions,
    ) -> SearchResults:
        if self._reranker is None:
            return results
        with self._stage(operation, "rerank", ctx):
            return await self._reranker.rerank(ctx, query, results, options)

    # --- Cross-model and hybrid paths ---

    def _prepare_cross_model(
        self,
        ctx: RequestContext,
        request: CrossModelSearchRequest,
    ) -> CrossModelSearchRequest:
        if not request.query.strip() and not request.query_embedding:
            raise ValidationError("either query or query_embedding must be provided")
        self._check_tenant(ctx, request.tenant_id)

        min_similarity = request.min_similarity
        if min_similarity <= 0:
            min_similarity = self._settings.search_min_similarity or DEFAULT_MIN_SIMILARITY

        return request.model_copy(
            update={
                "tenant_id": ctx.tenant_id,
                "limit": _clamp_limit(request.limit),
                "min_similarity": min(1.0, min_similarity),
            }
        )

    async def _cross_model(
        self,
        ctx: RequestContext,
        request: CrossModelSearchRequest,
        operation: str,
    ) -> list[CrossModelSearchResult]:
        if self._store is None:
            raise RetrievalError("cross-model search requires an embedding store")

        target_model = request.search_model
        if not request.query_embedding:
            with self._stage(operation, "embed", ctx):
                embedding = await self._embed(request.query, request.search_model)
            request = request.model_copy(update={"query_embedding": embedding.vector})
            target_model = target_model or embedding.model_id

        target_dimension = await self._target_dimension(ctx, request.search_model)

        with self._stage(operation, "retrieve", ctx):
            try:
                rows = await self._store.cross_model_search(request, target_dimension)
            except Exception as e:
                raise RetrievalError(f"failed to execute cross-model search: {e}") from e

        with self._stage(operation, "normalize", ctx):
            results = []
            for row in rows:
                similarity, quality, final = self._normalizer.score(
                    row.raw_similarity,
                    row.original_model,
                    target_model,
                    row.original_dimension,
                    target_dimension,
                    request.task_type,
                )
                results.append(
                    row.model_copy(
                        update={
                            "similarity": similarity,
                            "model_quality_score": quality,
                            "final_score": final,
                        }
                    )
                )

        return rank(
            results,
            score=lambda r: r.final_score,
            identity=lambda r: r.id,
            limit=request.limit,
        )

    async def _target_dimension(self, ctx: RequestContext, model_name: str) -> int:
        if model_name and self._store is not None:
            try:
                dimensions = await self._store.get_model_dimensions(model_name)
            except Exception as e:
                logger.warning(
                    "Model lookup failed for %s, using standard dimension: %s "
                    "tenant=%s correlation_id=%s",
                    model_name,
                    e,
                    *ctx.log_tags(),
                )
                dimensions = None
            if dimensions:
                return dimensions
        return self._settings.standard_dimension

    async def _semantic_leg(
        self,
        ctx: RequestContext,
        request: HybridSearchRequest,
        limit: int,
    ) -> list[HybridSearchResult]:
        # Over-fetch with a lower threshold so the merge has room to re-rank
        cross_request = CrossModelSearchRequest(
            query=request.query,
            query_embedding=request.query_embedding,
            tenant_id=ctx.tenant_id,
            metadata_filter=request.metadata_filter,
            limit=limit * 2,
            min_similarity=self._settings.hybrid_semantic_min_similarity,
        )
        try:
            results = await self._cross_model(ctx, cross_request, "hybrid")
        except MeshRankError as e:
            raise RetrievalError(f"semantic search failed: {e.message}", code=e.code) from e

        return [
            HybridSearchResult(**r.model_dump(), semantic_score=r.final_score)
            for r in results
        ]

    async def _keyword_leg(
        self,
        ctx: RequestContext,
        keywords: list[str],
        metadata_filter: dict[str, Any],
        limit: int,
    ) -> list[HybridSearchResult]:
        if self._store is None:
            raise RetrievalError("keyword search failed: no embedding store configured")
        tsquery = build_tsquery(keywords)
        if not tsquery:
            return []

        with self._stage("hybrid", "keyword", ctx):
            try:
                hits = await self._store.keyword_search(
                    tsquery, ctx.tenant_id, limit * 2, metadata_filter
                )
            except Exception as e:
                raise RetrievalError(f"keyword search failed: {e}") from e

        return [
            HybridSearchResult(
                **hit.result.model_dump(),
                keyword_score=keyword_score_from_rank(hit.rank),
            )
            for hit in hits
        ]

    @staticmethod
    def _check_tenant(ctx: RequestContext, tenant_id: UUID | None) -> None:
        if tenant_id is not None and tenant_id != ctx.tenant_id:
            raise ValidationError(
                "request tenant does not match caller tenant",
                {"tenant_id": str(tenant_id)},
            )

    # --- Instrumentation ---

    @asynccontextmanager
    async def _operation(
        self,
        operation: str,
        ctx: RequestContext,
        **fields: Any,
    ) -> AsyncIterator[asyncio.Timeout]:
        """Log, time and bound one public operation by the context deadline."""
        tenant, correlation_id = ctx.log_tags()
        logger.info(
            "Performing %s search tenant=%s correlation_id=%s %s",
            operation,
            tenant,
            correlation_id,
            " ".join(f"{k}={v}" for k, v in fields.items()),
        )
        start = time.perf_counter()
        outcome = "success"
        try:
            async with asyncio.timeout(ctx.remaining()) as deadline:
                yield deadline
        except TimeoutError as e:
            outcome = "timeout"
            logger.error(
                "%s search timed out tenant=%s correlation_id=%s",
                operation,
                tenant,
                correlation_id,
            )
            raise RetrievalError(
                f"{operation} search timed out", code=ErrorCode.SEARCH_TIMEOUT
            ) from e
        except asyncio.CancelledError:
            outcome = "cancelled"
            raise
        except ValidationError:
            outcome = "invalid"
            raise
        except Exception as e:
            outcome = "error"
            logger.error(
                "%s search failed: %s tenant=%s correlation_id=%s",
                operation,
                e,
                tenant,
                correlation_id,
            )
            raise
        finally:
            self._metrics.record_request(operation, outcome)
            logger.debug(
                "%s search finished outcome=%s duration_ms=%.2f tenant=%s correlation_id=%s",
                operation,
                outcome,
                (time.perf_counter() - start) * 1000,
                tenant,
                correlation_id,
            )

    @staticmethod
    def _rearm(deadline: asyncio.Timeout, ctx: RequestContext) -> None:
        remaining = ctx.remaining()
        if remaining is not None:
            deadline.reschedule(asyncio.get_running_loop().time() + remaining)

    @contextmanager
    def _stage(self, operation: str, stage: str, ctx: RequestContext) -> Iterator[None]:
        start = time.perf_counter()
        with self._metrics.stage(operation, stage):
            yield
        logger.debug(
            "Stage %s.%s completed in %.2fms tenant=%s correlation_id=%s",
            operation,
            stage,
            (time.perf_counter() - start) * 1000,
            *ctx.log_tags(),
        )
