"""
Rerank Adapter - Optional final stage over an assembled result set.

Reranking is an enhancement: when the reranker fails the pre-rerank
results are returned unchanged.
"""

from __future__ import annotations

import hashlib
import logging
from typing import TYPE_CHECKING

from .models import (
    EmbeddingVector,
    RerankCandidate,
    RerankOptions,
    SearchOptions,
    SearchResult,
    SearchResults,
)
from .ranking import clamp_score, rank

if TYPE_CHECKING:
    from .context import RequestContext
    from .contracts import Reranker
    from .metrics import SearchMetrics

logger = logging.getLogger(__name__)

__all__ = ["RerankAdapter", "ranking_text", "synthesize_id"]


def ranking_text(result: SearchResult) -> str:
    """Text handed to the reranker: metadata content, then text, then the id."""
    metadata = result.content.metadata
    for key in ("content", "text"):
        value = metadata.get(key)
        if isinstance(value, str) and value:
            return value
    return result.content_id


def synthesize_id(candidate: RerankCandidate) -> str:
    """Stable identifier for a reranker entry that came back without one."""
    digest = hashlib.sha256(candidate.content.encode("utf-8")).hexdigest()
    return f"rerank-{digest[:16]}"


class RerankAdapter:
    """
    Bridges engine results and a pluggable Reranker.

    Example:
        >>> adapter = RerankAdapter(cross_encoder)
        >>> reranked = await adapter.rerank(ctx, "fix flaky test", results, options)
    """

    def __init__(self, reranker: Reranker, metrics: SearchMetrics | None = None) -> None:
        self._reranker = reranker
        self._metrics = metrics

    async def rerank(
        self,
        ctx: RequestContext,
        query: str,
        results: SearchResults,
        options: SearchOptions,
    ) -> SearchResults:
        """
        Rerank results against the query text.

        Args:
            ctx: Request context (for logging)
            query: Original query text
            results: Candidate results
            options: Search options; ``limit`` becomes the reranker's top_k

        Returns:
            Reranked results, or ``results`` unchanged if the reranker failed
        """
        if not results.results:
            return results

        candidates = [
            RerankCandidate(
                id=result.content_id,
                content=ranking_text(result),
                score=result.score,
                metadata=dict(result.content.metadata),
            )
            for result in results.results
        ]

        try:
            reranked = await self._reranker.rerank(
                query, candidates, RerankOptions(top_k=options.limit)
            )
        except Exception as e:
            if self._metrics is not None:
                self._metrics.record_degradation("rerank")
            logger.error(
                "Reranking failed, returning original order: %s candidates=%d "
                "tenant=%s correlation_id=%s",
                e,
                len(candidates),
                *ctx.log_tags(),
            )
            return results

        originals = {result.content_id: result for result in results.results}
        merged: dict[str, SearchResult] = {}
        for candidate in reranked:
            candidate_id = candidate.id or synthesize_id(candidate)
            original = originals.get(candidate_id)
            merged[candidate_id] = (
                self._apply(original, candidate)
                if original is not None
                else self._synthesize(candidate_id, candidate)
            )

        ranked = rank(
            merged.values(),
            score=lambda r: r.score,
            identity=lambda r: r.content_id,
            limit=options.limit,
        )

        logger.debug(
            "Reranking completed: input=%d output=%d tenant=%s correlation_id=%s",
            len(results.results),
            len(ranked),
            *ctx.log_tags(),
        )
        return SearchResults.of(ranked)

    @staticmethod
    def _apply(original: SearchResult, candidate: RerankCandidate) -> SearchResult:
        score = clamp_score(candidate.score)
        content = original.content
        if candidate.metadata:
            content = content.model_copy(
                update={"metadata": {**content.metadata, **candidate.metadata}}
            )
        return original.model_copy(
            update={
                "content": content,
                "score": score,
                "matches": {
                    **original.matches,
                    "pre_rerank_score": original.score,
                    "reranked": True,
                },
            }
        )

    @staticmethod
    def _synthesize(candidate_id: str, candidate: RerankCandidate) -> SearchResult:
        metadata = dict(candidate.metadata)
        if candidate.content and "content" not in metadata:
            metadata["content"] = candidate.content
        return SearchResult(
            content=EmbeddingVector(content_id=candidate_id, metadata=metadata),
            score=candidate.score,
            matches={"reranked": True},
        )
