"""
Multi-Query Fan-out - Concurrent search over expanded query variants.

Features:
- One task per variant inside a TaskGroup, capped by a semaphore
- Bounded outcome queue drained exactly once per variant
- Decaying weights (1, 1/2, 1/3, ...) so expansions never outweigh the original
- Partial failure tolerated; only total failure is an error
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .models import SearchOptions, SearchResult, SearchResults
from .ranking import clamp_score, rank

if TYPE_CHECKING:
    from .context import RequestContext
    from .metrics import SearchMetrics

logger = logging.getLogger(__name__)

__all__ = ["MultiQueryFanout", "VariantOutcome", "variant_weight"]

SearchFn = Callable[["RequestContext", str, SearchOptions], Awaitable[SearchResults]]


def variant_weight(index: int) -> float:
    """Weight of the index-th variant; index 0 is the original query."""
    return 1.0 if index == 0 else 1.0 / (index + 1)


@dataclass
class VariantOutcome:
    """Message a variant task posts on the outcome queue."""

    index: int
    query: str
    weight: float
    results: SearchResults | None = None
    error: Exception | None = field(default=None)


class MultiQueryFanout:
    """
    Runs query variants concurrently and merges them by content id.

    Example:
        >>> fanout = MultiQueryFanout(coordinator.search_single, max_concurrency=4)
        >>> merged = await fanout.fanout(ctx, ["original", "synonym variant"], options)
    """

    def __init__(
        self,
        search_fn: SearchFn,
        max_concurrency: int = 8,
        metrics: SearchMetrics | None = None,
    ) -> None:
        """
        Initialize fan-out.

        Args:
            search_fn: Single-query search path run for every variant
            max_concurrency: Maximum variants in flight at once
            metrics: Optional metrics sink
        """
        self._search = search_fn
        self._max_concurrency = max(1, max_concurrency)
        self._metrics = metrics

    async def fanout(
        self,
        ctx: RequestContext,
        queries: list[str],
        options: SearchOptions,
    ) -> SearchResults:
        """
        Search every variant and merge the weighted results.

        Raises:
            The first variant's error when every variant failed
        """
        if not queries:
            return SearchResults.of([])

        variant_options = options.model_copy(
            update={"use_query_expansion": False, "use_reranking": False}
        )
        channel: asyncio.Queue[VariantOutcome] = asyncio.Queue(maxsize=len(queries))
        semaphore = asyncio.Semaphore(self._max_concurrency)
        outcomes: list[VariantOutcome] = []

        async with asyncio.TaskGroup() as group:
            for index, query in enumerate(queries):
                group.create_task(
                    self._run_variant(ctx, index, query, variant_options, semaphore, channel)
                )
            for _ in range(len(queries)):
                outcomes.append(await channel.get())

        return self.merge(ctx, outcomes, options.limit)

    async def _run_variant(
        self,
        ctx: RequestContext,
        index: int,
        query: str,
        options: SearchOptions,
        semaphore: asyncio.Semaphore,
        channel: asyncio.Queue[VariantOutcome],
    ) -> None:
        outcome = VariantOutcome(index=index, query=query, weight=variant_weight(index))
        try:
            async with asyncio.timeout(ctx.remaining()):
                async with semaphore:
                    outcome.results = await self._search(ctx, query, options)
        except Exception as e:
            outcome.error = e
        channel.put_nowait(outcome)

    def merge(
        self,
        ctx: RequestContext,
        outcomes: list[VariantOutcome],
        limit: int,
    ) -> SearchResults:
        """Sum weighted scores per content id; independent of arrival order."""
        first_seen: dict[str, SearchResult] = {}
        totals: dict[str, float] = {}
        contributions: dict[str, list[float]] = {}
        first_error: Exception | None = None
        succeeded = 0

        for outcome in sorted(outcomes, key=lambda o: o.index):
            if outcome.error is not None:
                if first_error is None:
                    first_error = outcome.error
                self._record_variant("error")
                logger.warning(
                    "Query variant failed in multi-query search: variant=%d query=%r "
                    "error=%s tenant=%s correlation_id=%s",
                    outcome.index,
                    outcome.query[:80],
                    repr(outcome.error),
                    *ctx.log_tags(),
                )
                continue

            succeeded += 1
            self._record_variant("success")
            if outcome.results is None:
                continue
            for result in outcome.results.results:
                key = result.content_id
                weighted = result.score * outcome.weight
                first_seen.setdefault(key, result)
                totals[key] = totals.get(key, 0.0) + weighted
                contributions.setdefault(key, []).append(round(weighted, 6))

        if succeeded == 0 and first_error is not None:
            raise first_error

        merged = [
            first_seen[key].model_copy(
                update={
                    "score": clamp_score(total),
                    "matches": {
                        **first_seen[key].matches,
                        "fanout_score": total,
                        "variant_contributions": contributions[key],
                    },
                }
            )
            for key, total in totals.items()
        ]
        ranked = rank(merged, score=lambda r: r.score, identity=lambda r: r.content_id)

        logger.debug(
            "Multi-query merge: variants=%d succeeded=%d merged=%d tenant=%s correlation_id=%s",
            len(outcomes),
            succeeded,
            len(ranked),
            *ctx.log_tags(),
        )
        return SearchResults.of(ranked[:limit], has_more=len(ranked) > limit)

    def _record_variant(self, outcome: str) -> None:
        if self._metrics is not None:
            self._metrics.record_variant(outcome)
