"""
Tests for multi-query fan-out.
"""

from __future__ import annotations

import asyncio
import itertools
from uuid import uuid4

import pytest
from prometheus_client import CollectorRegistry

from .context import RequestContext
from .fanout import MultiQueryFanout, VariantOutcome, variant_weight
from .metrics import SearchMetrics
from .models import EmbeddingVector, SearchOptions, SearchResult, SearchResults


@pytest.fixture
def ctx() -> RequestContext:
    return RequestContext.create(uuid4())


@pytest.fixture
def metrics() -> SearchMetrics:
    return SearchMetrics(CollectorRegistry())


def _results(*pairs: tuple[str, float]) -> SearchResults:
    return SearchResults.of(
        [SearchResult(content=EmbeddingVector(content_id=id), score=score) for id, score in pairs]
    )


def _outcome(index: int, *pairs: tuple[str, float]) -> VariantOutcome:
    return VariantOutcome(
        index=index, query=f"q{index}", weight=variant_weight(index), results=_results(*pairs)
    )


def _noop_search(*_args):
    raise AssertionError("merge tests never search")


def test_variant_weights() -> None:
    """Test weights decay as 1, 1/2, 1/3."""
    assert variant_weight(0) == 1.0
    assert variant_weight(1) == 0.5
    assert variant_weight(2) == pytest.approx(1 / 3)


def test_merge_scenario_clamps_to_one(ctx: RequestContext) -> None:
    """Test 0.9 in variant 1 plus 0.6 in variant 3 merges to 1.0."""
    fanout = MultiQueryFanout(_noop_search)
    outcomes = [
        _outcome(0, ("x", 0.9), ("y", 0.5)),
        _outcome(1, ("z", 0.4)),
        _outcome(2, ("x", 0.6)),
    ]
    merged = fanout.merge(ctx, outcomes, limit=10)

    by_id = {r.content_id: r for r in merged.results}
    assert by_id["x"].score == 1.0
    assert by_id["x"].matches["fanout_score"] == pytest.approx(1.1)
    assert by_id["y"].score == pytest.approx(0.5)
    assert by_id["z"].score == pytest.approx(0.2)
    assert [r.content_id for r in merged.results] == ["x", "y", "z"]


def test_merge_is_commutative(ctx: RequestContext) -> None:
    """Test every arrival order yields the same ranking and scores."""
    fanout = MultiQueryFanout(_noop_search)
    outcomes = [
        _outcome(0, ("a", 0.7), ("b", 0.6), ("c", 0.6)),
        _outcome(1, ("b", 0.8), ("d", 0.9)),
        _outcome(2, ("a", 0.3), ("d", 0.3)),
    ]
    expected = [
        (r.content_id, r.score) for r in fanout.merge(ctx, outcomes, limit=10).results
    ]

    for order in itertools.permutations(outcomes):
        merged = fanout.merge(ctx, list(order), limit=10)
        assert [(r.content_id, r.score) for r in merged.results] == expected


def test_merge_respects_limit(ctx: RequestContext) -> None:
    """Test the merged list is truncated to the limit."""
    fanout = MultiQueryFanout(_noop_search)
    outcomes = [
        _outcome(i, *[(f"id-{i}-{j:03d}", j / 200) for j in range(200)]) for i in range(3)
    ]
    merged = fanout.merge(ctx, outcomes, limit=5)
    assert len(merged.results) == 5
    assert merged.has_more is True


def test_merge_tolerates_partial_failure(ctx: RequestContext, metrics: SearchMetrics) -> None:
    """Test failed variants are skipped when at least one succeeds."""
    fanout = MultiQueryFanout(_noop_search, metrics=metrics)
    failed = VariantOutcome(index=1, query="q1", weight=0.5, error=RuntimeError("boom"))
    merged = fanout.merge(ctx, [_outcome(0, ("a", 0.8)), failed], limit=10)

    assert [r.content_id for r in merged.results] == ["a"]
    assert metrics.value("meshrank_search_fanout_variants_total", {"outcome": "error"}) == 1.0
    assert metrics.value("meshrank_search_fanout_variants_total", {"outcome": "success"}) == 1.0


def test_merge_raises_first_error_when_all_fail(ctx: RequestContext) -> None:
    """Test total failure re-raises the lowest-index variant's error."""
    fanout = MultiQueryFanout(_noop_search)
    outcomes = [
        VariantOutcome(index=1, query="q1", weight=0.5, error=ValueError("second")),
        VariantOutcome(index=0, query="q0", weight=1.0, error=RuntimeError("first")),
    ]
    with pytest.raises(RuntimeError, match="first"):
        fanout.merge(ctx, outcomes, limit=10)


async def test_fanout_runs_every_variant(ctx: RequestContext) -> None:
    """Test each variant is searched once without expansion or reranking."""
    seen: list[tuple[str, SearchOptions]] = []

    async def search(_ctx: RequestContext, query: str, options: SearchOptions) -> SearchResults:
        seen.append((query, options))
        return _results((query, 0.5))

    fanout = MultiQueryFanout(search)
    options = SearchOptions(use_query_expansion=True, use_reranking=True, limit=10)
    merged = await fanout.fanout(ctx, ["orig", "syn", "sub"], options)

    assert sorted(q for q, _ in seen) == ["orig", "sub", "syn"]
    assert all(not o.use_query_expansion and not o.use_reranking for _, o in seen)
    assert {r.content_id: r.score for r in merged.results} == pytest.approx(
        {"orig": 0.5, "syn": 0.25, "sub": 0.5 / 3}
    )


async def test_fanout_caps_concurrency(ctx: RequestContext) -> None:
    """Test no more than max_concurrency variants run at once."""
    active = 0
    peak = 0

    async def search(_ctx: RequestContext, query: str, _options: SearchOptions) -> SearchResults:
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        await asyncio.sleep(0.01)
        active -= 1
        return _results((query, 0.5))

    fanout = MultiQueryFanout(search, max_concurrency=2)
    merged = await fanout.fanout(ctx, [f"q{i}" for i in range(8)], SearchOptions(limit=20))

    assert peak == 2
    assert len(merged.results) == 8


async def test_fanout_completion_order_does_not_matter(ctx: RequestContext) -> None:
    """Test results are identical whichever variant finishes first."""

    def make_search(delays: dict[str, float]):
        async def search(_ctx, query: str, _options) -> SearchResults:
            await asyncio.sleep(delays[query])
            return _results(("shared", 0.6), (f"only-{query}", 0.4))

        return search

    queries = ["a", "b", "c"]
    fast_first = MultiQueryFanout(make_search({"a": 0.0, "b": 0.01, "c": 0.02}))
    slow_first = MultiQueryFanout(make_search({"a": 0.02, "b": 0.01, "c": 0.0}))

    first = await fast_first.fanout(ctx, queries, SearchOptions())
    second = await slow_first.fanout(ctx, queries, SearchOptions())
    assert [(r.content_id, r.score) for r in first.results] == [
        (r.content_id, r.score) for r in second.results
    ]


async def test_fanout_all_variants_fail(ctx: RequestContext) -> None:
    """Test an error propagates only when every variant failed."""

    async def search(_ctx, query: str, _options) -> SearchResults:
        raise ConnectionError(f"down for {query}")

    fanout = MultiQueryFanout(search)
    with pytest.raises(ConnectionError, match="down for a"):
        await fanout.fanout(ctx, ["a", "b"], SearchOptions())
