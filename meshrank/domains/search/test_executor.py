"""
Tests for the vector search executor.
"""

from __future__ import annotations

from unittest.mock import AsyncMock
from uuid import uuid4

import pytest

from meshrank.config.errors import RetrievalError

from .context import RequestContext
from .executor import VectorSearchExecutor
from .models import (
    RepositoryResult,
    RepositoryResults,
    SearchFilter,
    SearchOptions,
)

TENANT_A = uuid4()
TENANT_B = uuid4()


@pytest.fixture
def ctx() -> RequestContext:
    return RequestContext.create(TENANT_A)


@pytest.fixture
def repository() -> AsyncMock:
    repo = AsyncMock()
    repo.search_by_vector.return_value = RepositoryResults(results=[])
    repo.search_by_content_id.return_value = RepositoryResults(results=[])
    return repo


@pytest.fixture
def executor(repository: AsyncMock) -> VectorSearchExecutor:
    return VectorSearchExecutor(repository)


def _hit(id: str, score: float, tenant=TENANT_A, **kwargs) -> RepositoryResult:
    return RepositoryResult(id=id, score=score, tenant_id=tenant, **kwargs)


# --- Option Mapping Tests ---


def test_default_repository_options() -> None:
    """Test None options map to tenant-scoped defaults."""
    options = VectorSearchExecutor.to_repository_options(TENANT_A, None)
    assert options.tenant_id == TENANT_A
    assert options.limit == 10
    assert options.min_similarity == 0.7
    assert options.similarity_threshold == 0.7
    assert options.max_results == 10


def test_repository_options_mapping() -> None:
    """Test content types and metadata.* filters land in metadata filters."""
    options = SearchOptions(
        limit=5,
        offset=10,
        min_similarity=0.5,
        content_type="code",
        content_types=["doc"],
        metadata_filters={"lang": "python"},
        filters=[
            SearchFilter(field="metadata.repo", value="mesh"),
            SearchFilter(field="created_at", operator="gt", value="2024-01-01"),
        ],
    )
    mapped = VectorSearchExecutor.to_repository_options(TENANT_A, options)

    assert mapped.limit == 5
    assert mapped.offset == 10
    assert mapped.similarity_threshold == 0.5
    assert mapped.ranking_algorithm == "cosine"
    assert mapped.content_types == ["doc", "code"]
    assert mapped.metadata_filters == {
        "lang": "python",
        "content_types": ["doc", "code"],
        "repo": "mesh",
    }


# --- Result Conversion Tests ---


async def test_search_by_vector_converts_results(
    executor: VectorSearchExecutor, repository: AsyncMock, ctx: RequestContext
) -> None:
    """Test repository hits become ranked SearchResults."""
    repository.search_by_vector.return_value = RepositoryResults(
        results=[
            _hit("a", 0.75, content="alpha", type="doc", metadata={"lang": "go"}),
            _hit("b", 0.92, content="beta"),
        ]
    )

    results = await executor.search_by_vector(ctx, [0.1, 0.2], SearchOptions())

    assert [r.content_id for r in results.results] == ["b", "a"]
    first = results.results[1]
    assert first.score == 0.75
    assert first.matches == {"similarity": 0.75}
    assert first.content.content_type == "doc"
    assert first.content.metadata == {"lang": "go", "similarity": 0.75, "content": "alpha"}

    repo_options = repository.search_by_vector.await_args.args[1]
    assert repo_options.tenant_id == TENANT_A


async def test_missing_results_are_skipped(
    executor: VectorSearchExecutor, repository: AsyncMock, ctx: RequestContext
) -> None:
    """Test a None container or None entries yield nothing for those slots."""
    repository.search_by_vector.return_value = None
    assert (await executor.search_by_vector(ctx, [0.1], None)).results == []

    repository.search_by_vector.return_value = RepositoryResults(results=None)
    assert (await executor.search_by_vector(ctx, [0.1], None)).results == []

    repository.search_by_vector.return_value = RepositoryResults(
        results=[None, _hit("a", 0.8), None]
    )
    results = await executor.search_by_vector(ctx, [0.1], None)
    assert [r.content_id for r in results.results] == ["a"]


async def test_non_positive_scores_become_zero(
    executor: VectorSearchExecutor, repository: AsyncMock, ctx: RequestContext
) -> None:
    """Test negative scores are reported as 0 and large ones clamped."""
    repository.search_by_vector.return_value = RepositoryResults(
        results=[_hit("neg", -0.3), _hit("big", 1.4)]
    )
    results = await executor.search_by_vector(ctx, [0.1], None)
    scores = {r.content_id: r.score for r in results.results}
    assert scores == {"big": 1.0, "neg": 0.0}


async def test_foreign_tenant_results_are_dropped(
    executor: VectorSearchExecutor, repository: AsyncMock, ctx: RequestContext
) -> None:
    """Test rows tagged with another tenant never reach the caller."""
    repository.search_by_vector.return_value = RepositoryResults(
        results=[
            _hit("shared-1", 0.9, tenant=TENANT_B),
            _hit("shared-1", 0.9, tenant=TENANT_A),
            _hit("other-only", 0.95, tenant=TENANT_B),
        ]
    )
    results = await executor.search_by_vector(ctx, [0.1], None)
    assert [r.content_id for r in results.results] == ["shared-1"]


async def test_limit_applied_after_conversion(
    executor: VectorSearchExecutor, repository: AsyncMock, ctx: RequestContext
) -> None:
    """Test oversized repository pages are truncated and flagged."""
    repository.search_by_vector.return_value = RepositoryResults(
        results=[_hit(f"id-{i:03d}", i / 500) for i in range(300)]
    )
    results = await executor.search_by_vector(ctx, [0.1], SearchOptions(limit=7))
    assert len(results.results) == 7
    assert results.total == 7
    assert results.has_more is True
    assert results.results[0].content_id == "id-299"


async def test_search_by_content_id(
    executor: VectorSearchExecutor, repository: AsyncMock, ctx: RequestContext
) -> None:
    """Test content-id search forwards the id and tenant."""
    repository.search_by_content_id.return_value = RepositoryResults(results=[_hit("n", 0.8)])
    results = await executor.search_by_content_id(ctx, "seed", SearchOptions())
    assert [r.content_id for r in results.results] == ["n"]
    content_id, repo_options = repository.search_by_content_id.await_args.args
    assert content_id == "seed"
    assert repo_options.tenant_id == TENANT_A


async def test_repository_errors_are_wrapped(
    executor: VectorSearchExecutor, repository: AsyncMock, ctx: RequestContext
) -> None:
    """Test repository failures surface as RetrievalError with a prefix."""
    repository.search_by_vector.side_effect = ConnectionError("db down")
    with pytest.raises(RetrievalError, match="vector search failed: db down"):
        await executor.search_by_vector(ctx, [0.1], None)

    repository.search_by_content_id.side_effect = ConnectionError("db down")
    with pytest.raises(RetrievalError, match="content search failed: db down"):
        await executor.search_by_content_id(ctx, "seed", None)
