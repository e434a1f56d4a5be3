"""
Tests for the CLI.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, patch
from uuid import uuid4

from typer.testing import CliRunner

from meshrank.config.errors import ValidationError
from meshrank.domains.search.models import (
    CrossModelSearchResult,
    EmbeddingVector,
    HybridSearchResult,
    SearchResult,
    SearchResults,
    TaskType,
)

from .main import _parse_vector, app

runner = CliRunner()


def test_version() -> None:
    """Test version command."""
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert "MeshRank v" in result.output


def test_calibrate_runs_offline() -> None:
    """Test calibrate prints the calibrated and final scores."""
    result = runner.invoke(
        app,
        [
            "calibrate",
            "0.9",
            "--source-model",
            "text-embedding-ada-002",
            "--source-dim",
            "768",
            "--target-dim",
            "1536",
        ],
    )
    assert result.exit_code == 0
    assert "0.9500" in result.output
    assert "0.8550" in result.output
    assert "0.8540" in result.output


def test_parse_vector(tmp_path) -> None:
    """Test vectors parse from comma lists and JSON files."""
    assert _parse_vector("0.1, 0.2,0.3") == [0.1, 0.2, 0.3]

    path = tmp_path / "vec.json"
    path.write_text('{"embedding": [1, 2]}')
    assert _parse_vector(str(path)) == [1.0, 2.0]


def _coordinator_double(**methods) -> AsyncMock:
    coordinator = AsyncMock()
    for name, value in methods.items():
        getattr(coordinator, name).return_value = value
    return coordinator


def _engine_patch(coordinator: AsyncMock):
    engine = AsyncMock()
    engine.__aenter__.return_value = coordinator
    engine.__aexit__.return_value = False
    return patch("meshrank.interfaces.cli.main._engine", return_value=engine)


def test_search_prints_results() -> None:
    """Test search renders a result table."""
    results = SearchResults.of(
        [
            SearchResult(
                content=EmbeddingVector(content_id="doc-1", metadata={"content": "hello"}),
                score=0.91,
            )
        ]
    )
    coordinator = _coordinator_double(search=results)

    with _engine_patch(coordinator):
        result = runner.invoke(app, ["search", "hello", "--tenant", str(uuid4())])

    assert result.exit_code == 0
    assert "doc-1" in result.output
    assert "0.910" in result.output


def test_search_reports_errors() -> None:
    """Test engine errors exit non-zero with the error code."""
    coordinator = AsyncMock()
    coordinator.search.side_effect = ValidationError("search text cannot be empty")

    with _engine_patch(coordinator):
        result = runner.invoke(app, ["search", " ", "--tenant", str(uuid4())])

    assert result.exit_code == 1
    assert "SEARCH_INVALID_QUERY" in result.output


def _page(content_id: str, score: float) -> SearchResults:
    return SearchResults.of(
        [SearchResult(content=EmbeddingVector(content_id=content_id), score=score)]
    )


def test_vector_passes_parsed_vector_and_rerank_query() -> None:
    """Test vector parses floats and reranks only when a query is given."""
    coordinator = _coordinator_double(search_by_vector=_page("doc-2", 0.8))

    with _engine_patch(coordinator):
        result = runner.invoke(
            app,
            ["vector", "0.1,0.2,0.3", "--tenant", str(uuid4()), "--rerank-query", "retries"],
        )

    assert result.exit_code == 0
    assert "doc-2" in result.output
    _, values, options = coordinator.search_by_vector.await_args.args
    assert values == [0.1, 0.2, 0.3]
    assert options.use_reranking is True
    assert options.rerank_query == "retries"


def test_vector_rejects_unparseable_input() -> None:
    result = runner.invoke(app, ["vector", "0.1,abc", "--tenant", str(uuid4())])
    assert result.exit_code == 1
    assert "Error" in result.output


def test_similar_searches_by_content_id() -> None:
    """Test similar forwards the content id and limit."""
    coordinator = _coordinator_double(search_by_content_id=_page("doc-9", 0.75))

    with _engine_patch(coordinator):
        result = runner.invoke(
            app, ["similar", "doc-1", "--tenant", str(uuid4()), "--limit", "5"]
        )

    assert result.exit_code == 0
    assert "doc-9" in result.output
    _, content_id, options = coordinator.search_by_content_id.await_args.args
    assert content_id == "doc-1"
    assert options.limit == 5


def test_cross_model_builds_request() -> None:
    """Test model filters and the task profile reach the request."""
    row = CrossModelSearchResult(
        id="r1",
        original_model="voyage-2",
        original_dimension=1024,
        raw_similarity=0.9,
        similarity=0.88,
        model_quality_score=0.88,
        final_score=0.854,
        content="x",
    )
    coordinator = _coordinator_double(cross_model_search=[row])

    with _engine_patch(coordinator):
        result = runner.invoke(
            app,
            [
                "cross-model",
                "rate limiter",
                "--tenant",
                str(uuid4()),
                "--model",
                "text-embedding-3-small",
                "--include",
                "voyage-2",
                "--exclude",
                "text-embedding-ada-002",
                "--task",
                "research",
            ],
        )

    assert result.exit_code == 0
    assert "r1" in result.output
    assert "0.854" in result.output
    _, request = coordinator.cross_model_search.await_args.args
    assert request.query == "rate limiter"
    assert request.search_model == "text-embedding-3-small"
    assert request.include_models == ["voyage-2"]
    assert request.exclude_models == ["text-embedding-ada-002"]
    assert request.task_type == TaskType.RESEARCH


def test_hybrid_builds_request() -> None:
    """Test keywords and the semantic weight reach the request."""
    row = HybridSearchResult(
        id="h1", content="x", semantic_score=0.8, keyword_score=0.5, hybrid_score=0.71
    )
    coordinator = _coordinator_double(hybrid_search=[row])

    with _engine_patch(coordinator):
        result = runner.invoke(
            app,
            [
                "hybrid",
                "rate limiter",
                "--tenant",
                str(uuid4()),
                "-k",
                "token",
                "-k",
                "bucket",
                "--weight",
                "0.4",
            ],
        )

    assert result.exit_code == 0
    assert "h1" in result.output
    assert "0.710" in result.output
    _, request = coordinator.hybrid_search.await_args.args
    assert request.keywords == ["token", "bucket"]
    assert request.hybrid_weight == 0.4
    assert request.query == "rate limiter"
