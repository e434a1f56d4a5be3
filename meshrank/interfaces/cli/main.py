"""
CLI Main - Typer-based command-line interface.

Usage:
    meshrank search "idempotent webhook retries" --tenant <uuid>
    meshrank vector embedding.json --tenant <uuid>
    meshrank similar <content-id> --tenant <uuid>
    meshrank cross-model "rate limiter" --tenant <uuid> --model text-embedding-3-small
    meshrank hybrid "rate limiter" -k token -k bucket --tenant <uuid>
    meshrank calibrate 0.9 --source-model text-embedding-ada-002 --source-dim 768
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from uuid import UUID

import typer
from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from meshrank.config import MeshRankError, Settings, get_settings
from meshrank.domains.search import (
    CrossModelNormalizer,
    CrossModelSearchRequest,
    CrossModelSearchResult,
    HybridSearchRequest,
    HybridSearchResult,
    RequestContext,
    SearchCoordinator,
    SearchOptions,
    SearchResults,
    TaskType,
)

app = typer.Typer(
    name="meshrank",
    help="MeshRank - Multi-tenant semantic search and ranking",
    add_completion=False,
)
console = Console()

TENANT_OPTION = typer.Option(..., "--tenant", "-t", help="Tenant id (UUID)")
LIMIT_OPTION = typer.Option(10, "--limit", "-n", help="Number of results")


@app.callback()
def configure(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """Configure logging for every command."""
    settings = get_settings()
    logging.basicConfig(
        level=logging.DEBUG if verbose else settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@asynccontextmanager
async def _engine(settings: Settings) -> AsyncIterator[SearchCoordinator]:
    """Wire adapters from settings and close them afterwards."""
    from meshrank.adapters import (
        EmbeddingServiceClient,
        PgEmbeddingStore,
        RerankServiceClient,
    )

    store = PgEmbeddingStore.from_settings(settings)
    embedder = EmbeddingServiceClient.from_settings(settings)
    reranker = RerankServiceClient.from_settings(settings)
    try:
        yield SearchCoordinator(
            embedder,
            store,
            store=store,
            reranker=reranker,
            settings=settings,
        )
    finally:
        await embedder.close()
        if reranker is not None:
            await reranker.close()
        await store.close()


def _context(tenant: UUID, settings: Settings) -> RequestContext:
    return RequestContext.create(tenant, timeout=settings.request_timeout_seconds)


def _snippet(text: str, width: int = 60) -> str:
    text = " ".join(text.split())
    return text if len(text) <= width else text[: width - 3] + "..."


def _fail(error: Exception) -> typer.Exit:
    if isinstance(error, MeshRankError):
        console.print(f"[red]Error ({error.code.value}):[/red] {error.message}")
    else:
        console.print(f"[red]Error:[/red] {error}")
    return typer.Exit(1)


def _parse_vector(value: str) -> list[float]:
    """Vector from a JSON file or a comma-separated list."""
    path = Path(value)
    if path.exists():
        data = json.loads(path.read_text())
        if isinstance(data, dict):
            data = data.get("embedding", [])
        return [float(v) for v in data]
    return [float(v) for v in value.split(",") if v.strip()]


# --- Result rendering ---


def _results_table(title: str, results: SearchResults) -> Table:
    table = Table(title=title)
    table.add_column("#", style="dim")
    table.add_column("Content ID", style="cyan")
    table.add_column("Score", style="green")
    table.add_column("Type")
    table.add_column("Content")

    for i, result in enumerate(results.results, 1):
        table.add_row(
            str(i),
            result.content_id,
            f"{result.score:.3f}",
            result.content.content_type,
            _snippet(str(result.content.metadata.get("content", ""))),
        )
    return table


def _cross_model_table(title: str, results: list[CrossModelSearchResult]) -> Table:
    table = Table(title=title)
    table.add_column("ID", style="cyan")
    table.add_column("Model")
    table.add_column("Dims")
    table.add_column("Raw")
    table.add_column("Calibrated")
    table.add_column("Quality")
    table.add_column("Final", style="green")
    table.add_column("Content")

    for r in results:
        table.add_row(
            r.id,
            r.original_model,
            str(r.original_dimension),
            f"{r.raw_similarity:.3f}",
            f"{r.similarity:.3f}",
            f"{r.model_quality_score:.2f}",
            f"{r.final_score:.3f}",
            _snippet(r.content),
        )
    return table


def _hybrid_table(title: str, results: list[HybridSearchResult]) -> Table:
    table = Table(title=title)
    table.add_column("ID", style="cyan")
    table.add_column("Semantic")
    table.add_column("Keyword")
    table.add_column("Hybrid", style="green")
    table.add_column("Content")

    for r in results:
        table.add_row(
            r.id,
            f"{r.semantic_score:.3f}",
            f"{r.keyword_score:.3f}",
            f"{r.hybrid_score:.3f}",
            _snippet(r.content),
        )
    return table


# --- Commands ---


@app.command()
def search(
    query: str = typer.Argument(..., help="Search query"),
    tenant: UUID = TENANT_OPTION,
    limit: int = LIMIT_OPTION,
    min_similarity: float = typer.Option(0.7, "--min-similarity", "-s", help="Score floor"),
    rerank: bool = typer.Option(False, "--rerank", "-r", help="Rerank results"),
) -> None:
    """Semantic search for free text."""
    options = SearchOptions(limit=limit, min_similarity=min_similarity, use_reranking=rerank)
    asyncio.run(_search_async(query, tenant, options))


async def _search_async(query: str, tenant: UUID, options: SearchOptions) -> None:
    """Async search implementation."""
    settings = get_settings()

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
        transient=True,
    ) as progress:
        progress.add_task("Searching...", total=None)
        try:
            async with _engine(settings) as engine:
                results = await engine.search(_context(tenant, settings), query, options)
        except MeshRankError as e:
            raise _fail(e) from e

    console.print(_results_table(f"Results for: {query}", results))
    if results.has_more:
        console.print("[dim]More results available[/dim]")


@app.command()
def vector(
    embedding: str = typer.Argument(..., help="JSON file or comma-separated floats"),
    tenant: UUID = TENANT_OPTION,
    limit: int = LIMIT_OPTION,
    min_similarity: float = typer.Option(0.7, "--min-similarity", "-s", help="Score floor"),
    rerank_query: str | None = typer.Option(None, "--rerank-query", help="Rerank against text"),
) -> None:
    """Search with a pre-computed embedding."""
    try:
        values = _parse_vector(embedding)
    except (ValueError, OSError) as e:
        raise _fail(e) from e

    options = SearchOptions(
        limit=limit,
        min_similarity=min_similarity,
        use_reranking=rerank_query is not None,
        rerank_query=rerank_query,
    )
    asyncio.run(_vector_async(values, tenant, options))


async def _vector_async(values: list[float], tenant: UUID, options: SearchOptions) -> None:
    settings = get_settings()
    try:
        async with _engine(settings) as engine:
            results = await engine.search_by_vector(_context(tenant, settings), values, options)
    except MeshRankError as e:
        raise _fail(e) from e

    console.print(_results_table(f"Nearest to {len(values)}-d vector", results))


@app.command()
def similar(
    content_id: str = typer.Argument(..., help="Stored content id"),
    tenant: UUID = TENANT_OPTION,
    limit: int = LIMIT_OPTION,
    min_similarity: float = typer.Option(0.7, "--min-similarity", "-s", help="Score floor"),
) -> None:
    """Find items similar to a stored one."""
    options = SearchOptions(limit=limit, min_similarity=min_similarity)
    asyncio.run(_similar_async(content_id, tenant, options))


async def _similar_async(content_id: str, tenant: UUID, options: SearchOptions) -> None:
    settings = get_settings()
    try:
        async with _engine(settings) as engine:
            results = await engine.search_by_content_id(
                _context(tenant, settings), content_id, options
            )
    except MeshRankError as e:
        raise _fail(e) from e

    console.print(_results_table(f"Similar to {content_id}", results))


@app.command("cross-model")
def cross_model(
    query: str = typer.Argument(..., help="Search query"),
    tenant: UUID = TENANT_OPTION,
    model: str = typer.Option("", "--model", "-m", help="Search model"),
    include: list[str] = typer.Option([], "--include", help="Only these models"),
    exclude: list[str] = typer.Option([], "--exclude", help="Skip these models"),
    task: TaskType = typer.Option(TaskType.DEFAULT, "--task", help="Task profile"),
    limit: int = LIMIT_OPTION,
    min_similarity: float = typer.Option(0.7, "--min-similarity", "-s", help="Score floor"),
) -> None:
    """Search across embeddings from every model with calibrated scores."""
    request = CrossModelSearchRequest(
        query=query,
        search_model=model,
        include_models=include,
        exclude_models=exclude,
        task_type=task,
        limit=limit,
        min_similarity=min_similarity,
    )
    asyncio.run(_cross_model_async(request, tenant))


async def _cross_model_async(request: CrossModelSearchRequest, tenant: UUID) -> None:
    settings = get_settings()
    try:
        async with _engine(settings) as engine:
            results = await engine.cross_model_search(_context(tenant, settings), request)
    except MeshRankError as e:
        raise _fail(e) from e

    console.print(_cross_model_table(f"Cross-model results for: {request.query}", results))


@app.command()
def hybrid(
    query: str = typer.Argument("", help="Semantic query"),
    tenant: UUID = TENANT_OPTION,
    keyword: list[str] = typer.Option([], "--keyword", "-k", help="Keyword (repeatable)"),
    weight: float = typer.Option(0.7, "--weight", "-w", help="Semantic weight 0-1"),
    limit: int = LIMIT_OPTION,
) -> None:
    """Blend semantic and keyword search."""
    request = HybridSearchRequest(
        query=query,
        keywords=keyword,
        hybrid_weight=weight,
        limit=limit,
    )
    asyncio.run(_hybrid_async(request, tenant))


async def _hybrid_async(request: HybridSearchRequest, tenant: UUID) -> None:
    settings = get_settings()
    try:
        async with _engine(settings) as engine:
            results = await engine.hybrid_search(_context(tenant, settings), request)
    except MeshRankError as e:
        raise _fail(e) from e

    console.print(_hybrid_table("Hybrid results", results))


@app.command()
def calibrate(
    raw: float = typer.Argument(..., help="Raw similarity"),
    source_model: str = typer.Option(..., "--source-model", help="Model that embedded the item"),
    target_model: str = typer.Option("", "--target-model", help="Model of the query"),
    source_dim: int = typer.Option(1536, "--source-dim", help="Item embedding dimension"),
    target_dim: int = typer.Option(1536, "--target-dim", help="Query embedding dimension"),
    task: TaskType = typer.Option(TaskType.DEFAULT, "--task", help="Task profile"),
) -> None:
    """Show how a raw similarity is calibrated (offline)."""
    normalizer = CrossModelNormalizer()
    target = target_model or source_model
    similarity, quality, final = normalizer.score(
        raw, source_model, target, source_dim, target_dim, task
    )

    console.print(
        Panel(
            f"[bold]Dimension penalty:[/bold] {normalizer.dimension_penalty(source_dim, target_dim):.4f}\n"
            f"[bold]Calibration:[/bold] {normalizer.calibration(source_model, target):.4f}\n"
            f"[bold]Similarity:[/bold] {similarity:.4f}\n"
            f"[bold]Model quality:[/bold] {quality:.4f}\n"
            f"[bold]Final score:[/bold] {final:.4f}",
            title=f"{source_model} -> {target} ({task.value})",
        )
    )


@app.command()
def version() -> None:
    """Show version information."""
    from meshrank import __version__

    console.print(f"MeshRank v{__version__}")


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
