"""
Postgres Embedding Store - pgvector-backed retrieval.

Implements both SearchRepository (tenant-scoped k-NN) and EmbeddingStore
(cross-model and full-text queries) over ``<schema>.embeddings``.

Features:
- Lazy asyncpg pool with pgvector and jsonb codecs registered per connection
- SQL built by pure functions (testable without a database)
- Every query filters on tenant_id
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any
from uuid import UUID

import asyncpg
import numpy as np
from pgvector.asyncpg import register_vector

from meshrank.config import Settings, get_settings
from meshrank.config.errors import ErrorCode, StorageError
from meshrank.domains.search.models import (
    CrossModelSearchRequest,
    CrossModelSearchResult,
    KeywordHit,
    RepositoryResult,
    RepositoryResults,
    RepositorySearchOptions,
)

logger = logging.getLogger(__name__)

__all__ = [
    "PgEmbeddingStore",
    "build_content_id_query",
    "build_cross_model_query",
    "build_keyword_query",
    "build_model_dimensions_query",
    "build_vector_query",
]

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

Query = tuple[str, list[Any]]


class _Params:
    """Positional parameter list for asyncpg ($1, $2, ...)."""

    def __init__(self) -> None:
        self.values: list[Any] = []

    def add(self, value: Any) -> str:
        self.values.append(value)
        return f"${len(self.values)}"


def _as_vector(values: list[float]) -> np.ndarray:
    return np.asarray(values, dtype=np.float32)


def _repository_filters(
    params: _Params,
    options: RepositorySearchOptions,
) -> list[str]:
    clauses = []
    metadata = dict(options.metadata_filters)
    # The executor mirrors content types into the metadata filters
    from_metadata = metadata.pop("content_types", [])
    content_types = list(options.content_types or from_metadata)

    if content_types:
        clauses.append(f"e.content_type = ANY({params.add(content_types)})")
    if metadata:
        clauses.append(f"e.metadata @> {params.add(metadata)}")
    return clauses


def build_vector_query(
    schema: str,
    vector: list[float],
    options: RepositorySearchOptions,
) -> Query:
    """
    k-NN by cosine distance within one tenant.

    Fetches ``limit + 1`` rows so the caller can tell whether more exist.
    """
    params = _Params()
    vec = params.add(_as_vector(vector))
    tenant = params.add(options.tenant_id)
    where = [f"e.tenant_id = {tenant}", *_repository_filters(params, options)]
    threshold = params.add(options.similarity_threshold)
    limit = params.add(options.limit + 1)
    offset = params.add(options.offset)

    conditions = " AND ".join(where)
    sql = f"""
        SELECT
            e.id::text AS id,
            e.tenant_id,
            e.content,
            e.content_type,
            e.content_hash,
            e.metadata,
            e.embedding <=> {vec} AS distance,
            1 - (e.embedding <=> {vec}) AS score
        FROM {schema}.embeddings e
        WHERE {conditions}
            AND 1 - (e.embedding <=> {vec}) >= {threshold}
        ORDER BY distance ASC, e.id ASC
        LIMIT {limit} OFFSET {offset}
    """
    return sql, params.values


def build_content_id_query(
    schema: str,
    content_id: str,
    options: RepositorySearchOptions,
) -> Query:
    """Neighbours of a stored item; the seed must belong to the same tenant."""
    params = _Params()
    seed = params.add(content_id)
    tenant = params.add(options.tenant_id)
    where = [
        f"e.tenant_id = {tenant}",
        f"e.id::text <> {seed}",
        *_repository_filters(params, options),
    ]
    threshold = params.add(options.similarity_threshold)
    limit = params.add(options.limit + 1)
    offset = params.add(options.offset)

    conditions = " AND ".join(where)
    sql = f"""
        WITH seed AS (
            SELECT embedding
            FROM {schema}.embeddings
            WHERE id::text = {seed} AND tenant_id = {tenant}
            LIMIT 1
        )
        SELECT
            e.id::text AS id,
            e.tenant_id,
            e.content,
            e.content_type,
            e.content_hash,
            e.metadata,
            e.embedding <=> s.embedding AS distance,
            1 - (e.embedding <=> s.embedding) AS score
        FROM {schema}.embeddings e, seed s
        WHERE {conditions}
            AND 1 - (e.embedding <=> s.embedding) >= {threshold}
        ORDER BY distance ASC, e.id ASC
        LIMIT {limit} OFFSET {offset}
    """
    return sql, params.values


def build_cross_model_query(
    schema: str,
    request: CrossModelSearchRequest,
    target_dimension: int,
) -> Query:
    """
    Similarity across models with a dimension-mismatch penalty.

    Rows whose model dimension differs from the target lose up to 10% of
    their cosine similarity, proportional to the relative difference.
    """
    params = _Params()
    dims = params.add(target_dimension)
    vec = params.add(_as_vector(request.query_embedding))
    tenant = params.add(request.tenant_id)

    where = [f"e.tenant_id = {tenant}"]
    if request.context_id is not None:
        where.append(f"e.context_id = {params.add(request.context_id)}")
    if request.include_models:
        where.append(f"e.model_name = ANY({params.add(list(request.include_models))})")
    if request.exclude_models:
        where.append(f"e.model_name != ALL({params.add(list(request.exclude_models))})")
    if request.metadata_filter:
        where.append(f"e.metadata @> {params.add(dict(request.metadata_filter))}")

    min_similarity = params.add(request.min_similarity)
    limit = params.add(request.limit)

    conditions = " AND ".join(where)
    sql = f"""
        WITH normalized_embeddings AS (
            SELECT
                e.id,
                e.context_id,
                e.content,
                e.model_name AS original_model,
                e.model_dimensions AS original_dimension,
                e.metadata,
                e.created_at,
                COALESCE(e.metadata->>'agent_id', '') AS agent_id,
                CASE
                    WHEN e.model_dimensions = {dims} THEN
                        1 - (e.embedding <=> {vec})
                    ELSE
                        (1 - (e.embedding <=> {vec})) *
                        (1 - ABS(e.model_dimensions - {dims})::float
                            / GREATEST(e.model_dimensions, {dims})::float * 0.1)
                END AS similarity
            FROM {schema}.embeddings e
            WHERE {conditions}
        )
        SELECT
            id::text AS id,
            context_id::text AS context_id,
            content,
            original_model,
            original_dimension,
            similarity,
            agent_id,
            metadata,
            created_at
        FROM normalized_embeddings
        WHERE similarity >= {min_similarity}
        ORDER BY similarity DESC, id ASC
        LIMIT {limit}
    """
    return sql, params.values


def build_keyword_query(
    schema: str,
    tsquery: str,
    tenant_id: UUID,
    limit: int,
    metadata_filter: dict[str, Any] | None = None,
) -> Query:
    """English full-text match ranked by ts_rank_cd."""
    params = _Params()
    text_query = params.add(tsquery)
    where = [f"e.tenant_id = {params.add(tenant_id)}"]
    if metadata_filter:
        where.append(f"e.metadata @> {params.add(dict(metadata_filter))}")
    row_limit = params.add(limit)

    conditions = " AND ".join(where)
    sql = f"""
        SELECT
            e.id::text AS id,
            e.context_id::text AS context_id,
            e.content,
            e.model_name AS original_model,
            e.model_dimensions AS original_dimension,
            e.metadata,
            e.created_at,
            COALESCE(e.metadata->>'agent_id', '') AS agent_id,
            ts_rank_cd(to_tsvector('english', e.content), query) AS rank
        FROM {schema}.embeddings e,
            to_tsquery('english', {text_query}) query
        WHERE {conditions}
            AND to_tsvector('english', e.content) @@ query
        ORDER BY rank DESC, e.id ASC
        LIMIT {row_limit}
    """
    return sql, params.values


def build_model_dimensions_query(schema: str, model_name: str) -> Query:
    sql = f"""
        SELECT dimensions
        FROM {schema}.embedding_models
        WHERE model_name = $1
        ORDER BY is_active DESC
        LIMIT 1
    """
    return sql, [model_name]


def _cross_model_row(row: Any) -> CrossModelSearchResult:
    return CrossModelSearchResult(
        id=row["id"],
        context_id=row["context_id"],
        content=row["content"] or "",
        original_model=row["original_model"] or "",
        original_dimension=row["original_dimension"] or 0,
        raw_similarity=row.get("similarity", 0.0),
        agent_id=row["agent_id"] or "",
        metadata=row["metadata"] or {},
        created_at=row["created_at"],
    )


def _repository_row(row: Any) -> RepositoryResult:
    return RepositoryResult(
        id=row["id"],
        score=float(row["score"]),
        distance=float(row["distance"]),
        content=row["content"] or "",
        type=row["content_type"] or "",
        metadata=row["metadata"],
        content_hash=row["content_hash"] or "",
        tenant_id=row["tenant_id"],
    )


class PgEmbeddingStore:
    """
    Postgres + pgvector store for search.

    Example:
        >>> store = PgEmbeddingStore("postgresql://localhost/meshrank")
        >>> rows = await store.cross_model_search(request, target_dimension=1536)
        >>> await store.close()
    """

    def __init__(
        self,
        dsn: str,
        schema: str = "mcp",
        pool_size: int = 10,
        command_timeout: float = 30.0,
    ) -> None:
        """
        Initialize store.

        Args:
            dsn: PostgreSQL DSN
            schema: Schema holding the embeddings tables
            pool_size: Maximum pool connections
            command_timeout: Seconds allowed per statement
        """
        if not _IDENTIFIER.match(schema):
            raise ValueError(f"Invalid schema name: {schema!r}")
        self.dsn = dsn
        self.schema = schema
        self.pool_size = pool_size
        self.command_timeout = command_timeout
        self._pool: asyncpg.Pool | None = None

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> PgEmbeddingStore:
        settings = settings or get_settings()
        return cls(
            settings.database_dsn,
            schema=settings.store_schema,
            pool_size=settings.database_pool_size,
            command_timeout=settings.database_command_timeout,
        )

    @staticmethod
    async def _init_connection(conn: asyncpg.Connection) -> None:
        await register_vector(conn)
        await conn.set_type_codec(
            "jsonb",
            encoder=json.dumps,
            decoder=json.loads,
            schema="pg_catalog",
        )

    async def _get_pool(self) -> asyncpg.Pool:
        """Get or create the connection pool."""
        if self._pool is None:
            try:
                self._pool = await asyncpg.create_pool(
                    self.dsn,
                    min_size=1,
                    max_size=self.pool_size,
                    command_timeout=self.command_timeout,
                    init=self._init_connection,
                )
                logger.info("Created Postgres pool (max_size=%d)", self.pool_size)
            except Exception as e:
                logger.error("Failed to create Postgres pool: %s", e)
                raise StorageError(
                    f"failed to connect to database: {e}",
                    code=ErrorCode.STORAGE_CONNECTION_FAILED,
                ) from e
        return self._pool

    async def _fetch(self, sql: str, args: list[Any]) -> list[Any]:
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                return await conn.fetch(sql, *args)
        except Exception as e:
            logger.error("Query failed: %s", e)
            raise StorageError(f"query failed: {e}") from e

    async def close(self) -> None:
        """Close the connection pool."""
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    # --- SearchRepository ---

    async def search_by_vector(
        self,
        vector: list[float],
        options: RepositorySearchOptions,
    ) -> RepositoryResults:
        rows = await self._fetch(*build_vector_query(self.schema, vector, options))
        return self._page(rows, options.limit)

    async def search_by_content_id(
        self,
        content_id: str,
        options: RepositorySearchOptions,
    ) -> RepositoryResults:
        rows = await self._fetch(*build_content_id_query(self.schema, content_id, options))
        return self._page(rows, options.limit)

    @staticmethod
    def _page(rows: list[Any], limit: int) -> RepositoryResults:
        results = [_repository_row(row) for row in rows[:limit]]
        return RepositoryResults(
            results=results,
            total=len(results),
            has_more=len(rows) > limit,
        )

    # --- EmbeddingStore ---

    async def cross_model_search(
        self,
        request: CrossModelSearchRequest,
        target_dimension: int,
    ) -> list[CrossModelSearchResult]:
        if request.tenant_id is None:
            raise StorageError("cross-model search requires a tenant id")
        rows = await self._fetch(
            *build_cross_model_query(self.schema, request, target_dimension)
        )
        return [_cross_model_row(row) for row in rows]

    async def keyword_search(
        self,
        tsquery: str,
        tenant_id: UUID,
        limit: int,
        metadata_filter: dict[str, Any] | None = None,
    ) -> list[KeywordHit]:
        rows = await self._fetch(
            *build_keyword_query(self.schema, tsquery, tenant_id, limit, metadata_filter)
        )
        return [KeywordHit(result=_cross_model_row(row), rank=float(row["rank"])) for row in rows]

    async def get_model_dimensions(self, model_name: str) -> int | None:
        rows = await self._fetch(*build_model_dimensions_query(self.schema, model_name))
        if not rows:
            return None
        return int(rows[0]["dimensions"])
