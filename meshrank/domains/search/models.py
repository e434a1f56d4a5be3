"""
Search Models - Data types for the search domain.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from .ranking import clamp_score

DEFAULT_LIMIT = 10
MAX_LIMIT = 100
DEFAULT_MIN_SIMILARITY = 0.7
DEFAULT_HYBRID_WEIGHT = 0.7
STANDARD_DIMENSION = 1536


class TaskType(str, Enum):
    """Task profiles used to weight similarity against model quality."""

    RESEARCH = "research"
    CODE_ANALYSIS = "code_analysis"
    MULTILINGUAL = "multilingual"
    DEFAULT = "default"


class ExpansionType(str, Enum):
    """Query expansion strategies a QueryExpander may apply."""

    SYNONYM = "synonym"
    DECOMPOSE = "decompose"
    HYDE = "hyde"


class SearchFilter(BaseModel):
    """Structured filter; fields prefixed ``metadata.`` filter on metadata."""

    field: str
    operator: str = "eq"
    value: Any = None


class SearchOptions(BaseModel):
    """Per-call search options."""

    limit: int = DEFAULT_LIMIT
    offset: int = Field(default=0, ge=0)
    min_similarity: float = Field(default=DEFAULT_MIN_SIMILARITY, ge=0.0, le=1.0)
    metadata_filters: dict[str, Any] = Field(default_factory=dict)
    content_type: str | None = None
    content_types: list[str] = Field(default_factory=list)
    filters: list[SearchFilter] = Field(default_factory=list)
    use_query_expansion: bool = False
    use_reranking: bool = False
    query_expansion_types: list[ExpansionType] = Field(default_factory=list)
    max_expansions: int = Field(default=3, ge=0)
    # Defaults for callers building cross-model or hybrid requests from shared
    # options; the request models carry the values those paths read
    hybrid_weight: float = Field(default=DEFAULT_HYBRID_WEIGHT, ge=0.0, le=1.0)
    task_type: TaskType = TaskType.DEFAULT
    rerank_query: str | None = None

    @field_validator("limit")
    @classmethod
    def _cap_limit(cls, value: int) -> int:
        if value <= 0:
            return DEFAULT_LIMIT
        return min(value, MAX_LIMIT)


class EmbeddingVector(BaseModel):
    """Embedding plus the content reference it was computed for."""

    content_id: str
    content_type: str = ""
    model_id: str = ""
    vector: list[float] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}


class SearchResult(BaseModel):
    """Single ranked result."""

    content: EmbeddingVector
    score: float = 0.0
    matches: dict[str, Any] = Field(default_factory=dict)

    @field_validator("score")
    @classmethod
    def _clamp_score(cls, value: float) -> float:
        return clamp_score(value)

    @property
    def content_id(self) -> str:
        return self.content.content_id


class SearchResults(BaseModel):
    """Ranked result page."""

    results: list[SearchResult] = Field(default_factory=list)
    total: int = 0
    has_more: bool = False

    @classmethod
    def of(cls, results: list[SearchResult], has_more: bool = False) -> SearchResults:
        return cls(results=results, total=len(results), has_more=has_more)


class CrossModelSearchRequest(BaseModel):
    """Search across embeddings produced by different models."""

    query: str = ""
    query_embedding: list[float] = Field(default_factory=list)
    search_model: str = ""
    include_models: list[str] = Field(default_factory=list)
    exclude_models: list[str] = Field(default_factory=list)
    tenant_id: UUID | None = None
    context_id: UUID | None = None
    metadata_filter: dict[str, Any] = Field(default_factory=dict)
    limit: int = DEFAULT_LIMIT
    min_similarity: float = DEFAULT_MIN_SIMILARITY
    task_type: TaskType = TaskType.DEFAULT


class CrossModelSearchResult(BaseModel):
    """Result with calibration details; every score is derived, never persisted."""

    id: str
    context_id: str | None = None
    content: str = ""
    original_model: str = ""
    original_dimension: int = 0
    raw_similarity: float = 0.0
    similarity: float = 0.0
    model_quality_score: float = 0.0
    final_score: float = 0.0
    agent_id: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = None

    @field_validator("raw_similarity", "similarity", "model_quality_score", "final_score")
    @classmethod
    def _clamp_scores(cls, value: float) -> float:
        return clamp_score(value)


class HybridSearchRequest(BaseModel):
    """Semantic + keyword search request."""

    query: str = ""
    query_embedding: list[float] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)
    tenant_id: UUID | None = None
    metadata_filter: dict[str, Any] = Field(default_factory=dict)
    limit: int = DEFAULT_LIMIT
    hybrid_weight: float = Field(default=DEFAULT_HYBRID_WEIGHT, ge=0.0, le=1.0)


class HybridSearchResult(CrossModelSearchResult):
    """Cross-model result blended with keyword relevance."""

    semantic_score: float = 0.0
    keyword_score: float = 0.0
    hybrid_score: float = 0.0

    @field_validator("semantic_score", "keyword_score", "hybrid_score")
    @classmethod
    def _clamp_hybrid_scores(cls, value: float) -> float:
        return clamp_score(value)


class KeywordHit(BaseModel):
    """Full-text match with its raw ts_rank_cd value."""

    result: CrossModelSearchResult
    rank: float = 0.0


# --- Repository-level types ---


class RepositorySearchOptions(BaseModel):
    """Options as understood by a SearchRepository; always tenant-scoped."""

    tenant_id: UUID
    limit: int = DEFAULT_LIMIT
    offset: int = 0
    min_similarity: float = DEFAULT_MIN_SIMILARITY
    similarity_threshold: float = DEFAULT_MIN_SIMILARITY
    metadata_filters: dict[str, Any] = Field(default_factory=dict)
    content_types: list[str] = Field(default_factory=list)
    ranking_algorithm: str = "cosine"
    max_results: int = DEFAULT_LIMIT


class RepositoryResult(BaseModel):
    """Raw repository hit."""

    id: str
    score: float = 0.0
    distance: float = 0.0
    content: str = ""
    type: str = ""
    metadata: dict[str, Any] | None = None
    content_hash: str = ""
    tenant_id: UUID | None = None


class RepositoryResults(BaseModel):
    """Repository result container; individual entries may be missing."""

    results: list[RepositoryResult | None] | None = None
    total: int = 0
    has_more: bool = False


# --- Collaborator DTOs ---


class ExpansionOptions(BaseModel):
    """Options passed to a QueryExpander."""

    max_expansions: int = 3
    include_original: bool = True
    expansion_types: list[ExpansionType] = Field(default_factory=list)


class Expansion(BaseModel):
    """Single expanded query variant."""

    text: str
    type: ExpansionType | None = None
    weight: float = 1.0


class ExpandedQuery(BaseModel):
    """Expander output."""

    original: str
    expansions: list[Expansion] = Field(default_factory=list)


class RerankCandidate(BaseModel):
    """Minimal projection of a result handed to a Reranker."""

    id: str
    content: str = ""
    score: float = 0.0
    metadata: dict[str, Any] = Field(default_factory=dict)


class RerankOptions(BaseModel):
    """Options passed to a Reranker."""

    top_k: int = DEFAULT_LIMIT
    model: str | None = None
