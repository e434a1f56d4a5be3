"""
Rerank Service Client - Remote cross-encoder reranking over HTTP.

Wire format:
    POST /rerank  {"query", "documents": [{"id", "content", "score", "metadata"}], "top_k", "model"?}
    200           {"results": [{"id", "content", "score", "metadata"}]}
"""

from __future__ import annotations

import logging
from typing import Any

from meshrank.config import Settings, get_settings
from meshrank.config.errors import CollaboratorError
from meshrank.domains.search.models import RerankCandidate, RerankOptions

from .base import ServiceClient

logger = logging.getLogger(__name__)

__all__ = ["RerankServiceClient"]


class RerankServiceClient(ServiceClient):
    """
    Reranker backed by a remote rerank API.

    Example:
        >>> client = RerankServiceClient("http://localhost:8082")
        >>> ranked = await client.rerank("door fault", candidates, RerankOptions(top_k=5))
    """

    service_name = "rerank service"

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> RerankServiceClient | None:
        """Client for the configured reranker, None when no URL is set."""
        settings = settings or get_settings()
        if not settings.reranker_url:
            return None
        return cls(
            settings.reranker_url,
            timeout=settings.reranker_timeout,
            max_attempts=settings.http_retry_attempts,
        )

    async def rerank(
        self,
        query: str,
        candidates: list[RerankCandidate],
        options: RerankOptions,
    ) -> list[RerankCandidate]:
        if not candidates:
            return []

        payload: dict[str, Any] = {
            "query": query,
            "documents": [c.model_dump() for c in candidates],
            "top_k": options.top_k,
        }
        if options.model:
            payload["model"] = options.model

        data = await self._post_json("/rerank", payload)
        if not isinstance(data, dict) or not isinstance(data.get("results"), list):
            raise CollaboratorError("rerank service returned no results")

        ranked = [
            RerankCandidate(
                id=item.get("id") or "",
                content=item.get("content") or "",
                score=float(item.get("score", 0.0)),
                metadata=item.get("metadata") or {},
            )
            for item in data["results"]
        ]
        logger.debug("Reranked %d candidates into %d", len(candidates), len(ranked))
        return ranked[: options.top_k]
