"""
Embedding Service Client - Remote embedding generation over HTTP.

Wire format:
    POST /embeddings  {"text", "content_type", "model"?}
    200               {"embedding": [...], "model": "...", "id"?: "...", "metadata"?: {...}}
"""

from __future__ import annotations

import logging
from typing import Any

from meshrank.config import Settings, get_settings
from meshrank.config.errors import CollaboratorError
from meshrank.domains.search.models import EmbeddingVector

from .base import ServiceClient

logger = logging.getLogger(__name__)

__all__ = ["EmbeddingServiceClient"]


class EmbeddingServiceClient(ServiceClient):
    """
    EmbeddingService backed by a remote embedding API.

    Example:
        >>> client = EmbeddingServiceClient("http://localhost:8081")
        >>> embedding = await client.generate_embedding("door sensor", "search_query")
    """

    service_name = "embedding service"

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> EmbeddingServiceClient:
        settings = settings or get_settings()
        return cls(
            settings.embedding_service_url,
            timeout=settings.embedding_service_timeout,
            max_attempts=settings.http_retry_attempts,
        )

    async def generate_embedding(
        self,
        text: str,
        content_type: str,
        model_hint: str = "",
    ) -> EmbeddingVector:
        """
        Embed text.

        Args:
            text: Text to embed
            content_type: Content type tag (e.g. "search_query")
            model_hint: Preferred model, empty for the service default

        Returns:
            EmbeddingVector with the vector and the model that produced it

        Raises:
            CollaboratorError: Service unavailable or malformed response
        """
        payload: dict[str, Any] = {"text": text, "content_type": content_type}
        if model_hint:
            payload["model"] = model_hint

        data = await self._post_json("/embeddings", payload)
        vector = data.get("embedding") if isinstance(data, dict) else None
        if not vector:
            raise CollaboratorError("embedding service returned no embedding")

        logger.debug(
            "Generated embedding: model=%s dimensions=%d", data.get("model", ""), len(vector)
        )
        return EmbeddingVector(
            content_id=data.get("id") or "",
            content_type=content_type,
            model_id=data.get("model") or model_hint,
            vector=[float(v) for v in vector],
            metadata=data.get("metadata") or {},
        )
