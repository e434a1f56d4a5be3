"""
Error Taxonomy - Consistent error codes across the engine.

Usage:
    from meshrank.config.errors import ErrorCode, MeshRankError

    raise MeshRankError(ErrorCode.SEARCH_INVALID_QUERY, "search text cannot be empty")
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Standardized error codes for machine-readable error responses."""

    # Search errors
    SEARCH_INVALID_QUERY = "SEARCH_INVALID_QUERY"
    SEARCH_RETRIEVAL_FAILED = "SEARCH_RETRIEVAL_FAILED"
    SEARCH_TIMEOUT = "SEARCH_TIMEOUT"

    # Collaborator errors
    EMBEDDING_FAILED = "EMBEDDING_FAILED"
    COLLABORATOR_UNAVAILABLE = "COLLABORATOR_UNAVAILABLE"

    # Storage errors
    STORAGE_CONNECTION_FAILED = "STORAGE_CONNECTION_FAILED"
    STORAGE_QUERY_FAILED = "STORAGE_QUERY_FAILED"

    # General errors
    INTERNAL_ERROR = "INTERNAL_ERROR"


# Codes the transport layer reports as client errors
_CLIENT_ERROR_CODES = frozenset({ErrorCode.SEARCH_INVALID_QUERY})


class MeshRankError(Exception):
    """Base exception with error code support."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    @property
    def http_status(self) -> int:
        """Status code a transport layer should map this error to."""
        if self.code in _CLIENT_ERROR_CODES:
            return 400
        if self.code == ErrorCode.SEARCH_TIMEOUT:
            return 504
        if self.code in (ErrorCode.COLLABORATOR_UNAVAILABLE, ErrorCode.STORAGE_CONNECTION_FAILED):
            return 503
        return 500

    def to_dict(self) -> dict[str, Any]:
        """Convert to API-friendly dictionary."""
        return {
            "code": self.code.value,
            "message": self.message,
            "details": self.details,
        }


# Domain-specific exceptions for cleaner imports
class ValidationError(MeshRankError):
    """Invalid search input, raised before any I/O."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(ErrorCode.SEARCH_INVALID_QUERY, message, details)


class RetrievalError(MeshRankError):
    """Repository or store failure on a retrieval path."""

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        code: ErrorCode = ErrorCode.SEARCH_RETRIEVAL_FAILED,
    ) -> None:
        super().__init__(code, message, details)


class EmbeddingError(RetrievalError):
    """Embedding generation failed for a query path."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, details, code=ErrorCode.EMBEDDING_FAILED)


class StorageError(MeshRankError):
    """Storage/database errors."""

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        code: ErrorCode = ErrorCode.STORAGE_QUERY_FAILED,
    ) -> None:
        super().__init__(code, message, details)


class CollaboratorError(MeshRankError):
    """Remote collaborator (embedding, reranker) unavailable."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(ErrorCode.COLLABORATOR_UNAVAILABLE, message, details)
