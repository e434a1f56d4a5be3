"""
Configuration - Engine settings and error taxonomy.
"""

from .errors import (
    CollaboratorError,
    EmbeddingError,
    ErrorCode,
    MeshRankError,
    RetrievalError,
    StorageError,
    ValidationError,
)
from .settings import Settings, get_settings

__all__ = [
    # Settings
    "Settings",
    "get_settings",
    # Errors
    "ErrorCode",
    "MeshRankError",
    "ValidationError",
    "RetrievalError",
    "EmbeddingError",
    "StorageError",
    "CollaboratorError",
]
