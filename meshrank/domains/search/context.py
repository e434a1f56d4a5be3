"""
Request Context - Tenant, correlation id and deadline for one search call.

Every public search operation takes a RequestContext as its first argument.
The tenant is mandatory; every retrieval path filters on it.
"""

from __future__ import annotations

import time
import uuid
from uuid import UUID

from pydantic import BaseModel, Field

__all__ = ["RequestContext"]


class RequestContext(BaseModel):
    """Per-call context threaded through every stage."""

    tenant_id: UUID
    correlation_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    deadline: float | None = None  # time.monotonic() based

    model_config = {"frozen": True}

    @classmethod
    def create(
        cls,
        tenant_id: UUID | str,
        timeout: float | None = None,
        correlation_id: str | None = None,
    ) -> RequestContext:
        """Build a context, optionally expiring ``timeout`` seconds from now."""
        deadline = time.monotonic() + timeout if timeout is not None else None
        return cls(
            tenant_id=UUID(str(tenant_id)),
            correlation_id=correlation_id or str(uuid.uuid4()),
            deadline=deadline,
        )

    def remaining(self) -> float | None:
        """Seconds left before the deadline, None when unbounded."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    @property
    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0.0

    def log_tags(self) -> tuple[str, str]:
        """(tenant, correlation_id) for %-style log lines."""
        return str(self.tenant_id), self.correlation_id
