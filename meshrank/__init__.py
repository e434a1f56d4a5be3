"""
MeshRank - Multi-tenant, multi-model search and ranking engine.

Example:
    >>> from meshrank.domains.search import RequestContext, SearchCoordinator
    >>> ctx = RequestContext.create(tenant_id)
    >>> results = await coordinator.search(ctx, "retry with exponential backoff")
"""

__version__ = "1.0.0"
__all__ = ["__version__"]
