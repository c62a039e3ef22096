"""Document store backends.

:func:`open_store` picks a backend from the environment:

- ``DOCMESH_STORAGE``: ``memory`` (default) or ``redis``
- ``DOCMESH_REDIS_URL``: connection URL for the Redis backend
"""

from __future__ import annotations

import logging
import os

from docmesh.storage.base import DocumentStore

logger = logging.getLogger(__name__)


def open_store(backend: str | None = None) -> DocumentStore:
    """Build the configured :class:`DocumentStore`.

    Args:
        backend: Overrides ``DOCMESH_STORAGE`` when given.

    Raises:
        ValueError: If the backend name is unknown.
    """
    storage_backend = (backend or os.environ.get("DOCMESH_STORAGE", "memory")).lower()
    if storage_backend == "redis":
        from docmesh.storage.redis import RedisDocumentStore

        redis_url = os.environ.get("DOCMESH_REDIS_URL", "redis://localhost:6379/0")
        logger.info("Using Redis document store at %s", redis_url)
        return RedisDocumentStore(redis_url=redis_url)
    if storage_backend == "memory":
        from docmesh.storage.memory import InMemoryDocumentStore

        return InMemoryDocumentStore()
    raise ValueError(f"Unknown storage backend: {storage_backend!r}. Use 'memory' or 'redis'")
