"""Redis-based document store implementation.

Provides a shared, networked :class:`DocumentStore` on top of Redis.
Requires redis-py (asyncio support).

Each document lives in one hash:
- ``{prefix}:doc:{doc_id}`` with fields ``content`` (JSON) and ``cas``

CAS tokens are drawn from the ``{prefix}:cas-seq`` counter so they are
never reused.  Every write runs as an optimistic ``WATCH``/``MULTI``/
``EXEC`` transaction; sub-document specs are evaluated client-side
against the watched snapshot.

Usage:
    store = RedisDocumentStore(redis_url="redis://localhost:6379/0")
    queue = DocumentQueue("jobs", store)
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from redis.asyncio import Redis
from redis.exceptions import WatchError

from docmesh.core.errors import (
    CasMismatchError,
    DocumentExistsError,
    DocumentNotFoundError,
    StoreError,
)
from docmesh.storage.base import DocumentStore, GetResult, LookupInResult, MutationResult
from docmesh.storage.subdoc import apply_mutations, evaluate_lookups

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from docmesh.storage.base import LookupInSpec, MutateInSpec


logger = logging.getLogger(__name__)


class RedisDocumentStore(DocumentStore):
    """Redis-backed document store with optimistic transactions.

    Args:
        redis_url: Redis connection URL (e.g., redis://localhost:6379/0)
        redis_client: Optional pre-configured Redis client
        key_prefix: Namespace for every key this store touches
        max_watch_retries: How often an unguarded write is re-applied
            after losing a ``WATCH`` race before giving up
    """

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        redis_client: Redis | None = None,
        key_prefix: str = "docmesh",
        max_watch_retries: int = 16,
    ) -> None:
        self._redis_url = redis_url
        self._redis: Redis | None = redis_client
        self._prefix = key_prefix
        self._max_watch_retries = max_watch_retries

    def _client(self) -> Redis:
        """Lazy initialization of the Redis connection."""
        if self._redis is None:
            self._redis = Redis.from_url(self._redis_url, decode_responses=True)
        return self._redis

    def _key(self, doc_id: str) -> str:
        return f"{self._prefix}:doc:{doc_id}"

    async def _next_cas(self) -> int:
        return int(await self._client().incr(f"{self._prefix}:cas-seq"))

    @staticmethod
    def _decode(doc_id: str, raw: list[Any]) -> tuple[Any, int]:
        content, cas = raw
        if content is None:
            raise DocumentNotFoundError(f"Document {doc_id!r} not found")
        return json.loads(content), int(cas)

    async def _transact(
        self,
        doc_id: str,
        transform: Callable[[Any, int], Any],
        guarded: bool,
    ) -> MutationResult:
        """Read-modify-write *doc_id* under ``WATCH``.

        *transform* receives the current content and CAS and returns the
        new content (or raises).  A lost race surfaces as
        :class:`CasMismatchError` when the caller supplied a CAS token,
        and is re-applied otherwise.
        """
        key = self._key(doc_id)
        redis = self._client()
        for attempt in range(1, self._max_watch_retries + 1):
            async with redis.pipeline(transaction=True) as pipe:
                try:
                    await pipe.watch(key)
                    content, current = self._decode(doc_id, await pipe.hmget(key, "content", "cas"))
                    updated = transform(content, current)
                    cas = await self._next_cas()
                    pipe.multi()
                    pipe.hset(key, mapping={"content": json.dumps(updated), "cas": cas})
                    await pipe.execute()
                    return MutationResult(cas)
                except WatchError:
                    if guarded:
                        raise CasMismatchError(f"CAS mismatch on {doc_id!r}") from None
                    logger.debug("Lost WATCH race on %s (attempt %d)", key, attempt)
        raise StoreError(
            f"Could not write {doc_id!r} after {self._max_watch_retries} WATCH conflicts"
        )

    # ------------------------------------------------------------------
    # DocumentStore interface
    # ------------------------------------------------------------------

    async def get(self, doc_id: str) -> GetResult:
        raw = await self._client().hmget(self._key(doc_id), "content", "cas")
        content, cas = self._decode(doc_id, raw)
        return GetResult(content, cas)

    async def insert(self, doc_id: str, content: Any) -> MutationResult:
        key = self._key(doc_id)
        async with self._client().pipeline(transaction=True) as pipe:
            try:
                await pipe.watch(key)
                if await pipe.exists(key):
                    raise DocumentExistsError(f"Document {doc_id!r} already exists")
                cas = await self._next_cas()
                pipe.multi()
                pipe.hset(key, mapping={"content": json.dumps(content), "cas": cas})
                await pipe.execute()
            except WatchError:
                raise DocumentExistsError(f"Document {doc_id!r} already exists") from None
        logger.debug("Inserted document %s", key)
        return MutationResult(cas)

    async def upsert(self, doc_id: str, content: Any) -> MutationResult:
        cas = await self._next_cas()
        await self._client().hset(
            self._key(doc_id), mapping={"content": json.dumps(content), "cas": cas}
        )
        return MutationResult(cas)

    async def remove(self, doc_id: str, cas: int | None = None) -> MutationResult:
        key = self._key(doc_id)
        async with self._client().pipeline(transaction=True) as pipe:
            try:
                await pipe.watch(key)
                _, current = self._decode(doc_id, await pipe.hmget(key, "content", "cas"))
                if cas is not None and cas != current:
                    raise CasMismatchError(f"CAS mismatch on {doc_id!r}")
                pipe.multi()
                pipe.delete(key)
                await pipe.execute()
            except WatchError:
                raise CasMismatchError(f"CAS mismatch on {doc_id!r}") from None
        return MutationResult(await self._next_cas())

    async def lookup_in(self, doc_id: str, specs: Sequence[LookupInSpec]) -> LookupInResult:
        raw = await self._client().hmget(self._key(doc_id), "content", "cas")
        content, cas = self._decode(doc_id, raw)
        return LookupInResult(cas, evaluate_lookups(content, specs))

    async def mutate_in(
        self,
        doc_id: str,
        specs: Sequence[MutateInSpec],
        cas: int | None = None,
    ) -> MutationResult:
        def _transform(content: Any, current: int) -> Any:
            if cas is not None and cas != current:
                raise CasMismatchError(f"CAS mismatch on {doc_id!r}")
            return apply_mutations(content, specs)

        return await self._transact(doc_id, _transform, guarded=cas is not None)

    async def close(self) -> None:
        """Close Redis connection."""
        if self._redis is not None:
            await self._redis.aclose()
