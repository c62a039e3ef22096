"""A FIFO queue backed by a single JSON array document.

The store is the only source of truth: any number of processes can
share a queue through the same document id, and no client-side lock is
ever taken.  ``offer`` prepends atomically, while ``poll`` is a
read-modify-write guarded by the tail's CAS token and retried through
:class:`~docmesh.core.engine.RetryEngine` when another writer wins the
race.  Because ``offer`` prepends and ``poll`` removes ``[-1]``, the
oldest element is always at the tail.

Usage::

    store = InMemoryDocumentStore()
    queue = DocumentQueue("jobs", store)
    await queue.offer({"id": 1})
    job = await queue.poll()
"""

from __future__ import annotations

import contextlib
import logging
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

from pydantic import BaseModel, Field

from docmesh.core.engine import RetryEngine
from docmesh.core.errors import (
    CasMismatchError,
    ConcurrencyExhaustedError,
    DocumentExistsError,
    EmptyQueueError,
    InvalidArgumentError,
    MultiMutationError,
    PathNotFoundError,
    RetryExhaustedError,
)
from docmesh.core.models import AttemptContext, FatalFailure, Outcome, RetryableFailure, Value
from docmesh.patterns.backoff import Backoff, Jitter
from docmesh.patterns.retry import RetryPolicy
from docmesh.storage.base import DocumentStore, LookupInSpec, MutateInSpec, SubdocStatus

logger = logging.getLogger(__name__)

_TAIL = "[-1]"
_ROOT = ""


def _identity(value: Any) -> Any:
    return value


@dataclass(frozen=True)
class ElementCodec:
    """Converts queue elements to and from JSON-compatible values."""

    encode: Callable[[Any], Any] = _identity
    decode: Callable[[Any], Any] = _identity


class QueueOptions(BaseModel):
    """Tuning knobs for a :class:`DocumentQueue`."""

    cas_mismatch_retries: int = Field(default=10, ge=1, le=1000)
    cas_retry_delay_ms: float = Field(default=0.0, ge=0)
    cas_retry_jitter: float | None = Field(default=None, gt=0, le=1)
    poll_timeout_seconds: float | None = Field(default=None, gt=0)

    def retry_policy(self) -> RetryPolicy:
        """Policy used by ``poll`` to re-run its CAS loop."""
        policy = RetryPolicy.times(self.cas_mismatch_retries).retry_when(
            lambda exc: isinstance(exc, CasMismatchError)
        )
        if self.cas_retry_delay_ms > 0:
            policy = policy.with_backoff(
                Backoff.fixed(timedelta(milliseconds=self.cas_retry_delay_ms))
            )
        if self.cas_retry_jitter is not None:
            policy = policy.with_jitter(Jitter.random(self.cas_retry_jitter))
        return policy

    def poll_deadline(self) -> timedelta | None:
        if self.poll_timeout_seconds is None:
            return None
        return timedelta(seconds=self.poll_timeout_seconds)


class DocumentQueue:
    """FIFO queue over one store document, safe under concurrent writers.

    Args:
        doc_id: Id of the backing document.  If it already exists its
            content is used as the queue's content; otherwise it is
            created empty on first use.
        store: Document store holding the queue.
        codec: Element conversion; identity over JSON values by default.
        options: CAS retry tuning.
        engine: Engine driving the ``poll`` retry loop.
    """

    def __init__(
        self,
        doc_id: str,
        store: DocumentStore,
        codec: ElementCodec | None = None,
        options: QueueOptions | None = None,
        engine: RetryEngine | None = None,
    ) -> None:
        self._doc_id = doc_id
        self._store = store
        self._codec = codec or ElementCodec()
        self._options = options or QueueOptions()
        self._policy = self._options.retry_policy()
        self._engine = engine or RetryEngine()
        self._initialized = False

    @property
    def doc_id(self) -> str:
        return self._doc_id

    @property
    def options(self) -> QueueOptions:
        return self._options

    async def initialize(self) -> None:
        """Create the backing document as an empty array if it is missing."""
        if self._initialized:
            return
        with contextlib.suppress(DocumentExistsError):
            # Another client created it first; use theirs.
            await self._store.insert(self._doc_id, [])
            logger.debug("Created queue document", extra={"doc_id": self._doc_id})
        self._initialized = True

    async def _ensure_initialized(self) -> None:
        if not self._initialized:
            await self.initialize()

    # ------------------------------------------------------------------
    # Queue interface
    # ------------------------------------------------------------------

    async def offer(self, element: Any) -> bool:
        """Add *element* at the head of the queue."""
        if element is None:
            raise InvalidArgumentError("Unsupported null value")
        await self._ensure_initialized()
        await self._store.mutate_in(
            self._doc_id,
            [MutateInSpec.array_prepend(_ROOT, self._codec.encode(element))],
        )
        return True

    async def add(self, element: Any) -> bool:
        return await self.offer(element)

    async def poll(self) -> Any:
        """Remove and return the oldest element, or ``None`` if the queue is empty.

        Raises:
            ConcurrencyExhaustedError: Every CAS attempt lost to another writer.
            OperationCancelledError: ``poll_timeout_seconds`` elapsed first.
        """
        await self._ensure_initialized()
        try:
            return await self._engine.execute(
                self._poll_attempt,
                self._policy,
                deadline=self._options.poll_deadline(),
            )
        except RetryExhaustedError as exc:
            logger.warning(
                "Gave up polling after %d attempts",
                exc.attempts,
                extra={"doc_id": self._doc_id},
            )
            raise ConcurrencyExhaustedError(exc.attempts, exc.last_cause) from exc

    async def _poll_attempt(self, context: AttemptContext) -> Outcome:
        try:
            result = await self._store.lookup_in(self._doc_id, [LookupInSpec.get(_TAIL)])
            element = result.content_as(0, self._codec.decode)
        except PathNotFoundError:
            return Value(None)

        try:
            await self._store.mutate_in(
                self._doc_id, [MutateInSpec.remove(_TAIL)], cas=result.cas
            )
        except CasMismatchError as exc:
            logger.debug(
                "CAS conflict on attempt %d",
                context.attempt,
                extra={"doc_id": self._doc_id, "attempt": context.attempt},
            )
            return RetryableFailure(exc)
        except MultiMutationError as exc:
            if exc.first_failure_status is SubdocStatus.PATH_NOT_FOUND:
                return Value(None)
            return FatalFailure(exc)
        return Value(element)

    async def remove(self) -> Any:
        """Like :meth:`poll` but raises :class:`EmptyQueueError` when empty."""
        element = await self.poll()
        if element is None:
            raise EmptyQueueError(f"Queue {self._doc_id!r} is empty")
        return element

    async def peek(self) -> Any:
        """Return the oldest element without removing it, or ``None``."""
        await self._ensure_initialized()
        result = await self._store.lookup_in(self._doc_id, [LookupInSpec.get(_TAIL)])
        try:
            return result.content_as(0, self._codec.decode)
        except PathNotFoundError:
            return None

    async def element(self) -> Any:
        """Like :meth:`peek` but raises :class:`EmptyQueueError` when empty."""
        element = await self.peek()
        if element is None:
            raise EmptyQueueError(f"Queue {self._doc_id!r} is empty")
        return element

    async def size(self) -> int:
        """Element count at read time; may be stale as soon as it returns."""
        await self._ensure_initialized()
        result = await self._store.lookup_in(self._doc_id, [LookupInSpec.count(_ROOT)])
        return int(result.content_as(0))

    async def is_empty(self) -> bool:
        return await self.size() == 0

    async def clear(self) -> None:
        """Overwrite the document with an empty array (last writer wins)."""
        await self._store.upsert(self._doc_id, [])
        self._initialized = True

    async def snapshot(self) -> list[Any]:
        """Point-in-time copy of the queue, most recently offered first."""
        await self._ensure_initialized()
        result = await self._store.get(self._doc_id)
        return [self._codec.decode(item) for item in result.content]

    async def __aiter__(self) -> AsyncIterator[Any]:
        for item in await self.snapshot():
            yield item

    def __repr__(self) -> str:
        return f"DocumentQueue(doc_id={self._doc_id!r})"
