"""Tests for the CAS-backed document queue."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import timedelta

import pytest
from pydantic import ValidationError

from docmesh.core.engine import RetryEngine
from docmesh.core.errors import (
    CasMismatchError,
    ConcurrencyExhaustedError,
    EmptyQueueError,
    InvalidArgumentError,
    MultiMutationError,
    PathMismatchError,
    RetryExhaustedError,
)
from docmesh.datastructures.queue import DocumentQueue, ElementCodec, QueueOptions
from docmesh.observability import PrometheusMetrics
from docmesh.storage.base import MutateInSpec, MutationResult, SubdocStatus
from docmesh.storage.memory import InMemoryDocumentStore


class FailingMutationStore(InMemoryDocumentStore):
    """Store whose guarded mutations always fail with the given sub-document status."""

    def __init__(self, status: SubdocStatus) -> None:
        super().__init__()
        self._status = status

    async def mutate_in(
        self,
        doc_id: str,
        specs: Sequence[MutateInSpec],
        cas: int | None = None,
    ) -> MutationResult:
        if cas is not None:
            raise MultiMutationError(self._status, 0)
        return await super().mutate_in(doc_id, specs, cas)


def attempts(metrics: PrometheusMetrics) -> int:
    return sum(
        metrics.count("docmesh_attempts_total", {"outcome": outcome})
        for outcome in ("Value", "RetryableFailure", "FatalFailure", "RepeatSignal")
    )


class TestOfferAndPoll:
    async def test_offer_none_rejected_before_store(self, conflicting_store) -> None:
        queue = DocumentQueue("q", conflicting_store)
        with pytest.raises(InvalidArgumentError, match="Unsupported null value"):
            await queue.offer(None)
        assert conflicting_store.calls == []

    async def test_poll_empty_returns_none_in_one_attempt(
        self, store: InMemoryDocumentStore, engine: RetryEngine, metrics: PrometheusMetrics
    ) -> None:
        queue = DocumentQueue("q", store, engine=engine)
        assert await queue.poll() is None
        assert attempts(metrics) == 1

    async def test_fifo_order(self, store: InMemoryDocumentStore) -> None:
        queue = DocumentQueue("q", store)
        assert await queue.offer("first")
        assert await queue.add("second")

        assert await queue.poll() == "first"
        assert await queue.poll() == "second"
        assert await queue.poll() is None

    async def test_offer_prepends_in_document(self, store: InMemoryDocumentStore) -> None:
        queue = DocumentQueue("q", store)
        await queue.offer(1)
        await queue.offer(2)
        assert (await store.get("q")).content == [2, 1]

    async def test_one_conflict_takes_two_attempts(
        self, conflicting_store, engine: RetryEngine, metrics: PrometheusMetrics
    ) -> None:
        queue = DocumentQueue("q", conflicting_store, engine=engine)
        await queue.offer("x")
        conflicting_store.conflicts = 1

        assert await queue.poll() == "x"
        assert attempts(metrics) == 2
        assert metrics.count("docmesh_attempts_total", {"outcome": "RetryableFailure"}) == 1
        assert await queue.size() == 0

    async def test_conflicts_exhaust_retries(
        self, conflicting_store, engine: RetryEngine, metrics: PrometheusMetrics
    ) -> None:
        queue = DocumentQueue(
            "q", conflicting_store, options=QueueOptions(cas_mismatch_retries=3), engine=engine
        )
        await queue.offer("x")
        conflicting_store.conflicts = 100

        with pytest.raises(ConcurrencyExhaustedError, match="less than 3 iterations") as info:
            await queue.poll()

        assert info.value.attempts == 3
        assert isinstance(info.value, RetryExhaustedError)
        assert isinstance(info.value.last_cause, CasMismatchError)
        assert attempts(metrics) == 3
        assert await queue.snapshot() == ["x"]

    async def test_vanished_tail_reads_as_empty(self) -> None:
        store = FailingMutationStore(SubdocStatus.PATH_NOT_FOUND)
        queue = DocumentQueue("q", store)
        await queue.offer("x")
        assert await queue.poll() is None

    async def test_other_mutation_failures_are_fatal(
        self, engine: RetryEngine, metrics: PrometheusMetrics
    ) -> None:
        store = FailingMutationStore(SubdocStatus.PATH_MISMATCH)
        queue = DocumentQueue("q", store, engine=engine)
        await queue.offer("x")

        with pytest.raises(MultiMutationError):
            await queue.poll()
        assert attempts(metrics) == 1

    async def test_non_array_document_is_an_error(self, store: InMemoryDocumentStore) -> None:
        await store.insert("q", {"not": "a queue"})
        queue = DocumentQueue("q", store)

        with pytest.raises(PathMismatchError):
            await queue.poll()
        with pytest.raises(PathMismatchError):
            await queue.peek()

    async def test_codec(self, store: InMemoryDocumentStore) -> None:
        queue = DocumentQueue("q", store, codec=ElementCodec(encode=str, decode=int))
        await queue.offer(5)
        assert (await store.get("q")).content == ["5"]
        assert await queue.poll() == 5


class TestQueueInterface:
    async def test_initialize_keeps_existing_content(self, store: InMemoryDocumentStore) -> None:
        await DocumentQueue("q", store).offer("kept")
        other = DocumentQueue("q", store)
        await other.initialize()
        await other.initialize()
        assert await other.size() == 1

    async def test_peek_and_element(self, store: InMemoryDocumentStore) -> None:
        queue = DocumentQueue("q", store)
        assert await queue.peek() is None
        with pytest.raises(EmptyQueueError):
            await queue.element()

        await queue.offer("a")
        await queue.offer("b")
        assert await queue.peek() == "a"
        assert await queue.element() == "a"
        assert await queue.size() == 2

    async def test_remove(self, store: InMemoryDocumentStore) -> None:
        queue = DocumentQueue("q", store)
        with pytest.raises(EmptyQueueError):
            await queue.remove()
        await queue.offer("a")
        assert await queue.remove() == "a"

    async def test_size_clear_and_is_empty(self, store: InMemoryDocumentStore) -> None:
        queue = DocumentQueue("q", store)
        assert await queue.is_empty()
        for i in range(3):
            await queue.offer(i)
        assert await queue.size() == 3
        assert not await queue.is_empty()

        await queue.clear()
        assert await queue.is_empty()

    async def test_snapshot_and_iteration(self, store: InMemoryDocumentStore) -> None:
        queue = DocumentQueue("q", store)
        for item in ("a", "b", "c"):
            await queue.offer(item)

        assert await queue.snapshot() == ["c", "b", "a"]
        assert [item async for item in queue] == ["c", "b", "a"]
        assert await queue.size() == 3

    def test_repr(self, store: InMemoryDocumentStore) -> None:
        assert repr(DocumentQueue("jobs", store)) == "DocumentQueue(doc_id='jobs')"


class TestQueueOptions:
    def test_defaults(self) -> None:
        options = QueueOptions()
        assert options.cas_mismatch_retries == 10
        assert options.poll_deadline() is None
        assert str(options.retry_policy()) == (
            "Retry{times=10,backoff=Backoff{ZERO},jitter=Jitter{NONE}}"
        )

    def test_delay_and_jitter(self) -> None:
        options = QueueOptions(
            cas_mismatch_retries=4,
            cas_retry_delay_ms=5,
            cas_retry_jitter=0.5,
            poll_timeout_seconds=2,
        )
        assert str(options.retry_policy()) == (
            "Retry{times=4,backoff=Backoff{fixed=5ms},jitter=Jitter{RANDOM-0.5}}"
        )
        assert options.poll_deadline() == timedelta(seconds=2)

    def test_only_cas_conflicts_are_retried(self) -> None:
        policy = QueueOptions().retry_policy()
        assert policy.should_retry(CasMismatchError("conflict"))
        assert not policy.should_retry(ValueError("other"))

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"cas_mismatch_retries": 0},
            {"cas_retry_delay_ms": -1},
            {"cas_retry_jitter": 0},
            {"poll_timeout_seconds": 0},
        ],
    )
    def test_validation(self, kwargs: dict[str, float]) -> None:
        with pytest.raises(ValidationError):
            QueueOptions(**kwargs)
