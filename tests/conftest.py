"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import pytest

from docmesh.core.engine import RetryEngine
from docmesh.core.errors import CasMismatchError
from docmesh.observability import PrometheusMetrics
from docmesh.storage.base import LookupInResult, MutateInSpec, MutationResult
from docmesh.storage.memory import InMemoryDocumentStore


class RecordingSleep:
    """Stands in for ``asyncio.sleep`` and records every requested delay."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class ConflictingStore(InMemoryDocumentStore):
    """In-memory store that rejects the next *conflicts* CAS-guarded writes.

    Also counts the calls it receives so tests can assert how often the
    store was touched.
    """

    def __init__(self, conflicts: int = 0) -> None:
        super().__init__()
        self.conflicts = conflicts
        self.calls: list[str] = []

    async def lookup_in(self, doc_id: str, specs: Sequence[Any]) -> LookupInResult:
        self.calls.append("lookup_in")
        return await super().lookup_in(doc_id, specs)

    async def mutate_in(
        self,
        doc_id: str,
        specs: Sequence[MutateInSpec],
        cas: int | None = None,
    ) -> MutationResult:
        self.calls.append("mutate_in")
        if cas is not None and self.conflicts > 0:
            self.conflicts -= 1
            raise CasMismatchError(f"CAS mismatch on {doc_id!r}")
        return await super().mutate_in(doc_id, specs, cas)

    async def insert(self, doc_id: str, content: Any) -> MutationResult:
        self.calls.append("insert")
        return await super().insert(doc_id, content)


@pytest.fixture()
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture()
def metrics() -> PrometheusMetrics:
    return PrometheusMetrics()


@pytest.fixture()
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture()
def engine(sleep: RecordingSleep, metrics: PrometheusMetrics) -> RetryEngine:
    return RetryEngine(hooks=[metrics.create_hook()], sleep=sleep)


@pytest.fixture()
def conflicting_store() -> ConflictingStore:
    return ConflictingStore()
