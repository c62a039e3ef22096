"""In-memory implementation of :class:`DocumentStore`.

Suitable for development, testing, and single-process deployments.
Each operation runs without awaiting in between its read and its write,
so on one event loop every call is atomic, just like a single request
to a real store.
"""

from __future__ import annotations

import copy
import itertools
from typing import TYPE_CHECKING, Any

from docmesh.core.errors import CasMismatchError, DocumentExistsError, DocumentNotFoundError
from docmesh.storage.base import DocumentStore, GetResult, LookupInResult, MutationResult
from docmesh.storage.subdoc import apply_mutations, evaluate_lookups

if TYPE_CHECKING:
    from collections.abc import Sequence

    from docmesh.storage.base import LookupInSpec, MutateInSpec


class InMemoryDocumentStore(DocumentStore):
    """Dictionary-backed document store with CAS tokens."""

    def __init__(self) -> None:
        self._documents: dict[str, tuple[Any, int]] = {}
        self._cas_sequence = itertools.count(1)

    def _next_cas(self) -> int:
        return next(self._cas_sequence)

    def _load(self, doc_id: str) -> tuple[Any, int]:
        try:
            return self._documents[doc_id]
        except KeyError:
            raise DocumentNotFoundError(f"Document {doc_id!r} not found") from None

    def _check_cas(self, doc_id: str, current: int, expected: int | None) -> None:
        if expected is not None and expected != current:
            raise CasMismatchError(f"CAS mismatch on {doc_id!r}")

    def _store(self, doc_id: str, content: Any) -> MutationResult:
        cas = self._next_cas()
        self._documents[doc_id] = (content, cas)
        return MutationResult(cas)

    # ------------------------------------------------------------------
    # DocumentStore interface
    # ------------------------------------------------------------------

    async def get(self, doc_id: str) -> GetResult:
        content, cas = self._load(doc_id)
        return GetResult(copy.deepcopy(content), cas)

    async def insert(self, doc_id: str, content: Any) -> MutationResult:
        if doc_id in self._documents:
            raise DocumentExistsError(f"Document {doc_id!r} already exists")
        return self._store(doc_id, copy.deepcopy(content))

    async def upsert(self, doc_id: str, content: Any) -> MutationResult:
        return self._store(doc_id, copy.deepcopy(content))

    async def remove(self, doc_id: str, cas: int | None = None) -> MutationResult:
        _, current = self._load(doc_id)
        self._check_cas(doc_id, current, cas)
        del self._documents[doc_id]
        return MutationResult(self._next_cas())

    async def lookup_in(self, doc_id: str, specs: Sequence[LookupInSpec]) -> LookupInResult:
        content, cas = self._load(doc_id)
        return LookupInResult(cas, evaluate_lookups(content, specs))

    async def mutate_in(
        self,
        doc_id: str,
        specs: Sequence[MutateInSpec],
        cas: int | None = None,
    ) -> MutationResult:
        content, current = self._load(doc_id)
        self._check_cas(doc_id, current, cas)
        return self._store(doc_id, apply_mutations(content, specs))

    def clear(self) -> None:
        """Drop every document (useful for tests)."""
        self._documents.clear()
