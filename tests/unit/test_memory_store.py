"""Tests for the in-memory document store."""

from __future__ import annotations

import pytest

from docmesh.core.errors import (
    CasMismatchError,
    DocumentExistsError,
    DocumentNotFoundError,
    MultiMutationError,
    PathNotFoundError,
)
from docmesh.storage.base import LookupInSpec, MutateInSpec
from docmesh.storage.memory import InMemoryDocumentStore


class TestDocuments:
    async def test_insert_and_get(self, store: InMemoryDocumentStore) -> None:
        written = await store.insert("doc", {"a": 1})
        result = await store.get("doc")
        assert result.content == {"a": 1}
        assert result.cas == written.cas

    async def test_insert_existing_fails(self, store: InMemoryDocumentStore) -> None:
        await store.insert("doc", [])
        with pytest.raises(DocumentExistsError):
            await store.insert("doc", [])

    async def test_get_missing(self, store: InMemoryDocumentStore) -> None:
        with pytest.raises(DocumentNotFoundError):
            await store.get("nope")

    async def test_upsert_overwrites(self, store: InMemoryDocumentStore) -> None:
        await store.insert("doc", [1])
        await store.upsert("doc", [2])
        assert (await store.get("doc")).content == [2]

    async def test_cas_changes_on_every_write(self, store: InMemoryDocumentStore) -> None:
        first = await store.insert("doc", [])
        second = await store.mutate_in("doc", [MutateInSpec.array_append("", 1)])
        assert first.cas != second.cas

    async def test_content_is_isolated(self, store: InMemoryDocumentStore) -> None:
        content = {"a": [1]}
        await store.insert("doc", content)
        content["a"].append(2)
        fetched = (await store.get("doc")).content
        fetched["a"].append(3)
        assert (await store.get("doc")).content == {"a": [1]}

    async def test_remove_with_stale_cas(self, store: InMemoryDocumentStore) -> None:
        stale = await store.insert("doc", [])
        await store.upsert("doc", [1])
        with pytest.raises(CasMismatchError):
            await store.remove("doc", cas=stale.cas)
        await store.remove("doc")
        with pytest.raises(DocumentNotFoundError):
            await store.get("doc")

    async def test_clear(self, store: InMemoryDocumentStore) -> None:
        await store.insert("doc", [])
        store.clear()
        with pytest.raises(DocumentNotFoundError):
            await store.get("doc")


class TestSubdocument:
    async def test_lookup_returns_cas(self, store: InMemoryDocumentStore) -> None:
        written = await store.insert("doc", ["b", "a"])
        result = await store.lookup_in("doc", [LookupInSpec.get("[-1]"), LookupInSpec.count("")])
        assert result.cas == written.cas
        assert result.content_as(0) == "a"
        assert result.content_as(1) == 2

    async def test_content_as_raises_for_missing_path(self, store: InMemoryDocumentStore) -> None:
        await store.insert("doc", [])
        result = await store.lookup_in("doc", [LookupInSpec.get("[-1]")])
        assert not result.exists(0)
        with pytest.raises(PathNotFoundError):
            result.content_as(0)

    async def test_content_as_decodes(self, store: InMemoryDocumentStore) -> None:
        await store.insert("doc", ["7"])
        result = await store.lookup_in("doc", [LookupInSpec.get("[0]")])
        assert result.content_as(0, int) == 7

    async def test_guarded_mutation(self, store: InMemoryDocumentStore) -> None:
        written = await store.insert("doc", [1, 2])
        await store.mutate_in("doc", [MutateInSpec.remove("[-1]")], cas=written.cas)

        with pytest.raises(CasMismatchError):
            await store.mutate_in("doc", [MutateInSpec.remove("[-1]")], cas=written.cas)
        assert (await store.get("doc")).content == [1]

    async def test_failed_mutation_changes_nothing(self, store: InMemoryDocumentStore) -> None:
        written = await store.insert("doc", [1])
        specs = [MutateInSpec.array_append("", 2), MutateInSpec.remove("[9]")]

        with pytest.raises(MultiMutationError):
            await store.mutate_in("doc", specs)

        result = await store.get("doc")
        assert result.content == [1]
        assert result.cas == written.cas

    async def test_mutate_missing_document(self, store: InMemoryDocumentStore) -> None:
        with pytest.raises(DocumentNotFoundError):
            await store.mutate_in("nope", [MutateInSpec.array_append("", 1)])
