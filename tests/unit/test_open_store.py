"""Tests for environment-based store selection."""

from __future__ import annotations

import pytest

from docmesh.storage import open_store
from docmesh.storage.memory import InMemoryDocumentStore
from docmesh.storage.redis import RedisDocumentStore


class TestOpenStore:
    def test_defaults_to_memory(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("DOCMESH_STORAGE", raising=False)
        assert isinstance(open_store(), InMemoryDocumentStore)

    def test_redis_from_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DOCMESH_STORAGE", "Redis")
        monkeypatch.setenv("DOCMESH_REDIS_URL", "redis://example:6380/2")
        store = open_store()
        assert isinstance(store, RedisDocumentStore)
        assert store._redis_url == "redis://example:6380/2"

    def test_argument_overrides_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DOCMESH_STORAGE", "redis")
        assert isinstance(open_store("memory"), InMemoryDocumentStore)

    def test_unknown_backend(self) -> None:
        with pytest.raises(ValueError, match="Unknown storage backend"):
            open_store("cassandra")
