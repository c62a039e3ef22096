"""Abstract document store interface (ports-and-adapters / hexagonal pattern).

The collections only ever talk to this protocol, so any backend
(in-memory, Redis, a real cluster client) can sit behind them.  Every
read and write returns an opaque CAS token; a write guarded by a stale
token raises :class:`~docmesh.core.errors.CasMismatchError`.
"""

from __future__ import annotations

import enum
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from docmesh.core.errors import PathExistsError, PathMismatchError, PathNotFoundError


class SubdocStatus(enum.Enum):
    """Per-spec result of a sub-document lookup or mutation."""

    SUCCESS = "success"
    PATH_NOT_FOUND = "path_not_found"
    PATH_MISMATCH = "path_mismatch"
    PATH_EXISTS = "path_exists"
    PATH_INVALID = "path_invalid"


class LookupOp(enum.Enum):
    GET = "get"
    EXISTS = "exists"
    COUNT = "count"


class MutateOp(enum.Enum):
    ARRAY_PREPEND = "array_prepend"
    ARRAY_APPEND = "array_append"
    REMOVE = "remove"
    REPLACE = "replace"
    UPSERT = "upsert"


@dataclass(frozen=True)
class LookupInSpec:
    """One read inside a document, addressed by *path* (``""`` is the root)."""

    op: LookupOp
    path: str

    @classmethod
    def get(cls, path: str) -> LookupInSpec:
        return cls(LookupOp.GET, path)

    @classmethod
    def exists(cls, path: str) -> LookupInSpec:
        return cls(LookupOp.EXISTS, path)

    @classmethod
    def count(cls, path: str) -> LookupInSpec:
        return cls(LookupOp.COUNT, path)


@dataclass(frozen=True)
class MutateInSpec:
    """One mutation inside a document."""

    op: MutateOp
    path: str
    value: Any = None

    @classmethod
    def array_prepend(cls, path: str, value: Any) -> MutateInSpec:
        return cls(MutateOp.ARRAY_PREPEND, path, value)

    @classmethod
    def array_append(cls, path: str, value: Any) -> MutateInSpec:
        return cls(MutateOp.ARRAY_APPEND, path, value)

    @classmethod
    def remove(cls, path: str) -> MutateInSpec:
        return cls(MutateOp.REMOVE, path)

    @classmethod
    def replace(cls, path: str, value: Any) -> MutateInSpec:
        return cls(MutateOp.REPLACE, path, value)

    @classmethod
    def upsert(cls, path: str, value: Any) -> MutateInSpec:
        return cls(MutateOp.UPSERT, path, value)


@dataclass(frozen=True)
class GetResult:
    content: Any
    cas: int


@dataclass(frozen=True)
class MutationResult:
    cas: int


@dataclass(frozen=True)
class LookupField:
    status: SubdocStatus
    value: Any = None


_STATUS_ERRORS: dict[SubdocStatus, type[Exception]] = {
    SubdocStatus.PATH_NOT_FOUND: PathNotFoundError,
    SubdocStatus.PATH_MISMATCH: PathMismatchError,
    SubdocStatus.PATH_EXISTS: PathExistsError,
    SubdocStatus.PATH_INVALID: PathMismatchError,
}


@dataclass(frozen=True)
class LookupInResult:
    """Results of a lookup, one :class:`LookupField` per spec, in order."""

    cas: int
    fields: list[LookupField] = field(default_factory=list)

    def exists(self, index: int) -> bool:
        return self.fields[index].status is SubdocStatus.SUCCESS

    def content_as(self, index: int, decode: Callable[[Any], Any] | None = None) -> Any:
        """Return the value of spec *index*, raising if its path failed."""
        entry = self.fields[index]
        if entry.status is not SubdocStatus.SUCCESS:
            raise _STATUS_ERRORS[entry.status](
                f"Lookup spec {index} failed: {entry.status.value}"
            )
        return decode(entry.value) if decode is not None else entry.value


class DocumentStore(ABC):
    """Abstract async client for a key-value/document store with CAS."""

    @abstractmethod
    async def get(self, doc_id: str) -> GetResult: ...

    @abstractmethod
    async def insert(self, doc_id: str, content: Any) -> MutationResult: ...

    @abstractmethod
    async def upsert(self, doc_id: str, content: Any) -> MutationResult: ...

    @abstractmethod
    async def remove(self, doc_id: str, cas: int | None = None) -> MutationResult: ...

    @abstractmethod
    async def lookup_in(
        self, doc_id: str, specs: Sequence[LookupInSpec]
    ) -> LookupInResult: ...

    @abstractmethod
    async def mutate_in(
        self,
        doc_id: str,
        specs: Sequence[MutateInSpec],
        cas: int | None = None,
    ) -> MutationResult: ...

    async def close(self) -> None:
        """Release any connections held by the store."""
