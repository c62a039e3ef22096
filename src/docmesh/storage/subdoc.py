"""Sub-document path evaluation shared by the bundled stores.

Paths address values inside a JSON-like document: ``""`` is the root,
dotted names walk into objects and ``[i]`` indexes arrays (negative
indices count from the end), e.g. ``"items[-1]"`` or ``"meta.tags[0]"``.

Mutations are applied to a deep copy so a multi-spec mutation is all or
nothing: the first failing spec aborts the whole batch with a
:class:`~docmesh.core.errors.MultiMutationError`.
"""

from __future__ import annotations

import copy
import re
from typing import TYPE_CHECKING, Any

from docmesh.core.errors import MultiMutationError
from docmesh.storage.base import LookupField, LookupOp, MutateOp, SubdocStatus

if TYPE_CHECKING:
    from collections.abc import Sequence

    from docmesh.storage.base import LookupInSpec, MutateInSpec

_NAME = re.compile(r"[^.\[\]]+")

PathPart = str | int


class SubdocFailure(Exception):
    """Internal signal carrying the status of a failed spec."""

    def __init__(self, status: SubdocStatus) -> None:
        super().__init__(status.value)
        self.status = status


def parse_path(path: str) -> list[PathPart]:
    """Split *path* into object keys and array indices."""
    parts: list[PathPart] = []
    pos = 0
    while pos < len(path):
        if path[pos] == "[":
            end = path.find("]", pos)
            if end == -1:
                raise SubdocFailure(SubdocStatus.PATH_INVALID)
            try:
                parts.append(int(path[pos + 1 : end]))
            except ValueError:
                raise SubdocFailure(SubdocStatus.PATH_INVALID) from None
            pos = end + 1
            continue
        if parts and path[pos] == ".":
            pos += 1
        match = _NAME.match(path, pos)
        if match is None:
            raise SubdocFailure(SubdocStatus.PATH_INVALID)
        parts.append(match.group())
        pos = match.end()
    return parts


def _step(node: Any, part: PathPart) -> Any:
    if isinstance(part, int):
        if not isinstance(node, list):
            raise SubdocFailure(SubdocStatus.PATH_MISMATCH)
        try:
            return node[part]
        except IndexError:
            raise SubdocFailure(SubdocStatus.PATH_NOT_FOUND) from None
    if not isinstance(node, dict):
        raise SubdocFailure(SubdocStatus.PATH_MISMATCH)
    if part not in node:
        raise SubdocFailure(SubdocStatus.PATH_NOT_FOUND)
    return node[part]


def resolve(content: Any, parts: Sequence[PathPart]) -> Any:
    node = content
    for part in parts:
        node = _step(node, part)
    return node


# ── Lookups ──────────────────────────────────────────────────────────


def _lookup(content: Any, spec: LookupInSpec) -> LookupField:
    parts = parse_path(spec.path)
    if spec.op is LookupOp.EXISTS:
        resolve(content, parts)
        return LookupField(SubdocStatus.SUCCESS, True)
    node = resolve(content, parts)
    if spec.op is LookupOp.COUNT:
        if not isinstance(node, (list, dict)):
            raise SubdocFailure(SubdocStatus.PATH_MISMATCH)
        return LookupField(SubdocStatus.SUCCESS, len(node))
    return LookupField(SubdocStatus.SUCCESS, copy.deepcopy(node))


def evaluate_lookups(content: Any, specs: Sequence[LookupInSpec]) -> list[LookupField]:
    """Evaluate every spec independently; failures are reported per field."""
    fields: list[LookupField] = []
    for spec in specs:
        try:
            fields.append(_lookup(content, spec))
        except SubdocFailure as exc:
            fields.append(LookupField(exc.status))
    return fields


# ── Mutations ────────────────────────────────────────────────────────


def _apply(content: Any, spec: MutateInSpec) -> Any:
    parts = parse_path(spec.path)
    value = copy.deepcopy(spec.value)

    if spec.op in (MutateOp.ARRAY_PREPEND, MutateOp.ARRAY_APPEND):
        target = resolve(content, parts)
        if not isinstance(target, list):
            raise SubdocFailure(SubdocStatus.PATH_MISMATCH)
        if spec.op is MutateOp.ARRAY_PREPEND:
            target.insert(0, value)
        else:
            target.append(value)
        return content

    if not parts:
        if spec.op is MutateOp.REMOVE:
            raise SubdocFailure(SubdocStatus.PATH_INVALID)
        # Replacing or upserting the root swaps the whole document.
        return value

    parent = resolve(content, parts[:-1])
    last = parts[-1]

    if spec.op is MutateOp.REMOVE:
        _step(parent, last)
        del parent[last]
    elif spec.op is MutateOp.REPLACE:
        _step(parent, last)
        parent[last] = value
    elif spec.op is MutateOp.UPSERT:
        if not isinstance(parent, dict) or isinstance(last, int):
            raise SubdocFailure(SubdocStatus.PATH_INVALID)
        parent[last] = value
    else:
        raise SubdocFailure(SubdocStatus.PATH_INVALID)
    return content


def apply_mutations(content: Any, specs: Sequence[MutateInSpec]) -> Any:
    """Return a new document with every spec applied, or raise on the first failure."""
    document = copy.deepcopy(content)
    for index, spec in enumerate(specs):
        try:
            document = _apply(document, spec)
        except SubdocFailure as exc:
            raise MultiMutationError(exc.status, index) from None
    return document
