from __future__ import annotations

import copy
import logging
import threading
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from jobdesk.errors import StoreConflict

logger = logging.getLogger(__name__)

FILTER_OPS = {"==", "!=", "in", "not-in"}


class _Sentinel:
    def __init__(self, name: str) -> None:
        self._name = name

    def __repr__(self) -> str:
        return self._name


# Resolved to the commit time of the unit the write belongs to.
SERVER_TIMESTAMP = _Sentinel("SERVER_TIMESTAMP")
# Removes the field from the stored entity.
DELETE_FIELD = _Sentinel("DELETE_FIELD")


def to_iso(value: datetime) -> str:
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def subcollection(parent_collection: str, parent_id: str, name: str) -> str:
    return f"{parent_collection}/{parent_id}/{name}"


def field_value(entity: Mapping[str, Any], path: str) -> Any:
    current: Any = entity
    for part in path.split("."):
        if not isinstance(current, Mapping):
            return None
        current = current.get(part)
    return current


@dataclass
class WriteOp:
    kind: str
    collection: str
    doc_id: str
    data: dict[str, Any] | None = None
    merge: bool = False
    expect: dict[str, Any] | None = None


@dataclass
class WriteBatch:
    """Ordered list of writes committed as one all-or-nothing unit."""

    ops: list[WriteOp] = field(default_factory=list)

    def set(self, collection: str, doc_id: str, data: Mapping[str, Any], *, merge: bool = False) -> WriteBatch:
        self.ops.append(WriteOp("set", collection, doc_id, dict(data), merge=merge))
        return self

    def create(self, collection: str, doc_id: str, data: Mapping[str, Any]) -> WriteBatch:
        self.ops.append(WriteOp("create", collection, doc_id, dict(data)))
        return self

    def update(
        self,
        collection: str,
        doc_id: str,
        data: Mapping[str, Any],
        *,
        expect: Mapping[str, Any] | None = None,
    ) -> WriteBatch:
        self.ops.append(
            WriteOp("update", collection, doc_id, dict(data), expect=dict(expect) if expect else None)
        )
        return self

    def delete(self, collection: str, doc_id: str, *, expect: Mapping[str, Any] | None = None) -> WriteBatch:
        self.ops.append(WriteOp("delete", collection, doc_id, expect=dict(expect) if expect else None))
        return self

    def __len__(self) -> int:
        return len(self.ops)


def _resolve(value: Any, now_iso: str) -> Any:
    if value is SERVER_TIMESTAMP:
        return now_iso
    if isinstance(value, dict):
        return {k: _resolve(v, now_iso) for k, v in value.items() if v is not DELETE_FIELD}
    if isinstance(value, (list, tuple)):
        return [_resolve(v, now_iso) for v in value]
    return copy.deepcopy(value)


def _apply_patch(base: dict[str, Any], patch: Mapping[str, Any], now_iso: str) -> dict[str, Any]:
    out = dict(base)
    for key, value in patch.items():
        if key == "id":
            continue
        if value is DELETE_FIELD:
            out.pop(key, None)
        else:
            out[key] = _resolve(value, now_iso)
    return out


def _sort_key(entity: Mapping[str, Any], order_by: str | None) -> tuple[Any, ...]:
    doc_id = str(entity.get("id") or "")
    if order_by is None:
        return (doc_id,)
    value = field_value(entity, order_by)
    if value is None:
        return (0, "", doc_id)
    return (1, value, doc_id)


def cursor_key(order_value: Any, doc_id: str, *, ordered: bool = True) -> tuple[Any, ...]:
    if not ordered:
        return (doc_id,)
    if order_value is None:
        return (0, "", doc_id)
    return (1, order_value, doc_id)


def _matches(entity: Mapping[str, Any], filters: Iterable[tuple[str, str, Any]]) -> bool:
    for path, op, expected in filters:
        actual = field_value(entity, path)
        if op == "==" and actual != expected:
            return False
        if op == "!=" and actual == expected:
            return False
        if op == "in" and actual not in expected:
            return False
        if op == "not-in" and actual in expected:
            return False
    return True


class InMemoryEntityStore:
    """Document-database style entity store keyed by collection path and id.

    Reads return copies that carry the entity id under ``id``. Writes only
    happen through :meth:`commit`, which applies a :class:`WriteBatch` as one
    unit under a single server timestamp. Server timestamps are strictly
    increasing, so entities written by later units always sort after earlier
    ones.
    """

    def __init__(self, *, clock: Callable[[], datetime] | None = None) -> None:
        self.collections: dict[str, dict[str, dict[str, Any]]] = {}
        self._clock = clock or (lambda: datetime.now(UTC))
        self._lock = threading.RLock()
        self._last_server_time: datetime | None = None

    def reset(self) -> None:
        with self._lock:
            self.collections.clear()
            self._last_server_time = None

    def set_clock(self, clock: Callable[[], datetime]) -> None:
        self._clock = clock

    def batch(self) -> WriteBatch:
        return WriteBatch()

    def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        with self._lock:
            row = self.collections.get(collection, {}).get(doc_id)
            if row is None:
                return None
            return {**copy.deepcopy(row), "id": doc_id}

    def list_collection(self, collection: str) -> list[dict[str, Any]]:
        with self._lock:
            rows = self.collections.get(collection, {})
            return [{**copy.deepcopy(row), "id": doc_id} for doc_id, row in rows.items()]

    def query(
        self,
        collection: str,
        *,
        filters: Iterable[tuple[str, str, Any]] = (),
        order_by: str | None = None,
        direction: str = "asc",
        start_after: tuple[Any, ...] | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        filters = list(filters)
        for _, op, _ in filters:
            if op not in FILTER_OPS:
                raise ValueError(f"unsupported filter operator: {op}")
        if direction not in {"asc", "desc"}:
            raise ValueError(f"unsupported order direction: {direction}")
        rows = [row for row in self.list_collection(collection) if _matches(row, filters)]
        descending = direction == "desc"
        rows.sort(key=lambda row: _sort_key(row, order_by), reverse=descending)
        if start_after is not None:
            if descending:
                rows = [row for row in rows if _sort_key(row, order_by) < start_after]
            else:
                rows = [row for row in rows if _sort_key(row, order_by) > start_after]
        if limit is not None:
            rows = rows[: max(0, int(limit))]
        return rows

    def _server_now(self) -> datetime:
        now = self._clock()
        if now.tzinfo is None:
            now = now.replace(tzinfo=UTC)
        if self._last_server_time is not None and now <= self._last_server_time:
            now = self._last_server_time + timedelta(microseconds=1)
        return now

    def commit(self, batch: WriteBatch) -> str:
        """Apply every write of ``batch`` or none of them; return the server time."""
        with self._lock:
            now = self._server_now()
            now_iso = to_iso(now)
            staged: dict[tuple[str, str], dict[str, Any] | None] = {}

            def _current(key: tuple[str, str]) -> dict[str, Any] | None:
                if key in staged:
                    return staged[key]
                return self.collections.get(key[0], {}).get(key[1])

            for op in batch.ops:
                key = (op.collection, op.doc_id)
                existing = _current(key)
                if op.expect is not None:
                    if existing is None or any(existing.get(k) != v for k, v in op.expect.items()):
                        raise StoreConflict(
                            f"precondition failed for {op.collection}/{op.doc_id}",
                            collection=op.collection,
                            doc_id=op.doc_id,
                        )
                if op.kind == "create":
                    if existing is not None:
                        raise StoreConflict(
                            f"entity already exists: {op.collection}/{op.doc_id}",
                            collection=op.collection,
                            doc_id=op.doc_id,
                        )
                    staged[key] = _apply_patch({}, op.data or {}, now_iso)
                elif op.kind == "set":
                    base = dict(existing) if (op.merge and existing is not None) else {}
                    staged[key] = _apply_patch(base, op.data or {}, now_iso)
                elif op.kind == "update":
                    if existing is None:
                        raise StoreConflict(
                            f"entity not found: {op.collection}/{op.doc_id}",
                            collection=op.collection,
                            doc_id=op.doc_id,
                        )
                    staged[key] = _apply_patch(existing, op.data or {}, now_iso)
                elif op.kind == "delete":
                    staged[key] = None
                else:
                    raise ValueError(f"unknown write op: {op.kind}")

            self._persist(staged)
            for (collection, doc_id), row in staged.items():
                if row is None:
                    rows = self.collections.get(collection)
                    if rows is not None:
                        rows.pop(doc_id, None)
                        if not rows:
                            self.collections.pop(collection, None)
                else:
                    self.collections.setdefault(collection, {})[doc_id] = row
            self._last_server_time = now
            logger.debug("store_commit writes=%s server_time=%s", len(batch), now_iso)
            return now_iso

    def _persist(self, staged: Mapping[tuple[str, str], dict[str, Any] | None]) -> None:
        """Write-through hook for persistent backends; must raise StoreConflict on failure."""
        return None
