from __future__ import annotations

import hashlib
import json
from collections.abc import Callable
from typing import Any

from jobdesk.entity_store import SERVER_TIMESTAMP, InMemoryEntityStore
from jobdesk.errors import ApiError

IDEMPOTENCY_COLLECTION = "idempotencyRecords"


def _fingerprint(payload: dict[str, Any]) -> str:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=True)


def _record_id(*, endpoint: str, actor_id: str, idempotency_key: str) -> str:
    raw = f"{actor_id}:{endpoint}:{idempotency_key}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def run_idempotent(
    store: InMemoryEntityStore,
    *,
    endpoint: str,
    actor_id: str,
    idempotency_key: str | None,
    payload: dict[str, Any],
    execute: Callable[[], dict[str, Any]],
) -> dict[str, Any]:
    """Replay the stored result when the same actor repeats a keyed request."""
    if not idempotency_key:
        return execute()
    record_id = _record_id(endpoint=endpoint, actor_id=actor_id, idempotency_key=idempotency_key)
    current_fingerprint = _fingerprint(payload)
    record = store.get(IDEMPOTENCY_COLLECTION, record_id)
    if record is not None:
        if record.get("fingerprint") != current_fingerprint:
            raise ApiError(
                code="IDEMPOTENCY_CONFLICT",
                message="same key with different payload",
                error_class="validation",
                retryable=False,
                http_status=409,
            )
        return dict(record.get("data") or {})

    data = execute()
    batch = store.batch()
    batch.set(
        IDEMPOTENCY_COLLECTION,
        record_id,
        {"endpoint": endpoint, "fingerprint": current_fingerprint, "data": data, "createdAt": SERVER_TIMESTAMP},
    )
    store.commit(batch)
    return data
