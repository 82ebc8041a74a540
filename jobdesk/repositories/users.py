from __future__ import annotations

from typing import Any

from jobdesk.domain import DEPARTMENTS, ROLES, USERS_COLLECTION
from jobdesk.entity_store import SERVER_TIMESTAMP, InMemoryEntityStore


class UsersRepository:
    """Profiles mirrored from the identity provider; only staffing rules read them."""

    def __init__(self, store: InMemoryEntityStore) -> None:
        self._store = store

    def upsert(
        self,
        *,
        user_id: str,
        display_name: str,
        role: str,
        department: str | None = None,
        status: str = "ACTIVE",
    ) -> dict[str, Any]:
        if role not in ROLES:
            raise ValueError(f"unknown role: {role}")
        if department is not None and department not in DEPARTMENTS:
            raise ValueError(f"unknown department: {department}")
        batch = self._store.batch()
        batch.set(
            USERS_COLLECTION,
            user_id,
            {
                "displayName": display_name,
                "role": role,
                "department": department,
                "status": status,
                "updatedAt": SERVER_TIMESTAMP,
            },
            merge=True,
        )
        self._store.commit(batch)
        return self._store.get(USERS_COLLECTION, user_id) or {}

    def get(self, user_id: str) -> dict[str, Any] | None:
        return self._store.get(USERS_COLLECTION, user_id)

    def list_workers(self, department: str) -> list[dict[str, Any]]:
        return self._store.query(
            USERS_COLLECTION,
            filters=[("role", "==", "WORKER"), ("department", "==", department), ("status", "==", "ACTIVE")],
            order_by="displayName",
        )
