from __future__ import annotations

from typing import Any

from jobdesk.archive import collection_for
from jobdesk.domain import JOB_STATUSES, JOB_DEPARTMENTS
from jobdesk.entity_store import InMemoryEntityStore
from jobdesk.errors import ValidationError
from jobdesk.pagination import Page, next_page


class JobsRepository:
    """Paged job listings over the active collection or one archive year."""

    def __init__(self, store: InMemoryEntityStore) -> None:
        self._store = store

    def page(
        self,
        *,
        source: str = "active",
        year: int | None = None,
        status: str | None = None,
        department: str | None = None,
        assignee_id: str | None = None,
        cursor: str | None = None,
        page_size: int | None = None,
        search: str | None = None,
    ) -> Page:
        try:
            collection = collection_for(source, year)
        except ValueError as exc:
            raise ValidationError(str(exc)) from None
        filters: list[tuple[str, str, Any]] = []
        if status:
            if status not in JOB_STATUSES:
                raise ValidationError(f"unknown job status: {status}")
            filters.append(("status", "==", status))
        if department:
            if department not in JOB_DEPARTMENTS:
                raise ValidationError(f"unknown job department: {department}")
            filters.append(("department", "==", department))
        if assignee_id:
            filters.append(("assigneeId", "==", assignee_id))
        return next_page(
            self._store,
            collection,
            filters=filters,
            order_by="lastActivityAt",
            direction="desc",
            cursor=cursor,
            page_size=page_size,
            search_term=search,
        )
