from __future__ import annotations

from typing import Any

from jobdesk.domain import DOC_TYPES, DOCUMENTS_COLLECTION
from jobdesk.entity_store import InMemoryEntityStore
from jobdesk.errors import ValidationError
from jobdesk.pagination import Page, next_page

DOCUMENT_SEARCH_FIELDS: tuple[str, ...] = ("docNo", "customerSnapshot.name", "customerSnapshot.phone", "jobId", "id")


class DocumentsRepository:
    def __init__(self, store: InMemoryEntityStore) -> None:
        self._store = store

    def page(
        self,
        *,
        doc_type: str | None = None,
        status: str | None = None,
        job_id: str | None = None,
        cursor: str | None = None,
        page_size: int | None = None,
        search: str | None = None,
    ) -> Page:
        filters: list[tuple[str, str, Any]] = []
        if doc_type:
            if doc_type not in DOC_TYPES:
                raise ValidationError(f"unknown document kind: {doc_type}")
            filters.append(("docType", "==", doc_type))
        if status:
            filters.append(("status", "==", status))
        if job_id:
            filters.append(("jobId", "==", job_id))
        return next_page(
            self._store,
            DOCUMENTS_COLLECTION,
            filters=filters,
            order_by="createdAt",
            direction="desc",
            cursor=cursor,
            page_size=page_size,
            search_term=search,
            search_fields=DOCUMENT_SEARCH_FIELDS,
        )
