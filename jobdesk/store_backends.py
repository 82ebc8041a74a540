from __future__ import annotations

import json
import logging
import os
import re
import sqlite3
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from jobdesk.db.postgres import PostgresTxRunner, _import_psycopg
from jobdesk.entity_store import InMemoryEntityStore
from jobdesk.errors import StoreConflict
from jobdesk.runtime_profile import env_bool

logger = logging.getLogger(__name__)


def _validate_identifier(name: str) -> str:
    if not re.fullmatch(r"[A-Za-z_][A-Za-z0-9_]*", name):
        raise ValueError(f"invalid SQL identifier: {name}")
    return name


def _dump(row: dict[str, Any]) -> str:
    return json.dumps(row, sort_keys=True, ensure_ascii=True, separators=(",", ":"))


class SqliteBackedEntityStore(InMemoryEntityStore):
    """Write-through store that applies each unit in one SQLite transaction."""

    def __init__(self, db_path: str, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._db_path = Path(db_path).expanduser()
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialize_database()
        self._load_state()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(str(self._db_path))

    def _initialize_database(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS entities (
                  collection TEXT NOT NULL,
                  doc_id TEXT NOT NULL,
                  payload TEXT NOT NULL,
                  PRIMARY KEY (collection, doc_id)
                )
                """
            )
            conn.commit()

    def _load_state(self) -> None:
        with self._lock:
            with self._connect() as conn:
                rows = conn.execute("SELECT collection, doc_id, payload FROM entities").fetchall()
            self.collections.clear()
            for collection, doc_id, payload_raw in rows:
                try:
                    payload = json.loads(payload_raw)
                except json.JSONDecodeError:
                    logger.warning("sqlite_store_skip_corrupt_row collection=%s doc_id=%s", collection, doc_id)
                    continue
                if isinstance(payload, dict):
                    self.collections.setdefault(collection, {})[doc_id] = payload

    def _persist(self, staged: Mapping[tuple[str, str], dict[str, Any] | None]) -> None:
        try:
            with self._connect() as conn:
                for (collection, doc_id), row in staged.items():
                    if row is None:
                        conn.execute(
                            "DELETE FROM entities WHERE collection = ? AND doc_id = ?",
                            (collection, doc_id),
                        )
                    else:
                        conn.execute(
                            """
                            INSERT INTO entities(collection, doc_id, payload)
                            VALUES (?, ?, ?)
                            ON CONFLICT(collection, doc_id) DO UPDATE SET payload = excluded.payload
                            """,
                            (collection, doc_id, _dump(row)),
                        )
        except sqlite3.Error as exc:
            logger.warning("sqlite_store_commit_failed error=%s", exc)
            raise StoreConflict("store rejected the write unit") from exc

    def reset(self) -> None:
        super().reset()
        with self._connect() as conn:
            conn.execute("DELETE FROM entities")
            conn.commit()


class PostgresBackedEntityStore(InMemoryEntityStore):
    """Write-through store that applies each unit in one PostgreSQL transaction."""

    def __init__(self, *, dsn: str, table_name: str = "jobdesk_entities", **kwargs: Any) -> None:
        super().__init__(**kwargs)
        if not dsn.strip():
            raise ValueError("POSTGRES_DSN must be provided for postgres store backend")
        self._table_name = _validate_identifier(table_name.strip() or "jobdesk_entities")
        self._tx_runner = PostgresTxRunner(dsn)
        self._initialize_database()
        self._load_state()

    def _initialize_database(self) -> None:
        create_sql = f"""
            CREATE TABLE IF NOT EXISTS {self._table_name} (
              collection TEXT NOT NULL,
              doc_id TEXT NOT NULL,
              payload JSONB NOT NULL,
              PRIMARY KEY (collection, doc_id)
            )
        """

        def _op(conn: Any) -> None:
            with conn.cursor() as cur:
                cur.execute(create_sql)

        self._tx_runner.run_in_tx(fn=_op)

    def _load_state(self) -> None:
        sql = f"SELECT collection, doc_id, payload FROM {self._table_name}"

        def _op(conn: Any) -> list[tuple[Any, ...]]:
            with conn.cursor() as cur:
                cur.execute(sql)
                return cur.fetchall() or []

        rows = self._tx_runner.run_in_tx(fn=_op)
        with self._lock:
            self.collections.clear()
            for collection, doc_id, payload in rows:
                if isinstance(payload, str):
                    payload = json.loads(payload)
                if isinstance(payload, dict):
                    self.collections.setdefault(collection, {})[doc_id] = payload

    def _persist(self, staged: Mapping[tuple[str, str], dict[str, Any] | None]) -> None:
        psycopg = _import_psycopg()
        delete_sql = f"DELETE FROM {self._table_name} WHERE collection = %s AND doc_id = %s"
        upsert_sql = f"""
            INSERT INTO {self._table_name} (collection, doc_id, payload)
            VALUES (%s, %s, %s::jsonb)
            ON CONFLICT(collection, doc_id) DO UPDATE SET payload = EXCLUDED.payload
        """

        def _op(conn: Any) -> None:
            with conn.cursor() as cur:
                for (collection, doc_id), row in staged.items():
                    if row is None:
                        cur.execute(delete_sql, (collection, doc_id))
                    else:
                        cur.execute(upsert_sql, (collection, doc_id, _dump(row)))

        try:
            self._tx_runner.run_in_tx(fn=_op)
        except psycopg.Error as exc:
            logger.warning("postgres_store_commit_failed error=%s", exc)
            raise StoreConflict("store rejected the write unit") from exc

    def reset(self) -> None:
        super().reset()

        def _op(conn: Any) -> None:
            with conn.cursor() as cur:
                cur.execute(f"DELETE FROM {self._table_name}")

        self._tx_runner.run_in_tx(fn=_op)


def create_store_from_env(environ: Mapping[str, str] | None = None) -> InMemoryEntityStore:
    env = os.environ if environ is None else environ
    backend = env.get("JOBDESK_STORE_BACKEND", "memory").strip().lower()
    if backend == "sqlite":
        db_path = env.get("JOBDESK_STORE_SQLITE_PATH", ".local/jobdesk.sqlite3")
        return SqliteBackedEntityStore(db_path)
    if backend == "postgres":
        dsn = env.get("POSTGRES_DSN", "").strip()
        if not dsn:
            raise ValueError("POSTGRES_DSN must be set when JOBDESK_STORE_BACKEND=postgres")
        table_name = env.get("JOBDESK_STORE_POSTGRES_TABLE", "jobdesk_entities")
        return PostgresBackedEntityStore(dsn=dsn, table_name=table_name)
    if backend != "memory" and env_bool("JOBDESK_STRICT_BACKEND", default=False, environ=env):
        raise RuntimeError(f"unknown JOBDESK_STORE_BACKEND: {backend}")
    return InMemoryEntityStore()


store = create_store_from_env()
