from __future__ import annotations

from collections.abc import Callable
from typing import Any


def _import_psycopg() -> Any:
    try:
        import psycopg  # type: ignore
    except ImportError as exc:
        raise RuntimeError("psycopg is required for PostgreSQL backends; install psycopg[binary]") from exc
    return psycopg


class PostgresTxRunner:
    """Run callback logic in one PostgreSQL transaction."""

    def __init__(self, dsn: str) -> None:
        if not dsn.strip():
            raise ValueError("POSTGRES_DSN must not be empty")
        self._dsn = dsn.strip()

    def connect(self) -> Any:
        psycopg = _import_psycopg()
        return psycopg.connect(self._dsn)

    def run_in_tx(self, *, fn: Callable[[Any], Any]) -> Any:
        with self.connect() as conn:
            result = fn(conn)
            conn.commit()
            return result
