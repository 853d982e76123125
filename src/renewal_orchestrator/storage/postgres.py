"""PostgreSQL-backed document store with automatic table migration.

Every collection lives in one `documents` table keyed by
(collection, doc_id); the record itself is a JSONB body and filter-by-field
queries use JSONB containment.
"""

from __future__ import annotations

import json
import threading
from datetime import UTC, datetime
from typing import Any


class PostgresDocumentStore:
    """Persist workflow documents in PostgreSQL."""

    def __init__(self, database_url: str) -> None:
        if not database_url:
            raise ValueError("RENEWAL_ORCHESTRATOR_DATABASE_URL is required")
        self.database_url = database_url
        self._lock = threading.Lock()
        self._psycopg, self._dict_row, self._json_wrapper = self._load_psycopg()

    def migrate(self) -> None:
        with self._lock, self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS documents (
                    collection TEXT NOT NULL,
                    doc_id TEXT NOT NULL,
                    body JSONB NOT NULL,
                    created_at TIMESTAMPTZ NOT NULL,
                    updated_at TIMESTAMPTZ NOT NULL,
                    PRIMARY KEY (collection, doc_id)
                )
                """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_documents_task_id
                ON documents(collection, (body->>'task_id'))
                """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_documents_company_id
                ON documents(collection, (body->>'company_id'))
                """)
            conn.commit()

    def put(self, collection: str, doc_id: str, document: dict[str, Any]) -> None:
        now = datetime.now(tz=UTC)
        with self._lock, self._connect() as conn:
            conn.execute(
                """
                INSERT INTO documents (collection, doc_id, body, created_at, updated_at)
                VALUES (%s, %s, %s, %s, %s)
                ON CONFLICT (collection, doc_id)
                DO UPDATE SET body = EXCLUDED.body, updated_at = EXCLUDED.updated_at
                """,
                (collection, doc_id, self._json_wrapper(document), now, now),
            )
            conn.commit()

    def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        with self._lock, self._connect() as conn:
            row = conn.execute(
                "SELECT body FROM documents WHERE collection = %s AND doc_id = %s",
                (collection, doc_id),
            ).fetchone()
        if row is None:
            return None
        return self._parse_json_object(row["body"])

    def delete(self, collection: str, doc_id: str) -> bool:
        with self._lock, self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM documents WHERE collection = %s AND doc_id = %s",
                (collection, doc_id),
            )
            conn.commit()
        return bool(cursor.rowcount)

    def find(self, collection: str, **filters: Any) -> list[dict[str, Any]]:
        with self._lock, self._connect() as conn:
            rows = conn.execute(
                """
                SELECT body
                FROM documents
                WHERE collection = %s AND body @> %s
                ORDER BY created_at, doc_id
                """,
                (collection, self._json_wrapper(filters)),
            ).fetchall()
        return [self._parse_json_object(row["body"]) for row in rows]

    def _connect(self) -> Any:
        return self._psycopg.connect(self.database_url, row_factory=self._dict_row)

    @staticmethod
    def _load_psycopg() -> tuple[Any, Any, Any]:
        try:
            import psycopg
            from psycopg.rows import dict_row
            from psycopg.types.json import Jsonb
        except ImportError as exc:  # pragma: no cover
            raise RuntimeError(
                "PostgreSQL storage requires psycopg. "
                'Install with: python -m pip install "psycopg[binary]>=3.2,<4.0"'
            ) from exc
        return psycopg, dict_row, Jsonb

    @staticmethod
    def _parse_json_object(raw: Any) -> dict[str, Any]:
        parsed = json.loads(raw) if isinstance(raw, str) else raw
        if isinstance(parsed, dict):
            return parsed
        return {}
