"""Storage interface: document collections with filter-by-field queries."""

from __future__ import annotations

from typing import Any, Protocol


class DocumentStore(Protocol):
    """Minimal document-collection contract the repository is written against.

    Writes are independent; no transaction spans two calls.
    """

    def migrate(self) -> None: ...

    def put(self, collection: str, doc_id: str, document: dict[str, Any]) -> None: ...

    def get(self, collection: str, doc_id: str) -> dict[str, Any] | None: ...

    def delete(self, collection: str, doc_id: str) -> bool: ...

    def find(self, collection: str, **filters: Any) -> list[dict[str, Any]]: ...
