"""In-memory storage backend for tests and local runs."""

from __future__ import annotations

import copy
import threading
from typing import Any


class InMemoryDocumentStore:
    """Dict-backed implementation of DocumentStore.

    Documents are deep-copied in and out so callers never share state with
    the store, which mirrors what a real database round-trip does.
    """

    def __init__(self) -> None:
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}
        self._lock = threading.Lock()

    def migrate(self) -> None:
        return None

    def put(self, collection: str, doc_id: str, document: dict[str, Any]) -> None:
        with self._lock:
            self._collections.setdefault(collection, {})[doc_id] = copy.deepcopy(document)

    def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        with self._lock:
            document = self._collections.get(collection, {}).get(doc_id)
            return copy.deepcopy(document) if document is not None else None

    def delete(self, collection: str, doc_id: str) -> bool:
        with self._lock:
            return self._collections.get(collection, {}).pop(doc_id, None) is not None

    def find(self, collection: str, **filters: Any) -> list[dict[str, Any]]:
        with self._lock:
            documents = list(self._collections.get(collection, {}).values())
            return [
                copy.deepcopy(document)
                for document in documents
                if all(document.get(key) == value for key, value in filters.items())
            ]
