"""Storage backends and records."""

from renewal_orchestrator.storage.base import DocumentStore
from renewal_orchestrator.storage.memory import InMemoryDocumentStore
from renewal_orchestrator.storage.postgres import PostgresDocumentStore
from renewal_orchestrator.storage.repository import WorkflowRepository

__all__ = [
    "DocumentStore",
    "InMemoryDocumentStore",
    "PostgresDocumentStore",
    "WorkflowRepository",
]
