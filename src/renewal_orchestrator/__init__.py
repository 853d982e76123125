"""Task orchestration for insurance renewal submission workflows."""

__version__ = "0.1.0"
