"""HTTP surface for the orchestrator."""
