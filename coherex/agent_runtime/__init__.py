"""Agent Runtime service: sessions, sandboxes and audited executions."""
