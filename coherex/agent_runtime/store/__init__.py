"""Session and snapshot store implementations."""

from coherex.agent_runtime.store.base import SessionStore, SnapshotStore
from coherex.agent_runtime.store.local import LocalSnapshotStore
from coherex.agent_runtime.store.sql import SqlSessionStore

__all__ = ["LocalSnapshotStore", "SessionStore", "SnapshotStore", "SqlSessionStore"]
