"""Sandbox executor interface.

A sandbox is an isolated remote compute environment owned by an external
service.  The runtime only ever holds an opaque ``sandbox_ref`` string; every
operation takes that ref, so any process that can read the session row can
drive its sandbox.  There is no in-process registry of live sandboxes.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from loguru import logger


@dataclass(frozen=True)
class SandboxRef:
    """Handle to a provisioned sandbox."""

    sandbox_id: str


@dataclass
class CommandResult:
    """Outcome of one dispatched command.

    A non-zero ``exit_code`` is a normal result, not an exception; callers
    decide what a failed command means.
    """

    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and self.error is None


@runtime_checkable
class SandboxExecutor(Protocol):
    """Async protocol for provisioning and driving sandboxes.

    Implementations raise ``ProvisioningError`` when a sandbox cannot be
    created and ``ExecutionError`` when the transport to a sandbox fails.
    ``destroy_sandbox`` is idempotent: destroying an unknown or already
    destroyed sandbox is not an error.
    """

    async def create_sandbox(
        self,
        id: str,
        *,
        timeout_seconds: int,
        envs: dict[str, str] | None = None,
        metadata: dict[str, str] | None = None,
    ) -> SandboxRef: ...

    async def run_command(
        self,
        ref: SandboxRef,
        command: str,
        *,
        timeout_seconds: int | None = None,
    ) -> CommandResult: ...

    async def upload_file(self, ref: SandboxRef, path: str, content: str) -> None: ...

    async def download_file(self, ref: SandboxRef, path: str) -> str | None:
        """Return the file's text, or ``None`` if it does not exist."""
        ...

    async def destroy_sandbox(self, ref: SandboxRef) -> None: ...


@asynccontextmanager
async def sandbox_scope(
    executor: SandboxExecutor,
    id: str,
    *,
    timeout_seconds: int,
    envs: dict[str, str] | None = None,
    metadata: dict[str, str] | None = None,
) -> AsyncIterator[SandboxRef]:
    """Provision a single-use sandbox and destroy it on every exit path.

    Teardown failures are logged and suppressed so they never mask the body's
    own result or exception.
    """
    ref = await executor.create_sandbox(id, timeout_seconds=timeout_seconds, envs=envs, metadata=metadata)
    logger.debug("Sandbox scope opened: {} ({})", ref.sandbox_id, id)
    try:
        yield ref
    finally:
        await destroy_quietly(executor, ref)
        logger.debug("Sandbox scope closed: {}", ref.sandbox_id)


async def destroy_quietly(executor: SandboxExecutor, ref: SandboxRef) -> None:
    """Destroy *ref*, logging instead of raising on failure."""
    try:
        await executor.destroy_sandbox(ref)
    except Exception:
        logger.exception("Failed to destroy sandbox {}", ref.sandbox_id)
