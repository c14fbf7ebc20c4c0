"""Sandbox executor abstraction and its E2B implementation."""

from coherex.agent_runtime.sandbox.base import (
    CommandResult,
    SandboxExecutor,
    SandboxRef,
    destroy_quietly,
    sandbox_scope,
)
from coherex.agent_runtime.sandbox.e2b import E2BSandboxExecutor

__all__ = [
    "CommandResult",
    "E2BSandboxExecutor",
    "SandboxExecutor",
    "SandboxRef",
    "destroy_quietly",
    "sandbox_scope",
]
