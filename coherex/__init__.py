"""Coherex - agent session runtime with sandboxed execution."""

__version__ = "0.1.0"
