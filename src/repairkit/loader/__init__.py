"""Isolated load contexts for compiled candidates."""

from repairkit.loader.context import ExecutionHandle, IsolatedLoadContext, load

__all__ = ["ExecutionHandle", "IsolatedLoadContext", "load"]
