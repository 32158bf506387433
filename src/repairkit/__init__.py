"""Compile-and-compare core of a program-repair pipeline."""

from repairkit.compiler import (
    Classpath,
    CompilationResult,
    CompilationSession,
    Diagnostic,
    compile_units,
)
from repairkit.diff import DiffConfig, EditScript, diff
from repairkit.engine import CandidateOutcome, RepairEngine
from repairkit.loader import ExecutionHandle, load
from repairkit.sources import VirtualSourceStore, VirtualSourceUnit
from repairkit.trees import SyntaxTree, default_registry, parse

__version__ = "0.1.0"

__all__ = [
    "CandidateOutcome",
    "Classpath",
    "CompilationResult",
    "CompilationSession",
    "Diagnostic",
    "DiffConfig",
    "EditScript",
    "ExecutionHandle",
    "RepairEngine",
    "SyntaxTree",
    "VirtualSourceStore",
    "VirtualSourceUnit",
    "__version__",
    "compile_units",
    "default_registry",
    "diff",
    "load",
    "parse",
]
