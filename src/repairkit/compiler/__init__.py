"""In-memory compilation service."""

from repairkit.compiler.classpath import Classpath
from repairkit.compiler.schemas import CompilationResult, Diagnostic
from repairkit.compiler.session import CompilationSession, compile_units

__all__ = [
    "Classpath",
    "CompilationResult",
    "CompilationSession",
    "Diagnostic",
    "compile_units",
]
