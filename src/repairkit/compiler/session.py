"""In-memory compilation of virtual source units.

The backend is the host interpreter's own compiler: ``compile()`` turns
each SOURCE unit into a code object, which is serialized with
``marshal`` into a loadable artifact. Nothing touches the filesystem;
unit names become ``memo:///`` URIs in tracebacks and diagnostics.
"""

from __future__ import annotations

import ast
import logging
import marshal
import threading
import time
import warnings
from collections.abc import Iterable
from dataclasses import dataclass
from typing import cast

from repairkit.compiler.classpath import Classpath
from repairkit.compiler.schemas import CompilationResult, Diagnostic
from repairkit.constants import Severity, UnitKind
from repairkit.sources import VirtualSourceUnit

logger = logging.getLogger(__name__)

__all__ = ["CompilationSession", "compile_units"]

COMPILABLE_EXTENSIONS = frozenset({".py"})

# The warnings filter stack is process-global; capture one unit at a time.
_WARNINGS_LOCK = threading.Lock()


@dataclass(frozen=True)
class _ImportRef:
    module: str
    level: int
    line: int
    column: int
    guarded: bool  # inside a try block


class _ImportCollector(ast.NodeVisitor):
    def __init__(self) -> None:
        self.imports: list[_ImportRef] = []
        self._try_depth = 0

    def visit_Try(self, node: ast.Try | ast.TryStar) -> None:  # noqa: N802
        self._try_depth += 1
        for stmt in node.body:
            self.visit(stmt)
        self._try_depth -= 1
        for part in (node.handlers, node.orelse, node.finalbody):
            for child in part:
                self.visit(child)

    visit_TryStar = visit_Try  # noqa: N815

    def visit_Import(self, node: ast.Import) -> None:  # noqa: N802
        for alias in node.names:
            self.imports.append(
                _ImportRef(
                    alias.name,
                    0,
                    node.lineno,
                    node.col_offset + 1,
                    self._try_depth > 0,
                )
            )

    def visit_ImportFrom(self, node: ast.ImportFrom) -> None:  # noqa: N802
        self.imports.append(
            _ImportRef(
                node.module or "",
                node.level,
                node.lineno,
                node.col_offset + 1,
                self._try_depth > 0,
            )
        )


class CompilationSession:
    """Compiles a set of units against a read-only classpath.

    Every call is independent: nothing is cached between calls, no
    unit is mutated and nothing is written to disk, so sessions for
    different candidates can run concurrently.
    """

    def __init__(
        self, classpath: Classpath | None = None, *, optimize: int = -1
    ) -> None:
        self.classpath = classpath or Classpath()
        self.optimize = optimize

    def compile(self, units: Iterable[VirtualSourceUnit]) -> CompilationResult:
        start = time.monotonic()
        ordered = sorted(units, key=lambda u: u.qualified_name)
        if not ordered:
            return CompilationResult(
                success=False,
                diagnostics=(
                    Diagnostic(
                        severity=Severity.ERROR,
                        unit="<session>",
                        line=1,
                        column=1,
                        message="no compilation units",
                    ),
                ),
            )

        names = {u.qualified_name for u in ordered}
        packages = {
            ".".join(parts[:i])
            for parts in (name.split(".") for name in names)
            for i in range(1, len(parts))
        }

        diagnostics: list[Diagnostic] = []
        artifacts: dict[str, bytes] = {}
        seen: set[str] = set()
        for unit in ordered:
            if unit.qualified_name in seen:
                diagnostics.append(
                    _diagnostic(
                        Severity.ERROR, unit, 1, 1,
                        f"duplicate unit {unit.qualified_name!r}",
                    )
                )
                continue
            seen.add(unit.qualified_name)
            unit_diagnostics, artifact = self._compile_unit(
                unit, names, packages
            )
            diagnostics.extend(unit_diagnostics)
            if artifact is not None:
                artifacts[unit.qualified_name] = artifact

        success = not any(d.severity is Severity.ERROR for d in diagnostics)
        result = CompilationResult(
            success=success,
            diagnostics=tuple(diagnostics),
            artifacts=artifacts if success else {},
        )
        logger.info(
            "event=compile_complete units=%d success=%s errors=%d"
            " warnings=%d duration_ms=%.1f",
            len(ordered),
            success,
            len(result.errors),
            len(result.warnings),
            (time.monotonic() - start) * 1000,
        )
        return result

    def _compile_unit(
        self,
        unit: VirtualSourceUnit,
        names: set[str],
        packages: set[str],
    ) -> tuple[list[Diagnostic], bytes | None]:
        if unit.kind is UnitKind.ARTIFACT:
            return [], cast(bytes, unit.content)

        if unit.extension not in COMPILABLE_EXTENSIONS:
            return [
                _diagnostic(
                    Severity.ERROR, unit, 1, 1,
                    f"no compiler backend for {unit.extension!r} units",
                )
            ], None

        try:
            text = unit.text
        except UnicodeDecodeError as exc:
            raw = cast(bytes, unit.content)[: exc.start]
            line = raw.count(b"\n") + 1
            column = exc.start - (raw.rfind(b"\n") + 1) + 1
            return [
                _diagnostic(
                    Severity.ERROR, unit, line, column,
                    "source is not valid UTF-8",
                )
            ], None

        nul = text.find("\0")
        if nul >= 0:
            return [
                _diagnostic(
                    Severity.ERROR, unit,
                    text.count("\n", 0, nul) + 1,
                    nul - (text.rfind("\n", 0, nul) + 1) + 1,
                    "source contains a null byte",
                )
            ], None

        diagnostics: list[Diagnostic] = []
        code = None
        module: ast.Module | None = None
        with _WARNINGS_LOCK, warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            try:
                module = compile(
                    text, unit.uri, "exec",
                    flags=ast.PyCF_ONLY_AST, dont_inherit=True,
                )
                code = compile(
                    module, unit.uri, "exec",
                    dont_inherit=True, optimize=self.optimize,
                )
            except SyntaxError as exc:
                diagnostics.append(
                    _diagnostic(
                        Severity.ERROR, unit,
                        exc.lineno or 1, exc.offset or 1, exc.msg,
                    )
                )
            except RecursionError:
                diagnostics.append(
                    _diagnostic(
                        Severity.ERROR, unit, 1, 1,
                        "source is nested too deeply to compile",
                    )
                )
        for record in caught:
            # Other threads warn into the same process-wide capture
            if record.filename != unit.uri:
                warnings.warn_explicit(
                    record.message, record.category,
                    record.filename, record.lineno,
                )
                continue
            diagnostics.append(
                _diagnostic(
                    Severity.WARNING, unit,
                    record.lineno or 1,
                    getattr(record.message, "offset", None) or 1,
                    f"{record.category.__name__}: {record.message}",
                )
            )

        if module is not None and code is not None:
            diagnostics.extend(
                self._check_imports(unit, module, names, packages)
            )
        diagnostics.sort(key=lambda d: (d.line, d.column))

        if any(d.severity is Severity.ERROR for d in diagnostics):
            return diagnostics, None
        return diagnostics, marshal.dumps(code)

    def _check_imports(
        self,
        unit: VirtualSourceUnit,
        module: ast.Module,
        names: set[str],
        packages: set[str],
    ) -> list[Diagnostic]:
        diagnostics: list[Diagnostic] = []
        if "." not in unit.qualified_name and self.classpath.resolves(
            unit.qualified_name
        ):
            diagnostics.append(
                _diagnostic(
                    Severity.NOTE, unit, 1, 1,
                    f"unit {unit.qualified_name!r} shadows a classpath module",
                )
            )

        collector = _ImportCollector()
        collector.visit(module)
        local = names | packages
        is_package = unit.qualified_name in packages
        for ref in collector.imports:
            if ref.level > 0:
                target = _absolute_name(unit, ref, is_package)
                if target is not None and target in local:
                    continue
                message = (
                    "attempted relative import beyond top-level package"
                    if target is None
                    else f"cannot resolve relative import {target!r}"
                )
            else:
                if ref.module in local:
                    continue
                top = ref.module.partition(".")[0]
                if top not in local and self.classpath.resolves(ref.module):
                    continue
                message = f"cannot resolve import {ref.module!r}"
            severity = Severity.WARNING if ref.guarded else Severity.ERROR
            diagnostics.append(
                _diagnostic(severity, unit, ref.line, ref.column, message)
            )
        return diagnostics


def _absolute_name(
    unit: VirtualSourceUnit, ref: _ImportRef, is_package: bool
) -> str | None:
    package = unit.qualified_name if is_package else unit.package
    base = package.split(".") if package else []
    if ref.level > len(base):
        return None
    base = base[: len(base) - (ref.level - 1)]
    return ".".join([*base, ref.module] if ref.module else base)


def _diagnostic(
    severity: Severity,
    unit: VirtualSourceUnit,
    line: int,
    column: int,
    message: str,
) -> Diagnostic:
    return Diagnostic(
        severity=severity,
        unit=unit.qualified_name,
        line=max(line, 1),
        column=max(column, 1),
        message=message,
    )


def compile_units(
    units: Iterable[VirtualSourceUnit],
    classpath: Classpath | None = None,
    *,
    optimize: int = -1,
) -> CompilationResult:
    """One-shot convenience wrapper around :class:`CompilationSession`."""
    return CompilationSession(classpath, optimize=optimize).compile(units)
