"""Per-candidate module arenas.

Each context owns fresh module objects built from one compilation
result. Those modules never enter ``sys.modules``: every module's
``__builtins__`` carries a context-bound ``__import__`` that resolves
the candidate's own units inside the arena and hands everything else to
the shared, read-only classpath. Two candidates that both define
``pkg.A`` therefore see two unrelated ``pkg.A`` objects.
"""

from __future__ import annotations

import builtins
import logging
import marshal
import threading
import uuid
from collections.abc import Mapping
from types import CodeType, ModuleType
from typing import Any

from repairkit.compiler.classpath import Classpath
from repairkit.compiler.schemas import CompilationResult
from repairkit.errors import LoadError

logger = logging.getLogger(__name__)

__all__ = ["ExecutionHandle", "IsolatedLoadContext", "load"]


class IsolatedLoadContext:
    """Module arena holding exactly one candidate's code."""

    def __init__(
        self,
        code: Mapping[str, CodeType],
        classpath: Classpath,
        context_id: str | None = None,
    ) -> None:
        self.context_id = context_id or uuid.uuid4().hex
        self._code = dict(code)
        self._packages = {
            ".".join(parts[:i])
            for parts in (name.split(".") for name in self._code)
            for i in range(1, len(parts))
        }
        self._classpath = classpath
        self._modules: dict[str, ModuleType] = {}
        self._lock = threading.RLock()
        self._builtins: dict[str, Any] = dict(builtins.__dict__)
        self._builtins["__import__"] = self._import
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def module_names(self) -> list[str]:
        return sorted(self._modules)

    def initialize(self) -> None:
        """Execute every module body, in name order."""
        for name in sorted(self._code):
            try:
                with self._lock:
                    self._ensure(name)
            except (Exception, SystemExit) as exc:
                raise LoadError(
                    f"module {name!r} failed to execute: {exc!r}"
                ) from exc

    def module(self, name: str) -> ModuleType:
        self._check_open()
        try:
            return self._modules[name]
        except KeyError:
            raise LoadError(
                f"no module {name!r} in context {self.context_id}"
            ) from None

    def close(self) -> None:
        """Drop every module namespace; the context is unusable after."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            for module in self._modules.values():
                module.__dict__.clear()
            self._modules.clear()
            self._code.clear()
        logger.debug("event=context_closed context=%s", self.context_id)

    def _check_open(self) -> None:
        if self._closed:
            raise LoadError(f"context {self.context_id} is closed")

    def _is_local(self, name: str) -> bool:
        return name in self._code or name in self._packages

    def _ensure(self, name: str) -> ModuleType:
        module = self._modules.get(name)
        if module is not None:
            return module

        parent_name, _, attr = name.rpartition(".")
        parent = self._ensure(parent_name) if parent_name else None
        # executing the parent may already have imported this module
        module = self._modules.get(name)
        if module is not None:
            return module

        is_package = name in self._packages
        code = self._code.get(name)
        module = ModuleType(name)
        module.__dict__.update(
            {
                "__builtins__": self._builtins,
                "__package__": name if is_package else parent_name,
                "__loader__": None,
                "__spec__": None,
            }
        )
        if code is not None:
            module.__file__ = code.co_filename
        if is_package:
            module.__path__ = []

        self._modules[name] = module
        if parent is not None:
            setattr(parent, attr, module)
        if code is not None:
            try:
                exec(code, module.__dict__)  # noqa: S102
            except BaseException:
                del self._modules[name]
                if parent is not None and getattr(parent, attr, None) is module:
                    delattr(parent, attr)
                raise
        return module

    def _import(
        self,
        name: str,
        globals: dict[str, Any] | None = None,  # noqa: A002
        locals: dict[str, Any] | None = None,  # noqa: A002
        fromlist: tuple[str, ...] | list[str] | None = (),
        level: int = 0,
    ) -> ModuleType:
        self._check_open()
        fromlist = fromlist or ()
        absolute = _absolute_name(name, globals, level)
        if self._is_local(absolute):
            with self._lock:
                module = self._ensure(absolute)
                if fromlist:
                    for item in fromlist:
                        submodule = f"{absolute}.{item}"
                        if item != "*" and self._is_local(submodule):
                            self._ensure(submodule)
                    return module
                return self._modules[absolute.partition(".")[0]]
        if level > 0:
            raise ImportError(
                f"cannot import {absolute!r} in context {self.context_id}"
            )
        return self._classpath.import_module(
            name, globals, locals, fromlist, level
        )


def _absolute_name(
    name: str, globals: dict[str, Any] | None, level: int  # noqa: A002
) -> str:
    if level == 0:
        return name
    package = (globals or {}).get("__package__")
    if not package:
        raise ImportError(
            "attempted relative import with no known parent package"
        )
    bits = package.rsplit(".", level - 1)
    if len(bits) < level:
        raise ImportError("attempted relative import beyond top-level package")
    return f"{bits[0]}.{name}" if name else bits[0]


class ExecutionHandle:
    """Entry points of one loaded candidate, for the test collaborator.

    Targets are written ``"module:attr.path"``; a bare ``"module"``
    names the module itself.
    """

    def __init__(self, context: IsolatedLoadContext) -> None:
        self._context = context

    @property
    def context_id(self) -> str:
        return self._context.context_id

    @property
    def closed(self) -> bool:
        return self._context.closed

    @property
    def modules(self) -> list[str]:
        return self._context.module_names

    def module(self, name: str) -> ModuleType:
        return self._context.module(name)

    def resolve(self, target: str) -> Any:
        module_name, _, attr_path = target.partition(":")
        obj: Any = self._context.module(module_name)
        for attr in attr_path.split(".") if attr_path else ():
            try:
                obj = getattr(obj, attr)
            except AttributeError:
                raise LoadError(
                    f"{target!r} not found in context {self.context_id}"
                ) from None
        return obj

    def invoke(self, target: str, *args: Any, **kwargs: Any) -> Any:
        return self.resolve(target)(*args, **kwargs)

    def close(self) -> None:
        self._context.close()

    def __enter__(self) -> ExecutionHandle:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "closed" if self.closed else "open"
        return f"ExecutionHandle(context_id={self.context_id!r}, {state})"


def load(
    result: CompilationResult,
    classpath: Classpath | None = None,
    *,
    context_id: str | None = None,
) -> ExecutionHandle:
    """Load a compilation result into a fresh isolated context.

    Raises :class:`LoadError` if the compilation failed, an artifact is
    not marshalled code, or a module body raises while executing.
    """
    if not result.success:
        raise LoadError(
            f"cannot load a failed compilation ({len(result.errors)} errors)"
        )
    code: dict[str, CodeType] = {}
    for name, blob in result.artifacts.items():
        try:
            obj = marshal.loads(blob)
        except (EOFError, ValueError, TypeError) as exc:
            raise LoadError(f"malformed artifact {name!r}: {exc}") from exc
        if not isinstance(obj, CodeType):
            raise LoadError(
                f"artifact {name!r} holds {type(obj).__name__}, not code"
            )
        code[name] = obj

    context = IsolatedLoadContext(code, classpath or Classpath(), context_id)
    try:
        context.initialize()
    except LoadError:
        context.close()
        raise
    logger.info(
        "event=context_loaded context=%s modules=%d",
        context.context_id,
        len(code),
    )
    return ExecutionHandle(context)
