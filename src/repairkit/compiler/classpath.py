"""Read-only dependency context shared by compilation sessions.

A classpath answers two questions: "does this module exist?" (at
compile time, without importing anything) and "give me this module"
(at load time). It is frozen and hashable, so one instance can be
shared by every concurrent session.
"""

from __future__ import annotations

import builtins
import functools
import importlib.machinery
import importlib.util
import sys
import threading
from dataclasses import dataclass, field
from types import ModuleType
from typing import Any


@dataclass(frozen=True)
class Classpath:
    """Extra search paths plus, optionally, the interpreter's own.

    ``paths`` are searched first. With ``inherit_system`` the standard
    library, built-in modules and ``sys.path`` are visible too; modules
    from those come through the regular import system, so they are
    shared process-wide just like a JVM's parent class loader.
    """

    paths: tuple[str, ...] = ()
    inherit_system: bool = True
    _loaded: dict[str, ModuleType] = field(
        default_factory=lambda: dict[str, ModuleType](),
        init=False,
        compare=False,
        repr=False,
    )
    _lock: threading.Lock = field(
        default_factory=threading.Lock,
        init=False,
        compare=False,
        repr=False,
    )

    def resolves(self, module_name: str) -> bool:
        """True if ``module_name`` can be found; nothing is imported."""
        return _resolves(self.paths, self.inherit_system, module_name)

    def import_module(
        self,
        name: str,
        globals: dict[str, Any] | None = None,  # noqa: A002
        locals: dict[str, Any] | None = None,  # noqa: A002
        fromlist: tuple[str, ...] | list[str] = (),
        level: int = 0,
    ) -> ModuleType:
        """``__import__`` semantics over this classpath."""
        if self.paths and level == 0:
            module = self._import_from_paths(name)
            if module is not None:
                if fromlist:
                    return module
                return self._loaded.get(name.partition(".")[0], module)
        if not self.inherit_system:
            raise ModuleNotFoundError(
                f"No module named {name!r} on the classpath", name=name
            )
        return builtins.__import__(name, globals, locals, fromlist, level)

    def _import_from_paths(self, name: str) -> ModuleType | None:
        with self._lock:
            if name in self._loaded:
                return self._loaded[name]
            search: list[str] | None = list(self.paths)
            module: ModuleType | None = None
            prefix = ""
            for part in name.split("."):
                qualified = f"{prefix}{part}"
                if qualified in self._loaded:
                    module = self._loaded[qualified]
                else:
                    spec = importlib.machinery.PathFinder.find_spec(
                        qualified, search
                    )
                    if spec is None or spec.loader is None:
                        return None
                    module = importlib.util.module_from_spec(spec)
                    self._loaded[qualified] = module
                    try:
                        spec.loader.exec_module(module)
                    except BaseException:
                        del self._loaded[qualified]
                        raise
                    if prefix:
                        setattr(self._loaded[prefix[:-1]], part, module)
                search = getattr(module, "__path__", None)
                if search is None and qualified != name:
                    return None
                prefix = f"{qualified}."
            return module


@functools.lru_cache(maxsize=4096)
def _resolves(paths: tuple[str, ...], inherit_system: bool, name: str) -> bool:
    if _find(name, list(paths)):
        return True
    if not inherit_system:
        return False
    top = name.partition(".")[0]
    if name in sys.modules or name in sys.builtin_module_names:
        return True
    if top == name and top in sys.stdlib_module_names:
        return True
    if importlib.machinery.FrozenImporter.find_spec(name) is not None:
        return True
    return _find(name, None)


def _find(name: str, search: list[str] | None) -> bool:
    """Walk a dotted name with PathFinder; ``None`` means ``sys.path``."""
    if search is not None and not search:
        return False
    prefix = ""
    for part in name.split("."):
        qualified = f"{prefix}{part}"
        spec = importlib.machinery.PathFinder.find_spec(qualified, search)
        if spec is None:
            return False
        if qualified == name:
            return True
        search = (
            list(spec.submodule_search_locations)
            if spec.submodule_search_locations is not None
            else []
        )
        if not search:
            return False
        prefix = f"{qualified}."
    return False
