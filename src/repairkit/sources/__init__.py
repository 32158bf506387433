"""Virtual source units and the in-memory store that holds them."""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, replace
from types import MappingProxyType

from repairkit.constants import (
    DEFAULT_SOURCE_EXTENSION,
    VIRTUAL_URI_SCHEME,
    UnitKind,
)

__all__ = ["VirtualSourceStore", "VirtualSourceUnit"]


@dataclass(frozen=True)
class VirtualSourceUnit:
    """An in-memory, named, immutable piece of source text.

    Stands in for a file: ``path`` and ``uri`` are derived from the
    qualified name (``pkg.mod`` → ``pkg/mod.py``), but nothing is ever
    read from or written to that path. A new version of a unit is a new
    unit; see :meth:`with_content`.
    """

    qualified_name: str
    content: str | bytes
    kind: UnitKind = UnitKind.SOURCE
    extension: str = DEFAULT_SOURCE_EXTENSION

    def __post_init__(self) -> None:
        parts = self.qualified_name.split(".")
        if not self.qualified_name or not all(parts):
            raise ValueError(
                f"invalid qualified name: {self.qualified_name!r}"
            )
        if self.kind is UnitKind.ARTIFACT and not isinstance(
            self.content, bytes
        ):
            raise TypeError("artifact units must hold bytes")

    @property
    def path(self) -> str:
        return self.qualified_name.replace(".", "/") + self.extension

    @property
    def uri(self) -> str:
        return f"{VIRTUAL_URI_SCHEME}:///{self.path}"

    @property
    def package(self) -> str:
        return self.qualified_name.rpartition(".")[0]

    @property
    def text(self) -> str:
        """Source text; raises UnicodeDecodeError for non-UTF-8 bytes."""
        if isinstance(self.content, bytes):
            return self.content.decode("utf-8")
        return self.content

    def with_content(self, content: str | bytes) -> VirtualSourceUnit:
        return replace(self, content=content)


class VirtualSourceStore:
    """Named compilation units held entirely in memory.

    A store is owned by one candidate pipeline. Units are immutable,
    so ``put`` replaces a name's previous version rather than editing it.
    """

    def __init__(self, units: Iterable[VirtualSourceUnit] = ()) -> None:
        self._units: dict[str, VirtualSourceUnit] = {}
        for unit in units:
            self.put(unit)

    def put(self, unit: VirtualSourceUnit) -> VirtualSourceUnit:
        self._units[unit.qualified_name] = unit
        return unit

    def write(
        self,
        qualified_name: str,
        text: str,
        extension: str = DEFAULT_SOURCE_EXTENSION,
    ) -> VirtualSourceUnit:
        """Create a SOURCE unit from text and store it."""
        return self.put(
            VirtualSourceUnit(
                qualified_name=qualified_name,
                content=text,
                extension=extension,
            )
        )

    def get(self, qualified_name: str) -> VirtualSourceUnit:
        try:
            return self._units[qualified_name]
        except KeyError:
            raise KeyError(
                f"no unit named {qualified_name!r} in store"
            ) from None

    def discard(self, qualified_name: str) -> None:
        self._units.pop(qualified_name, None)

    def units(self) -> list[VirtualSourceUnit]:
        return [self._units[name] for name in sorted(self._units)]

    def overlay(self, *units: VirtualSourceUnit) -> VirtualSourceStore:
        """Return a new store with ``units`` replacing same-named ones."""
        store = VirtualSourceStore(self._units.values())
        for unit in units:
            store.put(unit)
        return store

    def snapshot(self) -> Mapping[str, VirtualSourceUnit]:
        return MappingProxyType(dict(self._units))

    def __contains__(self, qualified_name: object) -> bool:
        return qualified_name in self._units

    def __iter__(self) -> Iterator[VirtualSourceUnit]:
        return iter(self.units())

    def __len__(self) -> int:
        return len(self._units)
