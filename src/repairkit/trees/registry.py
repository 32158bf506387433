"""Priority-ordered registry of tree generators.

A registration says "units whose path matches this pattern can be
parsed by this factory, with this priority". Selection picks the
highest priority among matching registrations and breaks ties by
registration order (first registered wins).

The registry is process-wide state with a single initialization
phase: registrations happen at startup, then :meth:`seal` freezes it.
Lookups read an immutable tuple and need no locking.
"""

from __future__ import annotations

import functools
import logging
import re
import threading
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass

from repairkit.constants import Priority
from repairkit.errors import GeneratorNotFound
from repairkit.sources import VirtualSourceUnit
from repairkit.trees.generators import (
    PythonAstGenerator,
    TreeGenerator,
    TreeSitterGenerator,
    grammar_available,
)
from repairkit.trees.model import SyntaxTree

logger = logging.getLogger(__name__)

__all__ = [
    "GeneratorRegistration",
    "GeneratorRegistry",
    "default_registry",
    "parse",
]


@dataclass(frozen=True)
class GeneratorRegistration:
    """Capability record: ``matches(name)``, ``priority``, ``factory()``."""

    id: str
    file_pattern: str
    priority: int
    factory: Callable[[], TreeGenerator]

    def __post_init__(self) -> None:
        try:
            re.compile(self.file_pattern)
        except re.error as exc:
            raise ValueError(
                f"invalid file pattern for {self.id!r}: {exc}"
            ) from exc

    def matches(self, unit_name: str) -> bool:
        return re.search(self.file_pattern, unit_name) is not None

    def create(self) -> TreeGenerator:
        return self.factory()


class GeneratorRegistry:
    """Registration table plus priority-based selection."""

    def __init__(
        self, registrations: Iterable[GeneratorRegistration] = ()
    ) -> None:
        self._registrations: tuple[GeneratorRegistration, ...] = ()
        self._lock = threading.Lock()
        self._sealed = False
        for registration in registrations:
            self.register(registration)

    def register(self, registration: GeneratorRegistration) -> None:
        with self._lock:
            if self._sealed:
                raise RuntimeError(
                    "generator registry is sealed; register at startup"
                )
            if any(r.id == registration.id for r in self._registrations):
                raise ValueError(
                    f"generator {registration.id!r} is already registered"
                )
            self._registrations = (*self._registrations, registration)
        logger.debug(
            "event=generator_registered id=%s pattern=%s priority=%d",
            registration.id,
            registration.file_pattern,
            registration.priority,
        )

    def seal(self) -> None:
        with self._lock:
            self._sealed = True

    @property
    def sealed(self) -> bool:
        return self._sealed

    def select(self, unit_name: str) -> GeneratorRegistration:
        """Highest-priority matching registration, earliest on ties.

        Raises :class:`GeneratorNotFound` when nothing matches; callers
        skip the candidate.
        """
        best: GeneratorRegistration | None = None
        for registration in self._registrations:
            if not registration.matches(unit_name):
                continue
            if best is None or registration.priority > best.priority:
                best = registration
        if best is None:
            raise GeneratorNotFound(unit_name)
        return best

    def generator_for(self, unit_name: str) -> TreeGenerator:
        return self.select(unit_name).create()

    def parse(self, unit: VirtualSourceUnit) -> SyntaxTree:
        """Parse a unit with the generator selected for its path."""
        return self.generator_for(unit.path).generate(unit)

    def __iter__(self) -> Iterator[GeneratorRegistration]:
        return iter(self._registrations)

    def __len__(self) -> int:
        return len(self._registrations)


@functools.cache
def default_registry() -> GeneratorRegistry:
    """The process-wide registry, built and sealed on first use."""
    registry = GeneratorRegistry()
    if grammar_available("java"):
        registry.register(
            GeneratorRegistration(
                id="java-treesitter",
                file_pattern=r"\.java$",
                priority=Priority.MAXIMUM,
                factory=functools.partial(TreeSitterGenerator, "java"),
            )
        )
    if grammar_available("python"):
        registry.register(
            GeneratorRegistration(
                id="python-treesitter",
                file_pattern=r"\.pyi?$",
                priority=Priority.HIGH,
                factory=functools.partial(TreeSitterGenerator, "python"),
            )
        )
    registry.register(
        GeneratorRegistration(
            id="python-ast",
            file_pattern=r"\.pyi?$",
            priority=Priority.MEDIUM,
            factory=PythonAstGenerator,
        )
    )
    registry.seal()
    return registry


def parse(
    unit: VirtualSourceUnit, registry: GeneratorRegistry | None = None
) -> SyntaxTree:
    """Parse ``unit`` into a SyntaxTree, atomically.

    Raises :class:`GeneratorNotFound` or :class:`ParseError`; no partial
    tree is ever returned.
    """
    return (registry or default_registry()).parse(unit)
