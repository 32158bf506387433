"""Shared test fixtures: sample programs, units and a quiet settings object."""

from __future__ import annotations

import os

import pytest

from repairkit.config import Settings
from repairkit.sources import VirtualSourceUnit
from repairkit.trees import GeneratorRegistry, default_registry

JAVA_RETURN_1 = "class A { int m() { return 1; } }"
JAVA_RETURN_2 = "class A { int m() { return 2; } }"

PY_CLASS_A = "class A:\n    def m(self):\n        return 1\n"

PY_CALC = "def add(a, b):\n    return a + b\n"


def py_unit(name: str, text: str) -> VirtualSourceUnit:
    return VirtualSourceUnit(name, text)


def java_unit(name: str, text: str) -> VirtualSourceUnit:
    return VirtualSourceUnit(name, text, extension=".java")


@pytest.fixture
def registry() -> GeneratorRegistry:
    return default_registry()


@pytest.fixture
def settings(monkeypatch: pytest.MonkeyPatch) -> Settings:
    """Settings isolated from the developer's REPAIRKIT_* environment."""
    for key in list(os.environ):
        if key.startswith("REPAIRKIT_"):
            monkeypatch.delenv(key)
    return Settings(_env_file=None, max_concurrency=2)  # type: ignore[call-arg]
