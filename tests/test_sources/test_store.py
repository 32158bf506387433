"""Tests for virtual source units and the in-memory store."""

from __future__ import annotations

import pytest

from repairkit.constants import UnitKind
from repairkit.sources import VirtualSourceStore, VirtualSourceUnit


class TestVirtualSourceUnit:
    def test_derived_path_and_uri(self) -> None:
        unit = VirtualSourceUnit("pkg.mod.A", "x = 1\n")
        assert unit.path == "pkg/mod/A.py"
        assert unit.uri == "memo:///pkg/mod/A.py"
        assert unit.package == "pkg.mod"

    def test_extension_drives_path(self) -> None:
        unit = VirtualSourceUnit("a.b.C", "class C {}", extension=".java")
        assert unit.path == "a/b/C.java"

    @pytest.mark.parametrize("name", ["", "a..b", ".a", "a."])
    def test_invalid_qualified_name_rejected(self, name: str) -> None:
        with pytest.raises(ValueError, match="invalid qualified name"):
            VirtualSourceUnit(name, "")

    def test_artifact_requires_bytes(self) -> None:
        with pytest.raises(TypeError):
            VirtualSourceUnit("a", "text", kind=UnitKind.ARTIFACT)

    def test_bytes_content_decoded_as_utf8(self) -> None:
        unit = VirtualSourceUnit("a", "s = 'é'\n".encode())
        assert unit.text == "s = 'é'\n"

    def test_with_content_leaves_original_untouched(self) -> None:
        """A new version is a new unit."""
        original = VirtualSourceUnit("a", "x = 1\n")
        changed = original.with_content("x = 2\n")
        assert original.content == "x = 1\n"
        assert changed.content == "x = 2\n"
        assert changed.qualified_name == "a"

    def test_units_are_immutable(self) -> None:
        unit = VirtualSourceUnit("a", "x = 1\n")
        with pytest.raises(AttributeError):
            unit.content = "x = 2\n"  # type: ignore[misc]


class TestVirtualSourceStore:
    def test_write_and_get(self) -> None:
        store = VirtualSourceStore()
        unit = store.write("pkg.a", "x = 1\n")
        assert store.get("pkg.a") is unit
        assert "pkg.a" in store
        assert len(store) == 1

    def test_get_missing_raises_key_error(self) -> None:
        with pytest.raises(KeyError, match="no unit named"):
            VirtualSourceStore().get("nope")

    def test_put_replaces_same_name(self) -> None:
        store = VirtualSourceStore()
        store.write("a", "x = 1\n")
        store.write("a", "x = 2\n")
        assert len(store) == 1
        assert store.get("a").content == "x = 2\n"

    def test_units_sorted_by_name(self) -> None:
        store = VirtualSourceStore(
            [VirtualSourceUnit("b", ""), VirtualSourceUnit("a", "")]
        )
        assert [u.qualified_name for u in store.units()] == ["a", "b"]
        assert [u.qualified_name for u in store] == ["a", "b"]

    def test_overlay_returns_new_store(self) -> None:
        """Overlaying a candidate never mutates the baseline."""
        baseline = VirtualSourceStore([VirtualSourceUnit("a", "x = 1\n")])
        candidate = VirtualSourceUnit("a", "x = 2\n")
        overlaid = baseline.overlay(candidate, VirtualSourceUnit("b", ""))

        assert baseline.get("a").content == "x = 1\n"
        assert "b" not in baseline
        assert overlaid.get("a") is candidate
        assert len(overlaid) == 2

    def test_snapshot_is_read_only(self) -> None:
        store = VirtualSourceStore([VirtualSourceUnit("a", "")])
        snap = store.snapshot()
        with pytest.raises(TypeError):
            snap["b"] = VirtualSourceUnit("b", "")  # type: ignore[index]
        store.write("c", "")
        assert "c" not in snap

    def test_discard_is_idempotent(self) -> None:
        store = VirtualSourceStore([VirtualSourceUnit("a", "")])
        store.discard("a")
        store.discard("a")
        assert len(store) == 0
