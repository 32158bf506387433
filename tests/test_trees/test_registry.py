"""Tests for generator selection and the built-in generators."""

from __future__ import annotations

from unittest.mock import patch

import pytest
from conftest import JAVA_RETURN_1, java_unit, py_unit

from repairkit.constants import Priority, UnitKind
from repairkit.errors import GeneratorNotFound, ParseError
from repairkit.sources import VirtualSourceUnit
from repairkit.trees import (
    GeneratorRegistration,
    GeneratorRegistry,
    PythonAstGenerator,
    SyntaxTree,
    TreeBuilder,
    TreeSitterGenerator,
)


class _FixedGenerator:
    def __init__(self, root_type: str) -> None:
        self.root_type = root_type

    def generate(self, unit: VirtualSourceUnit) -> SyntaxTree:
        builder = TreeBuilder()
        builder.add(self.root_type)
        return builder.build(source_ref=unit.qualified_name)


def _registration(
    reg_id: str, pattern: str = r"\.x$", priority: int = Priority.MEDIUM
) -> GeneratorRegistration:
    return GeneratorRegistration(
        id=reg_id,
        file_pattern=pattern,
        priority=priority,
        factory=lambda: _FixedGenerator(reg_id),
    )


class TestSelection:
    def test_highest_priority_wins(self) -> None:
        registry = GeneratorRegistry(
            [
                _registration("low", priority=Priority.LOW),
                _registration("high", priority=Priority.HIGH),
            ]
        )
        assert registry.select("unit.x").id == "high"

    def test_tie_goes_to_first_registered(self) -> None:
        registry = GeneratorRegistry(
            [_registration("first"), _registration("second")]
        )
        assert registry.select("unit.x").id == "first"

    def test_non_matching_patterns_ignored(self) -> None:
        registry = GeneratorRegistry(
            [
                _registration("other", pattern=r"\.y$", priority=Priority.MAXIMUM),
                _registration("mine"),
            ]
        )
        assert registry.select("unit.x").id == "mine"

    def test_no_match_raises_not_found(self) -> None:
        registry = GeneratorRegistry([_registration("x")])
        with pytest.raises(GeneratorNotFound) as exc_info:
            registry.select("Main.kt")
        assert isinstance(exc_info.value, LookupError)
        assert exc_info.value.unit_name == "Main.kt"

    def test_parse_uses_unit_path(self) -> None:
        registry = GeneratorRegistry(
            [_registration("py", pattern=r"\.py$")]
        )
        tree = registry.parse(py_unit("pkg.mod", "x = 1\n"))
        assert tree.root.type == "py"
        assert tree.source_ref == "pkg.mod"


class TestRegistration:
    def test_sealed_registry_rejects_registration(self) -> None:
        registry = GeneratorRegistry()
        registry.seal()
        assert registry.sealed
        with pytest.raises(RuntimeError, match="sealed"):
            registry.register(_registration("late"))

    def test_duplicate_id_rejected(self) -> None:
        registry = GeneratorRegistry([_registration("dup")])
        with pytest.raises(ValueError, match="already registered"):
            registry.register(_registration("dup"))

    def test_invalid_pattern_rejected(self) -> None:
        with pytest.raises(ValueError, match="invalid file pattern"):
            _registration("bad", pattern="([")


class TestDefaultRegistry:
    def test_default_registry_is_sealed(self, registry: GeneratorRegistry) -> None:
        assert registry.sealed
        with pytest.raises(RuntimeError):
            registry.register(_registration("late"))

    def test_languages_select_expected_generators(
        self, registry: GeneratorRegistry
    ) -> None:
        """Tree-sitter outranks the ast generator for Python units."""
        assert registry.select("a/b/C.java").id == "java-treesitter"
        assert registry.select("a/b/c.py").id == "python-treesitter"
        assert len([r for r in registry if r.matches("c.py")]) == 2


class TestTreeSitterGenerator:
    def test_java_tree_shape(self) -> None:
        tree = TreeSitterGenerator("java").generate(java_unit("A", JAVA_RETURN_1))
        assert tree.root.type == "program"
        assert tree.source_ref == "A"
        literals = [n for n in tree if n.type == "decimal_integer_literal"]
        assert len(literals) == 1
        assert literals[0].label == "1"
        assert tree.node_text(literals[0].id) == "1"

    def test_inner_nodes_labeled_with_operators(self) -> None:
        tree = TreeSitterGenerator("python").generate(
            py_unit("m", "x = a + b\n")
        )
        (binary,) = [n for n in tree if n.type == "binary_operator"]
        assert binary.label == "+"

    def test_comments_dropped(self) -> None:
        tree = TreeSitterGenerator("python").generate(
            py_unit("m", "# note\nx = 1\n")
        )
        assert all(n.type != "comment" for n in tree)

    def test_java_unbalanced_brace_reports_line(self) -> None:
        """The stray brace sits on line 4."""
        source = "class A {\n    int m() { return 1; }\n}\n}\n"
        with pytest.raises(ParseError) as exc_info:
            TreeSitterGenerator("java").generate(java_unit("A", source))
        assert exc_info.value.unit == "A"
        assert exc_info.value.line == 4

    def test_spans_are_character_offsets(self) -> None:
        text = "s = 'héllo'\nt = 1\n"
        tree = TreeSitterGenerator("python").generate(py_unit("m", text))
        (one,) = [n for n in tree if n.type == "integer"]
        assert tree.node_text(one.id) == "1"
        assert tree.line_col(one.span[0]) == (2, 5)


class TestPythonAstGenerator:
    def test_operators_folded_into_label(self) -> None:
        tree = PythonAstGenerator().generate(py_unit("m", "x = a + b\n"))
        assert [n.type for n in tree] == [
            "Module", "Assign", "Name", "BinOp", "Name", "Name",
        ]
        assert tree[3].label == "Add"
        assert tree[2].label == "x"

    def test_constants_labeled_with_repr(self) -> None:
        tree = PythonAstGenerator().generate(py_unit("m", "x = '1'\ny = 1\n"))
        labels = [n.label for n in tree if n.type == "Constant"]
        assert labels == ["'1'", "1"]

    def test_syntax_error_position(self) -> None:
        with pytest.raises(ParseError) as exc_info:
            PythonAstGenerator().generate(py_unit("m", "a = 1\nb = (\n"))
        assert exc_info.value.line == 2

    def test_invalid_utf8_is_parse_error(self) -> None:
        unit = VirtualSourceUnit("m", b"x = 1\ny = '\xff'\n")
        with pytest.raises(ParseError, match="not valid UTF-8") as exc_info:
            PythonAstGenerator().generate(unit)
        assert (exc_info.value.line, exc_info.value.column) == (2, 6)

    def test_artifact_unit_has_no_source(self) -> None:
        unit = VirtualSourceUnit("m", b"\x00", kind=UnitKind.ARTIFACT)
        with pytest.raises(ParseError, match="artifact"):
            PythonAstGenerator().generate(unit)

    def test_long_expression_builds_complete_tree(self) -> None:
        source = "x = " + " + ".join(["1"] * 3000) + "\n"
        tree = PythonAstGenerator().generate(py_unit("m", source))
        assert sum(1 for n in tree if n.type == "BinOp") == 2999
        assert sum(1 for n in tree if n.type == "Constant") == 3000
        assert tree.height(0) == 3002

    def test_unpositioned_nodes_cover_their_children(self) -> None:
        tree = PythonAstGenerator().generate(
            py_unit("m", "def f(a, b):\n    pass\n")
        )
        (arguments,) = [n for n in tree if n.type == "arguments"]
        assert tree.node_text(arguments.id) == "a, b"
        assert tree.node_text(0) == "def f(a, b):\n    pass\n"

    def test_parser_recursion_limit_is_parse_error(self) -> None:
        with (
            patch("repairkit.trees.generators.ast.parse", side_effect=RecursionError),
            pytest.raises(ParseError, match="nested too deeply"),
        ):
            PythonAstGenerator().generate(py_unit("m", "x = 1\n"))


def test_long_tree_sitter_expression_serializes() -> None:
    source = "x = " + " + ".join(["1"] * 3000) + "\n"
    tree = TreeSitterGenerator("python").generate(py_unit("m", source))
    stack = [(tree.to_dict(), 1)]
    deepest = 0
    while stack:
        data, depth = stack.pop()
        deepest = max(deepest, depth)
        stack.extend((c, depth + 1) for c in data["children"])
    assert deepest == tree.height(0)
