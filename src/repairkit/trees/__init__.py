"""Syntax tree model, generators and the generator registry."""

from repairkit.trees.generators import (
    PythonAstGenerator,
    TreeGenerator,
    TreeSitterGenerator,
)
from repairkit.trees.model import Node, SyntaxTree, TreeBuilder
from repairkit.trees.registry import (
    GeneratorRegistration,
    GeneratorRegistry,
    default_registry,
    parse,
)

__all__ = [
    "GeneratorRegistration",
    "GeneratorRegistry",
    "Node",
    "PythonAstGenerator",
    "SyntaxTree",
    "TreeBuilder",
    "TreeGenerator",
    "TreeSitterGenerator",
    "default_registry",
    "parse",
]
