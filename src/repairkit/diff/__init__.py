"""Tree diff engine: node matching plus edit-script extraction."""

from __future__ import annotations

import logging

from repairkit.diff.actions import (
    Delete,
    EditAction,
    EditScript,
    Insert,
    Move,
    Update,
)
from repairkit.diff.matcher import DiffConfig, MappingStore, match_trees
from repairkit.diff.script import apply_script, generate_script
from repairkit.errors import InvalidTree
from repairkit.trees.model import SyntaxTree

logger = logging.getLogger(__name__)

__all__ = [
    "Delete",
    "DiffConfig",
    "EditAction",
    "EditScript",
    "Insert",
    "MappingStore",
    "Move",
    "Update",
    "apply_script",
    "diff",
    "generate_script",
    "match_trees",
]


def diff(
    source: SyntaxTree,
    target: SyntaxTree,
    config: DiffConfig | None = None,
) -> EditScript:
    """Compute an edit script turning ``source`` into ``target``.

    The script is valid (replaying it on ``source`` yields a tree
    structurally equal to ``target``) and empty for identical trees,
    but not guaranteed minimal: matching is heuristic.
    """
    for name, tree in (("source", source), ("target", target)):
        if not isinstance(tree, SyntaxTree):
            raise InvalidTree(
                f"{name} must be a SyntaxTree, got {type(tree).__name__}"
            )
    config = config or DiffConfig()
    mappings = match_trees(source, target, config)
    script = generate_script(source, target, mappings)
    logger.debug(
        "event=diff_complete source=%s target=%s matched=%d actions=%d",
        source.source_ref,
        target.source_ref,
        len(mappings),
        len(script),
    )
    return script
