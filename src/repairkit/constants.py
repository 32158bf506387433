"""Shared constants: single source of truth for cross-module values.

StrEnum members are str-compatible, so downstream code (JSON output,
log records, CLI rendering) works unchanged.
"""

from __future__ import annotations

from enum import IntEnum, StrEnum

# ── String Enums ─────────────────────────────────────────


class UnitKind(StrEnum):
    """What a virtual source unit holds."""

    SOURCE = "source"
    ARTIFACT = "artifact"


class Severity(StrEnum):
    """Diagnostic severity, most severe first."""

    ERROR = "error"
    WARNING = "warning"
    NOTE = "note"


class ActionKind(StrEnum):
    """Edit action tags."""

    INSERT = "insert"
    DELETE = "delete"
    UPDATE = "update"
    MOVE = "move"


class CandidateStatus(StrEnum):
    """Outcome of one candidate's pipeline.

    SKIPPED covers candidates that never reached compilation
    (no generator for the unit, or the source does not parse).
    """

    COMPLETED = "completed"
    SKIPPED = "skipped"
    COMPILE_FAILED = "compile_failed"
    LOAD_FAILED = "load_failed"
    FAILED = "failed"


# ── Generator priorities ─────────────────────────────────


class Priority(IntEnum):
    """Named generator priorities; any int is accepted by the registry."""

    MINIMUM = 0
    LOW = 25
    MEDIUM = 50
    HIGH = 75
    MAXIMUM = 100


# ── Virtual sources ──────────────────────────────────────

VIRTUAL_URI_SCHEME = "memo"
DEFAULT_SOURCE_EXTENSION = ".py"

# Candidate id that names the baseline version of a unit
BASELINE = "baseline"

# ── Tree generators ──────────────────────────────────────

# Grammar name → import path for tree-sitter grammars
GRAMMAR_MODULES: dict[str, str] = {
    "python": "tree_sitter_python",
    "java": "tree_sitter_java",
}

# Anonymous tokens that carry no meaning once the tree shape is known
PUNCTUATION_TOKENS = frozenset(
    {"(", ")", "{", "}", "[", "]", ";", ",", ".", ":", "\"", "'"}
)

COMMENT_NODE_TYPES = frozenset({"comment", "line_comment", "block_comment"})

# ── Diff engine defaults ─────────────────────────────────

DEFAULT_MIN_HEIGHT = 2
DEFAULT_SIM_THRESHOLD = 0.5
DEFAULT_CHILD_THRESHOLD = 0.5

# Similarity given to two same-type leaves whose labels differ
RELABELED_LEAF_SIMILARITY = 0.5

# Working id of the virtual node that parents the root during diffing
VIRTUAL_ROOT = -1

# ── Pipeline ─────────────────────────────────────────────

DEFAULT_MAX_CONCURRENCY = 4
ERROR_TRUNCATION_CHARS = 500
