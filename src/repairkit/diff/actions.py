"""Edit actions and the edit script that sequences them.

Node references are *working ids*: a source node keeps its id, an
inserted node gets ``len(source) + target_id``, and ``-1`` is the
virtual node above the source root (so the root itself can be
replaced). Every action carries a span so reporting collaborators can
map it back to source text: source spans for nodes that existed in
the source tree, target spans for inserted ones.
"""

from __future__ import annotations

from collections import Counter
from typing import TYPE_CHECKING, Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field

from repairkit.constants import ActionKind

if TYPE_CHECKING:
    from repairkit.trees.model import SyntaxTree

__all__ = ["Delete", "EditAction", "EditScript", "Insert", "Move", "Update"]


class Insert(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal[ActionKind.INSERT] = ActionKind.INSERT
    node: int
    parent: int
    index: int
    type: str
    label: str = ""
    span: tuple[int, int] = (0, 0)

    def describe(self) -> str:
        return (
            f"insert {self.type} {self.label!r} as #{self.node}"
            f" under #{self.parent} at {self.index}"
        )


class Delete(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal[ActionKind.DELETE] = ActionKind.DELETE
    node: int
    type: str
    label: str = ""
    span: tuple[int, int] = (0, 0)

    def describe(self) -> str:
        return f"delete {self.type} {self.label!r} #{self.node}"


class Update(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal[ActionKind.UPDATE] = ActionKind.UPDATE
    node: int
    old_label: str
    new_label: str
    span: tuple[int, int] = (0, 0)

    def describe(self) -> str:
        return (
            f"update #{self.node} {self.old_label!r} -> {self.new_label!r}"
        )


class Move(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal[ActionKind.MOVE] = ActionKind.MOVE
    node: int
    parent: int
    index: int
    span: tuple[int, int] = (0, 0)

    def describe(self) -> str:
        return f"move #{self.node} under #{self.parent} at {self.index}"


EditAction = Annotated[
    Insert | Delete | Update | Move, Field(discriminator="kind")
]


class EditScript(BaseModel):
    """Ordered actions that turn the source tree into the target tree."""

    model_config = ConfigDict(frozen=True)

    actions: tuple[EditAction, ...] = ()
    source_ref: str = ""
    target_ref: str = ""

    def __len__(self) -> int:
        return len(self.actions)

    @property
    def is_empty(self) -> bool:
        return not self.actions

    def of_kind(self, kind: ActionKind) -> list[EditAction]:
        return [a for a in self.actions if a.kind == kind]

    def summary(self) -> dict[str, int]:
        counts = Counter(a.kind for a in self.actions)
        return {kind.value: counts.get(kind, 0) for kind in ActionKind}

    def apply(self, tree: SyntaxTree) -> SyntaxTree:
        """Replay the script on ``tree`` and return the resulting tree."""
        from repairkit.diff.script import apply_script

        return apply_script(tree, self)

    def describe(self) -> str:
        return "\n".join(a.describe() for a in self.actions)
