"""Pydantic models for compilation output."""

from __future__ import annotations

from typing import Self

from pydantic import BaseModel, ConfigDict, Field, model_validator

from repairkit.constants import Severity
from repairkit.errors import CompilationError


class Diagnostic(BaseModel):
    """A compiler or parser message pinned to a 1-based position."""

    model_config = ConfigDict(frozen=True)

    severity: Severity
    unit: str
    line: int = Field(ge=1)
    column: int = Field(ge=1)
    message: str

    def format(self) -> str:
        return (
            f"{self.unit}:{self.line}:{self.column}:"
            f" {self.severity.value}: {self.message}"
        )


class CompilationResult(BaseModel):
    """Outcome of one compilation session.

    ``artifacts`` maps qualified names to marshalled code objects and
    is non-empty exactly when the session succeeded, which in turn is
    exactly when no ERROR diagnostic was produced.
    """

    model_config = ConfigDict(frozen=True)

    success: bool
    diagnostics: tuple[Diagnostic, ...] = ()
    artifacts: dict[str, bytes] = Field(
        default_factory=lambda: dict[str, bytes]()
    )

    @model_validator(mode="after")
    def _check_consistency(self) -> Self:
        has_errors = any(
            d.severity is Severity.ERROR for d in self.diagnostics
        )
        if self.success and (has_errors or not self.artifacts):
            raise ValueError(
                "a successful compilation needs artifacts and no errors"
            )
        if not self.success and (self.artifacts or not has_errors):
            raise ValueError(
                "a failed compilation needs an error and no artifacts"
            )
        return self

    @property
    def errors(self) -> list[Diagnostic]:
        return [d for d in self.diagnostics if d.severity is Severity.ERROR]

    @property
    def warnings(self) -> list[Diagnostic]:
        return [
            d for d in self.diagnostics if d.severity is Severity.WARNING
        ]

    def raise_for_errors(self) -> None:
        if not self.success:
            raise CompilationError(self.errors)
