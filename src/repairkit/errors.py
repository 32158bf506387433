"""Error taxonomy and candidate-boundary classification.

Every failure a candidate can cause is recoverable at the pipeline
boundary: the candidate is skipped or marked failed and evaluation of
the other candidates continues. Only ``InvalidTree`` (malformed state
handed from one stage to the next) is a programming defect and is
allowed to propagate.
"""

from __future__ import annotations

from collections.abc import Sequence
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from repairkit.compiler.schemas import Diagnostic


class RepairKitError(Exception):
    """Base class for all repairkit errors."""


class ParseError(RepairKitError):
    """Malformed source; the candidate must be skipped, not retried."""

    def __init__(
        self, unit: str, line: int, column: int, message: str
    ) -> None:
        super().__init__(f"{unit}:{line}:{column}: {message}")
        self.unit = unit
        self.line = line
        self.column = column
        self.message = message

    def to_diagnostic(self) -> Diagnostic:
        from repairkit.compiler.schemas import Diagnostic
        from repairkit.constants import Severity

        return Diagnostic(
            severity=Severity.ERROR,
            unit=self.unit,
            line=self.line,
            column=self.column,
            message=self.message,
        )


class CompilationError(RepairKitError):
    """A compilation finished with at least one ERROR diagnostic.

    Compilation never raises this on its own; callers that prefer
    exceptions opt in through ``CompilationResult.raise_for_errors()``.
    """

    def __init__(self, diagnostics: Sequence[Diagnostic]) -> None:
        self.diagnostics = tuple(diagnostics)
        first = self.diagnostics[0].format() if self.diagnostics else ""
        count = len(self.diagnostics)
        super().__init__(
            f"compilation failed with {count} error(s): {first}"
        )


class LoadError(RepairKitError):
    """Compiled artifacts could not be turned into a live context."""


class InvalidTree(RepairKitError):
    """A malformed tree or edit script was passed between stages."""


class GeneratorNotFound(RepairKitError, LookupError):
    """No registered tree generator accepts the unit name."""

    def __init__(self, unit_name: str) -> None:
        super().__init__(f"no tree generator registered for {unit_name!r}")
        self.unit_name = unit_name


class UnknownCandidate(RepairKitError, LookupError):
    """A candidate id that was never submitted or was discarded."""

    def __init__(self, candidate_id: str) -> None:
        super().__init__(f"unknown candidate {candidate_id!r}")
        self.candidate_id = candidate_id


class ErrorClass(Enum):
    SKIP = "skip"  # unparsable or no generator: skip
    CANDIDATE_FAILURE = "candidate_failure"  # compile or load: record it
    DEFECT = "defect"  # caller bug: propagate
    UNKNOWN = "unknown"  # anything else: record it


def classify_error(error: BaseException) -> ErrorClass:
    """Classify an error to decide how the candidate pipeline reacts."""
    if isinstance(error, InvalidTree):
        return ErrorClass.DEFECT
    if isinstance(error, (ParseError, GeneratorNotFound)):
        return ErrorClass.SKIP
    if isinstance(error, (CompilationError, LoadError)):
        return ErrorClass.CANDIDATE_FAILURE
    return ErrorClass.UNKNOWN


def is_recoverable(error: BaseException) -> bool:
    """Return True if evaluation of other candidates may continue."""
    return classify_error(error) is not ErrorClass.DEFECT
