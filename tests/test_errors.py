"""Tests for the error taxonomy and candidate-boundary classification."""

from __future__ import annotations

import pytest

from repairkit.compiler import Diagnostic
from repairkit.constants import Severity
from repairkit.errors import (
    CompilationError,
    ErrorClass,
    GeneratorNotFound,
    InvalidTree,
    LoadError,
    ParseError,
    RepairKitError,
    UnknownCandidate,
    classify_error,
    is_recoverable,
)


@pytest.mark.parametrize(
    ("error", "expected"),
    [
        (ParseError("m", 1, 1, "bad"), ErrorClass.SKIP),
        (GeneratorNotFound("Main.kt"), ErrorClass.SKIP),
        (CompilationError([]), ErrorClass.CANDIDATE_FAILURE),
        (LoadError("bad artifact"), ErrorClass.CANDIDATE_FAILURE),
        (InvalidTree("dangling child"), ErrorClass.DEFECT),
        (ZeroDivisionError(), ErrorClass.UNKNOWN),
        (UnknownCandidate("c1"), ErrorClass.UNKNOWN),
    ],
)
def test_classify_error(error: BaseException, expected: ErrorClass) -> None:
    assert classify_error(error) is expected


def test_only_defects_are_unrecoverable() -> None:
    assert not is_recoverable(InvalidTree("x"))
    assert is_recoverable(ParseError("m", 1, 1, "bad"))
    assert is_recoverable(LoadError("x"))
    assert is_recoverable(RuntimeError("evaluator blew up"))


def test_all_errors_share_a_base() -> None:
    for cls in (ParseError, CompilationError, LoadError, InvalidTree,
                GeneratorNotFound, UnknownCandidate):
        assert issubclass(cls, RepairKitError)


def test_parse_error_carries_position() -> None:
    error = ParseError("a.B", 4, 1, "unexpected '}'")
    assert str(error) == "a.B:4:1: unexpected '}'"
    diagnostic = error.to_diagnostic()
    assert diagnostic.severity is Severity.ERROR
    assert (diagnostic.unit, diagnostic.line, diagnostic.column) == ("a.B", 4, 1)


def test_compilation_error_summarizes_first_diagnostic() -> None:
    diagnostic = Diagnostic(
        severity=Severity.ERROR, unit="m", line=3, column=6, message="bad"
    )
    error = CompilationError([diagnostic])
    assert "1 error(s)" in str(error)
    assert "m:3:6: error: bad" in str(error)
    assert error.diagnostics == (diagnostic,)


def test_lookup_errors_are_lookup_errors() -> None:
    with pytest.raises(LookupError):
        raise GeneratorNotFound("x.kt")
    with pytest.raises(LookupError):
        raise UnknownCandidate("c1")
