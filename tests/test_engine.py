"""Tests for the candidate pipeline facade."""

from __future__ import annotations

import logging
from unittest.mock import patch

import pytest
from conftest import PY_CALC, py_unit

from repairkit.config import Settings
from repairkit.constants import BASELINE, CandidateStatus
from repairkit.diff import Update
from repairkit.engine import RepairEngine
from repairkit.errors import InvalidTree, LoadError, UnknownCandidate
from repairkit.loader import ExecutionHandle


def _engine(settings: Settings) -> RepairEngine:
    return RepairEngine(
        [
            py_unit("app.calc", PY_CALC),
            py_unit("app.util", "def twice(x):\n    return 2 * x\n"),
        ],
        settings=settings,
    )


def _call_add(handle: ExecutionHandle) -> int:
    return handle.invoke("app.calc:add", 2, 3)


class TestCandidateTable:
    def test_submit_and_lookup(self, settings: Settings) -> None:
        engine = _engine(settings)
        cid = engine.submit_candidate("app.calc", "def add(a, b):\n    return 0\n")
        assert engine.candidate(cid).qualified_name == "app.calc"
        assert cid in engine.candidate_ids

    def test_discard_forgets_candidate(self, settings: Settings) -> None:
        engine = _engine(settings)
        cid = engine.submit_candidate("app.calc", PY_CALC)
        engine.discard(cid)
        engine.discard(cid)
        with pytest.raises(UnknownCandidate):
            engine.candidate(cid)

    def test_registry_is_sealed(self, settings: Settings) -> None:
        assert _engine(settings).registry.sealed


class TestSingleSteps:
    def test_diff_against_baseline(self, settings: Settings) -> None:
        engine = _engine(settings)
        cid = engine.submit_candidate("app.calc", "def add(a, b):\n    return a - b\n")
        script = engine.diff_against_baseline(cid)
        assert len(script) == 1
        (update,) = script.actions
        assert isinstance(update, Update)
        assert (update.old_label, update.new_label) == ("+", "-")

    def test_diff_between_candidates(self, settings: Settings) -> None:
        engine = _engine(settings)
        first = engine.submit_candidate("app.calc", "def add(a, b):\n    return a - b\n")
        second = engine.submit_candidate("app.calc", "def add(a, b):\n    return a * b\n")
        assert len(engine.request_diff(first, second)) == 1
        assert engine.request_diff(first, first).is_empty
        assert len(engine.request_diff(first, BASELINE)) == 1

    def test_diff_needs_a_candidate(self, settings: Settings) -> None:
        with pytest.raises(ValueError):
            _engine(settings).request_diff(BASELINE, BASELINE)

    def test_new_unit_has_no_baseline(self, settings: Settings) -> None:
        engine = _engine(settings)
        cid = engine.submit_candidate("app.extra", "X = 1\n")
        with pytest.raises(UnknownCandidate):
            engine.diff_against_baseline(cid)

    def test_compile_overlays_baseline(self, settings: Settings) -> None:
        engine = _engine(settings)
        cid = engine.submit_candidate(
            "app.calc",
            "from app.util import twice\n\n"
            "def add(a, b):\n    return twice(a) + b\n",
        )
        result = engine.request_compile(cid)
        assert result.success
        assert set(result.artifacts) == {"app.calc", "app.util"}

    def test_load_candidate(self, settings: Settings) -> None:
        engine = _engine(settings)
        cid = engine.submit_candidate("app.calc", "def add(a, b):\n    return a * b\n")
        with engine.request_load(cid) as handle:
            assert _call_add(handle) == 6

    def test_load_of_broken_candidate_raises(self, settings: Settings) -> None:
        engine = _engine(settings)
        cid = engine.submit_candidate("app.calc", "def add(a, b:\n")
        with pytest.raises(LoadError):
            engine.request_load(cid)


class TestEvaluate:
    async def test_one_failure_does_not_abort_others(
        self, settings: Settings
    ) -> None:
        engine = _engine(settings)
        ids = [
            engine.submit_candidate("app.calc", PY_CALC),
            engine.submit_candidate("app.calc", "def add(a, b):\n    return a - b\n"),
            engine.submit_candidate("app.calc", "def add(a, b:\n    return a\n"),
            engine.submit_candidate("app.calc", "import missing_module_xyz\n"),
            engine.submit_candidate("app.calc", "raise RuntimeError('boom')\n"),
            engine.submit_candidate("app.calc", "def add(a):\n    return a\n"),
        ]

        outcomes = await engine.evaluate(ids, _call_add)

        assert [o.candidate_id for o in outcomes] == ids
        assert [o.status for o in outcomes] == [
            CandidateStatus.COMPLETED,
            CandidateStatus.COMPLETED,
            CandidateStatus.SKIPPED,
            CandidateStatus.COMPILE_FAILED,
            CandidateStatus.LOAD_FAILED,
            CandidateStatus.FAILED,
        ]
        assert [o.value for o in outcomes[:2]] == [5, -1]

    async def test_exit_from_candidate_code_fails_only_that_candidate(
        self, settings: Settings
    ) -> None:
        engine = _engine(settings)
        good = engine.submit_candidate("app.calc", PY_CALC)
        exiting = engine.submit_candidate(
            "app.calc", "import sys\n\ndef add(a, b):\n    sys.exit(3)\n"
        )

        outcomes = await engine.evaluate([good, exiting], _call_add)

        assert [o.status for o in outcomes] == [
            CandidateStatus.COMPLETED,
            CandidateStatus.FAILED,
        ]
        assert outcomes[0].value == 5
        assert outcomes[1].error == "3"
        assert outcomes[1].edit_script is not None

    async def test_exit_from_evaluator_is_recorded(
        self, settings: Settings
    ) -> None:
        def give_up(handle: ExecutionHandle) -> None:
            raise SystemExit("evaluator gave up")

        engine = _engine(settings)
        cid = engine.submit_candidate("app.calc", PY_CALC)
        (outcome,) = await engine.evaluate([cid], give_up)
        assert outcome.status is CandidateStatus.FAILED
        assert outcome.error == "evaluator gave up"

    async def test_outcome_details(self, settings: Settings) -> None:
        engine = _engine(settings)
        same, changed, unparsable, uncompilable = (
            engine.submit_candidate("app.calc", PY_CALC),
            engine.submit_candidate("app.calc", "def add(a, b):\n    return a - b\n"),
            engine.submit_candidate("app.calc", "def add(a, b:\n"),
            engine.submit_candidate("app.calc", "import missing_module_xyz\n"),
        )
        outcomes = {
            o.candidate_id: o
            for o in await engine.evaluate(
                [same, changed, unparsable, uncompilable], _call_add
            )
        }

        assert outcomes[same].edit_script is not None
        assert outcomes[same].edit_script.is_empty
        assert outcomes[changed].edit_count == 1
        assert outcomes[unparsable].edit_script is None
        assert outcomes[unparsable].diagnostics[0].severity == "error"
        assert outcomes[uncompilable].diagnostics
        assert outcomes[uncompilable].error
        assert all(o.duration_ms >= 0 for o in outcomes.values())

    async def test_unknown_candidate_recorded(self, settings: Settings) -> None:
        outcomes = await _engine(settings).evaluate(["nope"], _call_add)
        assert outcomes[0].status is CandidateStatus.FAILED
        assert "nope" in (outcomes[0].error or "")

    async def test_handles_closed_after_evaluation(
        self, settings: Settings
    ) -> None:
        engine = _engine(settings)
        cid = engine.submit_candidate("app.calc", PY_CALC)
        handles: list[ExecutionHandle] = []
        await engine.evaluate([cid], handles.append)
        assert handles[0].closed

    async def test_empty_batch(self, settings: Settings) -> None:
        assert await _engine(settings).evaluate([], _call_add) == []

    async def test_invalid_tree_propagates(self, settings: Settings) -> None:
        """Malformed internal state is a defect, not a candidate failure."""
        engine = _engine(settings)
        cid = engine.submit_candidate("app.calc", PY_CALC)
        with (
            patch("repairkit.engine.diff", side_effect=InvalidTree("corrupt")),
            pytest.raises(InvalidTree),
        ):
            await engine.evaluate([cid], _call_add)

    async def test_outcomes_logged_per_candidate(
        self, settings: Settings, caplog: pytest.LogCaptureFixture
    ) -> None:
        engine = _engine(settings)
        cid = engine.submit_candidate("app.calc", PY_CALC)
        with caplog.at_level(logging.INFO, logger="repairkit.candidates"):
            await engine.evaluate([cid], _call_add)
        records = [r.getMessage() for r in caplog.records if r.name == "repairkit.candidates"]
        assert any('"type": "outcome"' in m and cid in m for m in records)
        assert any('"stage": "compile"' in m for m in records)
