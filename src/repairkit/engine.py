"""Candidate pipeline facade.

``RepairEngine`` is the surface a repair strategy talks to: it holds the
baseline program, accepts candidate units, and runs each candidate
through parse, compile, load, evaluate and diff. Candidates are
independent; one candidate's failure is recorded on its own
``CandidateOutcome`` and never aborts the others.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Any, TypeVar

from repairkit.compiler import CompilationResult, CompilationSession, Diagnostic
from repairkit.config import Settings
from repairkit.constants import (
    BASELINE,
    DEFAULT_SOURCE_EXTENSION,
    CandidateStatus,
    Severity,
)
from repairkit.diff import EditScript, diff
from repairkit.errors import (
    CompilationError,
    ErrorClass,
    GeneratorNotFound,
    ParseError,
    UnknownCandidate,
    classify_error,
)
from repairkit.loader import ExecutionHandle, load
from repairkit.logger import CandidateLogger
from repairkit.sources import VirtualSourceStore, VirtualSourceUnit
from repairkit.trees import GeneratorRegistry, SyntaxTree, default_registry

T = TypeVar("T")

logger = logging.getLogger(__name__)

__all__ = ["CandidateOutcome", "Evaluator", "RepairEngine"]

Evaluator = Callable[[ExecutionHandle], Any]


@dataclass
class CandidateOutcome:
    """Result of one candidate's pipeline."""

    candidate_id: str
    status: CandidateStatus
    diagnostics: tuple[Diagnostic, ...] = ()
    edit_script: EditScript | None = None
    value: Any = None
    error: str | None = None
    duration_ms: float = 0.0

    @property
    def edit_count(self) -> int | None:
        return None if self.edit_script is None else len(self.edit_script)


class RepairEngine:
    """Baseline program plus a table of candidate units.

    The baseline store and the classpath are read-only after
    construction; only the candidate table is shared mutable state and
    it is guarded by a lock.
    """

    def __init__(
        self,
        baseline_units: Iterable[VirtualSourceUnit] = (),
        *,
        settings: Settings | None = None,
        registry: GeneratorRegistry | None = None,
        candidate_logger: CandidateLogger | None = None,
    ) -> None:
        self.settings = settings or Settings()
        self.registry = registry or default_registry()
        if not self.registry.sealed:
            self.registry.seal()
        self.baseline = VirtualSourceStore(baseline_units)
        self.classpath = self.settings.dependency_classpath
        self.diff_config = self.settings.diff_config
        self._session = CompilationSession(
            self.classpath, optimize=self.settings.optimize
        )
        self._candidates: dict[str, VirtualSourceUnit] = {}
        self._baseline_trees: dict[str, SyntaxTree] = {}
        self._lock = threading.Lock()
        self._logger = candidate_logger or CandidateLogger(
            Path(self.settings.log_dir) if self.settings.log_dir else None,
            level=self.settings.log_level,
        )

    # ── Candidate table ──────────────────────────────────

    def submit_candidate(
        self,
        qualified_name: str,
        source_text: str | bytes,
        extension: str = DEFAULT_SOURCE_EXTENSION,
    ) -> str:
        """Register a new candidate version of one unit; returns its id."""
        unit = VirtualSourceUnit(qualified_name, source_text, extension=extension)
        candidate_id = uuid.uuid4().hex[:12]
        with self._lock:
            self._candidates[candidate_id] = unit
        logger.debug(
            "event=candidate_submitted candidate=%s unit=%s",
            candidate_id,
            qualified_name,
        )
        return candidate_id

    def candidate(self, candidate_id: str) -> VirtualSourceUnit:
        with self._lock:
            try:
                return self._candidates[candidate_id]
            except KeyError:
                raise UnknownCandidate(candidate_id) from None

    def discard(self, candidate_id: str) -> None:
        """Forget a candidate. Discarding an unknown id is a no-op."""
        with self._lock:
            removed = self._candidates.pop(candidate_id, None)
        if removed is not None:
            logger.debug("event=candidate_discarded candidate=%s", candidate_id)

    @property
    def candidate_ids(self) -> list[str]:
        with self._lock:
            return list(self._candidates)

    # ── Single-step operations ───────────────────────────

    def parse_candidate(self, candidate_id: str) -> SyntaxTree:
        return self.registry.parse(self.candidate(candidate_id))

    def request_diff(self, candidate_a: str, candidate_b: str) -> EditScript:
        """Edit script turning version ``candidate_a`` into ``candidate_b``.

        Either side may be ``BASELINE``, meaning the baseline version of
        the unit the other side modifies.
        """
        if candidate_a == BASELINE and candidate_b == BASELINE:
            raise ValueError("at least one side of a diff must be a candidate")
        if candidate_a == BASELINE:
            unit_b = self.candidate(candidate_b)
            return diff(
                self._baseline_tree(unit_b.qualified_name),
                self.registry.parse(unit_b),
                self.diff_config,
            )
        unit_a = self.candidate(candidate_a)
        tree_a = self.registry.parse(unit_a)
        if candidate_b == BASELINE:
            tree_b = self._baseline_tree(unit_a.qualified_name)
        else:
            tree_b = self.registry.parse(self.candidate(candidate_b))
        return diff(tree_a, tree_b, self.diff_config)

    def diff_against_baseline(self, candidate_id: str) -> EditScript:
        return self.request_diff(BASELINE, candidate_id)

    def request_compile(self, candidate_id: str) -> CompilationResult:
        """Compile the baseline with the candidate's unit overlaid."""
        return self._compile(self.candidate(candidate_id))

    def request_load(self, candidate_id: str) -> ExecutionHandle:
        return load(self.request_compile(candidate_id), self.classpath)

    # ── Batch evaluation ─────────────────────────────────

    async def evaluate(
        self, candidate_ids: Iterable[str], evaluator: Evaluator
    ) -> list[CandidateOutcome]:
        """Run every candidate's pipeline concurrently.

        ``evaluator`` is called with the candidate's open
        :class:`ExecutionHandle` on a worker thread; its return value is
        recorded on the outcome. Outcomes come back in input order.
        Only malformed internal state (``InvalidTree``) propagates.
        """
        ids = list(candidate_ids)
        if not ids:
            return []
        semaphore = asyncio.Semaphore(self.settings.max_concurrency)

        async def _run(candidate_id: str) -> CandidateOutcome:
            async with semaphore:
                return await asyncio.to_thread(
                    self._run_pipeline, candidate_id, evaluator
                )

        outcomes = await asyncio.gather(*(_run(cid) for cid in ids))
        counts: dict[str, int] = {}
        for outcome in outcomes:
            counts[str(outcome.status)] = counts.get(str(outcome.status), 0) + 1
        logger.info(
            "event=evaluation_complete candidates=%d statuses=%s",
            len(ids),
            counts,
        )
        return list(outcomes)

    def _run_pipeline(
        self, candidate_id: str, evaluator: Evaluator
    ) -> CandidateOutcome:
        start = time.monotonic()
        outcome = CandidateOutcome(
            candidate_id=candidate_id, status=CandidateStatus.FAILED
        )
        unit: VirtualSourceUnit | None = None
        tree: SyntaxTree | None = None
        stage = "lookup"

        def run_stage(name: str, fn: Callable[..., T], *args: Any) -> T:
            nonlocal stage
            stage = name
            stage_start = time.monotonic()
            try:
                value = fn(*args)
            except (Exception, SystemExit) as exc:
                self._logger.log_stage(
                    candidate_id, name, "failed",
                    (time.monotonic() - stage_start) * 1000, str(exc),
                )
                raise
            self._logger.log_stage(
                candidate_id, name, "completed",
                (time.monotonic() - stage_start) * 1000,
            )
            return value

        try:
            unit = self.candidate(candidate_id)
            tree = run_stage("parse", self.registry.parse, unit)
            result = run_stage("compile", self._compile, unit)
            outcome.diagnostics = result.diagnostics
            result.raise_for_errors()
            handle = run_stage("load", load, result, self.classpath)
            with handle:
                outcome.value = run_stage("evaluate", evaluator, handle)
            outcome.status = CandidateStatus.COMPLETED
        except (Exception, SystemExit) as exc:
            # SystemExit from candidate code ends this candidate only
            if classify_error(exc) is ErrorClass.DEFECT:
                raise
            outcome.status = _failure_status(stage, exc)
            outcome.error = str(exc) or repr(exc)
            if isinstance(exc, ParseError):
                outcome.diagnostics = (exc.to_diagnostic(),)
            self._logger.log_error(candidate_id, stage, str(exc))

        if tree is not None and unit is not None:
            outcome.edit_script = self._diff_to_baseline(candidate_id, unit, tree)

        outcome.duration_ms = (time.monotonic() - start) * 1000
        self._logger.log_outcome(
            candidate_id,
            outcome.status,
            sum(1 for d in outcome.diagnostics if d.severity is Severity.ERROR),
            outcome.edit_count,
            outcome.duration_ms,
        )
        logger.info(
            "event=candidate_complete candidate=%s status=%s duration_ms=%.1f",
            candidate_id,
            outcome.status,
            outcome.duration_ms,
        )
        return outcome

    # ── Internals ────────────────────────────────────────

    def _compile(self, unit: VirtualSourceUnit) -> CompilationResult:
        return self._session.compile(self.baseline.overlay(unit).units())

    def _baseline_tree(self, qualified_name: str) -> SyntaxTree:
        with self._lock:
            tree = self._baseline_trees.get(qualified_name)
        if tree is not None:
            return tree
        if qualified_name not in self.baseline:
            raise UnknownCandidate(f"{BASELINE}:{qualified_name}")
        tree = self.registry.parse(self.baseline.get(qualified_name))
        with self._lock:
            return self._baseline_trees.setdefault(qualified_name, tree)

    def _diff_to_baseline(
        self, candidate_id: str, unit: VirtualSourceUnit, tree: SyntaxTree
    ) -> EditScript | None:
        if unit.qualified_name not in self.baseline:
            return None
        try:
            baseline = self._baseline_tree(unit.qualified_name)
        except (ParseError, GeneratorNotFound) as exc:
            logger.warning(
                "event=baseline_unparsable unit=%s error=%s",
                unit.qualified_name,
                exc,
            )
            return None
        start = time.monotonic()
        script = diff(baseline, tree, self.diff_config)
        self._logger.log_stage(
            candidate_id, "diff", "completed", (time.monotonic() - start) * 1000
        )
        return script


def _failure_status(stage: str, error: BaseException) -> CandidateStatus:
    match classify_error(error):
        case ErrorClass.SKIP:
            return CandidateStatus.SKIPPED
        case ErrorClass.CANDIDATE_FAILURE if stage == "compile" or isinstance(
            error, CompilationError
        ):
            return CandidateStatus.COMPILE_FAILED
        case ErrorClass.CANDIDATE_FAILURE if stage == "load":
            return CandidateStatus.LOAD_FAILED
        case _:
            return CandidateStatus.FAILED
