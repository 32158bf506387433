"""Structured JSON logger for candidate pipeline tracking."""

import json
import logging
from datetime import UTC, datetime
from pathlib import Path

from repairkit.constants import ERROR_TRUNCATION_CHARS
from repairkit.logging_config import LOG_DATEFMT, LOG_FORMAT

__all__ = ["CandidateLogger", "LOG_FORMAT", "LOG_DATEFMT"]


class CandidateLogger:
    """Structured JSON logger with candidate_id correlation.

    Records always go to the ``repairkit.candidates`` logger. A file
    handler is attached only when ``log_dir`` is given.
    """

    def __init__(self, log_dir: Path | None = None, level: str = "INFO") -> None:
        self._logger = logging.getLogger("repairkit.candidates")
        # The logger is shared; each instance filters at its own level
        self._level = getattr(logging, level.upper())
        if self._logger.level == logging.NOTSET:
            self._logger.setLevel(logging.DEBUG)

        if log_dir is not None:
            log_dir.mkdir(parents=True, exist_ok=True)
            log_file = (log_dir / "candidates.log").resolve()
            attached = any(
                isinstance(h, logging.FileHandler)
                and Path(h.baseFilename) == log_file
                for h in self._logger.handlers
            )
            if not attached:
                handler = logging.FileHandler(log_file)
                handler.setFormatter(logging.Formatter("%(message)s"))
                self._logger.addHandler(handler)

    def log_stage(
        self,
        candidate_id: str,
        stage_name: str,
        status: str,
        duration_ms: float,
        error: str | None = None,
    ) -> None:
        self._emit(logging.INFO, {
            "type": "stage",
            "timestamp": datetime.now(UTC).isoformat(),
            "candidate_id": candidate_id,
            "stage": stage_name,
            "status": status,
            "duration_ms": duration_ms,
            "error": error[:ERROR_TRUNCATION_CHARS] if error else None,
        })

    def log_outcome(
        self,
        candidate_id: str,
        status: str,
        error_count: int,
        edit_count: int | None,
        duration_ms: float,
    ) -> None:
        self._emit(logging.INFO, {
            "type": "outcome",
            "timestamp": datetime.now(UTC).isoformat(),
            "candidate_id": candidate_id,
            "status": status,
            "error_count": error_count,
            "edit_count": edit_count,
            "duration_ms": duration_ms,
        })

    def log_error(
        self,
        candidate_id: str,
        component: str,
        error: str,
    ) -> None:
        self._emit(logging.ERROR, {
            "type": "error",
            "timestamp": datetime.now(UTC).isoformat(),
            "candidate_id": candidate_id,
            "component": component,
            "error": error[:ERROR_TRUNCATION_CHARS],
        })

    def _emit(self, level: int, record: dict[str, object]) -> None:
        if level >= self._level:
            self._logger.log(level, json.dumps(record))
