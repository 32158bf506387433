"""Environment-based configuration."""

from __future__ import annotations

import logging
from typing import Annotated, Any

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode

from repairkit.compiler.classpath import Classpath
from repairkit.constants import (
    DEFAULT_CHILD_THRESHOLD,
    DEFAULT_MAX_CONCURRENCY,
    DEFAULT_MIN_HEIGHT,
    DEFAULT_SIM_THRESHOLD,
)
from repairkit.diff.matcher import DiffConfig

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Reads from .env file and REPAIRKIT_* environment variables."""

    # Logging
    log_level: str = "INFO"
    log_dir: str = ""  # empty = candidate records go to the logger only

    # Compilation
    classpath: Annotated[list[str], NoDecode] = []
    inherit_system_path: bool = True
    optimize: int = -1

    # Diff engine
    diff_min_height: int = DEFAULT_MIN_HEIGHT
    diff_sim_threshold: float = DEFAULT_SIM_THRESHOLD
    diff_child_threshold: float = DEFAULT_CHILD_THRESHOLD

    # Candidate evaluation
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY

    @field_validator("classpath", mode="before")
    @classmethod
    def _parse_classpath(cls, v: Any) -> Any:
        """Accept comma-separated string or JSON array."""
        if isinstance(v, str):
            return [s.strip() for s in v.split(",") if s.strip()]
        return v

    @field_validator("classpath")
    @classmethod
    def _dedupe_classpath(cls, v: list[str]) -> list[str]:
        seen: set[str] = set()
        unique: list[str] = []
        for entry in v:
            if entry in seen:
                logger.warning("Duplicate classpath entry: %s", entry)
                continue
            seen.add(entry)
            unique.append(entry)
        return unique

    @field_validator("diff_sim_threshold", "diff_child_threshold")
    @classmethod
    def _validate_threshold(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("similarity thresholds must be within [0, 1]")
        return v

    @field_validator("diff_min_height", "max_concurrency")
    @classmethod
    def _validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    @field_validator("optimize")
    @classmethod
    def _validate_optimize(cls, v: int) -> int:
        if v not in (-1, 0, 1, 2):
            raise ValueError("optimize must be one of -1, 0, 1, 2")
        return v

    @property
    def diff_config(self) -> DiffConfig:
        return DiffConfig(
            min_height=self.diff_min_height,
            sim_threshold=self.diff_sim_threshold,
            child_threshold=self.diff_child_threshold,
        )

    @property
    def dependency_classpath(self) -> Classpath:
        """Read-only dependency context shared by every compilation."""
        return Classpath(
            paths=tuple(self.classpath),
            inherit_system=self.inherit_system_path,
        )

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_prefix": "REPAIRKIT_",
        "extra": "ignore",
    }
