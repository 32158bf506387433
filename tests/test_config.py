"""Tests for Settings parsing and validators."""

from __future__ import annotations

import logging

import pytest

from repairkit.compiler import Classpath
from repairkit.config import Settings
from repairkit.diff import DiffConfig


def _settings(**kwargs: object) -> Settings:
    return Settings(_env_file=None, **kwargs)  # type: ignore[arg-type]


class TestClasspathParsing:
    def test_comma_separated_string_parsed_to_list(self) -> None:
        s = _settings(classpath="/opt/a,/opt/b")
        assert s.classpath == ["/opt/a", "/opt/b"]

    def test_comma_separated_with_spaces(self) -> None:
        s = _settings(classpath=" /opt/a , /opt/b ,")
        assert s.classpath == ["/opt/a", "/opt/b"]

    def test_json_list_passthrough(self) -> None:
        s = _settings(classpath=["/opt/a"])
        assert s.classpath == ["/opt/a"]

    def test_duplicates_dropped_with_warning(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level(logging.WARNING, logger="repairkit.config"):
            s = _settings(classpath="/opt/a,/opt/a,/opt/b")
        assert "Duplicate classpath entry" in caplog.text
        assert s.classpath == ["/opt/a", "/opt/b"]

    def test_from_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("REPAIRKIT_CLASSPATH", "/opt/x,/opt/y")
        monkeypatch.setenv("REPAIRKIT_MAX_CONCURRENCY", "8")
        s = _settings()
        assert s.classpath == ["/opt/x", "/opt/y"]
        assert s.max_concurrency == 8


class TestValidation:
    @pytest.mark.parametrize("field", ["diff_sim_threshold", "diff_child_threshold"])
    @pytest.mark.parametrize("value", [-0.1, 1.1])
    def test_threshold_out_of_range(self, field: str, value: float) -> None:
        with pytest.raises(ValueError, match="within"):
            _settings(**{field: value})

    @pytest.mark.parametrize("field", ["diff_min_height", "max_concurrency"])
    def test_must_be_positive(self, field: str) -> None:
        with pytest.raises(ValueError, match="at least 1"):
            _settings(**{field: 0})

    def test_optimize_level(self) -> None:
        assert _settings(optimize=2).optimize == 2
        with pytest.raises(ValueError, match="optimize"):
            _settings(optimize=3)


class TestDerivedObjects:
    def test_diff_config(self) -> None:
        s = _settings(diff_min_height=3, diff_sim_threshold=0.7)
        assert s.diff_config == DiffConfig(
            min_height=3, sim_threshold=0.7, child_threshold=0.5
        )

    def test_dependency_classpath(self) -> None:
        s = _settings(classpath="/opt/a", inherit_system_path=False)
        assert s.dependency_classpath == Classpath(
            paths=("/opt/a",), inherit_system=False
        )

    def test_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("REPAIRKIT_LOG_LEVEL", raising=False)
        s = _settings()
        assert s.log_level == "INFO"
        assert s.diff_config == DiffConfig()
        assert s.dependency_classpath.inherit_system
