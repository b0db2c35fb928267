"""Tests for manuscript_intel.core: stage guards, match caps, ids and log context."""

from __future__ import annotations

import io
import json
import logging
from unittest.mock import MagicMock

import pytest
import structlog

from manuscript_intel.config import Settings
from manuscript_intel.core.exceptions import AnalysisError, ManuscriptIntelError, StaleResultError
from manuscript_intel.core.ids import content_hash, stable_id
from manuscript_intel.core.logging import (
    PACKAGE_LOGGER,
    add_context_vars,
    get_logger,
    pipeline_context,
    setup_logging,
    stage_var,
)
from manuscript_intel.core.resilience import capped, guarded


class TestGuarded:

    def test_passes_result_through(self):
        func = MagicMock(return_value=[1, 2])
        assert guarded("demo", list)(func)("x", key="y") == [1, 2]
        func.assert_called_once_with("x", key="y")

    def test_failure_returns_fallback(self):
        func = MagicMock(side_effect=AnalysisError("broken"))
        assert guarded("demo", dict)(func)() == {}

    def test_stage_bound_only_while_running(self):
        seen: list[str | None] = []

        def stage():
            seen.append(stage_var.get())
            raise ValueError("boom")

        guarded("structure", lambda: None)(stage)()
        assert seen == ["structure"]
        assert stage_var.get() is None


class TestCapped:

    def test_truncates(self):
        assert list(capped(range(10), 3, "numbers")) == [0, 1, 2]

    def test_short_source_untouched(self):
        assert list(capped(iter("ab"), 5, "letters")) == ["a", "b"]


class TestIds:

    def test_stable_id_shape_and_determinism(self):
        first = stable_id("ent", "marcus", 3)
        assert first == stable_id("ent", "marcus", 3)
        assert first.startswith("ent_")
        assert len(first) == len("ent_") + 12

    def test_parts_are_separated(self):
        assert stable_id("x", "ab", "c") != stable_id("x", "a", "bc")

    def test_content_hash(self):
        assert content_hash("a") != content_hash("b")
        assert len(content_hash("")) == 64


class TestLogContext:

    def test_pipeline_context_enriches_events(self):
        with pipeline_context("ch7", "debounced"):
            event = add_context_vars(None, "info", {"event": "x"})
        assert event["chapter_id"] == "ch7"
        assert event["processing_tier"] == "debounced"
        assert add_context_vars(None, "info", {"event": "y"}) == {"event": "y"}

    def test_explicit_fields_win(self):
        with pipeline_context("ch7", "instant"):
            event = add_context_vars(None, "info", {"event": "x", "chapter_id": "other"})
        assert event["chapter_id"] == "other"


class TestSetupLogging:

    @pytest.fixture(autouse=True)
    def restore_logging(self):
        package_logger = logging.getLogger(PACKAGE_LOGGER)
        saved = (package_logger.handlers[:], package_logger.level, package_logger.propagate)
        yield
        structlog.reset_defaults()
        package_logger.handlers[:], package_logger.level, package_logger.propagate = saved

    def test_json_events_carry_context(self):
        stream = io.StringIO()
        setup_logging(Settings(_env_file=None, log_level="DEBUG"), stream=stream)
        with pipeline_context("ch3", "background"):
            get_logger("manuscript_intel.services.demo").info("demo_event", count=2)

        record = json.loads(stream.getvalue().strip().splitlines()[-1])
        assert record["event"] == "demo_event"
        assert record["count"] == 2
        assert record["level"] == "info"
        assert record["logger"] == "manuscript_intel.services.demo"
        assert record["chapter_id"] == "ch3"
        assert record["processing_tier"] == "background"

    def test_level_filter_leaves_root_alone(self):
        root_handlers = logging.getLogger().handlers[:]
        stream = io.StringIO()
        setup_logging(Settings(_env_file=None, log_level="warning"), stream=stream)
        log = get_logger("manuscript_intel.demo")
        log.info("hidden_event")
        log.warning("shown_event")

        assert "hidden_event" not in stream.getvalue()
        assert "shown_event" in stream.getvalue()
        assert logging.getLogger().handlers == root_handlers

    def test_console_format(self):
        stream = io.StringIO()
        setup_logging(Settings(_env_file=None, log_format="console"), stream=stream)
        get_logger("manuscript_intel.demo").info("console_event")
        assert "console_event" in stream.getvalue()

    def test_stage_failure_logs_exception(self):
        stream = io.StringIO()
        setup_logging(Settings(_env_file=None), stream=stream)
        guarded("style", dict)(MagicMock(side_effect=ValueError("bad input")))()

        record = json.loads(stream.getvalue().strip().splitlines()[-1])
        assert record["event"] == "stage_failed"
        assert record["stage"] == "style"
        assert record["error_type"] == "ValueError"
        assert "ValueError: bad input" in record["exception"]


class TestExceptions:

    def test_context_and_default_detail(self):
        error = StaleResultError(context={"generation": 1})
        assert isinstance(error, ManuscriptIntelError)
        assert str(error) == "Result superseded by a newer edit"
        assert error.context == {"generation": 1}

    def test_custom_detail(self):
        with pytest.raises(ManuscriptIntelError, match="stage x"):
            raise AnalysisError("stage x failed")
