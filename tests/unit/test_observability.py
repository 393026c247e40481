"""Tests for telemetry, logging helpers and environment parsing."""

from __future__ import annotations

import logging
import threading

import pytest

from storyq.infrastructure.env import env_flag, env_float, env_int
from storyq.observability.logging import get_logger, pipeline_logger
from storyq.observability.telemetry import (
    counter,
    get_counter,
    get_latency_stats,
    reset_telemetry,
    time_block,
)


class TestTelemetry:
    def test_counter_accumulates(self):
        assert counter("widgets") == 1
        assert counter("widgets", 4) == 5
        assert get_counter("widgets") == 5
        assert get_counter("unknown") == 0

    def test_counter_is_thread_safe(self):
        def bump():
            for _ in range(500):
                counter("threads")

        threads = [threading.Thread(target=bump) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert get_counter("threads") == 2000

    def test_time_block_records_latency(self):
        for _ in range(3):
            with time_block("stage.work"):
                pass

        stats = get_latency_stats("stage.work")
        assert stats["count"] == 3
        assert 0.0 <= stats["min"] <= stats["avg"] <= stats["max"]

    def test_time_block_records_on_error(self):
        with pytest.raises(RuntimeError):
            with time_block("stage.crash"):
                raise RuntimeError("boom")
        assert get_latency_stats("stage.crash")["count"] == 1

    def test_unseen_metric_is_zero(self):
        assert get_latency_stats("never")["count"] == 0

    def test_reset(self):
        counter("x")
        with time_block("y"):
            pass
        reset_telemetry()
        assert get_counter("x") == 0
        assert get_latency_stats("y")["count"] == 0


class TestLogging:
    def test_get_logger_returns_named_logger(self):
        assert get_logger("storyq.pipeline.sample").name == "storyq.pipeline.sample"

    def test_pipeline_logger_prefixes_cluster_and_stage(self, caplog):
        caplog.set_level(logging.INFO)
        log = pipeline_logger("storyq.pipeline.sample", "cluster-9")

        log.info("starting")
        log.at_stage("hydration").info("Hydrated %d activities", 3)

        messages = [r.getMessage() for r in caplog.records if r.name == "storyq.pipeline.sample"]
        assert messages == [
            "[cluster=cluster-9 stage=-] starting",
            "[cluster=cluster-9 stage=hydration] Hydrated 3 activities",
        ]


class TestEnvHelpers:
    @pytest.mark.parametrize("raw,expected", [("true", True), ("1", True), ("YES", True), ("off", False)])
    def test_env_flag(self, monkeypatch, raw, expected):
        monkeypatch.setenv("STORYQ_TEST_FLAG", raw)
        assert env_flag("STORYQ_TEST_FLAG") is expected

    def test_env_flag_default(self, monkeypatch):
        monkeypatch.delenv("STORYQ_TEST_FLAG", raising=False)
        assert env_flag("STORYQ_TEST_FLAG", default=True) is True

    def test_env_int_and_float(self, monkeypatch):
        monkeypatch.setenv("STORYQ_TEST_INT", "7")
        monkeypatch.setenv("STORYQ_TEST_FLOAT", "0.25")
        monkeypatch.setenv("STORYQ_TEST_BLANK", " ")

        assert env_int("STORYQ_TEST_INT", 1) == 7
        assert env_float("STORYQ_TEST_FLOAT", 1.0) == 0.25
        assert env_int("STORYQ_TEST_BLANK", 3) == 3

    def test_invalid_number_names_the_variable(self, monkeypatch):
        monkeypatch.setenv("STORYQ_TEST_INT", "many")
        with pytest.raises(ValueError, match="STORYQ_TEST_INT"):
            env_int("STORYQ_TEST_INT", 1)
