"""Tests for stage timing."""

import time

import pytest

from signseq.profiler import PipelineProfiler


class TestPipelineProfiler:
    def test_records_stage(self):
        profiler = PipelineProfiler()
        with profiler.stage("classification"):
            time.sleep(0.002)
        assert profiler.last_ms("classification") >= 1.0
        stats = profiler.get_stage_stats("classification")
        assert stats.call_count == 1
        assert stats.max_ms == stats.last_ms

    def test_records_on_exception(self):
        profiler = PipelineProfiler()
        with pytest.raises(RuntimeError):
            with profiler.stage("detection"):
                raise RuntimeError("boom")
        assert profiler.get_stage_stats("detection").call_count == 1

    def test_unused_stage(self):
        profiler = PipelineProfiler()
        assert profiler.last_ms("detection") is None
        assert profiler.get_stage_stats("detection") is None
        assert profiler.summary() == {}

    def test_custom_stage(self):
        profiler = PipelineProfiler()
        with profiler.stage("render"):
            pass
        assert "render" in profiler.summary()

    def test_rolling_window(self):
        profiler = PipelineProfiler(window_size=3)
        for _ in range(5):
            with profiler.stage("detection"):
                pass
        summary = profiler.summary()["detection"]
        assert summary["calls"] == 5
        assert len(profiler._timings["detection"]) == 3

    def test_disabled(self):
        profiler = PipelineProfiler(enabled=False)
        with profiler.stage("detection"):
            pass
        assert profiler.last_ms("detection") is None

    def test_reset(self):
        profiler = PipelineProfiler()
        with profiler.stage("detection"):
            pass
        profiler.reset()
        assert profiler.summary() == {}
