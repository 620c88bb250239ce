"""Unit tests for wa_trace.py: per-request stage timing and call accounting."""

import threading

import pytest

from wa_trace import RequestTrace, clear_trace, get_trace, set_trace, timed_stage


@pytest.fixture()
def trace():
    t = RequestTrace(trace_id="t-1", endpoint="search_places")
    set_trace(t)
    yield t
    clear_trace()


class TestRequestTrace:
    def test_empty_trace(self):
        t = RequestTrace(trace_id="x")
        assert t.outcome == "empty"
        assert t.calls_by_service() == {"google_maps": 0, "gemini": 0}

    def test_calls_charged_to_running_stage(self):
        t = RequestTrace(trace_id="x")
        with t.stage("enrich"):
            t.record_call("google_maps", "distance_matrix", 12, 200, "OK")
        t.record_call("gemini", "detect_hazards", 900, 200)

        assert t.calls[0].stage == "enrich"
        assert t.calls[1].stage == ""
        assert t.stages[0].calls == 1

    def test_nested_stage_restores_outer(self):
        t = RequestTrace(trace_id="x")
        with t.stage("search"):
            with t.stage("enrich"):
                pass
            assert t.active_stage == "search"
        assert t.active_stage == ""

    def test_failed_stage_recorded_and_reraised(self):
        t = RequestTrace(trace_id="x")
        with pytest.raises(ValueError):
            with t.stage("parse"):
                raise ValueError("not json")
        assert t.stages[0].error == "ValueError: not json"
        assert t.outcome == "error"

    def test_failed_calls_counted(self):
        t = RequestTrace(trace_id="x")
        t.record_call("google_maps", "search_text", 30, 403)
        t.record_call("gemini", "object_reader", 10, 0)
        t.record_call("google_maps", "directions", 20, 200, "ZERO_RESULTS")
        s = t.summary_dict()
        assert s["failed_calls"] == 2
        assert s["calls"] == {"google_maps": 2, "gemini": 1}

    def test_summary_line(self, caplog):
        t = RequestTrace(trace_id="abc", endpoint="search_places")
        with t.stage("search"):
            t.record_call("google_maps", "search_text", 30, 200)
        with caplog.at_level("INFO", logger="wa_trace"):
            t.log_summary()
        line = [r.getMessage() for r in caplog.records if "[trace-summary]" in r.getMessage()][0]
        assert "trace=abc endpoint=search_places outcome=success" in line
        assert "search=" in line and "ms/1" in line
        assert line.endswith("google_maps=1 gemini=0")


class TestTimedStage:
    def test_returns_result(self, trace):
        assert timed_stage("parse", lambda x: x * 2, 21) == 42
        assert [s.name for s in trace.stages] == ["parse"]
        assert trace.stages[0].ok

    def test_error_propagates(self, trace):
        def boom():
            raise RuntimeError("frame rejected")

        with pytest.raises(RuntimeError):
            timed_stage("validate", boom)
        assert trace.stages[0].error.startswith("RuntimeError")
        assert trace.active_stage == ""

    def test_no_trace_just_calls(self):
        clear_trace()
        assert timed_stage("model", lambda: "ok") == "ok"


class TestThreadLocal:
    def test_other_threads_see_no_trace(self, trace):
        seen = []
        worker = threading.Thread(target=lambda: seen.append(get_trace()))
        worker.start()
        worker.join()
        assert seen == [None]
        assert get_trace() is trace

    def test_clear(self, trace):
        clear_trace()
        assert get_trace() is None
