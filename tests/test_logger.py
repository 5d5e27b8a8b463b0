"""Log processors and the operation timer."""

from __future__ import annotations

import pytest

from council.core.logger import PerformanceTimer, _shorten_ids, log_performance


class _RecordingLogger:
    def __init__(self):
        self.events = []

    def __getattr__(self, level):
        def _log(event, **kw):
            self.events.append((level, event, kw))
        return _log


def test_long_identifiers_are_shortened():
    address = "0x" + "ab" * 20
    event = _shorten_ids(None, None, {"event": "Closing position", "token": address, "tx": "tx-p1"})
    assert event["token"] == "0xabab..abab"
    assert event["tx"] == "tx-p1"


def test_non_string_values_left_alone():
    event = _shorten_ids(None, None, {"token": None, "pnl": 1.5})
    assert event == {"token": None, "pnl": 1.5}


class TestPerformanceTimer:

    def test_fast_block_logs_debug(self):
        log = _RecordingLogger()
        with log_performance(log, "technical_analysis", candles=40) as timer:
            pass
        level, event, fields = log.events[0]
        assert level == "debug"
        assert event == "technical_analysis done"
        assert fields["candles"] == 40
        assert timer.elapsed_ms >= 0

    def test_slow_block_warns(self):
        log = _RecordingLogger()
        with PerformanceTimer(log, "sweep", warn_ms=-1.0):
            pass
        assert log.events[0][0] == "warning"

    def test_failure_logged_and_reraised(self):
        log = _RecordingLogger()
        with pytest.raises(RuntimeError):
            with PerformanceTimer(log, "sweep"):
                raise RuntimeError("boom")
        level, event, fields = log.events[0]
        assert level == "error"
        assert event == "sweep failed"
        assert "boom" in fields["error"]
