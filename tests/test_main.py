"""Command line: snapshot parsing and exit status."""

from __future__ import annotations

import json
import sys

import pytest
import structlog

import main as cli


def _snapshot(tmp_path, **extra) -> str:
    data = {
        "token": {"address": "0xabc", "symbol": "PEPE", "price": 0.01,
                  "mcap": 100000, "liquidity": 20000, "holders": 5000},
        "candles": [{"time": i * 60, "open": 1, "high": 1.1, "low": 0.9, "close": 1, "volume": 10}
                    for i in range(20)],
    }
    data.update(extra)
    path = tmp_path / "snapshot.json"
    path.write_text(json.dumps(data))
    return str(path)


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch):
    monkeypatch.setattr("council.core.logger.setup_logging", lambda **kwargs: None)
    structlog.configure(logger_factory=structlog.PrintLoggerFactory(sys.stderr))
    yield
    structlog.reset_defaults()


def _run(monkeypatch, tmp_path, *args):
    monkeypatch.setattr(sys, "argv", ["council", "--config", str(tmp_path / "absent.yaml"), *args])
    cli.main()


def test_evaluate_prints_council_verdict(monkeypatch, tmp_path, capsys):
    _run(monkeypatch, tmp_path, "evaluate", _snapshot(tmp_path, proposed_size=5), "--seed", "7")
    verdict = json.loads(capsys.readouterr().out)
    assert set(verdict["decisions"]) >= {"chad", "quantum", "sensei", "sterling", "oracle"}


def test_non_numeric_size_exits_with_status_1(monkeypatch, tmp_path):
    with pytest.raises(SystemExit) as exc:
        _run(monkeypatch, tmp_path, "evaluate", _snapshot(tmp_path, proposed_size="lots"))
    assert exc.value.code == 1


def test_missing_snapshot_exits_with_status_1(monkeypatch, tmp_path):
    with pytest.raises(SystemExit) as exc:
        _run(monkeypatch, tmp_path, "evaluate", str(tmp_path / "nope.json"))
    assert exc.value.code == 1


def test_unknown_agent_exits_with_status_1(monkeypatch, tmp_path):
    with pytest.raises(SystemExit) as exc:
        _run(monkeypatch, tmp_path, "evaluate", _snapshot(tmp_path), "--agent", "nobody")
    assert exc.value.code == 1
