"""Tests for the replay command line."""

from __future__ import annotations

import json
import logging
from datetime import timedelta

import pytest

from confluence_scanner.config import ScannerConfig
from confluence_scanner.engines.scanner import CompositeScanner
from confluence_scanner.main import JsonFormatter, load_snapshots, main, replay, summarize


@pytest.fixture
def jsonl_path(tmp_path, make_snapshot):
    later = make_snapshot(timestamp=make_snapshot().timestamp + timedelta(minutes=20), symbol="BETA")
    earlier = make_snapshot(flow=None)
    path = tmp_path / "snapshots.jsonl"
    lines = [json.dumps(s.model_dump(mode="json", exclude_none=True)) for s in (later, earlier)]
    path.write_text("\n".join(lines) + "\n")
    return path


def test_load_snapshots_sorted(jsonl_path):
    snapshots = load_snapshots(jsonl_path)
    assert [s.symbol for s in snapshots] == ["ACME", "BETA"]
    assert snapshots[0].flow is None
    assert snapshots[1].flow is not None


@pytest.mark.asyncio
async def test_replay_and_summarize(jsonl_path, stub_registry):
    snapshots = load_snapshots(jsonl_path)
    scanner = CompositeScanner(config=ScannerConfig(), registry=stub_registry)
    results = await replay(snapshots, scanner)
    frame = summarize(snapshots, results)
    assert list(frame.columns) == [
        "timestamp", "symbol", "accepted", "opportunity_type", "style", "score", "risk_reward", "size", "reason",
    ]
    assert frame["accepted"].tolist() == [True, True]
    assert frame["style"].tolist() == ["scalp", "scalp"]


def test_main_replay_prints_summary(jsonl_path, capsys):
    assert main(["replay", str(jsonl_path)]) == 0
    out = capsys.readouterr().out
    assert out.startswith("Replayed 2 snapshots")


def test_main_json_output(jsonl_path, capsys):
    assert main(["replay", str(jsonl_path), "--json"]) == 0
    lines = [line for line in capsys.readouterr().out.splitlines() if line.startswith("{")]
    assert len(lines) == 2
    assert {"signal", "filtered", "filter_reason"} <= set(json.loads(lines[0]))


def test_json_formatter():
    record = logging.LogRecord("confluence_scanner.x", logging.INFO, __file__, 1, "hello %s", ("there",), None)
    payload = json.loads(JsonFormatter().format(record))
    assert payload["message"] == "hello there"
    assert payload["level"] == "INFO"
