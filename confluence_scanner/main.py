"""Command-line entry point — replay recorded feature snapshots through the scanner.

    python -m confluence_scanner.main replay snapshots.jsonl [--optimized params.yaml] [--json]

Dedup checks are relative to each snapshot's timestamp, so a replay of the
same file always produces the same decisions.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

import pandas as pd

from confluence_scanner.config import ScannerConfig, get_settings
from confluence_scanner.contracts import FeatureSnapshot
from confluence_scanner.engines.context import load_optimized_params
from confluence_scanner.engines.scanner import CompositeScanner, ScanResult

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"


class JsonFormatter(logging.Formatter):
    """One JSON object per log line."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": self.formatTime(record),
            "logger": record.name,
            "level": record.levelname,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload)


def configure_logging(level: str = "INFO", fmt: str = "text") -> None:
    if fmt == "json":
        handler = logging.StreamHandler()
        handler.setFormatter(JsonFormatter())
        logging.basicConfig(level=level.upper(), handlers=[handler], force=True)
    else:
        logging.basicConfig(level=level.upper(), format=LOG_FORMAT, force=True)


def load_snapshots(path: str | Path) -> list[FeatureSnapshot]:
    """Read JSON-lines snapshots; rows are replayed in timestamp order."""
    frame = pd.read_json(path, lines=True, dtype=False, convert_dates=False)
    if frame.empty:
        return []
    records = frame.to_dict(orient="records")
    snapshots = [
        FeatureSnapshot.model_validate({k: v for k, v in rec.items() if not _is_missing(v)})
        for rec in records
    ]
    return sorted(snapshots, key=lambda s: s.timestamp)


def _is_missing(value) -> bool:
    # pandas fills absent columns with NaN
    return isinstance(value, float) and value != value


async def replay(snapshots: list[FeatureSnapshot], scanner: CompositeScanner) -> list[ScanResult]:
    results = []
    for snapshot in snapshots:
        results.append(await scanner.scan_symbol(snapshot))
    return results


def summarize(snapshots: list[FeatureSnapshot], results: list[ScanResult]) -> pd.DataFrame:
    rows = []
    for snapshot, result in zip(snapshots, results):
        signal = result.signal
        rows.append({
            "timestamp": snapshot.timestamp.isoformat(),
            "symbol": snapshot.symbol,
            "accepted": signal is not None,
            "opportunity_type": signal.opportunity_type if signal else None,
            "style": signal.recommended_style.value if signal else None,
            "score": signal.recommended_style_score if signal else None,
            "risk_reward": signal.risk_reward if signal else None,
            "size": signal.size_multiplier if signal else None,
            "reason": result.filter_reason,
        })
    return pd.DataFrame(rows)


def _print_summary(frame: pd.DataFrame) -> None:
    if frame.empty:
        print("No snapshots to replay.")
        return
    accepted = frame[frame["accepted"]]
    print(f"Replayed {len(frame)} snapshots: {len(accepted)} signals, {len(frame) - len(accepted)} filtered")
    if not accepted.empty:
        print()
        print(accepted.drop(columns=["accepted", "reason"]).to_string(index=False))
    filtered = frame[~frame["accepted"]]
    if not filtered.empty:
        print()
        print("Filter reasons:")
        print(filtered["reason"].value_counts().to_string())


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Composite scanner")
    sub = parser.add_subparsers(dest="command", required=True)
    rp = sub.add_parser("replay", help="Replay JSON-lines feature snapshots")
    rp.add_argument("path", type=str, help="Path to a .jsonl file of feature snapshots")
    rp.add_argument("--optimized", type=str, default=None,
                    help="Optimized params file (YAML or JSON) from the offline optimizer")
    rp.add_argument("--json", action="store_true", help="Emit one JSON result per line")
    args = parser.parse_args(argv)

    settings = get_settings()
    configure_logging(settings.log_level, settings.log_format)

    params = load_optimized_params(args.optimized) if args.optimized else None
    scanner = CompositeScanner(
        config=ScannerConfig.from_settings(settings),
        optimized_params=params,
        settings=settings,
    )

    snapshots = load_snapshots(args.path)
    logger.info("Replaying %d snapshots from %s", len(snapshots), args.path)
    results = asyncio.run(replay(snapshots, scanner))

    if args.json:
        for result in results:
            print(json.dumps(result.to_dict(), default=str))
    else:
        _print_summary(summarize(snapshots, results))
    return 0


if __name__ == "__main__":
    sys.exit(main())
