"""
Purpose: Replay a CSV of recorded signal events through the estimation service.
What it does:
- Loads events (order_id, restaurant_id, kind, timestamp, source, stage,
  distance_m, rider_id) with pandas and sorts them by timestamp.
- Submits them in order, collecting per-event rejections instead of stopping.
- Writes one row per order (corrected ready time, bias flag, correction delta)
  and prints a summary: bias rate, p90 correction delta, rush index per restaurant.

Usage:
    python scripts/replay_signals.py events.csv --config kpt.json --output estimates.csv
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

import numpy as np
import pandas as pd

# allow `python scripts/replay_signals.py` from the repo root
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.errors import KitchenSignalError, NotFoundError  # noqa: E402
from estimation import EstimationService, ServiceConfig, default_config, load_config  # noqa: E402
from signals.models import SignalEvent, SignalKind  # noqa: E402

logger = logging.getLogger("replay_signals")

REQUIRED_COLUMNS = ["order_id", "restaurant_id", "kind", "timestamp"]
PAYLOAD_COLUMNS = ["source", "stage", "distance_m", "rider_id"]


@dataclass
class ReplayReport:
    estimates: pd.DataFrame
    rejections: List[dict] = field(default_factory=list)
    rush: Dict[str, dict] = field(default_factory=dict)


def load_signal_events(filepath: str) -> List[SignalEvent]:
    """
    Read the events CSV into SignalEvents, oldest first (stable for equal timestamps).
    """
    df = pd.read_csv(filepath, dtype={"order_id": str, "restaurant_id": str})
    missing = [column for column in REQUIRED_COLUMNS if column not in df.columns]
    if missing:
        raise ValueError(f"{filepath} is missing columns: {', '.join(missing)}")

    df["timestamp"] = pd.to_datetime(df["timestamp"], utc=True)
    df = df.sort_values("timestamp", kind="stable")

    events = []
    for row in df.itertuples(index=False):
        payload = {}
        for column in PAYLOAD_COLUMNS:
            value = getattr(row, column, None)
            if value is not None and pd.notna(value):
                payload[column] = value
        events.append(
            SignalEvent(
                order_id=row.order_id,
                restaurant_id=row.restaurant_id,
                kind=SignalKind(row.kind),
                timestamp=row.timestamp.to_pydatetime(),
                payload=payload,
            )
        )
    return events


def replay(events: List[SignalEvent], service: EstimationService, *, sweep_at: Optional[datetime] = None) -> ReplayReport:
    marks: Dict[str, datetime] = {}
    rejections: List[dict] = []
    restaurants: Dict[str, None] = {}

    for event in events:
        restaurants.setdefault(event.restaurant_id)
        try:
            service.submit(event)
        except KitchenSignalError as exc:
            rejections.append({
                "order_id": event.order_id,
                "kind": event.kind.value,
                "timestamp": event.timestamp.isoformat(),
                "error": type(exc).__name__,
                "detail": str(exc),
            })
            continue
        if event.kind is SignalKind.MANUAL_READY_MARKED:
            marks[event.order_id] = event.timestamp

    if sweep_at is not None:
        service.sweep(now=sweep_at)

    rows = []
    seen = []
    for event in events:
        if event.kind is SignalKind.ORDER_PLACED and event.order_id not in seen:
            seen.append(event.order_id)
    for order_id in seen:
        try:
            estimate = service.get_order_estimate(order_id)
        except NotFoundError:
            logger.info(f"Order {order_id} closed before the retention cutoff; not reported")
            continue
        manual = marks.get(order_id)
        delta = None
        if manual is not None and estimate.corrected_ready_at is not None:
            delta = (estimate.corrected_ready_at - manual).total_seconds() / 60.0
        rows.append({
            "order_id": order_id,
            "restaurant_id": estimate.restaurant_id,
            "status": estimate.status.value,
            "manual_ready_at": manual.isoformat() if manual else None,
            "corrected_ready_at": estimate.corrected_ready_at.isoformat() if estimate.corrected_ready_at else None,
            "bias_detected": estimate.bias_detected,
            "correction_min": delta,
        })

    rush = {rid: service.get_rush_index(rid).to_dict() for rid in restaurants}
    return ReplayReport(estimates=pd.DataFrame(rows), rejections=rejections, rush=rush)


def summarize(report: ReplayReport) -> dict:
    df = report.estimates
    resolved = df[df["corrected_ready_at"].notna()] if not df.empty else df
    deltas = resolved["correction_min"].dropna().to_numpy(dtype=float) if not resolved.empty else np.array([])
    return {
        "orders": int(len(df)),
        "bias_rate_pct": float(round(resolved["bias_detected"].mean() * 100, 1)) if not resolved.empty else 0.0,
        "correction_p90_min": float(np.round(np.percentile(deltas, 90), 2)) if deltas.size else 0.0,
        "rejections": int(len(report.rejections)),
    }


def build_config(path: Optional[str]) -> ServiceConfig:
    return load_config(path) if path else default_config()


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Replay recorded kitchen signals through the estimator.")
    parser.add_argument("events", help="CSV of signal events")
    parser.add_argument("--config", help="JSON service configuration")
    parser.add_argument("--output", default="estimates.csv", help="per-order results CSV")
    parser.add_argument("--no-sweep", action="store_true", help="skip the abandonment pass after replay")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    events = load_signal_events(args.events)
    print(f"Loaded {len(events)} signal events.")

    service = EstimationService(build_config(args.config))
    try:
        sweep_at = None if args.no_sweep or not events else events[-1].timestamp
        report = replay(events, service, sweep_at=sweep_at)
    finally:
        service.shutdown()

    report.estimates.to_csv(args.output, index=False)
    summary = summarize(report)

    print("\n=== REPLAY COMPLETE ===")
    print(f"Orders: {summary['orders']}")
    print(f"Bias rate: {summary['bias_rate_pct']}%")
    print(f"P90 correction: {summary['correction_p90_min']} min")
    print(f"Rejected events: {summary['rejections']}")
    if report.rejections:
        counts = pd.DataFrame(report.rejections)["error"].value_counts()
        for name, count in counts.items():
            print(f"  {name}: {count}")
    print("\nRush index:")
    for restaurant_id, snapshot in report.rush.items():
        print(f"  {restaurant_id}: {snapshot['index']} ({snapshot['status']})")
    print(f"Results written to '{args.output}'.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
