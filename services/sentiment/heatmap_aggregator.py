# services/sentiment/heatmap_aggregator.py
"""
Turns filtered cells into heatmap rows.

Rows are keyed by the (underlying, expiration_date) pair and ordered by an
explicit sort, never by dict insertion order.
"""
from __future__ import annotations

from collections import defaultdict
from datetime import date, datetime
from typing import Dict, Iterable, List, Tuple

from schemas.sentiment_heatmap import (
    ExpiryBucket,
    ExpiryFilter,
    HeatmapCell,
    HeatmapResult,
    HeatmapRow,
)

RowKey = Tuple[str, date]

# Reported when nothing survives filtering
EMPTY_MIN_SCORE = -100.0
EMPTY_MAX_SCORE = 100.0
EMPTY_AVG_SCORE = 0.0


def days_to_expiry(expiration_date: date, today: date) -> int:
    return (expiration_date - today).days


def classify_expiry(days: int) -> ExpiryBucket:
    if days == 0:
        return "0DTE"
    if days <= 3:
        # also catches negative counts (stale catalog rows past expiry)
        return "Daily"
    if days <= 7:
        return "Weekly"
    if days <= 45:
        return "Monthly"
    if days > 365:
        return "LEAPS"
    return "Monthly"


def group_cells(cells: Iterable[HeatmapCell]) -> Dict[RowKey, List[HeatmapCell]]:
    groups: Dict[RowKey, List[HeatmapCell]] = defaultdict(list)
    for cell in cells:
        groups[(cell.underlying, cell.expiration_date)].append(cell)
    return groups


def by_strike(cells: Iterable[HeatmapCell]) -> List[HeatmapCell]:
    """One cell per strike, ascending. Duplicate strikes keep the lowest contract ticker."""
    kept: Dict[float, HeatmapCell] = {}
    for cell in cells:
        current = kept.get(cell.strike)
        if current is None or cell.contract_ticker < current.contract_ticker:
            kept[cell.strike] = cell
    return [kept[strike] for strike in sorted(kept)]


def build_row(key: RowKey, cells: List[HeatmapCell], today: date) -> HeatmapRow:
    underlying, expiration = key
    days = days_to_expiry(expiration, today)
    calls = by_strike(c for c in cells if c.contract_type == "call")
    puts = by_strike(c for c in cells if c.contract_type == "put")
    return HeatmapRow(
        underlying=underlying,
        expiration_date=expiration,
        expiry_bucket=classify_expiry(days),
        days_to_expiry=days,
        calls=calls,
        puts=puts,
    )


def aggregate(
    cells: Iterable[HeatmapCell],
    *,
    today: date,
    computed_at: datetime,
    expiry_bucket: ExpiryFilter = "All",
) -> HeatmapResult:
    rows: List[HeatmapRow] = []
    for key, group in group_cells(cells).items():
        row = build_row(key, group, today)
        if expiry_bucket != "All" and row.expiry_bucket != expiry_bucket:
            continue
        if not row.calls and not row.puts:
            continue
        rows.append(row)

    rows.sort(key=lambda r: (r.underlying, r.days_to_expiry))

    scores = [c.score for r in rows for c in (*r.calls, *r.puts)]
    if scores:
        min_score, max_score = min(scores), max(scores)
        avg_score = sum(scores) / len(scores)
        # min <= avg <= max even under float rounding
        avg_score = max(min_score, min(max_score, avg_score))
    else:
        min_score, max_score, avg_score = EMPTY_MIN_SCORE, EMPTY_MAX_SCORE, EMPTY_AVG_SCORE

    return HeatmapResult(
        rows=rows,
        underlyings=sorted({r.underlying for r in rows}),
        expiration_dates=sorted({r.expiration_date for r in rows}),
        min_score=min_score,
        max_score=max_score,
        avg_score=avg_score,
        total_cells=len(scores),
        computed_at=computed_at,
    )
