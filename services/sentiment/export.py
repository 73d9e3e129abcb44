# services/sentiment/export.py
from __future__ import annotations

import csv
import io
from typing import List

from schemas.sentiment_heatmap import HeatmapExportRow, HeatmapResult

CSV_HEADER = [
    "Ticker",
    "Expiry",
    "Type",
    "Strike",
    "Sentiment",
    "Trend",
    "Confidence",
    "News Count",
    "Analyst Count",
]


def export_rows(result: HeatmapResult) -> List[HeatmapExportRow]:
    """Flatten the heatmap in display order: rows as sorted, calls before puts."""
    out: List[HeatmapExportRow] = []
    for row in result.rows:
        for cell in (*row.calls, *row.puts):
            out.append(
                HeatmapExportRow(
                    underlying=cell.underlying,
                    expiration_date=cell.expiration_date,
                    contract_type=cell.contract_type,
                    strike=cell.strike,
                    score=cell.score,
                    trend=cell.trend,
                    confidence=cell.confidence,
                    news_count=cell.news_count,
                    analyst_count=cell.analyst_count,
                )
            )
    return out


def _fmt_num(x: float) -> str:
    return str(int(x)) if float(x).is_integer() else str(x)


def export_csv(result: HeatmapResult) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for r in export_rows(result):
        writer.writerow(
            [
                r.underlying,
                r.expiration_date.isoformat(),
                r.contract_type,
                _fmt_num(r.strike),
                f"{r.score:.2f}",
                r.trend,
                _fmt_num(round(r.confidence, 2)),
                r.news_count,
                r.analyst_count,
            ]
        )
    return buf.getvalue()
