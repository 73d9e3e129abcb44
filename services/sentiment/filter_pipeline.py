# services/sentiment/filter_pipeline.py
from __future__ import annotations

from typing import Iterable, List, Mapping, Optional, Tuple

from schemas.sentiment_heatmap import (
    HeatmapCell,
    HeatmapFilters,
    OptionsContract,
    ScoringMode,
    SentimentScore,
)
from services.sentiment.scoring import (
    DEFAULT_CONFIDENCE,
    DEFAULT_SCORE,
    DEFAULT_TREND,
    Trend,
    sentiment_label,
)

# (score, confidence, trend, news_count, analyst_count)
SelectedValue = Tuple[float, float, Trend, int, int]

DEFAULT_SELECTION: SelectedValue = (DEFAULT_SCORE, DEFAULT_CONFIDENCE, DEFAULT_TREND, 0, 0)


def select_value(score: Optional[SentimentScore], mode: ScoringMode) -> SelectedValue:
    """Pick the number the heatmap colours by. No score at all means neutral defaults, not a drop."""
    if score is None:
        return DEFAULT_SELECTION

    if mode == "news_only":
        value = score.finbert_score
    elif mode == "analyst_only":
        value = score.analyst_score
    elif mode == "momentum":
        value = score.momentum_score
    else:
        value = score.composite_score

    return (value, score.confidence, score.trend, score.news_count, score.analyst_count)


def passes_filters(value: float, confidence: float, strike: float, filters: HeatmapFilters) -> bool:
    # Order: confidence floor, score window, strike window
    if confidence < filters.min_confidence:
        return False
    if filters.min_score is not None and value < filters.min_score:
        return False
    if filters.max_score is not None and value > filters.max_score:
        return False
    if filters.strike_range is not None:
        if strike < filters.strike_range.min or strike > filters.strike_range.max:
            return False
    return True


def build_cell(
    contract: OptionsContract,
    score: Optional[SentimentScore],
    filters: HeatmapFilters,
) -> Optional[HeatmapCell]:
    value, confidence, trend, news_count, analyst_count = select_value(score, filters.scoring_mode)
    if not passes_filters(value, confidence, contract.strike, filters):
        return None

    return HeatmapCell(
        contract_ticker=contract.ticker,
        underlying=contract.underlying,
        strike=contract.strike,
        contract_type=contract.contract_type,
        expiration_date=contract.expiration_date,
        score=value,
        label=sentiment_label(value),
        confidence=confidence,
        trend=trend,
        news_count=news_count,
        analyst_count=analyst_count,
        volume=contract.volume,
        open_interest=contract.open_interest,
        implied_volatility=contract.implied_volatility,
    )


def restrict_to_underlyings(
    contracts: Iterable[OptionsContract],
    underlyings: Optional[Iterable[str]],
) -> List[OptionsContract]:
    if underlyings is None:
        return list(contracts)
    allowed = {u.strip().upper() for u in underlyings}
    return [c for c in contracts if c.underlying in allowed]


def apply_filters(
    contracts: Iterable[OptionsContract],
    scores: Mapping[str, SentimentScore],
    filters: HeatmapFilters,
) -> List[HeatmapCell]:
    """
    Score, filter and project every contract. Rejected contracts simply do not come back.

    The underlying allow-list is not applied here; callers pass contracts
    already narrowed by `restrict_to_underlyings`.
    """
    cells: List[HeatmapCell] = []
    for contract in contracts:
        cell = build_cell(contract, scores.get(contract.underlying), filters)
        if cell is not None:
            cells.append(cell)
    return cells
