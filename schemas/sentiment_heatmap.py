from __future__ import annotations

from datetime import date, datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator, model_validator

from services.sentiment.errors import InvalidFilterCombination
from services.sentiment.scoring import Trend, clamp_confidence, clamp_score, composite_score

ContractType = Literal["call", "put"]
ExpiryBucket = Literal["0DTE", "Daily", "Weekly", "Monthly", "LEAPS"]
ExpiryFilter = Literal["All", "0DTE", "Daily", "Weekly", "Monthly", "LEAPS"]
ScoringMode = Literal["composite", "news_only", "analyst_only", "momentum"]


def _norm_symbol(v: str) -> str:
    return (v or "").strip().upper()


# ============================================================================
# CATALOG INPUT
# ============================================================================

class OptionsContract(BaseModel):
    """One listed option as supplied by the contract catalog. Read-only input."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    ticker: str = Field(..., min_length=1, description="Full contract ticker, e.g. O:SPY241018C00500000")
    underlying: str = Field(..., min_length=1, alias="underlying_ticker")
    strike: float = Field(..., gt=0, alias="strike_price")
    contract_type: ContractType
    expiration_date: date
    volume: Optional[int] = Field(default=None, ge=0)
    open_interest: Optional[int] = Field(default=None, ge=0)
    implied_volatility: Optional[float] = Field(default=None, ge=0)

    @field_validator("underlying")
    @classmethod
    def normalize_underlying(cls, v: str) -> str:
        return _norm_symbol(v)


# ============================================================================
# SCORES
# ============================================================================

class SentimentScore(BaseModel):
    """
    Per-underlying sentiment. The composite is always derived from the three
    sub-scores; it is never stored or accepted independently.
    """

    model_config = ConfigDict(frozen=True)

    underlying: str = Field(..., min_length=1)
    finbert_score: float = 0.0
    analyst_score: float = 0.0
    momentum_score: float = 0.0
    confidence: float = 0.0
    trend: Trend = "stable"
    news_count: int = Field(default=0, ge=0)
    analyst_count: int = Field(default=0, ge=0)
    computed_at: datetime

    @field_validator("underlying")
    @classmethod
    def normalize_underlying(cls, v: str) -> str:
        return _norm_symbol(v)

    @field_validator("finbert_score", "analyst_score", "momentum_score")
    @classmethod
    def clamp_sub_score(cls, v: float) -> float:
        return clamp_score(v)

    @field_validator("confidence")
    @classmethod
    def clamp_conf(cls, v: float) -> float:
        return clamp_confidence(v)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def composite_score(self) -> float:
        return composite_score(self.finbert_score, self.analyst_score, self.momentum_score)


# ============================================================================
# FILTERS
# ============================================================================

class StrikeRange(BaseModel):
    model_config = ConfigDict(frozen=True, allow_inf_nan=False)

    min: float
    max: float

    @model_validator(mode="after")
    def check_order(self) -> "StrikeRange":
        if self.min > self.max:
            raise InvalidFilterCombination(
                f"strike_range.min ({self.min}) is greater than strike_range.max ({self.max})"
            )
        return self


class HeatmapFilters(BaseModel):
    """
    Request-side configuration surface. `underlyings` has set semantics: it is
    normalised, de-duplicated and sorted so equal sets compare equal.
    """

    model_config = ConfigDict(frozen=True, allow_inf_nan=False)

    underlyings: Optional[List[str]] = None
    expiry_bucket: ExpiryFilter = "All"
    scoring_mode: ScoringMode = "composite"
    min_score: Optional[float] = None
    max_score: Optional[float] = None
    min_confidence: float = Field(default=0.0, ge=0, le=100)
    strike_range: Optional[StrikeRange] = None

    @field_validator("underlyings")
    @classmethod
    def normalize_underlyings(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        if v is None:
            return None
        return sorted({_norm_symbol(s) for s in v if _norm_symbol(s)})

    @model_validator(mode="after")
    def check_score_bounds(self) -> "HeatmapFilters":
        if self.min_score is not None and self.max_score is not None and self.min_score > self.max_score:
            raise InvalidFilterCombination(
                f"min_score ({self.min_score}) is greater than max_score ({self.max_score})"
            )
        return self


# ============================================================================
# HEATMAP OUTPUT
# ============================================================================

class HeatmapCell(BaseModel):
    model_config = ConfigDict(frozen=True)

    contract_ticker: str
    underlying: str
    strike: float
    contract_type: ContractType
    expiration_date: date
    score: float
    label: str
    confidence: float
    trend: Trend
    news_count: int = 0
    analyst_count: int = 0
    volume: Optional[int] = None
    open_interest: Optional[int] = None
    implied_volatility: Optional[float] = None


class HeatmapRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    underlying: str
    expiration_date: date
    expiry_bucket: ExpiryBucket
    days_to_expiry: int
    calls: List[HeatmapCell] = Field(default_factory=list)
    puts: List[HeatmapCell] = Field(default_factory=list)


class HeatmapResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    rows: List[HeatmapRow] = Field(default_factory=list)
    underlyings: List[str] = Field(default_factory=list)
    expiration_dates: List[date] = Field(default_factory=list)
    min_score: float = -100.0
    max_score: float = 100.0
    avg_score: float = 0.0
    total_cells: int = 0
    computed_at: datetime


class HeatmapExportRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    underlying: str
    expiration_date: date
    contract_type: ContractType
    strike: float
    score: float
    trend: Trend
    confidence: float
    news_count: int
    analyst_count: int


# ============================================================================
# API ENVELOPES
# ============================================================================

class HeatmapRequest(BaseModel):
    contracts: List[OptionsContract] = Field(default_factory=list)
    filters: HeatmapFilters = Field(default_factory=HeatmapFilters)
    force_refresh: bool = False


class InvalidateScoresRequest(BaseModel):
    underlyings: List[str] = Field(..., min_length=1)


class InvalidateScoresResponse(BaseModel):
    invalidated: int


class SweepResponse(BaseModel):
    deleted: int


class GradientResponse(BaseModel):
    bucket: str
    css_class: str
    position: float


class OpacityResponse(BaseModel):
    opacity: float
