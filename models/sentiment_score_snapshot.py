# models/sentiment_score_snapshot.py
from __future__ import annotations

from datetime import date, datetime
from sqlalchemy import Date, DateTime, Float, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from database import Base


class SentimentScoreSnapshot(Base):
    """One composite reading per underlying per day; feeds trend classification."""

    __tablename__ = "sentiment_score_snapshots"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    underlying: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    as_of_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    composite_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    finbert_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    analyst_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    momentum_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    confidence: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    trend: Mapped[str] = mapped_column(String(16), nullable=False, default="stable")
    news_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    analyst_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    __table_args__ = (
        UniqueConstraint("underlying", "as_of_date", name="uq_sentiment_snapshot_underlying_date"),
    )
