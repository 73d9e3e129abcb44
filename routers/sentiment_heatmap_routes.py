# sentiment_heatmap_routes.py
import logging
from typing import List, Literal

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import PlainTextResponse

from config.heatmap_settings import HEATMAP_RATE_LIMIT
from middleware.rate_limit import limiter
from schemas.sentiment_heatmap import (
    GradientResponse,
    HeatmapExportRow,
    HeatmapRequest,
    HeatmapResult,
    InvalidateScoresRequest,
    InvalidateScoresResponse,
    OpacityResponse,
    SweepResponse,
)
from services.sentiment.export import export_csv, export_rows
from services.sentiment.heatmap_service import SentimentHeatmapService, get_heatmap_service
from services.sentiment.maintenance import sweep_once
from services.sentiment.presentation import (
    confidence_opacity,
    gradient_bucket,
    gradient_css_class,
    gradient_position,
)

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------- Heatmap (thin controllers delegating to the service) ----------
@router.post("/heatmap", response_model=HeatmapResult)
@limiter.limit(HEATMAP_RATE_LIMIT)
async def get_heatmap(
    request: Request,
    payload: HeatmapRequest,
    svc: SentimentHeatmapService = Depends(get_heatmap_service),
):
    return await svc.get_heatmap(
        payload.contracts, payload.filters, force_refresh=payload.force_refresh
    )


@router.post("/heatmap/export", response_model=List[HeatmapExportRow])
@limiter.limit(HEATMAP_RATE_LIMIT)
async def export_heatmap(
    request: Request,
    payload: HeatmapRequest,
    format: Literal["json", "csv"] = Query("json"),
    svc: SentimentHeatmapService = Depends(get_heatmap_service),
):
    result = await svc.get_heatmap(
        payload.contracts, payload.filters, force_refresh=payload.force_refresh
    )
    if format == "csv":
        return PlainTextResponse(
            export_csv(result),
            media_type="text/csv",
            headers={"Content-Disposition": 'attachment; filename="sentiment-heatmap.csv"'},
        )
    return export_rows(result)


# ---------- Cache maintenance ----------
@router.post("/cache/sweep", response_model=SweepResponse)
async def sweep_cache(svc: SentimentHeatmapService = Depends(get_heatmap_service)):
    deleted = await sweep_once(svc)
    return SweepResponse(deleted=deleted)


@router.post("/scores/invalidate", response_model=InvalidateScoresResponse)
async def invalidate_scores(
    body: InvalidateScoresRequest,
    svc: SentimentHeatmapService = Depends(get_heatmap_service),
):
    return InvalidateScoresResponse(invalidated=svc.invalidate_scores(body.underlyings))


# ---------- Presentation helpers ----------
@router.get("/presentation/gradient", response_model=GradientResponse)
async def get_gradient(
    score: float,
    min_score: float = Query(-100.0, alias="min"),
    max_score: float = Query(100.0, alias="max"),
):
    bucket = gradient_bucket(score, min_score, max_score)
    return GradientResponse(
        bucket=bucket,
        css_class=gradient_css_class(bucket),
        position=gradient_position(score, min_score, max_score),
    )


@router.get("/presentation/opacity", response_model=OpacityResponse)
async def get_opacity(confidence: float):
    return OpacityResponse(opacity=confidence_opacity(confidence))
