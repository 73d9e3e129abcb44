# main.py
import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import make_asgi_app
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from config.logging_config import configure_logging

configure_logging()

from config.heatmap_settings import CORS_ORIGINS, HEATMAP_SWEEP_INTERVAL_SEC  # noqa: E402
from database import init_db  # noqa: E402
from middleware.rate_limit import limiter  # noqa: E402
from middleware.request_logging import RequestLoggingMiddleware  # noqa: E402
from routers.sentiment_heatmap_routes import router as sentiment_heatmap_router  # noqa: E402
from services.sentiment.heatmap_service import get_heatmap_service  # noqa: E402
from services.sentiment.maintenance import run_periodic_sweep  # noqa: E402

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # db startup
    init_db()

    sweeper = None
    if HEATMAP_SWEEP_INTERVAL_SEC > 0:
        sweeper = asyncio.create_task(
            run_periodic_sweep(get_heatmap_service(), HEATMAP_SWEEP_INTERVAL_SEC)
        )
    logger.info("Sentiment heatmap API started")
    try:
        yield
    finally:
        if sweeper is not None:
            sweeper.cancel()
            try:
                await sweeper
            except asyncio.CancelledError:
                pass
        logger.info("Sentiment heatmap API stopped")


app = FastAPI(title="Sentiment Heatmap API", lifespan=lifespan)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)

# Include routers
app.include_router(sentiment_heatmap_router, prefix="/api/sentiment")

# Prometheus scrape endpoint
app.mount("/metrics", make_asgi_app())


@app.get("/health")
async def health():
    return {"status": "ok"}
