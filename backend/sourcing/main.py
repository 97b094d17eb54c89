"""
FastAPI application entry point.

WHAT: HTTP surface for quotes, negotiation turns and supplier decisions
WHY: Agents and the UI drive negotiations over HTTP against one runner
HOW: Lifespan creates tables and warms the process-wide runner so every
     request shares one state machine cache; routes live under /api/v1
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api.deps import get_runner
from .api.v1.router import api_router
from .core.config import settings
from .core.database import close_db, init_db
from .middleware.error_handler import register_exception_handlers
from .utils.logger import get_logger, setup_logging

setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()

    # Honour test overrides so startup warms the runner requests will use
    runner = app.dependency_overrides.get(get_runner, get_runner)()
    cfg = runner.negotiation_config
    logger.info(
        f"{settings.APP_NAME} v{settings.APP_VERSION} ready: max_rounds={cfg.max_rounds}, "
        f"stagnation={cfg.stagnation_window} offers/{cfg.stagnation_epsilon_percent}%, "
        f"price_gap={cfg.price_gap_threshold_percent}%, parallel={runner.parallel_limit}"
    )

    yield

    logger.info(f"Shutting down with {runner.cached_machine_count} negotiations in memory")
    close_db()


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_cors_origins_list(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)
app.include_router(api_router)


@app.get("/")
async def root():
    """Service banner with the termination thresholds in force."""
    return {
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "negotiation": {
            "maxRounds": settings.MAX_NEGOTIATION_ROUNDS,
            "stagnationWindow": settings.STAGNATION_WINDOW,
            "stagnationEpsilonPercent": settings.STAGNATION_EPSILON_PERCENT,
            "priceGapThresholdPercent": settings.PRICE_GAP_THRESHOLD_PERCENT,
        },
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("sourcing.main:app", host="0.0.0.0", port=8000, reload=settings.DEBUG)
