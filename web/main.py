from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from core.env import env_csv
from core.listing_settings import get_listing_settings
from core.logging import get_logger, setup_logging
from web import routers
from web.deps import build_sweeper

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    sweeper = None
    if get_listing_settings().sweeper_enabled:
        sweeper = build_sweeper()
        app.state.sweeper = sweeper
        sweeper.start()
    else:
        logger.info("Listing sweeper disabled; expiry runs only via admin or worker.")
    try:
        yield
    finally:
        if sweeper is not None:
            sweeper.stop()


app = FastAPI(
    title="EasyFix Directory API",
    description="Business listing directory with trial and paid subscription lifecycle.",
    version="0.1.0",
    lifespan=lifespan,
)

origins = env_csv("CORS_ORIGINS") or [
    "http://localhost:3000",
    "https://easyfix.services",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/", summary="Health Check", tags=["Default"])
def health_check():
    """Basic liveness check."""
    return {"status": "ok", "message": "EasyFix Directory API is running."}


@app.get("/healthz", include_in_schema=False)
def container_health_check():
    """Lightweight container health probe."""
    db_ok, db_error = routers.health.ping_database()
    payload = {"status": "ok" if db_ok else "unhealthy", "database": {"ok": db_ok}}
    if db_error:
        payload["database"]["error"] = db_error
    status_code = status.HTTP_200_OK if db_ok else status.HTTP_503_SERVICE_UNAVAILABLE
    return JSONResponse(status_code=status_code, content=payload)


app.include_router(routers.listings.router, prefix="/api/v1")
app.include_router(routers.payments.router, prefix="/api/v1")
app.include_router(routers.admin.router, prefix="/api/v1")
app.include_router(routers.health.router, prefix="/api/v1")
