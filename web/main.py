"""FastAPI application exposing the plan catalog and self-service upgrades."""

from __future__ import annotations

from fastapi import FastAPI, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from core.env import env_str, load_dotenv_if_available
from core.logging import setup_logging

load_dotenv_if_available()
setup_logging()

from web import routers  # noqa: E402

app = FastAPI(
    title="Plan Switch API",
    description="Plan catalog, upgrade checkout and downgrade requests.",
    version="1.0.0",
)

_cors_origins = [origin.strip() for origin in (env_str("CORS_ALLOW_ORIGINS", "") or "").split(",") if origin.strip()]
if _cors_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.get("/", summary="Health Check", tags=["Default"])
def health_check():
    return {"status": "ok", "message": "Plan Switch API is running."}


@app.get("/healthz", include_in_schema=False)
def liveness_probe():
    """Lightweight health probe for container platforms."""
    db_ok, db_error = routers.health.ping_database()
    payload = {"status": "ok" if db_ok else "unhealthy", "database": {"ok": db_ok}}
    if db_error:
        payload["database"]["error"] = db_error
    status_code = status.HTTP_200_OK if db_ok else status.HTTP_503_SERVICE_UNAVAILABLE
    return JSONResponse(status_code=status_code, content=payload)


@app.get("/metrics", include_in_schema=False)
def prometheus_metrics():
    """Expose Prometheus metrics."""
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


app.include_router(routers.health.router, prefix="/api/v1")
app.include_router(routers.plan.router, prefix="/api/v1")
app.include_router(routers.payments.router, prefix="/api/v1")
