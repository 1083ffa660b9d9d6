#main.py
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from db import close_pool, init_pool
from middleware import RequestContextMiddleware
from routes.dispense import router as dispense_router
from routes.health import router as health_router
from routes.metrics import router as metrics_router
from routes.orders import router as orders_router
from routes.webhooks import router as webhooks_router
from services.observability import get_request_id
from settings import settings, validate_env_settings

logger = logging.getLogger("smartchange")


def _cors_origins() -> list[str]:
    raw = (settings.CORS_ALLOW_ORIGINS or "").strip()
    return [o.strip() for o in raw.split(",") if o.strip()] or ["*"]


@asynccontextmanager
async def lifespan(app: FastAPI):
    validate_env_settings()
    if settings.TX_STORE_BACKEND == "postgres" and settings.DATABASE_URL:
        init_pool()
    try:
        yield
    finally:
        close_pool()


def create_app() -> FastAPI:
    app = FastAPI(title="SmartChange API", version="1.0.0", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins(),
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )
    app.add_middleware(RequestContextMiddleware)

    # -----------------------------
    # ROUTERS
    # -----------------------------
    app.include_router(health_router)
    app.include_router(metrics_router)
    app.include_router(orders_router)
    app.include_router(webhooks_router)
    app.include_router(dispense_router)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception(
            "unhandled_error request_id=%s method=%s path=%s",
            get_request_id(),
            request.method,
            request.url.path,
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    return app


app = create_app()
