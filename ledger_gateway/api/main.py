"""FastAPI application factory"""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from ledger_gateway.api.middleware import MetricsMiddleware, RequestIDMiddleware
from ledger_gateway.api.v1 import ageing, customers, schedule, sync
from ledger_gateway.config import settings
from ledger_gateway.infrastructure.observability.logging import setup_logging

# Setup structured logging
setup_logging(settings.log_level)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed requests are answered with 400 rather than FastAPI's 422"""
    logging.warning(
        "Request validation failed",
        extra={"request_id": getattr(request.state, "request_id", "unknown"), "path": request.url.path},
    )
    errors = [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg"), "type": error.get("type")}
        for error in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"detail": errors})


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="Ledger Gateway",
        description="Ledger mirror sync, receivables ageing, risk scoring and payables scheduling",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    app.add_exception_handler(RequestValidationError, validation_exception_handler)

    # Health check endpoint
    @app.get("/health")
    def health_check():
        return {"status": "ok", "service": settings.service_name}

    # Prometheus metrics endpoint
    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # Register API routers
    app.include_router(sync.router, prefix="/v1", tags=["sync"])
    app.include_router(ageing.router, prefix="/v1", tags=["receivables"])
    app.include_router(customers.router, prefix="/v1", tags=["receivables"])
    app.include_router(schedule.router, prefix="/v1", tags=["payables"])

    return app


app = create_app()
