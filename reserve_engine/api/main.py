"""FastAPI application factory"""

import logging
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from reserve_engine.api.middleware import RequestIDMiddleware, MetricsMiddleware
from reserve_engine.api.v1 import chargebacks, merchants, reserves
from reserve_engine.domain.exceptions import ConflictError, DomainException, NotFoundError, ValidationError
from reserve_engine.infrastructure.observability.logging import setup_logging
from reserve_engine.config import settings

# Setup structured logging
setup_logging(settings.log_level)

logger = logging.getLogger(__name__)


def _status_for(exc: DomainException) -> int:
    if isinstance(exc, ValidationError):
        return 400
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, ConflictError):
        return 409
    return 500


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="Merchant Reserve Engine",
        description="Reserve ledger, chargeback resolution and merchant risk assessment",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    @app.exception_handler(DomainException)
    async def domain_exception_handler(request: Request, exc: DomainException):
        status_code = _status_for(exc)
        request_id = getattr(request.state, "request_id", "unknown")
        if status_code >= 500:
            logger.error(f"Unhandled domain error: {exc}", extra={"request_id": request_id})
        else:
            logger.warning(
                f"{type(exc).__name__}: {exc}",
                extra={"request_id": request_id, "status": status_code},
            )
        return JSONResponse(
            status_code=status_code,
            content={"error": type(exc).__name__, "detail": str(exc)},
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={"error": "ValidationError", "detail": jsonable_errors(exc)},
        )

    # Health check endpoint
    @app.get("/health")
    def health_check():
        return {"status": "ok", "service": settings.service_name}

    # Prometheus metrics endpoint
    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # Register API routers
    app.include_router(merchants.router, prefix="/v1", tags=["merchants"])
    app.include_router(reserves.router, prefix="/v1", tags=["reserves"])
    app.include_router(chargebacks.router, prefix="/v1", tags=["chargebacks"])

    return app


def jsonable_errors(exc: RequestValidationError):
    """Pydantic error list without the raw input objects"""
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]


app = create_app()
