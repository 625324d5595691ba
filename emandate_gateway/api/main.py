"""FastAPI application factory"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from sqlalchemy.exc import SQLAlchemyError
from starlette.responses import Response

from emandate_gateway.api.dependencies import get_settings
from emandate_gateway.api.middleware import RequestIDMiddleware, MetricsMiddleware
from emandate_gateway.api.v1 import external, mandate, merchants
from emandate_gateway.domain.exceptions import DomainException
from emandate_gateway.infrastructure.database.session import get_session_factory
from emandate_gateway.infrastructure.observability.logging import setup_logging
from emandate_gateway.services.reconciliation import ReconciliationWorker
from emandate_gateway.config import settings

# Setup structured logging
setup_logging(settings.log_level)


async def domain_exception_handler(request: Request, exc: DomainException) -> JSONResponse:
    """Render domain errors as the `{"meta": ..., "data": {}}` envelope"""
    if exc.status_code >= 500:
        logging.error(f"{type(exc).__name__}: {exc}", extra={"request_id": getattr(request.state, "request_id", None)})
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "meta": {"status": False, "message": str(exc), "code": exc.status_code},
            "data": {},
        },
    )


async def drain_reconciliation_outbox(app: FastAPI) -> None:
    """Redeliver reconciliation tasks a previous process committed but never applied"""
    def resolve(dependency):
        return app.dependency_overrides.get(dependency, dependency)()

    config = resolve(get_settings)
    if not config.reconciliation_drain_on_startup:
        return

    worker = ReconciliationWorker.from_settings(resolve(get_session_factory), config)
    try:
        outcomes = await worker.drain_pending()
    except SQLAlchemyError as e:
        logging.error(f"Reconciliation outbox drain failed: {e}")
        return
    if outcomes:
        logging.info("Reconciliation outbox drained", extra={"outcomes": outcomes})


@asynccontextmanager
async def lifespan(app: FastAPI):
    await drain_reconciliation_outbox(app)
    yield


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="e-Mandate Gateway",
        description="Merchant slabs, EMI calculation and e-mandate registration",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    app.add_exception_handler(DomainException, domain_exception_handler)

    # Health check endpoint
    @app.get("/health")
    def health_check():
        return {"status": "ok", "service": settings.service_name}

    # Prometheus metrics endpoint
    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # Register API routers
    app.include_router(mandate.router, prefix="/v1", tags=["mandates"])
    app.include_router(merchants.router, prefix="/v1", tags=["merchants"])
    app.include_router(external.router, prefix="/v1", tags=["external"])

    return app


app = create_app()
