import logging
import os
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from propqr.api.endpoints import analytics, health, qr, scan
from propqr.db import engine
from propqr.models import Base
from propqr.services.events import bus
from propqr.services.exceptions import QrServiceError
from propqr.services.registry import ServiceRegistry, build_services
from propqr.session_factory import session_factory

logger = logging.getLogger(__name__)


def create_app(services: Optional[ServiceRegistry] = None) -> FastAPI:
    app = FastAPI(title="Property QR Service")
    app.state.services = services

    app.include_router(qr.router, prefix="/api/qr", tags=["QR"])
    app.include_router(analytics.router, prefix="/api/analytics", tags=["Analytics"])
    app.include_router(health.router, prefix="/api/health", tags=["Health"])
    app.include_router(scan.router, tags=["Scan"])

    @app.exception_handler(QrServiceError)
    def handle_service_error(request: Request, exc: QrServiceError) -> JSONResponse:
        if exc.http_status >= 500:
            logger.error(f"[API] {request.method} {request.url.path} -> {exc.error_code}: {exc.message}")
        return JSONResponse(status_code=exc.http_status, content=exc.to_dict())

    @app.on_event("startup")
    def on_startup() -> None:
        # Auto-create tables (Alembic is preferred)
        if os.getenv("DB_AUTO_CREATE_TABLES", "").strip() in ("1", "true", "TRUE", "yes", "YES"):
            Base.metadata.create_all(bind=engine)
        if app.state.services is None:
            app.state.services = build_services(session_factory, bus=bus)
        app.state.services.dispatcher.start()

    @app.on_event("shutdown")
    def on_shutdown() -> None:
        if app.state.services is not None:
            app.state.services.shutdown()

    @app.get("/health")
    def health_check() -> dict:
        return {"status": "ok"}

    return app


app = create_app()
