"""
PayGate Backend - FastAPI Application

Mobile-money payment gateway: accepts payment requests, triggers Daraja STK
pushes and tracks each payment from PENDING to SUCCESS or FAILED.
"""
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional
import logging

import httpx

from .config import Settings, settings
from .exceptions import PaymentGatewayError, StartupConfigError
from .db.init_db import initialize_database, create_engine_for
from .services.audit_log import AuditLog
from .services.daraja_client import DarajaClient
from .services.payment_tracker import PaymentTracker
from .services.scheduler import CompletionScheduler
from .services.store import InMemoryTransactionStore, SqlAlchemyTransactionStore, TransactionStore
from .api.payments import router as payments_router
from .api.daraja import router as daraja_router


# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def build_store(app_settings: Settings) -> TransactionStore:
    """Create the transaction store selected by STORE_BACKEND."""
    if app_settings.store_backend == "sqlite":
        initialize_database(app_settings.database_path)
        return SqlAlchemyTransactionStore(create_engine_for(app_settings.database_path))
    return InMemoryTransactionStore()


def build_audit_log(app_settings: Settings) -> AuditLog:
    categories = {"request", "callback"}
    if app_settings.audit_mock_requests:
        categories.add("mock")
    return AuditLog(app_settings.audit_log_dir, enabled_categories=categories)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Handles startup and shutdown events:
    - Startup: check credentials, build the store, start the scheduler,
      create the Daraja client and the payment tracker
    - Shutdown: stop the scheduler, close the HTTP client and the store
    """
    app_settings: Settings = app.state.settings

    # Startup
    logger.info("Starting PayGate backend server...")

    missing = app_settings.missing_credentials()
    if missing:
        error = StartupConfigError(missing)
        logger.error(error.message)
        raise error

    store = build_store(app_settings)
    logger.info(f"Store backend: {app_settings.store_backend}")

    scheduler = CompletionScheduler()
    scheduler.start()

    client = DarajaClient.from_settings(app_settings, http_client=app.state.http_client)
    audit_log = build_audit_log(app_settings)

    tracker = PaymentTracker.from_settings(
        app_settings,
        store=store,
        scheduler=scheduler,
        provider_client=client,
        audit_log=audit_log,
    )
    tracker.start_background_jobs()

    app.state.store = store
    app.state.scheduler = scheduler
    app.state.provider_client = client
    app.state.audit_log = audit_log
    app.state.tracker = tracker

    logger.info(f"Environment: {'sandbox' if app_settings.sandbox else 'production'}")
    logger.info(f"Completion mode: {app_settings.completion_mode}")
    logger.info(f"Auth URL: {client.endpoints.auth}")
    logger.info(f"STK push URL: {client.endpoints.stk_push}")
    logger.info(f"Callback URL: {app_settings.resolved_callback_url}")
    logger.info("Server startup complete")

    yield

    # Shutdown
    logger.info("Shutting down PayGate backend server...")
    scheduler.shutdown(wait=False)
    await client.aclose()
    await store.close()
    logger.info("Shutdown complete")


def create_app(
    app_settings: Optional[Settings] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        app_settings: Settings to run with; defaults to the global settings
        http_client: httpx client handed to the Daraja client (tests pass one
            backed by httpx.MockTransport)
    """
    app = FastAPI(
        title="PayGate API",
        description="STK push payment gateway with lifecycle tracking",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = app_settings or settings
    app.state.http_client = http_client

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(PaymentGatewayError)
    async def gateway_error_handler(request: Request, exc: PaymentGatewayError):
        """
        Render gateway errors as {"ok": false, "error": ...}.

        The HTTP status comes from the exception class.
        """
        logger.warning(
            f"Gateway error: {exc.error_code} - {exc.message}",
            extra={"details": exc.details}
        )
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        """Malformed request bodies use the same 400 shape as rule violations."""
        errors = [error.get("msg", "Invalid request") for error in exc.errors()]
        logger.warning(f"Request validation error: {errors}")
        return JSONResponse(
            status_code=400,
            content={"ok": False, "error": "; ".join(errors), "errors": errors},
        )

    @app.exception_handler(Exception)
    async def general_error_handler(request: Request, exc: Exception):
        """
        Catch-all handler for unexpected errors.

        Logs full exception for debugging but returns generic message to client.
        """
        logger.error(f"Unexpected error: {str(exc)}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"ok": False, "error": "An unexpected error occurred"},
        )

    @app.get("/health")
    async def health_check():
        """Liveness check."""
        return {
            "status": "OK",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    app.include_router(payments_router, prefix="/api", tags=["Payments"])
    app.include_router(daraja_router, tags=["Daraja"])

    return app


app = create_app()


def run():
    import uvicorn
    uvicorn.run(
        "paygate.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower()
    )


if __name__ == "__main__":
    run()
