"""FastAPI application entry point."""

import json
import logging
import sys
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text
from starlette.middleware.base import BaseHTTPMiddleware

import grocery.models  # noqa: F401  (register tables on Base.metadata)
from grocery.api.routes import api_router
from grocery.core.config import settings
from grocery.core.errors import Busy, DomainError
from grocery.core.rate_limit import limiter
from grocery.core.rbac import JWTPrincipalResolver, PrincipalResolver
from grocery.db.base import Base
from grocery.db.session import SessionLocal, engine, ensure_sqlite_directory
from grocery.services.audit_service import AuditSink

# Configure logging - use JSON format in production, human-readable in dev
root_logger = logging.getLogger()
root_logger.setLevel(getattr(logging, settings.log_level))
root_logger.handlers.clear()

if settings.debug:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
else:
    class JSONFormatter(logging.Formatter):
        def format(self, record):
            return json.dumps({
                "ts": self.formatTime(record, self.datefmt),
                "level": record.levelname,
                "logger": record.name,
                "msg": record.getMessage(),
                "module": record.module,
                "line": record.lineno,
            })

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())

root_logger.addHandler(handler)
logger = logging.getLogger(__name__)
request_logger = logging.getLogger("requests")

BUSY_RETRY_AFTER_SECONDS = 1


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log every request with status and timing."""

    async def dispatch(self, request: Request, call_next):
        if request.url.path in ["/health", "/docs", "/openapi.json"]:
            return await call_next(request)

        start_time = time.time()
        client_ip = request.client.host if request.client else "unknown"
        try:
            response = await call_next(request)
        except Exception as e:
            request_logger.error(
                f"Error: {request.method} {request.url.path} - "
                f"Exception: {e} - Time: {time.time() - start_time:.3f}s - Client: {client_ip}"
            )
            raise

        log_level = logging.WARNING if response.status_code >= 400 else logging.INFO
        request_logger.log(
            log_level,
            f"Response: {request.method} {request.url.path} - "
            f"Status: {response.status_code} - Time: {time.time() - start_time:.3f}s - Client: {client_ip}"
        )
        return response


async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    """Map domain errors to JSON responses."""
    if exc.category == "consistency":
        logger.error(f"Consistency error on {request.method} {request.url.path}: {exc.to_dict()}")
    headers = {"Retry-After": str(BUSY_RETRY_AFTER_SECONDS)} if isinstance(exc, Busy) else None
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Starting grocery fulfillment service")

    ensure_sqlite_directory()
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables ready")

    if settings.seed_demo_data:
        from grocery.db.seed import seed_demo_data

        db = SessionLocal()
        try:
            seed_demo_data(db)
        finally:
            db.close()

    yield

    logger.info("Shutting down grocery fulfillment service")


def create_app(
    principal_resolver: Optional[PrincipalResolver] = None,
    audit_sink: Optional[AuditSink] = None,
) -> FastAPI:
    """Build the application.

    ``principal_resolver`` decides who the caller is; it defaults to bearer
    JWT validation against the users table.
    """
    app = FastAPI(
        title="Grocery Fulfillment",
        description="Order lifecycle, courier dispatch and warehouse fulfillment API",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )
    app.state.principal_resolver = principal_resolver or JWTPrincipalResolver()
    app.state.audit_sink = audit_sink or AuditSink()

    # Rate limiting setup
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(DomainError, domain_error_handler)

    app.add_middleware(RequestLoggingMiddleware)

    # CORS middleware - added last so it runs first
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "Accept", "Origin", "X-Requested-With"],
        max_age=600,
    )

    app.include_router(api_router, prefix=settings.api_prefix)

    @app.get("/health")
    def health_check():
        """Liveness check with a database ping."""
        db = SessionLocal()
        try:
            db.execute(text("SELECT 1"))
            database = "healthy"
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            database = "unhealthy"
        finally:
            db.close()
        return {"status": "healthy", "version": "1.0.0", "database": database}

    return app


app = create_app()
