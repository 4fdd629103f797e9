"""
TradieSync API - Main Application

Accounting sync service: OAuth connections to Xero, QuickBooks and MYOB,
and client/invoice sync into them.

SECURITY FEATURES:
- Conditional API docs (disabled in production)
- Logging never includes tokens, authorization codes or bank details
- CORS restricted to known frontends, plus local origins outside production
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging

from tradiesync.api.deps import close_http_client
from tradiesync.api.v2.router import api_router
from tradiesync.config import settings
from tradiesync.core.sentry import init_sentry
from tradiesync.database import async_session_maker, init_db
from tradiesync.exceptions import TradieSyncException, create_exception_handlers
from tradiesync.middleware.correlation import CorrelationIdMiddleware, CorrelationLogFilter
from tradiesync.security.rate_limiter import rate_limiter
# Import all models to register them with SQLAlchemy metadata before init_db()
from tradiesync.models import (  # noqa: F401
    Profile, AccountingConnection, Client, Invoice, SyncLogEntry, RateLimitRecord
)

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s",
)
for _handler in logging.getLogger().handlers:
    _handler.addFilter(CorrelationLogFilter())
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger.info("Starting TradieSync API...")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    init_sentry()
    try:
        await init_db()
        logger.info("Database initialized successfully")
        async with async_session_maker() as session:
            await rate_limiter.prune(session, settings.RATE_LIMIT_RETENTION_SECONDS)
    except Exception as e:
        # SECURITY: exception text may contain the connection string
        logger.error(f"Database initialization failed: {type(e).__name__}")
        logger.warning("App starting without database - some features may not work")
    yield
    await close_http_client()
    logger.info("Shutting down TradieSync API...")


docs_url = "/docs" if settings.DOCS_ENABLED else None
redoc_url = "/redoc" if settings.DOCS_ENABLED else None

app = FastAPI(
    title="TradieSync API",
    description="Accounting sync for TradieMate - Xero, QuickBooks and MYOB",
    version=settings.VERSION,
    docs_url=docs_url,
    redoc_url=redoc_url,
    lifespan=lifespan,
)

allowed_origins = settings.allowed_origins
# Loopback, private LAN and Capacitor origins only outside production
allowed_origin_regex = None if settings.is_production else settings.DEV_ORIGIN_REGEX

handlers = create_exception_handlers(allowed_origins, allowed_origin_regex)
app.add_exception_handler(TradieSyncException, handlers["tradiesync"])
app.add_exception_handler(StarletteHTTPException, handlers["http"])
app.add_exception_handler(RequestValidationError, handlers["validation"])
app.add_exception_handler(Exception, handlers["generic"])

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_origin_regex=allowed_origin_regex,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Correlation-ID", "X-Request-ID"],
    expose_headers=["Retry-After", "X-RateLimit-Limit", "X-RateLimit-Remaining", "X-Request-ID"],
)
app.add_middleware(CorrelationIdMiddleware)

app.include_router(api_router, prefix="/api/v2")


@app.get("/")
async def root():
    """Root endpoint - API info."""
    response = {
        "name": "TradieSync API",
        "version": settings.VERSION,
        "health": "/health",
    }
    if settings.DOCS_ENABLED:
        response["docs"] = "/docs"
    return response


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": settings.VERSION,
        "environment": settings.ENVIRONMENT,
    }


# For running with uvicorn directly (development only)
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "tradiesync.main:app",
        host="0.0.0.0",
        port=5001,
        reload=settings.DEBUG,
    )
