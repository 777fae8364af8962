"""Entry point for the FastAPI application.

This module constructs the FastAPI app, includes all routers and sets up
startup and shutdown events. When run with uvicorn it initialises the
database (tables plus seeded categories and bank templates) and loads
configuration from ``ledgerly.core.config``.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from urllib.parse import urlparse

import sentry_sdk
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from ledgerly.api.error_handlers import register_exception_handlers
from ledgerly.api.routes.accounts import router as accounts_router
from ledgerly.api.routes.bank_templates import router as bank_templates_router
from ledgerly.api.routes.categories import router as categories_router
from ledgerly.api.routes.events import router as events_router
from ledgerly.api.routes.health import router as health_router
from ledgerly.api.routes.invoices import router as invoices_router
from ledgerly.api.routes.jobs import router as jobs_router
from ledgerly.api.routes.statements import router as statements_router
from ledgerly.api.routes.transactions import router as transactions_router
from ledgerly.api.routes.user_rules import router as user_rules_router
from ledgerly.api.routes.workflows import router as workflows_router
from ledgerly.core.config import settings
from ledgerly.core.database import init_db
from ledgerly.core.observability import configure_logging, init_sentry

configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle."""
    logger.info("Starting up...")
    if init_sentry("api"):
        logger.info("Sentry SDK initialized (api)")
    await init_db()
    yield
    logger.info("Shutting down...")


app = FastAPI(
    title=f"{settings.PROJECT_NAME} API",
    version="1.0.0",
    lifespan=lifespan,
)


@app.middleware("http")
async def sentry_context_middleware(request: Request, call_next):
    """Tag the Sentry scope with the request path and caller."""
    if settings.SENTRY_DSN:
        scope = sentry_sdk.get_isolation_scope()
        scope.set_tag("path", request.url.path)
        scope.set_tag("method", request.method)
        uid = request.headers.get("x-user-id")
        if uid:
            scope.set_user({"id": uid})
    return await call_next(request)


def cors_origins() -> list[str]:
    """Allowed CORS origins.

    Development allows everything. Elsewhere start from
    ``BACKEND_CORS_ORIGINS``, add the ``FRONTEND_BASE_URL`` origin and keep
    order while dropping duplicates.
    """
    if (settings.ENVIRONMENT or "development").lower() == "development":
        return ["*"]
    origins = list(settings.BACKEND_CORS_ORIGINS or [])
    parsed = urlparse(settings.FRONTEND_BASE_URL or "")
    if parsed.scheme and parsed.netloc:
        origins.append(f"{parsed.scheme}://{parsed.netloc}")
    seen = set()
    return [o for o in origins if not (o in seen or seen.add(o))]


app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

app.include_router(health_router)
for router in (
    categories_router,
    bank_templates_router,
    accounts_router,
    statements_router,
    transactions_router,
    user_rules_router,
    invoices_router,
    workflows_router,
    jobs_router,
    events_router,
):
    app.include_router(router, prefix=settings.API_V1_STR)


@app.get("/")
async def root():
    """Root endpoint."""
    return {"message": f"Welcome to the {settings.PROJECT_NAME} API", "docs": "/docs"}
