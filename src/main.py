"""
Flowstack Server - Main Application
Multi-tenant back end: organizations, workspaces, RBAC, SSO, API keys and backups
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.openapi.utils import get_openapi

from core.config import settings
from core.database import check_connection, init_db, session_scope
from core.exceptions import BackupError, IdentityProviderError
from core.logging import setup_logging
from core.redis import close_redis, ping_redis
from core.security_headers import SecurityHeadersMiddleware
from core.rate_limit import BackoffMiddleware, RateLimitMiddleware
from nodes import nodes_pool
from services.backup import get_backup_scheduler
from services.identity_provider import IdentityProviderService
from services.rbac_seed import initialize_roles_and_permissions
from api import (
    api_keys,
    audit_logs,
    backups,
    identity_providers,
    invitations,
    nodes,
    organizations,
    permissions,
    rate_limit,
    roles,
    sso,
    users,
    workspaces,
)

# Setup logging
setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler
    """
    logger.info("Starting Flowstack Server...")

    await init_db()
    logger.info("Database initialized")

    async with session_scope() as db:
        await initialize_roles_and_permissions(db)
        logger.info("System roles and permissions ready")

        loaded = await IdentityProviderService(db).initialize()
        logger.info(f"Initialized {loaded} identity providers")

    nodes_pool.initialize()

    scheduler = None
    if settings.BACKUP_ENABLED:
        scheduler = get_backup_scheduler()
        scheduler.start()

    yield

    logger.info("Shutting down Flowstack Server...")
    if scheduler is not None:
        await scheduler.stop()
    await close_redis()


# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    description="Organizations, workspaces, roles, SSO and API keys for Flowstack",
    version=settings.VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json"
)

app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.ALLOWED_HOSTS)

cors_origins = ["*"] if settings.CORS_ALLOW_ALL_ORIGINS else settings.CORS_ORIGINS
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset", "Retry-After"],
    max_age=3600
)

app.add_middleware(SecurityHeadersMiddleware, strict=not settings.DEBUG)

app.add_middleware(RateLimitMiddleware)
app.add_middleware(BackoffMiddleware)


@app.exception_handler(IdentityProviderError)
async def identity_provider_exception_handler(request: Request, exc: IdentityProviderError):
    logger.warning(f"SSO failure on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_401_UNAUTHORIZED,
        content={"detail": str(exc)}
    )


@app.exception_handler(BackupError)
async def backup_exception_handler(request: Request, exc: BackupError):
    logger.error(f"Backup failure on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": f"Backup failed: {exc}"}
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """
    Global exception handler - prevents sensitive information leakage
    """
    logger.error(f"Unhandled exception on {request.method} {request.url}: {exc}", exc_info=True)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error. Please contact support if this persists."}
    )


@app.get("/health")
async def health_check():
    """
    Health check endpoint
    """
    database = await check_connection()
    cache = await ping_redis()
    return {
        "status": "healthy" if database and cache else "degraded",
        "service": "flowstack-server",
        "version": settings.VERSION,
        "database": database,
        "redis": cache,
    }


for module in (
    organizations,
    workspaces,
    invitations,
    roles,
    permissions,
    identity_providers,
    sso,
    api_keys,
    audit_logs,
    rate_limit,
    backups,
    nodes,
    users,
):
    app.include_router(module.router)


def custom_openapi():
    if app.openapi_schema:
        return app.openapi_schema

    openapi_schema = get_openapi(
        title=f"{settings.APP_NAME} API",
        version=settings.VERSION,
        description="Multi-tenant organization, access control and SSO API",
        routes=app.routes,
    )

    openapi_schema["components"]["securitySchemes"] = {
        "bearerAuth": {
            "type": "http",
            "scheme": "bearer",
            "bearerFormat": "JWT"
        },
        "apiKey": {
            "type": "apiKey",
            "in": "header",
            "name": "X-API-Key"
        }
    }

    app.openapi_schema = openapi_schema
    return app.openapi_schema


app.openapi = custom_openapi


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=settings.PORT,
        reload=settings.DEBUG,
        log_config=None
    )
