"""FastAPI main application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from factory_rbac import __version__
from factory_rbac.core.config import settings
from factory_rbac.core.middleware import setup_middleware
from factory_rbac.core.rate_limiter import limiter
from factory_rbac.core.exceptions import FactoryAppError

from factory_rbac.api.auth import router as auth_router
from factory_rbac.api.roles import router as roles_router
from factory_rbac.api.users import router as users_router
from factory_rbac.api.registration_codes import router as registration_codes_router
from factory_rbac.api.organization import router as organization_router
from factory_rbac.api.admin import router as admin_router

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("factory_rbac")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info("Starting %s (role cache: %s)", settings.APP_NAME, settings.ROLE_CACHE_BACKEND)
    from factory_rbac.services.role_cache import role_cache
    if role_cache.health_check():
        logger.info("Role cache ready")
    else:
        logger.warning("Role cache backend not reachable; reads fall back to the database")
    if settings.WORKERS > 1 and role_cache.process_local:
        logger.warning(
            "WORKERS=%d with a process-local role cache: role changes reach other "
            "workers only after ROLE_CACHE_TTL_SECONDS=%d. Use ROLE_CACHE_BACKEND=redis.",
            settings.WORKERS, settings.ROLE_CACHE_TTL_SECONDS,
        )

    yield

    logger.info("Shutting down %s", settings.APP_NAME)


app = FastAPI(
    title="Factory Access Control API",
    description="Role-based access control for the factory management app",
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# Middleware
setup_middleware(app)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(FactoryAppError)
async def factory_exception_handler(request: Request, exc: FactoryAppError):
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
    )

# Register routers
app.include_router(auth_router, prefix="/api")
app.include_router(roles_router, prefix="/api")
app.include_router(users_router, prefix="/api")
app.include_router(registration_codes_router, prefix="/api")
app.include_router(organization_router, prefix="/api")
app.include_router(admin_router, prefix="/api")


@app.get("/")
async def root():
    return {
        "name": settings.APP_NAME,
        "version": __version__,
        "docs": "/docs",
    }


@app.get("/api/health")
async def health():
    """Quick health check endpoint."""
    return {"status": "ok"}
