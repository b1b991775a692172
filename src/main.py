import logging
from contextlib import asynccontextmanager

from fastapi import APIRouter, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from src.config.logging_config import configure_logging
from src.config.settings import settings
from src.database.client import close_db, get_session, init_db
from src.features.account.router import router as account_router
from src.features.auth.refresh_store import RefreshTokenStore
from src.features.auth.router import router as auth_router
from src.shared.error_handlers import register_error_handlers
from src.shared.rate_limit import limiter, rate_limit_handler

configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    """Handle startup and shutdown events."""
    # Startup
    await init_db()
    if settings.purge_expired_tokens_on_startup:
        async with get_session() as session:
            await RefreshTokenStore.purge_expired(session)
    logger.info(f"{settings.app_name} started ({settings.environment})")
    yield
    # Shutdown
    await close_db()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    lifespan=lifespan,
    docs_url=None if settings.environment == "production" else "/docs",
    redoc_url=None if settings.environment == "production" else "/redoc",
)

# Add rate limiting middleware
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_handler)
app.add_middleware(SlowAPIMiddleware)

register_error_handlers(app)

# Credentials are required so browsers send the refresh cookie cross-origin
if settings.cors_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type"],
    )

# Router Registration
routers: list[APIRouter] = [
    auth_router,
    account_router,
]

for router in routers:
    app.include_router(router, prefix=settings.api_prefix)


@app.get("/")
async def root():
    return {"message": settings.app_name, "status": "running"}


@app.get("/health")
async def health():
    return {"status": "healthy"}
