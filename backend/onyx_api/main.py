import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

# Set SSL certificate paths BEFORE any other imports that use SSL.
# Prefer repo-level combined bundle (for corp roots like Zscaler); fall back to certifi.
import certifi
_repo_root = Path(__file__).resolve().parents[2]
_combined_ca = _repo_root / "certs" / "combined.pem"
_ca_path = _combined_ca if _combined_ca.exists() else Path(certifi.where())
os.environ.setdefault("SSL_CERT_FILE", str(_ca_path))
os.environ.setdefault("REQUESTS_CA_BUNDLE", str(_ca_path))

from dotenv import load_dotenv

# Load environment variables before settings are read
load_dotenv()

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from onyx_api.api import (
    ai,
    folders,
    integrations,
    messages,
    milestones,
    notes,
    stripe,
    subtasks,
    suggested_tasks,
    tasks,
    users,
)
from onyx_api.api.middleware import BodySizeLimitMiddleware, RateLimitMiddleware
from onyx_api.core.config import settings
from onyx_api.core.database import AsyncSessionLocal, engine
from onyx_api.core.errors import register_exception_handlers

logger = logging.getLogger(__name__)

ROUTERS = [
    users.router,
    folders.router,
    tasks.router,
    subtasks.router,
    notes.router,
    suggested_tasks.router,
    messages.task_messages_router,
    messages.assistant_messages_router,
    integrations.router,
    ai.router,
    milestones.router,
    stripe.router,
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler"""
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info(f"Starting {settings.project_name} ({settings.environment})...")
    logger.info(f"API prefixes: {settings.api_v1_prefix}, {settings.legacy_api_prefix}")
    yield
    logger.info(f"Shutting down {settings.project_name}...")
    await engine.dispose()


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.project_name,
        description="Task management API with subscription-tiered AI assistance",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Middleware runs outermost-last: CORS wraps everything
    app.add_middleware(BodySizeLimitMiddleware, max_bytes=settings.max_body_bytes)
    app.add_middleware(
        RateLimitMiddleware,
        requests_per_minute=settings.rate_limit_per_minute,
        trusted_proxies=settings.trusted_proxies,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list({settings.frontend_url, *settings.allowed_origins}),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    # Versioned API, plus the unversioned prefix kept for existing clients
    for router in ROUTERS:
        app.include_router(router, prefix=settings.api_v1_prefix)
        app.include_router(router, prefix=settings.legacy_api_prefix, include_in_schema=False)

    @app.get("/health")
    async def health_check():
        """Check API and database health"""
        try:
            async with AsyncSessionLocal() as session:
                await session.execute(text("SELECT 1"))
            database = "connected"
        except Exception as e:
            logger.error(f"Health check database failure: {e}")
            database = "disconnected"
        return {"status": "ok", "database": database}

    return app


app = create_app()
