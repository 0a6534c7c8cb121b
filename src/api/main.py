import logging
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI

from src.adapters.sqlite.migrator import SQLiteMigrator
from src.api.deps import get_dispatcher, get_rules, get_settings, get_store

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    settings = get_settings()

    # Load rules and validate on startup (fail-fast)
    try:
        get_rules()
        logger.info("Rules loaded from %s", settings.rules_path)
    except (FileNotFoundError, ValueError) as e:
        logger.critical("Rules load failed: %s", e)
        sys.exit(1)

    if not settings.salt_secret:
        logger.critical("SITEPULSE_SALT_SECRET is not set")
        sys.exit(1)

    get_store()
    applied = SQLiteMigrator(settings.db_path).run_migrations()
    logger.info("Database ready at %s (%d migration(s) applied)", settings.db_path, len(applied))

    yield

    get_dispatcher().shutdown(wait=True)


app = FastAPI(
    title="SitePulse API",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# --- Routers ---
from src.api.routes import campaigns, collect, credential_sets, stats  # noqa: E402

app.include_router(collect.router, prefix="/api", tags=["Collect"])
app.include_router(campaigns.router, prefix="/api", tags=["Campaigns"])
app.include_router(credential_sets.router, prefix="/api/credential-sets", tags=["Credential Sets"])
app.include_router(stats.router, prefix="/api", tags=["Stats"])


@app.get("/health")
def health_check() -> dict[str, Any]:
    """Health check endpoint."""
    return {"status": "ok", "service": "api"}
