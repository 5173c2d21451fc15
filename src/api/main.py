import logging
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI

from src.adapters.poller import BackgroundPoller
from src.adapters.sqlite.migrator import SQLiteMigrator
from src.api.deps import build_pass_runner, get_clock, get_settings
from src.rules.loader import load_rules

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    settings = get_settings()

    # Load rules and validate on startup (fail-fast)
    try:
        rules = load_rules(settings.rules_path)
        logger.info("Rules loaded from %s", settings.rules_path)
    except Exception as e:
        logger.critical("Rules load failed: %s", e)
        sys.exit(1)

    SQLiteMigrator(settings.db_path, settings.migrations_dir).run_migrations()

    if not settings.cron_api_key:
        logger.warning("CRON_API_KEY is not set; the cron publish trigger is disabled")

    poller: BackgroundPoller | None = None
    if rules.triggers.poller.enabled:
        poller = BackgroundPoller(
            build_pass_runner(settings.db_path, rules, get_clock()),
            interval_seconds=rules.triggers.poller.interval_seconds,
        )
        poller.start()
    app.state.poller = poller

    yield

    if poller is not None:
        poller.stop()


app = FastAPI(
    title="Story Press API",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# --- Routers ---
from src.api.routes import (  # noqa: E402
    admin_publish,
    author_schedule,
    chapter_schedule,
)

app.include_router(admin_publish.router, prefix="/api/admin", tags=["Admin Publish"])
app.include_router(chapter_schedule.router, prefix="/api/chapters", tags=["Chapter Schedule"])
app.include_router(author_schedule.router, prefix="/api/user", tags=["Author Schedule"])


@app.get("/health")
def health_check() -> dict[str, Any]:
    """Health check endpoint."""
    return {"status": "ok", "service": "story-press"}
