import logging
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI

from visibility_scheduler.adapters.sqlite.migrator import SQLiteMigrator
from visibility_scheduler.api.deps import get_settings
from visibility_scheduler.app_shell.config import validate_ops_rules
from visibility_scheduler.rules.loader import load_rules
from visibility_scheduler.services.scheduling import create_scheduling_service

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    settings = get_settings()

    # Load rules and validate on startup (fail-fast)
    try:
        rules = load_rules(settings.rules_path)
        validate_ops_rules(rules)
        logger.info("Rules loaded from %s", settings.rules_path)
    except Exception as e:
        logger.critical("Rules load failed: %s", e)
        sys.exit(1)

    settings.data_dir.mkdir(parents=True, exist_ok=True)
    SQLiteMigrator(settings.db_path).run_migrations()

    service = create_scheduling_service(rules, settings.db_path)
    app.state.scheduling_service = service
    service.start()

    yield

    service.stop()
    app.state.scheduling_service = None


app = FastAPI(
    title="Visibility Scheduler API",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# --- Routers ---
from visibility_scheduler.api.routes import admin_schedule  # noqa: E402

app.include_router(admin_schedule.router, prefix="/api/admin/schedule", tags=["Admin Schedule"])


@app.get("/health")
def health_check() -> dict[str, Any]:
    """Health check endpoint."""
    service = getattr(app.state, "scheduling_service", None)
    return {
        "status": "ok",
        "service": "api",
        "dispatcher_running": bool(service and service.dispatcher.is_running),
    }
