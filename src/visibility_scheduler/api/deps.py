from functools import lru_cache

from fastapi import HTTPException, Request, status

from visibility_scheduler.app_shell.config import Settings
from visibility_scheduler.services.scheduling import SchedulingService


@lru_cache
def get_settings() -> Settings:
    return Settings()


# --- Services ---
def get_scheduling_service(request: Request) -> SchedulingService:
    """The service built at startup by the app lifespan."""
    service = getattr(request.app.state, "scheduling_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Scheduler not initialized",
        )
    return service
