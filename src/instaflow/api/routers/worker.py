"""Worker/internal routes (APP_ROLE=worker)."""

from fastapi import APIRouter

from instaflow.api.routes import tasks_jobs

router = APIRouter()
router.include_router(tasks_jobs.router)


@router.get("/tasks/health")
def tasks_health() -> dict:
    """Tasks subsystem health check."""
    return {"status": "ok", "subsystem": "tasks"}


@router.get("/internal/health")
def internal_health() -> dict:
    return {"status": "ok", "subsystem": "internal"}
