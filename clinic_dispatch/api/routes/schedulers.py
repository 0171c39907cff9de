# ============================================================================
# SCOPE: API (Messaging)
# Description: Scheduler status and manual runs.
# ============================================================================
"""
Scheduler Endpoints.

ENDPOINTS:
  - GET /schedulers → Status of dispatch, reminder and retry jobs
  - POST /schedulers/{name}/run → Trigger one single-flight run now
"""

import logging

from fastapi import APIRouter, Depends, HTTPException

from clinic_dispatch.api.dependencies import get_container
from clinic_dispatch.core.container import DependencyContainer

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/schedulers")
async def list_schedulers(
    container: DependencyContainer = Depends(get_container),  # noqa: B008
):
    return {name: scheduler.get_status() for name, scheduler in container.get_schedulers().items()}


@router.post("/schedulers/{name}/run")
async def run_scheduler(
    name: str,
    container: DependencyContainer = Depends(get_container),  # noqa: B008
):
    """Run a scheduler now, even when its periodic job is disabled."""
    scheduler = container.get_scheduler(name)
    if scheduler is None:
        raise HTTPException(status_code=404, detail=f"Unknown scheduler: {name}")

    logger.info(f"Manual run requested for {name} scheduler")
    summary = await scheduler.run_once()
    return summary.to_dict()
