# ============================================================================
# SCOPE: API (Messaging)
# Description: Read-only views over the message ledger.
# ============================================================================
"""
Ledger Endpoints.

ENDPOINTS:
  - GET /ledger → Recent entries filtered by kind/status
  - GET /ledger/appointments/status?ids=1,2 → Latest entry per appointment
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from clinic_dispatch.api.dependencies import get_container
from clinic_dispatch.core.container import DependencyContainer
from clinic_dispatch.domains.messaging.domain import MessageKind, MessageStatus

router = APIRouter()
logger = logging.getLogger(__name__)

MAX_STATUS_IDS = 200


def _parse_csv(raw: str | None) -> list[str]:
    if not raw:
        return []
    return [item.strip() for item in raw.split(",") if item.strip()]


@router.get("/ledger")
async def list_ledger(
    kind: str | None = Query(None, description="Comma separated kinds"),
    status: str | None = Query(None, description="Comma separated statuses"),
    lookback_minutes: int | None = Query(None, ge=1),
    limit: int = Query(100, ge=1, le=1000),
    container: DependencyContainer = Depends(get_container),  # noqa: B008
):
    try:
        kinds = [MessageKind(k.lower()) for k in _parse_csv(kind)] or None
        statuses = [MessageStatus(s.lower()) for s in _parse_csv(status)] or None
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    entries = await container.get_ledger().find_recent(
        kinds=kinds,
        statuses=statuses,
        lookback_minutes=lookback_minutes,
        limit=limit,
    )
    return {"entries": [e.to_dict() for e in entries], "total": len(entries)}


@router.get("/ledger/appointments/status")
async def appointment_statuses(
    ids: str = Query(..., description="Comma separated appointment ids"),
    container: DependencyContainer = Depends(get_container),  # noqa: B008
):
    """Most recent ledger entry of each requested appointment."""
    try:
        appointment_ids = sorted({int(raw) for raw in _parse_csv(ids)})
    except ValueError as e:
        raise HTTPException(status_code=400, detail="ids must be integers") from e
    if not appointment_ids or len(appointment_ids) > MAX_STATUS_IDS:
        raise HTTPException(status_code=400, detail=f"Provide between 1 and {MAX_STATUS_IDS} ids")

    latest = await container.get_ledger().latest_statuses_for(appointment_ids)
    return {
        "statuses": {
            str(appointment_id): latest[appointment_id].to_dict() if appointment_id in latest else None
            for appointment_id in appointment_ids
        }
    }
