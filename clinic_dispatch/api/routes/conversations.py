# ============================================================================
# SCOPE: API (Messaging)
# Description: Conversation threads and operator replies.
# ============================================================================
"""
Conversation Endpoints.

ENDPOINTS:
  - GET /conversations → Threads grouped by phone key, most recent first
  - GET /conversations/{phone_key}/messages → Messages of one thread
  - POST /conversations/{phone_key}/reply → Free-text operator reply
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from clinic_dispatch.api.dependencies import get_container
from clinic_dispatch.core.container import DependencyContainer
from clinic_dispatch.domains.messaging.application.dto import OperatorReplyRequest, UseCaseResult

router = APIRouter()
logger = logging.getLogger(__name__)

ERROR_STATUS_CODES = {
    "invalid_request": 400,
    "not_found": 404,
    "session_expired": 409,
    "channel_error": 502,
}


class ReplyBody(BaseModel):
    body: str = Field(..., min_length=1, max_length=4096, description="Text sent to the patient")


def _unwrap(result: UseCaseResult):
    if result.success:
        return result.data
    raise HTTPException(
        status_code=ERROR_STATUS_CODES.get(result.error_code or "", 500),
        detail={"code": result.error_code, "message": result.error_message},
    )


@router.get("/conversations")
async def list_conversations(
    limit: int = Query(50, ge=1, le=500),
    container: DependencyContainer = Depends(get_container),  # noqa: B008
):
    use_case = container.create_list_conversations_use_case()
    return _unwrap(await use_case.execute(limit=limit))


@router.get("/conversations/{phone_key}/messages")
async def conversation_messages(
    phone_key: str,
    limit: int = Query(200, ge=1, le=1000),
    container: DependencyContainer = Depends(get_container),  # noqa: B008
):
    use_case = container.create_list_conversations_use_case()
    return _unwrap(await use_case.messages(phone_key, limit=limit))


@router.post("/conversations/{phone_key}/reply")
async def reply_to_conversation(
    phone_key: str,
    reply: ReplyBody,
    container: DependencyContainer = Depends(get_container),  # noqa: B008
):
    """
    Send an operator reply.

    Rejected with 409 when the 24h session window is closed, since only
    templates may be sent then.
    """
    use_case = container.create_send_operator_reply_use_case()
    result = await use_case.execute(OperatorReplyRequest(phone_key=phone_key, body=reply.body))
    return _unwrap(result)
