# ============================================================================
# SCOPE: API (Messaging)
# Description: WhatsApp webhook endpoints: verification handshake, inbound
#              envelope processing and the activity log.
# ============================================================================
"""
WhatsApp Webhook Endpoints.

ENDPOINTS:
  - GET /webhook → Verification handshake (hub.challenge)
  - POST /webhook → Inbound messages and delivery receipts
  - GET /webhook/activity → Recent webhook events for diagnostics

The POST endpoint verifies the signature, answers immediately and runs the
envelope through `ProcessWebhookUseCase` in the background.
"""

import json
import logging
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse

from clinic_dispatch.api.dependencies import get_container
from clinic_dispatch.core.container import DependencyContainer
from clinic_dispatch.domains.messaging.application.services import SignatureMode

router = APIRouter()
logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Hub-Signature-256"


@router.get("/webhook", response_class=PlainTextResponse)
async def verify_webhook(
    hub_mode: str | None = Query(None, alias="hub.mode"),
    hub_verify_token: str | None = Query(None, alias="hub.verify_token"),
    hub_challenge: str | None = Query(None, alias="hub.challenge"),
    container: DependencyContainer = Depends(get_container),  # noqa: B008
):
    """Answer the provider's subscription handshake."""
    expected = container.settings.WHATSAPP_VERIFY_TOKEN
    if hub_mode == "subscribe" and expected and hub_verify_token == expected:
        logger.info("Webhook verification succeeded")
        return PlainTextResponse(hub_challenge or "")

    logger.warning(f"Webhook verification failed (mode={hub_mode})")
    raise HTTPException(status_code=403, detail="Verification failed")


def _summarize(payload: dict[str, Any]) -> tuple[int, int]:
    """Count messages and receipts without validating the envelope."""
    messages = statuses = 0
    for entry in payload.get("entry") or []:
        for change in (entry or {}).get("changes") or []:
            value = (change or {}).get("value") or {}
            messages += len(value.get("messages") or [])
            statuses += len(value.get("statuses") or [])
    return messages, statuses


async def _process_in_background(container: DependencyContainer, payload: dict[str, Any]) -> None:
    use_case = container.create_process_webhook_use_case()
    try:
        result = await use_case.execute(payload)
    except Exception as e:
        logger.error(f"Webhook background processing failed: {e}", exc_info=True)
        container.get_activity_log().append("processing_error", error=str(e))
        return

    if not result.success:
        container.get_activity_log().append("parse_error", payload=payload, error=result.error_code)
        return

    for outcome in result.data["messages"]:
        logger.info(
            f"Inbound {outcome['provider_message_id']}: intent={outcome['intent']} "
            f"action={outcome['action']} appointment={outcome['appointment_id']}"
        )


@router.post("/webhook")
async def receive_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    container: DependencyContainer = Depends(get_container),  # noqa: B008
):
    """
    Accept a webhook envelope.

    Returns 401 on a missing or invalid signature, 503 when a signature is
    required but no secret is configured, 400 on malformed JSON and an
    immediate acknowledgement otherwise.
    """
    activity = container.get_activity_log()
    correlation_id = getattr(request.state, "correlation_id", None)
    raw_body = await request.body()

    check = container.get_signature_verifier().verify(raw_body, request.headers.get(SIGNATURE_HEADER))
    if not check.accepted:
        activity.append(
            "signature_rejected",
            reason=check.reason,
            mode=check.mode.value,
            correlation_id=correlation_id,
        )
        if check.mode is SignatureMode.MISCONFIGURED:
            raise HTTPException(status_code=503, detail="Webhook secret is not configured")
        raise HTTPException(status_code=401, detail=f"Invalid signature: {check.reason}")

    try:
        payload = json.loads(raw_body)
    except json.JSONDecodeError as e:
        logger.error(f"Invalid JSON in webhook: {e}")
        activity.append("parse_error", error="invalid_json", correlation_id=correlation_id)
        raise HTTPException(status_code=400, detail="Invalid JSON") from e

    if not isinstance(payload, dict):
        activity.append("parse_error", payload=payload, error="not_an_object", correlation_id=correlation_id)
        raise HTTPException(status_code=400, detail="Webhook payload must be a JSON object")

    messages, statuses = _summarize(payload)
    if messages:
        activity.append(
            "message",
            payload=payload,
            count=messages,
            signature=check.mode.value,
            correlation_id=correlation_id,
        )
    if statuses:
        activity.append(
            "status",
            payload=payload,
            count=statuses,
            signature=check.mode.value,
            correlation_id=correlation_id,
        )

    background_tasks.add_task(_process_in_background, container, payload)

    return {
        "status": "accepted",
        "messages": messages,
        "statuses": statuses,
        "signature_mode": check.mode.value,
    }


@router.get("/webhook/activity")
async def webhook_activity(
    limit: int = Query(50, ge=1, le=200),
    event_type: str | None = Query(None, alias="type"),
    container: DependencyContainer = Depends(get_container),  # noqa: B008
):
    """Most recent webhook events, newest first."""
    log = container.get_activity_log()
    events = log.recent(limit=limit, event_type=event_type)
    return {"events": events, "total": len(events), "capacity": log.capacity}
