"""Media server webhook receiver."""

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends
from pydantic import ValidationError

from core.dependencies import get_dispatcher
from notifications.dispatcher import NotificationDispatcher
from notifications.models import WebhookPayload, WebhookResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhook"])


@router.post("/webhook", response_model=WebhookResponse, summary="Receive an Emby event")
async def receive_webhook(
    payload: Any = Body(None),
    dispatcher: NotificationDispatcher | None = Depends(get_dispatcher),
):
    """Accept any JSON body; only library arrivals with item details are announced."""
    if not isinstance(payload, dict):
        logger.warning(f"Ignoring webhook body of type {type(payload).__name__}")
        return WebhookResponse(dispatched=False)

    try:
        event = WebhookPayload.model_validate(payload)
    except ValidationError as e:
        logger.warning(f"Ignoring malformed webhook payload: {e.error_count()} errors")
        return WebhookResponse(dispatched=False)

    if dispatcher is None:
        logger.warning(f"Webhook event '{event.event}' received but no chat transport is running")
        return WebhookResponse(dispatched=False)

    dispatched = await dispatcher.handle_event(event)
    return WebhookResponse(dispatched=dispatched)
