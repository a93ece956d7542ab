"""Vault webhook receiver.

The raw body is checked against the ``X-Webhook-Signature`` (or
``X-Hub-Signature-256``) header before it is parsed.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from pydantic import ValidationError

from vaultsync.api.deps import get_webhook_service
from vaultsync.config import Settings, get_settings
from vaultsync.schemas.jsonapi import JSONAPIResource, JSONAPISingleResponse
from vaultsync.schemas.webhook import WebhookEvent
from vaultsync.services.webhook_service import WebhookService

router = APIRouter()


@router.post("/vaultwarden")
async def receive_webhook(
    request: Request,
    x_webhook_signature: str | None = Header(default=None, alias="X-Webhook-Signature"),
    x_hub_signature_256: str | None = Header(default=None, alias="X-Hub-Signature-256"),
    service: WebhookService = Depends(get_webhook_service),
    settings: Settings = Depends(get_settings),
) -> JSONAPISingleResponse:
    """Validate and process one vault webhook event."""
    if not settings.webhook_enabled:
        raise HTTPException(status_code=404, detail="Webhooks are disabled")

    payload = await request.body()
    if not service.validate_signature(payload, x_webhook_signature or x_hub_signature_256):
        raise HTTPException(status_code=401, detail="Invalid webhook signature")

    try:
        event = WebhookEvent.model_validate_json(payload)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid webhook payload: {exc}") from exc

    result = await service.process(event)
    return JSONAPISingleResponse(
        data=JSONAPIResource(
            type="webhook-results",
            id=event.item_id or event.event_type,
            attributes=result.model_dump(),
        )
    )
