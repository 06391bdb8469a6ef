"""
Admin-only webhook operations router.
Requires X-Admin-Key header for all endpoints.
Handles delivery listing and replay of failed deliveries.
"""

import logging
from typing import Optional, List, Dict, Any
from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field

from stripe_sync.core.admin_auth import verify_admin_key
from stripe_sync.features.webhooks.admin_service import list_webhook_events, replay_webhook_event

logger = logging.getLogger("stripe_sync.admin")

router = APIRouter(prefix="/v1/admin/webhooks")


class WebhookReplayRequest(BaseModel):
    """Request to replay a webhook event."""
    event_id: str = Field(..., description="Stripe event id (evt_...)")
    force: bool = Field(default=False, description="Re-run the merge even if already applied")


@router.get("/events", dependencies=[Depends(verify_admin_key)])
async def get_webhook_events(
    status: Optional[str] = Query(None, description="applied | failed"),
    limit: int = Query(50, ge=1, le=500),
) -> Dict[str, Any]:
    events: List[Dict[str, Any]] = list_webhook_events(status=status, limit=limit)
    return {"total": len(events), "events": events}


@router.post("/replay", dependencies=[Depends(verify_admin_key)])
async def replay_event(body: WebhookReplayRequest, request: Request) -> Dict[str, Any]:
    """
    Replay a recorded delivery.

    A failed delivery runs the full merge and handler sequence again. An
    applied one is left alone unless force=true, which re-runs the merge only.
    """
    logger.info("[admin_webhooks] replay requested for %s (force=%s)", body.event_id, body.force)
    return await replay_webhook_event(body.event_id, request.app.state.handler_registry, force=body.force)
