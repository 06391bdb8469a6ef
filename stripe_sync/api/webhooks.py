"""
Stripe webhook endpoint.

Reads the raw body (required for signature verification) and hands it to the
delivery sequencer. The status code comes from the outcome reporter:

- 200: applied, duplicate, or applied with failing handlers
- 400: bad signature or malformed event (the provider does not retry)
- 500: merge failed (the provider retries later)
"""
from typing import Optional

from fastapi import APIRouter, Header, Request
from fastapi.responses import JSONResponse

from stripe_sync.features.webhooks.reporter import build_response
from stripe_sync.features.webhooks.router import HandlerRegistry
from stripe_sync.features.webhooks.sequencer import process_delivery


def build_router(path: str) -> APIRouter:
    """Router exposing the webhook receiver at the configured path."""
    router = APIRouter(tags=["webhooks"])

    @router.post(path)
    async def receive_webhook(request: Request, stripe_signature: Optional[str] = Header(None)):
        body = await request.body()
        cfg = request.app.state.settings
        registry: HandlerRegistry = request.app.state.handler_registry

        outcome = await process_delivery(
            body,
            stripe_signature,
            registry,
            secret=cfg.STRIPE_WEBHOOK_SECRET,
            monotonic=cfg.MONOTONIC_EVENT_GUARD,
        )
        result = build_response(outcome, request_id=getattr(request.state, "request_id", None))
        return JSONResponse(status_code=result.status_code, content=result.body)

    return router
