"""Stripe webhook endpoint."""

from __future__ import annotations

import hmac
import logging

from fastapi import APIRouter, Header, Request, status
from starlette.concurrency import run_in_threadpool

from tabletop_scribe.api.dependencies import get_container
from tabletop_scribe.errors import ApiError, ErrorCode, not_found, validation_error
from tabletop_scribe.services.referrals import BillingGatewayError, WebhookSignatureError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/stripe", tags=["stripe"])


@router.post("/webhook/{webhook_uuid}")
async def stripe_webhook(
    webhook_uuid: str,
    request: Request,
    stripe_signature: str | None = Header(default=None, alias="stripe-signature"),
) -> dict[str, bool]:
    """Verify a Stripe event and run the referral handler for checkouts."""
    container = get_container(request)
    if not hmac.compare_digest(
        webhook_uuid.encode(), container.settings.stripe_webhook_uuid.encode()
    ):
        raise not_found("Not found")
    if not stripe_signature:
        raise validation_error("Missing stripe-signature")
    payload = await request.body()
    try:
        event = container.billing_gateway.construct_event(payload, stripe_signature)
    except WebhookSignatureError as exc:
        logger.warning("Rejected Stripe webhook: %s", exc)
        raise validation_error("Webhook processing error") from exc
    try:
        outcome = await run_in_threadpool(
            container.referral_webhook_handler.handle_event, event
        )
    except BillingGatewayError as exc:
        logger.exception(
            "Error handling Stripe webhook", extra={"event_id": event.get("id")}
        )
        raise ApiError(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            ErrorCode.REFERRAL_ERROR,
            "Webhook processing error",
        ) from exc
    if outcome is not None:
        logger.info(
            "Processed checkout webhook",
            extra={"event_id": event.get("id"), "outcome": outcome.value},
        )
    return {"received": True}
