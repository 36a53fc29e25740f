"""Referral program endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request, status
from starlette.concurrency import run_in_threadpool

from tabletop_scribe.api.dependencies import get_container, require_user
from tabletop_scribe.domain.referrals import ReferralCode
from tabletop_scribe.errors import ApiError, ErrorCode
from tabletop_scribe.services.auth import AuthenticatedUser
from tabletop_scribe.services.referrals import BillingGatewayError, ReferralService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/referrals", tags=["referrals"])


async def require_referrals_enabled(request: Request) -> None:
    """Answer 503 while the referral feature is switched off."""
    if not get_container(request).feature_flags.referral_system:
        raise ApiError(
            status.HTTP_503_SERVICE_UNAVAILABLE,
            ErrorCode.FEATURE_DISABLED,
            "Referral system is currently disabled",
        )


@router.get("/status")
async def referral_status(request: Request) -> dict[str, object]:
    """Return whether referrals are enabled and their public terms."""
    return get_container(request).feature_flags.public_status()


@router.post("/code", dependencies=[Depends(require_referrals_enabled)])
async def create_referral_code(
    request: Request, user: AuthenticatedUser = Depends(require_user)
) -> dict[str, object]:
    """Return the caller's referral code, creating it on first request."""
    referral_service = get_container(request).referral_service
    try:
        referral_code = await run_in_threadpool(
            _ensure_code, referral_service, user
        )
    except BillingGatewayError as exc:
        logger.exception("Error creating referral code", extra={"sub": user.sub})
        raise ApiError(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            ErrorCode.REFERRAL_ERROR,
            "Failed to create referral code",
        ) from exc
    return {
        "code": referral_code.code,
        "createdAt": referral_code.created_at.isoformat(),
    }


@router.get("", dependencies=[Depends(require_referrals_enabled)])
async def referral_summary(
    request: Request, user: AuthenticatedUser = Depends(require_user)
) -> dict[str, object]:
    """Return the caller's referral code, rewards and monthly statistics."""
    referral_service = get_container(request).referral_service
    return await run_in_threadpool(_summary, referral_service, user)


def _ensure_code(
    referral_service: ReferralService, user: AuthenticatedUser
) -> ReferralCode:
    record = referral_service.get_or_create_user(user.email, user.sub)
    return referral_service.create_referral_code(record.id)


def _summary(
    referral_service: ReferralService, user: AuthenticatedUser
) -> dict[str, object]:
    record = referral_service.get_or_create_user(user.email, user.sub)
    return referral_service.summary(record.id)
