"""Referral codes, rewards and their Stripe backing."""

import logging
import secrets
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Protocol

from tabletop_scribe.domain.referrals import (
    CardFingerprint,
    CheckoutSummary,
    PromotionCode,
    ReferralCode,
    ReferralReward,
    UserRecord,
)
from tabletop_scribe.feature_flags import FeatureFlags

logger = logging.getLogger(__name__)

BASE_COUPON_ID = "referral_5_off"
REFERRAL_CODE_TYPE = "referral"
REWARD_CODE_TYPE = "referral_reward"


class BillingGatewayError(RuntimeError):
    """Raised when the billing provider rejects or fails a request."""


class WebhookSignatureError(ValueError):
    """Raised when a webhook payload or its signature is invalid."""


class ReferralRepository(Protocol):
    """Persistence interface for referral data."""

    def get_user_by_cognito_sub(self, cognito_sub: str) -> UserRecord | None:
        """Return the user with a Cognito subject, if present."""

    def create_user(self, email: str | None, cognito_sub: str) -> UserRecord:
        """Create a user and return it."""

    def get_user_by_stripe_customer_id(self, customer_id: str) -> UserRecord | None:
        """Return the user linked to a Stripe customer, if present."""

    def update_user_stripe_customer_id(self, user_id: int, customer_id: str) -> None:
        """Link a user to a Stripe customer."""

    def get_referral_code_for_user(self, user_id: int) -> ReferralCode | None:
        """Return a user's referral code, if one exists."""

    def get_referral_code_by_promotion_code_id(
        self, promotion_code_id: str
    ) -> ReferralCode | None:
        """Return the referral code backed by a Stripe promotion code."""

    def create_referral_code(
        self, user_id: int, code: str, promotion_code_id: str, coupon_id: str
    ) -> ReferralCode:
        """Persist a referral code and return it."""

    def list_rewards(self, referrer_user_id: int) -> list[ReferralReward]:
        """Return all rewards issued to a referrer."""

    def count_rewards_since(self, referrer_user_id: int, since: datetime) -> int:
        """Count rewards issued to a referrer at or after a timestamp."""

    def create_reward(  # noqa: PLR0913
        self,
        referrer_user_id: int,
        referred_user_id: int,
        promotion_code_id: str,
        coupon_id: str,
        checkout_session_id: str,
    ) -> ReferralReward:
        """Persist a reward and return it."""

    def store_card_fingerprint(
        self, user_id: int, fingerprint: str, payment_method_id: str | None
    ) -> None:
        """Remember a card fingerprint for a user; duplicates are ignored."""

    def list_card_fingerprints(self, user_id: int) -> set[str]:
        """Return the card fingerprints seen for a user."""

    def is_checkout_processed(self, checkout_session_id: str) -> bool:
        """Return true when a checkout has already been evaluated."""

    def mark_checkout_processed(
        self,
        checkout_session_id: str,
        referral_code_id: int,
        referred_user_id: int,
        reward_issued: bool,
    ) -> None:
        """Record a checkout evaluation; duplicates are ignored."""


class BillingGateway(Protocol):
    """Interface for the billing provider used by referrals."""

    def get_or_create_coupon(self, coupon_id: str, amount_off: int, name: str) -> str:
        """Return a coupon id, creating the coupon when it does not exist."""

    def create_coupon(self, amount_off: int, name: str) -> str:
        """Create a one-time coupon and return its id."""

    def create_promotion_code(  # noqa: PLR0913
        self,
        coupon_id: str,
        code: str,
        metadata: dict[str, str],
        minimum_amount: int,
        first_time_transaction: bool = False,
    ) -> PromotionCode:
        """Create a promotion code for a coupon."""

    def retrieve_promotion_code(self, promotion_code_id: str) -> PromotionCode:
        """Fetch a promotion code."""

    def retrieve_checkout_session(self, checkout_session_id: str) -> CheckoutSummary:
        """Fetch a checkout session with its discount breakdown."""

    def get_card_fingerprint(self, payment_intent_id: str) -> CardFingerprint | None:
        """Return the card fingerprint behind a payment intent, if it has one."""

    def construct_event(self, payload: bytes, signature: str) -> dict[str, object]:
        """Verify a webhook signature and return the parsed event."""


def _utcnow() -> datetime:
    return datetime.now(tz=UTC)


def generate_referral_code() -> str:
    """Return eight random upper-case hex characters."""
    return secrets.token_hex(4).upper()


def start_of_month(moment: datetime) -> datetime:
    """Return midnight on the first day of the moment's month."""
    return moment.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


@dataclass
class ReferralService:
    """Manages referral codes and rewards."""

    repository: ReferralRepository
    gateway: BillingGateway
    flags: FeatureFlags
    clock: Callable[[], datetime] = field(default=_utcnow)
    code_generator: Callable[[], str] = field(default=generate_referral_code)

    def get_or_create_user(self, email: str | None, cognito_sub: str) -> UserRecord:
        """Return the user for a Cognito subject, creating it on first use."""
        existing = self.repository.get_user_by_cognito_sub(cognito_sub)
        if existing:
            return existing
        return self.repository.create_user(email, cognito_sub)

    def get_user_by_stripe_customer_id(self, customer_id: str) -> UserRecord | None:
        """Return the user linked to a Stripe customer."""
        return self.repository.get_user_by_stripe_customer_id(customer_id)

    def link_stripe_customer(self, user_id: int, customer_id: str) -> None:
        """Link a user to a Stripe customer id."""
        self.repository.update_user_stripe_customer_id(user_id, customer_id)

    def create_referral_code(self, user_id: int) -> ReferralCode:
        """Return the user's referral code, creating it and its promotion code once."""
        existing = self.repository.get_referral_code_for_user(user_id)
        if existing:
            return existing
        coupon_id = self.gateway.get_or_create_coupon(
            BASE_COUPON_ID,
            amount_off=self.flags.referral_discount_amount,
            name=f"Referral - ${self.flags.referral_discount_amount / 100:g} Off",
        )
        code = self.code_generator()
        promotion_code = self.gateway.create_promotion_code(
            coupon_id=coupon_id,
            code=code,
            metadata={"referrer_user_id": str(user_id), "type": REFERRAL_CODE_TYPE},
            minimum_amount=self.flags.referral_min_purchase_amount,
            first_time_transaction=True,
        )
        referral_code = self.repository.create_referral_code(
            user_id=user_id,
            code=code,
            promotion_code_id=promotion_code.id,
            coupon_id=coupon_id,
        )
        logger.info("Referral code created", extra={"user_id": user_id})
        return referral_code

    def get_referral_code(self, user_id: int) -> ReferralCode | None:
        """Return a user's referral code, if any."""
        return self.repository.get_referral_code_for_user(user_id)

    def get_referral_code_by_promotion_code_id(
        self, promotion_code_id: str
    ) -> ReferralCode | None:
        """Resolve a Stripe promotion code to a stored referral code."""
        return self.repository.get_referral_code_by_promotion_code_id(
            promotion_code_id
        )

    def get_rewards(self, user_id: int) -> list[ReferralReward]:
        """Return all rewards issued to a user."""
        return self.repository.list_rewards(user_id)

    def get_monthly_reward_count(self, user_id: int) -> int:
        """Count rewards issued to a user in the current calendar month."""
        return self.repository.count_rewards_since(
            user_id, start_of_month(self.clock())
        )

    def summary(self, user_id: int) -> dict[str, object]:
        """Return a user's code, rewards and reward statistics."""
        referral_code = self.get_referral_code(user_id)
        rewards = self.get_rewards(user_id)
        return {
            "referralCode": (
                {
                    "code": referral_code.code,
                    "createdAt": referral_code.created_at.isoformat(),
                }
                if referral_code
                else None
            ),
            "rewards": [
                {
                    "id": reward.id,
                    "redeemed": reward.redeemed,
                    "createdAt": reward.created_at.isoformat(),
                }
                for reward in rewards
            ],
            "stats": {
                "totalRewards": len(rewards),
                "redeemedRewards": sum(1 for reward in rewards if reward.redeemed),
                "monthlyRewardCount": self.get_monthly_reward_count(user_id),
                "monthlyLimit": self.flags.referral_max_rewards_per_month,
            },
        }

    def store_card_fingerprint(
        self, user_id: int, fingerprint: str, payment_method_id: str | None = None
    ) -> None:
        """Remember a card fingerprint seen for a user."""
        self.repository.store_card_fingerprint(user_id, fingerprint, payment_method_id)

    def check_card_fingerprint_match(
        self, referrer_user_id: int, fingerprint: str
    ) -> bool:
        """Return true when the referrer has paid with the same card before."""
        return fingerprint in self.repository.list_card_fingerprints(referrer_user_id)

    def is_checkout_processed(self, checkout_session_id: str) -> bool:
        """Return true when a checkout has already been evaluated."""
        return self.repository.is_checkout_processed(checkout_session_id)

    def mark_checkout_processed(
        self,
        checkout_session_id: str,
        referral_code_id: int,
        referred_user_id: int,
        reward_issued: bool,
    ) -> None:
        """Record the outcome of a checkout evaluation."""
        self.repository.mark_checkout_processed(
            checkout_session_id=checkout_session_id,
            referral_code_id=referral_code_id,
            referred_user_id=referred_user_id,
            reward_issued=reward_issued,
        )

    def issue_referrer_reward(
        self, referrer_user_id: int, referred_user_id: int, checkout_session_id: str
    ) -> ReferralReward | None:
        """Issue a one-time reward unless the referrer hit the monthly cap."""
        limit = self.flags.referral_max_rewards_per_month
        if self.get_monthly_reward_count(referrer_user_id) >= limit:
            logger.info(
                "Referrer reached monthly reward limit",
                extra={"referrer_user_id": referrer_user_id, "limit": limit},
            )
            return None
        amount = self.flags.referral_discount_amount
        coupon_id = self.gateway.create_coupon(
            amount_off=amount,
            name=f"Referral Reward - ${amount / 100:g} Off",
        )
        promotion_code = self.gateway.create_promotion_code(
            coupon_id=coupon_id,
            code=f"{self.code_generator()}_REWARD",
            metadata={
                "reward_for_user_id": str(referrer_user_id),
                "referred_user_id": str(referred_user_id),
                "type": REWARD_CODE_TYPE,
            },
            minimum_amount=self.flags.referral_min_purchase_amount,
        )
        return self.repository.create_reward(
            referrer_user_id=referrer_user_id,
            referred_user_id=referred_user_id,
            promotion_code_id=promotion_code.id,
            coupon_id=coupon_id,
            checkout_session_id=checkout_session_id,
        )
