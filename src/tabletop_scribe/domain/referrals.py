"""Domain models for the referral program."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


@dataclass(frozen=True)
class UserRecord:
    """A user known to the referral program."""

    id: int
    email: str | None
    cognito_sub: str
    stripe_customer_id: str | None = None


@dataclass(frozen=True)
class ReferralCode:
    """A user's shareable referral code backed by a Stripe promotion code."""

    id: int
    user_id: int
    code: str
    stripe_promotion_code_id: str
    stripe_coupon_id: str
    created_at: datetime


@dataclass(frozen=True)
class ReferralReward:
    """A one-time reward issued to a referrer."""

    id: int
    referrer_user_id: int
    referred_user_id: int
    stripe_promotion_code_id: str
    stripe_coupon_id: str
    stripe_checkout_session_id: str
    redeemed: bool
    created_at: datetime


@dataclass(frozen=True)
class PromotionCode:
    """Subset of a Stripe promotion code used by the referral program."""

    id: str
    code: str
    coupon_id: str
    metadata: dict[str, str]


@dataclass(frozen=True)
class CheckoutSummary:
    """The parts of a completed Stripe checkout the referral program reads."""

    id: str
    customer_id: str | None
    amount_total: int
    payment_intent_id: str | None
    promotion_code_ids: list[str]


@dataclass(frozen=True)
class CardFingerprint:
    """Card fingerprint and the payment method it came from."""

    fingerprint: str
    payment_method_id: str


class ReferralOutcome(Enum):
    """Branch taken while evaluating a completed checkout."""

    DISABLED = "disabled"
    ALREADY_PROCESSED = "already_processed"
    NO_CUSTOMER = "no_customer"
    BELOW_MINIMUM = "below_minimum"
    NO_REFERRAL_CODE = "no_referral_code"
    UNKNOWN_REFERRAL_CODE = "unknown_referral_code"
    UNKNOWN_CUSTOMER = "unknown_customer"
    SELF_REFERRAL = "self_referral"
    CARD_REUSED = "card_reused"
    MONTHLY_CAP_REACHED = "monthly_cap_reached"
    REWARD_ISSUED = "reward_issued"
