"""Supabase repository for users, referral codes, rewards and usage tracking."""

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from supabase import Client

from tabletop_scribe.domain.referrals import ReferralCode, ReferralReward, UserRecord
from tabletop_scribe.services.referrals import ReferralRepository

_USER_COLUMNS = "id, email, cognito_sub, stripe_customer_id"
_CODE_COLUMNS = (
    "id, user_id, code, stripe_promotion_code_id, stripe_coupon_id, created_at"
)
_REWARD_COLUMNS = (
    "id, referrer_user_id, referred_user_id, stripe_promotion_code_id, "
    "stripe_coupon_id, stripe_checkout_session_id, redeemed, created_at"
)


@dataclass
class SupabaseReferralRepository(ReferralRepository):
    """Supabase implementation for referral persistence."""

    client: Client

    def get_user_by_cognito_sub(self, cognito_sub: str) -> UserRecord | None:
        """Return the user with a Cognito subject, if present."""
        response = (
            self.client.table("users")
            .select(_USER_COLUMNS)
            .eq("cognito_sub", cognito_sub)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return _parse_user(response.data[0])

    def create_user(self, email: str | None, cognito_sub: str) -> UserRecord:
        """Create a user row and return it."""
        response = (
            self.client.table("users")
            .insert({"email": email, "cognito_sub": cognito_sub})
            .execute()
        )
        if not response.data:
            raise RuntimeError("Failed to create user in Supabase")
        return _parse_user(response.data[0])

    def get_user_by_stripe_customer_id(self, customer_id: str) -> UserRecord | None:
        """Return the user linked to a Stripe customer, if present."""
        response = (
            self.client.table("users")
            .select(_USER_COLUMNS)
            .eq("stripe_customer_id", customer_id)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return _parse_user(response.data[0])

    def update_user_stripe_customer_id(self, user_id: int, customer_id: str) -> None:
        """Link a user to a Stripe customer."""
        self.client.table("users").update({"stripe_customer_id": customer_id}).eq(
            "id", user_id
        ).execute()

    def get_referral_code_for_user(self, user_id: int) -> ReferralCode | None:
        """Return a user's referral code, if one exists."""
        response = (
            self.client.table("referral_codes")
            .select(_CODE_COLUMNS)
            .eq("user_id", user_id)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return _parse_code(response.data[0])

    def get_referral_code_by_promotion_code_id(
        self, promotion_code_id: str
    ) -> ReferralCode | None:
        """Return the referral code backed by a Stripe promotion code."""
        response = (
            self.client.table("referral_codes")
            .select(_CODE_COLUMNS)
            .eq("stripe_promotion_code_id", promotion_code_id)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return _parse_code(response.data[0])

    def create_referral_code(
        self, user_id: int, code: str, promotion_code_id: str, coupon_id: str
    ) -> ReferralCode:
        """Insert a referral code row and return it."""
        response = (
            self.client.table("referral_codes")
            .insert(
                {
                    "user_id": user_id,
                    "code": code,
                    "stripe_promotion_code_id": promotion_code_id,
                    "stripe_coupon_id": coupon_id,
                }
            )
            .execute()
        )
        if not response.data:
            raise RuntimeError("Failed to create referral code")
        return _parse_code(response.data[0])

    def list_rewards(self, referrer_user_id: int) -> list[ReferralReward]:
        """Return all rewards issued to a referrer, oldest first."""
        response = (
            self.client.table("referral_rewards")
            .select(_REWARD_COLUMNS)
            .eq("referrer_user_id", referrer_user_id)
            .order("created_at", desc=False)
            .execute()
        )
        return [_parse_reward(row) for row in response.data or []]

    def count_rewards_since(self, referrer_user_id: int, since: datetime) -> int:
        """Count rewards issued to a referrer at or after a timestamp."""
        response = (
            self.client.table("referral_rewards")
            .select("id")
            .eq("referrer_user_id", referrer_user_id)
            .gte("created_at", since.isoformat())
            .execute()
        )
        return len(response.data or [])

    def create_reward(  # noqa: PLR0913
        self,
        referrer_user_id: int,
        referred_user_id: int,
        promotion_code_id: str,
        coupon_id: str,
        checkout_session_id: str,
    ) -> ReferralReward:
        """Insert a reward row and return it."""
        response = (
            self.client.table("referral_rewards")
            .insert(
                {
                    "referrer_user_id": referrer_user_id,
                    "referred_user_id": referred_user_id,
                    "stripe_promotion_code_id": promotion_code_id,
                    "stripe_coupon_id": coupon_id,
                    "stripe_checkout_session_id": checkout_session_id,
                }
            )
            .execute()
        )
        if not response.data:
            raise RuntimeError("Failed to create referral reward")
        return _parse_reward(response.data[0])

    def store_card_fingerprint(
        self, user_id: int, fingerprint: str, payment_method_id: str | None
    ) -> None:
        """Insert a fingerprint row unless the pair is already stored."""
        self.client.table("user_card_fingerprints").upsert(
            {
                "user_id": user_id,
                "card_fingerprint": fingerprint,
                "stripe_payment_method_id": payment_method_id,
            },
            on_conflict="user_id,card_fingerprint",
            ignore_duplicates=True,
        ).execute()

    def list_card_fingerprints(self, user_id: int) -> set[str]:
        """Return the card fingerprints stored for a user."""
        response = (
            self.client.table("user_card_fingerprints")
            .select("card_fingerprint")
            .eq("user_id", user_id)
            .execute()
        )
        return {str(row["card_fingerprint"]) for row in response.data or []}

    def is_checkout_processed(self, checkout_session_id: str) -> bool:
        """Return true when a usage-tracking row exists for the checkout."""
        response = (
            self.client.table("referral_usage_tracking")
            .select("id")
            .eq("stripe_checkout_session_id", checkout_session_id)
            .limit(1)
            .execute()
        )
        return bool(response.data)

    def mark_checkout_processed(
        self,
        checkout_session_id: str,
        referral_code_id: int,
        referred_user_id: int,
        reward_issued: bool,
    ) -> None:
        """Insert a usage-tracking row; an existing row for the checkout wins."""
        self.client.table("referral_usage_tracking").upsert(
            {
                "stripe_checkout_session_id": checkout_session_id,
                "referral_code_id": referral_code_id,
                "referred_user_id": referred_user_id,
                "reward_issued": reward_issued,
            },
            on_conflict="stripe_checkout_session_id",
            ignore_duplicates=True,
        ).execute()


def _parse_user(row: dict[str, Any]) -> UserRecord:
    return UserRecord(
        id=int(row["id"]),
        email=row.get("email"),
        cognito_sub=row["cognito_sub"],
        stripe_customer_id=row.get("stripe_customer_id"),
    )


def _parse_code(row: dict[str, Any]) -> ReferralCode:
    return ReferralCode(
        id=int(row["id"]),
        user_id=int(row["user_id"]),
        code=row["code"],
        stripe_promotion_code_id=row["stripe_promotion_code_id"],
        stripe_coupon_id=row["stripe_coupon_id"],
        created_at=datetime.fromisoformat(row["created_at"]),
    )


def _parse_reward(row: dict[str, Any]) -> ReferralReward:
    return ReferralReward(
        id=int(row["id"]),
        referrer_user_id=int(row["referrer_user_id"]),
        referred_user_id=int(row["referred_user_id"]),
        stripe_promotion_code_id=row["stripe_promotion_code_id"],
        stripe_coupon_id=row["stripe_coupon_id"],
        stripe_checkout_session_id=row["stripe_checkout_session_id"],
        redeemed=bool(row.get("redeemed", False)),
        created_at=datetime.fromisoformat(row["created_at"]),
    )
