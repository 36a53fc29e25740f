"""Feature flags derived from settings."""

from dataclasses import dataclass

from tabletop_scribe.config import Settings


@dataclass(frozen=True)
class FeatureFlags:
    """Referral feature switches and tunables (amounts in cents)."""

    referral_system: bool = False
    referral_max_rewards_per_month: int = 5
    referral_min_purchase_amount: int = 500
    referral_discount_amount: int = 500

    @classmethod
    def from_settings(cls, settings: Settings) -> "FeatureFlags":
        """Build flags from settings; the referral system is on unless 'false'."""
        return cls(
            referral_system=parse_feature_switch(settings.feature_referral_system),
            referral_max_rewards_per_month=settings.referral_max_rewards_per_month,
            referral_min_purchase_amount=settings.referral_min_purchase_amount,
            referral_discount_amount=settings.referral_discount_amount,
        )

    def public_status(self) -> dict[str, object]:
        """Return the flags exposed by the public status endpoint, in dollars."""
        return {
            "enabled": self.referral_system,
            "discountAmount": self.referral_discount_amount / 100,
            "minPurchaseAmount": self.referral_min_purchase_amount / 100,
            "maxRewardsPerMonth": self.referral_max_rewards_per_month,
        }


def parse_feature_switch(raw: str | None) -> bool:
    """Parse an on-by-default switch; only the literal 'false' turns it off."""
    if raw is None:
        return True
    return raw.strip() != "false"
