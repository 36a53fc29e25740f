"""Referral reward issuance driven by completed checkouts."""

import logging
from dataclasses import dataclass

from tabletop_scribe.domain.referrals import CheckoutSummary, ReferralOutcome
from tabletop_scribe.feature_flags import FeatureFlags
from tabletop_scribe.services.referrals import (
    REFERRAL_CODE_TYPE,
    BillingGateway,
    BillingGatewayError,
    ReferralService,
)

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"


@dataclass
class ReferralWebhookHandler:
    """Evaluates completed checkouts and rewards referrers at most once."""

    referral_service: ReferralService
    gateway: BillingGateway
    flags: FeatureFlags

    def handle_event(self, event: dict[str, object]) -> ReferralOutcome | None:
        """Dispatch a verified webhook event; unrelated events are ignored."""
        event_type = event.get("type")
        if event_type != CHECKOUT_COMPLETED:
            logger.info("Ignoring webhook event", extra={"event_type": event_type})
            return None
        data = event.get("data")
        checkout = data.get("object") if isinstance(data, dict) else None
        checkout_id = checkout.get("id") if isinstance(checkout, dict) else None
        if not checkout_id:
            logger.warning("Checkout event without a session id")
            return None
        if not self.flags.referral_system:
            logger.info("Referral system is disabled, skipping webhook processing")
            return ReferralOutcome.DISABLED
        summary = self.gateway.retrieve_checkout_session(str(checkout_id))
        return self.handle_checkout_completed(summary)

    def handle_checkout_completed(  # noqa: PLR0911
        self, checkout: CheckoutSummary
    ) -> ReferralOutcome:
        """Evaluate one completed checkout for a referral reward."""
        if not self.flags.referral_system:
            return ReferralOutcome.DISABLED
        service = self.referral_service

        if service.is_checkout_processed(checkout.id):
            logger.info(
                "Checkout already processed, skipping",
                extra={"checkout_session_id": checkout.id},
            )
            return ReferralOutcome.ALREADY_PROCESSED

        if not checkout.customer_id:
            logger.info("No customer in checkout session, skipping referral")
            return ReferralOutcome.NO_CUSTOMER

        minimum = self.flags.referral_min_purchase_amount
        if checkout.amount_total < minimum:
            logger.info(
                "Purchase below referral minimum",
                extra={"amount_total": checkout.amount_total, "minimum": minimum},
            )
            return ReferralOutcome.BELOW_MINIMUM

        promotion_code_id = self._find_referral_promotion_code(checkout)
        if promotion_code_id is None:
            logger.info("No referral promotion code used in this checkout")
            return ReferralOutcome.NO_REFERRAL_CODE

        referral_code = service.get_referral_code_by_promotion_code_id(
            promotion_code_id
        )
        if referral_code is None:
            logger.warning(
                "Referral code not found for promotion code",
                extra={"promotion_code_id": promotion_code_id},
            )
            return ReferralOutcome.UNKNOWN_REFERRAL_CODE

        referred_user = service.get_user_by_stripe_customer_id(checkout.customer_id)
        if referred_user is None:
            logger.warning(
                "Referred user not found for customer",
                extra={"customer_id": checkout.customer_id},
            )
            return ReferralOutcome.UNKNOWN_CUSTOMER

        if referred_user.id == referral_code.user_id:
            logger.info("Self-referral detected, skipping reward")
            service.mark_checkout_processed(
                checkout.id, referral_code.id, referred_user.id, reward_issued=False
            )
            return ReferralOutcome.SELF_REFERRAL

        if checkout.payment_intent_id and self._card_reused(
            checkout.payment_intent_id, referral_code.user_id, referred_user.id
        ):
            logger.info("Card fingerprint matches referrer, skipping reward")
            service.mark_checkout_processed(
                checkout.id, referral_code.id, referred_user.id, reward_issued=False
            )
            return ReferralOutcome.CARD_REUSED

        reward = service.issue_referrer_reward(
            referral_code.user_id, referred_user.id, checkout.id
        )
        service.mark_checkout_processed(
            checkout.id, referral_code.id, referred_user.id, reward_issued=bool(reward)
        )
        if reward is None:
            return ReferralOutcome.MONTHLY_CAP_REACHED
        logger.info(
            "Referral reward issued",
            extra={"referrer_user_id": referral_code.user_id},
        )
        return ReferralOutcome.REWARD_ISSUED

    def _find_referral_promotion_code(self, checkout: CheckoutSummary) -> str | None:
        for promotion_code_id in checkout.promotion_code_ids:
            promotion_code = self.gateway.retrieve_promotion_code(promotion_code_id)
            if promotion_code.metadata.get("type") == REFERRAL_CODE_TYPE:
                return promotion_code.id
        return None

    def _card_reused(
        self, payment_intent_id: str, referrer_user_id: int, referred_user_id: int
    ) -> bool:
        try:
            card = self.gateway.get_card_fingerprint(payment_intent_id)
        except BillingGatewayError:
            logger.exception(
                "Error checking card fingerprint",
                extra={"payment_intent_id": payment_intent_id},
            )
            return False
        if card is None:
            return False
        self.referral_service.store_card_fingerprint(
            referred_user_id, card.fingerprint, card.payment_method_id
        )
        return self.referral_service.check_card_fingerprint_match(
            referrer_user_id, card.fingerprint
        )
