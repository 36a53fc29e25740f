"""Stripe-backed billing gateway for the referral program."""

import json
import logging
from dataclasses import dataclass
from typing import Any

import stripe

from tabletop_scribe.domain.referrals import (
    CardFingerprint,
    CheckoutSummary,
    PromotionCode,
)
from tabletop_scribe.services.referrals import (
    BillingGateway,
    BillingGatewayError,
    WebhookSignatureError,
)

logger = logging.getLogger(__name__)

CURRENCY = "usd"


@dataclass
class StripeBillingGateway(BillingGateway):
    """Stripe implementation of coupons, promotion codes and webhook checks."""

    api_key: str
    webhook_secret: str

    def get_or_create_coupon(self, coupon_id: str, amount_off: int, name: str) -> str:
        """Return the coupon id, creating a fixed-id coupon when it is missing."""
        try:
            coupon = stripe.Coupon.retrieve(coupon_id, api_key=self.api_key)
            return str(_as_dict(coupon)["id"])
        except stripe.InvalidRequestError as exc:
            if exc.code != "resource_missing":
                raise BillingGatewayError(f"Stripe coupon lookup failed: {exc}") from exc
        except stripe.StripeError as exc:
            raise BillingGatewayError(f"Stripe coupon lookup failed: {exc}") from exc
        logger.info("Creating base referral coupon", extra={"coupon_id": coupon_id})
        try:
            coupon = stripe.Coupon.create(
                id=coupon_id,
                amount_off=amount_off,
                currency=CURRENCY,
                name=name,
                duration="once",
                api_key=self.api_key,
            )
        except stripe.StripeError as exc:
            raise BillingGatewayError(f"Stripe coupon creation failed: {exc}") from exc
        return str(_as_dict(coupon)["id"])

    def create_coupon(self, amount_off: int, name: str) -> str:
        """Create a one-time coupon and return its id."""
        try:
            coupon = stripe.Coupon.create(
                amount_off=amount_off,
                currency=CURRENCY,
                name=name,
                duration="once",
                api_key=self.api_key,
            )
        except stripe.StripeError as exc:
            raise BillingGatewayError(f"Stripe coupon creation failed: {exc}") from exc
        return str(_as_dict(coupon)["id"])

    def create_promotion_code(  # noqa: PLR0913
        self,
        coupon_id: str,
        code: str,
        metadata: dict[str, str],
        minimum_amount: int,
        first_time_transaction: bool = False,
    ) -> PromotionCode:
        """Create a promotion code restricted to a minimum purchase."""
        restrictions: dict[str, Any] = {
            "minimum_amount": minimum_amount,
            "minimum_amount_currency": CURRENCY,
        }
        if first_time_transaction:
            restrictions["first_time_transaction"] = True
        try:
            promotion_code = stripe.PromotionCode.create(
                coupon=coupon_id,
                code=code,
                metadata=metadata,
                restrictions=restrictions,
                api_key=self.api_key,
            )
        except stripe.StripeError as exc:
            raise BillingGatewayError(
                f"Stripe promotion code creation failed: {exc}"
            ) from exc
        return _parse_promotion_code(_as_dict(promotion_code))

    def retrieve_promotion_code(self, promotion_code_id: str) -> PromotionCode:
        """Fetch a promotion code by id."""
        try:
            promotion_code = stripe.PromotionCode.retrieve(
                promotion_code_id, api_key=self.api_key
            )
        except stripe.StripeError as exc:
            raise BillingGatewayError(
                f"Stripe promotion code lookup failed: {exc}"
            ) from exc
        return _parse_promotion_code(_as_dict(promotion_code))

    def retrieve_checkout_session(self, checkout_session_id: str) -> CheckoutSummary:
        """Fetch a checkout session with its discount breakdown expanded."""
        try:
            session = stripe.checkout.Session.retrieve(
                checkout_session_id,
                expand=["total_details.breakdown"],
                api_key=self.api_key,
            )
        except stripe.StripeError as exc:
            raise BillingGatewayError(
                f"Stripe checkout session lookup failed: {exc}"
            ) from exc
        return parse_checkout_session(_as_dict(session))

    def get_card_fingerprint(self, payment_intent_id: str) -> CardFingerprint | None:
        """Return the card fingerprint used to pay a payment intent."""
        try:
            payment_intent = _as_dict(
                stripe.PaymentIntent.retrieve(payment_intent_id, api_key=self.api_key)
            )
            payment_method_id = _ref_id(payment_intent.get("payment_method"))
            if not payment_method_id:
                return None
            payment_method = _as_dict(
                stripe.PaymentMethod.retrieve(payment_method_id, api_key=self.api_key)
            )
        except stripe.StripeError as exc:
            raise BillingGatewayError(
                f"Stripe payment method lookup failed: {exc}"
            ) from exc
        card = payment_method.get("card") or {}
        fingerprint = card.get("fingerprint")
        if not fingerprint:
            return None
        return CardFingerprint(
            fingerprint=str(fingerprint),
            payment_method_id=str(payment_method["id"]),
        )

    def construct_event(self, payload: bytes, signature: str) -> dict[str, object]:
        """Verify the Stripe-Signature header and return the event as a dict."""
        if not signature:
            raise WebhookSignatureError("Missing stripe-signature header")
        try:
            stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except ValueError as exc:
            raise WebhookSignatureError(f"Invalid payload: {exc}") from exc
        except stripe.SignatureVerificationError as exc:
            raise WebhookSignatureError(f"Invalid signature: {exc}") from exc
        return json.loads(payload)


def parse_checkout_session(session: dict[str, Any]) -> CheckoutSummary:
    """Extract the referral-relevant fields of a checkout session."""
    total_details = session.get("total_details") or {}
    breakdown = total_details.get("breakdown") or {}
    promotion_code_ids = []
    for entry in breakdown.get("discounts") or []:
        discount = entry.get("discount") or {}
        promotion_code_id = _ref_id(discount.get("promotion_code"))
        if promotion_code_id:
            promotion_code_ids.append(promotion_code_id)
    return CheckoutSummary(
        id=str(session["id"]),
        customer_id=_ref_id(session.get("customer")),
        amount_total=int(session.get("amount_total") or 0),
        payment_intent_id=_ref_id(session.get("payment_intent")),
        promotion_code_ids=promotion_code_ids,
    )


def _parse_promotion_code(data: dict[str, Any]) -> PromotionCode:
    coupon = data.get("coupon")
    if coupon is None:
        coupon = (data.get("promotion") or {}).get("coupon")
    return PromotionCode(
        id=str(data["id"]),
        code=str(data.get("code") or ""),
        coupon_id=_ref_id(coupon) or "",
        metadata={key: str(value) for key, value in (data.get("metadata") or {}).items()},
    )


def _ref_id(value: Any) -> str | None:
    """Return the id of an expandable field, which is either an id or an object."""
    if value is None:
        return None
    if isinstance(value, str):
        return value or None
    ref = _as_dict(value).get("id")
    return str(ref) if ref else None


def _as_dict(obj: Any) -> dict[str, Any]:
    if isinstance(obj, dict):
        return obj
    return obj.to_dict()
