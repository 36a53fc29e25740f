"""Shared test fixtures."""

import json
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, BinaryIO

import pytest

from tabletop_scribe.config import Settings
from tabletop_scribe.containers import AppContainer
from tabletop_scribe.domain.referrals import (
    CardFingerprint,
    CheckoutSummary,
    PromotionCode,
    ReferralCode,
    ReferralReward,
    UserRecord,
)
from tabletop_scribe.domain.uploads import ObjectContent, StoredObject, UploadedPart
from tabletop_scribe.feature_flags import FeatureFlags
from tabletop_scribe.services.auth import AuthenticatedUser, TokenVerifier
from tabletop_scribe.services.processing import (
    FunctionInvoker,
    ProcessingInvokerError,
    ProcessingService,
)
from tabletop_scribe.services.referral_webhook import ReferralWebhookHandler
from tabletop_scribe.services.referrals import (
    BillingGateway,
    BillingGatewayError,
    ReferralRepository,
    ReferralService,
    WebhookSignatureError,
)
from tabletop_scribe.services.share import PublicSessionReader, ShareService
from tabletop_scribe.services.storage import ObjectStorage, StorageError, StorageService

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=UTC)
BUCKET = "scribe-test-bucket"
VALID_SIGNATURE = "t=1,v1=valid"


@dataclass
class InMemoryReferralRepository(ReferralRepository):
    """In-memory referral repository for tests."""

    now: datetime = NOW
    users: dict[int, UserRecord] = field(default_factory=dict)
    codes: dict[int, ReferralCode] = field(default_factory=dict)
    rewards: list[ReferralReward] = field(default_factory=list)
    fingerprints: dict[int, dict[str, str | None]] = field(default_factory=dict)
    usage: dict[str, dict[str, object]] = field(default_factory=dict)

    def get_user_by_cognito_sub(self, cognito_sub: str) -> UserRecord | None:
        return next(
            (user for user in self.users.values() if user.cognito_sub == cognito_sub),
            None,
        )

    def create_user(self, email: str | None, cognito_sub: str) -> UserRecord:
        user = UserRecord(id=len(self.users) + 1, email=email, cognito_sub=cognito_sub)
        self.users[user.id] = user
        return user

    def get_user_by_stripe_customer_id(self, customer_id: str) -> UserRecord | None:
        return next(
            (
                user
                for user in self.users.values()
                if user.stripe_customer_id == customer_id
            ),
            None,
        )

    def update_user_stripe_customer_id(self, user_id: int, customer_id: str) -> None:
        user = self.users[user_id]
        self.users[user_id] = UserRecord(
            id=user.id,
            email=user.email,
            cognito_sub=user.cognito_sub,
            stripe_customer_id=customer_id,
        )

    def get_referral_code_for_user(self, user_id: int) -> ReferralCode | None:
        return next(
            (code for code in self.codes.values() if code.user_id == user_id), None
        )

    def get_referral_code_by_promotion_code_id(
        self, promotion_code_id: str
    ) -> ReferralCode | None:
        return next(
            (
                code
                for code in self.codes.values()
                if code.stripe_promotion_code_id == promotion_code_id
            ),
            None,
        )

    def create_referral_code(
        self, user_id: int, code: str, promotion_code_id: str, coupon_id: str
    ) -> ReferralCode:
        referral_code = ReferralCode(
            id=len(self.codes) + 1,
            user_id=user_id,
            code=code,
            stripe_promotion_code_id=promotion_code_id,
            stripe_coupon_id=coupon_id,
            created_at=self.now,
        )
        self.codes[referral_code.id] = referral_code
        return referral_code

    def list_rewards(self, referrer_user_id: int) -> list[ReferralReward]:
        return [
            reward
            for reward in self.rewards
            if reward.referrer_user_id == referrer_user_id
        ]

    def count_rewards_since(self, referrer_user_id: int, since: datetime) -> int:
        return sum(
            1
            for reward in self.list_rewards(referrer_user_id)
            if reward.created_at >= since
        )

    def create_reward(  # noqa: PLR0913
        self,
        referrer_user_id: int,
        referred_user_id: int,
        promotion_code_id: str,
        coupon_id: str,
        checkout_session_id: str,
    ) -> ReferralReward:
        reward = ReferralReward(
            id=len(self.rewards) + 1,
            referrer_user_id=referrer_user_id,
            referred_user_id=referred_user_id,
            stripe_promotion_code_id=promotion_code_id,
            stripe_coupon_id=coupon_id,
            stripe_checkout_session_id=checkout_session_id,
            redeemed=False,
            created_at=self.now,
        )
        self.rewards.append(reward)
        return reward

    def store_card_fingerprint(
        self, user_id: int, fingerprint: str, payment_method_id: str | None
    ) -> None:
        self.fingerprints.setdefault(user_id, {}).setdefault(
            fingerprint, payment_method_id
        )

    def list_card_fingerprints(self, user_id: int) -> set[str]:
        return set(self.fingerprints.get(user_id, {}))

    def is_checkout_processed(self, checkout_session_id: str) -> bool:
        return checkout_session_id in self.usage

    def mark_checkout_processed(
        self,
        checkout_session_id: str,
        referral_code_id: int,
        referred_user_id: int,
        reward_issued: bool,
    ) -> None:
        self.usage.setdefault(
            checkout_session_id,
            {
                "referral_code_id": referral_code_id,
                "referred_user_id": referred_user_id,
                "reward_issued": reward_issued,
            },
        )

    def add_reward(self, referrer_user_id: int, created_at: datetime) -> None:
        self.rewards.append(
            ReferralReward(
                id=len(self.rewards) + 1,
                referrer_user_id=referrer_user_id,
                referred_user_id=999,
                stripe_promotion_code_id="promo_old",
                stripe_coupon_id="coupon_old",
                stripe_checkout_session_id=f"cs_old_{len(self.rewards)}",
                redeemed=False,
                created_at=created_at,
            )
        )


@dataclass
class FakeBillingGateway(BillingGateway):
    """Fake billing gateway keeping coupons and promotion codes in memory."""

    coupons: dict[str, int] = field(default_factory=dict)
    promotion_codes: dict[str, PromotionCode] = field(default_factory=dict)
    checkouts: dict[str, CheckoutSummary] = field(default_factory=dict)
    cards: dict[str, CardFingerprint] = field(default_factory=dict)
    fail_card_lookup: bool = False
    created_coupons: list[str] = field(default_factory=list)
    created_promotion_codes: list[PromotionCode] = field(default_factory=list)

    def get_or_create_coupon(self, coupon_id: str, amount_off: int, name: str) -> str:
        if coupon_id not in self.coupons:
            self.coupons[coupon_id] = amount_off
            self.created_coupons.append(coupon_id)
        return coupon_id

    def create_coupon(self, amount_off: int, name: str) -> str:
        coupon_id = f"coupon_{len(self.coupons) + 1}"
        self.coupons[coupon_id] = amount_off
        self.created_coupons.append(coupon_id)
        return coupon_id

    def create_promotion_code(  # noqa: PLR0913
        self,
        coupon_id: str,
        code: str,
        metadata: dict[str, str],
        minimum_amount: int,
        first_time_transaction: bool = False,
    ) -> PromotionCode:
        promotion_code = PromotionCode(
            id=f"promo_{len(self.promotion_codes) + 1}",
            code=code,
            coupon_id=coupon_id,
            metadata=metadata,
        )
        self.promotion_codes[promotion_code.id] = promotion_code
        self.created_promotion_codes.append(promotion_code)
        return promotion_code

    def retrieve_promotion_code(self, promotion_code_id: str) -> PromotionCode:
        try:
            return self.promotion_codes[promotion_code_id]
        except KeyError as exc:
            raise BillingGatewayError(f"No such promotion code: {exc}") from exc

    def retrieve_checkout_session(self, checkout_session_id: str) -> CheckoutSummary:
        try:
            return self.checkouts[checkout_session_id]
        except KeyError as exc:
            raise BillingGatewayError(f"No such checkout session: {exc}") from exc

    def get_card_fingerprint(self, payment_intent_id: str) -> CardFingerprint | None:
        if self.fail_card_lookup:
            raise BillingGatewayError("Stripe payment method lookup failed")
        return self.cards.get(payment_intent_id)

    def construct_event(self, payload: bytes, signature: str) -> dict[str, object]:
        if signature != VALID_SIGNATURE:
            raise WebhookSignatureError("Invalid signature")
        return json.loads(payload)

    def reward_codes(self) -> list[PromotionCode]:
        return [
            code
            for code in self.created_promotion_codes
            if code.metadata.get("type") == "referral_reward"
        ]


@dataclass
class FakeObjectStorage(ObjectStorage):
    """Fake object storage holding objects and multipart uploads in memory."""

    objects: dict[str, ObjectContent] = field(default_factory=dict)
    uploads: dict[str, dict[int, tuple[str, bytes]]] = field(default_factory=dict)
    completed: list[tuple[str, list[UploadedPart]]] = field(default_factory=list)
    aborted: list[str] = field(default_factory=list)
    presigned: list[tuple[str, str, int]] = field(default_factory=list)
    fail_with: str | None = None

    def _maybe_fail(self) -> None:
        if self.fail_with:
            raise StorageError(self.fail_with)

    def put_object(
        self, bucket: str, key: str, body: BinaryIO, content_type: str
    ) -> StoredObject:
        self._maybe_fail()
        self.objects[key] = ObjectContent(body=body.read(), content_type=content_type)
        return StoredObject(location=_location(bucket, key), key=key)

    def presign_put(
        self, bucket: str, key: str, content_type: str, expires_in: int
    ) -> str:
        self._maybe_fail()
        self.presigned.append((key, content_type, expires_in))
        return f"{_location(bucket, key)}?X-Amz-Expires={expires_in}"

    def create_multipart_upload(
        self, bucket: str, key: str, content_type: str | None = None
    ) -> str:
        self._maybe_fail()
        upload_id = f"upload-{len(self.uploads) + 1}"
        self.uploads[upload_id] = {}
        return upload_id

    def upload_part(  # noqa: PLR0913
        self, bucket: str, key: str, upload_id: str, part_number: int, body: BinaryIO
    ) -> str:
        self._maybe_fail()
        etag = f'"etag-{part_number}"'
        self.uploads[upload_id][part_number] = (etag, body.read())
        return etag

    def list_parts(self, bucket: str, key: str, upload_id: str) -> list[UploadedPart]:
        self._maybe_fail()
        return [
            UploadedPart(part_number=number, etag=etag)
            for number, (etag, _) in sorted(self.uploads.get(upload_id, {}).items())
        ]

    def complete_multipart_upload(
        self, bucket: str, key: str, upload_id: str, parts: list[UploadedPart]
    ) -> StoredObject:
        self._maybe_fail()
        stored = self.uploads.pop(upload_id)
        body = b"".join(stored[part.part_number][1] for part in parts)
        self.objects[key] = ObjectContent(body=body, content_type="audio/mpeg")
        self.completed.append((upload_id, parts))
        return StoredObject(location=_location(bucket, key), key=key)

    def abort_multipart_upload(self, bucket: str, key: str, upload_id: str) -> None:
        self._maybe_fail()
        self.uploads.pop(upload_id, None)
        self.aborted.append(upload_id)

    def get_object(self, bucket: str, key: str) -> ObjectContent | None:
        self._maybe_fail()
        return self.objects.get(key)


def _location(bucket: str, key: str) -> str:
    return f"https://{bucket}.s3.us-east-2.amazonaws.com/{key}"


@dataclass
class FakeInvoker(FunctionInvoker):
    """Fake function invoker recording invocations."""

    status_code: int = 202
    error: str | None = None
    calls: list[tuple[str, dict[str, object]]] = field(default_factory=list)

    def invoke_async(self, function_name: str, payload: dict[str, object]) -> int:
        if self.error:
            raise ProcessingInvokerError(self.error)
        self.calls.append((function_name, payload))
        return self.status_code


@dataclass
class FakeTokenVerifier(TokenVerifier):
    """Token verifier accepting a fixed set of tokens."""

    tokens: dict[str, AuthenticatedUser] = field(
        default_factory=lambda: {
            "good-token": AuthenticatedUser(
                sub="sub-123", email="player@example.com", username="player"
            )
        }
    )

    def verify(self, token: str) -> AuthenticatedUser | None:
        return self.tokens.get(token)


@dataclass
class FakeSessionReader(PublicSessionReader):
    """Session reader serving raw AppSync rows from memory."""

    sessions: dict[str, dict[str, Any]] = field(default_factory=dict)

    async def get_public_session(self, session_id: str) -> dict[str, Any] | None:
        return self.sessions.get(session_id)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        supabase_url="https://example.supabase.co",
        supabase_service_key="service-key",
        stripe_secret_key="sk_test_123",
        stripe_publishable_key="pk_test_123",
        stripe_webhook_secret="whsec_test",
        stripe_webhook_uuid="hook-uuid",
        aws_s3_bucket=BUCKET,
        cognito_user_pool_id="us-east-2_pool",
        graphql_endpoint="https://appsync.example.com/graphql",
        appsync_api_key="da2-test",
    )


@pytest.fixture
def feature_flags() -> FeatureFlags:
    return FeatureFlags(referral_system=True)


@pytest.fixture
def referral_repository() -> InMemoryReferralRepository:
    return InMemoryReferralRepository()


@pytest.fixture
def billing_gateway() -> FakeBillingGateway:
    return FakeBillingGateway()


@pytest.fixture
def object_storage() -> FakeObjectStorage:
    return FakeObjectStorage()


@pytest.fixture
def invoker() -> FakeInvoker:
    return FakeInvoker()


@pytest.fixture
def session_reader() -> FakeSessionReader:
    return FakeSessionReader()


@pytest.fixture
def referral_service(
    referral_repository: InMemoryReferralRepository,
    billing_gateway: FakeBillingGateway,
    feature_flags: FeatureFlags,
) -> ReferralService:
    codes = iter(f"CODE{index:04d}" for index in range(1, 1000))
    return ReferralService(
        repository=referral_repository,
        gateway=billing_gateway,
        flags=feature_flags,
        clock=lambda: NOW,
        code_generator=lambda: next(codes),
    )


@pytest.fixture
def webhook_handler(
    referral_service: ReferralService,
    billing_gateway: FakeBillingGateway,
    feature_flags: FeatureFlags,
) -> ReferralWebhookHandler:
    return ReferralWebhookHandler(
        referral_service=referral_service,
        gateway=billing_gateway,
        flags=feature_flags,
    )


@pytest.fixture
def container(  # noqa: PLR0913
    settings: Settings,
    feature_flags: FeatureFlags,
    object_storage: FakeObjectStorage,
    invoker: FakeInvoker,
    session_reader: FakeSessionReader,
    billing_gateway: FakeBillingGateway,
    referral_service: ReferralService,
    webhook_handler: ReferralWebhookHandler,
) -> AppContainer:
    async def close_resources() -> None:
        return None

    return AppContainer(
        settings=settings,
        feature_flags=feature_flags,
        token_verifier=FakeTokenVerifier(),
        storage_service=StorageService(storage=object_storage, bucket=BUCKET),
        processing_service=ProcessingService(
            invoker=invoker, function_name=settings.lambda_function_name
        ),
        share_service=ShareService(reader=session_reader),
        billing_gateway=billing_gateway,
        referral_service=referral_service,
        referral_webhook_handler=webhook_handler,
        close_resources=close_resources,
    )
