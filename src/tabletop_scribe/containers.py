"""Dependency container wiring for the application."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from supabase import create_client

from tabletop_scribe.adapters.appsync_client import HttpxAppSyncClient
from tabletop_scribe.adapters.cognito_token_verifier import CognitoTokenVerifier
from tabletop_scribe.adapters.lambda_invoker import LambdaInvoker
from tabletop_scribe.adapters.s3_storage import S3ObjectStorage
from tabletop_scribe.adapters.stripe_gateway import StripeBillingGateway
from tabletop_scribe.adapters.supabase_referral_repository import (
    SupabaseReferralRepository,
)
from tabletop_scribe.config import Settings
from tabletop_scribe.feature_flags import FeatureFlags
from tabletop_scribe.services.auth import TokenVerifier
from tabletop_scribe.services.processing import ProcessingService
from tabletop_scribe.services.referral_webhook import ReferralWebhookHandler
from tabletop_scribe.services.referrals import BillingGateway, ReferralService
from tabletop_scribe.services.share import ShareService
from tabletop_scribe.services.storage import StorageService


@dataclass
class AppContainer:
    """Holds application-wide dependencies."""

    settings: Settings
    feature_flags: FeatureFlags
    token_verifier: TokenVerifier
    storage_service: StorageService
    processing_service: ProcessingService
    share_service: ShareService
    billing_gateway: BillingGateway
    referral_service: ReferralService
    referral_webhook_handler: ReferralWebhookHandler
    close_resources: Callable[[], Awaitable[None]]


def build_container(settings: Settings | None = None) -> AppContainer:
    """Create the default dependency container."""
    resolved_settings = settings or Settings()
    feature_flags = FeatureFlags.from_settings(resolved_settings)
    supabase_client = create_client(
        resolved_settings.supabase_url, resolved_settings.supabase_service_key
    )
    object_storage = S3ObjectStorage.create(
        region=resolved_settings.aws_region,
        access_key_id=resolved_settings.aws_access_key_id,
        secret_access_key=resolved_settings.aws_secret_access_key,
    )
    storage_service = StorageService(
        storage=object_storage, bucket=resolved_settings.aws_s3_bucket
    )
    invoker = LambdaInvoker.create(
        region=resolved_settings.aws_region,
        access_key_id=resolved_settings.aws_access_key_id,
        secret_access_key=resolved_settings.aws_secret_access_key,
    )
    processing_service = ProcessingService(
        invoker=invoker, function_name=resolved_settings.lambda_function_name
    )
    appsync_client = HttpxAppSyncClient.create(
        endpoint=resolved_settings.graphql_endpoint,
        api_key=resolved_settings.appsync_api_key,
    )
    share_service = ShareService(reader=appsync_client)
    token_verifier = CognitoTokenVerifier.create(resolved_settings.cognito_issuer)
    billing_gateway = StripeBillingGateway(
        api_key=resolved_settings.stripe_secret_key,
        webhook_secret=resolved_settings.stripe_webhook_secret,
    )
    referral_service = ReferralService(
        repository=SupabaseReferralRepository(supabase_client),
        gateway=billing_gateway,
        flags=feature_flags,
    )
    webhook_handler = ReferralWebhookHandler(
        referral_service=referral_service,
        gateway=billing_gateway,
        flags=feature_flags,
    )

    async def close_resources() -> None:
        await appsync_client.close()

    return AppContainer(
        settings=resolved_settings,
        feature_flags=feature_flags,
        token_verifier=token_verifier,
        storage_service=storage_service,
        processing_service=processing_service,
        share_service=share_service,
        billing_gateway=billing_gateway,
        referral_service=referral_service,
        referral_webhook_handler=webhook_handler,
        close_resources=close_resources,
    )
