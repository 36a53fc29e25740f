"""Application configuration."""

import os

from pydantic_settings import BaseSettings, SettingsConfigDict

_ENVIRONMENT = os.getenv("ENVIRONMENT", "local")

MIB = 1024 * 1024
MAX_UPLOAD_BYTES = 300 * MIB
MAX_CHUNK_BYTES = 45 * MIB
MAX_REQUEST_BYTES = 50 * MIB


class Settings(BaseSettings):
    """Server settings loaded from environment variables."""

    supabase_url: str
    supabase_service_key: str
    stripe_secret_key: str
    stripe_publishable_key: str
    stripe_webhook_secret: str
    stripe_webhook_uuid: str
    aws_region: str = "us-east-2"
    aws_access_key_id: str | None = None
    aws_secret_access_key: str | None = None
    aws_s3_bucket: str
    cognito_user_pool_id: str
    graphql_endpoint: str
    appsync_api_key: str
    lambda_function_name: str = "start-summary"
    feature_referral_system: str = "true"
    referral_max_rewards_per_month: int = 5
    referral_min_purchase_amount: int = 500
    referral_discount_amount: int = 500
    environment: str = _ENVIRONMENT

    model_config = SettingsConfigDict(
        env_file=(f".env.{_ENVIRONMENT}", ".env"),
        extra="ignore",
    )

    @property
    def cognito_issuer(self) -> str:
        """Return the issuer URL embedded in Cognito access tokens."""
        return (
            f"https://cognito-idp.{self.aws_region}.amazonaws.com/"
            f"{self.cognito_user_pool_id}"
        )
