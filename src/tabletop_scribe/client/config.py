"""Upload client configuration."""

from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict

PRODUCTION = "production"
DEVELOPMENT = "development"


class AwsProfile(BaseModel):
    """AWS resources of one deployment stage."""

    region: str = "us-east-2"
    user_pool_id: str = ""
    user_pool_client_id: str = ""
    s3_bucket: str = ""
    graphql_endpoint: str = ""
    appsync_api_key: str = ""


class ClientSettings(BaseSettings):
    """Client settings loaded from VITE_* environment variables.

    The DEV stage backs production and DEVSORT backs development, e.g.
    ``VITE_DEV__USER_POOL_ID`` or ``VITE_DEVSORT__GRAPHQL_ENDPOINT``.
    """

    api_base_url: str = "http://localhost:5000"
    environment: str = PRODUCTION
    dev: AwsProfile = AwsProfile()
    devsort: AwsProfile = AwsProfile()

    model_config = SettingsConfigDict(
        env_prefix="VITE_",
        env_nested_delimiter="__",
        env_file=".env",
        extra="ignore",
    )

    @property
    def profile(self) -> AwsProfile:
        """Return the AWS profile of the selected environment."""
        if self.environment == DEVELOPMENT:
            return self.devsort
        return self.dev
