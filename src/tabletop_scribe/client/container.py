"""Wiring for the upload client."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from tabletop_scribe.client.batch import MultiSessionUploader, UploadJob
from tabletop_scribe.client.campaigns import (
    CampaignSelection,
    list_campaigns_with_retry,
)
from tabletop_scribe.client.config import ClientSettings
from tabletop_scribe.client.graphql import GraphQLClient
from tabletop_scribe.client.refresh import DEFAULT_INTERVAL_SECONDS, TokenRefreshScheduler
from tabletop_scribe.client.uploads import S3UploadService, UploadMode
from tabletop_scribe.domain.campaigns import Campaign


@dataclass
class UploadClient:
    """Holds the clients one signed-in user needs to upload sessions."""

    settings: ClientSettings
    graphql: GraphQLClient
    uploads: S3UploadService
    selection: CampaignSelection
    schedulers: list[TokenRefreshScheduler] = field(default_factory=list)

    async def load_campaigns(self, owner: str) -> list[Campaign]:
        """Fetch the owner's campaigns and keep a valid campaign selected."""
        campaigns = await list_campaigns_with_retry(self.graphql, owner)
        self.selection.auto_select_most_recent(campaigns)
        return campaigns

    def new_batch(
        self,
        campaign_id: str,
        on_change: Callable[[UploadJob], None] | None = None,
        upload_mode: UploadMode = UploadMode.PRESIGNED,
    ) -> MultiSessionUploader:
        """Start an empty batch for a campaign."""
        return MultiSessionUploader(
            campaign_id=campaign_id,
            sessions=self.graphql,
            uploader=self.uploads,
            on_change=on_change,
            upload_mode=upload_mode,
        )

    def start_token_refresh(
        self,
        fetch_token: Callable[[], Awaitable[str]],
        interval: float = DEFAULT_INTERVAL_SECONDS,
    ) -> TokenRefreshScheduler:
        """Refresh the GraphQL access token in the background."""

        async def refresh() -> None:
            self.graphql.set_access_token(await fetch_token())

        scheduler = TokenRefreshScheduler(refresh=refresh, interval=interval)
        scheduler.start()
        self.schedulers.append(scheduler)
        return scheduler

    async def close(self) -> None:
        """Stop refresh tasks and close HTTP sessions."""
        for scheduler in self.schedulers:
            await scheduler.stop()
        self.schedulers.clear()
        await self.graphql.close()
        await self.uploads.close()


def build_upload_client(
    settings: ClientSettings | None = None, access_token: str | None = None
) -> UploadClient:
    """Create an upload client for the configured environment."""
    resolved_settings = settings or ClientSettings()
    profile = resolved_settings.profile
    graphql = GraphQLClient.create(
        endpoint=profile.graphql_endpoint,
        api_key=profile.appsync_api_key or None,
        access_token=access_token,
    )
    uploads = S3UploadService.create(
        api_base_url=resolved_settings.api_base_url, bucket=profile.s3_bucket
    )
    return UploadClient(
        settings=resolved_settings,
        graphql=graphql,
        uploads=uploads,
        selection=CampaignSelection(environment=resolved_settings.environment),
    )
