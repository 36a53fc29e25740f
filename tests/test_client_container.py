"""Tests for upload client wiring."""

import asyncio

import httpx

from tabletop_scribe.client.campaigns import CampaignSelection
from tabletop_scribe.client.config import AwsProfile, ClientSettings
from tabletop_scribe.client.container import UploadClient, build_upload_client
from tabletop_scribe.client.graphql import GraphQLClient
from tabletop_scribe.client.uploads import S3UploadService, UploadMode


def _settings() -> ClientSettings:
    return ClientSettings(
        api_base_url="http://relay.test/",
        environment="development",
        dev=AwsProfile(
            s3_bucket="prod-bucket", graphql_endpoint="https://prod/graphql"
        ),
        devsort=AwsProfile(
            s3_bucket="dev-bucket", graphql_endpoint="https://dev/graphql"
        ),
    )


def test_build_upload_client_uses_environment_profile() -> None:
    client = build_upload_client(_settings(), access_token="token")

    assert client.graphql.endpoint == "https://dev/graphql"
    assert client.uploads.bucket == "dev-bucket"
    assert client.uploads.api_base_url == "http://relay.test"
    batch = client.new_batch("c1", upload_mode=UploadMode.CHUNKED)
    assert batch.campaign_id == "c1"
    assert batch.upload_mode is UploadMode.CHUNKED
    asyncio.run(client.close())


def _client(handler) -> UploadClient:  # type: ignore[no-untyped-def]
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return UploadClient(
        settings=_settings(),
        graphql=GraphQLClient(
            endpoint="https://dev/graphql",
            http_client=http_client,
            access_token="old-token",
        ),
        uploads=S3UploadService(
            api_base_url="http://relay.test",
            bucket="dev-bucket",
            http_client=http_client,
        ),
        selection=CampaignSelection(environment="development"),
    )


def test_load_campaigns_selects_newest() -> None:
    def handler(_request: httpx.Request) -> httpx.Response:
        items = [
            {"id": "c1", "name": "Old", "owner": "o", "createdAt": "2026-01-01"},
            {"id": "c2", "name": "New", "owner": "o", "createdAt": "2026-02-01"},
        ]
        return httpx.Response(
            200, json={"data": {"listCampaigns": {"items": items, "nextToken": None}}}
        )

    client = _client(handler)

    campaigns = asyncio.run(client.load_campaigns("o"))

    assert len(campaigns) == 2
    assert client.selection.selected is not None
    assert client.selection.selected.id == "c2"


def test_token_refresh_updates_graphql_token() -> None:
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.headers["Authorization"])
        return httpx.Response(200, json={"data": {"getSession": None}})

    client = _client(handler)

    async def fetch_token() -> str:
        return "fresh-token"

    async def scenario() -> None:
        client.start_token_refresh(fetch_token, interval=60)
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        await client.graphql.get_session("s1")
        await client.close()

    asyncio.run(scenario())

    assert seen == ["fresh-token"]
    assert client.schedulers == []
