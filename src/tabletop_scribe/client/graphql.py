"""AppSync GraphQL client for campaign and session records."""

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from tabletop_scribe.domain.campaigns import Campaign, campaign_from_graphql
from tabletop_scribe.domain.sessions import (
    SessionDraftInput,
    SessionFiles,
    SessionRecord,
    session_from_graphql,
)

logger = logging.getLogger(__name__)

CONFLICT_ERROR_TYPES = {"ConditionalCheckFailedException", "ConflictUnhandled"}
AUTH_ERROR_TYPES = {"UnauthorizedException", "Unauthorized"}
HTTP_AUTH_STATUSES = {401, 403}

SESSION_FIELDS = """
    id
    name
    date
    duration
    audioFile
    transcriptionFile
    transcriptionStatus
    campaignSessionsId
    _version
"""

LIST_CAMPAIGNS_QUERY = """
query ListCampaignsByOwner($owner: String!, $nextToken: String) {
  listCampaigns(filter: { owner: { eq: $owner } }, limit: 100, nextToken: $nextToken) {
    items {
      id
      name
      description
      owner
      createdAt
      _deleted
    }
    nextToken
  }
}
"""

LIST_SESSIONS_BY_CAMPAIGN_QUERY = f"""
query ListSessionsByCampaign($campaignId: ID!, $nextToken: String) {{
  listSessions(
    filter: {{ campaignSessionsId: {{ eq: $campaignId }} }}
    limit: 100
    nextToken: $nextToken
  ) {{
    items {{{SESSION_FIELDS}}}
    nextToken
  }}
}}
"""

GET_SESSION_QUERY = f"""
query GetSession($id: ID!) {{
  getSession(id: $id) {{{SESSION_FIELDS}}}
}}
"""

CREATE_SESSION_MUTATION = f"""
mutation CreateSession($input: CreateSessionInput!) {{
  createSession(input: $input) {{{SESSION_FIELDS}}}
}}
"""

UPDATE_SESSION_MUTATION = f"""
mutation UpdateSession($input: UpdateSessionInput!) {{
  updateSession(input: $input) {{{SESSION_FIELDS}}}
}}
"""


class GraphQLError(RuntimeError):
    """Raised when a GraphQL request fails or returns errors."""

    def __init__(self, message: str, error_type: str | None = None) -> None:
        super().__init__(message)
        self.error_type = error_type


class GraphQLNetworkError(GraphQLError):
    """Raised when the GraphQL endpoint cannot be reached."""


class GraphQLAuthError(GraphQLError):
    """Raised when the endpoint rejects the caller's credentials."""


class ConflictError(GraphQLError):
    """Raised when an update carries a stale record version."""


@dataclass
class GraphQLClient:
    """Async AppSync client using a user access token or the API key."""

    endpoint: str
    http_client: httpx.AsyncClient
    api_key: str | None = None
    access_token: str | None = None

    @classmethod
    def create(
        cls,
        endpoint: str,
        api_key: str | None = None,
        access_token: str | None = None,
    ) -> "GraphQLClient":
        """Create a client with a managed httpx session."""
        return cls(
            endpoint=endpoint,
            http_client=httpx.AsyncClient(),
            api_key=api_key,
            access_token=access_token,
        )

    def set_access_token(self, access_token: str | None) -> None:
        """Replace the token used for subsequent requests."""
        self.access_token = access_token

    async def execute(
        self, query: str, variables: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        """Run a GraphQL operation and return its data object."""
        try:
            response = await self.http_client.post(
                self.endpoint,
                headers=self._auth_headers(),
                json={"query": query, "variables": variables or {}},
                timeout=30,
            )
        except httpx.TransportError as exc:
            raise GraphQLNetworkError(
                f"Network connection failed: {exc}"
            ) from exc
        if response.status_code in HTTP_AUTH_STATUSES:
            raise GraphQLAuthError(
                f"GraphQL request unauthorized: {response.status_code}",
                error_type="Unauthorized",
            )
        if response.is_error:
            raise GraphQLError(
                f"GraphQL request failed: {response.status_code} {response.text}"
            )
        payload = response.json()
        errors = payload.get("errors") or []
        if errors:
            raise _error_from_payload(errors)
        data = payload.get("data")
        if data is None:
            raise GraphQLError("No data returned from GraphQL query")
        return data

    async def list_campaigns_by_owner(self, owner: str) -> list[Campaign]:
        """Return every campaign owned by a user, following pagination."""
        campaigns: list[Campaign] = []
        next_token: str | None = None
        while True:
            data = await self.execute(
                LIST_CAMPAIGNS_QUERY, {"owner": owner, "nextToken": next_token}
            )
            page = data.get("listCampaigns") or {}
            campaigns.extend(
                campaign_from_graphql(item) for item in page.get("items") or [] if item
            )
            next_token = page.get("nextToken")
            if not next_token:
                return campaigns

    async def list_sessions_by_campaign(self, campaign_id: str) -> list[SessionRecord]:
        """Return every session of a campaign, following pagination."""
        sessions: list[SessionRecord] = []
        next_token: str | None = None
        while True:
            data = await self.execute(
                LIST_SESSIONS_BY_CAMPAIGN_QUERY,
                {"campaignId": campaign_id, "nextToken": next_token},
            )
            page = data.get("listSessions") or {}
            sessions.extend(
                session_from_graphql(item) for item in page.get("items") or [] if item
            )
            next_token = page.get("nextToken")
            if not next_token:
                return sessions

    async def get_session(self, session_id: str) -> SessionRecord | None:
        """Return a session record, or None when it does not exist."""
        data = await self.execute(GET_SESSION_QUERY, {"id": session_id})
        row = data.get("getSession")
        return session_from_graphql(row) if row else None

    async def create_session(self, draft: SessionDraftInput) -> SessionRecord:
        """Create a session record with empty file fields."""
        data = await self.execute(
            CREATE_SESSION_MUTATION,
            {
                "input": {
                    "name": draft.name,
                    "date": draft.date,
                    "duration": draft.duration,
                    "audioFile": draft.audio_file,
                    "transcriptionFile": draft.transcription_file,
                    "transcriptionStatus": draft.transcription_status,
                    "campaignSessionsId": draft.campaign_sessions_id,
                }
            },
        )
        row = data.get("createSession")
        if not row or not row.get("id"):
            raise GraphQLError("Failed to create session - invalid session object")
        return session_from_graphql(row)

    async def update_session_files(
        self, session_id: str, files: SessionFiles, version: int | None
    ) -> SessionRecord:
        """Write final file keys; a stale version raises ConflictError."""
        session_input: dict[str, Any] = {
            "id": session_id,
            "audioFile": files.audio_file,
            "transcriptionFile": files.transcription_file,
            "transcriptionStatus": files.transcription_status,
        }
        if version is not None:
            session_input["_version"] = version
        data = await self.execute(UPDATE_SESSION_MUTATION, {"input": session_input})
        row = data.get("updateSession")
        if not row:
            raise GraphQLError(f"Failed to update session {session_id}")
        return session_from_graphql(row)

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        await self.http_client.aclose()

    def _auth_headers(self) -> dict[str, str]:
        if self.access_token:
            return {"Authorization": self.access_token}
        if self.api_key:
            return {"x-api-key": self.api_key}
        return {}


def _error_from_payload(errors: list[dict[str, Any]]) -> GraphQLError:
    message = "; ".join(str(error.get("message", "Unknown error")) for error in errors)
    error_types = {str(error.get("errorType")) for error in errors if error.get("errorType")}
    error_type = next(iter(sorted(error_types)), None)
    if error_types & CONFLICT_ERROR_TYPES:
        return ConflictError(f"GraphQL errors: {message}", error_type=error_type)
    if error_types & AUTH_ERROR_TYPES:
        return GraphQLAuthError(f"GraphQL errors: {message}", error_type=error_type)
    return GraphQLError(f"GraphQL errors: {message}", error_type=error_type)
