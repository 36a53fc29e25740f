"""AppSync GraphQL client used by the server with the API key."""

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from tabletop_scribe.services.share import PublicSessionReader, SessionLookupError

logger = logging.getLogger(__name__)

PUBLIC_SESSION_QUERY = """
query GetPublicSession($id: ID!) {
  getSession(id: $id) {
    id
    name
    date
    duration
    tldr
    _deleted
    campaign {
      id
      name
    }
    segments {
      items {
        id
        title
        description
        image
        index
        createdAt
        updatedAt
      }
    }
  }
}
"""


@dataclass
class HttpxAppSyncClient(PublicSessionReader):
    """HTTPX-backed AppSync client authenticated with an API key."""

    endpoint: str
    api_key: str
    http_client: httpx.AsyncClient

    @classmethod
    def create(cls, endpoint: str, api_key: str) -> "HttpxAppSyncClient":
        """Create an AppSync client with a managed httpx session."""
        return cls(
            endpoint=endpoint, api_key=api_key, http_client=httpx.AsyncClient()
        )

    async def execute(
        self, query: str, variables: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        """Run a GraphQL operation and return its data object."""
        try:
            response = await self.http_client.post(
                self.endpoint,
                headers={"x-api-key": self.api_key},
                json={"query": query, "variables": variables or {}},
                timeout=15,
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise SessionLookupError(f"AppSync request failed: {exc}") from exc
        payload = response.json()
        errors = payload.get("errors")
        if errors:
            message = "; ".join(str(error.get("message")) for error in errors)
            raise SessionLookupError(f"AppSync returned errors: {message}")
        return payload.get("data") or {}

    async def get_public_session(self, session_id: str) -> dict[str, Any] | None:
        """Return the raw session with campaign and segments, if it exists."""
        data = await self.execute(PUBLIC_SESSION_QUERY, {"id": session_id})
        session = data.get("getSession")
        if not session or session.get("_deleted"):
            return None
        return session

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        await self.http_client.aclose()
