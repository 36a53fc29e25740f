"""Public, read-only view of a shared session."""

import logging
from dataclasses import dataclass
from typing import Any, Protocol

from fastapi import status

from tabletop_scribe.errors import ApiError, ErrorCode, not_found

logger = logging.getLogger(__name__)


class SessionLookupError(RuntimeError):
    """Raised when the session store cannot be queried."""


class PublicSessionReader(Protocol):
    """Interface for reading a session with its campaign and segments."""

    async def get_public_session(self, session_id: str) -> dict[str, Any] | None:
        """Return the raw session, or None when it does not exist."""


@dataclass
class ShareService:
    """Builds the public payload of a shared session."""

    reader: PublicSessionReader

    async def get_public_session(self, session_id: str) -> dict[str, Any]:
        """Return the session's public fields; raise 404 when it is missing."""
        if not session_id:
            raise not_found("Session not found")
        try:
            raw = await self.reader.get_public_session(session_id)
        except SessionLookupError as exc:
            logger.exception(
                "Failed to load shared session", extra={"session_id": session_id}
            )
            raise ApiError(
                status.HTTP_500_INTERNAL_SERVER_ERROR,
                ErrorCode.INTERNAL_ERROR,
                "Failed to load shared session",
            ) from exc
        if raw is None:
            raise not_found("Session not found")
        return to_public_session(raw)


def to_public_session(raw: dict[str, Any]) -> dict[str, Any]:
    """Keep the public fields and order segments by index, then creation time."""
    campaign = raw.get("campaign") or None
    segments = (raw.get("segments") or {}).get("items") or []
    ordered = sorted(
        (segment for segment in segments if segment),
        key=lambda segment: (
            segment.get("index") is None,
            segment.get("index") or 0,
            segment.get("createdAt") or "",
        ),
    )
    return {
        "id": raw["id"],
        "name": raw.get("name"),
        "date": raw.get("date"),
        "duration": raw.get("duration"),
        "tldr": raw.get("tldr"),
        "campaign": (
            {"id": campaign.get("id"), "name": campaign.get("name")}
            if campaign
            else None
        ),
        "segments": [
            {
                "id": segment.get("id"),
                "title": segment.get("title"),
                "description": segment.get("description"),
                "image": segment.get("image"),
                "createdAt": segment.get("createdAt"),
            }
            for segment in ordered
        ],
    }
