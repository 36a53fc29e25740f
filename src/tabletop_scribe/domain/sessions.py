"""Domain models for recorded game sessions."""

from dataclasses import dataclass

NOT_STARTED = "NOTSTARTED"
UPLOADED = "UPLOADED"


@dataclass(frozen=True)
class SessionRecord:
    """A session row as stored in AppSync."""

    id: str
    name: str
    date: str
    duration: int
    audio_file: str
    transcription_file: str
    transcription_status: str
    campaign_sessions_id: str
    version: int | None = None


@dataclass(frozen=True)
class SessionDraftInput:
    """Fields sent when creating a new session record."""

    name: str
    date: str
    duration: int
    campaign_sessions_id: str
    audio_file: str = ""
    transcription_file: str = ""
    transcription_status: str = NOT_STARTED


@dataclass(frozen=True)
class SessionFiles:
    """Final storage keys written back to a session after upload."""

    audio_file: str
    transcription_file: str
    transcription_status: str = UPLOADED


def session_from_graphql(row: dict[str, object]) -> SessionRecord:
    """Map an AppSync session object to a record."""
    version = row.get("_version")
    return SessionRecord(
        id=str(row["id"]),
        name=str(row.get("name") or ""),
        date=str(row.get("date") or ""),
        duration=int(row.get("duration") or 0),
        audio_file=str(row.get("audioFile") or ""),
        transcription_file=str(row.get("transcriptionFile") or ""),
        transcription_status=str(row.get("transcriptionStatus") or NOT_STARTED),
        campaign_sessions_id=str(row.get("campaignSessionsId") or ""),
        version=int(version) if isinstance(version, int | float) else None,
    )
