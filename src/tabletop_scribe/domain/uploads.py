"""Domain models for file uploads."""

from dataclasses import dataclass


@dataclass(frozen=True)
class UploadProgress:
    """Progress snapshot reported while a file is being uploaded."""

    loaded: int
    total: int
    percentage: float
    status: str = ""


@dataclass(frozen=True)
class PresignedUpload:
    """A time-limited URL the client can PUT a file to."""

    presigned_url: str
    key: str
    bucket: str


@dataclass(frozen=True)
class StoredObject:
    """Location of an object written to storage."""

    location: str
    key: str


@dataclass(frozen=True)
class UploadedPart:
    """A multipart upload part as reported by the caller or by storage."""

    part_number: int
    etag: str


@dataclass(frozen=True)
class ObjectContent:
    """Bytes and content type of a stored object."""

    body: bytes
    content_type: str


def generate_file_name(campaign_id: str, session_id: str, original_name: str) -> str:
    """Build the canonical audio file name for a campaign session."""
    extension = original_name.rsplit(".", maxsplit=1)[-1]
    return f"campaign{campaign_id}Session{session_id}.{extension}"


def transcription_file_name(campaign_id: str, session_id: str) -> str:
    """Build the transcription file name paired with a session's audio."""
    return f"campaign{campaign_id}Session{session_id}.json"
