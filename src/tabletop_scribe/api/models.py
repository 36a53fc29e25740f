"""Pydantic request models for the upload relay and processing endpoints."""

from pydantic import BaseModel, ConfigDict, Field


class RelayRequest(BaseModel):
    """Base for camelCase JSON request bodies."""

    model_config = ConfigDict(populate_by_name=True)


class PresignedUrlRequest(RelayRequest):
    """Body of a presigned URL request."""

    file_name: str = Field(default="", alias="fileName")
    file_size: int = Field(default=0, alias="fileSize")
    content_type: str = Field(default="", alias="contentType")


class InitiateMultipartRequest(RelayRequest):
    """Body of a multipart initiation request."""

    file_name: str = Field(default="", alias="fileName")
    bucket: str = ""
    total_size: int | None = Field(default=None, alias="totalSize")


class PartModel(RelayRequest):
    """One uploaded part reported by the client."""

    part_number: int = Field(alias="partNumber")
    etag: str


class CompleteMultipartRequest(RelayRequest):
    """Body of a multipart completion request."""

    upload_id: str = Field(default="", alias="uploadId")
    file_name: str = Field(default="", alias="fileName")
    bucket: str = ""
    parts: list[PartModel] = Field(default_factory=list)


class AbortMultipartRequest(RelayRequest):
    """Body of a multipart abort request."""

    upload_id: str = Field(default="", alias="uploadId")
    file_name: str = Field(default="", alias="fileName")
    bucket: str = ""


class TriggerProcessingRequest(RelayRequest):
    """Body of a processing trigger request."""

    session_id: str = Field(default="", alias="sessionId")
    campaign_id: str = Field(default="", alias="campaignId")
    audio_filename: str = ""
    user_specified_fields: dict[str, object] = Field(default_factory=dict)
