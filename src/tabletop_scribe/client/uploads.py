"""Uploads session recordings through the relay or a presigned URL."""

import logging
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

import httpx

from tabletop_scribe.config import MIB
from tabletop_scribe.domain import uploads
from tabletop_scribe.domain.uploads import UploadProgress

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_BYTES = 10 * MIB
STREAM_BLOCK_BYTES = 256 * 1024
DEFAULT_CONTENT_TYPE = "application/octet-stream"

ProgressCallback = Callable[[UploadProgress], None]


class UploadMode(Enum):
    """How the bytes reach storage."""

    PRESIGNED = "presigned"
    SERVER_SIDE = "server_side"
    CHUNKED = "chunked"


class UploadError(RuntimeError):
    """Raised when a file cannot be uploaded."""


@dataclass
class S3UploadService:
    """Uploads files to the audio prefix of the configured bucket."""

    api_base_url: str
    bucket: str
    http_client: httpx.AsyncClient
    chunk_size: int = DEFAULT_CHUNK_BYTES

    @classmethod
    def create(cls, api_base_url: str, bucket: str) -> "S3UploadService":
        """Create an upload service with a managed httpx session."""
        return cls(
            api_base_url=api_base_url.rstrip("/"),
            bucket=bucket,
            http_client=httpx.AsyncClient(timeout=httpx.Timeout(30, write=None)),
        )

    @staticmethod
    def generate_file_name(
        campaign_id: str, session_id: str, original_name: str
    ) -> str:
        """Return ``campaign<c>Session<s>.<ext>`` for an uploaded file."""
        return uploads.generate_file_name(campaign_id, session_id, original_name)

    async def upload_file(
        self,
        file_name: str,
        path: Path,
        content_type: str | None = None,
        on_progress: ProgressCallback | None = None,
        mode: UploadMode = UploadMode.PRESIGNED,
    ) -> str:
        """Upload a file under ``file_name`` and return its storage key."""
        resolved_type = content_type or DEFAULT_CONTENT_TYPE
        total = path.stat().st_size
        try:
            if mode is UploadMode.SERVER_SIDE:
                key = await self._upload_server_side(
                    file_name, path, resolved_type, total, on_progress
                )
            elif mode is UploadMode.CHUNKED:
                key = await self._upload_chunked(file_name, path, total, on_progress)
            else:
                key = await self._upload_presigned(
                    file_name, path, resolved_type, total, on_progress
                )
        except httpx.HTTPError as exc:
            raise UploadError(f"S3 upload failed: {exc}") from exc
        logger.info("Uploaded %s (%d bytes) via %s", key, total, mode.value)
        return key

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        await self.http_client.aclose()

    async def _upload_presigned(
        self,
        file_name: str,
        path: Path,
        content_type: str,
        total: int,
        on_progress: ProgressCallback | None,
    ) -> str:
        issued = await self._post_json(
            "/api/generate-presigned-url",
            {"fileName": file_name, "fileSize": total, "contentType": content_type},
        )
        response = await self.http_client.put(
            issued["presignedUrl"],
            content=_stream_file(path, total, on_progress),
            headers={"Content-Type": content_type, "Content-Length": str(total)},
        )
        if response.is_error:
            raise UploadError(
                f"S3 upload failed: storage answered {response.status_code}"
            )
        return str(issued["key"])

    async def _upload_server_side(
        self,
        file_name: str,
        path: Path,
        content_type: str,
        total: int,
        on_progress: ProgressCallback | None,
    ) -> str:
        _report(on_progress, 0, total)
        with path.open("rb") as handle:
            response = await self.http_client.post(
                f"{self.api_base_url}/api/upload-server-side",
                data={"fileName": file_name},
                files={"file": (path.name, handle, content_type)},
            )
        body = _relay_body(response)
        _report(on_progress, total, total)
        return str(body["key"])

    async def _upload_chunked(
        self,
        file_name: str,
        path: Path,
        total: int,
        on_progress: ProgressCallback | None,
    ) -> str:
        started = await self._post_json(
            "/api/initiate-multipart",
            {"fileName": file_name, "bucket": self.bucket, "totalSize": total},
        )
        upload_id = str(started["uploadId"])
        target = {"uploadId": upload_id, "fileName": file_name, "bucket": self.bucket}
        parts: list[dict[str, Any]] = []
        loaded = 0
        _report(on_progress, loaded, total)
        try:
            with path.open("rb") as handle:
                part_number = 1
                while chunk := handle.read(self.chunk_size):
                    response = await self.http_client.post(
                        f"{self.api_base_url}/api/upload-chunk",
                        data={**target, "partNumber": str(part_number)},
                        files={"chunk": (f"part{part_number}", chunk, DEFAULT_CONTENT_TYPE)},
                    )
                    part = _relay_body(response)
                    parts.append(
                        {"partNumber": part["partNumber"], "etag": part["etag"]}
                    )
                    loaded += len(chunk)
                    _report(on_progress, loaded, total)
                    part_number += 1
            completed = await self._post_json(
                "/api/complete-multipart", {**target, "parts": parts}
            )
        except (UploadError, httpx.HTTPError):
            logger.warning("Aborting multipart upload %s", upload_id)
            await self._abort_quietly(target)
            raise
        return str(completed["key"])

    async def _abort_quietly(self, target: dict[str, str]) -> None:
        try:
            await self.http_client.post(
                f"{self.api_base_url}/api/abort-multipart", json=target
            )
        except httpx.HTTPError:
            logger.exception("Failed to abort multipart upload")

    async def _post_json(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        response = await self.http_client.post(
            f"{self.api_base_url}{path}", json=payload
        )
        return _relay_body(response)


def _relay_body(response: httpx.Response) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        body = {}
    if response.is_error:
        message = body.get("message") if isinstance(body, dict) else None
        raise UploadError(
            f"S3 upload failed: {message or response.reason_phrase} "
            f"({response.status_code})"
        )
    return body


async def _stream_file(
    path: Path, total: int, on_progress: ProgressCallback | None
) -> AsyncIterator[bytes]:
    loaded = 0
    _report(on_progress, loaded, total)
    with path.open("rb") as handle:
        while block := handle.read(STREAM_BLOCK_BYTES):
            loaded += len(block)
            yield block
            _report(on_progress, loaded, total)


def _report(on_progress: ProgressCallback | None, loaded: int, total: int) -> None:
    if on_progress is None:
        return
    percentage = round(loaded / total * 100) if total else 100
    on_progress(UploadProgress(loaded=loaded, total=total, percentage=percentage))
