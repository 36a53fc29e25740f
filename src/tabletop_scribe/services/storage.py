"""Upload relay between clients and object storage."""

import base64
import binascii
import logging
from dataclasses import dataclass
from typing import BinaryIO, Protocol

from fastapi import status

from tabletop_scribe.config import MAX_CHUNK_BYTES, MAX_UPLOAD_BYTES, MIB
from tabletop_scribe.domain.uploads import (
    ObjectContent,
    PresignedUpload,
    StoredObject,
    UploadedPart,
)
from tabletop_scribe.errors import (
    ApiError,
    ErrorCode,
    not_found,
    too_large,
    validation_error,
)

logger = logging.getLogger(__name__)

AUDIO_PREFIX = "public/audioUploads/"
PRESIGNED_URL_TTL_SECONDS = 3600
MAX_PART_NUMBER = 10_000
IMAGE_EXTENSIONS = {".png", ".jpg", ".jpeg", ".gif", ".webp"}


class StorageError(RuntimeError):
    """Raised by storage adapters when the storage SDK fails."""


class ObjectStorage(Protocol):
    """Interface for bucket storage operations."""

    def put_object(
        self, bucket: str, key: str, body: BinaryIO, content_type: str
    ) -> StoredObject:
        """Write an object and return its location."""

    def presign_put(
        self, bucket: str, key: str, content_type: str, expires_in: int
    ) -> str:
        """Return a presigned PUT URL for a key."""

    def create_multipart_upload(
        self, bucket: str, key: str, content_type: str | None = None
    ) -> str:
        """Start a multipart upload and return its upload id."""

    def upload_part(  # noqa: PLR0913
        self, bucket: str, key: str, upload_id: str, part_number: int, body: BinaryIO
    ) -> str:
        """Upload one part and return its ETag."""

    def list_parts(self, bucket: str, key: str, upload_id: str) -> list[UploadedPart]:
        """Return the parts storage holds for a multipart upload."""

    def complete_multipart_upload(
        self, bucket: str, key: str, upload_id: str, parts: list[UploadedPart]
    ) -> StoredObject:
        """Assemble uploaded parts into the final object."""

    def abort_multipart_upload(self, bucket: str, key: str, upload_id: str) -> None:
        """Abort a multipart upload and discard its parts."""

    def get_object(self, bucket: str, key: str) -> ObjectContent | None:
        """Return an object's bytes, or None when the key does not exist."""


@dataclass
class StorageService:
    """Validates relay requests and forwards them to object storage."""

    storage: ObjectStorage
    bucket: str

    def generate_presigned_upload(
        self, file_name: str, file_size: int, content_type: str
    ) -> PresignedUpload:
        """Issue a presigned URL so the client can upload straight to storage."""
        _require_file_name(file_name)
        if not content_type:
            raise validation_error("Missing required field: contentType")
        if file_size <= 0:
            raise validation_error("fileSize must be a positive number of bytes")
        _check_size(file_size, MAX_UPLOAD_BYTES, ErrorCode.FILE_TOO_LARGE)
        key = audio_key(file_name)
        try:
            url = self.storage.presign_put(
                self.bucket, key, content_type, PRESIGNED_URL_TTL_SECONDS
            )
        except StorageError as exc:
            raise _storage_failure("Failed to generate presigned URL", exc) from exc
        return PresignedUpload(presigned_url=url, key=key, bucket=self.bucket)

    def upload_direct(
        self, file_name: str, body: BinaryIO, size: int, content_type: str
    ) -> StoredObject:
        """Relay a whole file to storage with server-held credentials."""
        _require_file_name(file_name)
        _check_size(size, MAX_UPLOAD_BYTES, ErrorCode.FILE_TOO_LARGE)
        key = audio_key(file_name)
        logger.info(
            "Uploading file to storage",
            extra={"key": key, "size_bytes": size},
        )
        try:
            stored = self.storage.put_object(self.bucket, key, body, content_type)
        except StorageError as exc:
            raise _storage_failure("Failed to upload file to storage", exc) from exc
        logger.info("Upload successful", extra={"location": stored.location})
        return stored

    def initiate_multipart(
        self, file_name: str, bucket: str, total_size: int | None = None
    ) -> tuple[str, str]:
        """Start a chunked upload and return (upload_id, key)."""
        _require_file_name(file_name)
        self._require_bucket(bucket)
        if total_size is not None:
            _check_size(total_size, MAX_UPLOAD_BYTES, ErrorCode.FILE_TOO_LARGE)
        key = audio_key(file_name)
        try:
            upload_id = self.storage.create_multipart_upload(bucket, key)
        except StorageError as exc:
            raise _storage_failure("Failed to initiate multipart upload", exc) from exc
        logger.info(
            "Multipart upload initiated",
            extra={"key": key, "upload_id": upload_id, "total_size": total_size},
        )
        return upload_id, key

    def upload_chunk(  # noqa: PLR0913
        self,
        upload_id: str,
        part_number: int,
        file_name: str,
        bucket: str,
        body: BinaryIO,
        size: int,
    ) -> UploadedPart:
        """Relay one chunk of a multipart upload."""
        _require_upload_id(upload_id)
        _require_file_name(file_name)
        self._require_bucket(bucket)
        if not 1 <= part_number <= MAX_PART_NUMBER:
            raise validation_error(
                f"partNumber must be between 1 and {MAX_PART_NUMBER}"
            )
        _check_size(size, MAX_CHUNK_BYTES, ErrorCode.FILE_TOO_LARGE)
        key = audio_key(file_name)
        try:
            etag = self.storage.upload_part(bucket, key, upload_id, part_number, body)
        except StorageError as exc:
            raise _storage_failure("Failed to upload chunk", exc) from exc
        return UploadedPart(part_number=part_number, etag=etag)

    def complete_multipart(
        self,
        upload_id: str,
        file_name: str,
        bucket: str,
        parts: list[UploadedPart],
    ) -> StoredObject:
        """Verify the caller's part list against storage and complete the upload."""
        _require_upload_id(upload_id)
        _require_file_name(file_name)
        self._require_bucket(bucket)
        _check_part_order(parts)
        key = audio_key(file_name)
        try:
            stored_parts = self.storage.list_parts(bucket, key, upload_id)
            _check_parts_match(parts, stored_parts)
            stored = self.storage.complete_multipart_upload(
                bucket, key, upload_id, parts
            )
        except StorageError as exc:
            raise _storage_failure("Failed to complete multipart upload", exc) from exc
        logger.info(
            "Multipart upload completed",
            extra={"key": key, "parts": len(parts)},
        )
        return stored

    def abort_multipart(self, upload_id: str, file_name: str, bucket: str) -> None:
        """Abort a chunked upload."""
        _require_upload_id(upload_id)
        _require_file_name(file_name)
        self._require_bucket(bucket)
        key = audio_key(file_name)
        try:
            self.storage.abort_multipart_upload(bucket, key, upload_id)
        except StorageError as exc:
            raise _storage_failure("Failed to abort multipart upload", exc) from exc
        logger.info("Multipart upload aborted", extra={"key": key})

    def get_image(self, encoded_key: str) -> ObjectContent:
        """Return image bytes for a base64-encoded object key."""
        key = decode_object_key(encoded_key)
        if not _is_image_key(key):
            raise not_found("Image not found")
        try:
            content = self.storage.get_object(self.bucket, key)
        except StorageError as exc:
            raise _storage_failure("Failed to fetch image", exc) from exc
        if content is None:
            raise not_found("Image not found")
        return content

    def _require_bucket(self, bucket: str) -> None:
        if not bucket:
            raise validation_error("Missing required field: bucket")
        if bucket != self.bucket:
            raise validation_error(f"Unknown bucket: {bucket}")


def audio_key(file_name: str) -> str:
    """Return the storage key for an uploaded audio file."""
    return f"{AUDIO_PREFIX}{file_name}"


def decode_object_key(encoded_key: str) -> str:
    """Decode a standard or URL-safe base64 object key."""
    padded = encoded_key + "=" * (-len(encoded_key) % 4)
    alphabet = b"-_" if "-" in padded or "_" in padded else None
    try:
        raw = base64.b64decode(padded, altchars=alphabet, validate=True)
        key = raw.decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as exc:
        raise validation_error("Invalid image key") from exc
    if not key or key.startswith("/") or ".." in key.split("/"):
        raise validation_error("Invalid image key")
    return key


def _is_image_key(key: str) -> bool:
    _, dot, extension = key.rpartition(".")
    return bool(dot) and f".{extension.lower()}" in IMAGE_EXTENSIONS


def _require_file_name(file_name: str) -> None:
    if not file_name:
        raise validation_error("Missing required field: fileName")
    if "/" in file_name or "\\" in file_name:
        raise validation_error("fileName must not contain path separators")


def _require_upload_id(upload_id: str) -> None:
    if not upload_id:
        raise validation_error("Missing required field: uploadId")


def _check_size(size: int, limit: int, code: str) -> None:
    if size > limit:
        raise too_large(
            code,
            f"File too large: {size / MIB:.2f}MB exceeds {limit // MIB}MB limit",
        )


def _check_part_order(parts: list[UploadedPart]) -> None:
    if not parts:
        raise ApiError(
            status.HTTP_400_BAD_REQUEST,
            ErrorCode.INVALID_PARTS,
            "At least one part is required",
        )
    numbers = [part.part_number for part in parts]
    if any(later <= earlier for earlier, later in zip(numbers, numbers[1:])):
        raise ApiError(
            status.HTTP_400_BAD_REQUEST,
            ErrorCode.INVALID_PARTS,
            "Parts must be listed in ascending partNumber order without duplicates",
        )


def _check_parts_match(
    parts: list[UploadedPart], stored_parts: list[UploadedPart]
) -> None:
    stored = {part.part_number: _normalize_etag(part.etag) for part in stored_parts}
    for part in parts:
        if stored.get(part.part_number) != _normalize_etag(part.etag):
            raise ApiError(
                status.HTTP_400_BAD_REQUEST,
                ErrorCode.INVALID_PARTS,
                f"Part {part.part_number} does not match an uploaded part",
            )


def _normalize_etag(etag: str) -> str:
    return etag.strip().strip('"')


def _storage_failure(message: str, exc: StorageError) -> ApiError:
    logger.exception(message)
    return ApiError(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        ErrorCode.STORAGE_ERROR,
        f"{message}: {exc}",
    )
