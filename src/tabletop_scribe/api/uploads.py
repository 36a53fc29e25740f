"""Upload relay endpoints."""

from __future__ import annotations

from fastapi import APIRouter, File, Form, Request, UploadFile
from starlette.concurrency import run_in_threadpool

from tabletop_scribe.api.dependencies import get_container
from tabletop_scribe.api.models import (
    AbortMultipartRequest,
    CompleteMultipartRequest,
    InitiateMultipartRequest,
    PresignedUrlRequest,
)
from tabletop_scribe.domain.uploads import UploadedPart
from tabletop_scribe.errors import validation_error

router = APIRouter(prefix="/api", tags=["uploads"])

DEFAULT_CONTENT_TYPE = "application/octet-stream"


@router.post("/generate-presigned-url")
async def generate_presigned_url(
    body: PresignedUrlRequest, request: Request
) -> dict[str, str]:
    """Issue a presigned PUT URL for a direct browser upload."""
    storage_service = get_container(request).storage_service
    upload = await run_in_threadpool(
        storage_service.generate_presigned_upload,
        body.file_name,
        body.file_size,
        body.content_type,
    )
    return {
        "presignedUrl": upload.presigned_url,
        "key": upload.key,
        "bucket": upload.bucket,
    }


@router.post("/upload-server-side")
async def upload_server_side(
    request: Request,
    file: UploadFile | None = File(default=None),
    file_name: str = Form(default="", alias="fileName"),
) -> dict[str, str]:
    """Relay a whole file to storage."""
    if file is None:
        raise validation_error("No file provided")
    storage_service = get_container(request).storage_service
    stored = await run_in_threadpool(
        storage_service.upload_direct,
        file_name,
        file.file,
        file.size or 0,
        file.content_type or DEFAULT_CONTENT_TYPE,
    )
    return {"location": stored.location, "key": stored.key}


@router.post("/initiate-multipart")
async def initiate_multipart(
    body: InitiateMultipartRequest, request: Request
) -> dict[str, str]:
    """Start a chunked upload."""
    storage_service = get_container(request).storage_service
    upload_id, key = await run_in_threadpool(
        storage_service.initiate_multipart,
        body.file_name,
        body.bucket,
        body.total_size,
    )
    return {"uploadId": upload_id, "key": key}


@router.post("/upload-chunk")
async def upload_chunk(  # noqa: PLR0913
    request: Request,
    chunk: UploadFile | None = File(default=None),
    upload_id: str = Form(default="", alias="uploadId"),
    part_number: int = Form(default=0, alias="partNumber"),
    file_name: str = Form(default="", alias="fileName"),
    bucket: str = Form(default=""),
) -> dict[str, object]:
    """Relay one chunk of a multipart upload."""
    if chunk is None:
        raise validation_error("No chunk provided")
    storage_service = get_container(request).storage_service
    part = await run_in_threadpool(
        storage_service.upload_chunk,
        upload_id,
        part_number,
        file_name,
        bucket,
        chunk.file,
        chunk.size or 0,
    )
    return {"partNumber": part.part_number, "etag": part.etag}


@router.post("/complete-multipart")
async def complete_multipart(
    body: CompleteMultipartRequest, request: Request
) -> dict[str, str]:
    """Verify the part list and assemble the final object."""
    storage_service = get_container(request).storage_service
    parts = [
        UploadedPart(part_number=part.part_number, etag=part.etag)
        for part in body.parts
    ]
    stored = await run_in_threadpool(
        storage_service.complete_multipart,
        body.upload_id,
        body.file_name,
        body.bucket,
        parts,
    )
    return {"location": stored.location, "key": stored.key}


@router.post("/abort-multipart")
async def abort_multipart(
    body: AbortMultipartRequest, request: Request
) -> dict[str, bool]:
    """Abort a chunked upload."""
    storage_service = get_container(request).storage_service
    await run_in_threadpool(
        storage_service.abort_multipart,
        body.upload_id,
        body.file_name,
        body.bucket,
    )
    return {"success": True}
