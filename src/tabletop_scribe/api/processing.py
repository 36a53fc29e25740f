"""Processing trigger endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Request
from starlette.concurrency import run_in_threadpool

from tabletop_scribe.api.dependencies import get_container
from tabletop_scribe.api.models import TriggerProcessingRequest

router = APIRouter(prefix="/api", tags=["processing"])


@router.post("/trigger-lambda")
async def trigger_lambda(
    body: TriggerProcessingRequest, request: Request
) -> dict[str, object]:
    """Queue transcription and summary for an uploaded session."""
    processing_service = get_container(request).processing_service
    status_code = await run_in_threadpool(
        processing_service.trigger,
        body.session_id,
        body.campaign_id,
        body.audio_filename,
        body.user_specified_fields,
    )
    return {
        "success": True,
        "message": "Audio processing started successfully",
        "statusCode": status_code,
    }
