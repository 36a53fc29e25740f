"""Triggers the external transcription and summary function."""

import logging
from dataclasses import dataclass
from typing import Protocol

from fastapi import status

from tabletop_scribe.errors import ApiError, ErrorCode, validation_error

logger = logging.getLogger(__name__)

ASYNC_ACCEPTED = 202


class ProcessingInvokerError(RuntimeError):
    """Raised when the function invocation itself fails."""


class FunctionInvoker(Protocol):
    """Interface for asynchronous function invocation."""

    def invoke_async(self, function_name: str, payload: dict[str, object]) -> int:
        """Queue an event invocation and return the service status code."""


@dataclass
class ProcessingService:
    """Starts processing for an uploaded session recording."""

    invoker: FunctionInvoker
    function_name: str

    def trigger(
        self,
        session_id: str,
        campaign_id: str,
        audio_filename: str,
        user_specified_fields: dict[str, object] | None = None,
    ) -> int:
        """Invoke the processing function and return its status code."""
        if not session_id or not campaign_id or not audio_filename:
            raise validation_error(
                "Missing required fields: sessionId, campaignId, audio_filename"
            )
        payload: dict[str, object] = {
            "sessionId": session_id,
            "campaignId": campaign_id,
            "audio_filename": audio_filename,
            "user_specified_fields": user_specified_fields or {},
        }
        try:
            status_code = self.invoker.invoke_async(self.function_name, payload)
        except ProcessingInvokerError as exc:
            logger.exception(
                "Failed to trigger processing function",
                extra={"session_id": session_id},
            )
            raise _processing_failure(str(exc)) from exc
        if status_code != ASYNC_ACCEPTED:
            logger.error(
                "Processing function returned unexpected status",
                extra={"session_id": session_id, "status_code": status_code},
            )
            raise _processing_failure(
                f"Lambda invocation failed with status: {status_code}"
            )
        logger.info("Processing triggered", extra={"session_id": session_id})
        return status_code


def _processing_failure(detail: str) -> ApiError:
    return ApiError(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        ErrorCode.PROCESSING_ERROR,
        f"Failed to trigger audio processing: {detail}",
    )
