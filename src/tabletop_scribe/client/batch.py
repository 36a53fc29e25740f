"""Sequential multi-session upload with per-draft retry."""

import asyncio
import logging
import mimetypes
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Protocol
from uuid import uuid4

from tabletop_scribe.client.audio import probe_duration_ms
from tabletop_scribe.client.graphql import ConflictError
from tabletop_scribe.client.retry import RetryPolicy, Sleep, fixed_delay
from tabletop_scribe.client.uploads import ProgressCallback, UploadMode
from tabletop_scribe.config import MAX_UPLOAD_BYTES, MIB
from tabletop_scribe.domain.sessions import (
    SessionDraftInput,
    SessionFiles,
    SessionRecord,
)
from tabletop_scribe.domain.uploads import (
    UploadProgress,
    generate_file_name,
    transcription_file_name,
)

logger = logging.getLogger(__name__)

MAX_SESSIONS = 5
MAX_RETRIES = 2
RETRY_DELAY_SECONDS = 2.0
INTER_DRAFT_DELAY_SECONDS = 3.0


class UploadStatus(Enum):
    """Lifecycle of a draft or a whole batch."""

    IDLE = "idle"
    UPLOADING = "uploading"
    SUCCESS = "success"
    ERROR = "error"


class BatchValidationError(ValueError):
    """Raised when a batch cannot be submitted as it stands."""


class SessionGateway(Protocol):
    """Session record operations the uploader needs."""

    async def create_session(self, draft: SessionDraftInput) -> SessionRecord:
        """Create a session record."""

    async def get_session(self, session_id: str) -> SessionRecord | None:
        """Fetch a session record."""

    async def update_session_files(
        self, session_id: str, files: SessionFiles, version: int | None
    ) -> SessionRecord:
        """Write final file keys to a session record."""


class FileUploader(Protocol):
    """Byte transfer the uploader needs."""

    async def upload_file(
        self,
        file_name: str,
        path: Path,
        content_type: str | None = None,
        on_progress: ProgressCallback | None = None,
        mode: UploadMode = UploadMode.PRESIGNED,
    ) -> str:
        """Upload a file and return its storage key."""


@dataclass
class UploadJob:
    """One draft of a batch and its upload state."""

    id: str
    file: Path | None
    name: str
    date: str
    status: UploadStatus = UploadStatus.IDLE
    progress: UploadProgress | None = None
    error_message: str | None = None


@dataclass
class MultiSessionUploader:
    """Uploads up to five session recordings of one campaign, one at a time."""

    campaign_id: str
    sessions: SessionGateway
    uploader: FileUploader
    probe: Callable[[Path], Awaitable[int]] = field(default=probe_duration_ms)
    sleep: Sleep = field(default=asyncio.sleep)
    on_change: Callable[[UploadJob], None] | None = None
    upload_mode: UploadMode = UploadMode.PRESIGNED
    jobs: list[UploadJob] = field(default_factory=list)
    status: UploadStatus = UploadStatus.IDLE
    error_message: str | None = None
    completed: int = 0
    current_index: int | None = None

    def add_draft(self, file: Path | None, name: str, date: str) -> UploadJob:
        """Add a draft; files over 300MB are refused here."""
        self._require_editable()
        if len(self.jobs) >= MAX_SESSIONS:
            raise BatchValidationError(
                f"A batch holds at most {MAX_SESSIONS} sessions"
            )
        if file is not None:
            _check_file_size(file)
        job = UploadJob(id=uuid4().hex, file=file, name=name, date=date)
        self.jobs.append(job)
        return job

    def remove_draft(self, job_id: str) -> None:
        """Remove a draft from an unsubmitted batch."""
        self._require_editable()
        self.jobs = [job for job in self.jobs if job.id != job_id]

    def validate(self) -> None:
        """Raise BatchValidationError unless the batch can be submitted."""
        if not 1 <= len(self.jobs) <= MAX_SESSIONS:
            raise BatchValidationError(
                f"A batch needs between 1 and {MAX_SESSIONS} sessions"
            )
        problems = []
        for index, job in enumerate(self.jobs, start=1):
            missing = [
                label
                for label, value in (
                    ("file", job.file),
                    ("name", job.name.strip()),
                    ("date", job.date.strip()),
                )
                if not value
            ]
            if missing:
                problems.append(f"session {index} is missing {', '.join(missing)}")
        if problems:
            raise BatchValidationError("; ".join(problems))

    async def submit(self) -> UploadStatus:
        """Upload every draft in order and return the batch status."""
        if self.status is not UploadStatus.IDLE:
            raise BatchValidationError(
                "Batch already submitted; call reset() before uploading again"
            )
        self.validate()
        self.status = UploadStatus.UPLOADING
        self.error_message = None
        self.completed = 0
        policy = RetryPolicy(
            max_attempts=MAX_RETRIES + 1,
            delay=fixed_delay(RETRY_DELAY_SECONDS),
            is_retryable=_is_retryable,
            sleep=self.sleep,
        )
        for index, job in enumerate(self.jobs):
            self.current_index = index
            if index > 0:
                await self.sleep(INTER_DRAFT_DELAY_SECONDS)
            logger.info(
                "Starting upload %d/%d: %s", index + 1, len(self.jobs), job.name
            )
            try:
                await policy.run(
                    lambda job=job: self._upload_one(job),
                    on_retry=lambda attempt, _exc, job=job: self._mark_retry(
                        job, attempt
                    ),
                )
            except Exception as exc:
                logger.exception("Upload failed for session %s", job.name)
                job.status = UploadStatus.ERROR
                job.progress = None
                job.error_message = f"Failed after {MAX_RETRIES} retries: {exc}"
                self._changed(job)
                self.status = UploadStatus.ERROR
                self.current_index = None
                self.error_message = (
                    f'Failed to upload session "{job.name}" after '
                    f"{MAX_RETRIES} retries: {exc}"
                )
                return self.status
            self.completed = index + 1
        self.status = UploadStatus.SUCCESS
        self.current_index = None
        logger.info("All %d sessions uploaded", len(self.jobs))
        return self.status

    def reset(self) -> None:
        """Clear drafts and state so a new batch can be built."""
        self.jobs = []
        self.status = UploadStatus.IDLE
        self.error_message = None
        self.completed = 0
        self.current_index = None

    async def _upload_one(self, job: UploadJob) -> None:
        if job.file is None:
            raise BatchValidationError("Missing file")
        job.status = UploadStatus.UPLOADING
        job.error_message = None
        self._progress(job, 0, "Analyzing audio file...")
        duration = await self.probe(job.file)

        self._progress(job, 10, "Creating session...")
        record = await self.sessions.create_session(
            SessionDraftInput(
                name=job.name,
                date=job.date,
                duration=duration,
                campaign_sessions_id=self.campaign_id,
            )
        )

        self._progress(job, 30, "Uploading audio file...")
        file_name = generate_file_name(self.campaign_id, record.id, job.file.name)
        content_type, _ = mimetypes.guess_type(job.file.name)
        await self.uploader.upload_file(
            file_name,
            job.file,
            content_type=content_type,
            on_progress=lambda progress: self._progress(
                job, 30 + progress.percentage * 0.4, "Uploading to S3..."
            ),
            mode=self.upload_mode,
        )

        self._progress(job, 70, "Updating session data...")
        files = SessionFiles(
            audio_file=file_name,
            transcription_file=transcription_file_name(self.campaign_id, record.id),
        )
        await self._patch_session(record, files)

        job.status = UploadStatus.SUCCESS
        self._progress(job, 100, "Upload complete!")

    async def _patch_session(self, record: SessionRecord, files: SessionFiles) -> None:
        try:
            await self.sessions.update_session_files(record.id, files, record.version)
        except ConflictError:
            logger.warning("Session %s changed since creation, re-fetching", record.id)
            fresh = await self.sessions.get_session(record.id)
            if fresh is None:
                raise
            await self.sessions.update_session_files(record.id, files, fresh.version)

    def _mark_retry(self, job: UploadJob, attempt: int) -> None:
        self._progress(job, 0, f"Retrying upload ({attempt}/{MAX_RETRIES})...")

    def _progress(self, job: UploadJob, percentage: float, status: str) -> None:
        job.progress = UploadProgress(
            loaded=round(percentage), total=100, percentage=percentage, status=status
        )
        self._changed(job)

    def _changed(self, job: UploadJob) -> None:
        if self.on_change is not None:
            self.on_change(job)

    def _require_editable(self) -> None:
        if self.status is not UploadStatus.IDLE:
            raise BatchValidationError("Batch can no longer be edited; call reset()")


def _is_retryable(exc: Exception) -> bool:
    return not isinstance(exc, BatchValidationError | ConflictError)


def _check_file_size(file: Path) -> None:
    size = file.stat().st_size
    if size > MAX_UPLOAD_BYTES:
        raise BatchValidationError(
            f"File too large: {size / MIB:.2f}MB. Maximum size is "
            f"{MAX_UPLOAD_BYTES // MIB}MB."
        )
