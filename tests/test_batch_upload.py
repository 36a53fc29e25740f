"""Tests for the multi-session batch uploader."""

import asyncio
import wave
from dataclasses import dataclass, field, replace
from pathlib import Path

import pytest

from tabletop_scribe.client import audio
from tabletop_scribe.client.batch import (
    BatchValidationError,
    MultiSessionUploader,
    UploadStatus,
)
from tabletop_scribe.client.graphql import ConflictError
from tabletop_scribe.client.uploads import ProgressCallback, UploadMode
from tabletop_scribe.domain.sessions import (
    SessionDraftInput,
    SessionFiles,
    SessionRecord,
)
from tabletop_scribe.domain.uploads import UploadProgress


@dataclass
class FakeSessionGateway:
    records: dict[str, SessionRecord] = field(default_factory=dict)
    updates: list[tuple[str, SessionFiles, int | None]] = field(default_factory=list)
    conflicts: int = 0
    events: list[str] = field(default_factory=list)

    async def create_session(self, draft: SessionDraftInput) -> SessionRecord:
        session_id = f"s{len(self.records) + 1}"
        record = SessionRecord(
            id=session_id,
            name=draft.name,
            date=draft.date,
            duration=draft.duration,
            audio_file=draft.audio_file,
            transcription_file=draft.transcription_file,
            transcription_status=draft.transcription_status,
            campaign_sessions_id=draft.campaign_sessions_id,
            version=1,
        )
        self.records[session_id] = record
        self.events.append(f"create:{draft.name}")
        return record

    async def get_session(self, session_id: str) -> SessionRecord | None:
        record = self.records.get(session_id)
        if record is None:
            return None
        fresh = replace(record, version=(record.version or 0) + 1)
        self.records[session_id] = fresh
        return fresh

    async def update_session_files(
        self, session_id: str, files: SessionFiles, version: int | None
    ) -> SessionRecord:
        if self.conflicts:
            self.conflicts -= 1
            raise ConflictError("stale version", error_type="ConflictUnhandled")
        self.updates.append((session_id, files, version))
        self.events.append(f"update:{session_id}")
        return self.records[session_id]


@dataclass
class FakeUploader:
    failures: int = 0
    uploads: list[str] = field(default_factory=list)
    in_flight: int = 0
    max_in_flight: int = 0

    async def upload_file(
        self,
        file_name: str,
        path: Path,
        content_type: str | None = None,
        on_progress: ProgressCallback | None = None,
        mode: UploadMode = UploadMode.PRESIGNED,
    ) -> str:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
            if self.failures:
                self.failures -= 1
                raise RuntimeError("S3 upload failed: connection reset")
            if on_progress is not None:
                on_progress(UploadProgress(loaded=1, total=1, percentage=100))
            self.uploads.append(file_name)
            return f"public/audioUploads/{file_name}"
        finally:
            self.in_flight -= 1


@dataclass
class RecordingSleep:
    delays: list[float] = field(default_factory=list)

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


async def _probe(_path: Path) -> int:
    return 5400000


def _audio(tmp_path: Path, name: str) -> Path:
    path = tmp_path / name
    path.write_bytes(b"ID3" + b"\x00" * 16)
    return path


def _uploader(
    sessions: FakeSessionGateway,
    uploader: FakeUploader,
    sleep: RecordingSleep,
) -> MultiSessionUploader:
    return MultiSessionUploader(
        campaign_id="c1",
        sessions=sessions,
        uploader=uploader,
        probe=_probe,
        sleep=sleep,
    )


def test_drafts_upload_in_order_one_at_a_time(tmp_path: Path) -> None:
    sessions = FakeSessionGateway()
    files = FakeUploader()
    sleep = RecordingSleep()
    batch = _uploader(sessions, files, sleep)
    for index in range(1, 4):
        batch.add_draft(_audio(tmp_path, f"night{index}.mp3"), f"Night {index}", "2026-03-01")

    status = asyncio.run(batch.submit())

    assert status is UploadStatus.SUCCESS
    assert sessions.events == [
        "create:Night 1",
        "update:s1",
        "create:Night 2",
        "update:s2",
        "create:Night 3",
        "update:s3",
    ]
    assert files.uploads == [
        "campaignc1Sessions1.mp3",
        "campaignc1Sessions2.mp3",
        "campaignc1Sessions3.mp3",
    ]
    assert files.max_in_flight == 1
    assert sleep.delays == [3.0, 3.0]
    assert batch.completed == 3
    assert all(job.status is UploadStatus.SUCCESS for job in batch.jobs)


def test_session_record_gets_final_file_names(tmp_path: Path) -> None:
    sessions = FakeSessionGateway()
    batch = _uploader(sessions, FakeUploader(), RecordingSleep())
    batch.add_draft(_audio(tmp_path, "night.m4a"), "Night", "2026-03-01")

    asyncio.run(batch.submit())

    session_id, files, version = sessions.updates[0]
    assert session_id == "s1"
    assert files.audio_file == "campaignc1Sessions1.m4a"
    assert files.transcription_file == "campaignc1Sessions1.json"
    assert files.transcription_status == "UPLOADED"
    assert version == 1
    assert sessions.records["s1"].duration == 5400000


def test_draft_succeeds_on_third_attempt(tmp_path: Path) -> None:
    statuses: list[str] = []
    sleep = RecordingSleep()
    batch = MultiSessionUploader(
        campaign_id="c1",
        sessions=FakeSessionGateway(),
        uploader=FakeUploader(failures=2),
        probe=_probe,
        sleep=sleep,
        on_change=lambda job: statuses.append(job.progress.status),
    )
    batch.add_draft(_audio(tmp_path, "night.mp3"), "Night", "2026-03-01")

    status = asyncio.run(batch.submit())

    assert status is UploadStatus.SUCCESS
    assert sleep.delays == [2.0, 2.0]
    assert "Retrying upload (1/2)..." in statuses
    assert "Retrying upload (2/2)..." in statuses
    assert statuses[-1] == "Upload complete!"


def test_third_failure_stops_the_batch(tmp_path: Path) -> None:
    sessions = FakeSessionGateway()
    files = FakeUploader(failures=3)
    batch = _uploader(sessions, files, RecordingSleep())
    batch.add_draft(_audio(tmp_path, "a.mp3"), "First", "2026-03-01")
    batch.add_draft(_audio(tmp_path, "b.mp3"), "Second", "2026-03-08")

    status = asyncio.run(batch.submit())

    assert status is UploadStatus.ERROR
    first, second = batch.jobs
    assert first.status is UploadStatus.ERROR
    assert first.error_message is not None
    assert first.error_message.startswith("Failed after 2 retries:")
    assert second.status is UploadStatus.IDLE
    assert "create:Second" not in sessions.events
    assert batch.error_message is not None
    assert '"First"' in batch.error_message


def test_validation_failure_makes_no_calls(tmp_path: Path) -> None:
    sessions = FakeSessionGateway()
    files = FakeUploader()
    batch = _uploader(sessions, files, RecordingSleep())
    batch.add_draft(_audio(tmp_path, "a.mp3"), "First", "2026-03-01")
    batch.add_draft(None, "", "2026-03-08")

    with pytest.raises(BatchValidationError, match="session 2 is missing file, name"):
        asyncio.run(batch.submit())

    assert sessions.events == []
    assert files.uploads == []
    assert batch.status is UploadStatus.IDLE


def test_empty_batch_is_invalid() -> None:
    batch = _uploader(FakeSessionGateway(), FakeUploader(), RecordingSleep())

    with pytest.raises(BatchValidationError):
        batch.validate()


def test_batch_holds_at_most_five_drafts(tmp_path: Path) -> None:
    batch = _uploader(FakeSessionGateway(), FakeUploader(), RecordingSleep())
    for index in range(5):
        batch.add_draft(_audio(tmp_path, f"{index}.mp3"), f"N{index}", "2026-03-01")

    with pytest.raises(BatchValidationError):
        batch.add_draft(_audio(tmp_path, "6.mp3"), "N6", "2026-03-01")


def test_oversized_file_is_refused_at_selection(tmp_path: Path) -> None:
    big = tmp_path / "big.wav"
    with big.open("wb") as handle:
        handle.truncate(300 * 1024 * 1024 + 1)
    batch = _uploader(FakeSessionGateway(), FakeUploader(), RecordingSleep())

    with pytest.raises(BatchValidationError, match="Maximum size is 300MB"):
        batch.add_draft(big, "Big", "2026-03-01")


def test_conflict_refetches_version_once(tmp_path: Path) -> None:
    sessions = FakeSessionGateway(conflicts=1)
    batch = _uploader(sessions, FakeUploader(), RecordingSleep())
    batch.add_draft(_audio(tmp_path, "a.mp3"), "First", "2026-03-01")

    status = asyncio.run(batch.submit())

    assert status is UploadStatus.SUCCESS
    assert sessions.updates[0][2] == 2


def test_resubmit_requires_reset(tmp_path: Path) -> None:
    batch = _uploader(FakeSessionGateway(), FakeUploader(), RecordingSleep())
    batch.add_draft(_audio(tmp_path, "a.mp3"), "First", "2026-03-01")
    asyncio.run(batch.submit())

    with pytest.raises(BatchValidationError):
        asyncio.run(batch.submit())
    with pytest.raises(BatchValidationError):
        batch.add_draft(_audio(tmp_path, "b.mp3"), "Second", "2026-03-02")

    batch.reset()
    assert batch.jobs == []
    assert batch.status is UploadStatus.IDLE


def test_progress_moves_through_stages(tmp_path: Path) -> None:
    changes: list[float] = []
    batch = MultiSessionUploader(
        campaign_id="c1",
        sessions=FakeSessionGateway(),
        uploader=FakeUploader(),
        probe=_probe,
        sleep=RecordingSleep(),
        on_change=lambda job: changes.append(job.progress.percentage),
    )
    batch.add_draft(_audio(tmp_path, "a.mp3"), "First", "2026-03-01")

    asyncio.run(batch.submit())

    assert changes == [0, 10, 30, 70, 70, 100]


def test_wav_probe_fallback(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = tmp_path / "tone.wav"
    with wave.open(str(path), "wb") as wav_file:
        wav_file.setnchannels(1)
        wav_file.setsampwidth(2)
        wav_file.setframerate(8000)
        wav_file.writeframes(b"\x00\x00" * 4000)
    monkeypatch.setattr(audio.shutil, "which", lambda _name: None)

    assert asyncio.run(audio.probe_duration_ms(path)) == 500


def test_probe_without_ffprobe_rejects_mp3(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(audio.shutil, "which", lambda _name: None)

    with pytest.raises(audio.AudioProbeError):
        asyncio.run(audio.probe_duration_ms(_audio(tmp_path, "a.mp3")))
