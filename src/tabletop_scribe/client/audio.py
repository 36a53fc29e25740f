"""Audio duration probing."""

import asyncio
import contextlib
import json
import logging
import shutil
import wave
from pathlib import Path

logger = logging.getLogger(__name__)


class AudioProbeError(RuntimeError):
    """Raised when a file's duration cannot be determined."""


async def probe_duration_ms(path: Path) -> int:
    """Return the duration of an audio file in whole milliseconds.

    Uses ffprobe when it is installed and falls back to reading WAV headers.
    """
    if shutil.which("ffprobe"):
        return await _ffprobe_duration_ms(path)
    if path.suffix.lower() == ".wav":
        return _wav_duration_ms(path)
    raise AudioProbeError(
        f"Failed to load audio metadata for {path.name}: ffprobe is not installed"
    )


async def _ffprobe_duration_ms(path: Path) -> int:
    process = await asyncio.create_subprocess_exec(
        "ffprobe",
        "-v",
        "error",
        "-show_entries",
        "format=duration",
        "-of",
        "json",
        str(path),
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    stdout, stderr = await process.communicate()
    if process.returncode != 0:
        raise AudioProbeError(
            f"Failed to load audio metadata for {path.name}: "
            f"{stderr.decode(errors='replace').strip()}"
        )
    try:
        duration = float(json.loads(stdout)["format"]["duration"])
    except (ValueError, KeyError, TypeError) as exc:
        raise AudioProbeError(
            f"Failed to load audio metadata for {path.name}"
        ) from exc
    return round(duration * 1000)


def _wav_duration_ms(path: Path) -> int:
    try:
        with contextlib.closing(wave.open(str(path), "rb")) as wav_file:
            frames = wav_file.getnframes()
            rate = wav_file.getframerate()
    except (wave.Error, EOFError, OSError) as exc:
        raise AudioProbeError(
            f"Failed to load audio metadata for {path.name}: {exc}"
        ) from exc
    return round(frames / max(1, rate) * 1000)
