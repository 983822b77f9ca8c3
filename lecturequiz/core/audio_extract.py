"""
Audio extraction using ffmpeg.
Target: mono, 16kHz, 16-bit PCM WAV (what whisper.cpp reads).
"""

import logging
import subprocess
from pathlib import Path

from lecturequiz.core.security_utils import run_subprocess_capture
from lecturequiz.core.error_codes import JobError
from lecturequiz.core.constants import (
    ErrorCode, AUDIO_CHANNELS, AUDIO_SAMPLE_RATE, AUDIO_CODEC, AUDIO_SUFFIX,
    MAX_STDERR_LEN, DEFAULT_FFMPEG_PATH,
)

logger = logging.getLogger(__name__)


def audio_path_for(video_path: Path) -> Path:
    """Derived location of the extracted audio, next to the video."""
    return video_path.parent / f"{video_path.stem}{AUDIO_SUFFIX}"


def extract_audio(video_path: Path, output_path: Path,
                  ffmpeg_path: str = DEFAULT_FFMPEG_PATH,
                  sample_rate: int = AUDIO_SAMPLE_RATE,
                  channels: int = AUDIO_CHANNELS,
                  timeout: float | None = None) -> Path:
    """
    Extract the audio track of a video to mono 16kHz WAV.
    Returns path to the extracted file.
    """
    output_path.parent.mkdir(parents=True, exist_ok=True)

    args = [
        ffmpeg_path,
        "-y",                           # overwrite
        "-i", str(video_path),
        "-vn",                          # no video
        "-ac", str(channels),           # mono
        "-ar", str(sample_rate),        # 16kHz
        "-c:a", AUDIO_CODEC,
        str(output_path),
    ]

    try:
        result = run_subprocess_capture(args, timeout=timeout)
    except subprocess.TimeoutExpired:
        raise JobError(ErrorCode.PROCESS_TIMEOUT,
                       f"ffmpeg audio extraction timed out after {timeout}s")
    except OSError as e:
        raise JobError(ErrorCode.PROCESS_SPAWN, f"Failed to start ffmpeg: {e}")

    if result.returncode != 0:
        stderr = result.stderr or ""
        raise JobError(ErrorCode.AUDIO_EXTRACT,
                       f"ffmpeg failed (rc={result.returncode})",
                       details=stderr[-MAX_STDERR_LEN:])

    if not output_path.exists():
        raise JobError(ErrorCode.AUDIO_EXTRACT, "Extracted audio file not created")

    logger.info("Extracted audio: %s", output_path)
    return output_path
