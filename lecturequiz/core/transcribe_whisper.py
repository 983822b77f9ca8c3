"""
whisper.cpp speech-to-text integration.
Extracts audio with ffmpeg, runs the whisper.cpp CLI in VTT mode and
returns the subtitle document. The extracted audio is always removed.
"""

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path

from lecturequiz.core.audio_extract import audio_path_for, extract_audio
from lecturequiz.core.cleanup import cleanup_artifacts
from lecturequiz.core.config import TranscriptionSettings
from lecturequiz.core.constants import ErrorCode, MAX_STDERR_LEN
from lecturequiz.core.error_codes import JobError
from lecturequiz.core.security_utils import resolve_executable, run_subprocess_capture

logger = logging.getLogger(__name__)


@dataclass
class TranscriptionResult:
    vtt_content: str
    vtt_path: Path
    audio_path: Path


def subtitle_candidates(audio_path: Path, video_path: Path,
                        templates: tuple[str, ...]) -> list[Path]:
    """
    Expand the configured name templates into concrete paths, in order.
    whisper.cpp has written `<audio>.wav.vtt` or `<audio>.vtt` depending on version.
    """
    names = {
        'audio_name': audio_path.name,
        'audio_stem': audio_path.stem,
        'video_stem': video_path.stem,
    }
    paths = []
    for template in templates:
        try:
            name = template.format(**names)
        except (KeyError, IndexError, ValueError):
            logger.warning("Ignoring bad subtitle candidate template %r", template)
            continue
        path = audio_path.parent / name
        if path not in paths:
            paths.append(path)
    return paths


def find_subtitle_file(candidates: list[Path]) -> Path | None:
    for path in candidates:
        if path.exists():
            return path
    return None


class TranscriptionRunner:
    """Runs ffmpeg + whisper.cpp for one video at a time (per calling thread)."""

    def __init__(self, settings: TranscriptionSettings):
        self.settings = settings

    def _check_inputs(self, video_path: Path) -> tuple[Path, Path]:
        s = self.settings
        if not video_path.exists():
            raise JobError(ErrorCode.MISSING_INPUT, f"Video file not found: {video_path}")

        whisper = resolve_executable(s.whisper_cpp_path)
        if whisper is None:
            raise JobError(ErrorCode.MISSING_INPUT,
                           f"Whisper.cpp executable not found: {s.whisper_cpp_path}")

        if not s.whisper_model_path or not Path(s.whisper_model_path).expanduser().exists():
            raise JobError(ErrorCode.MISSING_INPUT,
                           f"Whisper model not found: {s.whisper_model_path}")

        ffmpeg = resolve_executable(s.ffmpeg_path)
        if ffmpeg is None:
            raise JobError(ErrorCode.MISSING_INPUT, f"ffmpeg not found: {s.ffmpeg_path}")

        return whisper, ffmpeg

    def _run_whisper(self, whisper: Path, audio_path: Path):
        s = self.settings
        args = [
            str(whisper),
            "-m", str(Path(s.whisper_model_path).expanduser()),
            "-f", str(audio_path),
            "-l", s.language,
            "-t", str(s.threads),
            "-p", str(s.processors),
            "-ovtt",
        ]

        try:
            result = run_subprocess_capture(args, timeout=s.process_timeout_sec)
        except subprocess.TimeoutExpired:
            raise JobError(ErrorCode.PROCESS_TIMEOUT,
                           f"Transcription timed out after {s.process_timeout_sec}s")
        except OSError as e:
            raise JobError(ErrorCode.PROCESS_SPAWN,
                           f"Failed to start transcription process: {e}")

        if result.returncode != 0:
            stderr = result.stderr or ""
            raise JobError(ErrorCode.WHISPER_FAILED,
                           f"Transcription failed (rc={result.returncode})",
                           details=stderr[-MAX_STDERR_LEN:])
        return result

    def transcribe(self, video_path: Path) -> TranscriptionResult:
        """
        Transcribe a video file to WebVTT text.
        Raises JobError on missing inputs, tool failures or a missing subtitle file.
        """
        video_path = Path(video_path)
        whisper, ffmpeg = self._check_inputs(video_path)
        s = self.settings

        audio_path = audio_path_for(video_path)
        try:
            if audio_path.exists():
                logger.info("Reusing extracted audio: %s", audio_path)
            else:
                extract_audio(video_path, audio_path,
                              ffmpeg_path=str(ffmpeg),
                              sample_rate=s.sample_rate,
                              channels=s.channels,
                              timeout=s.process_timeout_sec)

            logger.info("Transcribing %s with %s", audio_path.name, whisper.name)
            result = self._run_whisper(whisper, audio_path)

            candidates = subtitle_candidates(audio_path, video_path, s.subtitle_candidates)
            vtt_path = find_subtitle_file(candidates)
            if vtt_path is None:
                stderr = result.stderr or ""
                raise JobError(ErrorCode.SUBTITLES_NOT_FOUND,
                               "VTT file not found; tried "
                               + ', '.join(p.name for p in candidates),
                               details=stderr[-MAX_STDERR_LEN:])

            vtt_content = vtt_path.read_text(encoding='utf-8', errors='replace')
        finally:
            cleanup_artifacts(audio_path)

        logger.info("Transcription produced %s (%d chars)", vtt_path.name, len(vtt_content))
        return TranscriptionResult(vtt_content=vtt_content, vtt_path=vtt_path,
                                   audio_path=audio_path)
