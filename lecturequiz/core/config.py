"""
Application configuration manager.
Stores settings in a JSON file under the app data directory; a few
environment variables override the file. The pipeline never reads either
source directly; it receives a frozen PipelineSettings built at startup.
"""

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urlparse

from lecturequiz.core.constants import (
    CONFIG_PATH, UPLOAD_DIR, DEFAULT_FFMPEG_PATH, DEFAULT_SUBTITLE_CANDIDATES,
    DEFAULT_WINDOW_MINUTES, MIN_WINDOW_CHARS, MIN_GENERATION_CHARS,
    QUESTIONS_PER_WINDOW, WHISPER_LANGUAGE, WHISPER_THREADS, WHISPER_PROCESSORS,
    AUDIO_SAMPLE_RATE, AUDIO_CHANNELS,
    OLLAMA_API_URL, OLLAMA_MODEL_NAME, LLM_REQUEST_TIMEOUT_SEC, LLM_MAX_RETRIES,
)
from lecturequiz.core.security_utils import resolve_executable

# Validation bounds
_WINDOW_MINUTES_MIN = 1
_WINDOW_MINUTES_MAX = 60
_THREADS_MAX = 64
_PROCESSORS_MAX = 16
_RETRIES_MAX = 10

logger = logging.getLogger(__name__)

_DEFAULTS = {
    'ffmpeg_path': DEFAULT_FFMPEG_PATH,
    'whisper_cpp_path': '',
    'whisper_model_path': '',
    'whisper_language': WHISPER_LANGUAGE,
    'whisper_threads': WHISPER_THREADS,
    'whisper_processors': WHISPER_PROCESSORS,
    'subtitle_candidates': list(DEFAULT_SUBTITLE_CANDIDATES),
    'process_timeout_sec': None,
    'ollama_api_url': OLLAMA_API_URL,
    'ollama_model_name': OLLAMA_MODEL_NAME,
    'llm_timeout_sec': LLM_REQUEST_TIMEOUT_SEC,
    'llm_max_retries': LLM_MAX_RETRIES,
    'window_minutes': DEFAULT_WINDOW_MINUTES,
    'min_window_chars': MIN_WINDOW_CHARS,
    'min_generation_chars': MIN_GENERATION_CHARS,
    'upload_dir': str(UPLOAD_DIR),
    'keep_debug_artifacts': False,
}

# Environment variable → config key
_ENV_OVERRIDES = {
    'FFMPEG_PATH': 'ffmpeg_path',
    'WHISPER_CPP_PATH': 'whisper_cpp_path',
    'WHISPER_MODEL_PATH': 'whisper_model_path',
    'OLLAMA_API_URL': 'ollama_api_url',
    'OLLAMA_MODEL_NAME': 'ollama_model_name',
}


@dataclass(frozen=True)
class TranscriptionSettings:
    whisper_cpp_path: str
    whisper_model_path: str
    ffmpeg_path: str = DEFAULT_FFMPEG_PATH
    language: str = WHISPER_LANGUAGE
    threads: int = WHISPER_THREADS
    processors: int = WHISPER_PROCESSORS
    sample_rate: int = AUDIO_SAMPLE_RATE
    channels: int = AUDIO_CHANNELS
    subtitle_candidates: tuple[str, ...] = DEFAULT_SUBTITLE_CANDIDATES
    process_timeout_sec: float | None = None


@dataclass(frozen=True)
class GeneratorSettings:
    api_url: str = OLLAMA_API_URL
    model_name: str = OLLAMA_MODEL_NAME
    min_text_chars: int = MIN_GENERATION_CHARS
    questions_per_window: int = QUESTIONS_PER_WINDOW
    request_timeout_sec: float | None = LLM_REQUEST_TIMEOUT_SEC
    max_retries: int = LLM_MAX_RETRIES


@dataclass(frozen=True)
class PipelineSettings:
    transcription: TranscriptionSettings
    generator: GeneratorSettings
    window_minutes: float = DEFAULT_WINDOW_MINUTES
    min_window_chars: int = MIN_WINDOW_CHARS
    upload_dir: Path = UPLOAD_DIR
    keep_debug_artifacts: bool = False


class AppConfig:
    """Manages application configuration stored as JSON."""

    def __init__(self, config_path: Path | None = None, environ: dict | None = None):
        self.path = config_path or CONFIG_PATH
        self._environ = os.environ if environ is None else environ
        self._data: dict = {}
        self.load()

    def load(self):
        """Load config from disk, merging with defaults, then apply env overrides."""
        self._data = dict(_DEFAULTS)
        if self.path.exists():
            try:
                with open(self.path, 'r') as f:
                    saved = json.load(f)
                for key, value in saved.items():
                    self._data[key] = self._validate(key, value)
            except (OSError, ValueError) as e:
                logger.warning("Failed to load config: %s", e)

        for env_name, key in _ENV_OVERRIDES.items():
            value = self._environ.get(env_name)
            if value:
                self._data[key] = self._validate(key, value)

    def save(self):
        """Persist config to disk."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, 'w') as f:
            json.dump(self._data, f, indent=2)

    def get(self, key: str, default=None):
        return self._data.get(key, default)

    def set(self, key: str, value):
        value = self._validate(key, value)
        self._data[key] = value
        self.save()

    @staticmethod
    def _clamp_int(key: str, value, low: int, high: int, fallback: int) -> int:
        try:
            value = int(value)
        except (TypeError, ValueError):
            logger.warning("Invalid %s %r — using default", key, value)
            return fallback
        return max(low, min(high, value))

    def _validate(self, key: str, value):
        """Validate and coerce config values to safe ranges."""
        if key == 'window_minutes':
            try:
                value = float(value)
            except (TypeError, ValueError):
                logger.warning("Invalid window_minutes %r — using default", value)
                return DEFAULT_WINDOW_MINUTES
            return max(_WINDOW_MINUTES_MIN, min(_WINDOW_MINUTES_MAX, value))

        if key == 'whisper_threads':
            return self._clamp_int(key, value, 1, _THREADS_MAX, WHISPER_THREADS)

        if key == 'whisper_processors':
            return self._clamp_int(key, value, 1, _PROCESSORS_MAX, WHISPER_PROCESSORS)

        if key == 'llm_max_retries':
            return self._clamp_int(key, value, 0, _RETRIES_MAX, LLM_MAX_RETRIES)

        if key in ('min_window_chars', 'min_generation_chars'):
            return self._clamp_int(key, value, 0, 10_000, _DEFAULTS[key])

        if key in ('process_timeout_sec', 'llm_timeout_sec'):
            if value in (None, '', 0):
                return None
            try:
                value = float(value)
            except (TypeError, ValueError):
                logger.warning("Invalid %s %r — using default", key, value)
                return _DEFAULTS[key]
            return value if value > 0 else None

        if key == 'subtitle_candidates':
            if isinstance(value, str):
                value = [value]
            if not isinstance(value, (list, tuple)) or not all(isinstance(v, str) for v in value):
                logger.warning("Invalid subtitle_candidates %r — using default", value)
                return list(DEFAULT_SUBTITLE_CANDIDATES)
            return list(value)

        if key == 'keep_debug_artifacts':
            if isinstance(value, bool):
                return value
            if isinstance(value, str) and value.strip().lower() in ('true', 'false'):
                return value.strip().lower() == 'true'
            logger.warning("Invalid keep_debug_artifacts %r — using default", value)
            return _DEFAULTS[key]

        return value

    def settings(self) -> PipelineSettings:
        """Freeze the current values into the structure the pipeline consumes."""
        d = self._data
        return PipelineSettings(
            transcription=TranscriptionSettings(
                whisper_cpp_path=d['whisper_cpp_path'],
                whisper_model_path=d['whisper_model_path'],
                ffmpeg_path=d['ffmpeg_path'],
                language=d['whisper_language'],
                threads=d['whisper_threads'],
                processors=d['whisper_processors'],
                subtitle_candidates=tuple(d['subtitle_candidates']),
                process_timeout_sec=d['process_timeout_sec'],
            ),
            generator=GeneratorSettings(
                api_url=d['ollama_api_url'],
                model_name=d['ollama_model_name'],
                min_text_chars=d['min_generation_chars'],
                request_timeout_sec=d['llm_timeout_sec'],
                max_retries=d['llm_max_retries'],
            ),
            window_minutes=d['window_minutes'],
            min_window_chars=d['min_window_chars'],
            upload_dir=Path(d['upload_dir']).expanduser(),
            keep_debug_artifacts=d['keep_debug_artifacts'],
        )


def validate_settings(settings: PipelineSettings) -> list[str]:
    """
    Check the settings once at startup.
    Returns a list of problems; empty means usable.
    """
    problems = []
    t = settings.transcription

    if not t.whisper_cpp_path:
        problems.append("whisper_cpp_path is not set (WHISPER_CPP_PATH)")
    elif resolve_executable(t.whisper_cpp_path) is None:
        problems.append(f"Whisper.cpp executable not found: {t.whisper_cpp_path}")

    if not t.whisper_model_path:
        problems.append("whisper_model_path is not set (WHISPER_MODEL_PATH)")
    elif not Path(t.whisper_model_path).expanduser().exists():
        problems.append(f"Whisper model not found: {t.whisper_model_path}")

    if resolve_executable(t.ffmpeg_path) is None:
        problems.append(f"ffmpeg not found: {t.ffmpeg_path}")

    if not t.subtitle_candidates:
        problems.append("subtitle_candidates is empty")

    url = urlparse(settings.generator.api_url or '')
    if url.scheme not in ('http', 'https') or not url.netloc:
        problems.append(f"Invalid Ollama API URL: {settings.generator.api_url!r}")
    if not settings.generator.model_name:
        problems.append("ollama_model_name is not set (OLLAMA_MODEL_NAME)")

    return problems
