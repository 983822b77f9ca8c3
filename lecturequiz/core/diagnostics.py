"""
Diagnostics: tool version detection and system checks.
"""

import logging
from pathlib import Path
from urllib.parse import urlparse

import requests

from lecturequiz.core.config import PipelineSettings
from lecturequiz.core.security_utils import resolve_executable, run_subprocess_capture

logger = logging.getLogger(__name__)


def get_ffmpeg_version(ffmpeg_path: str = "ffmpeg") -> str:
    """Return ffmpeg version string, or error message."""
    try:
        result = run_subprocess_capture([ffmpeg_path, "-version"], timeout=10)
        if result.returncode == 0:
            first_line = result.stdout.strip().splitlines()[0]
            return first_line
        return f"Error (rc={result.returncode})"
    except FileNotFoundError:
        return "Not installed"
    except Exception as e:
        return f"Error: {e}"


def get_whisper_status(whisper_cpp_path: str, model_path: str) -> dict:
    """Report whether the whisper.cpp binary and model file are present."""
    binary = resolve_executable(whisper_cpp_path) if whisper_cpp_path else None
    model = Path(model_path).expanduser() if model_path else None
    info = {
        "binary": str(binary) if binary else None,
        "binary_found": binary is not None,
        "model": str(model) if model else None,
        "model_found": bool(model and model.exists()),
        "model_size_mb": None,
    }
    if info["model_found"]:
        info["model_size_mb"] = round(model.stat().st_size / (1024 * 1024), 1)
    return info


def check_ollama(api_url: str, model_name: str | None = None) -> tuple[bool, str]:
    """
    Verify the Ollama server is reachable (and has the model pulled).
    Returns (success: bool, message: str).
    """
    parsed = urlparse(api_url)
    tags_url = f"{parsed.scheme}://{parsed.netloc}/api/tags"
    try:
        resp = requests.get(tags_url, timeout=10)
    except requests.exceptions.ConnectionError:
        return False, f"Network error — could not reach {parsed.netloc}"
    except requests.exceptions.Timeout:
        return False, "Network error — request timed out"
    except requests.exceptions.RequestException as e:
        return False, f"Network error: {e}"

    if resp.status_code != 200:
        return False, f"Unexpected response: {resp.status_code}"

    if model_name:
        try:
            models = [m.get('name', '') for m in resp.json().get('models', [])]
        except (ValueError, AttributeError):
            return False, "Unreadable model list"
        if not any(m == model_name or m.split(':')[0] == model_name for m in models):
            return False, f"Model {model_name!r} not pulled"
    return True, "Reachable"


def get_diagnostics(settings: PipelineSettings) -> dict:
    """Gather all diagnostic information."""
    t = settings.transcription
    ollama_ok, ollama_msg = check_ollama(settings.generator.api_url,
                                         settings.generator.model_name)
    return {
        "ffmpeg_version": get_ffmpeg_version(t.ffmpeg_path),
        "whisper": get_whisper_status(t.whisper_cpp_path, t.whisper_model_path),
        "ollama": {"ok": ollama_ok, "message": ollama_msg,
                   "url": settings.generator.api_url,
                   "model": settings.generator.model_name},
    }
