"""
Security utilities for LectureQuiz.
- Filename sanitization for stored uploads
- Safe subprocess execution (argument arrays only)
- External tool resolution
"""

import re
import shutil
import subprocess
import pathlib
import logging

from lecturequiz.core.constants import UNSAFE_FILENAME_CHARS, MAX_FILENAME_LEN

logger = logging.getLogger(__name__)


# ── Filename / path safety ────────────────────────────────────────────

def sanitize_filename(name: str) -> str:
    """Sanitize an uploaded file's original name for use on disk."""
    if not name:
        return ""
    # Keep only the final path component
    name = name.replace('\\', '/').rsplit('/', 1)[-1]
    safe = re.sub(UNSAFE_FILENAME_CHARS, '_', name)
    safe = safe.replace('..', '')
    # Collapse multiple underscores/spaces
    safe = re.sub(r'[_\s]+', '_', safe).strip('_')
    if len(safe) > MAX_FILENAME_LEN:
        stem, dot, ext = safe.rpartition('.')
        if dot and len(ext) <= 10:
            safe = stem[:MAX_FILENAME_LEN - len(ext) - 1] + '.' + ext
        else:
            safe = safe[:MAX_FILENAME_LEN]
    # Remove leading dots (hidden files)
    safe = safe.lstrip('.')
    return safe


def resolve_executable(path_or_name: str) -> pathlib.Path | None:
    """
    Resolve a configured tool location. Bare names are looked up on PATH,
    anything containing a separator must exist as given.
    """
    if not path_or_name:
        return None
    candidate = pathlib.Path(path_or_name).expanduser()
    if candidate.parent != pathlib.Path('.'):
        return candidate if candidate.exists() else None
    found = shutil.which(path_or_name)
    return pathlib.Path(found) if found else None


# ── Subprocess safety ─────────────────────────────────────────────────

def run_subprocess(args: list[str], **kwargs) -> subprocess.CompletedProcess:
    """
    Execute a subprocess using argument arrays only.
    shell=True is explicitly forbidden.
    """
    if not isinstance(args, (list, tuple)):
        raise TypeError("Subprocess args must be a list/tuple, not a string")

    # Force shell=False — remove any caller-supplied value, then set it once
    kwargs.pop('shell', None)

    logger.debug("Running subprocess: %s", ' '.join(str(a) for a in args))
    return subprocess.run(args, shell=False, **kwargs)


def run_subprocess_capture(args: list[str], timeout: float | None = None,
                           **kwargs) -> subprocess.CompletedProcess:
    """Run subprocess and capture stdout/stderr. No timeout unless given."""
    return run_subprocess(
        args,
        capture_output=True,
        text=True,
        errors='replace',
        timeout=timeout,
        **kwargs,
    )
