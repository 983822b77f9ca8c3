"""
Shared constants for LectureQuiz.
Single source of truth — imported by every other module.
"""

import os
import pathlib

# ── Application identity ──────────────────────────────────────────────
APP_NAME = "LectureQuiz"
APP_VERSION = "1.0.0"

# ── Filesystem paths ─────────────────────────────────────────────────
HOME = pathlib.Path.home()

APP_DATA_DIR = pathlib.Path(os.environ.get("LECTUREQUIZ_HOME", HOME / ".lecturequiz"))
DB_PATH = APP_DATA_DIR / "app.db"
CONFIG_PATH = APP_DATA_DIR / "config.json"
UPLOAD_DIR = APP_DATA_DIR / "uploads"
LOG_DIR = APP_DATA_DIR / "logs"

# ── Job status values ─────────────────────────────────────────────────
class JobStatus:
    UPLOADED = "uploaded"
    TRANSCRIBING = "transcribing"
    GENERATING_MCQS = "generating_mcqs"
    COMPLETED = "completed"
    FAILED = "failed"

TERMINAL_STATUSES = {JobStatus.COMPLETED, JobStatus.FAILED}

# Legal moves of the job state machine. Terminal states have none.
ALLOWED_TRANSITIONS = {
    JobStatus.UPLOADED: {JobStatus.TRANSCRIBING, JobStatus.FAILED},
    JobStatus.TRANSCRIBING: {JobStatus.GENERATING_MCQS, JobStatus.FAILED},
    JobStatus.GENERATING_MCQS: {JobStatus.COMPLETED, JobStatus.FAILED},
    JobStatus.COMPLETED: set(),
    JobStatus.FAILED: set(),
}

# ── Error codes ───────────────────────────────────────────────────────
class ErrorCode:
    # Setup / input
    MISSING_INPUT = "ERR_MISSING_INPUT"
    PERSISTENCE = "ERR_PERSISTENCE"

    # External processes
    AUDIO_EXTRACT = "ERR_AUDIO_EXTRACT"
    WHISPER_FAILED = "ERR_WHISPER_FAILED"
    PROCESS_SPAWN = "ERR_PROCESS_SPAWN"
    PROCESS_TIMEOUT = "ERR_PROCESS_TIMEOUT"
    SUBTITLES_NOT_FOUND = "ERR_SUBTITLES_NOT_FOUND"

    # Parsing / validation
    EMPTY_TRANSCRIPT = "ERR_EMPTY_TRANSCRIPT"
    LLM_INVALID_JSON = "ERR_LLM_INVALID_JSON"
    LLM_NO_VALID_MCQS = "ERR_LLM_NO_VALID_MCQS"

    # Generative model endpoint
    LLM_REQUEST_FAILED = "ERR_LLM_REQUEST_FAILED"
    LLM_TIMEOUT = "ERR_LLM_TIMEOUT"
    NETWORK_TRANSIENT = "ERR_NETWORK_TRANSIENT"

    UNEXPECTED = "ERR_UNEXPECTED"

RETRYABLE_ERRORS = {
    ErrorCode.LLM_TIMEOUT,
    ErrorCode.NETWORK_TRANSIENT,
    ErrorCode.PROCESS_TIMEOUT,
}

# ── Segmentation / generation defaults ────────────────────────────────
DEFAULT_WINDOW_MINUTES = 5
MIN_WINDOW_CHARS = 50          # windows shorter than this are not sent at all
MIN_GENERATION_CHARS = 20      # generator refuses texts shorter than this
QUESTIONS_PER_WINDOW = 3
OPTIONS_PER_QUESTION = 4
OPTION_LETTERS = ("A", "B", "C", "D")

# ── Audio extraction (ffmpeg) ─────────────────────────────────────────
DEFAULT_FFMPEG_PATH = "ffmpeg"
AUDIO_CHANNELS = 1
AUDIO_SAMPLE_RATE = 16000
AUDIO_CODEC = "pcm_s16le"
AUDIO_SUFFIX = ".16k.wav"

# ── Speech recognition (whisper.cpp) ──────────────────────────────────
WHISPER_LANGUAGE = "en"
WHISPER_THREADS = 4
WHISPER_PROCESSORS = 1

# Ordered guesses for where whisper.cpp leaves the .vtt; depends on the
# tool version. Placeholders: audio_name, audio_stem, video_stem.
DEFAULT_SUBTITLE_CANDIDATES = (
    "{audio_name}.vtt",
    "{audio_stem}.vtt",
    "{video_stem}.vtt",
)

# ── Ollama ────────────────────────────────────────────────────────────
OLLAMA_API_URL = "http://localhost:11434/api/generate"
OLLAMA_MODEL_NAME = "llama3"
LLM_REQUEST_TIMEOUT_SEC = 300
LLM_MAX_RETRIES = 3

# ── Storage bounds ────────────────────────────────────────────────────
MAX_ERROR_MESSAGE_LEN = 2000
MAX_STDERR_LEN = 500
MAX_RAW_RESPONSE_LEN = 200

# Characters forbidden in stored upload names
UNSAFE_FILENAME_CHARS = r'[<>:"/\\|?*\x00-\x1f]'
MAX_FILENAME_LEN = 120
