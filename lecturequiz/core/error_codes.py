"""
Standardised error handling for LectureQuiz.
"""

from lecturequiz.core.constants import ErrorCode, RETRYABLE_ERRORS, MAX_ERROR_MESSAGE_LEN


class JobError(Exception):
    """Raised when a job encounters a known error condition."""

    def __init__(self, code: str, message: str, details: str | None = None,
                 retryable: bool | None = None):
        self.code = code
        self.message = message
        # captured diagnostics (stderr, raw model output), already truncated by the raiser
        self.details = details
        # auto-detect retryable from code if not explicitly set
        self.retryable = retryable if retryable is not None else (code in RETRYABLE_ERRORS)
        super().__init__(f"[{code}] {message}")

    def storage_message(self) -> str:
        """Message plus diagnostics, bounded for the jobs table."""
        text = self.message
        if self.details:
            text = f"{text}: {self.details}"
        return bound_message(text)


class StateTransitionError(Exception):
    """Raised when a job is asked to make an illegal status move."""

    def __init__(self, job_id: str, current: str, requested: str):
        self.job_id = job_id
        self.current = current
        self.requested = requested
        super().__init__(f"Job {job_id}: illegal transition {current} -> {requested}")


class JobNotFoundError(Exception):
    """Raised when a job id is unknown to the store."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job not found: {job_id}")


class JobNotReadyError(Exception):
    """Results requested while the job has not completed."""

    def __init__(self, job_id: str, status: str):
        self.job_id = job_id
        self.status = status
        super().__init__(f"Job {job_id} not yet complete (status: {status})")


def is_retryable(code: str) -> bool:
    return code in RETRYABLE_ERRORS


def bound_message(text: str, limit: int = MAX_ERROR_MESSAGE_LEN) -> str:
    return text[:limit]


def unexpected_error(exc: Exception) -> JobError:
    """Wrap an unknown exception so it can be recorded like a known one."""
    return JobError(ErrorCode.UNEXPECTED, f"{type(exc).__name__}: {exc}")
