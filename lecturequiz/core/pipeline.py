"""
Pipeline manager and per-job worker.
Each accepted upload runs on its own thread:
transcribe → parse → segment → generate MCQs per window → complete.
"""

import logging
import sqlite3
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from lecturequiz.core.captions_parse import parse_vtt, cues_to_text
from lecturequiz.core.cleanup import cleanup_artifacts
from lecturequiz.core.config import PipelineSettings
from lecturequiz.core.constants import JobStatus, ErrorCode
from lecturequiz.core.db_sqlite import Database
from lecturequiz.core.error_codes import (
    JobError, JobNotFoundError, JobNotReadyError, StateTransitionError,
    unexpected_error,
)
from lecturequiz.core.generate_mcqs import QuestionGenerator
from lecturequiz.core.models import Job, JobResults, Window
from lecturequiz.core.segmenting import segment_cues
from lecturequiz.core.transcribe_whisper import TranscriptionRunner

logger = logging.getLogger(__name__)


@dataclass
class JobHandle:
    """Registry entry for one running job."""
    job_id: str
    thread: threading.Thread
    started_at: float = field(default_factory=time.monotonic)
    # Not consulted yet; reserved for cooperative cancellation
    cancel_event: threading.Event = field(default_factory=threading.Event)

    def is_alive(self) -> bool:
        return self.thread.is_alive()


class PipelineManager:
    """
    Owns the job registry and drives each job through its state machine.
    Emits an update callback after every status change.
    """

    def __init__(self, db: Database, settings: PipelineSettings,
                 transcriber: TranscriptionRunner | None = None,
                 generator: QuestionGenerator | None = None):
        self.db = db
        self.settings = settings
        self.transcriber = transcriber or TranscriptionRunner(settings.transcription)
        self.generator = generator or QuestionGenerator(settings.generator)
        self._handles: dict[str, JobHandle] = {}
        self._handles_lock = threading.Lock()

        # Callbacks
        self.on_job_updated: Optional[Callable[[Job], None]] = None

    # ── Intake ────────────────────────────────────────────────────────

    def accept_upload(self, source_path: Path | str, original_filename: str | None = None,
                      start: bool = True) -> Job:
        """
        Register a stored upload as a new job and (by default) start it.
        If the job record cannot be written the stored file is removed.
        """
        try:
            job = self.db.create_job(str(source_path), original_filename)
        except sqlite3.Error as e:
            logger.error("Error saving job record for %s: %s", source_path, e)
            cleanup_artifacts(source_path)
            raise JobError(ErrorCode.PERSISTENCE, f"Error saving job record: {e}")

        logger.info("Accepted upload %s as job %s", original_filename or source_path, job.id)
        self._notify_job_updated(job.id)
        if start:
            self.submit(job.id)
        return job

    # ── Registry ──────────────────────────────────────────────────────

    def submit(self, job_id: str) -> JobHandle:
        """Start processing a job in the background. Returns immediately."""
        with self._handles_lock:
            existing = self._handles.get(job_id)
            if existing and existing.is_alive():
                return existing
            thread = threading.Thread(
                target=self._run_job, args=(job_id,),
                name=f"job-{job_id[:8]}", daemon=True,
            )
            handle = JobHandle(job_id=job_id, thread=thread)
            self._handles[job_id] = handle
        thread.start()
        return handle

    def _run_job(self, job_id: str):
        """Worker thread body; drops the registry entry when the job is done."""
        try:
            self.process_job(job_id)
        finally:
            with self._handles_lock:
                handle = self._handles.get(job_id)
                if handle is not None and handle.thread is threading.current_thread():
                    del self._handles[job_id]

    def wait(self, job_id: str, timeout: float | None = None) -> bool:
        """Block until the job's worker exits. Returns False on timeout."""
        with self._handles_lock:
            handle = self._handles.get(job_id)
        if handle is None:
            return True
        handle.thread.join(timeout)
        return not handle.is_alive()

    def active_jobs(self) -> list[str]:
        with self._handles_lock:
            return [jid for jid, h in self._handles.items() if h.is_alive()]

    # ── Queries ───────────────────────────────────────────────────────

    def get_status(self, job_id: str) -> dict:
        job = self.db.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return {
            'status': job.status,
            'error_message': job.error_message,
            'error_code': job.error_code,
        }

    def list_jobs(self) -> list[Job]:
        """All jobs, newest first."""
        return self.db.get_all_jobs()

    def get_results(self, job_id: str) -> JobResults:
        """Full transcript and questions; only once the job has completed."""
        job = self.db.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        if job.status != JobStatus.COMPLETED:
            raise JobNotReadyError(job_id, job.status)

        transcript = self.db.get_transcript(job.transcript_id) if job.transcript_id else None
        questions = self.db.get_questions_by_ids(job.question_ids)
        return JobResults(job=job, transcript=transcript, questions=questions)

    # ── Job processing pipeline ───────────────────────────────────────

    def _notify_job_updated(self, job_id: str):
        """Notify listeners of a job update."""
        if self.on_job_updated:
            job = self.db.get_job(job_id)
            if job:
                try:
                    self.on_job_updated(job)
                except Exception:
                    logger.exception("on_job_updated callback failed for job %s", job_id)

    def _transition(self, job_id: str, status: str, **fields):
        self.db.transition_job(job_id, status, **fields)
        logger.info("Job %s → %s", job_id, status)
        self._notify_job_updated(job_id)

    def process_job(self, job_id: str):
        """Process a single job through the full pipeline (blocking)."""
        job = self.db.get_job(job_id)
        if job is None:
            logger.error("Job not found for processing: %s", job_id)
            return
        if job.status != JobStatus.UPLOADED:
            logger.warning("Job %s already %s — not processing again", job_id, job.status)
            return

        vtt_path = None
        try:
            # ── Stage 1: Transcribe ──
            self._transition(job_id, JobStatus.TRANSCRIBING)
            result = self.transcriber.transcribe(Path(job.source_path))
            vtt_path = result.vtt_path

            # ── Stage 2: Parse + segment ──
            cues = parse_vtt(result.vtt_content)
            if not cues:
                raise JobError(ErrorCode.EMPTY_TRANSCRIPT,
                               "Transcription produced no subtitle cues")
            windows = segment_cues(cues, self.settings.window_minutes)
            transcript = self.db.create_transcript(job_id, cues_to_text(cues), windows)
            logger.info("Job %s: %d cues → %d windows", job_id, len(cues), len(windows))

            cleanup_artifacts(vtt_path, keep_debug=self.settings.keep_debug_artifacts)
            vtt_path = None

            # ── Stage 3: Generate MCQs ──
            self._transition(job_id, JobStatus.GENERATING_MCQS, transcript_id=transcript.id)
            question_ids = self._generate_questions(job_id, windows)

            self._transition(job_id, JobStatus.COMPLETED, question_ids=question_ids)

        except JobError as e:
            logger.error("Job %s failed: %s", job_id, e)
            self._fail(job_id, e)
        except Exception as e:
            logger.error("Unexpected error processing job %s: %s", job_id, e, exc_info=True)
            self._fail(job_id, unexpected_error(e))
        finally:
            if vtt_path is not None:
                cleanup_artifacts(vtt_path, keep_debug=self.settings.keep_debug_artifacts)

    def _generate_questions(self, job_id: str, windows: list[Window]) -> list[str]:
        """
        Generate and persist questions window by window.
        A window whose generation fails is logged and skipped.
        """
        question_ids: list[str] = []
        failed = 0

        for idx, window in enumerate(windows):
            span = f"{window.start:.0f}s-{window.end:.0f}s"
            if len(window.text.strip()) < self.settings.min_window_chars:
                logger.info("Job %s: skipping short segment %s", job_id, span)
                continue

            try:
                mcqs = self.generator.generate(window.text)
            except JobError as e:
                failed += 1
                if e.retryable:
                    logger.warning("Job %s: transient error generating MCQs for segment %s "
                                   "(retryable): %s", job_id, span, e)
                else:
                    logger.error("Job %s: error generating MCQs for segment %s: %s",
                                 job_id, span, e)
                continue
            except Exception as e:
                failed += 1
                logger.error("Job %s: unexpected error generating MCQs for segment %s: %s",
                             job_id, span, e, exc_info=True)
                continue

            for mcq in mcqs:
                question = self.db.create_question(job_id, len(question_ids), window, mcq)
                question_ids.append(question.id)
            logger.debug("Job %s: window %d produced %d questions", job_id, idx, len(mcqs))

        if windows and not question_ids:
            logger.warning("Job %s: no questions generated from %d windows (%d failed)",
                           job_id, len(windows), failed)
        else:
            logger.info("Job %s: %d questions from %d windows (%d failed)",
                        job_id, len(question_ids), len(windows), failed)
        return question_ids

    def _fail(self, job_id: str, error: JobError):
        """Record a terminal failure unless the job already reached a terminal state."""
        try:
            self._transition(job_id, JobStatus.FAILED,
                             error_code=error.code,
                             error_message=error.storage_message())
        except StateTransitionError as e:
            logger.error("Could not mark job %s failed: %s", job_id, e)
        except sqlite3.Error as e:
            logger.error("Database error while failing job %s: %s", job_id, e, exc_info=True)
