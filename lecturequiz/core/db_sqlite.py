"""
SQLite database layer for LectureQuiz.
Thread-safe via check_same_thread=False + explicit locking.
"""

import json
import sqlite3
import threading
import uuid
import logging
from datetime import datetime, timezone
from pathlib import Path

from lecturequiz.core.constants import (
    DB_PATH, TERMINAL_STATUSES, ALLOWED_TRANSITIONS,
)
from lecturequiz.core.error_codes import JobNotFoundError, StateTransitionError
from lecturequiz.core.models import Job, Question, Transcript, Window

logger = logging.getLogger(__name__)

_SCHEMA_VERSION = 1

_CREATE_TABLES = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS jobs (
    id TEXT PRIMARY KEY,
    source_path TEXT NOT NULL,
    original_filename TEXT,
    status TEXT NOT NULL DEFAULT 'uploaded',
    error_code TEXT,
    error_message TEXT,
    transcript_id TEXT,
    question_ids TEXT NOT NULL DEFAULT '[]',
    created_at TEXT,
    updated_at TEXT,
    completed_at TEXT
);

CREATE INDEX IF NOT EXISTS idx_jobs_created_at ON jobs(created_at DESC);

CREATE TABLE IF NOT EXISTS transcripts (
    id TEXT PRIMARY KEY,
    job_id TEXT NOT NULL UNIQUE,
    full_text TEXT NOT NULL,
    created_at TEXT,
    FOREIGN KEY (job_id) REFERENCES jobs(id)
);

CREATE TABLE IF NOT EXISTS transcript_segments (
    transcript_id TEXT NOT NULL,
    idx INTEGER NOT NULL,
    start_time REAL NOT NULL,
    end_time REAL NOT NULL,
    text TEXT NOT NULL,
    PRIMARY KEY (transcript_id, idx),
    FOREIGN KEY (transcript_id) REFERENCES transcripts(id)
);

CREATE TABLE IF NOT EXISTS questions (
    id TEXT PRIMARY KEY,
    job_id TEXT NOT NULL,
    position INTEGER NOT NULL,
    segment_start_time REAL NOT NULL,
    segment_end_time REAL NOT NULL,
    question TEXT NOT NULL,
    options TEXT NOT NULL,
    correct_answer TEXT NOT NULL,
    created_at TEXT,
    FOREIGN KEY (job_id) REFERENCES jobs(id)
);

CREATE INDEX IF NOT EXISTS idx_questions_job_pos ON questions(job_id, position);
"""


class Database:
    """SQLite database wrapper for LectureQuiz."""

    def __init__(self, db_path: Path | None = None):
        self.db_path = db_path or DB_PATH
        self._lock = threading.RLock()
        self._ensure_dirs()
        self.conn = sqlite3.connect(
            str(self.db_path),
            check_same_thread=False,
        )
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA journal_mode=WAL")
        self.conn.execute("PRAGMA foreign_keys=ON")
        self._migrate()

    def _ensure_dirs(self):
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def _migrate(self):
        with self._lock:
            cur = self.conn.cursor()
            cur.executescript(_CREATE_TABLES)
            # Set schema version
            cur.execute(
                "INSERT OR REPLACE INTO schema_version (version) VALUES (?)",
                (_SCHEMA_VERSION,),
            )
            self.conn.commit()

    def close(self):
        if self.conn:
            self.conn.close()

    # ── Helpers ───────────────────────────────────────────────────────

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()

    @staticmethod
    def _row_to_job(row: sqlite3.Row) -> Job:
        data = dict(row)
        data['question_ids'] = json.loads(data.get('question_ids') or '[]')
        return Job(**data)

    @staticmethod
    def _row_to_question(row: sqlite3.Row) -> Question:
        data = dict(row)
        data['options'] = json.loads(data['options'])
        return Question(**data)

    # ── Job CRUD ──────────────────────────────────────────────────────

    def create_job(self, source_path: str, original_filename: str | None = None) -> Job:
        now = self._now()
        job = Job(
            id=str(uuid.uuid4()),
            source_path=str(source_path),
            original_filename=original_filename,
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            self.conn.execute(
                """INSERT INTO jobs
                   (id, source_path, original_filename, status, question_ids,
                    created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (job.id, job.source_path, job.original_filename, job.status,
                 '[]', job.created_at, job.updated_at),
            )
            self.conn.commit()
        return job

    def get_job(self, job_id: str) -> Job | None:
        with self._lock:
            row = self.conn.execute(
                "SELECT * FROM jobs WHERE id = ?", (job_id,)
            ).fetchone()
        return self._row_to_job(row) if row else None

    def get_all_jobs(self) -> list[Job]:
        with self._lock:
            rows = self.conn.execute(
                "SELECT * FROM jobs ORDER BY created_at DESC"
            ).fetchall()
        return [self._row_to_job(r) for r in rows]

    def transition_job(self, job_id: str, status: str, **fields) -> Job:
        """
        Move a job to `status` if the state machine allows it from the
        current status. Check and write happen under one lock.
        """
        with self._lock:
            row = self.conn.execute(
                "SELECT status FROM jobs WHERE id = ?", (job_id,)
            ).fetchone()
            if row is None:
                raise JobNotFoundError(job_id)

            current = row['status']
            if status not in ALLOWED_TRANSITIONS.get(current, set()):
                raise StateTransitionError(job_id, current, status)

            now = self._now()
            fields['status'] = status
            fields['updated_at'] = now
            if status in TERMINAL_STATUSES:
                fields['completed_at'] = now
            if 'question_ids' in fields:
                fields['question_ids'] = json.dumps(list(fields['question_ids']))

            sets = ', '.join(f"{k} = ?" for k in fields)
            vals = list(fields.values()) + [job_id, current]
            cur = self.conn.execute(
                f"UPDATE jobs SET {sets} WHERE id = ? AND status = ?", vals
            )
            self.conn.commit()
            if cur.rowcount != 1:
                raise StateTransitionError(job_id, current, status)

        logger.debug("Job %s: %s -> %s", job_id, current, status)
        return self.get_job(job_id)

    # ── Transcript CRUD ───────────────────────────────────────────────

    def create_transcript(self, job_id: str, full_text: str,
                          segments: list[Window]) -> Transcript:
        transcript = Transcript(
            id=str(uuid.uuid4()),
            job_id=job_id,
            full_text=full_text,
            segments=list(segments),
            created_at=self._now(),
        )
        with self._lock:
            try:
                self.conn.execute(
                    "INSERT INTO transcripts (id, job_id, full_text, created_at) VALUES (?, ?, ?, ?)",
                    (transcript.id, job_id, full_text, transcript.created_at),
                )
                self.conn.executemany(
                    """INSERT INTO transcript_segments
                       (transcript_id, idx, start_time, end_time, text)
                       VALUES (?, ?, ?, ?, ?)""",
                    [(transcript.id, i, w.start, w.end, w.text)
                     for i, w in enumerate(segments)],
                )
                self.conn.commit()
            except sqlite3.Error:
                self.conn.rollback()
                raise
        return transcript

    def get_transcript(self, transcript_id: str) -> Transcript | None:
        with self._lock:
            row = self.conn.execute(
                "SELECT * FROM transcripts WHERE id = ?", (transcript_id,)
            ).fetchone()
            if not row:
                return None
            seg_rows = self.conn.execute(
                "SELECT * FROM transcript_segments WHERE transcript_id = ? ORDER BY idx",
                (transcript_id,),
            ).fetchall()
        return Transcript(
            id=row['id'],
            job_id=row['job_id'],
            full_text=row['full_text'],
            segments=[Window(r['start_time'], r['end_time'], r['text']) for r in seg_rows],
            created_at=row['created_at'],
        )

    # ── Question CRUD ─────────────────────────────────────────────────

    def create_question(self, job_id: str, position: int, window: Window,
                        mcq: dict) -> Question:
        question = Question(
            id=str(uuid.uuid4()),
            job_id=job_id,
            position=position,
            segment_start_time=window.start,
            segment_end_time=window.end,
            question=mcq['question'],
            options=list(mcq['options']),
            correct_answer=mcq['correctAnswer'],
            created_at=self._now(),
        )
        with self._lock:
            self.conn.execute(
                """INSERT INTO questions
                   (id, job_id, position, segment_start_time, segment_end_time,
                    question, options, correct_answer, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (question.id, job_id, position, question.segment_start_time,
                 question.segment_end_time, question.question,
                 json.dumps(question.options), question.correct_answer,
                 question.created_at),
            )
            self.conn.commit()
        return question

    def get_questions(self, job_id: str) -> list[Question]:
        with self._lock:
            rows = self.conn.execute(
                "SELECT * FROM questions WHERE job_id = ? ORDER BY position",
                (job_id,),
            ).fetchall()
        return [self._row_to_question(r) for r in rows]

    def get_questions_by_ids(self, question_ids: list[str]) -> list[Question]:
        """Fetch questions, preserving the order of `question_ids`."""
        if not question_ids:
            return []
        marks = ', '.join('?' for _ in question_ids)
        with self._lock:
            rows = self.conn.execute(
                f"SELECT * FROM questions WHERE id IN ({marks})", list(question_ids),
            ).fetchall()
        by_id = {r['id']: self._row_to_question(r) for r in rows}
        return [by_id[qid] for qid in question_ids if qid in by_id]
