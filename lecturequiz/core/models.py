"""
Data models (plain dataclasses) for LectureQuiz.
"""

from dataclasses import dataclass, field, asdict
from typing import Optional


@dataclass
class Job:
    id: str                          # UUID
    source_path: str
    original_filename: Optional[str] = None
    status: str = "uploaded"
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    transcript_id: Optional[str] = None
    question_ids: list[str] = field(default_factory=list)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    completed_at: Optional[str] = None


@dataclass(frozen=True)
class Cue:
    """One timestamped line of recognised speech (seconds)."""
    start: float
    end: float
    text: str


@dataclass(frozen=True)
class Window:
    """Consecutive cues grouped for one generation call."""
    start: float
    end: float
    text: str


@dataclass
class Transcript:
    id: str
    job_id: str
    full_text: str
    segments: list[Window] = field(default_factory=list)
    created_at: Optional[str] = None


@dataclass
class Question:
    id: str
    job_id: str
    position: int
    segment_start_time: float
    segment_end_time: float
    question: str
    options: list[str]
    correct_answer: str
    created_at: Optional[str] = None


@dataclass
class JobResults:
    job: Job
    transcript: Optional[Transcript]
    questions: list[Question]

    def as_dict(self) -> dict:
        transcript = None
        if self.transcript is not None:
            transcript = {
                'id': self.transcript.id,
                'full_text': self.transcript.full_text,
                'segments': [asdict(w) for w in self.transcript.segments],
            }
        return {
            'job': {
                'id': self.job.id,
                'original_filename': self.job.original_filename,
                'status': self.job.status,
                'created_at': self.job.created_at,
                'completed_at': self.job.completed_at,
            },
            'transcript': transcript,
            'questions': [asdict(q) for q in self.questions],
        }
