#!/usr/bin/env python3
"""
Unit tests for LectureQuiz core modules.
Tests cover: timestamp codec, VTT parsing, segmentation, config, error codes, database.
"""

import sys
import os
import json
import tempfile
from pathlib import Path
from unittest import mock

# Add project root to path
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

import unittest

from lecturequiz.core.constants import (
    JobStatus, ErrorCode, RETRYABLE_ERRORS, DEFAULT_WINDOW_MINUTES,
    DEFAULT_SUBTITLE_CANDIDATES, MAX_ERROR_MESSAGE_LEN,
)
from lecturequiz.core.timecodes import parse_timestamp, format_timestamp, minutes_to_seconds
from lecturequiz.core.captions_parse import parse_vtt, parse_vtt_file, cues_to_text
from lecturequiz.core.segmenting import segment_cues
from lecturequiz.core.models import Cue, Window
from lecturequiz.core.config import AppConfig, validate_settings
from lecturequiz.core.error_codes import (
    JobError, is_retryable, StateTransitionError, JobNotFoundError,
)
from lecturequiz.core.security_utils import sanitize_filename, run_subprocess
from lecturequiz.core.cleanup import cleanup_artifacts


class TestTimecodes(unittest.TestCase):
    """Test subtitle timestamp conversion."""

    def test_parse_full(self):
        self.assertAlmostEqual(parse_timestamp("01:02:03.456"), 3723.456)

    def test_parse_zero(self):
        self.assertEqual(parse_timestamp("00:00:00.000"), 0.0)

    def test_parse_two_field_form(self):
        self.assertAlmostEqual(parse_timestamp("02:03.500"), 123.5)

    def test_parse_comma_separator(self):
        self.assertAlmostEqual(parse_timestamp("00:00:01,250"), 1.25)

    def test_parse_without_millis(self):
        self.assertEqual(parse_timestamp("00:01:00"), 60.0)

    def test_malformed_falls_back_to_zero(self):
        self.assertEqual(parse_timestamp("aa:bb:cc.ddd"), 0.0)
        self.assertEqual(parse_timestamp("1:2:3:4.000"), 0.0)
        self.assertEqual(parse_timestamp("12.000"), 0.0)
        self.assertEqual(parse_timestamp(""), 0.0)
        self.assertEqual(parse_timestamp("00:00:01.x"), 0.0)

    def test_format(self):
        self.assertEqual(format_timestamp(0), "00:00:00.000")
        self.assertEqual(format_timestamp(3723.456), "01:02:03.456")
        self.assertEqual(format_timestamp(59.9996), "00:01:00.000")

    def test_format_negative_clamps(self):
        self.assertEqual(format_timestamp(-3.0), "00:00:00.000")

    def test_round_trip(self):
        for text in ("00:00:00.000", "00:00:00.001", "00:04:59.999",
                     "01:00:00.000", "12:34:56.789", "99:59:59.999"):
            seconds = parse_timestamp(text)
            self.assertEqual(format_timestamp(seconds), text)
            self.assertAlmostEqual(parse_timestamp(format_timestamp(seconds)), seconds, places=6)

    def test_minutes_to_seconds(self):
        self.assertEqual(minutes_to_seconds(5), 300.0)
        self.assertEqual(minutes_to_seconds(0.5), 30.0)


class TestCaptionsParsing(unittest.TestCase):
    """Test VTT cue parsing."""

    def test_parse_vtt_basic(self):
        vtt_content = """WEBVTT
Kind: captions
Language: en

1
00:00:00.000 --> 00:00:05.000
Hello, welcome to this lecture.

2
00:00:05.000 --> 00:00:10.000
Today we'll be talking about
thermodynamics.
"""
        cues = parse_vtt(vtt_content)
        self.assertEqual(len(cues), 2)
        self.assertEqual(cues[0], Cue(0.0, 5.0, "Hello, welcome to this lecture."))
        self.assertEqual(cues[1].text, "Today we'll be talking about thermodynamics.")
        self.assertEqual((cues[1].start, cues[1].end), (5.0, 10.0))

    def test_empty_document(self):
        self.assertEqual(parse_vtt(""), [])
        self.assertEqual(parse_vtt("   \n\n  \t\n"), [])
        self.assertEqual(parse_vtt("WEBVTT\n\n"), [])

    def test_cue_without_text_dropped(self):
        vtt_content = """WEBVTT

00:00:00.000 --> 00:00:02.000

00:00:02.000 --> 00:00:04.000
b
"""
        cues = parse_vtt(vtt_content)
        self.assertEqual(cues, [Cue(2.0, 4.0, "b")])

    def test_removes_markup_and_settings(self):
        vtt_content = """WEBVTT

00:00:00.000 --> 00:00:05.000 align:start position:10%
<b>Bold text</b> and <i>italic</i> text.
"""
        cues = parse_vtt(vtt_content)
        self.assertEqual(cues[0].text, "Bold text and italic text.")
        self.assertEqual(cues[0].end, 5.0)

    def test_note_block_skipped(self):
        vtt_content = """WEBVTT

NOTE generated by whisper.cpp
second note line

00:00:00.000 --> 00:00:01.000
a
"""
        self.assertEqual(parse_vtt(vtt_content), [Cue(0.0, 1.0, "a")])

    def test_non_speech_markers_skipped(self):
        vtt_content = """WEBVTT

00:00:00.000 --> 00:00:03.000
[BLANK_AUDIO]

00:00:03.000 --> 00:00:06.000
Entropy always increases.
"""
        cues = parse_vtt(vtt_content)
        self.assertEqual(len(cues), 1)
        self.assertEqual(cues[0].text, "Entropy always increases.")

    def test_two_field_timestamps(self):
        vtt_content = "WEBVTT\n\n01:00.000 --> 01:30.500\nshort form\n"
        self.assertEqual(parse_vtt(vtt_content), [Cue(60.0, 90.5, "short form")])

    def test_crlf_and_bom(self):
        vtt_content = "\ufeffWEBVTT\r\n\r\n00:00:00.000 --> 00:00:01.000\r\nx\r\n"
        self.assertEqual(parse_vtt(vtt_content), [Cue(0.0, 1.0, "x")])

    def test_order_preserved(self):
        lines = ["WEBVTT", ""]
        for i in range(10):
            lines += [f"00:00:{i:02d}.000 --> 00:00:{i + 1:02d}.000", f"line {i}", ""]
        cues = parse_vtt("\n".join(lines))
        self.assertEqual([c.text for c in cues], [f"line {i}" for i in range(10)])

    def test_parse_vtt_file(self):
        with tempfile.NamedTemporaryFile(mode='w', suffix='.vtt', delete=False,
                                         encoding='utf-8') as f:
            f.write("WEBVTT\n\n00:00:00.000 --> 00:00:01.000\nHéllo\n")
        try:
            self.assertEqual(parse_vtt_file(Path(f.name))[0].text, "Héllo")
        finally:
            os.unlink(f.name)

    def test_cues_to_text(self):
        cues = [Cue(0, 1, "a"), Cue(1, 2, "b")]
        self.assertEqual(cues_to_text(cues), "a b")
        self.assertEqual(cues_to_text([]), "")


class TestSegmenting(unittest.TestCase):
    """Test duration-based window segmentation."""

    def test_short_cues_merge_into_trailing_window(self):
        cues = [Cue(0, 2, "a"), Cue(2, 4, "b"), Cue(4, 6, "c")]
        windows = segment_cues(cues, interval_minutes=1)
        self.assertEqual(windows, [Window(0, 6, "a b c")])

    def test_exact_boundary_closes_window(self):
        cues = [Cue(0, 150, "a"), Cue(150, 300, "b"), Cue(300, 400, "c")]
        windows = segment_cues(cues, interval_minutes=5)
        self.assertEqual(windows, [Window(0, 300, "a b"), Window(300, 400, "c")])

    def test_two_minute_cues(self):
        cues = [Cue(0, 120, "a"), Cue(120, 240, "b"), Cue(240, 360, "c"),
                Cue(360, 480, "d")]
        windows = segment_cues(cues, interval_minutes=5)
        # 240 < 300 keeps accumulating; 360 >= 300 closes
        self.assertEqual(windows[0], Window(0, 360, "a b c"))
        self.assertEqual(windows[1], Window(360, 480, "d"))

    def test_boundaries_not_grid_aligned(self):
        cues = [Cue(10, 200, "a"), Cue(205, 330, "b"), Cue(335, 700, "c")]
        windows = segment_cues(cues, interval_minutes=5)
        self.assertEqual([(w.start, w.end) for w in windows], [(10, 330), (335, 700)])

    def test_millisecond_float_boundary(self):
        cues = [Cue(0.1, 100.2, "a"), Cue(100.2, 300.1, "b")]
        windows = segment_cues(cues, interval_minutes=5)
        self.assertEqual(len(windows), 1)
        self.assertEqual(windows[0].text, "a b")

    def test_empty_input(self):
        self.assertEqual(segment_cues([]), [])

    def test_default_interval(self):
        self.assertEqual(DEFAULT_WINDOW_MINUTES, 5)
        cues = [Cue(0, 299, "a"), Cue(299, 301, "b")]
        self.assertEqual(len(segment_cues(cues)), 1)

    def test_invalid_interval(self):
        with self.assertRaises(ValueError):
            segment_cues([Cue(0, 1, "a")], interval_minutes=0)

    def test_windows_cover_all_text_in_order(self):
        cues = [Cue(i * 45, (i + 1) * 45, f"w{i}") for i in range(20)]
        windows = segment_cues(cues, interval_minutes=5)
        joined = " ".join(w.text for w in windows)
        self.assertEqual(joined, " ".join(c.text for c in cues))
        self.assertEqual(windows[0].start, 0)
        self.assertEqual(windows[-1].end, 900)


class TestConfig(unittest.TestCase):
    """Test configuration loading, validation and env overrides."""

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.config_path = Path(self.tmpdir.name) / "config.json"

    def tearDown(self):
        self.tmpdir.cleanup()

    def test_defaults(self):
        config = AppConfig(self.config_path, environ={})
        settings = config.settings()
        self.assertEqual(settings.window_minutes, DEFAULT_WINDOW_MINUTES)
        self.assertEqual(settings.transcription.subtitle_candidates, DEFAULT_SUBTITLE_CANDIDATES)
        self.assertIsNone(settings.transcription.process_timeout_sec)
        self.assertEqual(settings.generator.questions_per_window, 3)

    def test_env_overrides_file(self):
        self.config_path.write_text(json.dumps({'ollama_model_name': 'mistral'}))
        config = AppConfig(self.config_path, environ={
            'OLLAMA_MODEL_NAME': 'llama3.1',
            'WHISPER_CPP_PATH': '/opt/whisper/main',
        })
        settings = config.settings()
        self.assertEqual(settings.generator.model_name, 'llama3.1')
        self.assertEqual(settings.transcription.whisper_cpp_path, '/opt/whisper/main')

    def test_file_values_loaded(self):
        self.config_path.write_text(json.dumps({'window_minutes': 10, 'whisper_threads': 8}))
        settings = AppConfig(self.config_path, environ={}).settings()
        self.assertEqual(settings.window_minutes, 10.0)
        self.assertEqual(settings.transcription.threads, 8)

    def test_corrupt_file_uses_defaults(self):
        self.config_path.write_text("{not json")
        config = AppConfig(self.config_path, environ={})
        self.assertEqual(config.get('window_minutes'), DEFAULT_WINDOW_MINUTES)

    def test_set_clamps_and_persists(self):
        config = AppConfig(self.config_path, environ={})
        config.set('window_minutes', 500)
        config.set('whisper_threads', 'many')
        self.assertEqual(config.get('window_minutes'), 60)
        self.assertEqual(config.get('whisper_threads'), 4)
        saved = json.loads(self.config_path.read_text())
        self.assertEqual(saved['window_minutes'], 60)

    def test_timeout_zero_means_none(self):
        config = AppConfig(self.config_path, environ={})
        config.set('process_timeout_sec', 0)
        self.assertIsNone(config.settings().transcription.process_timeout_sec)
        config.set('process_timeout_sec', '3600')
        self.assertEqual(config.settings().transcription.process_timeout_sec, 3600.0)

    def test_keep_debug_flag_parsing(self):
        config = AppConfig(self.config_path, environ={})
        config.set('keep_debug_artifacts', "false")
        self.assertIs(config.settings().keep_debug_artifacts, False)
        config.set('keep_debug_artifacts', " True ")
        self.assertIs(config.settings().keep_debug_artifacts, True)
        config.set('keep_debug_artifacts', False)
        self.assertIs(config.settings().keep_debug_artifacts, False)
        with self.assertLogs("lecturequiz.core.config", level="WARNING"):
            config.set('keep_debug_artifacts', "yes")
        self.assertIs(config.settings().keep_debug_artifacts, False)

    def test_keep_debug_string_in_file(self):
        self.config_path.write_text(json.dumps({'keep_debug_artifacts': "false"}))
        settings = AppConfig(self.config_path, environ={}).settings()
        self.assertIs(settings.keep_debug_artifacts, False)

    def test_validate_reports_missing_tools(self):
        config = AppConfig(self.config_path, environ={
            'WHISPER_CPP_PATH': '/nonexistent/whisper',
            'OLLAMA_API_URL': 'not a url',
        })
        problems = validate_settings(config.settings())
        self.assertTrue(any('Whisper.cpp executable not found' in p for p in problems))
        self.assertTrue(any('whisper_model_path' in p for p in problems))
        self.assertTrue(any('Invalid Ollama API URL' in p for p in problems))

    def test_validate_ok(self):
        tmp = Path(self.tmpdir.name)
        whisper = tmp / "whisper-cli"
        model = tmp / "ggml-base.en.bin"
        ffmpeg = tmp / "ffmpeg"
        for p in (whisper, model, ffmpeg):
            p.write_text("")
        config = AppConfig(self.config_path, environ={
            'WHISPER_CPP_PATH': str(whisper),
            'WHISPER_MODEL_PATH': str(model),
            'FFMPEG_PATH': str(ffmpeg),
        })
        self.assertEqual(validate_settings(config.settings()), [])


class TestErrorCodes(unittest.TestCase):
    """Test error code handling."""

    def test_retryable_errors(self):
        self.assertTrue(is_retryable(ErrorCode.LLM_TIMEOUT))
        self.assertTrue(is_retryable(ErrorCode.NETWORK_TRANSIENT))

    def test_non_retryable_errors(self):
        self.assertFalse(is_retryable(ErrorCode.MISSING_INPUT))
        self.assertFalse(is_retryable(ErrorCode.EMPTY_TRANSCRIPT))
        self.assertFalse(is_retryable(ErrorCode.LLM_INVALID_JSON))

    def test_job_error_auto_retryable(self):
        self.assertTrue(JobError(ErrorCode.NETWORK_TRANSIENT, "test").retryable)
        self.assertFalse(JobError(ErrorCode.WHISPER_FAILED, "test").retryable)
        self.assertEqual(RETRYABLE_ERRORS & {ErrorCode.WHISPER_FAILED}, set())

    def test_storage_message_bounded(self):
        err = JobError(ErrorCode.WHISPER_FAILED, "Transcription failed", details="x" * 5000)
        msg = err.storage_message()
        self.assertEqual(len(msg), MAX_ERROR_MESSAGE_LEN)
        self.assertTrue(msg.startswith("Transcription failed: x"))


class TestSecurityUtils(unittest.TestCase):
    """Test filename sanitization and subprocess guard."""

    def test_sanitize_basic(self):
        self.assertEqual(sanitize_filename("lecture 01.mp4"), "lecture_01.mp4")

    def test_sanitize_strips_directories(self):
        self.assertEqual(sanitize_filename("../../etc/passwd"), "passwd")
        self.assertEqual(sanitize_filename("C:\\videos\\intro.mkv"), "intro.mkv")

    def test_sanitize_special_chars(self):
        result = sanitize_filename('Week "3" <final>?.mp4')
        for ch in '"<>?':
            self.assertNotIn(ch, result)

    def test_sanitize_long_keeps_extension(self):
        result = sanitize_filename("A" * 300 + ".mp4")
        self.assertLessEqual(len(result), 120)
        self.assertTrue(result.endswith(".mp4"))

    def test_sanitize_empty(self):
        self.assertEqual(sanitize_filename(""), "")
        self.assertEqual(sanitize_filename("..."), "")

    def test_run_subprocess_rejects_string(self):
        with self.assertRaises(TypeError):
            run_subprocess("ls -la")


class TestCleanup(unittest.TestCase):

    def test_deletes_existing_and_ignores_missing(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            a = Path(tmpdir) / "a.wav"
            a.write_text("x")
            deleted = cleanup_artifacts(a, Path(tmpdir) / "missing.vtt", None)
            self.assertEqual(deleted, 1)
            self.assertFalse(a.exists())

    def test_keep_debug(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            a = Path(tmpdir) / "a.vtt"
            a.write_text("x")
            self.assertEqual(cleanup_artifacts(a, keep_debug=True), 0)
            self.assertTrue(a.exists())


class TestDatabase(unittest.TestCase):
    """Test SQLite database operations."""

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.db_path = Path(self.tmpdir.name) / "test.db"
        from lecturequiz.core.db_sqlite import Database
        self.db = Database(self.db_path)

    def tearDown(self):
        self.db.close()
        self.tmpdir.cleanup()

    def test_create_job(self):
        job = self.db.create_job("/uploads/abc-lecture.mp4", "lecture.mp4")
        self.assertIsNotNone(job.id)
        self.assertEqual(job.status, JobStatus.UPLOADED)
        self.assertEqual(job.question_ids, [])

    def test_get_job(self):
        job = self.db.create_job("/uploads/abc-lecture.mp4", "lecture.mp4")
        fetched = self.db.get_job(job.id)
        self.assertEqual(fetched.source_path, job.source_path)
        self.assertEqual(fetched.original_filename, "lecture.mp4")
        self.assertIsNone(self.db.get_job("missing"))

    def test_get_all_jobs_newest_first(self):
        from lecturequiz.core.db_sqlite import Database
        stamps = ["2026-01-01T00:00:00+00:00", "2026-01-02T00:00:00+00:00"]
        with mock.patch.object(Database, "_now", side_effect=stamps):
            older = self.db.create_job("/uploads/a.mp4", "a.mp4")
            newer = self.db.create_job("/uploads/b.mp4", "b.mp4")
        self.assertEqual([j.id for j in self.db.get_all_jobs()], [newer.id, older.id])

    def test_full_transition_path(self):
        job = self.db.create_job("/uploads/v.mp4")
        self.db.transition_job(job.id, JobStatus.TRANSCRIBING)
        self.db.transition_job(job.id, JobStatus.GENERATING_MCQS, transcript_id="t1")
        done = self.db.transition_job(job.id, JobStatus.COMPLETED, question_ids=["q1", "q2"])
        self.assertEqual(done.status, JobStatus.COMPLETED)
        self.assertEqual(done.transcript_id, "t1")
        self.assertEqual(done.question_ids, ["q1", "q2"])
        self.assertIsNotNone(done.completed_at)

    def test_transition_cannot_skip(self):
        job = self.db.create_job("/uploads/v.mp4")
        with self.assertRaises(StateTransitionError):
            self.db.transition_job(job.id, JobStatus.GENERATING_MCQS)
        with self.assertRaises(StateTransitionError):
            self.db.transition_job(job.id, JobStatus.COMPLETED)
        self.assertEqual(self.db.get_job(job.id).status, JobStatus.UPLOADED)

    def test_failed_reachable_from_each_active_state(self):
        for path in ([], [JobStatus.TRANSCRIBING],
                     [JobStatus.TRANSCRIBING, JobStatus.GENERATING_MCQS]):
            job = self.db.create_job("/uploads/v.mp4")
            for status in path:
                self.db.transition_job(job.id, status)
            failed = self.db.transition_job(job.id, JobStatus.FAILED, error_message="boom")
            self.assertEqual(failed.status, JobStatus.FAILED)

    def test_terminal_states_immutable(self):
        job = self.db.create_job("/uploads/v.mp4")
        self.db.transition_job(job.id, JobStatus.FAILED, error_message="boom")
        for status in (JobStatus.UPLOADED, JobStatus.TRANSCRIBING,
                       JobStatus.COMPLETED, JobStatus.FAILED):
            with self.assertRaises(StateTransitionError):
                self.db.transition_job(job.id, status)
        self.assertEqual(self.db.get_job(job.id).error_message, "boom")

    def test_transition_unknown_job(self):
        with self.assertRaises(JobNotFoundError):
            self.db.transition_job("nope", JobStatus.TRANSCRIBING)

    def test_transcript_round_trip(self):
        job = self.db.create_job("/uploads/v.mp4")
        windows = [Window(0.0, 300.0, "first"), Window(300.0, 420.5, "second")]
        transcript = self.db.create_transcript(job.id, "first second", windows)
        fetched = self.db.get_transcript(transcript.id)
        self.assertEqual(fetched.full_text, "first second")
        self.assertEqual(fetched.segments, windows)
        self.assertIsNone(self.db.get_transcript("missing"))

    def test_questions_ordered(self):
        job = self.db.create_job("/uploads/v.mp4")
        window = Window(0.0, 300.0, "text")
        ids = []
        for i in range(3):
            q = self.db.create_question(job.id, i, window, {
                'question': f"Q{i}?",
                'options': ["a", "b", "c", "d"],
                'correctAnswer': "B",
            })
            ids.append(q.id)
        fetched = self.db.get_questions(job.id)
        self.assertEqual([q.question for q in fetched], ["Q0?", "Q1?", "Q2?"])
        self.assertEqual(fetched[0].options, ["a", "b", "c", "d"])
        self.assertEqual(fetched[0].correct_answer, "B")
        reordered = self.db.get_questions_by_ids(list(reversed(ids)))
        self.assertEqual([q.id for q in reordered], list(reversed(ids)))
        self.assertEqual(self.db.get_questions_by_ids([]), [])


if __name__ == "__main__":
    unittest.main()
