#!/usr/bin/env python3
"""
LectureQuiz v1.0.0 — Main entry point.
Command-line front end: process a lecture video, query status, export results.
"""

import sys
import json
import shutil
import uuid
import logging
import argparse
from pathlib import Path
from datetime import datetime

# ── Determine project root ────────────────────────────────────────────
PROJECT_ROOT = Path(__file__).resolve().parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from lecturequiz.core.constants import APP_NAME, APP_VERSION, LOG_DIR, DB_PATH
from lecturequiz.core.config import AppConfig, validate_settings
from lecturequiz.core.db_sqlite import Database
from lecturequiz.core.diagnostics import get_diagnostics
from lecturequiz.core.error_codes import JobError, JobNotFoundError, JobNotReadyError
from lecturequiz.core.output_writer import write_results
from lecturequiz.core.pipeline import PipelineManager
from lecturequiz.core.security_utils import sanitize_filename

logger = logging.getLogger("lecturequiz")


def setup_logging(verbose: bool = False):
    """Log to <app data>/logs/app.log and stderr."""
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.FileHandler(LOG_DIR / "app.log", encoding="utf-8"),
            logging.StreamHandler(sys.stderr),
        ],
    )


def check_prerequisites(settings) -> bool:
    """Validate tool paths and endpoint settings once, before any job starts."""
    problems = validate_settings(settings)
    for problem in problems:
        logger.error("Configuration problem: %s", problem)
    return not problems


def store_upload(video: Path, upload_dir: Path) -> Path:
    """Copy the video into the upload directory under a unique, safe name."""
    upload_dir.mkdir(parents=True, exist_ok=True)
    safe_name = sanitize_filename(video.name) or "video"
    target = upload_dir / f"{uuid.uuid4().hex[:12]}-{safe_name}"
    shutil.copy2(video, target)
    return target


def cmd_process(args, config: AppConfig) -> int:
    settings = config.settings()
    if not check_prerequisites(settings):
        return 2

    video = Path(args.video).expanduser()
    if not video.is_file():
        logger.error("Video file not found: %s", video)
        return 2

    db = Database(args.db)
    try:
        manager = PipelineManager(db, settings)
        manager.on_job_updated = lambda job: print(f"[{job.id}] {job.status}", flush=True)

        stored = store_upload(video, settings.upload_dir)
        try:
            job = manager.accept_upload(stored, original_filename=video.name)
        except JobError as e:
            logger.error("%s", e)
            return 1

        manager.wait(job.id)
        status = manager.get_status(job.id)
        print(json.dumps({'job_id': job.id, **status}, indent=2))
        return 0 if status['status'] == 'completed' else 1
    finally:
        db.close()


def cmd_status(args, config: AppConfig) -> int:
    db = Database(args.db)
    try:
        manager = PipelineManager(db, config.settings())
        status = manager.get_status(args.job_id)
    except JobNotFoundError as e:
        print(str(e), file=sys.stderr)
        return 4
    finally:
        db.close()
    print(json.dumps(status, indent=2))
    return 0


def cmd_results(args, config: AppConfig) -> int:
    db = Database(args.db)
    try:
        manager = PipelineManager(db, config.settings())
        results = manager.get_results(args.job_id)
    except JobNotFoundError as e:
        print(str(e), file=sys.stderr)
        return 4
    except JobNotReadyError as e:
        print(json.dumps({'message': 'Video processing not yet complete.',
                          'status': e.status}, indent=2))
        return 3
    finally:
        db.close()

    if args.output:
        write_results(results, Path(args.output).expanduser())
    else:
        print(json.dumps(results.as_dict(), indent=2, ensure_ascii=False))
    return 0


def cmd_jobs(args, config: AppConfig) -> int:
    db = Database(args.db)
    try:
        jobs = PipelineManager(db, config.settings()).list_jobs()
    finally:
        db.close()
    rows = [{'id': j.id, 'file': j.original_filename, 'status': j.status,
             'error_code': j.error_code, 'created_at': j.created_at} for j in jobs]
    print(json.dumps(rows, indent=2))
    return 0


def cmd_diagnostics(args, config: AppConfig) -> int:
    print(json.dumps(get_diagnostics(config.settings()), indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="lecture-quiz",
        description="Transcribe lecture videos and generate multiple-choice questions.",
    )
    parser.add_argument("--version", action="version", version=f"{APP_NAME} {APP_VERSION}")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    parser.add_argument("--config", type=Path, default=None, help="path to config.json")
    parser.add_argument("--db", type=Path, default=DB_PATH, help="path to the SQLite database")

    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("process", help="transcribe a video and generate questions")
    p.add_argument("video")
    p.set_defaults(func=cmd_process)

    p = sub.add_parser("status", help="show a job's status")
    p.add_argument("job_id")
    p.set_defaults(func=cmd_status)

    p = sub.add_parser("results", help="print or export a completed job's results")
    p.add_argument("job_id")
    p.add_argument("-o", "--output", help="write JSON to this file")
    p.set_defaults(func=cmd_results)

    p = sub.add_parser("jobs", help="list all jobs, newest first")
    p.set_defaults(func=cmd_jobs)

    p = sub.add_parser("diagnostics", help="check ffmpeg, whisper.cpp and Ollama")
    p.set_defaults(func=cmd_diagnostics)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)
    logger.info("%s v%s starting at %s (%s)", APP_NAME, APP_VERSION,
                datetime.now().isoformat(), args.command)

    config = AppConfig(args.config)
    try:
        return args.func(args, config)
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
