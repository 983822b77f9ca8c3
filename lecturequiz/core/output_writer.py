"""
Output writer: exports job results as JSON.
"""

import json
import logging
from pathlib import Path

from lecturequiz.core.models import JobResults

logger = logging.getLogger(__name__)


def write_results(results: JobResults, output_path: Path) -> Path:
    """
    Write transcript + questions to `output_path` as UTF-8 JSON.
    Returns the path to the written file.
    """
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(
        json.dumps(results.as_dict(), indent=2, ensure_ascii=False),
        encoding='utf-8',
    )
    logger.info("Wrote results: %s", output_path)
    return output_path
