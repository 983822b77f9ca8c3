"""
Cleanup: delete transient artifacts (extracted audio, subtitle files, orphaned uploads).
"""

import logging
from pathlib import Path

logger = logging.getLogger(__name__)


def cleanup_artifacts(*paths: Path | str | None, keep_debug: bool = False) -> int:
    """
    Delete the given files if they exist. Missing paths are ignored.
    With keep_debug, nothing is removed. Returns the number of files deleted.
    """
    if keep_debug:
        logger.debug("Keeping debug artifacts: %s", [str(p) for p in paths if p])
        return 0

    deleted = 0
    for path in paths:
        if not path:
            continue
        path = Path(path)
        if not path.exists():
            continue
        try:
            path.unlink()
            deleted += 1
            logger.debug("Deleted: %s", path)
        except OSError as e:
            logger.warning("Failed to delete %s: %s", path, e)
    return deleted
