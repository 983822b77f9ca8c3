"""
Duration-based transcript segmentation.
Groups consecutive cues into windows of roughly the target length; a window
closes as soon as its cues span the target, so boundaries follow the cues
rather than a fixed grid.
"""

import logging

from lecturequiz.core.constants import DEFAULT_WINDOW_MINUTES
from lecturequiz.core.models import Cue, Window
from lecturequiz.core.timecodes import minutes_to_seconds

logger = logging.getLogger(__name__)

# Absorbs float noise from millisecond timestamps at the exact boundary
_EPSILON = 1e-6


def _close_window(cues: list[Cue]) -> Window:
    return Window(
        start=cues[0].start,
        end=cues[-1].end,
        text=' '.join(c.text for c in cues),
    )


def segment_cues(cues: list[Cue],
                 interval_minutes: float = DEFAULT_WINDOW_MINUTES) -> list[Window]:
    """
    Group cues into windows. Returns an empty list for empty input.
    """
    target_sec = minutes_to_seconds(interval_minutes)
    if target_sec <= 0:
        raise ValueError(f"Window interval must be positive, got {interval_minutes!r}")

    windows: list[Window] = []
    pending: list[Cue] = []

    for cue in cues:
        pending.append(cue)
        if cue.end - pending[0].start >= target_sec - _EPSILON:
            windows.append(_close_window(pending))
            pending = []

    # Trailing partial window
    if pending:
        windows.append(_close_window(pending))

    logger.debug("Segmented %d cues into %d windows (%.0fs target)",
                 len(cues), len(windows), target_sec)
    return windows
