"""
Subtitle timestamp codec: HH:MM:SS.mmm <-> float seconds.
Malformed timestamps degrade to 0.0 instead of raising, so one corrupt
cue cannot abort an otherwise good transcription.
"""

import logging

logger = logging.getLogger(__name__)


def _parse_field(value: str) -> int:
    value = value.strip()
    if not value.isdigit():
        raise ValueError(f"non-numeric field {value!r}")
    return int(value)


def parse_timestamp(text: str) -> float:
    """
    Convert `HH:MM:SS.mmm` (or `MM:SS.mmm`) to seconds.
    Accepts ',' as the decimal separator. Returns 0.0 on malformed input.
    """
    if not text or not text.strip():
        logger.warning("Empty timestamp — using 0.0")
        return 0.0

    raw = text.strip().replace(',', '.')
    hms, _, frac = raw.partition('.')
    fields = hms.split(':')

    if len(fields) == 2:
        fields.insert(0, '0')
    if len(fields) != 3:
        logger.warning("Malformed timestamp %r (field count) — using 0.0", text)
        return 0.0

    try:
        hours, minutes, seconds = (_parse_field(f) for f in fields)
        millis = 0.0
        if frac:
            if not frac.isdigit():
                raise ValueError(f"non-numeric fraction {frac!r}")
            millis = float(f"0.{frac}") * 1000
    except ValueError as e:
        logger.warning("Malformed timestamp %r (%s) — using 0.0", text, e)
        return 0.0

    return hours * 3600 + minutes * 60 + seconds + millis / 1000


def format_timestamp(seconds: float) -> str:
    """Format seconds as `HH:MM:SS.mmm`. Negative values clamp to zero."""
    total_ms = max(0, int(round(seconds * 1000)))
    hours, rem = divmod(total_ms, 3_600_000)
    minutes, rem = divmod(rem, 60_000)
    secs, millis = divmod(rem, 1000)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}.{millis:03d}"


def minutes_to_seconds(minutes: float) -> float:
    return float(minutes) * 60
