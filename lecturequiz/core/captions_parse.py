"""
VTT captions parsing → ordered timed cues.
Drops cue numbers, header/metadata, NOTE/STYLE/REGION blocks and styling markup.
"""

import re
import logging
from pathlib import Path

from lecturequiz.core.models import Cue
from lecturequiz.core.timecodes import parse_timestamp

logger = logging.getLogger(__name__)

# Regex patterns for VTT cleanup
_TS = r'(?:\d{2}:)?\d{2}:\d{2}\.\d{3}'
_CUE_HEADER_RE = re.compile(rf'^({_TS})\s+-->\s+({_TS})(?:\s+.*)?$')
_CUE_ID_RE = re.compile(r'^\d+$')
_PREAMBLE_RE = re.compile(r'^(?:WEBVTT|Kind:|Language:)')
_BLOCK_START_RE = re.compile(r'^(?:NOTE|STYLE|REGION)(?:\s|$)')
_NON_SPEECH_RE = re.compile(r'^\[[^\]]*\]$')
_HTML_TAG_RE = re.compile(r'<[^>]+>')


def _clean_text(line: str) -> str:
    line = _HTML_TAG_RE.sub('', line)
    return re.sub(r'\s+', ' ', line).strip()


def parse_vtt(content: str) -> list[Cue]:
    """
    Convert VTT document text into cues, in document order.
    Cues with no text after cleanup are dropped.
    """
    cues: list[Cue] = []
    current: dict | None = None
    in_block = False
    after_blank = True

    def flush():
        if current is not None and current['parts']:
            cues.append(Cue(current['start'], current['end'], ' '.join(current['parts'])))

    for line in content.lstrip('\ufeff').splitlines():
        stripped = line.strip()

        if not stripped:
            in_block = False
            after_blank = True
            continue
        block_start, after_blank = after_blank, False
        if in_block:
            continue

        header = _CUE_HEADER_RE.match(stripped)
        if header:
            flush()
            current = {
                'start': parse_timestamp(header.group(1)),
                'end': parse_timestamp(header.group(2)),
                'parts': [],
            }
            continue

        if block_start and _BLOCK_START_RE.match(stripped):
            in_block = True
            continue
        if '-->' in stripped:
            logger.warning("Skipping malformed cue header: %r", stripped[:80])
            continue
        if _CUE_ID_RE.match(stripped) or _PREAMBLE_RE.match(stripped):
            continue
        if _NON_SPEECH_RE.match(stripped):
            continue

        if current is None:
            # Text before the first cue header has no timing
            continue

        text = _clean_text(stripped)
        if text:
            current['parts'].append(text)

    flush()
    return cues


def parse_vtt_file(vtt_path: Path) -> list[Cue]:
    content = vtt_path.read_text(encoding='utf-8', errors='replace')
    return parse_vtt(content)


def cues_to_text(cues: list[Cue]) -> str:
    """Full transcript text: every cue, space-joined."""
    return ' '.join(c.text for c in cues)
