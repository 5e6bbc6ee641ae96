"""
Transcript Parsing Module

Single responsibility: raw SRT text → ordered, time-addressable segments.
Parse failures degrade to a zero timestamp or a sentinel segment; nothing
raised here escapes the module's public functions.
"""

import math
import re
from typing import List, Optional

import structlog

from core.models import TranscriptSegment

# Configure structured logger
logger = structlog.get_logger(__name__)

PARSE_ERROR_TEXT = "Error parsing transcript. Please check the format."
PARSE_ERROR_SEGMENT = TranscriptSegment(id="1", start_time=0.0, end_time=0.0, text=PARSE_ERROR_TEXT)

_BLOCK_SEPARATOR = re.compile(r'\n[ \t]*\n')


class TimestampError(ValueError):
    """Malformed subtitle timestamp"""
    pass


class TranscriptParseError(ValueError):
    """Malformed subtitle block; invalidates the whole document"""
    pass


def _parse_component(part: str) -> float:
    # SRT writes milliseconds after a comma
    value = float(part.strip().replace(',', '.'))
    if not math.isfinite(value):
        raise TimestampError(f"Non-finite timestamp component: {part!r}")
    return value


def parse_timestamp(time_string: str) -> float:
    """Strict conversion of H:MM:SS[.fff] or MM:SS[.fff] to seconds; raises TimestampError"""

    parts = time_string.strip().split(':')
    try:
        values = [_parse_component(p) for p in parts]
    except ValueError as e:
        raise TimestampError(f"Invalid time format: {time_string!r}") from e

    if len(values) == 3:
        hours, minutes, seconds = values
        return hours * 3600 + minutes * 60 + seconds
    if len(values) == 2:
        minutes, seconds = values
        return minutes * 60 + seconds

    raise TimestampError(f"Invalid time format: {time_string!r}")


def time_to_seconds(time_string: str) -> float:
    """Convert a timestamp to seconds, substituting 0 for malformed input"""
    try:
        return parse_timestamp(time_string)
    except (TimestampError, AttributeError) as e:
        logger.error("Error converting time to seconds",
                     time_string=time_string,
                     error=str(e))
        return 0.0


def _parse_block(block: str, index: int) -> TranscriptSegment:
    lines = block.split('\n')
    if len(lines) < 3:
        raise TranscriptParseError(f"Invalid segment format at index {index}")

    segment_id, time_line, *text_lines = lines
    bounds = time_line.split('-->')
    if len(bounds) != 2:
        raise TranscriptParseError(f"Invalid time format at index {index}")

    start_time, end_time = (time_to_seconds(b) for b in bounds)

    return TranscriptSegment(
        id=segment_id.strip(),
        start_time=start_time,
        end_time=end_time,
        text='\n'.join(text_lines)
    )


def parse_transcript_segments(srt_content: Optional[str]) -> List[TranscriptSegment]:
    """
    Parse SRT-style text into segments in source order.

    Empty or missing input yields an empty list. Any malformed block replaces
    the entire result with the single PARSE_ERROR_SEGMENT sentinel.
    """
    if not srt_content:
        return []

    text = srt_content.replace('\r\n', '\n').strip()
    if not text:
        return []

    try:
        return [_parse_block(block, i) for i, block in enumerate(_BLOCK_SEPARATOR.split(text))]
    except TranscriptParseError as e:
        logger.error("Error parsing transcript segments", error=str(e))
        return [PARSE_ERROR_SEGMENT]

