# source_splitter.py

import re
import logging
import uuid # For unique IDs in blocks
from typing import List, Optional, Tuple

from source_schema import ParsedBlock

logger = logging.getLogger(__name__)

MIN_BLOCK_CHARS = 15
MAX_TITLE_CHARS = 100
HEBREW_RATIO_THRESHOLD = 0.5

# One or more whitespace-only lines between two blocks
_BLOCK_GAP_PATTERN = re.compile(r'\n[ \t\r\f\v]*\n\s*')
_HEBREW_LETTER_PATTERN = re.compile(r'^[א-ת]')
_NUMBERED_PATTERN = re.compile(r'^\d+[.)]')

# Work and commentator names that open a source on a sheet
SOURCE_MARKERS = (
    'רש"י', "רש״י", "תוספות", "תוס'", 'רמב"ם', "רמב״ם", 'רמב"ן', "רמב״ן", "גמרא", "משנה",
    "מדרש", "זוהר", 'שו"ע', "שו״ע", "שולחן ערוך", 'משנ"ב', "משנה ברורה", "ספורנו",
    "אבן עזרא", "אור החיים", 'רשב"ם', 'מהרש"א', "בראשית רבה", "תלמוד",
    "Rashi", "Tosafot", "Tosfos", "Rambam", "Ramban", "Gemara", "Mishnah", "Mishna",
    "Midrash", "Zohar", "Shulchan Aruch", "Shulchan Arukh", "Mishnah Berurah",
    "Sforno", "Ibn Ezra", "Or HaChaim", "Rashbam", "Talmud",
)


def hebrew_ratio(text: str) -> float:
    """Share of Hebrew letters among all alphabetic characters; 0.0 when there are none."""
    letters = [c for c in text if c.isalpha()]
    if not letters:
        return 0.0
    hebrew = sum(1 for c in letters if '\u0590' <= c <= '\u05ff')
    return hebrew / len(letters)


def is_hebrew(text: str) -> bool:
    return hebrew_ratio(text or "") > HEBREW_RATIO_THRESHOLD


def looks_like_title(line: str) -> bool:
    line = line.strip()
    if not line or len(line) >= MAX_TITLE_CHARS:
        return False
    if _HEBREW_LETTER_PATTERN.match(line):
        return True
    if _NUMBERED_PATTERN.match(line):
        return True
    return any(marker in line for marker in SOURCE_MARKERS)


def split_title(block: str) -> Tuple[Optional[str], str]:
    """Separates a leading title line from a block when the first line looks like one."""
    lines = block.split('\n')
    if len(lines) > 1 and looks_like_title(lines[0]):
        return lines[0].strip(), '\n'.join(lines[1:]).strip()
    return None, block


def split_sources(raw_text: str) -> List[ParsedBlock]:
    """
    Segments OCR text into source blocks.

    Blocks are separated by blank lines; anything under MIN_BLOCK_CHARS is treated
    as noise (page numbers, stray marks). Pure function, no I/O.
    """
    if not raw_text or not raw_text.strip():
        return []

    blocks: List[ParsedBlock] = []
    for candidate in _BLOCK_GAP_PATTERN.split(raw_text.replace('\r\n', '\n')):
        candidate = candidate.strip()
        if len(candidate) < MIN_BLOCK_CHARS:
            if candidate:
                logger.debug(f"Dropping short block as noise: '{candidate}'")
            continue

        title, text = split_title(candidate)
        blocks.append(ParsedBlock(
            id=f"block-{uuid.uuid4().hex[:8]}-{len(blocks)}",
            text=text,
            type="hebrew" if is_hebrew(candidate) else "english",
            title=title,
        ))

    logger.info(f"Split OCR text into {len(blocks)} source blocks.", extra={"event": "sources_split", "block_count": len(blocks)})
    return blocks
