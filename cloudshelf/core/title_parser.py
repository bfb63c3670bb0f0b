# Copyright (c) 2025 Trae AI. All rights reserved.

"""
Turns release-style filenames into a structured title guess.

Precedence, applied in order:

1. The extension is the last dot-segment of 1-5 alphanumerics containing a letter.
2. Leading bracketed group tags such as "[Group]" are dropped.
3. Episode markers win over years. "SxxEyy" is tried before "NxMM". The title is
   the text before the marker; a year right at the end of that text goes to `year`.
4. Otherwise the year is the LAST 1900-2099 number that sits before the first
   quality tag and has title text in front of it. A number at the very start of
   the name ("1917.mkv", "2001.A.Space.Odyssey.1968.mkv") stays in the title.
5. Otherwise the title ends at the first quality/codec/source tag.
6. "." "_" "-" and runs of whitespace become single spaces, brackets are removed,
   case is preserved.
7. If nothing is left, the cleaned name (or the bare stem) is the title.
"""

import re
from typing import List, Optional
from .models import ParsedTitle

EXTENSION_RE = re.compile(r"\.(?=[A-Za-z0-9]*[A-Za-z])[A-Za-z0-9]{1,5}$")
LEADING_TAG_RE = re.compile(r"^\s*(\[[^\]]*\]\s*)+")
YEAR_RE = re.compile(r"(?<!\d)(19\d{2}|20\d{2})(?!\d)")

EPISODE_PATTERNS = [
    re.compile(r"(?<![A-Za-z0-9])[Ss](\d{1,2})[ ._-]?[Ee](\d{1,3})(?!\d)"),  # S01E01
    re.compile(r"(?<![\dA-Za-z])(\d{1,2})[xX](\d{2,3})(?!\d)"),  # 1x01
]

# Tags that usually mark the end of the title
TECH_PATTERNS = [
    r"\d{3,4}[pi]",  # Resolution (720p, 1080p, 2160p)
    r"[48]k",
    r"[hHxX]\.?26[45]",  # Codec
    r"(?:HEVC|AVC|XviD|DivX|AV1)",
    r"(?:HDR10\+?|HDR|DoVi|DV|SDR|10bit)",
    r"(?:BluRay|Blu-Ray|BDRip|BRRip|WEB-?DL|WEBRip|HDTV|DVDRip|REMUX)",  # Source
    r"(?:Atmos|TrueHD|DDP|DTS|AC3|AAC|FLAC)",  # Audio
    r"(?:AMZN|NF|HMAX|DSNP|ATVP)",  # Platform
    r"(?:PROPER|REPACK)",
]
# Underscores count as separators, so plain \b boundaries are not enough
TECH_RE = re.compile(
    r"(?<![A-Za-z0-9])(?:" + "|".join(TECH_PATTERNS) + r")(?![A-Za-z0-9])", re.IGNORECASE
)

SEPARATORS_RE = re.compile(r"[._\-\s]+")
BRACKETS_RE = re.compile(r"[\[\]\(\)\{\}]")
TRIM_CHARS = " ._-([{"


def strip_extension(filename: str) -> str:
    return EXTENSION_RE.sub("", filename)


def normalize_title(raw: str) -> str:
    """
    Collapses separators to single spaces and drops brackets.
    """
    cleaned = BRACKETS_RE.sub(" ", raw)
    cleaned = SEPARATORS_RE.sub(" ", cleaned)
    return cleaned.strip()


def _has_text(raw: str) -> bool:
    return bool(raw.strip(TRIM_CHARS))


def _tech_cut(body: str) -> int:
    match = TECH_RE.search(body)
    return match.start() if match else len(body)


def _pick_year(body: str, limit: int) -> Optional[re.Match]:
    candidates: List[re.Match] = [
        m for m in YEAR_RE.finditer(body, 0, limit) if _has_text(body[: m.start()])
    ]
    return candidates[-1] if candidates else None


def _fallback(stem: str) -> str:
    return normalize_title(stem) or stem


def parse_title(filename: str) -> ParsedTitle:
    """
    Parses a bare filename. Never raises.
    """
    stem = strip_extension(filename or "")
    body = LEADING_TAG_RE.sub("", stem)
    if not _has_text(body):
        body = stem

    for pattern in EPISODE_PATTERNS:
        match = pattern.search(body)
        if not match:
            continue

        head = body[: match.start()].rstrip(" ._-([{")
        year = None
        year_match = _pick_year(head, len(head))
        if year_match and year_match.end() == len(head.rstrip(")]}")):
            year = int(year_match.group(1))
            head = head[: year_match.start()]

        return ParsedTitle(
            title=normalize_title(head) or _fallback(stem),
            year=year,
            season=int(match.group(1)),
            episode=int(match.group(2)),
            is_episode=True,
        )

    cut = _tech_cut(body)
    year_match = _pick_year(body, cut)
    if year_match:
        return ParsedTitle(
            title=normalize_title(body[: year_match.start()]) or _fallback(stem),
            year=int(year_match.group(1)),
        )

    return ParsedTitle(title=normalize_title(body[:cut]) or _fallback(stem))
