"""Heuristic clean-up of scraped page text.

Line-oriented and best-effort: lines that look like navigation, footer
boilerplate, cookie notices or error pages are dropped. There is no
semantic understanding here, only patterns.
"""

import logging
import re

logger = logging.getLogger(__name__)

MIN_LINE_LENGTH = 10

_BOILERPLATE_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in [
        r"copyright|©|all rights reserved",
        r"privacy policy|terms of service|terms (and|&) conditions",
        r"follow us|social media",
        r"^(facebook|twitter|instagram|linkedin|youtube|tiktok)$",
        r"\b(use|uses|accept|allow) (all )?cookies|cookies? (policy|settings|preferences|consent)|this (web)?site uses cookies",
        r"^(error|404)\b|page not found|something went wrong",
        r"skip to (main )?content",
    ]
]

_NAVIGATION_LINE = re.compile(
    r"^(home|about|about us|services|contact|contact us|menu|back|next|previous|more|"
    r"learn more|read more|click here)$",
    re.IGNORECASE,
)


def _is_boilerplate(line: str) -> bool:
    return any(p.search(line) for p in _BOILERPLATE_PATTERNS)


def clean_page_content(content: str, page_url: str = "") -> str:
    """Strip navigation and boilerplate lines from extracted page text."""
    kept: list[str] = []
    dropped = 0

    for raw_line in content.splitlines():
        line = re.sub(r"\s+", " ", raw_line).strip()
        if not line:
            continue
        if (
            len(line) <= MIN_LINE_LENGTH
            or _NAVIGATION_LINE.match(line)
            or _is_boilerplate(line)
        ):
            dropped += 1
            continue
        kept.append(line)

    if dropped:
        logger.debug("Cleaned %s: kept %d lines, dropped %d", page_url or "page", len(kept), dropped)
    return "\n".join(kept)
