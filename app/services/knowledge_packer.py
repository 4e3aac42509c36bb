"""Packs cleaned page text into size-bounded knowledge files.

Pages are appended in crawl order to the current file; when the next
page block would push the file over the byte cap, the current file is
closed and a new one started. A page that cannot fit even in an empty
file is split into "(part k)" blocks first, so no file ever exceeds the
cap.
"""

import logging
import re
from collections import deque
from dataclasses import dataclass, field
from typing import Iterable

from app.core.config import settings

logger = logging.getLogger(__name__)


@dataclass
class CleanedPage:
    url: str
    title: str
    text: str


@dataclass
class PackedFile:
    sequence: int
    content: str
    source_urls: list[str] = field(default_factory=list)

    @property
    def byte_size(self) -> int:
        return utf8_len(self.content)


def utf8_len(text: str) -> int:
    return len(text.encode("utf-8"))


def format_page_block(title: str, url: str, text: str) -> str:
    return f"\n\n=== {title or 'Page'} ===\nSource: {url}\n\n{text}\n\n"


def knowledge_file_name(business_name: str | None, sequence: int) -> str:
    """File name used on the voice platform, e.g. ``Acme_Dental_KB_Part_3.txt``."""
    prefix = re.sub(r"[^a-zA-Z0-9]", "_", business_name) if business_name else "Business"
    return f"{prefix}_KB_Part_{sequence}.txt"


def _truncate_utf8(text: str, max_bytes: int) -> str:
    """Longest prefix of text whose UTF-8 encoding fits in max_bytes."""
    return text.encode("utf-8")[:max_bytes].decode("utf-8", errors="ignore")


def split_oversized_page(page: CleanedPage, max_bytes: int) -> list[str]:
    """Split one page into blocks that each fit within max_bytes.

    Cuts on line boundaries where possible; a single line longer than the
    remaining room is cut at a UTF-8 character boundary.
    """
    blocks: list[str] = []
    title = page.title or "Page"

    def render(body: str) -> str:
        return format_page_block(f"{title} (part {len(blocks) + 1})", page.url, body)

    pending = deque(page.text.split("\n"))
    current = ""
    while pending:
        line = pending.popleft()
        candidate = f"{current}\n{line}" if current else line
        if utf8_len(render(candidate)) <= max_bytes:
            current = candidate
            continue
        if current:
            blocks.append(render(current))
            current = ""
            pending.appendleft(line)
            continue

        room = max_bytes - utf8_len(render(""))
        head = _truncate_utf8(line, room) if room > 0 else ""
        if not head:
            raise ValueError(f"max_bytes={max_bytes} leaves no room for content of {page.url}")
        blocks.append(render(head))
        pending.appendleft(line[len(head):])

    if current:
        blocks.append(render(current))
    return blocks


def pack_pages(
    pages: Iterable[CleanedPage],
    start_sequence: int = 1,
    max_bytes: int | None = None,
) -> list[PackedFile]:
    """Greedily pack pages, in order, into files of at most max_bytes."""
    max_bytes = max_bytes or settings.KNOWLEDGE_FILE_MAX_BYTES
    files: list[PackedFile] = []
    current = ""
    current_size = 0
    current_urls: list[str] = []

    def flush() -> None:
        files.append(PackedFile(
            sequence=start_sequence + len(files),
            content=current,
            source_urls=list(current_urls),
        ))

    for page in pages:
        if not page.text.strip():
            logger.info("Skipping %s: no content left after cleaning", page.url)
            continue

        block = format_page_block(page.title, page.url, page.text)
        if utf8_len(block) <= max_bytes:
            blocks = [block]
        else:
            blocks = split_oversized_page(page, max_bytes)
            logger.info("Split oversized page %s into %d parts", page.url, len(blocks))

        for block in blocks:
            block_size = utf8_len(block)
            if current and current_size + block_size > max_bytes:
                flush()
                current, current_size, current_urls = "", 0, []
            current += block
            current_size += block_size
            if page.url not in current_urls:
                current_urls.append(page.url)

    if current:
        flush()

    return files
