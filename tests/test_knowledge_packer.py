"""Tests for packing cleaned pages into size-bounded knowledge files."""

import pytest

from app.services.knowledge_packer import (
    CleanedPage,
    format_page_block,
    knowledge_file_name,
    pack_pages,
    split_oversized_page,
    utf8_len,
)

KIB = 1024
MAX = 300 * KIB


def _page(n: int, size: int) -> CleanedPage:
    line = f"Page {n} details about our services and opening hours."
    lines, total = [], 0
    while total < size:
        lines.append(line)
        total += len(line) + 1
    return CleanedPage(url=f"https://acme.example/page-{n}", title=f"Page {n}", text="\n".join(lines)[:size])


def test_page_block_format():
    block = format_page_block("About", "https://acme.example/about", "We fix boilers.")
    assert block == "\n\n=== About ===\nSource: https://acme.example/about\n\nWe fix boilers.\n\n"


def test_310_kib_of_pages_packs_into_two_files():
    pages = [_page(n, 62 * KIB) for n in range(1, 6)]

    files = pack_pages(pages, max_bytes=MAX)

    assert len(files) == 2
    assert files[0].byte_size <= MAX
    assert all(f.byte_size <= MAX for f in files)
    urls = [url for f in files for url in f.source_urls]
    assert urls == [p.url for p in pages]
    for page in pages:
        assert sum(f.content.count(page.text) for f in files) == 1


def test_greedy_fill_keeps_document_order():
    pages = [_page(n, 100 * KIB) for n in range(1, 5)]

    files = pack_pages(pages, max_bytes=MAX)

    assert [f.source_urls for f in files] == [
        [pages[0].url, pages[1].url],
        [pages[2].url, pages[3].url],
    ]
    assert [f.sequence for f in files] == [1, 2]


def test_sequences_continue_from_start():
    pages = [_page(n, 200 * KIB) for n in range(1, 3)]

    files = pack_pages(pages, start_sequence=4, max_bytes=MAX)

    assert [f.sequence for f in files] == [4, 5]


def test_pages_with_no_cleaned_text_are_skipped():
    pages = [
        CleanedPage(url="https://acme.example/empty", title="Empty", text="   "),
        CleanedPage(url="https://acme.example/about", title="About", text="Family run since 1980."),
    ]

    files = pack_pages(pages, max_bytes=MAX)

    assert len(files) == 1
    assert files[0].source_urls == ["https://acme.example/about"]


def test_no_pages_no_files():
    assert pack_pages([], max_bytes=MAX) == []


def test_oversized_page_is_split_into_parts():
    big = _page(1, 700 * KIB)

    files = pack_pages([big], max_bytes=MAX)

    assert len(files) == 3
    assert all(f.byte_size <= MAX for f in files)
    assert "=== Page 1 (part 1) ===" in files[0].content
    assert "=== Page 1 (part 3) ===" in files[2].content
    assert all(f.source_urls == [big.url] for f in files)


def test_oversized_page_without_line_breaks_splits_on_character_boundaries():
    page = CleanedPage(url="https://acme.example/menu", title="Menu", text="crème brûlée " * 40)

    blocks = split_oversized_page(page, max_bytes=200)

    assert len(blocks) > 1
    assert all(utf8_len(b) <= 200 for b in blocks)
    rebuilt = "".join(b.split("\n\n")[2] for b in blocks)
    assert rebuilt == page.text


def test_split_rejects_cap_too_small_for_header():
    page = CleanedPage(url="https://acme.example/" + "x" * 200, title="Long", text="some content here")
    with pytest.raises(ValueError):
        split_oversized_page(page, max_bytes=50)


def test_knowledge_file_name():
    assert knowledge_file_name("Acme Dental & Co", 3) == "Acme_Dental___Co_KB_Part_3.txt"
    assert knowledge_file_name(None, 1) == "Business_KB_Part_1.txt"
