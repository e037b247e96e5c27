"""Utility helpers for statute text extraction and chunking.

This module provides:
- normalize_url: normalization to make source URLs consistent
- html_to_text: HTML page to plain text with paragraph breaks, using BeautifulSoup
- split_statute_sections: split statute text into (section_number, text) blocks
- chunk_text: character chunking with overlap, preferring paragraph then sentence breaks
- extract_section: best-effort section label for a chunk without a known heading
"""
import re
from typing import List, Optional, Tuple

from bs4 import BeautifulSoup

MIN_CHUNK_CHARS = 50

# "90.300 Security deposits; prepaid rent." at the start of a line
STATUTE_HEADING = re.compile(r"^[ \t]*(\d{2,3}\.\d{3})\b", re.MULTILINE)
MARKDOWN_HEADING = re.compile(r"^#+\s+(.+)$", re.MULTILINE)
NUMBERED_SECTION = re.compile(r"^(\d+\.\d+|\bSection\s+\d+[:\s])", re.MULTILINE | re.IGNORECASE)


def normalize_url(u: str) -> str:
    """Normalize URLs by removing fragments and trailing slashes.

    Args:
        u: Raw URL.

    Returns:
        str: Normalized URL suitable for storing as a chunk's source_url.
    """
    u = re.sub(r"#.*$", "", u)
    if len(u) > 1 and u.endswith("/"):
        u = u[:-1]
    return u


def html_to_text(html: str) -> str:
    """Convert an HTML page into plain text, one paragraph per block.

    Paragraph-like elements become blocks separated by blank lines so the
    chunker can break on them. Falls back to the whole page text if no
    paragraph elements are found.
    """
    soup = BeautifulSoup(html, "lxml")

    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()

    root = soup.body or soup
    blocks: List[str] = []
    for el in root.find_all(["h1", "h2", "h3", "h4", "p", "li"]):
        txt = re.sub(r"[ \t\r\f\v]+", " ", el.get_text(" ", strip=True)).strip()
        if txt:
            blocks.append(txt)

    if not blocks:
        text = soup.get_text("\n", strip=True)
        return re.sub(r"[ \t]+", " ", text).strip()
    return "\n\n".join(blocks)


def split_statute_sections(text: str) -> List[Tuple[Optional[str], str]]:
    """Split statute text at section-number headings (e.g. "90.300").

    Text before the first heading is returned with a None section. A document
    with no headings comes back as a single (None, text) block.
    """
    if not text:
        return []
    matches = list(STATUTE_HEADING.finditer(text))
    if not matches:
        return [(None, text.strip())] if text.strip() else []

    out: List[Tuple[Optional[str], str]] = []
    preamble = text[: matches[0].start()].strip()
    if preamble:
        out.append((None, preamble))
    for i, m in enumerate(matches):
        end = matches[i + 1].start() if i + 1 < len(matches) else len(text)
        block = text[m.start():end].strip()
        if block:
            out.append((m.group(1), block))
    return out


def chunk_text(text: str, chunk_size: int, overlap: int) -> List[str]:
    """Split text into overlapping character chunks on natural boundaries.

    A chunk ends at the last paragraph break before chunk_size when that break
    lies past the chunk's midpoint, otherwise at the last sentence end past the
    midpoint, otherwise at chunk_size. Chunks of MIN_CHUNK_CHARS characters or
    fewer are dropped.

    Args:
        text: Input string to split.
        chunk_size: Target chunk size in characters (at least 200).
        overlap: Characters shared by consecutive chunks, in [0, chunk_size // 2].

    Returns:
        List[str]: Trimmed chunks in document order.
    """
    if not text:
        return []
    chunk_size = max(200, chunk_size)
    overlap = max(0, min(overlap, chunk_size // 2))
    text = text.replace("\r\n", "\n").replace("\r", "\n")

    chunks: List[str] = []
    start = 0
    n = len(text)
    while start < n:
        end = start + chunk_size
        if end < n:
            midpoint = start + chunk_size / 2
            paragraph = text.rfind("\n\n", 0, end + 2)
            if paragraph > midpoint:
                end = paragraph
            else:
                sentence = text.rfind(". ", 0, end + 2)
                if sentence > midpoint:
                    end = sentence + 1

        chunk = text[start:end].strip()
        if len(chunk) > MIN_CHUNK_CHARS:
            chunks.append(chunk)

        if end >= n:
            break
        start = max(0, end - overlap)
    return chunks


def extract_section(chunk: str) -> Optional[str]:
    """Section label from a markdown heading or a leading section number, if any."""
    m = MARKDOWN_HEADING.search(chunk)
    if m:
        return m.group(1).strip()
    m = NUMBERED_SECTION.search(chunk)
    if m:
        return m.group(1).strip().rstrip(":")
    return None
