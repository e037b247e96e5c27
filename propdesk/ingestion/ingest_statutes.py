"""Statute / policy text ingestor.

Fetches an ORS chapter page (or reads a local text/HTML file), splits it at
statute section headings, chunks each section, embeds the chunks with OpenAI
embeddings, and stores KnowledgeChunk rows in Postgres.

Chunking:
- Uses propdesk.utils.chunk_text with settings.CHUNK_SIZE and settings.CHUNK_OVERLAP
- source_section comes from the statute heading ("90.300"); chunks outside any
  heading fall back to propdesk.utils.extract_section

Usage:
  python -m propdesk.ingestion.ingest_statutes --url https://oregon.public.law/statutes/ors_chapter_90 \
      --source-type ors_90 --title "ORS Chapter 90"
  python -m propdesk.ingestion.ingest_statutes --file ./docs/move_out_policy.md \
      --source-type policy_doc --title "Move-out Policy"
"""
from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import List, Optional, Tuple

import requests
from sqlalchemy.orm import Session

from propdesk.config import settings
from propdesk.db import init_db, session_scope
from propdesk.embedding import embed_texts
from propdesk.models import KnowledgeChunk
from propdesk.utils import chunk_text, extract_section, html_to_text, normalize_url, split_statute_sections

logger = logging.getLogger(__name__)

SOURCE_TYPES = ["ors_90", "loom_video", "policy_doc"]

HEADERS = {
    "User-Agent": "propdesk-ingestor/1.0",
    "Accept": "text/html,text/plain;q=0.9,*/*;q=0.8",
}


def fetch_text(url: str, timeout: int = 30) -> str:
    """Fetch a page and return its plain text."""
    logger.info("Fetching: %s", url)
    resp = requests.get(url, headers=HEADERS, timeout=timeout)
    ctype = resp.headers.get("Content-Type", "")
    logger.info("HTTP %d from %s (content-type=%s, bytes=%d)", resp.status_code, url, ctype, len(resp.content or b""))
    resp.raise_for_status()
    if "html" in ctype:
        return html_to_text(resp.text)
    return resp.text


def read_file_text(path: Path) -> str:
    raw = path.read_text(encoding="utf-8")
    if path.suffix.lower() in {".html", ".htm"}:
        return html_to_text(raw)
    return raw


def build_chunks(text: str) -> List[Tuple[Optional[str], str]]:
    """(section, chunk) pairs for a whole document."""
    out: List[Tuple[Optional[str], str]] = []
    for section, block in split_statute_sections(text):
        for ch in chunk_text(block, settings.CHUNK_SIZE, settings.CHUNK_OVERLAP):
            out.append((section or extract_section(ch), ch))
    return out


def _insert_chunks(
    db: Session,
    pairs: List[Tuple[Optional[str], str]],
    source_type: str,
    title: str,
    source_url: Optional[str],
) -> int:
    embeddings = embed_texts([c for _, c in pairs])
    for (section, content), emb in zip(pairs, embeddings):
        db.add(
            KnowledgeChunk(
                content=content,
                source_type=source_type,
                source_title=title[:512],
                source_url=source_url,
                source_section=section[:64] if section else None,
                embedding=emb,
            )
        )
    return len(pairs)


def ingest_text(text: str, source_type: str, title: str, source_url: Optional[str] = None) -> int:
    """Chunk, embed and persist one document. Returns the number of chunks inserted."""
    if source_type not in SOURCE_TYPES:
        raise ValueError(f"source_type must be one of {SOURCE_TYPES}, got {source_type!r}")
    pairs = build_chunks(text)
    sections = {s for s, _ in pairs if s}
    logger.info("Split %s into %d chunks across %d sections", title, len(pairs), len(sections))
    if not pairs:
        return 0
    with session_scope() as db:
        return _insert_chunks(db, pairs, source_type, title, source_url)


def main():
    parser = argparse.ArgumentParser(description="Ingest statute or policy text into the knowledge base.")
    src = parser.add_mutually_exclusive_group(required=True)
    src.add_argument("--url", help="Page to fetch (e.g. an ORS chapter)")
    src.add_argument("--file", type=Path, help="Local .txt, .md or .html file")
    parser.add_argument("--source-type", required=True, choices=SOURCE_TYPES)
    parser.add_argument("--title", required=True, help="Display title for citations")
    parser.add_argument("--source-url", default=None, help="Citation URL (defaults to --url)")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging verbosity (default: INFO)",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )

    init_db()
    origin = args.url or str(args.file)
    try:
        text = fetch_text(args.url) if args.url else read_file_text(args.file)
        source_url = args.source_url or (normalize_url(args.url) if args.url else None)
        total = ingest_text(text, args.source_type, args.title, source_url)
        logger.info("Completed ingestion: chunks=%d, source=%s", total, origin)
        print(f"[INGEST] {origin} -> {total} chunks")
    except Exception:
        logger.exception("Ingestion failed for %s", origin)
        raise


if __name__ == "__main__":
    main()
