"""Knowledge search backends consumed by the hybrid retriever.

Each backend exposes four primitives with typed hits:
- vector_search   -> VectorHit    (cosine similarity against the query embedding)
- fulltext_search -> FulltextHit  (ranked keyword search)
- phrase_search   -> PhraseHit    (exact contiguous phrase)
- substring_search -> PhraseHit   (literal substring, used for section numbers)

to_chunk() is the single place where hits are normalized into KnowledgeChunk,
so the ranking code never reads backend-specific fields.

Implementations:
- PgKnowledgeSearch: pgvector + Postgres full-text search over knowledge_chunks.
- InMemoryKnowledgeSearch: numpy cosine + BM25 over a list of chunks, for local
  runs and tests without a database.
"""
from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, replace
from typing import Callable, Dict, List, Optional, Protocol, Sequence, Tuple, Union

import numpy as np
from rank_bm25 import BM25Okapi
from sqlalchemy import text
from sqlalchemy.orm import Session

from propdesk.db import SessionLocal
from propdesk.embedding import Embedder

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class KnowledgeChunk:
    """Indexed statute/policy text. similarity is set on vector and exact-match results."""
    id: str
    content: str
    source_type: str
    source_title: str
    source_url: Optional[str] = None
    source_section: Optional[str] = None
    similarity: Optional[float] = None


@dataclass(frozen=True)
class VectorHit:
    chunk: KnowledgeChunk
    similarity: float


@dataclass(frozen=True)
class FulltextHit:
    chunk: KnowledgeChunk
    rank: float


@dataclass(frozen=True)
class PhraseHit:
    chunk: KnowledgeChunk
    rank: float
    exact: bool = True  # False for substring matches


Hit = Union[VectorHit, FulltextHit, PhraseHit]

EXACT_MATCH_SIMILARITY = 1.0


def to_chunk(hit: Hit) -> KnowledgeChunk:
    """Normalize a backend hit into a KnowledgeChunk.

    Vector hits keep their cosine similarity. Phrase and substring hits contain
    the searched text verbatim and score EXACT_MATCH_SIMILARITY, so a requested
    section or quoted phrase always clears the quality floor. Full-text ranks are
    on an unrelated scale and carry no similarity.
    """
    if isinstance(hit, VectorHit):
        return replace(hit.chunk, similarity=float(hit.similarity))
    if isinstance(hit, PhraseHit):
        return replace(hit.chunk, similarity=EXACT_MATCH_SIMILARITY)
    return replace(hit.chunk, similarity=None)


class KnowledgeSearchBackend(Protocol):
    async def vector_search(self, query_text: str, threshold: float, max_results: int) -> List[VectorHit]:
        ...

    async def fulltext_search(self, query: str, max_results: int) -> List[FulltextHit]:
        ...

    async def phrase_search(self, phrase: str, max_results: int) -> List[PhraseHit]:
        ...

    async def substring_search(self, text: str, max_results: int) -> List[PhraseHit]:
        ...


# ---------------------------------------------------------------------------
# Postgres / pgvector
# ---------------------------------------------------------------------------

_CHUNK_COLUMNS = "id, content, source_type, source_title, source_url, source_section"

VECTOR_SQL = text(
    f"""
    SELECT {_CHUNK_COLUMNS},
        1 - (embedding <=> CAST(:qvec AS vector)) AS similarity
    FROM knowledge_chunks
    WHERE 1 - (embedding <=> CAST(:qvec AS vector)) >= :threshold
    ORDER BY embedding <=> CAST(:qvec AS vector)
    LIMIT :limit
    """
)

FULLTEXT_SQL = text(
    f"""
    SELECT {_CHUNK_COLUMNS},
        ts_rank(fts, websearch_to_tsquery('english', :q)) AS rank
    FROM knowledge_chunks
    WHERE fts @@ websearch_to_tsquery('english', :q)
    ORDER BY rank DESC
    LIMIT :limit
    """
)

PHRASE_SQL = text(
    f"""
    SELECT {_CHUNK_COLUMNS},
        ts_rank(fts, phraseto_tsquery('english', :q)) AS rank
    FROM knowledge_chunks
    WHERE fts @@ phraseto_tsquery('english', :q)
    ORDER BY rank DESC
    LIMIT :limit
    """
)

SUBSTRING_SQL = text(
    f"""
    SELECT {_CHUNK_COLUMNS}, 1.0 AS rank
    FROM knowledge_chunks
    WHERE content ILIKE :pattern ESCAPE '\\'
    ORDER BY source_section ASC NULLS LAST
    LIMIT :limit
    """
)


def _escape_like(s: str) -> str:
    return s.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _row_to_chunk(r) -> KnowledgeChunk:
    return KnowledgeChunk(
        id=str(r["id"]),
        content=r["content"],
        source_type=r["source_type"],
        source_title=r["source_title"],
        source_url=r["source_url"],
        source_section=r["source_section"],
    )


class PgKnowledgeSearch:
    """Search knowledge_chunks in Postgres.

    Every call opens its own short-lived session in a worker thread, so
    concurrent branches of one retrieval never share a connection.
    """

    def __init__(self, embedder: Embedder, session_factory: Callable[[], Session] = SessionLocal):
        self.embedder = embedder
        self.session_factory = session_factory

    def _fetch(self, sql, params: Dict) -> List:
        db = self.session_factory()
        try:
            return db.execute(sql, params).mappings().all()
        finally:
            db.close()

    async def _run(self, sql, params: Dict) -> List:
        return await asyncio.to_thread(self._fetch, sql, params)

    async def vector_search(self, query_text: str, threshold: float, max_results: int) -> List[VectorHit]:
        qvec = await self.embedder.embed(query_text)
        qvec_str = "[" + ",".join(f"{x:.6f}" for x in qvec) + "]"
        rows = await self._run(VECTOR_SQL, {"qvec": qvec_str, "threshold": threshold, "limit": max_results})
        return [VectorHit(chunk=_row_to_chunk(r), similarity=float(r["similarity"])) for r in rows]

    async def fulltext_search(self, query: str, max_results: int) -> List[FulltextHit]:
        rows = await self._run(FULLTEXT_SQL, {"q": query, "limit": max_results})
        return [FulltextHit(chunk=_row_to_chunk(r), rank=float(r["rank"])) for r in rows]

    async def phrase_search(self, phrase: str, max_results: int) -> List[PhraseHit]:
        rows = await self._run(PHRASE_SQL, {"q": phrase, "limit": max_results})
        return [PhraseHit(chunk=_row_to_chunk(r), rank=float(r["rank"])) for r in rows]

    async def substring_search(self, text: str, max_results: int) -> List[PhraseHit]:
        pattern = f"%{_escape_like(text)}%"
        rows = await self._run(SUBSTRING_SQL, {"pattern": pattern, "limit": max_results})
        return [PhraseHit(chunk=_row_to_chunk(r), rank=1.0, exact=False) for r in rows]


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------

def _tokenize(s: str) -> List[str]:
    """Lowercase alphanumeric tokens; dotted section numbers stay whole."""
    return re.findall(r"[a-z0-9]+(?:\.[0-9]+)?", s.lower())


def _contains_run(tokens: Sequence[str], run: Sequence[str]) -> int:
    n = len(run)
    if n == 0:
        return 0
    return sum(1 for i in range(len(tokens) - n + 1) if list(tokens[i:i + n]) == list(run))


class InMemoryKnowledgeSearch:
    """Search a fixed list of (chunk, embedding) pairs without a database.

    Cosine similarity is computed with numpy; keyword ranking uses BM25 over
    the same tokenization as the phrase matcher.
    """

    def __init__(self, embedder: Embedder, items: Sequence[Tuple[KnowledgeChunk, Sequence[float]]]):
        self.embedder = embedder
        self.chunks = [c for c, _ in items]
        self._matrix = np.array([list(e) for _, e in items], dtype=float) if items else np.zeros((0, 0))
        self._tokens = [_tokenize(c.content) for c in self.chunks]
        self._bm25 = BM25Okapi(self._tokens) if self.chunks else None

    async def vector_search(self, query_text: str, threshold: float, max_results: int) -> List[VectorHit]:
        if not self.chunks:
            return []
        q = np.array(await self.embedder.embed(query_text), dtype=float)
        norms = np.linalg.norm(self._matrix, axis=1) * (np.linalg.norm(q) or 1.0)
        norms[norms == 0] = 1.0
        sims = (self._matrix @ q) / norms
        order = np.argsort(-sims, kind="stable")
        hits = [VectorHit(chunk=self.chunks[i], similarity=float(sims[i])) for i in order if sims[i] >= threshold]
        return hits[:max_results]

    async def fulltext_search(self, query: str, max_results: int) -> List[FulltextHit]:
        q_tokens = _tokenize(query)
        if self._bm25 is None or not q_tokens:
            return []
        scores = self._bm25.get_scores(q_tokens)
        wanted = set(q_tokens)
        matched = [i for i, toks in enumerate(self._tokens) if wanted.intersection(toks)]
        matched.sort(key=lambda i: -scores[i])
        return [FulltextHit(chunk=self.chunks[i], rank=float(scores[i])) for i in matched[:max_results]]

    async def phrase_search(self, phrase: str, max_results: int) -> List[PhraseHit]:
        run = _tokenize(phrase)
        counted = [(i, _contains_run(toks, run)) for i, toks in enumerate(self._tokens)]
        counted = [(i, n) for i, n in counted if n > 0]
        counted.sort(key=lambda x: -x[1])
        return [PhraseHit(chunk=self.chunks[i], rank=float(n)) for i, n in counted[:max_results]]

    async def substring_search(self, text: str, max_results: int) -> List[PhraseHit]:
        needle = text.lower()
        found = [c for c in self.chunks if needle and needle in c.content.lower()]
        found.sort(key=lambda c: (c.source_section is None, c.source_section or ""))
        return [PhraseHit(chunk=c, rank=1.0, exact=False) for c in found[:max_results]]
