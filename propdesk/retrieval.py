"""Hybrid knowledge retrieval: intent-routed search, fusion and quality filtering.

This module implements:
- expand_query: colloquial -> statutory term expansion for the vector branch
- fuse_results: merge two ranked chunk lists, boosting chunks found by both
- apply_quality_filter: similarity floor with a top-N fallback
- HybridRetriever: runs the search branches chosen by propdesk.router concurrently,
  degrading to vector-only whenever a lexical backend fails or times out

Similarity thresholds come from propdesk.config.settings. The vector backend is
queried with the loose CANDIDATE_FLOOR; QUALITY_FLOOR is applied afterwards.
"""
import asyncio
import logging
from dataclasses import dataclass, field, replace
from typing import Awaitable, Dict, List, Optional, Sequence

from propdesk.config import settings
from propdesk.obs import span
from propdesk.router import RouteDecision, classify_query
from propdesk.search import KnowledgeChunk, KnowledgeSearchBackend, to_chunk

logger = logging.getLogger(__name__)

# Ordered: expansions are appended in this order
QUERY_EXPANSIONS: Dict[str, List[str]] = {
    # Animals
    "emotional support animal": ["assistance animal", "service animal", "pet", "animal accommodation"],
    "esa": ["assistance animal", "service animal", "emotional support animal"],
    "support animal": ["assistance animal", "service animal", "pet"],
    "service dog": ["service animal", "assistance animal"],
    "therapy animal": ["assistance animal", "service animal"],
    # Deposits
    "deposit": ["security deposit", "prepaid rent", "last month rent"],
    "move out": ["termination", "vacate", "security deposit", "accounting"],
    "move-out": ["termination", "vacate", "security deposit", "accounting"],
    # Evictions
    "eviction": ["termination", "for cause", "notice", "unlawful detainer"],
    "evict": ["terminate", "termination notice", "for cause"],
    "kick out": ["terminate", "termination", "eviction"],
    # Rent
    "late fee": ["late charge", "late rent", "rent payment"],
    "rent increase": ["rent raise", "increased rent"],
    "raise rent": ["rent increase", "increased rent"],
    # Repairs
    "repair": ["maintenance", "habitability", "essential services"],
    "fix": ["repair", "maintenance", "habitability"],
    "broken": ["repair", "maintenance", "defective"],
    # Leases
    "lease": ["rental agreement", "tenancy"],
    "month to month": ["periodic tenancy", "month-to-month"],
    "break lease": ["early termination", "terminate tenancy"],
}


def expand_query(query: str) -> str:
    """Append related statutory terms for colloquial phrases found in the query.

    Args:
        query: Raw question text.

    Returns:
        str: The query followed by de-duplicated expansion terms, or the query
        unchanged when no mapped phrase occurs in it.
    """
    lower = query.lower()
    expansions: List[str] = []
    for term, related in QUERY_EXPANSIONS.items():
        if term in lower:
            expansions.extend(related)
    if not expansions:
        return query
    unique = list(dict.fromkeys(expansions))
    return f"{query} {' '.join(unique)}"


@dataclass(frozen=True)
class FusedChunk:
    """A chunk plus how many search branches found it (1 or 2). Only lives during fusion."""
    chunk: KnowledgeChunk
    boost: int = 1


def _similarity_key(chunk: KnowledgeChunk) -> float:
    return chunk.similarity if chunk.similarity is not None else float("-inf")


def _max_similarity(a: Optional[float], b: Optional[float]) -> Optional[float]:
    if a is None:
        return b
    if b is None:
        return a
    return max(a, b)


def fuse_ranked(
    primary: Sequence[KnowledgeChunk],
    secondary: Sequence[KnowledgeChunk],
    max_results: Optional[int] = None,
) -> List[FusedChunk]:
    """Merge two ranked lists into one, deduplicated by chunk id.

    Chunks present in both lists get boost 2 and keep the higher similarity of the
    two. The result is ordered by boost, then similarity (both descending); chunks
    without a similarity sort last within their boost tier, and ties keep first-seen
    order (primary list first).

    Args:
        primary: First ranked list; wins ties.
        secondary: Second ranked list.
        max_results: Truncation length (defaults to settings.MAX_RESULTS).

    Returns:
        List[FusedChunk]: New fused list; the inputs are not modified.
    """
    limit = settings.MAX_RESULTS if max_results is None else max_results
    merged: Dict[str, FusedChunk] = {}
    for c in primary:
        if c.id not in merged:
            merged[c.id] = FusedChunk(chunk=c)
    for c in secondary:
        cur = merged.get(c.id)
        if cur is None:
            merged[c.id] = FusedChunk(chunk=c)
        else:
            sim = _max_similarity(cur.chunk.similarity, c.similarity)
            merged[c.id] = FusedChunk(chunk=replace(cur.chunk, similarity=sim), boost=2)

    ranked = sorted(merged.values(), key=lambda f: (-f.boost, -_similarity_key(f.chunk)))
    return ranked[:limit]


def fuse_results(
    primary: Sequence[KnowledgeChunk],
    secondary: Sequence[KnowledgeChunk],
    max_results: Optional[int] = None,
) -> List[KnowledgeChunk]:
    """fuse_ranked() without the boost annotations."""
    return [f.chunk for f in fuse_ranked(primary, secondary, max_results)]


@dataclass
class SimilarityStats:
    count: int
    min: Optional[float] = None
    avg: Optional[float] = None
    max: Optional[float] = None


def similarity_stats(chunks: Sequence[KnowledgeChunk]) -> SimilarityStats:
    sims = [c.similarity for c in chunks if c.similarity is not None]
    if not sims:
        return SimilarityStats(count=len(chunks))
    return SimilarityStats(count=len(chunks), min=min(sims), avg=sum(sims) / len(sims), max=max(sims))


def apply_quality_filter(
    chunks: Sequence[KnowledgeChunk],
    min_similarity: Optional[float] = None,
    fallback_count: Optional[int] = None,
) -> List[KnowledgeChunk]:
    """Keep chunks at or above the quality floor, falling back to the top N.

    When every candidate is below the floor (or has no similarity), the first
    fallback_count candidates are returned in their original order: a
    low-confidence answer with sources beats no answer.

    Args:
        chunks: Ranked candidates.
        min_similarity: Floor (defaults to settings.QUALITY_FLOOR).
        fallback_count: Fallback size (defaults to settings.QUALITY_FALLBACK_COUNT).

    Returns:
        List[KnowledgeChunk]: Filtered candidates.
    """
    floor = settings.QUALITY_FLOOR if min_similarity is None else min_similarity
    n = settings.QUALITY_FALLBACK_COUNT if fallback_count is None else fallback_count

    stats = similarity_stats(chunks)
    if stats.max is not None:
        logger.info(
            "Similarity over %d candidates: min=%.2f%% avg=%.2f%% max=%.2f%%",
            stats.count, stats.min * 100, stats.avg * 100, stats.max * 100,
        )

    kept = [c for c in chunks if c.similarity is not None and c.similarity >= floor]
    if kept:
        return kept
    if chunks:
        logger.info("All %d candidates below quality floor %.2f; using top %d", len(chunks), floor, n)
    return list(chunks[:n])


@dataclass
class RetrievalResult:
    """Output of HybridRetriever.retrieve.

    Attributes:
        decision: Intent routing decision for the question.
        chunks: Final ranked chunks after the quality filter.
        candidates: Ranked chunks before the quality filter.
        fell_back: True when nothing passed the quality floor.
    """
    decision: RouteDecision
    chunks: List[KnowledgeChunk] = field(default_factory=list)
    candidates: List[KnowledgeChunk] = field(default_factory=list)
    fell_back: bool = False


class HybridRetriever:
    """Intent-routed hybrid search over a KnowledgeSearchBackend.

    The backend (and the embedder behind its vector search) is injected; the
    retriever holds no per-request state and is safe to share across requests.
    """

    def __init__(
        self,
        backend: KnowledgeSearchBackend,
        candidate_floor: Optional[float] = None,
        candidate_count: Optional[int] = None,
        max_results: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
        expand_queries: Optional[bool] = None,
    ):
        self.backend = backend
        self.candidate_floor = settings.CANDIDATE_FLOOR if candidate_floor is None else candidate_floor
        self.candidate_count = settings.CANDIDATE_COUNT if candidate_count is None else candidate_count
        self.max_results = settings.MAX_RESULTS if max_results is None else max_results
        self.timeout_seconds = settings.SEARCH_TIMEOUT_SECONDS if timeout_seconds is None else timeout_seconds
        self.expand_queries = settings.QUERY_EXPANSION_ENABLED if expand_queries is None else expand_queries

    async def _guarded(self, label: str, coro: Awaitable) -> List[KnowledgeChunk]:
        """Await one search branch; a failure or timeout becomes an empty result."""
        try:
            hits = await asyncio.wait_for(coro, timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning("%s search timed out after %.1fs", label, self.timeout_seconds)
            return []
        except Exception as e:
            logger.warning("%s search failed: %s", label, e)
            return []
        return [to_chunk(h) for h in hits]

    def _vector(self, query: str) -> Awaitable[List[KnowledgeChunk]]:
        text = expand_query(query) if self.expand_queries else query
        if text != query:
            logger.info('Query expanded: "%s" -> "%s"', query, text)
        return self._guarded(
            "vector", self.backend.vector_search(text, self.candidate_floor, self.candidate_count)
        )

    def _vector_only(self, chunks: List[KnowledgeChunk]) -> List[KnowledgeChunk]:
        return chunks[: self.max_results]

    async def search(self, query: str, decision: Optional[RouteDecision] = None) -> List[KnowledgeChunk]:
        """Run the search strategy for the query's intent and return fused candidates.

        Never raises for backend problems: any unexpected error while dispatching
        the strategy falls back to a plain vector search.
        """
        decision = decision or classify_query(query)
        logger.info("Knowledge search intent=%s target=%r (%s)", decision.intent, decision.target, decision.reason)
        try:
            with span("knowledge.search", {"intent": decision.intent}):
                return await self._dispatch(query, decision)
        except Exception:
            logger.exception("Strategy %s failed; falling back to vector-only search", decision.intent)
            return self._vector_only(await self._vector(query))

    async def _dispatch(self, query: str, decision: RouteDecision) -> List[KnowledgeChunk]:
        n = self.max_results
        if decision.intent == "phrase_lookup":
            phrase = decision.target or query
            phrase_hits, vector_hits = await asyncio.gather(
                self._guarded("phrase", self.backend.phrase_search(phrase, n)),
                self._vector(query),
            )
            if phrase_hits:
                return fuse_results(phrase_hits, vector_hits, n)
            substring_hits = await self._guarded("substring", self.backend.substring_search(phrase, n))
            if substring_hits:
                return fuse_results(substring_hits, vector_hits, n)
            return self._vector_only(vector_hits)

        if decision.intent == "section_lookup":
            section = decision.target or query
            substring_hits, vector_hits = await asyncio.gather(
                self._guarded("substring", self.backend.substring_search(section, n)),
                self._vector(query),
            )
            if substring_hits:
                return fuse_results(substring_hits, vector_hits, n)
            return self._vector_only(vector_hits)

        if decision.intent == "keyword":
            fulltext_hits, vector_hits = await asyncio.gather(
                self._guarded("fulltext", self.backend.fulltext_search(query, n)),
                self._vector(query),
            )
            return fuse_results(fulltext_hits, vector_hits, n)

        vector_hits, fulltext_hits = await asyncio.gather(
            self._vector(query),
            self._guarded("fulltext", self.backend.fulltext_search(query, n)),
        )
        return fuse_results(vector_hits, fulltext_hits, n)

    async def retrieve(self, query: str, min_similarity: Optional[float] = None) -> RetrievalResult:
        """Search and apply the quality filter.

        Args:
            query: Staff question.
            min_similarity: Optional override of settings.QUALITY_FLOOR.

        Returns:
            RetrievalResult: Routing decision, candidates and the filtered chunks.
        """
        decision = classify_query(query)
        candidates = await self.search(query, decision)
        floor = settings.QUALITY_FLOOR if min_similarity is None else min_similarity
        chunks = apply_quality_filter(candidates, floor)
        fell_back = bool(candidates) and not any(
            c.similarity is not None and c.similarity >= floor for c in candidates
        )
        logger.info(
            "Retrieved %d chunks (candidates=%d, fallback=%s): sections=%s",
            len(chunks), len(candidates), fell_back,
            ", ".join(c.source_section or "none" for c in chunks),
        )
        return RetrievalResult(decision=decision, chunks=chunks, candidates=candidates, fell_back=fell_back)
