"""Shared fakes for the retrieval and rent engine tests.

No network, no database: every collaborator is replaced by an in-process fake
that implements the same protocol.
"""
import asyncio
import re
from datetime import date
from typing import Dict, List, Optional, Sequence

import pytest

from propdesk.comps import CompStore, _update_fields
from propdesk.config import settings
from propdesk.schemas import CompetingListing, CompsFilter, MarketBaseline, RentalComp, UpdateCompInput
from propdesk.search import FulltextHit, KnowledgeChunk, PhraseHit, VectorHit


def make_chunk(id: str, section: Optional[str] = None, content: str = "", similarity: Optional[float] = None,
               title: str = "ORS Chapter 90", source_type: str = "ors_90") -> KnowledgeChunk:
    return KnowledgeChunk(
        id=id,
        content=content or f"Text of chunk {id}",
        source_type=source_type,
        source_title=title,
        source_url="https://oregon.public.law/statutes/ors_chapter_90",
        source_section=section,
        similarity=similarity,
    )


# ── Knowledge search fakes ───────────────────────────────────────


class KeywordEmbedder:
    """Embeds text as counts over a fixed vocabulary, so cosine similarity is predictable."""

    def __init__(self, vocab: Sequence[str]):
        self.vocab = list(vocab)
        self.calls: List[str] = []

    async def embed(self, text: str) -> List[float]:
        self.calls.append(text)
        tokens = re.findall(r"[a-z]+", text.lower())
        return [float(tokens.count(w)) for w in self.vocab]


class FakeBackend:
    """KnowledgeSearchBackend returning canned hits and recording every call.

    Set `fail` to a set of method names that should raise, and `slow` to a set
    of method names that should never finish in time.
    """

    def __init__(self, vector=(), fulltext=(), phrase=(), substring=(), fail=(), slow=()):
        self.vector = list(vector)
        self.fulltext = list(fulltext)
        self.phrase = list(phrase)
        self.substring = list(substring)
        self.fail = set(fail)
        self.slow = set(slow)
        self.calls: List[tuple] = []

    async def _maybe_break(self, name: str):
        if name in self.fail:
            raise RuntimeError(f"{name} backend down")
        if name in self.slow:
            await asyncio.sleep(5)

    async def vector_search(self, query_text, threshold, max_results):
        self.calls.append(("vector", query_text, threshold, max_results))
        await self._maybe_break("vector")
        return [VectorHit(chunk=c, similarity=s) for c, s in self.vector][:max_results]

    async def fulltext_search(self, query, max_results):
        self.calls.append(("fulltext", query, max_results))
        await self._maybe_break("fulltext")
        return [FulltextHit(chunk=c, rank=0.5) for c in self.fulltext][:max_results]

    async def phrase_search(self, phrase, max_results):
        self.calls.append(("phrase", phrase, max_results))
        await self._maybe_break("phrase")
        return [PhraseHit(chunk=c, rank=1.0) for c in self.phrase][:max_results]

    async def substring_search(self, text, max_results):
        self.calls.append(("substring", text, max_results))
        await self._maybe_break("substring")
        return [PhraseHit(chunk=c, rank=1.0, exact=False) for c in self.substring][:max_results]

    def called(self, name: str) -> List[tuple]:
        return [c for c in self.calls if c[0] == name]


# ── Rent engine fakes ────────────────────────────────────────────


def make_comp(rent: float, town: str = "Bend", bedrooms: int = 3, bathrooms: Optional[float] = 2,
              sqft: Optional[int] = 1500, property_type: str = "SFR", amenities=(),
              comp_date: date = date(2026, 9, 1), id: Optional[int] = None) -> RentalComp:
    return RentalComp(
        id=id,
        town=town,
        address=f"{id or 0} Main St",
        bedrooms=bedrooms,
        bathrooms=bathrooms,
        sqft=sqft,
        property_type=property_type,
        amenities=list(amenities),
        monthly_rent=rent,
        rent_per_sqft=round(rent / sqft, 4) if sqft else None,
        data_source="appfolio",
        comp_date=comp_date,
    )


class FakeCompStore:
    """CompStore stand-in: filters by town and bedrooms only, in insertion order."""

    def __init__(self, comps: Sequence[RentalComp] = (), baselines: Sequence[MarketBaseline] = (),
                 fail: bool = False):
        self.comps = list(comps)
        self.baselines = list(baselines)
        self.fail = fail
        self.filters: List[CompsFilter] = []
        self.limits: List[int] = []

    def get_comps(self, filter: Optional[CompsFilter] = None, limit: int = 100, offset: int = 0):
        if self.fail:
            raise RuntimeError("comp store unavailable")
        f = filter or CompsFilter()
        self.filters.append(f)
        self.limits.append(limit)
        out = [
            c for c in self.comps
            if (not f.towns or c.town in f.towns) and (not f.bedrooms or c.bedrooms in f.bedrooms)
        ]
        return out[offset:offset + limit]

    def get_baselines(self, county: Optional[str] = None, year: Optional[int] = None):
        return list(self.baselines)

    def get_comp(self, comp_id: int):
        return next((c for c in self.comps if c.id == comp_id), None)

    def get_comps_stats(self, filter: Optional[CompsFilter] = None):
        from propdesk.rent_analysis import compute_stats

        return compute_stats(self.get_comps(filter, limit=settings.COMP_STATS_LIMIT))

    def get_comps_by_town(self, filter: Optional[CompsFilter] = None):
        return CompStore.get_comps_by_town(self, filter)

    def update_comp(self, comp_id: int, data: UpdateCompInput):
        for i, c in enumerate(self.comps):
            if c.id == comp_id:
                self.comps[i] = c.model_copy(update=_update_fields(data, c.monthly_rent, c.sqft))
                return self.comps[i]
        return None

    def delete_comp(self, comp_id: int) -> bool:
        before = len(self.comps)
        self.comps = [c for c in self.comps if c.id != comp_id]
        return len(self.comps) < before


class FakeListingsProvider:
    def __init__(self, listings: Sequence[CompetingListing] = (), fail: bool = False, delay: float = 0.0):
        self.listings = list(listings)
        self.fail = fail
        self.delay = delay
        self.calls: List[Dict] = []

    async def fetch_listings(self, town: str, bedrooms: int):
        self.calls.append({"town": town, "bedrooms": bedrooms})
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError("scraper blocked")
        return list(self.listings)


@pytest.fixture
def today() -> date:
    return date(2026, 10, 15)
