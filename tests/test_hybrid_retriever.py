"""Tests for HybridRetriever strategy dispatch and failure handling.

Tests:
- each intent issues the right backend calls with the right inputs
- phrase -> substring -> vector-only fallback chain
- lexical backend failures and timeouts degrade to vector results
- vector branch gets the expanded query; lexical branches never do
- retrieve() applies the quality floor and reports the fallback
- exact section and phrase matches survive the quality floor
"""

import pytest

from conftest import FakeBackend, make_chunk

from propdesk.retrieval import HybridRetriever


def _retriever(backend, **kw):
    kw.setdefault("candidate_floor", 0.30)
    kw.setdefault("candidate_count", 15)
    kw.setdefault("max_results", 15)
    kw.setdefault("timeout_seconds", 0.2)
    kw.setdefault("expand_queries", True)
    return HybridRetriever(backend, **kw)


V1 = make_chunk("v1", "90.300")
V2 = make_chunk("v2", "90.320")
P1 = make_chunk("p1", "90.300")
S1 = make_chunk("s1", "90.394")
F1 = make_chunk("f1", "90.425")


# ── Dispatch ─────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_phrase_lookup_fuses_phrase_and_vector():
    backend = FakeBackend(vector=[(V1, 0.62), (V2, 0.55)], phrase=[P1, V2])
    chunks = await _retriever(backend).search('what is "normal wear and tear"')
    assert backend.called("phrase")[0][1] == "normal wear and tear"
    assert backend.called("substring") == []
    # v2 found by both branches leads, then the exact phrase match
    assert [c.id for c in chunks] == ["v2", "p1", "v1"]
    assert chunks[0].similarity == 1.0
    assert chunks[1].similarity == 1.0
    assert chunks[2].similarity == 0.62


@pytest.mark.asyncio
async def test_phrase_lookup_falls_back_to_substring():
    backend = FakeBackend(vector=[(V1, 0.62)], substring=[S1])
    chunks = await _retriever(backend).search('where is "ten-day notice"')
    assert backend.called("substring")[0][1] == "ten-day notice"
    assert [c.id for c in chunks] == ["s1", "v1"]


@pytest.mark.asyncio
async def test_phrase_lookup_falls_back_to_vector_only():
    backend = FakeBackend(vector=[(V1, 0.62), (V2, 0.4)])
    chunks = await _retriever(backend).search('what is "normal wear and tear"')
    assert [c.id for c in chunks] == ["v1", "v2"]


@pytest.mark.asyncio
async def test_section_lookup_uses_substring_on_section_number():
    backend = FakeBackend(vector=[(V1, 0.7)], substring=[S1])
    chunks = await _retriever(backend).search("What does ORS 90.394 require?")
    assert backend.called("substring")[0][1] == "90.394"
    assert backend.called("phrase") == []
    assert backend.called("fulltext") == []
    assert [c.id for c in chunks] == ["s1", "v1"]


@pytest.mark.asyncio
async def test_section_lookup_without_matches_is_vector_only():
    backend = FakeBackend(vector=[(V1, 0.7)])
    chunks = await _retriever(backend).search("explain 90.999")
    assert [c.id for c in chunks] == ["v1"]


@pytest.mark.asyncio
async def test_keyword_fuses_fulltext_first():
    backend = FakeBackend(vector=[(V1, 0.7)], fulltext=[F1])
    chunks = await _retriever(backend).search("which section covers abandoned property")
    assert backend.called("fulltext")[0][1] == "which section covers abandoned property"
    assert {c.id for c in chunks} == {"v1", "f1"}


@pytest.mark.asyncio
async def test_semantic_runs_vector_and_fulltext():
    backend = FakeBackend(vector=[(V1, 0.7), (F1, 0.4)], fulltext=[F1])
    chunks = await _retriever(backend).search("Can a tenant withhold rent if the heat is out?")
    assert len(backend.called("vector")) == 1
    assert len(backend.called("fulltext")) == 1
    assert [c.id for c in chunks] == ["f1", "v1"]
    assert chunks[0].similarity == 0.4


@pytest.mark.asyncio
async def test_vector_branch_uses_configured_floor_and_count():
    backend = FakeBackend(vector=[(V1, 0.7)])
    await _retriever(backend, candidate_floor=0.25, candidate_count=7).search("heat is out")
    _, _, threshold, limit = backend.called("vector")[0]
    assert threshold == 0.25
    assert limit == 7


# ── Query expansion ──────────────────────────────────────────────


@pytest.mark.asyncio
async def test_only_vector_branch_sees_expanded_query():
    backend = FakeBackend(vector=[(V1, 0.7)])
    await _retriever(backend).search("how fast must we return a deposit")
    assert "security deposit" in backend.called("vector")[0][1]
    assert backend.called("fulltext")[0][1] == "how fast must we return a deposit"


@pytest.mark.asyncio
async def test_expansion_can_be_disabled():
    backend = FakeBackend(vector=[(V1, 0.7)])
    await _retriever(backend, expand_queries=False).search("how fast must we return a deposit")
    assert backend.called("vector")[0][1] == "how fast must we return a deposit"


# ── Failure handling ─────────────────────────────────────────────


@pytest.mark.asyncio
async def test_failing_fulltext_degrades_to_vector():
    backend = FakeBackend(vector=[(V1, 0.7), (V2, 0.6)], fulltext=[F1], fail={"fulltext"})
    chunks = await _retriever(backend).search("which section covers abandoned property")
    assert [c.id for c in chunks] == ["v1", "v2"]


@pytest.mark.asyncio
async def test_failing_phrase_backend_still_tries_substring():
    backend = FakeBackend(vector=[(V1, 0.7)], substring=[S1], fail={"phrase"})
    chunks = await _retriever(backend).search('"ten-day notice"')
    assert [c.id for c in chunks] == ["s1", "v1"]


@pytest.mark.asyncio
async def test_slow_branch_times_out_to_empty():
    backend = FakeBackend(vector=[(V1, 0.7)], substring=[S1], slow={"substring"})
    chunks = await _retriever(backend, timeout_seconds=0.05).search("explain 90.394")
    assert [c.id for c in chunks] == ["v1"]


@pytest.mark.asyncio
async def test_everything_failing_returns_empty():
    backend = FakeBackend(fail={"vector", "fulltext"})
    assert await _retriever(backend).search("anything at all") == []


# ── retrieve() ───────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_retrieve_applies_quality_floor():
    backend = FakeBackend(vector=[(V1, 0.8), (V2, 0.45)])
    result = await _retriever(backend).retrieve("heat is out", min_similarity=0.5)
    assert result.decision.intent == "semantic"
    assert [c.id for c in result.chunks] == ["v1"]
    assert [c.id for c in result.candidates] == ["v1", "v2"]
    assert result.fell_back is False


@pytest.mark.asyncio
async def test_retrieve_reports_fallback():
    backend = FakeBackend(vector=[(V1, 0.35), (V2, 0.31)])
    result = await _retriever(backend).retrieve("heat is out", min_similarity=0.5)
    assert [c.id for c in result.chunks] == ["v1", "v2"]
    assert result.fell_back is True


@pytest.mark.asyncio
async def test_retrieve_with_no_candidates():
    result = await _retriever(FakeBackend()).retrieve("heat is out")
    assert result.chunks == []
    assert result.fell_back is False


@pytest.mark.asyncio
async def test_requested_section_survives_quality_floor():
    wanted = make_chunk("sec300", "90.300", "90.300 Security deposits; prepaid rent.")
    nearby = make_chunk("sec320", "90.320", "90.320 Landlord to maintain premises in habitable condition.")
    backend = FakeBackend(vector=[(nearby, 0.61)], substring=[wanted])
    result = await _retriever(backend).retrieve("What does ORS 90.300 say?", min_similarity=0.5)
    assert result.decision.intent == "section_lookup"
    assert [c.id for c in result.chunks] == ["sec300", "sec320"]
    assert result.fell_back is False


@pytest.mark.asyncio
async def test_quoted_phrase_match_survives_quality_floor():
    exact = make_chunk("wear", "90.300", "deductions for damage beyond ordinary wear and tear")
    other = make_chunk("x", "90.100", "Definitions.")
    backend = FakeBackend(vector=[(other, 0.55)], phrase=[exact])
    result = await _retriever(backend).retrieve('what is "ordinary wear and tear"', min_similarity=0.5)
    assert result.decision.intent == "phrase_lookup"
    assert [c.id for c in result.chunks] == ["wear", "x"]


@pytest.mark.asyncio
async def test_fulltext_only_hits_still_need_a_vector_score():
    backend = FakeBackend(vector=[(V1, 0.8)], fulltext=[F1])
    result = await _retriever(backend).retrieve("heat is out", min_similarity=0.5)
    assert [c.id for c in result.chunks] == ["v1"]
