"""Tests for result fusion, the quality filter and query expansion.

Tests:
- fuse_ranked() dedup, boost and ordering
- fuse_results() leaves its inputs untouched
- apply_quality_filter() floor and top-N fallback
- expand_query() map lookups
"""

from conftest import make_chunk

from propdesk.retrieval import apply_quality_filter, expand_query, fuse_ranked, fuse_results
from propdesk.search import FulltextHit, PhraseHit, to_chunk


# ── Fusion ───────────────────────────────────────────────────────


def test_chunk_in_both_lists_is_boosted_first():
    a = [make_chunk("1", similarity=0.9), make_chunk("2", similarity=0.8)]
    b = [make_chunk("2", similarity=0.6), make_chunk("3", similarity=0.95)]
    fused = fuse_ranked(a, b, max_results=15)
    assert [f.chunk.id for f in fused] == ["2", "3", "1"]
    assert [f.boost for f in fused] == [2, 1, 1]


def test_boosted_chunk_keeps_higher_similarity():
    a = [make_chunk("x", similarity=None)]
    b = [make_chunk("x", similarity=0.72)]
    fused = fuse_ranked(a, b)
    assert len(fused) == 1
    assert fused[0].boost == 2
    assert fused[0].chunk.similarity == 0.72


def test_unscored_hits_sort_last_in_tier():
    a = [make_chunk("p1"), make_chunk("p2")]
    b = [make_chunk("v1", similarity=0.41)]
    assert [c.id for c in fuse_results(a, b)] == ["v1", "p1", "p2"]


def test_ties_keep_first_seen_order():
    a = [make_chunk("a", similarity=0.5), make_chunk("b", similarity=0.5)]
    b = [make_chunk("c", similarity=0.5)]
    assert [c.id for c in fuse_results(a, b)] == ["a", "b", "c"]


def test_duplicate_ids_within_one_list_collapse():
    a = [make_chunk("a", similarity=0.5), make_chunk("a", similarity=0.9)]
    fused = fuse_ranked(a, [])
    assert len(fused) == 1
    assert fused[0].boost == 1
    assert fused[0].chunk.similarity == 0.5


def test_truncates_to_max_results():
    a = [make_chunk(str(i), similarity=1 - i / 100) for i in range(20)]
    assert len(fuse_results(a, [], max_results=15)) == 15


def test_inputs_are_not_mutated():
    a = [make_chunk("1", similarity=0.3)]
    b = [make_chunk("1", similarity=0.9)]
    fuse_results(a, b)
    assert a[0].similarity == 0.3
    assert b[0].similarity == 0.9


def test_empty_inputs():
    assert fuse_results([], []) == []


# ── Quality filter ───────────────────────────────────────────────


def test_keeps_chunks_at_or_above_floor():
    chunks = [make_chunk("a", similarity=0.8), make_chunk("b", similarity=0.5), make_chunk("c", similarity=0.49)]
    kept = apply_quality_filter(chunks, min_similarity=0.5, fallback_count=5)
    assert [c.id for c in kept] == ["a", "b"]


def test_falls_back_to_top_n_when_nothing_passes():
    chunks = [make_chunk(str(i), similarity=0.4 - i / 100) for i in range(8)]
    kept = apply_quality_filter(chunks, min_similarity=0.5, fallback_count=5)
    assert [c.id for c in kept] == ["0", "1", "2", "3", "4"]


def test_unscored_only_chunks_fall_back():
    chunks = [make_chunk("p1"), make_chunk("p2")]
    assert [c.id for c in apply_quality_filter(chunks, min_similarity=0.5)] == ["p1", "p2"]


def test_exact_section_hit_kept_alongside_scored_chunks():
    section = to_chunk(PhraseHit(chunk=make_chunk("s", section="90.300"), rank=1.0, exact=False))
    chunks = [section, make_chunk("v", similarity=0.7)]
    assert [c.id for c in apply_quality_filter(chunks, min_similarity=0.5)] == ["s", "v"]


def test_fulltext_only_chunks_dropped_when_scored_chunks_pass():
    fulltext = to_chunk(FulltextHit(chunk=make_chunk("f"), rank=0.3))
    chunks = [make_chunk("v", similarity=0.7), fulltext]
    assert [c.id for c in apply_quality_filter(chunks, min_similarity=0.5)] == ["v"]


def test_empty_candidates():
    assert apply_quality_filter([], min_similarity=0.5) == []


# ── Query expansion ──────────────────────────────────────────────


def test_expansion_appends_related_terms():
    out = expand_query("When do I return the deposit?")
    assert out == "When do I return the deposit? security deposit prepaid rent last month rent"


def test_expansion_dedupes_across_keys():
    out = expand_query("ESA or emotional support animal request")
    assert out.count("assistance animal") == 1
    assert out.count("service animal") == 1
    assert out.startswith("ESA or emotional support animal request ")


def test_no_match_returns_query_unchanged():
    assert expand_query("What is a holdover tenant?") == "What is a holdover tenant?"
