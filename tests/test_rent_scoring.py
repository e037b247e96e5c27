"""Tests for comp similarity scoring, ranking and summary stats.

Tests:
- compute_similarity_score() per-factor buckets and the 41-point maximum
- calendar-month recency buckets
- rank_comparables() stable ordering and truncation
- median() / percentile() / round_half_up()
- compute_stats()
"""

from datetime import date

import pytest

from conftest import make_comp

from propdesk.rent_analysis import (
    compute_similarity_score,
    compute_stats,
    median,
    percentile,
    rank_comparables,
    round_half_up,
)
from propdesk.schemas import SubjectProperty


def _subject(**kw):
    base = dict(
        address="123 NW Wall St",
        town="Bend",
        bedrooms=3,
        bathrooms=2,
        sqft=1500,
        property_type="SFR",
        amenities=["garage", "ac", "fireplace", "dishwasher"],
    )
    base.update(kw)
    return SubjectProperty(**base)


# ── Similarity score ─────────────────────────────────────────────


def test_identical_recent_comp_scores_maximum(today):
    comp = make_comp(2400, amenities=["garage", "ac", "fireplace", "dishwasher"], comp_date=date(2026, 9, 20))
    assert compute_similarity_score(_subject(), comp, today) == 41


def test_nothing_in_common_scores_zero(today):
    comp = make_comp(
        1200, town="Culver", bedrooms=1, bathrooms=1, sqft=600, property_type="Apartment",
        comp_date=date(2024, 1, 1),
    )
    assert compute_similarity_score(_subject(), comp, today) == 0


@pytest.mark.parametrize("bedrooms,points", [(3, 10), (2, 3), (4, 3), (5, 0)])
def test_bedroom_buckets(today, bedrooms, points):
    comp = make_comp(2000, town="Redmond", bedrooms=bedrooms, bathrooms=None, sqft=None,
                     property_type="Condo", comp_date=date(2020, 1, 1))
    assert compute_similarity_score(_subject(), comp, today) == points


@pytest.mark.parametrize("baths,points", [(2, 5), (2.5, 2), (1.5, 2), (1, 0), (None, 0)])
def test_bathroom_buckets(today, baths, points):
    comp = make_comp(2000, town="Redmond", bedrooms=6, bathrooms=baths, sqft=None,
                     property_type="Condo", comp_date=date(2020, 1, 1))
    assert compute_similarity_score(_subject(), comp, today) == points


@pytest.mark.parametrize("sqft,points", [(1500, 5), (1800, 5), (1801, 2), (2100, 2), (2101, 0), (None, 0)])
def test_sqft_buckets(today, sqft, points):
    comp = make_comp(2000, town="Redmond", bedrooms=6, bathrooms=None, sqft=sqft,
                     property_type="Condo", comp_date=date(2020, 1, 1))
    assert compute_similarity_score(_subject(), comp, today) == points


def test_subject_without_sqft_skips_factor(today):
    comp = make_comp(2000, town="Redmond", bedrooms=6, bathrooms=None, sqft=1500,
                     property_type="Condo", comp_date=date(2020, 1, 1))
    assert compute_similarity_score(_subject(sqft=None), comp, today) == 0


@pytest.mark.parametrize(
    "comp_date,points",
    [
        (date(2026, 10, 1), 3),
        (date(2026, 7, 31), 3),  # three calendar months back
        (date(2026, 6, 1), 1),
        (date(2026, 4, 1), 1),  # six calendar months back
        (date(2026, 3, 31), 0),
    ],
)
def test_recency_uses_calendar_months(today, comp_date, points):
    comp = make_comp(2000, town="Redmond", bedrooms=6, bathrooms=None, sqft=None,
                     property_type="Condo", comp_date=comp_date)
    assert compute_similarity_score(_subject(), comp, today) == points


@pytest.mark.parametrize(
    "amenities,points",
    [(["garage"], 1), (["garage", "ac"], 2), (["garage", "ac", "fireplace", "dishwasher"], 3), (["pool"], 0)],
)
def test_amenity_overlap_is_capped(today, amenities, points):
    comp = make_comp(2000, town="Redmond", bedrooms=6, bathrooms=None, sqft=None,
                     property_type="Condo", amenities=amenities, comp_date=date(2020, 1, 1))
    assert compute_similarity_score(_subject(), comp, today) == points


def test_subject_without_amenities_gets_no_overlap(today):
    comp = make_comp(2000, town="Redmond", bedrooms=6, bathrooms=None, sqft=None,
                     property_type="Condo", amenities=["garage"], comp_date=date(2020, 1, 1))
    assert compute_similarity_score(_subject(amenities=[]), comp, today) == 0


# ── Ranking ──────────────────────────────────────────────────────


def test_rank_is_descending_and_stable(today):
    comps = [
        make_comp(1000, id=1, bedrooms=2),
        make_comp(1100, id=2),
        make_comp(1200, id=3, bedrooms=2),
        make_comp(1300, id=4),
    ]
    ranked = rank_comparables(_subject(amenities=[]), comps, today=today)
    assert [c.id for c in ranked] == [2, 4, 1, 3]
    assert ranked[0].similarity_score == ranked[1].similarity_score
    assert ranked[0].similarity_score > ranked[2].similarity_score


def test_rank_truncates_and_annotates(today):
    comps = [make_comp(1000 + i, id=i) for i in range(1, 21)]
    ranked = rank_comparables(_subject(), comps, limit=15, today=today)
    assert len(ranked) == 15
    assert [c.id for c in ranked] == list(range(1, 16))
    assert all(c.similarity_score is not None for c in ranked)
    # originals are untouched
    assert comps[0].similarity_score is None


# ── Median / percentile / rounding ───────────────────────────────


def test_median_even_and_odd():
    assert median([100, 200, 300, 400]) == 250
    assert median([300, 100, 200]) == 200
    assert median([]) == 0


def test_percentile_interpolates():
    assert percentile([100, 200, 300, 400], 60) == pytest.approx(280)
    assert percentile([400, 100, 300, 200], 60) == pytest.approx(280)
    assert percentile([500], 60) == 500
    assert percentile([100, 200], 100) == 200
    assert percentile([100, 200], 0) == 100


def test_round_half_up():
    assert round_half_up(2.5) == 3
    assert round_half_up(3.5) == 4
    assert round_half_up(2104.49) == 2104
    assert round_half_up(-2.5) == -2


# ── Stats ────────────────────────────────────────────────────────


def test_compute_stats():
    comps = [make_comp(1000, sqft=1000), make_comp(2000, sqft=None), make_comp(4000, sqft=2000)]
    s = compute_stats(comps)
    assert s.count == 3
    assert s.avg_rent == 2333
    assert s.median_rent == 2000
    assert s.min_rent == 1000
    assert s.max_rent == 4000
    assert s.avg_sqft == 1500
    assert s.avg_rent_per_sqft == 1.5


def test_compute_stats_without_sqft():
    s = compute_stats([make_comp(1500, sqft=None)])
    assert s.avg_sqft is None
    assert s.avg_rent_per_sqft is None


def test_compute_stats_empty():
    s = compute_stats([])
    assert s.count == 0
    assert s.avg_rent == 0
