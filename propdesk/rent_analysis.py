"""Rent recommendation engine.

Computes a recommended rent range for a subject property from the comparable
comps in the comp store, HUD Fair Market Rent baselines, and optional
competing listings.

Pipeline:
1) Fetch a candidate pool (same town, bedrooms within one) and baselines concurrently.
2) Score each comp's similarity to the subject and keep the top COMPARABLE_COUNT.
3) Blend median and 60th percentile rent, then apply the sqft, property type,
   HUD floor and competing-listings steps, logging each as a methodology note.

Similarity scores only rank comps; they are never used as rent weights.
"""
import asyncio
import logging
import math
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import List, Optional, Sequence

from propdesk.comps import CompStore, ListingsProvider, fetch_competing_listings
from propdesk.config import settings
from propdesk.obs import span
from propdesk.schemas import (
    CompetingListing,
    CompsFilter,
    CompsStats,
    MarketBaseline,
    RentalComp,
    RentAnalysis,
    SubjectProperty,
)

logger = logging.getLogger(__name__)

PROPERTY_TYPE_MULTIPLIERS = {
    "SFR": 1.05,
    "Townhouse": 1.02,
    "Duplex": 1.00,
    "Condo": 0.98,
    "Apartment": 0.95,
    "Manufactured": 0.90,
    "Other": 1.00,
}

BASE_MEDIAN_WEIGHT = 0.6
BASE_PERCENTILE = 60
SQFT_MIN_DIFF = 100
SQFT_ADJUSTMENT_WEIGHT = 0.5
TYPE_ADJUSTMENT_THRESHOLD = 0.02
LISTINGS_WEIGHT = 0.2
RANGE_SPREAD = 0.05

NO_COMPS_NOTE = "No comparable properties found. Unable to compute recommendation."


# ============================================
# Helpers
# ============================================

def round_half_up(value: float) -> int:
    """Round to the nearest whole dollar, halves going up."""
    return int(math.floor(value + 0.5))


def median(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    s = sorted(values)
    mid = len(s) // 2
    return float(s[mid]) if len(s) % 2 else (s[mid - 1] + s[mid]) / 2


def percentile(values: Sequence[float], p: float) -> float:
    """Linear-interpolation percentile, p in [0, 100]."""
    if not values:
        return 0.0
    s = sorted(values)
    idx = (p / 100) * (len(s) - 1)
    lower = math.floor(idx)
    frac = idx - lower
    if lower + 1 < len(s):
        return s[lower] + frac * (s[lower + 1] - s[lower])
    return float(s[lower])


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values)


def _months_between(earlier: date, later: date) -> int:
    return (later.year - earlier.year) * 12 + (later.month - earlier.month)


def _signed_dollars(amount: float) -> str:
    return f"{'+' if amount > 0 else ''}${round_half_up(amount)}"


# ============================================
# Similarity scoring
# ============================================

def compute_similarity_score(subject: SubjectProperty, comp: RentalComp, today: Optional[date] = None) -> int:
    """Score how comparable a comp is to the subject; higher is more similar.

    Each factor contributes at most one bucket. Factors whose inputs are missing
    on either side contribute nothing.
    """
    today = today or date.today()
    score = 0

    if comp.town == subject.town:
        score += 10

    if comp.bedrooms == subject.bedrooms:
        score += 10
    elif abs(comp.bedrooms - subject.bedrooms) == 1:
        score += 3

    if subject.bathrooms and comp.bathrooms:
        if comp.bathrooms == subject.bathrooms:
            score += 5
        elif abs(comp.bathrooms - subject.bathrooms) <= 0.5:
            score += 2

    if comp.property_type == subject.property_type:
        score += 5

    if subject.sqft and comp.sqft:
        diff = abs(comp.sqft - subject.sqft) / subject.sqft
        if diff <= 0.2:
            score += 5
        elif diff <= 0.4:
            score += 2

    if comp.comp_date:
        months_ago = _months_between(comp.comp_date, today)
        if months_ago <= 3:
            score += 3
        elif months_ago <= 6:
            score += 1

    if subject.amenities and comp.amenities:
        overlap = len(set(subject.amenities) & set(comp.amenities))
        score += min(overlap, 3)

    return score


def rank_comparables(
    subject: SubjectProperty,
    comps: Sequence[RentalComp],
    limit: Optional[int] = None,
    today: Optional[date] = None,
) -> List[RentalComp]:
    """Return the top comps by similarity score, annotated with that score.

    The sort is stable, so equal scores keep the store's retrieval order.
    """
    limit = settings.COMPARABLE_COUNT if limit is None else limit
    scored = [
        comp.model_copy(update={"similarity_score": compute_similarity_score(subject, comp, today)})
        for comp in comps
    ]
    ranked = sorted(scored, key=lambda c: -c.similarity_score)
    return ranked[:limit]


# ============================================
# Stats
# ============================================

def compute_stats(comps: Sequence[RentalComp]) -> CompsStats:
    rents = [float(c.monthly_rent) for c in comps]
    sqfts = [c.sqft for c in comps if c.sqft and c.sqft > 0]
    rps = [float(c.rent_per_sqft) for c in comps if c.rent_per_sqft and c.rent_per_sqft > 0]
    if not rents:
        return CompsStats(count=0, avg_rent=0, median_rent=0, min_rent=0, max_rent=0)
    return CompsStats(
        count=len(comps),
        avg_rent=round_half_up(_mean(rents)),
        median_rent=round_half_up(median(rents)),
        min_rent=min(rents),
        max_rent=max(rents),
        avg_sqft=round_half_up(_mean(sqfts)) if sqfts else None,
        avg_rent_per_sqft=round_half_up(_mean(rps) * 100) / 100 if rps else None,
    )


# ============================================
# Recommended rent
# ============================================

@dataclass
class RentRecommendation:
    low: int
    mid: int
    high: int
    notes: List[str] = field(default_factory=list)


def compute_recommended_rent(
    subject: SubjectProperty,
    comparables: Sequence[RentalComp],
    baselines: Sequence[MarketBaseline],
    competing_listings: Sequence[CompetingListing],
) -> RentRecommendation:
    """Compute the low/mid/high recommendation and its methodology notes.

    Steps run in a fixed order and each one that applies appends exactly one note:
    base blend, sqft adjustment, property type adjustment, HUD FMR check,
    competing listings blend, range.

    Args:
        subject: Property being priced.
        comparables: Ranked comparable comps (already trimmed to the top set).
        baselines: Market baselines; only the subject's town/bedrooms row is used.
        competing_listings: External listings; blended in at 20% when present.

    Returns:
        RentRecommendation: Whole-dollar range and notes. An empty comparable set
        yields a zero range with an explanatory note.
    """
    notes: List[str] = []
    rents = [float(c.monthly_rent) for c in comparables]
    if not rents:
        return RentRecommendation(low=0, mid=0, high=0, notes=[NO_COMPS_NOTE])

    # Base: 60% median + 40% 60th percentile
    med = median(rents)
    p60 = percentile(rents, BASE_PERCENTILE)
    recommended = med * BASE_MEDIAN_WEIGHT + p60 * (1 - BASE_MEDIAN_WEIGHT)
    notes.append(
        f"Base: 60% of median (${round_half_up(med)}) + 40% of 60th percentile "
        f"(${round_half_up(p60)}) = ${round_half_up(recommended)}"
    )

    # Sqft
    if subject.sqft:
        comp_sqfts = [c.sqft for c in comparables if c.sqft and c.sqft > 0]
        rent_per_sqft = [float(c.rent_per_sqft) for c in comparables if c.rent_per_sqft and c.rent_per_sqft > 0]
        if comp_sqfts and rent_per_sqft:
            avg_comp_sqft = _mean(comp_sqfts)
            sqft_diff = subject.sqft - avg_comp_sqft
            if abs(sqft_diff) > SQFT_MIN_DIFF:
                adjustment = sqft_diff * _mean(rent_per_sqft) * SQFT_ADJUSTMENT_WEIGHT
                recommended += adjustment
                notes.append(
                    f"Sqft adjustment: subject {subject.sqft} sqft vs avg {round_half_up(avg_comp_sqft)} sqft "
                    f"→ {_signed_dollars(adjustment)}"
                )

    # Property type
    subject_mult = PROPERTY_TYPE_MULTIPLIERS.get(subject.property_type, 1.0)
    avg_comp_mult = _mean([PROPERTY_TYPE_MULTIPLIERS.get(c.property_type, 1.0) for c in comparables])
    if abs(subject_mult - avg_comp_mult) > TYPE_ADJUSTMENT_THRESHOLD:
        type_adj = recommended * (subject_mult - avg_comp_mult)
        recommended += type_adj
        notes.append(f"Property type adjustment ({subject.property_type}): {_signed_dollars(type_adj)}")

    # HUD FMR check; informational, never raises the recommendation
    baseline = next(
        (b for b in baselines if b.area_name == subject.town and b.bedrooms == subject.bedrooms and b.fmr_rent),
        None,
    )
    if baseline is not None:
        fmr = float(baseline.fmr_rent)
        if recommended < fmr:
            notes.append(
                f"Note: Recommendation (${round_half_up(recommended)}) is below HUD FMR "
                f"(${round_half_up(fmr)}). Market may support higher rent."
            )
        else:
            notes.append(f"HUD FMR for {subject.town} {subject.bedrooms}BR: ${round_half_up(fmr)}/mo")

    # Competing listings
    if competing_listings:
        listing_median = median([float(l.price) for l in competing_listings])
        blended = recommended * (1 - LISTINGS_WEIGHT) + listing_median * LISTINGS_WEIGHT
        notes.append(
            f"Competing listings median (${round_half_up(listing_median)}) blended at 20% weight "
            f"→ ${round_half_up(blended)}"
        )
        recommended = blended

    low = round_half_up(recommended * (1 - RANGE_SPREAD))
    mid = round_half_up(recommended)
    high = round_half_up(recommended * (1 + RANGE_SPREAD))
    notes.append(f"Recommended range: ${low:,} – ${high:,}/mo")

    return RentRecommendation(low=low, mid=mid, high=high, notes=notes)


# ============================================
# Public: generate a rent analysis
# ============================================

def comparable_filter(subject: SubjectProperty) -> CompsFilter:
    """Same town, bedroom count within one of the subject (never below zero)."""
    bedrooms = sorted({max(0, subject.bedrooms - 1), subject.bedrooms, subject.bedrooms + 1})
    return CompsFilter(towns=[subject.town], bedrooms=bedrooms)


async def generate_rent_analysis(
    subject: SubjectProperty,
    store: CompStore,
    competing_listings: Optional[Sequence[CompetingListing]] = None,
    listings_provider: Optional[ListingsProvider] = None,
    generated_by: Optional[str] = None,
    today: Optional[date] = None,
) -> RentAnalysis:
    """Run the full analysis for one subject property.

    The comp pool, baselines and (when no listings were supplied) the listings
    provider are queried concurrently. Store errors propagate; a failing
    listings provider only means no competing listings.
    """
    with span("rent.analysis", {"town": subject.town, "bedrooms": subject.bedrooms}):
        listings_task = (
            fetch_competing_listings(listings_provider, subject.town, subject.bedrooms)
            if competing_listings is None and listings_provider is not None
            else None
        )
        tasks = [
            asyncio.to_thread(store.get_comps, comparable_filter(subject), settings.COMP_POOL_LIMIT),
            asyncio.to_thread(store.get_baselines),
        ]
        if listings_task is not None:
            tasks.append(listings_task)
        results = await asyncio.gather(*tasks)
        pool, baselines = results[0], results[1]
        listings = list(results[2]) if listings_task is not None else list(competing_listings or [])

        comparables = rank_comparables(subject, pool, today=today)
        stats = compute_stats(comparables)
        rec = compute_recommended_rent(subject, comparables, baselines, listings)

    logger.info(
        "Rent analysis for %s, %s: pool=%d comparables=%d range=$%d-$%d",
        subject.address, subject.town, len(pool), len(comparables), rec.low, rec.high,
    )
    return RentAnalysis(
        subject=subject,
        stats=stats,
        comparable_comps=comparables,
        competing_listings=listings,
        baselines=list(baselines),
        recommended_rent_low=rec.low,
        recommended_rent_mid=rec.mid,
        recommended_rent_high=rec.high,
        methodology_notes=rec.notes,
        generated_at=datetime.now(timezone.utc),
        generated_by=generated_by,
    )
