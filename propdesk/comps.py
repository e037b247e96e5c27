"""Comp store and competing-listings collaborator for the rent engine.

Provides:
- CompStore: SQLAlchemy-backed queries and writes over rental_comps and
  market_baselines. Methods are synchronous; async callers run them with
  asyncio.to_thread.
- ListingsProvider / fetch_competing_listings: optional source of active
  listings, degraded to an empty list on timeout or failure.
"""
import asyncio
import logging
from datetime import date
from typing import Callable, ContextManager, Dict, List, Optional, Protocol, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.orm import Session

from propdesk import models
from propdesk.config import settings
from propdesk.db import session_scope
from propdesk.schemas import (
    CompetingListing,
    CompsFilter,
    CompsStats,
    CreateCompInput,
    MarketBaseline,
    RentalComp,
    TownStats,
    UpdateCompInput,
    UpsertBaselineInput,
)

logger = logging.getLogger(__name__)


def derive_rent_per_sqft(monthly_rent: float, sqft: Optional[int]) -> Optional[float]:
    if not sqft:
        return None
    return round(monthly_rent / sqft, 4)


def _comp_row(data: CreateCompInput) -> Dict:
    row = data.model_dump()
    if row.get("bathrooms") is None:
        row["bathrooms"] = 1
    if row.get("comp_date") is None:
        row["comp_date"] = date.today()
    if row.get("rent_per_sqft") is None:
        row["rent_per_sqft"] = derive_rent_per_sqft(data.monthly_rent, data.sqft)
    return row


def _update_fields(data: UpdateCompInput, monthly_rent: float, sqft: Optional[int]) -> Dict:
    """Fields to write for a partial update against a comp's current rent and sqft.

    rent_per_sqft follows a changed rent or sqft unless the caller set it.
    """
    fields = data.model_dump(exclude_unset=True)
    if "rent_per_sqft" not in fields and ("monthly_rent" in fields or "sqft" in fields):
        fields["rent_per_sqft"] = derive_rent_per_sqft(
            fields.get("monthly_rent", monthly_rent), fields.get("sqft", sqft)
        )
    return fields


def _filter_clauses(f: CompsFilter) -> List:
    c = models.RentalComp
    clauses = []
    if f.towns:
        clauses.append(c.town.in_(f.towns))
    if f.bedrooms:
        clauses.append(c.bedrooms.in_(f.bedrooms))
    if f.property_types:
        clauses.append(c.property_type.in_(f.property_types))
    if f.data_sources:
        clauses.append(c.data_source.in_(f.data_sources))
    if f.amenities:
        clauses.append(c.amenities.contains(f.amenities))
    if f.date_from is not None:
        clauses.append(c.comp_date >= f.date_from)
    if f.date_to is not None:
        clauses.append(c.comp_date <= f.date_to)
    if f.rent_min is not None:
        clauses.append(c.monthly_rent >= f.rent_min)
    if f.rent_max is not None:
        clauses.append(c.monthly_rent <= f.rent_max)
    if f.sqft_min is not None:
        clauses.append(c.sqft >= f.sqft_min)
    if f.sqft_max is not None:
        clauses.append(c.sqft <= f.sqft_max)
    return clauses


class CompStore:
    """Rental comps and market baselines in Postgres.

    Each call runs in its own transactional session from session_scope, so a
    bulk sync's delete and insert commit or roll back together.
    """

    def __init__(self, scope: Callable[[], ContextManager[Session]] = session_scope):
        self.scope = scope

    # --- comps -------------------------------------------------------------

    def get_comps(self, filter: Optional[CompsFilter] = None, limit: int = 100, offset: int = 0) -> List[RentalComp]:
        """Comps matching the filter, newest comp_date first."""
        stmt = (
            select(models.RentalComp)
            .where(*_filter_clauses(filter or CompsFilter()))
            .order_by(models.RentalComp.comp_date.desc())
            .offset(offset)
            .limit(limit)
        )
        with self.scope() as db:
            return [RentalComp.model_validate(r) for r in db.scalars(stmt).all()]

    def get_comp(self, comp_id: int) -> Optional[RentalComp]:
        with self.scope() as db:
            row = db.get(models.RentalComp, comp_id)
            return RentalComp.model_validate(row) if row is not None else None

    def create_comp(self, data: CreateCompInput) -> RentalComp:
        with self.scope() as db:
            row = models.RentalComp(**_comp_row(data))
            db.add(row)
            db.flush()
            db.refresh(row)
            return RentalComp.model_validate(row)

    def update_comp(self, comp_id: int, data: UpdateCompInput) -> Optional[RentalComp]:
        """Apply the set fields of `data`; None if the comp does not exist."""
        with self.scope() as db:
            row = db.get(models.RentalComp, comp_id)
            if row is None:
                return None
            for key, value in _update_fields(data, row.monthly_rent, row.sqft).items():
                setattr(row, key, value)
            db.flush()
            db.refresh(row)
            return RentalComp.model_validate(row)

    def delete_comp(self, comp_id: int) -> bool:
        with self.scope() as db:
            row = db.get(models.RentalComp, comp_id)
            if row is None:
                return False
            db.delete(row)
        logger.info("Deleted comp %d", comp_id)
        return True

    def bulk_upsert_comps(self, comps: Sequence[CreateCompInput]) -> int:
        """Replace synced comps by external_id and append the rest.

        Returns:
            int: Number of rows inserted.
        """
        if not comps:
            return 0
        rows = [_comp_row(c) for c in comps]
        external_ids = sorted({r["external_id"] for r in rows if r.get("external_id")})
        with self.scope() as db:
            if external_ids:
                db.execute(delete(models.RentalComp).where(models.RentalComp.external_id.in_(external_ids)))
            db.add_all(models.RentalComp(**r) for r in rows)
        logger.info("Synced %d comps (%d replaced by external id)", len(rows), len(external_ids))
        return len(rows)

    # --- baselines ---------------------------------------------------------

    def get_baselines(self, county: Optional[str] = None, year: Optional[int] = None) -> List[MarketBaseline]:
        b = models.MarketBaseline
        stmt = select(b).order_by(b.area_name, b.bedrooms)
        if county:
            stmt = stmt.where(b.county == county)
        if year:
            stmt = stmt.where(b.data_year == year)
        with self.scope() as db:
            return [MarketBaseline.model_validate(r) for r in db.scalars(stmt).all()]

    def bulk_upsert_baselines(self, baselines: Sequence[UpsertBaselineInput]) -> int:
        """Insert or update baselines keyed on (area_name, bedrooms, data_year)."""
        if not baselines:
            return 0
        values = [b.model_dump() for b in baselines]
        stmt = pg_insert(models.MarketBaseline).values(values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["area_name", "bedrooms", "data_year"],
            set_={
                "county": stmt.excluded.county,
                "fmr_rent": stmt.excluded.fmr_rent,
                "median_rent": stmt.excluded.median_rent,
                "source": stmt.excluded.source,
                "updated_at": func.now(),
            },
        )
        with self.scope() as db:
            db.execute(stmt)
        return len(values)

    def upsert_baseline(self, baseline: UpsertBaselineInput) -> None:
        self.bulk_upsert_baselines([baseline])

    # --- stats -------------------------------------------------------------

    def get_comps_stats(self, filter: Optional[CompsFilter] = None) -> CompsStats:
        from propdesk.rent_analysis import compute_stats

        return compute_stats(self.get_comps(filter, limit=settings.COMP_STATS_LIMIT))

    def get_comps_by_town(self, filter: Optional[CompsFilter] = None) -> List[TownStats]:
        from propdesk.rent_analysis import compute_stats

        by_town: Dict[str, List[RentalComp]] = {}
        for comp in self.get_comps(filter, limit=settings.COMP_STATS_LIMIT):
            by_town.setdefault(comp.town, []).append(comp)
        out = []
        for town in sorted(by_town):
            s = compute_stats(by_town[town])
            out.append(
                TownStats(
                    town=town,
                    count=s.count,
                    avg_rent=s.avg_rent,
                    median_rent=s.median_rent,
                    min_rent=s.min_rent,
                    max_rent=s.max_rent,
                )
            )
        return out


# ---------------------------------------------------------------------------
# Competing listings
# ---------------------------------------------------------------------------

class ListingsProvider(Protocol):
    async def fetch_listings(self, town: str, bedrooms: int) -> List[CompetingListing]:
        ...


async def fetch_competing_listings(
    provider: Optional[ListingsProvider],
    town: str,
    bedrooms: int,
    timeout_seconds: Optional[float] = None,
) -> List[CompetingListing]:
    """Active listings for the town/bedrooms, or [] if unavailable."""
    if provider is None:
        return []
    timeout = settings.LISTINGS_TIMEOUT_SECONDS if timeout_seconds is None else timeout_seconds
    try:
        listings = await asyncio.wait_for(provider.fetch_listings(town, bedrooms), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("Listings provider timed out after %.1fs for %s %dBR", timeout, town, bedrooms)
        return []
    except Exception as e:
        logger.warning("Listings provider failed for %s %dBR: %s", town, bedrooms, e)
        return []
    return [l for l in (listings or []) if l.price and l.price > 0]
