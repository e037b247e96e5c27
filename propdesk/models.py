"""Database ORM models.

Defines the persistent entities behind both engines:
- KnowledgeChunk: statute/policy text with a pgvector embedding and a generated
  tsvector column used by the full-text and phrase searches.
- RentalComp: an observed rental data point. Synced rows carry an external_id
  that identifies them across re-syncs; manual rows have none.
- MarketBaseline: HUD Fair Market Rent reference, unique per area/bedrooms/year.
"""
from datetime import date, datetime

from pgvector.sqlalchemy import Vector
from sqlalchemy import (
    Column,
    Computed,
    Date,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import ARRAY, TSVECTOR

from propdesk.config import settings
from propdesk.db import Base


class KnowledgeChunk(Base):
    """Vector-embedded unit of statute, transcript or policy text.

    Rows are written by the offline ingestion job and are read-only to the
    retrieval engine. The embedding dimension follows settings.EMBEDDING_DIM.
    """
    __tablename__ = "knowledge_chunks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    content = Column(Text, nullable=False)
    source_type = Column(String(32), nullable=False)
    source_title = Column(String(512), nullable=False)
    source_url = Column(String(1024), nullable=True)
    source_section = Column(String(64), nullable=True)  # e.g. "90.300"

    embedding = Column(Vector(dim=settings.EMBEDDING_DIM), nullable=False)
    fts = Column(TSVECTOR, Computed("to_tsvector('english', content)", persisted=True))

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("idx_knowledge_chunks_fts", "fts", postgresql_using="gin"),
        Index("idx_knowledge_chunks_section", "source_section"),
    )


class RentalComp(Base):
    """Comparable rental record used by the rent recommendation engine."""
    __tablename__ = "rental_comps"

    id = Column(Integer, primary_key=True, autoincrement=True)

    town = Column(String(32), nullable=False)
    address = Column(String(512), nullable=True)
    zip_code = Column(String(16), nullable=True)

    bedrooms = Column(Integer, nullable=False)
    bathrooms = Column(Numeric(3, 1), nullable=True, default=1)
    sqft = Column(Integer, nullable=True)
    property_type = Column(String(32), nullable=False, default="SFR")
    amenities = Column(ARRAY(String), nullable=False, default=list)

    monthly_rent = Column(Numeric(10, 2), nullable=False)
    rent_per_sqft = Column(Numeric(8, 4), nullable=True)

    data_source = Column(String(32), nullable=False, default="manual")
    comp_date = Column(Date, nullable=False, default=date.today)
    external_id = Column(String(128), nullable=True)

    notes = Column(Text, nullable=True)
    created_by = Column(String(256), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("idx_rental_comps_town_bedrooms", "town", "bedrooms"),
        Index("idx_rental_comps_comp_date", "comp_date"),
        Index("idx_rental_comps_external_id", "external_id"),
    )


class MarketBaseline(Base):
    """HUD Fair Market Rent / median rent for one area and bedroom count."""
    __tablename__ = "market_baselines"

    id = Column(Integer, primary_key=True, autoincrement=True)
    area_name = Column(String(128), nullable=False)
    county = Column(String(128), nullable=False)
    bedrooms = Column(Integer, nullable=False)
    fmr_rent = Column(Numeric(10, 2), nullable=True)
    median_rent = Column(Numeric(10, 2), nullable=True)
    data_year = Column(Integer, nullable=False)
    source = Column(String(32), nullable=False, default="hud_fmr")

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("area_name", "bedrooms", "data_year", name="uq_market_baselines_area_beds_year"),
        Index("idx_market_baselines_county", "county"),
    )
