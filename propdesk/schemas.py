"""Pydantic request/response schemas and shared value types.

Defines the public contracts used by the FastAPI endpoints and the rent engine:
- Knowledge Q&A: AskRequest, Source, AskResponse, SearchRequest, SearchResponse.
- Rent comps: RentalComp, CreateCompInput, CompsFilter, CompsStats, TownStats.
- Baselines: MarketBaseline, UpsertBaselineInput.
- Analysis: SubjectProperty, CompetingListing, RentAnalysisRequest, RentAnalysis.
"""
from datetime import date, datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

Town = Literal["Bend", "Redmond", "Sisters", "Prineville", "Culver"]
PropertyType = Literal["SFR", "Apartment", "Townhouse", "Duplex", "Condo", "Manufactured", "Other"]
DataSource = Literal["appfolio", "manual", "rentometer", "hud_fmr", "zillow"]
SourceType = Literal["ors_90", "loom_video", "policy_doc"]

ALL_TOWNS: List[str] = ["Bend", "Redmond", "Sisters", "Prineville", "Culver"]
ALL_AMENITIES: List[str] = [
    "garage",
    "pool",
    "ac",
    "washer_dryer",
    "dishwasher",
    "fenced_yard",
    "pet_friendly",
    "fireplace",
    "updated_kitchen",
    "new_flooring",
]


# ---------------------------------------------------------------------------
# Knowledge Q&A
# ---------------------------------------------------------------------------

class AskRequest(BaseModel):
    """Request body for asking a landlord-tenant question.

    Attributes:
        question: The staff question to answer.
        max_tokens: Optional cap on the number of tokens for the generated answer.
        document_content: Optional text of an attached letter/notice to analyze.
        document_name: Optional display name of the attached document.
    """
    question: str = Field(..., min_length=1, description="User question")
    max_tokens: Optional[int] = Field(default=None, ge=64, le=8192)
    document_content: Optional[str] = None
    document_name: Optional[str] = None


class Source(BaseModel):
    """A knowledge chunk cited by an answer, in ranked order."""
    id: str
    title: str
    url: Optional[str] = None
    type: str
    section: Optional[str] = None
    similarity: Optional[float] = None


class AskResponse(BaseModel):
    """Response body returned by the /ask endpoint.

    Attributes:
        answer: The generated answer text.
        sources: Chunks used as context, numbered in the same order as the [n] citations.
        intent: Retrieval strategy chosen for the question.
        latency_ms: End-to-end latency for the request in milliseconds.
        used_cache: Whether the answer was served from cache.
    """
    answer: str
    sources: List[Source]
    intent: str
    latency_ms: int
    used_cache: bool = False


class SearchRequest(BaseModel):
    query: str = Field(..., min_length=1, max_length=2000)
    min_similarity: Optional[float] = Field(default=None, ge=-1.0, le=1.0)


class ChunkOut(BaseModel):
    id: str
    content: str
    source_type: str
    source_title: str
    source_url: Optional[str] = None
    source_section: Optional[str] = None
    similarity: Optional[float] = None


class SearchResponse(BaseModel):
    """Retrieval-only result, used to inspect what the chatbot would see."""
    query: str
    intent: str
    target: Optional[str] = None
    chunks: List[ChunkOut]
    fell_back: bool = False
    latency_ms: int


# ---------------------------------------------------------------------------
# Rent comps and baselines
# ---------------------------------------------------------------------------

class RentalComp(BaseModel):
    """A comparable rental record as read from the comp store.

    similarity_score is only populated on comps returned inside a RentAnalysis.
    """
    model_config = ConfigDict(from_attributes=True)

    id: Optional[int] = None
    town: Town
    address: Optional[str] = None
    zip_code: Optional[str] = None
    bedrooms: int = Field(..., ge=0)
    bathrooms: Optional[float] = None
    sqft: Optional[int] = None
    property_type: PropertyType
    amenities: List[str] = Field(default_factory=list)
    monthly_rent: float = Field(..., gt=0)
    rent_per_sqft: Optional[float] = None
    data_source: DataSource = "manual"
    comp_date: date
    external_id: Optional[str] = None
    notes: Optional[str] = None
    similarity_score: Optional[int] = None


class CreateCompInput(BaseModel):
    """Input for a manual comp or one row of a sync batch."""
    town: Town
    address: Optional[str] = None
    zip_code: Optional[str] = None
    bedrooms: int = Field(..., ge=0, le=6)
    bathrooms: Optional[float] = None
    sqft: Optional[int] = Field(default=None, gt=0)
    property_type: PropertyType = "SFR"
    amenities: List[str] = Field(default_factory=list)
    monthly_rent: float = Field(..., gt=0)
    rent_per_sqft: Optional[float] = None
    data_source: DataSource = "manual"
    comp_date: Optional[date] = None
    external_id: Optional[str] = None
    notes: Optional[str] = None
    created_by: Optional[str] = None


class UpdateCompInput(BaseModel):
    """Partial update of a stored comp; only fields that are set are written."""
    town: Optional[Town] = None
    address: Optional[str] = None
    zip_code: Optional[str] = None
    bedrooms: Optional[int] = Field(default=None, ge=0, le=6)
    bathrooms: Optional[float] = None
    sqft: Optional[int] = Field(default=None, gt=0)
    property_type: Optional[PropertyType] = None
    amenities: Optional[List[str]] = None
    monthly_rent: Optional[float] = Field(default=None, gt=0)
    rent_per_sqft: Optional[float] = None
    data_source: Optional[DataSource] = None
    comp_date: Optional[date] = None
    external_id: Optional[str] = None
    notes: Optional[str] = None


class CompsFilter(BaseModel):
    """Filter for querying rental comps; empty lists and None mean 'any'."""
    towns: List[Town] = Field(default_factory=list)
    bedrooms: List[int] = Field(default_factory=list)
    property_types: List[PropertyType] = Field(default_factory=list)
    data_sources: List[DataSource] = Field(default_factory=list)
    amenities: List[str] = Field(default_factory=list)
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    rent_min: Optional[float] = None
    rent_max: Optional[float] = None
    sqft_min: Optional[int] = None
    sqft_max: Optional[int] = None


class CompsStats(BaseModel):
    count: int
    avg_rent: int
    median_rent: int
    min_rent: float
    max_rent: float
    avg_sqft: Optional[int] = None
    avg_rent_per_sqft: Optional[float] = None


class TownStats(BaseModel):
    town: str
    count: int
    avg_rent: int
    median_rent: int
    min_rent: float
    max_rent: float


class MarketBaseline(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: Optional[int] = None
    area_name: str
    county: str
    bedrooms: int
    fmr_rent: Optional[float] = None
    median_rent: Optional[float] = None
    data_year: int
    source: str = "hud_fmr"


class UpsertBaselineInput(BaseModel):
    area_name: str
    county: str
    bedrooms: int = Field(..., ge=0, le=6)
    fmr_rent: Optional[float] = None
    median_rent: Optional[float] = None
    data_year: int
    source: str = "hud_fmr"


# ---------------------------------------------------------------------------
# Rent analysis
# ---------------------------------------------------------------------------

class SubjectProperty(BaseModel):
    """The property a rent recommendation is requested for."""
    address: str = Field(..., min_length=1)
    town: Town
    zip_code: Optional[str] = None
    bedrooms: int = Field(..., ge=0)
    bathrooms: Optional[float] = None
    sqft: Optional[int] = None
    property_type: PropertyType = "SFR"
    amenities: List[str] = Field(default_factory=list)
    current_rent: Optional[float] = None


class CompetingListing(BaseModel):
    """An active listing from an external source (e.g. a listings site)."""
    address: str = "Unknown"
    price: float
    bedrooms: int = 0
    bathrooms: Optional[float] = None
    sqft: Optional[int] = None
    listing_url: Optional[str] = None
    source: str = "zillow"
    days_on_market: Optional[int] = None


class RentAnalysisRequest(BaseModel):
    subject: SubjectProperty
    competing_listings: Optional[List[CompetingListing]] = None
    generated_by: Optional[str] = None


class RentAnalysis(BaseModel):
    """Complete rent analysis; methodology_notes is the audit trail of every adjustment."""
    subject: SubjectProperty
    stats: CompsStats
    comparable_comps: List[RentalComp]
    competing_listings: List[CompetingListing]
    baselines: List[MarketBaseline]
    recommended_rent_low: int
    recommended_rent_mid: int
    recommended_rent_high: int
    methodology_notes: List[str]
    generated_at: datetime
    generated_by: Optional[str] = None
