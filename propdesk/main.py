"""FastAPI application entrypoint and routes.

Exposes health, knowledge Q&A (/ask, /search) and rent comp endpoints,
configures CORS, and initializes the database schema at startup.

Collaborators (retriever, comp store, listings provider, answer cache and
answer generator) are resolved through FastAPI dependencies so they can be
swapped with dependency_overrides.
"""
import asyncio
import logging
import time
from dataclasses import asdict
from functools import lru_cache
from typing import Callable, List, Optional

import redis
from fastapi import Depends, FastAPI, HTTPException, Query, Response
from fastapi.middleware.cors import CORSMiddleware

from propdesk.cache import get_cached_answer, get_redis, set_cached_answer
from propdesk.comps import CompStore, ListingsProvider
from propdesk.config import settings
from propdesk.db import init_db
from propdesk.embedding import OpenAIEmbedder
from propdesk.generation import extract_sources, generate_answer
from propdesk.obs import span
from propdesk.rent_analysis import generate_rent_analysis
from propdesk.retrieval import HybridRetriever
from propdesk.schemas import (
    AskRequest,
    AskResponse,
    ChunkOut,
    CompsFilter,
    CompsStats,
    CreateCompInput,
    DataSource,
    MarketBaseline,
    PropertyType,
    RentalComp,
    RentAnalysis,
    RentAnalysisRequest,
    SearchRequest,
    SearchResponse,
    Source,
    Town,
    TownStats,
    UpdateCompInput,
)
from propdesk.search import PgKnowledgeSearch

logger = logging.getLogger(__name__)

app = FastAPI(title="propdesk", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_credentials=True,
    allow_headers=["*"],
)


@app.on_event("startup")
def on_startup() -> None:
    """Initialize database schema and indexes at application startup."""
    init_db()


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

@lru_cache(maxsize=1)
def get_retriever() -> HybridRetriever:
    return HybridRetriever(PgKnowledgeSearch(OpenAIEmbedder()))


@lru_cache(maxsize=1)
def get_comp_store() -> CompStore:
    return CompStore()


def get_listings_provider() -> Optional[ListingsProvider]:
    """No listings source is configured by default; callers may pass listings in the request."""
    return None


def get_cache() -> redis.Redis:
    return get_redis()


def get_answer_generator() -> Callable[..., str]:
    return generate_answer


def _elapsed_ms(t0: float) -> int:
    return int((time.time() - t0) * 1000)


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------

@app.get("/health")
def health():
    """Liveness probe endpoint.

    Returns:
        dict: {"status": "ok"} when the service is running.
    """
    return {"status": "ok"}


# ---------------------------------------------------------------------------
# Knowledge Q&A
# ---------------------------------------------------------------------------

@app.post("/ask", response_model=AskResponse)
async def ask(
    req: AskRequest,
    retriever: HybridRetriever = Depends(get_retriever),
    cache: redis.Redis = Depends(get_cache),
    answer_fn: Callable[..., str] = Depends(get_answer_generator),
) -> AskResponse:
    """Answer a staff question from the statute and policy knowledge base.

    Workflow:
    - Check Redis cache keyed by question, max_tokens and attached document
    - Classify the question and run the matching hybrid retrieval strategy
    - Apply the quality floor (falling back to the top few chunks)
    - Generate an answer citing the chunks as [n]
    - Cache the answer with its sources

    Retrieval always uses the question only; an attached document is passed to
    generation but never searched.
    """
    t0 = time.time()
    question = req.question.strip()
    if not question:
        raise HTTPException(status_code=422, detail="question must not be blank")
    if len(question) > settings.MAX_QUESTION_CHARS:
        raise HTTPException(status_code=422, detail=f"question exceeds {settings.MAX_QUESTION_CHARS} characters")

    cached = await asyncio.to_thread(get_cached_answer, question, req.max_tokens, req.document_content, cache)
    if cached:
        return AskResponse(
            answer=cached.get("answer", ""),
            sources=[Source(**s) for s in cached.get("sources", [])],
            intent=cached.get("intent", "semantic"),
            latency_ms=_elapsed_ms(t0),
            used_cache=True,
        )

    result = await retriever.retrieve(question)
    if req.document_content:
        logger.info(
            "Document analysis mode: %r (%d chars)", req.document_name or "unnamed", len(req.document_content)
        )

    with span("answer.generate", {"chunks": len(result.chunks), "document": bool(req.document_content)}):
        answer = await asyncio.to_thread(
            answer_fn,
            question,
            result.chunks,
            max_tokens=req.max_tokens,
            document_content=req.document_content,
            document_name=req.document_name,
        )

    sources = extract_sources(result.chunks)
    resp = AskResponse(
        answer=answer,
        sources=sources,
        intent=result.decision.intent,
        latency_ms=_elapsed_ms(t0),
        used_cache=False,
    )
    await asyncio.to_thread(
        set_cached_answer,
        question,
        {"answer": answer, "sources": [s.model_dump() for s in sources], "intent": resp.intent},
        req.max_tokens,
        req.document_content,
        cache,
    )
    return resp


@app.post("/search", response_model=SearchResponse)
async def search(req: SearchRequest, retriever: HybridRetriever = Depends(get_retriever)) -> SearchResponse:
    """Run retrieval only and return the chunks the answer step would see."""
    t0 = time.time()
    query = req.query.strip()
    if not query:
        raise HTTPException(status_code=422, detail="query must not be blank")
    result = await retriever.retrieve(query, min_similarity=req.min_similarity)
    return SearchResponse(
        query=query,
        intent=result.decision.intent,
        target=result.decision.target,
        chunks=[ChunkOut(**asdict(c)) for c in result.chunks],
        fell_back=result.fell_back,
        latency_ms=_elapsed_ms(t0),
    )


# ---------------------------------------------------------------------------
# Rent comps
# ---------------------------------------------------------------------------

def comps_filter_params(
    towns: List[Town] = Query(default=[]),
    bedrooms: List[int] = Query(default=[]),
    property_types: List[PropertyType] = Query(default=[]),
    data_sources: List[DataSource] = Query(default=[]),
    amenities: List[str] = Query(default=[]),
    rent_min: Optional[float] = None,
    rent_max: Optional[float] = None,
    sqft_min: Optional[int] = None,
    sqft_max: Optional[int] = None,
) -> CompsFilter:
    return CompsFilter(
        towns=towns,
        bedrooms=bedrooms,
        property_types=property_types,
        data_sources=data_sources,
        amenities=amenities,
        rent_min=rent_min,
        rent_max=rent_max,
        sqft_min=sqft_min,
        sqft_max=sqft_max,
    )


@app.post("/comps/analysis", response_model=RentAnalysis)
async def comps_analysis(
    req: RentAnalysisRequest,
    store: CompStore = Depends(get_comp_store),
    listings_provider: Optional[ListingsProvider] = Depends(get_listings_provider),
) -> RentAnalysis:
    """Recommend a rent range for a subject property from comparable comps."""
    return await generate_rent_analysis(
        req.subject,
        store,
        competing_listings=req.competing_listings,
        listings_provider=listings_provider,
        generated_by=req.generated_by,
    )


@app.get("/comps/stats", response_model=CompsStats)
async def comps_stats(
    filter: CompsFilter = Depends(comps_filter_params),
    store: CompStore = Depends(get_comp_store),
) -> CompsStats:
    return await asyncio.to_thread(store.get_comps_stats, filter)


@app.get("/comps/stats/by-town", response_model=List[TownStats])
async def comps_stats_by_town(
    filter: CompsFilter = Depends(comps_filter_params),
    store: CompStore = Depends(get_comp_store),
) -> List[TownStats]:
    return await asyncio.to_thread(store.get_comps_by_town, filter)


@app.get("/comps/baselines", response_model=List[MarketBaseline])
async def comps_baselines(
    county: Optional[str] = None,
    year: Optional[int] = None,
    store: CompStore = Depends(get_comp_store),
) -> List[MarketBaseline]:
    return await asyncio.to_thread(store.get_baselines, county, year)


@app.get("/comps", response_model=List[RentalComp])
async def list_comps(
    filter: CompsFilter = Depends(comps_filter_params),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    store: CompStore = Depends(get_comp_store),
) -> List[RentalComp]:
    return await asyncio.to_thread(store.get_comps, filter, limit, offset)


@app.post("/comps", response_model=RentalComp, status_code=201)
async def create_comp(data: CreateCompInput, store: CompStore = Depends(get_comp_store)) -> RentalComp:
    return await asyncio.to_thread(store.create_comp, data)


@app.get("/comps/{comp_id}", response_model=RentalComp)
async def get_comp(comp_id: int, store: CompStore = Depends(get_comp_store)) -> RentalComp:
    comp = await asyncio.to_thread(store.get_comp, comp_id)
    if comp is None:
        raise HTTPException(status_code=404, detail=f"Comp {comp_id} not found")
    return comp


@app.patch("/comps/{comp_id}", response_model=RentalComp)
async def update_comp(
    comp_id: int, data: UpdateCompInput, store: CompStore = Depends(get_comp_store)
) -> RentalComp:
    comp = await asyncio.to_thread(store.update_comp, comp_id, data)
    if comp is None:
        raise HTTPException(status_code=404, detail=f"Comp {comp_id} not found")
    return comp


@app.delete("/comps/{comp_id}", status_code=204)
async def delete_comp(comp_id: int, store: CompStore = Depends(get_comp_store)) -> Response:
    if not await asyncio.to_thread(store.delete_comp, comp_id):
        raise HTTPException(status_code=404, detail=f"Comp {comp_id} not found")
    return Response(status_code=204)
