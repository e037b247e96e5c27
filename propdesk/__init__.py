"""Property-management back office: statute Q&A retrieval and rent recommendations.

Submodules overview:
- main: FastAPI application and routes.
- config: Application settings and environment variable loading.
- db / models: Engine/session helpers and ORM models.
- schemas: Pydantic request/response models and shared value types.
- router: Query intent classification for the knowledge retriever.
- embedding / search: Embedding provider and knowledge search backends.
- retrieval: Hybrid search, fusion and quality filtering.
- generation / cache: Grounded answer generation and Redis answer cache.
- comps / rent_analysis: Comp store and the rent recommendation engine.
- hud: HUD Fair Market Rent client.
- ingestion: Offline jobs (statute ingestion, HUD sync).
- evals: Retrieval diagnostics.
- obs: OpenTelemetry spans.
- utils: Text extraction and chunking helpers.
"""
