"""Database setup and session utilities for SQLAlchemy.

- init_db: Ensures the vector and pg_trgm extensions exist, creates the
  knowledge, rental comp and market baseline tables, then the indexes that
  need operator classes (see SEARCH_INDEXES).
- session_scope: Context-managed transactional scope used by the comp store,
  the knowledge search backend and the ingestion jobs.

Configuration is read from propdesk.config.settings.DATABASE_URL.
"""
import logging
from contextlib import contextmanager

from sqlalchemy import create_engine, text
from sqlalchemy.orm import declarative_base, sessionmaker

from propdesk.config import settings

logger = logging.getLogger(__name__)

engine = create_engine(settings.DATABASE_URL, pool_pre_ping=True, future=True)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)
Base = declarative_base()

EXTENSIONS = ("vector", "pg_trgm")

# Plain btree and the fts GIN index are declared on the models.
SEARCH_INDEXES = {
    # cosine nearest-neighbour for vector_search; ANALYZE after bulk ingestion
    "idx_knowledge_chunks_embedding": (
        "ON knowledge_chunks USING ivfflat (embedding vector_cosine_ops) WITH (lists = 100)"
    ),
    # ILIKE substring_search on section numbers and phrases
    "idx_knowledge_chunks_content_trgm": "ON knowledge_chunks USING gin (content gin_trgm_ops)",
    # amenities @> filter
    "idx_rental_comps_amenities": "ON rental_comps USING gin (amenities)",
}


def init_db() -> None:
    """Create extensions, tables and search indexes. Idempotent."""
    with engine.connect() as conn:
        for ext in EXTENSIONS:
            conn.execute(text(f"CREATE EXTENSION IF NOT EXISTS {ext}"))
        conn.commit()

    # Import models after Base is defined
    from propdesk import models  # noqa: F401

    Base.metadata.create_all(bind=engine)

    with engine.connect() as conn:
        for name, ddl in SEARCH_INDEXES.items():
            conn.execute(text(f"CREATE INDEX IF NOT EXISTS {name} {ddl}"))
        conn.commit()
    logger.info("Database initialized (%d search indexes ensured)", len(SEARCH_INDEXES))


@contextmanager
def session_scope():
    """Provide a transactional scope around a series of operations.

    Commits on successful exit, rolls back and re-raises on exception, and
    always closes the session.
    """
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
