"""Caching utilities for answers using Redis.

Provides:
- get_redis: Cached Redis client from REDIS_URL with decode_responses.
- _key_for_question: Stable cache key from question, max_tokens and attached document.
- get_cached_answer: Fetch cached JSON answer for a question.
- set_cached_answer: Store JSON answer with TTL from settings.CACHE_TTL_SECONDS.
"""
import hashlib
import json
from typing import Optional

import redis

from propdesk.config import settings

_redis_client: Optional[redis.Redis] = None


def get_redis() -> redis.Redis:
    """Return a cached Redis client configured from settings.REDIS_URL."""
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    return _redis_client


def _key_for_question(question: str, max_tokens: Optional[int] = None, document: Optional[str] = None) -> str:
    """Compute a stable cache key for a question, token cap and optional document.

    The question is normalized (trimmed, lowercased, whitespace collapsed); the
    document is hashed verbatim so any edit to it misses the cache.
    """
    norm_q = " ".join(question.strip().lower().split())
    mt = max_tokens or settings.MAX_OUTPUT_TOKENS
    doc_h = hashlib.sha256(document.encode("utf-8")).hexdigest() if document else "-"
    h = hashlib.sha256(f"{norm_q}|max={mt}|doc={doc_h}".encode("utf-8")).hexdigest()
    return f"propdesk:qa:v1:{h}"


def get_cached_answer(
    question: str,
    max_tokens: Optional[int] = None,
    document: Optional[str] = None,
    client: Optional[redis.Redis] = None,
) -> Optional[dict]:
    """Get a cached answer payload, or None if absent or unreadable."""
    r = client or get_redis()
    raw = r.get(_key_for_question(question, max_tokens, document))
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return None


def set_cached_answer(
    question: str,
    value: dict,
    max_tokens: Optional[int] = None,
    document: Optional[str] = None,
    client: Optional[redis.Redis] = None,
) -> None:
    """Store an answer payload under the computed cache key with TTL."""
    r = client or get_redis()
    r.setex(_key_for_question(question, max_tokens, document), settings.CACHE_TTL_SECONDS, json.dumps(value))
