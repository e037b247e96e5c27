"""Embedding utilities wrapping OpenAI's embeddings API.

Provides:
- Embedder: Protocol the retrieval engine depends on (async `embed`).
- OpenAIEmbedder: Embedder backed by the configured OpenAI embedding model.
- embed_texts: Batch embedding for ingestion jobs.

Models and dimensions are configured via propdesk.config.settings.
"""
import asyncio
from typing import List, Optional, Protocol

from openai import OpenAI

from propdesk.config import settings

EMBED_BATCH_SIZE = 100


class Embedder(Protocol):
    async def embed(self, text: str) -> List[float]:
        ...


class OpenAIEmbedder:
    """Embed query text with OpenAI; the blocking client call runs in a worker thread."""

    def __init__(self, client: Optional[OpenAI] = None, model: Optional[str] = None):
        self._client = client
        self.model = model or settings.OPENAI_EMBEDDING_MODEL

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            self._client = OpenAI(api_key=settings.OPENAI_API_KEY)
        return self._client

    def embed_sync(self, text: str) -> List[float]:
        resp = self.client.embeddings.create(model=self.model, input=[text])
        return resp.data[0].embedding

    async def embed(self, text: str) -> List[float]:
        return await asyncio.to_thread(self.embed_sync, text)


def embed_texts(texts: List[str], client: Optional[OpenAI] = None) -> List[List[float]]:
    """Embed a batch of texts using the configured OpenAI embedding model.

    Requests are split into batches of EMBED_BATCH_SIZE inputs.

    Args:
        texts: List of input strings to embed.
        client: Optional OpenAI client (a new one is created if omitted).

    Returns:
        List[List[float]]: One embedding vector per input text, in input order.
    """
    if not texts:
        return []
    client = client or OpenAI(api_key=settings.OPENAI_API_KEY)
    out: List[List[float]] = []
    for start in range(0, len(texts), EMBED_BATCH_SIZE):
        batch = texts[start:start + EMBED_BATCH_SIZE]
        resp = client.embeddings.create(model=settings.OPENAI_EMBEDDING_MODEL, input=batch)
        out.extend(d.embedding for d in resp.data)
    return out
