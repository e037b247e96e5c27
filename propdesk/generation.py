"""Answer generation utilities using OpenAI chat completions.

Provides:
- get_client: Cached OpenAI client
- build_context: Retrieved chunks formatted as numbered [Source n] blocks
- extract_sources: Source list in the same order as the [n] citations
- build_messages: System/user messages for plain questions and document analysis
- generate_answer: Grounded answer generation constrained to provided context

Configuration is read from propdesk.config.settings.
"""
from typing import Dict, List, Optional, Sequence

from openai import OpenAI

from propdesk.config import settings
from propdesk.schemas import Source
from propdesk.search import KnowledgeChunk

_client: Optional[OpenAI] = None

NO_CONTEXT = "No relevant information found in the knowledge base."

_STAFF_CONTEXT = """CONTEXT:
- This is an INTERNAL tool for property management staff only
- Users are professionals who need practical, actionable guidance
- Focus on Oregon landlord-tenant law (ORS Chapter 90) and company policies
- Always consider the landlord/property manager perspective when answering"""

SYSTEM_PROMPT = """You are the internal knowledge assistant for a Central Oregon property management company. Your role is to help property managers, leasing agents, and staff quickly find accurate information about landlord-tenant law, company policies, and procedures.

{staff_context}

RESPONSE FORMAT:
1. Start with a brief, direct answer to the question
2. Use clear headers (## Header) to organize longer responses
3. Use bullet points for lists and requirements
4. Include specific ORS section numbers, timeframes, and limits when available
5. Add practical tips or warnings where relevant (e.g., "Important:", "Note:")

CITATIONS:
- Use inline citations [1], [2], etc. for ALL factual claims from the knowledge base
- Place citations immediately after the relevant statement
- Always cite the specific ORS section number when referencing the law

If the knowledge base doesn't contain relevant information, say so clearly and suggest appropriate next steps (e.g., consult the company handbook, speak with a supervisor, or seek legal advice).

The sources are numbered [1] through [{n}] in the context below."""

DOCUMENT_PROMPT = """You are the internal knowledge assistant for a Central Oregon property management company, analyzing a document provided by staff.

The user has uploaded {doc} for you to analyze. Read the ACTUAL CONTENT of their document (provided below) and explain how Oregon landlord-tenant law applies to their specific situation.

{staff_context}

RESPONSE FORMAT:
## Document Summary
## Legal Analysis
## Recommended Response
## Warnings/Risks (if applicable)

CITATIONS:
- Use inline citations [1], [2], etc. when referencing the legal sources
- Always cite specific ORS section numbers

The legal reference sources are numbered [1] through [{n}] in the context below."""


def get_client() -> OpenAI:
    """Return a cached OpenAI Chat Completions client using the configured API key.

    Returns:
        OpenAI: Client instance reused across calls.
    """
    global _client
    if _client is None:
        _client = OpenAI(api_key=settings.OPENAI_API_KEY)
    return _client


def build_context(chunks: Sequence[KnowledgeChunk]) -> str:
    """Create an enumerated context block from retrieved chunks.

    Args:
        chunks: Ranked chunks; their order defines the [Source n] numbering.

    Returns:
        str: "[Source n] title - section:" headed blocks separated by blank lines.
    """
    if not chunks:
        return NO_CONTEXT
    blocks: List[str] = []
    for i, c in enumerate(chunks, start=1):
        section = f" - {c.source_section}" if c.source_section else ""
        blocks.append(f"[Source {i}] {c.source_title}{section}:\n{c.content}")
    return "\n\n".join(blocks)


def extract_sources(chunks: Sequence[KnowledgeChunk]) -> List[Source]:
    return [
        Source(
            id=c.id,
            title=c.source_title,
            url=c.source_url,
            type=c.source_type,
            section=c.source_section,
            similarity=c.similarity,
        )
        for c in chunks
    ]


def build_messages(
    question: str,
    chunks: Sequence[KnowledgeChunk],
    document_content: Optional[str] = None,
    document_name: Optional[str] = None,
) -> List[Dict[str, str]]:
    """Chat messages for a question, optionally about an attached document.

    With a document, the document comes first in the user message, followed by
    the legal context and then the question.
    """
    context = build_context(chunks)
    if document_content:
        doc = f'a document called "{document_name}"' if document_name else "a document/email"
        system = DOCUMENT_PROMPT.format(doc=doc, staff_context=_STAFF_CONTEXT, n=len(chunks))
        user = (
            "=== USER'S DOCUMENT TO ANALYZE ===\n"
            f"Document: {document_name or 'Uploaded Document'}\n\n"
            f"{document_content}\n\n"
            "=== END OF DOCUMENT ===\n\n"
            f"=== RELEVANT OREGON LAW (ORS 90) FOR REFERENCE ===\n\n{context}\n\n"
            f"=== USER'S QUESTION ===\n{question}"
        )
    else:
        system = SYSTEM_PROMPT.format(staff_context=_STAFF_CONTEXT, n=len(chunks))
        user = f"Context from knowledge base:\n\n{context}\n\nQuestion: {question}"
    return [
        {"role": "system", "content": system},
        {"role": "user", "content": user},
    ]


def generate_answer(
    question: str,
    chunks: Sequence[KnowledgeChunk],
    max_tokens: Optional[int] = None,
    document_content: Optional[str] = None,
    document_name: Optional[str] = None,
    client: Optional[OpenAI] = None,
) -> str:
    """Generate an answer grounded in the retrieved chunks, citing them as [n].

    Args:
        question: User question to answer.
        chunks: Retrieved chunks to ground the answer.
        max_tokens: Optional cap for output tokens; defaults to MAX_OUTPUT_TOKENS,
            or MAX_DOCUMENT_OUTPUT_TOKENS when a document is attached.
        document_content: Optional attached document text.
        document_name: Optional attached document name.
        client: Optional OpenAI client (the cached client is used if omitted).

    Returns:
        str: The generated answer text.
    """
    client = client or get_client()
    default_tokens = settings.MAX_DOCUMENT_OUTPUT_TOKENS if document_content else settings.MAX_OUTPUT_TOKENS
    resp = client.chat.completions.create(
        model=settings.OPENAI_MODEL,
        messages=build_messages(question, chunks, document_content, document_name),
        temperature=0.2,
        max_tokens=max_tokens or default_tokens,
    )
    content = resp.choices[0].message.content or ""
    return content.strip() or "Unable to generate response."
