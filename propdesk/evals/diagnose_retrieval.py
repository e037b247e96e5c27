"""Retrieval diagnostics for the statute knowledge base.

This script:
- Loads a JSONL dataset of {question, expected_sections}
- Runs each question through the hybrid retriever in-process (no API, no LLM)
- Prints intent, similarity distribution and returned sections per question
- Computes the section hit rate (share of questions whose results contain at
  least one expected section)
- Gates on settings.EVAL_MIN_SECTION_HIT_RATE and exits non-zero if failing

Usage:
  python -m propdesk.evals.diagnose_retrieval --dataset data/evals/ors90_sections.jsonl
"""
import argparse
import asyncio
import json
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from propdesk.config import settings
from propdesk.retrieval import HybridRetriever, similarity_stats

logger = logging.getLogger(__name__)


def load_jsonl(path: Path) -> List[Dict[str, Any]]:
    """Load a JSONL file into a list of dicts, skipping blank and unparseable lines."""
    rows: List[Dict[str, Any]] = []
    with path.open("r", encoding="utf-8") as f:
        for n, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                rows.append(json.loads(line))
            except ValueError:
                logger.warning("Skipping unparseable line %d in %s", n, path)
    return rows


@dataclass
class QuestionReport:
    question: str
    intent: str
    sections: List[str]
    expected: List[str]
    fell_back: bool
    hit: bool


def _pct(v: Optional[float]) -> str:
    return "n/a" if v is None else f"{v * 100:.2f}%"


async def diagnose(retriever: HybridRetriever, rows: List[Dict[str, Any]]) -> List[QuestionReport]:
    """Run every dataset row through the retriever and report what came back."""
    reports: List[QuestionReport] = []
    for i, row in enumerate(rows, start=1):
        q = str(row.get("question", "")).strip()
        if not q:
            continue
        expected = [str(s) for s in row.get("expected_sections") or []]
        result = await retriever.retrieve(q)
        sections = [c.source_section or "none" for c in result.chunks]
        hit = bool(set(expected) & set(sections)) if expected else bool(result.chunks)
        stats = similarity_stats(result.chunks)
        print(f"[DIAG] {i}. {q}")
        print(
            f"       intent={result.decision.intent} target={result.decision.target or '-'} "
            f"chunks={stats.count} min={_pct(stats.min)} avg={_pct(stats.avg)} max={_pct(stats.max)} "
            f"fallback={result.fell_back}"
        )
        print(f"       sections={', '.join(sections) or '(none)'} expected={', '.join(expected) or '-'} hit={hit}")
        reports.append(
            QuestionReport(
                question=q,
                intent=result.decision.intent,
                sections=sections,
                expected=expected,
                fell_back=result.fell_back,
                hit=hit,
            )
        )
    return reports


def section_hit_rate(reports: List[QuestionReport]) -> float:
    if not reports:
        return 0.0
    return sum(1 for r in reports if r.hit) / len(reports)


def main(argv: Optional[List[str]] = None, retriever: Optional[HybridRetriever] = None) -> int:
    """Run the diagnostics end-to-end.

    Returns:
        int: Exit code (0=success, 1=gate failed, 2=error).
    """
    parser = argparse.ArgumentParser(description="Diagnose hybrid retrieval against expected ORS sections.")
    parser.add_argument("--dataset", type=Path, default=Path(settings.EVAL_DATASET_PATH))
    parser.add_argument("--min-hit-rate", type=float, default=settings.EVAL_MIN_SECTION_HIT_RATE)
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging verbosity (default: WARNING)",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.WARNING),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )

    if not args.dataset.exists():
        print(f"[DIAG][ERROR] dataset not found: {args.dataset}", flush=True)
        return 2
    rows = load_jsonl(args.dataset)
    if not rows:
        print(f"[DIAG][ERROR] empty dataset: {args.dataset}", flush=True)
        return 2

    if retriever is None:
        from propdesk.embedding import OpenAIEmbedder
        from propdesk.search import PgKnowledgeSearch

        retriever = HybridRetriever(PgKnowledgeSearch(OpenAIEmbedder()))

    print(f"[DIAG] Running {len(rows)} questions...", flush=True)
    reports = asyncio.run(diagnose(retriever, rows))

    rate = section_hit_rate(reports)
    fallbacks = sum(1 for r in reports if r.fell_back)
    print(f"[DIAG] Section hit rate: {rate:.3f} ({len(reports)} questions, {fallbacks} quality fallbacks)")

    if rate < args.min_hit_rate:
        print(f"[DIAG][GATE] FAILED: section_hit_rate>={args.min_hit_rate}", flush=True)
        return 1
    print("[DIAG][GATE] PASSED.", flush=True)
    return 0


if __name__ == "__main__":
    sys.exit(main())
