"""Load HUD Fair Market Rents into market_baselines.

Usage:
  python -m propdesk.ingestion.sync_hud --year 2026

Rows are upserted on (area_name, bedrooms, data_year), so re-running for the
same year refreshes the values in place.
"""
import argparse
import logging
from typing import Optional

from propdesk.comps import CompStore
from propdesk.db import init_db
from propdesk.hud import fetch_hud_fmr_baselines

logger = logging.getLogger(__name__)


def sync_hud(year: Optional[int] = None, store: Optional[CompStore] = None) -> int:
    """Fetch and upsert FMR baselines. Returns the number of rows written."""
    baselines = fetch_hud_fmr_baselines(year)
    if not baselines:
        logger.warning("No HUD baselines fetched; nothing to write")
        return 0
    store = store or CompStore()
    return store.bulk_upsert_baselines(baselines)


def main():
    parser = argparse.ArgumentParser(description="Sync HUD Fair Market Rent baselines.")
    parser.add_argument("--year", type=int, default=None, help="FMR year (default: current year)")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging verbosity (default: INFO)",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )

    init_db()
    written = sync_hud(args.year)
    print(f"[SYNC-HUD] {written} baselines upserted")


if __name__ == "__main__":
    main()
