"""HUD Fair Market Rent (FMR) API client.

Fetches annual FMR values for the Central Oregon counties we serve and turns
them into market baseline rows, one per (area, bedrooms).

County mapping:
    Deschutes (Bend-Redmond MSA) -> Bend, Redmond, Sisters
    Crook -> Prineville
    Jefferson -> Culver

API docs: https://www.huduser.gov/portal/dataset/fmr-api.html
"""
import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, List, Optional

import requests

from propdesk.config import settings
from propdesk.schemas import UpsertBaselineInput

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HudEntity:
    entity_id: str
    name: str
    county: str


COUNTIES: List[HudEntity] = [
    HudEntity("METRO13460M13460", "Bend-Redmond MSA", "Deschutes"),
    HudEntity("4101300099999", "Crook County", "Crook"),
    HudEntity("4103100099999", "Jefferson County", "Jefferson"),
]

# Tried when the MSA lookup returns nothing
DESCHUTES_COUNTY_FIPS = "4101700099999"

COUNTY_AREAS: Dict[str, List[str]] = {
    "Deschutes": ["Bend", "Redmond", "Sisters"],
    "Crook": ["Prineville"],
    "Jefferson": ["Culver"],
}

BEDROOM_KEYS = {
    "Efficiency": 0,
    "One-Bedroom": 1,
    "Two-Bedroom": 2,
    "Three-Bedroom": 3,
    "Four-Bedroom": 4,
}


def fetch_fmr_data(entity_id: str, year: int, token: str) -> Optional[Dict[str, Any]]:
    """GET /data/{entity_id}; returns the decoded body, or None on a non-2xx response."""
    url = f"{settings.HUD_API_BASE}/data/{entity_id}"
    logger.info("Fetching HUD FMR: %s (year=%d)", url, year)
    resp = requests.get(
        url,
        params={"year": year},
        headers={"Authorization": f"Bearer {token}", "Accept": "application/json"},
        timeout=settings.HUD_REQUEST_TIMEOUT_SECONDS,
    )
    if not resp.ok:
        logger.error("HUD API error (%d) for %s: %s", resp.status_code, entity_id, (resp.text or "")[:200])
        return None
    return resp.json()


def parse_fmr_values(payload: Optional[Dict[str, Any]]) -> Dict[int, float]:
    """Map bedrooms -> FMR from a /data response.

    basicdata is a single object for counties and a list (one per ZIP/area)
    for some metro responses; only the first entry is used in that case.
    Missing or zero values are skipped.
    """
    out: Dict[int, float] = {}
    data = (payload or {}).get("data") or {}
    basic = data.get("basicdata")
    if isinstance(basic, list):
        basic = basic[0] if basic else None
    if not isinstance(basic, dict):
        return out
    for key, bedrooms in BEDROOM_KEYS.items():
        value = basic.get(key)
        if value:
            out[bedrooms] = float(value)
    return out


def fetch_hud_fmr_baselines(year: Optional[int] = None, token: Optional[str] = None) -> List[UpsertBaselineInput]:
    """Baseline rows for every served area, or [] when no API token is configured.

    A county that errors or returns no data is logged and skipped so the other
    counties still sync.
    """
    token = token if token is not None else settings.HUD_API_TOKEN
    if not token:
        logger.warning("HUD_API_TOKEN not set; skipping FMR sync")
        return []

    data_year = year or date.today().year
    baselines: List[UpsertBaselineInput] = []

    for county in COUNTIES:
        try:
            payload = fetch_fmr_data(county.entity_id, data_year, token)
            if payload is None and county.county == "Deschutes":
                logger.info("MSA lookup failed, trying county FIPS for Deschutes")
                payload = fetch_fmr_data(DESCHUTES_COUNTY_FIPS, data_year, token)

            values = parse_fmr_values(payload)
            if not values:
                logger.warning("No FMR data for %s", county.name)
                continue

            areas = COUNTY_AREAS.get(county.county, [])
            for area in areas:
                for bedrooms, fmr in sorted(values.items()):
                    baselines.append(
                        UpsertBaselineInput(
                            area_name=area,
                            county=county.county,
                            bedrooms=bedrooms,
                            fmr_rent=fmr,
                            data_year=data_year,
                            source="hud_fmr",
                        )
                    )
            logger.info("%s: %d bedroom levels mapped to %d areas", county.name, len(values), len(areas))
        except Exception:
            logger.exception("Error fetching FMR for %s", county.name)

    logger.info("Prepared %d HUD baselines for %d", len(baselines), data_year)
    return baselines
