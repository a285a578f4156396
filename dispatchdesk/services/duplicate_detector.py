"""
Duplicate detector for DispatchDesk
Finds open jobs in the same org and trade whose address looks like the
submitted one. Informational only: it never blocks creation by itself.
"""

import logging
import re
from datetime import datetime, timedelta, timezone
from difflib import SequenceMatcher
from typing import List, Optional

from dispatchdesk.models.job import OPEN_STATUSES, DuplicateCandidate, TradeNeeded

logger = logging.getLogger(__name__)

SIMILARITY_THRESHOLD = 0.85
MIN_ADDRESS_LENGTH = 10
MAX_ROWS_EXAMINED = 50
MAX_CANDIDATES = 5

_ABBREVIATIONS = {
    "st": "street", "ave": "avenue", "av": "avenue", "rd": "road", "blvd": "boulevard",
    "dr": "drive", "ln": "lane", "ct": "court", "pl": "place", "pkwy": "parkway",
    "hwy": "highway", "ter": "terrace", "cir": "circle", "sq": "square", "trl": "trail",
    "ste": "suite", "apt": "apartment",
    "n": "north", "s": "south", "e": "east", "w": "west",
    "ne": "northeast", "nw": "northwest", "se": "southeast", "sw": "southwest",
}


def normalize_address(address: Optional[str]) -> str:
    """Lowercase, drop punctuation, expand suffixes and directionals."""
    text = re.sub(r"[^\w\s]", " ", (address or "").lower())
    return " ".join(_ABBREVIATIONS.get(word, word) for word in text.split())


def _house_number(normalized: str) -> Optional[str]:
    first = normalized.split(" ", 1)[0] if normalized else ""
    return first if first[:1].isdigit() else None


def address_similarity(a: str, b: str) -> Optional[tuple]:
    """
    Compare two normalised addresses.
    Returns (reason, score) when they match, else None.
    """
    if not a or not b:
        return None
    if a == b:
        return "exact_address", 1.0
    shorter, longer = sorted((a, b), key=len)
    if longer.startswith(shorter + " "):
        return "address_prefix", round(len(shorter) / len(longer), 4)
    ratio = SequenceMatcher(None, a, b).ratio()
    if ratio >= SIMILARITY_THRESHOLD and _house_number(a) == _house_number(b):
        return "similar_address", round(ratio, 4)
    return None


class DuplicateDetector:
    """Looks up possible duplicates of a submission"""

    def __init__(self, store, window_days: int = 30):
        self.store = store
        self.window_days = window_days

    async def find_duplicates(
        self,
        org_id: str,
        trade_needed: TradeNeeded,
        address_text: str,
        exclude_job_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> List[DuplicateCandidate]:
        target = normalize_address(address_text)
        if len(target) < MIN_ADDRESS_LENGTH:
            logger.info(f"Address too short for duplicate check: '{address_text}'")
            return []

        now = now or datetime.now(timezone.utc)
        since = now - timedelta(days=self.window_days)
        trade = trade_needed.value if isinstance(trade_needed, TradeNeeded) else str(trade_needed)

        rows = await self.store.select(
            "jobs",
            [
                ("org_id", "eq", org_id),
                ("trade_needed", "eq", trade),
                ("status", "in", [s.value for s in OPEN_STATUSES]),
                ("created_at", "gte", since.isoformat()),
            ],
            order_by="created_at",
            desc=True,
            limit=MAX_ROWS_EXAMINED,
        )

        candidates: List[DuplicateCandidate] = []
        for row in rows:
            if exclude_job_id and row.get("id") == exclude_job_id:
                continue
            match = address_similarity(target, normalize_address(row.get("address_text")))
            if not match:
                continue
            reason, score = match
            candidates.append(
                DuplicateCandidate(
                    job_id=row["id"],
                    similarity_reason=reason,
                    similarity=score,
                    job_title=row.get("title"),
                    address_text=row.get("address_text"),
                    status=row.get("status"),
                    created_at=row.get("created_at"),
                )
            )
            if len(candidates) >= MAX_CANDIDATES:
                break

        if candidates:
            logger.info(f"Found {len(candidates)} possible duplicate(s) for '{address_text}' in org {org_id}")
        return candidates
