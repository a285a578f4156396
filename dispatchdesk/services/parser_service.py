"""
Work-order parser service for DispatchDesk
Tries the LLM parse first and falls back to the heuristic extractor
"""

import logging
import re
from datetime import datetime
from typing import Dict, Optional

from dispatchdesk.models.job import ParsedDraft, ParseResult, TradeNeeded
from dispatchdesk.services.field_extractor import extract
from dispatchdesk.services.openai_service import OpenAIService

logger = logging.getLogger(__name__)

SOURCE_MULTIPLIER = {"openai": 1.0, "heuristic": 0.7}
CRITICAL_FIELDS = ("contact_email", "contact_phone", "address_text", "scheduled_start")
CRITICAL_WEIGHT = 1.5


class WorkOrderParser:
    """Turns raw text into a ParseResult; never fails on bad text"""

    def __init__(self, openai_service: OpenAIService):
        self.openai_service = openai_service

    async def parse(self, raw_text: str, now: Optional[datetime] = None) -> ParseResult:
        draft: Optional[ParsedDraft] = None
        source = "heuristic"
        if self.openai_service.enabled:
            draft = await self.openai_service.parse_work_order(raw_text, today=(now or datetime.now()).date())
            if draft is not None:
                source = "openai"
            else:
                logger.info("Falling back to heuristic parsing")
        if draft is None:
            draft = extract(raw_text, now=now)

        field_confidence = score_fields(draft, source)
        return ParseResult(
            draft=draft,
            source=source,
            confidence=overall_confidence(field_confidence),
            field_confidence=field_confidence,
        )


def score_fields(draft: ParsedDraft, source: str) -> Dict[str, float]:
    """Per-field confidence, scaled by how much the source is trusted."""
    scores = {
        "title": 0.9 if len(draft.title) > 5 else 0.3,
        "description": 0.9 if draft.description and len(draft.description) > 20 else 0.5,
        "trade_needed": 0.6 if draft.trade_needed == TradeNeeded.OTHER else 0.95,
        "address_text": 0.95 if draft.address_text and re.search(r"\d+.*[A-Z]{2}\s*\d{5}", draft.address_text) else 0.4,
        "scheduled_start": 0.85 if draft.scheduled_start else 0.3,
        "urgency": 0.9,
        "duration": 0.8 if draft.duration and re.search(r"\d", draft.duration) else 0.4,
        "budget_min": 0.85 if draft.budget_min else 0.3,
        "budget_max": 0.85 if draft.budget_max else 0.3,
        "pay_rate": 0.85 if draft.pay_rate and re.search(r"\$\d", draft.pay_rate) else 0.4,
        "contact_name": 0.9 if draft.contact_name and len(draft.contact_name) > 2 else 0.4,
        "contact_phone": 0.95 if draft.contact_phone else 0.4,
        "contact_email": 0.95 if draft.contact_email else 0.3,
    }
    multiplier = SOURCE_MULTIPLIER.get(source, 0.7)
    return {name: min(1.0, round(score * multiplier, 4)) for name, score in scores.items()}


def overall_confidence(field_confidence: Dict[str, float]) -> float:
    """Weighted average; contact and location fields count extra."""
    total = weights = 0.0
    for name, score in field_confidence.items():
        weight = CRITICAL_WEIGHT if name in CRITICAL_FIELDS else 1.0
        total += score * weight
        weights += weight
    return round(total / weights, 2) if weights else 0.0
