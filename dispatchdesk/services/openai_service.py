"""
OpenAI service for DispatchDesk
Handles LLM-backed work-order parsing
"""

import asyncio
import json
import logging
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

from openai import OpenAI
from openai.types.chat import ChatCompletion

from dispatchdesk.config import Settings
from dispatchdesk.models.job import ParsedDraft, TradeNeeded, Urgency, normalize_phone
from dispatchdesk.services.retry import RetryPolicy

logger = logging.getLogger(__name__)

_TRADE_ALIASES = {
    "facilitiestech": TradeNeeded.FACILITIES_TECH,
    "facilities": TradeNeeded.FACILITIES_TECH,
    "plumber": TradeNeeded.PLUMBING,
    "electrician": TradeNeeded.ELECTRICAL,
}


class OpenAIService:
    """Service for OpenAI API interactions"""

    def __init__(self, settings: Settings, retry_policy: Optional[RetryPolicy] = None):
        self.client = OpenAI(api_key=settings.openai_api_key) if settings.openai_api_key else None
        self.model = settings.openai_model
        self.retry_policy = retry_policy or RetryPolicy(max_retries=2, initial_delay=1.0)

    @property
    def enabled(self) -> bool:
        return self.client is not None

    async def parse_work_order(self, raw_text: str, today: Optional[date] = None) -> Optional[ParsedDraft]:
        """
        Extract work-order fields with the LLM.
        Returns None when the call fails or the output is unusable.
        """
        if not self.enabled:
            return None
        today = today or date.today()
        system_prompt = f"""
        You are a work order parsing assistant with technical expertise. Output only valid JSON, no markdown.
        Today is {today.isoformat()}. All dates must be today or in the future.
        If a date is given without a year, use its next occurrence.

        Return ONLY a JSON object with these fields (null when unknown):
        - title: concise title, max 100 chars
        - description: **Symptoms:** / **Diagnosis:** / **Solution:** / **Safety:** sections as one string
        - trade_needed: one of HVAC, Plumbing, Electrical, Handyman, Facilities Tech, Other
        - address_text: full street address
        - scheduled_start: ISO 8601 local datetime
        - urgency: one of emergency, same_day, next_day, within_week, flexible
        - duration: e.g. "2-3 hours"
        - budget_min, budget_max: numbers in dollars
        - pay_rate: e.g. "$75/hr" or "$500 flat"
        - contact_name, contact_phone, contact_email
        """
        response = await self._get_chat_completion(
            system_prompt=system_prompt,
            user_message=f"RAW:\n{raw_text}",
            response_format={"type": "json_object"},
        )
        if not response:
            return None
        try:
            data = json.loads(response[response.find("{"):response.rfind("}") + 1])
        except (json.JSONDecodeError, ValueError) as e:
            logger.warning(f"Failed to parse JSON response: {e}")
            return None
        if not isinstance(data, dict):
            logger.warning("LLM returned a non-object payload")
            return None
        try:
            return self._to_draft(data)
        except (ValueError, ArithmeticError) as e:
            logger.warning(f"LLM output could not be coerced into a draft: {e}")
            return None

    def _to_draft(self, data: Dict[str, Any]) -> Optional[ParsedDraft]:
        """Coerce loosely-typed LLM output into a ParsedDraft."""
        title = _text(data.get("title") or data.get("job_title"))
        if not title:
            logger.warning("LLM output has no title; treating as malformed")
            return None

        description = data.get("description")
        if isinstance(description, dict):
            description = "\n".join(f"**{k.title()}:** {v}" for k, v in description.items())

        budget_min = _amount(data.get("budget_min"))
        budget_max = _amount(data.get("budget_max"))
        if budget_min is not None and budget_max is not None and budget_min > budget_max:
            budget_min, budget_max = budget_max, budget_min

        return ParsedDraft(
            title=title[:100],
            description=_text(description),
            trade_needed=self._normalize_trade(data.get("trade_needed")),
            address_text=_text(data.get("address_text")),
            scheduled_start=_timestamp(data.get("scheduled_start") or data.get("scheduled_start_ts")),
            urgency=self._normalize_urgency(data.get("urgency")),
            duration=_text(data.get("duration")),
            budget_min=budget_min,
            budget_max=budget_max,
            pay_rate=_text(data.get("pay_rate")),
            contact_name=_text(data.get("contact_name")),
            contact_phone=normalize_phone(_text(data.get("contact_phone"))),
            contact_email=_text(data.get("contact_email")),
        )

    def _normalize_trade(self, value: Any) -> TradeNeeded:
        text = str(value or "").strip()
        for trade in TradeNeeded:
            if text.lower() == trade.value.lower():
                return trade
        return _TRADE_ALIASES.get(text.lower().replace(" ", ""), TradeNeeded.HVAC if not text else TradeNeeded.OTHER)

    def _normalize_urgency(self, value: Any) -> Urgency:
        text = str(value or "").strip().lower().replace(" ", "_").replace("-", "_")
        try:
            return Urgency(text)
        except ValueError:
            return Urgency.WITHIN_WEEK

    async def _get_chat_completion(
        self,
        system_prompt: str,
        user_message: str,
        response_format: Optional[Dict[str, str]] = None
    ) -> Optional[str]:
        """
        Get chat completion from OpenAI API

        Args:
            system_prompt: The system prompt to guide the model
            user_message: The user message to respond to
            response_format: Optional format specification, e.g. {"type": "json_object"}
        """
        params = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_message}
            ],
            "max_tokens": 800,
            "temperature": 0
        }
        if response_format:
            params["response_format"] = response_format

        async def call() -> ChatCompletion:
            return await asyncio.to_thread(self.client.chat.completions.create, **params)

        try:
            response: ChatCompletion = await self.retry_policy.run(call, label="OpenAI chat completion")
            return response.choices[0].message.content
        except Exception as e:
            logger.error(f"OpenAI API error: {str(e)}")
            return None


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _amount(value: Any) -> Optional[Decimal]:
    if value in (None, ""):
        return None
    try:
        amount = Decimal(str(value).replace("$", "").replace(",", ""))
    except InvalidOperation:
        return None
    return amount if amount.is_finite() and amount > 0 else None


def _timestamp(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
