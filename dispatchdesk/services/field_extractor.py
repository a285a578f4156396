"""
Heuristic field extractor for DispatchDesk
Rule-based fallback used when the LLM parse is unavailable or malformed
"""

import re
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Optional, Tuple

from dispatchdesk.models.job import (
    EMAIL_PATTERN,
    ParsedDraft,
    TradeNeeded,
    Urgency,
    normalize_phone,
)

DEFAULT_TITLE = "Work Order"
DEFAULT_HOUR = 9
TODAY_HOUR = 14

_TRADE_PATTERN = re.compile(r"hvac|air\s*condition|plumb|electr|handyman|facilit", re.IGNORECASE)

_DATE_MDY = re.compile(r"\b(\d{1,2})/(\d{1,2})/(\d{2,4})\b")
_DATE_ISO = re.compile(r"\b(\d{4})-(\d{1,2})-(\d{1,2})\b")
_DATE_NAMED = re.compile(
    r"\b(jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|june?|july?|aug(?:ust)?|"
    r"sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?)\.?\s+(\d{1,2})(?:st|nd|rd|th)?,?\s+(\d{4})\b",
    re.IGNORECASE,
)
_TIME_CLOCK = re.compile(r"\b(\d{1,2}):(\d{2})\s*([ap])?\.?m?\.?\b", re.IGNORECASE)
_TIME_MERIDIEM = re.compile(r"\b(\d{1,2})\s*([ap])\.?m\b\.?", re.IGNORECASE)

_MONTHS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}

_URGENCY_RULES = (
    (Urgency.EMERGENCY, re.compile(r"emergency|urgent|asap|immediately|critical", re.IGNORECASE)),
    (Urgency.SAME_DAY, re.compile(r"\btoday\b|same[\s-]*day", re.IGNORECASE)),
    (Urgency.NEXT_DAY, re.compile(r"\btomorrow\b|next[\s-]*day", re.IGNORECASE)),
    (Urgency.WITHIN_WEEK, re.compile(r"\bweek\b", re.IGNORECASE)),
    (Urgency.FLEXIBLE, re.compile(r"flexible|no\s+rush|whenever", re.IGNORECASE)),
)

_HOURS = r"(?:hours?|hrs?|h)\b"
_DURATION_RANGE = re.compile(r"\b(\d+)\s*-\s*(\d+)\s*" + _HOURS, re.IGNORECASE)
_DURATION_WITHIN = re.compile(r"\bwithin\s+(\d+)\s*" + _HOURS, re.IGNORECASE)
_DURATION_SINGLE = re.compile(r"\b(\d+)\s*" + _HOURS, re.IGNORECASE)

_AMOUNT = r"\$\s*([0-9][0-9,]*(?:\.\d{1,2})?)"
_BUDGET_RANGE = re.compile(_AMOUNT + r"\s*(?:-|to)\s*\$\s*([0-9][0-9,]*(?:\.\d{1,2})?)", re.IGNORECASE)
_BUDGET_CAP = re.compile(r"(?:not\s+to\s+exceed|\bnte\b|budget)[^$\n]{0,20}" + _AMOUNT, re.IGNORECASE)
_PAY_HOURLY = re.compile(_AMOUNT + r"\s*(?:/\s*|per\s+|an?\s+)?(?:hr|hour)\b", re.IGNORECASE)
_PAY_FLAT = re.compile(_AMOUNT + r"\s*(?:flat|fixed)\b", re.IGNORECASE)

_CONTACT_LABEL = re.compile(r"(?:requested\s+by|contact)\s*:\s*([^\n,;|]+)", re.IGNORECASE)
_NAME_STOP = re.compile(r"[\d@(]")

_ADDRESS = re.compile(
    r"\b\d+\s+[A-Za-z0-9.#' ]+?,\s*[A-Za-z.' ]+?,\s*[A-Z]{2}\b(?:\s+\d{5}(?:-\d{4})?)?"
)


def extract(raw_text: Optional[str], now: Optional[datetime] = None) -> ParsedDraft:
    """
    Parse free text into a ParsedDraft.

    Never raises: fields that do not match keep their documented default.
    `now` anchors "today"/"tomorrow" and defaults to the local clock.
    """
    text = (raw_text or "").replace("–", "-").replace("—", "-")
    now = now or datetime.now()
    budget_min, budget_max = _budget(text)

    return ParsedDraft(
        title=_title(text),
        description=text.strip() or None,
        trade_needed=_trade(text),
        address_text=_first(_ADDRESS, text),
        scheduled_start=_scheduled_start(text, now),
        urgency=_urgency(text),
        duration=_duration(text),
        budget_min=budget_min,
        budget_max=budget_max,
        pay_rate=_pay_rate(text),
        contact_name=_contact_name(text),
        contact_phone=normalize_phone(text),
        contact_email=_first(EMAIL_PATTERN, text),
    )


def _first(pattern: re.Pattern, text: str) -> Optional[str]:
    match = pattern.search(text)
    return match.group(0).strip() if match else None


def _title(text: str) -> str:
    return re.sub(r"\s+", " ", text[:100]).strip() or DEFAULT_TITLE


def _trade(text: str) -> TradeNeeded:
    match = _TRADE_PATTERN.search(text)
    if not match:
        return TradeNeeded.HVAC
    keyword = match.group(0).lower()
    if keyword.startswith("plumb"):
        return TradeNeeded.PLUMBING
    if keyword.startswith("electr"):
        return TradeNeeded.ELECTRICAL
    if keyword == "handyman":
        return TradeNeeded.HANDYMAN
    if keyword.startswith("facilit"):
        return TradeNeeded.FACILITIES_TECH
    return TradeNeeded.HVAC


def _time_of_day(text: str) -> Tuple[int, int]:
    """Hour and minute from the first time token, 09:00 when absent."""
    match = _TIME_CLOCK.search(text)
    if match:
        hour, minute, meridiem = int(match.group(1)), int(match.group(2)), match.group(3)
    else:
        match = _TIME_MERIDIEM.search(text)
        if not match:
            return DEFAULT_HOUR, 0
        hour, minute, meridiem = int(match.group(1)), 0, match.group(2)
    if meridiem:
        meridiem = meridiem.lower()
        if meridiem == "p" and hour < 12:
            hour += 12
        elif meridiem == "a" and hour == 12:
            hour = 0
    if hour > 23 or minute > 59:
        return DEFAULT_HOUR, 0
    return hour, minute


def _calendar_dates(text: str):
    """Yield (year, month, day) candidates in priority order."""
    match = _DATE_MDY.search(text)
    if match:
        month, day, year = (int(g) for g in match.groups())
        yield (2000 + year if year < 100 else year), month, day
    match = _DATE_ISO.search(text)
    if match:
        year, month, day = (int(g) for g in match.groups())
        yield year, month, day
    match = _DATE_NAMED.search(text)
    if match:
        yield int(match.group(3)), _MONTHS[match.group(1)[:3].lower()], int(match.group(2))


def _scheduled_start(text: str, now: datetime) -> Optional[datetime]:
    for year, month, day in _calendar_dates(text):
        hour, minute = _time_of_day(text)
        try:
            return datetime(year, month, day, hour, minute)
        except ValueError:
            continue

    today = now.replace(second=0, microsecond=0)
    if re.search(r"\btoday\b", text, re.IGNORECASE):
        return today.replace(hour=TODAY_HOUR, minute=0)
    if re.search(r"\btomorrow\b", text, re.IGNORECASE):
        return (today + timedelta(days=1)).replace(hour=DEFAULT_HOUR, minute=0)
    return None


def _urgency(text: str) -> Urgency:
    for urgency, pattern in _URGENCY_RULES:
        if pattern.search(text):
            return urgency
    return Urgency.WITHIN_WEEK


def _duration(text: str) -> Optional[str]:
    match = _DURATION_RANGE.search(text)
    if match:
        return f"{match.group(1)}-{match.group(2)} hours"
    match = _DURATION_WITHIN.search(text)
    if match:
        return f"within {match.group(1)} hours"
    match = _DURATION_SINGLE.search(text)
    if match:
        return f"{match.group(1)} hours"
    return None


def _money(value: str) -> Optional[Decimal]:
    try:
        return Decimal(value.replace(",", ""))
    except InvalidOperation:
        return None


def _budget(text: str) -> Tuple[Optional[Decimal], Optional[Decimal]]:
    match = _BUDGET_RANGE.search(text)
    if match:
        low, high = _money(match.group(1)), _money(match.group(2))
        if low is not None and high is not None:
            return min(low, high), max(low, high)
    match = _BUDGET_CAP.search(text)
    if match:
        return None, _money(match.group(1))
    return None, None


def _pay_rate(text: str) -> Optional[str]:
    match = _PAY_HOURLY.search(text)
    if match:
        return f"${match.group(1)}/hr"
    match = _PAY_FLAT.search(text)
    if match:
        return f"${match.group(1)} flat"
    return None


def _contact_name(text: str) -> Optional[str]:
    match = _CONTACT_LABEL.search(text)
    if not match:
        return None
    words = []
    for word in match.group(1).split():
        if _NAME_STOP.search(word):
            break
        words.append(word)
    name = " ".join(words)[:40].strip(" .-'")
    return name or None
