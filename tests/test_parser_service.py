"""
Tests for the LLM-first work-order parser
"""

import json
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from dispatchdesk.config import Settings
from dispatchdesk.models.job import ParsedDraft, TradeNeeded, Urgency
from dispatchdesk.services.openai_service import OpenAIService
from dispatchdesk.services.parser_service import WorkOrderParser, overall_confidence, score_fields
from dispatchdesk.services.retry import NO_RETRY, RetryPolicy

NOW = datetime(2026, 3, 10, 8, 30)
TEXT = "Emergency AC repair at 123 Main St, Miami, FL 33101 today, contact john@example.com 555-123-4567"


def llm_service(payload):
    service = OpenAIService(Settings(openai_api_key="sk-test"), retry_policy=NO_RETRY)
    service._get_chat_completion = AsyncMock(
        return_value=payload if isinstance(payload, str) or payload is None else json.dumps(payload)
    )
    return service


@pytest.mark.asyncio
async def test_uses_llm_result_when_available():
    service = llm_service({
        "title": "AC repair",
        "trade_needed": "plumber",
        "urgency": "Same Day",
        "address_text": "123 Main St, Miami, FL 33101",
        "budget_min": "$800",
        "budget_max": 500,
        "contact_phone": "555.123.4567",
        "contact_email": "john@example.com",
    })
    result = await WorkOrderParser(service).parse(TEXT, now=NOW)

    assert result.source == "openai"
    assert result.draft.title == "AC repair"
    assert result.draft.trade_needed == TradeNeeded.PLUMBING
    assert result.draft.urgency == Urgency.SAME_DAY
    assert result.draft.budget_min < result.draft.budget_max
    assert result.draft.contact_phone == "(555) 123-4567"


@pytest.mark.asyncio
async def test_falls_back_on_llm_error():
    result = await WorkOrderParser(llm_service(None)).parse(TEXT, now=NOW)
    assert result.source == "heuristic"
    assert result.draft.urgency == Urgency.EMERGENCY
    assert result.draft.contact_email == "john@example.com"


@pytest.mark.asyncio
async def test_falls_back_on_malformed_json():
    result = await WorkOrderParser(llm_service("not json at all")).parse(TEXT, now=NOW)
    assert result.source == "heuristic"


@pytest.mark.asyncio
async def test_falls_back_when_title_missing():
    result = await WorkOrderParser(llm_service({"description": "no title here"})).parse(TEXT, now=NOW)
    assert result.source == "heuristic"


@pytest.mark.asyncio
@pytest.mark.parametrize("bad_amount", ["NaN", "Infinity", "-Infinity", "sNaN"])
async def test_non_finite_budget_is_dropped(bad_amount):
    service = llm_service({"title": "AC repair", "budget_min": 200, "budget_max": bad_amount})
    result = await WorkOrderParser(service).parse(TEXT, now=NOW)
    assert result.source == "openai"
    assert result.draft.budget_min == 200
    assert result.draft.budget_max is None


@pytest.mark.asyncio
async def test_falls_back_when_draft_cannot_be_built():
    service = llm_service({"title": "AC repair"})
    with patch.object(service, "_to_draft", side_effect=ArithmeticError("bad number")):
        result = await WorkOrderParser(service).parse(TEXT, now=NOW)
    assert result.source == "heuristic"
    assert result.draft.urgency == Urgency.EMERGENCY


@pytest.mark.asyncio
async def test_heuristic_only_when_not_configured():
    service = OpenAIService(Settings())
    assert not service.enabled
    result = await WorkOrderParser(service).parse(TEXT, now=NOW)
    assert result.source == "heuristic"
    assert 0.0 < result.confidence < 1.0


@pytest.mark.asyncio
async def test_chat_completion_retries_then_gives_up():
    service = OpenAIService(
        Settings(openai_api_key="sk-test"), retry_policy=RetryPolicy(max_retries=2, initial_delay=0, jitter=0)
    )
    service.client = MagicMock()
    service.client.chat.completions.create.side_effect = RuntimeError("boom")
    assert await service.parse_work_order(TEXT) is None
    assert service.client.chat.completions.create.call_count == 3


def test_llm_source_scores_higher_than_heuristic():
    draft = ParsedDraft(title="AC not cooling", contact_email="a@b.co", contact_phone="(555) 123-4567")
    llm = overall_confidence(score_fields(draft, "openai"))
    heuristic = overall_confidence(score_fields(draft, "heuristic"))
    assert llm > heuristic


def test_address_with_state_and_zip_scores_high():
    draft = ParsedDraft(address_text="123 Main St, Miami, FL 33101")
    assert score_fields(draft, "openai")["address_text"] == 0.95
    assert score_fields(ParsedDraft(address_text="Main St"), "openai")["address_text"] == 0.4
