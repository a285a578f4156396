"""
Tests for duplicate detection
"""

from datetime import datetime, timedelta, timezone

import pytest

from dispatchdesk.models.job import TradeNeeded
from dispatchdesk.services.duplicate_detector import (
    DuplicateDetector,
    address_similarity,
    normalize_address,
)
from tests.conftest import ORG_ID

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def job_row(job_id, address, **overrides):
    row = {
        "id": job_id,
        "org_id": ORG_ID,
        "title": f"Job {job_id}",
        "trade_needed": "HVAC",
        "address_text": address,
        "status": "pending",
        "created_at": (NOW - timedelta(days=2)).isoformat(),
    }
    row.update(overrides)
    return row


def test_normalize_address():
    assert normalize_address("123 N. Main St., Apt #4") == "123 north main street apartment 4"


@pytest.mark.parametrize("a,b,reason", [
    ("123 Main St", "123 Main Street", "exact_address"),
    ("123 Main St", "123 Main Street, Miami, FL 33101", "address_prefix"),
    ("1234 Biscayne Blvd Miami", "1234 Biscayne Blv Miami", "similar_address"),
])
def test_address_similarity_matches(a, b, reason):
    match = address_similarity(normalize_address(a), normalize_address(b))
    assert match is not None
    assert match[0] == reason


def test_different_house_numbers_do_not_match():
    assert address_similarity(normalize_address("1234 Biscayne Blvd"), normalize_address("1236 Biscayne Blvd")) is None


@pytest.mark.asyncio
async def test_st_vs_street_within_window(store):
    store.seed("jobs", job_row("job-1", "123 Main Street"))
    detector = DuplicateDetector(store)
    candidates = await detector.find_duplicates(ORG_ID, TradeNeeded.HVAC, "123 Main St", now=NOW)
    assert len(candidates) >= 1
    assert candidates[0].job_id == "job-1"


@pytest.mark.asyncio
async def test_scope_excludes_other_org_trade_closed_and_old_jobs(store):
    store.seed(
        "jobs",
        job_row("other-org", "123 Main Street", org_id="org-2"),
        job_row("other-trade", "123 Main Street", trade_needed="Plumbing"),
        job_row("archived", "123 Main Street", status="archived"),
        job_row("completed", "123 Main Street", status="completed"),
        job_row("old", "123 Main Street", created_at=(NOW - timedelta(days=45)).isoformat()),
    )
    candidates = await DuplicateDetector(store).find_duplicates(ORG_ID, TradeNeeded.HVAC, "123 Main St", now=NOW)
    assert candidates == []


@pytest.mark.asyncio
async def test_exclude_job_id(store):
    store.seed("jobs", job_row("job-1", "123 Main Street"))
    candidates = await DuplicateDetector(store).find_duplicates(
        ORG_ID, TradeNeeded.HVAC, "123 Main St", exclude_job_id="job-1", now=NOW
    )
    assert candidates == []


@pytest.mark.asyncio
async def test_short_address_is_not_checked(store):
    store.seed("jobs", job_row("job-1", "12 Elm"))
    assert await DuplicateDetector(store).find_duplicates(ORG_ID, TradeNeeded.HVAC, "12 Elm", now=NOW) == []


@pytest.mark.asyncio
async def test_at_most_five_candidates(store):
    store.seed("jobs", *[job_row(f"job-{i}", "123 Main Street") for i in range(8)])
    candidates = await DuplicateDetector(store).find_duplicates(ORG_ID, TradeNeeded.HVAC, "123 Main St", now=NOW)
    assert len(candidates) == 5
