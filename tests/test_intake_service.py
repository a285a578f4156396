"""
Tests for the submission pipeline ordering and gates
"""

from datetime import datetime, timezone

import pytest

from dispatchdesk.errors import DuplicateDetected, GeocodeFailure, JobValidationError
from dispatchdesk.models.dispatch import GeocodeResult
from dispatchdesk.models.job import JobCreate
from dispatchdesk.services.duplicate_detector import DuplicateDetector
from dispatchdesk.services.geocoder import FALLBACK_LOCATION
from dispatchdesk.services.intake_service import IntakeService
from dispatchdesk.services.job_lifecycle import JobLifecycleManager
from tests.conftest import ORG_ID, StubGeocoder, make_request


def intake(store, geocoder=None):
    lifecycle = JobLifecycleManager(store)
    return IntakeService(DuplicateDetector(store), geocoder or StubGeocoder(), lifecycle)


def submission(**flags):
    return JobCreate(org_id=ORG_ID, request=make_request(), dispatch_immediately=False, **flags)


@pytest.mark.asyncio
async def test_happy_path_creates_geocoded_job(store):
    geocoder = StubGeocoder()
    result = await intake(store, geocoder).submit(submission(), user_id="user-1")
    assert result.job.lat == 25.77
    assert result.job.city == "Miami"
    assert result.job.location_is_fallback is False
    assert result.job.created_by_user_id == "user-1"
    assert geocoder.calls == ["123 Main St, Miami, FL 33101"]


@pytest.mark.asyncio
async def test_duplicate_gate_blocks_before_geocoding(store):
    store.seed("jobs", {
        "id": "existing",
        "org_id": ORG_ID,
        "title": "AC",
        "trade_needed": "HVAC",
        "address_text": "123 Main Street, Miami, FL 33101",
        "status": "pending",
        "created_at": datetime.now(timezone.utc).isoformat(),
    })
    geocoder = StubGeocoder()
    with pytest.raises(DuplicateDetected) as exc:
        await intake(store, geocoder).submit(submission())
    assert exc.value.candidates[0].job_id == "existing"
    assert geocoder.calls == []
    assert len(store.rows("jobs")) == 1


@pytest.mark.asyncio
async def test_bypass_duplicates(store):
    store.seed("jobs", {
        "id": "existing",
        "org_id": ORG_ID,
        "trade_needed": "HVAC",
        "address_text": "123 Main Street, Miami, FL 33101",
        "status": "pending",
        "created_at": datetime.now(timezone.utc).isoformat(),
    })
    result = await intake(store).submit(submission(bypass_duplicates=True))
    assert result.job.id != "existing"


@pytest.mark.asyncio
async def test_geocode_failure_blocks_creation(store):
    geocoder = StubGeocoder(GeocodeResult.failure("provider_unavailable"))
    with pytest.raises(GeocodeFailure) as exc:
        await intake(store, geocoder).submit(submission())
    body = exc.value.to_dict()
    assert body["error"] == "geocode"
    assert body["fallback"] == {"lat": FALLBACK_LOCATION.lat, "lng": FALLBACK_LOCATION.lng}
    assert store.rows("jobs") == []


@pytest.mark.asyncio
async def test_accepted_fallback_is_recorded(store):
    geocoder = StubGeocoder(GeocodeResult.failure("not_found"))
    result = await intake(store, geocoder).submit(submission(accept_fallback_location=True))
    assert result.job.location_is_fallback is True
    assert (result.job.lat, result.job.lng) == (FALLBACK_LOCATION.lat, FALLBACK_LOCATION.lng)


def test_validate_collects_field_errors():
    with pytest.raises(JobValidationError) as exc:
        IntakeService.validate({
            "org_id": ORG_ID,
            "request": {
                "title": "Fix",
                "trade_needed": "HVAC",
                "address_text": "Miami",
                "contact_name": "Jo",
                "contact_phone": "12345",
                "contact_email": "not-an-email",
                "budget_min": 900,
                "budget_max": 100,
            },
        })
    fields = exc.value.fields
    assert "request.address_text" in fields
    assert "request.contact_phone" in fields
    assert "request.contact_email" in fields


def test_budget_order_is_enforced():
    with pytest.raises(JobValidationError):
        IntakeService.validate({"org_id": ORG_ID, "request": make_request().model_dump() | {"budget_min": 900, "budget_max": 100}})
