"""
Tests for candidate scoring, outreach and background dispatch
"""

from unittest.mock import AsyncMock

import httpx
import pytest

from dispatchdesk.errors import InvalidTransition, UpstreamUnavailable
from dispatchdesk.models.dispatch import OutreachChannel, OutreachRecord
from dispatchdesk.models.job import JobStatus, ResolvedLocation
from dispatchdesk.services.compliance_service import PUBLIC_POOL_ORG_ID, ComplianceScorer, haversine_miles
from dispatchdesk.services.dispatch_orchestrator import DispatchOrchestrator, default_channel_policy
from dispatchdesk.services.job_lifecycle import JobLifecycleManager
from dispatchdesk.services.notifier import EmailNotifier
from tests.conftest import ORG_ID, StubNotifier, make_request, technician_row

LOCATION = ResolvedLocation(lat=25.77, lng=-80.19, city="Miami", state="FL")


def build(store, notifier=None, top_k=5):
    orchestrator = DispatchOrchestrator(store, ComplianceScorer(store), notifier=notifier, top_k=top_k)
    return orchestrator, JobLifecycleManager(store, orchestrator)


async def create_job(lifecycle, **overrides):
    result = await lifecycle.create(make_request(**overrides), ORG_ID, LOCATION, dispatch_immediately=False)
    return result.job


def test_haversine_miami_to_fort_lauderdale():
    assert 20 < haversine_miles(25.7617, -80.1918, 26.1224, -80.1373) < 30


def test_default_channel_policy():
    assert default_channel_policy({"signed_up": True}, False) == OutreachChannel.WARM
    assert default_channel_policy({"signed_up": False}, True) == OutreachChannel.WARM
    assert default_channel_policy({"signed_up": False}, False) == OutreachChannel.COLD


@pytest.mark.asyncio
async def test_proximity_ranking_filters_scope(store):
    store.seed(
        "technicians",
        technician_row("near", lat=25.771, lng=-80.191),
        technician_row("pool", org_id=PUBLIC_POOL_ORG_ID, lat=25.80, lng=-80.25),
        technician_row("far", lat=28.54, lng=-81.38),
        technician_row("busy", is_available=False),
        technician_row("plumber", trade_needed="Plumbing"),
        technician_row("foreign", org_id="org-2"),
        technician_row("gone", unsubscribed_at="2026-01-01T00:00:00+00:00"),
    )
    _, lifecycle = build(store)
    job = await create_job(lifecycle)
    ranked = await ComplianceScorer(store).rank(job)
    assert [c.technician_id for c in ranked] == ["near", "pool"]
    assert ranked[0].distance_miles < ranked[1].distance_miles


@pytest.mark.asyncio
async def test_policy_ranking_uses_rpc(store):
    store.rpc_results["technician_meets_policy"] = [
        {"technician_id": "t1", "score": 0.4, "passed_requirements": ["license"], "failed_requirements": []},
        {"technician_id": "t2", "score": 0.9, "passed_requirements": [], "failed_requirements": ["insurance"]},
    ]
    _, lifecycle = build(store)
    job = await create_job(lifecycle, policy_id="policy-1")
    ranked = await ComplianceScorer(store).rank(job, limit=1)
    assert [c.technician_id for c in ranked] == ["t2"]
    assert store.rpc_calls == [("technician_meets_policy", {"p_policy_id": "policy-1"})]


@pytest.mark.asyncio
async def test_scorer_failure_surfaces_as_upstream(store):
    _, lifecycle = build(store)
    job = await create_job(lifecycle)
    store.fail_tables.add("technicians")
    with pytest.raises(UpstreamUnavailable) as exc:
        await ComplianceScorer(store).rank(job)
    assert exc.value.service == "scorer"


@pytest.mark.asyncio
async def test_dispatch_creates_outreach_and_moves_to_matching(store):
    store.seed(
        "technicians",
        technician_row("warm-tech"),
        technician_row("cold-tech", signed_up=False, lat=25.79, lng=-80.21),
    )
    notifier = StubNotifier()
    _, lifecycle = build(store, notifier)
    job = await create_job(lifecycle)

    result = await lifecycle.run_dispatch(job)

    assert result.total_recipients == 2
    assert (result.warm_sent, result.cold_sent, result.undelivered) == (1, 1, 0)
    assert all(r.sent_at is not None for r in result.records)
    assert {r["channel"] for r in store.rows("outreach_records")} == {"warm", "cold"}
    assert (await lifecycle.get(job.id)).status == JobStatus.MATCHING


@pytest.mark.asyncio
async def test_top_k_and_no_repeat_contacts(store):
    store.seed("technicians", *[technician_row(f"t{i}", lat=25.77 + i * 0.01) for i in range(4)])
    _, lifecycle = build(store, StubNotifier(), top_k=2)
    job = await create_job(lifecycle)

    first = await lifecycle.run_dispatch(job)
    second = await lifecycle.run_dispatch(await lifecycle.get(job.id))
    third = await lifecycle.run_dispatch(await lifecycle.get(job.id))

    assert first.total_recipients == 2
    assert second.total_recipients == 2
    assert third.total_recipients == 0
    contacted = [r["technician_id"] for r in store.rows("outreach_records")]
    assert len(contacted) == len(set(contacted)) == 4


@pytest.mark.asyncio
async def test_failed_delivery_leaves_sent_at_empty_and_job_pending(store):
    store.seed("technicians", technician_row("t1"))
    _, lifecycle = build(store, StubNotifier(deliver=False))
    job = await create_job(lifecycle)

    result = await lifecycle.run_dispatch(job)

    assert result.undelivered == 1
    assert store.rows("outreach_records")[0].get("sent_at") is None
    assert (await lifecycle.get(job.id)).status == JobStatus.PENDING


@pytest.mark.asyncio
async def test_background_dispatch_failure_keeps_job_pending(store):
    orchestrator, lifecycle = build(store, StubNotifier())
    orchestrator.dispatch = AsyncMock(side_effect=UpstreamUnavailable("scorer", "down"))

    result = await lifecycle.create(make_request(), ORG_ID, LOCATION)
    assert result.dispatch_scheduled
    await lifecycle.drain()

    orchestrator.dispatch.assert_awaited_once()
    assert (await lifecycle.get(result.job.id)).status == JobStatus.PENDING


@pytest.mark.asyncio
async def test_cannot_dispatch_closed_job(store):
    _, lifecycle = build(store)
    job = await create_job(lifecycle)
    job = await lifecycle.archive(job.id)
    with pytest.raises(InvalidTransition):
        await lifecycle.run_dispatch(job)


@pytest.mark.asyncio
async def test_list_candidates_reports_distance_and_reply(store):
    store.seed("technicians", technician_row("t1"))
    _, lifecycle = build(store, StubNotifier())
    job = await create_job(lifecycle)
    await lifecycle.run_dispatch(job)

    candidates = await lifecycle.list_candidates(job.id)
    assert len(candidates) == 1
    assert candidates[0]["id"] == "t1"
    assert candidates[0]["distance"] is not None
    assert candidates[0]["channel"] == "warm"
    assert candidates[0]["response"] is None


@pytest.mark.asyncio
async def test_email_notifier_posts_to_sendgrid(store):
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(202)

    _, lifecycle = build(store)
    job = await create_job(lifecycle)
    record = OutreachRecord(
        id="o-1", job_id=job.id, technician_id="t1", channel="warm", created_at="2026-03-10T00:00:00+00:00"
    )
    notifier = EmailNotifier("sg-key", "dispatch@example.com", transport=httpx.MockTransport(handler))

    assert await notifier.send(job, technician_row("t1"), record)
    assert requests[0].headers["Authorization"] == "Bearer sg-key"
    assert b"t1@example.com" in requests[0].content


@pytest.mark.asyncio
async def test_email_notifier_reports_provider_errors(store):
    _, lifecycle = build(store)
    job = await create_job(lifecycle)
    record = OutreachRecord(
        id="o-1", job_id=job.id, technician_id="t1", channel="cold", created_at="2026-03-10T00:00:00+00:00"
    )
    notifier = EmailNotifier("sg-key", "dispatch@example.com", transport=httpx.MockTransport(lambda r: httpx.Response(500)))
    assert not await notifier.send(job, technician_row("t1"), record)
    assert not await EmailNotifier(None, "dispatch@example.com").send(job, technician_row("t1"), record)
