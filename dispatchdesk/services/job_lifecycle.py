"""
Job lifecycle manager for DispatchDesk
Owns the job state machine: every status write goes through here
"""

import asyncio
import hashlib
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Set

from dispatchdesk.errors import (
    DispatchDeskError,
    InvalidTransition,
    JobNotFound,
    OutreachNotFound,
    PreconditionFailed,
    TechnicianNotFound,
)
from dispatchdesk.models.dispatch import DispatchResult, OutreachRecord, OutreachResponse
from dispatchdesk.models.job import (
    OPEN_STATUSES,
    CreateJobResult,
    Job,
    JobStatus,
    ResolvedLocation,
    SLAConfig,
    TradeNeeded,
    Urgency,
    ValidatedRequest,
    phone_to_e164,
)
from dispatchdesk.services.audit_service import AuditService

logger = logging.getLogger(__name__)

IDEMPOTENCY_WINDOW = timedelta(hours=24)

DEFAULT_SLA_BY_URGENCY = {
    Urgency.EMERGENCY: SLAConfig(dispatch_min=15, assign_min=30, arrival_min=60, completion_min=240),
    Urgency.SAME_DAY: SLAConfig(dispatch_min=30, assign_min=60, arrival_min=120, completion_min=480),
    Urgency.NEXT_DAY: SLAConfig(dispatch_min=60, assign_min=120, arrival_min=240, completion_min=720),
    Urgency.WITHIN_WEEK: SLAConfig(dispatch_min=60, assign_min=240, arrival_min=480, completion_min=1440),
    Urgency.FLEXIBLE: SLAConfig(dispatch_min=120, assign_min=480, arrival_min=720, completion_min=2880),
}

CLOSED_STATUSES = (JobStatus.COMPLETED, JobStatus.ARCHIVED)


def default_sla(trade: TradeNeeded, urgency: Urgency) -> SLAConfig:
    """SLA targets from urgency; unclassified trades get twice the completion time."""
    sla = DEFAULT_SLA_BY_URGENCY.get(urgency, DEFAULT_SLA_BY_URGENCY[Urgency.WITHIN_WEEK]).model_copy()
    if trade == TradeNeeded.OTHER:
        sla.completion_min *= 2
    return sla


def idempotency_key_for(org_id: str, request: ValidatedRequest) -> str:
    scheduled = request.scheduled_start.isoformat() if request.scheduled_start else ""
    raw = f"{org_id}:{request.address_text}:{request.trade_needed.value}:{scheduled}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:32]


class JobLifecycleManager:
    """State transitions, their side effects, and background dispatch"""

    def __init__(self, store, orchestrator=None, audit: Optional[AuditService] = None):
        self.store = store
        self.orchestrator = orchestrator
        self.audit = audit or AuditService(store)
        self._tasks: Set[asyncio.Task] = set()

    # =====================
    # Creation and lookup
    # =====================
    async def create(
        self,
        request: ValidatedRequest,
        org_id: str,
        location: ResolvedLocation,
        user_id: Optional[str] = None,
        idempotency_key: Optional[str] = None,
        dispatch_immediately: bool = True,
    ) -> CreateJobResult:
        """
        Persist a job in pending.

        The caller has already passed the duplicate and geocode gates.
        A repeat of the same submission within 24 hours returns the
        existing job instead of creating another.
        """
        key = idempotency_key or idempotency_key_for(org_id, request)
        existing = await self._find_by_idempotency_key(key)
        if existing:
            logger.info(f"Idempotent replay for job {existing.id}")
            return CreateJobResult(job=existing, duplicate=True)

        now = datetime.now(timezone.utc)
        job = Job(
            id=str(uuid.uuid4()),
            org_id=org_id,
            created_at=now,
            updated_at=now,
            created_by_user_id=user_id,
            idempotency_key=key,
            **request.model_dump(exclude={"sla_config"}),
            lat=location.lat,
            lng=location.lng,
            city=location.city,
            state=location.state,
            location_is_fallback=location.is_fallback,
            status=JobStatus.PENDING,
            sla_config=request.sla_config or default_sla(request.trade_needed, request.urgency),
        )
        rows = await self.store.insert("jobs", job.to_row())
        if rows:
            job = Job.from_row(rows[0])
        logger.info(f"Created job {job.id}: {job.title} ({job.trade_needed.value}, {job.urgency.value})")

        if job.policy_id:
            await self._link_compliance_policy(job)

        await self.audit.log(
            "job_created", "job", job.id, org_id=org_id, actor_id=user_id,
            details={
                "trade": job.trade_needed.value,
                "urgency": job.urgency.value,
                "location_is_fallback": job.location_is_fallback,
                "contact_phone_e164": phone_to_e164(job.contact_phone),
                "dispatch_immediately": dispatch_immediately,
            },
        )

        scheduled = False
        if dispatch_immediately and self.orchestrator is not None:
            self.schedule_dispatch(job)
            scheduled = True
        return CreateJobResult(job=job, dispatch_scheduled=scheduled)

    async def get(self, job_id: str) -> Job:
        rows = await self.store.select("jobs", [("id", "eq", job_id)], limit=1)
        if not rows:
            raise JobNotFound(job_id)
        return Job.from_row(rows[0])

    # =====================
    # Transitions
    # =====================
    async def assign(self, job_id: str, technician_id: str, actor_id: Optional[str] = None) -> Job:
        """Assign from pending, matching or assigned; re-assignment overwrites."""
        job = await self.get(job_id)
        if job.status in CLOSED_STATUSES:
            raise InvalidTransition(f"Cannot assign a {job.status.value} job", job.status.value)
        techs = await self.store.select("technicians", [("id", "eq", technician_id)], limit=1)
        if not techs:
            raise TechnicianNotFound(technician_id)

        previous = job.assigned_tech_id
        job = await self._transition(job, JobStatus.ASSIGNED, {"assigned_tech_id": technician_id})
        await self.audit.log(
            "job_assigned", "job", job.id, org_id=job.org_id, actor_id=actor_id,
            details={"technician_id": technician_id, "previous_technician_id": previous},
        )
        return job

    async def unassign(self, job_id: str, actor_id: Optional[str] = None) -> Job:
        job = await self.get(job_id)
        if job.status == JobStatus.PENDING:
            return job
        if job.status != JobStatus.ASSIGNED:
            raise InvalidTransition(f"Cannot unassign a {job.status.value} job", job.status.value)

        previous = job.assigned_tech_id
        job = await self._transition(job, JobStatus.PENDING, {"assigned_tech_id": None})
        await self.audit.log(
            "job_unassigned", "job", job.id, org_id=job.org_id, actor_id=actor_id,
            details={"previous_technician_id": previous},
        )
        return job

    async def complete(
        self,
        job_id: str,
        rating: Optional[int] = None,
        notes: Optional[str] = None,
        actor_id: Optional[str] = None,
    ) -> Job:
        job = await self.get(job_id)
        if job.status in CLOSED_STATUSES:
            raise InvalidTransition(f"Job is already {job.status.value}", job.status.value)
        if not job.assigned_tech_id:
            raise PreconditionFailed("Cannot complete a job without an assigned technician", job.status.value)

        job = await self._transition(job, JobStatus.COMPLETED, {})
        if rating is not None:
            await self._record_rating(job, rating, notes)
        await self.audit.log(
            "job_completed", "job", job.id, org_id=job.org_id, actor_id=actor_id,
            details={"technician_id": job.assigned_tech_id, "rating": rating},
        )
        return job

    async def archive(self, job_id: str, actor_id: Optional[str] = None) -> Job:
        job = await self.get(job_id)
        if job.status == JobStatus.ARCHIVED:
            raise InvalidTransition("Job is already archived", job.status.value)
        previous_status = job.status.value
        job = await self._transition(job, JobStatus.ARCHIVED, {"assigned_tech_id": None})
        await self.audit.log(
            "job_archived", "job", job.id, org_id=job.org_id, actor_id=actor_id,
            details={"previous_status": previous_status},
        )
        return job

    async def delete(self, job_id: str, actor_id: Optional[str] = None) -> None:
        """Hard delete; outreach records go with the job."""
        job = await self.get(job_id)
        await self.store.delete("jobs", [("id", "eq", job.id)])
        logger.info(f"Deleted job {job.id}")
        try:
            await self.store.delete("outreach_records", [("job_id", "eq", job.id)])
        except DispatchDeskError as e:
            logger.warning(f"Job {job.id} deleted but its outreach records were not: {e.message}")
        await self.audit.log("job_deleted", "job", job.id, org_id=job.org_id, actor_id=actor_id)

    async def mark_matching(self, job_id: str) -> Job:
        """pending -> matching once outreach went out; no-op otherwise."""
        job = await self.get(job_id)
        if job.status != JobStatus.PENDING:
            return job
        return await self._transition(job, JobStatus.MATCHING, {})

    async def record_response(
        self,
        job_id: str,
        outreach_id: str,
        response: OutreachResponse,
        actor_id: Optional[str] = None,
    ) -> OutreachRecord:
        rows = await self.store.select(
            "outreach_records", [("id", "eq", outreach_id), ("job_id", "eq", job_id)], limit=1
        )
        if not rows:
            raise OutreachNotFound(outreach_id)
        changes = {"replied_at": datetime.now(timezone.utc).isoformat(), "response": response.value}
        updated = await self.store.update("outreach_records", changes, [("id", "eq", outreach_id)])
        record = OutreachRecord.from_row(updated[0] if updated else {**rows[0], **changes})
        await self.audit.log(
            "outreach_response", "job", job_id, actor_id=actor_id,
            details={"outreach_id": outreach_id, "technician_id": record.technician_id, "response": response.value},
        )
        return record

    # =====================
    # Dispatch
    # =====================
    async def run_dispatch(self, job: Job) -> DispatchResult:
        """Dispatch now and move the job to matching if anyone was reached."""
        if self.orchestrator is None:
            raise InvalidTransition("Dispatch is not configured", job.status.value)
        if job.status in CLOSED_STATUSES:
            raise InvalidTransition(f"Cannot dispatch a {job.status.value} job", job.status.value)

        result = await self.orchestrator.dispatch(job)
        if result.warm_sent + result.cold_sent > 0:
            await self.mark_matching(job.id)
        await self.audit.log(
            "job_dispatched", "job", job.id, org_id=job.org_id,
            details={
                "total_recipients": result.total_recipients,
                "warm_sent": result.warm_sent,
                "cold_sent": result.cold_sent,
                "undelivered": result.undelivered,
            },
        )
        return result

    async def list_candidates(self, job_id: str) -> List[Dict[str, Any]]:
        job = await self.get(job_id)
        if self.orchestrator is None:
            return []
        return await self.orchestrator.list_candidates(job)

    def schedule_dispatch(self, job: Job) -> asyncio.Task:
        task = asyncio.create_task(self._dispatch_in_background(job))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for in-flight background dispatches."""
        if self._tasks:
            logger.info(f"Waiting for {len(self._tasks)} dispatch task(s)")
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _dispatch_in_background(self, job: Job) -> None:
        try:
            await self.run_dispatch(job)
        except DispatchDeskError as e:
            logger.error(f"Background dispatch failed for job {job.id}; left {job.status.value}: {e.message}")
        except Exception:
            logger.exception(f"Unexpected error dispatching job {job.id}")

    # =====================
    # Helpers
    # =====================
    async def _transition(self, job: Job, new_status: JobStatus, changes: Dict[str, Any]) -> Job:
        """Write the new status only if the job is still in the status we read."""
        payload = {**changes, "status": new_status.value, "updated_at": datetime.now(timezone.utc).isoformat()}
        rows = await self.store.update(
            "jobs", payload, [("id", "eq", job.id), ("status", "eq", job.status.value)]
        )
        if not rows:
            current = await self.get(job.id)
            raise InvalidTransition(
                f"Job {job.id} changed to {current.status.value} concurrently", current.status.value
            )
        logger.info(f"Job {job.id}: {job.status.value} -> {new_status.value}")
        return Job.from_row(rows[0])

    async def _find_by_idempotency_key(self, key: str) -> Optional[Job]:
        since = datetime.now(timezone.utc) - IDEMPOTENCY_WINDOW
        rows = await self.store.select(
            "jobs",
            [
                ("idempotency_key", "eq", key),
                ("status", "in", [s.value for s in OPEN_STATUSES]),
                ("created_at", "gte", since.isoformat()),
            ],
            limit=1,
        )
        return Job.from_row(rows[0]) if rows else None

    async def _link_compliance_policy(self, job: Job) -> None:
        try:
            await self.store.update("compliance_policies", {"job_id": job.id}, [("id", "eq", job.policy_id)])
        except DispatchDeskError as e:
            logger.warning(f"Failed to link policy {job.policy_id} to job {job.id}: {e.message}")

    async def _record_rating(self, job: Job, rating: int, notes: Optional[str]) -> None:
        """Best effort; a completed job stays completed if the rating write fails."""
        tech_id = job.assigned_tech_id
        try:
            await self.store.insert(
                "job_ratings",
                {
                    "job_id": job.id,
                    "technician_id": tech_id,
                    "rating": rating,
                    "notes": notes,
                    "created_at": datetime.now(timezone.utc).isoformat(),
                },
            )
            techs = await self.store.select("technicians", [("id", "eq", tech_id)], limit=1)
            if techs:
                current = float(techs[0].get("rating") or 0)
                total = int(techs[0].get("total_jobs") or 0)
                new_total = total + 1
                await self.store.update(
                    "technicians",
                    {"rating": round((current * total + rating) / new_total, 1), "total_jobs": new_total},
                    [("id", "eq", tech_id)],
                )
        except DispatchDeskError as e:
            logger.warning(f"Failed to record rating for job {job.id}: {e.message}")
