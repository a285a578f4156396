"""
Dispatch orchestrator for DispatchDesk
Picks candidate technicians for a job, records outreach and hands each
record to the notifier
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from dispatchdesk.models.dispatch import DispatchResult, OutreachChannel, OutreachRecord
from dispatchdesk.models.job import Job
from dispatchdesk.services.compliance_service import ComplianceScorer, distance_to
from dispatchdesk.services.notifier import Notifier

logger = logging.getLogger(__name__)

# (technician row, previously contacted by this org) -> channel
ChannelPolicy = Callable[[Dict[str, Any], bool], OutreachChannel]


def default_channel_policy(technician: Dict[str, Any], previously_contacted: bool) -> OutreachChannel:
    """Warm for signed-up technicians or ones the org already reached, cold otherwise."""
    if technician.get("signed_up") or previously_contacted:
        return OutreachChannel.WARM
    return OutreachChannel.COLD


class DispatchOrchestrator:
    """Creates outreach records and stamps sent_at; never touches job status"""

    def __init__(
        self,
        store,
        scorer: ComplianceScorer,
        notifier: Optional[Notifier] = None,
        channel_policy: ChannelPolicy = default_channel_policy,
        top_k: int = 5,
    ):
        self.store = store
        self.scorer = scorer
        self.notifier = notifier
        self.channel_policy = channel_policy
        self.top_k = top_k

    async def dispatch(self, job: Job) -> DispatchResult:
        """
        Notify the top-K not-yet-contacted candidates for a job.

        Scorer and persistence failures propagate so the job stays
        pending for a manual re-trigger.
        """
        existing = await self.store.select("outreach_records", [("job_id", "eq", job.id)])
        contacted = {row["technician_id"] for row in existing}

        candidates = await self.scorer.rank(job)
        fresh = [c for c in candidates if c.technician_id not in contacted][: self.top_k]
        if not fresh:
            logger.info(f"No new candidates to dispatch for job {job.id}")
            return DispatchResult(job_id=job.id, message="No new candidates found")

        ids = [c.technician_id for c in fresh]
        technicians = {
            str(t["id"]): t for t in await self.store.select("technicians", [("id", "in", ids)])
        }
        prior = await self.store.select(
            "outreach_records", [("org_id", "eq", job.org_id), ("technician_id", "in", ids)]
        )
        known_to_org = {row["technician_id"] for row in prior}

        now = datetime.now(timezone.utc)
        rows = []
        for candidate in fresh:
            tech = technicians.get(candidate.technician_id)
            if tech is None:
                logger.warning(f"Scored technician {candidate.technician_id} not found; skipping")
                continue
            rows.append({
                "id": str(uuid.uuid4()),
                "job_id": job.id,
                "org_id": job.org_id,
                "technician_id": candidate.technician_id,
                "channel": self.channel_policy(tech, candidate.technician_id in known_to_org).value,
                "score": candidate.score,
                "created_at": now.isoformat(),
            })
        if not rows:
            return DispatchResult(job_id=job.id, message="No reachable candidates found")

        records = [OutreachRecord.from_row(r) for r in await self.store.insert("outreach_records", rows)]

        result = DispatchResult(job_id=job.id, total_recipients=len(records), records=records)
        for record in records:
            delivered = False
            if self.notifier is not None:
                delivered = await self.notifier.send(job, technicians[record.technician_id], record)
            if not delivered:
                result.undelivered += 1
                continue
            sent_at = datetime.now(timezone.utc)
            await self.store.update("outreach_records", {"sent_at": sent_at.isoformat()}, [("id", "eq", record.id)])
            record.sent_at = sent_at
            if record.channel == OutreachChannel.WARM:
                result.warm_sent += 1
            else:
                result.cold_sent += 1

        result.message = (
            f"Dispatched to {result.total_recipients} technician(s): "
            f"{result.warm_sent} warm, {result.cold_sent} cold, {result.undelivered} undelivered"
        )
        logger.info(f"[Dispatch] job {job.id}: {result.message}")
        return result

    async def list_candidates(self, job: Job) -> List[Dict[str, Any]]:
        """Technicians contacted for a job, with distance and reply state."""
        records = [
            OutreachRecord.from_row(r)
            for r in await self.store.select(
                "outreach_records", [("job_id", "eq", job.id)], order_by="created_at"
            )
        ]
        if not records:
            return []
        technicians = {
            str(t["id"]): t
            for t in await self.store.select("technicians", [("id", "in", [r.technician_id for r in records])])
        }

        candidates = []
        for record in records:
            tech = technicians.get(record.technician_id, {})
            candidates.append({
                "id": record.technician_id,
                "outreach_id": record.id,
                "name": tech.get("full_name"),
                "trade": tech.get("trade_needed"),
                "distance": distance_to(job, tech),
                "rating": tech.get("rating"),
                "location": {
                    "lat": tech.get("lat"),
                    "lng": tech.get("lng"),
                    "city": tech.get("city"),
                    "state": tech.get("state"),
                },
                "channel": record.channel.value,
                "score": record.score,
                "sent_at": record.sent_at.isoformat() if record.sent_at else None,
                "replied_at": record.replied_at.isoformat() if record.replied_at else None,
                "response": record.response.value if record.response else None,
                "signed_up": bool(tech.get("signed_up")),
            })
        return candidates
