"""
Compliance/matching scorer client for DispatchDesk
Ranks candidate technicians for a job, either through the compliance
policy RPC or by trade and proximity
"""

import logging
import math
from typing import Any, Dict, List, Optional

from dispatchdesk.errors import DispatchDeskError, UpstreamUnavailable
from dispatchdesk.models.dispatch import CandidateScore
from dispatchdesk.models.job import Job

logger = logging.getLogger(__name__)

PUBLIC_POOL_ORG_ID = "00000000-0000-0000-0000-000000000001"
EARTH_RADIUS_MILES = 3959.0


def haversine_miles(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance in miles."""
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    return EARTH_RADIUS_MILES * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def distance_to(job: Job, technician: Dict[str, Any]) -> Optional[float]:
    if job.lat is None or job.lng is None:
        return None
    if technician.get("lat") is None or technician.get("lng") is None:
        return None
    return round(haversine_miles(job.lat, job.lng, float(technician["lat"]), float(technician["lng"])), 1)


class ComplianceScorer:
    """Consumes the external scorer; the scoring rules live server-side"""

    def __init__(self, store, radius_miles: float = 50.0):
        self.store = store
        self.radius_miles = radius_miles

    async def rank(self, job: Job, limit: Optional[int] = None) -> List[CandidateScore]:
        """Candidates best first. Raises UpstreamUnavailable when the scorer fails."""
        try:
            if job.policy_id:
                candidates = await self._rank_by_policy(job)
            else:
                candidates = await self._rank_by_proximity(job)
        except DispatchDeskError as e:
            raise UpstreamUnavailable("scorer", f"Candidate scoring failed: {e.message}") from e

        candidates.sort(key=lambda c: c.score, reverse=True)
        logger.info(f"Scored {len(candidates)} candidate(s) for job {job.id}")
        return candidates[:limit] if limit else candidates

    async def _rank_by_policy(self, job: Job) -> List[CandidateScore]:
        rows = await self.store.rpc("technician_meets_policy", {"p_policy_id": job.policy_id})
        candidates = []
        for row in rows:
            if not row.get("technician_id"):
                continue
            candidates.append(
                CandidateScore(
                    technician_id=str(row["technician_id"]),
                    score=float(row.get("score") or 0),
                    passed_requirements=row.get("passed_requirements") or [],
                    failed_requirements=row.get("failed_requirements") or [],
                )
            )
        return candidates

    async def _rank_by_proximity(self, job: Job) -> List[CandidateScore]:
        if job.lat is None or job.lng is None:
            logger.warning(f"Job {job.id} has no coordinates; no proximity candidates")
            return []
        technicians = await self.store.select(
            "technicians",
            [
                ("org_id", "in", [job.org_id, PUBLIC_POOL_ORG_ID]),
                ("trade_needed", "eq", job.trade_needed.value),
                ("is_available", "eq", True),
                ("unsubscribed_at", "is_null", None),
            ],
        )
        candidates = []
        for tech in technicians:
            distance = distance_to(job, tech)
            if distance is None or distance > self.radius_miles:
                continue
            proximity = 1 - distance / self.radius_miles if self.radius_miles else 0.0
            rating = float(tech.get("rating") or 0) / 5
            candidates.append(
                CandidateScore(
                    technician_id=str(tech["id"]),
                    score=round(0.8 * proximity + 0.2 * rating, 4),
                    distance_miles=distance,
                )
            )
        return candidates
