"""
Dispatch models for DispatchDesk
Outreach records, scorer output and geocoding results
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class OutreachChannel(str, Enum):
    """Delivery route for one outreach"""
    WARM = "warm"
    COLD = "cold"


class OutreachResponse(str, Enum):
    """Technician reply to an outreach"""
    INTERESTED = "interested"
    DECLINED = "declined"


class OutreachRecord(BaseModel):
    """One notification to one technician for one job"""
    id: str
    job_id: str
    technician_id: str
    channel: OutreachChannel
    score: Optional[float] = None
    created_at: datetime
    sent_at: Optional[datetime] = None
    opened_at: Optional[datetime] = None
    replied_at: Optional[datetime] = None
    response: Optional[OutreachResponse] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "OutreachRecord":
        return cls.model_validate(row)


class CandidateScore(BaseModel):
    """Ranked technician returned by the compliance/matching scorer"""
    technician_id: str
    score: float
    passed_requirements: List[Any] = Field(default_factory=list)
    failed_requirements: List[Any] = Field(default_factory=list)
    distance_miles: Optional[float] = None


class DispatchResult(BaseModel):
    """Outcome of one dispatch run"""
    job_id: str
    total_recipients: int = 0
    warm_sent: int = 0
    cold_sent: int = 0
    undelivered: int = 0
    records: List[OutreachRecord] = Field(default_factory=list)
    message: str = ""


class RespondRequest(BaseModel):
    """Request body for POST /jobs/{id}/respond"""
    outreach_id: str
    response: OutreachResponse


class GeocodeResult(BaseModel):
    """Explicit geocoding outcome; failures never carry coordinates"""
    success: bool
    lat: Optional[float] = None
    lng: Optional[float] = None
    city: Optional[str] = None
    state: Optional[str] = None
    provider: Optional[str] = None
    reason: Optional[str] = None

    @classmethod
    def failure(cls, reason: str) -> "GeocodeResult":
        return cls(success=False, reason=reason)
