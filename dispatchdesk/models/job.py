"""
Job models for DispatchDesk
Defines the per-stage records of the intake pipeline:
raw text -> ParsedDraft -> ValidatedRequest -> Job
"""

import re
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

PHONE_PATTERN = re.compile(
    r"(?<!\d)(?:\+?1[\s.-]?)?\(?(\d{3})\)?[\s.-]?(\d{3})[\s.-]?(\d{4})(?!\d)"
)
EMAIL_PATTERN = re.compile(r"[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}", re.IGNORECASE)

STREET_SUFFIXES = (
    "street", "st", "avenue", "ave", "road", "rd", "boulevard", "blvd", "drive", "dr",
    "lane", "ln", "way", "court", "ct", "place", "pl", "parkway", "pkwy", "highway",
    "hwy", "terrace", "ter", "circle", "cir", "square", "sq", "trail", "trl",
)
_NUMBERED_STREET = re.compile(r"\b\d+[A-Za-z]?\s+[A-Za-z]")
_SUFFIXED_STREET = re.compile(
    r"\b[A-Za-z0-9]+\s+(?:" + "|".join(STREET_SUFFIXES) + r")\b\.?", re.IGNORECASE
)


class TradeNeeded(str, Enum):
    """Trades a work order can request"""
    HVAC = "HVAC"
    PLUMBING = "Plumbing"
    ELECTRICAL = "Electrical"
    HANDYMAN = "Handyman"
    FACILITIES_TECH = "Facilities Tech"
    OTHER = "Other"


class Urgency(str, Enum):
    """How soon the work is needed"""
    EMERGENCY = "emergency"
    SAME_DAY = "same_day"
    NEXT_DAY = "next_day"
    WITHIN_WEEK = "within_week"
    FLEXIBLE = "flexible"


class JobStatus(str, Enum):
    """Job lifecycle states"""
    PENDING = "pending"
    MATCHING = "matching"
    ASSIGNED = "assigned"
    COMPLETED = "completed"
    ARCHIVED = "archived"


OPEN_STATUSES = (JobStatus.PENDING, JobStatus.MATCHING, JobStatus.ASSIGNED)


def normalize_phone(value: Optional[str]) -> Optional[str]:
    """Return the first US phone number in value as (AAA) PPP-LLLL, or None."""
    if not value:
        return None
    match = PHONE_PATTERN.search(value)
    if not match:
        return None
    area, prefix, line = match.groups()
    return f"({area}) {prefix}-{line}"


def phone_to_e164(value: str) -> Optional[str]:
    """Convert a US phone number to +1AAAPPPLLLL."""
    match = PHONE_PATTERN.search(value or "")
    if not match:
        return None
    return "+1" + "".join(match.groups())


def has_street_token(address: Optional[str]) -> bool:
    """True when the address names a street (number + name, or name + suffix)."""
    if not address:
        return False
    return bool(_NUMBERED_STREET.search(address) or _SUFFIXED_STREET.search(address))


class SLAConfig(BaseModel):
    """Target minutes for each SLA stage"""
    dispatch_min: int = Field(..., gt=0)
    assign_min: int = Field(..., gt=0)
    arrival_min: int = Field(..., gt=0)
    completion_min: int = Field(..., gt=0)


class ResolvedLocation(BaseModel):
    """Coordinates attached to a job address"""
    lat: float
    lng: float
    city: Optional[str] = None
    state: Optional[str] = None
    is_fallback: bool = Field(False, description="User accepted the fallback location")


class ParsedDraft(BaseModel):
    """Best-effort structured record parsed from free text.

    Every field is always present; absent values are None.
    """
    title: str = Field("Work Order", description="Short job title")
    description: Optional[str] = None
    trade_needed: TradeNeeded = TradeNeeded.HVAC
    address_text: Optional[str] = None
    resolved_location: Optional[ResolvedLocation] = None
    scheduled_start: Optional[datetime] = None
    urgency: Urgency = Urgency.WITHIN_WEEK
    duration: Optional[str] = None
    budget_min: Optional[Decimal] = None
    budget_max: Optional[Decimal] = None
    pay_rate: Optional[str] = None
    contact_name: Optional[str] = None
    contact_phone: Optional[str] = None
    contact_email: Optional[str] = None


class ValidatedRequest(BaseModel):
    """A submission that passed field validation"""
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    trade_needed: TradeNeeded
    address_text: str = Field(..., min_length=1)
    scheduled_start: Optional[datetime] = None
    urgency: Urgency = Urgency.WITHIN_WEEK
    duration: Optional[str] = None
    budget_min: Optional[Decimal] = Field(None, ge=0)
    budget_max: Optional[Decimal] = Field(None, ge=0)
    pay_rate: Optional[str] = None
    contact_name: str = Field(..., min_length=1)
    contact_phone: str
    contact_email: str
    policy_id: Optional[str] = None
    required_certifications: List[str] = Field(default_factory=list)
    sla_config: Optional[SLAConfig] = None

    @field_validator("title", "contact_name", "address_text")
    @classmethod
    def _strip(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value

    @field_validator("address_text")
    @classmethod
    def _street_level(cls, value: str) -> str:
        if not has_street_token(value):
            raise ValueError("address must include a street (e.g. '123 Main St')")
        return value

    @field_validator("contact_phone")
    @classmethod
    def _phone(cls, value: str) -> str:
        normalized = normalize_phone(value)
        if not normalized:
            raise ValueError("Phone must be (555) 123-4567 or 555-123-4567")
        return normalized

    @field_validator("contact_email")
    @classmethod
    def _email(cls, value: str) -> str:
        value = value.strip()
        if not EMAIL_PATTERN.fullmatch(value):
            raise ValueError("Email must look like name@example.com")
        return value

    @model_validator(mode="after")
    def _budget_order(self) -> "ValidatedRequest":
        if self.budget_min is not None and self.budget_max is not None:
            if self.budget_min > self.budget_max:
                raise ValueError("budget_min must not exceed budget_max")
        return self

    @classmethod
    def from_draft(cls, draft: ParsedDraft, **extra: Any) -> "ValidatedRequest":
        """Validate a reviewed draft plus submission-only fields."""
        data = draft.model_dump(exclude={"resolved_location"})
        data.update(extra)
        return cls.model_validate(data)


class JobCreate(BaseModel):
    """Request body for POST /jobs"""
    org_id: str
    request: ValidatedRequest
    bypass_duplicates: bool = False
    accept_fallback_location: bool = False
    dispatch_immediately: bool = True
    idempotency_key: Optional[str] = None


class Job(BaseModel):
    """Persisted job"""
    id: str
    org_id: str
    created_at: datetime
    updated_at: Optional[datetime] = None
    created_by_user_id: Optional[str] = None
    idempotency_key: Optional[str] = None

    title: str
    description: Optional[str] = None
    trade_needed: TradeNeeded
    address_text: str
    lat: Optional[float] = None
    lng: Optional[float] = None
    city: Optional[str] = None
    state: Optional[str] = None
    location_is_fallback: bool = False
    scheduled_start: Optional[datetime] = None
    urgency: Urgency
    duration: Optional[str] = None
    budget_min: Optional[Decimal] = None
    budget_max: Optional[Decimal] = None
    pay_rate: Optional[str] = None
    contact_name: str
    contact_phone: str
    contact_email: str
    required_certifications: List[str] = Field(default_factory=list)

    status: JobStatus = JobStatus.PENDING
    assigned_tech_id: Optional[str] = None
    policy_id: Optional[str] = None
    sla_config: Optional[SLAConfig] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Job":
        return cls.model_validate(row)

    def to_row(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


class AssignRequest(BaseModel):
    """Request body for POST /jobs/{id}/assign"""
    technician_id: str = Field(..., min_length=1)


class CompleteRequest(BaseModel):
    """Request body for POST /jobs/{id}/complete"""
    rating: Optional[int] = Field(None, ge=1, le=5)
    notes: Optional[str] = None


class DuplicateCandidate(BaseModel):
    """An open job that may describe the same request"""
    job_id: str
    similarity_reason: str
    similarity: float = Field(..., ge=0.0, le=1.0)
    job_title: Optional[str] = None
    address_text: Optional[str] = None
    status: Optional[JobStatus] = None
    created_at: Optional[datetime] = None


class DuplicateCheckRequest(BaseModel):
    """Request body for POST /work-orders/check-duplicate"""
    address: str
    trade: TradeNeeded
    org_id: str
    exclude_id: Optional[str] = None


class ParseRequest(BaseModel):
    """Request body for POST /work-orders/parse"""
    raw_text: str


class ParseResult(BaseModel):
    """Parsed draft plus where it came from and how much to trust it"""
    draft: ParsedDraft
    source: str = Field(..., description="openai | heuristic")
    confidence: float = Field(..., ge=0.0, le=1.0)
    field_confidence: Dict[str, float] = Field(default_factory=dict)


class CreateJobResult(BaseModel):
    """Outcome of a job submission"""
    job: Job
    duplicate: bool = Field(False, description="An identical submission already created this job")
    dispatch_scheduled: bool = False
