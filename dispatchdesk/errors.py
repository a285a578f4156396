"""
Error taxonomy for DispatchDesk
Every error names the category the caller should react to
"""

from typing import Any, Dict, List, Optional


class DispatchDeskError(Exception):
    """Base class for business errors surfaced to callers"""
    category = "internal"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.category, "message": self.message}


class JobValidationError(DispatchDeskError):
    """Bad input shape; carries field-level messages"""
    category = "validation"
    status_code = 400

    def __init__(self, message: str, fields: Optional[Dict[str, str]] = None):
        super().__init__(message)
        self.fields = fields or {}

    @classmethod
    def from_pydantic(cls, exc) -> "JobValidationError":
        fields = {}
        for issue in exc.errors():
            path = ".".join(str(p) for p in issue.get("loc", ())) or "__root__"
            fields[path] = issue.get("msg", "invalid value")
        return cls("Validation failed", fields)

    def to_dict(self) -> Dict[str, Any]:
        return {**super().to_dict(), "fields": self.fields}


class GeocodeFailure(DispatchDeskError):
    """Address could not be resolved; the user must fix it or accept the fallback"""
    category = "geocode"
    status_code = 422

    def __init__(self, address: str, reason: str, fallback: Dict[str, float]):
        super().__init__(f"Unable to find address: {address}")
        self.address = address
        self.reason = reason
        self.fallback = fallback

    def to_dict(self) -> Dict[str, Any]:
        return {
            **super().to_dict(),
            "address": self.address,
            "reason": self.reason,
            "fallback": self.fallback,
            "choices": ["fix_address", "accept_fallback_location"],
        }


class DuplicateDetected(DispatchDeskError):
    """Open jobs look like the same request; the user must choose"""
    category = "duplicate"
    status_code = 409

    def __init__(self, candidates: List[Any]):
        super().__init__(f"{len(candidates)} possible duplicate job(s) found")
        self.candidates = candidates

    def to_dict(self) -> Dict[str, Any]:
        return {
            **super().to_dict(),
            "duplicates": [c.model_dump(mode="json") for c in self.candidates],
            "choices": ["view_existing", "bypass_duplicates", "cancel"],
        }


class InvalidTransition(DispatchDeskError):
    """Job state does not allow the requested transition"""
    category = "transition"
    status_code = 409

    def __init__(self, message: str, current_status: Optional[str] = None):
        super().__init__(message)
        self.current_status = current_status

    def to_dict(self) -> Dict[str, Any]:
        return {**super().to_dict(), "status": self.current_status}


class PreconditionFailed(InvalidTransition):
    """Transition requires something the job does not have"""

    def to_dict(self) -> Dict[str, Any]:
        return {**super().to_dict(), "reason": "precondition_failed"}


class UpstreamUnavailable(DispatchDeskError):
    """An external service (parser, geocoder, scorer, store) failed"""
    category = "upstream"
    status_code = 503

    def __init__(self, service: str, message: str):
        super().__init__(message)
        self.service = service

    def to_dict(self) -> Dict[str, Any]:
        return {**super().to_dict(), "service": self.service}


class JobNotFound(DispatchDeskError):
    category = "not_found"
    status_code = 404

    def __init__(self, job_id: str):
        super().__init__(f"Job {job_id} not found")


class TechnicianNotFound(DispatchDeskError):
    category = "not_found"
    status_code = 404

    def __init__(self, technician_id: str):
        super().__init__(f"Technician {technician_id} not found")


class Forbidden(DispatchDeskError):
    category = "forbidden"
    status_code = 403


class Unauthenticated(DispatchDeskError):
    """Caller must log in again"""
    category = "unauthenticated"
    status_code = 401


class OutreachNotFound(DispatchDeskError):
    category = "not_found"
    status_code = 404

    def __init__(self, outreach_id: str):
        super().__init__(f"Outreach {outreach_id} not found")
