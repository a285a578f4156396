"""
Intake service for DispatchDesk
Runs a submission through its gates in order:
validate -> duplicate check -> geocode -> create -> dispatch
"""

import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError

from dispatchdesk.errors import DuplicateDetected, GeocodeFailure, JobValidationError
from dispatchdesk.models.job import CreateJobResult, JobCreate, ResolvedLocation
from dispatchdesk.services.duplicate_detector import DuplicateDetector
from dispatchdesk.services.geocoder import FALLBACK_LOCATION, GeocoderAdapter
from dispatchdesk.services.job_lifecycle import JobLifecycleManager

logger = logging.getLogger(__name__)


class IntakeService:
    """Submission pipeline; nothing is persisted unless every gate passes"""

    def __init__(self, detector: DuplicateDetector, geocoder: GeocoderAdapter, lifecycle: JobLifecycleManager):
        self.detector = detector
        self.geocoder = geocoder
        self.lifecycle = lifecycle

    @staticmethod
    def validate(payload: Dict[str, Any]) -> JobCreate:
        try:
            return JobCreate.model_validate(payload)
        except ValidationError as e:
            raise JobValidationError.from_pydantic(e) from e

    async def submit(self, submission: JobCreate, user_id: Optional[str] = None) -> CreateJobResult:
        request = submission.request

        if not submission.bypass_duplicates:
            duplicates = await self.detector.find_duplicates(
                submission.org_id, request.trade_needed, request.address_text
            )
            if duplicates:
                raise DuplicateDetected(duplicates)
        else:
            logger.info(f"Duplicate check bypassed for '{request.address_text}'")

        location = await self._resolve_location(request.address_text, submission.accept_fallback_location)

        return await self.lifecycle.create(
            request,
            submission.org_id,
            location,
            user_id=user_id,
            idempotency_key=submission.idempotency_key,
            dispatch_immediately=submission.dispatch_immediately,
        )

    async def _resolve_location(self, address_text: str, accept_fallback: bool) -> ResolvedLocation:
        result = await self.geocoder.geocode(address_text)
        if result.success:
            return ResolvedLocation(lat=result.lat, lng=result.lng, city=result.city, state=result.state)
        if accept_fallback:
            logger.warning(f"Using fallback location for '{address_text}' ({result.reason}) at user request")
            return FALLBACK_LOCATION
        raise GeocodeFailure(
            address_text,
            result.reason or "not_found",
            {"lat": FALLBACK_LOCATION.lat, "lng": FALLBACK_LOCATION.lng},
        )
