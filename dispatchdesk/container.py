"""
Service wiring for DispatchDesk
Builds every service once at startup and hands them to the app
"""

import logging
from dataclasses import dataclass

from dispatchdesk.config import Settings
from dispatchdesk.services.audit_service import AuditService
from dispatchdesk.services.compliance_service import ComplianceScorer
from dispatchdesk.services.dispatch_orchestrator import DispatchOrchestrator
from dispatchdesk.services.duplicate_detector import DuplicateDetector
from dispatchdesk.services.geocoder import GeocoderAdapter, build_geocoder
from dispatchdesk.services.intake_service import IntakeService
from dispatchdesk.services.job_lifecycle import JobLifecycleManager
from dispatchdesk.services.notifier import EmailNotifier
from dispatchdesk.services.openai_service import OpenAIService
from dispatchdesk.services.parser_service import WorkOrderParser
from dispatchdesk.services.supabase_service import SupabaseService

logger = logging.getLogger(__name__)


@dataclass
class Container:
    settings: Settings
    store: object
    parser: WorkOrderParser
    geocoder: GeocoderAdapter
    detector: DuplicateDetector
    lifecycle: JobLifecycleManager
    intake: IntakeService


def assemble(settings: Settings, store, parser: WorkOrderParser, geocoder: GeocoderAdapter, notifier=None) -> Container:
    """Wire the pipeline around an already-built store, parser, geocoder and notifier."""
    detector = DuplicateDetector(store, window_days=settings.duplicate_window_days)
    orchestrator = DispatchOrchestrator(
        store,
        ComplianceScorer(store, radius_miles=settings.dispatch_radius_miles),
        notifier=notifier,
        top_k=settings.dispatch_top_k,
    )
    lifecycle = JobLifecycleManager(store, orchestrator, AuditService(store))
    return Container(
        settings=settings,
        store=store,
        parser=parser,
        geocoder=geocoder,
        detector=detector,
        lifecycle=lifecycle,
        intake=IntakeService(detector, geocoder, lifecycle),
    )


def build_container(settings: Settings) -> Container:
    store = SupabaseService(settings)
    parser = WorkOrderParser(OpenAIService(settings))
    geocoder = build_geocoder(settings.google_maps_key, settings.nominatim_user_agent)
    notifier = EmailNotifier(settings.sendgrid_api_key, settings.dispatch_from_email)
    if not settings.openai_api_key:
        logger.warning("OPENAI_API_KEY not set; work orders will be parsed heuristically")
    return assemble(settings, store, parser, geocoder, notifier)
