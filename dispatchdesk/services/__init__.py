"""
Business logic services for DispatchDesk
"""

from dispatchdesk.services.audit_service import AuditService
from dispatchdesk.services.compliance_service import ComplianceScorer
from dispatchdesk.services.dispatch_orchestrator import DispatchOrchestrator
from dispatchdesk.services.duplicate_detector import DuplicateDetector
from dispatchdesk.services.geocoder import GeocoderAdapter
from dispatchdesk.services.intake_service import IntakeService
from dispatchdesk.services.job_lifecycle import JobLifecycleManager
from dispatchdesk.services.notifier import EmailNotifier
from dispatchdesk.services.openai_service import OpenAIService
from dispatchdesk.services.parser_service import WorkOrderParser
from dispatchdesk.services.supabase_service import SupabaseService

__all__ = [
    "AuditService",
    "ComplianceScorer",
    "DispatchOrchestrator",
    "DuplicateDetector",
    "EmailNotifier",
    "GeocoderAdapter",
    "IntakeService",
    "JobLifecycleManager",
    "OpenAIService",
    "SupabaseService",
    "WorkOrderParser",
]
