"""
Audit service for DispatchDesk
Best-effort audit trail of job events
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class AuditService:
    """Writes audit_log rows; a failed write never breaks the caller"""

    def __init__(self, store):
        self.store = store

    async def log(
        self,
        action: str,
        entity_type: str,
        entity_id: str,
        org_id: Optional[str] = None,
        actor_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> bool:
        try:
            await self.store.insert(
                "audit_log",
                {
                    "action": action,
                    "entity_type": entity_type,
                    "entity_id": entity_id,
                    "org_id": org_id,
                    "actor_id": actor_id,
                    "details": details or {},
                    "created_at": datetime.now(timezone.utc).isoformat(),
                },
            )
            return True
        except Exception as e:
            logger.warning(f"Audit log write failed for {action} {entity_type}:{entity_id}: {e}")
            return False
