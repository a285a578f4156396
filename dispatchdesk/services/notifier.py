"""
Notifier for DispatchDesk
Delivers job offers to technicians by email through SendGrid
"""

import logging
from typing import Any, Dict, Optional

import httpx

from dispatchdesk.models.dispatch import OutreachRecord
from dispatchdesk.models.job import Job

logger = logging.getLogger(__name__)

SENDGRID_URL = "https://api.sendgrid.com/v3/mail/send"


class Notifier:
    """Delivery interface used by the dispatch orchestrator"""

    async def send(self, job: Job, technician: Dict[str, Any], record: OutreachRecord) -> bool:
        """Return True when the provider accepted the message."""
        raise NotImplementedError


class EmailNotifier(Notifier):
    """SendGrid v3 mail send; one message per outreach record"""

    def __init__(
        self,
        api_key: Optional[str],
        from_email: str,
        from_name: str = "DispatchDesk",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.from_email = from_email
        self.from_name = from_name
        self.timeout = timeout
        self.transport = transport

    async def send(self, job: Job, technician: Dict[str, Any], record: OutreachRecord) -> bool:
        email = technician.get("email")
        if not email:
            logger.warning(f"Technician {record.technician_id} has no email; outreach {record.id} not sent")
            return False
        if not self.api_key:
            logger.warning("SENDGRID_API_KEY not configured; outreach not sent")
            return False

        name = technician.get("full_name") or ""
        first_name = name.split(" ")[0] if name else "there"
        when = job.scheduled_start.strftime("%b %d, %Y %I:%M %p") if job.scheduled_start else "To be scheduled"
        body = (
            f"Hi {first_name},\n\n"
            f"A new {job.trade_needed.value} job is available near you.\n\n"
            f"{job.title}\n"
            f"Location: {job.city or job.address_text}\n"
            f"When: {when}\n"
            f"Urgency: {job.urgency.value.replace('_', ' ')}\n"
            f"Pay: {job.pay_rate or 'Negotiable'}\n\n"
            f"Reply to this email if you are interested."
        )
        payload = {
            "from": {"email": self.from_email, "name": self.from_name},
            "personalizations": [{"to": [{"email": email, "name": name or email}]}],
            "subject": f"New {job.trade_needed.value} job: {job.title[:60]}",
            "content": [{"type": "text/plain", "value": body}],
            "custom_args": {"job_id": job.id, "outreach_id": record.id, "channel": record.channel.value},
        }
        headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                r = await client.post(SENDGRID_URL, json=payload, headers=headers)
        except httpx.HTTPError as e:
            logger.error(f"SendGrid request failed for {email}: {e}")
            return False
        if r.status_code >= 300:
            logger.error(f"SendGrid error for {email}: {r.status_code} {r.text}")
            return False
        logger.info(f"Sent {record.channel.value} outreach to {email} for job {job.id}")
        return True
