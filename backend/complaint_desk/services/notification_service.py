from dataclasses import dataclass
from typing import Optional
from uuid import UUID
import html
import httpx
import structlog

from complaint_desk.core.config import settings
from complaint_desk.core.time_utils import format_display, get_utc_now

logger = structlog.get_logger()


@dataclass
class AssignmentNotice:
    recipient_address: str
    recipient_name: str
    complaint_number: str
    complaint_title: str
    complaint_id: UUID


@dataclass
class NotificationResult:
    sent: bool
    error: Optional[str] = None


class NotificationService:
    """
    Assignment e-mails through a Resend-compatible HTTP API.
    Never raises: every failure comes back as NotificationResult(sent=False).
    """

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        # transport is injectable for tests (httpx.MockTransport)
        self.transport = transport

    @staticmethod
    def render_assignment_email(notice: AssignmentNotice) -> str:
        name = html.escape(notice.recipient_name or "there")
        number = html.escape(notice.complaint_number)
        title = html.escape(notice.complaint_title)
        return f"""
        <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
          <h1 style="color: #333;">New Complaint Assigned</h1>
          <p>Hi {name},</p>
          <p>You have been assigned to a new complaint:</p>
          <div style="background-color: #f5f5f5; padding: 20px; border-radius: 8px; margin: 20px 0;">
            <p style="margin: 5px 0;"><strong>Complaint ID:</strong> {number}</p>
            <p style="margin: 5px 0;"><strong>Title:</strong> {title}</p>
            <p style="margin: 5px 0;"><strong>Assigned:</strong> {format_display(get_utc_now())}</p>
          </div>
          <p>Please review and take appropriate action.</p>
          <p style="margin-top: 30px;">Best regards,<br>{html.escape(settings.PROJECT_NAME)}</p>
        </div>
        """

    async def send_assignment_email(self, notice: AssignmentNotice) -> NotificationResult:
        if not settings.RESEND_API_KEY:
            logger.warning("mail_api_key_missing", complaint_id=str(notice.complaint_id))
            return NotificationResult(sent=False, error="Mail API not configured")

        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {settings.RESEND_API_KEY}",
        }
        payload = {
            "from": settings.MAIL_FROM,
            "to": [notice.recipient_address],
            "subject": f"New Complaint Assigned: {notice.complaint_number}",
            "html": self.render_assignment_email(notice),
        }

        logger.info("assignment_email_sending", to=notice.recipient_address, complaint_number=notice.complaint_number)

        try:
            async with httpx.AsyncClient(transport=self.transport, timeout=settings.NOTIFICATION_TIMEOUT) as client:
                response = await client.post(settings.RESEND_API_URL, headers=headers, json=payload)
        except Exception as e:
            # Bad URL, transport failure or anything else: reported, never raised
            error = str(e) or type(e).__name__
            logger.error(
                "assignment_email_request_failed",
                error=error,
                error_type=type(e).__name__,
                complaint_id=str(notice.complaint_id),
            )
            return NotificationResult(sent=False, error=error)

        if response.status_code >= 300:
            logger.error(
                "assignment_email_api_error",
                status=response.status_code,
                body=response.text[:500],
                complaint_id=str(notice.complaint_id),
            )
            return NotificationResult(sent=False, error=f"Mail API returned {response.status_code}")

        logger.info("assignment_email_sent", complaint_number=notice.complaint_number)
        return NotificationResult(sent=True)
