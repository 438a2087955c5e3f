"""
Notification Service for the internship service.

Handles all outbound email:
- Overdue summaries for coordinators and program directors
- Lifecycle notices (tutor, student, coordinator)
- Deadline reminders
- Manual alerts

Provides:
- SendGrid (httpx) or SMTP delivery, with a logging fallback in development
- Retry logic with exponential backoff
"""
import asyncio
import hashlib
import logging
import smtplib
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from enum import Enum
from html import escape
from typing import TYPE_CHECKING, Optional

import httpx

from practicas.core.config import settings

if TYPE_CHECKING:
    from practicas.services.escalation import EscalationSummary


logger = logging.getLogger(__name__)


class NotificationChannel(Enum):
    """Supported notification channels."""
    EMAIL = "EMAIL"


@dataclass
class NotificationResult:
    """Result of a notification attempt."""
    success: bool
    channel: NotificationChannel = NotificationChannel.EMAIL
    message_id: Optional[str] = None
    error: Optional[str] = None
    retry_after: Optional[datetime] = None


@dataclass
class EmailMessage:
    """Email message structure."""
    to_email: str
    to_name: str
    subject: str
    html_body: str
    text_body: Optional[str] = None
    reply_to: Optional[str] = None


# ==========================================
# EMAIL TEMPLATES
# ==========================================

class EmailTemplates:
    """Email template definitions using simple string formatting."""

    BASE_HTML = """
<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <style>
        body {{ font-family: -apple-system, 'Segoe UI', Roboto, sans-serif; line-height: 1.6; color: #333; }}
        .container {{ max-width: 640px; margin: 0 auto; padding: 20px; }}
        .header {{ background: #1f3a68; color: white; padding: 24px; border-radius: 8px 8px 0 0; }}
        .header h1 {{ margin: 0; font-size: 22px; }}
        .content {{ background: #fff; border: 1px solid #e0e0e0; border-top: none; padding: 24px; border-radius: 0 0 8px 8px; }}
        table {{ border-collapse: collapse; width: 100%; margin: 16px 0; }}
        th, td {{ border: 1px solid #e0e0e0; padding: 6px 8px; font-size: 13px; text-align: left; }}
        .sev-CRITICAL {{ color: #c53030; font-weight: 600; }}
        .sev-LOW {{ color: #c05621; }}
        .sev-NORMAL {{ color: #276749; }}
        .counts span {{ display: inline-block; margin-right: 16px; }}
        .footer {{ text-align: center; padding: 16px; color: #888; font-size: 12px; }}
    </style>
</head>
<body>
    <div class="container">
        <div class="header"><h1>{title}</h1></div>
        <div class="content">{content}</div>
        <div class="footer">{app_name} - automated message, do not reply.</div>
    </div>
</body>
</html>
"""

    @classmethod
    def render(cls, title: str, content: str) -> str:
        return cls.BASE_HTML.format(
            title=escape(title),
            content=content,
            app_name=escape(settings.app_name)
        )

    @classmethod
    def overdue_summary(cls, summary: "EscalationSummary") -> tuple[str, str, str]:
        """Return (subject, html, text) for an overdue escalation summary."""
        counts = summary.counts
        subject = f"Alert: {counts['total']} practicas pending closure"

        rows = "".join(
            f"<tr><td>{escape(r.student_name or r.student_id)}</td>"
            f"<td>{escape(r.program_name)}</td>"
            f"<td>{escape(r.state.value)}</td>"
            f"<td>{r.completion_date.isoformat()}</td>"
            f"<td>{r.days_overdue}</td>"
            f"<td class=\"sev-{r.severity.value}\">{r.severity.value}</td></tr>"
            for r in summary.records
        )
        content = f"""
<p>Hello {escape(summary.recipient.name)},</p>
<p>The following practicas in your scope are past their completion date and still open.</p>
<p><strong>Programs:</strong> {escape(', '.join(summary.program_names))}</p>
<p class="counts">
    <span class="sev-CRITICAL">Critical: {counts['critical']}</span>
    <span class="sev-LOW">Low: {counts['low']}</span>
    <span class="sev-NORMAL">Normal: {counts['normal']}</span>
</p>
<table>
    <tr><th>Student</th><th>Program</th><th>State</th><th>Completion</th><th>Days overdue</th><th>Severity</th></tr>
    {rows}
</table>
"""
        text_lines = [
            f"Hello {summary.recipient.name},",
            f"{counts['total']} practicas in your scope are pending closure "
            f"(critical {counts['critical']}, low {counts['low']}, normal {counts['normal']}).",
            "",
        ]
        text_lines.extend(
            f"- {r.student_name or r.student_id} / {r.program_name}: {r.days_overdue} days "
            f"overdue ({r.severity.value}, {r.state.value})"
            for r in summary.records
        )
        return subject, cls.render(subject, content), "\n".join(text_lines)

    @classmethod
    def notice(cls, to_name: str, title: str, lines: list[str]) -> tuple[str, str]:
        """Return (html, text) for a short informational notice."""
        paragraphs = "".join(f"<p>{escape(line)}</p>" for line in lines)
        content = f"<p>Hello {escape(to_name)},</p>{paragraphs}"
        text = "\n\n".join([f"Hello {to_name},", *lines])
        return cls.render(title, content), text


# ==========================================
# SERVICE
# ==========================================

class NotificationService:
    """
    Email delivery with provider selection and retries.

    Provider order: SendGrid if an API key is set, SMTP if a host is set,
    otherwise the message is only logged (development).
    """

    def __init__(self):
        self.max_retries = settings.max_email_retries
        self.base_delay = 1.0  # Base delay in seconds for exponential backoff

    async def _retry_with_backoff(
        self,
        operation,
        *args,
        max_retries: Optional[int] = None,
        **kwargs
    ) -> NotificationResult:
        """
        Execute operation with exponential backoff retry.

        Args:
            operation: Async function to execute
            max_retries: Override default max retries

        Returns:
            NotificationResult from the operation
        """
        retries = max_retries or self.max_retries
        last_error = None

        for attempt in range(retries):
            result = await operation(*args, **kwargs)

            if result.success:
                return result

            last_error = result.error

            if attempt < retries - 1:
                # 1s, 2s, 4s ... capped at 60s
                delay = min(self.base_delay * (2 ** attempt), 60)
                logger.warning(
                    f"Notification failed (attempt {attempt + 1}/{retries}): {result.error}. "
                    f"Retrying in {delay:.1f}s..."
                )
                await asyncio.sleep(delay)

        logger.error(f"Notification failed after {retries} attempts: {last_error}")
        return NotificationResult(
            success=False,
            error=f"Failed after {retries} attempts: {last_error}",
            retry_after=datetime.now(timezone.utc) + timedelta(minutes=15)
        )

    async def _send_email_simple(
        self,
        to_email: str,
        subject: str,
        body: str,
        to_name: str = ""
    ) -> NotificationResult:
        """Send a plain email (used by the scheduler for ops alerts)."""
        message = EmailMessage(
            to_email=to_email,
            to_name=to_name or to_email.split("@")[0],
            subject=subject,
            html_body=f"<html><body><pre>{escape(body)}</pre></body></html>",
            text_body=body
        )
        return await self._send_email(message)

    async def send_overdue_summary(self, summary: "EscalationSummary") -> NotificationResult:
        """Send one consolidated overdue summary to a coordinator or director."""
        subject, html_body, text_body = EmailTemplates.overdue_summary(summary)
        message = EmailMessage(
            to_email=summary.recipient.email,
            to_name=summary.recipient.name,
            subject=subject,
            html_body=html_body,
            text_body=text_body
        )
        return await self._send_email(message)

    async def send_notice(
        self,
        to_email: str,
        to_name: str,
        subject: str,
        lines: list[str]
    ) -> NotificationResult:
        """Send a short lifecycle notice or reminder."""
        html_body, text_body = EmailTemplates.notice(to_name, subject, lines)
        message = EmailMessage(
            to_email=to_email,
            to_name=to_name,
            subject=subject,
            html_body=html_body,
            text_body=text_body
        )
        return await self._send_email(message)

    async def _send_email(self, message: EmailMessage, with_retry: bool = True) -> NotificationResult:
        """Send email via the configured provider."""
        if settings.sendgrid_api_key:
            send_func = self._send_via_sendgrid_once
        elif settings.smtp_host:
            send_func = self._send_via_smtp_once
        else:
            logger.warning(f"Email not configured. Would send to: {message.to_email}")
            logger.info(f"Subject: {message.subject}")

            return NotificationResult(
                success=True,
                message_id=f"dev-{hashlib.md5(message.subject.encode()).hexdigest()[:8]}"
            )

        if with_retry:
            return await self._retry_with_backoff(send_func, message)
        return await send_func(message)

    async def _send_via_smtp_once(self, message: EmailMessage) -> NotificationResult:
        """Send email via SMTP (single attempt)."""
        try:
            msg = MIMEMultipart('alternative')
            msg['Subject'] = message.subject
            msg['From'] = f"{settings.smtp_from_name} <{settings.smtp_from_email}>"
            msg['To'] = f"{message.to_name} <{message.to_email}>"

            if message.text_body:
                msg.attach(MIMEText(message.text_body, 'plain'))
            msg.attach(MIMEText(message.html_body, 'html'))

            # smtplib blocks, run it off the event loop
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, self._smtp_send_sync, msg)

            return NotificationResult(
                success=True,
                message_id=f"smtp-{datetime.now(timezone.utc).timestamp()}"
            )

        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"SMTP send failed: {e}")
            return NotificationResult(
                success=False,
                error=str(e),
                retry_after=datetime.now(timezone.utc) + timedelta(minutes=5)
            )

    def _smtp_send_sync(self, msg: MIMEMultipart) -> None:
        """Synchronous SMTP send for executor."""
        with smtplib.SMTP(settings.smtp_host, settings.smtp_port) as server:
            if settings.smtp_use_tls:
                server.starttls()
            if settings.smtp_user and settings.smtp_password:
                server.login(settings.smtp_user, settings.smtp_password)
            server.send_message(msg)

    async def _send_via_sendgrid_once(self, message: EmailMessage) -> NotificationResult:
        """Send email via SendGrid API (single attempt)."""
        payload = {
            "personalizations": [{
                "to": [{"email": message.to_email, "name": message.to_name}]
            }],
            "from": {"email": settings.sendgrid_from_email, "name": settings.smtp_from_name},
            "subject": message.subject,
            "content": [
                {"type": "text/plain", "value": message.text_body or ""},
                {"type": "text/html", "value": message.html_body}
            ]
        }

        try:
            async with httpx.AsyncClient(timeout=15.0) as client:
                response = await client.post(
                    "https://api.sendgrid.com/v3/mail/send",
                    json=payload,
                    headers={
                        "Authorization": f"Bearer {settings.sendgrid_api_key}",
                        "Content-Type": "application/json"
                    }
                )
        except httpx.HTTPError as e:
            logger.error(f"SendGrid send failed: {e}")
            return NotificationResult(
                success=False,
                error=str(e),
                retry_after=datetime.now(timezone.utc) + timedelta(minutes=5)
            )

        if response.status_code in (200, 202):
            message_id = response.headers.get(
                "X-Message-Id", f"sg-{datetime.now(timezone.utc).timestamp()}"
            )
            return NotificationResult(success=True, message_id=message_id)

        return NotificationResult(
            success=False,
            error=f"SendGrid error: {response.status_code} - {response.text}",
            retry_after=datetime.now(timezone.utc) + timedelta(minutes=5)
        )


# Global notification service instance
notification_service = NotificationService()
