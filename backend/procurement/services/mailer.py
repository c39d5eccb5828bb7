"""
Outbound mail transport for RFP dispatch.

send(to, subject, html_body, from_address, from_name) -> message id, raising on failure.
SmtpMailer talks to any SMTP relay; LogMailer records the message when no relay is set.
"""
import asyncio
import html
import logging
import smtplib
import uuid
from email.message import EmailMessage
from email.utils import formataddr, make_msgid
from typing import Any, Protocol

from procurement import config

logger = logging.getLogger(__name__)

RFP_SUBJECT = "Request for Proposal - Your Expertise Needed"


class Mailer(Protocol):
    async def send(self, to: str, subject: str, html_body: str, from_address: str, from_name: str) -> str:
        ...


class SmtpMailer:
    def __init__(self, host: str, port: int = 587, user: str = "", password: str = "", timeout: float = 30):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.timeout = timeout

    def _send(self, to: str, subject: str, html_body: str, from_address: str, from_name: str) -> str:
        msg = EmailMessage()
        msg["From"] = formataddr((from_name, from_address))
        msg["To"] = to
        msg["Subject"] = subject
        msg["Message-ID"] = make_msgid(domain=from_address.split("@")[-1] or None)
        msg.set_content("This message contains an RFP. Please view it in an HTML-capable mail client.")
        msg.add_alternative(html_body, subtype="html")
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
            server.starttls()
            if self.user:
                server.login(self.user, self.password)
            server.send_message(msg)
        return msg["Message-ID"]

    async def send(self, to: str, subject: str, html_body: str, from_address: str, from_name: str) -> str:
        message_id = await asyncio.to_thread(self._send, to, subject, html_body, from_address, from_name)
        logger.info("Email sent via SMTP to %s: %s", to, message_id)
        return message_id


class LogMailer:
    """Development transport: nothing leaves the process."""

    def __init__(self):
        self.outbox: list[dict[str, str]] = []

    async def send(self, to: str, subject: str, html_body: str, from_address: str, from_name: str) -> str:
        message_id = f"<{uuid.uuid4().hex}@log>"
        self.outbox.append({"to": to, "subject": subject, "html": html_body, "from": from_address, "id": message_id})
        logger.info("SMTP not configured; logged RFP email to %s (%s)", to, message_id)
        return message_id


def get_mailer() -> Mailer:
    if config.SMTP_HOST:
        return SmtpMailer(config.SMTP_HOST, config.SMTP_PORT, config.SMTP_USER, config.SMTP_PASS)
    return LogMailer()


def _fmt(value: Any, fallback: str = "Not specified") -> str:
    if value is None or value == "":
        return fallback
    return html.escape(str(value))


def render_rfp_email(vendor_name: str, rfp_data: dict[str, Any]) -> str:
    data = rfp_data or {}
    items = data.get("items") if isinstance(data.get("items"), list) else []
    if items:
        rows = "".join(
            f"<li><strong>{_fmt(i.get('name'), 'Item')}</strong>"
            f"{' - ' + _fmt(i.get('specs')) if i.get('specs') else ''} (Quantity: {_fmt(i.get('quantity'))})</li>"
            for i in items if isinstance(i, dict)
        )
    else:
        rows = "<li>No specific items listed</li>"
    budget = data.get("budget")
    budget_text = f"${budget:,.2f}" if isinstance(budget, (int, float)) else _fmt(budget)
    return f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"></head>
<body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto;">
  <h2>Request for Proposal</h2>
  <p>Dear {_fmt(vendor_name, 'Vendor')},</p>
  <p>We are requesting a proposal for the following procurement need.</p>
  <h3>Items Required</h3>
  <ul>{rows}</ul>
  <h3>Terms</h3>
  <ul>
    <li><strong>Budget:</strong> {budget_text}</li>
    <li><strong>Delivery Deadline:</strong> {_fmt(data.get('deadline'))}</li>
    <li><strong>Payment Terms:</strong> {_fmt(data.get('paymentTerms'))}</li>
    <li><strong>Warranty:</strong> {_fmt(data.get('warranty'))}</li>
  </ul>
  <p>Please reply to this email with your total price, delivery date, and warranty terms.</p>
  <p>Best regards,<br>{_fmt(config.FROM_NAME)}</p>
</body>
</html>"""
