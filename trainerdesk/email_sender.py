from __future__ import annotations

"""
Invoice delivery. Senders raise on failure; callers decide what a failed delivery means.
"""

import logging
from typing import Dict, List, Optional

import httpx

from .config import get_settings
from .models import Invoice


logger = logging.getLogger(__name__)

SENDGRID_URL = "https://api.sendgrid.com/v3/mail/send"


def _money(cents: int) -> str:
    return f"${cents / 100:,.2f}"


def build_invoice_text(invoice: Invoice) -> str:
    lines = [
        f"Hi {invoice.client.full_name},",
        "",
        f"Here is your invoice from {invoice.trainer.full_name}.",
        "",
    ]
    for item in invoice.line_items:
        lines.append(f"- {item.description}: {_money(item.total_cents)}")
    lines += [
        "",
        f"Total due: {_money(invoice.amount_cents)}",
        f"Due date: {invoice.due_date.strftime('%B %d, %Y')}",
    ]
    if invoice.notes:
        lines += ["", invoice.notes]
    return "\n".join(lines)


class EmailSender:
    def send_invoice_email(self, invoice: Invoice) -> None:  # pragma: no cover - interface
        raise NotImplementedError


class FakeEmailSender(EmailSender):
    def __init__(self) -> None:
        self.sent: List[Dict[str, str]] = []
        self.fail_with: Optional[Exception] = None

    def send_invoice_email(self, invoice: Invoice) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append(
            {"invoice_id": invoice.id, "to": invoice.client.email, "body": build_invoice_text(invoice)}
        )


class SendGridEmailSender(EmailSender):
    def __init__(self, api_key: str, from_email: str) -> None:
        self.api_key = api_key
        self.from_email = from_email

    def send_invoice_email(self, invoice: Invoice) -> None:
        payload = {
            "personalizations": [{"to": [{"email": invoice.client.email}]}],
            "from": {"email": self.from_email, "name": invoice.trainer.full_name},
            "reply_to": {"email": invoice.trainer.email},
            "subject": f"Invoice #{invoice.id[:8]} from {invoice.trainer.full_name}",
            "content": [{"type": "text/plain", "value": build_invoice_text(invoice)}],
            "tracking_settings": {"click_tracking": {"enable": False}, "open_tracking": {"enable": False}},
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}
        with httpx.Client(timeout=30) as client:
            resp = client.post(SENDGRID_URL, headers=headers, json=payload)
            resp.raise_for_status()
        logger.info("Invoice email sent invoice_id=%s to=%s", invoice.id, invoice.client.email)


_fake_sender: Optional[FakeEmailSender] = None


def get_email_sender() -> EmailSender:
    global _fake_sender
    settings = get_settings()
    if settings.email_provider == "sendgrid":
        if not settings.sendgrid_api_key:
            raise RuntimeError("SendGrid API key not configured")
        return SendGridEmailSender(api_key=settings.sendgrid_api_key, from_email=settings.email_from)
    if _fake_sender is None:
        _fake_sender = FakeEmailSender()
    return _fake_sender


def reset_fake_email_sender() -> None:
    global _fake_sender
    _fake_sender = None
