# app/services/email_service.py
from __future__ import annotations

import os
import base64
import logging
from dataclasses import dataclass, field
from datetime import date
from email.utils import parseaddr
from typing import Any, Dict, List, Optional

from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import (
    Attachment,
    Cc,
    Disposition,
    FileContent,
    FileName,
    FileType,
    Mail,
)

from app.services import storage_service

logger = logging.getLogger(__name__)

MONTH_NAMES_EN = [
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
]

TEMPLATE_VARIABLES = [
    "clientName",
    "invoiceName",
    "invoiceAmount",
    "month",
    "year",
    "monthYear",
    "downloadLink",
    "currentDate",
    "clientVat",
    "clientAddress",
]


class EmailDeliveryError(RuntimeError):
    pass


# -----------------------------------------------------------------------------
# Template rendering
# -----------------------------------------------------------------------------

def format_eur(amount: Optional[float]) -> str:
    """1234.5 -> '1.234,50 €'"""
    if amount is None:
        return ""
    s = f"{float(amount):,.2f}"  # 1,234.50
    s = s.replace(",", "_").replace(".", ",").replace("_", ".")
    return f"{s} €"


def month_year(month: Optional[int], year: Optional[int]) -> str:
    if month and year:
        name = MONTH_NAMES_EN[month - 1] if 1 <= month <= 12 else str(month)
        return f"{name} {year}"
    return str(year) if year else ""


def template_context(
    invoice: Dict[str, Any],
    client: Optional[Dict[str, Any]] = None,
    today: Optional[date] = None,
) -> Dict[str, str]:
    client = client or {}
    today = today or date.today()
    month = invoice.get("month")
    year = invoice.get("year")
    return {
        "clientName": invoice.get("client_name") or "",
        "invoiceName": invoice.get("id") or "",
        "invoiceAmount": format_eur(invoice.get("amount")) if invoice.get("amount") else "",
        "month": str(month) if month else "",
        "year": str(year) if year else "",
        "monthYear": month_year(month, year),
        "downloadLink": "",  # documents go out as attachments
        "currentDate": today.strftime("%d/%m/%Y"),
        "clientVat": client.get("vat") or "",
        "clientAddress": client.get("address") or "",
    }


def render_template(text: Optional[str], context: Dict[str, str]) -> str:
    """
    Literal {{name}} replacement. Unknown placeholders stay as they are.
    """
    if not text:
        return ""
    out = text
    for name, value in context.items():
        out = out.replace("{{" + name + "}}", value)
    return out


# -----------------------------------------------------------------------------
# Delivery (SendGrid)
# -----------------------------------------------------------------------------

@dataclass
class OutgoingEmail:
    to_email: str
    subject: str
    body: str
    to_name: Optional[str] = None
    cc_emails: List[str] = field(default_factory=list)
    file_keys: List[str] = field(default_factory=list)


def _sender() -> str:
    _, from_email = parseaddr((os.getenv("EMAIL_FROM") or "").strip())
    return from_email


def is_configured() -> bool:
    return bool((os.getenv("SENDGRID_API_KEY") or "").strip()) and bool(_sender())


def _attachment(file_key: str) -> Attachment:
    data = storage_service.load_file(file_key)
    # keys are '<millis>-<name>'; the attachment keeps the original name
    name = file_key.split("-", 1)[1] if "-" in file_key else file_key
    return Attachment(
        FileContent(base64.b64encode(data).decode("ascii")),
        FileName(name),
        FileType("application/pdf"),
        Disposition("attachment"),
    )


def build_message(email: OutgoingEmail) -> Mail:
    message = Mail(
        from_email=_sender(),
        to_emails=email.to_email,
        subject=email.subject,
        plain_text_content=email.body,
    )
    # SendGrid rejects a personalization that repeats an address, case-insensitively
    seen = {email.to_email.strip().lower()}
    for cc in email.cc_emails:
        addr = cc.strip()
        if not addr or addr.lower() in seen:
            continue
        seen.add(addr.lower())
        message.add_cc(Cc(addr))
    for key in email.file_keys:
        message.add_attachment(_attachment(key))
    return message


def send_email(email: OutgoingEmail) -> Optional[str]:
    """
    Sends through SendGrid. Returns the provider message id when present.
    Raises EmailDeliveryError on any failure.
    """
    sg_key = (os.getenv("SENDGRID_API_KEY") or "").strip()
    if not sg_key:
        raise EmailDeliveryError("SENDGRID_API_KEY is not configured")
    if not _sender():
        raise EmailDeliveryError("EMAIL_FROM is not configured")

    try:
        message = build_message(email)
    except FileNotFoundError as e:
        raise EmailDeliveryError(f"Attachment missing: {e}") from e

    try:
        response = SendGridAPIClient(sg_key).send(message)
    except Exception as e:
        raise EmailDeliveryError(f"Email send failed: {e}") from e

    logger.info("SendGrid status %s for %s (cc=%d, attachments=%d)",
                response.status_code, email.to_email, len(email.cc_emails), len(email.file_keys))
    if response.status_code >= 300:
        raise EmailDeliveryError(f"Email send failed with status {response.status_code}")

    headers = getattr(response, "headers", None) or {}
    return headers.get("X-Message-Id")


def send_login_code(email: str, code: str) -> None:
    """
    If SendGrid is not configured the code is logged instead (dev-friendly).
    """
    if not is_configured():
        logger.warning("SendGrid not configured; login code for %s is %s", email, code)
        return

    body = f"Your login code is: {code}"
    ui_base_url = (os.getenv("UI_BASE_URL") or "").strip()
    if ui_base_url:
        body += f"\n\nOpen the app: {ui_base_url}"

    send_email(OutgoingEmail(to_email=email, subject="Your login code", body=body))
