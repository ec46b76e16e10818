# app/services/extraction_service.py
from __future__ import annotations

import os
import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple

import requests

from app.schemas import ExtractedPDFData

logger = logging.getLogger(__name__)

VERYFI_API_URL = os.getenv("VERYFI_API_URL", "https://api.veryfi.com/api/v8/partner/documents")
VERYFI_TIMEOUT_SECONDS = int(os.getenv("VERYFI_TIMEOUT_SECONDS", "60"))
RAW_TEXT_LIMIT = 1000

_DATE_FORMATS = (
    "%Y-%m-%d",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%dT%H:%M:%S",
    "%d/%m/%Y",
    "%d.%m.%Y",
    "%m/%d/%Y",
    "%d %B %Y",
    "%d %b %Y",
    "%B %d, %Y",
)


class ExtractionError(RuntimeError):
    """Raised when the OCR API cannot be reached or returns something unusable."""

    def __init__(self, message: str, status_code: int = 500):
        super().__init__(message)
        self.status_code = status_code


# -----------------------------------------------------------------------------
# Config
# -----------------------------------------------------------------------------

def _credentials() -> Tuple[str, str, str]:
    return (
        (os.getenv("VERYFI_CLIENT_ID") or "").strip(),
        (os.getenv("VERYFI_USERNAME") or "").strip(),
        (os.getenv("VERYFI_API_KEY") or "").strip(),
    )


def is_configured() -> bool:
    return all(_credentials())


# -----------------------------------------------------------------------------
# Mapping
# -----------------------------------------------------------------------------

def _to_amount(v: Any) -> Optional[float]:
    if v is None or v == "":
        return None
    try:
        return float(str(v).replace(",", "").strip())
    except ValueError:
        return None


def _parse_date(v: Any) -> Optional[date]:
    if not v:
        return None
    s = str(v).strip()
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(s, fmt).date()
        except ValueError:
            continue
    # '2024-03-01 00:00:00+00:00' style values
    try:
        return datetime.fromisoformat(s).date()
    except ValueError:
        return None


def _confidence(data: ExtractedPDFData) -> str:
    score = 0
    if data.amount:
        score += 2
    if data.due_date:
        score += 2
    if data.month and data.year:
        score += 1
    if data.client_name:
        score += 1
    if score >= 4:
        return "high"
    if score >= 2:
        return "medium"
    return "low"


def map_veryfi_response(payload: Dict[str, Any]) -> ExtractedPDFData:
    amount = _to_amount(payload.get("total"))
    if amount is None:
        amount = _to_amount(payload.get("subtotal"))

    due = _parse_date(payload.get("due_date"))
    due_date = due.isoformat() if due else None

    month: Optional[int] = None
    year: Optional[int] = None
    for candidate in (due, _parse_date(payload.get("date")), _parse_date(payload.get("invoice_date"))):
        if candidate:
            month, year = candidate.month, candidate.year
            break

    client_name = (payload.get("bill_to_name") or "").strip() or None

    parts: List[str] = []
    if payload.get("ocr_text"):
        parts.append(str(payload["ocr_text"]))
    if payload.get("bill_to_name"):
        parts.append(f"Bill To: {payload['bill_to_name']}")
    if payload.get("bill_to_address"):
        parts.append(f"Address: {payload['bill_to_address']}")
    vendor = payload.get("vendor") or {}
    if isinstance(vendor, dict) and vendor.get("name"):
        parts.append(f"Vendor: {vendor['name']}")
    for item in payload.get("line_items") or []:
        if isinstance(item, dict) and item.get("description"):
            parts.append(str(item["description"]))

    data = ExtractedPDFData(
        amount=amount,
        due_date=due_date,
        month=month,
        year=year,
        client_name=client_name,
        raw_text="\n".join(parts)[:RAW_TEXT_LIMIT],
    )
    data.confidence = _confidence(data)
    return data


# -----------------------------------------------------------------------------
# API call
# -----------------------------------------------------------------------------

def extract_pdf(filename: str, content: bytes) -> ExtractedPDFData:
    """
    Sends the PDF to Veryfi and maps the response. Raises ExtractionError.
    """
    client_id, username, api_key = _credentials()
    if not (client_id and username and api_key):
        raise ExtractionError(
            "Veryfi API credentials not configured. Please set VERYFI_CLIENT_ID, "
            "VERYFI_USERNAME, and VERYFI_API_KEY environment variables."
        )

    headers = {
        "CLIENT-ID": client_id,
        "AUTHORIZATION": f"apikey {username}:{api_key}",
        "Accept": "application/json",
    }

    try:
        r = requests.post(
            VERYFI_API_URL,
            headers=headers,
            files={"file": (filename, content, "application/pdf")},
            timeout=VERYFI_TIMEOUT_SECONDS,
        )
    except requests.RequestException as e:
        raise ExtractionError(f"Failed to connect to Veryfi API: {e}") from e

    logger.info("Veryfi status %s for %s (%d bytes)", r.status_code, filename, len(content))

    if not r.ok:
        message = f"Veryfi API error: {r.status_code}"
        try:
            detail = r.json()
            if isinstance(detail, dict) and detail.get("message"):
                message = f"{message} - {detail['message']}"
        except ValueError:
            if r.text:
                message = f"{message} - {r.text[:200]}"
        raise ExtractionError(message, status_code=r.status_code)

    try:
        payload = r.json()
    except ValueError as e:
        raise ExtractionError("Invalid response from Veryfi API") from e
    if not isinstance(payload, dict):
        raise ExtractionError("Invalid response from Veryfi API")

    return map_veryfi_response(payload)
