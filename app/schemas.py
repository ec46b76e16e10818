# app/schemas.py
from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator


FileType = Literal["invoice", "timesheet"]
TemplateType = Literal["to_client", "to_accountant"]
RecipientType = Literal["client", "accountant"]


# -----------------------------------------------------------------------------
# Auth
# -----------------------------------------------------------------------------

class RequestCodeIn(BaseModel):
    email: str


class VerifyCodeIn(BaseModel):
    email: str
    code: str


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"


# -----------------------------------------------------------------------------
# Clients
# -----------------------------------------------------------------------------

def _currency(v: Optional[str]) -> Optional[str]:
    if v is None:
        return None
    s = v.strip().upper()
    if not s:
        return None
    if s not in ("EUR", "GBP"):
        raise ValueError("currency must be EUR or GBP")
    return s


class ClientCreate(BaseModel):
    name: str
    email: str = ""
    requires_timesheet: bool = False
    cc_emails: List[str] = Field(default_factory=list)
    currency: Optional[str] = None
    address: Optional[str] = None
    vat: Optional[str] = None

    @field_validator("currency")
    @classmethod
    def _check_currency(cls, v: Optional[str]) -> Optional[str]:
        return _currency(v)


class ClientPatch(BaseModel):
    """
    Only send what you want to change. Everything is Optional on purpose.
    """
    name: Optional[str] = None
    email: Optional[str] = None
    requires_timesheet: Optional[bool] = None
    cc_emails: Optional[List[str]] = None
    currency: Optional[str] = None
    address: Optional[str] = None
    vat: Optional[str] = None

    @field_validator("currency")
    @classmethod
    def _check_currency(cls, v: Optional[str]) -> Optional[str]:
        return _currency(v)


class ClientOut(BaseModel):
    id: str
    name: str
    email: str = ""
    requires_timesheet: bool = False
    cc_emails: List[str] = Field(default_factory=list)
    currency: str = "EUR"
    address: Optional[str] = None
    vat: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


# -----------------------------------------------------------------------------
# Invoices
# -----------------------------------------------------------------------------

class InvoiceFileIn(BaseModel):
    file_key: str
    file_type: FileType
    original_name: str
    file_size: Optional[int] = None


class InvoiceFileOut(BaseModel):
    id: str
    invoice_id: str
    file_key: str
    file_type: FileType
    original_name: str
    file_size: Optional[int] = None
    uploaded_at: Optional[str] = None


class InvoiceCreate(BaseModel):
    client_id: str
    client_name: Optional[str] = None
    amount: float
    due_date: Optional[str] = None
    month: int = Field(ge=1, le=12)
    year: int
    notes: Optional[str] = None
    files: List[InvoiceFileIn] = Field(default_factory=list)
    is_old_import: bool = False


class InvoicePatch(BaseModel):
    client_id: Optional[str] = None
    amount: Optional[float] = None
    due_date: Optional[str] = None
    month: Optional[int] = Field(default=None, ge=1, le=12)
    year: Optional[int] = None
    notes: Optional[str] = None
    files_to_delete: List[str] = Field(default_factory=list)
    new_files: List[InvoiceFileIn] = Field(default_factory=list)


class InvoiceStatePatch(BaseModel):
    sent_to_client: Optional[bool] = None
    payment_received: Optional[bool] = None
    sent_to_accountant: Optional[bool] = None
    amount_eur: Optional[float] = None


class InvoiceOut(BaseModel):
    id: str
    client_id: Optional[str] = None
    client_name: str = ""
    client_email: str = ""
    client_currency: str = "EUR"
    requires_timesheet: bool = False
    amount: Optional[float] = None
    amount_eur: Optional[float] = None
    due_date: Optional[str] = None
    month: Optional[int] = None
    year: Optional[int] = None
    notes: Optional[str] = None
    uploaded_at: Optional[str] = None

    sent_to_client: bool = False
    sent_to_client_at: Optional[str] = None
    payment_received: bool = False
    payment_received_at: Optional[str] = None
    sent_to_accountant: bool = False
    sent_to_accountant_at: Optional[str] = None

    files: List[InvoiceFileOut] = Field(default_factory=list)


class UploadedFileOut(BaseModel):
    file_key: str
    file_type: FileType
    original_name: str
    file_size: int


class EurSuggestionOut(BaseModel):
    invoice_id: str
    currency: str
    amount: float
    rate: float
    suggested_amount_eur: float


# -----------------------------------------------------------------------------
# Settings
# -----------------------------------------------------------------------------

class SettingIn(BaseModel):
    key: str
    value: str


class SettingOut(BaseModel):
    value: Optional[str] = None


class PreferencesIn(BaseModel):
    """Either a single key/value or a bulk preferences object."""
    key: Optional[str] = None
    value: Optional[Any] = None
    preferences: Optional[Dict[str, Any]] = None


# -----------------------------------------------------------------------------
# Email templates / sending / history
# -----------------------------------------------------------------------------

class EmailTemplateCreate(BaseModel):
    subject: str
    body: str
    type: TemplateType
    client_id: Optional[str] = None


class EmailTemplatePatch(BaseModel):
    subject: Optional[str] = None
    body: Optional[str] = None
    type: Optional[TemplateType] = None
    client_id: Optional[str] = None


class EmailTemplateOut(BaseModel):
    id: str
    subject: str
    body: str
    type: TemplateType
    client_id: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class EmailSendIn(BaseModel):
    invoice_id: str
    # plain str so an unknown recipient type is a 400, not a 422
    recipient_type: str
    amount_eur: Optional[float] = None


class EmailHistoryOut(BaseModel):
    id: str
    invoice_id: str
    template_id: Optional[str] = None
    template_name: Optional[str] = None
    recipient_email: str
    recipient_name: Optional[str] = None
    recipient_type: RecipientType
    subject: str
    body: str
    status: str
    error_message: Optional[str] = None
    sent_at: Optional[str] = None


# -----------------------------------------------------------------------------
# PDF extraction
# -----------------------------------------------------------------------------

class ExtractedPDFData(BaseModel):
    amount: Optional[float] = None
    due_date: Optional[str] = None
    month: Optional[int] = None
    year: Optional[int] = None
    client_name: Optional[str] = None
    raw_text: str = ""
    confidence: Literal["high", "medium", "low"] = "low"


class ExtractResponse(BaseModel):
    success: bool = True
    data: ExtractedPDFData
    warning: Optional[str] = None
