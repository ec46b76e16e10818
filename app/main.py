# app/main.py
from __future__ import annotations

import os
import time
import hashlib
import hmac
import json
import secrets
import logging
from datetime import date
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv, find_dotenv
from fastapi import Depends, FastAPI, File, Form, Header, HTTPException, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from jose import JWTError, jwt
from starlette.exceptions import HTTPException as StarletteHTTPException

load_dotenv(find_dotenv(usecwd=True))

from app.schemas import (
    ClientCreate,
    ClientOut,
    ClientPatch,
    EmailHistoryOut,
    EmailSendIn,
    EmailTemplateCreate,
    EmailTemplateOut,
    EmailTemplatePatch,
    EurSuggestionOut,
    ExtractResponse,
    InvoiceCreate,
    InvoiceFileIn,
    InvoiceOut,
    InvoicePatch,
    InvoiceStatePatch,
    PreferencesIn,
    RequestCodeIn,
    SettingIn,
    SettingOut,
    TokenOut,
    UploadedFileOut,
    VerifyCodeIn,
)
from app.services import db_service, email_service, extraction_service, finance_service, storage_service
from app.services.email_service import EmailDeliveryError, OutgoingEmail
from app.services.extraction_service import ExtractionError

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Invoice Desk", version="1.0")

UI_ORIGIN = os.getenv("UI_ORIGIN", "http://localhost:3000")
MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(10 * 1024 * 1024)))  # 10 MB

app.add_middleware(
    CORSMiddleware,
    allow_origins=[UI_ORIGIN],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ----------------------------
# ERROR SHAPE
# Every handled error goes out as {"error": true, "message": ...}
# ----------------------------
def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": True, "message": message})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return _error(exc.status_code, str(exc.detail))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    if errors:
        first = errors[0]
        loc = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
        message = f"{loc}: {first.get('msg')}" if loc else str(first.get("msg"))
    else:
        message = "Invalid request"
    return _error(422, message)


# ----------------------------
# MAGIC CODE STORE (DEV SIMPLE)
# ----------------------------
_CODE_TTL_SECONDS = int(os.getenv("LOGIN_CODE_TTL_SECONDS", "600"))  # 10 min
_codes: Dict[str, Dict[str, Any]] = {}  # email -> {code_hash, exp}


def _norm_email(email: str) -> str:
    return (email or "").strip().lower()


def _hash_code(code: str, salt: str) -> str:
    return hashlib.sha256((salt + ":" + code).encode("utf-8")).hexdigest()


def _issue_code(email: str) -> str:
    email = _norm_email(email)
    code = f"{secrets.randbelow(1000000):06d}"
    salt = os.getenv("LOGIN_CODE_SALT", "dev-salt-change-me")
    _codes[email] = {
        "code_hash": _hash_code(code, salt),
        "exp": int(time.time()) + _CODE_TTL_SECONDS,
    }
    return code


def _verify_code(email: str, code: str) -> bool:
    email = _norm_email(email)
    rec = _codes.get(email)
    if not rec:
        return False
    if int(time.time()) > int(rec.get("exp", 0)):
        _codes.pop(email, None)
        return False
    salt = os.getenv("LOGIN_CODE_SALT", "dev-salt-change-me")
    ok = hmac.compare_digest(rec["code_hash"], _hash_code(code, salt))
    if ok:
        _codes.pop(email, None)
    return ok


# ----------------------------
# TOKEN (JWT, HS256)
# ----------------------------
_TOKEN_TTL_SECONDS = int(os.getenv("ACCESS_TOKEN_TTL_SECONDS", "86400"))  # 24h
_TOKEN_ALGORITHM = "HS256"


def _token_secret() -> str:
    return os.getenv("ACCESS_TOKEN_SECRET", "dev-secret-change-me")


def create_access_token(payload: Dict[str, Any]) -> str:
    now = int(time.time())
    body = dict(payload)
    body["iat"] = now
    body["exp"] = now + _TOKEN_TTL_SECONDS
    return jwt.encode(body, _token_secret(), algorithm=_TOKEN_ALGORITHM)


def verify_access_token(token: str) -> Dict[str, Any]:
    try:
        return jwt.decode(token, _token_secret(), algorithms=[_TOKEN_ALGORITHM])
    except JWTError:
        raise HTTPException(status_code=401, detail="Unauthorized")


# ----------------------------
# AUTH ROUTES
# ----------------------------
@app.post("/auth/request_code")
def auth_request_code(inp: RequestCodeIn):
    email = _norm_email(inp.email)
    if not email or "@" not in email:
        raise HTTPException(status_code=400, detail="Valid email required")
    code = _issue_code(email)
    try:
        email_service.send_login_code(email, code)
    except EmailDeliveryError as e:
        logger.exception("Login code delivery failed for %s", email)
        raise HTTPException(status_code=502, detail=str(e))
    return {"ok": True}


@app.post("/auth/verify_code", response_model=TokenOut)
def auth_verify_code(inp: VerifyCodeIn):
    email = _norm_email(inp.email)
    code = (inp.code or "").strip()

    if not email or "@" not in email:
        raise HTTPException(status_code=400, detail="Valid email required")
    if not code or len(code) != 6 or not code.isdigit():
        raise HTTPException(status_code=400, detail="6-digit code required")
    if not _verify_code(email, code):
        raise HTTPException(status_code=401, detail="Invalid code")

    user_id = db_service.get_or_create_user(email)
    token = create_access_token({"sub": str(user_id), "email": email, "user_id": user_id})
    return TokenOut(access_token=token)


# ----------------------------
# AUTH DEPENDENCY (use on protected endpoints)
# ----------------------------
def get_current_context(authorization: Optional[str] = Header(default=None)) -> Dict[str, Any]:
    if not authorization:
        raise HTTPException(status_code=401, detail="Unauthorized")
    parts = authorization.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HTTPException(status_code=401, detail="Unauthorized")
    return verify_access_token(parts[1].strip())


def get_current_user_id(ctx: Dict[str, Any] = Depends(get_current_context)) -> int:
    uid = ctx.get("user_id")
    if uid is None:
        raise HTTPException(status_code=401, detail="Unauthorized")
    try:
        return int(uid)
    except (TypeError, ValueError):
        raise HTTPException(status_code=401, detail="Unauthorized")


@app.get("/me")
def me(ctx: Dict[str, Any] = Depends(get_current_context), user_id: int = Depends(get_current_user_id)):
    return {"email": ctx.get("email"), "user_id": user_id}


@app.get("/")
def root():
    return {"status": "ok", "service": "invoice-desk"}


# -----------------------------------------------------------------------------
# Small helpers
# -----------------------------------------------------------------------------

def _dump(obj: Any) -> Any:
    """Pydantic v2 friendly serialization."""
    if hasattr(obj, "model_dump"):
        return obj.model_dump()
    return obj


def _user_rate(user_id: int) -> float:
    """
    gbp_to_eur_rate for this user; lookup failures and junk values fall back to the default.
    """
    try:
        raw = db_service.get_setting("gbp_to_eur_rate", user_id)
    except Exception:
        logger.warning("gbp_to_eur_rate lookup failed for user %s; using default", user_id, exc_info=True)
        raw = None
    return finance_service.parse_rate(raw)


def _require_invoice(invoice_id: str, user_id: int) -> Dict[str, Any]:
    invoice = db_service.get_invoice(invoice_id, user_id)
    if not invoice:
        raise HTTPException(status_code=404, detail="Invoice not found")
    return invoice


def _require_own_files(files: List[Any], user_id: int) -> None:
    """Every attached key must have been uploaded by this user."""
    for f in files:
        if not db_service.user_owns_file(f.file_key, user_id):
            raise HTTPException(status_code=404, detail=f"File not found: {f.file_key}")


def _discard_blobs(file_keys: List[str]) -> int:
    """Deletes blobs no invoice references any more."""
    return storage_service.delete_files(db_service.release_file_keys(file_keys))


def _is_pdf(upload: UploadFile) -> bool:
    name = (upload.filename or "").lower()
    return upload.content_type == "application/pdf" or name.endswith(".pdf")


async def _read_pdf(upload: Optional[UploadFile]) -> bytes:
    if upload is None or not upload.filename:
        raise HTTPException(status_code=400, detail="No file provided")
    if not _is_pdf(upload):
        raise HTTPException(status_code=400, detail="File must be a PDF")
    contents = await upload.read()
    if len(contents) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=400, detail="File size must be less than 10MB")
    return contents


# =========================
# Clients
# =========================
@app.get("/clients", response_model=List[ClientOut])
def list_clients(user_id: int = Depends(get_current_user_id)):
    return db_service.list_clients(user_id)


@app.get("/clients/{client_id}", response_model=ClientOut)
def get_client(client_id: str, user_id: int = Depends(get_current_user_id)):
    client = db_service.get_client(client_id, user_id)
    if not client:
        raise HTTPException(status_code=404, detail="Client not found")
    return client


@app.post("/clients")
def create_client(payload: ClientCreate, user_id: int = Depends(get_current_user_id)):
    client_id = db_service.create_client(user_id, **_dump(payload))
    return {"id": client_id}


@app.patch("/clients/{client_id}")
def update_client(client_id: str, patch: ClientPatch, user_id: int = Depends(get_current_user_id)):
    if not db_service.get_client(client_id, user_id):
        raise HTTPException(status_code=404, detail="Client not found")
    db_service.update_client(client_id, user_id, **_dump(patch))
    return {"success": True}


@app.delete("/clients/{client_id}")
def delete_client(client_id: str, user_id: int = Depends(get_current_user_id)):
    db_service.delete_client(client_id, user_id)
    return {"success": True}


# =========================
# Invoices
# =========================
@app.get("/invoices", response_model=List[InvoiceOut])
def list_invoices(user_id: int = Depends(get_current_user_id)):
    return db_service.list_invoices(user_id)


@app.post("/invoices")
def create_invoice(payload: InvoiceCreate, user_id: int = Depends(get_current_user_id)):
    if not any(f.file_type == "invoice" for f in payload.files):
        raise HTTPException(status_code=400, detail="At least one invoice file is required")
    _require_own_files(payload.files, user_id)

    invoice_id = db_service.create_invoice(
        user_id,
        client_id=payload.client_id,
        client_name=payload.client_name,
        amount=payload.amount,
        due_date=payload.due_date,
        month=payload.month,
        year=payload.year,
        notes=payload.notes,
        files=[_dump(f) for f in payload.files],
        is_old_import=payload.is_old_import,
    )
    logger.info("Created invoice %s for user %s (%d files)", invoice_id, user_id, len(payload.files))
    return {"success": True, "invoice_id": invoice_id}


@app.get("/invoices/{invoice_id}", response_model=InvoiceOut)
def get_invoice(invoice_id: str, user_id: int = Depends(get_current_user_id)):
    return _require_invoice(invoice_id, user_id)


@app.patch("/invoices/{invoice_id}")
def update_invoice(invoice_id: str, patch: InvoicePatch, user_id: int = Depends(get_current_user_id)):
    _require_invoice(invoice_id, user_id)
    _require_own_files(patch.new_files, user_id)
    removed = db_service.update_invoice(
        invoice_id,
        user_id,
        client_id=patch.client_id,
        amount=patch.amount,
        due_date=patch.due_date,
        month=patch.month,
        year=patch.year,
        notes=patch.notes,
        files_to_delete=patch.files_to_delete,
        new_files=[_dump(f) for f in patch.new_files],
    )
    _discard_blobs(removed)
    return {"success": True}


@app.delete("/invoices/{invoice_id}")
def delete_invoice(invoice_id: str, user_id: int = Depends(get_current_user_id)):
    _require_invoice(invoice_id, user_id)
    file_keys = db_service.delete_invoice(invoice_id, user_id)
    _discard_blobs(file_keys)
    return {"success": True}


@app.patch("/invoices/{invoice_id}/state")
def update_invoice_state(invoice_id: str, patch: InvoiceStatePatch, user_id: int = Depends(get_current_user_id)):
    _require_invoice(invoice_id, user_id)
    db_service.update_invoice_state(
        invoice_id,
        user_id,
        sent_to_client=patch.sent_to_client,
        payment_received=patch.payment_received,
        sent_to_accountant=patch.sent_to_accountant,
        amount_eur=patch.amount_eur,
        set_amount_eur="amount_eur" in patch.model_fields_set,
    )
    return {"success": True}


@app.post("/invoices/{invoice_id}/files")
def attach_invoice_files(
    invoice_id: str,
    files: List[InvoiceFileIn],
    user_id: int = Depends(get_current_user_id),
):
    _require_invoice(invoice_id, user_id)
    if not files:
        raise HTTPException(status_code=400, detail="No files provided")
    _require_own_files(files, user_id)
    db_service.add_invoice_files(invoice_id, user_id, [_dump(f) for f in files])
    return {"success": True}


@app.get("/invoices/{invoice_id}/eur-suggestion", response_model=EurSuggestionOut)
def get_eur_suggestion(invoice_id: str, user_id: int = Depends(get_current_user_id)):
    invoice = _require_invoice(invoice_id, user_id)
    record = db_service.finance_invoice_from_row(invoice)
    rate = _user_rate(user_id)
    return EurSuggestionOut(
        invoice_id=invoice_id,
        currency=record.client_currency,
        amount=record.amount,
        rate=rate,
        suggested_amount_eur=finance_service.suggest_amount_eur(record, rate),
    )


@app.get("/invoices/{invoice_id}/email-history", response_model=List[EmailHistoryOut])
def get_email_history(invoice_id: str, user_id: int = Depends(get_current_user_id)):
    _require_invoice(invoice_id, user_id)
    return db_service.list_email_history(invoice_id, user_id)


# =========================
# Files (blob storage)
# =========================
@app.post("/upload", response_model=UploadedFileOut)
async def upload_file(
    file: Optional[UploadFile] = File(None),
    file_type: str = Form("invoice"),
    user_id: int = Depends(get_current_user_id),
):
    if file_type not in ("invoice", "timesheet"):
        raise HTTPException(status_code=400, detail='file_type must be "invoice" or "timesheet"')

    contents = await _read_pdf(file)
    file_key = storage_service.make_file_key(file.filename)
    storage_service.save_file(file_key, contents)
    db_service.record_upload(file_key, user_id, file.filename, len(contents))
    logger.info("Stored %s (%d bytes) for user %s", file_key, len(contents), user_id)

    return UploadedFileOut(
        file_key=file_key,
        file_type=file_type,
        original_name=file.filename,
        file_size=len(contents),
    )


@app.get("/files/{file_key}")
def download_file(file_key: str, user_id: int = Depends(get_current_user_id)):
    if not db_service.user_owns_file(file_key, user_id):
        raise HTTPException(status_code=404, detail="File not found")
    try:
        path = storage_service.get_file_path(file_key)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid file key")
    if not path:
        raise HTTPException(status_code=404, detail="File not found")
    return FileResponse(path, media_type="application/pdf", filename=file_key.split("-", 1)[-1])


@app.delete("/files/{file_key}")
def delete_file(file_key: str, user_id: int = Depends(get_current_user_id)):
    if not db_service.user_owns_file(file_key, user_id):
        raise HTTPException(status_code=404, detail="File not found")
    try:
        deleted = storage_service.delete_file(file_key)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid file key")
    db_service.release_file_keys([file_key])
    return {"success": True, "deleted": deleted}


@app.post("/invoices/{invoice_id}/upload-signed")
async def upload_signed_invoice(
    invoice_id: str,
    file: Optional[UploadFile] = File(None),
    user_id: int = Depends(get_current_user_id),
):
    """
    Swaps the invoice document for a signed copy named '<year>.<MM>.pdf'.
    """
    invoice = _require_invoice(invoice_id, user_id)
    contents = await _read_pdf(file)

    today = date.today()
    year = invoice.get("year") or today.year
    month = invoice.get("month") or today.month
    name = f"{year}.{int(month):02d}.pdf"

    file_key = storage_service.make_file_key(name)
    storage_service.save_file(file_key, contents)
    db_service.record_upload(file_key, user_id, name, len(contents))

    replaced = db_service.replace_invoice_document(
        invoice_id, user_id, file_key=file_key, original_name=name, file_size=len(contents)
    )
    if replaced:
        _discard_blobs([replaced])
    logger.info("Signed copy %s stored for invoice %s", file_key, invoice_id)

    return {"success": True, "file_key": file_key, "message": "Signed PDF uploaded successfully"}


# =========================
# Settings
# =========================
@app.get("/settings", response_model=SettingOut)
def get_setting(key: Optional[str] = None, user_id: int = Depends(get_current_user_id)):
    if not key:
        raise HTTPException(status_code=400, detail="key parameter is required")
    return SettingOut(value=db_service.get_setting(key, user_id))


@app.post("/settings")
def set_setting(payload: SettingIn, user_id: int = Depends(get_current_user_id)):
    if not payload.key.strip():
        raise HTTPException(status_code=400, detail="key and value are required")
    db_service.set_setting(payload.key.strip(), payload.value, user_id)
    return {"success": True}


# =========================
# User preferences / account data
# =========================
def _pref_value(value: Any) -> str:
    return value if isinstance(value, str) else json.dumps(value)


@app.get("/user-preferences")
def get_user_preferences(key: Optional[str] = None, user_id: int = Depends(get_current_user_id)):
    if key:
        return {"success": True, "key": key, "value": db_service.get_setting(key, user_id)}
    return {"success": True, "preferences": db_service.list_settings(user_id)}


@app.post("/user-preferences")
def set_user_preferences(payload: PreferencesIn, user_id: int = Depends(get_current_user_id)):
    if payload.key and payload.value is not None:
        db_service.set_setting(payload.key.strip(), _pref_value(payload.value), user_id)
        return {"success": True, "message": "Preference updated"}
    if payload.preferences:
        db_service.set_settings({k: _pref_value(v) for k, v in payload.preferences.items()}, user_id)
        return {"success": True, "message": "Preferences updated"}
    raise HTTPException(status_code=400, detail="Either key/value or preferences object is required")


@app.delete("/user/data")
def delete_user_data(user_id: int = Depends(get_current_user_id)):
    file_keys = db_service.delete_user_data(user_id)
    removed = _discard_blobs(file_keys)
    logger.warning("Deleted all data for user %s (%d stored files)", user_id, removed)
    return {"success": True, "message": "All user data deleted successfully"}


# =========================
# Email templates
# =========================
@app.get("/email-templates", response_model=List[EmailTemplateOut])
def list_email_templates(user_id: int = Depends(get_current_user_id)):
    return db_service.list_email_templates(user_id)


@app.get("/email-templates/{template_id}", response_model=EmailTemplateOut)
def get_email_template(template_id: str, user_id: int = Depends(get_current_user_id)):
    template = db_service.get_email_template(template_id, user_id)
    if not template:
        raise HTTPException(status_code=404, detail="Template not found")
    return template


@app.post("/email-templates")
def create_email_template(payload: EmailTemplateCreate, user_id: int = Depends(get_current_user_id)):
    if payload.type == "to_client" and not payload.client_id:
        raise HTTPException(status_code=400, detail="client_id is required for to_client templates")
    template_id = db_service.create_email_template(user_id, **_dump(payload))
    return {"id": template_id}


@app.patch("/email-templates/{template_id}")
def update_email_template(
    template_id: str,
    patch: EmailTemplatePatch,
    user_id: int = Depends(get_current_user_id),
):
    if not db_service.get_email_template(template_id, user_id):
        raise HTTPException(status_code=404, detail="Template not found")
    db_service.update_email_template(template_id, user_id, **_dump(patch))
    return {"success": True}


@app.delete("/email-templates/{template_id}")
def delete_email_template(template_id: str, user_id: int = Depends(get_current_user_id)):
    db_service.delete_email_template(template_id, user_id)
    return {"success": True}


# =========================
# Email sending
# =========================
@app.get("/email/verify")
def verify_email_transport(user_id: int = Depends(get_current_user_id)):
    return {"configured": email_service.is_configured()}


def _deliver(
    user_id: int,
    invoice_id: str,
    template: Dict[str, Any],
    recipient_type: str,
    outgoing: OutgoingEmail,
) -> Optional[str]:
    """
    Sends and records the attempt in email history either way.
    """
    record = dict(
        invoice_id=invoice_id,
        template_id=template.get("id"),
        recipient_email=outgoing.to_email,
        recipient_name=outgoing.to_name,
        recipient_type=recipient_type,
        subject=outgoing.subject,
        body=outgoing.body,
    )
    try:
        message_id = email_service.send_email(outgoing)
    except EmailDeliveryError as e:
        logger.error("Email to %s for invoice %s failed: %s", recipient_type, invoice_id, e)
        db_service.record_email(user_id, status="failed", error_message=str(e), **record)
        raise HTTPException(status_code=502, detail=str(e))

    db_service.record_email(user_id, status="sent", **record)
    return message_id


@app.post("/email/send")
def send_invoice_email(payload: EmailSendIn, user_id: int = Depends(get_current_user_id)):
    invoice = _require_invoice(payload.invoice_id, user_id)

    client_id = invoice.get("client_id")
    if not client_id:
        raise HTTPException(status_code=400, detail="Invoice has no associated client")

    if payload.recipient_type == "client":
        template = db_service.get_client_email_template(client_id, user_id)
        if not template:
            raise HTTPException(
                status_code=400,
                detail="No email template found for client. Please create a template for this client before sending emails.",
            )
    elif payload.recipient_type == "accountant":
        template = db_service.get_accountant_email_template(user_id)
        if not template:
            raise HTTPException(
                status_code=400,
                detail="No email template found for accountant. Please create a template for the accountant before sending emails.",
            )
    else:
        raise HTTPException(status_code=400, detail='Invalid recipient_type. Must be "client" or "accountant"')

    client = db_service.get_client(client_id, user_id)
    context = email_service.template_context(invoice, client)
    subject = email_service.render_template(template.get("subject"), context)
    body = email_service.render_template(template.get("body"), context)
    files = invoice.get("files") or []

    if payload.recipient_type == "client":
        recipient = invoice.get("client_email") or ""
        if not recipient:
            raise HTTPException(status_code=400, detail="Client email not found")

        requires_timesheet = bool(invoice.get("requires_timesheet"))
        file_keys = [
            f["file_key"]
            for f in files
            if f.get("file_type") == "invoice" or (f.get("file_type") == "timesheet" and requires_timesheet)
        ]
        cc = (client or {}).get("cc_emails") or []

        message_id = _deliver(
            user_id,
            payload.invoice_id,
            template,
            "client",
            OutgoingEmail(
                to_email=recipient,
                to_name=invoice.get("client_name") or "",
                subject=subject,
                body=body,
                cc_emails=cc,
                file_keys=file_keys,
            ),
        )
        db_service.update_invoice_state(payload.invoice_id, user_id, sent_to_client=True)
        return {"success": True, "message_id": message_id}

    # accountant
    if not invoice.get("sent_to_client"):
        raise HTTPException(status_code=400, detail="Send the invoice to the client before sending it to the accountant.")

    recipient = db_service.get_accountant_email(user_id) or ""
    if not recipient:
        raise HTTPException(status_code=400, detail="Accountant email not configured. Set it in settings.")

    file_keys = [f["file_key"] for f in files if f.get("file_type") == "invoice"]
    if not file_keys:
        raise HTTPException(status_code=400, detail="No invoice files found")

    message_id = _deliver(
        user_id,
        payload.invoice_id,
        template,
        "accountant",
        OutgoingEmail(to_email=recipient, to_name="Accountant", subject=subject, body=body, file_keys=file_keys),
    )

    amount_eur: Optional[float] = None
    if invoice.get("client_currency") == "GBP" and invoice.get("amount"):
        if payload.amount_eur is not None:
            amount_eur = payload.amount_eur
        else:
            amount_eur = float(invoice["amount"]) * _user_rate(user_id)

    db_service.update_invoice_state(payload.invoice_id, user_id, sent_to_accountant=True, amount_eur=amount_eur)
    return {"success": True, "message_id": message_id}


# =========================
# Finances
# =========================
@app.get("/finances")
def get_finances(user_id: int = Depends(get_current_user_id)):
    try:
        invoices = db_service.list_finance_invoices(user_id)
    except Exception as e:
        logger.exception("Error fetching finances for user %s", user_id)
        return _error(500, str(e) or "Failed to fetch finances")

    rate = _user_rate(user_id)
    return finance_service.summarize(invoices, rate).to_json()


# =========================
# PDF extraction
# =========================
@app.post("/pdf/extract", response_model=ExtractResponse)
async def extract_pdf(
    file: Optional[UploadFile] = File(None),
    user_id: int = Depends(get_current_user_id),
):
    if not extraction_service.is_configured():
        return _error(
            500,
            "Veryfi API credentials not configured. Please set VERYFI_CLIENT_ID, "
            "VERYFI_USERNAME, and VERYFI_API_KEY environment variables.",
        )

    contents = await _read_pdf(file)
    try:
        data = extraction_service.extract_pdf(file.filename, contents)
    except ExtractionError as e:
        logger.error("PDF extraction failed for %s: %s", file.filename, e)
        return _error(e.status_code, str(e))

    warning = None
    if not data.amount and not data.due_date:
        warning = "Limited data extracted from PDF. You can still upload the file and fill the form manually."
    return ExtractResponse(data=data, warning=warning)
