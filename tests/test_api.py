import pytest

from app import main
from app.services import db_service, email_service, extraction_service, storage_service
from app.services.email_service import EmailDeliveryError
from app.schemas import ExtractedPDFData


# ----------------------------
# helpers
# ----------------------------

def upload(client, auth, pdf_bytes, name="invoice.pdf", file_type="invoice"):
    r = client.post(
        "/upload",
        headers=auth,
        files={"file": (name, pdf_bytes, "application/pdf")},
        data={"file_type": file_type},
    )
    assert r.status_code == 200, r.text
    return r.json()


def make_client(client, auth, **kw):
    body = {"name": "Acme", "email": "billing@acme.test"}
    body.update(kw)
    r = client.post("/clients", headers=auth, json=body)
    assert r.status_code == 200, r.text
    return r.json()["id"]


def make_invoice(client, auth, pdf_bytes, client_id, amount=1000, month=3, year=2024, extra_files=()):
    files = [upload(client, auth, pdf_bytes)]
    files.extend(extra_files)
    r = client.post(
        "/invoices",
        headers=auth,
        json={"client_id": client_id, "amount": amount, "month": month, "year": year, "files": files},
    )
    assert r.status_code == 200, r.text
    return r.json()["invoice_id"]


@pytest.fixture
def outbox(monkeypatch):
    sent = []

    def fake_send(email):
        sent.append(email)
        return "msg-1"

    monkeypatch.setattr(email_service, "send_email", fake_send)
    return sent


# ----------------------------
# auth
# ----------------------------

def test_protected_routes_require_bearer(client):
    for path in ("/clients", "/invoices", "/finances", "/me"):
        r = client.get(path)
        assert r.status_code == 401
        assert r.json() == {"error": True, "message": "Unauthorized"}


def test_bad_token_is_rejected(client):
    r = client.get("/finances", headers={"Authorization": "Bearer not-a-jwt"})
    assert r.status_code == 401


def test_magic_code_login_flow(client, monkeypatch):
    codes = {}
    monkeypatch.setattr(email_service, "send_login_code", lambda email, code: codes.update({email: code}))

    assert client.post("/auth/request_code", json={"email": "New@Example.com"}).status_code == 200
    code = codes["new@example.com"]

    r = client.post("/auth/verify_code", json={"email": "new@example.com", "code": code})
    assert r.status_code == 200
    token = r.json()["access_token"]

    me = client.get("/me", headers={"Authorization": f"Bearer {token}"}).json()
    assert me["email"] == "new@example.com"

    # codes are single use
    r = client.post("/auth/verify_code", json={"email": "new@example.com", "code": code})
    assert r.status_code == 401


def test_verify_code_validates_shape(client):
    r = client.post("/auth/verify_code", json={"email": "a@x.test", "code": "12"})
    assert r.status_code == 400
    assert r.json()["error"] is True


# ----------------------------
# clients
# ----------------------------

def test_client_crud(client, auth):
    cid = make_client(client, auth, currency="gbp", cc_emails=["cc@acme.test"])
    got = client.get(f"/clients/{cid}", headers=auth).json()
    assert got["currency"] == "GBP"
    assert got["cc_emails"] == ["cc@acme.test"]

    assert client.patch(f"/clients/{cid}", headers=auth, json={"vat": "IE1"}).status_code == 200
    assert client.get(f"/clients/{cid}", headers=auth).json()["vat"] == "IE1"

    assert [c["id"] for c in client.get("/clients", headers=auth).json()] == [cid]

    assert client.delete(f"/clients/{cid}", headers=auth).status_code == 200
    assert client.get(f"/clients/{cid}", headers=auth).status_code == 404


def test_client_currency_must_be_supported(client, auth):
    r = client.post("/clients", headers=auth, json={"name": "X", "currency": "USD"})
    assert r.status_code == 422
    assert r.json()["error"] is True


# ----------------------------
# uploads / files
# ----------------------------

def test_upload_rejects_non_pdf(client, auth):
    r = client.post(
        "/upload", headers=auth,
        files={"file": ("notes.txt", b"hello", "text/plain")},
        data={"file_type": "invoice"},
    )
    assert r.status_code == 400


def test_upload_rejects_large_files(client, auth, monkeypatch):
    monkeypatch.setattr(main, "MAX_UPLOAD_BYTES", 10)
    r = client.post(
        "/upload", headers=auth,
        files={"file": ("big.pdf", b"x" * 11, "application/pdf")},
        data={"file_type": "invoice"},
    )
    assert r.status_code == 400


def test_upload_and_download(client, auth, pdf_bytes):
    meta = upload(client, auth, pdf_bytes, name="March invoice.pdf")
    assert meta["file_key"].endswith("-March_invoice.pdf")
    assert meta["file_size"] == len(pdf_bytes)
    assert storage_service.file_exists(meta["file_key"])

    # the uploader can fetch it before it is attached
    assert client.get(f"/files/{meta['file_key']}", headers=auth).status_code == 200

    cid = make_client(client, auth)
    r = client.post(
        "/invoices", headers=auth,
        json={"client_id": cid, "amount": 1, "month": 1, "year": 2024, "files": [meta]},
    )
    assert r.status_code == 200
    r = client.get(f"/files/{meta['file_key']}", headers=auth)
    assert r.status_code == 200
    assert r.content == pdf_bytes


def test_delete_unattached_upload(client, auth, pdf_bytes):
    meta = upload(client, auth, pdf_bytes)
    r = client.delete(f"/files/{meta['file_key']}", headers=auth)
    assert r.json() == {"success": True, "deleted": True}
    assert not storage_service.file_exists(meta["file_key"])


# ----------------------------
# invoices
# ----------------------------

def test_invoice_requires_invoice_file(client, auth, pdf_bytes):
    cid = make_client(client, auth)
    timesheet = upload(client, auth, pdf_bytes, name="ts.pdf", file_type="timesheet")
    r = client.post(
        "/invoices", headers=auth,
        json={"client_id": cid, "amount": 1, "month": 1, "year": 2024, "files": [timesheet]},
    )
    assert r.status_code == 400


def test_invoice_month_out_of_range(client, auth, pdf_bytes):
    meta = upload(client, auth, pdf_bytes)
    r = client.post(
        "/invoices", headers=auth,
        json={"client_id": "x", "amount": 1, "month": 13, "year": 2024, "files": [meta]},
    )
    assert r.status_code == 422


def test_invoice_lifecycle(client, auth, pdf_bytes):
    cid = make_client(client, auth)
    iid = make_invoice(client, auth, pdf_bytes, cid)

    invoice = client.get(f"/invoices/{iid}", headers=auth).json()
    assert invoice["client_name"] == "Acme"
    assert len(invoice["files"]) == 1

    r = client.patch(f"/invoices/{iid}/state", headers=auth, json={"payment_received": True})
    assert r.status_code == 200
    invoice = client.get(f"/invoices/{iid}", headers=auth).json()
    assert invoice["payment_received"] is True
    assert invoice["payment_received_at"]

    old_file = invoice["files"][0]
    new_file = upload(client, auth, pdf_bytes, name="v2.pdf")
    r = client.patch(
        f"/invoices/{iid}", headers=auth,
        json={"amount": 1200, "files_to_delete": [old_file["id"]], "new_files": [new_file]},
    )
    assert r.status_code == 200
    invoice = client.get(f"/invoices/{iid}", headers=auth).json()
    assert invoice["amount"] == 1200
    assert [f["original_name"] for f in invoice["files"]] == ["v2.pdf"]
    assert not storage_service.file_exists(old_file["file_key"])

    assert client.delete(f"/invoices/{iid}", headers=auth).status_code == 200
    assert client.get(f"/invoices/{iid}", headers=auth).status_code == 404
    assert not storage_service.file_exists(new_file["file_key"])


def test_invoices_are_scoped_to_user(client, auth, pdf_bytes):
    iid = make_invoice(client, auth, pdf_bytes, make_client(client, auth))
    other = db_service.get_or_create_user("intruder@example.com")
    token = main.create_access_token({"sub": str(other), "email": "intruder@example.com", "user_id": other})
    headers = {"Authorization": f"Bearer {token}"}

    assert client.get(f"/invoices/{iid}", headers=headers).status_code == 404
    assert client.get("/invoices", headers=headers).json() == []


def _other_user_headers(email="intruder@example.com"):
    other = db_service.get_or_create_user(email)
    token = main.create_access_token({"sub": str(other), "email": email, "user_id": other})
    return {"Authorization": f"Bearer {token}"}


def test_files_cannot_be_borrowed_by_another_user(client, auth, pdf_bytes):
    owner_invoice = make_invoice(client, auth, pdf_bytes, make_client(client, auth))
    owner_file = client.get(f"/invoices/{owner_invoice}", headers=auth).json()["files"][0]
    meta = {k: owner_file[k] for k in ("file_key", "file_type", "original_name", "file_size")}
    key = meta["file_key"]

    intruder = _other_user_headers()
    their_client = make_client(client, intruder, name="Mine")
    r = client.post(
        "/invoices", headers=intruder,
        json={"client_id": their_client, "amount": 1, "month": 1, "year": 2024, "files": [meta]},
    )
    assert r.status_code == 404
    assert client.get("/invoices", headers=intruder).json() == []

    assert client.get(f"/files/{key}", headers=intruder).status_code == 404
    assert client.delete(f"/files/{key}", headers=intruder).status_code == 404
    assert storage_service.file_exists(key)
    assert client.get(f"/files/{key}", headers=auth).content == pdf_bytes


def test_unattached_upload_is_private(client, auth, pdf_bytes):
    meta = upload(client, auth, pdf_bytes, name="draft.pdf")
    intruder = _other_user_headers()

    assert client.get(f"/files/{meta['file_key']}", headers=intruder).status_code == 404
    assert client.delete(f"/files/{meta['file_key']}", headers=intruder).status_code == 404
    assert storage_service.file_exists(meta["file_key"])


def test_shared_key_survives_deleting_one_invoice(client, auth, pdf_bytes):
    cid = make_client(client, auth)
    meta = upload(client, auth, pdf_bytes)
    ids = []
    for month in (1, 2):
        r = client.post(
            "/invoices", headers=auth,
            json={"client_id": cid, "amount": 1, "month": month, "year": 2024, "files": [meta]},
        )
        ids.append(r.json()["invoice_id"])

    client.delete(f"/invoices/{ids[0]}", headers=auth)
    assert storage_service.file_exists(meta["file_key"])

    client.delete(f"/invoices/{ids[1]}", headers=auth)
    assert not storage_service.file_exists(meta["file_key"])


def test_attach_files_checks_ownership(client, auth, pdf_bytes):
    iid = make_invoice(client, auth, pdf_bytes, make_client(client, auth))
    foreign = upload(client, _other_user_headers(), pdf_bytes, name="theirs.pdf", file_type="timesheet")

    r = client.post(f"/invoices/{iid}/files", headers=auth, json=[foreign])
    assert r.status_code == 404

    mine = upload(client, auth, pdf_bytes, name="ts.pdf", file_type="timesheet")
    r = client.post(f"/invoices/{iid}/files", headers=auth, json=[mine])
    assert r.status_code == 200
    assert len(client.get(f"/invoices/{iid}", headers=auth).json()["files"]) == 2


def test_upload_signed_replaces_invoice_document(client, auth, pdf_bytes):
    iid = make_invoice(client, auth, pdf_bytes, make_client(client, auth), month=3, year=2024)
    original = client.get(f"/invoices/{iid}", headers=auth).json()["files"][0]

    signed = pdf_bytes + b"% signed\n"
    r = client.post(
        f"/invoices/{iid}/upload-signed", headers=auth,
        files={"file": ("scan.pdf", signed, "application/pdf")},
    )
    assert r.status_code == 200, r.text
    new_key = r.json()["file_key"]
    assert new_key.endswith("-2024.03.pdf")

    [doc] = client.get(f"/invoices/{iid}", headers=auth).json()["files"]
    assert doc["id"] == original["id"]
    assert doc["file_key"] == new_key
    assert doc["original_name"] == "2024.03.pdf"
    assert doc["file_size"] == len(signed)
    assert not storage_service.file_exists(original["file_key"])
    assert client.get(f"/files/{new_key}", headers=auth).content == signed


def test_upload_signed_adds_document_when_missing(client, auth, pdf_bytes):
    cid = make_client(client, auth)
    iid = db_service.create_invoice(
        db_service.get_or_create_user("owner@example.com"),
        client_id=cid, amount=5, month=11, year=2023, files=[],
    )
    r = client.post(
        f"/invoices/{iid}/upload-signed", headers=auth,
        files={"file": ("scan.pdf", pdf_bytes, "application/pdf")},
    )
    assert r.status_code == 200
    [doc] = client.get(f"/invoices/{iid}", headers=auth).json()["files"]
    assert doc["file_type"] == "invoice"
    assert doc["original_name"] == "2023.11.pdf"


def test_upload_signed_unknown_invoice(client, auth, pdf_bytes):
    r = client.post(
        "/invoices/nope/upload-signed", headers=auth,
        files={"file": ("scan.pdf", pdf_bytes, "application/pdf")},
    )
    assert r.status_code == 404


def test_delete_user_data_wipes_only_caller(client, auth, pdf_bytes):
    iid = make_invoice(client, auth, pdf_bytes, make_client(client, auth))
    key = client.get(f"/invoices/{iid}", headers=auth).json()["files"][0]["file_key"]
    draft = upload(client, auth, pdf_bytes, name="draft.pdf")
    client.post("/settings", headers=auth, json={"key": "accountant_email", "value": "acc@x.test"})

    other = _other_user_headers("neighbour@example.com")
    their_invoice = make_invoice(client, other, pdf_bytes, make_client(client, other))

    r = client.delete("/user/data", headers=auth)
    assert r.status_code == 200
    assert r.json()["success"] is True

    assert client.get("/invoices", headers=auth).json() == []
    assert client.get("/clients", headers=auth).json() == []
    assert client.get("/settings?key=accountant_email", headers=auth).json() == {"value": None}
    assert not storage_service.file_exists(key)
    assert not storage_service.file_exists(draft["file_key"])

    assert client.get(f"/invoices/{their_invoice}", headers=other).status_code == 200
    # the account itself survives
    assert client.get("/me", headers=auth).status_code == 200


def test_eur_suggestion_uses_user_rate(client, auth, pdf_bytes):
    cid = make_client(client, auth, currency="GBP")
    iid = make_invoice(client, auth, pdf_bytes, cid, amount=100)

    r = client.get(f"/invoices/{iid}/eur-suggestion", headers=auth).json()
    assert r["rate"] == 1.15
    assert r["suggested_amount_eur"] == pytest.approx(115.0)

    client.post("/settings", headers=auth, json={"key": "gbp_to_eur_rate", "value": "1.2"})
    r = client.get(f"/invoices/{iid}/eur-suggestion", headers=auth).json()
    assert r["suggested_amount_eur"] == pytest.approx(120.0)


# ----------------------------
# settings / templates
# ----------------------------

def test_settings_roundtrip(client, auth):
    assert client.get("/settings", headers=auth).status_code == 400
    assert client.get("/settings?key=accountant_email", headers=auth).json() == {"value": None}
    client.post("/settings", headers=auth, json={"key": "accountant_email", "value": "acc@x.test"})
    assert client.get("/settings?key=accountant_email", headers=auth).json() == {"value": "acc@x.test"}


def test_client_template_needs_client_id(client, auth):
    r = client.post("/email-templates", headers=auth, json={"subject": "s", "body": "b", "type": "to_client"})
    assert r.status_code == 400


def test_template_crud(client, auth):
    r = client.post("/email-templates", headers=auth, json={"subject": "s", "body": "b", "type": "to_accountant"})
    tid = r.json()["id"]
    client.patch(f"/email-templates/{tid}", headers=auth, json={"subject": "Books {{monthYear}}"})
    assert client.get(f"/email-templates/{tid}", headers=auth).json()["subject"] == "Books {{monthYear}}"
    client.delete(f"/email-templates/{tid}", headers=auth)
    assert client.get("/email-templates", headers=auth).json() == []


# ----------------------------
# email sending
# ----------------------------

def _templates(client, auth, cid):
    client.post(
        "/email-templates", headers=auth,
        json={"subject": "Invoice {{monthYear}}", "body": "Dear {{clientName}}, {{invoiceAmount}}",
              "type": "to_client", "client_id": cid},
    )
    client.post(
        "/email-templates", headers=auth,
        json={"subject": "Books {{monthYear}}", "body": "Attached.", "type": "to_accountant"},
    )


def test_send_to_client_then_accountant(client, auth, pdf_bytes, outbox):
    cid = make_client(client, auth, currency="GBP", requires_timesheet=True, cc_emails=["boss@acme.test"])
    timesheet = upload(client, auth, pdf_bytes, name="ts.pdf", file_type="timesheet")
    iid = make_invoice(client, auth, pdf_bytes, cid, amount=100, extra_files=[timesheet])
    _templates(client, auth, cid)

    r = client.post("/email/send", headers=auth, json={"invoice_id": iid, "recipient_type": "accountant"})
    assert r.status_code == 400  # not sent to client yet

    r = client.post("/email/send", headers=auth, json={"invoice_id": iid, "recipient_type": "client"})
    assert r.status_code == 200, r.text
    sent = outbox[-1]
    assert sent.to_email == "billing@acme.test"
    assert sent.subject == "Invoice March 2024"
    assert sent.body == "Dear Acme, 100,00 €"
    assert sent.cc_emails == ["boss@acme.test"]
    assert len(sent.file_keys) == 2

    r = client.post("/email/send", headers=auth, json={"invoice_id": iid, "recipient_type": "accountant"})
    assert r.status_code == 400  # accountant email not configured

    client.post("/settings", headers=auth, json={"key": "accountant_email", "value": "acc@x.test"})
    r = client.post("/email/send", headers=auth, json={"invoice_id": iid, "recipient_type": "accountant"})
    assert r.status_code == 200, r.text
    assert outbox[-1].to_email == "acc@x.test"
    assert len(outbox[-1].file_keys) == 1

    invoice = client.get(f"/invoices/{iid}", headers=auth).json()
    assert invoice["sent_to_client"] and invoice["sent_to_accountant"]
    assert invoice["amount_eur"] == pytest.approx(115.0)

    history = client.get(f"/invoices/{iid}/email-history", headers=auth).json()
    assert [h["recipient_type"] for h in history] == ["accountant", "client"]
    assert history[0]["template_name"] == "Books {{monthYear}}"


def test_send_without_client_template(client, auth, pdf_bytes, outbox):
    iid = make_invoice(client, auth, pdf_bytes, make_client(client, auth))
    r = client.post("/email/send", headers=auth, json={"invoice_id": iid, "recipient_type": "client"})
    assert r.status_code == 400
    assert outbox == []


def test_send_unknown_recipient_type(client, auth, pdf_bytes):
    iid = make_invoice(client, auth, pdf_bytes, make_client(client, auth))
    r = client.post("/email/send", headers=auth, json={"invoice_id": iid, "recipient_type": "boss"})
    assert r.status_code == 400


def test_failed_delivery_is_recorded(client, auth, pdf_bytes, monkeypatch):
    cid = make_client(client, auth)
    iid = make_invoice(client, auth, pdf_bytes, cid)
    _templates(client, auth, cid)

    def failing(email):
        raise EmailDeliveryError("Email send failed with status 401")

    monkeypatch.setattr(email_service, "send_email", failing)
    r = client.post("/email/send", headers=auth, json={"invoice_id": iid, "recipient_type": "client"})
    assert r.status_code == 502

    [entry] = client.get(f"/invoices/{iid}/email-history", headers=auth).json()
    assert entry["status"] == "failed"
    assert "401" in entry["error_message"]
    assert client.get(f"/invoices/{iid}", headers=auth).json()["sent_to_client"] is False


def test_email_verify_reports_configuration(client, auth, monkeypatch):
    assert client.get("/email/verify", headers=auth).json() == {"configured": False}
    monkeypatch.setenv("SENDGRID_API_KEY", "SG.x")
    monkeypatch.setenv("EMAIL_FROM", "billing@example.com")
    assert client.get("/email/verify", headers=auth).json() == {"configured": True}


# ----------------------------
# finances
# ----------------------------

def test_finances_end_to_end(client, auth, pdf_bytes):
    acme = make_client(client, auth, name="Acme")
    brit = make_client(client, auth, name="Brit Ltd", currency="GBP")
    a = make_invoice(client, auth, pdf_bytes, acme, amount=1000, month=3, year=2024)
    b = make_invoice(client, auth, pdf_bytes, brit, amount=500, month=3, year=2024)
    c = make_invoice(client, auth, pdf_bytes, brit, amount=200, month=12, year=2023)

    client.patch(f"/invoices/{a}/state", headers=auth, json={"sent_to_client": True})
    client.patch(f"/invoices/{b}/state", headers=auth, json={"sent_to_client": True, "sent_to_accountant": True})
    client.patch(f"/invoices/{c}/state", headers=auth, json={"amount_eur": 250})

    r = client.get("/finances", headers=auth)
    assert r.status_code == 200
    body = r.json()
    assert body["totalIncome"] == pytest.approx(1825.0)
    assert body["pendingToAccountant"] == pytest.approx(1000.0)
    assert body["sentToClient"] == pytest.approx(1575.0)
    assert body["sentToAccountant"] == pytest.approx(575.0)
    assert [x["name"] for x in body["byClient"]] == ["Acme", "Brit Ltd"]
    assert [x["month"] for x in body["byMonth"]] == ["2023-12", "2024-03"]
    assert [x["year"] for x in body["byYear"]] == [2023, 2024]


def test_finances_empty(client, auth):
    body = client.get("/finances", headers=auth).json()
    assert body["totalIncome"] == 0
    assert body["byClient"] == [] and body["byMonth"] == [] and body["byYear"] == []


def test_finances_ignores_bad_rate_setting(client, auth, pdf_bytes):
    cid = make_client(client, auth, currency="GBP")
    make_invoice(client, auth, pdf_bytes, cid, amount=100)
    client.post("/settings", headers=auth, json={"key": "gbp_to_eur_rate", "value": "abc"})
    assert client.get("/finances", headers=auth).json()["totalIncome"] == pytest.approx(115.0)


def test_finances_storage_failure_is_500(client, auth, monkeypatch):
    def broken(user_id):
        raise RuntimeError("database is locked")

    monkeypatch.setattr(db_service, "list_finance_invoices", broken)
    r = client.get("/finances", headers=auth)
    assert r.status_code == 500
    assert r.json() == {"error": True, "message": "database is locked"}


# ----------------------------
# pdf extraction
# ----------------------------

def test_extract_requires_credentials(client, auth, pdf_bytes):
    r = client.post("/pdf/extract", headers=auth, files={"file": ("a.pdf", pdf_bytes, "application/pdf")})
    assert r.status_code == 500
    assert r.json()["error"] is True


def test_extract_returns_data_and_warning(client, auth, pdf_bytes, monkeypatch):
    monkeypatch.setattr(extraction_service, "is_configured", lambda: True)
    monkeypatch.setattr(
        extraction_service, "extract_pdf",
        lambda name, content: ExtractedPDFData(client_name="Acme", confidence="low"),
    )
    r = client.post("/pdf/extract", headers=auth, files={"file": ("a.pdf", pdf_bytes, "application/pdf")})
    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert body["data"]["client_name"] == "Acme"
    assert "warning" in body


def test_extract_rejects_non_pdf(client, auth, monkeypatch):
    monkeypatch.setattr(extraction_service, "is_configured", lambda: True)
    r = client.post("/pdf/extract", headers=auth, files={"file": ("a.png", b"\x89PNG", "image/png")})
    assert r.status_code == 400


def test_extract_keeps_missing_fields_as_null(client, auth, pdf_bytes, monkeypatch):
    monkeypatch.setattr(extraction_service, "is_configured", lambda: True)
    monkeypatch.setattr(extraction_service, "extract_pdf", lambda name, content: ExtractedPDFData(amount=10.0))
    body = client.post(
        "/pdf/extract", headers=auth, files={"file": ("a.pdf", pdf_bytes, "application/pdf")}
    ).json()
    data = body["data"]
    for field in ("due_date", "month", "year", "client_name"):
        assert field in data and data[field] is None
    assert data["amount"] == 10.0


# ----------------------------
# user preferences
# ----------------------------

def test_preferences_single_and_bulk(client, auth):
    r = client.post("/user-preferences", headers=auth, json={"key": "theme", "value": "dark"})
    assert r.json()["success"] is True
    assert client.get("/user-preferences?key=theme", headers=auth).json() == {
        "success": True, "key": "theme", "value": "dark",
    }

    client.post("/user-preferences", headers=auth, json={"preferences": {"page_size": 25, "compact": True}})
    prefs = client.get("/user-preferences", headers=auth).json()["preferences"]
    assert prefs == {"compact": "true", "page_size": "25", "theme": "dark"}

    # preferences share the settings store
    assert client.get("/settings?key=theme", headers=auth).json() == {"value": "dark"}


def test_preferences_need_key_value_or_bulk(client, auth):
    r = client.post("/user-preferences", headers=auth, json={"key": "theme"})
    assert r.status_code == 400
    assert r.json()["error"] is True
