# app/services/db_service.py
from __future__ import annotations

import os
import json
import sqlite3
from contextlib import closing
from typing import Any, Dict, List, Optional
from uuid import uuid4

from app.services.finance_service import FinanceInvoice, REPORTING_CURRENCY, UNKNOWN_CLIENT

# ------------------------------------------------------------------------------
# Config
# ------------------------------------------------------------------------------

BASE_DIR = os.path.dirname(os.path.dirname(__file__))  # project/app -> project
DATA_DIR = os.getenv("DATA_DIR", os.path.join(BASE_DIR, "data"))
DB_PATH = os.getenv("DB_PATH", os.path.join(DATA_DIR, "invoices.db"))

os.makedirs(DATA_DIR, exist_ok=True)


# ------------------------------------------------------------------------------
# DB helpers
# ------------------------------------------------------------------------------


def _connect() -> sqlite3.Connection:
    conn = sqlite3.connect(DB_PATH)
    conn.row_factory = sqlite3.Row
    return conn


def _new_id(prefix: str) -> str:
    return f"{prefix}-{uuid4().hex[:16]}"


def _table_has_column(conn: sqlite3.Connection, table: str, column: str) -> bool:
    rows = conn.execute(f"PRAGMA table_info({table});").fetchall()
    cols = {r["name"] for r in rows}
    return column in cols


def _ensure_invoices_amount_eur(conn: sqlite3.Connection) -> None:
    """
    For existing DBs: invoices created before GBP support have no amount_eur column.
    """
    if not _table_has_column(conn, "invoices", "amount_eur"):
        conn.execute("ALTER TABLE invoices ADD COLUMN amount_eur REAL;")


def _ensure_clients_currency(conn: sqlite3.Connection) -> None:
    if not _table_has_column(conn, "clients", "currency"):
        conn.execute("ALTER TABLE clients ADD COLUMN currency TEXT;")


def _safe_json(obj: Any) -> str:
    try:
        return json.dumps(obj, ensure_ascii=False, default=str)
    except Exception:
        return "[]"


# ------------------------------------------------------------------------------
# Boundary coercion: sqlite rows -> strict values
# ------------------------------------------------------------------------------


def _to_bool(x: Any) -> bool:
    if x is None:
        return False
    if isinstance(x, bool):
        return x
    if isinstance(x, (int, float)):
        return bool(x)
    if isinstance(x, str):
        return x.strip().lower() in ("1", "true", "yes", "y", "t")
    return False


def _to_int(x: Any) -> Optional[int]:
    if x is None or isinstance(x, bool):
        return None
    try:
        return int(str(x).strip())
    except (TypeError, ValueError):
        return None


def _to_float(x: Any) -> Optional[float]:
    if x is None or isinstance(x, bool):
        return None
    try:
        return float(str(x).strip())
    except (TypeError, ValueError):
        return None


def _to_str_list(val: Any) -> List[str]:
    if val is None:
        return []
    if isinstance(val, list):
        items = val
    else:
        s = str(val).strip()
        if not s:
            return []
        try:
            items = json.loads(s)
        except ValueError:
            items = s.split(",")
        if not isinstance(items, list):
            items = [items]
    return [str(x).strip() for x in items if str(x).strip()]


def _currency_or_default(val: Any) -> str:
    s = (str(val).strip().upper() if val is not None else "")
    return s or REPORTING_CURRENCY


def finance_invoice_from_row(r: Dict[str, Any]) -> FinanceInvoice:
    """
    Single place where loosely typed invoice rows become aggregator input.
    """
    return FinanceInvoice(
        id=str(r.get("id") or ""),
        amount=_to_float(r.get("amount")) or 0.0,
        amount_eur=_to_float(r.get("amount_eur")),
        client_currency=_currency_or_default(r.get("client_currency")),
        client_name=(r.get("client_name") or "").strip() or UNKNOWN_CLIENT,
        year=_to_int(r.get("year")),
        month=_to_int(r.get("month")),
        sent_to_client=_to_bool(r.get("sent_to_client")),
        sent_to_accountant=_to_bool(r.get("sent_to_accountant")),
        payment_received=_to_bool(r.get("payment_received")),
    )


# ------------------------------------------------------------------------------
# Init / schema
# ------------------------------------------------------------------------------


def init_db() -> None:
    """
    Creates tables if missing and performs minimal safe schema upgrades.
    """
    with closing(_connect()) as conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS users (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                email TEXT UNIQUE NOT NULL,
                created_at TEXT DEFAULT (datetime('now'))
            );
            """
        )

        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS clients (
                id TEXT PRIMARY KEY,
                user_id INTEGER NOT NULL,
                name TEXT NOT NULL,
                email TEXT NOT NULL DEFAULT '',
                requires_timesheet INTEGER DEFAULT 0,
                cc_emails TEXT,
                currency TEXT,
                address TEXT,
                vat TEXT,
                created_at TEXT DEFAULT (datetime('now')),
                updated_at TEXT
            );
            """
        )
        conn.execute("CREATE INDEX IF NOT EXISTS idx_clients_user_id ON clients(user_id);")

        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS invoices (
                id TEXT PRIMARY KEY,
                user_id INTEGER NOT NULL,
                client_id TEXT NOT NULL,
                amount REAL,
                amount_eur REAL,
                due_date TEXT,
                month INTEGER,
                year INTEGER,
                notes TEXT,
                uploaded_at TEXT DEFAULT (datetime('now')),

                sent_to_client INTEGER DEFAULT 0,
                sent_to_client_at TEXT,
                payment_received INTEGER DEFAULT 0,
                payment_received_at TEXT,
                sent_to_accountant INTEGER DEFAULT 0,
                sent_to_accountant_at TEXT
            );
            """
        )
        conn.execute("CREATE INDEX IF NOT EXISTS idx_invoices_user_id ON invoices(user_id);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_invoices_client_id ON invoices(client_id);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_invoices_month_year ON invoices(year, month);")

        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS invoice_files (
                id TEXT PRIMARY KEY,
                user_id INTEGER NOT NULL,
                invoice_id TEXT NOT NULL,
                file_key TEXT NOT NULL,
                file_type TEXT NOT NULL,
                original_name TEXT NOT NULL,
                file_size INTEGER,
                uploaded_at TEXT DEFAULT (datetime('now'))
            );
            """
        )
        conn.execute("CREATE INDEX IF NOT EXISTS idx_invoice_files_invoice_id ON invoice_files(invoice_id);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_invoice_files_file_key ON invoice_files(file_key);")

        # who stored each blob; attach/download/delete are checked against it
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS uploads (
                file_key TEXT PRIMARY KEY,
                user_id INTEGER NOT NULL,
                original_name TEXT,
                file_size INTEGER,
                uploaded_at TEXT DEFAULT (datetime('now'))
            );
            """
        )
        conn.execute("CREATE INDEX IF NOT EXISTS idx_uploads_user_id ON uploads(user_id);")

        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS settings (
                user_id INTEGER NOT NULL,
                key TEXT NOT NULL,
                value TEXT NOT NULL,
                updated_at TEXT DEFAULT (datetime('now')),
                PRIMARY KEY (user_id, key)
            );
            """
        )

        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS email_templates (
                id TEXT PRIMARY KEY,
                user_id INTEGER NOT NULL,
                subject TEXT NOT NULL,
                body TEXT NOT NULL,
                type TEXT NOT NULL,
                client_id TEXT,
                created_at TEXT DEFAULT (datetime('now')),
                updated_at TEXT
            );
            """
        )

        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS email_history (
                id TEXT PRIMARY KEY,
                user_id INTEGER NOT NULL,
                invoice_id TEXT NOT NULL,
                template_id TEXT,
                recipient_email TEXT NOT NULL,
                recipient_name TEXT,
                recipient_type TEXT NOT NULL,
                subject TEXT NOT NULL,
                body TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'sent',
                error_message TEXT,
                sent_at TEXT DEFAULT (datetime('now'))
            );
            """
        )
        conn.execute("CREATE INDEX IF NOT EXISTS idx_email_history_invoice ON email_history(invoice_id);")

        _ensure_invoices_amount_eur(conn)
        _ensure_clients_currency(conn)

        conn.commit()


# ------------------------------------------------------------------------------
# Users
# ------------------------------------------------------------------------------


def get_or_create_user(email: str) -> int:
    """
    Magic-code login needs a DB user_id even though no password is used.
    """
    init_db()
    email_norm = (email or "").strip().lower()
    if not email_norm or "@" not in email_norm:
        raise ValueError("Valid email required")

    with closing(_connect()) as conn:
        row = conn.execute("SELECT id FROM users WHERE email = ?;", (email_norm,)).fetchone()
        if row:
            return int(row["id"])
        cur = conn.execute("INSERT INTO users (email) VALUES (?);", (email_norm,))
        conn.commit()
        return int(cur.lastrowid)


# ------------------------------------------------------------------------------
# Clients
# ------------------------------------------------------------------------------


def _client_from_row(row: sqlite3.Row) -> Dict[str, Any]:
    d = dict(row)
    d.pop("user_id", None)
    d["requires_timesheet"] = _to_bool(d.get("requires_timesheet"))
    d["cc_emails"] = _to_str_list(d.get("cc_emails"))
    d["currency"] = _currency_or_default(d.get("currency"))
    d["email"] = d.get("email") or ""
    return d


def list_clients(user_id: int) -> List[Dict[str, Any]]:
    init_db()
    with closing(_connect()) as conn:
        rows = conn.execute(
            "SELECT * FROM clients WHERE user_id = ? ORDER BY name COLLATE NOCASE ASC;",
            (int(user_id),),
        ).fetchall()
    return [_client_from_row(r) for r in rows]


def get_client(client_id: str, user_id: int) -> Optional[Dict[str, Any]]:
    init_db()
    with closing(_connect()) as conn:
        row = conn.execute(
            "SELECT * FROM clients WHERE id = ? AND user_id = ?;",
            (client_id, int(user_id)),
        ).fetchone()
    return _client_from_row(row) if row else None


def create_client(
    user_id: int,
    *,
    name: str,
    email: str = "",
    requires_timesheet: bool = False,
    cc_emails: Optional[List[str]] = None,
    currency: Optional[str] = None,
    address: Optional[str] = None,
    vat: Optional[str] = None,
) -> str:
    init_db()
    client_id = _new_id("client")
    cc = _to_str_list(cc_emails)
    with closing(_connect()) as conn:
        conn.execute(
            """
            INSERT INTO clients (id, user_id, name, email, requires_timesheet, cc_emails, currency, address, vat)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (
                client_id,
                int(user_id),
                (name or "").strip(),
                (email or "").strip(),
                1 if requires_timesheet else 0,
                _safe_json(cc) if cc else None,
                currency or None,
                address or None,
                vat or None,
            ),
        )
        conn.commit()
    return client_id


def update_client(client_id: str, user_id: int, **changes: Any) -> None:
    """
    Partial update; keys with value None are ignored. An empty cc list clears the column.
    """
    init_db()
    fields: List[str] = []
    values: List[Any] = []

    for k in ("name", "email", "address", "vat", "currency"):
        v = changes.get(k)
        if v is not None:
            fields.append(f"{k} = ?")
            values.append(v.strip() if isinstance(v, str) else v)

    if changes.get("requires_timesheet") is not None:
        fields.append("requires_timesheet = ?")
        values.append(1 if changes["requires_timesheet"] else 0)

    if changes.get("cc_emails") is not None:
        cc = _to_str_list(changes["cc_emails"])
        fields.append("cc_emails = ?")
        values.append(_safe_json(cc) if cc else None)

    fields.append("updated_at = datetime('now')")
    values.extend([client_id, int(user_id)])

    with closing(_connect()) as conn:
        conn.execute(
            f"UPDATE clients SET {', '.join(fields)} WHERE id = ? AND user_id = ?;",
            tuple(values),
        )
        conn.commit()


def delete_client(client_id: str, user_id: int) -> None:
    init_db()
    with closing(_connect()) as conn:
        conn.execute("DELETE FROM clients WHERE id = ? AND user_id = ?;", (client_id, int(user_id)))
        conn.commit()


# ------------------------------------------------------------------------------
# Settings
# ------------------------------------------------------------------------------


def get_setting(key: str, user_id: int) -> Optional[str]:
    init_db()
    with closing(_connect()) as conn:
        row = conn.execute(
            "SELECT value FROM settings WHERE user_id = ? AND key = ?;",
            (int(user_id), key),
        ).fetchone()
    if not row:
        return None
    return row["value"] or None


def set_setting(key: str, value: str, user_id: int) -> None:
    init_db()
    with closing(_connect()) as conn:
        conn.execute(
            """
            INSERT INTO settings (user_id, key, value, updated_at)
            VALUES (?, ?, ?, datetime('now'))
            ON CONFLICT(user_id, key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at;
            """,
            (int(user_id), key, "" if value is None else str(value)),
        )
        conn.commit()


def list_settings(user_id: int) -> Dict[str, str]:
    init_db()
    with closing(_connect()) as conn:
        rows = conn.execute(
            "SELECT key, value FROM settings WHERE user_id = ? ORDER BY key ASC;",
            (int(user_id),),
        ).fetchall()
    return {r["key"]: r["value"] for r in rows}


def set_settings(values: Dict[str, str], user_id: int) -> None:
    for key, value in values.items():
        set_setting(key, value, user_id)


def get_accountant_email(user_id: int) -> Optional[str]:
    return get_setting("accountant_email", user_id)


# ------------------------------------------------------------------------------
# Invoices
# ------------------------------------------------------------------------------

_INVOICE_SELECT = """
    SELECT i.*,
           c.name AS client_name,
           c.email AS client_email,
           c.currency AS client_currency,
           c.requires_timesheet AS requires_timesheet
    FROM invoices i
    LEFT JOIN clients c ON c.id = i.client_id AND c.user_id = i.user_id
"""


def _file_from_row(row: sqlite3.Row) -> Dict[str, Any]:
    d = dict(row)
    d.pop("user_id", None)
    d["file_size"] = _to_int(d.get("file_size"))
    return d


def _invoice_from_row(row: sqlite3.Row, files: List[Dict[str, Any]]) -> Dict[str, Any]:
    d = dict(row)
    d.pop("user_id", None)
    d["client_name"] = d.get("client_name") or ""
    d["client_email"] = d.get("client_email") or ""
    d["client_currency"] = _currency_or_default(d.get("client_currency"))
    d["requires_timesheet"] = _to_bool(d.get("requires_timesheet"))
    d["amount"] = _to_float(d.get("amount"))
    d["amount_eur"] = _to_float(d.get("amount_eur"))
    d["month"] = _to_int(d.get("month"))
    d["year"] = _to_int(d.get("year"))
    for flag in ("sent_to_client", "payment_received", "sent_to_accountant"):
        d[flag] = _to_bool(d.get(flag))
    d["files"] = files
    return d


def _files_for(conn: sqlite3.Connection, invoice_ids: List[str]) -> Dict[str, List[Dict[str, Any]]]:
    out: Dict[str, List[Dict[str, Any]]] = {i: [] for i in invoice_ids}
    if not invoice_ids:
        return out
    placeholders = ",".join(["?"] * len(invoice_ids))
    rows = conn.execute(
        f"""
        SELECT * FROM invoice_files
        WHERE invoice_id IN ({placeholders})
        ORDER BY file_type ASC, uploaded_at ASC, rowid ASC;
        """,
        tuple(invoice_ids),
    ).fetchall()
    for r in rows:
        out.setdefault(r["invoice_id"], []).append(_file_from_row(r))
    return out


def list_invoices(user_id: int) -> List[Dict[str, Any]]:
    init_db()
    with closing(_connect()) as conn:
        rows = conn.execute(
            _INVOICE_SELECT
            + " WHERE i.user_id = ? ORDER BY i.year DESC, i.month DESC, i.uploaded_at DESC, i.rowid DESC;",
            (int(user_id),),
        ).fetchall()
        files = _files_for(conn, [r["id"] for r in rows])
    return [_invoice_from_row(r, files.get(r["id"], [])) for r in rows]


def get_invoice(invoice_id: str, user_id: int) -> Optional[Dict[str, Any]]:
    init_db()
    with closing(_connect()) as conn:
        row = conn.execute(
            _INVOICE_SELECT + " WHERE i.id = ? AND i.user_id = ?;",
            (invoice_id, int(user_id)),
        ).fetchone()
        if not row:
            return None
        files = _files_for(conn, [row["id"]])
    return _invoice_from_row(row, files.get(row["id"], []))


def list_finance_invoices(user_id: int) -> List[FinanceInvoice]:
    """
    Invoice set for the finance report, client name/currency denormalized and coerced.
    """
    init_db()
    with closing(_connect()) as conn:
        rows = conn.execute(
            """
            SELECT i.id, i.amount, i.amount_eur, i.year, i.month,
                   i.sent_to_client, i.sent_to_accountant, i.payment_received,
                   c.name AS client_name,
                   c.currency AS client_currency
            FROM invoices i
            LEFT JOIN clients c ON c.id = i.client_id AND c.user_id = i.user_id
            WHERE i.user_id = ?;
            """,
            (int(user_id),),
        ).fetchall()
    return [finance_invoice_from_row(dict(r)) for r in rows]


def _insert_files(conn: sqlite3.Connection, user_id: int, invoice_id: str, files: List[Dict[str, Any]]) -> None:
    for f in files:
        conn.execute(
            """
            INSERT INTO invoice_files (id, user_id, invoice_id, file_key, file_type, original_name, file_size)
            VALUES (?, ?, ?, ?, ?, ?, ?);
            """,
            (
                _new_id("file"),
                int(user_id),
                invoice_id,
                f["file_key"],
                f["file_type"],
                f["original_name"],
                _to_int(f.get("file_size")),
            ),
        )


def resolve_or_create_client(user_id: int, client_id: str, client_name: Optional[str] = None) -> str:
    """
    Returns client_id if it exists for this user; otherwise creates a placeholder
    client (empty email) and returns the new id. A '__new__<Name>' id carries the name.
    """
    if get_client(client_id, user_id):
        return client_id

    name = (client_name or "").strip()
    if not name and client_id.startswith("__new__"):
        name = client_id[len("__new__"):].strip()
    if not name:
        name = client_id
    return create_client(user_id, name=name, email="")


def create_invoice(
    user_id: int,
    *,
    client_id: str,
    amount: float,
    month: int,
    year: int,
    files: List[Dict[str, Any]],
    client_name: Optional[str] = None,
    due_date: Optional[str] = None,
    notes: Optional[str] = None,
    is_old_import: bool = False,
) -> str:
    init_db()
    final_client_id = resolve_or_create_client(user_id, client_id, client_name)
    invoice_id = _new_id("invoice")
    done = 1 if is_old_import else 0
    stamp = "datetime('now')" if is_old_import else "NULL"

    with closing(_connect()) as conn:
        conn.execute(
            f"""
            INSERT INTO invoices (
                id, user_id, client_id, amount, due_date, month, year, notes,
                sent_to_client, sent_to_client_at,
                sent_to_accountant, sent_to_accountant_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, {stamp}, ?, {stamp});
            """,
            (
                invoice_id,
                int(user_id),
                final_client_id,
                float(amount),
                due_date,
                int(month),
                int(year),
                notes,
                done,
                done,
            ),
        )
        _insert_files(conn, user_id, invoice_id, files)
        conn.commit()
    return invoice_id


def add_invoice_files(invoice_id: str, user_id: int, files: List[Dict[str, Any]]) -> None:
    init_db()
    with closing(_connect()) as conn:
        _insert_files(conn, user_id, invoice_id, files)
        conn.commit()


def update_invoice(
    invoice_id: str,
    user_id: int,
    *,
    client_id: Optional[str] = None,
    amount: Optional[float] = None,
    due_date: Optional[str] = None,
    month: Optional[int] = None,
    year: Optional[int] = None,
    notes: Optional[str] = None,
    files_to_delete: Optional[List[str]] = None,
    new_files: Optional[List[Dict[str, Any]]] = None,
) -> List[str]:
    """
    Partial update. Returns the storage keys of deleted file rows so the caller
    can remove the blobs.
    """
    init_db()
    fields: List[str] = []
    values: List[Any] = []

    for col, v in (
        ("client_id", client_id),
        ("amount", amount),
        ("due_date", due_date),
        ("month", month),
        ("year", year),
        ("notes", notes),
    ):
        if v is not None:
            fields.append(f"{col} = ?")
            values.append(v)

    removed_keys: List[str] = []
    with closing(_connect()) as conn:
        if fields:
            values.extend([invoice_id, int(user_id)])
            conn.execute(
                f"UPDATE invoices SET {', '.join(fields)} WHERE id = ? AND user_id = ?;",
                tuple(values),
            )

        ids = [str(x) for x in (files_to_delete or []) if str(x).strip()]
        if ids:
            placeholders = ",".join(["?"] * len(ids))
            params = tuple(ids) + (invoice_id, int(user_id))
            rows = conn.execute(
                f"SELECT file_key FROM invoice_files WHERE id IN ({placeholders}) AND invoice_id = ? AND user_id = ?;",
                params,
            ).fetchall()
            removed_keys = [r["file_key"] for r in rows]
            conn.execute(
                f"DELETE FROM invoice_files WHERE id IN ({placeholders}) AND invoice_id = ? AND user_id = ?;",
                params,
            )

        if new_files:
            _insert_files(conn, user_id, invoice_id, new_files)
        conn.commit()
    return removed_keys


def update_invoice_state(
    invoice_id: str,
    user_id: int,
    *,
    sent_to_client: Optional[bool] = None,
    payment_received: Optional[bool] = None,
    sent_to_accountant: Optional[bool] = None,
    amount_eur: Optional[float] = None,
    set_amount_eur: bool = False,
) -> None:
    """
    Flags are independent. Setting one true stamps its *_at column; setting it
    false leaves the previous timestamp alone.
    """
    init_db()
    sets: List[str] = []
    values: List[Any] = []

    for col, v in (
        ("sent_to_client", sent_to_client),
        ("payment_received", payment_received),
        ("sent_to_accountant", sent_to_accountant),
    ):
        if v is None:
            continue
        sets.append(f"{col} = ?")
        values.append(1 if v else 0)
        if v:
            sets.append(f"{col}_at = datetime('now')")

    if set_amount_eur or amount_eur is not None:
        sets.append("amount_eur = ?")
        values.append(amount_eur)

    if not sets:
        return

    values.extend([invoice_id, int(user_id)])
    with closing(_connect()) as conn:
        conn.execute(
            f"UPDATE invoices SET {', '.join(sets)} WHERE id = ? AND user_id = ?;",
            tuple(values),
        )
        conn.commit()


def delete_invoice(invoice_id: str, user_id: int) -> List[str]:
    """
    Deletes the invoice, its file rows and its email history. Returns file keys.
    """
    init_db()
    with closing(_connect()) as conn:
        rows = conn.execute(
            "SELECT file_key FROM invoice_files WHERE invoice_id = ? AND user_id = ?;",
            (invoice_id, int(user_id)),
        ).fetchall()
        conn.execute("DELETE FROM invoice_files WHERE invoice_id = ? AND user_id = ?;", (invoice_id, int(user_id)))
        conn.execute("DELETE FROM email_history WHERE invoice_id = ? AND user_id = ?;", (invoice_id, int(user_id)))
        conn.execute("DELETE FROM invoices WHERE id = ? AND user_id = ?;", (invoice_id, int(user_id)))
        conn.commit()
    return [r["file_key"] for r in rows]


def replace_invoice_document(
    invoice_id: str,
    user_id: int,
    *,
    file_key: str,
    original_name: str,
    file_size: Optional[int] = None,
) -> Optional[str]:
    """
    Points the invoice's first 'invoice' file row at a new blob, or adds one.
    Returns the storage key that was replaced, if any.
    """
    init_db()
    with closing(_connect()) as conn:
        row = conn.execute(
            """
            SELECT id, file_key FROM invoice_files
            WHERE invoice_id = ? AND user_id = ? AND file_type = 'invoice'
            ORDER BY uploaded_at ASC, rowid ASC
            LIMIT 1;
            """,
            (invoice_id, int(user_id)),
        ).fetchone()

        if row:
            conn.execute(
                """
                UPDATE invoice_files
                SET file_key = ?, original_name = ?, file_size = ?, uploaded_at = datetime('now')
                WHERE id = ?;
                """,
                (file_key, original_name, _to_int(file_size), row["id"]),
            )
        else:
            _insert_files(
                conn,
                user_id,
                invoice_id,
                [{"file_key": file_key, "file_type": "invoice", "original_name": original_name, "file_size": file_size}],
            )
        conn.commit()
    return row["file_key"] if row else None


# ------------------------------------------------------------------------------
# File ownership
# ------------------------------------------------------------------------------


def record_upload(file_key: str, user_id: int, original_name: str = "", file_size: Optional[int] = None) -> None:
    init_db()
    with closing(_connect()) as conn:
        conn.execute(
            """
            INSERT INTO uploads (file_key, user_id, original_name, file_size)
            VALUES (?, ?, ?, ?);
            """,
            (file_key, int(user_id), original_name, _to_int(file_size)),
        )
        conn.commit()


def user_owns_file(file_key: str, user_id: int) -> bool:
    """
    The uploader owns a key. Keys attached before uploads were recorded fall
    back to the invoice_files owner.
    """
    init_db()
    with closing(_connect()) as conn:
        row = conn.execute("SELECT user_id FROM uploads WHERE file_key = ?;", (file_key,)).fetchone()
        if row:
            return int(row["user_id"]) == int(user_id)
        row = conn.execute(
            "SELECT 1 FROM invoice_files WHERE file_key = ? AND user_id = ? LIMIT 1;",
            (file_key, int(user_id)),
        ).fetchone()
    return bool(row)


def file_key_in_use(file_key: str) -> bool:
    """True if any invoice file row still references this storage key."""
    init_db()
    with closing(_connect()) as conn:
        row = conn.execute(
            "SELECT 1 FROM invoice_files WHERE file_key = ? LIMIT 1;",
            (file_key,),
        ).fetchone()
    return bool(row)


def release_file_keys(file_keys: List[str]) -> List[str]:
    """
    Of the given keys, returns those no invoice file row references any more
    and forgets their upload records. Only those blobs are safe to delete.
    """
    keys = [k for k in dict.fromkeys(file_keys or []) if k]
    if not keys:
        return []
    init_db()
    released: List[str] = []
    with closing(_connect()) as conn:
        for key in keys:
            still_used = conn.execute(
                "SELECT 1 FROM invoice_files WHERE file_key = ? LIMIT 1;", (key,)
            ).fetchone()
            if still_used:
                continue
            conn.execute("DELETE FROM uploads WHERE file_key = ?;", (key,))
            released.append(key)
        conn.commit()
    return released


# ------------------------------------------------------------------------------
# Account wipe
# ------------------------------------------------------------------------------


def delete_user_data(user_id: int) -> List[str]:
    """
    Removes every invoice, file row, upload record, client, template, history
    entry and setting of the user. The user row stays so the session keeps
    working. Returns the storage keys that were referenced.
    """
    init_db()
    uid = int(user_id)
    with closing(_connect()) as conn:
        keys = [r["file_key"] for r in conn.execute(
            "SELECT file_key FROM invoice_files WHERE user_id = ?;", (uid,)
        ).fetchall()]
        keys += [r["file_key"] for r in conn.execute(
            "SELECT file_key FROM uploads WHERE user_id = ?;", (uid,)
        ).fetchall()]

        for table in ("invoice_files", "email_history", "invoices", "clients", "email_templates", "settings", "uploads"):
            conn.execute(f"DELETE FROM {table} WHERE user_id = ?;", (uid,))
        conn.commit()
    return list(dict.fromkeys(keys))


# ------------------------------------------------------------------------------
# Email templates
# ------------------------------------------------------------------------------


def _template_from_row(row: sqlite3.Row) -> Dict[str, Any]:
    d = dict(row)
    d.pop("user_id", None)
    return d


def list_email_templates(user_id: int) -> List[Dict[str, Any]]:
    init_db()
    with closing(_connect()) as conn:
        rows = conn.execute(
            "SELECT * FROM email_templates WHERE user_id = ? ORDER BY type ASC, created_at ASC, rowid ASC;",
            (int(user_id),),
        ).fetchall()
    return [_template_from_row(r) for r in rows]


def get_email_template(template_id: str, user_id: int) -> Optional[Dict[str, Any]]:
    init_db()
    with closing(_connect()) as conn:
        row = conn.execute(
            "SELECT * FROM email_templates WHERE id = ? AND user_id = ?;",
            (template_id, int(user_id)),
        ).fetchone()
    return _template_from_row(row) if row else None


def create_email_template(
    user_id: int,
    *,
    subject: str,
    body: str,
    type: str,
    client_id: Optional[str] = None,
) -> str:
    init_db()
    template_id = _new_id("template")
    with closing(_connect()) as conn:
        conn.execute(
            """
            INSERT INTO email_templates (id, user_id, subject, body, type, client_id)
            VALUES (?, ?, ?, ?, ?, ?);
            """,
            (template_id, int(user_id), subject, body, type, client_id),
        )
        conn.commit()
    return template_id


def update_email_template(template_id: str, user_id: int, **changes: Any) -> None:
    init_db()
    fields: List[str] = []
    values: List[Any] = []
    for k in ("subject", "body", "type", "client_id"):
        if changes.get(k) is not None:
            fields.append(f"{k} = ?")
            values.append(changes[k])
    fields.append("updated_at = datetime('now')")
    values.extend([template_id, int(user_id)])

    with closing(_connect()) as conn:
        conn.execute(
            f"UPDATE email_templates SET {', '.join(fields)} WHERE id = ? AND user_id = ?;",
            tuple(values),
        )
        conn.commit()


def delete_email_template(template_id: str, user_id: int) -> None:
    init_db()
    with closing(_connect()) as conn:
        conn.execute("DELETE FROM email_templates WHERE id = ? AND user_id = ?;", (template_id, int(user_id)))
        conn.commit()


def get_client_email_template(client_id: str, user_id: int) -> Optional[Dict[str, Any]]:
    """
    The to_client template bound to this client (most recently created wins).
    """
    init_db()
    with closing(_connect()) as conn:
        row = conn.execute(
            """
            SELECT * FROM email_templates
            WHERE user_id = ? AND type = 'to_client' AND client_id = ?
            ORDER BY created_at DESC, rowid DESC
            LIMIT 1;
            """,
            (int(user_id), client_id),
        ).fetchone()
    return _template_from_row(row) if row else None


def get_accountant_email_template(user_id: int) -> Optional[Dict[str, Any]]:
    init_db()
    with closing(_connect()) as conn:
        row = conn.execute(
            """
            SELECT * FROM email_templates
            WHERE user_id = ? AND type = 'to_accountant'
            ORDER BY created_at DESC, rowid DESC
            LIMIT 1;
            """,
            (int(user_id),),
        ).fetchone()
    return _template_from_row(row) if row else None


# ------------------------------------------------------------------------------
# Email history
# ------------------------------------------------------------------------------


def record_email(
    user_id: int,
    *,
    invoice_id: str,
    recipient_email: str,
    recipient_type: str,
    subject: str,
    body: str,
    template_id: Optional[str] = None,
    recipient_name: Optional[str] = None,
    status: str = "sent",
    error_message: Optional[str] = None,
) -> str:
    init_db()
    email_id = _new_id("email")
    with closing(_connect()) as conn:
        conn.execute(
            """
            INSERT INTO email_history (
                id, user_id, invoice_id, template_id, recipient_email, recipient_name,
                recipient_type, subject, body, status, error_message
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (
                email_id,
                int(user_id),
                invoice_id,
                template_id,
                recipient_email or "",
                recipient_name,
                recipient_type,
                subject or "",
                body or "",
                status,
                error_message,
            ),
        )
        conn.commit()
    return email_id


def list_email_history(invoice_id: str, user_id: int) -> List[Dict[str, Any]]:
    """
    Newest first; template_name is the subject of the template if it still exists.
    """
    init_db()
    with closing(_connect()) as conn:
        rows = conn.execute(
            """
            SELECT h.*, t.subject AS template_name
            FROM email_history h
            LEFT JOIN email_templates t ON t.id = h.template_id AND t.user_id = h.user_id
            WHERE h.invoice_id = ? AND h.user_id = ?
            ORDER BY h.sent_at DESC, h.rowid DESC;
            """,
            (invoice_id, int(user_id)),
        ).fetchall()

    out: List[Dict[str, Any]] = []
    for r in rows:
        d = dict(r)
        d.pop("user_id", None)
        out.append(d)
    return out
