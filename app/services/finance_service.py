# app/services/finance_service.py
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


DEFAULT_GBP_TO_EUR_RATE = 1.15
REPORTING_CURRENCY = "EUR"
UNKNOWN_CLIENT = "Unknown"


# -----------------------------------------------------------------------------
# Input record
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class FinanceInvoice:
    """
    Strict aggregator input. db_service builds these from raw rows, so every
    field already has its default applied (amount 0, currency EUR, name Unknown).
    """
    id: str
    amount: float = 0.0
    amount_eur: Optional[float] = None
    client_currency: str = REPORTING_CURRENCY
    client_name: str = UNKNOWN_CLIENT
    year: Optional[int] = None
    month: Optional[int] = None
    sent_to_client: bool = False
    sent_to_accountant: bool = False
    payment_received: bool = False


# -----------------------------------------------------------------------------
# Output
# -----------------------------------------------------------------------------

class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ClientAmount(_CamelModel):
    name: str
    amount: float


class MonthAmount(_CamelModel):
    month: str  # "YYYY-MM"
    amount: float


class YearAmount(_CamelModel):
    year: int
    amount: float


class FinanceSummary(_CamelModel):
    total_income: float = 0.0
    pending_to_accountant: float = 0.0
    sent_to_client: float = 0.0
    sent_to_accountant: float = 0.0
    by_client: List[ClientAmount] = Field(default_factory=list)
    by_month: List[MonthAmount] = Field(default_factory=list)
    by_year: List[YearAmount] = Field(default_factory=list)

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


# -----------------------------------------------------------------------------
# Rate
# -----------------------------------------------------------------------------

def parse_rate(raw: Any, default: float = DEFAULT_GBP_TO_EUR_RATE) -> float:
    """
    Parse the stored gbp_to_eur_rate setting. Anything unusable falls back to the default.
    """
    if raw is None:
        return default
    if isinstance(raw, bool):
        return default
    try:
        rate = float(str(raw).strip())
    except (TypeError, ValueError):
        return default
    if not math.isfinite(rate) or rate <= 0:
        return default
    return rate


# -----------------------------------------------------------------------------
# Aggregation
# -----------------------------------------------------------------------------

def normalize_amount(invoice: FinanceInvoice, rate: float) -> float:
    if invoice.amount_eur is not None:
        return invoice.amount_eur
    if invoice.client_currency == "GBP":
        return (invoice.amount or 0.0) * rate
    return invoice.amount or 0.0


def month_key(year: int, month: int) -> str:
    return f"{int(year)}-{int(month):02d}"


def summarize(invoices: Iterable[FinanceInvoice], rate: float) -> FinanceSummary:
    total = 0.0
    pending = 0.0
    to_client = 0.0
    to_accountant = 0.0

    by_client: Dict[str, float] = {}
    by_month: Dict[str, float] = {}
    by_year: Dict[int, float] = {}

    for inv in invoices:
        amount = normalize_amount(inv, rate)
        total += amount

        if inv.sent_to_client:
            to_client += amount
            if not inv.sent_to_accountant:
                pending += amount
        if inv.sent_to_accountant:
            to_accountant += amount

        name = inv.client_name or UNKNOWN_CLIENT
        by_client[name] = by_client.get(name, 0.0) + amount

        if inv.year:
            if inv.month:
                key = month_key(inv.year, inv.month)
                by_month[key] = by_month.get(key, 0.0) + amount
            by_year[inv.year] = by_year.get(inv.year, 0.0) + amount

    # sorted() is stable, so equal client amounts keep first-seen order
    clients = sorted(by_client.items(), key=lambda kv: kv[1], reverse=True)
    months = sorted(by_month.items(), key=lambda kv: kv[0])
    years = sorted(by_year.items(), key=lambda kv: kv[0])

    return FinanceSummary(
        total_income=total,
        pending_to_accountant=pending,
        sent_to_client=to_client,
        sent_to_accountant=to_accountant,
        by_client=[ClientAmount(name=n, amount=a) for n, a in clients],
        by_month=[MonthAmount(month=m, amount=a) for m, a in months],
        by_year=[YearAmount(year=y, amount=a) for y, a in years],
    )


def suggest_amount_eur(invoice: FinanceInvoice, rate: float) -> float:
    """EUR figure offered before sending to the accountant; same precedence as the report."""
    return normalize_amount(invoice, rate)
