"""Closed value sets shared by the parser, the enrichment contract and the store.

The string values here are the persisted values. ``db.models.finance`` mirrors
them in CHECK constraints; keep both in sync when adding a value.
"""

from __future__ import annotations

from enum import StrEnum


class Category(StrEnum):
    INCOME = "income"
    TRANSFER = "transfer"
    HOUSING = "housing"
    FOOD = "food"
    UTILITIES = "utilities"
    TRANSPORT = "transport"
    HEALTHCARE = "healthcare"
    DINING = "dining"
    SHOPPING = "shopping"
    ENTERTAINMENT = "entertainment"
    PERSONAL_CARE = "personal_care"
    OTHER = "other"


CATEGORY_LABELS: dict[Category, str] = {
    Category.INCOME: "Income",
    Category.TRANSFER: "Transfers",
    Category.HOUSING: "Housing",
    Category.FOOD: "Groceries & Food",
    Category.UTILITIES: "Utilities",
    Category.TRANSPORT: "Transportation",
    Category.HEALTHCARE: "Healthcare & Insurance",
    Category.DINING: "Restaurants & Dining",
    Category.SHOPPING: "Shopping & Retail",
    Category.ENTERTAINMENT: "Entertainment",
    Category.PERSONAL_CARE: "Personal Care & Fitness",
    Category.OTHER: "Other",
}


class BillingCycle(StrEnum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class TransactionSubtype(StrEnum):
    INFLOW_OUTFLOW_DIGITAL = "inflowOutflowDigital"
    INFLOW_OUTFLOW_PHYSICAL = "inflowOutflowPhysical"


class CreditDebitIndicator(StrEnum):
    CREDIT = "credit"
    DEBIT = "debit"


# Payment rails that hide the merchant behind their own name in the raw bank
# text. When enrichment returns no domain, the rail's domain is used instead.
PAYMENT_RAIL_DOMAINS: dict[str, str] = {
    "TWINT": "twint.ch",
}


def fallback_domain(description: str | None) -> str | None:
    """Return the payment-rail domain for ``description`` when a marker matches."""

    if not description:
        return None
    for marker, domain in PAYMENT_RAIL_DOMAINS.items():
        if marker in description:
            return domain
    return None


def category_label(code: str | None) -> str:
    if code is None:
        return "Uncategorized"
    try:
        return CATEGORY_LABELS[Category(code)]
    except ValueError:
        return code


__all__ = [
    "CATEGORY_LABELS",
    "PAYMENT_RAIL_DOMAINS",
    "BillingCycle",
    "Category",
    "CreditDebitIndicator",
    "TransactionSubtype",
    "category_label",
    "fallback_domain",
]
