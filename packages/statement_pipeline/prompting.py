"""Prompt construction and payload serialization for the inference calls.

This module builds:
- Minimal projections of transactions/subscriptions serialized as compact
  JSON with a fixed field order, embedded between ``BEGIN_*_JSON`` and
  ``END_*_JSON`` markers.
- The system instructions and user content for the two tasks (enrichment and
  subscription detection).
- The strict ``text.format`` JSON Schema objects for the OpenAI Responses API.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Sequence
from datetime import date
from typing import Any

from openai.types.responses.response_format_text_json_schema_config_param import (
    ResponseFormatTextJSONSchemaConfigParam,
)

from .categories import CATEGORY_LABELS, BillingCycle, Category
from .models import SubscriptionSummary

TRANSACTION_FIELD_ORDER: tuple[str, ...] = (
    "id",
    "statement_type",
    "date",
    "currency",
    "amount",
    "credit_debit_indicator",
    "signed_amount",
    "description",
    "subtype",
)

SUBSCRIPTION_FIELD_ORDER: tuple[str, ...] = ("id", "name", "price", "billing_cycle")

BEGIN_TRANSACTIONS = "BEGIN_TRANSACTIONS_JSON\n"
END_TRANSACTIONS = "\nEND_TRANSACTIONS_JSON"
BEGIN_SUBSCRIPTIONS = "BEGIN_SUBSCRIPTIONS_JSON\n"
END_SUBSCRIPTIONS = "\nEND_SUBSCRIPTIONS_JSON"


def _jsonable(value: Any) -> Any:
    if isinstance(value, date):
        return value.isoformat()
    return value


def project_transaction(tx: Any) -> dict[str, Any]:
    """Reduce a transaction (ORM row or parser output) to the fields the model sees."""

    return {
        "id": tx.id,
        "statement_type": tx.statement_type,
        "date": _jsonable(tx.date),
        "currency": tx.currency,
        "amount": tx.amount,
        "credit_debit_indicator": str(tx.credit_debit_indicator),
        "signed_amount": tx.signed_amount,
        "description": tx.transaction_additional_details,
        "subtype": str(tx.transaction_subtype),
    }


def project_subscription(sub: SubscriptionSummary) -> dict[str, Any]:
    return {
        "id": sub.id,
        "name": sub.name,
        "price": sub.price,
        "billing_cycle": str(sub.billing_cycle),
    }


def serialize_records(items: Iterable[dict[str, Any]], field_order: Sequence[str]) -> str:
    """Serialize records to a compact JSON array with a fixed per-object key order."""

    arr = [{key: _jsonable(item.get(key)) for key in field_order} for item in items]
    return json.dumps(arr, ensure_ascii=False, separators=(",", ":"))


def _category_lines() -> str:
    return "\n".join(f"  - {c.value}: {CATEGORY_LABELS[c]}" for c in Category)


# ---------------------------------------------------------------------------
# Enrichment
# ---------------------------------------------------------------------------


def build_enrichment_instructions() -> str:
    return (
        "You are a financial transaction analyzer. For every bank transaction you "
        "receive, assign exactly one category from the allowed list, produce a short "
        "human-friendly display name for the merchant or counterparty, and, when you "
        "are confident, the merchant's web domain. When a transaction is a payment "
        "for one of the user's known subscriptions, return that subscription's id. "
        "Return one result per input transaction, reuse the input id verbatim, and "
        "never invent transactions. Output JSON only that conforms to the schema."
    )


def build_enrichment_user_content(transactions_json: str, subscriptions_json: str) -> str:
    return (
        "Allowed categories (code: label):\n"
        f"{_category_lines()}\n\n"
        "Rules:\n"
        "- display_name: the merchant or counterparty, without card numbers, "
        "references or payment-rail noise.\n"
        "- domain: lowercase bare domain (e.g. netflix.com) or null when unsure.\n"
        "- subscription_id: the id of a matching known subscription, else null.\n\n"
        "Known subscriptions:\n"
        f"{BEGIN_SUBSCRIPTIONS}{subscriptions_json}{END_SUBSCRIPTIONS}\n\n"
        "Transactions:\n"
        f"{BEGIN_TRANSACTIONS}{transactions_json}{END_TRANSACTIONS}\n"
    )


def build_enrichment_response_format() -> ResponseFormatTextJSONSchemaConfigParam:
    return {
        "type": "json_schema",
        "name": "transaction_enrichment",
        "schema": {
            "type": "object",
            "properties": {
                "transactions": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "id": {"type": "string"},
                            "category": {"type": "string", "enum": [c.value for c in Category]},
                            "display_name": {"type": "string"},
                            "domain": {"type": ["string", "null"]},
                            "subscription_id": {"type": ["integer", "null"]},
                        },
                        "required": [
                            "id",
                            "category",
                            "display_name",
                            "domain",
                            "subscription_id",
                        ],
                        "additionalProperties": False,
                    },
                }
            },
            "required": ["transactions"],
            "additionalProperties": False,
        },
        "strict": True,
    }


# ---------------------------------------------------------------------------
# Subscription detection
# ---------------------------------------------------------------------------


def build_detection_instructions() -> str:
    return (
        "You are a financial transaction analyzer specialized in detecting recurring "
        "subscription payments. Look for repeated payments of similar amounts to the "
        "same merchant and infer the billing cycle (weekly, monthly or yearly) from "
        "their spacing. Use the earliest matching payment date as subscribed_at "
        "(ISO 8601). Report price in major currency units (e.g. 12.90). Confidence: "
        "0.9-1.0 for three or more regular payments, 0.7-0.89 for two, 0.5-0.69 for "
        "irregular timing or a single payment, lower when uncertain. List the ids of "
        "every supporting transaction and give a one or two sentence reasoning. "
        "Output JSON only that conforms to the schema."
    )


def build_detection_user_content(transactions_json: str) -> str:
    return (
        "Analyze the following transactions and detect all recurring subscriptions.\n\n"
        f"{BEGIN_TRANSACTIONS}{transactions_json}{END_TRANSACTIONS}\n"
    )


def build_detection_response_format() -> ResponseFormatTextJSONSchemaConfigParam:
    return {
        "type": "json_schema",
        "name": "subscription_detection",
        "schema": {
            "type": "object",
            "properties": {
                "subscriptions": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "name": {"type": "string"},
                            "subscribed_at": {"type": "string"},
                            "price": {"type": "number"},
                            "domain": {"type": ["string", "null"]},
                            "billing_cycle": {
                                "type": "string",
                                "enum": [b.value for b in BillingCycle],
                            },
                            "confidence": {"type": "number", "minimum": 0, "maximum": 1},
                            "reasoning": {"type": ["string", "null"]},
                            "transaction_ids": {"type": "array", "items": {"type": "string"}},
                        },
                        "required": [
                            "name",
                            "subscribed_at",
                            "price",
                            "domain",
                            "billing_cycle",
                            "confidence",
                            "reasoning",
                            "transaction_ids",
                        ],
                        "additionalProperties": False,
                    },
                }
            },
            "required": ["subscriptions"],
            "additionalProperties": False,
        },
        "strict": True,
    }


__all__ = [
    "BEGIN_SUBSCRIPTIONS",
    "BEGIN_TRANSACTIONS",
    "END_SUBSCRIPTIONS",
    "END_TRANSACTIONS",
    "SUBSCRIPTION_FIELD_ORDER",
    "TRANSACTION_FIELD_ORDER",
    "build_detection_instructions",
    "build_detection_response_format",
    "build_detection_user_content",
    "build_enrichment_instructions",
    "build_enrichment_response_format",
    "build_enrichment_user_content",
    "project_subscription",
    "project_transaction",
    "serialize_records",
]
