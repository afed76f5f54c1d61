"""Data models for ``statement_pipeline``.

Two families live here:

- Frozen dataclasses for values that flow between pipeline stages
  (parser output, enrichment results, detection candidates, stage results).
- Pydantic models describing the structured JSON the inference service must
  return. They are validated with ``model_validate(..., context=...)`` so the
  caller can thread the known id sets into the validators.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date
from enum import StrEnum
from typing import Any, TypeAlias

from pydantic import BaseModel, ConfigDict, ValidationInfo, field_validator

from .categories import BillingCycle, Category, CreditDebitIndicator, TransactionSubtype
from .errors import EnrichmentError

# ---------------------------------------------------------------------------
# Parser output
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class StatementTransaction:
    """One validated statement entry, amounts already in minor units.

    ``signed_amount`` is always ``amount`` for credits and ``-amount`` for
    debits; construct instances through :meth:`build` to keep that true.
    """

    id: str
    statement_type: str
    date: date
    account_iban: str
    currency: str
    amount: int
    credit_debit_indicator: CreditDebitIndicator
    signed_amount: int
    transaction_additional_details: str
    transaction_subtype: TransactionSubtype

    @classmethod
    def build(
        cls,
        *,
        id: str,
        statement_type: str,
        date: date,
        account_iban: str,
        currency: str,
        amount: int,
        credit_debit_indicator: CreditDebitIndicator,
        transaction_additional_details: str,
        transaction_subtype: TransactionSubtype,
    ) -> StatementTransaction:
        if amount < 0:
            raise ValueError(f"amount must be non-negative minor units, got {amount}")
        sign = -1 if credit_debit_indicator is CreditDebitIndicator.DEBIT else 1
        return cls(
            id=id,
            statement_type=statement_type,
            date=date,
            account_iban=account_iban,
            currency=currency,
            amount=amount,
            credit_debit_indicator=credit_debit_indicator,
            signed_amount=amount * sign,
            transaction_additional_details=transaction_additional_details,
            transaction_subtype=transaction_subtype,
        )

    def as_row(self) -> dict[str, Any]:
        """Column mapping for ``db.models.finance.Transaction``."""

        return {
            "id": self.id,
            "statement_type": self.statement_type,
            "date": self.date,
            "account_iban": self.account_iban,
            "currency": self.currency,
            "amount": self.amount,
            "credit_debit_indicator": str(self.credit_debit_indicator),
            "signed_amount": self.signed_amount,
            "transaction_additional_details": self.transaction_additional_details,
            "transaction_subtype": str(self.transaction_subtype),
        }


@dataclass(frozen=True, slots=True)
class SkippedEntry:
    """A statement entry dropped by the parser. ``position`` is 0-based."""

    position: int
    reason: str
    details: str | None = None


@dataclass(frozen=True, slots=True)
class ParseReport:
    transactions: tuple[StatementTransaction, ...]
    skipped: tuple[SkippedEntry, ...] = ()

    @property
    def skipped_by_reason(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for entry in self.skipped:
            counts[entry.reason] = counts.get(entry.reason, 0) + 1
        return counts


# ---------------------------------------------------------------------------
# Inference projections and results
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class SubscriptionSummary:
    """Minimal subscription projection sent along with enrichment requests."""

    id: int
    name: str
    price: int
    billing_cycle: BillingCycle


@dataclass(frozen=True, slots=True)
class EnrichedTransactionResult:
    id: str
    category: Category
    display_name: str
    domain: str | None = None
    subscription_id: int | None = None


@dataclass(frozen=True, slots=True)
class EnrichmentReport:
    """Outcome of one enrichment run, batch by batch.

    ``results`` holds the good batches in input order. Every id of a failed
    batch is listed in ``failed_ids`` and its error in ``errors``.
    """

    results: tuple[EnrichedTransactionResult, ...] = ()
    errors: tuple[EnrichmentError, ...] = ()
    failed_ids: tuple[str, ...] = ()

    @property
    def complete(self) -> bool:
        return not self.errors


@dataclass(frozen=True, slots=True)
class DetectedSubscriptionCandidate:
    """A proposed subscription awaiting human review (never persisted as-is).

    ``price`` is in minor units. ``transaction_ids`` is non-empty whenever
    ``confidence > 0``.
    """

    name: str
    subscribed_at: date
    price: int
    billing_cycle: BillingCycle
    confidence: float
    transaction_ids: frozenset[str]
    domain: str | None = None
    reasoning: str | None = None

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be in [0, 1], got {self.confidence}")
        if self.confidence > 0 and not self.transaction_ids:
            raise ValueError("a candidate with confidence > 0 needs supporting transaction ids")


# ---------------------------------------------------------------------------
# Structured response contracts (validated with Pydantic)
# ---------------------------------------------------------------------------


def _blank_to_none(v: str | None) -> str | None:
    if v is None:
        return None
    s = v.strip()
    return s or None


class EnrichmentResponseItem(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    id: str
    category: Category
    display_name: str
    domain: str | None = None
    subscription_id: int | None = None

    @field_validator("id", "display_name")
    @classmethod
    def _non_empty(cls, v: str) -> str:
        if not v:
            raise ValueError("must be a non-empty string")
        return v

    @field_validator("domain")
    @classmethod
    def _normalize_domain(cls, v: str | None) -> str | None:
        v = _blank_to_none(v)
        return v.lower() if v else None


class EnrichmentResponseBody(BaseModel):
    model_config = ConfigDict(extra="forbid")

    transactions: list[EnrichmentResponseItem]


class DetectionResponseItem(BaseModel):
    """One detected subscription as reported by the service (price in major units)."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    name: str
    subscribed_at: date
    price: float
    domain: str | None = None
    billing_cycle: BillingCycle
    confidence: float
    reasoning: str | None = None
    transaction_ids: list[str]

    @field_validator("name")
    @classmethod
    def _name_non_empty(cls, v: str) -> str:
        if not v:
            raise ValueError("name must be a non-empty string")
        return v

    @field_validator("price")
    @classmethod
    def _price_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("price must be positive")
        return v

    @field_validator("confidence")
    @classmethod
    def _confidence_in_range(cls, v: float) -> float:
        if 0.0 <= float(v) <= 1.0:
            return float(v)
        raise ValueError("confidence must be in [0,1]")

    @field_validator("domain", "reasoning")
    @classmethod
    def _optional_text(cls, v: str | None) -> str | None:
        return _blank_to_none(v)

    @field_validator("transaction_ids")
    @classmethod
    def _known_ids_only(cls, v: list[str], info: ValidationInfo) -> list[str]:
        # Drop ids the request never contained; keep first-seen order.
        known = info.context.get("known_ids") if info.context else None
        cleaned = [s.strip() for s in v if s and s.strip()]
        if known is not None:
            cleaned = [s for s in cleaned if s in known]
        return list(dict.fromkeys(cleaned))


class DetectionResponseBody(BaseModel):
    model_config = ConfigDict(extra="forbid")

    subscriptions: list[DetectionResponseItem]


# ---------------------------------------------------------------------------
# Stage results
# ---------------------------------------------------------------------------


class ProgressStatus(StrEnum):
    ENRICHING = "enriching"
    FETCHING = "fetching"
    ANALYZING = "analyzing"
    DONE = "done"


ProgressCallback: TypeAlias = Callable[[ProgressStatus], None]


class ImportOutcome(StrEnum):
    NO_FILE_SELECTED = "no_file_selected"
    NO_TRANSACTIONS_FOUND = "no_transactions_found"
    NO_NEW_TRANSACTIONS = "no_new_transactions"
    IMPORTED = "imported"


class DetectionOutcome(StrEnum):
    NOTHING_TO_ANALYZE = "nothing_to_analyze"
    NO_SUBSCRIPTIONS_FOUND = "no_subscriptions_found"
    CANDIDATES_FOUND = "candidates_found"


@dataclass(frozen=True, slots=True)
class ImportResult:
    outcome: ImportOutcome
    parsed_count: int = 0
    inserted_ids: tuple[str, ...] = ()
    enriched_count: int = 0
    skipped: tuple[SkippedEntry, ...] = ()
    # First enrichment error of the run; rows of failed batches stay un-enriched.
    enrichment_error: Exception | None = field(default=None, compare=False)

    @property
    def inserted_count(self) -> int:
        return len(self.inserted_ids)


@dataclass(frozen=True, slots=True)
class DetectionResult:
    outcome: DetectionOutcome
    analyzed_count: int = 0
    candidates: tuple[DetectedSubscriptionCandidate, ...] = ()


__all__ = [
    "DetectedSubscriptionCandidate",
    "DetectionOutcome",
    "DetectionResponseBody",
    "DetectionResponseItem",
    "DetectionResult",
    "EnrichedTransactionResult",
    "EnrichmentReport",
    "EnrichmentResponseBody",
    "EnrichmentResponseItem",
    "ImportOutcome",
    "ImportResult",
    "ParseReport",
    "ProgressCallback",
    "ProgressStatus",
    "SkippedEntry",
    "StatementTransaction",
    "SubscriptionSummary",
]
