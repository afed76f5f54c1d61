"""Typed errors raised across the statement pipeline.

Each error carries a fixed machine-readable ``reason``/``code`` next to its
human message so callers (CLI, tests) can branch without string matching.
"""

from __future__ import annotations

from typing import Literal

# ---------------------------------------------------------------------------
# Statement parsing
# ---------------------------------------------------------------------------

ParseFailureReason = Literal[
    "invalid_xml",
    "missing_transaction_list",
    "missing_statement",
    "invalid_transaction_subtype",
    "invalid_transaction_type",
    "invalid_booking_type",
    "missing_field",
    "invalid_amount",
    "invalid_credit_debit_indicator",
    "invalid_date",
]

_PARSE_MESSAGES: dict[str, str] = {
    "invalid_xml": "Failed to parse XML content",
    "missing_transaction_list": "No transaction list found in XML",
    "missing_statement": "Transaction missing statement data",
    "invalid_transaction_subtype": "Invalid transaction subtype",
    "invalid_transaction_type": "Invalid transaction type (expected 'cash')",
    "invalid_booking_type": "Invalid booking type (expected 'cash')",
    "missing_field": "Transaction missing required field",
    "invalid_amount": "Invalid transaction amount",
    "invalid_credit_debit_indicator": "Invalid credit/debit indicator",
    "invalid_date": "Invalid value date",
}


def describe_parse_failure(reason: str, details: str | None = None) -> str:
    base = _PARSE_MESSAGES.get(reason, reason)
    return f"{base}: {details}" if details else base


class StatementParseError(ValueError):
    """The statement document is structurally unusable; nothing was imported."""

    def __init__(self, reason: ParseFailureReason, details: str | None = None) -> None:
        self.reason = reason
        self.details = details
        super().__init__(describe_parse_failure(reason, details))


# ---------------------------------------------------------------------------
# Inference service (enrichment / detection)
# ---------------------------------------------------------------------------


class EnrichmentError(RuntimeError):
    """Base class for inference failures. ``code`` is stable and machine-readable."""

    code: str = "enrichment_failed"

    def __init__(self, message: str, *, operation: str | None = None) -> None:
        self.operation = operation
        self.message = message
        super().__init__(message)

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


class MissingCredentialError(EnrichmentError):
    code = "missing_credential"


class EnrichmentTransportError(EnrichmentError):
    """Network/HTTP failure talking to the inference service."""

    code = "upstream_request_failed"

    def __init__(
        self, message: str, *, operation: str | None = None, status_code: int | None = None
    ) -> None:
        super().__init__(message, operation=operation)
        self.status_code = status_code


class EnrichmentValidationError(EnrichmentError):
    """The service answered, but the payload broke the response contract."""

    code = "invalid_response"


# ---------------------------------------------------------------------------
# Review / linking
# ---------------------------------------------------------------------------


class ReviewStateError(RuntimeError):
    """An operation is not allowed in the review's current state."""


class SubscriptionCommitError(RuntimeError):
    """The atomic subscription insert + link batch failed and was rolled back."""

    def __init__(self, message: str = "Failed to add subscriptions") -> None:
        super().__init__(message)


__all__ = [
    "EnrichmentError",
    "EnrichmentTransportError",
    "EnrichmentValidationError",
    "MissingCredentialError",
    "ParseFailureReason",
    "ReviewStateError",
    "StatementParseError",
    "SubscriptionCommitError",
    "describe_parse_failure",
]
