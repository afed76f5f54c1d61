"""statement_pipeline: bank statement import, AI enrichment and subscription linking."""

from .api import (
    CandidateReview,
    EnrichmentClient,
    TransactionStore,
    add_subscription,
    confidence_band,
    delete_subscription,
    detect_subscriptions,
    import_statement,
    import_statement_file,
)
from .ingest.statement_xml import parse_statement

__all__ = [
    "CandidateReview",
    "EnrichmentClient",
    "TransactionStore",
    "add_subscription",
    "confidence_band",
    "delete_subscription",
    "detect_subscriptions",
    "import_statement",
    "import_statement_file",
    "parse_statement",
]
