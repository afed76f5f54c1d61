"""Public API for the ``statement_pipeline`` package.

Mostly a stable import surface over the workflows and the review state
machine, plus the direct subscription add/delete operations used by the CLI.
"""

from __future__ import annotations

from datetime import date

from .amounts import parse_price_to_cents
from .categories import BillingCycle
from .enrichment import EnrichmentClient
from .logging_setup import get_logger
from .persistence import TransactionStore
from .review import CandidateReview, confidence_band
from .workflows.detect_flow import detect_subscriptions
from .workflows.import_flow import import_statement, import_statement_file

_logger = get_logger("statement_pipeline.api")


async def add_subscription(
    store: TransactionStore,
    *,
    name: str,
    price: int | str,
    billing_cycle: BillingCycle | str,
    subscribed_at: date,
    domain: str | None = None,
) -> int:
    """Create a subscription entered by the user and return its id.

    ``price`` is either integer cents or user text such as ``"9,90"``.
    Raises ``ValueError`` on a blank name, a non-positive or unparseable
    price, or an unknown billing cycle.
    """

    clean_name = name.strip()
    if not clean_name:
        raise ValueError("subscription name must not be blank")
    cents = parse_price_to_cents(price) if isinstance(price, str) else price
    if cents is None or isinstance(cents, bool) or cents <= 0:
        raise ValueError(f"invalid subscription price: {price!r}")
    cycle = BillingCycle(billing_cycle)
    clean_domain = (domain or "").strip().lower() or None

    sub_id = await store.insert_subscription(
        name=clean_name,
        price=cents,
        billing_cycle=cycle,
        subscribed_at=subscribed_at,
        domain=clean_domain,
    )
    _logger.info("api:add_subscription id=%d price=%d cycle=%s", sub_id, cents, cycle)
    return sub_id


async def delete_subscription(store: TransactionStore, subscription_id: int) -> bool:
    """Delete a subscription; linked transactions keep existing with no link."""

    deleted = await store.delete_subscription(subscription_id)
    _logger.info("api:delete_subscription id=%d deleted=%s", subscription_id, deleted)
    return deleted


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
]
