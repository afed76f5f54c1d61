"""Statement import: parse -> dedup insert -> enrich -> persist enrichment.

Enrichment is best effort, batch by batch. New rows are committed before the
inference call: the good batches are applied, rows of a failed batch stay
stored and un-enriched, and the import still reports success. A cancellation
during the call propagates and leaves every new row un-enriched.
"""

from __future__ import annotations

from collections.abc import Sequence
from os import PathLike
from pathlib import Path

from sqlalchemy.ext.asyncio import AsyncSession

from ..categories import fallback_domain
from ..enrichment import EnrichmentClient
from ..errors import EnrichmentError
from ..ingest.statement_xml import parse_statement
from ..logging_setup import get_logger
from ..models import (
    EnrichedTransactionResult,
    ImportOutcome,
    ImportResult,
    ProgressCallback,
    ProgressStatus,
    StatementTransaction,
)
from ..persistence import TransactionStore, update_transaction

_logger = get_logger("statement_pipeline.workflows.import_flow")


def _emit(on_progress: ProgressCallback | None, status: ProgressStatus) -> None:
    if on_progress is not None:
        on_progress(status)


async def _apply_enrichment(
    session: AsyncSession,
    inserted: Sequence[StatementTransaction],
    results: Sequence[EnrichedTransactionResult],
) -> int:
    descriptions = {tx.id: tx.transaction_additional_details for tx in inserted}
    applied = 0
    for result in results:
        patch: dict[str, object] = {
            "category": str(result.category),
            "display_name": result.display_name,
            "domain": result.domain or fallback_domain(descriptions.get(result.id)),
        }
        if result.subscription_id is not None:
            patch["subscription_id"] = result.subscription_id
        if await update_transaction(session, result.id, patch):
            applied += 1
    return applied


async def import_statement(
    xml: str | bytes,
    *,
    store: TransactionStore,
    enrichment_client: EnrichmentClient,
    on_progress: ProgressCallback | None = None,
) -> ImportResult:
    """Import one statement document.

    Raises :class:`~statement_pipeline.errors.StatementParseError` when the
    document is unusable; nothing is written in that case. Enrichment errors
    are logged and returned on ``ImportResult.enrichment_error``.
    """

    _emit(on_progress, ProgressStatus.FETCHING)
    report = parse_statement(xml)
    if not report.transactions:
        _emit(on_progress, ProgressStatus.DONE)
        return ImportResult(outcome=ImportOutcome.NO_TRANSACTIONS_FOUND, skipped=report.skipped)

    inserted = await store.insert_transactions_ignoring_conflicts(report.transactions)
    inserted_ids = tuple(tx.id for tx in inserted)
    _logger.info(
        "import:inserted parsed=%d new=%d ignored=%d",
        len(report.transactions),
        len(inserted),
        len(report.transactions) - len(inserted),
    )
    if not inserted:
        _emit(on_progress, ProgressStatus.DONE)
        return ImportResult(
            outcome=ImportOutcome.NO_NEW_TRANSACTIONS,
            parsed_count=len(report.transactions),
            skipped=report.skipped,
        )

    _emit(on_progress, ProgressStatus.ENRICHING)
    enriched_count = 0
    enrichment_error: EnrichmentError | None = None
    try:
        subscriptions = await store.list_subscription_summaries()
        outcome = await enrichment_client.enrich_report(inserted, subscriptions)
    except EnrichmentError as e:
        _logger.warning(
            "import:enrichment_failed code=%s new=%d error=%s", e.code, len(inserted), e.message
        )
        enrichment_error = e
    else:
        if outcome.results:
            enriched_count = await store.run_atomic(
                lambda s: _apply_enrichment(s, inserted, outcome.results)
            )
        _logger.info("import:enriched count=%d", enriched_count)
        if outcome.errors:
            enrichment_error = outcome.errors[0]
            _logger.warning(
                "import:enrichment_partial code=%s unenriched=%d error=%s",
                enrichment_error.code,
                len(outcome.failed_ids),
                enrichment_error.message,
            )

    _emit(on_progress, ProgressStatus.DONE)
    return ImportResult(
        outcome=ImportOutcome.IMPORTED,
        parsed_count=len(report.transactions),
        inserted_ids=inserted_ids,
        enriched_count=enriched_count,
        skipped=report.skipped,
        enrichment_error=enrichment_error,
    )


async def import_statement_file(
    path: str | PathLike[str] | None,
    *,
    store: TransactionStore,
    enrichment_client: EnrichmentClient,
    on_progress: ProgressCallback | None = None,
) -> ImportResult:
    """File wrapper around :func:`import_statement`. ``None`` means no file was picked."""

    if path is None:
        return ImportResult(outcome=ImportOutcome.NO_FILE_SELECTED)
    return await import_statement(
        Path(path).read_bytes(),
        store=store,
        enrichment_client=enrichment_client,
        on_progress=on_progress,
    )


__all__ = ["import_statement", "import_statement_file"]
