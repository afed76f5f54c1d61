"""Subscription detection over the transactions not yet linked to a subscription."""

from __future__ import annotations

from ..enrichment import EnrichmentClient
from ..logging_setup import get_logger
from ..models import DetectionOutcome, DetectionResult, ProgressCallback, ProgressStatus
from ..persistence import TransactionStore

_logger = get_logger("statement_pipeline.workflows.detect_flow")


async def detect_subscriptions(
    *,
    store: TransactionStore,
    enrichment_client: EnrichmentClient,
    on_progress: ProgressCallback | None = None,
) -> DetectionResult:
    """Ask the inference service for recurring-payment candidates.

    Enrichment errors propagate; the caller decides how to report them.
    """

    def emit(status: ProgressStatus) -> None:
        if on_progress is not None:
            on_progress(status)

    emit(ProgressStatus.FETCHING)
    unlinked = await store.list_unlinked_transactions()
    if not unlinked:
        emit(ProgressStatus.DONE)
        return DetectionResult(outcome=DetectionOutcome.NOTHING_TO_ANALYZE)

    emit(ProgressStatus.ANALYZING)
    candidates = await enrichment_client.detect(unlinked)
    _logger.info("detect:done analyzed=%d candidates=%d", len(unlinked), len(candidates))
    emit(ProgressStatus.DONE)

    outcome = (
        DetectionOutcome.CANDIDATES_FOUND if candidates else DetectionOutcome.NO_SUBSCRIPTIONS_FOUND
    )
    return DetectionResult(
        outcome=outcome, analyzed_count=len(unlinked), candidates=tuple(candidates)
    )


__all__ = ["detect_subscriptions"]
