"""Human review of detected subscription candidates and the atomic commit.

A :class:`CandidateReview` moves through a closed set of states:

- ``presented``: every candidate shown and pre-selected.
- ``selecting``: after any toggle, ``back()`` or a failed commit.
- ``confirming``: after ``confirm()``; the only state ``commit`` accepts.
- ``committed`` / ``cancelled``: terminal.

The candidate tuple never changes; only the selected index set does.
Confidence bands are presentation only and never gate selection or commit.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from enum import StrEnum

from sqlalchemy.ext.asyncio import AsyncSession

from .errors import ReviewStateError, SubscriptionCommitError
from .logging_setup import get_logger
from .models import DetectedSubscriptionCandidate
from .persistence import TransactionStore, insert_subscription, link_transactions

HIGH_CONFIDENCE: float = 0.8
MEDIUM_CONFIDENCE: float = 0.6

_logger = get_logger("statement_pipeline.review")


class ConfidenceBand(StrEnum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


def confidence_band(value: DetectedSubscriptionCandidate | float) -> ConfidenceBand:
    confidence = value.confidence if isinstance(value, DetectedSubscriptionCandidate) else value
    if confidence >= HIGH_CONFIDENCE:
        return ConfidenceBand.HIGH
    if confidence >= MEDIUM_CONFIDENCE:
        return ConfidenceBand.MEDIUM
    return ConfidenceBand.LOW


class ReviewState(StrEnum):
    PRESENTED = "presented"
    SELECTING = "selecting"
    CONFIRMING = "confirming"
    COMMITTED = "committed"
    CANCELLED = "cancelled"


_TERMINAL = frozenset({ReviewState.COMMITTED, ReviewState.CANCELLED})


class CandidateReview:
    """Selection state for one batch of detected candidates.

    All candidates start selected. :meth:`commit` inserts one subscription
    per selected candidate and links its transactions, all in one atomic
    unit.
    """

    def __init__(self, candidates: Iterable[DetectedSubscriptionCandidate]) -> None:
        self._candidates: tuple[DetectedSubscriptionCandidate, ...] = tuple(candidates)
        self._selected: set[int] = set(range(len(self._candidates)))
        self._state = ReviewState.PRESENTED
        self._subscription_ids: tuple[int, ...] = ()

    # ---- read-only views --------------------------------------------------

    @property
    def candidates(self) -> tuple[DetectedSubscriptionCandidate, ...]:
        return self._candidates

    @property
    def state(self) -> ReviewState:
        return self._state

    @property
    def selected_indices(self) -> tuple[int, ...]:
        return tuple(sorted(self._selected))

    @property
    def selected(self) -> tuple[DetectedSubscriptionCandidate, ...]:
        return tuple(self._candidates[i] for i in self.selected_indices)

    @property
    def subscription_ids(self) -> tuple[int, ...]:
        """Ids created by a successful commit, in selection order."""

        return self._subscription_ids

    def is_selected(self, index: int) -> bool:
        self._check_index(index)
        return index in self._selected

    # ---- transitions ------------------------------------------------------

    def _require_open(self, action: str) -> None:
        if self._state in _TERMINAL:
            raise ReviewStateError(f"cannot {action}: review is already {self._state}")

    def _check_index(self, index: int) -> None:
        if not 0 <= index < len(self._candidates):
            raise IndexError(f"candidate index out of range: {index}")

    def toggle(self, index: int) -> bool:
        """Flip the selection of one candidate and return its new state."""

        self._require_open("toggle")
        self._check_index(index)
        if index in self._selected:
            self._selected.remove(index)
        else:
            self._selected.add(index)
        self._state = ReviewState.SELECTING
        return index in self._selected

    def set_selection(self, indices: Sequence[int]) -> None:
        self._require_open("change the selection")
        for i in indices:
            self._check_index(i)
        self._selected = set(indices)
        self._state = ReviewState.SELECTING

    def confirm(self) -> None:
        self._require_open("confirm")
        self._state = ReviewState.CONFIRMING

    def back(self) -> None:
        self._require_open("go back")
        self._state = ReviewState.SELECTING

    def cancel(self) -> None:
        self._require_open("cancel")
        self._state = ReviewState.CANCELLED

    async def commit(self, store: TransactionStore) -> tuple[int, ...]:
        """Persist the selected candidates and link their transactions.

        An empty selection is a successful no-op that never touches the
        store. On any store failure nothing is kept, the review returns to
        ``selecting`` and :class:`SubscriptionCommitError` is raised.
        """

        self._require_open("commit")
        if self._state is not ReviewState.CONFIRMING:
            raise ReviewStateError(f"cannot commit from {self._state}; confirm first")

        chosen = self.selected
        if not chosen:
            self._state = ReviewState.COMMITTED
            return ()

        async def _write(session: AsyncSession) -> tuple[int, ...]:
            ids: list[int] = []
            for candidate in chosen:
                sub_id = await insert_subscription(
                    session,
                    name=candidate.name,
                    price=candidate.price,
                    billing_cycle=candidate.billing_cycle,
                    subscribed_at=candidate.subscribed_at,
                    domain=candidate.domain,
                )
                await link_transactions(session, sub_id, candidate.transaction_ids)
                ids.append(sub_id)
            return tuple(ids)

        try:
            created = await store.run_atomic(_write)
        except Exception as e:
            _logger.error(
                "review:commit_failed selected=%d error=%s", len(chosen), e.__class__.__name__
            )
            self._state = ReviewState.SELECTING
            raise SubscriptionCommitError() from e

        _logger.info(
            "review:committed subscriptions=%d linked=%d",
            len(created),
            sum(len(c.transaction_ids) for c in chosen),
        )
        self._subscription_ids = created
        self._state = ReviewState.COMMITTED
        return created


__all__ = [
    "HIGH_CONFIDENCE",
    "MEDIUM_CONFIDENCE",
    "CandidateReview",
    "ConfidenceBand",
    "ReviewState",
    "confidence_band",
]
