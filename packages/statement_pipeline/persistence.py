"""Persistence integration for ``statement_pipeline``.

Functions here read and write the shared database owned by ``libs/db``. The
module-level helpers take an ``AsyncSession`` and never commit; callers decide
the transaction boundary. :class:`TransactionStore` wraps each helper in its
own ``session_scope`` and exposes :meth:`TransactionStore.run_atomic` for
multi-write units.

Scope:
- Insert parsed transactions into ``transactions`` ignoring id conflicts.
- Patch enrichment-owned columns and subscription links.
- Create, list and delete ``subscriptions``.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable, Mapping, Sequence
from datetime import date
from typing import Any, TypeVar

from sqlalchemy import ColumnElement, delete, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from db.client import session_scope
from db.models.finance import Subscription, Transaction

from .categories import BillingCycle
from .logging_setup import get_logger
from .models import StatementTransaction, SubscriptionSummary

_INSERT_CHUNK_SIZE = 500

# Columns enrichment and linking may change after import.
MUTABLE_TRANSACTION_FIELDS: frozenset[str] = frozenset(
    {"category", "display_name", "domain", "subscription_id"}
)

_logger = get_logger("statement_pipeline.persistence")

T = TypeVar("T")


def _dialect_insert(session: AsyncSession):
    name = session.get_bind().dialect.name
    if name == "sqlite":
        return sqlite_insert
    if name == "postgresql":
        return pg_insert
    raise RuntimeError(f"insert-or-ignore is not supported for dialect {name!r}")


def _first_occurrences(rows: Iterable[StatementTransaction]) -> list[StatementTransaction]:
    seen: dict[str, StatementTransaction] = {}
    for row in rows:
        seen.setdefault(row.id, row)
    return list(seen.values())


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


async def insert_transactions_ignoring_conflicts(
    session: AsyncSession, rows: Iterable[StatementTransaction]
) -> list[StatementTransaction]:
    """Insert ``rows``; rows whose id already exists are ignored.

    Returns exactly the rows that were newly inserted, in input order. Ids
    repeated inside ``rows`` collapse to their first occurrence.
    """

    unique = _first_occurrences(rows)
    if not unique:
        return []
    insert = _dialect_insert(session)
    inserted_ids: set[str] = set()
    for start in range(0, len(unique), _INSERT_CHUNK_SIZE):
        chunk = unique[start : start + _INSERT_CHUNK_SIZE]
        stmt = (
            insert(Transaction)
            .values([r.as_row() for r in chunk])
            .on_conflict_do_nothing(index_elements=[Transaction.id])
            .returning(Transaction.id)
        )
        result = await session.execute(stmt)
        inserted_ids.update(result.scalars().all())
    _logger.info(
        "persistence:insert submitted=%d inserted=%d ignored=%d",
        len(unique),
        len(inserted_ids),
        len(unique) - len(inserted_ids),
    )
    return [r for r in unique if r.id in inserted_ids]


async def update_transaction(
    session: AsyncSession, transaction_id: str, patch: Mapping[str, Any]
) -> bool:
    """Apply ``patch`` to one transaction. Returns False when the id is unknown.

    Only enrichment-owned columns may be patched; the imported statement
    fields are immutable.
    """

    illegal = sorted(set(patch) - MUTABLE_TRANSACTION_FIELDS)
    if illegal:
        raise ValueError(f"transaction fields are not patchable: {illegal}")
    if not patch:
        return True
    result = await session.execute(
        update(Transaction).where(Transaction.id == transaction_id).values(**dict(patch))
    )
    return bool(result.rowcount)


async def list_transactions(
    session: AsyncSession, *where: ColumnElement[bool]
) -> list[Transaction]:
    stmt = select(Transaction).where(*where).order_by(Transaction.date, Transaction.id)
    return list((await session.scalars(stmt)).all())


async def list_unlinked_transactions(session: AsyncSession) -> list[Transaction]:
    return await list_transactions(session, Transaction.subscription_id.is_(None))


async def link_transactions(
    session: AsyncSession, subscription_id: int, transaction_ids: Iterable[str]
) -> int:
    """Point every transaction in ``transaction_ids`` at ``subscription_id``."""

    ids = sorted(set(transaction_ids))
    if not ids:
        return 0
    result = await session.execute(
        update(Transaction)
        .where(Transaction.id.in_(ids))
        .values(subscription_id=subscription_id)
    )
    return int(result.rowcount or 0)


# ---------------------------------------------------------------------------
# Subscriptions
# ---------------------------------------------------------------------------


async def insert_subscription(
    session: AsyncSession,
    *,
    name: str,
    price: int,
    billing_cycle: BillingCycle | str,
    subscribed_at: date,
    domain: str | None = None,
) -> int:
    """Insert a subscription and return its store-assigned id (flushes)."""

    sub = Subscription(
        name=name,
        price=price,
        billing_cycle=str(BillingCycle(billing_cycle)),
        subscribed_at=subscribed_at,
        domain=domain,
    )
    session.add(sub)
    await session.flush()
    return sub.id


async def list_subscriptions(session: AsyncSession) -> list[Subscription]:
    stmt = select(Subscription).order_by(Subscription.name, Subscription.id)
    return list((await session.scalars(stmt)).all())


async def list_subscription_summaries(session: AsyncSession) -> list[SubscriptionSummary]:
    return [
        SubscriptionSummary(
            id=s.id, name=s.name, price=s.price, billing_cycle=BillingCycle(s.billing_cycle)
        )
        for s in await list_subscriptions(session)
    ]


async def delete_subscription(session: AsyncSession, subscription_id: int) -> bool:
    """Delete a subscription and null every transaction link to it.

    Links are cleared explicitly so the outcome does not depend on the
    engine enforcing ``ON DELETE SET NULL``.
    """

    await session.execute(
        update(Transaction)
        .where(Transaction.subscription_id == subscription_id)
        .values(subscription_id=None)
    )
    result = await session.execute(delete(Subscription).where(Subscription.id == subscription_id))
    return bool(result.rowcount)


# ---------------------------------------------------------------------------
# Store facade
# ---------------------------------------------------------------------------


class TransactionStore:
    """Session-per-call facade over the helpers above.

    Every method runs in its own transaction; use :meth:`run_atomic` to group
    several writes into one all-or-nothing unit.
    """

    def __init__(self, *, database_url: str | None = None) -> None:
        self._database_url = database_url

    async def run_atomic(self, fn: Callable[[AsyncSession], Awaitable[T]]) -> T:
        """Run ``fn`` in one transaction: commit on success, roll back on any error."""

        async with session_scope(database_url=self._database_url) as session:
            return await fn(session)

    async def insert_transactions_ignoring_conflicts(
        self, rows: Sequence[StatementTransaction]
    ) -> list[StatementTransaction]:
        return await self.run_atomic(lambda s: insert_transactions_ignoring_conflicts(s, rows))

    async def update_transaction(self, transaction_id: str, patch: Mapping[str, Any]) -> bool:
        return await self.run_atomic(lambda s: update_transaction(s, transaction_id, patch))

    async def list_transactions(self, *where: ColumnElement[bool]) -> list[Transaction]:
        return await self.run_atomic(lambda s: list_transactions(s, *where))

    async def list_unlinked_transactions(self) -> list[Transaction]:
        return await self.run_atomic(list_unlinked_transactions)

    async def list_subscriptions(self) -> list[Subscription]:
        return await self.run_atomic(list_subscriptions)

    async def list_subscription_summaries(self) -> list[SubscriptionSummary]:
        return await self.run_atomic(list_subscription_summaries)

    async def insert_subscription(self, **fields: Any) -> int:
        return await self.run_atomic(lambda s: insert_subscription(s, **fields))

    async def link_transactions(self, subscription_id: int, transaction_ids: Iterable[str]) -> int:
        ids = list(transaction_ids)
        return await self.run_atomic(lambda s: link_transactions(s, subscription_id, ids))

    async def delete_subscription(self, subscription_id: int) -> bool:
        return await self.run_atomic(lambda s: delete_subscription(s, subscription_id))


__all__ = [
    "MUTABLE_TRANSACTION_FIELDS",
    "TransactionStore",
    "delete_subscription",
    "insert_subscription",
    "insert_transactions_ignoring_conflicts",
    "link_transactions",
    "list_subscription_summaries",
    "list_subscriptions",
    "list_transactions",
    "list_unlinked_transactions",
    "update_transaction",
]
