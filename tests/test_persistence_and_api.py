from datetime import date

import pytest
from db.client import session_scope
from db.models.finance import Subscription, Transaction
from sqlalchemy.exc import IntegrityError

from statement_pipeline.api import add_subscription, delete_subscription
from statement_pipeline.categories import BillingCycle
from tests.helpers.db import (
    count_rows,
    fetch_subscriptions,
    fetch_transactions,
    make_tx,
    seed_transactions,
)


async def test_insert_ignoring_conflicts_returns_only_new_rows(store, database_url):
    await seed_transactions(database_url, [make_tx("old", amount=100)])

    inserted = await store.insert_transactions_ignoring_conflicts(
        [make_tx("new"), make_tx("old", amount=999), make_tx("new", amount=5)]
    )

    assert [(t.id, t.amount) for t in inserted] == [("new", 1000)]
    rows = await fetch_transactions(database_url)
    # The existing row is left untouched.
    assert rows["old"].amount == 100
    assert await count_rows(database_url, Transaction) == 2


async def test_insert_ignoring_conflicts_handles_large_batches(store, database_url):
    rows = [make_tx(f"t{i:04d}") for i in range(1200)]
    inserted = await store.insert_transactions_ignoring_conflicts(rows)
    assert len(inserted) == 1200
    assert await store.insert_transactions_ignoring_conflicts(rows) == []


async def test_update_transaction_only_patches_enrichment_fields(store, database_url):
    await seed_transactions(database_url, [make_tx("a")])

    assert await store.update_transaction("a", {"category": "food", "display_name": "Coop"})
    assert await store.update_transaction("missing", {"category": "food"}) is False
    with pytest.raises(ValueError, match="amount"):
        await store.update_transaction("a", {"amount": 1})

    row = (await fetch_transactions(database_url))["a"]
    assert (row.category, row.display_name, row.amount) == ("food", "Coop", 1000)


async def test_store_rejects_inconsistent_signed_amount(database_url):
    bad = make_tx("bad").as_row() | {"signed_amount": 1000}
    with pytest.raises(IntegrityError):
        async with session_scope(database_url=database_url) as session:
            session.add(Transaction(**bad))
    assert await count_rows(database_url, Transaction) == 0


async def test_list_unlinked_orders_by_date(store, database_url):
    await seed_transactions(
        database_url,
        [make_tx("late", on=date(2024, 3, 1)), make_tx("early", on=date(2024, 1, 1))],
    )
    assert [t.id for t in await store.list_unlinked_transactions()] == ["early", "late"]


async def test_add_subscription_parses_user_price(store, database_url):
    sub_id = await add_subscription(
        store,
        name="  Netflix ",
        price="9,90",
        billing_cycle="monthly",
        subscribed_at=date(2024, 1, 5),
        domain="NETFLIX.COM ",
    )

    (sub,) = await fetch_subscriptions(database_url)
    assert sub.id == sub_id
    assert (sub.name, sub.price, sub.billing_cycle, sub.domain) == (
        "Netflix",
        990,
        "monthly",
        "netflix.com",
    )


@pytest.mark.parametrize(
    "overrides",
    [
        {"name": "   "},
        {"price": "0"},
        {"price": "abc"},
        {"price": -5},
        {"billing_cycle": "daily"},
    ],
)
async def test_add_subscription_rejects_invalid_input(store, database_url, overrides):
    fields = {
        "name": "Gym",
        "price": 4500,
        "billing_cycle": BillingCycle.YEARLY,
        "subscribed_at": date(2024, 1, 1),
    } | overrides
    with pytest.raises(ValueError):
        await add_subscription(store, **fields)
    assert await count_rows(database_url, Subscription) == 0


async def test_delete_subscription_unlinks_transactions(store, database_url):
    await seed_transactions(database_url, [make_tx("a"), make_tx("b")])
    sub_id = await add_subscription(
        store, name="Spotify", price=1295, billing_cycle="monthly", subscribed_at=date(2024, 1, 1)
    )
    assert await store.link_transactions(sub_id, ["a", "b"]) == 2

    assert await delete_subscription(store, sub_id) is True
    assert await delete_subscription(store, sub_id) is False

    rows = await fetch_transactions(database_url)
    assert set(rows) == {"a", "b"}
    assert all(r.subscription_id is None for r in rows.values())
    assert await count_rows(database_url, Subscription) == 0


async def test_subscription_summaries_feed_enrichment(store):
    await add_subscription(
        store, name="Zattoo", price=1500, billing_cycle="monthly", subscribed_at=date(2024, 1, 1)
    )
    await add_subscription(
        store, name="AXA", price=42000, billing_cycle="yearly", subscribed_at=date(2024, 1, 1)
    )
    summaries = await store.list_subscription_summaries()
    assert [(s.name, s.billing_cycle) for s in summaries] == [
        ("AXA", BillingCycle.YEARLY),
        ("Zattoo", BillingCycle.MONTHLY),
    ]
