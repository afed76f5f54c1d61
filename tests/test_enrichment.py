from datetime import date

import pytest

import statement_pipeline.enrichment as enrichment_mod
from statement_pipeline.categories import BillingCycle, Category
from statement_pipeline.enrichment import EnrichmentClient
from statement_pipeline.errors import (
    EnrichmentError,
    EnrichmentTransportError,
    EnrichmentValidationError,
    MissingCredentialError,
)
from statement_pipeline.models import SubscriptionSummary
from statement_pipeline.prompting import TRANSACTION_FIELD_ORDER
from tests.helpers.db import make_tx
from tests.helpers.openai_stub import (
    AsyncOpenAIStub,
    FakeStatusError,
    enrichment_responder,
    sent_subscriptions,
    sent_transactions,
)

SUBS = [SubscriptionSummary(id=7, name="Netflix", price=1990, billing_cycle=BillingCycle.MONTHLY)]


async def test_enrich_returns_one_result_per_input_in_order():
    txs = [make_tx(f"t{i}", description=f"shop {i}") for i in range(3)]
    stub = AsyncOpenAIStub(enrichment_responder(lambda item: {"category": "shopping"}))

    results = await EnrichmentClient(client=stub).enrich(list(reversed(txs)), SUBS)

    assert [r.id for r in results] == ["t2", "t1", "t0"]
    assert all(r.category is Category.SHOPPING for r in results)
    assert len(stub.calls) == 1


async def test_payload_is_minimal_projection_with_fixed_order():
    stub = AsyncOpenAIStub(enrichment_responder())
    await EnrichmentClient(client=stub, model="test-model").enrich([make_tx("t1")], SUBS)

    call = stub.calls[0]
    assert call["model"] == "test-model"
    assert call["text"]["format"]["strict"] is True
    (sent,) = sent_transactions(call)
    assert tuple(sent) == TRANSACTION_FIELD_ORDER
    assert sent["description"] == "Coop Zurich"
    assert sent["date"] == "2024-01-15"
    assert "account_iban" not in sent
    assert sent_subscriptions(call) == [
        {"id": 7, "name": "Netflix", "price": 1990, "billing_cycle": "monthly"}
    ]


async def test_enrich_batches_by_fifty():
    txs = [make_tx(f"t{i:03d}") for i in range(120)]
    stub = AsyncOpenAIStub(enrichment_responder())

    results = await EnrichmentClient(client=stub, concurrency=2).enrich(txs)

    assert sorted(len(sent_transactions(c)) for c in stub.calls) == [20, 50, 50]
    assert [r.id for r in results] == [t.id for t in txs]


@pytest.mark.parametrize(
    "mutate",
    [
        lambda body: body["transactions"].pop(),
        lambda body: body["transactions"].append(dict(body["transactions"][0])),
        lambda body: body["transactions"].append(dict(body["transactions"][0], id="ghost")),
        lambda body: body["transactions"][0].update(category="crypto"),
        lambda body: body["transactions"][0].pop("display_name"),
        lambda body: body.update(extra=True),
    ],
    ids=["missing", "duplicate", "unknown-id", "bad-category", "missing-field", "extra-key"],
)
async def test_contract_violations_raise_validation_error(mutate):
    base = enrichment_responder()

    def respond(call):
        body = base(call)
        mutate(body)
        return body

    stub = AsyncOpenAIStub(respond)
    with pytest.raises(EnrichmentValidationError) as exc:
        await EnrichmentClient(client=stub).enrich([make_tx("a"), make_tx("b")])
    assert exc.value.code == "invalid_response"
    # An invalid batch is requested once more, then fails.
    assert len(stub.calls) == enrichment_mod._INVALID_RESPONSE_ATTEMPTS


async def test_invalid_batch_recovers_on_second_request():
    base = enrichment_responder()
    answers = iter([lambda call: {"transactions": []}, base])

    stub = AsyncOpenAIStub(lambda call: next(answers)(call))
    results = await EnrichmentClient(client=stub).enrich([make_tx("a"), make_tx("b")])

    assert [r.id for r in results] == ["a", "b"]
    assert len(stub.calls) == 2


async def test_failed_batch_does_not_discard_good_batches():
    txs = [make_tx(f"t{i:03d}") for i in range(60)]
    base = enrichment_responder()

    def drop_one_from_short_batch(call):
        body = base(call)
        if len(body["transactions"]) < 50:
            body["transactions"].pop()
        return body

    stub = AsyncOpenAIStub(drop_one_from_short_batch)
    client = EnrichmentClient(client=stub)

    report = await client.enrich_report(txs)

    assert not report.complete
    assert [r.id for r in report.results] == [t.id for t in txs[:50]]
    assert report.failed_ids == tuple(t.id for t in txs[50:])
    (error,) = report.errors
    assert isinstance(error, EnrichmentValidationError)
    # One request for the good batch, two for the bad one.
    assert len(stub.calls) == 3

    with pytest.raises(EnrichmentValidationError):
        await client.enrich(txs)


async def test_non_json_output_is_a_validation_error():
    stub = AsyncOpenAIStub(lambda call: "not json at all")
    with pytest.raises(EnrichmentValidationError):
        await EnrichmentClient(client=stub).enrich([make_tx("a")])


async def test_unknown_subscription_id_is_dropped():
    stub = AsyncOpenAIStub(
        enrichment_responder(lambda item: {"subscription_id": 7 if item["id"] == "a" else 99})
    )
    results = await EnrichmentClient(client=stub).enrich([make_tx("a"), make_tx("b")], SUBS)
    assert [r.subscription_id for r in results] == [7, None]


async def test_retries_429_then_succeeds():
    stub = AsyncOpenAIStub(enrichment_responder(), failures=[FakeStatusError(429), FakeStatusError(503)])
    results = await EnrichmentClient(client=stub).enrich([make_tx("a")])
    assert [r.id for r in results] == ["a"]
    assert len(stub.calls) == 3


async def test_transport_error_after_max_attempts():
    stub = AsyncOpenAIStub(enrichment_responder(), failures=[FakeStatusError(500)] * 5)
    with pytest.raises(EnrichmentTransportError) as exc:
        await EnrichmentClient(client=stub).enrich([make_tx("a")])
    assert exc.value.code == "upstream_request_failed"
    assert exc.value.status_code == 500
    assert len(stub.calls) == enrichment_mod._MAX_ATTEMPTS


async def test_client_errors_are_not_retried():
    stub = AsyncOpenAIStub(enrichment_responder(), failures=[FakeStatusError(400)])
    with pytest.raises(EnrichmentTransportError):
        await EnrichmentClient(client=stub).enrich([make_tx("a")])
    assert len(stub.calls) == 1


async def test_missing_credential():
    with pytest.raises(MissingCredentialError) as exc:
        await EnrichmentClient().enrich([make_tx("a")])
    assert isinstance(exc.value, EnrichmentError)
    assert exc.value.code == "missing_credential"


async def test_factory_is_used_when_no_client_is_injected(monkeypatch):
    stub = AsyncOpenAIStub(enrichment_responder())
    monkeypatch.setattr(enrichment_mod, "_create_client", lambda: stub)
    results = await EnrichmentClient().enrich([make_tx("a")])
    assert len(results) == 1 and len(stub.calls) == 1


async def test_empty_input_makes_no_call():
    stub = AsyncOpenAIStub(enrichment_responder())
    client = EnrichmentClient(client=stub)
    assert await client.enrich([]) == []
    assert await client.detect([]) == []
    assert stub.calls == []


# ---- detection ---------------------------------------------------------------


def _candidate(**overrides):
    c = {
        "name": "Netflix",
        "subscribed_at": "2024-01-05",
        "price": 9.99,
        "domain": "netflix.com",
        "billing_cycle": "monthly",
        "confidence": 0.95,
        "reasoning": "Five monthly payments of 9.99 CHF.",
        "transaction_ids": ["n1", "n2"],
    }
    c.update(overrides)
    return c


async def test_detect_converts_price_and_keeps_service_order():
    body = {
        "subscriptions": [
            _candidate(),
            _candidate(name="Spotify", price=12.95, transaction_ids=["s1"], confidence=0.5),
        ]
    }
    stub = AsyncOpenAIStub(lambda call: body)
    txs = [make_tx(i) for i in ("n1", "n2", "s1")]

    candidates = await EnrichmentClient(client=stub).detect(txs)

    assert [c.name for c in candidates] == ["Netflix", "Spotify"]
    assert candidates[0].price == 999
    assert candidates[0].subscribed_at == date(2024, 1, 5)
    assert candidates[0].transaction_ids == frozenset({"n1", "n2"})
    assert candidates[1].price == 1295
    assert len(sent_transactions(stub.calls[0])) == 3


async def test_detect_drops_unknown_transaction_ids():
    stub = AsyncOpenAIStub(
        lambda call: {"subscriptions": [_candidate(transaction_ids=["n1", "bogus"])]}
    )
    (candidate,) = await EnrichmentClient(client=stub).detect([make_tx("n1"), make_tx("n2")])
    assert candidate.transaction_ids == frozenset({"n1"})


async def test_detect_rejects_candidate_without_known_ids():
    stub = AsyncOpenAIStub(lambda call: {"subscriptions": [_candidate(transaction_ids=["bogus"])]})
    with pytest.raises(EnrichmentValidationError):
        await EnrichmentClient(client=stub).detect([make_tx("n1")])


@pytest.mark.parametrize(
    "overrides",
    [{"billing_cycle": "daily"}, {"confidence": 1.5}, {"price": 0}, {"subscribed_at": "soon"}],
)
async def test_detect_rejects_invalid_candidates(overrides):
    stub = AsyncOpenAIStub(lambda call: {"subscriptions": [_candidate(**overrides)]})
    with pytest.raises(EnrichmentValidationError):
        await EnrichmentClient(client=stub).detect([make_tx("n1"), make_tx("n2")])
