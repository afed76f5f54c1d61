"""Inference client for transaction enrichment and subscription detection.

Public API:
    - :class:`EnrichmentClient` with ``enrich``, ``enrich_report`` and ``detect``

Both operations send a minimal projection of the records to the OpenAI
Responses API with a strict JSON Schema ``text.format`` and validate the
answer with the Pydantic contracts in :mod:`statement_pipeline.models`.
No side effects occur at import time (no client creation, no env reads).
"""

from __future__ import annotations

import asyncio
import json
import os
import random
import time
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from openai import AsyncOpenAI
from openai.types.responses import ResponseTextConfigParam
from pydantic import ValidationError

from . import prompting
from .amounts import to_minor_units
from .errors import (
    EnrichmentError,
    EnrichmentTransportError,
    EnrichmentValidationError,
    MissingCredentialError,
)
from .logging_setup import get_logger
from .models import (
    DetectedSubscriptionCandidate,
    DetectionResponseBody,
    EnrichedTransactionResult,
    EnrichmentReport,
    EnrichmentResponseBody,
    SubscriptionSummary,
)

# ---- Tunables (private) ------------------------------------------------------

_BATCH_SIZE: int = 50
_DEFAULT_CONCURRENCY: int = 4
_MAX_CONCURRENCY: int = 16
_MAX_ATTEMPTS: int = 3
# Whole-batch attempts when the response fails validation.
_INVALID_RESPONSE_ATTEMPTS: int = 2
_BACKOFF_SCHEDULE_SEC: tuple[float, ...] = (0.5, 2.0)
_JITTER_PCT: float = 0.20

_DEFAULT_MODEL: str = "gpt-5"

_logger = get_logger("statement_pipeline.enrichment")


# ---- Internal helpers --------------------------------------------------------


def _create_client() -> AsyncOpenAI:
    if not os.getenv("OPENAI_API_KEY"):
        raise MissingCredentialError("OPENAI_API_KEY is not set in the environment")
    return AsyncOpenAI()


def _resolve_concurrency(explicit: int | None) -> int:
    if explicit is None:
        raw = os.getenv("STATEMENT_PIPELINE_ENRICH_CONCURRENCY")
        try:
            explicit = int(raw) if raw else _DEFAULT_CONCURRENCY
        except ValueError:
            explicit = _DEFAULT_CONCURRENCY
    return max(1, min(explicit, _MAX_CONCURRENCY))


def _is_retryable(exc: BaseException) -> bool:
    """Return True only for HTTP 429 and 5xx errors."""

    sc = getattr(exc, "status_code", None)
    return isinstance(sc, int) and (sc == 429 or 500 <= sc < 600)


async def _sleep_backoff(attempt_no: int) -> None:
    if attempt_no - 1 < len(_BACKOFF_SCHEDULE_SEC):
        base = _BACKOFF_SCHEDULE_SEC[attempt_no - 1]
    else:
        base = _BACKOFF_SCHEDULE_SEC[-1]
    jitter = base * _JITTER_PCT
    await asyncio.sleep(max(0.0, base + random.uniform(-jitter, jitter)))


def _extract_response_json_mapping(resp: Any, *, operation: str) -> Mapping[str, Any]:
    """Decode the JSON object from a Responses API result.

    Prefers ``resp.output_text`` and falls back to
    ``resp.output[0].content[0].text``.
    """

    text: str | None = getattr(resp, "output_text", None)
    if not text:
        output = getattr(resp, "output", None) or []
        content = getattr(output[0], "content", None) if output else None
        if content:
            txt_obj = getattr(content[0], "text", None)
            # Some SDK versions wrap the text in an object with ``value``.
            text = txt_obj if isinstance(txt_obj, str) else getattr(txt_obj, "value", None)
    if not text or not isinstance(text, str):
        raise EnrichmentValidationError(
            "Unexpected Responses API shape; unable to locate text output", operation=operation
        )
    try:
        decoded = json.loads(text)
    except json.JSONDecodeError as e:
        raise EnrichmentValidationError(
            "Model output was not valid JSON per the requested schema", operation=operation
        ) from e
    if not isinstance(decoded, Mapping):
        raise EnrichmentValidationError(
            "Invalid response: expected a JSON object at top level", operation=operation
        )
    return decoded


def _batches(items: Sequence[Any], size: int) -> list[Sequence[Any]]:
    return [items[i : i + size] for i in range(0, len(items), size)]


# ---- Client ------------------------------------------------------------------


class EnrichmentClient:
    """Structured-output inference calls with retries and response validation.

    Parameters
    ----------
    client:
        An ``openai.AsyncOpenAI``-shaped object. When omitted, one is created
        on first use via ``_create_client`` (which needs ``OPENAI_API_KEY``).
    model:
        Model name; defaults to ``STATEMENT_PIPELINE_MODEL`` or ``gpt-5``.
    batch_size / concurrency:
        Enrichment paging. Concurrency defaults to
        ``STATEMENT_PIPELINE_ENRICH_CONCURRENCY`` (capped to 1..16).
    """

    def __init__(
        self,
        *,
        client: Any | None = None,
        model: str | None = None,
        batch_size: int = _BATCH_SIZE,
        concurrency: int | None = None,
    ) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be a positive integer")
        self._client = client
        self._model = model or os.getenv("STATEMENT_PIPELINE_MODEL") or _DEFAULT_MODEL
        self._batch_size = batch_size
        self._concurrency = _resolve_concurrency(concurrency)

    @property
    def model(self) -> str:
        return self._model

    def _get_client(self) -> Any:
        if self._client is None:
            self._client = _create_client()
        return self._client

    async def _request(
        self,
        *,
        operation: str,
        batch_index: int,
        count: int,
        instructions: str,
        user_content: str,
        text_cfg: ResponseTextConfigParam,
    ) -> Mapping[str, Any]:
        client = self._get_client()
        _logger.info(
            "%s:batch_llm batch_index=%d num_transactions=%d", operation, batch_index, count
        )
        attempt = 1
        while True:
            t0 = time.perf_counter()
            try:
                resp = await client.responses.create(
                    model=self._model,
                    instructions=instructions,
                    input=user_content,
                    text=text_cfg,
                )
            except Exception as e:  # noqa: BLE001 - classified below
                dt_ms = (time.perf_counter() - t0) * 1000.0
                if attempt >= _MAX_ATTEMPTS or not _is_retryable(e):
                    _logger.error(
                        "%s:batch_failed_terminal batch_index=%d count=%d latency_ms=%.2f error=%s",
                        operation,
                        batch_index,
                        count,
                        dt_ms,
                        e.__class__.__name__,
                    )
                    raise EnrichmentTransportError(
                        f"{operation} request failed for batch {batch_index}: {e}",
                        operation=operation,
                        status_code=getattr(e, "status_code", None),
                    ) from e
                _logger.warning(
                    "%s:batch_retry batch_index=%d count=%d latency_ms=%.2f error=%s attempt=%d",
                    operation,
                    batch_index,
                    count,
                    dt_ms,
                    e.__class__.__name__,
                    attempt,
                )
                await _sleep_backoff(attempt)
                attempt += 1
                continue

            decoded = _extract_response_json_mapping(resp, operation=operation)
            _logger.info(
                "%s:batch_done batch_index=%d num_transactions=%d latency_ms=%.2f",
                operation,
                batch_index,
                count,
                (time.perf_counter() - t0) * 1000.0,
            )
            return decoded

    # ---- enrichment -------------------------------------------------------

    async def _enrich_batch(
        self,
        batch_index: int,
        batch: Sequence[Any],
        *,
        subscriptions_json: str,
        known_subscription_ids: frozenset[int],
        semaphore: asyncio.Semaphore,
    ) -> list[EnrichedTransactionResult]:
        projected = [prompting.project_transaction(tx) for tx in batch]
        user_content = prompting.build_enrichment_user_content(
            prompting.serialize_records(projected, prompting.TRANSACTION_FIELD_ORDER),
            subscriptions_json,
        )
        attempt = 1
        while True:
            try:
                async with semaphore:
                    body = await self._request(
                        operation="enrich",
                        batch_index=batch_index,
                        count=len(batch),
                        instructions=prompting.build_enrichment_instructions(),
                        user_content=user_content,
                        text_cfg={"format": prompting.build_enrichment_response_format()},
                    )
                return _parse_enrichment_body(
                    body,
                    expected_ids=[p["id"] for p in projected],
                    known_subscription_ids=known_subscription_ids,
                )
            except EnrichmentValidationError as e:
                if attempt >= _INVALID_RESPONSE_ATTEMPTS:
                    raise
                _logger.warning(
                    "enrich:batch_invalid_retry batch_index=%d count=%d attempt=%d error=%s",
                    batch_index,
                    len(batch),
                    attempt,
                    e.message,
                )
                attempt += 1

    async def enrich_report(
        self,
        transactions: Sequence[Any],
        subscriptions: Iterable[SubscriptionSummary] = (),
    ) -> EnrichmentReport:
        """Enrich ``transactions`` batch by batch, keeping every good batch.

        Each batch must cover exactly its own ids. A batch that still fails
        after its retries adds its error and ids to the report instead of
        discarding the other batches. A missing credential raises up front.
        """

        txs = list(transactions)
        if not txs:
            return EnrichmentReport()
        self._get_client()
        subs = list(subscriptions)
        subscriptions_json = prompting.serialize_records(
            (prompting.project_subscription(s) for s in subs), prompting.SUBSCRIPTION_FIELD_ORDER
        )
        known_sub_ids = frozenset(s.id for s in subs)
        semaphore = asyncio.Semaphore(self._concurrency)

        batches = _batches(txs, self._batch_size)
        outcomes = await asyncio.gather(
            *(
                self._enrich_batch(
                    i,
                    batch,
                    subscriptions_json=subscriptions_json,
                    known_subscription_ids=known_sub_ids,
                    semaphore=semaphore,
                )
                for i, batch in enumerate(batches)
            ),
            return_exceptions=True,
        )

        results: list[EnrichedTransactionResult] = []
        errors: list[EnrichmentError] = []
        failed_ids: list[str] = []
        for batch, outcome in zip(batches, outcomes, strict=True):
            if isinstance(outcome, EnrichmentError):
                errors.append(outcome)
                failed_ids.extend(tx.id for tx in batch)
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                results.extend(outcome)
        if errors:
            _logger.warning(
                "enrich:partial failed_batches=%d total_batches=%d failed_transactions=%d",
                len(errors),
                len(batches),
                len(failed_ids),
            )
        return EnrichmentReport(
            results=tuple(results), errors=tuple(errors), failed_ids=tuple(failed_ids)
        )

    async def enrich(
        self,
        transactions: Sequence[Any],
        subscriptions: Iterable[SubscriptionSummary] = (),
    ) -> list[EnrichedTransactionResult]:
        """Enrich ``transactions`` and return exactly one result per input id.

        Results come back in input order. This is the strict form of
        :meth:`enrich_report`: the first failed batch is raised.
        """

        report = await self.enrich_report(transactions, subscriptions)
        if report.errors:
            raise report.errors[0]
        return list(report.results)

    # ---- detection --------------------------------------------------------

    async def detect(self, transactions: Sequence[Any]) -> list[DetectedSubscriptionCandidate]:
        """Detect recurring subscriptions across ``transactions`` in one request.

        Candidates are returned in service order. Ids the request never
        contained are dropped from ``transaction_ids``.
        """

        txs = list(transactions)
        if not txs:
            return []
        projected = [prompting.project_transaction(tx) for tx in txs]
        body = await self._request(
            operation="detect",
            batch_index=0,
            count=len(txs),
            instructions=prompting.build_detection_instructions(),
            user_content=prompting.build_detection_user_content(
                prompting.serialize_records(projected, prompting.TRANSACTION_FIELD_ORDER)
            ),
            text_cfg={"format": prompting.build_detection_response_format()},
        )
        return _parse_detection_body(body, known_ids=frozenset(p["id"] for p in projected))


# ---- Response validation -----------------------------------------------------


def _parse_enrichment_body(
    body: Mapping[str, Any],
    *,
    expected_ids: Sequence[str],
    known_subscription_ids: frozenset[int],
) -> list[EnrichedTransactionResult]:
    try:
        parsed = EnrichmentResponseBody.model_validate(body)
    except ValidationError as e:
        raise EnrichmentValidationError(
            f"Invalid enrichment response: {e.error_count()} validation error(s): {e}",
            operation="enrich",
        ) from e

    by_id: dict[str, EnrichedTransactionResult] = {}
    for item in parsed.transactions:
        if item.id in by_id:
            raise EnrichmentValidationError(
                f"Invalid enrichment response: duplicate id {item.id!r}", operation="enrich"
            )
        sub_id = item.subscription_id
        if sub_id is not None and sub_id not in known_subscription_ids:
            _logger.warning("enrich:unknown_subscription_id id=%s subscription_id=%d", item.id, sub_id)
            sub_id = None
        by_id[item.id] = EnrichedTransactionResult(
            id=item.id,
            category=item.category,
            display_name=item.display_name,
            domain=item.domain,
            subscription_id=sub_id,
        )

    expected = set(expected_ids)
    missing = [i for i in expected_ids if i not in by_id]
    extra = sorted(set(by_id) - expected)
    if missing or extra:
        raise EnrichmentValidationError(
            f"Invalid enrichment response: missing ids {missing}, unexpected ids {extra}",
            operation="enrich",
        )
    return [by_id[i] for i in expected_ids]


def _parse_detection_body(
    body: Mapping[str, Any], *, known_ids: frozenset[str]
) -> list[DetectedSubscriptionCandidate]:
    try:
        parsed = DetectionResponseBody.model_validate(body, context={"known_ids": known_ids})
    except ValidationError as e:
        raise EnrichmentValidationError(
            f"Invalid detection response: {e.error_count()} validation error(s): {e}",
            operation="detect",
        ) from e

    raw_items = body.get("subscriptions") or []
    out: list[DetectedSubscriptionCandidate] = []
    for pos, item in enumerate(parsed.subscriptions):
        raw_ids = {str(s).strip() for s in (raw_items[pos].get("transaction_ids") or [])}
        dropped = len(raw_ids - known_ids - {""})
        if dropped:
            _logger.warning(
                "detect:unknown_transaction_ids candidate=%r dropped=%d", item.name, dropped
            )
        if item.confidence > 0 and not item.transaction_ids:
            raise EnrichmentValidationError(
                f"Invalid detection response: candidate {item.name!r} has no known transaction ids",
                operation="detect",
            )
        price = to_minor_units(item.price)
        if price is None or price <= 0:
            raise EnrichmentValidationError(
                f"Invalid detection response: candidate {item.name!r} price rounds to zero",
                operation="detect",
            )
        out.append(
            DetectedSubscriptionCandidate(
                name=item.name,
                subscribed_at=item.subscribed_at,
                price=price,
                billing_cycle=item.billing_cycle,
                confidence=item.confidence,
                transaction_ids=frozenset(item.transaction_ids),
                domain=item.domain,
                reasoning=item.reasoning,
            )
        )
    return out


__all__ = ["EnrichmentClient", "EnrichmentError"]
