"""Test helpers to stub the async OpenAI Responses client used by enrichment.py.

The stub decodes the JSON blocks embedded in the user content and hands them
to a ``respond`` callable, so tests describe answers in terms of the records
that were actually sent.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Iterable, Mapping
from types import SimpleNamespace
from typing import Any

from statement_pipeline.prompting import (
    BEGIN_SUBSCRIPTIONS,
    BEGIN_TRANSACTIONS,
    END_SUBSCRIPTIONS,
    END_TRANSACTIONS,
)


def _extract_block(user_content: str, begin: str, end: str) -> list[dict[str, Any]]:
    b = user_content.find(begin)
    e = user_content.find(end, b + len(begin)) if b != -1 else -1
    if b == -1 or e == -1:
        raise AssertionError(f"user content missing embedded block {begin.strip()}")
    return json.loads(user_content[b + len(begin) : e])


def sent_transactions(call: Mapping[str, Any]) -> list[dict[str, Any]]:
    return _extract_block(call["input"], BEGIN_TRANSACTIONS, END_TRANSACTIONS)


def sent_subscriptions(call: Mapping[str, Any]) -> list[dict[str, Any]]:
    return _extract_block(call["input"], BEGIN_SUBSCRIPTIONS, END_SUBSCRIPTIONS)


class FakeStatusError(Exception):
    """Mimics ``openai.APIStatusError`` closely enough for retry classification."""

    def __init__(self, status_code: int) -> None:
        super().__init__(f"HTTP {status_code}")
        self.status_code = status_code


class AsyncOpenAIStub:
    """Minimal stub matching the ``openai.AsyncOpenAI`` shape used by enrichment.

    Parameters
    ----------
    respond:
        Receives the kwargs of each ``responses.create`` call and returns the
        body (a mapping, JSON-encoded by the stub, or a raw string).
    failures:
        Exceptions raised by the first calls, in order, before ``respond``
        is consulted.
    """

    def __init__(
        self,
        respond: Callable[[dict[str, Any]], Mapping[str, Any] | str],
        *,
        failures: Iterable[BaseException] = (),
    ) -> None:
        self._respond = respond
        self._failures = list(failures)
        self.calls: list[dict[str, Any]] = []

        class _Responses:
            def __init__(self, outer: AsyncOpenAIStub) -> None:
                self._outer = outer

            async def create(self, **kwargs: Any) -> Any:
                self._outer.calls.append(kwargs)
                if self._outer._failures:
                    raise self._outer._failures.pop(0)
                body = self._outer._respond(kwargs)
                text = body if isinstance(body, str) else json.dumps(body)
                return SimpleNamespace(output_text=text)

        self.responses = _Responses(self)


def enrichment_responder(
    decide: Callable[[dict[str, Any]], Mapping[str, Any]] | None = None,
) -> Callable[[dict[str, Any]], dict[str, Any]]:
    """Answer every sent transaction once; ``decide`` may override fields per item."""

    def _respond(call: dict[str, Any]) -> dict[str, Any]:
        out = []
        for item in sent_transactions(call):
            result: dict[str, Any] = {
                "id": item["id"],
                "category": "other",
                "display_name": item["description"].title(),
                "domain": None,
                "subscription_id": None,
            }
            if decide is not None:
                result.update(decide(item))
            out.append(result)
        return {"transactions": out}

    return _respond
