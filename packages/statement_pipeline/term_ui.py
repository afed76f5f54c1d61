"""Tiny terminal UI helpers (prompt_toolkit-based).

Kept separate from :mod:`statement_pipeline.review` so the state machine stays
free of I/O and these prompts can be tested with a pipe input.
"""

from __future__ import annotations

from collections.abc import Callable

from prompt_toolkit import PromptSession
from prompt_toolkit.key_binding import KeyBindings
from prompt_toolkit.validation import ValidationError, Validator

from .amounts import format_minor_units, parse_price_to_cents
from .models import DetectedSubscriptionCandidate
from .review import CandidateReview, ReviewState, confidence_band

SELECTION_HELP = "Numbers toggle • a: all • n: none • Enter: confirm • q: cancel"


def _session_like(session: PromptSession | None, kb: KeyBindings | None = None) -> PromptSession:
    if session is None:
        return PromptSession(key_bindings=kb)
    return PromptSession(
        input=getattr(session, "input", None),
        output=getattr(session, "output", None),
        key_bindings=kb,
    )


def format_candidate_line(
    position: int, candidate: DetectedSubscriptionCandidate, *, selected: bool
) -> str:
    mark = "[x]" if selected else "[ ]"
    domain = f" ({candidate.domain})" if candidate.domain else ""
    return (
        f"{mark} {position}. {candidate.name}{domain} {format_minor_units(candidate.price)} "
        f"{candidate.billing_cycle} since {candidate.subscribed_at.isoformat()} "
        f"• {len(candidate.transaction_ids)} payment(s) "
        f"• confidence {confidence_band(candidate)} ({candidate.confidence:.2f})"
    )


class _SelectionValidator(Validator):
    def __init__(self, count: int) -> None:
        self._count = count

    def validate(self, document) -> None:
        text = document.text.strip().lower()
        if text in ("", "a", "n", "q"):
            return
        for token in text.replace(",", " ").split():
            if not token.isdigit() or not 1 <= int(token) <= self._count:
                raise ValidationError(message=f"Enter numbers between 1 and {self._count}")


def prompt_candidate_selection(
    review: CandidateReview,
    *,
    session: PromptSession | None = None,
    echo: Callable[[str], None] = print,
    message: str = "Toggle: ",
) -> ReviewState:
    """Drive ``review`` from the terminal until it is confirmed or cancelled.

    Returns the resulting state (``confirming`` or ``cancelled``). Numbers
    shown to the user are 1-based.
    """

    kb = KeyBindings()

    @kb.add("escape", eager=True)
    def _(event) -> None:  # pragma: no cover - exercised indirectly
        event.app.exit(result="q")

    sess = _session_like(session, kb)
    validator = _SelectionValidator(len(review.candidates))

    while True:
        echo(SELECTION_HELP)
        for i, candidate in enumerate(review.candidates):
            echo(format_candidate_line(i + 1, candidate, selected=review.is_selected(i)))
        answer = (
            sess.prompt(message, validator=validator, validate_while_typing=False) or ""
        ).strip().lower()
        if answer == "":
            review.confirm()
            return review.state
        if answer == "q":
            review.cancel()
            return review.state
        if answer == "a":
            review.set_selection(range(len(review.candidates)))
        elif answer == "n":
            review.set_selection(())
        else:
            for token in answer.replace(",", " ").split():
                review.toggle(int(token) - 1)


class _PriceValidator(Validator):
    def validate(self, document) -> None:
        cents = parse_price_to_cents(document.text)
        if cents is None or cents <= 0:
            raise ValidationError(message="Enter a positive price such as 9.90 or 9,90")


def prompt_price_cents(
    *,
    session: PromptSession | None = None,
    message: str = "Price (e.g. 9.90): ",
    initial: str = "",
) -> int | None:
    """Ask for a price and return it in cents; Esc cancels with ``None``."""

    kb = KeyBindings()

    @kb.add("escape", eager=True)
    def _(event) -> None:  # pragma: no cover - exercised indirectly
        event.app.exit(result=None)

    value = _session_like(session, kb).prompt(
        message, default=initial, validator=_PriceValidator(), validate_while_typing=False
    )
    if value is None:
        return None
    return parse_price_to_cents(value)


__all__ = [
    "SELECTION_HELP",
    "format_candidate_line",
    "prompt_candidate_selection",
    "prompt_price_cents",
]
