"""Currency amount helpers: major units (e.g. CHF) to integer minor units."""

from __future__ import annotations

import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

_PRICE_RE = re.compile(r"^(\d*)(?:\.(\d{0,2}))?$")


def to_minor_units(raw: Any) -> int | None:
    """Convert a major-unit amount to minor units with half-up rounding.

    Goes through ``Decimal(str(raw))`` so binary float artefacts never decide
    the rounding (``0.005`` -> ``1``). Returns ``None`` for non-numeric input.
    """

    if raw is None or isinstance(raw, bool):
        return None
    try:
        d = Decimal(str(raw).strip())
    except (InvalidOperation, ValueError):
        return None
    if not d.is_finite():
        return None
    return int((d * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def parse_price_to_cents(text: str) -> int | None:
    """Parse a user-typed price (``"9.90"``, ``"9,9"``, ``" 12 "``) to cents.

    Accepts ``,`` or ``.`` as the decimal separator and at most two decimals.
    Returns ``None`` when the input is empty or not a plain price.
    """

    normalized = "".join(text.split()).replace(",", ".", 1)
    if not normalized:
        return None
    match = _PRICE_RE.match(normalized)
    if not match:
        return None
    whole, frac = match.group(1) or "", match.group(2) or ""
    if not whole and not frac:
        return None
    return int(whole or "0") * 100 + int(frac.ljust(2, "0"))


def format_minor_units(value: int, currency: str = "CHF") -> str:
    sign = "-" if value < 0 else ""
    return f"{sign}{currency} {abs(value) // 100:,}.{abs(value) % 100:02d}"


__all__ = ["format_minor_units", "parse_price_to_cents", "to_minor_units"]
