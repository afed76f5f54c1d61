"""Parser for the bank's native XML statement export.

Document shape (only the parts we read)::

    <zkbDatasetNative>
      <transactionList>
        <transaction>
          <statement>
            <transactionIdentification>...</transactionIdentification>
            <statementType>...</statementType>
            <valueDate>2024-01-15</valueDate>
            <accountIdentification>CH93...</accountIdentification>
            <amountInMaccCurrency>12.50</amountInMaccCurrency>
            <maccCurrency>CHF</maccCurrency>
            <creditDebitIndicator>debit</creditDebitIndicator>
            <transactionAdditionalDetails>...</transactionAdditionalDetails>
            <transactionSubtype>inflowOutflowDigital</transactionSubtype>
            <transactionType>cash</transactionType>
            <bookingType>cash</bookingType>
          </statement>
        </transaction>
        ...
      </transactionList>
    </zkbDatasetNative>

The XML is first turned into a plain nested mapping (see
:func:`load_document_tree`) and the entry walk runs over that tree, so the
validation rules do not depend on the XML library.
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from collections.abc import Iterator, Mapping, Sequence
from datetime import date, datetime
from typing import Any, TypeAlias

from ..amounts import to_minor_units
from ..categories import CreditDebitIndicator, TransactionSubtype
from ..errors import StatementParseError
from ..logging_setup import get_logger
from ..models import ParseReport, SkippedEntry, StatementTransaction

_logger = get_logger("statement_pipeline.ingest.statement_xml")

ROOT_TAG = "zkbDatasetNative"
LIST_TAG = "transactionList"
ENTRY_TAG = "transaction"
STATEMENT_TAG = "statement"

# Statement field -> StatementTransaction attribute
_REQUIRED_FIELDS: tuple[tuple[str, str], ...] = (
    ("transactionIdentification", "id"),
    ("statementType", "statement_type"),
    ("valueDate", "date"),
    ("accountIdentification", "account_iban"),
    ("amountInMaccCurrency", "amount"),
    ("maccCurrency", "currency"),
    ("creditDebitIndicator", "credit_debit_indicator"),
    ("transactionAdditionalDetails", "transaction_additional_details"),
)

_DATE_FORMATS: tuple[str, ...] = ("%Y-%m-%d", "%d.%m.%Y")

DocumentTree: TypeAlias = Mapping[str, Any]


# ---------------------------------------------------------------------------
# XML -> nested mapping
# ---------------------------------------------------------------------------


def _local_name(tag: str) -> str:
    # Drop any "{namespace}" prefix.
    return tag.rsplit("}", 1)[-1]


def _element_value(elem: ET.Element) -> Any:
    children = list(elem)
    if not children:
        return (elem.text or "").strip()
    out: dict[str, Any] = {}
    for child in children:
        key = _local_name(child.tag)
        value = _element_value(child)
        if key in out:
            existing = out[key]
            if isinstance(existing, list):
                existing.append(value)
            else:
                out[key] = [existing, value]
        else:
            out[key] = value
    return out


def load_document_tree(xml: str | bytes) -> DocumentTree:
    """Parse XML text into ``{root_tag: value}``.

    Leaf elements become stripped strings, a tag seen once becomes a scalar
    value and a repeated tag becomes a list. Attributes are ignored.
    Raises :class:`StatementParseError` (``invalid_xml``) on malformed input.
    """

    try:
        root = ET.fromstring(xml)
    except ET.ParseError as e:
        raise StatementParseError("invalid_xml", str(e)) from e
    return {_local_name(root.tag): _element_value(root)}


def as_sequence(value: Any) -> list[Any]:
    """Normalize a "one or many" tree value to a list.

    ``None`` and empty strings become ``[]``, a list is returned as a copy and
    any other value is wrapped.
    """

    if value is None or value == "":
        return []
    if isinstance(value, list):
        return list(value)
    return [value]


# ---------------------------------------------------------------------------
# Entry validation
# ---------------------------------------------------------------------------


def _text(statement: Mapping[str, Any], key: str) -> str | None:
    raw = statement.get(key)
    if raw is None or isinstance(raw, (Mapping, list)):
        return None
    s = str(raw).strip()
    return s or None


def _parse_date(raw: str) -> date | None:
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(raw, fmt).date()
        except ValueError:
            continue
    # Tolerate full timestamps ("2024-01-15T00:00:00").
    try:
        return datetime.fromisoformat(raw).date()
    except ValueError:
        return None


def _parse_entry(position: int, entry: Any) -> StatementTransaction | SkippedEntry:
    statement = entry.get(STATEMENT_TAG) if isinstance(entry, Mapping) else None
    if not isinstance(statement, Mapping) or not statement:
        return SkippedEntry(position, "missing_statement")

    subtype_raw = _text(statement, "transactionSubtype")
    try:
        subtype = TransactionSubtype(subtype_raw)
    except ValueError:
        return SkippedEntry(position, "invalid_transaction_subtype", f"Got: {subtype_raw}")

    tx_type = _text(statement, "transactionType")
    if tx_type != "cash":
        return SkippedEntry(position, "invalid_transaction_type", f"Got: {tx_type}")
    booking_type = _text(statement, "bookingType")
    if booking_type != "cash":
        return SkippedEntry(position, "invalid_booking_type", f"Got: {booking_type}")

    values: dict[str, str] = {}
    for xml_key, attr in _REQUIRED_FIELDS:
        v = _text(statement, xml_key)
        if v is None:
            return SkippedEntry(position, "missing_field", xml_key)
        values[attr] = v

    amount = to_minor_units(values["amount"])
    if amount is None or amount < 0:
        return SkippedEntry(position, "invalid_amount", f"Got: {values['amount']}")

    try:
        indicator = CreditDebitIndicator(values["credit_debit_indicator"].lower())
    except ValueError:
        return SkippedEntry(
            position,
            "invalid_credit_debit_indicator",
            f"Got: {values['credit_debit_indicator']}",
        )

    value_date = _parse_date(values["date"])
    if value_date is None:
        return SkippedEntry(position, "invalid_date", f"Got: {values['date']}")

    return StatementTransaction.build(
        id=values["id"],
        statement_type=values["statement_type"],
        date=value_date,
        account_iban=values["account_iban"],
        currency=values["currency"].upper(),
        amount=amount,
        credit_debit_indicator=indicator,
        transaction_additional_details=values["transaction_additional_details"],
        transaction_subtype=subtype,
    )


def _transaction_entries(tree: DocumentTree) -> Sequence[Any]:
    root = tree.get(ROOT_TAG) if isinstance(tree, Mapping) else None
    if not isinstance(root, Mapping) or LIST_TAG not in root:
        raise StatementParseError("missing_transaction_list", "No transaction list found")
    tx_list = root[LIST_TAG]
    if isinstance(tx_list, Mapping):
        # Child elements present but none of them is a <transaction>.
        if ENTRY_TAG not in tx_list:
            raise StatementParseError(
                "missing_transaction_list", "transactionList has no transaction entries"
            )
        return as_sequence(tx_list[ENTRY_TAG])
    if tx_list == "":
        # <transactionList/>: a valid, empty statement.
        return []
    raise StatementParseError("missing_transaction_list", "transactionList is not a container")


def iter_statement_entries(
    tree: DocumentTree,
) -> Iterator[StatementTransaction | SkippedEntry]:
    """Yield one parsed transaction or one :class:`SkippedEntry` per entry.

    Structural problems (no ``transactionList``) raise immediately, before the
    iterator is consumed; per-entry problems never raise.
    """

    entries = _transaction_entries(tree)
    return (_parse_entry(pos, entry) for pos, entry in enumerate(entries))


def parse_statement(xml: str | bytes) -> ParseReport:
    """Parse a whole statement document and collect the skipped entries."""

    transactions: list[StatementTransaction] = []
    skipped: list[SkippedEntry] = []
    for item in iter_statement_entries(load_document_tree(xml)):
        if isinstance(item, SkippedEntry):
            _logger.debug(
                "statement_xml:skip position=%d reason=%s details=%s",
                item.position,
                item.reason,
                item.details,
            )
            skipped.append(item)
        else:
            transactions.append(item)
    _logger.info(
        "statement_xml:parsed transactions=%d skipped=%d", len(transactions), len(skipped)
    )
    return ParseReport(transactions=tuple(transactions), skipped=tuple(skipped))


__all__ = [
    "as_sequence",
    "iter_statement_entries",
    "load_document_tree",
    "parse_statement",
]
