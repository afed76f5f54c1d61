from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import (
    CHAR,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# Closed value sets mirrored by CHECK constraints below. The application-level
# enums in ``statement_pipeline.categories`` must stay in sync with these.
BILLING_CYCLES: tuple[str, ...] = ("weekly", "monthly", "yearly")
TRANSACTION_SUBTYPES: tuple[str, ...] = ("inflowOutflowDigital", "inflowOutflowPhysical")
CREDIT_DEBIT_INDICATORS: tuple[str, ...] = ("debit", "credit")
CATEGORY_CODES: tuple[str, ...] = (
    "income",
    "transfer",
    "housing",
    "food",
    "utilities",
    "transport",
    "healthcare",
    "dining",
    "shopping",
    "entertainment",
    "personal_care",
    "other",
)


def _in_list(column: str, values: tuple[str, ...]) -> str:
    quoted = ",".join(f"'{v}'" for v in values)
    return f"{column} in ({quoted})"


class Base(DeclarativeBase):
    pass


# ---------------------------
# Ledger: subscriptions
# ---------------------------


class Subscription(Base):
    __tablename__ = "subscriptions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    # Minor currency units (cents).
    price: Mapped[int] = mapped_column(Integer, nullable=False)
    billing_cycle: Mapped[str] = mapped_column(String, nullable=False)
    subscribed_at: Mapped[date] = mapped_column(Date, nullable=False)
    domain: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.current_timestamp()
    )

    __table_args__ = (
        CheckConstraint("price > 0", name="ck_subscriptions_price_positive"),
        CheckConstraint(
            _in_list("billing_cycle", BILLING_CYCLES), name="ck_subscriptions_billing_cycle"
        ),
    )


# ---------------------------
# Core: transactions
# ---------------------------


class Transaction(Base):
    __tablename__ = "transactions"

    # Native statement identifier; doubles as the dedup key on re-import.
    id: Mapped[str] = mapped_column(String, primary_key=True)
    statement_type: Mapped[str] = mapped_column(String, nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    account_iban: Mapped[str] = mapped_column(String, nullable=False)
    currency: Mapped[str] = mapped_column(CHAR(3), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    credit_debit_indicator: Mapped[str] = mapped_column(String, nullable=False)
    signed_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    # Raw bank description. Never rewritten after import; display_name carries
    # the cleaned-up label instead.
    transaction_additional_details: Mapped[str] = mapped_column(Text, nullable=False)
    transaction_subtype: Mapped[str] = mapped_column(String, nullable=False)
    category: Mapped[str | None] = mapped_column(String, nullable=True)
    display_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    domain: Mapped[str | None] = mapped_column(String, nullable=True)
    subscription_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("subscriptions.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.current_timestamp()
    )

    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_transactions_amount_non_negative"),
        CheckConstraint(
            _in_list("credit_debit_indicator", CREDIT_DEBIT_INDICATORS),
            name="ck_transactions_credit_debit_indicator",
        ),
        CheckConstraint(
            (
                "(credit_debit_indicator = 'credit' AND signed_amount = amount) OR "
                "(credit_debit_indicator = 'debit' AND signed_amount = -amount)"
            ),
            name="ck_transactions_signed_amount",
        ),
        CheckConstraint(
            _in_list("transaction_subtype", TRANSACTION_SUBTYPES),
            name="ck_transactions_subtype",
        ),
        CheckConstraint(
            "category IS NULL OR " + _in_list("category", CATEGORY_CODES),
            name="ck_transactions_category",
        ),
    )


__all__ = [
    "BILLING_CYCLES",
    "CATEGORY_CODES",
    "CREDIT_DEBIT_INDICATORS",
    "TRANSACTION_SUBTYPES",
    "Base",
    "Subscription",
    "Transaction",
]
