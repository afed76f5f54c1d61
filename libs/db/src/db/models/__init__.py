"""Shared SQLAlchemy models registry for the workspace database.

Currently includes the ledger models used by ``statement_pipeline``.
"""

from .finance import Base, Subscription, Transaction

__all__ = [
    "Base",
    "Subscription",
    "Transaction",
]
