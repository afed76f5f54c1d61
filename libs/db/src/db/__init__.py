"""db: shared database library (SQLAlchemy asyncio).

Public exports
--------------
- ``Base`` and ``metadata`` for schema creation
- ORM models in ``db.models.finance`` (re-exported for convenience)
- Engine/session helpers in ``db.client``
"""

from __future__ import annotations

from .models.finance import Base, Subscription, Transaction

# Re-export SQLAlchemy metadata for schema bootstrap helpers
metadata = Base.metadata

__all__ = [
    "Base",
    "metadata",
    "Subscription",
    "Transaction",
]
