"""db: shared database library (SQLAlchemy/Alembic).

Public exports
--------------
- ``Base`` and ``metadata`` for Alembic autogenerate/targeting
- ORM models in ``db.models.budget`` (re-exported for convenience)
- Engine/session helpers in ``db.client``
"""

from __future__ import annotations

from .models.budget import ActualLine, Base, BudgetLine, PricingRounding

# Re-export SQLAlchemy metadata for Alembic's env.py. Per-division archive
# tables live in ``db.models.budget.archive_metadata`` and are intentionally
# not part of it.
metadata = Base.metadata

__all__ = [
    "Base",
    "metadata",
    "ActualLine",
    "BudgetLine",
    "PricingRounding",
]
