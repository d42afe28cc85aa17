"""Shared SQLAlchemy models registry for the workspace database.

Currently includes the budget planning models used by ``budget_planning``.
"""

from .budget import (
    ActualLine,
    Base,
    BudgetLine,
    PricingRounding,
    budget_archive_table,
)

__all__ = [
    "ActualLine",
    "Base",
    "BudgetLine",
    "PricingRounding",
    "budget_archive_table",
]
