"""Read-side queries over actuals and stored budgets.

Division and owner filters compare upper-cased values, matching how rows are
written by bulk loaders that do not normalize case.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import ColumnElement, func, select
from sqlalchemy.orm import Session

from db.models.budget import ActualLine, BudgetLine

from .models import ActualRow, BudgetRecord, DocumentType, ValueKind, normalize_label


@dataclass(frozen=True, slots=True)
class BudgetSnapshot:
    """What is stored for a (division, owner, budget year) before an import."""

    count: int
    last_upload: datetime | None
    last_filename: str | None


def _division_filter(column: Any, division: str) -> ColumnElement[bool]:
    return func.upper(column) == normalize_label(division).upper()


def _owner_value(owner: str | None) -> str:
    return normalize_label(owner).upper()


# ---------------------------------------------------------------------------
# Actuals
# ---------------------------------------------------------------------------


def actual_months(
    session: Session, *, division: str, year: int, line_type: str = "ACTUAL"
) -> list[int]:
    stmt = (
        select(ActualLine.month)
        .where(
            _division_filter(ActualLine.division, division),
            ActualLine.year == year,
            ActualLine.line_type == line_type,
        )
        .distinct()
        .order_by(ActualLine.month)
    )
    return [int(m) for m in session.execute(stmt).scalars()]


def monthly_totals(
    session: Session, *, division: str, year: int, line_type: str = "ACTUAL"
) -> tuple[dict[int, dict[ValueKind, float]], dict[int, int]]:
    """Per month: total per value kind, and the number of ``AMOUNT`` rows."""

    stmt = (
        select(
            ActualLine.month,
            ActualLine.value_kind,
            func.sum(ActualLine.value),
            func.count(),
        )
        .where(
            _division_filter(ActualLine.division, division),
            ActualLine.year == year,
            ActualLine.line_type == line_type,
        )
        .group_by(ActualLine.month, ActualLine.value_kind)
    )
    totals: dict[int, dict[ValueKind, float]] = {}
    counts: dict[int, int] = {}
    for month, kind, total, n in session.execute(stmt):
        totals.setdefault(int(month), {})[ValueKind(kind)] = float(total or 0.0)
        if kind == ValueKind.AMOUNT:
            counts[int(month)] = int(n)
    return totals, counts


def load_actuals(
    session: Session,
    *,
    division: str,
    year: int,
    document_type: DocumentType,
    owner: str | None = None,
    line_type: str = "ACTUAL",
) -> list[ActualRow]:
    """Actuals shaped like the document's dimensions, summed per combination and month.

    Sales rep documents get ``(customer, country, product_group)`` rows for
    ``owner``; divisional documents get ``(product_group,)`` across all reps.
    """

    if document_type.is_aggregate:
        dims = (ActualLine.product_group,)
    else:
        dims = (ActualLine.customer, ActualLine.country, ActualLine.product_group)

    conditions = [
        _division_filter(ActualLine.division, division),
        ActualLine.year == year,
        ActualLine.line_type == line_type,
    ]
    if not document_type.is_aggregate:
        if not owner:
            raise ValueError("owner is required for sales rep actuals")
        conditions.append(func.upper(ActualLine.sales_rep) == _owner_value(owner))

    stmt = (
        select(*dims, ActualLine.month, ActualLine.value_kind, func.sum(ActualLine.value))
        .where(*conditions)
        .group_by(*dims, ActualLine.month, ActualLine.value_kind)
        .order_by(*dims, ActualLine.month)
    )
    out: list[ActualRow] = []
    n = len(dims)
    for row in session.execute(stmt):
        labels = tuple(str(v) for v in row[:n])
        month, kind, total = row[n], row[n + 1], row[n + 2]
        out.append(
            ActualRow(
                dimensions=labels,
                month=int(month),
                value_kind=ValueKind(kind),
                value=float(total or 0.0),
            )
        )
    return out


def estimate_rows(
    session: Session, *, division: str, year: int, months: list[int] | None = None
) -> list[ActualRow]:
    """Actuals keyed by ``(sales_rep, customer, country, product_group)``."""

    dims = (ActualLine.sales_rep, ActualLine.customer, ActualLine.country, ActualLine.product_group)
    conditions = [
        _division_filter(ActualLine.division, division),
        ActualLine.year == year,
        ActualLine.line_type == "ACTUAL",
    ]
    if months is not None:
        conditions.append(ActualLine.month.in_(months))
    stmt = (
        select(*dims, ActualLine.month, ActualLine.value_kind, func.sum(ActualLine.value))
        .where(*conditions)
        .group_by(*dims, ActualLine.month, ActualLine.value_kind)
        .order_by(*dims, ActualLine.month)
    )
    return [
        ActualRow(
            dimensions=(str(rep), str(cust), str(country), str(pg)),
            month=int(month),
            value_kind=ValueKind(kind),
            value=float(total or 0.0),
        )
        for rep, cust, country, pg, month, kind, total in session.execute(stmt)
    ]


# ---------------------------------------------------------------------------
# Stored budgets
# ---------------------------------------------------------------------------


def budget_scope(division: str, owner: str | None, budget_year: int) -> list[ColumnElement[bool]]:
    """Row filter for one (division, owner, budget year); owner ``None`` is divisional."""

    return [
        _division_filter(BudgetLine.division, division),
        func.upper(BudgetLine.owner) == _owner_value(owner),
        BudgetLine.budget_year == budget_year,
    ]


def existing_budget(
    session: Session, *, division: str, owner: str | None, budget_year: int
) -> BudgetSnapshot:
    stmt = select(
        func.count(),
        func.max(BudgetLine.uploaded_at),
        func.max(BudgetLine.uploaded_filename),
    ).where(*budget_scope(division, owner, budget_year))
    count, last_upload, last_filename = session.execute(stmt).one()
    return BudgetSnapshot(
        count=int(count or 0), last_upload=last_upload, last_filename=last_filename
    )


def load_budget_records(
    session: Session,
    *,
    division: str,
    owner: str | None,
    budget_year: int,
    document_type: DocumentType,
) -> list[BudgetRecord]:
    """Stored ``KGS`` rows as budget records, for re-exporting an uploaded budget."""

    stmt = (
        select(BudgetLine)
        .where(
            *budget_scope(division, owner, budget_year),
            BudgetLine.value_kind == ValueKind.KGS.value,
            BudgetLine.value > 0,
        )
        .order_by(
            BudgetLine.customer, BudgetLine.country, BudgetLine.product_group, BudgetLine.month
        )
    )
    out: list[BudgetRecord] = []
    for line in session.execute(stmt).scalars():
        if document_type.is_aggregate:
            dims: tuple[str, ...] = (line.product_group,)
        else:
            dims = (line.customer, line.country, line.product_group)
        out.append(BudgetRecord(dimensions=dims, month=line.month, value=float(line.value)))
    return out


__all__ = [
    "BudgetSnapshot",
    "actual_months",
    "budget_scope",
    "estimate_rows",
    "existing_budget",
    "load_actuals",
    "load_budget_records",
    "monthly_totals",
]
