"""Estimate calculation and persistence over ``bp_actual_lines``.

``calculate_estimate`` is read-only: flat averages per value kind over the
base months. ``save_estimates`` replaces the ``ESTIMATE`` rows for the chosen
months with an allocation of each month's estimate across the dimension
combinations seen in the base months, in proportion to their share.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from sqlalchemy import delete, func, insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from db.models.budget import ActualLine

from .allocation import allocate, build_basis, estimate, select_base_months
from .errors import MergeTransactionFailed
from .history import actual_months, estimate_rows, monthly_totals
from .logging_setup import get_logger
from .merge import stored_division
from .models import EstimateResult, ValueKind

_log = get_logger("budget_planning.estimates")


@dataclass(frozen=True, slots=True)
class SavedEstimates:
    division: str
    year: int
    months: tuple[int, ...]
    base_months: tuple[int, ...]
    deleted: int
    inserted: int
    combinations: int


def calculate_estimate(
    session: Session, *, division: str, year: int, target_months: Iterable[int]
) -> EstimateResult:
    totals, counts = monthly_totals(session, division=division, year=year)
    result = estimate(totals, target_months, year=year, monthly_record_counts=counts)
    _log.info(
        "Estimate for %s/%s months=%s from base=%s: %s",
        division,
        year,
        list(result.target_months),
        list(result.base_months),
        {k.value: v for k, v in result.averages.items()},
    )
    return result


def save_estimates(
    session: Session,
    *,
    division: str,
    year: int,
    estimates: Mapping[int, Mapping[ValueKind | str, float]],
    approved_by: str | None = None,
) -> SavedEstimates:
    """Replace ``ESTIMATE`` rows for ``estimates``' months inside the caller's transaction.

    ``estimates`` maps month -> value kind -> monthly total. Kinds missing for
    a month are written as zero.
    """

    months = tuple(sorted(estimates))
    if not months:
        raise ValueError("No estimate months given")

    try:
        base = select_base_months(
            actual_months(session, division=division, year=year), months
        )
        history = estimate_rows(session, division=division, year=year, months=list(base))
        basis = build_basis(history, exclude_months=months)

        deleted = session.execute(
            delete(ActualLine).where(
                func.upper(ActualLine.division) == stored_division(division),
                ActualLine.year == year,
                ActualLine.line_type == "ESTIMATE",
                ActualLine.month.in_(months),
            )
        )

        rows: list[dict[str, object]] = []
        for month in months:
            per_kind = {ValueKind(k): float(v) for k, v in estimates[month].items()}
            for kind in basis.shares:
                allocated = allocate(per_kind.get(kind, 0.0), basis, kind)
                for (rep, customer, country, pg), value in allocated.items():
                    rows.append(
                        {
                            "division": stored_division(division),
                            "year": year,
                            "month": month,
                            "line_type": "ESTIMATE",
                            "sales_rep": rep,
                            "customer": customer,
                            "country": country,
                            "product_group": pg,
                            "value_kind": kind.value,
                            "value": value,
                            "uploaded_by": approved_by,
                        }
                    )
        if rows:
            session.execute(insert(ActualLine), rows)
        session.flush()
    except SQLAlchemyError as e:
        session.rollback()
        raise MergeTransactionFailed(
            f"Saving estimates failed and was rolled back: {e}",
            details={"division": division, "year": year, "months": list(months)},
        ) from e

    combos = len({dims for shares in basis.shares.values() for dims in shares})
    saved = SavedEstimates(
        division=division,
        year=year,
        months=months,
        base_months=base,
        deleted=int(deleted.rowcount or 0),
        inserted=len(rows),
        combinations=combos,
    )
    _log.info(
        "Saved estimates for %s/%s months=%s: deleted=%d inserted=%d",
        division,
        year,
        list(months),
        saved.deleted,
        saved.inserted,
    )
    return saved


__all__ = ["SavedEstimates", "calculate_estimate", "save_estimates"]
