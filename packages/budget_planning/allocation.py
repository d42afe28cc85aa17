"""Estimate and allocation math over historical actuals.

Two modes, both pure (no I/O):

- *Estimate*: average the base-month totals per value kind and give every
  target month that same flat average. Base months are the months with data
  minus the months being estimated.
- *Allocation*: distribute an aggregate total across the dimension
  combinations seen in the base months, in proportion to each combination's
  share of the base total. Zero-share combinations are kept with ``0.0``.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from decimal import ROUND_HALF_UP, Decimal

from .errors import NoBasisAvailable
from .models import (
    ActualRow,
    AllocationBasis,
    BudgetRecord,
    Dimensions,
    EstimateResult,
    ValueKind,
)


def _round_half_up(x: float) -> int:
    return int(Decimal(str(x)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _validate_months(months: Iterable[int], what: str) -> tuple[int, ...]:
    out = tuple(sorted(set(months)))
    for m in out:
        if isinstance(m, bool) or not isinstance(m, int) or not 1 <= m <= 12:
            raise ValueError(f"{what} must be months within 1..12, got {m!r}")
    return out


def select_base_months(
    history_months: Iterable[int], target_months: Iterable[int]
) -> tuple[int, ...]:
    """Months with history that are not being estimated, ascending.

    Raises :class:`NoBasisAvailable` when nothing is left.
    """

    targets = set(_validate_months(target_months, "target months"))
    base = tuple(m for m in _validate_months(history_months, "history months") if m not in targets)
    if not base:
        raise NoBasisAvailable(
            "No base months available: every month with data is selected for estimation",
            details={"target_months": sorted(targets)},
        )
    return base


# ---------------------------------------------------------------------------
# Estimate mode
# ---------------------------------------------------------------------------


def estimate(
    monthly_totals: Mapping[int, Mapping[ValueKind, float]],
    target_months: Iterable[int],
    *,
    year: int,
    monthly_record_counts: Mapping[int, int] | None = None,
) -> EstimateResult:
    """Flat average per value kind over the base months.

    ``monthly_totals`` maps month -> value kind -> total for that month.
    Averages are rounded half-up to whole numbers.
    """

    targets = _validate_months(target_months, "target months")
    if not targets:
        raise ValueError("At least one target month is required")
    months_with_data = [m for m, totals in monthly_totals.items() if totals]
    base = select_base_months(months_with_data, targets)

    sums: dict[ValueKind, float] = {}
    for m in base:
        for kind, value in monthly_totals[m].items():
            k = ValueKind(kind)
            sums[k] = sums.get(k, 0.0) + float(value)

    averages = {k: _round_half_up(total / len(base)) for k, total in sums.items()}

    count_total = 0
    if monthly_record_counts:
        count_total = sum(monthly_record_counts.get(m, 0) for m in base)
    record_count = _round_half_up(count_total / len(base))

    return EstimateResult(
        year=year,
        base_months=base,
        target_months=targets,
        averages=averages,
        record_count=record_count,
    )


# ---------------------------------------------------------------------------
# Allocation mode
# ---------------------------------------------------------------------------


def build_basis(
    history: Iterable[ActualRow], *, exclude_months: Iterable[int] = ()
) -> AllocationBasis:
    """Compute each combination's share of the base-month total per value kind."""

    rows = list(history)
    if not rows:
        raise NoBasisAvailable("No historical records to derive allocation shares from")
    base = select_base_months({r.month for r in rows}, exclude_months)
    base_set = set(base)

    combo_totals: dict[ValueKind, dict[Dimensions, float]] = {}
    for r in rows:
        if r.month not in base_set:
            continue
        per_kind = combo_totals.setdefault(ValueKind(r.value_kind), {})
        per_kind[r.dimensions] = per_kind.get(r.dimensions, 0.0) + float(r.value)

    shares: dict[ValueKind, dict[Dimensions, float]] = {}
    totals: dict[ValueKind, float] = {}
    for kind, per_combo in combo_totals.items():
        grand = sum(per_combo.values())
        totals[kind] = grand
        shares[kind] = {
            dims: (value / grand if grand != 0 else 0.0) for dims, value in per_combo.items()
        }

    return AllocationBasis(base_months=base, shares=shares, totals=totals)


def allocate(
    total: float, basis: AllocationBasis, value_kind: ValueKind = ValueKind.KGS
) -> dict[Dimensions, float]:
    """Split ``total`` across every combination of ``value_kind`` by share."""

    shares = basis.shares.get(ValueKind(value_kind))
    if not shares:
        raise NoBasisAvailable(
            f"No historical {value_kind} records to derive allocation shares from",
            details={"value_kind": str(value_kind)},
        )
    return {dims: total * share for dims, share in shares.items()}


def allocate_months(
    monthly_targets: Mapping[int, float],
    basis: AllocationBasis,
    value_kind: ValueKind = ValueKind.KGS,
) -> dict[int, dict[Dimensions, float]]:
    months = _validate_months(monthly_targets.keys(), "target months")
    return {m: allocate(float(monthly_targets[m]), basis, value_kind) for m in months}


def allocation_records(
    monthly_targets: Mapping[int, float],
    basis: AllocationBasis,
    value_kind: ValueKind = ValueKind.KGS,
) -> list[BudgetRecord]:
    """Allocations as budget records; zero allocations are not representable and are left out."""

    out: list[BudgetRecord] = []
    for month, per_combo in allocate_months(monthly_targets, basis, value_kind).items():
        for dims, value in per_combo.items():
            if value > 0:
                out.append(BudgetRecord(dimensions=dims, month=month, value=value))
    return out


__all__ = [
    "allocate",
    "allocate_months",
    "allocation_records",
    "build_basis",
    "estimate",
    "select_base_months",
]
