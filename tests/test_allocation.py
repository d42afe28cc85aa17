from __future__ import annotations

import pytest

from budget_planning.allocation import (
    allocate,
    allocate_months,
    allocation_records,
    build_basis,
    estimate,
    select_base_months,
)
from budget_planning.errors import NoBasisAvailable
from budget_planning.models import ActualRow, ValueKind


def _row(dims: tuple[str, ...], month: int, value: float, kind: ValueKind = ValueKind.KGS):
    return ActualRow(dimensions=dims, month=month, value_kind=kind, value=value)


A = ("Masafi", "UAE", "Shrink Film")
B = ("Al Ain", "Oman", "Shrink Film")
C = ("Agthia", "UAE", "Labels")


# ---- Estimate mode -------------------------------------------------------------


def test_estimate_is_flat_average_of_base_months() -> None:
    totals = {
        1: {ValueKind.KGS: 100.0, ValueKind.AMOUNT: 1000.0},
        2: {ValueKind.KGS: 200.0, ValueKind.AMOUNT: 2000.0},
        3: {ValueKind.KGS: 300.0, ValueKind.AMOUNT: 3000.0},
    }
    result = estimate(totals, [4, 5], year=2025, monthly_record_counts={1: 4, 2: 6, 3: 8})

    assert result.base_months == (1, 2, 3)
    assert result.target_months == (4, 5)
    assert result.averages == {ValueKind.KGS: 200, ValueKind.AMOUNT: 2000}
    assert result.record_count == 6
    assert result.per_month() == {
        4: {ValueKind.KGS: 200, ValueKind.AMOUNT: 2000},
        5: {ValueKind.KGS: 200, ValueKind.AMOUNT: 2000},
    }


def test_estimate_excludes_target_months_from_base() -> None:
    totals = {1: {ValueKind.KGS: 100.0}, 2: {ValueKind.KGS: 500.0}, 3: {ValueKind.KGS: 300.0}}
    result = estimate(totals, [2], year=2025)

    assert result.base_months == (1, 3)
    assert result.averages[ValueKind.KGS] == 200


def test_estimate_rounds_half_up() -> None:
    totals = {1: {ValueKind.KGS: 1.0}, 2: {ValueKind.KGS: 2.0}}
    assert estimate(totals, [3], year=2025).averages[ValueKind.KGS] == 2


def test_estimate_without_base_months_raises() -> None:
    totals = {1: {ValueKind.KGS: 100.0}, 2: {ValueKind.KGS: 200.0}}
    with pytest.raises(NoBasisAvailable):
        estimate(totals, [1, 2], year=2025)


def test_select_base_months_rejects_bad_month() -> None:
    with pytest.raises(ValueError):
        select_base_months([1, 2], [13])


# ---- Allocation mode -----------------------------------------------------------


def test_allocation_follows_historical_share() -> None:
    basis = build_basis([_row(A, 1, 600.0), _row(B, 1, 400.0)])
    allocated = allocate(12000.0, basis)

    assert allocated[A] == pytest.approx(7200.0)
    assert allocated[B] == pytest.approx(4800.0)
    assert sum(allocated.values()) == pytest.approx(12000.0)


def test_allocation_sums_shares_across_base_months() -> None:
    history = [_row(A, 1, 100.0), _row(A, 2, 200.0), _row(B, 2, 700.0)]
    basis = build_basis(history)

    assert basis.base_months == (1, 2)
    assert basis.totals[ValueKind.KGS] == pytest.approx(1000.0)
    assert basis.shares[ValueKind.KGS][A] == pytest.approx(0.3)


def test_allocation_keeps_zero_share_combinations() -> None:
    basis = build_basis([_row(A, 1, 500.0), _row(C, 1, 0.0)])
    allocated = allocate(1000.0, basis)

    assert allocated == {A: pytest.approx(1000.0), C: 0.0}


def test_allocation_records_drop_zero_values() -> None:
    basis = build_basis([_row(A, 1, 500.0), _row(C, 1, 0.0)])
    records = allocation_records({1: 1000.0, 2: 50.0}, basis)

    assert [(r.dimensions, r.month) for r in records] == [(A, 1), (A, 2)]
    assert records[1].value == pytest.approx(50.0)


def test_allocation_is_per_value_kind() -> None:
    history = [
        _row(A, 1, 100.0),
        _row(B, 1, 100.0),
        _row(A, 1, 900.0, ValueKind.AMOUNT),
        _row(B, 1, 100.0, ValueKind.AMOUNT),
    ]
    basis = build_basis(history)

    assert allocate(10.0, basis, ValueKind.KGS)[A] == pytest.approx(5.0)
    assert allocate(10.0, basis, ValueKind.AMOUNT)[A] == pytest.approx(9.0)
    with pytest.raises(NoBasisAvailable):
        allocate(10.0, basis, ValueKind.MORM)


def test_allocate_months_maps_each_target() -> None:
    basis = build_basis([_row(A, 1, 1.0), _row(B, 1, 3.0)])
    out = allocate_months({2: 40.0, 1: 8.0}, basis)

    assert list(out) == [1, 2]
    assert out[2][B] == pytest.approx(30.0)


def test_empty_history_has_no_basis() -> None:
    with pytest.raises(NoBasisAvailable):
        build_basis([])
