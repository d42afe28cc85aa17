"""Human-editable HTML view of a budget document.

The rendering is for people only: one table row per dimension combination
with twelve month inputs, display totals derived from pricing, and the prior
year's actuals as read-only reference rows. Nothing here is read back on
import; the machine payload is a separate JSON block (see ``encoder``).
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from html import escape

from .models import (
    ActualRow,
    BudgetRecord,
    Dimensions,
    DocumentMetadata,
    Lifecycle,
    ValueKind,
)
from .pricing import PricingTable

MONTHS: tuple[str, ...] = (
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
)

_HEADINGS = {
    "customer": "Customer",
    "country": "Country",
    "product_group": "Product Group",
}

_STYLES = """
body { font-family: Arial, sans-serif; font-size: 12px; margin: 16px; }
table.budget { border-collapse: collapse; width: 100%; }
table.budget th, table.budget td { border: 1px solid #d9d9d9; padding: 2px 4px; }
table.budget th { background: #fafafa; }
tr.actual-row td { background: #e6f4ff; color: #555; }
tr.budget-row input { width: 72px; text-align: right; }
td.num { text-align: right; }
tfoot td { font-weight: bold; background: #f6ffed; }
.draft-banner { background: #fffbe6; border: 1px solid #ffe58f; padding: 4px 8px; }
"""


def format_value(value: float) -> str:
    """Shortest exact text for a quantity (``1200.0`` -> ``"1200"``)."""

    text = repr(float(value))
    return text[:-2] if text.endswith(".0") else text


def _fmt_total(value: float) -> str:
    return f"{value:,.2f}"


def _combinations(
    records: Sequence[BudgetRecord], actuals: Sequence[ActualRow]
) -> list[Dimensions]:
    seen: dict[Dimensions, None] = {}
    for r in records:
        seen.setdefault(r.dimensions, None)
    for a in actuals:
        seen.setdefault(a.dimensions, None)
    return list(seen)


def _header_block(md: DocumentMetadata) -> str:
    owner = escape(md.owner) if md.owner else "All sales reps"
    parts = [
        '<div class="header">',
        f"<h1>Budget Planning - {escape(md.division.upper())}</h1>",
        f"<div><strong>Division:</strong> {escape(md.division)}</div>",
        f"<div><strong>Owner:</strong> {owner}</div>",
        f"<div><strong>Actual Year:</strong> {md.actual_year}</div>",
        f"<div><strong>Budget Year:</strong> {md.budget_year}</div>",
    ]
    if md.lifecycle is Lifecycle.DRAFT:
        parts.append(
            '<div class="draft-banner">Draft: save as final before uploading.</div>'
        )
    parts.append("</div>")
    return "\n".join(parts)


def render_table(
    md: DocumentMetadata,
    records: Sequence[BudgetRecord],
    *,
    pricing: PricingTable,
    actuals: Iterable[ActualRow] = (),
) -> str:
    dim_names = md.document_type.dimension_names
    kgs_actuals = [a for a in actuals if a.value_kind == ValueKind.KGS]

    cells: dict[tuple[Dimensions, int], float] = {}
    for r in records:
        cells[(r.dimensions, r.month)] = cells.get((r.dimensions, r.month), 0.0) + r.value
    actual_cells: dict[tuple[Dimensions, int], float] = {}
    for a in kgs_actuals:
        key = (a.dimensions, a.month)
        actual_cells[key] = actual_cells.get(key, 0.0) + a.value

    head = "".join(f"<th>{_HEADINGS.get(n, n)}</th>" for n in dim_names)
    head += "".join(f"<th>{m}</th>" for m in MONTHS)
    head += "<th>Total</th><th>Amount</th><th>MoRM</th>"

    body: list[str] = []
    month_totals = [0.0] * 12
    grand_qty = grand_amount = grand_morm = 0.0
    for dims in _combinations(records, kgs_actuals):
        label_cells = "".join(f"<td>{escape(d)}</td>" for d in dims)
        dims_attr = escape("|".join(dims), quote=True)

        if kgs_actuals:
            act = [actual_cells.get((dims, m), 0.0) for m in range(1, 13)]
            body.append(
                f'<tr class="actual-row" data-dims="{dims_attr}">{label_cells}'
                + "".join(f'<td class="num">{format_value(v) if v else ""}</td>' for v in act)
                + f'<td class="num">{_fmt_total(sum(act))}</td><td></td><td></td></tr>'
            )

        entry = pricing.lookup(dims[-1])
        qty = [cells.get((dims, m), 0.0) for m in range(1, 13)]
        row_qty = sum(qty)
        amount = row_qty * entry.price
        morm = row_qty * entry.secondary_factor
        for i, v in enumerate(qty):
            month_totals[i] += v
        grand_qty += row_qty
        grand_amount += amount
        grand_morm += morm

        inputs = "".join(
            f'<td><input type="number" min="0" step="any" data-dims="{dims_attr}" '
            f'data-month="{m}" value="{format_value(v) if v else ""}"></td>'
            for m, v in zip(range(1, 13), qty, strict=True)
        )
        body.append(
            f'<tr class="budget-row" data-dims="{dims_attr}">{label_cells}{inputs}'
            f'<td class="num">{_fmt_total(row_qty)}</td>'
            f'<td class="num">{_fmt_total(amount)}</td>'
            f'<td class="num">{_fmt_total(morm)}</td></tr>'
        )

    foot = (
        f'<tr><td colspan="{len(dim_names)}">Total</td>'
        + "".join(f'<td class="num">{_fmt_total(v)}</td>' for v in month_totals)
        + f'<td class="num">{_fmt_total(grand_qty)}</td>'
        + f'<td class="num">{_fmt_total(grand_amount)}</td>'
        + f'<td class="num">{_fmt_total(grand_morm)}</td></tr>'
    )

    return "\n".join(
        [
            '<table class="budget">',
            f"<thead><tr>{head}</tr></thead>",
            "<tbody>",
            *body,
            "</tbody>",
            f"<tfoot>{foot}</tfoot>",
            "</table>",
        ]
    )


def render_page(
    md: DocumentMetadata,
    records: Sequence[BudgetRecord],
    *,
    pricing: PricingTable,
    actuals: Iterable[ActualRow] = (),
    script_blocks: Sequence[str] = (),
) -> str:
    """Full ``<html>`` element (everything after the signature line)."""

    owner = md.owner or "Divisional"
    title = f"Budget Planning - {md.division.upper()} - {owner} - {md.budget_year}"
    return "\n".join(
        [
            "<!DOCTYPE html>",
            '<html lang="en">',
            "<head>",
            '<meta charset="UTF-8">',
            f"<title>{escape(title)}</title>",
            f"<style>{_STYLES}</style>",
            "</head>",
            "<body>",
            _header_block(md),
            render_table(md, records, pricing=pricing, actuals=actuals),
            *script_blocks,
            "</body>",
            "</html>",
            "",
        ]
    )


__all__ = ["MONTHS", "format_value", "render_page", "render_table"]
