# ruff: noqa: I001
"""Write a validated budget document into ``bp_budget_lines``.

One import is one transaction on the caller's session:

1. snapshot the stored rows for (division, owner, budget year)
2. copy them into the division's archive table (created on first use)
3. delete them
4. upsert the new rows: ``KGS`` always, ``AMOUNT`` when the product group has
   a non-zero price, ``MORM`` when it has a non-zero MoRM factor

Any database error rolls the session back and surfaces as
:class:`~budget_planning.errors.MergeTransactionFailed`. Nothing is retried.
Concurrent imports for the same key range are last-writer-wins.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import Text, delete, literal, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from db.models.budget import ARCHIVED_COLUMNS, BudgetLine

from .errors import MergeTransactionFailed
from .history import budget_scope, existing_budget
from .logging_setup import get_logger
from .models import (
    BudgetRecord,
    DocumentMetadata,
    MergeResult,
    ValueKind,
    normalize_label,
    to_proper_case,
)
from .parser import ValidatedDocument
from .pricing import PricingResolver, PricingTable
from .schema import ArchiveProvisioner

_log = get_logger("budget_planning.merge")

ARCHIVE_REASON = "replaced_by_import"

# Rows per multi-VALUES upsert statement.
_UPSERT_CHUNK = 500

_CONFLICT_KEY = (
    "division",
    "owner",
    "budget_year",
    "month",
    "customer",
    "country",
    "product_group",
    "value_kind",
)


def _dialect_insert(session: Session):  # type: ignore[no-untyped-def]
    name = session.get_bind().dialect.name
    if name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif name == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise RuntimeError(f"Budget upserts are not supported on the {name!r} dialect")
    return insert


def stored_division(division: str) -> str:
    return normalize_label(division).upper()


def stored_owner(md: DocumentMetadata) -> str:
    return "" if md.document_type.is_aggregate else to_proper_case(md.owner)


def live_filename(md: DocumentMetadata, *, now: datetime) -> str:
    """Name stamped on rows written by an import without a source file name."""

    safe_div = "".join(c if c.isalnum() else "_" for c in normalize_label(md.division))
    ts = now.astimezone(UTC).strftime("%Y-%m-%dT%H-%M-%S-%fZ")
    if md.document_type.is_aggregate:
        return f"LIVE_DIVISIONAL_BUDGET_{safe_div}_{md.budget_year}_{ts}.json"
    safe_rep = "".join(c if c.isalnum() else "_" for c in normalize_label(md.owner))
    return f"LIVE_BUDGET_{safe_div}_{safe_rep}_{md.budget_year}_{ts}.json"


def _keyed_cells(
    md: DocumentMetadata, records: Iterable[BudgetRecord], warnings: list[str]
) -> dict[tuple[str, str, str, int], float]:
    """Normalized (customer, country, product_group, month) -> quantity; last record wins."""

    cells: dict[tuple[str, str, str, int], float] = {}
    duplicates = 0
    for r in records:
        if md.document_type.is_aggregate:
            customer, country, product_group = "", "", to_proper_case(r.dimensions[0])
        else:
            customer, country, product_group = (to_proper_case(d) for d in r.dimensions)
        key = (customer, country, product_group, r.month)
        if key in cells:
            duplicates += 1
        cells[key] = r.value
    if duplicates:
        msg = f"{duplicates} duplicate record(s) after name normalization; the last value was kept"
        _log.warning(msg)
        warnings.append(msg)
    return cells


def build_rows(
    md: DocumentMetadata,
    records: Iterable[BudgetRecord],
    pricing: PricingTable,
    *,
    uploaded_filename: str,
    uploaded_at: datetime,
    warnings: list[str] | None = None,
) -> list[dict[str, Any]]:
    """Rows to upsert: one ``KGS`` row per cell plus priced ``AMOUNT``/``MORM`` rows."""

    warn = warnings if warnings is not None else []
    division = stored_division(md.division)
    owner = stored_owner(md)
    rows: list[dict[str, Any]] = []

    def _row(
        customer: str, country: str, pg: str, month: int, kind: ValueKind, value: float
    ) -> dict[str, Any]:
        return {
            "division": division,
            "owner": owner,
            "budget_year": md.budget_year,
            "month": month,
            "customer": customer,
            "country": country,
            "product_group": pg,
            "value_kind": kind.value,
            "value": value,
            "uploaded_filename": uploaded_filename,
            "uploaded_at": uploaded_at,
        }

    for (customer, country, pg, month), qty in _keyed_cells(md, records, warn).items():
        rows.append(_row(customer, country, pg, month, ValueKind.KGS, qty))
        entry = pricing.lookup(pg)
        if entry.price != 0:
            rows.append(_row(customer, country, pg, month, ValueKind.AMOUNT, qty * entry.price))
        if entry.secondary_factor != 0:
            rows.append(
                _row(customer, country, pg, month, ValueKind.MORM, qty * entry.secondary_factor)
            )
    return rows


def upsert_budget_rows(session: Session, rows: list[dict[str, Any]]) -> None:
    """Insert-or-update on the natural key; re-running overwrites instead of duplicating."""

    if not rows:
        return
    insert = _dialect_insert(session)
    for start in range(0, len(rows), _UPSERT_CHUNK):
        stmt = insert(BudgetLine).values(rows[start : start + _UPSERT_CHUNK])
        stmt = stmt.on_conflict_do_update(
            index_elements=list(_CONFLICT_KEY),
            set_={
                "value": stmt.excluded.value,
                "uploaded_filename": stmt.excluded.uploaded_filename,
                "uploaded_at": stmt.excluded.uploaded_at,
            },
        )
        session.execute(stmt)


def archive_scope(
    session: Session,
    provisioner: ArchiveProvisioner,
    md: DocumentMetadata,
    *,
    reason: str,
    archived_by: str | None,
) -> int:
    """Copy the stored rows for the document's scope into the archive table."""

    archive = provisioner.ensure(session, md.division)
    owner = md.owner if not md.document_type.is_aggregate else None
    source_cols = [BudgetLine.id, *(getattr(BudgetLine, c) for c in ARCHIVED_COLUMNS)]
    sel = select(
        *source_cols,
        literal(reason, Text).label("archive_reason"),
        literal(archived_by, Text).label("archived_by_filename"),
    ).where(*budget_scope(md.division, owner, md.budget_year))
    target_cols = ["source_id", *ARCHIVED_COLUMNS, "archive_reason", "archived_by_filename"]
    result = session.execute(archive.insert().from_select(target_cols, sel))
    return int(result.rowcount or 0)


def merge_document(
    session: Session,
    doc: ValidatedDocument,
    *,
    provisioner: ArchiveProvisioner,
    pricing: PricingResolver | None = None,
    uploaded_filename: str | None = None,
    now: datetime | None = None,
) -> MergeResult:
    """Archive, delete and upsert inside the session's transaction.

    The caller commits (normally via ``db.client.session_scope``). On any
    database error the session is rolled back here before
    :class:`MergeTransactionFailed` is raised.
    """

    md = doc.metadata
    ts = now or datetime.now(UTC)
    filename = uploaded_filename or live_filename(md, now=ts)
    owner = md.owner if not md.document_type.is_aggregate else None
    pricing_year = md.budget_year - 1
    resolver = pricing or PricingResolver(session)

    result = MergeResult(
        division=md.division,
        owner=owner,
        budget_year=md.budget_year,
        uploaded_filename=filename,
        skipped=doc.issues,
        warnings=list(doc.warnings),
        owner_rerouted=doc.owner_rerouted,
        pricing_year=pricing_year,
    )

    try:
        snapshot = existing_budget(
            session, division=md.division, owner=owner, budget_year=md.budget_year
        )
        result.existing_count = snapshot.count
        result.existing_last_upload = snapshot.last_upload
        result.existing_last_filename = snapshot.last_filename

        if snapshot.count:
            result.archived = archive_scope(
                session, provisioner, md, reason=ARCHIVE_REASON, archived_by=filename
            )
            deleted = session.execute(
                delete(BudgetLine).where(*budget_scope(md.division, owner, md.budget_year))
            )
            result.deleted = int(deleted.rowcount or 0)

        table = resolver.load_table(md.division, pricing_year)
        result.pricing_entries = len(table)
        missing = table.missing(r.product_group for r in doc.records)
        if missing:
            msg = (
                f"No {pricing_year} pricing for {len(missing)} product group(s): "
                + ", ".join(sorted(missing))
                + "; AMOUNT and MORM rows were not written for them"
            )
            _log.warning(msg)
            result.warnings.append(msg)

        rows = build_rows(
            md,
            doc.records,
            table,
            uploaded_filename=filename,
            uploaded_at=ts,
            warnings=result.warnings,
        )
        upsert_budget_rows(session, rows)
        session.flush()
    except SQLAlchemyError as e:
        session.rollback()
        provisioner.invalidate(md.division)
        _log.error(
            "Budget merge for %s/%s/%s rolled back: %s",
            md.division,
            owner or "-",
            md.budget_year,
            e,
        )
        raise MergeTransactionFailed(
            f"Budget import failed and was rolled back: {e}",
            details={"division": md.division, "owner": owner, "budget_year": md.budget_year},
        ) from e

    for row in rows:
        kind = ValueKind(row["value_kind"])
        result.inserted[kind] += 1
        result.totals[kind] += row["value"]

    _log.info(
        "Merged budget %s/%s/%s: archived=%d deleted=%d inserted=%s",
        md.division,
        owner or "-",
        md.budget_year,
        result.archived,
        result.deleted,
        {k.value: v for k, v in result.inserted.items()},
    )
    return result


__all__ = [
    "ARCHIVE_REASON",
    "archive_scope",
    "build_rows",
    "live_filename",
    "merge_document",
    "stored_division",
    "stored_owner",
    "upsert_budget_rows",
]
