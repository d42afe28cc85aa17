"""Public orchestration for producing, finalizing and importing budget documents.

These functions glue the pure protocol pieces (allocation, encoder, parser)
to the database (history, pricing, merge). Database work is scoped with
``db.client.session_scope`` where this module opens the session itself; the
connection is returned on every exit path.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import UTC, date, datetime
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from db.client import session_scope

from .allocation import allocation_records, build_basis
from .config import ProtocolSettings, load_settings
from .encoder import encode, reencode
from .errors import MalformedPayload, MergeTransactionFailed
from .estimates import SavedEstimates, calculate_estimate, save_estimates
from .history import load_actuals, load_budget_records
from .logging_setup import get_logger
from .merge import merge_document
from .models import (
    ActualRow,
    BudgetRecord,
    DocumentMetadata,
    DocumentType,
    EncodedDocument,
    Lifecycle,
    MergeResult,
    ValueKind,
)
from .parser import ValidatedDocument, load_document, parse_document, parse_records
from .pricing import PricingResolver
from .schema import ArchiveProvisioner

_log = get_logger("budget_planning.api")

# Shared by imports that do not bring their own provisioner.
_DEFAULT_PROVISIONER = ArchiveProvisioner()


def default_provisioner() -> ArchiveProvisioner:
    return _DEFAULT_PROVISIONER


def _as_text(document: str | bytes) -> str:
    if isinstance(document, bytes):
        return document.decode("utf-8-sig")
    return document


def build_document(
    session: Session,
    *,
    division: str,
    owner: str | None,
    source_year: int,
    lifecycle: Lifecycle = Lifecycle.DRAFT,
    monthly_targets: Mapping[int, float] | None = None,
    now: datetime | None = None,
) -> EncodedDocument:
    """Assemble and encode a document; ``owner=None`` produces a divisional document.

    Records come from allocating ``monthly_targets`` across last year's
    combinations when given, otherwise from the budget already stored for
    the target year.
    """

    doc_type = DocumentType.DIVISIONAL_BUDGET if owner is None else DocumentType.SALES_REP_BUDGET
    md = DocumentMetadata(
        division=division,
        owner=owner,
        actual_year=source_year,
        budget_year=source_year + 1,
        created_at=now or datetime.now(UTC),
        document_type=doc_type,
        lifecycle=lifecycle,
    )

    actuals = load_actuals(
        session, division=division, year=source_year, document_type=doc_type, owner=owner
    )
    if monthly_targets:
        basis = build_basis(a for a in actuals if a.value_kind == ValueKind.KGS)
        records = allocation_records(monthly_targets, basis, ValueKind.KGS)
    else:
        records = load_budget_records(
            session,
            division=division,
            owner=owner,
            budget_year=md.budget_year,
            document_type=doc_type,
        )

    pricing = PricingResolver(session).load_table(division, md.budget_year - 1)
    return encode(records, md, pricing=pricing, actuals=actuals)


def produce_document(
    session: Session,
    *,
    division: str,
    owner: str | None,
    source_year: int,
    lifecycle: Lifecycle = Lifecycle.DRAFT,
    monthly_targets: Mapping[int, float] | None = None,
    now: datetime | None = None,
) -> str:
    """Return the HTML of a freshly encoded document (see :func:`build_document`)."""

    return build_document(
        session,
        division=division,
        owner=owner,
        source_year=source_year,
        lifecycle=lifecycle,
        monthly_targets=monthly_targets,
        now=now,
    ).html


def _edited_records(
    records: Iterable[BudgetRecord | Mapping[str, Any]],
    kind: DocumentType,
    settings: ProtocolSettings | None,
) -> tuple[BudgetRecord, ...]:
    items = list(records)
    if not items:
        raise MalformedPayload("No records to save; a document needs at least one record")
    if all(isinstance(r, BudgetRecord) for r in items):
        return tuple(items)
    return parse_records(items, kind, settings=settings)


def finalize_document(
    document: str | bytes,
    *,
    records: Iterable[BudgetRecord | Mapping[str, Any]] | None = None,
    session: Session | None = None,
    now: datetime | None = None,
    settings: ProtocolSettings | None = None,
) -> EncodedDocument:
    """Re-encode a saved draft (or final) document as final.

    ``records`` replaces the saved records with the user's edits, given as
    :class:`BudgetRecord` values or payload-shaped objects
    (``customer``/``country``/``productGroup``/``month``/``value``). Edits are
    validated strictly. With a ``session`` the display totals and reference
    actuals are refreshed from the database; without one they render empty.
    """

    current = load_document(_as_text(document), settings=settings)
    md = current.metadata
    edited = None if records is None else _edited_records(records, md.document_type, settings)
    pricing = None
    actuals: Iterable[ActualRow] = ()
    if session is not None:
        pricing = PricingResolver(session).load_table(md.division, md.budget_year - 1)
        actuals = load_actuals(
            session,
            division=md.division,
            year=md.actual_year,
            document_type=md.document_type,
            owner=md.owner,
        )
    if edited is not None:
        _log.info(
            "Replacing %d saved record(s) with %d edited record(s) for %s/%s",
            len(current.records),
            len(edited),
            md.division,
            md.owner or "-",
        )
    return reencode(
        current,
        edited,
        lifecycle=Lifecycle.FINAL,
        pricing=pricing,
        actuals=actuals,
        now=now,
    )


def validate_document(
    document: str | bytes,
    *,
    expected_kind: DocumentType,
    expected_division: str | None = None,
    expected_owner: str | None = None,
    settings: ProtocolSettings | None = None,
    today: date | None = None,
) -> ValidatedDocument:
    return parse_document(
        _as_text(document),
        expected_kind=expected_kind,
        expected_division=expected_division,
        expected_owner=expected_owner,
        settings=settings or load_settings(),
        today=today,
    )


def import_document(
    document: str | bytes,
    *,
    expected_kind: DocumentType,
    expected_division: str | None = None,
    expected_owner: str | None = None,
    database_url: str | None = None,
    source_filename: str | None = None,
    settings: ProtocolSettings | None = None,
    provisioner: ArchiveProvisioner | None = None,
    now: datetime | None = None,
) -> MergeResult:
    """Validate an uploaded document and merge it in one transaction.

    Validation runs before any connection is opened; a validation failure
    never touches the database.
    """

    validated = validate_document(
        document,
        expected_kind=expected_kind,
        expected_division=expected_division,
        expected_owner=expected_owner,
        settings=settings,
    )
    md = validated.metadata
    prov = provisioner or _DEFAULT_PROVISIONER
    try:
        with session_scope(database_url=database_url) as session:
            result = merge_document(
                session,
                validated,
                provisioner=prov,
                uploaded_filename=source_filename,
                now=now,
            )
    except SQLAlchemyError as e:
        # The archive table may have been created inside the rolled-back transaction.
        prov.invalidate(md.division)
        _log.error(
            "Commit of budget import for %s/%s/%s failed: %s",
            md.division,
            md.owner or "-",
            md.budget_year,
            e,
        )
        raise MergeTransactionFailed(
            f"Budget import failed and was rolled back: {e}",
            details={"division": md.division, "owner": md.owner, "budget_year": md.budget_year},
        ) from e
    _log.info(
        "Imported %s for %s/%s/%s (%d skipped)",
        result.uploaded_filename,
        result.division,
        result.owner or "-",
        result.budget_year,
        len(result.skipped),
    )
    return result


def save_estimate(
    *,
    division: str,
    year: int,
    estimates: Mapping[int, Mapping[ValueKind | str, float]],
    approved_by: str | None = None,
    database_url: str | None = None,
) -> SavedEstimates:
    try:
        with session_scope(database_url=database_url) as session:
            return save_estimates(
                session,
                division=division,
                year=year,
                estimates=estimates,
                approved_by=approved_by,
            )
    except SQLAlchemyError as e:
        _log.error("Commit of estimates for %s/%s failed: %s", division, year, e)
        raise MergeTransactionFailed(
            f"Saving estimates failed and was rolled back: {e}",
            details={"division": division, "year": year},
        ) from e


__all__ = [
    "build_document",
    "calculate_estimate",
    "default_provisioner",
    "finalize_document",
    "import_document",
    "produce_document",
    "save_estimate",
    "validate_document",
]
