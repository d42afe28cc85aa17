"""Encode budget records into a self-contained HTML document.

Document layout, top to bottom:

1. Signature comment on the first line::

       <!-- IPD_BUDGET_SYSTEM_v1.0 :: TYPE=SALES_REP_BUDGET :: DO_NOT_EDIT_THIS_LINE -->

2. The human-editable page (see :mod:`budget_planning.rendering`).
3. ``<script type="application/json" id="budget-payload">`` holding exactly
   ``{"metadata": {...}, "records": [...]}`` serialized from
   :class:`~budget_planning.models.BudgetPayload`.
4. Drafts only: ``<script type="application/json" id="budget-lifecycle">``
   holding ``{"isDraft": true, ...}``.

Encoding is a pure function of its inputs.
"""

from __future__ import annotations

import json
import re
from collections.abc import Iterable, Sequence
from datetime import UTC, datetime

from .config import PROTOCOL_VERSION
from .errors import LifecycleTransitionError
from .logging_setup import get_logger
from .models import (
    ActualRow,
    BudgetPayload,
    BudgetRecord,
    DocumentMetadata,
    DocumentType,
    EncodedDocument,
    Lifecycle,
    LifecycleMarker,
    PayloadMetadata,
    PayloadRecord,
)
from .pricing import PricingTable
from .rendering import render_page

_log = get_logger("budget_planning.encoder")

PAYLOAD_BLOCK_ID = "budget-payload"
LIFECYCLE_BLOCK_ID = "budget-lifecycle"
SIGNATURE_PREFIX = "IPD_BUDGET_SYSTEM_v"
SIGNATURE_MARKER = "DO_NOT_EDIT_THIS_LINE"

# dataFormat tag per document type.
DATA_FORMATS: dict[DocumentType, str] = {
    DocumentType.SALES_REP_BUDGET: "budget_import",
    DocumentType.DIVISIONAL_BUDGET: "divisional_budget_import",
}


def signature_line(document_type: DocumentType, version: str = PROTOCOL_VERSION) -> str:
    return (
        f"<!-- {SIGNATURE_PREFIX}{version} :: TYPE={document_type.value} "
        f":: {SIGNATURE_MARKER} -->"
    )


def _script_safe(payload_json: str) -> str:
    # JSON may only contain <, > and & inside strings, where \uXXXX escapes are
    # equivalent; this keeps "</script>" out of the block.
    return (
        payload_json.replace("<", "\\u003c").replace(">", "\\u003e").replace("&", "\\u0026")
    )


def _json_block(block_id: str, payload_json: str) -> str:
    return (
        f'<script type="application/json" id="{block_id}">'
        f"{_script_safe(payload_json)}</script>"
    )


def build_payload(md: DocumentMetadata, records: Sequence[BudgetRecord]) -> BudgetPayload:
    expected = len(md.document_type.dimension_names)
    for i, r in enumerate(records):
        if len(r.dimensions) != expected:
            raise ValueError(
                f"Record {i} has {len(r.dimensions)} dimension labels; "
                f"{md.document_type.value} documents need {expected}"
            )
    meta = PayloadMetadata.from_metadata(md)
    meta = meta.model_copy(update={"data_format": DATA_FORMATS[md.document_type]})
    return BudgetPayload(
        metadata=meta,
        records=[PayloadRecord.from_record(r, md.document_type) for r in records],
    )


def payload_json(md: DocumentMetadata, records: Sequence[BudgetRecord]) -> str:
    return build_payload(md, records).model_dump_json(by_alias=True, exclude_none=True)


def _lifecycle_json(md: DocumentMetadata) -> str:
    marker = LifecycleMarker(
        is_draft=True,
        division=md.division,
        actual_year=md.actual_year,
        budget_year=md.budget_year,
        saved_at=md.created_at.isoformat(),
    )
    data = marker.model_dump(by_alias=True, exclude_none=True)
    if md.owner:
        data["salesRep"] = md.owner
    return json.dumps(data, ensure_ascii=False)


def encode(
    records: Iterable[BudgetRecord],
    metadata: DocumentMetadata,
    *,
    pricing: PricingTable | None = None,
    actuals: Iterable[ActualRow] = (),
) -> EncodedDocument:
    """Encode ``records`` under ``metadata``.

    ``pricing`` only feeds the display totals; import never trusts them.
    ``actuals`` are rendered as read-only reference rows.
    """

    recs = tuple(records)
    table = pricing if pricing is not None else PricingTable.empty()

    blocks = [_json_block(PAYLOAD_BLOCK_ID, payload_json(metadata, recs))]
    if metadata.lifecycle is Lifecycle.DRAFT:
        blocks.append(_json_block(LIFECYCLE_BLOCK_ID, _lifecycle_json(metadata)))

    page = render_page(metadata, recs, pricing=table, actuals=list(actuals), script_blocks=blocks)
    html = signature_line(metadata.document_type, metadata.version) + "\n" + page

    _log.debug(
        "Encoded %s %s document for %s/%s with %d records",
        metadata.lifecycle.value,
        metadata.document_type.value,
        metadata.division,
        metadata.owner or "-",
        len(recs),
    )
    return EncodedDocument(metadata=metadata, records=recs, html=html)


def reencode(
    document: EncodedDocument,
    records: Iterable[BudgetRecord] | None = None,
    *,
    lifecycle: Lifecycle | None = None,
    pricing: PricingTable | None = None,
    actuals: Iterable[ActualRow] = (),
    now: datetime | None = None,
) -> EncodedDocument:
    """Produce a new document superseding ``document``.

    Allowed: draft -> draft, draft -> final, final -> final. A final document
    never goes back to draft.
    """

    current = document.metadata.lifecycle
    target = lifecycle or current
    if current is Lifecycle.FINAL and target is Lifecycle.DRAFT:
        raise LifecycleTransitionError(current=current.value, requested=target.value)

    old = document.metadata
    md = DocumentMetadata(
        division=old.division,
        owner=old.owner,
        actual_year=old.actual_year,
        budget_year=old.budget_year,
        created_at=now or datetime.now(UTC),
        document_type=old.document_type,
        lifecycle=target,
        version=old.version,
    )
    recs = document.records if records is None else tuple(records)
    return encode(recs, md, pricing=pricing, actuals=actuals)


_UNSAFE_NAME_RE = re.compile(r"[^A-Za-z0-9]")


def suggest_filename(metadata: DocumentMetadata, *, now: datetime | None = None) -> str:
    """``DRAFT_``/``FINAL_`` file name for a document, stamped to the minute."""

    ts = now or metadata.created_at
    prefix = "DRAFT" if metadata.lifecycle is Lifecycle.DRAFT else "FINAL"
    division = _UNSAFE_NAME_RE.sub("_", metadata.division)
    stamp = ts.strftime("%Y%m%d_%H%M")
    if metadata.document_type.is_aggregate:
        return f"{prefix}_Divisional_{division}_{metadata.budget_year}_{stamp}.html"
    owner = _UNSAFE_NAME_RE.sub("_", metadata.owner or "")
    return f"{prefix}_{division}_{owner}_{metadata.budget_year}_{stamp}.html"


__all__ = [
    "DATA_FORMATS",
    "LIFECYCLE_BLOCK_ID",
    "PAYLOAD_BLOCK_ID",
    "SIGNATURE_MARKER",
    "SIGNATURE_PREFIX",
    "build_payload",
    "encode",
    "payload_json",
    "reencode",
    "signature_line",
    "suggest_filename",
]
