"""Parse and validate uploaded budget documents.

:func:`parse_document` runs an ordered pipeline; the first failing stage raises
its typed error and later stages do not run:

1. signature (absent: warning under the legacy allowance; wrong type: fatal)
2. lifecycle (a draft marker is always fatal)
3. payload extraction
4. metadata (every problem aggregated into one error)
5. context (division mismatch fatal, owner mismatch rerouted with a warning)
6. volume (record count cap, independent of record validity)
7. records (invalid records skipped up to the tolerated error rate)

Blocks are located with an HTML tokenizer by element id; data is never read
from the rendered table. Parsing is pure and does no I/O.
"""

from __future__ import annotations

import json
import math
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from html.parser import HTMLParser
from typing import Any

from pydantic import ValidationError

from .config import ProtocolSettings
from .encoder import (
    DATA_FORMATS,
    LIFECYCLE_BLOCK_ID,
    PAYLOAD_BLOCK_ID,
    SIGNATURE_MARKER,
    SIGNATURE_PREFIX,
)
from .errors import (
    DivisionMismatch,
    DraftNotImportable,
    MalformedPayload,
    MetadataInvalid,
    TooManyInvalidRecords,
    TooManyRecords,
    UnsignedDocumentRejected,
    WrongDocumentType,
)
from .logging_setup import get_logger
from .models import (
    BudgetRecord,
    DocumentMetadata,
    DocumentType,
    EncodedDocument,
    Lifecycle,
    PayloadMetadata,
    RawPayload,
    RecordIssue,
    label_key,
)

_log = get_logger("budget_planning.parser")

# The signature must open the document; only a BOM, whitespace and a doctype may precede it.
_SIGNATURE_RE = re.compile(
    r"\A\ufeff?\s*(?:(?i:<!doctype\b[^>]*>)\s*)?<!--\s*"
    + re.escape(SIGNATURE_PREFIX)
    + r"(?P<version>[\d.]+)\s*::\s*TYPE=(?P<type>[A-Z_]+)\s*::\s*"
    + re.escape(SIGNATURE_MARKER)
    + r"\s*-->"
)

_RECORD_LABELS: dict[DocumentType, tuple[tuple[str, str], ...]] = {
    DocumentType.SALES_REP_BUDGET: (
        ("customer", "Missing or invalid customer name"),
        ("country", "Missing or invalid country"),
        ("productGroup", "Missing or invalid product group"),
    ),
    DocumentType.DIVISIONAL_BUDGET: (("productGroup", "Missing or invalid product group"),),
}


@dataclass(frozen=True, slots=True)
class Signature:
    version: str
    document_type: str


@dataclass(slots=True)
class ValidatedDocument:
    """A document that passed every stage and may be merged."""

    metadata: DocumentMetadata
    records: tuple[BudgetRecord, ...]
    issues: tuple[RecordIssue, ...] = ()
    warnings: list[str] = field(default_factory=list)
    owner_rerouted: bool = False
    signed: bool = True
    total_records: int = 0

    @property
    def skipped(self) -> int:
        return len(self.issues)


# ---------------------------------------------------------------------------
# Tokenizing
# ---------------------------------------------------------------------------


class _BlockCollector(HTMLParser):
    """Collect the text of ``<script>`` elements that carry an id."""

    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self.blocks: dict[str, list[str]] = {}
        self._current_id: str | None = None
        self._buf: list[str] = []

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        if tag != "script":
            return
        block_id = dict(attrs).get("id")
        self._current_id = block_id or None
        self._buf = []

    def handle_endtag(self, tag: str) -> None:
        if tag != "script":
            return
        if self._current_id is not None:
            self.blocks.setdefault(self._current_id, []).append("".join(self._buf))
        self._current_id = None
        self._buf = []

    def handle_data(self, data: str) -> None:
        if self._current_id is not None:
            self._buf.append(data)


@dataclass(slots=True)
class _Scan:
    signature: Signature | None
    blocks: dict[str, list[str]]


def _scan(html: str) -> _Scan:
    collector = _BlockCollector()
    collector.feed(html)
    collector.close()
    signature: Signature | None = None
    m = _SIGNATURE_RE.match(html)
    if m:
        signature = Signature(version=m.group("version"), document_type=m.group("type"))
    return _Scan(signature=signature, blocks=collector.blocks)


def _single_block(scan: _Scan, block_id: str) -> str | None:
    found = scan.blocks.get(block_id)
    if not found:
        return None
    if len(found) > 1:
        raise MalformedPayload(
            f"Document contains {len(found)} '{block_id}' blocks; expected exactly one",
            details={"block": block_id, "count": len(found)},
        )
    return found[0]


# ---------------------------------------------------------------------------
# Stages
# ---------------------------------------------------------------------------


def _check_signature(
    scan: _Scan,
    expected_kind: DocumentType,
    settings: ProtocolSettings,
    today: date | None,
    warnings: list[str],
) -> None:
    if scan.signature is None:
        if not settings.unsigned_allowed(today):
            assert settings.unsigned_until is not None
            raise UnsignedDocumentRejected(expired_on=settings.unsigned_until.isoformat())
        msg = "Document has no signature line; accepted as a legacy unsigned document"
        if settings.unsigned_until is not None:
            msg += f" (allowed until {settings.unsigned_until.isoformat()})"
        _log.warning(msg)
        warnings.append(msg)
        return
    if scan.signature.document_type != expected_kind.value:
        raise WrongDocumentType(expected=expected_kind.value, found=scan.signature.document_type)


def _is_draft(scan: _Scan) -> bool:
    raw = _single_block(scan, LIFECYCLE_BLOCK_ID)
    if raw is None:
        return False
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        _log.warning("Unparsable lifecycle block; treating document as a draft")
        return True
    if not isinstance(data, dict):
        return True
    return data.get("isDraft") is not False


def _extract_payload(scan: _Scan) -> RawPayload:
    raw = _single_block(scan, PAYLOAD_BLOCK_ID)
    if raw is None or not raw.strip():
        raise MalformedPayload(
            "Document has no budget payload block; re-export it using Save Final",
            details={"block": PAYLOAD_BLOCK_ID},
        )
    try:
        payload = RawPayload.model_validate_json(raw)
    except ValidationError as e:
        raise MalformedPayload(
            f"Budget payload could not be parsed: {e.error_count()} problem(s)",
            details={"errors": [_describe(err) for err in e.errors()]},
        ) from e
    if not payload.records:
        raise MalformedPayload("Budget payload contains no records")
    return payload


def _describe(err: Any) -> str:
    loc = ".".join(str(p) for p in err.get("loc", ())) or "payload"
    return f"{loc}: {err.get('msg', 'invalid')}"


def _is_int(v: Any) -> bool:
    return isinstance(v, int) and not isinstance(v, bool)


def _is_number(v: Any) -> bool:
    if isinstance(v, bool) or not isinstance(v, int | float):
        return False
    try:
        return math.isfinite(v)
    except OverflowError:
        # JSON integers beyond float range
        return False


def _validate_metadata(
    raw: dict[str, Any],
    *,
    expected_kind: DocumentType,
    signature: Signature | None,
    settings: ProtocolSettings,
) -> DocumentMetadata:
    problems: list[str] = []

    parsed: PayloadMetadata | None = None
    try:
        parsed = PayloadMetadata.model_validate(raw)
    except ValidationError as e:
        problems.extend(_describe(err) for err in e.errors())

    division = raw.get("division")
    if not isinstance(division, str) or not division.strip():
        if not any(p.startswith("division") for p in problems):
            problems.append("division: missing or empty")

    if not expected_kind.is_aggregate:
        rep = raw.get("salesRep")
        if not isinstance(rep, str) or not rep.strip():
            problems.append("salesRep: missing or empty")

    actual_year = raw.get("actualYear")
    budget_year = raw.get("budgetYear")
    if _is_int(budget_year) and not (
        settings.min_budget_year <= budget_year <= settings.max_budget_year
    ):
        problems.append(
            f"budgetYear: {budget_year} outside "
            f"{settings.min_budget_year}-{settings.max_budget_year}"
        )
    if _is_int(actual_year) and _is_int(budget_year) and budget_year != actual_year + 1:
        problems.append(f"budgetYear: {budget_year} must be actualYear + 1 ({actual_year + 1})")

    version = raw.get("version")
    if isinstance(version, str) and version not in settings.supported_versions:
        problems.append(f"version: unsupported version {version!r}; re-export from the system")
    if signature is not None and signature.version not in settings.supported_versions:
        problems.append(f"signature: unsupported protocol version {signature.version!r}")

    doc_type = raw.get("documentType")
    if isinstance(doc_type, str) and doc_type != expected_kind.value:
        problems.append(f"documentType: {doc_type!r} does not match expected {expected_kind.value}")

    data_format = raw.get("dataFormat")
    if data_format is not None and data_format != DATA_FORMATS[expected_kind]:
        problems.append(f"dataFormat: {data_format!r} is not a {expected_kind.value} export")

    if problems or parsed is None:
        raise MetadataInvalid(problems or ["metadata: invalid"])

    return DocumentMetadata(
        division=parsed.division,
        owner=None if expected_kind.is_aggregate else parsed.sales_rep,
        actual_year=parsed.actual_year,
        budget_year=parsed.budget_year,
        created_at=datetime.fromisoformat(parsed.saved_at),
        document_type=expected_kind,
        lifecycle=Lifecycle.FINAL,
        version=parsed.version,
    )


def _record_reasons(
    rec: Any, kind: DocumentType, settings: ProtocolSettings
) -> list[str]:
    if not isinstance(rec, dict):
        return ["Record is not an object"]
    reasons: list[str] = []
    for key, message in _RECORD_LABELS[kind]:
        v = rec.get(key)
        if not isinstance(v, str) or not v.strip():
            reasons.append(message)
    month = rec.get("month")
    if not _is_int(month) or not 1 <= month <= 12:
        reasons.append("Invalid month (must be 1-12)")
    value = rec.get("value")
    if value is None:
        reasons.append("Missing value")
    elif not _is_number(value):
        reasons.append("Invalid value (must be a number)")
    elif value < 0:
        reasons.append("Negative values not allowed")
    elif value == 0:
        reasons.append("Zero values not allowed")
    elif value > settings.max_value:
        reasons.append(f"Value too large (max {settings.max_value:,.0f})")
    return reasons


def _to_record(rec: dict[str, Any], kind: DocumentType) -> BudgetRecord:
    dims = tuple(rec[key] for key, _ in _RECORD_LABELS[kind])
    return BudgetRecord(dimensions=dims, month=rec["month"], value=float(rec["value"]))


def _validate_records(
    raw_records: list[Any], kind: DocumentType, settings: ProtocolSettings
) -> tuple[list[BudgetRecord], list[RecordIssue]]:
    valid: list[BudgetRecord] = []
    issues: list[RecordIssue] = []
    for i, rec in enumerate(raw_records):
        reasons = _record_reasons(rec, kind, settings)
        if reasons:
            issues.append(RecordIssue(index=i, reasons=tuple(reasons)))
        else:
            valid.append(_to_record(rec, kind))
    return valid, issues


# ---------------------------------------------------------------------------
# Public entrypoints
# ---------------------------------------------------------------------------


def parse_document(
    html: str,
    *,
    expected_kind: DocumentType,
    expected_division: str | None = None,
    expected_owner: str | None = None,
    settings: ProtocolSettings | None = None,
    today: date | None = None,
) -> ValidatedDocument:
    """Run the validation pipeline over an uploaded document."""

    cfg = settings or ProtocolSettings()
    kind = DocumentType(expected_kind)
    warnings: list[str] = []

    scan = _scan(html)
    _check_signature(scan, kind, cfg, today, warnings)

    if _is_draft(scan):
        raise DraftNotImportable()

    payload = _extract_payload(scan)
    md = _validate_metadata(
        payload.metadata, expected_kind=kind, signature=scan.signature, settings=cfg
    )

    if expected_division and label_key(expected_division) != label_key(md.division):
        raise DivisionMismatch(expected=expected_division, found=md.division)

    owner_rerouted = False
    if expected_owner and md.owner and label_key(expected_owner) != label_key(md.owner):
        owner_rerouted = True
        msg = (
            f"Document belongs to {md.owner!r}, not {expected_owner!r}; "
            f"importing into {md.owner!r}"
        )
        _log.info(msg)
        warnings.append(msg)

    total = len(payload.records)
    if total > cfg.max_records:
        raise TooManyRecords(count=total, limit=cfg.max_records)

    valid, issues = _validate_records(payload.records, kind, cfg)
    if issues and len(issues) / total > cfg.max_error_rate:
        raise TooManyInvalidRecords(
            invalid=len(issues), total=total, examples=issues[: cfg.max_reported_issues]
        )
    if issues:
        msg = f"Skipping {len(issues)} invalid record(s) out of {total}"
        _log.warning(msg)
        warnings.append(msg)

    _log.info(
        "Validated %s document for %s/%s: %d valid of %d",
        kind.value,
        md.division,
        md.owner or "-",
        len(valid),
        total,
    )
    return ValidatedDocument(
        metadata=md,
        records=tuple(valid),
        issues=tuple(issues),
        warnings=warnings,
        owner_rerouted=owner_rerouted,
        signed=scan.signature is not None,
        total_records=total,
    )


def load_document(html: str, *, settings: ProtocolSettings | None = None) -> EncodedDocument:
    """Read a document back (draft or final) without the import checks.

    Used to re-encode a saved file. The document type comes from the
    signature line, or from the metadata for unsigned documents. Every record
    must be valid.
    """

    cfg = settings or ProtocolSettings()
    scan = _scan(html)
    payload = _extract_payload(scan)

    if scan.signature is not None:
        type_tag = scan.signature.document_type
    else:
        type_tag = payload.metadata.get("documentType")
    try:
        kind = DocumentType(type_tag)
    except ValueError as e:
        raise MalformedPayload(
            f"Unknown document type {type_tag!r}", details={"document_type": type_tag}
        ) from e

    md = _validate_metadata(
        payload.metadata, expected_kind=kind, signature=scan.signature, settings=cfg
    )
    lifecycle = Lifecycle.DRAFT if _is_draft(scan) else Lifecycle.FINAL
    md = DocumentMetadata(
        division=md.division,
        owner=md.owner,
        actual_year=md.actual_year,
        budget_year=md.budget_year,
        created_at=md.created_at,
        document_type=md.document_type,
        lifecycle=lifecycle,
        version=md.version,
    )

    records = parse_records(payload.records, kind, settings=cfg)
    return EncodedDocument(metadata=md, records=records, html=html)


def parse_records(
    raw_records: Any, kind: DocumentType, *, settings: ProtocolSettings | None = None
) -> tuple[BudgetRecord, ...]:
    """Convert payload-shaped record objects into :class:`BudgetRecord` values.

    Every record must be valid; there is no error tolerance outside an import.
    """

    cfg = settings or ProtocolSettings()
    if not isinstance(raw_records, list):
        raise MalformedPayload("Records must be a list of objects")
    if len(raw_records) > cfg.max_records:
        raise TooManyRecords(count=len(raw_records), limit=cfg.max_records)
    records, issues = _validate_records(raw_records, DocumentType(kind), cfg)
    if issues:
        raise MalformedPayload(
            f"{len(issues)} record(s) failed validation",
            details={
                "examples": [
                    {"index": i.index, "reasons": list(i.reasons)}
                    for i in issues[: cfg.max_reported_issues]
                ]
            },
        )
    return tuple(records)


__all__ = [
    "Signature",
    "ValidatedDocument",
    "load_document",
    "parse_document",
    "parse_records",
]
