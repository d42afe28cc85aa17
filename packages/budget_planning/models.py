"""Domain types and wire schema for ``budget_planning``.

Two layers live here:

- Plain frozen dataclasses (``BudgetRecord``, ``DocumentMetadata``,
  ``MergeResult`` ...) that the protocol passes around in memory.
- pydantic models (``PayloadMetadata``, ``PayloadRecord``, ``BudgetPayload``,
  ``LifecycleMarker``) that declare the JSON embedded in a budget document.
  The wire keys are camelCase so documents stay readable by the browser UI
  that edits them; Python attributes are snake_case.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any, TypeAlias

from pydantic import BaseModel, ConfigDict, Field, field_validator

# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class DocumentType(StrEnum):
    """The two mutually exclusive document kinds."""

    SALES_REP_BUDGET = "SALES_REP_BUDGET"
    DIVISIONAL_BUDGET = "DIVISIONAL_BUDGET"

    @property
    def is_aggregate(self) -> bool:
        return self is DocumentType.DIVISIONAL_BUDGET

    @property
    def dimension_names(self) -> tuple[str, ...]:
        if self.is_aggregate:
            return ("product_group",)
        return ("customer", "country", "product_group")


class Lifecycle(StrEnum):
    DRAFT = "draft"
    FINAL = "final"


class ValueKind(StrEnum):
    """Stored value kinds: quantity in kilograms, money, margin over raw material."""

    KGS = "KGS"
    AMOUNT = "AMOUNT"
    MORM = "MORM"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_WS_RE = re.compile(r"\s+")
_WORD_START_RE = re.compile(r"(?:^|[\s\-/])\w")


def normalize_label(value: Any) -> str:
    """Trim and collapse internal whitespace; ``None`` becomes ``""``."""

    if value is None:
        return ""
    return _WS_RE.sub(" ", str(value)).strip()


def label_key(value: Any) -> str:
    """Case-insensitive lookup key for a label."""

    return normalize_label(value).lower()


def to_proper_case(value: Any) -> str:
    """``"MASAFI llc"`` -> ``"Masafi Llc"``; words also start after ``-`` and ``/``."""

    s = normalize_label(value).lower()
    return _WORD_START_RE.sub(lambda m: m.group(0).upper(), s)


def division_code(division: str) -> str:
    """Return the storage code for a division name (``"FP-UAE"`` -> ``"fp"``)."""

    head = normalize_label(division).split("-")[0]
    code = re.sub(r"[^A-Za-z]", "", head).lower()
    if not code:
        raise ValueError(f"Cannot derive a division code from {division!r}")
    return code


# ---------------------------------------------------------------------------
# In-memory domain types
# ---------------------------------------------------------------------------

Dimensions: TypeAlias = tuple[str, ...]
"""Dimension labels in document order, e.g. ``(customer, country, product_group)``."""


@dataclass(frozen=True, slots=True)
class BudgetRecord:
    """One budget cell: dimension labels, a month (1-12) and a positive quantity."""

    dimensions: Dimensions
    month: int
    value: float

    def __post_init__(self) -> None:
        dims = self.dimensions
        if not dims or any(not isinstance(d, str) or not d.strip() for d in dims):
            raise ValueError(f"BudgetRecord dimensions must be non-empty strings: {dims!r}")
        month = self.month
        if isinstance(month, bool) or not isinstance(month, int) or not 1 <= month <= 12:
            raise ValueError(f"BudgetRecord month must be within 1..12, got {self.month!r}")
        if not self.value > 0:
            raise ValueError(f"BudgetRecord value must be positive, got {self.value!r}")

    @property
    def product_group(self) -> str:
        return self.dimensions[-1]


@dataclass(frozen=True, slots=True)
class DocumentMetadata:
    """Header of an encoded budget document."""

    division: str
    owner: str | None
    actual_year: int
    budget_year: int
    created_at: datetime
    document_type: DocumentType
    lifecycle: Lifecycle = Lifecycle.DRAFT
    version: str = "1.0"

    def __post_init__(self) -> None:
        if self.budget_year != self.actual_year + 1:
            raise ValueError(
                "budget_year must be actual_year + 1 "
                f"(got {self.actual_year} -> {self.budget_year})"
            )
        if self.document_type.is_aggregate:
            if self.owner:
                raise ValueError("Divisional documents do not carry an owner")
        elif not self.owner or not self.owner.strip():
            raise ValueError("Sales rep documents require an owner")

    @property
    def division_code(self) -> str:
        return division_code(self.division)


@dataclass(frozen=True, slots=True)
class ActualRow:
    """Historical value for one dimension combination, month and value kind."""

    dimensions: Dimensions
    month: int
    value_kind: ValueKind
    value: float


@dataclass(frozen=True, slots=True)
class EncodedDocument:
    """A rendered document string plus what went into it."""

    metadata: DocumentMetadata
    records: tuple[BudgetRecord, ...]
    html: str

    def __str__(self) -> str:
        return self.html


@dataclass(frozen=True, slots=True)
class PricingEntry:
    """Unit price (ASP) and secondary factor (MoRM) for one product group."""

    price: float = 0.0
    secondary_factor: float = 0.0


ZERO_PRICING = PricingEntry()


@dataclass(frozen=True, slots=True)
class RecordIssue:
    """A record that failed structural validation: its index and every reason."""

    index: int
    reasons: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class AllocationBasis:
    """Per value kind, each historical combination's share of the base total.

    ``shares`` preserves first-seen order so allocations render in a stable
    order; ``totals`` is the base-period grand total per kind.
    """

    base_months: tuple[int, ...]
    shares: dict[ValueKind, dict[Dimensions, float]]
    totals: dict[ValueKind, float]


@dataclass(frozen=True, slots=True)
class EstimateResult:
    """Flat per-month averages for the requested months."""

    year: int
    base_months: tuple[int, ...]
    target_months: tuple[int, ...]
    averages: dict[ValueKind, int]
    record_count: int

    def per_month(self) -> dict[int, dict[ValueKind, int]]:
        return {m: dict(self.averages) for m in self.target_months}


@dataclass(slots=True)
class MergeResult:
    """Outcome of one import: counts per value kind plus tolerated issues."""

    division: str
    owner: str | None
    budget_year: int
    uploaded_filename: str
    archived: int = 0
    deleted: int = 0
    inserted: dict[ValueKind, int] = field(default_factory=lambda: {k: 0 for k in ValueKind})
    totals: dict[ValueKind, float] = field(default_factory=lambda: {k: 0.0 for k in ValueKind})
    skipped: tuple[RecordIssue, ...] = ()
    warnings: list[str] = field(default_factory=list)
    owner_rerouted: bool = False
    existing_count: int = 0
    existing_last_upload: datetime | None = None
    existing_last_filename: str | None = None
    pricing_year: int | None = None
    pricing_entries: int = 0

    @property
    def inserted_total(self) -> int:
        return sum(self.inserted.values())


# ---------------------------------------------------------------------------
# Wire schema (pydantic)
# ---------------------------------------------------------------------------


class PayloadMetadata(BaseModel):
    """The ``metadata`` object of the embedded payload."""

    model_config = ConfigDict(
        strict=True, extra="ignore", populate_by_name=True, str_strip_whitespace=True
    )

    division: str
    sales_rep: str | None = Field(default=None, alias="salesRep")
    actual_year: int = Field(alias="actualYear")
    budget_year: int = Field(alias="budgetYear")
    saved_at: str = Field(alias="savedAt")
    version: str
    document_type: str = Field(alias="documentType")
    data_format: str = Field(default="budget_import", alias="dataFormat")

    @field_validator("division")
    @classmethod
    def _division_non_empty(cls, v: str) -> str:
        if not v:
            raise ValueError("division must be non-empty")
        return v

    @field_validator("saved_at")
    @classmethod
    def _saved_at_iso(cls, v: str) -> str:
        try:
            datetime.fromisoformat(v)
        except ValueError as e:
            raise ValueError("savedAt must be an ISO-8601 timestamp") from e
        return v

    @classmethod
    def from_metadata(cls, md: DocumentMetadata) -> PayloadMetadata:
        return cls(
            division=md.division,
            sales_rep=md.owner,
            actual_year=md.actual_year,
            budget_year=md.budget_year,
            saved_at=md.created_at.isoformat(),
            version=md.version,
            document_type=md.document_type.value,
        )


class PayloadRecord(BaseModel):
    """One entry of the ``records`` array. Divisional records omit customer/country."""

    model_config = ConfigDict(strict=True, extra="forbid", populate_by_name=True)

    customer: str | None = None
    country: str | None = None
    product_group: str = Field(alias="productGroup")
    month: int
    value: float

    @classmethod
    def from_record(cls, record: BudgetRecord, document_type: DocumentType) -> PayloadRecord:
        if document_type.is_aggregate:
            return cls(product_group=record.dimensions[0], month=record.month, value=record.value)
        customer, country, product_group = record.dimensions
        return cls(
            customer=customer,
            country=country,
            product_group=product_group,
            month=record.month,
            value=record.value,
        )


class BudgetPayload(BaseModel):
    """The embedded payload: exactly a metadata object and a records array."""

    model_config = ConfigDict(strict=True, extra="forbid")

    metadata: PayloadMetadata
    records: list[PayloadRecord]


class RawPayload(BaseModel):
    """Envelope used on import, before metadata and records are validated."""

    model_config = ConfigDict(strict=True, extra="forbid")

    metadata: dict[str, Any]
    records: list[Any]


class LifecycleMarker(BaseModel):
    """Content of the draft-only lifecycle block."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    is_draft: bool = Field(alias="isDraft")
    division: str | None = None
    actual_year: int | None = Field(default=None, alias="actualYear")
    budget_year: int | None = Field(default=None, alias="budgetYear")
    saved_at: str | None = Field(default=None, alias="savedAt")


__all__ = [
    "ZERO_PRICING",
    "ActualRow",
    "AllocationBasis",
    "BudgetPayload",
    "BudgetRecord",
    "Dimensions",
    "DocumentMetadata",
    "DocumentType",
    "EncodedDocument",
    "EstimateResult",
    "Lifecycle",
    "LifecycleMarker",
    "MergeResult",
    "PayloadMetadata",
    "PayloadRecord",
    "PricingEntry",
    "RawPayload",
    "RecordIssue",
    "ValueKind",
    "division_code",
    "label_key",
    "normalize_label",
    "to_proper_case",
]
