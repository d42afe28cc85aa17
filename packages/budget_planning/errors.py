"""Typed failures raised by the budget document protocol.

Every error carries a stable ``code`` and a ``details`` mapping so callers
(CLI, web handlers) can build an actionable message without parsing text.
Owner mismatches are not errors; they surface as warnings on the validated
document.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any


class BudgetDocumentError(Exception):
    """Base class for all budget protocol failures."""

    code: str = "BUDGET_DOCUMENT_ERROR"

    def __init__(self, message: str = "", *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details: dict[str, Any] = details or {}


class WrongDocumentType(BudgetDocumentError):
    code = "WRONG_DOCUMENT_TYPE"

    def __init__(self, *, expected: str, found: str) -> None:
        super().__init__(
            f"Wrong document type: expected {expected}, found {found}",
            details={"expected": expected, "found": found},
        )
        self.expected = expected
        self.found = found


class DraftNotImportable(BudgetDocumentError):
    code = "DRAFT_NOT_IMPORTABLE"

    def __init__(self) -> None:
        super().__init__(
            "Draft documents cannot be imported; finalize the document before uploading"
        )


class MalformedPayload(BudgetDocumentError):
    code = "MALFORMED_PAYLOAD"


class MetadataInvalid(BudgetDocumentError):
    """All metadata problems found, not just the first."""

    code = "METADATA_INVALID"

    def __init__(self, problems: Sequence[str]) -> None:
        self.problems: tuple[str, ...] = tuple(problems)
        super().__init__(
            "Invalid document metadata: " + "; ".join(self.problems),
            details={"problems": list(self.problems)},
        )


class DivisionMismatch(BudgetDocumentError):
    code = "DIVISION_MISMATCH"

    def __init__(self, *, expected: str, found: str) -> None:
        super().__init__(
            f"Division mismatch: document is for {found!r}, expected {expected!r}",
            details={"expected": expected, "found": found},
        )
        self.expected = expected
        self.found = found


class TooManyInvalidRecords(BudgetDocumentError):
    """Raised when the invalid fraction exceeds the tolerated error rate.

    ``examples`` holds the first issues (index plus reasons) only; ``invalid``
    and ``total`` give the full counts.
    """

    code = "TOO_MANY_INVALID_RECORDS"

    def __init__(self, *, invalid: int, total: int, examples: Sequence[Any]) -> None:
        self.invalid = invalid
        self.total = total
        self.examples = tuple(examples)
        super().__init__(
            f"Too many invalid records: {invalid} of {total} failed validation",
            details={
                "invalid": invalid,
                "total": total,
                "examples": [
                    {"index": e.index, "reasons": list(e.reasons)} for e in self.examples
                ],
            },
        )


class TooManyRecords(BudgetDocumentError):
    code = "TOO_MANY_RECORDS"

    def __init__(self, *, count: int, limit: int) -> None:
        super().__init__(
            f"Too many records: {count} exceeds the limit of {limit}",
            details={"count": count, "limit": limit},
        )
        self.count = count
        self.limit = limit


class NoBasisAvailable(BudgetDocumentError):
    code = "NO_BASIS_AVAILABLE"


class MergeTransactionFailed(BudgetDocumentError):
    """Any database fault during a merge; the transaction is always rolled back."""

    code = "MERGE_TRANSACTION_FAILED"


class LifecycleTransitionError(BudgetDocumentError):
    code = "LIFECYCLE_TRANSITION_INVALID"

    def __init__(self, *, current: str, requested: str) -> None:
        super().__init__(
            f"Cannot move a {current} document back to {requested}",
            details={"current": current, "requested": requested},
        )


class UnsignedDocumentRejected(BudgetDocumentError):
    code = "UNSIGNED_DOCUMENT_REJECTED"

    def __init__(self, *, expired_on: str) -> None:
        super().__init__(
            "Document has no signature line and unsigned documents are no longer "
            f"accepted (allowance expired {expired_on}); re-export it from the system",
            details={"expired_on": expired_on},
        )


__all__ = [
    "BudgetDocumentError",
    "DivisionMismatch",
    "DraftNotImportable",
    "LifecycleTransitionError",
    "MalformedPayload",
    "MergeTransactionFailed",
    "MetadataInvalid",
    "NoBasisAvailable",
    "TooManyInvalidRecords",
    "TooManyRecords",
    "UnsignedDocumentRejected",
    "WrongDocumentType",
]
