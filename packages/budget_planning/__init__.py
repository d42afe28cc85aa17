"""Offline budget documents: export, finalize, validate and import.

The entrypoints most callers need are re-exported here; everything else lives
in the submodules (``encoder``, ``parser``, ``merge``, ``allocation`` ...).
"""

from __future__ import annotations

from .api import (
    build_document,
    calculate_estimate,
    finalize_document,
    import_document,
    produce_document,
    save_estimate,
    validate_document,
)
from .errors import BudgetDocumentError
from .models import BudgetRecord, DocumentMetadata, DocumentType, Lifecycle, ValueKind

__all__ = [
    "BudgetDocumentError",
    "BudgetRecord",
    "DocumentMetadata",
    "DocumentType",
    "Lifecycle",
    "ValueKind",
    "build_document",
    "calculate_estimate",
    "finalize_document",
    "import_document",
    "produce_document",
    "save_estimate",
    "validate_document",
]
