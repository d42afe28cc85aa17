"""Unit price lookups used to derive money and MoRM values from quantities.

Pricing rows live in ``bp_pricing_rounding`` keyed by division code, year and
product group. Lookups are case-insensitive on the trimmed product group and
exact-match only; a missing entry resolves to ``PricingEntry(0, 0)``.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping

from sqlalchemy import select
from sqlalchemy.orm import Session

from db.models.budget import PricingRounding

from .logging_setup import get_logger
from .models import ZERO_PRICING, PricingEntry, division_code, label_key

_log = get_logger("budget_planning.pricing")


class PricingTable(Mapping[str, PricingEntry]):
    """In-memory pricing for one (division, year), keyed by lowercased label."""

    def __init__(self, division: str, year: int, entries: Mapping[str, PricingEntry]) -> None:
        self.division = division
        self.year = year
        self._entries = {label_key(k): v for k, v in entries.items()}

    def __getitem__(self, category: str) -> PricingEntry:
        return self._entries[label_key(category)]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def lookup(self, category: str) -> PricingEntry:
        return self._entries.get(label_key(category), ZERO_PRICING)

    def missing(self, categories: Iterable[str]) -> list[str]:
        """Distinct categories (first spelling seen) with no entry in this table."""

        out: list[str] = []
        seen: set[str] = set()
        for c in categories:
            key = label_key(c)
            if key in seen:
                continue
            seen.add(key)
            if key not in self._entries:
                out.append(c)
        return out

    @classmethod
    def empty(cls, division: str = "", year: int = 0) -> PricingTable:
        return cls(division, year, {})


class PricingResolver:
    """Reads pricing through a session, caching one table per (division, year)."""

    def __init__(self, session: Session) -> None:
        self._session = session
        self._tables: dict[tuple[str, int], PricingTable] = {}

    def load_table(self, division: str, year: int) -> PricingTable:
        code = division_code(division)
        cached = self._tables.get((code, year))
        if cached is not None:
            return cached

        rows = self._session.execute(
            select(
                PricingRounding.product_group,
                PricingRounding.asp_round,
                PricingRounding.morm_round,
            ).where(PricingRounding.division == code, PricingRounding.year == year)
        ).all()

        entries: dict[str, PricingEntry] = {}
        for product_group, asp, morm in rows:
            key = label_key(product_group)
            if not key:
                continue
            if key in entries:
                _log.debug(
                    "Duplicate pricing for %r in %s/%s; keeping first", product_group, code, year
                )
                continue
            entries[key] = PricingEntry(
                price=float(asp) if asp is not None else 0.0,
                secondary_factor=float(morm) if morm is not None else 0.0,
            )

        table = PricingTable(code, year, entries)
        self._tables[(code, year)] = table
        _log.debug("Loaded %d pricing entries for %s/%s", len(table), code, year)
        return table

    def resolve(self, division: str, reference_year: int, category: str) -> PricingEntry:
        return self.load_table(division, reference_year).lookup(category)


__all__ = ["PricingResolver", "PricingTable"]
