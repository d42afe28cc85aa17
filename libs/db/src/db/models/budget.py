from __future__ import annotations

import re
from datetime import datetime

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Column,
    DateTime,
    Index,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# SQLite only autoincrements an INTEGER PRIMARY KEY (rowid alias).
_PK_TYPE = BigInteger().with_variant(Integer, "sqlite")

# Budget values are stored as floats; KGS quantities and derived money values
# never need more than four decimals.
_VALUE_TYPE = Numeric(20, 4, asdecimal=False)

VALUE_KINDS: tuple[str, ...] = ("KGS", "AMOUNT", "MORM")


class Base(DeclarativeBase):
    pass


# ---------------------------
# Core: bp_budget_lines
# ---------------------------


class BudgetLine(Base):
    """One budget cell: a dimension tuple, a month and a value kind.

    ``owner`` is the sales rep a per-owner budget belongs to; divisional
    (aggregate) budgets store the empty string so the natural key stays free of
    NULLs (Postgres treats NULLs as distinct inside unique indexes). The same
    convention applies to ``customer`` and ``country`` for divisional rows,
    which are keyed by product group only.
    """

    __tablename__ = "bp_budget_lines"

    id: Mapped[int] = mapped_column(_PK_TYPE, primary_key=True, autoincrement=True)
    division: Mapped[str] = mapped_column(String, nullable=False)
    owner: Mapped[str] = mapped_column(String, nullable=False, server_default=text("''"))
    budget_year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    customer: Mapped[str] = mapped_column(Text, nullable=False, server_default=text("''"))
    country: Mapped[str] = mapped_column(Text, nullable=False, server_default=text("''"))
    product_group: Mapped[str] = mapped_column(Text, nullable=False)
    value_kind: Mapped[str] = mapped_column(String, nullable=False)
    value: Mapped[float] = mapped_column(_VALUE_TYPE, nullable=False)
    uploaded_filename: Mapped[str | None] = mapped_column(Text, nullable=True)
    uploaded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint(
            "division",
            "owner",
            "budget_year",
            "month",
            "customer",
            "country",
            "product_group",
            "value_kind",
            name="uq_bp_budget_lines_key",
        ),
        CheckConstraint("month >= 1 AND month <= 12", name="ck_bp_budget_lines_month"),
        CheckConstraint(
            "value_kind in ('KGS','AMOUNT','MORM')", name="ck_bp_budget_lines_value_kind"
        ),
        Index("ix_bp_budget_lines_scope", "division", "owner", "budget_year"),
    )


# ---------------------------
# History: bp_actual_lines
# ---------------------------


class ActualLine(Base):
    """Historical sales (``ACTUAL``) and calculated ``ESTIMATE`` rows.

    These rows are the basis for estimate averaging and for proportional
    allocation. Bulk loading of actuals happens outside this repository.
    """

    __tablename__ = "bp_actual_lines"

    id: Mapped[int] = mapped_column(_PK_TYPE, primary_key=True, autoincrement=True)
    division: Mapped[str] = mapped_column(String, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    line_type: Mapped[str] = mapped_column(
        String, nullable=False, server_default=text("'ACTUAL'")
    )
    sales_rep: Mapped[str] = mapped_column(Text, nullable=False, server_default=text("''"))
    customer: Mapped[str] = mapped_column(Text, nullable=False, server_default=text("''"))
    country: Mapped[str] = mapped_column(Text, nullable=False, server_default=text("''"))
    product_group: Mapped[str] = mapped_column(Text, nullable=False)
    value_kind: Mapped[str] = mapped_column(String, nullable=False)
    value: Mapped[float] = mapped_column(_VALUE_TYPE, nullable=False)
    uploaded_by: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint("month >= 1 AND month <= 12", name="ck_bp_actual_lines_month"),
        CheckConstraint(
            "line_type in ('ACTUAL','ESTIMATE')", name="ck_bp_actual_lines_line_type"
        ),
        CheckConstraint(
            "value_kind in ('KGS','AMOUNT','MORM')", name="ck_bp_actual_lines_value_kind"
        ),
        Index("ix_bp_actual_lines_scope", "division", "year", "line_type", "month"),
    )


# ---------------------------
# Reference: bp_pricing_rounding
# ---------------------------


class PricingRounding(Base):
    """Rounded unit selling price (ASP) and MoRM per product group and year."""

    __tablename__ = "bp_pricing_rounding"

    id: Mapped[int] = mapped_column(_PK_TYPE, primary_key=True, autoincrement=True)
    # Division *code* ("fp", "hc"), not the display name ("FP-UAE").
    division: Mapped[str] = mapped_column(String, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    product_group: Mapped[str] = mapped_column(Text, nullable=False)
    asp_round: Mapped[float | None] = mapped_column(_VALUE_TYPE, nullable=True)
    morm_round: Mapped[float | None] = mapped_column(_VALUE_TYPE, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("division", "year", "product_group", name="uq_bp_pricing_key"),
    )


# ---------------------------
# Archive: <code>_bp_budget_lines_archive
# ---------------------------

# Bump when the archive column set changes; provisioning caches key on it.
ARCHIVE_SCHEMA_VERSION: int = 1

# Archive tables are provisioned at runtime, one per division, and are kept out
# of ``Base.metadata`` so Alembic autogenerate never tries to drop them.
archive_metadata = MetaData()

_DIVISION_CODE_RE = re.compile(r"^[a-z]{1,16}$")

# Columns copied verbatim from ``bp_budget_lines`` into the archive.
ARCHIVED_COLUMNS: tuple[str, ...] = (
    "division",
    "owner",
    "budget_year",
    "month",
    "customer",
    "country",
    "product_group",
    "value_kind",
    "value",
    "uploaded_filename",
    "uploaded_at",
)


def archive_table_name(division_code: str) -> str:
    if not _DIVISION_CODE_RE.fullmatch(division_code):
        raise ValueError(
            f"Invalid division code {division_code!r}: expected 1-16 lowercase letters"
        )
    return f"{division_code}_bp_budget_lines_archive"


def budget_archive_table(division_code: str) -> Table:
    """Return the archive ``Table`` for a division, defining it on first use."""

    name = archive_table_name(division_code)
    existing = archive_metadata.tables.get(name)
    if existing is not None:
        return existing
    return Table(
        name,
        archive_metadata,
        Column("archive_id", _PK_TYPE, primary_key=True, autoincrement=True),
        Column("source_id", BigInteger, nullable=True),
        Column("division", String, nullable=False),
        Column("owner", String, nullable=False),
        Column("budget_year", Integer, nullable=False),
        Column("month", Integer, nullable=False),
        Column("customer", Text, nullable=False),
        Column("country", Text, nullable=False),
        Column("product_group", Text, nullable=False),
        Column("value_kind", String, nullable=False),
        Column("value", _VALUE_TYPE, nullable=False),
        Column("uploaded_filename", Text, nullable=True),
        Column("uploaded_at", DateTime(timezone=True), nullable=True),
        Column("archive_reason", Text, nullable=False),
        Column("archived_by_filename", Text, nullable=True),
        Column(
            "archived_at",
            DateTime(timezone=True),
            nullable=False,
            server_default=func.now(),
        ),
        Index(f"ix_{name}_scope", "division", "owner", "budget_year"),
    )


__all__ = [
    "ARCHIVED_COLUMNS",
    "ARCHIVE_SCHEMA_VERSION",
    "VALUE_KINDS",
    "ActualLine",
    "Base",
    "BudgetLine",
    "PricingRounding",
    "archive_metadata",
    "archive_table_name",
    "budget_archive_table",
]
