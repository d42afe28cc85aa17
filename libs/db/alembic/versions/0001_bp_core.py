# ruff: noqa: I001
"""Budget planning core tables.

Revision ID: 0001_bp_core
Revises: None
Create Date: 2026-10-19
"""

from __future__ import annotations  # ruff: noqa: I001

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op


# revision identifiers, used by Alembic.
revision: str = "0001_bp_core"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _value() -> sa.Numeric:
    return sa.Numeric(20, 4, asdecimal=False)


def upgrade() -> None:
    # bp_budget_lines
    op.create_table(
        "bp_budget_lines",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("division", sa.String(), nullable=False),
        sa.Column("owner", sa.String(), nullable=False, server_default=sa.text("''")),
        sa.Column("budget_year", sa.Integer(), nullable=False),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column("customer", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column("country", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column("product_group", sa.Text(), nullable=False),
        sa.Column("value_kind", sa.String(), nullable=False),
        sa.Column("value", _value(), nullable=False),
        sa.Column("uploaded_filename", sa.Text(), nullable=True),
        sa.Column(
            "uploaded_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.CheckConstraint("month >= 1 AND month <= 12", name="ck_bp_budget_lines_month"),
        sa.CheckConstraint(
            "value_kind in ('KGS','AMOUNT','MORM')", name="ck_bp_budget_lines_value_kind"
        ),
    )
    op.create_unique_constraint(
        "uq_bp_budget_lines_key",
        "bp_budget_lines",
        [
            "division",
            "owner",
            "budget_year",
            "month",
            "customer",
            "country",
            "product_group",
            "value_kind",
        ],
    )
    op.create_index(
        "ix_bp_budget_lines_scope", "bp_budget_lines", ["division", "owner", "budget_year"]
    )

    # bp_actual_lines
    op.create_table(
        "bp_actual_lines",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("division", sa.String(), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column(
            "line_type", sa.String(), nullable=False, server_default=sa.text("'ACTUAL'")
        ),
        sa.Column("sales_rep", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column("customer", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column("country", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column("product_group", sa.Text(), nullable=False),
        sa.Column("value_kind", sa.String(), nullable=False),
        sa.Column("value", _value(), nullable=False),
        sa.Column("uploaded_by", sa.Text(), nullable=True),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.CheckConstraint("month >= 1 AND month <= 12", name="ck_bp_actual_lines_month"),
        sa.CheckConstraint(
            "line_type in ('ACTUAL','ESTIMATE')", name="ck_bp_actual_lines_line_type"
        ),
        sa.CheckConstraint(
            "value_kind in ('KGS','AMOUNT','MORM')", name="ck_bp_actual_lines_value_kind"
        ),
    )
    op.create_index(
        "ix_bp_actual_lines_scope",
        "bp_actual_lines",
        ["division", "year", "line_type", "month"],
    )

    # bp_pricing_rounding
    op.create_table(
        "bp_pricing_rounding",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("division", sa.String(), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("product_group", sa.Text(), nullable=False),
        sa.Column("asp_round", _value(), nullable=True),
        sa.Column("morm_round", _value(), nullable=True),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
    )
    op.create_unique_constraint(
        "uq_bp_pricing_key", "bp_pricing_rounding", ["division", "year", "product_group"]
    )


def downgrade() -> None:
    op.drop_constraint("uq_bp_pricing_key", "bp_pricing_rounding", type_="unique")
    op.drop_table("bp_pricing_rounding")
    op.drop_index("ix_bp_actual_lines_scope", table_name="bp_actual_lines")
    op.drop_table("bp_actual_lines")
    op.drop_index("ix_bp_budget_lines_scope", table_name="bp_budget_lines")
    op.drop_constraint("uq_bp_budget_lines_key", "bp_budget_lines", type_="unique")
    op.drop_table("bp_budget_lines")
