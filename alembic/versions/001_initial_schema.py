"""Initial schema: owners, categories, payment methods, bills, bill categories

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op


revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "owners",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.Text, nullable=False),
        sa.Column("sort_order", sa.Integer, nullable=False, server_default="0"),
    )

    op.create_table(
        "categories",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.Text, nullable=False),
        sa.Column("transaction_type", sa.String(16), nullable=False),
        sa.Column("sort_order", sa.Integer, nullable=False, server_default="0"),
    )

    op.create_table(
        "payment_methods",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("name", sa.Text, nullable=False),
        sa.Column("transaction_type", sa.String(16), nullable=False),
        sa.Column("account_type", sa.String(16), nullable=False),
        sa.Column("owner_id", sa.String(36), sa.ForeignKey("owners.id", ondelete="CASCADE"), nullable=False),
        # Decimal strings; credit columns and balance are mutually exclusive by account_type
        sa.Column("credit_limit", sa.Text, nullable=True),
        sa.Column("outstanding_balance", sa.Text, nullable=True),
        sa.Column("billing_date", sa.Integer, nullable=True),
        sa.Column("balance", sa.Text, nullable=True),
        sa.Column("sort_order", sa.Integer, nullable=False, server_default="0"),
    )
    op.create_index("idx_payment_methods_owner_id", "payment_methods", ["owner_id"])

    op.create_table(
        "bills",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("amount", sa.Text, nullable=False),
        sa.Column(
            "payment_method_id",
            sa.String(36),
            sa.ForeignKey("payment_methods.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("owner_id", sa.String(36), sa.ForeignKey("owners.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("note", sa.Text, nullable=True),
        sa.Column("affects_balance", sa.Integer, nullable=False, server_default="1"),
        sa.Column("created_at", sa.Text, nullable=False),
        sa.Column("updated_at", sa.Text, nullable=False),
    )
    op.create_index("idx_bills_created_at", "bills", ["created_at"])
    op.create_index("idx_bills_owner_id", "bills", ["owner_id"])
    op.create_index("idx_bills_payment_method_id", "bills", ["payment_method_id"])

    op.create_table(
        "bill_categories",
        sa.Column("bill_id", sa.String(36), sa.ForeignKey("bills.id", ondelete="CASCADE"), primary_key=True),
        sa.Column(
            "category_id",
            sa.String(36),
            sa.ForeignKey("categories.id", ondelete="RESTRICT"),
            primary_key=True,
        ),
    )
    op.create_index("idx_bill_categories_category_id", "bill_categories", ["category_id"])


def downgrade() -> None:
    op.drop_table("bill_categories")
    op.drop_table("bills")
    op.drop_table("payment_methods")
    op.drop_table("categories")
    op.drop_table("owners")
