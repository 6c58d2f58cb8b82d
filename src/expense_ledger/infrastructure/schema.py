import sqlalchemy as sa


metadata = sa.MetaData()

owners = sa.Table(
    "owners",
    metadata,
    sa.Column("id", sa.String(36), primary_key=True),
    sa.Column("name", sa.Text, nullable=False),
    sa.Column("sort_order", sa.Integer, nullable=False, server_default="0"),
)

categories = sa.Table(
    "categories",
    metadata,
    sa.Column("id", sa.String(36), primary_key=True),
    sa.Column("name", sa.Text, nullable=False),
    sa.Column("transaction_type", sa.String(16), nullable=False),
    sa.Column("sort_order", sa.Integer, nullable=False, server_default="0"),
)

payment_methods = sa.Table(
    "payment_methods",
    metadata,
    sa.Column("id", sa.String(36), primary_key=True),
    sa.Column("name", sa.Text, nullable=False),
    sa.Column("transaction_type", sa.String(16), nullable=False),
    sa.Column("account_type", sa.String(16), nullable=False),
    sa.Column("owner_id", sa.String(36), sa.ForeignKey("owners.id", ondelete="CASCADE"), nullable=False),
    sa.Column("credit_limit", sa.Text, nullable=True),
    sa.Column("outstanding_balance", sa.Text, nullable=True),
    sa.Column("billing_date", sa.Integer, nullable=True),
    sa.Column("balance", sa.Text, nullable=True),
    sa.Column("sort_order", sa.Integer, nullable=False, server_default="0"),
    sa.Index("idx_payment_methods_owner_id", "owner_id"),
)

bills = sa.Table(
    "bills",
    metadata,
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
    sa.Index("idx_bills_created_at", "created_at"),
    sa.Index("idx_bills_owner_id", "owner_id"),
    sa.Index("idx_bills_payment_method_id", "payment_method_id"),
)

bill_categories = sa.Table(
    "bill_categories",
    metadata,
    sa.Column("bill_id", sa.String(36), sa.ForeignKey("bills.id", ondelete="CASCADE"), primary_key=True),
    sa.Column(
        "category_id",
        sa.String(36),
        sa.ForeignKey("categories.id", ondelete="RESTRICT"),
        primary_key=True,
    ),
    sa.Index("idx_bill_categories_category_id", "category_id"),
)

# Child tables first.
DELETE_ORDER = ["bill_categories", "bills", "payment_methods", "categories", "owners"]
