"""Initial ledger schema: products, stock movements, ledger, void requests

Revision ID: 20261019_initial_ledger
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_initial_ledger"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("barcode", sa.String(64), nullable=True),
        sa.Column("price_cents", sa.Integer(), nullable=False),
        sa.Column("unit_cost_cents", sa.Integer(), nullable=True),
        sa.Column("stock_on_hand", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("low_stock_threshold", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("1")),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.CheckConstraint("stock_on_hand >= 0", name="ck_products_stock_non_negative"),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("products", schema=None) as batch_op:
        batch_op.create_index("ix_products_barcode", ["barcode"], unique=False)
        batch_op.create_index("ix_products_active_name", ["is_active", "name"], unique=False)

    op.create_table(
        "stock_movements",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("type", sa.String(16), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("before_stock", sa.Integer(), nullable=False),
        sa.Column("after_stock", sa.Integer(), nullable=False),
        sa.Column("ref_id", sa.String(64), nullable=True),
        sa.Column("reason", sa.String(255), nullable=True),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("stock_movements", schema=None) as batch_op:
        batch_op.create_index("ix_stock_movements_product_id", ["product_id"], unique=False)
        batch_op.create_index("ix_stock_movements_type", ["type"], unique=False)
        batch_op.create_index("ix_stock_movements_ref_id", ["ref_id"], unique=False)
        batch_op.create_index("ix_stock_movements_created_at", ["created_at"], unique=False)
        batch_op.create_index("ix_stock_movements_product_created", ["product_id", "created_at"], unique=False)

    op.create_table(
        "ledger_transactions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("ref_id", sa.String(64), nullable=False),
        sa.Column("kind", sa.String(16), nullable=False),
        sa.Column("correlation_ts", sa.BigInteger(), nullable=False),
        sa.Column("voids_transaction_id", sa.Integer(), nullable=True),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("approved_by_user_id", sa.Integer(), nullable=True),
        sa.Column("reason", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["voids_transaction_id"], ["ledger_transactions.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("ref_id", name="uq_ledger_transactions_ref_id"),
        sa.UniqueConstraint("voids_transaction_id", name="uq_ledger_transactions_voids"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("ledger_transactions", schema=None) as batch_op:
        batch_op.create_index("ix_ledger_transactions_kind", ["kind"], unique=False)
        batch_op.create_index("ix_ledger_transactions_created_at", ["created_at"], unique=False)
        batch_op.create_index("ix_ledger_transactions_kind_ts", ["kind", "correlation_ts"], unique=False)

    op.create_table(
        "ledger_records",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("transaction_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("product_name", sa.String(255), nullable=True),
        sa.Column("product_barcode", sa.String(64), nullable=True),
        sa.Column("unit_cost_cents", sa.Integer(), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price_cents", sa.Integer(), nullable=False),
        sa.Column("total_amount_cents", sa.Integer(), nullable=False),
        sa.Column("ref_id", sa.String(64), nullable=False),
        sa.Column("original_record_id", sa.Integer(), nullable=True),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("reason", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.ForeignKeyConstraint(["transaction_id"], ["ledger_transactions.id"]),
        sa.ForeignKeyConstraint(["original_record_id"], ["ledger_records.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("ledger_records", schema=None) as batch_op:
        batch_op.create_index("ix_ledger_records_transaction_id", ["transaction_id"], unique=False)
        batch_op.create_index("ix_ledger_records_ref_id", ["ref_id"], unique=False)
        batch_op.create_index("ix_ledger_records_original_record_id", ["original_record_id"], unique=False)
        batch_op.create_index("ix_ledger_records_created_at", ["created_at"], unique=False)
        batch_op.create_index("ix_ledger_records_product_created", ["product_id", "created_at"], unique=False)

    op.create_table(
        "void_requests",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("transaction_no", sa.String(64), nullable=False),
        sa.Column("reason", sa.String(255), nullable=True),
        sa.Column("lines", sa.Text(), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("requested_by_user_id", sa.Integer(), nullable=True),
        sa.Column("decided_by_user_id", sa.Integer(), nullable=True),
        sa.Column("decided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )

    with op.batch_alter_table("void_requests", schema=None) as batch_op:
        batch_op.create_index("ix_void_requests_transaction_no", ["transaction_no"], unique=False)
        batch_op.create_index("ix_void_requests_status_created", ["status", "created_at"], unique=False)


def downgrade():
    with op.batch_alter_table("void_requests", schema=None) as batch_op:
        batch_op.drop_index("ix_void_requests_status_created")
        batch_op.drop_index("ix_void_requests_transaction_no")
    op.drop_table("void_requests")

    with op.batch_alter_table("ledger_records", schema=None) as batch_op:
        batch_op.drop_index("ix_ledger_records_product_created")
        batch_op.drop_index("ix_ledger_records_created_at")
        batch_op.drop_index("ix_ledger_records_original_record_id")
        batch_op.drop_index("ix_ledger_records_ref_id")
        batch_op.drop_index("ix_ledger_records_transaction_id")
    op.drop_table("ledger_records")

    with op.batch_alter_table("ledger_transactions", schema=None) as batch_op:
        batch_op.drop_index("ix_ledger_transactions_kind_ts")
        batch_op.drop_index("ix_ledger_transactions_created_at")
        batch_op.drop_index("ix_ledger_transactions_kind")
    op.drop_table("ledger_transactions")

    with op.batch_alter_table("stock_movements", schema=None) as batch_op:
        batch_op.drop_index("ix_stock_movements_product_created")
        batch_op.drop_index("ix_stock_movements_created_at")
        batch_op.drop_index("ix_stock_movements_ref_id")
        batch_op.drop_index("ix_stock_movements_type")
        batch_op.drop_index("ix_stock_movements_product_id")
    op.drop_table("stock_movements")

    with op.batch_alter_table("products", schema=None) as batch_op:
        batch_op.drop_index("ix_products_active_name")
        batch_op.drop_index("ix_products_barcode")
    op.drop_table("products")
