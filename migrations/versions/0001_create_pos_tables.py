"""create products and pos sale tables

Revision ID: 0001_create_pos_tables
Revises:
Create Date: 2026-03-02 10:00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0001_create_pos_tables"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

SALE_STATUSES = ("open", "pending_payment", "completed", "cancelled")
PAYMENT_METHODS = ("cash", "debit", "credit", "pix", "voucher", "transfer", "other")


def upgrade() -> None:
    op.create_table(
        "products",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("tenant_id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=160), nullable=False),
        sa.Column("sku", sa.String(length=40), nullable=True),
        sa.Column("unit", sa.String(length=12), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("price_sale", sa.Numeric(12, 4), nullable=False),
        sa.Column("tax_rate", sa.Numeric(5, 2), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id", "sku", name="uq_product_tenant_sku"),
    )
    op.create_index("ix_products_tenant_id", "products", ["tenant_id"])

    op.create_table(
        "pos_sales",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("tenant_id", sa.Uuid(), nullable=False),
        sa.Column("operator_id", sa.Uuid(), nullable=False),
        sa.Column("status", sa.Enum(*SALE_STATUSES, name="pos_sale_status"), nullable=False),
        sa.Column("customer_name", sa.String(length=160), nullable=True),
        sa.Column("customer_tax_id", sa.String(length=32), nullable=True),
        sa.Column("customer_email", sa.String(length=160), nullable=True),
        sa.Column("notes", sa.String(length=500), nullable=True),
        sa.Column("total_gross", sa.Numeric(14, 2), nullable=False),
        sa.Column("total_discount", sa.Numeric(14, 2), nullable=False),
        sa.Column("total_tax", sa.Numeric(14, 2), nullable=False),
        sa.Column("total_net", sa.Numeric(14, 2), nullable=False),
        sa.Column("total_paid", sa.Numeric(14, 2), nullable=False),
        sa.Column("change_due", sa.Numeric(14, 2), nullable=False),
        sa.Column("access_key", sa.String(length=44), nullable=False),
        sa.Column("receipt_number", sa.String(length=32), nullable=True),
        sa.Column("qr_code_data", sa.String(length=255), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("opened_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("access_key"),
    )
    op.create_index("ix_pos_sales_tenant_id", "pos_sales", ["tenant_id"])
    op.create_index("ix_pos_sales_operator_id", "pos_sales", ["operator_id"])
    op.create_index("ix_pos_sales_status", "pos_sales", ["status"])
    op.create_index("ix_pos_sales_closed_at", "pos_sales", ["closed_at"])

    op.create_table(
        "pos_sale_items",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("tenant_id", sa.Uuid(), nullable=False),
        sa.Column("sale_id", sa.Uuid(), nullable=False),
        sa.Column("line_number", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Uuid(), nullable=False),
        sa.Column("product_name", sa.String(length=160), nullable=False),
        sa.Column("sku", sa.String(length=40), nullable=True),
        sa.Column("unit_label", sa.String(length=12), nullable=False),
        sa.Column("quantity", sa.Numeric(14, 3), nullable=False),
        sa.Column("unit_price", sa.Numeric(14, 4), nullable=False),
        sa.Column("discount_value", sa.Numeric(14, 2), nullable=False),
        sa.Column("tax_value", sa.Numeric(14, 2), nullable=False),
        sa.Column("gross_total", sa.Numeric(14, 2), nullable=False),
        sa.Column("net_total", sa.Numeric(14, 2), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["sale_id"], ["pos_sales.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("sale_id", "line_number", name="uq_pos_sale_item_line"),
    )
    op.create_index("ix_pos_sale_items_tenant_id", "pos_sale_items", ["tenant_id"])
    op.create_index("ix_pos_sale_items_sale_id", "pos_sale_items", ["sale_id"])
    op.create_index("ix_pos_sale_items_product_id", "pos_sale_items", ["product_id"])

    op.create_table(
        "pos_sale_payments",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("tenant_id", sa.Uuid(), nullable=False),
        sa.Column("sale_id", sa.Uuid(), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("method", sa.Enum(*PAYMENT_METHODS, name="pos_payment_method"), nullable=False),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("transaction_reference", sa.String(length=120), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["sale_id"], ["pos_sales.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("sale_id", "sequence", name="uq_pos_sale_payment_sequence"),
    )
    op.create_index("ix_pos_sale_payments_tenant_id", "pos_sale_payments", ["tenant_id"])
    op.create_index("ix_pos_sale_payments_sale_id", "pos_sale_payments", ["sale_id"])
    op.create_index("ix_pos_sale_payments_method", "pos_sale_payments", ["method"])


def downgrade() -> None:
    op.drop_table("pos_sale_payments")
    op.drop_table("pos_sale_items")
    op.drop_table("pos_sales")
    op.drop_table("products")
    sa.Enum(name="pos_payment_method").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="pos_sale_status").drop(op.get_bind(), checkfirst=True)
