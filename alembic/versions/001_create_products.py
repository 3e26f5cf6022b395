"""create products

Revision ID: 001_create_products
Revises: 
Create Date: 2026-10-19

"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "001_create_products"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("product_name", sa.String(length=255), nullable=False),
        sa.Column("product_description", sa.Text(), nullable=True),
        sa.Column("product_images", postgresql.ARRAY(sa.Text()), nullable=True),
        sa.Column("product_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("NOW()"), nullable=False),
    )

    op.create_index("ix_products_user_id", "products", ["user_id"])
    # The producer scans only rows that carry images.
    op.create_index(
        "ix_products_with_images",
        "products",
        ["id"],
        postgresql_where=sa.text("product_images IS NOT NULL"),
    )


def downgrade() -> None:
    op.drop_index("ix_products_with_images", table_name="products")
    op.drop_index("ix_products_user_id", table_name="products")
    op.drop_table("products")
