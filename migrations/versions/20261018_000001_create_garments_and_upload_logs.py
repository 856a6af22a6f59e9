"""Create garments and upload_logs tables.

Revision ID: 20261018_000001
Revises: 
Create Date: 2026-10-18 00:00:01.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "20261018_000001"
down_revision = None
branch_labels = None
depends_on = None

DESCRIPTIVE_COLUMNS = (
    "title", "brand", "garment_type", "garment_type_text", "retailer", "occasion", "size",
    "color_family", "price", "stock", "image_url", "product_url", "material", "pattern",
)


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    if not inspector.has_table("upload_logs"):
        op.create_table(
            "upload_logs",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column("filename", sa.Text(), nullable=False),
            sa.Column("uploader_id", sa.String(), nullable=False),
            sa.Column("status", sa.Text(), nullable=False, server_default=sa.text("'processing'")),
            sa.Column("success_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
            sa.Column("error_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.text("now()")),
            sa.Column("completed_at", sa.DateTime(), nullable=True),
            sa.Column("details", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
            sa.CheckConstraint(
                "status IN ('processing','success','partial','failed')",
                name="ck_upload_logs_status",
            ),
            sa.CheckConstraint(
                "success_count >= 0 AND error_count >= 0",
                name="ck_upload_logs_counts",
            ),
        )
        op.create_index("ix_upload_logs_uploader_id", "upload_logs", ["uploader_id"])
        op.create_index("ix_upload_logs_created_at", "upload_logs", ["created_at"])

    if not inspector.has_table("garments"):
        op.create_table(
            "garments",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column("item_code", sa.Text(), nullable=False, unique=True),
            # Cells keep their uploaded type (text or number)
            *[
                sa.Column(name, postgresql.JSONB(none_as_null=True, astext_type=sa.Text()), nullable=True)
                for name in DESCRIPTIVE_COLUMNS
            ],
            sa.Column("attributes", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
            sa.Column("upload_id", sa.String(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.text("now()")),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.text("now()")),
        )
        op.create_index("ix_garments_upload_id", "garments", ["upload_id"])
        op.create_index("ix_garments_brand", "garments", ["brand"])
        op.create_index("ix_garments_retailer", "garments", ["retailer"])


def downgrade() -> None:
    op.drop_table("garments")
    op.drop_table("upload_logs")
