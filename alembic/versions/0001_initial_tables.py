"""Create products, access_gates, download_tokens and redemption_records tables

Revision ID: 0001
Revises:
Create Date: 2026-10-18

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # Catalog (read-only for this service)
    op.create_table(
        "products",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("access_type", sa.String(20), nullable=False),
        sa.Column("is_active", sa.Boolean, default=True, nullable=False),
        sa.Column("asset_location", sa.String(1024), nullable=False),
        sa.Column("created_at", sa.DateTime, nullable=False),
    )

    op.create_table(
        "access_gates",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column(
            "product_id",
            sa.String(64),
            sa.ForeignKey("products.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("gate_type", sa.String(20), nullable=False),
        sa.Column("custom_policy_ref", sa.String(255), nullable=True),
        sa.Column("custom_message", sa.Text, nullable=True),
        sa.Column("is_enabled", sa.Boolean, default=True, nullable=False),
    )
    op.create_index("ix_access_gates_product_id", "access_gates", ["product_id"])

    op.create_table(
        "download_tokens",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("token_prefix", sa.String(16), nullable=False),
        sa.Column("token_hash", sa.String(128), nullable=False),
        sa.Column("product_id", sa.String(64), sa.ForeignKey("products.id"), nullable=False),
        sa.Column("holder_identity", sa.String(320), nullable=False),
        sa.Column(
            "gate_id",
            sa.String(36),
            sa.ForeignKey("access_gates.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("issued_at", sa.DateTime, nullable=False),
        sa.Column("expires_at", sa.DateTime, nullable=True),
        sa.Column("max_redemptions", sa.Integer, nullable=False),
        sa.Column("redemption_count", sa.Integer, nullable=False),
        sa.Column("is_revoked", sa.Boolean, default=False, nullable=False),
        sa.Column("revoked_at", sa.DateTime, nullable=True),
        sa.CheckConstraint("max_redemptions >= 1", name="ck_download_tokens_max_redemptions"),
        sa.CheckConstraint(
            "redemption_count >= 0 AND redemption_count <= max_redemptions",
            name="ck_download_tokens_redemption_count",
        ),
    )
    # Unique prefix is the namespace-wide collision check
    op.create_index(
        "ix_download_tokens_token_prefix", "download_tokens", ["token_prefix"], unique=True
    )
    op.create_index("ix_download_tokens_product_id", "download_tokens", ["product_id"])
    op.create_index("ix_download_tokens_expires_at", "download_tokens", ["expires_at"])
    op.create_index("ix_download_tokens_gate_id", "download_tokens", ["gate_id"])

    op.create_table(
        "redemption_records",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "token_id",
            sa.String(36),
            sa.ForeignKey("download_tokens.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("redeemed_at", sa.DateTime, nullable=False),
        sa.Column("outcome", sa.String(20), nullable=False),
    )
    op.create_index("ix_redemption_records_token_id", "redemption_records", ["token_id"])


def downgrade() -> None:
    op.drop_index("ix_redemption_records_token_id", table_name="redemption_records")
    op.drop_table("redemption_records")

    op.drop_index("ix_download_tokens_gate_id", table_name="download_tokens")
    op.drop_index("ix_download_tokens_expires_at", table_name="download_tokens")
    op.drop_index("ix_download_tokens_product_id", table_name="download_tokens")
    op.drop_index("ix_download_tokens_token_prefix", table_name="download_tokens")
    op.drop_table("download_tokens")

    op.drop_index("ix_access_gates_product_id", table_name="access_gates")
    op.drop_table("access_gates")

    op.drop_table("products")
