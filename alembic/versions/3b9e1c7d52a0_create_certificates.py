"""create certificates

Revision ID: 3b9e1c7d52a0
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3b9e1c7d52a0"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "certificates",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(length=500), nullable=False),
        sa.Column("recipient_address", sa.String(length=42), nullable=True),
        sa.Column("issuer_address", sa.String(length=42), nullable=False),
        sa.Column("issuer_name", sa.String(length=500), nullable=False),
        sa.Column("certificate_type", sa.String(length=128), nullable=False),
        sa.Column("category", sa.String(length=32), nullable=True),
        sa.Column("sub_category", sa.String(length=128), nullable=True),
        sa.Column("issue_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expiry_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "metadata",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("content_ref", sa.Text(), nullable=False),
        sa.Column("content_fingerprint", sa.String(length=66), nullable=False),
        sa.Column("signature", sa.String(length=132), nullable=False),
        sa.Column(
            "fingerprint_version", sa.Integer(), nullable=False, server_default="1"
        ),
        sa.Column(
            "status", sa.String(length=16), nullable=False, server_default="valid"
        ),
        sa.Column("revocation_reason", sa.Text(), nullable=True),
        sa.Column("revocation_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revoked_by", sa.String(length=42), nullable=True),
        sa.CheckConstraint(
            "status IN ('valid', 'revoked')", name="ck_certificates_status"
        ),
    )
    op.create_index(
        "ix_certificates_issuer_address", "certificates", ["issuer_address"]
    )
    op.create_index(
        "ix_certificates_recipient_address", "certificates", ["recipient_address"]
    )


def downgrade() -> None:
    op.drop_index("ix_certificates_recipient_address", table_name="certificates")
    op.drop_index("ix_certificates_issuer_address", table_name="certificates")
    op.drop_table("certificates")
