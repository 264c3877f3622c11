"""SQLAlchemy table definitions.

These map to the frozen dataclass domain models in certify/models/.
The domain models stay as-is; these tables are the persistence layer.
Repos convert between SQLAlchemy rows and domain dataclasses.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from certify.db.engine import Base


class CertificateRow(Base):
    __tablename__ = "certificates"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True)
    name: Mapped[str] = mapped_column(String(500), nullable=False)
    # Addresses are stored lowercase so participant lookups are plain equality.
    recipient_address: Mapped[str | None] = mapped_column(String(42), nullable=True)
    issuer_address: Mapped[str] = mapped_column(String(42), nullable=False)
    issuer_name: Mapped[str] = mapped_column(String(500), nullable=False)
    certificate_type: Mapped[str] = mapped_column(String(128), nullable=False)
    category: Mapped[str | None] = mapped_column(String(32), nullable=True)
    sub_category: Mapped[str | None] = mapped_column(String(128), nullable=True)
    issue_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expiry_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    # "metadata" is reserved on declarative classes, hence the attribute name.
    metadata_json: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSONB, nullable=False, default=dict
    )
    content_ref: Mapped[str] = mapped_column(Text, nullable=False)
    content_fingerprint: Mapped[str] = mapped_column(String(66), nullable=False)
    signature: Mapped[str] = mapped_column(String(132), nullable=False)
    fingerprint_version: Mapped[int] = mapped_column(
        Integer, nullable=False, default=1
    )
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default="valid"
    )  # valid|revoked (expired is derived, never stored)
    revocation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    revocation_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    revoked_by: Mapped[str | None] = mapped_column(String(42), nullable=True)

    __table_args__ = (
        Index("ix_certificates_issuer_address", "issuer_address"),
        Index("ix_certificates_recipient_address", "recipient_address"),
    )
