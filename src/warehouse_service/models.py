"""Database models for warehouse inventory management."""
from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from .database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetime normalised to UTC.

    SQLite drops the offset of an aware value without converting it, so values
    are converted to UTC before binding. Naive values are taken to be UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None or value.tzinfo is not None:
            return value
        return value.replace(tzinfo=timezone.utc)


class Material(Base):
    __tablename__ = "materials"
    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_materials_quantity_non_negative"),
        CheckConstraint(
            "reorder_threshold IS NULL OR reorder_threshold >= 0",
            name="ck_materials_reorder_threshold_non_negative",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    material_code: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    description: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    category: Mapped[str] = mapped_column(String(128), default="", nullable=False)
    unit: Mapped[str] = mapped_column(String(32), default="pcs", nullable=False)
    quantity: Mapped[float] = mapped_column(Float, default=0, nullable=False)
    location: Mapped[str] = mapped_column(String(128), default="", nullable=False)
    sap_quantity: Mapped[float | None] = mapped_column(Float)
    reorder_threshold: Mapped[float | None] = mapped_column(Float)
    last_updated: Mapped[datetime] = mapped_column(
        UTCDateTime(), default=utcnow, onupdate=utcnow, nullable=False
    )


class MaterialTransaction(Base):
    """Stock movement history.

    ``material_code`` references a material by value so history survives the
    material's deletion, and ``material_description`` is a snapshot taken when
    the movement was recorded.
    """

    __tablename__ = "transactions"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_transactions_quantity_positive"),
        CheckConstraint(
            "transaction_type IN ('receiving', 'issuance')",
            name="ck_transactions_type",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    material_code: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    material_description: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    transaction_type: Mapped[str] = mapped_column(String(16), nullable=False)
    quantity: Mapped[float] = mapped_column(Float, nullable=False)
    unit: Mapped[str] = mapped_column(String(32), default="pcs", nullable=False)
    date: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)
    user: Mapped[str] = mapped_column(String(128), default="", nullable=False)
    reference: Mapped[str] = mapped_column(String(128), default="", nullable=False)
    notes: Mapped[str | None] = mapped_column(Text)


class Defect(Base):
    __tablename__ = "defects"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_defects_quantity_positive"),
        CheckConstraint(
            "severity IN ('low', 'medium', 'high', 'critical')", name="ck_defects_severity"
        ),
        CheckConstraint(
            "status IN ('open', 'in-progress', 'resolved')", name="ck_defects_status"
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    material_code: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    material_description: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    defect_type: Mapped[str] = mapped_column(String(128), nullable=False)
    quantity: Mapped[float] = mapped_column(Float, nullable=False)
    unit: Mapped[str] = mapped_column(String(32), default="pcs", nullable=False)
    severity: Mapped[str] = mapped_column(String(16), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    reported_by: Mapped[str] = mapped_column(String(128), default="", nullable=False)
    reported_date: Mapped[datetime] = mapped_column(
        UTCDateTime(), default=utcnow, nullable=False
    )
    status: Mapped[str] = mapped_column(String(16), default="open", nullable=False)
    resolution_notes: Mapped[str | None] = mapped_column(Text)


class Alert(Base):
    __tablename__ = "alerts"
    __table_args__ = (
        CheckConstraint(
            "type IN ('mismatch', 'low-stock', 'discrepancy', 'defect', 'transaction')",
            name="ck_alerts_type",
        ),
        CheckConstraint(
            "severity IN ('warning', 'error', 'critical')", name="ck_alerts_severity"
        ),
        # One pending alert per (type, material_code).
        Index(
            "uq_alerts_pending_type_material",
            "type",
            "material_code",
            unique=True,
            sqlite_where=text("acknowledged = 0"),
            postgresql_where=text("NOT acknowledged"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    material_code: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    material_description: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    local_quantity: Mapped[float] = mapped_column(Float, default=0, nullable=False)
    sap_quantity: Mapped[float] = mapped_column(Float, default=0, nullable=False)
    variance: Mapped[float] = mapped_column(Float, default=0, nullable=False)
    severity: Mapped[str] = mapped_column(String(16), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), default=utcnow, nullable=False
    )
    acknowledged: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    related_id: Mapped[str | None] = mapped_column(String(64))


class User(Base):
    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint(
            "role IN ('admin', 'manager', 'staff', 'viewer')", name="ck_users_role"
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(16), default="viewer", nullable=False)
    department: Mapped[str | None] = mapped_column(String(128))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), default=utcnow, nullable=False
    )


__all__ = [
    "Alert",
    "Defect",
    "Material",
    "MaterialTransaction",
    "UTCDateTime",
    "User",
    "utcnow",
]
