from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import DateTime, ForeignKey, Index, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tiffin.core.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CustomerCredit(Base):
    """Stored value owed to a customer, usually the excess of a payment."""

    __tablename__ = "credit_customer"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    customer_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    source_payment_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("payment_record.id", ondelete="SET NULL"),
        nullable=True,
    )
    original_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    current_balance: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    refunded_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"), server_default="0")
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="available", server_default="available")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    version_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    usages: Mapped[list[CreditUsage]] = relationship(
        "tiffin.business.credit.models.CreditUsage",
        back_populates="credit",
        order_by="CreditUsage.created_at",
    )

    __mapper_args__ = {"version_id_col": version_id}
    __table_args__ = (
        Index("ix_credit_customer_status", "customer_id", "status"),
        Index("ix_credit_customer_source_payment", "source_payment_id"),
    )


class CreditUsage(Base):
    __tablename__ = "credit_usage"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    credit_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("credit_customer.id", ondelete="RESTRICT"),
        nullable=False,
    )
    billing_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("billing_monthly.id", ondelete="RESTRICT"),
        nullable=False,
    )
    payment_record_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("payment_record.id", ondelete="SET NULL"),
        nullable=True,
    )
    amount_used: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    reversed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    credit: Mapped[CustomerCredit] = relationship("tiffin.business.credit.models.CustomerCredit", back_populates="usages")

    __table_args__ = (
        Index("ix_credit_usage_credit", "credit_id"),
        Index("ix_credit_usage_payment", "payment_record_id"),
    )
