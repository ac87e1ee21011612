"""SQLAlchemy database models for DPS enrolment transactions."""
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

STATUS_PENDING = "pending"
STATUS_SETTLED = "settled"

# PxPay ResponseText for an authorised purchase
APPROVED_RESPONSE = "APPROVED"


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class DpsTransaction(Base):
    """
    PxPay transaction attempts.

    One row per purchase attempt. The primary key is sent to PxPay as TxnId
    and comes back in the callback to relink it to this row. Request columns
    are written once at creation; response columns are written once when the
    callback is reconciled, which moves ``status`` from pending to settled.
    """

    __tablename__ = "enrol_dps_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    instance_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    course_id: Mapped[int] = mapped_column(Integer, nullable=False)

    # Request
    cost: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    merchant_reference: Mapped[str] = mapped_column(String(64), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    txn_data1: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    txn_data2: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    txn_data3: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=func.now()
    )

    status: Mapped[str] = mapped_column(String(16), nullable=False, default=STATUS_PENDING)

    # Response
    success: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    auth_code: Mapped[str | None] = mapped_column(String(255), nullable=True)
    card_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    card_holder: Mapped[str | None] = mapped_column(String(255), nullable=True)
    card_number: Mapped[str | None] = mapped_column(String(255), nullable=True)
    card_expiry: Mapped[str | None] = mapped_column(String(255), nullable=True)
    client_info: Mapped[str | None] = mapped_column(String(255), nullable=True)
    dps_txn_ref: Mapped[str | None] = mapped_column(String(255), nullable=True)
    txn_mac: Mapped[str | None] = mapped_column(String(255), nullable=True)
    response_text: Mapped[str | None] = mapped_column(String(255), nullable=True)
    settled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint("cost >= 0", name="non_negative_cost"),
        CheckConstraint(
            f"status IN ('{STATUS_PENDING}', '{STATUS_SETTLED}')",
            name="valid_status",
        ),
        CheckConstraint("length(currency) = 3", name="valid_currency"),
        Index("idx_dps_transactions_status_created", "status", "created_at"),
    )

    @property
    def is_settled(self) -> bool:
        return self.status == STATUS_SETTLED

    @property
    def is_approved(self) -> bool:
        """Whether PxPay reported this purchase as successful and approved."""
        return bool(self.success) and self.response_text == APPROVED_RESPONSE

    def __repr__(self) -> str:
        """String representation of DpsTransaction."""
        return (
            f"<DpsTransaction(id={self.id}, user_id={self.user_id}, "
            f"instance_id={self.instance_id}, cost={self.cost} {self.currency}, "
            f"status={self.status})>"
        )
