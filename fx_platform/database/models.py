"""SQLAlchemy database models for the FX platform."""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from fx_platform.core.money import ZERO, Currency

# SQLite only autoincrements INTEGER PRIMARY KEY columns
Identifier = BigInteger().with_variant(Integer, "sqlite")
Money = Numeric(19, 2)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class Account(Base):
    """
    Multi-currency balance record, one per user.

    ``lock_version`` increases by one on every committed balance change and is
    compared at commit time, so a write based on a stale read never lands.
    """

    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(Identifier, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, unique=True, nullable=False, index=True)
    usd_balance: Mapped[Decimal] = mapped_column(Money, nullable=False, default=ZERO)
    ngn_balance: Mapped[Decimal] = mapped_column(Money, nullable=False, default=ZERO)
    usdc_balance: Mapped[Decimal] = mapped_column(Money, nullable=False, default=ZERO)
    lock_version: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        CheckConstraint("usd_balance >= 0", name="non_negative_usd"),
        CheckConstraint("ngn_balance >= 0", name="non_negative_ngn"),
        CheckConstraint("usdc_balance >= 0", name="non_negative_usdc"),
    )

    BALANCE_COLUMNS = {
        Currency.USD: "usd_balance",
        Currency.NGN: "ngn_balance",
        Currency.USDC: "usdc_balance",
    }

    @property
    def balances(self) -> Dict[Currency, Decimal]:
        """Balances keyed by currency."""
        return {
            currency: getattr(self, column)
            for currency, column in self.BALANCE_COLUMNS.items()
        }

    def balance(self, currency: Currency) -> Decimal:
        return getattr(self, self.BALANCE_COLUMNS[Currency(currency)])

    def __repr__(self) -> str:
        """String representation of Account."""
        return (
            f"<Account(user_id={self.user_id}, usd={self.usd_balance}, "
            f"ngn={self.ngn_balance}, usdc={self.usdc_balance}, "
            f"lock_version={self.lock_version})>"
        )


class Payment(Base):
    """
    Payment records table.

    Status moves PENDING -> PROCESSING -> COMPLETED | FAILED, and
    COMPLETED -> REFUNDED. Every change is paired with an outbox event.
    """

    __tablename__ = "payments"

    id: Mapped[int] = mapped_column(Identifier, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    currency: Mapped[str] = mapped_column(String(10), nullable=False)
    payment_type: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    recipient_user_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        CheckConstraint("amount > 0", name="positive_amount"),
        CheckConstraint(
            "status IN ('PENDING', 'PROCESSING', 'COMPLETED', 'FAILED', 'REFUNDED')",
            name="valid_status",
        ),
        Index("idx_payments_user_status", "user_id", "status"),
    )

    def __repr__(self) -> str:
        """String representation of Payment."""
        return (
            f"<Payment(id={self.id}, user_id={self.user_id}, "
            f"amount={self.amount} {self.currency}, status={self.status})>"
        )


class OutboxEvent(Base):
    """
    Transactional outbox events table.

    Rows are written in the same transaction as the business change they
    describe and published asynchronously by the outbox publisher. The only
    update a row ever receives is ``published`` going from false to true.
    """

    __tablename__ = "outbox_events"

    id: Mapped[int] = mapped_column(Identifier, primary_key=True, autoincrement=True)
    aggregate_type: Mapped[str] = mapped_column(String(100), nullable=False)
    aggregate_id: Mapped[str] = mapped_column(String(100), nullable=False)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    payload: Mapped[str] = mapped_column(Text, nullable=False)
    published: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    published_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_outbox_unpublished", "published", "created_at"),
        Index("idx_outbox_aggregate", "aggregate_id", "aggregate_type"),
    )

    def __repr__(self) -> str:
        """String representation of OutboxEvent."""
        return (
            f"<OutboxEvent(id={self.id}, type={self.event_type}, "
            f"published={self.published})>"
        )
