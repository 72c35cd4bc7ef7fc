"""
Database Models - SQLAlchemy ORM models with strict typing.

NO DICTIONARIES - All columns use Mapped[] type annotations.
"""

from datetime import UTC, datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class PaymentTransaction(Base):
    """
    ORM model for payment_transactions table.

    One row per attempted purchase; created on the first confirmed webhook
    for a payment reference and only ever updated afterwards.
    """

    __tablename__ = "payment_transactions"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)

    # Identity
    payment_reference: Mapped[str] = mapped_column(String(255), nullable=False)
    provider: Mapped[str] = mapped_column(String(20), nullable=False)
    session_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    payment_intent_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Commercial fields
    token_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    price_per_token: Mapped[Decimal] = mapped_column(Numeric(18, 8), nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    processing_fee: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=0)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    # Token / chain
    network: Mapped[str] = mapped_column(String(50), nullable=False)
    asset_id: Mapped[int] = mapped_column(BigInteger, nullable=False)

    # Counterparty
    user_wallet_address: Mapped[str] = mapped_column(String(58), nullable=False)
    user_email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Status
    payment_status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    token_transfer_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="pending"
    )
    status_note: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Audit
    token_transfer_tx_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    token_transfer_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    tokens_transferred_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    transfers: Mapped[list["TokenTransfer"]] = relationship(
        back_populates="payment_transaction", lazy="raise"
    )

    __table_args__ = (
        CheckConstraint("token_amount > 0", name="ck_payment_token_amount_positive"),
        CheckConstraint("total_amount >= 0", name="ck_payment_total_non_negative"),
        CheckConstraint(
            "payment_status IN ('pending', 'processing', 'paid', 'monitoring', "
            "'completed', 'failed', 'canceled', 'refunded')",
            name="ck_payment_status_valid",
        ),
        CheckConstraint(
            "token_transfer_status IN ('pending', 'requires_opt_in', 'in_inbox', "
            "'direct_transferred', 'completed', 'failed')",
            name="ck_token_transfer_status_valid",
        ),
        UniqueConstraint("payment_reference", name="uq_payment_reference"),
        Index("idx_payment_transactions_reference", "payment_reference"),
        Index("idx_payment_transactions_wallet", "user_wallet_address"),
        Index("idx_payment_transactions_status", "payment_status"),
        Index("idx_payment_transactions_updated_at", "updated_at"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<PaymentTransaction(id={self.id}, reference={self.payment_reference}, "
            f"payment_status={self.payment_status}, "
            f"token_transfer_status={self.token_transfer_status})>"
        )


class WebhookEvent(Base):
    """
    ORM model for webhook_events table.

    One row per externally observed notification.
    """

    __tablename__ = "webhook_events"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    event_id: Mapped[str] = mapped_column(String(255), nullable=False)
    provider: Mapped[str] = mapped_column(String(20), nullable=False)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    processed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        UniqueConstraint("event_id", name="uq_webhook_event_id"),
        Index("idx_webhook_events_event_id", "event_id"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<WebhookEvent(event_id={self.event_id}, processed={self.processed})>"


class TokenInventory(Base):
    """
    ORM model for token_inventory table.

    One row per (network, asset_id). Mutated only through the inventory
    manager's conditional updates.
    """

    __tablename__ = "token_inventory"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    network: Mapped[str] = mapped_column(String(50), nullable=False)
    asset_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    total_supply: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    available_balance: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    reserved_balance: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    central_wallet_address: Mapped[str] = mapped_column(String(58), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("available_balance >= 0", name="ck_inventory_available_non_negative"),
        CheckConstraint("reserved_balance >= 0", name="ck_inventory_reserved_non_negative"),
        CheckConstraint(
            "available_balance + reserved_balance <= total_supply",
            name="ck_inventory_within_supply",
        ),
        UniqueConstraint("network", "asset_id", name="uq_inventory_network_asset"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<TokenInventory(network={self.network}, asset_id={self.asset_id}, "
            f"available={self.available_balance}, reserved={self.reserved_balance})>"
        )


class InventoryReservation(Base):
    """
    ORM model for inventory_reservations table.

    At most one reservation per payment; release and commit flip it out of
    'active' exactly once.
    """

    __tablename__ = "inventory_reservations"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    payment_transaction_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("payment_transactions.id", ondelete="RESTRICT"),
        nullable=False,
    )
    network: Mapped[str] = mapped_column(String(50), nullable=False)
    asset_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_reservation_amount_positive"),
        CheckConstraint(
            "status IN ('active', 'released', 'committed')", name="ck_reservation_status_valid"
        ),
        UniqueConstraint("payment_transaction_id", name="uq_reservation_payment"),
    )


class TokenTransfer(Base):
    """
    ORM model for token_transfers table.

    Append-only audit of on-chain movements; retried attempts add new rows.
    """

    __tablename__ = "token_transfers"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    payment_transaction_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("payment_transactions.id", ondelete="RESTRICT"),
        nullable=False,
    )
    kind: Mapped[str] = mapped_column(String(30), nullable=False)
    from_address: Mapped[str] = mapped_column(String(58), nullable=False)
    to_address: Mapped[str] = mapped_column(String(58), nullable=False)
    asset_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)  # None = native
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    transaction_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    payment_transaction: Mapped[PaymentTransaction] = relationship(back_populates="transfers")

    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_transfer_amount_non_negative"),
        Index("idx_token_transfers_payment", "payment_transaction_id"),
        Index("idx_token_transfers_hash", "transaction_hash"),
    )


class UserWalletBalance(Base):
    """
    ORM model for user_wallet_balances table.

    Advisory cache of settled tokens per wallet - never the source of truth
    for on-chain holdings.
    """

    __tablename__ = "user_wallet_balances"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    wallet_address: Mapped[str] = mapped_column(String(58), nullable=False)
    network: Mapped[str] = mapped_column(String(50), nullable=False)
    asset_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    balance: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        UniqueConstraint(
            "wallet_address", "network", "asset_id", name="uq_wallet_balance_identity"
        ),
        Index("idx_wallet_balances_wallet", "wallet_address"),
    )
