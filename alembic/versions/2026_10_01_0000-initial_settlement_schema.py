"""Initial settlement schema.

Revision ID: 2026_10_01_0000
Revises:
Create Date: 2026-10-01

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "2026_10_01_0000"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create payment, webhook, inventory, transfer and wallet balance tables."""
    # ========================================================================
    # payment_transactions
    # ========================================================================
    op.create_table(
        "payment_transactions",
        sa.Column(
            "id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")
        ),
        sa.Column("payment_reference", sa.String(255), nullable=False),
        sa.Column("provider", sa.String(20), nullable=False),
        sa.Column("session_id", sa.String(255), nullable=True),
        sa.Column("payment_intent_id", sa.String(255), nullable=True),
        sa.Column("token_amount", sa.BigInteger, nullable=False),
        sa.Column("price_per_token", sa.Numeric(18, 8), nullable=False),
        sa.Column("subtotal", sa.Numeric(18, 2), nullable=False),
        sa.Column("processing_fee", sa.Numeric(18, 2), nullable=False, server_default="0"),
        sa.Column("total_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("network", sa.String(50), nullable=False),
        sa.Column("asset_id", sa.BigInteger, nullable=False),
        sa.Column("user_wallet_address", sa.String(58), nullable=False),
        sa.Column("user_email", sa.String(255), nullable=True),
        sa.Column("payment_status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column(
            "token_transfer_status", sa.String(20), nullable=False, server_default="pending"
        ),
        sa.Column("status_note", sa.Text, nullable=True),
        sa.Column("token_transfer_tx_id", sa.String(255), nullable=True),
        sa.Column("token_transfer_error", sa.Text, nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("tokens_transferred_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("token_amount > 0", name="ck_payment_token_amount_positive"),
        sa.CheckConstraint("total_amount >= 0", name="ck_payment_total_non_negative"),
        sa.CheckConstraint(
            "payment_status IN ('pending', 'processing', 'paid', 'monitoring', "
            "'completed', 'failed', 'canceled', 'refunded')",
            name="ck_payment_status_valid",
        ),
        sa.CheckConstraint(
            "token_transfer_status IN ('pending', 'requires_opt_in', 'in_inbox', "
            "'direct_transferred', 'completed', 'failed')",
            name="ck_token_transfer_status_valid",
        ),
        sa.UniqueConstraint("payment_reference", name="uq_payment_reference"),
    )
    op.create_index(
        "idx_payment_transactions_reference", "payment_transactions", ["payment_reference"]
    )
    op.create_index(
        "idx_payment_transactions_wallet", "payment_transactions", ["user_wallet_address"]
    )
    op.create_index("idx_payment_transactions_status", "payment_transactions", ["payment_status"])
    op.create_index("idx_payment_transactions_updated_at", "payment_transactions", ["updated_at"])

    # ========================================================================
    # webhook_events
    # ========================================================================
    op.create_table(
        "webhook_events",
        sa.Column(
            "id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")
        ),
        sa.Column("event_id", sa.String(255), nullable=False),
        sa.Column("provider", sa.String(20), nullable=False),
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("processed", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.UniqueConstraint("event_id", name="uq_webhook_event_id"),
    )
    op.create_index("idx_webhook_events_event_id", "webhook_events", ["event_id"])

    # ========================================================================
    # token_inventory
    # ========================================================================
    op.create_table(
        "token_inventory",
        sa.Column(
            "id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")
        ),
        sa.Column("network", sa.String(50), nullable=False),
        sa.Column("asset_id", sa.BigInteger, nullable=False),
        sa.Column("total_supply", sa.BigInteger, nullable=False, server_default="0"),
        sa.Column("available_balance", sa.BigInteger, nullable=False, server_default="0"),
        sa.Column("reserved_balance", sa.BigInteger, nullable=False, server_default="0"),
        sa.Column("central_wallet_address", sa.String(58), nullable=False),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.CheckConstraint("available_balance >= 0", name="ck_inventory_available_non_negative"),
        sa.CheckConstraint("reserved_balance >= 0", name="ck_inventory_reserved_non_negative"),
        sa.CheckConstraint(
            "available_balance + reserved_balance <= total_supply",
            name="ck_inventory_within_supply",
        ),
        sa.UniqueConstraint("network", "asset_id", name="uq_inventory_network_asset"),
    )

    # ========================================================================
    # inventory_reservations
    # ========================================================================
    op.create_table(
        "inventory_reservations",
        sa.Column(
            "id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")
        ),
        sa.Column(
            "payment_transaction_id",
            UUID(as_uuid=True),
            sa.ForeignKey("payment_transactions.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("network", sa.String(50), nullable=False),
        sa.Column("asset_id", sa.BigInteger, nullable=False),
        sa.Column("amount", sa.BigInteger, nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.CheckConstraint("amount > 0", name="ck_reservation_amount_positive"),
        sa.CheckConstraint(
            "status IN ('active', 'released', 'committed')", name="ck_reservation_status_valid"
        ),
        sa.UniqueConstraint("payment_transaction_id", name="uq_reservation_payment"),
    )

    # ========================================================================
    # token_transfers - append-only audit
    # ========================================================================
    op.create_table(
        "token_transfers",
        sa.Column(
            "id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")
        ),
        sa.Column(
            "payment_transaction_id",
            UUID(as_uuid=True),
            sa.ForeignKey("payment_transactions.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("kind", sa.String(30), nullable=False),
        sa.Column("from_address", sa.String(58), nullable=False),
        sa.Column("to_address", sa.String(58), nullable=False),
        sa.Column("asset_id", sa.BigInteger, nullable=True),
        sa.Column("amount", sa.BigInteger, nullable=False),
        sa.Column("transaction_hash", sa.String(255), nullable=True),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.CheckConstraint("amount >= 0", name="ck_transfer_amount_non_negative"),
    )
    op.create_index("idx_token_transfers_payment", "token_transfers", ["payment_transaction_id"])
    op.create_index("idx_token_transfers_hash", "token_transfers", ["transaction_hash"])

    # ========================================================================
    # user_wallet_balances - advisory cache
    # ========================================================================
    op.create_table(
        "user_wallet_balances",
        sa.Column(
            "id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")
        ),
        sa.Column("wallet_address", sa.String(58), nullable=False),
        sa.Column("network", sa.String(50), nullable=False),
        sa.Column("asset_id", sa.BigInteger, nullable=False),
        sa.Column("balance", sa.BigInteger, nullable=False, server_default="0"),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.UniqueConstraint(
            "wallet_address", "network", "asset_id", name="uq_wallet_balance_identity"
        ),
    )
    op.create_index("idx_wallet_balances_wallet", "user_wallet_balances", ["wallet_address"])


def downgrade() -> None:
    """Drop settlement tables."""
    op.drop_table("user_wallet_balances")
    op.drop_table("token_transfers")
    op.drop_table("inventory_reservations")
    op.drop_table("token_inventory")
    op.drop_table("webhook_events")
    op.drop_table("payment_transactions")
