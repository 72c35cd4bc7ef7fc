"""
Transaction Ledger - Persisted payment state machine.

Status writes lock the payment row and are checked against the transition
rules in tokenpay.models.domain; an illegal write raises StateConflictError
and leaves the row untouched. Nothing here commits; callers own the
transaction.
"""

from collections.abc import Iterable
from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from tokenpay.db.models import PaymentTransaction, TokenTransfer, UserWalletBalance, utc_now
from tokenpay.exceptions import PaymentNotFoundError, StateConflictError
from tokenpay.models.api import (
    BalanceDirection,
    PaymentStatus,
    TokenTransferStatus,
    TransferKind,
    TransferRecordStatus,
)
from tokenpay.models.domain import (
    PaymentClaim,
    PaymentEvent,
    PaymentStatistics,
    is_payment_transition_allowed,
    is_transfer_transition_allowed,
)

logger = get_logger(__name__)

_DELIVERED_TRANSFER_STATUSES = (
    TokenTransferStatus.DIRECT_TRANSFERRED.value,
    TokenTransferStatus.IN_INBOX.value,
    TokenTransferStatus.COMPLETED.value,
)


class TransactionLedger:
    """Data access and state transitions for payment transactions."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create_payment_transaction(
        self, event: PaymentEvent, asset_id: int
    ) -> PaymentClaim:
        """
        Insert the payment row for event, or detect the existing one.

        The unique payment_reference makes concurrent deliveries race-safe:
        exactly one caller gets created=True.
        """
        stmt = (
            pg_insert(PaymentTransaction)
            .values(
                payment_reference=event.payment_reference,
                provider=event.provider.value,
                session_id=event.session_id,
                payment_intent_id=event.payment_intent_id,
                token_amount=event.token_amount,
                price_per_token=event.price_per_token,
                subtotal=event.subtotal,
                processing_fee=event.processing_fee,
                total_amount=event.total_amount,
                currency=event.currency,
                network=event.network,
                asset_id=asset_id,
                user_wallet_address=event.user_wallet_address,
                user_email=event.user_email,
                payment_status=PaymentStatus.PENDING.value,
                token_transfer_status=TokenTransferStatus.PENDING.value,
            )
            .on_conflict_do_nothing(index_elements=[PaymentTransaction.payment_reference])
            .returning(PaymentTransaction.id)
        )
        payment_id = (await self.session.execute(stmt)).scalar_one_or_none()
        if payment_id is not None:
            logger.info(
                "payment_transaction_created",
                payment_id=str(payment_id),
                payment_reference=event.payment_reference,
                token_amount=event.token_amount,
            )
            return PaymentClaim(
                payment_id=payment_id, created=True, payment_status=PaymentStatus.PENDING
            )

        existing = await self.get_by_reference(event.payment_reference)
        if existing is None:
            raise PaymentNotFoundError(event.payment_reference)
        logger.info(
            "payment_transaction_exists",
            payment_id=str(existing.id),
            payment_reference=event.payment_reference,
            payment_status=existing.payment_status,
        )
        return PaymentClaim(
            payment_id=existing.id,
            created=False,
            payment_status=PaymentStatus(existing.payment_status),
        )

    async def get(self, payment_id: UUID) -> PaymentTransaction | None:
        """Fetch a payment by id."""
        stmt = select(PaymentTransaction).where(PaymentTransaction.id == payment_id)
        return (await self.session.execute(stmt)).scalar_one_or_none()

    async def get_by_reference(self, payment_reference: str) -> PaymentTransaction | None:
        """Fetch a payment by its processor-independent reference."""
        stmt = select(PaymentTransaction).where(
            PaymentTransaction.payment_reference == payment_reference
        )
        return (await self.session.execute(stmt)).scalar_one_or_none()

    async def lock(self, payment_id: UUID) -> PaymentTransaction:
        """
        SELECT ... FOR UPDATE on the payment row.

        Raises:
            PaymentNotFoundError: No such payment
        """
        stmt = (
            select(PaymentTransaction)
            .where(PaymentTransaction.id == payment_id)
            .with_for_update()
        )
        payment = (await self.session.execute(stmt)).scalar_one_or_none()
        if payment is None:
            raise PaymentNotFoundError(str(payment_id))
        return payment

    async def update_payment_status(
        self, payment_id: UUID, status: PaymentStatus, note: str | None = None
    ) -> PaymentTransaction:
        """
        Move payment_status, enforcing the transition rules.

        Raises:
            StateConflictError: The write would leave a terminal status
        """
        payment = await self.lock(payment_id)
        current = PaymentStatus(payment.payment_status)
        if not is_payment_transition_allowed(current, status):
            logger.warning(
                "payment_state_conflict",
                payment_id=str(payment_id),
                current=current.value,
                requested=status.value,
            )
            raise StateConflictError(payment_id, "payment_status", current.value, status.value)

        payment.payment_status = status.value
        if note is not None:
            payment.status_note = note
        if status in (PaymentStatus.PAID, PaymentStatus.COMPLETED) and payment.paid_at is None:
            payment.paid_at = utc_now()
        payment.updated_at = utc_now()
        await self.session.flush()

        logger.info(
            "payment_status_updated",
            payment_id=str(payment_id),
            previous=current.value,
            payment_status=status.value,
        )
        return payment

    async def update_token_transfer_status(
        self,
        payment_id: UUID,
        status: TokenTransferStatus,
        tx_id: str | None = None,
        error: str | None = None,
        reconciled: bool = False,
    ) -> PaymentTransaction:
        """
        Move token_transfer_status, enforcing the transition rules.

        reconciled=True is reserved for the reconciliation sweep, which may
        resolve a timed-out transfer out of failed.

        Raises:
            StateConflictError: Illegal transition
        """
        payment = await self.lock(payment_id)
        current = TokenTransferStatus(payment.token_transfer_status)
        allowed = is_transfer_transition_allowed(current, status, reconciled=reconciled)
        if allowed and reconciled and current == TokenTransferStatus.FAILED:
            allowed = payment.payment_status == PaymentStatus.MONITORING.value
        if not allowed:
            logger.warning(
                "token_transfer_state_conflict",
                payment_id=str(payment_id),
                current=current.value,
                requested=status.value,
            )
            raise StateConflictError(
                payment_id, "token_transfer_status", current.value, status.value
            )

        payment.token_transfer_status = status.value
        if tx_id is not None:
            payment.token_transfer_tx_id = tx_id
        if status == TokenTransferStatus.FAILED:
            payment.token_transfer_error = error
        elif status in (TokenTransferStatus.DIRECT_TRANSFERRED, TokenTransferStatus.IN_INBOX):
            payment.token_transfer_error = None
            payment.tokens_transferred_at = utc_now()
        payment.updated_at = utc_now()
        await self.session.flush()

        logger.info(
            "token_transfer_status_updated",
            payment_id=str(payment_id),
            previous=current.value,
            token_transfer_status=status.value,
            tx_id=tx_id,
        )
        return payment

    async def record_settlement_error(self, payment_id: UUID, error: str) -> PaymentTransaction:
        """Note an interrupted settlement on the row without moving either status."""
        payment = await self.lock(payment_id)
        payment.status_note = f"Settlement interrupted: {error}"
        payment.token_transfer_error = error
        payment.updated_at = utc_now()
        await self.session.flush()
        logger.info("settlement_error_recorded", payment_id=str(payment_id))
        return payment

    async def record_token_transfer(
        self,
        payment_id: UUID,
        kind: TransferKind,
        from_address: str,
        to_address: str,
        amount: int,
        status: TransferRecordStatus,
        asset_id: int | None = None,
        transaction_hash: str | None = None,
        error_message: str | None = None,
    ) -> TokenTransfer:
        """Append an audit row for one on-chain movement."""
        transfer = TokenTransfer(
            payment_transaction_id=payment_id,
            kind=kind.value,
            from_address=from_address,
            to_address=to_address,
            asset_id=asset_id,
            amount=amount,
            transaction_hash=transaction_hash,
            status=status.value,
            error_message=error_message,
        )
        self.session.add(transfer)
        await self.session.flush()
        return transfer

    async def update_user_wallet_balance(
        self,
        wallet_address: str,
        network: str,
        asset_id: int,
        amount: int,
        direction: BalanceDirection,
    ) -> None:
        """Adjust the advisory cached balance; never drops below zero."""
        delta = amount if direction == BalanceDirection.CREDIT else -amount
        stmt = pg_insert(UserWalletBalance).values(
            wallet_address=wallet_address,
            network=network,
            asset_id=asset_id,
            balance=max(delta, 0),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[
                UserWalletBalance.wallet_address,
                UserWalletBalance.network,
                UserWalletBalance.asset_id,
            ],
            set_={
                "balance": func.greatest(UserWalletBalance.balance + delta, 0),
                "updated_at": utc_now(),
            },
        )
        await self.session.execute(stmt)

    async def list_by_wallet(
        self, wallet_address: str, limit: int = 50
    ) -> list[PaymentTransaction]:
        """Most recent payments for a wallet."""
        stmt = (
            select(PaymentTransaction)
            .where(PaymentTransaction.user_wallet_address == wallet_address)
            .order_by(PaymentTransaction.created_at.desc())
            .limit(limit)
        )
        return list((await self.session.execute(stmt)).scalars().all())

    async def list_stale(
        self,
        statuses: Iterable[PaymentStatus],
        older_than: datetime,
        limit: int = 100,
    ) -> list[PaymentTransaction]:
        """Payments stuck in one of statuses since before older_than, oldest first."""
        stmt = (
            select(PaymentTransaction)
            .where(
                PaymentTransaction.payment_status.in_([s.value for s in statuses]),
                PaymentTransaction.updated_at < older_than,
            )
            .order_by(PaymentTransaction.updated_at)
            .limit(limit)
        )
        return list((await self.session.execute(stmt)).scalars().all())

    async def statistics(self) -> PaymentStatistics:
        """Aggregate payment counts for the admin dashboard."""
        status = PaymentTransaction.payment_status
        stmt = select(
            func.count(PaymentTransaction.id),
            func.count(PaymentTransaction.id).filter(status == PaymentStatus.COMPLETED.value),
            func.count(PaymentTransaction.id).filter(
                status == PaymentStatus.PAID.value,
                PaymentTransaction.token_transfer_status == TokenTransferStatus.IN_INBOX.value,
            ),
            func.count(PaymentTransaction.id).filter(status == PaymentStatus.FAILED.value),
            func.coalesce(
                func.sum(PaymentTransaction.token_amount).filter(
                    PaymentTransaction.token_transfer_status.in_(_DELIVERED_TRANSFER_STATUSES)
                ),
                0,
            ),
        )
        row = (await self.session.execute(stmt)).one()
        return PaymentStatistics(
            total_payments=row[0],
            completed_payments=row[1],
            awaiting_claim_payments=row[2],
            failed_payments=row[3],
            total_tokens_delivered=int(row[4]),
        )
