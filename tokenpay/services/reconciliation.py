"""
Reconciliation Service - Resolves payments whose on-chain outcome is unknown.

A payment is swept when it has sat in processing (settlement interrupted) or
monitoring (chain call timed out) for longer than the reconciliation window.
The chain is the source of truth: a transfer carrying the payment reference
as its note confirms the payment, its absence fails it.
"""

import asyncio
from collections.abc import Callable
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from tokenpay.config import SettlementConfig
from tokenpay.db.models import PaymentTransaction, utc_now
from tokenpay.exceptions import ChainError, InsufficientInventoryError, StateConflictError
from tokenpay.models.api import (
    BalanceDirection,
    PaymentStatus,
    TokenTransferStatus,
    TransferKind,
    TransferRecordStatus,
)
from tokenpay.models.domain import FoundTransfer, ReconciliationResult
from tokenpay.observability.metrics import metrics
from tokenpay.services.chain_client import ChainClient
from tokenpay.services.inventory import InventoryManager
from tokenpay.services.ledger import TransactionLedger

logger = get_logger(__name__)

RECONCILABLE_STATUSES = (PaymentStatus.PROCESSING, PaymentStatus.MONITORING)
NOT_FOUND_REASON = "No matching on-chain transfer found during reconciliation"


class ReconciliationService:
    """Sweeps stale payments and settles their books against chain state."""

    def __init__(
        self, session: AsyncSession, chain: ChainClient, config: SettlementConfig
    ) -> None:
        self.session = session
        self.chain = chain
        self.config = config
        self.ledger = TransactionLedger(session)
        self.inventory = InventoryManager(session, config)

    async def run_once(self, now: datetime | None = None) -> ReconciliationResult:
        """Examine one batch of stale payments."""
        now = now or utc_now()
        cutoff = now - timedelta(seconds=self.config.reconciliation_window_seconds)
        stale = await self.ledger.list_stale(
            RECONCILABLE_STATUSES, cutoff, limit=self.config.reconciliation_batch_size
        )

        # Rollbacks expire loaded rows, so work from plain identifiers
        targets = [(payment.id, payment.payment_reference) for payment in stale]
        confirmed = failed = skipped = 0
        for payment_id, payment_reference in targets:
            try:
                outcome = await self._reconcile(payment_id)
            except (ChainError, StateConflictError) as exc:
                await self.session.rollback()
                logger.warning(
                    "reconciliation_payment_skipped",
                    payment_id=str(payment_id),
                    payment_reference=payment_reference,
                    error=str(exc),
                )
                skipped += 1
                continue

            if outcome == "confirmed":
                confirmed += 1
            elif outcome == "failed":
                failed += 1
            else:
                skipped += 1

        metrics.record_reconciliation(confirmed, failed, skipped)
        logger.info(
            "reconciliation_completed",
            examined=len(stale),
            confirmed=confirmed,
            failed=failed,
            skipped=skipped,
        )
        return ReconciliationResult(
            examined=len(stale), confirmed=confirmed, failed=failed, skipped=skipped
        )

    async def _reconcile(self, payment_id: UUID) -> str:
        locked = await self.ledger.lock(payment_id)
        if PaymentStatus(locked.payment_status) not in RECONCILABLE_STATUSES:
            await self.session.rollback()
            return "skipped"

        try:
            found = await asyncio.wait_for(
                self.chain.find_transfer(
                    self.config.central_wallet_address,
                    locked.user_wallet_address,
                    self.config.asset_id,
                    locked.payment_reference,
                ),
                timeout=self.config.chain_call_timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            raise ChainError("find_transfer timed out") from exc

        if found is None:
            await self._fail(locked)
            return "failed"
        await self._confirm(locked, found)
        return "confirmed"

    async def _confirm(self, payment: PaymentTransaction, found: FoundTransfer) -> None:
        if found.method == TransferKind.INBOX_DEPOSIT:
            transfer_status, payment_status = TokenTransferStatus.IN_INBOX, PaymentStatus.PAID
        else:
            transfer_status = TokenTransferStatus.DIRECT_TRANSFERRED
            payment_status = PaymentStatus.COMPLETED

        # Tokens already left custody; a timed-out attempt released its hold
        try:
            await self.inventory.reserve(payment.token_amount, payment.id, payment.network)
        except InsufficientInventoryError as exc:
            logger.error(
                "reconciliation_inventory_drift",
                payment_id=str(payment.id),
                required=exc.required,
                available=exc.available,
            )
            metrics.record_error("InventoryDrift", "reconciliation")
        await self.inventory.commit(payment.id)

        await self.ledger.record_token_transfer(
            payment.id,
            found.method,
            from_address=self.config.central_wallet_address,
            to_address=payment.user_wallet_address,
            amount=payment.token_amount,
            status=TransferRecordStatus.COMPLETED,
            asset_id=self.config.asset_id,
            transaction_hash=found.tx_id,
        )
        await self.ledger.update_token_transfer_status(
            payment.id, transfer_status, tx_id=found.tx_id, reconciled=True
        )
        await self.ledger.update_payment_status(
            payment.id, payment_status, note="Confirmed on-chain by reconciliation"
        )
        await self.ledger.update_user_wallet_balance(
            payment.user_wallet_address,
            payment.network,
            self.config.asset_id,
            payment.token_amount,
            BalanceDirection.CREDIT,
        )
        await self.session.commit()
        logger.info(
            "reconciliation_confirmed",
            payment_id=str(payment.id),
            payment_reference=payment.payment_reference,
            tx_id=found.tx_id,
            method=found.method.value,
        )

    async def _fail(self, payment: PaymentTransaction) -> None:
        await self.ledger.update_token_transfer_status(
            payment.id, TokenTransferStatus.FAILED, error=NOT_FOUND_REASON
        )
        await self.ledger.update_payment_status(
            payment.id, PaymentStatus.FAILED, note=NOT_FOUND_REASON
        )
        await self.inventory.release(payment.id)
        await self.session.commit()
        logger.warning(
            "reconciliation_failed_payment",
            payment_id=str(payment.id),
            payment_reference=payment.payment_reference,
        )


async def run_reconciliation_loop(
    session_factory: Callable[[], AsyncSession],
    chain: ChainClient,
    config: SettlementConfig,
    interval_seconds: float,
) -> None:
    """Run run_once every interval_seconds until cancelled."""
    logger.info("reconciliation_loop_started", interval_seconds=interval_seconds)
    while True:
        try:
            async with session_factory() as session:
                await ReconciliationService(session, chain, config).run_once()
        except Exception as exc:
            logger.exception("reconciliation_run_failed", error=str(exc))
            metrics.reconciliation_runs_total.labels(success="False").inc()
        await asyncio.sleep(interval_seconds)
