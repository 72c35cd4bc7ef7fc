"""
Settlement Dispatcher - Moves reserved tokens to the buyer.

Strategy per payment:
- receiver already opted in to the asset: direct transfer
- otherwise: make sure the custodial wallet is registered with the inbox
  router, top the receiver up to the funding threshold, then deposit into
  the receiver's inbox for a later claim

Every chain call is bounded by chain_call_timeout_seconds. Any ChainError
ends the attempt as failed with inventory released. A timeout on a
token-moving call leaves the outcome unknown, so the payment is parked in
monitoring for the reconciliation sweep instead of being failed outright.
"""

import asyncio
import time
from collections.abc import Awaitable
from dataclasses import dataclass
from typing import TypeVar

from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from tokenpay.config import SettlementConfig
from tokenpay.db.models import PaymentTransaction
from tokenpay.exceptions import ChainError, ChainTimeoutError
from tokenpay.models.api import (
    BalanceDirection,
    PaymentStatus,
    TokenTransferStatus,
    TransferKind,
    TransferRecordStatus,
)
from tokenpay.models.domain import InboxSendInfo, SettlementOutcome
from tokenpay.observability.metrics import metrics
from tokenpay.observability.tracing import trace_operation
from tokenpay.services.chain_client import ChainClient
from tokenpay.services.funding import compute_funding_amount
from tokenpay.services.inventory import InventoryManager
from tokenpay.services.ledger import TransactionLedger

logger = get_logger(__name__)

T = TypeVar("T")

# Calls whose timeout leaves it unknown whether tokens left custody
_TOKEN_MOVING_OPERATIONS = frozenset({"direct_transfer", "deposit_to_inbox"})


@dataclass
class _Attempt:
    """Progress of one settlement attempt, for failure bookkeeping."""

    method: TransferKind | None = None
    funding_tx_id: str | None = None
    funded_amount: int = 0


class SettlementDispatcher:
    """Executes the on-chain leg of a reserved payment and records the outcome."""

    def __init__(
        self,
        session: AsyncSession,
        chain: ChainClient,
        config: SettlementConfig,
    ) -> None:
        self.session = session
        self.chain = chain
        self.config = config
        self.ledger = TransactionLedger(session)
        self.inventory = InventoryManager(session, config)

    async def settle(self, payment: PaymentTransaction) -> SettlementOutcome:
        """
        Deliver tokens for a payment whose inventory is already reserved.

        Chain failures are recorded and returned as a failed outcome; only
        unexpected (non-chain) errors propagate, leaving the payment in
        processing for the reconciliation sweep.
        """
        started = time.perf_counter()
        attempt = _Attempt()
        with trace_operation(
            "settle_payment",
            payment_reference=payment.payment_reference,
            token_amount=payment.token_amount,
        ) as span:
            try:
                outcome = await self._execute(payment, attempt)
            except ChainError as exc:
                outcome = await self._record_failure(payment, attempt, exc)
            except Exception as exc:
                logger.exception(
                    "settlement_unexpected_error",
                    payment_id=str(payment.id),
                    error=str(exc),
                )
                metrics.record_error(type(exc).__name__, "settlement")
                await self.session.rollback()
                await self._record_unexpected_error(payment, exc)
                raise
            span.set_attribute("method", outcome.method.value if outcome.method else "none")
            span.set_attribute("token_transfer_status", outcome.token_transfer_status.value)

        metrics.record_settlement(
            outcome.method.value if outcome.method else None,
            outcome.succeeded,
            payment.token_amount,
            time.perf_counter() - started,
        )
        return outcome

    async def _call(self, operation: str, awaitable: Awaitable[T]) -> T:
        timeout = self.config.chain_call_timeout_seconds
        try:
            return await asyncio.wait_for(awaitable, timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise ChainTimeoutError(operation, timeout) from exc

    async def _execute(self, payment: PaymentTransaction, attempt: _Attempt) -> SettlementOutcome:
        receiver = payment.user_wallet_address
        ready = await self._call(
            "check_receiver_ready",
            self.chain.check_receiver_ready(receiver, self.config.asset_id),
        )
        logger.info(
            "settlement_receiver_checked",
            payment_id=str(payment.id),
            receiver=receiver,
            ready=ready,
        )
        if ready:
            return await self._direct_transfer(payment, attempt)
        return await self._inbox_deposit(payment, attempt)

    async def _direct_transfer(
        self, payment: PaymentTransaction, attempt: _Attempt
    ) -> SettlementOutcome:
        attempt.method = TransferKind.DIRECT_TRANSFER
        result = await self._call(
            "direct_transfer",
            self.chain.direct_transfer(
                self.config.central_wallet_address,
                payment.user_wallet_address,
                self.config.asset_id,
                payment.token_amount,
                payment.payment_reference,
            ),
        )
        return await self._record_success(
            payment,
            attempt,
            result.tx_id,
            TokenTransferStatus.DIRECT_TRANSFERRED,
            PaymentStatus.COMPLETED,
        )

    async def _inbox_deposit(
        self, payment: PaymentTransaction, attempt: _Attempt
    ) -> SettlementOutcome:
        attempt.method = TransferKind.INBOX_DEPOSIT
        receiver = payment.user_wallet_address
        await self.ledger.update_token_transfer_status(
            payment.id, TokenTransferStatus.REQUIRES_OPT_IN
        )

        send_info = await self._ensure_router_opted_in(payment)
        await self._fund_receiver(payment, attempt)

        result = await self._call(
            "deposit_to_inbox",
            self.chain.deposit_to_inbox(
                self.config.central_wallet_address,
                receiver,
                self.config.asset_id,
                payment.token_amount,
                payment.payment_reference,
                send_info,
            ),
        )
        return await self._record_success(
            payment, attempt, result.tx_id, TokenTransferStatus.IN_INBOX, PaymentStatus.PAID
        )

    async def _ensure_router_opted_in(self, payment: PaymentTransaction) -> InboxSendInfo:
        """Register the inbox router for the asset when the chain reports it is not yet opted in."""
        send_info = await self._call(
            "get_inbox_send_info",
            self.chain.get_inbox_send_info(payment.user_wallet_address, self.config.asset_id),
        )
        if send_info.router_opted_in:
            return send_info

        result = await self._call("opt_router_in", self.chain.opt_router_in(self.config.asset_id))
        await self.ledger.record_token_transfer(
            payment.id,
            TransferKind.ROUTER_OPT_IN,
            from_address=self.config.central_wallet_address,
            to_address=self.config.central_wallet_address,
            amount=0,
            status=TransferRecordStatus.COMPLETED,
            asset_id=self.config.asset_id,
            transaction_hash=result.tx_id,
        )
        await self.session.commit()
        logger.info(
            "inbox_router_opted_in",
            app_id=self.config.inbox_router_app_id,
            asset_id=self.config.asset_id,
            tx_id=result.tx_id,
        )
        return send_info

    async def _fund_receiver(self, payment: PaymentTransaction, attempt: _Attempt) -> None:
        """Single top-up so the receiver can opt in and claim."""
        receiver = payment.user_wallet_address
        balance = await self._call(
            "get_spendable_balance", self.chain.get_spendable_balance(receiver)
        )
        amount = compute_funding_amount(balance)
        if amount == 0:
            logger.info("receiver_funding_not_needed", receiver=receiver, balance=balance)
            return

        result = await self._call(
            "fund_native_currency",
            self.chain.fund_native_currency(
                self.config.central_wallet_address,
                receiver,
                amount,
                f"{payment.payment_reference}:funding",
            ),
        )
        attempt.funding_tx_id = result.tx_id
        attempt.funded_amount = amount
        await self.ledger.record_token_transfer(
            payment.id,
            TransferKind.FUNDING,
            from_address=self.config.central_wallet_address,
            to_address=receiver,
            amount=amount,
            status=TransferRecordStatus.COMPLETED,
            transaction_hash=result.tx_id,
        )
        await self.session.commit()
        metrics.record_funding(amount)
        logger.info(
            "receiver_funded",
            payment_id=str(payment.id),
            receiver=receiver,
            balance_before=balance,
            amount=amount,
            tx_id=result.tx_id,
        )

    async def _record_success(
        self,
        payment: PaymentTransaction,
        attempt: _Attempt,
        tx_id: str,
        transfer_status: TokenTransferStatus,
        payment_status: PaymentStatus,
    ) -> SettlementOutcome:
        method = attempt.method or TransferKind.DIRECT_TRANSFER
        await self.ledger.record_token_transfer(
            payment.id,
            method,
            from_address=self.config.central_wallet_address,
            to_address=payment.user_wallet_address,
            amount=payment.token_amount,
            status=TransferRecordStatus.COMPLETED,
            asset_id=self.config.asset_id,
            transaction_hash=tx_id,
        )
        await self.ledger.update_token_transfer_status(payment.id, transfer_status, tx_id=tx_id)
        await self.ledger.update_payment_status(payment.id, payment_status)
        await self.inventory.commit(payment.id)
        await self.ledger.update_user_wallet_balance(
            payment.user_wallet_address,
            payment.network,
            self.config.asset_id,
            payment.token_amount,
            BalanceDirection.CREDIT,
        )
        await self.session.commit()

        logger.info(
            "settlement_completed",
            payment_id=str(payment.id),
            method=method.value,
            tx_id=tx_id,
            token_transfer_status=transfer_status.value,
        )
        return SettlementOutcome(
            payment_id=payment.id,
            method=method,
            payment_status=payment_status,
            token_transfer_status=transfer_status,
            tx_id=tx_id,
            funding_tx_id=attempt.funding_tx_id,
            funded_amount=attempt.funded_amount,
        )

    async def _record_unexpected_error(self, payment: PaymentTransaction, exc: Exception) -> None:
        # Statuses stay put (processing, reserved) so the reconciliation sweep picks it up
        error = f"{type(exc).__name__}: {exc}"
        try:
            await self.ledger.record_settlement_error(payment.id, error)
            await self.session.commit()
        except Exception as record_exc:
            logger.error(
                "settlement_error_record_failed",
                payment_id=str(payment.id),
                error=str(record_exc),
            )
            await self.session.rollback()

    async def _record_failure(
        self, payment: PaymentTransaction, attempt: _Attempt, exc: ChainError
    ) -> SettlementOutcome:
        indeterminate = (
            isinstance(exc, ChainTimeoutError) and exc.operation in _TOKEN_MOVING_OPERATIONS
        )
        payment_status = PaymentStatus.MONITORING if indeterminate else PaymentStatus.FAILED
        logger.error(
            "settlement_failed",
            payment_id=str(payment.id),
            method=attempt.method.value if attempt.method else None,
            error=exc.message,
            permanent=exc.permanent,
            indeterminate=indeterminate,
        )
        metrics.record_error(type(exc).__name__, "settlement")

        if attempt.method is not None:
            await self.ledger.record_token_transfer(
                payment.id,
                attempt.method,
                from_address=self.config.central_wallet_address,
                to_address=payment.user_wallet_address,
                amount=payment.token_amount,
                status=TransferRecordStatus.FAILED,
                asset_id=self.config.asset_id,
                error_message=exc.message,
            )
        await self.ledger.update_token_transfer_status(
            payment.id, TokenTransferStatus.FAILED, error=exc.message
        )
        await self.ledger.update_payment_status(
            payment.id,
            payment_status,
            note="Chain call timed out; awaiting reconciliation" if indeterminate else exc.message,
        )
        await self.inventory.release(payment.id)
        await self.session.commit()

        return SettlementOutcome(
            payment_id=payment.id,
            method=attempt.method,
            payment_status=payment_status,
            token_transfer_status=TokenTransferStatus.FAILED,
            funding_tx_id=attempt.funding_tx_id,
            funded_amount=attempt.funded_amount,
            error=exc.message,
        )
