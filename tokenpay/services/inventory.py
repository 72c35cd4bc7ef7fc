"""
Inventory Manager - Reserve, release and commit custodial token inventory.

Every balance change is a single conditional UPDATE on the inventory row, so
concurrent webhooks can never push available_balance below zero. Reservations
are tracked per payment so that release and commit take effect at most once.
Nothing here commits; callers own the transaction.
"""

from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from tokenpay.config import SettlementConfig
from tokenpay.db.models import InventoryReservation, TokenInventory, utc_now
from tokenpay.exceptions import InsufficientInventoryError, InventoryNotProvisionedError
from tokenpay.models.api import ReservationStatus
from tokenpay.models.domain import InventoryAvailability, InventorySnapshot
from tokenpay.observability.metrics import metrics

logger = get_logger(__name__)


class InventoryManager:
    """Token inventory bookkeeping for one configured asset."""

    def __init__(self, session: AsyncSession, config: SettlementConfig) -> None:
        self.session = session
        self.config = config

    def _row_filter(self, network: str | None = None) -> tuple:
        return (
            TokenInventory.network == (network or self.config.network),
            TokenInventory.asset_id == self.config.asset_id,
        )

    async def check_availability(
        self, amount: int, network: str | None = None
    ) -> InventoryAvailability:
        """Report whether amount tokens could be reserved right now."""
        stmt = select(TokenInventory.available_balance).where(*self._row_filter(network))
        result = await self.session.execute(stmt)
        available_balance = result.scalar_one_or_none()
        if available_balance is None:
            return InventoryAvailability(available=False, available_balance=0)
        return InventoryAvailability(
            available=available_balance >= amount, available_balance=available_balance
        )

    async def reserve(self, amount: int, payment_id: UUID, network: str | None = None) -> bool:
        """
        Move amount from available to reserved for a payment.

        Returns False if the payment already holds an active or committed
        reservation. A released reservation is reactivated. On
        InsufficientInventoryError nothing has been written.

        Raises:
            ValueError: amount is not positive
            InsufficientInventoryError: available_balance < amount
        """
        if amount <= 0:
            raise ValueError(f"Reservation amount must be positive: {amount}")

        network = network or self.config.network
        existing = await self.session.execute(
            select(InventoryReservation.status)
            .where(InventoryReservation.payment_transaction_id == payment_id)
            .with_for_update()
        )
        current = existing.scalar_one_or_none()
        if current is not None and current != ReservationStatus.RELEASED.value:
            logger.info("inventory_reservation_exists", payment_id=str(payment_id), status=current)
            metrics.record_inventory_operation("reserve", "duplicate")
            return False

        now = utc_now()
        debit = (
            update(TokenInventory)
            .where(*self._row_filter(network), TokenInventory.available_balance >= amount)
            .values(
                available_balance=TokenInventory.available_balance - amount,
                reserved_balance=TokenInventory.reserved_balance + amount,
                updated_at=now,
            )
            .returning(TokenInventory.available_balance)
        )
        remaining = (await self.session.execute(debit)).scalar_one_or_none()
        if remaining is None:
            availability = await self.check_availability(amount, network)
            logger.warning(
                "inventory_insufficient",
                payment_id=str(payment_id),
                required=amount,
                available=availability.available_balance,
            )
            metrics.record_inventory_operation("reserve", "insufficient")
            raise InsufficientInventoryError(
                available=availability.available_balance, required=amount
            )

        await self.session.execute(
            pg_insert(InventoryReservation)
            .values(
                payment_transaction_id=payment_id,
                network=network,
                asset_id=self.config.asset_id,
                amount=amount,
                status=ReservationStatus.ACTIVE.value,
            )
            .on_conflict_do_update(
                index_elements=[InventoryReservation.payment_transaction_id],
                set_={
                    "status": ReservationStatus.ACTIVE.value,
                    "amount": amount,
                    "network": network,
                    "updated_at": now,
                },
            )
        )

        logger.info(
            "inventory_reserved",
            payment_id=str(payment_id),
            amount=amount,
            available_after=remaining,
        )
        metrics.record_inventory_operation("reserve", "success")
        return True

    async def release(self, payment_id: UUID) -> bool:
        """
        Return a payment's active reservation to available_balance.

        Returns False (no-op) when there is no active reservation.
        """
        reservation = await self._close_reservation(payment_id, ReservationStatus.RELEASED)
        if reservation is None:
            logger.debug("inventory_release_noop", payment_id=str(payment_id))
            metrics.record_inventory_operation("release", "noop")
            return False

        amount, network = reservation
        await self.session.execute(
            update(TokenInventory)
            .where(*self._row_filter(network))
            .values(
                available_balance=TokenInventory.available_balance + amount,
                reserved_balance=TokenInventory.reserved_balance - amount,
                updated_at=utc_now(),
            )
        )
        logger.info("inventory_released", payment_id=str(payment_id), amount=amount)
        metrics.record_inventory_operation("release", "success")
        return True

    async def commit(self, payment_id: UUID) -> bool:
        """
        Consume a payment's active reservation once tokens left custody.

        Decrements reserved_balance and total_supply. Returns False (no-op)
        when there is no active reservation.
        """
        reservation = await self._close_reservation(payment_id, ReservationStatus.COMMITTED)
        if reservation is None:
            logger.debug("inventory_commit_noop", payment_id=str(payment_id))
            metrics.record_inventory_operation("commit", "noop")
            return False

        amount, network = reservation
        await self.session.execute(
            update(TokenInventory)
            .where(*self._row_filter(network))
            .values(
                reserved_balance=TokenInventory.reserved_balance - amount,
                total_supply=TokenInventory.total_supply - amount,
                updated_at=utc_now(),
            )
        )
        logger.info("inventory_committed", payment_id=str(payment_id), amount=amount)
        metrics.record_inventory_operation("commit", "success")
        return True

    async def _close_reservation(
        self, payment_id: UUID, new_status: ReservationStatus
    ) -> tuple[int, str] | None:
        stmt = (
            update(InventoryReservation)
            .where(
                InventoryReservation.payment_transaction_id == payment_id,
                InventoryReservation.status == ReservationStatus.ACTIVE.value,
            )
            .values(status=new_status.value, updated_at=utc_now())
            .returning(InventoryReservation.amount, InventoryReservation.network)
        )
        row = (await self.session.execute(stmt)).one_or_none()
        if row is None:
            return None
        return row.amount, row.network

    async def provision(
        self,
        network: str,
        asset_id: int,
        additional_supply: int,
        central_wallet_address: str,
    ) -> InventorySnapshot:
        """Create the inventory row or add supply to it."""
        if additional_supply <= 0:
            raise ValueError(f"additional_supply must be positive: {additional_supply}")

        stmt = pg_insert(TokenInventory).values(
            network=network,
            asset_id=asset_id,
            total_supply=additional_supply,
            available_balance=additional_supply,
            reserved_balance=0,
            central_wallet_address=central_wallet_address,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[TokenInventory.network, TokenInventory.asset_id],
            set_={
                "total_supply": TokenInventory.total_supply + stmt.excluded.total_supply,
                "available_balance": TokenInventory.available_balance
                + stmt.excluded.available_balance,
                "central_wallet_address": stmt.excluded.central_wallet_address,
                "updated_at": utc_now(),
            },
        ).returning(
            TokenInventory.network,
            TokenInventory.asset_id,
            TokenInventory.total_supply,
            TokenInventory.available_balance,
            TokenInventory.reserved_balance,
            TokenInventory.central_wallet_address,
        )
        row = (await self.session.execute(stmt)).one()
        logger.info(
            "inventory_provisioned",
            network=network,
            asset_id=asset_id,
            added=additional_supply,
            total_supply=row.total_supply,
        )
        metrics.record_inventory_operation("provision", "success")
        return InventorySnapshot(
            network=row.network,
            asset_id=row.asset_id,
            total_supply=row.total_supply,
            available_balance=row.available_balance,
            reserved_balance=row.reserved_balance,
            central_wallet_address=row.central_wallet_address,
        )

    async def get_inventory(self, network: str | None = None) -> InventorySnapshot:
        """
        Snapshot of the inventory row.

        Raises:
            InventoryNotProvisionedError: No row for this network and asset
        """
        stmt = select(TokenInventory).where(*self._row_filter(network))
        inventory = (await self.session.execute(stmt)).scalar_one_or_none()
        if inventory is None:
            raise InventoryNotProvisionedError(network or self.config.network, self.config.asset_id)
        return InventorySnapshot(
            network=inventory.network,
            asset_id=inventory.asset_id,
            total_supply=inventory.total_supply,
            available_balance=inventory.available_balance,
            reserved_balance=inventory.reserved_balance,
            central_wallet_address=inventory.central_wallet_address,
        )
