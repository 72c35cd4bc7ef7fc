"""
Admin API routes for operating the settlement pipeline.

Protected by the X-Admin-Key header. Covers inventory provisioning,
payment statistics and on-demand reconciliation.
"""

from algosdk import encoding
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from tokenpay.api.dependencies import get_chain_client, require_admin_key
from tokenpay.config import SettlementConfig, get_settlement_config
from tokenpay.db.session import get_read_db, get_write_db
from tokenpay.exceptions import InventoryNotProvisionedError
from tokenpay.models.api import (
    InventoryResponse,
    PaymentStatisticsResponse,
    ProvisionInventoryRequest,
    ReconciliationResponse,
)
from tokenpay.models.domain import InventorySnapshot
from tokenpay.services.chain_client import ChainClient
from tokenpay.services.inventory import InventoryManager
from tokenpay.services.ledger import TransactionLedger
from tokenpay.services.reconciliation import ReconciliationService

logger = get_logger(__name__)
router = APIRouter(
    prefix="/v1/admin", tags=["admin"], dependencies=[Depends(require_admin_key)]
)


def _to_inventory_response(snapshot: InventorySnapshot) -> InventoryResponse:
    return InventoryResponse(
        network=snapshot.network,
        asset_id=snapshot.asset_id,
        total_supply=snapshot.total_supply,
        available_balance=snapshot.available_balance,
        reserved_balance=snapshot.reserved_balance,
        central_wallet_address=snapshot.central_wallet_address,
    )


@router.get("/inventory/{network}", response_model=InventoryResponse)
async def get_inventory(
    network: str,
    db: AsyncSession = Depends(get_read_db),
    config: SettlementConfig = Depends(get_settlement_config),
) -> InventoryResponse:
    """Current inventory for the configured asset on a network."""
    try:
        snapshot = await InventoryManager(db, config).get_inventory(network)
    except InventoryNotProvisionedError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    return _to_inventory_response(snapshot)


@router.post(
    "/inventory",
    response_model=InventoryResponse,
    status_code=status.HTTP_201_CREATED,
)
async def provision_inventory(
    request: ProvisionInventoryRequest,
    db: AsyncSession = Depends(get_write_db),
    config: SettlementConfig = Depends(get_settlement_config),
) -> InventoryResponse:
    """Create the inventory row or add supply to it."""
    if not encoding.is_valid_address(request.central_wallet_address):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid central wallet address",
        )

    snapshot = await InventoryManager(db, config).provision(
        network=request.network,
        asset_id=request.asset_id,
        additional_supply=request.additional_supply,
        central_wallet_address=request.central_wallet_address,
    )
    await db.commit()
    logger.info(
        "admin_inventory_provisioned",
        network=snapshot.network,
        asset_id=snapshot.asset_id,
        total_supply=snapshot.total_supply,
    )
    return _to_inventory_response(snapshot)


@router.get("/statistics", response_model=PaymentStatisticsResponse)
async def get_statistics(db: AsyncSession = Depends(get_read_db)) -> PaymentStatisticsResponse:
    """Aggregate payment counts."""
    stats = await TransactionLedger(db).statistics()
    return PaymentStatisticsResponse(
        total_payments=stats.total_payments,
        completed_payments=stats.completed_payments,
        awaiting_claim_payments=stats.awaiting_claim_payments,
        failed_payments=stats.failed_payments,
        total_tokens_delivered=stats.total_tokens_delivered,
    )


@router.post("/reconcile", response_model=ReconciliationResponse)
async def run_reconciliation(
    db: AsyncSession = Depends(get_write_db),
    chain: ChainClient = Depends(get_chain_client),
    config: SettlementConfig = Depends(get_settlement_config),
) -> ReconciliationResponse:
    """Run one reconciliation sweep now."""
    result = await ReconciliationService(db, chain, config).run_once()
    return ReconciliationResponse(
        examined=result.examined,
        confirmed=result.confirmed,
        failed=result.failed,
        skipped=result.skipped,
    )
