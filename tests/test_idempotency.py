"""
Tests for webhook event and payment reference idempotency.
"""

from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest
from sqlalchemy.dialects import postgresql

from conftest import make_result
from tokenpay.models.api import PaymentProviderName, PaymentStatus
from tokenpay.services.idempotency import IdempotencyLedger
from tokenpay.services.ttl_store import InMemoryTTLStore


@pytest.fixture
def ledger(db_session: AsyncMock, ttl_store: InMemoryTTLStore) -> IdempotencyLedger:
    return IdempotencyLedger(db_session, ttl_store, cache_ttl_seconds=60)


class TestAlreadyProcessed:
    @pytest.mark.asyncio
    async def test_unknown_event(self, ledger: IdempotencyLedger, db_session: AsyncMock):
        db_session.execute.return_value = make_result(scalar=None)
        assert await ledger.already_processed("evt_new") is False

    @pytest.mark.asyncio
    async def test_processed_event_in_database(
        self, ledger: IdempotencyLedger, db_session: AsyncMock, ttl_store: InMemoryTTLStore
    ):
        db_session.execute.return_value = make_result(scalar=True)
        assert await ledger.already_processed("evt_done") is True
        assert ttl_store.get("webhook-event:evt_done") == "1"

    @pytest.mark.asyncio
    async def test_recorded_but_unprocessed_event(
        self, ledger: IdempotencyLedger, db_session: AsyncMock, ttl_store: InMemoryTTLStore
    ):
        db_session.execute.return_value = make_result(scalar=False)
        assert await ledger.already_processed("evt_partial") is False
        assert ttl_store.get("webhook-event:evt_partial") is None

    @pytest.mark.asyncio
    async def test_cache_hit_skips_database(
        self, ledger: IdempotencyLedger, db_session: AsyncMock, ttl_store: InMemoryTTLStore
    ):
        ttl_store.set("webhook-event:evt_cached", "1", 60)
        assert await ledger.already_processed("evt_cached") is True
        db_session.execute.assert_not_called()


class TestMarkProcessed:
    @pytest.mark.asyncio
    async def test_commits_then_caches(
        self, ledger: IdempotencyLedger, db_session: AsyncMock, ttl_store: InMemoryTTLStore
    ):
        await ledger.mark_processed(
            "evt_1", "checkout.session.completed", PaymentProviderName.STRIPE
        )
        db_session.execute.assert_awaited_once()
        db_session.commit.assert_awaited_once()
        assert ttl_store.get("webhook-event:evt_1") == "1"

    @pytest.mark.asyncio
    async def test_failed_commit_does_not_cache(
        self, ledger: IdempotencyLedger, db_session: AsyncMock, ttl_store: InMemoryTTLStore
    ):
        db_session.commit.side_effect = RuntimeError("connection lost")
        with pytest.raises(RuntimeError):
            await ledger.mark_processed("evt_1", "charge.success", PaymentProviderName.PAYSTACK)
        assert ttl_store.get("webhook-event:evt_1") is None

    @pytest.mark.asyncio
    async def test_upsert_statement(self, ledger: IdempotencyLedger, db_session: AsyncMock):
        await ledger.mark_processed("evt_1", "charge.success", PaymentProviderName.PAYSTACK)
        statement = db_session.execute.call_args.args[0]
        compiled = str(statement.compile(dialect=postgresql.dialect()))
        assert "ON CONFLICT" in compiled.upper()


class TestPaymentIdempotency:
    @pytest.mark.asyncio
    async def test_not_found(self, ledger: IdempotencyLedger, db_session: AsyncMock):
        db_session.execute.return_value = make_result(row=None)
        result = await ledger.check_payment_idempotency("ref_new")
        assert result.found is False
        assert result.current_status is None
        assert result.payment_id is None

    @pytest.mark.asyncio
    async def test_found(self, ledger: IdempotencyLedger, db_session: AsyncMock):
        payment_id = uuid4()
        row = MagicMock(id=payment_id, payment_status="completed")
        db_session.execute.return_value = make_result(row=row)
        result = await ledger.check_payment_idempotency("ref_done")
        assert result.found is True
        assert result.current_status == PaymentStatus.COMPLETED
        assert result.payment_id == payment_id
