"""
Tests for the custodial signing gateway client.

Requests are answered by an httpx.MockTransport so the wire format and the
error mapping can be checked without a gateway.
"""

import json
from collections.abc import Callable

import httpx
import pytest

from conftest import BUYER_WALLET, CENTRAL_WALLET
from tokenpay.exceptions import ChainError, ChainTimeoutError
from tokenpay.models.api import TransferKind
from tokenpay.models.domain import InboxSendInfo
from tokenpay.services.chain_client import HttpChainClient

BASE_URL = "http://chain-gateway.test"
APP_ID = 2449590623


def build_client(handler: Callable[[httpx.Request], httpx.Response]) -> HttpChainClient:
    http_client = httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(handler))
    return HttpChainClient(BASE_URL, "gateway-token", APP_ID, http_client=http_client)


class Recorder:
    """MockTransport handler that records requests and replies with a fixed body."""

    def __init__(self, body: dict | None = None, status_code: int = 200) -> None:
        self.body = body if body is not None else {}
        self.status_code = status_code
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, json=self.body)

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]

    @property
    def last_json(self) -> dict:
        return json.loads(self.last.content)


class TestReads:
    @pytest.mark.asyncio
    async def test_check_receiver_ready(self):
        recorder = Recorder({"opted_in": True})
        client = build_client(recorder)

        assert await client.check_receiver_ready(BUYER_WALLET, 31566704) is True
        assert recorder.last.method == "GET"
        assert recorder.last.url.path == f"/v1/accounts/{BUYER_WALLET}/assets/31566704"

    @pytest.mark.asyncio
    async def test_receiver_not_opted_in(self):
        client = build_client(Recorder({"opted_in": False}))
        assert await client.check_receiver_ready(BUYER_WALLET, 31566704) is False

    @pytest.mark.asyncio
    async def test_spendable_balance(self):
        client = build_client(Recorder({"spendable": "150000"}))
        assert await client.get_spendable_balance(BUYER_WALLET) == 150_000

    @pytest.mark.asyncio
    async def test_spendable_balance_missing(self):
        client = build_client(Recorder({}))
        with pytest.raises(ChainError):
            await client.get_spendable_balance(BUYER_WALLET)

    @pytest.mark.asyncio
    async def test_inbox_send_info(self):
        recorder = Recorder(
            {
                "router_opted_in": True,
                "receiver_opted_in": False,
                "inner_txn_count": 3,
                "mbr": 2_500,
                "receiver_algo_needed_for_claim": 201_000,
            }
        )
        client = build_client(recorder)

        info = await client.get_inbox_send_info(BUYER_WALLET, 31566704)

        assert info == InboxSendInfo(True, False, 3, 2_500, 201_000)
        assert recorder.last.url.path == f"/v1/inbox/{APP_ID}/send-info"
        assert recorder.last.url.params["receiver"] == BUYER_WALLET
        assert recorder.last.url.params["asset_id"] == "31566704"

    @pytest.mark.asyncio
    async def test_malformed_send_info(self):
        client = build_client(Recorder({"router_opted_in": True}))
        with pytest.raises(ChainError, match="malformed"):
            await client.get_inbox_send_info(BUYER_WALLET, 31566704)


class TestSubmissions:
    @pytest.mark.asyncio
    async def test_direct_transfer(self):
        recorder = Recorder({"tx_id": "TX-DIRECT"})
        client = build_client(recorder)

        result = await client.direct_transfer(
            CENTRAL_WALLET, BUYER_WALLET, 31566704, 1_000, "pay_ref_001"
        )

        assert result.tx_id == "TX-DIRECT"
        assert recorder.last.method == "POST"
        assert recorder.last.url.path == "/v1/transfers/asset"
        assert recorder.last_json == {
            "sender": CENTRAL_WALLET,
            "receiver": BUYER_WALLET,
            "asset_id": 31566704,
            "amount": 1_000,
            "note": "pay_ref_001",
        }

    @pytest.mark.asyncio
    async def test_deposit_to_inbox(self):
        recorder = Recorder({"tx_id": "TX-INBOX"})
        client = build_client(recorder)
        send_info = InboxSendInfo(True, False, 3, 2_500, 0)

        result = await client.deposit_to_inbox(
            CENTRAL_WALLET, BUYER_WALLET, 31566704, 1_000, "pay_ref_001", send_info
        )

        assert result.tx_id == "TX-INBOX"
        assert recorder.last.url.path == f"/v1/inbox/{APP_ID}/deposits"
        assert recorder.last_json["inner_txn_count"] == 3
        assert recorder.last_json["mbr"] == 2_500

    @pytest.mark.asyncio
    async def test_fund_native_currency(self):
        recorder = Recorder({"tx_id": "TX-FUND"})
        client = build_client(recorder)

        await client.fund_native_currency(CENTRAL_WALLET, BUYER_WALLET, 205_000, "ref:funding")

        assert recorder.last.url.path == "/v1/transfers/native"
        assert recorder.last_json["amount"] == 205_000

    @pytest.mark.asyncio
    async def test_opt_router_in(self):
        recorder = Recorder({"tx_id": "TX-OPTIN"})
        client = build_client(recorder)

        assert (await client.opt_router_in(31566704)).tx_id == "TX-OPTIN"
        assert recorder.last.url.path == f"/v1/inbox/{APP_ID}/opt-in"

    @pytest.mark.asyncio
    async def test_missing_tx_id(self):
        client = build_client(Recorder({}))
        with pytest.raises(ChainError, match="no tx_id"):
            await client.opt_router_in(31566704)


class TestFindTransfer:
    @pytest.mark.asyncio
    async def test_found_inbox_deposit(self):
        recorder = Recorder({"tx_id": "TX-9", "method": "inbox_deposit"})
        client = build_client(recorder)

        found = await client.find_transfer(CENTRAL_WALLET, BUYER_WALLET, 31566704, "ref_9")

        assert found is not None
        assert found.tx_id == "TX-9"
        assert found.method == TransferKind.INBOX_DEPOSIT
        assert recorder.last.url.params["note"] == "ref_9"

    @pytest.mark.asyncio
    async def test_not_found(self):
        client = build_client(Recorder({"tx_id": None}))
        assert await client.find_transfer(CENTRAL_WALLET, BUYER_WALLET, 31566704, "r") is None

    @pytest.mark.asyncio
    async def test_unknown_method(self):
        client = build_client(Recorder({"tx_id": "TX-1", "method": "teleport"}))
        with pytest.raises(ChainError):
            await client.find_transfer(CENTRAL_WALLET, BUYER_WALLET, 31566704, "r")


class TestErrorMapping:
    @pytest.mark.asyncio
    async def test_client_error_is_permanent(self):
        client = build_client(Recorder({"error": "receiver account closed"}, status_code=400))

        with pytest.raises(ChainError) as exc_info:
            await client.direct_transfer(CENTRAL_WALLET, BUYER_WALLET, 1, 1, "n")

        assert exc_info.value.permanent is True
        assert "receiver account closed" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_server_error_is_transient(self):
        client = build_client(Recorder({}, status_code=503))

        with pytest.raises(ChainError) as exc_info:
            await client.get_spendable_balance(BUYER_WALLET)

        assert exc_info.value.permanent is False

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        client = build_client(handler)

        with pytest.raises(ChainTimeoutError) as exc_info:
            await client.direct_transfer(CENTRAL_WALLET, BUYER_WALLET, 1, 1, "n")
        assert exc_info.value.operation == "direct_transfer"

    @pytest.mark.asyncio
    async def test_connection_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        client = build_client(handler)

        with pytest.raises(ChainError) as exc_info:
            await client.check_receiver_ready(BUYER_WALLET, 1)
        assert exc_info.value.permanent is False
        assert not isinstance(exc_info.value, ChainTimeoutError)

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=b"<html>")

        client = build_client(handler)

        with pytest.raises(ChainError, match="invalid JSON"):
            await client.get_spendable_balance(BUYER_WALLET)


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_lazy_client_carries_token(self):
        client = HttpChainClient(BASE_URL, "gateway-token", APP_ID)
        assert client.http_client.headers["Authorization"] == "Bearer gateway-token"
        await client.close()
