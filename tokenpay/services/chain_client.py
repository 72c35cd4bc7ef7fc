"""
Chain Client - On-chain capability used by the settlement dispatcher.

Signing and broadcast live behind a custodial signing gateway; this module
only speaks its HTTP API. Nonce/sequence ordering for the custodial wallet is
the gateway's responsibility.
"""

from typing import Any, Protocol

import httpx
from structlog import get_logger

from tokenpay.exceptions import ChainError, ChainTimeoutError
from tokenpay.models.api import TransferKind
from tokenpay.models.domain import FoundTransfer, InboxSendInfo, TxResult

logger = get_logger(__name__)


class ChainClient(Protocol):
    """
    Protocol for on-chain operations.

    Every method raises ChainError on failure.
    """

    async def check_receiver_ready(self, address: str, asset_id: int) -> bool:
        """True if the receiver can already hold the asset (opted in)."""
        ...

    async def direct_transfer(
        self, sender: str, receiver: str, asset_id: int, amount: int, note: str
    ) -> TxResult:
        """Transfer amount base units of the asset straight to the receiver."""
        ...

    async def deposit_to_inbox(
        self,
        sender: str,
        receiver: str,
        asset_id: int,
        amount: int,
        note: str,
        send_info: InboxSendInfo,
    ) -> TxResult:
        """Deposit the asset into the receiver's custodial inbox for a later claim."""
        ...

    async def fund_native_currency(
        self, sender: str, receiver: str, amount: int, note: str
    ) -> TxResult:
        """Send amount microAlgos to the receiver."""
        ...

    async def get_spendable_balance(self, address: str) -> int:
        """Native balance above the account's minimum balance, in microAlgos."""
        ...

    async def get_inbox_send_info(self, receiver: str, asset_id: int) -> InboxSendInfo:
        """Ask the inbox router what a deposit to receiver requires."""
        ...

    async def opt_router_in(self, asset_id: int) -> TxResult:
        """Register the inbox router for the asset."""
        ...

    async def find_transfer(
        self, sender: str, receiver: str, asset_id: int, note: str
    ) -> FoundTransfer | None:
        """Locate a confirmed direct transfer or inbox deposit carrying note."""
        ...


class HttpChainClient:
    """
    ChainClient backed by the custodial signing gateway's REST API.

    Gateway errors with a 4xx status are permanent; 5xx and transport errors
    are transient.
    """

    def __init__(
        self,
        base_url: str,
        api_token: str,
        inbox_router_app_id: int,
        timeout_seconds: float = 20.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_token = api_token
        self.inbox_router_app_id = inbox_router_app_id
        self.timeout_seconds = timeout_seconds
        self._http_client = http_client

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Lazy-initialize HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout_seconds,
                headers={"Authorization": f"Bearer {self.api_token}"},
            )
        return self._http_client

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        try:
            response = await self.http_client.request(method, path, json=json, params=params)
            response.raise_for_status()
            body = response.json()
        except httpx.TimeoutException as exc:
            logger.warning("chain_gateway_timeout", operation=operation)
            raise ChainTimeoutError(operation, self.timeout_seconds) from exc
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            detail = _error_detail(exc.response)
            logger.error(
                "chain_gateway_error", operation=operation, status_code=status, detail=detail
            )
            raise ChainError(f"{operation}: {detail}", permanent=400 <= status < 500) from exc
        except httpx.HTTPError as exc:
            logger.error("chain_gateway_unreachable", operation=operation, error=str(exc))
            raise ChainError(f"{operation}: {exc}") from exc
        except ValueError as exc:
            raise ChainError(f"{operation}: gateway returned invalid JSON") from exc

        if not isinstance(body, dict):
            raise ChainError(f"{operation}: unexpected gateway response")
        return body

    async def _submit(self, operation: str, path: str, payload: dict[str, Any]) -> TxResult:
        body = await self._request(operation, "POST", path, json=payload)
        tx_id = body.get("tx_id")
        if not tx_id:
            raise ChainError(f"{operation}: gateway response has no tx_id")
        logger.info("chain_transaction_submitted", operation=operation, tx_id=tx_id)
        return TxResult(tx_id=str(tx_id))

    async def check_receiver_ready(self, address: str, asset_id: int) -> bool:
        body = await self._request(
            "check_receiver_ready", "GET", f"/v1/accounts/{address}/assets/{asset_id}"
        )
        return bool(body.get("opted_in", False))

    async def direct_transfer(
        self, sender: str, receiver: str, asset_id: int, amount: int, note: str
    ) -> TxResult:
        return await self._submit(
            "direct_transfer",
            "/v1/transfers/asset",
            {
                "sender": sender,
                "receiver": receiver,
                "asset_id": asset_id,
                "amount": amount,
                "note": note,
            },
        )

    async def deposit_to_inbox(
        self,
        sender: str,
        receiver: str,
        asset_id: int,
        amount: int,
        note: str,
        send_info: InboxSendInfo,
    ) -> TxResult:
        return await self._submit(
            "deposit_to_inbox",
            f"/v1/inbox/{self.inbox_router_app_id}/deposits",
            {
                "sender": sender,
                "receiver": receiver,
                "asset_id": asset_id,
                "amount": amount,
                "note": note,
                "inner_txn_count": send_info.inner_txn_count,
                "mbr": send_info.mbr,
            },
        )

    async def fund_native_currency(
        self, sender: str, receiver: str, amount: int, note: str
    ) -> TxResult:
        return await self._submit(
            "fund_native_currency",
            "/v1/transfers/native",
            {"sender": sender, "receiver": receiver, "amount": amount, "note": note},
        )

    async def get_spendable_balance(self, address: str) -> int:
        body = await self._request(
            "get_spendable_balance", "GET", f"/v1/accounts/{address}/balance"
        )
        try:
            return int(body["spendable"])
        except (KeyError, TypeError, ValueError) as exc:
            raise ChainError("get_spendable_balance: missing spendable amount") from exc

    async def get_inbox_send_info(self, receiver: str, asset_id: int) -> InboxSendInfo:
        body = await self._request(
            "get_inbox_send_info",
            "GET",
            f"/v1/inbox/{self.inbox_router_app_id}/send-info",
            params={"receiver": receiver, "asset_id": asset_id},
        )
        try:
            return InboxSendInfo(
                router_opted_in=bool(body["router_opted_in"]),
                receiver_opted_in=bool(body["receiver_opted_in"]),
                inner_txn_count=int(body["inner_txn_count"]),
                mbr=int(body["mbr"]),
                receiver_algo_needed_for_claim=int(body["receiver_algo_needed_for_claim"]),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ChainError(f"get_inbox_send_info: malformed response ({exc})") from exc

    async def opt_router_in(self, asset_id: int) -> TxResult:
        return await self._submit(
            "opt_router_in",
            f"/v1/inbox/{self.inbox_router_app_id}/opt-in",
            {"asset_id": asset_id},
        )

    async def find_transfer(
        self, sender: str, receiver: str, asset_id: int, note: str
    ) -> FoundTransfer | None:
        body = await self._request(
            "find_transfer",
            "GET",
            "/v1/transfers/search",
            params={
                "sender": sender,
                "receiver": receiver,
                "asset_id": asset_id,
                "note": note,
                "inbox_app_id": self.inbox_router_app_id,
            },
        )
        tx_id = body.get("tx_id")
        if not tx_id:
            return None
        try:
            method = TransferKind(body.get("method", TransferKind.DIRECT_TRANSFER.value))
        except ValueError as exc:
            raise ChainError(f"find_transfer: unknown method {body.get('method')}") from exc
        return FoundTransfer(tx_id=str(tx_id), method=method)

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return f"HTTP {response.status_code}"
