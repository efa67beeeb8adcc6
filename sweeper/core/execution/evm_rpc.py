"""
JSON-RPC client for EVM chains.

Handles the calls a sweep needs:
- Gas estimation and fee history
- Read-only contract calls
- Raw transaction submission
- Receipt polling until a terminal state or timeout
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

import httpx

from ...config import settings
from .models import GasEstimate, TransactionResult, TransactionStatus


logger = logging.getLogger(__name__)


class RpcError(Exception):
    """The node answered with a JSON-RPC error object."""

    def __init__(self, message: str, code: Optional[int] = None, data: Optional[str] = None):
        super().__init__(message)
        self.code = code
        self.data = data


class EvmRpcClient:
    """
    Minimal async JSON-RPC client bound to one EVM chain.

    Usage:
        rpc = EvmRpcClient(chain_id=8453)
        gas = await rpc.estimate_gas(from_address, to_address, data)
        tx_hash = await rpc.send_raw_transaction(signed_tx)
        result = await rpc.wait_for_receipt(tx_hash, timeout_s=120)
    """

    def __init__(
        self,
        chain_id: int,
        rpc_url: Optional[str] = None,
        *,
        client: Optional[httpx.AsyncClient] = None,
        poll_interval_s: float = 2.0,
    ):
        self.chain_id = chain_id
        self.rpc_url = rpc_url or settings.rpc_url_for(chain_id)
        if not self.rpc_url:
            raise ValueError(f"No RPC URL configured for chain {chain_id}")
        self._client = client or httpx.AsyncClient(timeout=60.0)
        self.poll_interval_s = poll_interval_s

    async def _rpc_call(self, method: str, params: List[Any]) -> Any:
        """Make an RPC call to the chain."""
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params,
            "id": 1,
        }

        response = await self._client.post(self.rpc_url, json=payload)
        response.raise_for_status()
        result = response.json()

        if "error" in result:
            error = result["error"] or {}
            data = error.get("data")
            if isinstance(data, dict):
                data = data.get("data")
            raise RpcError(
                f"RPC error: {error.get('message', error)}",
                code=error.get("code"),
                data=data if isinstance(data, str) else None,
            )

        return result.get("result")

    async def estimate_gas(
        self,
        from_address: str,
        to_address: str,
        data: str,
        value: int = 0,
    ) -> int:
        """Raw gas estimate for a call, without headroom."""
        call_obj: Dict[str, Any] = {
            "from": from_address,
            "to": to_address,
            "data": data,
        }
        if value > 0:
            call_obj["value"] = hex(value)

        gas_hex = await self._rpc_call("eth_estimateGas", [call_obj])
        return int(gas_hex, 16)

    async def fee_estimate(self, gas_limit: int) -> GasEstimate:
        """EIP-1559 fee parameters for a transaction of ``gas_limit`` gas."""
        fee_history = await self._rpc_call("eth_feeHistory", [1, "latest", [50]])

        base_fee = int(fee_history["baseFeePerGas"][-1], 16)
        reward = fee_history.get("reward") or []
        priority_fee = int(reward[0][0], 16) if reward and reward[0] else 1_000_000_000
        max_fee = base_fee * 2 + priority_fee

        return GasEstimate(
            gas_limit=gas_limit,
            gas_price_wei=max_fee,
            max_fee_per_gas=max_fee,
            max_priority_fee_per_gas=priority_fee,
        )

    async def call(self, to_address: str, data: str, from_address: Optional[str] = None) -> str:
        call_obj: Dict[str, Any] = {"to": to_address, "data": data}
        if from_address:
            call_obj["from"] = from_address
        return await self._rpc_call("eth_call", [call_obj, "latest"])

    async def get_transaction_count(self, address: str) -> int:
        nonce_hex = await self._rpc_call("eth_getTransactionCount", [address, "pending"])
        return int(nonce_hex, 16)

    async def get_balance(self, address: str) -> int:
        balance_hex = await self._rpc_call("eth_getBalance", [address, "latest"])
        return int(balance_hex, 16)

    async def send_raw_transaction(self, signed_tx: str) -> str:
        """Broadcast a signed transaction and return its hash."""
        tx_hash = await self._rpc_call("eth_sendRawTransaction", [signed_tx])
        logger.info(f"Transaction submitted: {tx_hash}")
        return tx_hash

    async def wait_for_receipt(self, tx_hash: str, timeout_s: float) -> TransactionResult:
        """Poll for the receipt until the transaction is mined or the timeout elapses."""
        result = TransactionResult(tx_hash=tx_hash, status=TransactionStatus.SUBMITTED, chain_id=self.chain_id)
        start = time.monotonic()

        while True:
            if time.monotonic() - start > timeout_s:
                result.status = TransactionStatus.TIMEOUT
                result.error = f"Confirmation timeout after {timeout_s}s"
                return result

            try:
                receipt = await self._rpc_call("eth_getTransactionReceipt", [tx_hash])
            except (RpcError, httpx.HTTPError) as e:
                logger.warning(f"Error checking transaction status: {e}")
                receipt = None

            if receipt:
                result.block_number = int(receipt["blockNumber"], 16)
                result.gas_used = int(receipt.get("gasUsed", "0x0"), 16)

                # 0x1 = success, 0x0 = revert
                if int(receipt.get("status", "0x1"), 16) == 0:
                    result.status = TransactionStatus.REVERTED
                    result.error = "Transaction reverted"
                else:
                    result.status = TransactionStatus.CONFIRMED
                    logger.info(f"Transaction confirmed: {tx_hash} (block {result.block_number})")
                return result

            await asyncio.sleep(self.poll_interval_s)

    async def close(self) -> None:
        await self._client.aclose()
