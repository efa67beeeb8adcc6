"""
Solana JSON-RPC client.

Sends and monitors the bundled swap transactions, simulates them for dry
runs and reads the balances and lookup tables the bundle needs.
"""

from __future__ import annotations

import asyncio
import base64
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

import httpx

from ...config import settings

logger = logging.getLogger(__name__)

TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"


class SolanaTransactionStatus(str, Enum):
    """Status of a Solana transaction."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    EXPIRED = "expired"


@dataclass
class SolanaTransactionResult:
    """Result of a Solana transaction submission."""
    signature: str
    status: SolanaTransactionStatus
    slot: Optional[int] = None
    fee: Optional[int] = None
    error: Optional[str] = None


@dataclass
class SolanaSimulationResult:
    """Outcome of simulateTransaction."""
    error: Optional[Any]
    logs: List[str]
    units_consumed: Optional[int]

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class SolanaRpcConfig:
    """Configuration for Solana RPC connection."""
    rpc_url: str
    commitment: str = "confirmed"
    max_retries: int = 3
    timeout_s: float = 30.0

    @classmethod
    def from_settings(cls) -> "SolanaRpcConfig":
        return cls(rpc_url=settings.solana_rpc_url)


class SolanaRpcError(Exception):
    """Error in Solana RPC communication."""
    pass


class SolanaRpcClient:
    """
    Async Solana RPC client.

    Transactions are signed by the wallet; this client only broadcasts
    and observes them.
    """

    def __init__(self, config: Optional[SolanaRpcConfig] = None, client: Optional[httpx.AsyncClient] = None):
        self._config = config or SolanaRpcConfig.from_settings()
        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._config.timeout_s)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _rpc_call(self, method: str, params: List[Any]) -> Any:
        """Make an RPC call, retrying transport failures with linear backoff."""
        client = await self._get_client()

        payload = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": method,
            "params": params,
        }

        for attempt in range(self._config.max_retries):
            try:
                response = await client.post(
                    self._config.rpc_url,
                    json=payload,
                    headers={"Content-Type": "application/json"},
                )
                response.raise_for_status()
                data = response.json()

                if "error" in data:
                    error_msg = data["error"].get("message", str(data["error"]))
                    raise SolanaRpcError(f"RPC error: {error_msg}")

                return data.get("result")

            except httpx.HTTPStatusError as e:
                if attempt == self._config.max_retries - 1:
                    raise SolanaRpcError(f"HTTP error: {e.response.status_code}")
                await asyncio.sleep(0.5 * (attempt + 1))
            except httpx.RequestError as e:
                if attempt == self._config.max_retries - 1:
                    raise SolanaRpcError(str(e))
                await asyncio.sleep(0.5 * (attempt + 1))

        raise SolanaRpcError("Max retries exceeded")

    async def send_transaction(self, signed_transaction: bytes, skip_preflight: bool = False) -> str:
        """
        Send a signed transaction to the network.

        Args:
            signed_transaction: Serialized signed transaction
            skip_preflight: Skip the node's preflight simulation

        Returns:
            Transaction signature (base58)
        """
        options = {
            "encoding": "base64",
            "skipPreflight": skip_preflight,
            "preflightCommitment": self._config.commitment,
            "maxRetries": self._config.max_retries,
        }

        signature = await self._rpc_call(
            "sendTransaction",
            [base64.b64encode(signed_transaction).decode(), options],
        )
        if not signature:
            raise SolanaRpcError("No signature returned from sendTransaction")
        return signature

    async def get_transaction_status(self, signature: str) -> SolanaTransactionResult:
        """Current status of a transaction."""
        tx_data = await self._rpc_call(
            "getTransaction",
            [signature, {"commitment": self._config.commitment, "maxSupportedTransactionVersion": 0}],
        )

        if tx_data is None:
            # Not found yet: still pending or dropped
            return SolanaTransactionResult(signature=signature, status=SolanaTransactionStatus.PENDING)

        meta = tx_data.get("meta") or {}
        if meta.get("err") is not None:
            return SolanaTransactionResult(
                signature=signature,
                status=SolanaTransactionStatus.FAILED,
                slot=tx_data.get("slot"),
                fee=meta.get("fee"),
                error=str(meta.get("err")),
            )

        return SolanaTransactionResult(
            signature=signature,
            status=SolanaTransactionStatus.CONFIRMED,
            slot=tx_data.get("slot"),
            fee=meta.get("fee"),
        )

    async def wait_for_confirmation(
        self,
        signature: str,
        timeout_s: float = 60.0,
        poll_interval_s: float = 1.0,
    ) -> SolanaTransactionResult:
        """
        Wait for a transaction to reach a terminal state.

        Polls with exponential backoff (max 5 seconds between polls).
        """
        start_time = time.monotonic()
        interval = poll_interval_s

        while (time.monotonic() - start_time) < timeout_s:
            try:
                result = await self.get_transaction_status(signature)
            except SolanaRpcError as e:
                logger.warning(f"Error checking transaction status: {e}")
            else:
                if result.status != SolanaTransactionStatus.PENDING:
                    return result

            await asyncio.sleep(interval)
            interval = min(interval * 1.5, 5.0)

        return SolanaTransactionResult(
            signature=signature,
            status=SolanaTransactionStatus.EXPIRED,
            error="Transaction confirmation timed out",
        )

    async def get_latest_blockhash(self) -> str:
        result = await self._rpc_call(
            "getLatestBlockhash",
            [{"commitment": self._config.commitment}],
        )
        return result["value"]["blockhash"]

    async def simulate_transaction(self, transaction: bytes) -> SolanaSimulationResult:
        """
        Simulate an (unsigned) transaction.

        Signature verification is disabled and the blockhash replaced, so a
        bundle can be dry-run before the wallet is asked to sign it.
        """
        options = {
            "encoding": "base64",
            "commitment": self._config.commitment,
            "sigVerify": False,
            "replaceRecentBlockhash": True,
        }

        result = await self._rpc_call(
            "simulateTransaction",
            [base64.b64encode(transaction).decode(), options],
        )

        value = (result or {}).get("value") or {}
        return SolanaSimulationResult(
            error=value.get("err"),
            logs=value.get("logs") or [],
            units_consumed=value.get("unitsConsumed"),
        )

    async def get_balance(self, address: str) -> int:
        """SOL balance in lamports."""
        result = await self._rpc_call(
            "getBalance",
            [address, {"commitment": self._config.commitment}],
        )
        return int((result or {}).get("value", 0))

    async def get_token_accounts(self, owner: str, mint: Optional[str] = None) -> List[Dict[str, Any]]:
        """Token accounts for an owner, optionally filtered by mint."""
        filter_option = {"mint": mint} if mint else {"programId": TOKEN_PROGRAM_ID}

        result = await self._rpc_call(
            "getTokenAccountsByOwner",
            [
                owner,
                filter_option,
                {"encoding": "jsonParsed", "commitment": self._config.commitment},
            ],
        )

        accounts = []
        for item in (result or {}).get("value", []):
            parsed = item.get("account", {}).get("data", {}).get("parsed", {})
            info = parsed.get("info", {})
            accounts.append({
                "address": item.get("pubkey"),
                "mint": info.get("mint"),
                "owner": info.get("owner"),
                "amount": int(info.get("tokenAmount", {}).get("amount", 0)),
                "decimals": info.get("tokenAmount", {}).get("decimals", 0),
            })

        return accounts

    async def get_multiple_accounts(self, addresses: List[str]) -> List[Optional[bytes]]:
        """Raw account data for each address (None for missing accounts)."""
        result = await self._rpc_call(
            "getMultipleAccounts",
            [addresses, {"encoding": "base64", "commitment": self._config.commitment}],
        )

        accounts: List[Optional[bytes]] = []
        for item in (result or {}).get("value", []):
            if not item:
                accounts.append(None)
                continue
            data = item.get("data") or ["", "base64"]
            accounts.append(base64.b64decode(data[0]))
        return accounts
