"""
EVM execution surface: the batch swapper contract.

Every step of a batch becomes one element of the ``executePlanFromCaller``
plan; the contract pulls the input tokens from the caller, runs each
aggregator call and reverts the whole plan if any step falls short of its
slippage-adjusted minimum.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional, Sequence

import httpx

from ...config import settings
from ..chains import requires_allowance_reset, swapper_for
from ..recovery.errors import (
    AuthorizationFailure,
    ConfirmationTimeoutError,
    ErrorKind,
    OnChainRevertError,
    SubmissionError,
    UserCancelledError,
    ValidationFailure,
    classify_failure,
)
from ..sweep.models import Quote, SwapStep
from .evm_rpc import EvmRpcClient, RpcError
from .models import ExecutionReceipt, PreparedTransaction, ResourceEstimate, TransactionStatus
from .surface import AuthorizationPrimitive, BalanceOracle, ExecutionSurface
from .tx_builder import (
    TransactionBuilder,
    decode_revert_reason,
    decode_uint256,
    encode_allowance_call,
    encode_balance_of_call,
    encode_route,
)

logger = logging.getLogger(__name__)

NATIVE_TOKEN = "0xeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeee"

APPROVAL_GAS_HEADROOM_PCT = 30


class EvmSigner(ABC):
    """Wallet capability that signs EVM transactions."""

    @abstractmethod
    async def sign_transaction(self, tx: PreparedTransaction) -> str:
        """Return the raw signed transaction (hex). Raises UserCancelledError when declined."""


async def _sign(signer: EvmSigner, tx: PreparedTransaction) -> str:
    try:
        return await signer.sign_transaction(tx)
    except UserCancelledError:
        raise
    except Exception as e:
        classified = classify_failure(e, default_kind=ErrorKind.SUBMISSION_ERROR)
        if classified.kind == ErrorKind.USER_CANCELLED:
            raise UserCancelledError() from e
        raise SubmissionError(f"Signing failed: {classified.reason}") from e


async def _prepare_and_send(
    rpc: EvmRpcClient,
    signer: EvmSigner,
    tx: PreparedTransaction,
    gas_limit: int,
) -> str:
    """Fill fees and nonce, sign and broadcast. Returns the tx hash."""
    try:
        tx.gas_estimate = await rpc.fee_estimate(gas_limit)
        tx.nonce = await rpc.get_transaction_count(tx.from_address)
    except (RpcError, httpx.HTTPError) as e:
        raise SubmissionError(f"Failed to prepare transaction: {e}") from e

    signed = await _sign(signer, tx)

    try:
        return await rpc.send_raw_transaction(signed)
    except (RpcError, httpx.HTTPError) as e:
        raise SubmissionError(f"Broadcast failed: {e}") from e


def _validation_failure(error: Exception) -> ValidationFailure:
    raw = decode_revert_reason(getattr(error, "data", None)) or str(error)
    classified = classify_failure(raw)
    return ValidationFailure(classified.reason, raw=raw, category=classified.category)


class Erc20Authorizer(AuthorizationPrimitive):
    """ERC20 allowances granted by the sweeping wallet."""

    def __init__(
        self,
        chain_id: int,
        owner: str,
        rpc: EvmRpcClient,
        signer: EvmSigner,
        confirmation_timeout_s: Optional[float] = None,
    ):
        self.chain_id = chain_id
        self.owner = owner
        self.rpc = rpc
        self.signer = signer
        self.confirmation_timeout_s = confirmation_timeout_s or settings.confirmation_timeout_seconds

    def requires_reset(self, token: str) -> bool:
        return requires_allowance_reset(self.chain_id, token)

    async def allowance(self, token: str, owner: str, spender: str) -> int:
        try:
            result = await self.rpc.call(token, encode_allowance_call(owner, spender))
        except (RpcError, httpx.HTTPError) as e:
            raise AuthorizationFailure(f"Allowance check failed: {e}", token=token) from e
        return decode_uint256(result)

    async def approve(self, token: str, spender: str, amount: int) -> str:
        tx = TransactionBuilder.build_erc20_approve(
            chain_id=self.chain_id,
            owner_address=self.owner,
            token_address=token,
            spender_address=spender,
            amount=amount,
        )

        try:
            gas = await self.rpc.estimate_gas(self.owner, token, tx.data)
            tx_hash = await _prepare_and_send(
                self.rpc, self.signer, tx, gas * (100 + APPROVAL_GAS_HEADROOM_PCT) // 100
            )
            result = await self.rpc.wait_for_receipt(tx_hash, self.confirmation_timeout_s)
        except UserCancelledError:
            raise
        except (RpcError, httpx.HTTPError, SubmissionError) as e:
            raise AuthorizationFailure(classify_failure(e).reason, token=token) from e

        if not result.is_success:
            raise AuthorizationFailure(result.error or "Approval not confirmed", token=token, tx_hash=tx_hash)

        logger.info(f"Approved {spender} for {amount} of {token} ({tx_hash})")
        return tx_hash


class Erc20BalanceOracle(BalanceOracle):
    """Reads ERC20 (or native) balances over JSON-RPC."""

    def __init__(self, rpc: EvmRpcClient):
        self.rpc = rpc

    async def balance_of(self, token: str, owner: str) -> int:
        if token.lower() == NATIVE_TOKEN:
            return await self.rpc.get_balance(owner)
        result = await self.rpc.call(token, encode_balance_of_call(owner))
        return decode_uint256(result)


class EvmBatchSurface(ExecutionSurface):
    """
    Batch swapper contract on an EVM chain.

    Dry runs use ``eth_estimateGas`` on the same calldata that is later
    signed, so a passing estimate means the plan executes under current
    state.
    """

    name = "evm"

    def __init__(
        self,
        chain_id: int,
        owner: str,
        rpc: EvmRpcClient,
        signer: EvmSigner,
        *,
        swapper: Optional[str] = None,
        capacity: Optional[int] = None,
        confirmation_timeout_s: Optional[float] = None,
        authorizer: Optional[AuthorizationPrimitive] = None,
    ):
        self.chain_id = chain_id
        self._owner = owner
        self.rpc = rpc
        self.signer = signer
        self.swapper = swapper or swapper_for(chain_id, settings.swapper_addresses)
        self.spender = self.swapper
        self._capacity = capacity or settings.evm_batch_size
        self.confirmation_timeout_s = confirmation_timeout_s or settings.confirmation_timeout_seconds
        self.authorizer = authorizer or Erc20Authorizer(
            chain_id, owner, rpc, signer, self.confirmation_timeout_s
        )

    @property
    def capacity_limit(self) -> int:
        return self._capacity

    @property
    def owner(self) -> str:
        return self._owner

    def encode_route(self, quote: Quote) -> bytes:
        route = quote.route
        return encode_route(route.to, route.data)

    def _build(self, steps: Sequence[SwapStep]) -> PreparedTransaction:
        return TransactionBuilder.build_execute_plan(
            chain_id=self.chain_id,
            owner_address=self._owner,
            swapper_address=self.swapper,
            steps=steps,
        )

    async def validate(self, steps: Sequence[SwapStep]) -> ResourceEstimate:
        tx = self._build(steps)
        try:
            gas = await self.rpc.estimate_gas(self._owner, self.swapper, tx.data)
        except (RpcError, httpx.HTTPError) as e:
            raise _validation_failure(e) from e
        return ResourceEstimate(units=gas, details={"steps": len(steps)})

    async def execute(
        self,
        steps: Sequence[SwapStep],
        estimate: ResourceEstimate,
        headroom_pct: int,
    ) -> ExecutionReceipt:
        tx = self._build(steps)
        gas_limit = estimate.with_headroom(headroom_pct)
        logger.info(f"Submitting {len(steps)} swap(s) to {self.swapper} with gas limit {gas_limit}")

        tx_hash = await _prepare_and_send(self.rpc, self.signer, tx, gas_limit)
        result = await self.rpc.wait_for_receipt(tx_hash, self.confirmation_timeout_s)

        if result.status == TransactionStatus.REVERTED:
            raise OnChainRevertError(tx_hash=tx_hash)
        if result.status == TransactionStatus.TIMEOUT:
            raise ConfirmationTimeoutError(tx_hash, self.confirmation_timeout_s)

        return ExecutionReceipt(
            receipt_id=tx_hash,
            status=result.status,
            units_used=result.gas_used,
            block=result.block_number,
        )
