"""
Tests for the EVM batch swapper surface, its authorizer and balance oracle.

The JSON-RPC client is mocked; calldata encoding is exercised for real.
"""

from unittest.mock import AsyncMock

import pytest
from eth_abi import encode as abi_encode

from sweeper.core.execution.evm_rpc import EvmRpcClient, RpcError
from sweeper.core.execution.evm_surface import (
    NATIVE_TOKEN,
    Erc20Authorizer,
    Erc20BalanceOracle,
    EvmBatchSurface,
    EvmSigner,
)
from sweeper.core.execution.models import (
    GasEstimate,
    ResourceEstimate,
    TransactionResult,
    TransactionStatus,
)
from sweeper.core.execution.tx_builder import REVERT_ERROR_SELECTOR, encode_route
from sweeper.core.recovery.errors import (
    AuthorizationFailure,
    ConfirmationTimeoutError,
    ErrorCategory,
    OnChainRevertError,
    SubmissionError,
    UserCancelledError,
    ValidationFailure,
)
from sweeper.core.sweep.models import Quote, SwapStep
from sweeper.providers.zerox import ZeroExRoute

OWNER = "0x1111111111111111111111111111111111111111"
SWAPPER = "0x3333333333333333333333333333333333333333"
ROUTER = "0x0000000000001ff3684f28c67538d4d072c22734"
USDC = "0x833589fcd6edb6e08f4c7c32d4f71b54bda02913"
USDT = "0xdac17f958d2ee523a2206206994597c13d831ec7"


class RecordingSigner(EvmSigner):
    def __init__(self, error: Exception = None):
        self.error = error
        self.signed = []

    async def sign_transaction(self, tx):
        if self.error is not None:
            raise self.error
        self.signed.append(tx)
        return "0xsigned"


def make_step(n: int) -> SwapStep:
    return SwapStep(
        token_in=f"0x{n:040x}",
        token_out=USDC,
        amount_in=10**18,
        quoted_in=10**18,
        quoted_out=10**6,
        slippage_bps=100,
        route=encode_route(ROUTER, "0xabcd"),
        use_all=True,
    )


def revert_data(reason: str) -> str:
    return REVERT_ERROR_SELECTOR + abi_encode(["string"], [reason]).hex()


@pytest.fixture
def rpc():
    mock = AsyncMock(spec=EvmRpcClient)
    mock.estimate_gas.return_value = 300_000
    mock.fee_estimate.side_effect = lambda gas_limit: GasEstimate(
        gas_limit=gas_limit,
        gas_price_wei=2_000_000_000,
        max_fee_per_gas=2_000_000_000,
        max_priority_fee_per_gas=1_000_000_000,
    )
    mock.get_transaction_count.return_value = 7
    mock.send_raw_transaction.return_value = "0xhash"
    mock.wait_for_receipt.return_value = TransactionResult(
        tx_hash="0xhash",
        status=TransactionStatus.CONFIRMED,
        chain_id=8453,
        block_number=123,
        gas_used=250_000,
    )
    return mock


@pytest.fixture
def signer():
    return RecordingSigner()


@pytest.fixture
def surface(rpc, signer):
    return EvmBatchSurface(8453, OWNER, rpc, signer, swapper=SWAPPER, capacity=5, confirmation_timeout_s=5)


# =============================================================================
# Surface shape
# =============================================================================

class TestSurfaceShape:
    def test_capacity_and_spender(self, surface):
        assert surface.capacity_limit == 5
        assert surface.spender == SWAPPER
        assert surface.owner == OWNER
        assert isinstance(surface.authorizer, Erc20Authorizer)

    def test_default_swapper_from_chain_config(self, rpc, signer):
        surface = EvmBatchSurface(8453, OWNER, rpc, signer)

        assert surface.swapper == "0x25f11f947309df89bf4d36da5d9a9fb5f1e186c1"

    def test_encode_route(self, surface):
        quote = Quote(
            token_in=f"0x{1:040x}",
            token_out=USDC,
            amount_in=1,
            quoted_out=1,
            price_impact_pct=0.0,
            route=ZeroExRoute(to=ROUTER, data="0xabcd"),
        )

        assert surface.encode_route(quote) == encode_route(ROUTER, "0xabcd")


# =============================================================================
# Validation
# =============================================================================

class TestValidate:
    @pytest.mark.asyncio
    async def test_estimate(self, surface, rpc):
        estimate = await surface.validate([make_step(1), make_step(2)])

        assert estimate.units == 300_000
        assert estimate.details == {"steps": 2}
        from_address, to_address, data = rpc.estimate_gas.call_args.args
        assert (from_address, to_address) == (OWNER, SWAPPER)
        assert data.startswith("0x")

    @pytest.mark.asyncio
    async def test_revert_reason_classified(self, surface, rpc):
        rpc.estimate_gas.side_effect = RpcError(
            "RPC error: execution reverted",
            code=3,
            data=revert_data("AGG_SWAP_FAIL #1002"),
        )

        with pytest.raises(ValidationFailure) as exc:
            await surface.validate([make_step(1)])

        assert exc.value.reason == "Swap failed - token may have transfer tax or no liquidity"
        assert exc.value.category == ErrorCategory.CONTRACT
        assert exc.value.raw == "AGG_SWAP_FAIL #1002"

    @pytest.mark.asyncio
    async def test_plain_rpc_error(self, surface, rpc):
        rpc.estimate_gas.side_effect = RpcError("RPC error: execution reverted: slippage exceeded")

        with pytest.raises(ValidationFailure) as exc:
            await surface.validate([make_step(1)])

        assert exc.value.reason == "Slippage exceeded - price moved too much"

    @pytest.mark.asyncio
    async def test_validate_never_signs(self, surface, signer, rpc):
        await surface.validate([make_step(1)])

        assert signer.signed == []
        rpc.send_raw_transaction.assert_not_called()


# =============================================================================
# Execution
# =============================================================================

class TestExecute:
    @pytest.mark.asyncio
    async def test_confirmed(self, surface, signer, rpc):
        receipt = await surface.execute([make_step(1)], ResourceEstimate(units=300_000), 30)

        assert receipt.receipt_id == "0xhash"
        assert receipt.status == TransactionStatus.CONFIRMED
        assert receipt.block == 123
        assert receipt.units_used == 250_000

        tx = signer.signed[0]
        assert tx.gas_estimate.gas_limit == 390_000
        assert tx.nonce == 7
        assert tx.to_address == SWAPPER
        rpc.send_raw_transaction.assert_awaited_once_with("0xsigned")

        fields = tx.to_dict()
        assert fields["gas"] == hex(390_000)
        assert fields["nonce"] == "0x7"
        assert fields["chainId"] == hex(8453)
        assert fields["maxFeePerGas"] == hex(2_000_000_000)
        assert "gasPrice" not in fields

    @pytest.mark.asyncio
    async def test_reverted(self, surface, rpc):
        rpc.wait_for_receipt.return_value = TransactionResult(
            tx_hash="0xhash", status=TransactionStatus.REVERTED, error="Transaction reverted"
        )

        with pytest.raises(OnChainRevertError) as exc:
            await surface.execute([make_step(1)], ResourceEstimate(units=300_000), 30)

        assert exc.value.context.tx_hash == "0xhash"

    @pytest.mark.asyncio
    async def test_timeout(self, surface, rpc):
        rpc.wait_for_receipt.return_value = TransactionResult(tx_hash="0xhash", status=TransactionStatus.TIMEOUT)

        with pytest.raises(ConfirmationTimeoutError) as exc:
            await surface.execute([make_step(1)], ResourceEstimate(units=300_000), 30)

        assert exc.value.context.tx_hash == "0xhash"

    @pytest.mark.asyncio
    async def test_declined_signature(self, rpc):
        surface = EvmBatchSurface(
            8453, OWNER, rpc, RecordingSigner(Exception("User rejected the request.")), swapper=SWAPPER
        )

        with pytest.raises(UserCancelledError):
            await surface.execute([make_step(1)], ResourceEstimate(units=300_000), 30)

        rpc.send_raw_transaction.assert_not_called()

    @pytest.mark.asyncio
    async def test_signer_failure(self, rpc):
        surface = EvmBatchSurface(8453, OWNER, rpc, RecordingSigner(RuntimeError("device locked")), swapper=SWAPPER)

        with pytest.raises(SubmissionError) as exc:
            await surface.execute([make_step(1)], ResourceEstimate(units=300_000), 30)

        assert exc.value.reason == "Signing failed: device locked"

    @pytest.mark.asyncio
    async def test_broadcast_failure(self, surface, rpc):
        rpc.send_raw_transaction.side_effect = RpcError("RPC error: nonce too low")

        with pytest.raises(SubmissionError) as exc:
            await surface.execute([make_step(1)], ResourceEstimate(units=300_000), 30)

        assert exc.value.reason.startswith("Broadcast failed")
        rpc.wait_for_receipt.assert_not_called()


# =============================================================================
# Authorization and balances
# =============================================================================

class TestErc20Authorizer:
    @pytest.mark.asyncio
    async def test_allowance(self, rpc, signer):
        rpc.call.return_value = "0x" + hex(500)[2:].zfill(64)
        authorizer = Erc20Authorizer(8453, OWNER, rpc, signer)

        assert await authorizer.allowance(USDC, OWNER, SWAPPER) == 500
        to_address, data = rpc.call.call_args.args
        assert to_address == USDC
        assert data.startswith("0xdd62ed3e")

    @pytest.mark.asyncio
    async def test_allowance_read_failure(self, rpc, signer):
        rpc.call.side_effect = RpcError("RPC error: header not found")
        authorizer = Erc20Authorizer(8453, OWNER, rpc, signer)

        with pytest.raises(AuthorizationFailure) as exc:
            await authorizer.allowance(USDC, OWNER, SWAPPER)

        assert exc.value.reason == "Allowance check failed: RPC error: header not found"
        assert exc.value.token == USDC
        assert signer.signed == []

    @pytest.mark.asyncio
    async def test_approve(self, rpc, signer):
        authorizer = Erc20Authorizer(8453, OWNER, rpc, signer, confirmation_timeout_s=5)

        tx_hash = await authorizer.approve(USDC, SWAPPER, 10**18)

        assert tx_hash == "0xhash"
        tx = signer.signed[0]
        assert tx.to_address == USDC
        assert tx.data.startswith("0x095ea7b3")
        assert tx.gas_estimate.gas_limit == 390_000

    @pytest.mark.asyncio
    async def test_approve_reverted(self, rpc, signer):
        rpc.wait_for_receipt.return_value = TransactionResult(
            tx_hash="0xhash", status=TransactionStatus.REVERTED, error="Transaction reverted"
        )
        authorizer = Erc20Authorizer(8453, OWNER, rpc, signer)

        with pytest.raises(AuthorizationFailure) as exc:
            await authorizer.approve(USDC, SWAPPER, 10**18)

        assert exc.value.reason == "Transaction reverted"
        assert exc.value.context.tx_hash == "0xhash"

    @pytest.mark.asyncio
    async def test_approve_rpc_failure(self, rpc, signer):
        rpc.estimate_gas.side_effect = RpcError("RPC error: execution reverted")
        authorizer = Erc20Authorizer(8453, OWNER, rpc, signer)

        with pytest.raises(AuthorizationFailure):
            await authorizer.approve(USDC, SWAPPER, 10**18)

    def test_usdt_on_mainnet_requires_reset(self, rpc, signer):
        assert Erc20Authorizer(1, OWNER, rpc, signer).requires_reset(USDT)
        assert not Erc20Authorizer(8453, OWNER, rpc, signer).requires_reset(USDT)

    @pytest.mark.asyncio
    async def test_ensure_resets_before_raising(self, rpc, signer):
        rpc.call.return_value = "0x" + hex(5)[2:].zfill(64)
        authorizer = Erc20Authorizer(1, OWNER, rpc, signer)

        raised = await authorizer.ensure(USDT, OWNER, SWAPPER, required=100, raise_to=1_000)

        assert raised is True
        amounts = [int(tx.data[-64:], 16) for tx in signer.signed]
        assert amounts == [0, 1_000]

    @pytest.mark.asyncio
    async def test_ensure_noop_when_sufficient(self, rpc, signer):
        rpc.call.return_value = "0x" + hex(100)[2:].zfill(64)
        authorizer = Erc20Authorizer(8453, OWNER, rpc, signer)

        assert await authorizer.ensure(USDC, OWNER, SWAPPER, required=100, raise_to=1_000) is False
        assert signer.signed == []


class TestErc20BalanceOracle:
    @pytest.mark.asyncio
    async def test_token_balance(self, rpc):
        rpc.call.return_value = "0x" + hex(42)[2:].zfill(64)

        assert await Erc20BalanceOracle(rpc).balance_of(USDC, OWNER) == 42

    @pytest.mark.asyncio
    async def test_native_balance(self, rpc):
        rpc.get_balance.return_value = 10**18

        assert await Erc20BalanceOracle(rpc).balance_of(NATIVE_TOKEN, OWNER) == 10**18
        rpc.call.assert_not_called()
