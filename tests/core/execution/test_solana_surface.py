"""
Tests for the Solana instruction-bundle surface and balance oracle.

RPC and Jupiter are mocked; messages are compiled and signed with solders.
"""

import base64
import dataclasses
from unittest.mock import AsyncMock

import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.transaction import VersionedTransaction

from sweeper.core.chains import SOLANA_USDC_MINT, WRAPPED_SOL_MINT
from sweeper.core.execution.models import ResourceEstimate, TransactionStatus
from sweeper.core.execution.solana_rpc import (
    SolanaRpcClient,
    SolanaSimulationResult,
    SolanaTransactionResult,
    SolanaTransactionStatus,
)
import sweeper.core.execution.solana_surface as solana_surface
from sweeper.core.execution.solana_surface import (
    MAX_TRANSACTION_SIZE,
    SolanaBalanceOracle,
    SolanaBundleSurface,
    SolanaSigner,
)
from sweeper.core.recovery.errors import (
    ConfirmationTimeoutError,
    OnChainRevertError,
    SubmissionError,
    UserCancelledError,
    ValidationFailure,
)
from sweeper.core.sweep.models import SwapStep
from sweeper.providers.jupiter import (
    JupiterAccountMeta,
    JupiterInstruction,
    JupiterQuoteProvider,
    JupiterRoute,
    JupiterSwapError,
    JupiterSwapInstructions,
)

WALLET = Keypair()
OWNER = str(WALLET.pubkey())
PROGRAM = str(Pubkey.new_unique())


class KeypairSigner(SolanaSigner):
    def __init__(self, error: Exception = None):
        self.error = error
        self.messages = []

    async def sign_message(self, message):
        if self.error is not None:
            raise self.error
        self.messages.append(message)
        return VersionedTransaction(message, [WALLET])


def swap_instructions(extra_accounts: int = 1, tables=None) -> JupiterSwapInstructions:
    accounts = [JupiterAccountMeta(pubkey=OWNER, is_signer=True, is_writable=True)]
    accounts += [
        JupiterAccountMeta(pubkey=str(Pubkey.new_unique()), is_signer=False, is_writable=True)
        for _ in range(extra_accounts)
    ]
    return JupiterSwapInstructions(
        swap_instruction=JupiterInstruction(
            program_id=PROGRAM,
            accounts=accounts,
            data=base64.b64encode(b"\x01\x02\x03").decode(),
        ),
        address_lookup_table_addresses=tables or [],
    )


def make_step(n: int, slippage_bps: int = 50) -> SwapStep:
    return SwapStep(
        token_in=f"Mint{n}",
        token_out=SOLANA_USDC_MINT,
        amount_in=1_000_000,
        quoted_in=1_000_000,
        quoted_out=500_000,
        slippage_bps=slippage_bps,
        route=JupiterRoute(quote_response={"inputMint": f"Mint{n}", "outAmount": "500000"}),
    )


@pytest.fixture
def rpc():
    mock = AsyncMock(spec=SolanaRpcClient)
    mock.get_latest_blockhash.return_value = str(Hash.new_unique())
    mock.simulate_transaction.return_value = SolanaSimulationResult(error=None, logs=[], units_consumed=180_000)
    mock.send_transaction.return_value = "5sig"
    mock.wait_for_confirmation.return_value = SolanaTransactionResult(
        signature="5sig", status=SolanaTransactionStatus.CONFIRMED, slot=99
    )
    mock.get_multiple_accounts.return_value = []
    return mock


@pytest.fixture
def jupiter():
    mock = AsyncMock(spec=JupiterQuoteProvider)
    mock.get_swap_instructions.side_effect = lambda route, owner, slippage_bps=None: swap_instructions()
    return mock


@pytest.fixture
def signer():
    return KeypairSigner()


@pytest.fixture
def surface(rpc, jupiter, signer):
    return SolanaBundleSurface(OWNER, rpc, jupiter, signer, capacity=2, confirmation_timeout_s=5)


# =============================================================================
# Validation
# =============================================================================

class TestValidate:
    @pytest.mark.asyncio
    async def test_simulated_units(self, surface, rpc):
        estimate = await surface.validate([make_step(1), make_step(2)])

        assert estimate.units == 180_000
        assert estimate.details["steps"] == 2
        assert estimate.details["size_bytes"] <= MAX_TRANSACTION_SIZE
        rpc.simulate_transaction.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_default_units_when_not_reported(self, surface, rpc):
        rpc.simulate_transaction.return_value = SolanaSimulationResult(error=None, logs=[], units_consumed=None)

        estimate = await surface.validate([make_step(1)])

        assert estimate.units == surface.compute_units_per_swap

    @pytest.mark.asyncio
    async def test_instructions_memoized_per_slippage(self, surface, jupiter):
        await surface.validate([make_step(1)])
        await surface.validate([make_step(1)])
        await surface.validate([make_step(1, slippage_bps=1500)])

        assert jupiter.get_swap_instructions.await_count == 2
        assert jupiter.get_swap_instructions.call_args.kwargs["slippage_bps"] == 1500

    @pytest.mark.asyncio
    async def test_requoted_step_refetches_instructions(self, surface, jupiter):
        step = make_step(1)
        await surface.validate([step])

        fresh = JupiterRoute(quote_response={"inputMint": "Mint1", "outAmount": "510000"})
        await surface.validate([dataclasses.replace(step, route=fresh, quoted_out=510_000)])

        assert jupiter.get_swap_instructions.await_count == 2
        assert jupiter.get_swap_instructions.call_args.args[0] is fresh

    @pytest.mark.asyncio
    async def test_new_batch_drops_memoized_instructions(self, surface, jupiter):
        step = make_step(1)
        await surface.validate([step])
        surface.begin_batch()
        await surface.validate([step])

        assert jupiter.get_swap_instructions.await_count == 2

    @pytest.mark.asyncio
    async def test_jupiter_failure(self, surface, jupiter):
        jupiter.get_swap_instructions.side_effect = JupiterSwapError("Jupiter swap error: no route")

        with pytest.raises(ValidationFailure) as exc:
            await surface.validate([make_step(1)])

        assert exc.value.reason == "No liquidity available"

    @pytest.mark.asyncio
    async def test_compile_failure(self, surface, rpc, monkeypatch):
        class BrokenMessage:
            @classmethod
            def try_compile(cls, **kwargs):
                raise ValueError("too many account keys")

        monkeypatch.setattr(solana_surface, "MessageV0", BrokenMessage)

        with pytest.raises(ValidationFailure) as exc:
            await surface.validate([make_step(1)])

        assert exc.value.reason == "Could not compile bundle: too many account keys"
        rpc.simulate_transaction.assert_not_called()

    @pytest.mark.asyncio
    async def test_simulation_failure_classified(self, surface, rpc):
        rpc.simulate_transaction.return_value = SolanaSimulationResult(
            error={"InstructionError": [2, {"Custom": 6001}]},
            logs=["Program log: Error Message: Slippage exceeded."],
            units_consumed=90_000,
        )

        with pytest.raises(ValidationFailure) as exc:
            await surface.validate([make_step(1)])

        assert exc.value.reason == "Slippage exceeded - price moved too much"

    @pytest.mark.asyncio
    async def test_oversized_bundle(self, surface, rpc, jupiter):
        jupiter.get_swap_instructions.side_effect = lambda route, owner, slippage_bps=None: swap_instructions(
            extra_accounts=24
        )

        with pytest.raises(ValidationFailure) as exc:
            await surface.validate([make_step(1), make_step(2)])

        assert exc.value.reason.startswith("Transaction too large")
        rpc.simulate_transaction.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_lookup_table_skipped(self, surface, rpc, jupiter):
        table = str(Pubkey.new_unique())
        jupiter.get_swap_instructions.side_effect = lambda route, owner, slippage_bps=None: swap_instructions(
            tables=[table]
        )
        rpc.get_multiple_accounts.return_value = [None]

        estimate = await surface.validate([make_step(1)])

        assert estimate.units == 180_000
        rpc.get_multiple_accounts.assert_awaited_once_with([table])


# =============================================================================
# Execution
# =============================================================================

class TestExecute:
    @pytest.mark.asyncio
    async def test_confirmed(self, surface, rpc, signer):
        receipt = await surface.execute([make_step(1)], ResourceEstimate(units=200_000), 30)

        assert receipt.receipt_id == "5sig"
        assert receipt.status == TransactionStatus.CONFIRMED
        assert receipt.block == 99
        assert len(signer.messages) == 1
        rpc.send_transaction.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failed_on_chain(self, surface, rpc):
        rpc.wait_for_confirmation.return_value = SolanaTransactionResult(
            signature="5sig", status=SolanaTransactionStatus.FAILED, error="custom program error: 0x1771"
        )

        with pytest.raises(OnChainRevertError) as exc:
            await surface.execute([make_step(1)], ResourceEstimate(units=200_000), 30)

        assert exc.value.context.tx_hash == "5sig"
        assert exc.value.revert_reason == "custom program error: 0x1771"

    @pytest.mark.asyncio
    async def test_expired(self, surface, rpc):
        rpc.wait_for_confirmation.return_value = SolanaTransactionResult(
            signature="5sig", status=SolanaTransactionStatus.EXPIRED
        )

        with pytest.raises(ConfirmationTimeoutError):
            await surface.execute([make_step(1)], ResourceEstimate(units=200_000), 30)

    @pytest.mark.asyncio
    async def test_wallet_rejection(self, rpc, jupiter):
        surface = SolanaBundleSurface(OWNER, rpc, jupiter, KeypairSigner(Exception("User rejected the request")))

        with pytest.raises(UserCancelledError):
            await surface.execute([make_step(1)], ResourceEstimate(units=200_000), 30)

        rpc.send_transaction.assert_not_called()

    @pytest.mark.asyncio
    async def test_compile_failure(self, surface, rpc, signer, monkeypatch):
        class BrokenMessage:
            @classmethod
            def try_compile(cls, **kwargs):
                raise ValueError("too many account keys")

        monkeypatch.setattr(solana_surface, "MessageV0", BrokenMessage)

        with pytest.raises(SubmissionError):
            await surface.execute([make_step(1)], ResourceEstimate(units=200_000), 30)

        assert signer.messages == []
        rpc.send_transaction.assert_not_called()


# =============================================================================
# Balances
# =============================================================================

class TestSolanaBalanceOracle:
    @pytest.mark.asyncio
    async def test_native_sol(self, rpc):
        rpc.get_balance.return_value = 2_000_000_000

        assert await SolanaBalanceOracle(rpc).balance_of(WRAPPED_SOL_MINT, OWNER) == 2_000_000_000

    @pytest.mark.asyncio
    async def test_spl_accounts_summed(self, rpc):
        rpc.get_token_accounts.return_value = [{"amount": 5}, {"amount": 7}]

        assert await SolanaBalanceOracle(rpc).balance_of(SOLANA_USDC_MINT, OWNER) == 12
        rpc.get_token_accounts.assert_awaited_once_with(OWNER, mint=SOLANA_USDC_MINT)
