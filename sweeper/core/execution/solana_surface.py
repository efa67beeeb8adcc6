"""
Solana execution surface: Jupiter instructions bundled into one v0 transaction.

A batch is atomic because every swap's setup, swap and cleanup
instructions share a single transaction. The bundle is bounded by the
1232-byte packet limit and the 1.4M compute unit ceiling, which is why
Solana batches are small.
"""

from __future__ import annotations

import asyncio
import base64
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence, Tuple

from solders.address_lookup_table_account import AddressLookupTable, AddressLookupTableAccount
from solders.compute_budget import set_compute_unit_limit, set_compute_unit_price
from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import VersionedTransaction

from ...config import settings
from ...providers.jupiter import (
    JupiterInstruction,
    JupiterQuoteProvider,
    JupiterSwapError,
    JupiterSwapInstructions,
)
from ..chains import WRAPPED_SOL_MINT
from ..recovery.errors import (
    ConfirmationTimeoutError,
    ErrorKind,
    OnChainRevertError,
    SubmissionError,
    UserCancelledError,
    ValidationFailure,
    classify_failure,
)
from ..sweep.models import Quote, SwapStep
from .models import ExecutionReceipt, ResourceEstimate, TransactionStatus
from .solana_rpc import SolanaRpcClient, SolanaRpcError, SolanaTransactionStatus
from .surface import BalanceOracle, ExecutionSurface

logger = logging.getLogger(__name__)

MAX_TRANSACTION_SIZE = 1232
MAX_COMPUTE_UNITS = 1_400_000


class BundleCompileError(Exception):
    """The swap instructions could not be compiled into a v0 message."""


class SolanaSigner(ABC):
    """Wallet capability that signs Solana messages."""

    @abstractmethod
    async def sign_message(self, message: MessageV0) -> VersionedTransaction:
        """Return the signed transaction. Raises UserCancelledError when declined."""


def to_instruction(ix: JupiterInstruction) -> Instruction:
    """Convert Jupiter's JSON instruction into a solders Instruction."""
    return Instruction(
        program_id=Pubkey.from_string(ix.program_id),
        accounts=[
            AccountMeta(
                pubkey=Pubkey.from_string(acc.pubkey),
                is_signer=acc.is_signer,
                is_writable=acc.is_writable,
            )
            for acc in ix.accounts
        ],
        data=base64.b64decode(ix.data),
    )


class SolanaBalanceOracle(BalanceOracle):
    """Native SOL or SPL token balances."""

    def __init__(self, rpc: SolanaRpcClient):
        self.rpc = rpc

    async def balance_of(self, token: str, owner: str) -> int:
        # Output SOL is unwrapped into the native balance
        if token == WRAPPED_SOL_MINT:
            return await self.rpc.get_balance(owner)
        accounts = await self.rpc.get_token_accounts(owner, mint=token)
        return sum(account["amount"] for account in accounts)


class SolanaBundleSurface(ExecutionSurface):
    """
    Bundles Jupiter swaps into a single versioned transaction.

    Swap instructions are fetched per step with the step's own slippage
    bound and memoized, so the isolator's repeated dry runs over subsets
    of a batch do not refetch them.
    """

    name = "solana"

    def __init__(
        self,
        owner: str,
        rpc: SolanaRpcClient,
        jupiter: JupiterQuoteProvider,
        signer: SolanaSigner,
        *,
        capacity: Optional[int] = None,
        compute_units_per_swap: Optional[int] = None,
        priority_fee_microlamports: Optional[int] = None,
        confirmation_timeout_s: Optional[float] = None,
    ):
        self._owner = owner
        self.rpc = rpc
        self.jupiter = jupiter
        self.signer = signer
        self._capacity = capacity or settings.solana_batch_size
        self.compute_units_per_swap = compute_units_per_swap or settings.solana_compute_units_per_swap
        self.priority_fee_microlamports = (
            priority_fee_microlamports
            if priority_fee_microlamports is not None
            else settings.solana_priority_fee_microlamports
        )
        self.confirmation_timeout_s = confirmation_timeout_s or settings.confirmation_timeout_seconds
        # (token, amount, slippage) -> (route the instructions were built from, instructions)
        self._instructions: Dict[Tuple[str, int, int], Tuple[object, JupiterSwapInstructions]] = {}
        self._lookup_tables: Dict[str, AddressLookupTableAccount] = {}

    @property
    def capacity_limit(self) -> int:
        return self._capacity

    @property
    def owner(self) -> str:
        return self._owner

    def encode_route(self, quote: Quote) -> object:
        # Instructions depend on the final slippage bound; they are fetched at validation
        return quote.route

    def begin_batch(self) -> None:
        self._instructions.clear()

    async def _instructions_for(self, step: SwapStep) -> JupiterSwapInstructions:
        cache_key = (step.key, step.amount_in, step.slippage_bps)
        cached = self._instructions.get(cache_key)
        # A re-quoted step carries a new route object
        if cached is not None and cached[0] is step.route:
            return cached[1]

        instructions = await self.jupiter.get_swap_instructions(
            step.route, self._owner, slippage_bps=step.slippage_bps
        )
        self._instructions[cache_key] = (step.route, instructions)
        return instructions

    async def _lookup_tables_for(self, addresses: List[str]) -> List[AddressLookupTableAccount]:
        missing = [a for a in dict.fromkeys(addresses) if a not in self._lookup_tables]
        if missing:
            raw_accounts = await self.rpc.get_multiple_accounts(missing)
            for address, data in zip(missing, raw_accounts):
                if data is None:
                    logger.warning(f"Lookup table {address} not found")
                    continue
                table = AddressLookupTable.deserialize(data)
                self._lookup_tables[address] = AddressLookupTableAccount(
                    key=Pubkey.from_string(address),
                    addresses=list(table.addresses),
                )
        return [self._lookup_tables[a] for a in dict.fromkeys(addresses) if a in self._lookup_tables]

    async def _compile(self, steps: Sequence[SwapStep], compute_units: int) -> MessageV0:
        bundles = await asyncio.gather(*(self._instructions_for(step) for step in steps))

        alt_addresses: List[str] = []
        for bundle in bundles:
            alt_addresses.extend(bundle.address_lookup_table_addresses)
        lookup_tables = await self._lookup_tables_for(alt_addresses)
        blockhash = await self.rpc.get_latest_blockhash()

        try:
            instructions = [
                set_compute_unit_limit(min(compute_units, MAX_COMPUTE_UNITS)),
                set_compute_unit_price(self.priority_fee_microlamports),
            ]
            for bundle in bundles:
                instructions.extend(to_instruction(ix) for ix in bundle.ordered())

            return MessageV0.try_compile(
                payer=Pubkey.from_string(self._owner),
                instructions=instructions,
                address_lookup_table_accounts=lookup_tables,
                recent_blockhash=Hash.from_string(blockhash),
            )
        except Exception as e:
            raise BundleCompileError(str(e)) from e

    def _default_compute_units(self, steps: Sequence[SwapStep]) -> int:
        return min(self.compute_units_per_swap * len(steps), MAX_COMPUTE_UNITS)

    async def validate(self, steps: Sequence[SwapStep]) -> ResourceEstimate:
        compute_units = self._default_compute_units(steps)
        try:
            message = await self._compile(steps, compute_units)
        except JupiterSwapError as e:
            raise ValidationFailure(classify_failure(e).reason, raw=str(e)) from e
        except SolanaRpcError as e:
            raise ValidationFailure(f"Could not build bundle: {e}", raw=str(e)) from e
        except BundleCompileError as e:
            raise ValidationFailure(f"Could not compile bundle: {e}", raw=str(e)) from e

        unsigned = VersionedTransaction.populate(message, [Signature.default()])
        size = len(bytes(unsigned))
        if size > MAX_TRANSACTION_SIZE:
            raise ValidationFailure(f"Transaction too large: {size} bytes (limit {MAX_TRANSACTION_SIZE})")

        try:
            simulation = await self.rpc.simulate_transaction(bytes(unsigned))
        except SolanaRpcError as e:
            raise ValidationFailure(f"Simulation failed: {e}", raw=str(e)) from e

        if not simulation.ok:
            raw = f"{simulation.error} {' '.join(simulation.logs[-5:])}"
            classified = classify_failure(raw)
            raise ValidationFailure(classified.reason, raw=raw, category=classified.category)

        return ResourceEstimate(
            units=simulation.units_consumed or compute_units,
            details={"size_bytes": size, "steps": len(steps)},
        )

    async def execute(
        self,
        steps: Sequence[SwapStep],
        estimate: ResourceEstimate,
        headroom_pct: int,
    ) -> ExecutionReceipt:
        compute_units = estimate.with_headroom(headroom_pct)
        try:
            message = await self._compile(steps, compute_units)
        except (JupiterSwapError, SolanaRpcError) as e:
            raise SubmissionError(f"Could not build bundle: {e}") from e
        except BundleCompileError as e:
            raise SubmissionError(f"Could not compile bundle: {e}") from e

        try:
            signed = await self.signer.sign_message(message)
        except UserCancelledError:
            raise
        except Exception as e:
            classified = classify_failure(e, default_kind=ErrorKind.SUBMISSION_ERROR)
            if classified.kind == ErrorKind.USER_CANCELLED:
                raise UserCancelledError() from e
            raise SubmissionError(f"Signing failed: {classified.reason}") from e

        try:
            signature = await self.rpc.send_transaction(bytes(signed))
        except SolanaRpcError as e:
            raise SubmissionError(f"Broadcast failed: {e}") from e

        logger.info(f"Submitted bundle of {len(steps)} swap(s): {signature}")
        result = await self.rpc.wait_for_confirmation(signature, timeout_s=self.confirmation_timeout_s)

        if result.status == SolanaTransactionStatus.FAILED:
            raise OnChainRevertError(tx_hash=signature, revert_reason=result.error)
        if result.status == SolanaTransactionStatus.EXPIRED:
            raise ConfirmationTimeoutError(signature, self.confirmation_timeout_s)

        return ExecutionReceipt(
            receipt_id=signature,
            status=TransactionStatus.CONFIRMED,
            block=result.slot,
        )
