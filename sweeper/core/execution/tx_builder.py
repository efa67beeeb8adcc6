"""
Transaction builder for the batch swapper and ERC20 authorization calls.
"""

import secrets
from typing import Optional, Sequence, TYPE_CHECKING

from eth_abi import decode as abi_decode
from eth_abi import encode as abi_encode
from eth_abi.exceptions import DecodingError
from eth_utils import keccak, to_checksum_address

from .models import PreparedTransaction, TransactionType

if TYPE_CHECKING:
    from ..sweep.models import SwapStep


# executePlanFromCaller((kind, tokenIn, outToken, useAll, amountIn, quotedIn,
#   quotedOut, slippageBps, data, viaPermit2, permitSig, permitAmount,
#   permitDeadline, permitNonce)[] plan, address recipient)
SWAP_STEP_TUPLE = (
    "(uint8,address,address,bool,uint256,uint256,uint256,uint16,bytes,bool,bytes,uint256,uint256,uint256)"
)
EXECUTE_PLAN_SIGNATURE = f"executePlanFromCaller({SWAP_STEP_TUPLE}[],address)"

ERC20_APPROVE_SIGNATURE = "approve(address,uint256)"
ERC20_ALLOWANCE_SIGNATURE = "allowance(address,address)"
ERC20_BALANCE_OF_SIGNATURE = "balanceOf(address)"

# Solidity Error(string)
REVERT_ERROR_SELECTOR = "0x08c379a0"

MAX_UINT256 = 2**256 - 1


def function_selector(signature: str) -> str:
    return "0x" + keccak(text=signature)[:4].hex()


def _strip_0x(value: str) -> str:
    return value[2:] if value.startswith("0x") else value


def _to_bytes(value: str) -> bytes:
    return bytes.fromhex(_strip_0x(value))


def encode_route(router: str, calldata: str) -> bytes:
    """Pack an aggregator call as the step's opaque ``data`` field: abi.encode(address, bytes)."""
    return abi_encode(["address", "bytes"], [to_checksum_address(router), _to_bytes(calldata)])


def encode_execute_plan(steps: Sequence["SwapStep"], recipient: str) -> str:
    """ABI-encode an ``executePlanFromCaller`` call for the given steps."""
    plan = [
        (
            int(step.kind),
            to_checksum_address(step.token_in),
            to_checksum_address(step.token_out),
            step.use_all,
            step.amount_in,
            step.quoted_in,
            step.quoted_out,
            step.slippage_bps,
            step.route,
            False,          # viaPermit2
            b"",            # permitSig
            0,              # permitAmount
            0,              # permitDeadline
            0,              # permitNonce
        )
        for step in steps
    ]
    args = abi_encode([f"{SWAP_STEP_TUPLE}[]", "address"], [plan, to_checksum_address(recipient)])
    return function_selector(EXECUTE_PLAN_SIGNATURE) + args.hex()


def encode_allowance_call(owner: str, spender: str) -> str:
    args = abi_encode(["address", "address"], [to_checksum_address(owner), to_checksum_address(spender)])
    return function_selector(ERC20_ALLOWANCE_SIGNATURE) + args.hex()


def encode_balance_of_call(owner: str) -> str:
    args = abi_encode(["address"], [to_checksum_address(owner)])
    return function_selector(ERC20_BALANCE_OF_SIGNATURE) + args.hex()


def decode_uint256(result: str) -> int:
    data = _strip_0x(result or "0x")
    if not data:
        return 0
    return int(data[:64], 16)


def decode_revert_reason(data: Optional[str]) -> Optional[str]:
    """Decode an ``Error(string)`` revert payload, if that is what it is."""
    if not data or not data.startswith(REVERT_ERROR_SELECTOR):
        return None
    try:
        return str(abi_decode(["string"], _to_bytes(data)[4:])[0])
    except (DecodingError, ValueError):
        return None


class TransactionBuilder:
    """
    Builds the transactions a sweep submits.

    Handles:
    - Batch swapper plan execution
    - ERC20 approvals
    """

    @staticmethod
    def generate_tx_id() -> str:
        """Generate a unique transaction ID."""
        return f"tx_{secrets.token_hex(16)}"

    @staticmethod
    def build_execute_plan(
        chain_id: int,
        owner_address: str,
        swapper_address: str,
        steps: Sequence["SwapStep"],
        description: str = "",
    ) -> PreparedTransaction:
        """
        Build a batch swapper call executing ``steps`` for ``owner_address``.

        The owner is both the token source and the recipient of the output.
        """
        return PreparedTransaction(
            tx_id=TransactionBuilder.generate_tx_id(),
            tx_type=TransactionType.BATCH_SWAP if len(steps) > 1 else TransactionType.SWAP,
            chain_id=chain_id,
            from_address=owner_address,
            to_address=swapper_address,
            data=encode_execute_plan(steps, owner_address),
            description=description or f"Sweep {len(steps)} token(s)",
        )

    @staticmethod
    def build_erc20_approve(
        chain_id: int,
        owner_address: str,
        token_address: str,
        spender_address: str,
        amount: int = MAX_UINT256,
        description: str = "",
    ) -> PreparedTransaction:
        """
        Build an ERC20 approval transaction.

        Args:
            chain_id: The chain ID
            owner_address: The token owner (sender)
            token_address: The ERC20 token contract
            spender_address: The address being approved to spend
            amount: The amount to approve (default: unlimited)
            description: Human-readable description

        Returns:
            PreparedTransaction for the approval
        """
        args = abi_encode(["address", "uint256"], [to_checksum_address(spender_address), amount])
        return PreparedTransaction(
            tx_id=TransactionBuilder.generate_tx_id(),
            tx_type=TransactionType.APPROVE,
            chain_id=chain_id,
            from_address=owner_address,
            to_address=token_address,
            data=function_selector(ERC20_APPROVE_SIGNATURE) + args.hex(),
            description=description or f"Approve {spender_address[:10]}... to spend token",
        )
