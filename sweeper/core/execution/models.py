"""
Transaction execution models and types.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class TransactionType(str, Enum):
    """Types of transactions a sweep submits."""
    BATCH_SWAP = "batch_swap"
    SWAP = "swap"
    APPROVE = "approve"


class TransactionStatus(str, Enum):
    """Transaction lifecycle status."""
    PENDING = "pending"          # Created, not yet submitted
    SUBMITTED = "submitted"      # Broadcast to network
    CONFIRMED = "confirmed"      # Successfully confirmed
    FAILED = "failed"            # Submission failed
    REVERTED = "reverted"        # On-chain revert
    TIMEOUT = "timeout"          # Confirmation timeout


@dataclass
class GasEstimate:
    """Gas estimation for a transaction."""
    gas_limit: int
    gas_price_wei: int
    max_fee_per_gas: Optional[int] = None      # EIP-1559
    max_priority_fee_per_gas: Optional[int] = None  # EIP-1559


@dataclass
class PreparedTransaction:
    """An EVM transaction ready to be signed and broadcast."""
    tx_id: str                                  # Internal tracking ID
    tx_type: TransactionType
    chain_id: int
    from_address: str
    to_address: str
    data: str                                   # Encoded calldata (hex)
    value: int = 0                              # Wei to send
    gas_estimate: Optional[GasEstimate] = None
    nonce: Optional[int] = None
    description: str = ""
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for signing."""
        tx = {
            "from": self.from_address,
            "to": self.to_address,
            "data": self.data,
            "value": hex(self.value),
            "chainId": hex(self.chain_id),
        }
        if self.nonce is not None:
            tx["nonce"] = hex(self.nonce)
        if self.gas_estimate:
            tx["gas"] = hex(self.gas_estimate.gas_limit)
            if self.gas_estimate.max_fee_per_gas:
                tx["maxFeePerGas"] = hex(self.gas_estimate.max_fee_per_gas)
                tx["maxPriorityFeePerGas"] = hex(self.gas_estimate.max_priority_fee_per_gas or 0)
            else:
                tx["gasPrice"] = hex(self.gas_estimate.gas_price_wei)
        return tx


@dataclass
class TransactionResult:
    """Terminal state of a monitored transaction."""
    tx_hash: str
    status: TransactionStatus = TransactionStatus.PENDING
    chain_id: Any = 1
    block_number: Optional[int] = None
    gas_used: Optional[int] = None
    error: Optional[str] = None

    @property
    def is_success(self) -> bool:
        return self.status == TransactionStatus.CONFIRMED


@dataclass(frozen=True)
class ResourceEstimate:
    """Dry-run cost of an operation: gas on EVM, compute units on Solana."""
    units: int
    details: Dict[str, Any] = field(default_factory=dict)

    def with_headroom(self, headroom_pct: int) -> int:
        return self.units * (100 + headroom_pct) // 100


@dataclass(frozen=True)
class ExecutionReceipt:
    """Confirmed outcome of one atomic operation."""
    receipt_id: str                             # Tx hash or signature
    status: TransactionStatus
    units_used: Optional[int] = None
    block: Optional[int] = None
