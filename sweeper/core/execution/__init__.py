"""
Execution Layer

Capability interfaces the sweep pipeline executes against, plus the
transaction models and builders shared by the chain adapters:
- ExecutionSurface: atomic multi-swap operation (validate / execute)
- AuthorizationPrimitive: per (token, spender) allowances
- BalanceOracle: output-asset balance reads
- TransactionBuilder: batch swapper and ERC20 calldata

Chain adapters are imported from their modules:

    from sweeper.core.execution.evm_surface import EvmBatchSurface
    from sweeper.core.execution.solana_surface import SolanaBundleSurface
"""

from .models import (
    ExecutionReceipt,
    GasEstimate,
    PreparedTransaction,
    ResourceEstimate,
    TransactionResult,
    TransactionStatus,
    TransactionType,
)

from .surface import (
    AuthorizationPrimitive,
    BalanceOracle,
    ExecutionSurface,
)

from .tx_builder import (
    TransactionBuilder,
)

__all__ = [
    # Models
    "ExecutionReceipt",
    "GasEstimate",
    "PreparedTransaction",
    "ResourceEstimate",
    "TransactionResult",
    "TransactionStatus",
    "TransactionType",
    # Capabilities
    "AuthorizationPrimitive",
    "BalanceOracle",
    "ExecutionSurface",
    # Transaction Builder
    "TransactionBuilder",
]
