"""
Chain identification and per-chain sweep configuration.

EVM chains are identified by their integer chain IDs; Solana uses the
string literal "solana". Each supported EVM chain carries the addresses the
batch swapper needs: the swapper contract itself, the 0x AllowanceHolder
that routes are executed through, and the usual output assets.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Literal, Optional, Union

ChainId = Union[int, Literal["solana"]]

SOLANA_CHAIN_ID: Literal["solana"] = "solana"

DEFAULT_CHAIN_ID: int = 1

ALLOWANCE_HOLDER = "0x0000000000001fF3684f28c67538d4D072C22734"

# USDT on Ethereum mainnet requires the allowance to be zero before it is raised
RESET_TO_ZERO_TOKENS: Dict[int, frozenset] = {
    1: frozenset({"0xdac17f958d2ee523a2206206994597c13d831ec7"}),
}


@dataclass(frozen=True)
class EvmChainConfig:
    """Static addresses for a chain supported by the batch swapper."""
    chain_id: int
    name: str
    swapper: str
    usdc: str
    usdc_decimals: int
    weth: str
    allowance_holder: str = ALLOWANCE_HOLDER
    explorer_url: str = ""


EVM_CHAINS: Dict[int, EvmChainConfig] = {
    8453: EvmChainConfig(
        chain_id=8453,
        name="Base",
        swapper="0x25f11f947309df89bf4d36da5d9a9fb5f1e186c1",
        usdc="0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
        usdc_decimals=6,
        weth="0x4200000000000000000000000000000000000006",
        explorer_url="https://basescan.org",
    ),
    1: EvmChainConfig(
        chain_id=1,
        name="Ethereum",
        swapper="0x75f57Faf06f0191a1422a665BFc297bcb6Aa765a",
        usdc="0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48",
        usdc_decimals=6,
        weth="0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2",
        explorer_url="https://etherscan.io",
    ),
    42161: EvmChainConfig(
        chain_id=42161,
        name="Arbitrum",
        swapper="0x75f57Faf06f0191a1422a665BFc297bcb6Aa765a",
        usdc="0xaf88d065e77c8cC2239327C5EDb3A432268e5831",
        usdc_decimals=6,
        weth="0x82aF49447D8a07e3bd95BD0d56f35241523fBab1",
        explorer_url="https://arbiscan.io",
    ),
    10: EvmChainConfig(
        chain_id=10,
        name="Optimism",
        swapper="0x75f57Faf06f0191a1422a665BFc297bcb6Aa765a",
        usdc="0x0b2C639c533813f4Aa9D7837CAf62653d097Ff85",
        usdc_decimals=6,
        weth="0x4200000000000000000000000000000000000006",
        explorer_url="https://optimistic.etherscan.io",
    ),
    137: EvmChainConfig(
        chain_id=137,
        name="Polygon",
        swapper="0x75f57Faf06f0191a1422a665BFc297bcb6Aa765a",
        usdc="0x3c499c542cEF5E3811e1192ce70d8cC03d5c3359",
        usdc_decimals=6,
        weth="0x7ceB23fD6bC0adD59E62ac25578270cFf1b9f619",
        explorer_url="https://polygonscan.com",
    ),
    56: EvmChainConfig(
        chain_id=56,
        name="BNB Chain",
        swapper="0x75f57Faf06f0191a1422a665BFc297bcb6Aa765a",
        usdc="0x8AC76a51cc950d9822D68b83fE1Ad97B32Cd580d",
        usdc_decimals=18,
        weth="0xbb4CdB9CBd36B01bD1cBaEBF2De08d9173bc095c",
        explorer_url="https://bscscan.com",
    ),
    43114: EvmChainConfig(
        chain_id=43114,
        name="Avalanche",
        swapper="0x75f57Faf06f0191a1422a665BFc297bcb6Aa765a",
        usdc="0xB97EF9Ef8734C71904D8002F8b6Bc66Dd9c48a6E",
        usdc_decimals=6,
        weth="0xB31f66AA3C1e785363F0875A1B74E27b85FD66c7",
        explorer_url="https://snowtrace.io",
    ),
    534352: EvmChainConfig(
        chain_id=534352,
        name="Scroll",
        swapper="0x75f57Faf06f0191a1422a665BFc297bcb6Aa765a",
        usdc="0x06eFdBFf2a14a7c8E15944D1F4A48F9F95F663A4",
        usdc_decimals=6,
        weth="0x5300000000000000000000000000000000000004",
        explorer_url="https://scrollscan.com",
    ),
    59144: EvmChainConfig(
        chain_id=59144,
        name="Linea",
        swapper="0x679e6e600E480d99f8aeD8555953AD2cF43bAB96",
        usdc="0x176211869cA2b568f2A7D4EE941E073a821EE1ff",
        usdc_decimals=6,
        weth="0xe5D7C2a44FfDDf6b295A15c148167daaAf5Cf34f",
        explorer_url="https://lineascan.build",
    ),
}

ALCHEMY_NETWORKS: Dict[int, str] = {
    1: "eth-mainnet",
    10: "opt-mainnet",
    137: "polygon-mainnet",
    42161: "arb-mainnet",
    8453: "base-mainnet",
    43114: "avax-mainnet",
    534352: "scroll-mainnet",
    59144: "linea-mainnet",
    56: "bnb-mainnet",
}

# Solana mints
WRAPPED_SOL_MINT = "So11111111111111111111111111111111111111112"
SOLANA_USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
SOLANA_USDT_MINT = "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB"


def is_solana_chain(chain_id: ChainId) -> bool:
    """Check if the chain ID represents Solana."""
    return chain_id == SOLANA_CHAIN_ID


def normalize_to_chain_id(chain: str | int | None) -> ChainId:
    """
    Convert user input to a canonical ChainId.

    Accepts integer chain IDs, numeric strings, chain names ("base",
    "ethereum") and Solana aliases ("sol", "solana").

    Raises:
        ValueError: If the chain identifier is not recognized.
    """
    if chain is None:
        return DEFAULT_CHAIN_ID

    if isinstance(chain, int):
        return chain

    chain_lower = chain.lower().strip()

    if chain_lower in ("sol", "solana"):
        return SOLANA_CHAIN_ID

    if chain_lower.isdigit():
        return int(chain_lower)

    for config in EVM_CHAINS.values():
        if config.name.lower() == chain_lower:
            return config.chain_id
    if chain_lower in ("eth", "mainnet"):
        return 1
    if chain_lower in ("arb", "arbitrum-one"):
        return 42161
    if chain_lower in ("bsc", "bnb"):
        return 56

    raise ValueError(f"Unknown chain: {chain}")


def get_chain_config(chain_id: int) -> EvmChainConfig:
    """Look up the static config for a supported EVM chain."""
    config = EVM_CHAINS.get(chain_id)
    if config is None:
        raise ValueError(f"Chain {chain_id} is not supported by the batch swapper")
    return config


def swapper_for(chain_id: int, overrides: Optional[Dict[int, str]] = None) -> str:
    """Resolve the batch swapper address, honoring configured overrides."""
    if overrides and chain_id in overrides:
        return overrides[chain_id]
    return get_chain_config(chain_id).swapper


def requires_allowance_reset(chain_id: int, token: str) -> bool:
    """Tokens that reject raising a non-zero allowance without resetting it first."""
    return token.lower() in RESET_TO_ZERO_TOKENS.get(chain_id, frozenset())
