import os

from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


BASE_DIR = Path(__file__).resolve().parents[1]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    def model_post_init(self, __context: Any) -> None:
        """Pick up legacy environment variable aliases."""

        super().model_post_init(__context)

        if not self.zerox_api_key:
            fallback = os.getenv("ZEROX_KEY") or os.getenv("NEXT_PUBLIC_0X_API_KEY")
            if fallback:
                object.__setattr__(self, "zerox_api_key", fallback)

    # Server Settings
    host: str = Field(default="127.0.0.1", description="Server host")
    port: int = Field(default=8000, description="Server port")
    log_level: str = Field(default="INFO", description="Logging level")

    # Cache Settings
    cache_ttl_seconds: int = Field(default=300, description="Cache TTL in seconds")
    max_cache_size: int = Field(default=1000, description="Maximum cache size")
    reference_cache_ttl_seconds: int = Field(
        default=60,
        description="TTL for cached small-notional reference rates",
    )

    # Quote Batching
    quote_window_size: int = Field(default=5, description="Quotes fetched concurrently per window")
    quote_window_delay_ms: int = Field(
        default=1500,
        description="Pause between EVM quote windows (0x rate limits)",
    )
    solana_quote_window_delay_ms: int = Field(
        default=500,
        description="Pause between Solana quote windows",
    )
    reference_notional_usd: float = Field(
        default=1.0,
        description="USD notional used for the reference (market price) quote",
    )
    fallback_impact_pct: float = Field(
        default=2.0,
        description="Impact assumed when no reference quote or provider estimate exists",
    )
    probe_window_size: int = Field(default=10, description="Tokens per tradeability probe window")
    probe_window_delay_ms: int = Field(default=500, description="Pause between probe windows")

    # Selection and Slippage Policy
    auto_select_impact_pct: float = Field(
        default=10.0,
        description="Tokens with impact at or above this need force to be swapped",
    )
    min_value_usd: float = Field(default=0.10, description="Minimum USD value to auto-select a token")
    slippage_min_buffer_bps: int = Field(default=30, description="Buffer always added above impact")
    slippage_normal_cap_bps: int = Field(default=500, description="Cap for the normal slippage bound")
    slippage_force_floor_bps: int = Field(default=500, description="Floor for the forced slippage bound")
    slippage_force_buffer_bps: int = Field(default=1000, description="Buffer added to impact when forced")
    slippage_force_cap_bps: int = Field(default=9900, description="Cap for the forced slippage bound")

    # Execution
    quote_ttl_seconds: float = Field(
        default=30.0,
        description="Quotes older than this are refreshed before execution",
    )
    requote_delay_ms: int = Field(default=300, description="Pause between re-quote windows")
    gas_headroom_pct: int = Field(default=30, description="Resource headroom above the batch estimate")
    individual_headroom_pct: int = Field(
        default=50,
        description="Resource headroom above the estimate for individual retries",
    )
    confirmation_timeout_seconds: float = Field(
        default=120.0,
        description="Maximum wait for a submitted operation to reach a terminal state",
    )
    inter_batch_delay_ms: int = Field(default=500, description="Pause between execution batches")
    approval_multiplier: int = Field(
        default=10,
        description="Allowance raised to this multiple of the balance",
    )
    validation_concurrency: int = Field(default=5, description="Concurrent dry runs during isolation")

    # EVM
    alchemy_api_key: str = Field(default="", description="Alchemy API key")
    evm_rpc_urls: Dict[int, str] = Field(
        default_factory=dict,
        description="Per-chain RPC URL overrides (JSON object of chain id to URL)",
    )
    evm_batch_size: int = Field(default=5, description="Swaps per batch contract call")
    swapper_addresses: Dict[int, str] = Field(
        default_factory=dict,
        description="Per-chain batch swapper contract overrides",
    )

    # 0x Swap API
    zerox_api_key: str = Field(
        default="",
        description="0x API key",
        validation_alias=AliasChoices("zerox_api_key", "ZEROX_API_KEY", "ZERO_X_API_KEY"),
    )
    zerox_base_url: str = Field(default="https://api.0x.org", description="0x API base URL")
    swap_fee_recipient: str = Field(default="", description="Integrator fee recipient for 0x quotes")
    swap_fee_bps: int = Field(default=0, description="Integrator fee for 0x quotes in bps")

    # Solana
    solana_rpc_url: str = Field(
        default="https://api.mainnet-beta.solana.com",
        description="Solana JSON-RPC endpoint",
    )
    solana_batch_size: int = Field(default=2, description="Swaps bundled per Solana transaction")
    jupiter_api_url: str = Field(
        default="https://lite-api.jup.ag/swap/v1",
        description="Jupiter swap API base URL",
    )
    solana_compute_units_per_swap: int = Field(default=400_000, description="Compute units per swap")
    solana_priority_fee_microlamports: int = Field(
        default=50_000,
        description="Priority fee in micro-lamports per compute unit",
    )
    platform_fee_bps: int = Field(default=0, description="Jupiter platform fee in bps")
    platform_fee_account: str = Field(default="", description="Jupiter platform fee token account")

    @property
    def has_zerox_key(self) -> bool:
        return bool(self.zerox_api_key)

    @property
    def has_alchemy_key(self) -> bool:
        return bool(self.alchemy_api_key)

    def rpc_url_for(self, chain_id: int) -> Optional[str]:
        """Resolve the RPC URL for an EVM chain, preferring explicit overrides."""
        if chain_id in self.evm_rpc_urls:
            return self.evm_rpc_urls[chain_id]
        if not self.has_alchemy_key:
            return None

        from .core.chains import ALCHEMY_NETWORKS

        network = ALCHEMY_NETWORKS.get(chain_id)
        if not network:
            return None
        return f"https://{network}.g.alchemy.com/v2/{self.alchemy_api_key}"


settings = Settings()
