"""
Fixtures for the sweep pipeline tests.
"""

from typing import Callable

import pytest

from sweep_fakes import SPENDER, USDC, WHOLE, FakeAuthorizer, FakeBalanceOracle, FakeQuoteProvider, FakeSurface
from sweeper.core.sweep.executor import ExecutorConfig
from sweeper.core.sweep.models import OutputAsset, TokenBalance
from sweeper.core.sweep.quotes import QuoteBatcher


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def output_asset() -> OutputAsset:
    return OutputAsset(address=USDC, symbol="USDC", decimals=6, price_usd=1.0)


@pytest.fixture
def make_token() -> Callable[..., TokenBalance]:
    """Factory for $1 tokens with 18 decimals."""

    def _make(n: int, whole_tokens: int = 50, price_usd: float = 1.0) -> TokenBalance:
        return TokenBalance(
            address=f"0x{n:040x}",
            symbol=f"TKN{n}",
            decimals=18,
            balance=whole_tokens * WHOLE,
            price_usd=price_usd,
        )

    return _make


@pytest.fixture
def provider() -> FakeQuoteProvider:
    return FakeQuoteProvider()


@pytest.fixture
def authorizer() -> FakeAuthorizer:
    return FakeAuthorizer()


@pytest.fixture
def surface() -> FakeSurface:
    return FakeSurface(capacity=5)


@pytest.fixture
def oracle(surface: FakeSurface) -> FakeBalanceOracle:
    return FakeBalanceOracle(surface)


@pytest.fixture
def fast_config() -> ExecutorConfig:
    """Executor config without pauses."""
    return ExecutorConfig(inter_batch_delay_ms=0)


@pytest.fixture
def make_surface() -> Callable[..., FakeSurface]:
    return FakeSurface


@pytest.fixture
def make_oracle() -> Callable[..., FakeBalanceOracle]:
    return FakeBalanceOracle


@pytest.fixture
def batcher(provider: FakeQuoteProvider) -> QuoteBatcher:
    """Batcher over the fake provider, without window pauses."""
    return QuoteBatcher(provider, taker=SPENDER, window_delay_ms=0, probe_window_delay_ms=0)
