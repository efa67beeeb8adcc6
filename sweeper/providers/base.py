from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional


class Provider(ABC):
    """Base provider interface"""

    name: str
    timeout_s: int = 10

    @abstractmethod
    async def ready(self) -> bool:
        """Check if provider is ready to serve requests"""
        pass

    @abstractmethod
    async def health_check(self) -> Dict[str, Any]:
        """Return provider health status"""
        pass


@dataclass(frozen=True)
class QuoteParams:
    """A single-pair, exact-in quote request."""
    sell_token: str
    buy_token: str
    sell_amount: int                            # Smallest units
    taker: str
    slippage_bps: int = 30


@dataclass(frozen=True)
class ProviderQuote:
    """Normalized quote returned by any swap provider."""
    sell_token: str
    buy_token: str
    sell_amount: int
    buy_amount: int
    route: Any                                  # Opaque, consumed by an execution surface
    provider: str
    price_impact_pct: Optional[float] = None    # When the provider reports one
    min_buy_amount: Optional[int] = None


class QuoteProvider(Provider):
    """Provider that prices a single token pair and returns an executable route"""

    @abstractmethod
    async def get_quote(self, params: QuoteParams) -> ProviderQuote:
        """Quote selling `params.sell_amount` of `sell_token` for `buy_token`.

        Raises QuoteUnavailableError when no route exists, the upstream rate
        limits us, or the response does not match the expected schema.
        """
        pass
