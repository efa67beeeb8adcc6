from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

import httpx

from ..cache import TTLCache
from ..config import settings
from ..core.chains import ChainId, is_solana_chain, normalize_to_chain_id, swapper_for
from ..core.execution.models import ExecutionReceipt, ResourceEstimate
from ..core.execution.surface import ExecutionSurface
from ..core.recovery.errors import SubmissionError, SweepError, ValidationFailure
from ..core.sweep.engine import SweepEngine
from ..core.sweep.models import OutputAsset, Quote, SwapStep, TokenBalance
from ..core.sweep.session import SweepSession
from ..providers.base import QuoteProvider
from ..providers.jupiter import JupiterQuoteProvider
from ..providers.zerox import ZeroExQuoteProvider


router = APIRouter(prefix="/sweep")

# Reference rates are shared across previews
_reference_cache = TTLCache(default_ttl=settings.cache_ttl_seconds, max_size=settings.max_cache_size)


class TokenInput(BaseModel):
    address: str = Field(description="Token contract address or mint")
    symbol: str = Field(default="", description="Display symbol")
    decimals: int = Field(ge=0, le=36, description="Token decimals")
    balance: str = Field(description="Raw balance in smallest units")
    price_usd: float = Field(default=0.0, ge=0, description="Unit price in USD, 0 when unknown")


class OutputInput(BaseModel):
    address: str = Field(description="Address or mint of the asset to sweep into")
    symbol: str = Field(default="USDC", description="Display symbol")
    decimals: int = Field(default=6, ge=0, le=36)
    price_usd: float = Field(default=1.0, gt=0)


class SweepPreviewRequest(BaseModel):
    chain: Union[str, int] = Field(default="base", description="Chain name, id or 'solana'")
    owner: str = Field(description="Wallet that would sign the sweep")
    tokens: List[TokenInput] = Field(min_length=1, description="Tokens to sell")
    output: OutputInput
    force: bool = Field(default=False, description="Accept any price impact")
    overrides: Dict[str, bool] = Field(default_factory=dict, description="Per-token force flags")


class QuotePreview(BaseModel):
    token: str
    symbol: str
    amount_in: str
    quoted_out: str
    input_value_usd: float
    output_value_usd: float
    price_impact_pct: float
    impact_source: str
    slippage_bps: Optional[int] = None
    selected: bool = False


class TokenIssue(BaseModel):
    token: str
    symbol: str
    status: str
    reason: Optional[str] = None
    error_kind: Optional[str] = None


class SweepPreviewResponse(BaseModel):
    session_id: str
    chain: Union[str, int]
    output_token: str
    quotes: List[QuotePreview]
    issues: List[TokenIssue]
    batches: List[List[str]]
    capacity_limit: int
    total_input_usd: float
    total_output_usd: float


class PreviewSurface(ExecutionSurface):
    """Planning-only surface: capacity and route layout, never signs."""

    name = "preview"

    def __init__(self, owner: str, capacity: int, spender: Optional[str] = None):
        self._owner = owner
        self._capacity = capacity
        self.spender = spender

    @property
    def capacity_limit(self) -> int:
        return self._capacity

    @property
    def owner(self) -> str:
        return self._owner

    def encode_route(self, quote: Quote) -> Any:
        return quote.route

    async def validate(self, steps: Sequence[SwapStep]) -> ResourceEstimate:
        raise ValidationFailure("Preview does not simulate")

    async def execute(self, steps: Sequence[SwapStep], estimate: ResourceEstimate, headroom_pct: int) -> ExecutionReceipt:
        raise SubmissionError("Preview cannot execute")


def provider_for_chain(chain_id: ChainId) -> QuoteProvider:
    if is_solana_chain(chain_id):
        return JupiterQuoteProvider()
    return ZeroExQuoteProvider(chain_id)


def get_provider_factory() -> Callable[[ChainId], QuoteProvider]:
    return provider_for_chain


def _preview_surface(chain_id: ChainId, owner: str) -> PreviewSurface:
    if is_solana_chain(chain_id):
        return PreviewSurface(owner, settings.solana_batch_size)
    return PreviewSurface(owner, settings.evm_batch_size, spender=swapper_for(chain_id, settings.swapper_addresses))


def _parse_balance(raw: str) -> int:
    try:
        value = int(raw)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid balance: {raw}")
    if value < 0:
        raise HTTPException(status_code=400, detail=f"Invalid balance: {raw}")
    return value


@router.post("/preview")
async def post_sweep_preview(
    req: SweepPreviewRequest,
    provider_factory: Callable[[ChainId], QuoteProvider] = Depends(get_provider_factory),
) -> SweepPreviewResponse:
    try:
        chain_id = normalize_to_chain_id(req.chain)
        surface = _preview_surface(chain_id, req.owner)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    tokens = [
        TokenBalance(
            address=t.address,
            symbol=t.symbol,
            decimals=t.decimals,
            balance=_parse_balance(t.balance),
            price_usd=t.price_usd,
        )
        for t in req.tokens
    ]
    output = OutputAsset(
        address=req.output.address,
        symbol=req.output.symbol,
        decimals=req.output.decimals,
        price_usd=req.output.price_usd,
    )
    session = SweepSession(
        tokens,
        output,
        chain_id,
        owner=req.owner,
        force=req.force,
        overrides=req.overrides,
    )
    engine = SweepEngine(surface, provider_factory(chain_id), chain=chain_id, cache=_reference_cache)

    try:
        plan = await engine.prepare(session)
    except (SweepError, httpx.HTTPError) as e:
        raise HTTPException(status_code=502, detail=f"Failed to prepare sweep: {str(e)}")

    steps = {step.key: step for step in plan.steps}
    quotes = [
        QuotePreview(
            token=quote.token_in,
            symbol=session.tokens[key].symbol,
            amount_in=str(quote.amount_in),
            quoted_out=str(quote.quoted_out),
            input_value_usd=quote.input_value_usd,
            output_value_usd=quote.output_value_usd,
            price_impact_pct=quote.price_impact_pct,
            impact_source=quote.impact_source,
            slippage_bps=steps[key].slippage_bps if key in steps else None,
            selected=key in steps,
        )
        for key, quote in session.quotes.items()
    ]
    issues = [
        TokenIssue(
            token=result.token,
            symbol=result.symbol,
            status=result.status.value,
            reason=result.reason,
            error_kind=result.error_kind.value if result.error_kind else None,
        )
        for result in session.results.values()
    ]

    return SweepPreviewResponse(
        session_id=session.session_id,
        chain=chain_id,
        output_token=output.address,
        quotes=quotes,
        issues=issues,
        batches=[[step.token_in for step in batch.steps] for batch in plan.batches],
        capacity_limit=surface.capacity_limit,
        total_input_usd=sum(q.input_value_usd for q in quotes if q.selected),
        total_output_usd=sum(q.output_value_usd for q in quotes if q.selected),
    )
