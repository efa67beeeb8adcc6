from fastapi import APIRouter
from typing import Dict, Any
from ..core.chains import DEFAULT_CHAIN_ID
from ..providers.jupiter import JupiterQuoteProvider
from ..providers.zerox import ZeroExQuoteProvider

router = APIRouter()


@router.get("/healthz")
async def health_check() -> Dict[str, Any]:
    """Health check endpoint that verifies quote provider status"""

    zerox = ZeroExQuoteProvider(DEFAULT_CHAIN_ID)
    jupiter = JupiterQuoteProvider()

    provider_status = {
        "0x": await zerox.health_check(),
        "jupiter": await jupiter.health_check(),
    }

    # Unconfigured providers do not degrade the service
    all_healthy = all(
        status["status"] in ["healthy", "unavailable"]
        for status in provider_status.values()
    )

    available_providers = sum(
        1 for status in provider_status.values()
        if status["status"] == "healthy"
    )

    return {
        "status": "healthy" if all_healthy and available_providers > 0 else "degraded",
        "providers": provider_status,
        "available_providers": available_providers,
        "total_providers": len(provider_status)
    }
